"""
Abstract base class for LLM providers.

A provider knows how to turn a Connection snapshot plus a message list into an
HTTP request for one backend family, and how to unwrap that backend's response.
Providers hold no per-request state and can be shared by concurrent requests.
"""

import asyncio
import ipaddress
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from llamb.config.logging_config import get_logger
from llamb.llm.types import (
    Connection,
    ConnectionFeatures,
    ConnectionTestResult,
    HttpRequest,
    LLMAuthenticationError,
    LLMConnectionError,
    LLMHTTPError,
    LLMInvalidResponseError,
    LLMMessage,
    LLMRateLimitError,
    LLMTimeoutError,
    LLMValidationError,
    MessageOptions,
    NormalizedResponse,
    ProviderType,
    StreamFormat,
)

logger = get_logger(__name__)


DEFAULT_MAX_TOKENS = 4000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TIMEOUT_S = 30.0


def is_local_endpoint(endpoint: str) -> bool:
    """
    Check whether an endpoint points at this machine or a private network.

    Args:
        endpoint: Base endpoint URL (e.g., http://localhost:11434/v1)

    Returns:
        bool: True for loopback, private and *.local hosts
    """
    host = urlparse(endpoint).hostname
    if not host:
        return False

    if host == "localhost" or host.endswith(".localhost") or host.endswith(".local"):
        return True

    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False

    return address.is_loopback or address.is_private or address.is_unspecified


def create_http_client(timeout_s: float = DEFAULT_TIMEOUT_S) -> httpx.AsyncClient:
    """Create the shared async HTTP client used by providers."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=10.0,
            read=timeout_s,
            write=10.0,
            pool=10.0,
        ),
        follow_redirects=True,
    )


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Subclasses supply the endpoint path, the response mapping and any message
    reshaping; request assembly, HTTP dispatch and error mapping live here.
    """

    provider_type: ProviderType = ProviderType.OPENAI_COMPATIBLE
    display_name = "Base"
    stream_format: StreamFormat = StreamFormat.OPENAI_SSE
    supported_features = ConnectionFeatures()

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize LLM provider.

        Args:
            client: Shared httpx client (a private one is created if omitted)
        """
        self._owns_client = client is None
        self.client = client or create_http_client()

    @property
    def provider_name(self) -> str:
        """Return provider name (for logging)."""
        return self.provider_type.value

    # ------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------

    def validate_connection(self, connection: Connection) -> None:
        """
        Reject connections this provider cannot talk to.

        Raises:
            LLMValidationError: Missing endpoint or model
        """
        if not connection.endpoint:
            raise LLMValidationError("Endpoint is required")
        if not connection.model:
            raise LLMValidationError("Model is required")

    @abstractmethod
    def chat_url(self, connection: Connection) -> str:
        """URL of the chat endpoint for this connection."""

    def models_url(self, connection: Connection) -> str:
        """URL of the model listing endpoint (used by test_connection)."""
        return f"{connection.endpoint.rstrip('/')}/models"

    def format_messages(
        self,
        messages: List[LLMMessage],
        connection: Connection,
        options: MessageOptions,
    ) -> List[Dict[str, str]]:
        """Convert messages to the wire shape expected by the backend."""
        return [{"role": m.role, "content": m.content} for m in messages]

    def build_headers(self, connection: Connection) -> Dict[str, str]:
        """Build request headers (custom headers first, bearer credential last)."""
        headers = {
            "Content-Type": "application/json",
            **connection.custom_headers,
        }

        if connection.api_key:
            headers["Authorization"] = f"Bearer {connection.api_key}"

        return headers

    def _default_body(
        self,
        connection: Connection,
        wire_messages: List[Dict[str, str]],
        options: MessageOptions,
        stream: bool,
    ) -> Dict[str, Any]:
        max_tokens = options.max_tokens or DEFAULT_MAX_TOKENS
        context_window = connection.features.context_window
        if context_window:
            max_tokens = min(max_tokens, context_window)

        temperature = options.temperature if options.temperature is not None else DEFAULT_TEMPERATURE

        return {
            "model": connection.model,
            "messages": wire_messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": stream,
        }

    def build_body(
        self,
        connection: Connection,
        messages: List[LLMMessage],
        options: MessageOptions,
        stream: bool,
    ) -> Dict[str, Any]:
        """Build the JSON request body."""
        wire_messages = self.format_messages(messages, connection, options)
        return self._default_body(connection, wire_messages, options, stream)

    def build_request(
        self,
        connection: Connection,
        messages: List[LLMMessage],
        options: Optional[MessageOptions] = None,
        stream: bool = False,
    ) -> HttpRequest:
        """
        Build the provider-specific HTTP request.

        Args:
            connection: Connection snapshot
            messages: Provider-neutral message list
            options: Per-call options (max_tokens, temperature, hints)
            stream: Set the stream flag in the body

        Returns:
            HttpRequest: url, method, headers and JSON body

        Raises:
            LLMValidationError: Connection is unusable for this provider
        """
        options = options or MessageOptions()
        self.validate_connection(connection)

        return HttpRequest(
            url=self.chat_url(connection),
            method="POST",
            headers=self.build_headers(connection),
            body=self.build_body(connection, messages, options, stream),
        )

    # ------------------------------------------------------------
    # Response handling
    # ------------------------------------------------------------

    @abstractmethod
    def format_response(self, data: Dict[str, Any]) -> NormalizedResponse:
        """Map the backend's JSON body to a NormalizedResponse."""

    def _http_error(self, status_code: int, body: str) -> LLMHTTPError:
        message = f"{self.display_name} API error: {status_code} - {body}"
        if status_code in (401, 403):
            return LLMAuthenticationError(message, status_code=status_code, body=body)
        if status_code == 429:
            return LLMRateLimitError(message, status_code=status_code, body=body)
        return LLMHTTPError(message, status_code=status_code, body=body)

    async def _dispatch(self, request: HttpRequest, timeout_s: float, stream: bool) -> httpx.Response:
        """
        Send a built request and check its status.

        With stream=True the body is left unread; the caller owns the response
        and must close it.

        Raises:
            LLMTimeoutError: No response within timeout_s
            LLMConnectionError: Network/connection error
            LLMHTTPError: Non-2xx status code
        """
        http_request = self.client.build_request(
            request.method,
            request.url,
            headers=request.headers,
            json=request.body,
            timeout=timeout_s,
        )

        logger.debug(f"🤖 LLM [{self.provider_name}]: {request.method} {request.url} (stream={stream})")

        try:
            async with asyncio.timeout(timeout_s):
                response = await self.client.send(http_request, stream=stream)
        except (httpx.TimeoutException, TimeoutError) as e:
            logger.error(f"🤖 LLM [{self.provider_name}]: Timeout after {timeout_s}s")
            raise LLMTimeoutError(f"{self.display_name} request timeout after {timeout_s}s") from e
        except httpx.RequestError as e:
            logger.error(f"🤖 LLM [{self.provider_name}]: Connection error - {e}")
            raise LLMConnectionError(f"{self.display_name} connection error: {e}") from e

        if not response.is_success:
            try:
                body = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            logger.error(f"🤖 LLM [{self.provider_name}]: HTTP error {response.status_code}")
            raise self._http_error(response.status_code, body)

        return response

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------

    async def send_message(
        self,
        connection: Connection,
        messages: List[LLMMessage],
        options: Optional[MessageOptions] = None,
    ) -> NormalizedResponse:
        """
        Send a non-streaming request and wait for the full response.

        Raises:
            LLMValidationError: Connection is unusable for this provider
            LLMTimeoutError: Request timeout
            LLMHTTPError: Non-2xx status code
            LLMInvalidResponseError: Unexpected response body
        """
        request = self.build_request(connection, messages, options, stream=False)

        logger.info(f"🤖 LLM [{self.provider_name}]: Request to model '{connection.model}'")

        response = await self._dispatch(request, connection.timeout, stream=False)

        try:
            data = response.json()
        except ValueError as e:
            raise LLMInvalidResponseError(f"{self.display_name} returned invalid JSON: {e}") from e

        return self.format_response(data)

    async def send_streaming_message(
        self,
        connection: Connection,
        messages: List[LLMMessage],
        options: Optional[MessageOptions] = None,
    ) -> httpx.Response:
        """
        Send a streaming request and return the response with its body unread.

        The caller decodes and parses the body and must close the response.

        Raises:
            LLMValidationError: Connection is unusable for this provider
            LLMTimeoutError: No response headers within the connection timeout
            LLMHTTPError: Non-2xx status code
        """
        request = self.build_request(connection, messages, options, stream=True)

        logger.info(f"🤖 LLM [{self.provider_name}]: Streaming request to model '{connection.model}'")

        return await self._dispatch(request, connection.timeout, stream=True)

    async def test_connection(self, connection: Connection) -> ConnectionTestResult:
        """
        Probe the backend's model listing endpoint.

        Never raises; failures are reported in the result.
        """
        try:
            response = await self.client.get(
                self.models_url(connection),
                headers=self.build_headers(connection),
                timeout=connection.timeout,
            )
        except Exception as e:
            logger.warning(f"🤖 LLM [{self.provider_name}]: Connection test failed - {e}")
            return ConnectionTestResult(success=False, status=0, message=str(e))

        if response.is_success:
            logger.info(f"🤖 LLM [{self.provider_name}]: Connection test passed")
            return ConnectionTestResult(
                success=True,
                status=response.status_code,
                message="Connection successful",
            )

        return ConnectionTestResult(
            success=False,
            status=response.status_code,
            message=f"HTTP {response.status_code}",
        )

    async def close(self):
        """Close HTTP client (only if this provider created it)."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
