"""
OpenAI-compatible provider for self-hosted and third-party endpoints.

Supports any service that implements the OpenAI Chat Completions API:
- Ollama (http://localhost:11434/v1)
- vLLM (http://localhost:8000/v1)
- LM Studio (http://localhost:1234/v1)
- LocalAI (http://localhost:8080/v1)
- Text Generation WebUI (http://localhost:5000/v1)

Many of these servers vary or omit the /v1 path segment, so a "not found" from
an endpoint without it is retried once against `endpoint + "/v1"`.
"""

from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from llamb.config.logging_config import get_logger
from llamb.llm.base import LLMProvider
from llamb.llm.openai import OpenAIProvider
from llamb.llm.types import (
    Connection,
    ConnectionFeatures,
    LLMHTTPError,
    LLMMessage,
    MessageOptions,
    NormalizedResponse,
    ProviderType,
)

logger = get_logger(__name__)

T = TypeVar("T")

REASONING_HINT = "When needed, use <reasoning></reasoning> tags to show your thought process."
THINKING_HINT = "When needed, use <thinking></thinking> tags for internal thoughts."


def _is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, LLMHTTPError) and exc.status_code == 404


class OpenAICompatibleProvider(OpenAIProvider):
    """
    Provider for OpenAI-compatible servers (Ollama, LM Studio, vLLM, ...).

    Differences from OpenAIProvider:
    - No credential required
    - Optional reasoning/thinking tag instructions in the system prompt
    - One retry against `/v1` when the endpoint answers 404
    """

    provider_type = ProviderType.OPENAI_COMPATIBLE
    display_name = "OpenAI Compatible"
    supported_features = ConnectionFeatures(
        streaming=True,
        reasoning=True,  # Many local models support reasoning
        thinking=True,  # Many local models support thinking
        function_calling=False,  # Varies by model
        vision=False,  # Varies by model
    )

    def validate_connection(self, connection: Connection) -> None:
        # Don't require API key for local models
        LLMProvider.validate_connection(self, connection)

    def format_messages(
        self,
        messages: List[LLMMessage],
        connection: Connection,
        options: MessageOptions,
    ) -> List[Dict[str, str]]:
        """Add reasoning/thinking tag instructions to the system prompt when enabled."""
        wire_messages = super().format_messages(messages, connection, options)

        hints = []
        if connection.features.reasoning and options.enable_reasoning:
            hints.append(REASONING_HINT)
        if connection.features.thinking and options.enable_thinking:
            hints.append(THINKING_HINT)

        if not hints:
            return wire_messages

        hint_text = "\n\n".join(hints)
        for message in wire_messages:
            if message["role"] == "system":
                message["content"] = f"{message['content']}\n\n{hint_text}"
                return wire_messages

        return [{"role": "system", "content": hint_text}] + wire_messages

    async def _with_path_fallback(
        self,
        connection: Connection,
        call: Callable[[Connection], Awaitable[T]],
    ) -> T:
        """
        Run call(connection), retrying once with `/v1` appended on 404.

        Endpoints that already contain `/v1` are not retried.
        """
        if "/v1" in connection.endpoint:
            return await call(connection)

        fallback = connection.model_copy(
            update={"endpoint": connection.endpoint.rstrip("/") + "/v1"}
        )

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(2),
            retry=retry_if_exception(_is_not_found),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number == 1:
                    target = connection
                else:
                    logger.warning(
                        f"🤖 LLM [{self.provider_name}]: 404 from {connection.endpoint}, "
                        f"retrying with {fallback.endpoint}"
                    )
                    target = fallback
                result = await call(target)

        return result

    async def send_message(
        self,
        connection: Connection,
        messages: List[LLMMessage],
        options: Optional[MessageOptions] = None,
    ) -> NormalizedResponse:
        async def _send(target: Connection) -> NormalizedResponse:
            return await OpenAIProvider.send_message(self, target, messages, options)

        return await self._with_path_fallback(connection, _send)

    async def send_streaming_message(
        self,
        connection: Connection,
        messages: List[LLMMessage],
        options: Optional[MessageOptions] = None,
    ) -> httpx.Response:
        async def _send(target: Connection) -> httpx.Response:
            return await OpenAIProvider.send_streaming_message(self, target, messages, options)

        return await self._with_path_fallback(connection, _send)
