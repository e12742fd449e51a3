"""
OpenAI provider implementation.

Talks to the OpenAI Chat Completions API (or anything hosted at the same shape
that still wants a credential).
"""

from typing import Any, Dict

from llamb.config.logging_config import get_logger
from llamb.llm.base import LLMProvider, is_local_endpoint
from llamb.llm.types import (
    Connection,
    ConnectionFeatures,
    LLMInvalidResponseError,
    LLMValidationError,
    NormalizedResponse,
    ProviderType,
    StreamFormat,
)

logger = get_logger(__name__)


class OpenAIProvider(LLMProvider):
    """
    OpenAI Chat Completions provider.

    POST {endpoint}/chat/completions with a bearer credential; streams
    newline-delimited SSE frames terminated by `data: [DONE]`.
    """

    provider_type = ProviderType.OPENAI
    display_name = "OpenAI"
    stream_format = StreamFormat.OPENAI_SSE
    supported_features = ConnectionFeatures(
        streaming=True,
        reasoning=False,
        thinking=False,
        function_calling=True,
        vision=True,
    )

    def validate_connection(self, connection: Connection) -> None:
        """
        Require endpoint, model, and a credential unless the endpoint is local.

        Raises:
            LLMValidationError: Missing field
        """
        super().validate_connection(connection)

        if not connection.api_key and not is_local_endpoint(connection.endpoint):
            raise LLMValidationError(f"API key is required for {self.display_name}")

    def chat_url(self, connection: Connection) -> str:
        return f"{connection.endpoint.rstrip('/')}/chat/completions"

    def format_response(self, data: Dict[str, Any]) -> NormalizedResponse:
        """
        Map a Chat Completions body to NormalizedResponse.

        Raises:
            LLMInvalidResponseError: No choices in the body
        """
        choices = data.get("choices") or []
        if not choices:
            raise LLMInvalidResponseError("No response choices received")

        choice = choices[0]
        message = choice.get("message") or {}

        return NormalizedResponse(
            content=message.get("content") or "",
            finish_reason=choice.get("finish_reason"),
            usage=data.get("usage"),
            model=data.get("model"),
        )
