"""
Anthropic Messages API provider.

Differs from the OpenAI family in three places:
- system messages move to a top-level `system` string
- credentials go in `x-api-key` plus an `anthropic-version` header
- streaming frames are typed events; text arrives in `content_block_delta`
"""

from typing import Any, Dict, List, Tuple

from llamb.config.logging_config import get_logger
from llamb.llm.base import LLMProvider
from llamb.llm.types import (
    Connection,
    ConnectionFeatures,
    LLMInvalidResponseError,
    LLMMessage,
    LLMValidationError,
    MessageOptions,
    NormalizedResponse,
    ProviderType,
    StreamFormat,
)

logger = get_logger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API provider."""

    provider_type = ProviderType.ANTHROPIC
    display_name = "Anthropic"
    stream_format = StreamFormat.ANTHROPIC_SSE
    supported_features = ConnectionFeatures(
        streaming=True,
        reasoning=True,
        thinking=True,
        function_calling=False,
        vision=True,
    )

    def validate_connection(self, connection: Connection) -> None:
        super().validate_connection(connection)

        if not connection.api_key:
            raise LLMValidationError("API key is required for Anthropic")

    def _api_base(self, connection: Connection) -> str:
        base = connection.endpoint.rstrip("/")
        return base if base.endswith("/v1") else f"{base}/v1"

    def chat_url(self, connection: Connection) -> str:
        return f"{self._api_base(connection)}/messages"

    def models_url(self, connection: Connection) -> str:
        return f"{self._api_base(connection)}/models"

    def build_headers(self, connection: Connection) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": connection.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            **connection.custom_headers,
        }

    @staticmethod
    def split_system(messages: List[LLMMessage]) -> Tuple[str, List[Dict[str, str]]]:
        """
        Separate system messages from the conversation.

        Returns:
            tuple: (system text joined by newlines, user/assistant wire messages)
        """
        system_parts = []
        chat_messages = []

        for message in messages:
            if message.role == "system":
                system_parts.append(message.content)
            else:
                chat_messages.append({"role": message.role, "content": message.content})

        return "\n".join(system_parts).strip(), chat_messages

    def build_body(
        self,
        connection: Connection,
        messages: List[LLMMessage],
        options: MessageOptions,
        stream: bool,
    ) -> Dict[str, Any]:
        system, chat_messages = self.split_system(messages)
        body = self._default_body(connection, chat_messages, options, stream)

        if system:
            body["system"] = system

        return body

    def format_response(self, data: Dict[str, Any]) -> NormalizedResponse:
        """
        Map a Messages API body to NormalizedResponse.

        Raises:
            LLMInvalidResponseError: No content blocks in the body
        """
        blocks = data.get("content") or []
        if not blocks:
            raise LLMInvalidResponseError("No content received")

        text = "".join(
            block.get("text", "") for block in blocks if block.get("type", "text") == "text"
        )

        return NormalizedResponse(
            content=text,
            finish_reason=data.get("stop_reason"),
            usage=data.get("usage"),
            model=data.get("model"),
        )
