"""
Factory for LLM provider instances.

Each factory owns its own provider registry and shared HTTP client, so two
managers (or two tests) never share provider state.
"""

from typing import Dict, List, Optional, Type

import httpx

from llamb.config.logging_config import get_logger
from llamb.llm.anthropic import AnthropicProvider
from llamb.llm.base import LLMProvider, create_http_client
from llamb.llm.openai import OpenAIProvider
from llamb.llm.openai_compatible import OpenAICompatibleProvider
from llamb.llm.types import ProviderType

logger = get_logger(__name__)


PROVIDER_CLASSES: Dict[ProviderType, Type[LLMProvider]] = {
    ProviderType.OPENAI: OpenAIProvider,
    ProviderType.OPENAI_COMPATIBLE: OpenAICompatibleProvider,
    ProviderType.ANTHROPIC: AnthropicProvider,
}


class LLMProviderFactory:
    """
    Resolves connection type tags to provider instances.

    Supports:
    - 'openai': OpenAI Chat Completions (credential required for remote endpoints)
    - 'openai-compatible': Ollama, LM Studio, vLLM, ... (no credential required)
    - 'anthropic': Anthropic Messages API (credential always required)

    Unknown type tags resolve to the OpenAI-compatible provider.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the factory.

        Args:
            client: HTTP client shared by all providers (created if omitted)
        """
        self._owns_client = client is None
        self.client = client or create_http_client()
        self._providers: Dict[ProviderType, LLMProvider] = {
            provider_type: provider_class(client=self.client)
            for provider_type, provider_class in PROVIDER_CLASSES.items()
        }

    @staticmethod
    def resolve_type(type_tag: Optional[str]) -> ProviderType:
        """
        Map a connection type tag to a ProviderType.

        Args:
            type_tag: Tag from Connection.type (case-insensitive)

        Returns:
            ProviderType: Known type, or OPENAI_COMPATIBLE for anything else
        """
        normalized = (type_tag or "").lower().strip()
        try:
            return ProviderType(normalized)
        except ValueError:
            logger.warning(
                f"🤖 LLM Factory: Unknown provider type '{type_tag}', using openai-compatible"
            )
            return ProviderType.OPENAI_COMPATIBLE

    def get_provider(self, type_tag: Optional[str]) -> LLMProvider:
        """Return the provider instance for a connection type tag."""
        return self._providers[self.resolve_type(type_tag)]

    def list_providers(self) -> List[str]:
        """Return the known type tags."""
        return [provider_type.value for provider_type in self._providers]

    async def close(self):
        """Close the shared HTTP client (only if this factory created it)."""
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
