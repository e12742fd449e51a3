"""
LLM Provider Abstraction Layer for LlamB

This package provides a unified interface for the supported LLM backends
(OpenAI, OpenAI-compatible servers, Anthropic) with streaming support.
"""

from llamb.llm.base import LLMProvider, is_local_endpoint
from llamb.llm.factory import LLMProviderFactory
from llamb.llm.anthropic import AnthropicProvider
from llamb.llm.openai import OpenAIProvider
from llamb.llm.openai_compatible import OpenAICompatibleProvider
from llamb.llm.types import (
    Connection,
    ConnectionFeatures,
    ConnectionTestResult,
    HttpRequest,
    LLMMessage,
    MessageOptions,
    NormalizedResponse,
    PageContext,
    ProviderType,
    StreamFormat,
    LLMError,
    LLMValidationError,
    LLMHTTPError,
    LLMAuthenticationError,
    LLMRateLimitError,
    LLMTimeoutError,
    LLMConnectionError,
    LLMInvalidResponseError,
    LLMParseError,
    LLMStreamError,
    NoActiveConnectionError,
    NoEnabledConnectionsError,
    RequestCancelledError,
)

__all__ = [
    "LLMProvider",
    "LLMProviderFactory",
    "OpenAIProvider",
    "OpenAICompatibleProvider",
    "AnthropicProvider",
    "is_local_endpoint",
    "Connection",
    "ConnectionFeatures",
    "ConnectionTestResult",
    "HttpRequest",
    "LLMMessage",
    "MessageOptions",
    "NormalizedResponse",
    "PageContext",
    "ProviderType",
    "StreamFormat",
    "LLMError",
    "LLMValidationError",
    "LLMHTTPError",
    "LLMAuthenticationError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "LLMConnectionError",
    "LLMInvalidResponseError",
    "LLMParseError",
    "LLMStreamError",
    "NoActiveConnectionError",
    "NoEnabledConnectionsError",
    "RequestCancelledError",
]
