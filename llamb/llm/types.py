"""
Type definitions for the LLM provider abstraction layer.

Connections are read-only snapshots handed to providers per call; messages and
requests are immutable once built.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class ProviderType(str, Enum):
    """Supported provider families"""
    OPENAI = "openai"
    OPENAI_COMPATIBLE = "openai-compatible"
    ANTHROPIC = "anthropic"


class StreamFormat(str, Enum):
    """Wire format of a streaming response body"""
    OPENAI_SSE = "openai-sse"
    ANTHROPIC_SSE = "anthropic-sse"
    RAW = "raw"


class ConnectionFeatures(BaseModel):
    """Capability set declared for a connection."""

    streaming: bool = Field(default=True, description="Backend supports SSE streaming")
    reasoning: bool = Field(default=False, description="Model emits <reasoning> tags")
    thinking: bool = Field(default=False, description="Model emits <thinking> tags")
    function_calling: bool = Field(default=False, description="Backend supports tool calls")
    vision: bool = Field(default=False, description="Backend accepts images")
    context_window: Optional[int] = Field(default=4096, ge=1, description="Context window hint (tokens)")

    class Config:
        frozen = True


class Connection(BaseModel):
    """
    One reachable LLM backend.

    Created and edited by the settings layer; providers and the manager only ever
    read a snapshot of it for the duration of one request.
    """

    id: str = Field(..., description="Connection identifier")
    name: str = Field(default="New Connection", description="Display name")
    type: str = Field(default=ProviderType.OPENAI_COMPATIBLE.value, description="Provider type tag")
    endpoint: str = Field(default="", description="Base endpoint URL")
    api_key: Optional[str] = Field(default=None, description="Opaque bearer credential")
    model: str = Field(default="", description="Model identifier")
    features: ConnectionFeatures = Field(default_factory=ConnectionFeatures)
    custom_headers: Dict[str, str] = Field(default_factory=dict, description="Extra HTTP headers")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    enabled: bool = Field(default=True)
    priority: int = Field(default=1, description="Fallback order (lower first)")

    class Config:
        frozen = True


class LLMMessage(BaseModel):
    """A message in the conversation."""

    role: Literal["system", "user", "assistant"] = Field(..., description="Message role")
    content: str = Field(..., description="Message content")

    class Config:
        frozen = True  # Immutable


class PageContext(BaseModel):
    """
    Page data captured by the content script.

    Treated as opaque text; the manager only splices it into a system message.
    """

    url: Optional[str] = None
    title: Optional[str] = None
    selected_text: Optional[str] = None
    markdown_content: Optional[str] = None
    visible_text: Optional[str] = None
    plugin_content: Optional[str] = None


class MessageOptions(BaseModel):
    """Per-call options for sending a message."""

    streaming: Optional[bool] = Field(default=None, description="None = use settings default")
    include_context: Optional[bool] = Field(default=None, description="None = use settings default")
    system_message: Optional[str] = None
    conversation_history: List[LLMMessage] = Field(default_factory=list)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    enable_reasoning: bool = False
    enable_thinking: bool = False

    class Config:
        frozen = True


class HttpRequest(BaseModel):
    """Provider-specific HTTP request, ready to send."""

    url: str
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Dict[str, Any] = Field(default_factory=dict)


class NormalizedResponse(BaseModel):
    """Single-shot response mapped to a provider-neutral shape."""

    content: str = ""
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None
    model: Optional[str] = None


class ConnectionTestResult(BaseModel):
    """Outcome of probing a connection's model listing endpoint."""

    success: bool
    status: int = 0
    message: str = ""


class LLMError(Exception):
    """Base exception for LLM provider errors."""
    pass


class LLMValidationError(LLMError):
    """Connection is missing a required field (endpoint, model, credential)."""
    pass


class LLMHTTPError(LLMError):
    """Backend answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class LLMAuthenticationError(LLMHTTPError):
    """LLM authentication error (401/403)."""
    pass


class LLMRateLimitError(LLMHTTPError):
    """LLM rate limit exceeded error (429)."""
    pass


class LLMTimeoutError(LLMError):
    """LLM request timeout error."""
    pass


class LLMConnectionError(LLMError):
    """LLM connection/network error."""
    pass


class LLMInvalidResponseError(LLMError):
    """Response body did not have the expected shape."""
    pass


class LLMParseError(LLMError):
    """A single SSE line could not be decoded."""
    pass


class LLMStreamError(LLMError):
    """Reading or decoding a response stream failed."""
    pass


class NoActiveConnectionError(LLMError):
    """No active LLM connection configured."""
    pass


class NoEnabledConnectionsError(LLMError):
    """Fallback requested but no connection is enabled."""
    pass


class RequestCancelledError(LLMError):
    """The request was cancelled before it produced a result."""
    pass
