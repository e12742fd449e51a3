"""
LlamB Stream Event System

Purpose: Typed payloads published by the LLMManager while a request runs.
UI layers subscribe by event name (streamChunk, streamEnd, ...) or iterate
over LLMManager.stream_message() directly.

Lifecycle per request:
- Streaming: streamStart → streamChunk* → streamEnd | streamError
- Single-shot: messageStart → messageComplete | messageError
- Either path may end early with requestCancelled

Design Pattern: Observer Pattern - the manager emits events, listeners render them
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class EventName(str, Enum):
    """Event names accepted by LLMManager.on() / off()"""

    STREAM_START = "streamStart"
    STREAM_CHUNK = "streamChunk"
    STREAM_END = "streamEnd"
    STREAM_ERROR = "streamError"
    MESSAGE_START = "messageStart"
    MESSAGE_COMPLETE = "messageComplete"
    MESSAGE_ERROR = "messageError"
    REQUEST_CANCELLED = "requestCancelled"


class BlockType(str, Enum):
    """Side-channel block types extracted from model output"""

    THINKING = "thinking"
    REASONING = "reasoning"


class SpecialBlock(BaseModel):
    """
    A complete tagged span removed from the visible output.

    Attributes:
        type: Block type (thinking or reasoning)
        content: Inner text, trimmed
        tag: Tag spelling that produced the block (thinking, thought, ...)
        start_pos: Start offset in the parser buffer at extraction time
        end_pos: End offset in the parser buffer at extraction time
        raw: Full span including tags
    """

    type: BlockType
    content: str
    tag: Optional[str] = None
    start_pos: Optional[int] = None
    end_pos: Optional[int] = None
    raw: Optional[str] = None

    class Config:
        frozen = True
        use_enum_values = True


class StreamStartEvent(BaseModel):
    event_type: Literal["streamStart"] = "streamStart"
    request_id: str
    connection: str = Field(..., description="Display name of the connection used")


class StreamChunkEvent(BaseModel):
    """One increment of visible content and/or newly completed blocks."""

    event_type: Literal["streamChunk"] = "streamChunk"
    request_id: str
    content: str = Field(default="", description="Visible content added by this chunk")
    blocks: List[SpecialBlock] = Field(default_factory=list, description="Blocks completed by this chunk")
    full_content: str = Field(default="", description="All visible content so far")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StreamEndEvent(BaseModel):
    event_type: Literal["streamEnd"] = "streamEnd"
    request_id: str
    full_content: str = ""
    blocks: List[SpecialBlock] = Field(default_factory=list, description="Every block of the response")
    finish_reason: Optional[str] = None


class StreamErrorEvent(BaseModel):
    event_type: Literal["streamError"] = "streamError"
    request_id: str
    error: str = Field(..., description="Human-readable error description")
    error_type: str = Field(default="LLMError", description="Exception class name")


class MessageStartEvent(BaseModel):
    event_type: Literal["messageStart"] = "messageStart"
    request_id: str
    connection: str


class MessageCompleteEvent(BaseModel):
    """Result of a single-shot request; also the return value of send_message()."""

    event_type: Literal["messageComplete"] = "messageComplete"
    request_id: str
    type: Literal["complete"] = "complete"
    content: str = ""
    blocks: List[SpecialBlock] = Field(default_factory=list)
    usage: Optional[Dict[str, Any]] = None
    model: Optional[str] = None
    finish_reason: Optional[str] = None


class MessageErrorEvent(BaseModel):
    event_type: Literal["messageError"] = "messageError"
    request_id: str
    error: str
    error_type: str = "LLMError"


class RequestCancelledEvent(BaseModel):
    event_type: Literal["requestCancelled"] = "requestCancelled"
    request_id: str


StreamEvent = Union[StreamStartEvent, StreamChunkEvent, StreamEndEvent, StreamErrorEvent]
