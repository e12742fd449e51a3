"""
LlamB Types Module

Event payloads and block types published by the orchestrator
"""

from .stream_events import (
    BlockType,
    EventName,
    MessageCompleteEvent,
    MessageErrorEvent,
    MessageStartEvent,
    RequestCancelledEvent,
    SpecialBlock,
    StreamChunkEvent,
    StreamEndEvent,
    StreamErrorEvent,
    StreamEvent,
    StreamStartEvent,
)

__all__ = [
    "BlockType",
    "EventName",
    "MessageCompleteEvent",
    "MessageErrorEvent",
    "MessageStartEvent",
    "RequestCancelledEvent",
    "SpecialBlock",
    "StreamChunkEvent",
    "StreamEndEvent",
    "StreamErrorEvent",
    "StreamEvent",
    "StreamStartEvent",
]
