"""
LlamB services: request orchestration, stream parsing and connection storage.
"""

from llamb.services.connection_store import (
    ConnectionStore,
    ConnectionStoreError,
    InMemoryConnectionStore,
)
from llamb.services.llm_manager import (
    LLMManager,
    StreamingHandle,
    generate_request_id,
)
from llamb.services.stream_parser import (
    DEFAULT_TAG_FAMILIES,
    BlockScan,
    ParseResult,
    StreamItem,
    StreamParser,
    TagFamily,
    extract_blocks,
    format_block_for_display,
)

__all__ = [
    "ConnectionStore",
    "ConnectionStoreError",
    "InMemoryConnectionStore",
    "LLMManager",
    "StreamingHandle",
    "generate_request_id",
    "DEFAULT_TAG_FAMILIES",
    "BlockScan",
    "ParseResult",
    "StreamItem",
    "StreamParser",
    "TagFamily",
    "extract_blocks",
    "format_block_for_display",
]
