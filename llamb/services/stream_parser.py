"""
Incremental Stream Parser for LLM output

Turns a sequence of arbitrary text chunks into visible content plus complete
side-channel blocks (<thinking>, <reasoning>, ...), holding back anything that
might still turn into a block:
- A start tag whose end tag has not arrived yet
- A trailing fragment that could become a start tag (`<thin`, `<thinking a="`)

Partial tags never leak into visible output. At end of stream, whatever is
still held back is released verbatim so no model output is lost.

The parser also decodes provider streaming envelopes (OpenAI SSE, Anthropic
SSE, raw text) before running block extraction. Use one parser per request.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from llamb.config.logging_config import get_logger
from llamb.config.settings import get_llm_settings
from llamb.llm.types import LLMParseError, StreamFormat
from llamb.types.stream_events import BlockType, SpecialBlock

logger = get_logger(__name__)


@dataclass(frozen=True)
class TagFamily:
    """One tag spelling and the block type it produces."""

    tag: str
    block_type: BlockType
    start_pattern: "re.Pattern[str]" = field(init=False, repr=False, compare=False)
    end_pattern: "re.Pattern[str]" = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        tag = re.escape(self.tag)
        # Attributes are allowed after whitespace: <thinking mode="deep">
        object.__setattr__(self, "start_pattern", re.compile(rf"<{tag}(?:\s[^>]*)?>", re.IGNORECASE))
        object.__setattr__(self, "end_pattern", re.compile(rf"</{tag}\s*>", re.IGNORECASE))


DEFAULT_TAG_FAMILIES = (
    TagFamily("reasoning", BlockType.REASONING),
    TagFamily("thinking", BlockType.THINKING),
    # Some models use different spellings
    TagFamily("thought", BlockType.THINKING),
    TagFamily("reflection", BlockType.REASONING),
)


@dataclass
class BlockScan:
    """Result of one pass of extract_blocks()."""

    blocks: List[SpecialBlock]
    content: str
    remainder: str


@dataclass
class ParseResult:
    """Visible content and blocks produced by one parser call."""

    content: str = ""
    blocks: List[SpecialBlock] = field(default_factory=list)


@dataclass
class StreamItem:
    """
    One decoded unit of a provider stream.

    kind:
        content: visible text and/or completed blocks
        finish:  provider reported a finish/stop reason
        done:    end-of-stream marker
        error:   provider reported an in-stream error
    """

    kind: str
    content: str = ""
    blocks: List[SpecialBlock] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None
    error: Optional[str] = None


def _find_start_tag(buffer: str, pos: int, families: Sequence[TagFamily]):
    """Earliest complete start tag at or after pos, as (match, family)."""
    earliest = None
    for family in families:
        match = family.start_pattern.search(buffer, pos)
        if match and (earliest is None or match.start() < earliest[0].start()):
            earliest = (match, family)
    return earliest


def _partial_start_index(text: str, families: Sequence[TagFamily]) -> Optional[int]:
    """
    Index of the first '<' in text that could still grow into a start tag.

    A candidate has no '>' after it and is either a prefix of `<tag` or
    `<tag` followed by whitespace (attributes still arriving).
    """
    for index, char in enumerate(text):
        if char != "<":
            continue

        fragment = text[index:]
        if ">" in fragment:
            continue

        lowered = fragment.lower()
        for family in families:
            opener = f"<{family.tag.lower()}"
            if opener.startswith(lowered):
                return index
            if lowered.startswith(opener) and lowered[len(opener)].isspace():
                return index

    return None


def extract_blocks(buffer: str, families: Sequence[TagFamily] = DEFAULT_TAG_FAMILIES) -> BlockScan:
    """
    Split buffer into visible content, complete blocks and a held-back remainder.

    Pure function: scans left to right for the earliest start tag of any family,
    then for the end tag with the same spelling. Complete spans are removed from
    the content and returned as blocks; the first start tag without an end tag
    (or a trailing partial start tag) begins the remainder.

    Everything after an unterminated start tag is held back, complete pairs of
    other families included: "x <thinking>a <reasoning>b</reasoning> y" yields
    no blocks, and flush() later releases the whole span as plain text.

    Args:
        buffer: Text to scan
        families: Tag spellings to recognize

    Returns:
        BlockScan: (blocks, content, remainder)
    """
    blocks: List[SpecialBlock] = []
    visible: List[str] = []
    pos = 0

    while True:
        found = _find_start_tag(buffer, pos, families)
        if found is None:
            break

        start, family = found
        visible.append(buffer[pos:start.start()])

        end = family.end_pattern.search(buffer, start.end())
        if end is None:
            # Unterminated block - hold everything from the start tag on
            return BlockScan(blocks=blocks, content="".join(visible), remainder=buffer[start.start():])

        blocks.append(SpecialBlock(
            type=family.block_type,
            content=buffer[start.end():end.start()].strip(),
            tag=family.tag,
            start_pos=start.start(),
            end_pos=end.end(),
            raw=buffer[start.start():end.end()],
        ))
        pos = end.end()

    tail = buffer[pos:]
    hold = _partial_start_index(tail, families)
    if hold is None:
        visible.append(tail)
        remainder = ""
    else:
        visible.append(tail[:hold])
        remainder = tail[hold:]

    return BlockScan(blocks=blocks, content="".join(visible), remainder=remainder)


def _load_sse_payload(data: str) -> Dict[str, Any]:
    """
    Decode the JSON payload of one SSE data line.

    Raises:
        LLMParseError: Invalid JSON or not a JSON object
    """
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise LLMParseError(f"Invalid JSON in SSE line: {e}") from e

    if not isinstance(payload, dict):
        raise LLMParseError(f"Unexpected SSE payload type: {type(payload).__name__}")

    return payload


class StreamParser:
    """
    Incremental parser for one streamed LLM response.

    Example usage:
        parser = StreamParser()

        result = parser.feed("hello <thinking>wor")
        # result.content == "hello ", result.blocks == []

        result = parser.feed("ld</thinking> bye")
        # result.content == " bye", result.blocks[0].content == "world"

        # At end of stream, release anything still held back
        tail = parser.flush()
    """

    def __init__(self, tag_families: Sequence[TagFamily] = DEFAULT_TAG_FAMILIES):
        """
        Initialize stream parser.

        Args:
            tag_families: Tag spellings to extract as blocks
        """
        self.tag_families = tuple(tag_families)
        self.buffer = ""  # Carry-over text not yet released
        self.pending_line = ""  # Partial SSE line waiting for its newline

    # ------------------------------------------------------------
    # Block extraction
    # ------------------------------------------------------------

    def feed(self, chunk: str) -> ParseResult:
        """
        Add a text chunk and return newly visible content and completed blocks.

        Args:
            chunk: Decoded model text (not an SSE envelope)

        Returns:
            ParseResult: content released by this call, blocks completed by this call
        """
        if not chunk:
            return ParseResult()

        scan = extract_blocks(self.buffer + chunk, self.tag_families)
        self.buffer = scan.remainder

        if scan.blocks:
            logger.debug(f"🧩 Parser: Extracted {len(scan.blocks)} block(s): {[b.type for b in scan.blocks]}")
        if scan.remainder:
            logger.trace(f"🧩 Parser: Holding back {len(scan.remainder)} chars")

        return ParseResult(content=scan.content, blocks=scan.blocks)

    def flush(self) -> ParseResult:
        """
        Release held-back text at end of stream.

        An unterminated block is returned verbatim (tags included) as visible
        content; it is never recorded as a block.
        """
        remainder = self.buffer
        self.buffer = ""

        if remainder:
            logger.debug(f"🧩 Parser: Releasing {len(remainder)} chars of unterminated block at end of stream")

        return ParseResult(content=remainder)

    def parse_complete_response(self, response: str) -> ParseResult:
        """
        Parse a complete (non-streaming) response in one shot.

        Equivalent to reset(), feed(response), flush().
        """
        self.reset()
        result = self.feed(response)
        tail = self.flush()
        return ParseResult(content=result.content + tail.content, blocks=result.blocks)

    def reset(self):
        """Reset parser state for a new request"""
        self.buffer = ""
        self.pending_line = ""

    def get_state(self) -> Dict[str, str]:
        """Current buffers (for debugging)."""
        return {"buffer": self.buffer, "pending_line": self.pending_line}

    # ------------------------------------------------------------
    # Provider envelopes
    # ------------------------------------------------------------

    def parse_chunk(self, chunk: str, stream_format: StreamFormat = StreamFormat.OPENAI_SSE) -> List[StreamItem]:
        """
        Decode one network chunk of a provider stream.

        SSE lines split across chunks are held in pending_line until their
        newline arrives.

        Args:
            chunk: Decoded text from the response body
            stream_format: Envelope format of the body

        Returns:
            List of StreamItems in arrival order
        """
        if stream_format == StreamFormat.RAW:
            result = self.feed(chunk)
            return [StreamItem(kind="content", content=result.content, blocks=result.blocks)]

        self.pending_line += chunk
        lines = self.pending_line.split("\n")
        self.pending_line = lines.pop()

        items: List[StreamItem] = []
        for line in lines:
            items.extend(self.parse_sse_line(line, stream_format))
        return items

    def finish(self, stream_format: StreamFormat = StreamFormat.OPENAI_SSE) -> List[StreamItem]:
        """Decode a final SSE line that arrived without a trailing newline."""
        line = self.pending_line
        self.pending_line = ""

        if not line or stream_format == StreamFormat.RAW:
            return []
        return self.parse_sse_line(line, stream_format)

    def parse_sse_line(self, line: str, stream_format: StreamFormat = StreamFormat.OPENAI_SSE) -> List[StreamItem]:
        """
        Decode one SSE line.

        Only `data:` lines carry payloads; `event:`, comments and blank lines
        are ignored. A malformed JSON payload is logged and skipped.
        """
        line = line.strip()
        if not line.startswith("data:"):
            return []

        data = line[5:].strip()
        logger.trace(f"🔍 Parser: SSE data: {data[:200]}")

        if data == "[DONE]":
            return [StreamItem(kind="done")]

        try:
            payload = _load_sse_payload(data)
        except LLMParseError as e:
            logger.warning(f"🧩 Parser: Skipping malformed SSE line: {e}, data: {data[:100]}")
            return []

        if stream_format == StreamFormat.ANTHROPIC_SSE:
            return self._parse_anthropic_payload(payload)
        return self._parse_openai_payload(payload)

    def _parse_openai_payload(self, payload: Dict[str, Any]) -> List[StreamItem]:
        """
        OpenAI format:
        data: {"choices":[{"delta":{"content":"hello"},"finish_reason":null}],"model":"gpt-4o"}
        """
        choices = payload.get("choices") or []
        if not choices:
            return []

        choice = choices[0]
        delta = choice.get("delta") or {}
        content = delta.get("content")
        finish_reason = choice.get("finish_reason")

        items: List[StreamItem] = []
        if content:
            result = self.feed(content)
            items.append(StreamItem(
                kind="content",
                content=result.content,
                blocks=result.blocks,
                metadata={
                    "model": payload.get("model"),
                    "finish_reason": finish_reason,
                    "index": choice.get("index"),
                },
            ))

        if finish_reason:
            items.append(StreamItem(kind="finish", reason=finish_reason))

        return items

    def _parse_anthropic_payload(self, payload: Dict[str, Any]) -> List[StreamItem]:
        """
        Anthropic format (typed events):
        data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"hello"}}
        data: {"type":"message_delta","delta":{"stop_reason":"end_turn"}}
        data: {"type":"message_stop"}
        """
        event_type = payload.get("type")

        if event_type == "content_block_delta":
            text = (payload.get("delta") or {}).get("text") or ""
            if not text:
                return []
            result = self.feed(text)
            return [StreamItem(
                kind="content",
                content=result.content,
                blocks=result.blocks,
                metadata={"type": event_type, "index": payload.get("index")},
            )]

        if event_type == "message_delta":
            stop_reason = (payload.get("delta") or {}).get("stop_reason")
            return [StreamItem(kind="finish", reason=stop_reason)] if stop_reason else []

        if event_type == "message_stop":
            return [StreamItem(kind="done")]

        if event_type == "error":
            error = payload.get("error") or {}
            return [StreamItem(
                kind="error",
                error=f"{error.get('type', 'unknown')}: {error.get('message', '')}",
            )]

        # ping, message_start, content_block_start/stop carry no text
        return []


def format_block_for_display(block: SpecialBlock, show_blocks: Optional[bool] = None) -> str:
    """
    Render a block as markdown for the chat transcript.

    Args:
        block: Extracted block
        show_blocks: When False, thinking/reasoning blocks render as "".
            Defaults to LLMSettings.show_thinking_blocks

    Returns:
        Markdown text, e.g. "\\n\\n🤔 **Thinking:**\\n<content>\\n"
    """
    if show_blocks is None:
        show_blocks = get_llm_settings().show_thinking_blocks

    block_type = BlockType(block.type).value
    if not show_blocks and block_type in (BlockType.THINKING.value, BlockType.REASONING.value):
        return ""

    label = block.tag if block.tag == "reflection" else block_type
    emoji = {
        "thinking": "🤔",
        "reasoning": "🧠",
        "reflection": "💭",
    }.get(label, "💡")

    return f"\n\n{emoji} **{label.capitalize()}:**\n{block.content}\n"
