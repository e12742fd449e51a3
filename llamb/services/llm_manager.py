"""
LLM Manager - Request orchestration with streaming events

Business logic for sending a user prompt (plus optional page context) to the
active connection and republishing progress as named events.

Responsibilities:
- Build the provider-neutral message list (system prompt, page context, history)
- Pick the provider for the connection's type tag
- Drive a per-request StreamParser over the response body
- Publish streamStart/streamChunk/streamEnd/streamError (streaming) or
  messageStart/messageComplete/messageError (single-shot)
- Track in-flight requests for cancellation
- Walk enabled connections in priority order (fallback entry point)

Every request ends in exactly one terminal outcome:
- Streaming: streamEnd xor streamError
- Single-shot: messageComplete (returned) xor messageError (raised)
- Either: requestCancelled when cancel_request() wins the race

Design Patterns:
- Factory pattern: LLMProviderFactory resolves type tags to providers
- Observer pattern: on/off/emit listener registry, owned per instance
- Iterator pattern: stream_message() yields events without any listeners
"""

import asyncio
import inspect
import time
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Iterator, List, Optional, Union

import httpx

from llamb.config.logging_config import get_logger
from llamb.config.settings import LLMSettings, get_llm_settings
from llamb.llm import (
    Connection,
    LLMError,
    LLMMessage,
    LLMProvider,
    LLMProviderFactory,
    LLMStreamError,
    LLMTimeoutError,
    MessageOptions,
    NoActiveConnectionError,
    NoEnabledConnectionsError,
    PageContext,
    RequestCancelledError,
    StreamFormat,
)
from llamb.services.connection_store import ConnectionStore
from llamb.services.stream_parser import StreamItem, StreamParser
from llamb.types.stream_events import (
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

logger = get_logger(__name__)


VISIBLE_TEXT_LIMIT = 2000

Listener = Callable[[Any], Any]


def generate_request_id() -> str:
    """Time-based request id with a random suffix (e.g. req_18f3a2b4c5d_9f86d081)."""
    return f"req_{int(time.time() * 1000):x}_{uuid.uuid4().hex[:8]}"


@dataclass
class ActiveRequest:
    """Bookkeeping for one in-flight request."""
    request_id: str
    connection_name: str
    streaming: bool
    task: Optional[asyncio.Task] = None
    started_at: float = field(default_factory=time.monotonic)


@dataclass
class StreamingHandle:
    """
    Returned by send_message() on the streaming path.

    The body is consumed by `task`; events arrive through listeners.
    Awaiting the task waits for streamEnd/streamError.
    """
    request_id: str
    task: asyncio.Task
    type: str = "streaming"


@dataclass
class _StreamAccumulator:
    """Per-request fullContent/blocks accumulator."""
    request_id: str
    full_content: str = ""
    blocks: List[SpecialBlock] = field(default_factory=list)
    finish_reason: Optional[str] = None
    done: bool = False

    def chunk(self, content: str, blocks: List[SpecialBlock], metadata: Optional[Dict[str, Any]] = None) -> Optional[StreamChunkEvent]:
        if not content and not blocks:
            return None

        self.full_content += content
        self.blocks.extend(blocks)
        return StreamChunkEvent(
            request_id=self.request_id,
            content=content,
            blocks=list(blocks),
            full_content=self.full_content,
            metadata=metadata or {},
        )

    def end(self) -> StreamEndEvent:
        return StreamEndEvent(
            request_id=self.request_id,
            full_content=self.full_content,
            blocks=list(self.blocks),
            finish_reason=self.finish_reason,
        )


class LLMManager:
    """
    Orchestrates LLM requests against the active connection.

    Example usage:
        manager = LLMManager(InMemoryConnectionStore())
        manager.on("streamChunk", lambda event: print(event.content, end=""))

        handle = await manager.send_message("Summarize this page", page_context)
        await handle.task  # streamEnd or streamError has fired

        # Or without listeners:
        async for event in manager.stream_message("hi"):
            ...
    """

    def __init__(
        self,
        connection_store: ConnectionStore,
        providers: Optional[LLMProviderFactory] = None,
        settings: Optional[LLMSettings] = None,
    ):
        """
        Initialize the manager.

        Args:
            connection_store: Source of the active / enabled connections
            providers: Provider factory (a private one is created if omitted)
            settings: Request defaults (global settings if omitted)
        """
        self.connection_store = connection_store
        self._owns_providers = providers is None
        self.providers = providers or LLMProviderFactory()
        self.settings = settings or get_llm_settings()

        self._listeners: Dict[str, List[Listener]] = {}
        self._active_requests: Dict[str, ActiveRequest] = {}

        logger.info(f"🎛️ Manager: Initialized (providers={self.providers.list_providers()})")

    # ------------------------------------------------------------
    # Events
    # ------------------------------------------------------------

    def on(self, event: Union[EventName, str], handler: Listener) -> None:
        """
        Register a listener (sync function or coroutine function).

        Raises:
            ValueError: Unknown event name
        """
        name = EventName(event).value
        self._listeners.setdefault(name, []).append(handler)

    def off(self, event: Union[EventName, str], handler: Listener) -> None:
        """Remove a listener; unknown handlers are ignored."""
        name = EventName(event).value
        handlers = self._listeners.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: Union[EventName, str], payload: Any) -> None:
        """
        Deliver payload to every listener of event, in registration order.

        A failing listener is logged and skipped; it never affects other
        listeners or the request that emitted the event.
        """
        name = EventName(event).value
        for handler in list(self._listeners.get(name, [])):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"🎛️ Manager: Listener for '{name}' failed: {e}")

    # ------------------------------------------------------------
    # Message building
    # ------------------------------------------------------------

    def format_page_context(self, page_context: PageContext) -> str:
        """Render page context as a labeled system prompt."""
        text = "Current webpage context:\n"

        if page_context.title:
            text += f"Title: {page_context.title}\n"

        if page_context.url:
            text += f"URL: {page_context.url}\n"

        if page_context.selected_text:
            text += f'\nSelected text from page:\n"{page_context.selected_text}"\n'

        # Plugin output (e.g. video captions) is kept apart from page content
        if page_context.plugin_content:
            text += f"\n## Additional extracted content:\n{page_context.plugin_content}\n"

        if page_context.markdown_content:
            text += f"\n## Page HTML content (in markdown format):\n```markdown\n{page_context.markdown_content}\n```\n"
        elif page_context.visible_text:
            visible = page_context.visible_text[:VISIBLE_TEXT_LIMIT]
            ellipsis = "..." if len(page_context.visible_text) > VISIBLE_TEXT_LIMIT else ""
            text += f"\n## Visible page text:\n{visible}{ellipsis}\n"

        text += "\nPlease consider this context when responding to the user's question."
        return text

    def build_message_array(
        self,
        text: str,
        page_context: Optional[PageContext] = None,
        options: Optional[MessageOptions] = None,
    ) -> List[LLMMessage]:
        """
        Build the provider-neutral message list.

        Order: system prompt, page context, conversation history, user message.
        """
        options = options or MessageOptions()
        messages: List[LLMMessage] = []

        if options.system_message:
            messages.append(LLMMessage(role="system", content=options.system_message))

        if page_context is not None and options.include_context is not False:
            messages.append(LLMMessage(role="system", content=self.format_page_context(page_context)))

        messages.extend(options.conversation_history)
        messages.append(LLMMessage(role="user", content=text))
        return messages

    def _resolve_options(self, options: Optional[MessageOptions]) -> MessageOptions:
        """Fill options the caller left unset from settings."""
        options = options or MessageOptions()
        defaults = {
            "streaming": self.settings.streaming_enabled,
            "include_context": self.settings.include_context,
            "max_tokens": self.settings.max_tokens,
            "temperature": self.settings.temperature,
        }
        updates = {key: value for key, value in defaults.items() if getattr(options, key) is None}
        return options.model_copy(update=updates) if updates else options

    def _require_active_connection(self) -> Connection:
        connection = self.connection_store.get_active_connection()
        if connection is None:
            raise NoActiveConnectionError("No active LLM connection configured")
        return connection

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------

    async def send_message(
        self,
        text: str,
        page_context: Optional[PageContext] = None,
        options: Optional[MessageOptions] = None,
    ) -> Union[StreamingHandle, MessageCompleteEvent]:
        """
        Send a message through the active connection.

        Streams when options.streaming (or the settings default) is set and the
        connection supports streaming; otherwise waits for the full response.

        Args:
            text: User message
            page_context: Page data to splice into the prompt
            options: Per-call options (unset fields come from settings)

        Returns:
            StreamingHandle once the backend accepted a streaming request, or
            MessageCompleteEvent for a single-shot request

        Raises:
            NoActiveConnectionError: No active connection
            LLMError: Dispatch failed (streamError/messageError already emitted)
            RequestCancelledError: cancel_request() was called before dispatch finished
        """
        connection = self._require_active_connection()
        options = self._resolve_options(options)
        messages = self.build_message_array(text, page_context, options)
        provider = self.providers.get_provider(connection.type)

        request_id = generate_request_id()
        streaming = bool(options.streaming) and connection.features.streaming

        logger.info(
            f"🎛️ Manager [{request_id}]: Sending via '{connection.name}' "
            f"({provider.provider_name}, model={connection.model}, streaming={streaming})"
        )

        if streaming:
            return await self._send_streaming(request_id, connection, provider, messages, options)
        return await self._send_single(request_id, connection, provider, messages, options)

    async def stream_message(
        self,
        text: str,
        page_context: Optional[PageContext] = None,
        options: Optional[MessageOptions] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream a message as an async iterator of events.

        Yields StreamStartEvent, StreamChunkEvent*, then exactly one of
        StreamEndEvent / StreamErrorEvent. Nothing is emitted to listeners and
        the request is not tracked by cancel_request(); closing the iterator
        aborts the HTTP response.

        Raises:
            NoActiveConnectionError: No active connection (before anything is yielded)
        """
        connection = self._require_active_connection()
        options = self._resolve_options(options)
        messages = self.build_message_array(text, page_context, options)
        provider = self.providers.get_provider(connection.type)
        request_id = generate_request_id()

        yield StreamStartEvent(request_id=request_id, connection=connection.name)

        try:
            response = await provider.send_streaming_message(connection, messages, options)
        except Exception as e:
            logger.error(f"🎛️ Manager [{request_id}]: Streaming dispatch failed: {e}")
            yield StreamErrorEvent(request_id=request_id, error=str(e), error_type=type(e).__name__)
            return

        async with aclosing(self._iter_response_events(request_id, response, provider.stream_format)) as events:
            async for event in events:
                yield event

    async def cancel_request(self, request_id: str) -> bool:
        """
        Cancel an in-flight request.

        Aborts the HTTP call (dispatch or body read), drops bookkeeping and
        emits requestCancelled. No further events fire for request_id.

        Returns:
            bool: False if request_id is unknown or already finished
        """
        active = self._active_requests.pop(request_id, None)
        if active is None:
            logger.debug(f"🎛️ Manager [{request_id}]: Cancel ignored (not in flight)")
            return False

        if active.task is not None and not active.task.done():
            active.task.cancel()

        logger.info(f"🎛️ Manager [{request_id}]: Cancelled")
        await self.emit(EventName.REQUEST_CANCELLED, RequestCancelledEvent(request_id=request_id))
        return True

    async def send_message_with_fallback(
        self,
        text: str,
        page_context: Optional[PageContext] = None,
        options: Optional[MessageOptions] = None,
    ) -> Union[StreamingHandle, MessageCompleteEvent]:
        """
        Try each enabled connection in priority order until one succeeds.

        The previously active connection is restored afterwards, whatever the
        outcome. For streaming requests "success" means the backend accepted
        the request; failures while reading the body do not trigger fallback.

        Raises:
            NoEnabledConnectionsError: No enabled connections
            LLMError: Last error, when every connection failed
        """
        connections = self.connection_store.get_enabled_connections()
        if not connections:
            raise NoEnabledConnectionsError("No enabled LLM connections available")

        original = self.connection_store.get_active_connection()
        last_error: Optional[Exception] = None

        try:
            for connection in connections:
                self.connection_store.set_active_connection(connection.id)
                try:
                    return await self.send_message(text, page_context, options)
                except LLMError as e:
                    if isinstance(e, RequestCancelledError):
                        raise
                    last_error = e
                    logger.warning(f"🎛️ Manager: Connection '{connection.name}' failed, trying next: {e}")
        finally:
            self.connection_store.set_active_connection(original.id if original else None)

        logger.error(f"🎛️ Manager: All {len(connections)} connections failed")
        raise last_error

    def get_status(self) -> Dict[str, Any]:
        """Manager status (for debugging)."""
        return {
            "active_requests": len(self._active_requests),
            "request_ids": list(self._active_requests),
            "providers": self.providers.list_providers(),
        }

    async def close(self):
        """Cancel in-flight requests and close providers (if owned)."""
        for request_id in list(self._active_requests):
            await self.cancel_request(request_id)

        if self._owns_providers:
            await self.providers.close()

        logger.info("🎛️ Manager: Closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ------------------------------------------------------------
    # Single-shot path
    # ------------------------------------------------------------

    async def _send_single(
        self,
        request_id: str,
        connection: Connection,
        provider: LLMProvider,
        messages: List[LLMMessage],
        options: MessageOptions,
    ) -> MessageCompleteEvent:
        active = ActiveRequest(request_id=request_id, connection_name=connection.name, streaming=False)
        self._active_requests[request_id] = active

        await self.emit(EventName.MESSAGE_START, MessageStartEvent(request_id=request_id, connection=connection.name))

        dispatch = asyncio.ensure_future(provider.send_message(connection, messages, options))
        active.task = dispatch

        try:
            response = await self._await_dispatch(request_id, dispatch)
        except RequestCancelledError:
            raise
        except Exception as e:
            self._active_requests.pop(request_id, None)
            logger.error(f"🎛️ Manager [{request_id}]: Request failed: {e}")
            await self.emit(
                EventName.MESSAGE_ERROR,
                MessageErrorEvent(request_id=request_id, error=str(e), error_type=type(e).__name__),
            )
            raise

        self._active_requests.pop(request_id, None)

        parsed = StreamParser().parse_complete_response(response.content)
        result = MessageCompleteEvent(
            request_id=request_id,
            content=parsed.content,
            blocks=parsed.blocks,
            usage=response.usage,
            model=response.model,
            finish_reason=response.finish_reason,
        )

        logger.info(
            f"🎛️ Manager [{request_id}]: Complete ({len(result.content)} chars, "
            f"{len(result.blocks)} blocks, finish={result.finish_reason})"
        )

        await self.emit(EventName.MESSAGE_COMPLETE, result)
        return result

    # ------------------------------------------------------------
    # Streaming path
    # ------------------------------------------------------------

    async def _send_streaming(
        self,
        request_id: str,
        connection: Connection,
        provider: LLMProvider,
        messages: List[LLMMessage],
        options: MessageOptions,
    ) -> StreamingHandle:
        active = ActiveRequest(request_id=request_id, connection_name=connection.name, streaming=True)
        self._active_requests[request_id] = active

        await self.emit(EventName.STREAM_START, StreamStartEvent(request_id=request_id, connection=connection.name))

        dispatch = asyncio.ensure_future(provider.send_streaming_message(connection, messages, options))
        active.task = dispatch

        try:
            response = await self._await_dispatch(request_id, dispatch)
        except RequestCancelledError:
            raise
        except Exception as e:
            self._active_requests.pop(request_id, None)
            logger.error(f"🎛️ Manager [{request_id}]: Streaming dispatch failed: {e}")
            await self.emit(
                EventName.STREAM_ERROR,
                StreamErrorEvent(request_id=request_id, error=str(e), error_type=type(e).__name__),
            )
            raise

        consume = asyncio.create_task(self._consume_stream(request_id, response, provider.stream_format))
        active.task = consume

        return StreamingHandle(request_id=request_id, task=consume)

    async def _await_dispatch(self, request_id: str, dispatch: asyncio.Future):
        """
        Await a provider call that cancel_request() may cancel.

        Raises:
            RequestCancelledError: cancel_request() ran before the call finished
        """
        try:
            result = await dispatch
        except asyncio.CancelledError:
            if request_id not in self._active_requests and dispatch.cancelled():
                raise RequestCancelledError(f"Request {request_id} was cancelled") from None
            # The caller itself was cancelled
            self._active_requests.pop(request_id, None)
            raise

        if request_id not in self._active_requests:
            # Cancelled after the provider answered but before we resumed
            if isinstance(result, httpx.Response):
                await result.aclose()
            raise RequestCancelledError(f"Request {request_id} was cancelled")

        return result

    async def _consume_stream(self, request_id: str, response: httpx.Response, stream_format: StreamFormat) -> None:
        """Read the body and emit chunk/end/error events for one request."""
        try:
            async with aclosing(self._iter_response_events(request_id, response, stream_format)) as events:
                async for event in events:
                    # cancel_request() from a listener lands before our next suspension
                    if request_id not in self._active_requests:
                        logger.debug(f"🎛️ Manager [{request_id}]: Cancelled mid-read, dropping remaining events")
                        break
                    await self.emit(event.event_type, event)
        finally:
            self._active_requests.pop(request_id, None)

    async def _iter_response_events(
        self,
        request_id: str,
        response: httpx.Response,
        stream_format: StreamFormat,
    ) -> AsyncIterator[StreamEvent]:
        """
        Decode a streaming body into chunk events and one terminal event.

        Yields StreamChunkEvent* then StreamEndEvent or StreamErrorEvent.
        The response is always closed.
        """
        parser = StreamParser()
        state = _StreamAccumulator(request_id=request_id)
        error: Optional[StreamErrorEvent] = None

        try:
            async for text in response.aiter_text():
                for event in self._apply_items(state, parser.parse_chunk(text, stream_format)):
                    if isinstance(event, StreamErrorEvent):
                        error = event
                        break
                    yield event
                if error is not None or state.done:
                    break

            if error is None and not state.done:
                for event in self._apply_items(state, parser.finish(stream_format)):
                    if isinstance(event, StreamErrorEvent):
                        error = event
                        break
                    yield event
        except httpx.TimeoutException as e:
            error = StreamErrorEvent(
                request_id=request_id,
                error=f"Stream read timeout: {e}",
                error_type=LLMTimeoutError.__name__,
            )
        except (httpx.HTTPError, UnicodeDecodeError) as e:
            error = StreamErrorEvent(
                request_id=request_id,
                error=f"Stream read failed: {e}",
                error_type=LLMStreamError.__name__,
            )
        finally:
            await response.aclose()

        if error is not None:
            logger.error(f"🎛️ Manager [{request_id}]: Stream error: {error.error}")
            yield error
            return

        tail = parser.flush()
        event = state.chunk(tail.content, tail.blocks)
        if event is not None:
            yield event

        logger.info(
            f"🎛️ Manager [{request_id}]: Stream ended ({len(state.full_content)} chars, "
            f"{len(state.blocks)} blocks, finish={state.finish_reason})"
        )
        yield state.end()

    def _apply_items(self, state: _StreamAccumulator, items: List[StreamItem]) -> Iterator[Union[StreamChunkEvent, StreamErrorEvent]]:
        """Fold parser items into the accumulator, yielding chunk or error events."""
        for item in items:
            if item.kind == "content":
                event = state.chunk(item.content, item.blocks, item.metadata)
                if event is not None:
                    yield event
            elif item.kind == "finish":
                state.finish_reason = item.reason
            elif item.kind == "done":
                state.done = True
                return
            elif item.kind == "error":
                yield StreamErrorEvent(
                    request_id=state.request_id,
                    error=item.error or "Provider reported a stream error",
                    error_type=LLMStreamError.__name__,
                )
                return
