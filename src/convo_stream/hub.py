from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from convo_stream.aggregator import MessageAggregator
from convo_stream.connection_manager import (
    DEFAULT_INITIAL_RETRY_DELAY,
    DEFAULT_MAX_CONNECTIONS,
    DEFAULT_MAX_RETRIES,
    StreamConnectionManager,
)
from convo_stream.errors import UpstreamError
from convo_stream.models import ChatMessage, Connection, StreamStatus
from convo_stream.status_board import StreamStatusBoard
from convo_stream.transport import StreamTransport

_SETTLING_EVENTS = {"result", "closed", "error"}


class ConversationHub:
    """Wires stream connections to per-conversation aggregators.

    Stream tasks never touch conversation state: the connection manager's
    callbacks only enqueue work, and a single consumer task applies it to the
    aggregators and the status board in arrival order.
    """

    def __init__(
        self,
        transport: StreamTransport,
        *,
        max_concurrent_connections: int = DEFAULT_MAX_CONNECTIONS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_status: Callable[[str, StreamStatus], None] | None = None,
        on_error: Callable[[str, Exception], None] | None = None,
    ):
        self._queue: asyncio.Queue[tuple[str, str, Any, MessageAggregator | None]] = asyncio.Queue()
        self._manager = StreamConnectionManager(
            transport,
            on_message=lambda sid, event: self._enqueue("event", sid, event),
            on_error=lambda sid, error: self._enqueue("error", sid, error),
            on_connect=lambda sid: self._enqueue("connect", sid),
            on_disconnect=lambda sid: self._enqueue("disconnect", sid),
            max_concurrent_connections=max_concurrent_connections,
            max_retries=max_retries,
            initial_retry_delay=initial_retry_delay,
            sleep=sleep,
        )
        self._board = StreamStatusBoard()
        self._aggregators: dict[str, MessageAggregator] = {}
        self._on_status = on_status
        self._on_error = on_error
        self._consumer: asyncio.Task | None = None

    @property
    def manager(self) -> StreamConnectionManager:
        return self._manager

    @property
    def statuses(self) -> dict[str, StreamStatus]:
        return self._board.statuses

    def aggregator(self, streaming_id: str) -> MessageAggregator | None:
        return self._aggregators.get(streaming_id)

    def get_stream_status(self, streaming_id: str) -> StreamStatus | None:
        return self._board.get(streaming_id)

    def get_connection_state(self, streaming_id: str) -> Connection | None:
        return self._manager.get_connection_state(streaming_id)

    async def start(self) -> None:
        if self._consumer is None:
            self._consumer = asyncio.create_task(self._consume(), name="conversation-hub")

    def watch(
        self,
        streaming_id: str,
        *,
        session_id: str | None = None,
        history: list[ChatMessage] | None = None,
        **callbacks: Any,
    ) -> MessageAggregator:
        """Start streaming a conversation; returns the aggregator that will hold its messages."""
        aggregator = self._aggregators.get(streaming_id)
        if aggregator is None:
            user_on_error = callbacks.pop("on_error", None)

            def on_error(error: UpstreamError) -> None:
                if user_on_error:
                    user_on_error(error)
                self._report_error(streaming_id, error)

            aggregator = MessageAggregator(session_id, on_error=on_error, **callbacks)
            if history:
                aggregator.set_all_messages(history)
            self._aggregators[streaming_id] = aggregator

        self._board.subscribe([streaming_id])
        self._manager.subscribe([streaming_id])
        return aggregator

    def unwatch(self, streaming_id: str) -> MessageAggregator | None:
        self._manager.unsubscribe(streaming_id)
        self._board.remove(streaming_id)
        return self._aggregators.pop(streaming_id, None)

    async def join(self) -> None:
        """Wait until every stream has settled and all queued work is applied."""
        await self.start()
        while True:
            await self._manager.join()
            await self._queue.join()
            if self._manager.active_connection_count == 0 and not self._manager.pending_ids:
                return

    async def close(self) -> None:
        await self._manager.close()
        if self._consumer is not None:
            await self._queue.join()
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

    async def __aenter__(self) -> ConversationHub:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _consume(self) -> None:
        while True:
            kind, streaming_id, payload, owner = await self._queue.get()
            try:
                with logger.contextualize(streaming_id=streaming_id):
                    self._apply(kind, streaming_id, payload, owner)
            except Exception:
                logger.exception(f"Failed to apply {kind} for stream {streaming_id}")
            finally:
                self._queue.task_done()

    def _enqueue(self, kind: str, streaming_id: str, payload: Any = None) -> None:
        # Tag with the aggregator watching now; a later unwatch/watch replaces it.
        self._queue.put_nowait((kind, streaming_id, payload, self._aggregators.get(streaming_id)))

    def _apply(self, kind: str, streaming_id: str, payload: Any, owner: MessageAggregator | None) -> None:
        if owner is None or self._aggregators.get(streaming_id) is not owner:
            logger.debug(f"Dropping {kind} for unwatched stream {streaming_id}")
            return

        if kind == "connect":
            self._publish(streaming_id, self._board.handle_connect(streaming_id))
        elif kind == "disconnect":
            self._publish(streaming_id, self._board.handle_disconnect(streaming_id))
        elif kind == "error":
            self._publish(streaming_id, self._board.handle_error(streaming_id, payload))
            self._report_error(streaming_id, payload)
        elif kind == "event":
            self._apply_event(streaming_id, payload, owner)

    def _apply_event(self, streaming_id: str, event: dict[str, Any], aggregator: MessageAggregator) -> None:
        self._publish(streaming_id, self._board.handle_event(streaming_id, event))
        aggregator.handle_stream_message(event)

        if event.get("type") in _SETTLING_EVENTS:
            logger.info(f"Stream {streaming_id} settled on {event.get('type')} event")
            self._manager.unsubscribe(streaming_id)

    def _publish(self, streaming_id: str, status: StreamStatus | None) -> None:
        if status is not None and self._on_status:
            self._on_status(streaming_id, status)

    def _report_error(self, streaming_id: str, error: Exception) -> None:
        if self._on_error:
            self._on_error(streaming_id, error)
