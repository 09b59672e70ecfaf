from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type

from convo_stream.errors import TransportError
from convo_stream.models import CONNECTED, CONNECTING, DISCONNECTED, ERROR, Connection, utc_now
from convo_stream.protocol import iter_events
from convo_stream.transport import StreamTransport

DEFAULT_MAX_CONNECTIONS = 5
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_RETRY_DELAY = 1.0


class StreamConnectionManager:
    """Keeps up to ``max_concurrent_connections`` event streams open at once.

    Each subscribed streaming id gets its own task that opens the stream,
    decodes it, and hands every event to ``on_message``. Ids beyond the cap
    wait in a FIFO queue and are started as slots free up. A connection
    holds its slot while it is backing off between retries.

    Must be used from inside a running event loop.
    """

    def __init__(
        self,
        transport: StreamTransport,
        *,
        on_message: Callable[[str, dict[str, Any]], None],
        on_error: Callable[[str, Exception], None] | None = None,
        on_connect: Callable[[str], None] | None = None,
        on_disconnect: Callable[[str], None] | None = None,
        max_concurrent_connections: int = DEFAULT_MAX_CONNECTIONS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._transport = transport
        self._on_message = on_message
        self._on_error = on_error
        self._on_connect = on_connect
        self._on_disconnect = on_disconnect
        self._max_concurrent_connections = max(1, max_concurrent_connections)
        self._max_retries = max(0, max_retries)
        self._initial_retry_delay = max(0.0, initial_retry_delay)
        self._sleep = sleep
        self._connections: dict[str, Connection] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._pending: deque[str] = deque()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def active_connection_count(self) -> int:
        return len(self._tasks)

    @property
    def pending_ids(self) -> list[str]:
        return list(self._pending)

    @property
    def connections(self) -> dict[str, Connection]:
        return dict(self._connections)

    def get_connection_state(self, streaming_id: str) -> Connection | None:
        return self._connections.get(streaming_id)

    def subscribe(self, streaming_ids: Iterable[str]) -> None:
        if isinstance(streaming_ids, str):
            streaming_ids = [streaming_ids]
        for streaming_id in streaming_ids:
            if not streaming_id:
                continue
            if streaming_id in self._tasks or streaming_id in self._pending:
                continue

            connection = self._connections.get(streaming_id)
            if connection is None:
                connection = Connection(streaming_id=streaming_id)
                self._connections[streaming_id] = connection
            connection.connection_state = CONNECTING
            connection.retry_count = 0

            if len(self._tasks) < self._max_concurrent_connections:
                self._start(connection)
            else:
                logger.debug(f"Connection limit reached, queueing stream {streaming_id}")
                self._pending.append(streaming_id)
        self._update_idle()

    def unsubscribe(self, streaming_id: str) -> None:
        connection = self._connections.pop(streaming_id, None)
        if streaming_id in self._pending:
            self._pending.remove(streaming_id)
        task = self._tasks.pop(streaming_id, None)
        if task is not None:
            task.cancel()

        if connection is not None:
            connection.connection_state = DISCONNECTED
            if task is not None:
                logger.info(f"Stream unsubscribed: {streaming_id}")
                self._notify(self._on_disconnect, streaming_id)

        self._promote()
        self._update_idle()

    async def join(self) -> None:
        """Wait until no stream is running or queued."""
        await self._idle.wait()

    async def close(self) -> None:
        self._pending.clear()
        tasks = self._tasks
        self._tasks = {}
        for streaming_id, task in tasks.items():
            task.cancel()
            connection = self._connections.get(streaming_id)
            if connection is not None:
                connection.connection_state = DISCONNECTED
                self._notify(self._on_disconnect, streaming_id)
        self._connections.clear()
        if tasks:
            await asyncio.gather(*tasks.values(), return_exceptions=True)
        self._idle.set()

    async def __aenter__(self) -> StreamConnectionManager:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _start(self, connection: Connection) -> None:
        streaming_id = connection.streaming_id
        self._tasks[streaming_id] = asyncio.create_task(
            self._run(connection),
            name=f"stream:{streaming_id}",
        )

    def _promote(self) -> None:
        while self._pending and len(self._tasks) < self._max_concurrent_connections:
            streaming_id = self._pending.popleft()
            connection = self._connections.get(streaming_id)
            if connection is None:
                continue
            logger.debug(f"Promoting queued stream {streaming_id}")
            self._start(connection)

    def _update_idle(self) -> None:
        if self._tasks or self._pending:
            self._idle.clear()
        else:
            self._idle.set()

    def _is_current(self, connection: Connection) -> bool:
        return self._connections.get(connection.streaming_id) is connection

    async def _run(self, connection: Connection) -> None:
        streaming_id = connection.streaming_id
        with logger.contextualize(streaming_id=streaming_id):
            try:
                await self._retrying(connection)(self._connect_and_read, connection)
            except TransportError as ex:
                connection.connection_state = ERROR
                logger.error(f"Stream {streaming_id} failed after {connection.retry_count} retries: {ex}")
                self._notify(self._on_error, streaming_id, ex)
            except Exception as ex:
                connection.connection_state = ERROR
                logger.exception(f"Unexpected failure in stream {streaming_id}")
                self._notify(self._on_error, streaming_id, ex)
            else:
                if self._is_current(connection):
                    connection.connection_state = DISCONNECTED
                    logger.info(f"Stream ended: {streaming_id}")
                    self._notify(self._on_disconnect, streaming_id)
            finally:
                if self._tasks.get(streaming_id) is asyncio.current_task():
                    del self._tasks[streaming_id]
                    self._promote()
                    self._update_idle()

    async def _connect_and_read(self, connection: Connection) -> None:
        streaming_id = connection.streaming_id
        connection.connection_state = CONNECTING
        async with self._transport.connect(streaming_id) as chunks:
            connection.connection_state = CONNECTED
            connection.retry_count = 0
            logger.info(f"Stream connected: {streaming_id}")
            self._notify(self._on_connect, streaming_id)

            async for event in iter_events(chunks):
                if not self._is_current(connection):
                    return
                connection.last_event = event
                connection.last_event_time = utc_now()
                self._on_message(streaming_id, event)

    def _retrying(self, connection: Connection) -> AsyncRetrying:
        def stop(retry_state: RetryCallState) -> bool:
            return connection.retry_count >= self._max_retries

        def wait(retry_state: RetryCallState) -> float:
            return self._initial_retry_delay * 2 ** connection.retry_count

        def after(retry_state: RetryCallState) -> None:
            connection.connection_state = ERROR
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(f"Stream {connection.streaming_id} failed: {exc}")

        def before_sleep(retry_state: RetryCallState) -> None:
            connection.retry_count += 1
            delay = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.warning(
                f"Reconnecting stream {connection.streaming_id} in {delay:.1f}s "
                f"(attempt {connection.retry_count}/{self._max_retries})..."
            )

        return AsyncRetrying(
            retry=retry_if_exception_type(TransportError),
            stop=stop,
            wait=wait,
            after=after,
            before_sleep=before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

    @staticmethod
    def _notify(callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception(f"Stream callback {getattr(callback, '__name__', callback)!r} raised")
