from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, Protocol, runtime_checkable

import httpx
from loguru import logger

from convo_stream.errors import TransportError

_DEFAULT_TIMEOUT_SECONDS = 30.0


@runtime_checkable
class StreamTransport(Protocol):
    def connect(self, streaming_id: str) -> AsyncContextManager[AsyncIterator[bytes]]:
        """Open the event stream for a streaming session.

        Entering the context means the backend accepted the stream; the
        yielded iterator produces raw byte chunks until the stream ends.
        Failures are raised as TransportError.
        """
        ...


class HttpStreamTransport:
    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ):
        headers = {"Accept": "text/event-stream"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._owns_client = client is None
        # Reads on a live stream can idle for a long time between events.
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, read=None),
        )

    @asynccontextmanager
    async def connect(self, streaming_id: str) -> AsyncIterator[AsyncIterator[bytes]]:
        url = f"/api/stream/{streaming_id}"
        logger.debug(f"Opening stream: {url}")
        try:
            async with self._client.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise TransportError(
                        f"Stream connection failed: {response.status_code}",
                        status_code=response.status_code,
                    )
                yield _read_chunks(response)
        except httpx.HTTPError as ex:
            raise TransportError(f"{type(ex).__name__}: {ex}") from ex

    async def fetch_history(self, session_id: str) -> dict[str, Any]:
        """Read the persisted conversation for replay."""
        try:
            response = await self._client.get(f"/api/conversations/{session_id}")
        except httpx.HTTPError as ex:
            raise TransportError(f"{type(ex).__name__}: {ex}") from ex
        if response.status_code >= 400:
            raise TransportError(
                f"History request failed: {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as ex:
            raise TransportError(
                f"History response is not JSON: {ex}",
                status_code=response.status_code,
            ) from ex

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


async def _read_chunks(response: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.HTTPError as ex:
        raise TransportError(f"{type(ex).__name__}: {ex}") from ex
