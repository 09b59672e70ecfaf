from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from convo_stream.models import CONNECTED, CONNECTING, DISCONNECTED, ERROR, StreamStatus, utc_now
from convo_stream.status_mapper import apply_status_update, map_event_to_status


class StreamStatusBoard:
    """Latest StreamStatus for every watched streaming id."""

    def __init__(self) -> None:
        self._statuses: dict[str, StreamStatus] = {}

    @property
    def statuses(self) -> dict[str, StreamStatus]:
        return dict(self._statuses)

    def get(self, streaming_id: str) -> StreamStatus | None:
        return self._statuses.get(streaming_id)

    def subscribe(self, streaming_ids: Iterable[str]) -> None:
        if isinstance(streaming_ids, str):
            streaming_ids = [streaming_ids]
        for streaming_id in streaming_ids:
            if streaming_id and streaming_id not in self._statuses:
                self._statuses[streaming_id] = StreamStatus(
                    connection_state=CONNECTING,
                    current_status="Connecting...",
                    last_event_time=utc_now(),
                )

    def remove(self, streaming_id: str) -> None:
        self._statuses.pop(streaming_id, None)

    def handle_event(self, streaming_id: str, event: dict[str, Any]) -> StreamStatus:
        current = self._statuses.get(streaming_id) or StreamStatus(
            connection_state=CONNECTED,
            current_status="Running",
        )
        status = apply_status_update(current, map_event_to_status(event, current))
        self._statuses[streaming_id] = status
        return status

    def handle_connect(self, streaming_id: str) -> StreamStatus:
        current = self._statuses.get(streaming_id) or StreamStatus()
        status = replace(
            current,
            connection_state=CONNECTED,
            current_status="Running",
            last_event_time=utc_now(),
        )
        self._statuses[streaming_id] = status
        return status

    def handle_error(self, streaming_id: str, error: Exception) -> StreamStatus:
        current = self._statuses.get(streaming_id) or StreamStatus()
        status = replace(
            current,
            connection_state=ERROR,
            current_status=f"Error: {error}",
            last_event_time=utc_now(),
        )
        self._statuses[streaming_id] = status
        return status

    def handle_disconnect(self, streaming_id: str) -> StreamStatus | None:
        current = self._statuses.get(streaming_id)
        if current is None or current.connection_state in (DISCONNECTED, ERROR):
            return current
        status = replace(current, connection_state=DISCONNECTED, last_event_time=utc_now())
        self._statuses[streaming_id] = status
        return status
