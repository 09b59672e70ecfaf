from __future__ import annotations

import codecs
import json
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from loguru import logger

from convo_stream.errors import ProtocolParseError

EVENT_TYPES = frozenset({
    "connected",
    "system",
    "user",
    "assistant",
    "result",
    "error",
    "closed",
    "permission_request",
})

_DATA_PREFIX = "data: "
_COMMENT_PREFIX = ":"


def parse_event_line(line: str) -> dict[str, Any] | None:
    """Parse one protocol line.

    Returns None for blank and comment lines. Raises ProtocolParseError when
    the payload is not a JSON object carrying a ``type``.
    """
    if not line.strip():
        return None
    if line.startswith(_COMMENT_PREFIX):
        return None

    payload = line[len(_DATA_PREFIX):] if line.startswith(_DATA_PREFIX) else line
    try:
        event = json.loads(payload)
    except json.JSONDecodeError as ex:
        raise ProtocolParseError(f"Invalid JSON: {ex.msg}", line) from ex

    if not isinstance(event, dict) or not isinstance(event.get("type"), str):
        raise ProtocolParseError("Event is not an object with a 'type' field", line)
    if event["type"] not in EVENT_TYPES:
        logger.debug(f"Unrecognised event type passed through: {event['type']!r}")
    return event


class EventDecoder:
    """Incremental decoder for the line-framed event protocol.

    Chunks may split lines (and UTF-8 sequences) anywhere; the decoded event
    sequence does not depend on where the splits fall.
    """

    def __init__(self) -> None:
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[dict[str, Any]]:
        if isinstance(chunk, bytes):
            chunk = self._text.decode(chunk)
        self._buffer += chunk

        *lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(lines)

    def flush(self) -> list[dict[str, Any]]:
        """Decode whatever is left once the stream has ended."""
        remainder = self._buffer + self._text.decode(b"", final=True)
        self._buffer = ""
        return self._decode_lines([remainder])

    def _decode_lines(self, lines: list[str]) -> list[dict[str, Any]]:
        events: list[dict[str, Any]] = []
        for line in lines:
            line = line.removesuffix("\r")
            try:
                event = parse_event_line(line)
            except ProtocolParseError as ex:
                logger.warning(f"Dropping malformed stream line: {ex} ({ex.line[:200]!r})")
                continue
            if event is not None:
                events.append(event)
        return events


async def iter_events(chunks: AsyncIterable[bytes | str]) -> AsyncIterator[dict[str, Any]]:
    decoder = EventDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event
