from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any
from uuid import uuid4

from loguru import logger

from convo_stream.errors import OrderingAnomaly, UpstreamError
from convo_stream.models import PENDING_USER_PREFIX, ChatMessage, ToolResultEntry, utc_now
from convo_stream.tool_tracker import ToolResultTracker, tool_result_blocks

IDLE = "idle"
STREAMING = "streaming"

_SETTLING_EVENTS = {"result", "closed", "error"}


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


def _as_blocks(content: Any) -> list[dict[str, Any]]:
    if content is None:
        return []
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    if isinstance(content, dict):
        return [content]
    return list(content)


class MessageAggregator:
    """Builds the ordered message list of one conversation from stream events.

    Assistant turns arrive as several partial events sharing a message id;
    their content blocks are appended to a single ChatMessage. User events
    carrying tool results stay in the list (grouping nests them later) and
    complete the matching tool_use entries.
    """

    def __init__(
        self,
        session_id: str | None = None,
        *,
        on_user_message: Callable[[ChatMessage], None] | None = None,
        on_assistant_message: Callable[[ChatMessage], None] | None = None,
        on_result: Callable[[dict[str, Any]], None] | None = None,
        on_session_rollover: Callable[[str], None] | None = None,
        on_error: Callable[[UpstreamError], None] | None = None,
        on_closed: Callable[[], None] | None = None,
    ):
        self.session_id = session_id
        self._on_user_message = on_user_message
        self._on_assistant_message = on_assistant_message
        self._on_result = on_result
        self._on_session_rollover = on_session_rollover
        self._on_error = on_error
        self._on_closed = on_closed
        self._messages: list[ChatMessage] = []
        self._index: dict[str, int] = {}
        self._tracker = ToolResultTracker()
        self._state = IDLE

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def tool_results(self) -> dict[str, ToolResultEntry]:
        return self._tracker.entries

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_streaming(self) -> bool:
        return self._state == STREAMING

    def find(self, message_id: str) -> ChatMessage | None:
        position = self._index.get(message_id)
        return self._messages[position] if position is not None else None

    def add_message(self, message: ChatMessage) -> None:
        logger.debug(
            f"Message list length changed: {len(self._messages)} -> {len(self._messages) + 1} "
            f"(adding {message.type} message)"
        )
        self._index[message.id] = len(self._messages)
        self._messages.append(message)
        self._tracker.observe(message)

    def add_pending_user_message(self, text: str) -> ChatMessage:
        """Optimistically show a prompt before the backend echoes it."""
        pending_id = _new_id(PENDING_USER_PREFIX.rstrip("-"))
        message = ChatMessage(id=pending_id, message_id=pending_id, type="user", content=text)
        self.add_message(message)
        return message

    def set_all_messages(self, messages: Iterable[ChatMessage]) -> None:
        """Replace the list with persisted history and replay tool results from it."""
        new_messages = list(messages)
        logger.debug(
            f"Message list length changed: {len(self._messages)} -> {len(new_messages)} "
            "(loading conversation history)"
        )
        self._messages = new_messages
        self._reindex()
        self._tracker.rebuild(new_messages)

    def clear_messages(self) -> None:
        logger.debug(f"Message list length changed: {len(self._messages)} -> 0 (clearing)")
        self._messages = []
        self._index = {}
        self._tracker.clear()
        self._state = IDLE

    def stop_streaming(self) -> None:
        for message in self._messages:
            message.is_streaming = False
        self._state = IDLE

    def handle_stream_message(self, event: dict[str, Any]) -> None:
        event_type = event.get("type")
        if event_type in _SETTLING_EVENTS:
            self._state = IDLE
        else:
            self._state = STREAMING

        if event_type in ("user", "assistant"):
            handler = self._handle_user if event_type == "user" else self._handle_assistant
            try:
                handler(event)
            except OrderingAnomaly as ex:
                logger.warning(f"Dropping {event_type} event: {ex}")
        elif event_type == "result":
            self._handle_result(event)
        elif event_type == "error":
            self._handle_error(event)
        elif event_type == "closed":
            logger.debug("Stream closed")
            if self._on_closed:
                self._on_closed()
        else:
            # connected, system and permission_request only feed telemetry.
            logger.debug(f"No message change for {event_type!r} event")

    def _reindex(self) -> None:
        self._index = {m.id: i for i, m in enumerate(self._messages)}

    def _handle_user(self, event: dict[str, Any]) -> None:
        payload = event.get("message") or {}
        content = payload.get("content", "")
        message_id = payload.get("id") or _new_id("user")
        message = ChatMessage(
            id=message_id,
            message_id=_new_id("user"),
            type="user",
            content=content,
            parent_tool_use_id=event.get("parent_tool_use_id"),
        )

        if message_id in self._index:
            raise OrderingAnomaly(f"duplicate user message id {message_id}")
        self._tracker.observe_user(content)

        pending_position = None
        if not tool_result_blocks(content):
            pending_position = next(
                (i for i, m in enumerate(self._messages) if m.is_pending),
                None,
            )
        if pending_position is not None:
            replaced = self._messages[pending_position]
            self._messages[pending_position] = message
            del self._index[replaced.id]
            self._index[message.id] = pending_position
            logger.debug(f"Replaced pending message {replaced.id} with {message.id}")
        else:
            self._index[message.id] = len(self._messages)
            self._messages.append(message)

        if self._on_user_message:
            self._on_user_message(message)

    def _handle_assistant(self, event: dict[str, Any]) -> None:
        payload = event.get("message") or {}
        blocks = _as_blocks(payload.get("content"))
        is_streaming = payload.get("stop_reason") is None
        message_id = payload.get("id") or _new_id("assistant")

        existing = self.find(message_id)
        if existing is not None:
            if existing.type != "assistant":
                raise OrderingAnomaly(f"assistant id {message_id} collides with a {existing.type} message")
            existing_blocks = existing.content if isinstance(existing.content, list) else []
            existing.content = [*existing_blocks, *blocks]
            existing.is_streaming = is_streaming
            message = existing
        else:
            message = ChatMessage(
                id=message_id,
                message_id=_new_id("assistant"),
                type="assistant",
                content=blocks,
                is_streaming=is_streaming,
                parent_tool_use_id=event.get("parent_tool_use_id"),
            )
            self._index[message.id] = len(self._messages)
            self._messages.append(message)

        self._tracker.observe_assistant(blocks)
        if self._on_assistant_message:
            self._on_assistant_message(message)

    def _handle_result(self, event: dict[str, Any]) -> None:
        for message in self._messages:
            message.is_streaming = False

        new_session_id = event.get("session_id")
        if self._on_result:
            self._on_result(event)
        if new_session_id and new_session_id != self.session_id:
            previous = self.session_id
            self.session_id = new_session_id
            logger.info(f"Session rolled over: {previous} -> {new_session_id}")
            if self._on_session_rollover:
                self._on_session_rollover(new_session_id)

    def _handle_error(self, event: dict[str, Any]) -> None:
        text = str(event.get("error") or "Unknown error")
        error_id = _new_id("error")
        self._messages.append(
            ChatMessage(id=error_id, message_id=error_id, type="error", content=text, timestamp=utc_now())
        )
        self._index[error_id] = len(self._messages) - 1
        logger.error(f"Upstream error: {text}")
        if self._on_error:
            self._on_error(UpstreamError(text))
