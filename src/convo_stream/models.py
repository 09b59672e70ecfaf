from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

PENDING_USER_PREFIX = "user-pending-"

CONNECTING = "connecting"
CONNECTED = "connected"
DISCONNECTED = "disconnected"
ERROR = "error"

TOOL_PENDING = "pending"
TOOL_COMPLETED = "completed"


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds")


@dataclass
class ChatMessage:
    id: str
    message_id: str
    type: str
    content: str | list[dict[str, Any]]
    timestamp: str = field(default_factory=utc_now)
    is_streaming: bool = False
    parent_tool_use_id: str | None = None
    sub_messages: list[ChatMessage] | None = None

    @property
    def is_pending(self) -> bool:
        return self.id.startswith(PENDING_USER_PREFIX)

    def blocks(self) -> list[dict[str, Any]]:
        """Content blocks of the message; plain string content has none."""
        if isinstance(self.content, list):
            return [b for b in self.content if isinstance(b, dict)]
        return []


@dataclass
class ToolResultEntry:
    status: str = TOOL_PENDING
    result: Any = None
    is_error: bool = False


@dataclass
class Connection:
    streaming_id: str
    connection_state: str = CONNECTING
    retry_count: int = 0
    last_event: dict | None = None
    last_event_time: str | None = None


@dataclass
class ToolMetrics:
    lines_added: int = 0
    lines_removed: int = 0
    edit_count: int = 0
    write_count: int = 0


@dataclass
class StreamStatus:
    connection_state: str = CONNECTING
    current_status: str = "Connecting..."
    last_event: dict | None = None
    last_event_time: str | None = None
    tool_metrics: ToolMetrics | None = None
    usage: dict | None = None
