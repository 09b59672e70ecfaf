from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from loguru import logger

from convo_stream.errors import OrderingAnomaly
from convo_stream.models import TOOL_COMPLETED, ChatMessage, ToolResultEntry


def tool_use_blocks(content: Any) -> list[dict[str, Any]]:
    if not isinstance(content, list):
        return []
    return [b for b in content if isinstance(b, dict) and b.get("type") == "tool_use"]


def tool_result_blocks(content: Any) -> list[dict[str, Any]]:
    if isinstance(content, dict):
        content = [content]
    if not isinstance(content, list):
        return []
    return [b for b in content if isinstance(b, dict) and b.get("type") == "tool_result"]


class ToolResultTracker:
    """Correlates tool_use ids with their results.

    An entry is created as pending the first time a tool_use block is seen
    and moves to completed at most once, when a matching tool_result arrives.
    Results for ids that were never announced are dropped.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ToolResultEntry] = {}

    @property
    def entries(self) -> dict[str, ToolResultEntry]:
        return dict(self._entries)

    def get(self, tool_use_id: str) -> ToolResultEntry | None:
        return self._entries.get(tool_use_id)

    def __contains__(self, tool_use_id: object) -> bool:
        return tool_use_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def register_tool_use(self, tool_use_id: str) -> None:
        if tool_use_id and tool_use_id not in self._entries:
            self._entries[tool_use_id] = ToolResultEntry()

    def complete(self, tool_use_id: str, result: Any, *, is_error: bool = False) -> None:
        entry = self._entries.get(tool_use_id)
        if entry is None:
            raise OrderingAnomaly(f"tool_result for unknown tool_use id {tool_use_id!r}")
        if entry.status == TOOL_COMPLETED:
            logger.debug(f"Ignoring repeated tool_result for {tool_use_id}")
            return
        self._entries[tool_use_id] = ToolResultEntry(
            status=TOOL_COMPLETED,
            result=result,
            is_error=is_error,
        )

    def observe_assistant(self, content: Any) -> None:
        for block in tool_use_blocks(content):
            self.register_tool_use(str(block.get("id", "")))

    def observe_user(self, content: Any) -> None:
        for block in tool_result_blocks(content):
            tool_use_id = str(block.get("tool_use_id", ""))
            try:
                self.complete(
                    tool_use_id,
                    block.get("content"),
                    is_error=bool(block.get("is_error", False)),
                )
            except OrderingAnomaly as ex:
                logger.warning(f"Dropping tool result: {ex}")

    def observe(self, message: ChatMessage) -> None:
        if message.type == "assistant":
            self.observe_assistant(message.content)
        elif message.type == "user":
            self.observe_user(message.content)

    def rebuild(self, messages: Iterable[ChatMessage]) -> None:
        """Replace all entries by replaying a full history in order."""
        self._entries.clear()
        for message in messages:
            self.observe(message)
        logger.debug(f"Rebuilt tool results: {len(self._entries)} tool uses")
