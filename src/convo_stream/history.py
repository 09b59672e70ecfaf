from __future__ import annotations

from typing import Any

from loguru import logger

from convo_stream.models import ChatMessage

# Local slash-command output that the CLI writes into the transcript.
_FILTERED_PREFIXES = (
    "Caveat: ",
    "<command-name>",
    "<local-command-stdout>",
)


def _first_text(payload: Any) -> str | None:
    if isinstance(payload, str):
        return payload
    if not isinstance(payload, dict):
        return None
    content = payload.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                return block.get("text")
    return None


def is_local_command_message(record: dict[str, Any]) -> bool:
    if record.get("type") != "user":
        return False
    text = _first_text(record.get("message"))
    if not text:
        return False
    return text.strip().startswith(_FILTERED_PREFIXES)


def convert_history(details: dict[str, Any]) -> list[ChatMessage]:
    """Turn a persisted conversation into ChatMessages ready for replay."""
    messages: list[ChatMessage] = []
    skipped = 0
    for record in details.get("messages", []):
        if record.get("isSidechain") or is_local_command_message(record):
            skipped += 1
            continue

        payload = record.get("message")
        content = payload.get("content", "") if isinstance(payload, dict) else payload
        message_id = str(record.get("uuid", ""))
        messages.append(
            ChatMessage(
                id=message_id,
                message_id=message_id,
                type=str(record.get("type", "user")),
                content=content if content is not None else "",
                timestamp=str(record.get("timestamp", "")),
                parent_tool_use_id=record.get("parent_tool_use_id"),
            )
        )

    if skipped:
        logger.debug(f"Skipped {skipped} sidechain/local-command history records")
    return messages
