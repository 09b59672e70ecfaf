from __future__ import annotations

from dataclasses import replace

from convo_stream.models import ChatMessage
from convo_stream.tool_tracker import tool_result_blocks, tool_use_blocks


def group_messages(messages: list[ChatMessage]) -> list[ChatMessage]:
    """Nest subordinate messages under their parent in a single pass.

    1. A message whose ``parent_tool_use_id`` names a tool_use block of an
       earlier assistant message becomes a sub-message of that assistant.
    2. Otherwise a user message holding a tool_result becomes a sub-message
       of the most recent assistant message.

    Everything else stays top-level, in input order. Parents must precede
    their children in ``messages``. Inputs are copied, never mutated.
    """
    if not messages:
        return []

    tool_owner: dict[str, ChatMessage] = {}
    result: list[ChatMessage] = []
    latest_assistant: ChatMessage | None = None

    for message in messages:
        copy = replace(message, sub_messages=None)
        parent: ChatMessage | None = None

        if copy.parent_tool_use_id:
            parent = tool_owner.get(copy.parent_tool_use_id)

        if parent is None and copy.type == "user" and tool_result_blocks(copy.content):
            parent = latest_assistant

        if copy.type == "assistant":
            for block in tool_use_blocks(copy.content):
                tool_owner.setdefault(str(block.get("id", "")), copy)
            latest_assistant = copy

        if parent is not None:
            if parent.sub_messages is None:
                parent.sub_messages = []
            parent.sub_messages.append(copy)
        else:
            result.append(copy)

    return result


def flatten_messages(messages: list[ChatMessage]) -> list[ChatMessage]:
    flattened: list[ChatMessage] = []
    for message in messages:
        flattened.append(message)
        if message.sub_messages:
            flattened.extend(flatten_messages(message.sub_messages))
    return flattened


def count_messages(messages: list[ChatMessage]) -> int:
    count = 0
    for message in messages:
        count += 1
        if message.sub_messages:
            count += count_messages(message.sub_messages)
    return count
