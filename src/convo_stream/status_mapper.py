from __future__ import annotations

import difflib
from dataclasses import replace
from typing import Any

from convo_stream.models import CONNECTED, DISCONNECTED, ERROR, StreamStatus, ToolMetrics, utc_now
from convo_stream.tool_tracker import tool_use_blocks

_TOOL_STATUS = {
    # File operations
    "Read": "Reading file...",
    "Write": "Writing file...",
    "Edit": "Editing file...",
    "MultiEdit": "Editing multiple sections...",
    "NotebookRead": "Reading notebook...",
    "NotebookEdit": "Editing notebook...",
    # Search
    "Grep": "Searching files...",
    "Glob": "Finding files...",
    "LS": "Listing directory...",
    # System
    "Bash": "Running command...",
    "Task": "Running task...",
    # Web
    "WebFetch": "Fetching web content...",
    "WebSearch": "Searching web...",
    # Todo
    "TodoRead": "Reading To-Do...",
    "TodoWrite": "Updating To-Do...",
    "exit_plan_mode": "Finalizing plan...",
}

_RESULT_STATUS = {
    "success": "Completed",
    "error_max_turns": "Max turns reached",
}


def tool_status_label(tool_name: str) -> str:
    return _TOOL_STATUS.get(tool_name, f"Running {tool_name}...")


def map_event_to_status(
    event: dict[str, Any],
    current: StreamStatus | None = None,
    *,
    now: str | None = None,
) -> dict[str, Any]:
    """Project one stream event onto a partial StreamStatus update.

    The returned dict holds only the StreamStatus fields that change; merge it
    with ``apply_status_update``. Nothing else is touched.
    """
    updates: dict[str, Any] = {
        "last_event": event,
        "last_event_time": now or utc_now(),
    }
    event_type = event.get("type")

    if event_type == "connected":
        updates.update(current_status="Running", connection_state=CONNECTED)
    elif event_type == "system":
        if event.get("subtype") == "init":
            updates.update(current_status="Initializing...", connection_state=CONNECTED)
    elif event_type == "assistant":
        updates.update(_map_assistant(event, current))
    elif event_type == "result":
        updates["current_status"] = _RESULT_STATUS.get(event.get("subtype", ""), "Finished")
        updates["connection_state"] = DISCONNECTED
        if event.get("usage"):
            updates["usage"] = event["usage"]
    elif event_type == "closed":
        updates.update(current_status="Closed", connection_state=DISCONNECTED)
    elif event_type == "error":
        updates.update(current_status="Error occurred", connection_state=ERROR)
    elif event_type == "permission_request":
        updates["current_status"] = "Awaiting approval..."
    # user events only refresh the last-event fields

    return updates


def apply_status_update(status: StreamStatus, updates: dict[str, Any]) -> StreamStatus:
    return replace(status, **updates)


def _map_assistant(event: dict[str, Any], current: StreamStatus | None) -> dict[str, Any]:
    content = (event.get("message") or {}).get("content")
    if not isinstance(content, list):
        return {"current_status": "Processing..."}

    tools = tool_use_blocks(content)
    if not tools:
        return {"current_status": "Thinking..."}

    prior = current.tool_metrics if current and current.tool_metrics else ToolMetrics()
    return {
        "current_status": tool_status_label(str(tools[0].get("name", ""))),
        "tool_metrics": _accumulate(prior, tools),
    }


def _accumulate(metrics: ToolMetrics, tool_uses: list[dict[str, Any]]) -> ToolMetrics:
    totals = replace(metrics)
    for block in tool_uses:
        name = block.get("name")
        tool_input = block.get("input") or {}
        if name == "Edit":
            totals.edit_count += 1
            _add_edit_diff(totals, tool_input)
        elif name == "MultiEdit":
            edits = tool_input.get("edits")
            if isinstance(edits, list):
                totals.edit_count += len(edits)
                for edit in edits:
                    if isinstance(edit, dict):
                        _add_edit_diff(totals, edit)
        elif name == "Write":
            totals.write_count += 1
            text = tool_input.get("content")
            if isinstance(text, str):
                totals.lines_added += _count_lines(text)
        elif name == "NotebookEdit":
            totals.write_count += 1
    return totals


def _add_edit_diff(metrics: ToolMetrics, tool_input: dict[str, Any]) -> None:
    old = tool_input.get("old_string")
    new = tool_input.get("new_string")
    if not isinstance(old, str) or not isinstance(new, str):
        return
    for line in difflib.ndiff(old.splitlines(), new.splitlines()):
        if line.startswith("+ "):
            metrics.lines_added += 1
        elif line.startswith("- "):
            metrics.lines_removed += 1


def _count_lines(text: str) -> int:
    if not text:
        return 0
    return text.count("\n") + (0 if text.endswith("\n") else 1)


def extract_tool_metrics(events: list[dict[str, Any]]) -> ToolMetrics:
    metrics = ToolMetrics()
    for event in events:
        if event.get("type") != "assistant":
            continue
        content = (event.get("message") or {}).get("content")
        metrics = _accumulate(metrics, tool_use_blocks(content))
    return metrics


def conversation_summary(events: list[dict[str, Any]]) -> str:
    """One-line description of where a conversation currently stands."""
    if not events:
        return "No activity"

    last = events[-1]
    if last.get("type") == "result":
        if last.get("subtype") == "success":
            return "Task completed successfully"
        if last.get("subtype") == "error_max_turns":
            return "Reached conversation limit"

    for event in reversed(events):
        if event.get("type") != "assistant":
            continue
        content = (event.get("message") or {}).get("content")
        if not isinstance(content, list):
            continue
        tools = tool_use_blocks(content)
        if tools:
            return f"Last action: {tools[0].get('name')}"
        text = next(
            (b.get("text") for b in content if isinstance(b, dict) and b.get("type") == "text"),
            None,
        )
        if isinstance(text, str):
            return text if len(text) <= 50 else text[:47] + "..."

    return "Active conversation"
