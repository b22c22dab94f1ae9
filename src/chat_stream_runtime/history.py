from __future__ import annotations

from typing import Any

from chat_stream_runtime.models import Message
from chat_stream_runtime.tool_tracker import ToolInvocationTracker


def history_to_messages(records: list[dict[str, Any]]) -> list[Message]:
    """Convert backend history records into conversation messages.

    Consecutive `ai` and `tool` records between two `human` records are
    merged into one assistant message carrying the tool invocations and the
    last non-empty text, so a loaded thread has the same user/assistant shape
    as one built while streaming. `custom` and unknown records are skipped.
    """
    messages: list[Message] = []
    i = 0
    while i < len(records):
        record = records[i]
        kind = record.get("type")

        if kind == "human":
            messages.append(
                Message(
                    "user",
                    _text(record),
                    custom_data=_custom_data(record),
                )
            )
            i += 1
            continue

        if kind not in ("ai", "tool"):
            i += 1
            continue

        message = Message("assistant")
        tools = ToolInvocationTracker(message.tool_invocations)
        first_run_id: str | None = None
        last_custom_data: dict[str, Any] | None = None

        while i < len(records) and records[i].get("type") != "human":
            record = records[i]
            kind = record.get("type")
            if kind == "ai":
                if record.get("run_id") and first_run_id is None:
                    first_run_id = str(record["run_id"])
                last_custom_data = _custom_data(record)
                text = _text(record)
                if text:
                    message.content = text
                tool_calls = record.get("tool_calls")
                if isinstance(tool_calls, list):
                    tools.observe_tool_calls(tool_calls)
            elif kind == "tool":
                tools.observe_tool_message(record)
            i += 1

        custom_data = dict(last_custom_data or {})
        if first_run_id:
            custom_data["run_id"] = first_run_id
        message.custom_data = custom_data or None
        messages.append(message)

    return messages


def _text(record: dict[str, Any]) -> str:
    content = record.get("content")
    return content if isinstance(content, str) else ""


def _custom_data(record: dict[str, Any]) -> dict[str, Any] | None:
    data = record.get("custom_data")
    return dict(data) if isinstance(data, dict) else None
