from __future__ import annotations

from typing import Any

from loguru import logger

from chat_stream_runtime.models import (
    CANCELLED_MARKER,
    CANCELLED_RESULT_TEXT,
    ToolInvocation,
    ToolState,
)

_UNNAMED_TOOL = "Tool"


def cancelled_result() -> dict[str, Any]:
    return {"content": CANCELLED_RESULT_TEXT, CANCELLED_MARKER: True}


def tool_name_from_record(record: dict[str, Any]) -> str:
    """Backends put the tool name in different places on a tool message."""
    name = record.get("name")
    if name:
        return str(name)
    for key in ("response_metadata", "custom_data"):
        nested = record.get(key)
        if isinstance(nested, dict) and nested.get("name"):
            return str(nested["name"])
    return _UNNAMED_TOOL


def clean_tool_result(raw: Any) -> Any:
    if isinstance(raw, str):
        return raw.replace("\\n", "\n")
    return raw


class ToolInvocationTracker:
    """Lifecycle of the tool calls made during one assistant turn.

    Records live in the assistant message's `tool_invocations` list, which the
    tracker mutates in place; announcement order is preserved.
    """

    def __init__(self, invocations: list[ToolInvocation]):
        self._invocations = invocations
        self._by_id: dict[str, ToolInvocation] = {
            inv.tool_call_id: inv for inv in invocations if inv.tool_call_id
        }

    @property
    def invocations(self) -> list[ToolInvocation]:
        return self._invocations

    def open_calls(self) -> list[ToolInvocation]:
        return [inv for inv in self._invocations if inv.state is ToolState.CALL]

    def announce_call(
        self,
        tool_call_id: str | None,
        tool_name: str,
        args: dict[str, Any] | None = None,
    ) -> ToolInvocation | None:
        if tool_call_id and tool_call_id in self._by_id:
            logger.debug(f"Ignoring repeated announcement for tool call {tool_call_id}")
            return None
        invocation = ToolInvocation(tool_name=tool_name, tool_call_id=tool_call_id, args=args)
        self._invocations.append(invocation)
        if tool_call_id:
            self._by_id[tool_call_id] = invocation
        logger.debug(f"Tool call started: {tool_name} ({tool_call_id})")
        return invocation

    def record_result(
        self,
        tool_call_id: str | None,
        tool_name: str,
        result: Any,
    ) -> ToolInvocation | None:
        existing = self._by_id.get(tool_call_id) if tool_call_id else None
        if existing is None:
            invocation = ToolInvocation(
                tool_name=tool_name,
                tool_call_id=tool_call_id,
                state=ToolState.RESULT,
                result=result,
            )
            self._invocations.append(invocation)
            if tool_call_id:
                self._by_id[tool_call_id] = invocation
            logger.debug(f"Tool result without a prior call adopted: {tool_name} ({tool_call_id})")
            return invocation

        if existing.is_terminal:
            logger.warning(f"Ignoring result for tool call {tool_call_id} already in state {existing.state}")
            return None

        if tool_name != _UNNAMED_TOOL:
            existing.tool_name = tool_name
        existing.state = ToolState.RESULT
        existing.result = result
        logger.debug(f"Tool call completed: {existing.tool_name} ({tool_call_id})")
        return existing

    def cancel_open(self) -> list[ToolInvocation]:
        cancelled: list[ToolInvocation] = []
        for invocation in self.open_calls():
            invocation.state = ToolState.CANCELLED
            invocation.result = cancelled_result()
            cancelled.append(invocation)
        if cancelled:
            logger.info(f"Cancelled {len(cancelled)} pending tool call(s)")
        return cancelled

    # Entry points for backend message records

    def observe_tool_calls(self, tool_calls: list[Any]) -> list[ToolInvocation]:
        announced: list[ToolInvocation] = []
        for call in tool_calls:
            if not isinstance(call, dict):
                continue
            args = call.get("args")
            invocation = self.announce_call(
                call.get("id"),
                str(call.get("name") or _UNNAMED_TOOL),
                args if isinstance(args, dict) else None,
            )
            if invocation is not None:
                announced.append(invocation)
        return announced

    def observe_tool_message(self, record: dict[str, Any]) -> ToolInvocation | None:
        return self.record_result(
            record.get("tool_call_id"),
            tool_name_from_record(record),
            clean_tool_result(record.get("content")),
        )
