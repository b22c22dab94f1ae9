from __future__ import annotations

from typing import Any

from loguru import logger

from chat_stream_runtime.follow_up import attach_follow_ups
from chat_stream_runtime.models import Message
from chat_stream_runtime.stream.cancellation import CancellationHandle
from chat_stream_runtime.stream.events import (
    DoneEvent,
    ErrorEvent,
    MessageEvent,
    StreamEvent,
    TokenEvent,
    UpdateEvent,
)
from chat_stream_runtime.tool_tracker import ToolInvocationTracker


class Turn:
    """One request/response cycle: a user message and the assistant reply it opened."""

    def __init__(self, user_message: Message, assistant_message: Message, handle: CancellationHandle):
        self.user_message = user_message
        self.assistant_message = assistant_message
        self.handle = handle
        self.tools = ToolInvocationTracker(assistant_message.tool_invocations)
        self.pending_follow_ups: list[str] = []
        self.follow_up_prompts: list[str] = []
        self.error: str | None = None
        self.cancelled = False
        self.closed = False
        self.finalized = False


class MessageAssembler:
    """Folds stream events, in arrival order, into the state of an open turn."""

    def apply(self, turn: Turn, event: StreamEvent) -> None:
        if turn.closed:
            logger.debug(f"Dropping {event.type} event for closed turn {turn.assistant_message.id}")
            return

        if isinstance(event, TokenEvent):
            turn.assistant_message.append(event.content)
        elif isinstance(event, MessageEvent):
            self._apply_message(turn, event.content)
        elif isinstance(event, UpdateEvent):
            follow_up = event.follow_up
            if follow_up is not None:
                turn.pending_follow_ups = follow_up
                turn.follow_up_prompts = list(follow_up)
        elif isinstance(event, ErrorEvent):
            logger.warning(f"Backend reported an error: {event.content}")
            turn.error = event.content
            turn.assistant_message.content = f"Error: {event.content}"
        elif isinstance(event, DoneEvent):
            self.close(turn)

    def close(self, turn: Turn) -> None:
        if turn.closed:
            return
        turn.closed = True
        turn.handle.release()
        logger.debug(
            f"Turn closed: message={turn.assistant_message.id}, "
            f"chars={len(turn.assistant_message.content)}, "
            f"tools={len(turn.assistant_message.tool_invocations)}"
        )

    def cancel(self, turn: Turn) -> None:
        turn.cancelled = True
        turn.tools.cancel_open()
        self.close(turn)

    def _apply_message(self, turn: Turn, record: dict[str, Any] | str) -> None:
        if isinstance(record, str):
            self._replace_text(turn, record, {})
            return

        kind = record.get("type")
        if kind == "tool":
            turn.tools.observe_tool_message(record)
            return

        tool_calls = record.get("tool_calls")
        if isinstance(tool_calls, list) and tool_calls:
            turn.tools.observe_tool_calls(tool_calls)
            text = record.get("content")
            if isinstance(text, str) and text:
                self._replace_text(turn, text, record)
            return

        if kind == "custom":
            custom_data = record.get("custom_data")
            follow_up = custom_data.get("follow_up") if isinstance(custom_data, dict) else None
            if isinstance(follow_up, list):
                turn.pending_follow_ups = [str(item) for item in follow_up]
                turn.follow_up_prompts = list(turn.pending_follow_ups)
            return

        text = record.get("content")
        self._replace_text(turn, text if isinstance(text, str) else "", record)

    def _replace_text(self, turn: Turn, text: str, record: dict[str, Any]) -> None:
        message = turn.assistant_message
        message.content = text

        custom_data = dict(message.custom_data or {})
        incoming = record.get("custom_data")
        if isinstance(incoming, dict):
            custom_data.update(incoming)
        if record.get("run_id"):
            custom_data["run_id"] = record["run_id"]
        if custom_data:
            message.custom_data = custom_data

        if turn.pending_follow_ups:
            message.content, turn.pending_follow_ups = attach_follow_ups(
                message.content, turn.pending_follow_ups
            )
