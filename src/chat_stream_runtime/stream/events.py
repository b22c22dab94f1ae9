from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal, Union

from loguru import logger

from chat_stream_runtime.stream.frame_decoder import DONE_SENTINEL, frame_payload


@dataclass(frozen=True)
class TokenEvent:
    content: str
    type: Literal["token"] = "token"


@dataclass(frozen=True)
class MessageEvent:
    """Full message record from the backend.

    `content` is usually a dict shaped like the backend's chat message
    (`type`, `content`, `tool_calls`, `tool_call_id`, `run_id`, `custom_data`),
    but a bare string is accepted as plain text.
    """

    content: dict[str, Any] | str
    type: Literal["message"] = "message"


@dataclass(frozen=True)
class UpdateEvent:
    node: str | None = None
    updates: dict[str, Any] = field(default_factory=dict)
    type: Literal["update"] = "update"

    @property
    def follow_up(self) -> list[str] | None:
        value = self.updates.get("follow_up")
        if isinstance(value, list):
            return [str(item) for item in value]
        return None


@dataclass(frozen=True)
class ErrorEvent:
    content: str
    type: Literal["error"] = "error"


@dataclass(frozen=True)
class DoneEvent:
    type: Literal["done"] = "done"


StreamEvent = Union[TokenEvent, MessageEvent, UpdateEvent, ErrorEvent, DoneEvent]


def normalize_event(parsed: dict[str, Any]) -> StreamEvent | None:
    event_type = parsed.get("type")
    if event_type == "token":
        content = parsed.get("content")
        if not isinstance(content, str):
            return None
        return TokenEvent(content)
    if event_type == "message":
        content = parsed.get("content")
        if not isinstance(content, (dict, str)):
            return None
        return MessageEvent(content)
    if event_type == "error":
        content = parsed.get("content")
        return ErrorEvent(content if isinstance(content, str) else "Unknown error")
    if event_type == "update" or parsed.get("node"):
        updates = parsed.get("updates")
        node = parsed.get("node")
        return UpdateEvent(
            node=str(node) if node is not None else None,
            updates=updates if isinstance(updates, dict) else {},
        )
    return None


def interpret_payload(payload: str) -> StreamEvent | None:
    if payload == DONE_SENTINEL:
        return DoneEvent()
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as ex:
        logger.warning(f"Skipping malformed stream frame: {ex}")
        return None
    if not isinstance(parsed, dict):
        logger.warning(f"Skipping stream frame with non-object payload: {type(parsed).__name__}")
        return None
    event = normalize_event(parsed)
    if event is None:
        logger.warning(f"Skipping stream frame with unrecognised type: {parsed.get('type')!r}")
    return event


def interpret_frame(frame: str) -> StreamEvent | None:
    """Map one frame to a stream event; frames that cannot be mapped return None."""
    payload = frame_payload(frame)
    if payload is None:
        return None
    return interpret_payload(payload)
