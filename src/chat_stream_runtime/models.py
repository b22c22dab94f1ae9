from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal
from uuid import uuid4

Role = Literal["user", "assistant"]

CANCELLED_MARKER = "__cancelled"
CANCELLED_RESULT_TEXT = "Tool execution was cancelled"


def utc_now() -> datetime:
    return datetime.now(UTC)


class ToolState(StrEnum):
    CALL = "call"
    RESULT = "result"
    CANCELLED = "cancelled"


@dataclass
class ToolInvocation:
    tool_name: str
    tool_call_id: str | None = None
    args: dict[str, Any] | None = None
    state: ToolState = ToolState.CALL
    result: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.state is not ToolState.CALL

    @property
    def is_cancelled(self) -> bool:
        return self.state is ToolState.CANCELLED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"state": self.state.value, "toolName": self.tool_name}
        if self.tool_call_id is not None:
            data["toolCallId"] = self.tool_call_id
        if self.args is not None:
            data["args"] = self.args
        if self.is_terminal:
            data["result"] = self.result
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolInvocation:
        return cls(
            tool_name=str(data.get("toolName", "Tool")),
            tool_call_id=data.get("toolCallId"),
            args=data.get("args"),
            state=ToolState(data.get("state", ToolState.CALL.value)),
            result=data.get("result"),
        )


class Message:
    """One turn in the conversation.

    Content is kept as a list of chunks so that streamed tokens append in
    constant time; the chunks are joined the first time the text is read.
    """

    def __init__(
        self,
        role: Role,
        content: str = "",
        *,
        id: str | None = None,
        created_at: datetime | None = None,
        custom_data: dict[str, Any] | None = None,
        tool_invocations: list[ToolInvocation] | None = None,
    ):
        self.id = id or str(uuid4())
        self.role: Role = role
        self.created_at = created_at or utc_now()
        self.custom_data = custom_data
        self.tool_invocations: list[ToolInvocation] = list(tool_invocations or [])
        self._chunks: list[str] = [content] if content else []

    @property
    def content(self) -> str:
        if len(self._chunks) > 1:
            self._chunks = ["".join(self._chunks)]
        return self._chunks[0] if self._chunks else ""

    @content.setter
    def content(self, value: str) -> None:
        self._chunks = [value] if value else []

    def append(self, text: str) -> None:
        if text:
            self._chunks.append(text)

    @property
    def run_id(self) -> str | None:
        if not self.custom_data:
            return None
        run_id = self.custom_data.get("run_id")
        return str(run_id) if run_id else None

    def copy(self) -> Message:
        return Message(
            self.role,
            self.content,
            id=self.id,
            created_at=self.created_at,
            custom_data=deepcopy(self.custom_data),
            tool_invocations=[
                replace(inv, args=deepcopy(inv.args), result=deepcopy(inv.result))
                for inv in self.tool_invocations
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at.isoformat(),
        }
        if self.custom_data is not None:
            data["custom_data"] = self.custom_data
        if self.tool_invocations:
            data["toolInvocations"] = [inv.to_dict() for inv in self.tool_invocations]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        created_at = data.get("createdAt")
        parsed: datetime | None = None
        if isinstance(created_at, str):
            try:
                parsed = datetime.fromisoformat(created_at)
            except ValueError:
                parsed = None
        role = data.get("role")
        if role not in ("user", "assistant"):
            raise ValueError(f"Unsupported message role: {role!r}")
        return cls(
            role,
            str(data.get("content") or ""),
            id=data.get("id"),
            created_at=parsed,
            custom_data=data.get("custom_data"),
            tool_invocations=[
                ToolInvocation.from_dict(item)
                for item in data.get("toolInvocations") or []
                if isinstance(item, dict)
            ],
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Message):
            return NotImplemented
        return (
            self.id == other.id
            and self.role == other.role
            and self.content == other.content
            and self.created_at == other.created_at
            and self.custom_data == other.custom_data
            and self.tool_invocations == other.tool_invocations
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        preview = self.content[:40]
        return f"Message(id={self.id!r}, role={self.role!r}, content={preview!r})"


@dataclass(frozen=True)
class AgentInfo:
    key: str
    description: str = ""
    prompts: tuple[str, ...] = ()


@dataclass(frozen=True)
class ServiceMetadata:
    agents: tuple[AgentInfo, ...]
    models: tuple[str, ...]
    default_agent: str
    default_model: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServiceMetadata:
        agents = tuple(
            AgentInfo(
                key=str(agent.get("key", "")),
                description=str(agent.get("description") or ""),
                prompts=tuple(agent.get("prompts") or ()),
            )
            for agent in data.get("agents") or []
            if isinstance(agent, dict)
        )
        return cls(
            agents=agents,
            models=tuple(str(m) for m in data.get("models") or []),
            default_agent=str(data.get("default_agent") or ""),
            default_model=str(data.get("default_model") or ""),
        )


@dataclass(frozen=True)
class ThreadSummary:
    thread_id: str
    title: str = ""
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ThreadSummary:
        return cls(
            thread_id=str(data.get("thread_id", "")),
            title=str(data.get("title") or ""),
            updated_at=data.get("updated_at"),
        )


@dataclass(frozen=True)
class ThreadList:
    threads: tuple[ThreadSummary, ...] = ()
    total: int = 0


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only copy of the session state handed to renderers."""

    messages: tuple[Message, ...]
    is_generating: bool
    current_assistant_message_id: str | None
    current_thread_id: str | None
    follow_up_prompts: tuple[str, ...] = ()
    metadata: ServiceMetadata | None = None
    error: str | None = None
