from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

ROLES = ("system", "user", "assistant", "tool")


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_id(length: int = 16) -> str:
    return uuid4().hex[:length]


@dataclass(frozen=True)
class ContentBlock:
    type: str
    text: str | None = None
    data: str | None = None
    mime_type: str | None = None
    url: str | None = None
    file_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentBlock:
        return cls(
            type=data.get("type", "text"),
            text=data.get("text"),
            data=data.get("data"),
            mime_type=data.get("mime_type"),
            url=data.get("url"),
            file_name=data.get("file_name"),
        )


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(id=data["id"], name=data["name"], arguments=dict(data.get("arguments") or {}))


@dataclass(frozen=True)
class ToolResult:
    tool_call_id: str
    content: str
    is_error: bool = False


@dataclass(frozen=True)
class Message:
    role: str
    content: str | list[ContentBlock] = ""
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "\n".join(b.text or "" for b in self.content if b.type == "text")

    def content_length(self) -> int:
        if isinstance(self.content, str):
            length = len(self.content)
        else:
            length = len(json.dumps([b.to_dict() for b in self.content]))
        for call in self.tool_calls:
            length += len(call.name) + len(json.dumps(call.arguments))
        return length

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role}
        if isinstance(self.content, str):
            data["content"] = self.content
        else:
            data["content"] = [b.to_dict() for b in self.content]
        if self.name:
            data["name"] = self.name
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            data["tool_calls"] = [c.to_dict() for c in self.tool_calls]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        content = data.get("content", "")
        if isinstance(content, list):
            content = [ContentBlock.from_dict(b) for b in content]
        return cls(
            role=data["role"],
            content=content,
            name=data.get("name"),
            tool_call_id=data.get("tool_call_id"),
            tool_calls=[ToolCall.from_dict(c) for c in data.get("tool_calls", [])],
        )

    @classmethod
    def user(cls, content: str | list[ContentBlock]) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, text: str, tool_calls: list[ToolCall] | None = None) -> Message:
        return cls(role="assistant", content=text, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, result: ToolResult, name: str | None = None) -> Message:
        return cls(role="tool", content=result.content, tool_call_id=result.tool_call_id, name=name)


@dataclass
class Session:
    id: str
    channel_name: str
    chat_id: str
    user_id: str
    messages: list[Message] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class IncomingMessage:
    channel_name: str
    chat_id: str
    user_id: str
    text: str
    id: str = field(default_factory=new_id)
    user_name: str | None = None
    is_group: bool = False
    timestamp: datetime = field(default_factory=utc_now)


class SubAgentStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SubAgentTask:
    id: str
    parent_session_id: str
    description: str
    status: SubAgentStatus = SubAgentStatus.PENDING
    result: str | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (SubAgentStatus.COMPLETED, SubAgentStatus.FAILED)
