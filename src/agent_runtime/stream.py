from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ChunkType(str, Enum):
    TEXT = "text"
    TOOL_CALL_START = "tool_call_start"
    TOOL_CALL_DELTA = "tool_call_delta"
    TOOL_CALL_END = "tool_call_end"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class StreamChunk:
    """One event of a backend stream.

    Every backend adapter emits these and every consumer interprets them the
    same way regardless of vendor. Tool-call chunks carry the stream ``index``
    of the call they belong to; argument fragments for an index always arrive
    before its ``TOOL_CALL_END``.
    """

    type: ChunkType
    text: str = ""
    index: int = 0
    tool_call_id: str = ""
    tool_name: str = ""
    arguments: dict[str, Any] | str | None = None
    usage: TokenUsage | None = None
    error: str = ""
    provider: str = ""

    @classmethod
    def text_delta(cls, text: str) -> StreamChunk:
        return cls(type=ChunkType.TEXT, text=text)

    @classmethod
    def tool_call_start(cls, index: int, tool_call_id: str, tool_name: str) -> StreamChunk:
        return cls(type=ChunkType.TOOL_CALL_START, index=index, tool_call_id=tool_call_id, tool_name=tool_name)

    @classmethod
    def tool_call_delta(cls, index: int, fragment: str, tool_call_id: str = "") -> StreamChunk:
        return cls(type=ChunkType.TOOL_CALL_DELTA, index=index, text=fragment, tool_call_id=tool_call_id)

    @classmethod
    def tool_call_end(
        cls,
        index: int,
        tool_call_id: str,
        tool_name: str,
        arguments: dict[str, Any] | str | None = None,
    ) -> StreamChunk:
        return cls(
            type=ChunkType.TOOL_CALL_END,
            index=index,
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            arguments=arguments,
        )

    @classmethod
    def done(cls, usage: TokenUsage | None = None) -> StreamChunk:
        return cls(type=ChunkType.DONE, usage=usage)

    @classmethod
    def failure(cls, error: str) -> StreamChunk:
        return cls(type=ChunkType.ERROR, error=error)

    @property
    def is_content(self) -> bool:
        return self.type in (
            ChunkType.TEXT,
            ChunkType.TOOL_CALL_START,
            ChunkType.TOOL_CALL_DELTA,
            ChunkType.TOOL_CALL_END,
        )

    @property
    def is_terminal(self) -> bool:
        return self.type in (ChunkType.DONE, ChunkType.ERROR)
