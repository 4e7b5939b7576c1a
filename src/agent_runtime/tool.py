from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from loguru import logger


class ApprovalLevel(str, Enum):
    READ = "read"
    SUPERVISED = "supervised"
    AUTONOMOUS = "autonomous"


async def _deny(description: str) -> bool:
    logger.warning(f"No approval channel configured, denying: {description.splitlines()[0]}")
    return False


async def _discard(content: str) -> None:
    logger.debug(f"No outbound channel configured, dropping message ({len(content)} chars)")


@dataclass
class ToolContext:
    session_id: str
    user_id: str = ""
    channel_name: str = ""
    chat_id: str = ""
    workspace_path: str = "."
    request_approval: Callable[[str], Awaitable[bool]] = field(default=_deny)
    send_message: Callable[[str], Awaitable[None]] = field(default=_discard)


@runtime_checkable
class Tool(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    @property
    def input_schema(self) -> dict[str, Any]: ...

    @property
    def approval_level(self) -> ApprovalLevel: ...

    async def execute(self, tool_input: dict[str, Any], context: ToolContext) -> str: ...
