from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from agent_runtime.models import utc_now


@dataclass(frozen=True)
class ApprovalRequested:
    id: str
    description: str
    session_id: str


@dataclass(frozen=True)
class ApprovalResponded:
    id: str
    approved: bool


@dataclass(frozen=True)
class OutgoingMessage:
    channel_name: str
    chat_id: str
    text: str


@dataclass(frozen=True)
class AgentThinking:
    session_id: str


@dataclass(frozen=True)
class AgentResponse:
    session_id: str
    text: str


@dataclass(frozen=True)
class ToolStarted:
    session_id: str
    tool_call_id: str
    tool_name: str


@dataclass(frozen=True)
class ToolCompleted:
    session_id: str
    tool_call_id: str
    tool_name: str
    is_error: bool


@dataclass(frozen=True)
class SessionCompacted:
    session_id: str
    removed_count: int


@dataclass(frozen=True)
class SubAgentSpawned:
    task_id: str
    description: str
    parent_session_id: str


@dataclass(frozen=True)
class SubAgentCompleted:
    task_id: str
    parent_session_id: str
    result: str
    success: bool


@dataclass(frozen=True)
class HeartbeatTick:
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class CronTriggered:
    job_id: str
    name: str
    timestamp: datetime = field(default_factory=utc_now)


Handler = Callable[[Any], Any]


class MessageBus:
    """In-process publish/subscribe keyed by event class.

    Synchronous handlers run inline; coroutine handlers are scheduled on the
    running loop. A failing handler is logged and never breaks the publisher.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type, handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: object) -> None:
        logger.debug(f"Bus event: {type(event).__name__}")
        for handler in list(self._handlers.get(type(event), [])):
            try:
                result = handler(event)
            except Exception as ex:
                logger.error(f"Bus handler {getattr(handler, '__qualname__', handler)} failed: {ex}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_handler_done)

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async bus handler failed: {task.exception()}")
