from __future__ import annotations

import asyncio
import dataclasses
import json

from loguru import logger

from agent_runtime.bus import (
    AgentResponse,
    ApprovalRequested,
    ApprovalResponded,
    CronTriggered,
    HeartbeatTick,
    MessageBus,
    SessionCompacted,
    SubAgentCompleted,
    SubAgentSpawned,
    ToolCompleted,
    ToolStarted,
)
from agent_runtime.memory.store import MemoryStore
from agent_runtime.models import new_id, utc_now

PERSISTED_EVENTS: tuple[type, ...] = (
    AgentResponse,
    ApprovalRequested,
    ApprovalResponded,
    CronTriggered,
    HeartbeatTick,
    SessionCompacted,
    SubAgentCompleted,
    SubAgentSpawned,
    ToolCompleted,
    ToolStarted,
)


def _event_type(event: object) -> str:
    name = type(event).__name__
    return "".join(f"_{c.lower()}" if c.isupper() and i else c.lower() for i, c in enumerate(name))


def _session_of(event: object) -> str:
    for attr in ("session_id", "parent_session_id"):
        value = getattr(event, attr, None)
        if value:
            return str(value)
    return ""


class AsyncEventSink:
    """Queues bus events and writes them to the events table in batches."""

    def __init__(self, store: MemoryStore, *, batch_size: int = 50, flush_interval_seconds: float = 0.5):
        self._store = store
        self._batch_size = max(1, batch_size)
        self._flush_interval_seconds = max(0.05, flush_interval_seconds)
        self._queue: asyncio.Queue[tuple[str, str, dict]] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._closed = False

    def attach(self, bus: MessageBus, event_types: tuple[type, ...] = PERSISTED_EVENTS) -> None:
        for event_type in event_types:
            bus.subscribe(event_type, self.record)

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    def record(self, event: object) -> None:
        payload = dataclasses.asdict(event) if dataclasses.is_dataclass(event) else {"value": repr(event)}
        self.emit(_session_of(event), _event_type(event), payload)

    def emit(self, session_id: str, event_type: str, payload: dict) -> None:
        if self._closed:
            logger.warning(f"Event sink closed, dropping event: {event_type}")
            return
        self._queue.put_nowait((session_id, event_type, payload))

    async def close(self) -> None:
        self._closed = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._flush_all()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._flush_interval_seconds)
            try:
                self._flush_once()
            except Exception as ex:
                logger.error(f"Event sink flush failed: {ex}")

    def _flush_all(self) -> None:
        while not self._queue.empty():
            self._flush_once()

    def _flush_once(self) -> None:
        items: list[tuple[str, str, dict]] = []
        while len(items) < self._batch_size and not self._queue.empty():
            items.append(self._queue.get_nowait())
        if not items:
            return

        now = utc_now().isoformat(timespec="seconds")
        params = [
            (new_id(), session_id, event_type, json.dumps(payload, ensure_ascii=True, default=str), now)
            for session_id, event_type, payload in items
        ]
        with self._store.transaction():
            self._store.executemany(
                """
                INSERT INTO events (id, session_id, type, payload_json, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                params,
            )
