from __future__ import annotations

import asyncio

from loguru import logger

from agent_runtime.agent import Agent
from agent_runtime.bus import HeartbeatTick, MessageBus
from agent_runtime.context import ContextBuilder

HEARTBEAT_CHANNEL = "heartbeat"


class HeartbeatScheduler:
    """Wakes the agent every ``interval_seconds`` with the workspace heartbeat prompt."""

    def __init__(
        self,
        agent: Agent,
        context: ContextBuilder,
        bus: MessageBus,
        *,
        interval_seconds: float,
    ):
        self._agent = agent
        self._context = context
        self._bus = bus
        self._interval_seconds = max(1.0, interval_seconds)
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info(f"Heartbeat started (every {self._interval_seconds:.0f}s)")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def tick(self) -> str:
        self._bus.publish(HeartbeatTick())
        return await self._agent.trigger(
            self._context.build_heartbeat_prompt(),
            channel_name=HEARTBEAT_CHANNEL,
            chat_id=HEARTBEAT_CHANNEL,
            user_id="system",
        )

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                await self.tick()
            except Exception as ex:
                logger.error(f"Heartbeat failed: {ex}")
