from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime

from croniter import croniter
from loguru import logger

from agent_runtime.agent import Agent
from agent_runtime.bus import CronTriggered, MessageBus
from agent_runtime.memory.cron_store import CronJob, CronJobStore

CRON_CHANNEL = "cron"
DEFAULT_CHECK_INTERVAL_SECONDS = 30.0


def _local_now() -> datetime:
    return datetime.now().astimezone()


def next_run_after(schedule: str, moment: datetime) -> datetime:
    return croniter(schedule, moment).get_next(datetime)


class CronScheduler:
    """Fires stored cron jobs through ``Agent.trigger``.

    Schedules are evaluated in local time. A job's first run is the first slot
    after the scheduler first sees it, so slots missed while the runtime was
    down are skipped rather than replayed.
    """

    def __init__(
        self,
        jobs: CronJobStore,
        agent: Agent,
        bus: MessageBus,
        *,
        check_interval_seconds: float = DEFAULT_CHECK_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = _local_now,
    ):
        self._jobs = jobs
        self._agent = agent
        self._bus = bus
        self._check_interval_seconds = max(1.0, check_interval_seconds)
        self._clock = clock
        self._next_runs: dict[str, datetime] = {}
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_run(self, job_id: str) -> datetime | None:
        return self._next_runs.get(job_id)

    async def start(self) -> None:
        if self._task is None:
            self.collect_due()
            self._task = asyncio.create_task(self._run())
            logger.info(f"Cron scheduler started with {len(self._next_runs)} job(s)")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Cron scheduler stopped")

    def collect_due(self) -> list[CronJob]:
        """Refresh next-run times and return the jobs that are due now."""
        now = self._clock()
        jobs = self._jobs.list_jobs(enabled_only=True)
        for stale in set(self._next_runs) - {job.id for job in jobs}:
            del self._next_runs[stale]

        due: list[CronJob] = []
        for job in jobs:
            try:
                scheduled = self._next_runs.get(job.id)
                if scheduled is not None and now >= scheduled:
                    due.append(job)
                if scheduled is None or now >= scheduled:
                    self._next_runs[job.id] = next_run_after(job.schedule, now)
            except Exception as ex:
                logger.error(f"Cron job {job.name} has an unusable schedule {job.schedule!r}: {ex}")
        return due

    async def tick(self) -> list[CronJob]:
        due = self.collect_due()
        for job in due:
            try:
                await self.run_job(job)
            except Exception as ex:
                logger.error(f"Cron job {job.name} failed: {ex}")
        return due

    async def run_job(self, job: CronJob) -> str:
        logger.info(f"Cron job triggered: {job.name}")
        self._jobs.mark_run(job.id)
        self._bus.publish(CronTriggered(job.id, job.name))
        return await self._agent.trigger(
            job.message,
            channel_name=job.channel_name or CRON_CHANNEL,
            chat_id=job.chat_id or f"cron_{job.id}",
            user_id=job.user_id or "system-cron",
        )

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._check_interval_seconds)
            try:
                await self.tick()
            except Exception as ex:
                logger.error(f"Cron tick failed: {ex}")
