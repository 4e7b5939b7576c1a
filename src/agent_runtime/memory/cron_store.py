from __future__ import annotations

from dataclasses import dataclass

from croniter import croniter
from loguru import logger

from agent_runtime.memory.store import MemoryStore
from agent_runtime.models import new_id, utc_now


@dataclass(frozen=True)
class CronJob:
    id: str
    name: str
    schedule: str
    message: str
    channel_name: str | None = None
    chat_id: str | None = None
    user_id: str | None = None
    enabled: bool = True
    last_run: str | None = None


class CronJobStore:
    """Scheduled prompts, persisted so they survive restarts."""

    def __init__(self, store: MemoryStore):
        self._store = store

    def add(
        self,
        name: str,
        schedule: str,
        message: str,
        *,
        channel_name: str | None = None,
        chat_id: str | None = None,
        user_id: str | None = None,
        enabled: bool = True,
    ) -> CronJob:
        schedule = schedule.strip()
        if not croniter.is_valid(schedule):
            raise ValueError(f"Invalid cron expression: {schedule}")

        job = CronJob(
            id=new_id(8),
            name=name,
            schedule=schedule,
            message=message,
            channel_name=channel_name or None,
            chat_id=chat_id or None,
            user_id=user_id or None,
            enabled=enabled,
        )
        with self._store.transaction():
            self._store.execute(
                """
                INSERT INTO cron_jobs (id, name, schedule, message, channel_name, chat_id, user_id, enabled, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.id,
                    job.name,
                    job.schedule,
                    job.message,
                    job.channel_name,
                    job.chat_id,
                    job.user_id,
                    1 if job.enabled else 0,
                    utc_now().isoformat(timespec="seconds"),
                ),
            )
        logger.info(f"Cron job added: {job.name} ({job.schedule})")
        return job

    def get(self, job_id: str) -> CronJob | None:
        row = self._store.execute("SELECT * FROM cron_jobs WHERE id = ?", (job_id,)).fetchone()
        return None if row is None else _to_job(row)

    def list_jobs(self, *, enabled_only: bool = False) -> list[CronJob]:
        query = "SELECT * FROM cron_jobs"
        if enabled_only:
            query += " WHERE enabled = 1"
        rows = self._store.execute(query + " ORDER BY name").fetchall()
        return [_to_job(row) for row in rows]

    def remove(self, job_id: str) -> bool:
        with self._store.transaction():
            cursor = self._store.execute("DELETE FROM cron_jobs WHERE id = ?", (job_id,))
        if cursor.rowcount:
            logger.info(f"Cron job removed: {job_id}")
        return cursor.rowcount > 0

    def set_enabled(self, job_id: str, enabled: bool) -> bool:
        with self._store.transaction():
            cursor = self._store.execute(
                "UPDATE cron_jobs SET enabled = ? WHERE id = ?",
                (1 if enabled else 0, job_id),
            )
        return cursor.rowcount > 0

    def mark_run(self, job_id: str) -> None:
        with self._store.transaction():
            self._store.execute(
                "UPDATE cron_jobs SET last_run = ? WHERE id = ?",
                (utc_now().isoformat(timespec="seconds"), job_id),
            )


def _to_job(row) -> CronJob:
    return CronJob(
        id=row["id"],
        name=row["name"],
        schedule=row["schedule"],
        message=row["message"],
        channel_name=row["channel_name"],
        chat_id=row["chat_id"],
        user_id=row["user_id"],
        enabled=bool(row["enabled"]),
        last_run=row["last_run"],
    )
