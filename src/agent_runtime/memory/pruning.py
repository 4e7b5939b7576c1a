from __future__ import annotations

from datetime import timedelta

from loguru import logger

from agent_runtime.memory.store import MemoryStore
from agent_runtime.models import utc_now


def prune_memory(
    store: MemoryStore,
    *,
    max_sessions: int,
    max_messages_per_session: int = 0,
    retention_days: int,
) -> None:
    cutoff = (utc_now() - timedelta(days=max(1, retention_days))).isoformat(timespec="seconds")

    removed = store.execute("DELETE FROM sessions WHERE updated_at < ?", (cutoff,)).rowcount
    store.execute("DELETE FROM events WHERE created_at < ?", (cutoff,))
    store.execute("DELETE FROM usage WHERE created_at < ?", (cutoff,))

    if max_messages_per_session > 0:
        sessions = store.execute("SELECT id FROM sessions").fetchall()
        for session_row in sessions:
            overflow = store.execute(
                """
                SELECT id
                FROM messages
                WHERE session_id = ?
                ORDER BY seq DESC
                LIMIT -1 OFFSET ?
                """,
                (str(session_row["id"]), max_messages_per_session),
            ).fetchall()
            if overflow:
                store.executemany(
                    "DELETE FROM messages WHERE id = ?",
                    [(str(row["id"]),) for row in overflow],
                )

    if max_sessions > 0:
        overflow_sessions = store.execute(
            """
            SELECT id
            FROM sessions
            ORDER BY updated_at DESC
            LIMIT -1 OFFSET ?
            """,
            (max_sessions,),
        ).fetchall()
        if overflow_sessions:
            removed += len(overflow_sessions)
            store.executemany(
                "DELETE FROM sessions WHERE id = ?",
                [(str(row["id"]),) for row in overflow_sessions],
            )

    store.commit()
    if removed:
        logger.info(f"Pruned {removed} session(s) from memory")
