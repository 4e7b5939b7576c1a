from __future__ import annotations

from dataclasses import dataclass

from agent_runtime.memory.store import MemoryStore
from agent_runtime.models import new_id, utc_now
from agent_runtime.stream import TokenUsage


@dataclass(frozen=True)
class UsageSummary:
    requests: int
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class UsageTracker:
    def __init__(self, store: MemoryStore):
        self._store = store

    def record(self, session_id: str, provider: str, model: str, usage: TokenUsage) -> None:
        with self._store.transaction():
            self._store.execute(
                """
                INSERT INTO usage (id, session_id, provider, model, prompt_tokens, completion_tokens, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    new_id(),
                    session_id,
                    provider,
                    model,
                    usage.prompt_tokens,
                    usage.completion_tokens,
                    utc_now().isoformat(timespec="seconds"),
                ),
            )

    def summary(self, session_id: str | None = None) -> UsageSummary:
        query = """
            SELECT COUNT(*) AS requests,
                   COALESCE(SUM(prompt_tokens), 0) AS prompt_tokens,
                   COALESCE(SUM(completion_tokens), 0) AS completion_tokens
            FROM usage
        """
        params: tuple = ()
        if session_id is not None:
            query += " WHERE session_id = ?"
            params = (session_id,)
        row = self._store.execute(query, params).fetchone()
        return UsageSummary(int(row["requests"]), int(row["prompt_tokens"]), int(row["completion_tokens"]))

    def by_provider(self) -> dict[str, UsageSummary]:
        rows = self._store.execute(
            """
            SELECT provider,
                   COUNT(*) AS requests,
                   SUM(prompt_tokens) AS prompt_tokens,
                   SUM(completion_tokens) AS completion_tokens
            FROM usage
            GROUP BY provider
            ORDER BY provider
            """
        ).fetchall()
        return {
            row["provider"]: UsageSummary(int(row["requests"]), int(row["prompt_tokens"]), int(row["completion_tokens"]))
            for row in rows
        }
