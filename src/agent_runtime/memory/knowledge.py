from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from agent_runtime.memory.store import MemoryStore
from agent_runtime.models import utc_now

_MEMORY_HEADER = "# Agent Memory\n\nPersistent knowledge stored by the agent.\n"


@dataclass(frozen=True)
class KnowledgeEntry:
    key: str
    value: str
    category: str
    updated_at: str


class KnowledgeStore:
    """Key/value facts the agent keeps across sessions.

    Entries live in SQLite. When ``memory_file`` is set, every change also
    rewrites that markdown file so the memory can be read and edited by hand.
    """

    def __init__(self, store: MemoryStore, *, memory_file: str | Path | None = None):
        self._store = store
        self._memory_file = Path(memory_file) if memory_file else None

    def store(self, key: str, value: str, category: str = "general") -> None:
        with self._store.transaction():
            self._store.execute(
                """
                INSERT INTO knowledge (key, value, category, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    category = excluded.category,
                    updated_at = excluded.updated_at
                """,
                (key, value, category, utc_now().isoformat(timespec="microseconds")),
            )
        logger.debug(f"Memory stored: {key}")
        self._sync_file()

    def get(self, key: str) -> str | None:
        row = self._store.execute("SELECT value FROM knowledge WHERE key = ?", (key,)).fetchone()
        return None if row is None else row["value"]

    def search(self, query: str, limit: int = 10) -> list[KnowledgeEntry]:
        pattern = f"%{query}%"
        rows = self._store.execute(
            """
            SELECT key, value, category, updated_at FROM knowledge
            WHERE key LIKE ? OR value LIKE ?
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (pattern, pattern, max(1, limit)),
        ).fetchall()
        return [KnowledgeEntry(**dict(row)) for row in rows]

    def by_category(self, category: str) -> list[KnowledgeEntry]:
        rows = self._store.execute(
            "SELECT key, value, category, updated_at FROM knowledge WHERE category = ? ORDER BY updated_at DESC",
            (category,),
        ).fetchall()
        return [KnowledgeEntry(**dict(row)) for row in rows]

    def all(self) -> list[KnowledgeEntry]:
        rows = self._store.execute(
            "SELECT key, value, category, updated_at FROM knowledge ORDER BY category, key"
        ).fetchall()
        return [KnowledgeEntry(**dict(row)) for row in rows]

    def delete(self, key: str) -> bool:
        with self._store.transaction():
            cursor = self._store.execute("DELETE FROM knowledge WHERE key = ?", (key,))
        self._sync_file()
        return cursor.rowcount > 0

    def render_markdown(self) -> str:
        entries = self.all()
        if not entries:
            return ""
        sections = [f"## {e.key}\n**Category**: {e.category}\n{e.value}" for e in entries]
        return _MEMORY_HEADER + "\n" + "\n\n".join(sections) + "\n"

    def _sync_file(self) -> None:
        if self._memory_file is None:
            return
        try:
            self._memory_file.parent.mkdir(parents=True, exist_ok=True)
            self._memory_file.write_text(self.render_markdown() or _MEMORY_HEADER, encoding="utf-8")
        except OSError as ex:
            logger.warning(f"Failed to write memory file {self._memory_file}: {ex}")
