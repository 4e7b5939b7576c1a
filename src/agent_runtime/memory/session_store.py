from __future__ import annotations

import json
from datetime import datetime

from agent_runtime.memory.store import MemoryStore
from agent_runtime.models import Message, Session, new_id, utc_now


def _iso(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


class SessionStore:
    """Durable sessions keyed by (channel, chat), with ordered messages."""

    def __init__(self, store: MemoryStore):
        self._store = store

    def get(self, session_id: str) -> Session | None:
        row = self._store.execute(
            "SELECT * FROM sessions WHERE id = ? LIMIT 1",
            (session_id,),
        ).fetchone()
        if row is None:
            return None
        return self._hydrate(row)

    def find(self, channel_name: str, chat_id: str) -> Session | None:
        row = self._store.execute(
            "SELECT * FROM sessions WHERE channel_name = ? AND chat_id = ? LIMIT 1",
            (channel_name, chat_id),
        ).fetchone()
        if row is None:
            return None
        return self._hydrate(row)

    def get_or_create(self, channel_name: str, chat_id: str, user_id: str) -> Session:
        existing = self.find(channel_name, chat_id)
        if existing is not None:
            return existing

        session = Session(id=new_id(), channel_name=channel_name, chat_id=chat_id, user_id=user_id)
        self._store.execute(
            """
            INSERT INTO sessions (id, channel_name, chat_id, user_id, created_at, updated_at, metadata_json)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session.id,
                channel_name,
                chat_id,
                user_id,
                _iso(session.created_at),
                _iso(session.updated_at),
                json.dumps(session.metadata, ensure_ascii=True),
            ),
        )
        self._store.commit()
        return session

    def list_sessions(self, *, limit: int = 50) -> list[Session]:
        """Most recently updated first. Messages are not loaded."""
        rows = self._store.execute(
            """
            SELECT * FROM sessions
            ORDER BY updated_at DESC, created_at DESC
            LIMIT ?
            """,
            (max(1, limit),),
        ).fetchall()
        return [self._hydrate(row, with_messages=False) for row in rows]

    def add_message(self, session: Session, message: Message) -> int:
        row = self._store.execute(
            "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM messages WHERE session_id = ?",
            (session.id,),
        ).fetchone()
        next_seq = int(row["max_seq"]) + 1
        session.updated_at = utc_now()
        with self._store.transaction():
            self._insert_messages(session.id, [(next_seq, message)], session.updated_at)
            self._touch(session)
        session.messages.append(message)
        return next_seq

    def save(self, session: Session) -> None:
        """Persist the session, replacing its stored messages with ``session.messages``."""
        session.updated_at = utc_now()
        with self._store.transaction():
            self._store.execute("DELETE FROM messages WHERE session_id = ?", (session.id,))
            self._insert_messages(
                session.id,
                list(enumerate(session.messages, start=1)),
                session.updated_at,
            )
            self._touch(session)

    def clear_messages(self, session: Session) -> None:
        session.messages.clear()
        self.save(session)

    def delete(self, session_id: str) -> None:
        with self._store.transaction():
            self._store.execute("DELETE FROM sessions WHERE id = ?", (session_id,))

    def _insert_messages(self, session_id: str, numbered: list[tuple[int, Message]], now: datetime) -> None:
        if not numbered:
            return
        self._store.executemany(
            """
            INSERT INTO messages (id, session_id, seq, role, message_json, created_at, token_estimate)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    new_id(),
                    session_id,
                    seq,
                    message.role,
                    json.dumps(message.to_dict(), ensure_ascii=True),
                    _iso(now),
                    message.content_length() // 4,
                )
                for seq, message in numbered
            ],
        )

    def _touch(self, session: Session) -> None:
        self._store.execute(
            "UPDATE sessions SET updated_at = ?, metadata_json = ? WHERE id = ?",
            (_iso(session.updated_at), json.dumps(session.metadata, ensure_ascii=True, default=str), session.id),
        )

    def _hydrate(self, row, *, with_messages: bool = True) -> Session:
        messages: list[Message] = []
        if with_messages:
            message_rows = self._store.execute(
                "SELECT message_json FROM messages WHERE session_id = ? ORDER BY seq ASC",
                (row["id"],),
            ).fetchall()
            messages = [Message.from_dict(json.loads(r["message_json"])) for r in message_rows]
        return Session(
            id=row["id"],
            channel_name=row["channel_name"],
            chat_id=row["chat_id"],
            user_id=row["user_id"],
            messages=messages,
            metadata=self._parse_metadata(row["metadata_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _parse_metadata(self, metadata_json: str) -> dict:
        try:
            parsed = json.loads(metadata_json)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
