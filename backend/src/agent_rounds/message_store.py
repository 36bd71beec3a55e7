"""Message stores: upsert-by-id persistence for produced messages."""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from .config import MESSAGES_DB_PATH, ensure_dirs
from .models import Message, SummaryMessage, parse_message, upsert_by_id

logger = logging.getLogger(__name__)


def _from_latest_summary(messages: list[Message]) -> list[Message]:
    for index in range(len(messages) - 1, -1, -1):
        if isinstance(messages[index], SummaryMessage):
            return messages[index:]
    return messages


class MessageStore(ABC):
    """Abstract message store. A message with a known ``id`` replaces the stored one."""

    @abstractmethod
    async def store_message(self, message: Message) -> None:
        ...

    async def store_messages(self, messages: list[Message]) -> None:
        for message in messages:
            await self.store_message(message)

    @abstractmethod
    async def all_messages(self) -> list[Message]:
        """Every stored message in chronological order."""
        ...

    async def get_message_history(self, limit: int | None = None) -> list[Message]:
        """Working history: the latest summary and everything after it."""
        history = _from_latest_summary(await self.all_messages())
        if limit is not None:
            history = history[-limit:] if limit > 0 else []
        return history

    async def get_messages_by_type(self, message_type: str) -> list[Message]:
        return [m for m in await self.all_messages() if m.type == message_type]

    async def search_by_regex(self, pattern: str) -> list[Message]:
        """Messages whose content matches ``pattern``; raises ``re.error`` if it is invalid."""
        regex = re.compile(pattern)
        return [m for m in await self.all_messages() if regex.search(m.content or "")]

    async def get_message_by_id(self, message_id: str) -> Message | None:
        for m in await self.all_messages():
            if m.id == message_id:
                return m
        return None


class InMemoryMessageStore(MessageStore):
    """Process-local store. ``max_messages`` keeps only the most recent entries."""

    def __init__(self, max_messages: int | None = None) -> None:
        self.max_messages = max_messages
        self._messages: list[Message] = []

    async def store_message(self, message: Message) -> None:
        upsert_by_id(self._messages, message)
        self._messages.sort(key=lambda m: m.timestamp)
        if self.max_messages is not None and len(self._messages) > self.max_messages:
            del self._messages[: len(self._messages) - self.max_messages]

    async def all_messages(self) -> list[Message]:
        return list(self._messages)


_DB_LOCK = threading.Lock()


class SQLiteMessageStore(MessageStore):
    """Messages of one session in a SQLite table, one row per message id."""

    def __init__(self, session_id: str, path: Path | None = None) -> None:
        self.session_id = session_id
        self.path = Path(path) if path is not None else MESSAGES_DB_PATH

    def _conn(self) -> sqlite3.Connection:
        if self.path == MESSAGES_DB_PATH:
            ensure_dirs()
        else:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT NOT NULL,
                session_id TEXT NOT NULL,
                type TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                PRIMARY KEY (session_id, id)
            )
            """
        )
        conn.commit()
        return conn

    def _upsert(self, message: Message) -> None:
        with _DB_LOCK:
            conn = self._conn()
            try:
                conn.execute(
                    """
                    INSERT INTO messages (id, session_id, type, timestamp, payload_json)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(session_id, id) DO UPDATE SET
                        type = excluded.type,
                        timestamp = excluded.timestamp,
                        payload_json = excluded.payload_json
                    """,
                    (
                        message.id,
                        self.session_id,
                        message.type,
                        message.timestamp.isoformat(),
                        message.model_dump_json(),
                    ),
                )
                conn.commit()
            finally:
                conn.close()

    def _select_all(self) -> list[Message]:
        with _DB_LOCK:
            conn = self._conn()
            try:
                rows = conn.execute(
                    "SELECT payload_json FROM messages WHERE session_id = ? ORDER BY timestamp, rowid",
                    (self.session_id,),
                ).fetchall()
            finally:
                conn.close()
        return [parse_message(r[0]) for r in rows]

    async def store_message(self, message: Message) -> None:
        await asyncio.to_thread(self._upsert, message)

    async def all_messages(self) -> list[Message]:
        return await asyncio.to_thread(self._select_all)
