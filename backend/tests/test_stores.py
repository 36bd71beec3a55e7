"""Unit tests for the settings stores and message stores."""
from __future__ import annotations

import json
import re
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from src.agent_rounds.message_store import InMemoryMessageStore, SQLiteMessageStore
from src.agent_rounds.models import (
    AgentMessage,
    SummaryMessage,
    SummaryMetadata,
    UserMessage,
    error_message,
)
from src.agent_rounds.settings_store import InMemorySettingsStore, JsonSettingsStore, PermissionRecord

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def at(seconds: int) -> datetime:
    return T0 + timedelta(seconds=seconds)


class TestInMemorySettingsStore(unittest.IsolatedAsyncioTestCase):
    async def test_allow_then_deny_moves_between_lists(self) -> None:
        store = InMemorySettingsStore()
        await store.add_allowed("tool")
        self.assertTrue(await store.is_allowed("tool"))
        await store.add_denied("tool")
        self.assertFalse(await store.is_allowed("tool"))
        self.assertTrue(await store.is_denied("tool"))

    async def test_add_is_idempotent_and_remove(self) -> None:
        store = InMemorySettingsStore()
        await store.add_allowed("tool")
        await store.add_allowed("tool")
        self.assertEqual((await store.fetch_record()).allow, ["tool"])
        await store.remove_allowed("tool")
        await store.remove_allowed("tool")
        self.assertEqual((await store.fetch_record()).allow, [])

    async def test_fetch_returns_a_copy(self) -> None:
        store = InMemorySettingsStore(PermissionRecord(allow=["a"]))
        record = await store.fetch_record()
        record.allow.append("b")
        self.assertEqual((await store.fetch_record()).allow, ["a"])


class TestJsonSettingsStore(unittest.IsolatedAsyncioTestCase):
    async def test_missing_file_is_empty_record(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = JsonSettingsStore(Path(tmp) / "settings.json")
            record = await store.fetch_record()
            self.assertEqual(record.allow, [])
            self.assertEqual(record.deny, [])

    async def test_changes_are_written_and_shared(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "nested" / "settings.json"
            store = JsonSettingsStore(path)
            await store.add_allowed("read_file")
            await store.add_denied("write_file")
            with open(path) as f:
                raw = json.load(f)
            self.assertEqual(raw, {"permissions": {"allow": ["read_file"], "deny": ["write_file"]}})

            other = JsonSettingsStore(path)
            self.assertTrue(await other.is_allowed("read_file"))
            await other.remove_denied("write_file")
            self.assertFalse(await store.is_denied("write_file"))


class MessageStoreCases:
    """Shared behaviour; subclasses provide ``make_store``."""

    async def make_store(self):
        raise NotImplementedError

    async def test_upsert_law(self) -> None:
        store = await self.make_store()
        await store.store_message(AgentMessage(id="a", content="he", sender="x", timestamp=at(1)))
        await store.store_message(UserMessage(id="u", content="q", sender="y", timestamp=at(2)))
        await store.store_message(AgentMessage(id="a", content="hello", sender="x", timestamp=at(1)))
        history = await store.get_message_history()
        self.assertEqual([m.id for m in history], ["a", "u"])
        self.assertEqual(history[0].content, "hello")

    async def test_history_starts_at_latest_summary(self) -> None:
        store = await self.make_store()
        summary = SummaryMessage(
            id="s", content="sum", sender="summarizer", timestamp=at(3), metadata=SummaryMetadata(message_count=2)
        )
        await store.store_messages(
            [
                UserMessage(id="u1", content="old", sender="user", timestamp=at(1)),
                AgentMessage(id="a1", content="old reply", sender="agent", timestamp=at(2)),
                summary,
                UserMessage(id="u2", content="new", sender="user", timestamp=at(4)),
            ]
        )
        self.assertEqual([m.id for m in await store.get_message_history()], ["s", "u2"])
        self.assertEqual([m.id for m in await store.get_message_history(limit=1)], ["u2"])

    async def test_queries(self) -> None:
        store = await self.make_store()
        failure = error_message("tool", "disk full", error="OSError")
        await store.store_messages(
            [
                UserMessage(id="u1", content="write the report", sender="user", timestamp=at(1)),
                AgentMessage(id="a1", content="Writing report.md", sender="agent", timestamp=at(2)),
                failure,
            ]
        )
        self.assertEqual([m.id for m in await store.get_messages_by_type("agent")], ["a1"])
        self.assertEqual([m.id for m in await store.search_by_regex(r"report")], ["u1", "a1"])
        found = await store.get_message_by_id(failure.id)
        self.assertEqual(found.model_dump(), failure.model_dump())
        self.assertIsNone(await store.get_message_by_id("missing"))
        with self.assertRaises(re.error):
            await store.search_by_regex("(")


class TestInMemoryMessageStore(MessageStoreCases, unittest.IsolatedAsyncioTestCase):
    async def make_store(self):
        return InMemoryMessageStore()

    async def test_cap_keeps_most_recent(self) -> None:
        store = InMemoryMessageStore(max_messages=2)
        for i in range(4):
            await store.store_message(UserMessage(id=f"u{i}", content=str(i), sender="user", timestamp=at(i)))
        self.assertEqual([m.id for m in await store.all_messages()], ["u2", "u3"])


class TestSQLiteMessageStore(MessageStoreCases, unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "messages.db"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    async def make_store(self):
        return SQLiteMessageStore("session-1", self.path)

    async def test_sessions_are_separate(self) -> None:
        first = SQLiteMessageStore("one", self.path)
        second = SQLiteMessageStore("two", self.path)
        await first.store_message(UserMessage(id="same", content="first", sender="user", timestamp=at(1)))
        await second.store_message(UserMessage(id="same", content="second", sender="user", timestamp=at(1)))
        self.assertEqual([m.content for m in await first.all_messages()], ["first"])
        self.assertEqual([m.content for m in await second.all_messages()], ["second"])


if __name__ == "__main__":
    unittest.main()
