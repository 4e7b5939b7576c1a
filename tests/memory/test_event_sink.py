import asyncio
import json
import unittest

from agent_runtime.bus import MessageBus, OutgoingMessage, SubAgentSpawned, ToolStarted
from agent_runtime.memory.event_sink import AsyncEventSink
from agent_runtime.memory.store import MemoryStore


class EventSinkTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryStore(":memory:")

    def tearDown(self) -> None:
        self.store.close()

    def test_event_sink_flushes_events(self) -> None:
        sink = AsyncEventSink(self.store, batch_size=10, flush_interval_seconds=0.05)

        async def scenario() -> None:
            await sink.start()
            sink.emit("s1", "event.one", {"x": 1})
            sink.emit("s1", "event.two", {"y": 2})
            await asyncio.sleep(0.12)
            await sink.close()

        asyncio.run(scenario())

        row = self.store.execute("SELECT COUNT(*) AS c FROM events WHERE session_id = ?", ("s1",)).fetchone()
        self.assertEqual(2, int(row["c"]))

    def test_close_flushes_everything_queued(self) -> None:
        sink = AsyncEventSink(self.store, batch_size=2, flush_interval_seconds=60)

        async def scenario() -> None:
            await sink.start()
            for i in range(5):
                sink.emit("s1", "tick", {"i": i})
            await sink.close()
            sink.emit("s1", "late", {})

        asyncio.run(scenario())

        rows = self.store.execute("SELECT type FROM events").fetchall()
        self.assertEqual(5, len(rows))
        self.assertNotIn("late", [r["type"] for r in rows])

    def test_attached_bus_events_are_persisted(self) -> None:
        bus = MessageBus()
        sink = AsyncEventSink(self.store, flush_interval_seconds=60)
        sink.attach(bus)

        async def scenario() -> None:
            bus.publish(ToolStarted("s1", "call_1", "bash"))
            bus.publish(SubAgentSpawned("abc", "research", "parent-1"))
            bus.publish(OutgoingMessage("console", "local", "not persisted"))
            await sink.close()

        asyncio.run(scenario())

        rows = self.store.execute("SELECT session_id, type, payload_json FROM events ORDER BY type").fetchall()
        self.assertEqual(
            [("parent-1", "sub_agent_spawned"), ("s1", "tool_started")],
            [(r["session_id"], r["type"]) for r in rows],
        )
        self.assertEqual("bash", json.loads(rows[1]["payload_json"])["tool_name"])


if __name__ == "__main__":
    unittest.main()
