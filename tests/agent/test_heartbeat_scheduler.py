import asyncio
import tempfile
import unittest
from pathlib import Path

from agent_runtime.bus import HeartbeatTick, OutgoingMessage
from agent_runtime.context import ContextBuilder
from agent_runtime.heartbeat import HEARTBEAT_CHANNEL, HeartbeatScheduler
from tests.fakes import FakeProvider, build_agent, text_reply


class HeartbeatSchedulerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.workspace = self._tmp.name

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_tick_runs_the_heartbeat_prompt_as_a_trigger(self) -> None:
        Path(self.workspace, "HEARTBEAT.md").write_text("Review open reminders.", encoding="utf-8")
        provider = FakeProvider("a", [text_reply("Two reminders are due.")])
        context = ContextBuilder(self.workspace)
        harness = build_agent([provider], self.workspace, context=context)
        ticks: list[HeartbeatTick] = []
        outgoing: list[OutgoingMessage] = []
        harness.bus.subscribe(HeartbeatTick, ticks.append)
        harness.bus.subscribe(OutgoingMessage, outgoing.append)
        scheduler = HeartbeatScheduler(harness.agent, context, harness.bus, interval_seconds=60)

        reply = asyncio.run(scheduler.tick())

        self.assertEqual("Two reminders are due.", reply)
        self.assertEqual(1, len(ticks))
        sent, _ = provider.calls[0]
        self.assertTrue(sent[-1].text.endswith("Review open reminders."))
        self.assertEqual([OutgoingMessage(HEARTBEAT_CHANNEL, HEARTBEAT_CHANNEL, "Two reminders are due.")], outgoing)
        self.assertIsNotNone(harness.sessions.find(HEARTBEAT_CHANNEL, HEARTBEAT_CHANNEL))

    def test_start_and_stop(self) -> None:
        harness = build_agent([FakeProvider("a")], self.workspace)
        scheduler = HeartbeatScheduler(harness.agent, ContextBuilder(self.workspace), harness.bus, interval_seconds=60)

        async def scenario():
            await scheduler.start()
            started = scheduler.running
            await scheduler.stop()
            return started, scheduler.running

        self.assertEqual((True, False), asyncio.run(scenario()))


if __name__ == "__main__":
    unittest.main()
