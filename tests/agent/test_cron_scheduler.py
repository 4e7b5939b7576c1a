import asyncio
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from agent_runtime.bus import CronTriggered, OutgoingMessage
from agent_runtime.cron import CRON_CHANNEL, CronScheduler, next_run_after
from agent_runtime.memory import CronJobStore
from tests.fakes import FakeProvider, build_agent, text_reply


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class NextRunTests(unittest.TestCase):
    def test_next_run_is_strictly_after_the_moment(self) -> None:
        moment = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

        self.assertEqual(datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc), next_run_after("0 9 * * *", moment))


class CronSchedulerTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.workspace = self._tmp.name
        self.clock = FakeClock(datetime(2026, 3, 2, 8, 59, 30, tzinfo=timezone.utc))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _scheduler(self, harness, jobs: CronJobStore) -> CronScheduler:
        return CronScheduler(jobs, harness.agent, harness.bus, check_interval_seconds=60, clock=self.clock)

    def test_first_sight_schedules_the_next_slot_without_firing(self) -> None:
        harness = build_agent([FakeProvider("a")], self.workspace)
        jobs = CronJobStore(harness.store)
        job = jobs.add("standup", "0 9 * * *", "Summarise notes.")
        scheduler = self._scheduler(harness, jobs)

        self.assertEqual([], scheduler.collect_due())
        self.assertEqual(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc), scheduler.next_run(job.id))

    def test_due_job_fires_into_its_originating_chat(self) -> None:
        provider = FakeProvider("a", [text_reply("Notes summarised.")])
        harness = build_agent([provider], self.workspace)
        jobs = CronJobStore(harness.store)
        job = jobs.add("standup", "0 9 * * *", "Summarise notes.", channel_name="console", chat_id="local", user_id="alice")
        triggered: list[CronTriggered] = []
        outgoing: list[OutgoingMessage] = []
        harness.bus.subscribe(CronTriggered, triggered.append)
        harness.bus.subscribe(OutgoingMessage, outgoing.append)
        scheduler = self._scheduler(harness, jobs)
        scheduler.collect_due()
        self.clock.advance(seconds=40)

        fired = asyncio.run(scheduler.tick())

        self.assertEqual([job.id], [j.id for j in fired])
        sent, _ = provider.calls[0]
        self.assertTrue(sent[-1].text.endswith("Summarise notes."))
        self.assertEqual([OutgoingMessage("console", "local", "Notes summarised.")], outgoing)
        self.assertEqual([(job.id, "standup")], [(e.job_id, e.name) for e in triggered])
        self.assertIsNotNone(jobs.get(job.id).last_run)
        self.assertEqual(datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc), scheduler.next_run(job.id))

    def test_job_fires_once_per_slot(self) -> None:
        provider = FakeProvider("a", [text_reply("done")])
        harness = build_agent([provider], self.workspace)
        jobs = CronJobStore(harness.store)
        jobs.add("standup", "0 9 * * *", "Summarise notes.")
        scheduler = self._scheduler(harness, jobs)
        scheduler.collect_due()
        self.clock.advance(minutes=1)

        self.assertEqual(1, len(scheduler.collect_due()))
        self.clock.advance(minutes=1)
        self.assertEqual([], scheduler.collect_due())

    def test_job_without_origin_runs_in_its_own_cron_chat(self) -> None:
        harness = build_agent([FakeProvider("a", [text_reply("ok")])], self.workspace)
        jobs = CronJobStore(harness.store)
        job = jobs.add("nightly", "0 9 * * *", "Back up notes.")
        scheduler = self._scheduler(harness, jobs)

        reply = asyncio.run(scheduler.run_job(job))

        self.assertEqual("ok", reply)
        self.assertIsNotNone(harness.sessions.find(CRON_CHANNEL, f"cron_{job.id}"))

    def test_disabled_and_removed_jobs_are_not_scheduled(self) -> None:
        harness = build_agent([FakeProvider("a")], self.workspace)
        jobs = CronJobStore(harness.store)
        paused = jobs.add("paused", "* * * * *", "p")
        gone = jobs.add("gone", "* * * * *", "g")
        jobs.set_enabled(paused.id, False)
        scheduler = self._scheduler(harness, jobs)
        scheduler.collect_due()
        jobs.remove(gone.id)
        self.clock.advance(minutes=5)

        self.assertEqual([], scheduler.collect_due())
        self.assertIsNone(scheduler.next_run(paused.id))
        self.assertIsNone(scheduler.next_run(gone.id))

    def test_unusable_stored_schedule_does_not_block_other_jobs(self) -> None:
        harness = build_agent([FakeProvider("a")], self.workspace)
        jobs = CronJobStore(harness.store)
        harness.store.execute(
            "INSERT INTO cron_jobs (id, name, schedule, message, created_at) VALUES (?, ?, ?, ?, ?)",
            ("bad", "bad", "not a schedule", "x", "2026-01-01T00:00:00+00:00"),
        )
        harness.store.commit()
        good = jobs.add("good", "* * * * *", "y")
        scheduler = self._scheduler(harness, jobs)

        scheduler.collect_due()

        self.assertIsNone(scheduler.next_run("bad"))
        self.assertIsNotNone(scheduler.next_run(good.id))

    def test_start_and_stop(self) -> None:
        harness = build_agent([FakeProvider("a")], self.workspace)
        scheduler = self._scheduler(harness, CronJobStore(harness.store))

        async def scenario():
            await scheduler.start()
            started = scheduler.running
            await scheduler.stop()
            return started, scheduler.running

        self.assertEqual((True, False), asyncio.run(scenario()))


if __name__ == "__main__":
    unittest.main()
