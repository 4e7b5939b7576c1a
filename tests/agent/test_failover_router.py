import asyncio
import unittest

from agent_runtime.failover import FailoverRouter
from agent_runtime.models import Message
from agent_runtime.provider import ChatOptions
from agent_runtime.stream import ChunkType, StreamChunk
from tests.fakes import FakeProvider, collect, text_reply


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _route(router: FailoverRouter) -> list[StreamChunk]:
    return asyncio.run(collect(router.route([Message.user("hi")], ChatOptions())))


class FailoverRouterTests(unittest.TestCase):
    def test_empty_priority_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            FailoverRouter([])

    def test_first_healthy_backend_serves_and_done_is_annotated(self) -> None:
        a = FakeProvider("a", [text_reply("from a")])
        b = FakeProvider("b", [text_reply("from b")])
        router = FailoverRouter([a, b], ["a", "b"])

        chunks = _route(router)

        self.assertEqual("from a", chunks[0].text)
        self.assertEqual(ChunkType.DONE, chunks[-1].type)
        self.assertEqual("a", chunks[-1].provider)
        self.assertEqual(0, len(b.calls))

    def test_error_before_content_fails_over_and_starts_cooldown(self) -> None:
        clock = _Clock()
        a = FakeProvider("a", [[StreamChunk.failure("rate limited")], text_reply("a is back")])
        b = FakeProvider("b", [text_reply("from b")])
        router = FailoverRouter([a, b], ["a", "b"], cooldown_seconds=60, clock=clock)

        chunks = _route(router)
        self.assertEqual(["from b"], [c.text for c in chunks if c.type == ChunkType.TEXT])
        self.assertFalse(router.is_healthy("a"))

        # Still cooling down: a is skipped entirely.
        clock.now += 59
        _route(router)
        self.assertEqual(1, len(a.calls))
        self.assertEqual(2, len(b.calls))

        clock.now += 1
        chunks = _route(router)
        self.assertEqual(2, len(a.calls))
        self.assertEqual("a is back", chunks[0].text)
        self.assertTrue(router.is_healthy("a"))

    def test_failure_after_content_is_terminal(self) -> None:
        a = FakeProvider("a", [[StreamChunk.text_delta("partial"), StreamChunk.failure("connection reset")]])
        b = FakeProvider("b", [text_reply("from b")])
        router = FailoverRouter([a, b], ["a", "b"])

        chunks = _route(router)

        self.assertEqual([ChunkType.TEXT, ChunkType.ERROR], [c.type for c in chunks])
        self.assertIn("Provider a failed mid-stream", chunks[-1].error)
        self.assertIn("connection reset", chunks[-1].error)
        self.assertEqual(0, len(b.calls))
        self.assertFalse(router.is_healthy("a"))

    def test_failed_stream_is_closed_before_failing_over(self) -> None:
        closed: list[str] = []

        class _ClosingProvider(FakeProvider):
            async def chat(self, messages, options):
                try:
                    yield StreamChunk.failure("overloaded")
                    yield StreamChunk.text_delta("never sent")
                finally:
                    closed.append(self.name)

        b = FakeProvider("b", [text_reply("from b")])
        router = FailoverRouter([_ClosingProvider("a"), b], ["a", "b"])

        async def scenario():
            stream = router.route([Message.user("hi")], ChatOptions())
            first = await anext(stream)
            # b is already streaming, so a must have been closed by now.
            self.assertEqual(["a"], closed)
            await stream.aclose()
            return first

        first = asyncio.run(scenario())

        self.assertEqual("from b", first.text)

    def test_all_backends_failing_yields_one_aggregate_error(self) -> None:
        a = FakeProvider("a", [[StreamChunk.failure("bad key")]])
        b = FakeProvider("b", [[StreamChunk.failure("bad key")]])
        router = FailoverRouter([a, b], ["a", "b"])

        chunks = _route(router)

        self.assertEqual(1, len(chunks))
        self.assertEqual(ChunkType.ERROR, chunks[0].type)
        self.assertIn("All providers failed. Tried: a, b", chunks[0].error)

    def test_nothing_available_is_reported(self) -> None:
        a = FakeProvider("a", available=False)
        router = FailoverRouter([a], ["a", "missing"])

        chunks = _route(router)

        self.assertEqual(1, len(chunks))
        self.assertIn("none available", chunks[0].error)
        self.assertEqual(0, len(a.calls))

    def test_raised_exception_is_treated_as_error(self) -> None:
        a = FakeProvider("a", [[RuntimeError("socket closed")]])
        b = FakeProvider("b", [text_reply("from b")])
        router = FailoverRouter([a, b], ["a", "b"])

        chunks = _route(router)

        self.assertEqual("from b", chunks[0].text)
        self.assertEqual("b", chunks[-1].provider)
        self.assertFalse(router.is_healthy("a"))

    def test_stalled_stream_times_out_and_fails_over(self) -> None:
        a = FakeProvider("a", [text_reply("too slow")], delay=0.5)
        b = FakeProvider("b", [text_reply("from b")])
        router = FailoverRouter([a, b], ["a", "b"], stream_timeout_seconds=0.05)

        chunks = _route(router)

        self.assertEqual("from b", chunks[0].text)
        self.assertFalse(router.is_healthy("a"))

    def test_status_reports_health(self) -> None:
        a = FakeProvider("a", model="m-a")
        b = FakeProvider("b", available=False)
        router = FailoverRouter([a, b])
        router.mark_unhealthy("a")

        status = {s.name: s for s in router.status()}

        self.assertFalse(status["a"].healthy)
        self.assertEqual("m-a", status["a"].model)
        self.assertFalse(status["b"].available)
        self.assertTrue(status["b"].healthy)

    def test_complete_collects_text(self) -> None:
        a = FakeProvider("a", [[StreamChunk.text_delta("sum"), StreamChunk.text_delta("mary"), StreamChunk.done()]])
        router = FailoverRouter([a])

        self.assertEqual("summary", asyncio.run(router.complete("summarize")))
        messages, options = a.calls[0]
        self.assertEqual("summarize", messages[0].text)
        self.assertEqual([], options.tools)

    def test_complete_raises_on_error(self) -> None:
        router = FailoverRouter([FakeProvider("a", [[StreamChunk.failure("down")]])])

        with self.assertRaises(RuntimeError):
            asyncio.run(router.complete("summarize"))


if __name__ == "__main__":
    unittest.main()
