import asyncio
import unittest

from agent_runtime.approval import ApprovalBroker
from agent_runtime.bus import ApprovalRequested, ApprovalResponded, MessageBus


class ApprovalBrokerTests(unittest.TestCase):
    def test_response_on_the_bus_resolves_the_request(self) -> None:
        async def scenario():
            bus = MessageBus()
            broker = ApprovalBroker(bus, timeout_seconds=5)
            requests: list[ApprovalRequested] = []

            def approve(event: ApprovalRequested) -> None:
                requests.append(event)
                asyncio.get_running_loop().call_soon(bus.publish, ApprovalResponded(event.id, True))

            bus.subscribe(ApprovalRequested, approve)
            approved = await broker.request("Tool: bash\nArgs: {}", "s1")
            return approved, requests, broker.pending_ids

        approved, requests, pending = asyncio.run(scenario())

        self.assertTrue(approved)
        self.assertEqual("s1", requests[0].session_id)
        self.assertEqual("Tool: bash\nArgs: {}", requests[0].description)
        self.assertEqual([], pending)

    def test_rejection(self) -> None:
        async def scenario():
            bus = MessageBus()
            broker = ApprovalBroker(bus, timeout_seconds=5)

            def reject(event: ApprovalRequested) -> None:
                asyncio.get_running_loop().call_soon(broker.respond, event.id, False)

            bus.subscribe(ApprovalRequested, reject)
            return await broker.request("Tool: write_file")

        self.assertFalse(asyncio.run(scenario()))

    def test_timeout_counts_as_denial(self) -> None:
        async def scenario():
            broker = ApprovalBroker(MessageBus(), timeout_seconds=0.05)
            approved = await broker.request("Tool: bash")
            return approved, broker.pending_ids

        approved, pending = asyncio.run(scenario())

        self.assertFalse(approved)
        self.assertEqual([], pending)

    def test_late_or_unknown_responses_are_ignored(self) -> None:
        async def scenario():
            bus = MessageBus()
            broker = ApprovalBroker(bus, timeout_seconds=0.05)
            ids: list[str] = []
            bus.subscribe(ApprovalRequested, lambda event: ids.append(event.id))
            await broker.request("Tool: bash")
            return broker.respond(ids[0], True), broker.respond("unknown", True)

        self.assertEqual((False, False), asyncio.run(scenario()))

    def test_concurrent_requests_are_matched_by_id(self) -> None:
        async def scenario():
            bus = MessageBus()
            broker = ApprovalBroker(bus, timeout_seconds=5)
            seen: dict[str, str] = {}
            bus.subscribe(ApprovalRequested, lambda event: seen.__setitem__(event.description, event.id))

            first = asyncio.create_task(broker.request("first"))
            second = asyncio.create_task(broker.request("second"))
            await asyncio.sleep(0)
            broker.respond(seen["second"], True)
            broker.respond(seen["first"], False)
            return await first, await second

        self.assertEqual((False, True), asyncio.run(scenario()))


if __name__ == "__main__":
    unittest.main()
