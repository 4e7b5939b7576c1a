import asyncio
import tempfile
import unittest

from agent_runtime.sub_agent import SubAgentSupervisor
from agent_runtime.tool import ApprovalLevel, ToolContext
from agent_runtime.tool_registry import ToolRegistry
from agent_runtime.tools.sub_agent_tools import CheckSubAgentTool, SpawnSubAgentTool
from tests.fakes import FakeProvider, build_agent, text_reply

_CONTEXT = ToolContext(session_id="parent-1")


class SubAgentToolTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        harness = build_agent([FakeProvider("a", [text_reply("weather is sunny")])], self._tmp.name)
        self.supervisor = SubAgentSupervisor(harness.agent, bus=harness.bus, max_concurrent=1)
        self.spawn = SpawnSubAgentTool(self.supervisor)
        self.check = CheckSubAgentTool(self.supervisor)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_spawn_then_check(self) -> None:
        async def scenario():
            spawned = await self.spawn.execute({"task": "check the weather"}, _CONTEXT)
            task = self.supervisor.list_tasks()[0]
            await self.supervisor.wait(task.id)
            checked = await self.check.execute({"taskId": task.id}, _CONTEXT)
            return task, spawned, checked

        task, spawned, checked = asyncio.run(scenario())

        self.assertTrue(spawned.startswith(f"Sub-agent spawned with ID: {task.id}\n"))
        self.assertIn("Status: running", spawned)
        self.assertEqual("parent-1", task.parent_session_id)
        self.assertIn("Status: completed", checked)
        self.assertIn("Result:\nweather is sunny", checked)
        self.assertIn("Completed: ", checked)

    def test_check_unknown_task(self) -> None:
        with self.assertRaisesRegex(LookupError, "No sub-agent task found with ID: nope"):
            asyncio.run(self.check.execute({"taskId": "nope"}, _CONTEXT))

    def test_spawn_over_the_ceiling_is_an_error_result(self) -> None:
        registry = ToolRegistry(approval_gates_enabled=False)
        registry.register(self.spawn)

        async def scenario():
            first = await registry.execute("spawn_sub_agent", {"task": "one"}, _CONTEXT)
            second = await registry.execute("spawn_sub_agent", {"task": "two"}, _CONTEXT)
            await self.supervisor.shutdown()
            return first, second

        first, second = asyncio.run(scenario())

        self.assertFalse(first.is_error)
        self.assertTrue(second.is_error)
        self.assertIn("Max concurrent sub-agents reached (1)", second.content)

    def test_approval_levels(self) -> None:
        self.assertEqual(ApprovalLevel.SUPERVISED, self.spawn.approval_level)
        self.assertEqual(ApprovalLevel.READ, self.check.approval_level)


if __name__ == "__main__":
    unittest.main()
