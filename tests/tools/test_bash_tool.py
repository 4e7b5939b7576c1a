import asyncio
import platform
import tempfile
import unittest
from pathlib import Path

from agent_runtime.tool import ToolContext
from agent_runtime.tools.bash_tool import DEFAULT_BLOCKLIST, BashTool, CommandBlocked
from agent_runtime.tools.workspace import WorkspaceViolation

_CONTEXT = ToolContext(session_id="s1")


class BlocklistTests(unittest.TestCase):
    def test_default_blocklist_matches_case_insensitive_substrings(self) -> None:
        tool = BashTool(".")

        self.assertTrue(tool.is_blocked("sudo SHUTDOWN -h now"))
        self.assertTrue(tool.is_blocked("cd / && rm -rf /"))
        self.assertTrue(tool.is_blocked("dd if=/dev/zero of=/dev/sda"))
        self.assertFalse(tool.is_blocked("ls -la"))

    def test_custom_blocklist_replaces_the_default(self) -> None:
        tool = BashTool(".", blocklist=["curl"])

        self.assertTrue(tool.is_blocked("curl http://example.com"))
        self.assertFalse(tool.is_blocked("echo shutdown"))

    def test_blocked_command_raises_before_running(self) -> None:
        with self.assertRaises(CommandBlocked):
            asyncio.run(BashTool(".").execute({"command": "mkfs.ext4 /dev/sdb"}, _CONTEXT))

    def test_default_list_contents(self) -> None:
        self.assertIn(":(){ :|:& };:", DEFAULT_BLOCKLIST)
        self.assertIn("rmdir /s /q", DEFAULT_BLOCKLIST)


@unittest.skipIf(platform.system() == "Windows", "uses POSIX shell syntax")
class BashExecutionTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.workspace = Path(self._tmp.name).resolve()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _run(self, tool_input: dict, **kwargs) -> str:
        return asyncio.run(BashTool(str(self.workspace), **kwargs).execute(tool_input, _CONTEXT))

    def test_stdout_and_exit_code(self) -> None:
        self.assertEqual("STDOUT:\nhello\n\nEXIT CODE: 0", self._run({"command": "echo hello"}))

    def test_stderr_and_failure_exit_code(self) -> None:
        self.assertEqual("STDERR:\noops\n\nEXIT CODE: 3", self._run({"command": "echo oops 1>&2; exit 3"}))

    def test_runs_in_the_workspace(self) -> None:
        (self.workspace / "sub").mkdir()

        self.assertIn(str(self.workspace / "sub"), self._run({"command": "pwd", "cwd": "sub"}))
        self.assertIn(str(self.workspace), self._run({"command": "pwd"}))

    def test_cwd_outside_workspace_is_rejected(self) -> None:
        with self.assertRaises(WorkspaceViolation):
            self._run({"command": "pwd", "cwd": ".."})

    def test_timeout_kills_the_process(self) -> None:
        result = self._run({"command": "sleep 3"}, timeout_seconds=0.2)

        self.assertTrue(result.startswith("[timed out after"))


if __name__ == "__main__":
    unittest.main()
