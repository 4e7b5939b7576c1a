import asyncio
import platform
import subprocess
from typing import Any

from loguru import logger

from agent_runtime.tool import ApprovalLevel, ToolContext
from agent_runtime.tools.workspace import resolve_path

_IS_WINDOWS = platform.system() == "Windows"
_TIMEOUT_SECONDS = 60

DEFAULT_BLOCKLIST = [
    "rm -rf /",
    "rm -rf ~",
    "mkfs",
    "dd if=",
    "format",
    "diskpart",
    "shutdown",
    "reboot",
    "poweroff",
    ":(){ :|:& };:",
    "del /f /s /q",
    "rmdir /s /q",
]


class CommandBlocked(Exception):
    pass


class BashTool:
    def __init__(
        self,
        working_directory: str,
        *,
        blocklist: list[str] | None = None,
        restrict_to_workspace: bool = True,
        timeout_seconds: float = _TIMEOUT_SECONDS,
    ):
        self._cwd = working_directory
        self._blocklist = [b.lower() for b in (DEFAULT_BLOCKLIST if blocklist is None else blocklist)]
        self._restrict = restrict_to_workspace
        self._timeout_seconds = timeout_seconds

    @property
    def name(self) -> str:
        return "bash"

    @property
    def description(self) -> str:
        return "Execute a shell command in the workspace and return its output (stdout + stderr)."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The shell command to execute",
                },
                "cwd": {
                    "type": "string",
                    "description": "Working directory (optional, defaults to the workspace)",
                },
            },
            "required": ["command"],
        }

    @property
    def approval_level(self) -> ApprovalLevel:
        return ApprovalLevel.SUPERVISED

    def is_blocked(self, command: str) -> bool:
        lowered = command.lower().strip()
        return any(blocked in lowered for blocked in self._blocklist)

    async def execute(self, tool_input: dict[str, Any], context: ToolContext) -> str:
        command = tool_input["command"]
        if self.is_blocked(command):
            logger.warning(f"Blocked command: {command}")
            raise CommandBlocked(f'Command blocked by safety guard: "{command}"')

        cwd = resolve_path(self._cwd, tool_input.get("cwd"), restrict=self._restrict)

        if _IS_WINDOWS:
            proc = await asyncio.create_subprocess_shell(
                f"cmd.exe /c {command}",
                stdin=subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
                creationflags=subprocess.CREATE_NEW_PROCESS_GROUP,
            )
        else:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdin=subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
            )

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout_seconds)
        except asyncio.TimeoutError:
            proc.kill()
            try:
                await asyncio.wait_for(proc.communicate(), timeout=5)
            except (asyncio.TimeoutError, ProcessLookupError):
                logger.warning(f"Process for command did not exit after kill: {command}")
            return f"[timed out after {self._timeout_seconds:.0f}s]"

        parts = []
        if stdout:
            parts.append(f"STDOUT:\n{stdout.decode(errors='replace').rstrip()}")
        if stderr:
            parts.append(f"STDERR:\n{stderr.decode(errors='replace').rstrip()}")
        parts.append(f"EXIT CODE: {proc.returncode}")
        return "\n\n".join(parts)
