from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from loguru import logger

from agent_runtime.memory.knowledge import KnowledgeStore
from agent_runtime.models import utc_now

IDENTITY_FILES = ("SOUL.md", "IDENTITY.md", "AGENTS.md", "TOOLS.md", "USER.md")
DEFAULT_HEARTBEAT_PROMPT = "Check if there are any pending tasks or notifications."

_DEFAULT_IDENTITY = """\
You are a helpful personal AI assistant with access to tools. You can run shell \
commands, read and write files in the workspace, fetch web pages, remember facts \
across conversations and delegate long-running work to background sub-agents.

Use the available tools to accomplish what the user asks. If a tool call fails, \
read the error message carefully and try a different approach.

Be concise in your responses. When you've completed a task, briefly summarize what you did."""


@dataclass(frozen=True)
class SkillManifest:
    name: str
    description: str
    instructions: str


class ContextBuilder:
    """Assembles the system prompt from workspace files, memory, skills and rules."""

    def __init__(
        self,
        workspace_path: str,
        *,
        knowledge: KnowledgeStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._workspace = Path(workspace_path)
        self._knowledge = knowledge
        self._clock = clock

    def build_system_prompt(self, active_skills: list[SkillManifest] | None = None) -> str:
        parts = [text for text in (self._read(name) for name in IDENTITY_FILES) if text]
        if not parts:
            parts.append(_DEFAULT_IDENTITY)
        parts.append(f"The workspace directory is: {self._workspace}")

        memory = self._memory_section()
        if memory:
            parts.append(f"---\n# Persistent Memory\n{memory}")

        if active_skills:
            parts.append("---\n# Active Skills")
            for skill in active_skills:
                parts.append(f"## Skill: {skill.name}\n{skill.description}\n\n{skill.instructions}")

        rules = self._read("RULES.md")
        if rules:
            parts.append(f"---\n# Dynamic Rules\n{rules}")

        parts.append(f"---\nCurrent date and time: {self._clock().isoformat(timespec='seconds')}")
        return "\n\n".join(parts)

    def build_heartbeat_prompt(self) -> str:
        return self._read("HEARTBEAT.md") or DEFAULT_HEARTBEAT_PROMPT

    def _memory_section(self) -> str:
        if self._knowledge is not None:
            return self._knowledge.render_markdown().strip()
        return self._read("memory/MEMORY.md")

    def _read(self, relative: str) -> str:
        path = self._workspace / relative
        if not path.is_file():
            return ""
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as ex:
            logger.warning(f"Failed to read {path}: {ex}")
            return ""
