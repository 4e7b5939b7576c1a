from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from loguru import logger

from agent_runtime.agent_config import AgentConfig
from agent_runtime.bus import AgentResponse, AgentThinking, MessageBus, OutgoingMessage, SessionCompacted
from agent_runtime.commands.router import CommandRouter
from agent_runtime.context import SkillManifest
from agent_runtime.models import IncomingMessage, Message, Session
from agent_runtime.provider import ChatOptions
from agent_runtime.stream import ChunkType, StreamChunk
from agent_runtime.tool import ToolContext
from agent_runtime.turn_engine import TurnEngine

if TYPE_CHECKING:
    from agent_runtime.sub_agent import SubAgentSupervisor

TRIGGER_PREFIX = "[System Trigger] "


class Agent:
    """Entry point for every inbound message, trigger and sub-agent run.

    Turns on the same (channel, chat) pair are serialized by a per-session
    lock; different sessions run concurrently on the event loop.
    """

    def __init__(self, config: AgentConfig):
        self._router = config.router
        self._sessions = config.sessions
        self._context = config.context
        self._registry = config.registry
        self._bus = config.bus
        self._approvals = config.approvals
        self._usage = config.usage
        self._compaction_strategy = config.compaction_strategy
        self._skills = list(config.skills)
        self._max_tokens = config.max_tokens
        self._temperature = config.temperature
        self._max_turns = config.max_turns
        self._workspace_path = config.workspace_path
        self._supervisor: SubAgentSupervisor | None = None
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_users: dict[tuple[str, str], int] = {}

        self._command_router = CommandRouter(
            on_help=self._on_help,
            on_reset=self._on_reset,
            on_status=self._on_status,
            on_tasks=self._on_tasks,
            on_unknown=self._on_unknown_command,
        )

    @property
    def bus(self) -> MessageBus:
        return self._bus

    def attach_supervisor(self, supervisor: SubAgentSupervisor) -> None:
        self._supervisor = supervisor

    def set_skills(self, skills: list[SkillManifest]) -> None:
        self._skills = list(skills)

    async def process_message(self, incoming: IncomingMessage) -> AsyncIterator[StreamChunk]:
        async with self._session_lock((incoming.channel_name, incoming.chat_id)):
            try:
                session = self._sessions.get_or_create(incoming.channel_name, incoming.chat_id, incoming.user_id)
                reply = await self._command_router.try_handle(incoming.text, session)
                if reply is not None:
                    yield StreamChunk.text_delta(reply)
                    yield StreamChunk.done()
                    return

                async for chunk in self._run_turn(session, incoming):
                    yield chunk
            except Exception as ex:
                logger.error(f"Agent error for {incoming.channel_name}/{incoming.chat_id}: {ex}")
                yield StreamChunk.failure(f"Agent error: {ex}")

    @asynccontextmanager
    async def _session_lock(self, key: tuple[str, str]) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                # Nobody holds or waits on it any more.
                del self._lock_users[key]
                del self._locks[key]

    async def trigger(
        self,
        text: str,
        *,
        channel_name: str = "system",
        chat_id: str = "trigger",
        user_id: str = "system",
    ) -> str:
        """Run a cron or heartbeat prompt as if it arrived from ``channel_name`` and return the reply."""
        incoming = IncomingMessage(
            channel_name=channel_name,
            chat_id=chat_id,
            user_id=user_id,
            text=TRIGGER_PREFIX + text,
        )
        parts: list[str] = []
        async for chunk in self.process_message(incoming):
            if chunk.type == ChunkType.TEXT:
                parts.append(chunk.text)
            elif chunk.type == ChunkType.ERROR:
                logger.warning(f"Trigger on {channel_name}/{chat_id} failed: {chunk.error}")
        reply = "".join(parts)
        if reply:
            self._bus.publish(OutgoingMessage(channel_name, chat_id, reply))
        return reply

    async def prompt(self, text: str, *, max_tokens: int = 4096, temperature: float = 0.7) -> str:
        """One-shot completion with no session and no tools."""
        return await self._router.complete(text, max_tokens=max_tokens, temperature=temperature)

    async def _run_turn(self, session: Session, incoming: IncomingMessage) -> AsyncIterator[StreamChunk]:
        self._sessions.add_message(session, Message.user(incoming.text))

        options = ChatOptions(
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            tools=self._registry.get_schemas(),
            system_prompt=self._context.build_system_prompt(self._skills),
        )

        engine = TurnEngine(
            router=self._router,
            registry=self._registry,
            compaction=self._compaction_strategy,
            options=options,
            tool_context=self._tool_context(session, incoming),
            max_turns=self._max_turns,
            on_append_message=lambda message: self._sessions.add_message(session, message),
            on_compacted=lambda removed: self._on_compacted(session, removed),
            on_done=lambda chunk: self._record_usage(session, chunk),
        )

        self._bus.publish(AgentThinking(session.id))
        response: list[str] = []
        async for chunk in engine.run(session.messages):
            if chunk.type == ChunkType.TEXT:
                response.append(chunk.text)
            yield chunk

        if response:
            self._bus.publish(AgentResponse(session.id, "".join(response)))

    def _tool_context(self, session: Session, incoming: IncomingMessage) -> ToolContext:
        context = ToolContext(
            session_id=session.id,
            user_id=incoming.user_id,
            channel_name=incoming.channel_name,
            chat_id=incoming.chat_id,
            workspace_path=self._workspace_path,
        )

        async def send_message(content: str) -> None:
            self._bus.publish(OutgoingMessage(incoming.channel_name, incoming.chat_id, content))

        context.send_message = send_message
        if self._approvals is not None:
            approvals = self._approvals

            async def request_approval(description: str) -> bool:
                return await approvals.request(description, session.id)

            context.request_approval = request_approval
        return context

    def _on_compacted(self, session: Session, removed: int) -> None:
        self._sessions.save(session)
        logger.info(f"Session {session.id} compacted: {len(session.messages)} messages remain")
        self._bus.publish(SessionCompacted(session.id, removed))

    def _record_usage(self, session: Session, chunk: StreamChunk) -> None:
        if self._usage is None or chunk.usage is None:
            return
        provider = self._router.get_provider(chunk.provider)
        model = provider.model if provider is not None else "unknown"
        try:
            self._usage.record(session.id, chunk.provider or "unknown", model, chunk.usage)
        except Exception as ex:
            logger.warning(f"Failed to record token usage for session {session.id}: {ex}")

    async def _on_help(self, session: Session) -> str:
        return "\n".join(
            [
                "Available commands:",
                "- /help    show this message",
                "- /reset   clear the conversation history of this chat",
                "- /status  show backend health",
                "- /tasks   list background sub-agent tasks",
            ]
        )

    async def _on_reset(self, session: Session) -> str:
        self._sessions.clear_messages(session)
        logger.info(f"Session {session.id} reset")
        return "Conversation history cleared."

    async def _on_status(self, session: Session) -> str:
        lines = ["Backends (in priority order):"]
        statuses = {s.name: s for s in self._router.status()}
        for name in self._router.priority:
            status = statuses.get(name)
            if status is None:
                lines.append(f"- {name}: not configured")
                continue
            state = "healthy" if status.healthy else "cooling down"
            if not status.available:
                state = "unavailable (no credentials)"
            lines.append(f"- {name} ({status.model}): {state}")
        if self._usage is not None:
            summary = self._usage.summary(session.id)
            lines.append(
                f"Session usage: {summary.requests} request(s), "
                f"{summary.prompt_tokens:,} prompt + {summary.completion_tokens:,} completion tokens"
            )
        return "\n".join(lines)

    async def _on_tasks(self, session: Session) -> str:
        if self._supervisor is None:
            return "Sub-agents are not enabled."
        tasks = self._supervisor.list_tasks()
        if not tasks:
            return "No sub-agent tasks."
        lines = ["Sub-agent tasks:"]
        for task in tasks:
            lines.append(f"- {task.id} [{task.status.value}] {task.description[:80]}")
        return "\n".join(lines)

    def _on_unknown_command(self, trimmed: str) -> str:
        return f"Unknown local command: {trimmed}. Type /help for the list of commands."
