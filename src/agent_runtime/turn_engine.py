from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

from loguru import logger

from agent_runtime.compaction import CompactionStrategy
from agent_runtime.failover import FailoverRouter
from agent_runtime.models import Message, ToolCall, ToolResult
from agent_runtime.provider import ChatOptions
from agent_runtime.providers.common import parse_tool_arguments
from agent_runtime.stream import ChunkType, StreamChunk
from agent_runtime.tool import ToolContext
from agent_runtime.tool_registry import ToolRegistry

DEFAULT_MAX_TURNS = 25
MAX_TURNS_NOTICE = "\n\n[Max agent turns reached. Please continue with a new message.]"


@dataclass
class _PendingCall:
    id: str = ""
    name: str = ""
    fragments: list[str] = field(default_factory=list)


class TurnEngine:
    """Drives one inbound turn: model round-trips alternating with tool execution.

    Every chunk the backend produces is forwarded to the caller. The loop ends
    when the model answers without tool calls, when an error chunk arrives, or
    after ``max_turns`` round-trips.
    """

    def __init__(
        self,
        *,
        router: FailoverRouter,
        registry: ToolRegistry,
        compaction: CompactionStrategy,
        options: ChatOptions,
        tool_context: ToolContext,
        max_turns: int = DEFAULT_MAX_TURNS,
        on_append_message: Callable[[Message], None],
        on_compacted: Callable[[int], None],
        on_done: Callable[[StreamChunk], None] | None = None,
    ) -> None:
        self._router = router
        self._registry = registry
        self._compaction = compaction
        self._options = options
        self._tool_context = tool_context
        self._max_turns = max(1, max_turns)
        self._on_append_message = on_append_message
        self._on_compacted = on_compacted
        self._on_done = on_done

    async def run(self, messages: list[Message]) -> AsyncIterator[StreamChunk]:
        """Run the loop over ``messages``, which must already end with the user message.

        ``on_append_message`` is responsible for appending to ``messages``;
        compaction rewrites the list in place.
        """
        for turn in range(1, self._max_turns + 1):
            await self._maybe_compact(messages)

            text_parts: list[str] = []
            pending: dict[int, _PendingCall] = {}
            tool_calls: list[ToolCall] = []

            async for chunk in self._router.route(list(messages), self._options):
                if chunk.type == ChunkType.ERROR:
                    logger.error(f"Agent stream error: {chunk.error}")
                    yield chunk
                    return

                if chunk.type == ChunkType.TEXT:
                    text_parts.append(chunk.text)
                elif chunk.type == ChunkType.TOOL_CALL_START:
                    pending[chunk.index] = _PendingCall(chunk.tool_call_id, chunk.tool_name)
                elif chunk.type == ChunkType.TOOL_CALL_DELTA:
                    call = pending.setdefault(chunk.index, _PendingCall(chunk.tool_call_id))
                    call.fragments.append(chunk.text)
                elif chunk.type == ChunkType.TOOL_CALL_END:
                    tool_calls.append(_finalize(pending.pop(chunk.index, _PendingCall()), chunk))
                elif chunk.type == ChunkType.DONE and self._on_done is not None:
                    self._on_done(chunk)

                yield chunk

            if pending:
                logger.warning(f"Dropping {len(pending)} tool call(s) that never completed")

            self._on_append_message(Message.assistant("".join(text_parts), tool_calls))

            if not tool_calls:
                return

            for call in tool_calls:
                result = await self._execute(call)
                self._on_append_message(Message.tool(result, name=call.name))

            logger.debug(f"Agent loop turn {turn}/{self._max_turns}: {len(tool_calls)} tool(s) executed")

        logger.warning(f"Agent max turns ({self._max_turns}) reached")
        yield StreamChunk.text_delta(MAX_TURNS_NOTICE)

    async def _execute(self, call: ToolCall) -> ToolResult:
        try:
            return await self._registry.execute(
                call.name,
                call.arguments,
                self._tool_context,
                tool_call_id=call.id,
            )
        except Exception as ex:
            logger.error(f"Tool dispatch failed for {call.name}: {ex}")
            return ToolResult(call.id, f'Error executing tool "{call.name}": {ex}', is_error=True)

    async def _maybe_compact(self, messages: list[Message]) -> None:
        compacted = await self._compaction.maybe_compact(messages)
        if compacted is messages:
            return
        removed = len(messages) - len(compacted)
        messages[:] = compacted
        self._on_compacted(removed)


def _finalize(call: _PendingCall, end: StreamChunk) -> ToolCall:
    if isinstance(end.arguments, dict):
        arguments = dict(end.arguments)
    elif isinstance(end.arguments, str):
        arguments = parse_tool_arguments(end.arguments)
    else:
        arguments = parse_tool_arguments("".join(call.fragments))
    return ToolCall(
        id=end.tool_call_id or call.id,
        name=end.tool_name or call.name,
        arguments=arguments,
    )
