import json
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from loguru import logger

from agent_runtime.models import Message

SUMMARY_PREFIX = "[Conversation summary of"
_PREVIEW_CHARS = 500
_MAX_SUMMARY_INPUT_CHARS = 100_000
_MAX_KEPT_MESSAGES = 10

Summarizer = Callable[[str], Awaitable[str]]


@runtime_checkable
class CompactionStrategy(Protocol):
    async def maybe_compact(self, messages: list[Message]) -> list[Message]: ...


class NoneCompactionStrategy:
    async def maybe_compact(self, messages: list[Message]) -> list[Message]:
        return messages


class SummarizeCompactionStrategy:
    """Replaces old history with a model-written summary once it grows past a budget.

    The newest ``min(10, n // 3)`` messages are kept verbatim; everything
    before them becomes a single ``system`` message. The input list is never
    mutated, and it is returned unchanged whenever nothing is compacted.
    """

    def __init__(self, summarize: Summarizer, threshold_tokens: int = 100_000):
        self._summarize = summarize
        self._threshold_tokens = threshold_tokens

    async def maybe_compact(self, messages: list[Message]) -> list[Message]:
        estimated = estimate_tokens(messages)
        if estimated <= self._threshold_tokens:
            return messages

        keep = min(_MAX_KEPT_MESSAGES, len(messages) // 3)
        if keep == 0:
            return messages

        boundary = _adjust_boundary(messages, len(messages) - keep)
        prefix = messages[:boundary]
        if not prefix or (len(prefix) == 1 and is_summary(prefix[0])):
            return messages

        logger.info(
            f"Compaction: estimated ~{estimated:,} tokens, threshold {self._threshold_tokens:,}"
            f", summarizing {len(prefix)} messages"
        )

        try:
            summary = await self._summarize(_SUMMARIZE_PROMPT + _format_for_summarization(prefix))
        except Exception as ex:
            logger.warning(f"Compaction failed, keeping history unchanged: {ex}")
            return messages

        result = [summary_message(summary, len(prefix)), *messages[boundary:]]
        logger.info(
            f"Compaction: summarized {len(prefix)} messages into ~{len(summary) // 4:,} tokens,"
            f" freed ~{estimated - estimate_tokens(result):,} estimated tokens"
        )
        return result


def estimate_tokens(messages: list[Message]) -> int:
    return sum(m.content_length() for m in messages) // 4


def summary_message(summary: str, summarized_count: int) -> Message:
    return Message(role="system", content=f"{SUMMARY_PREFIX} {summarized_count} earlier messages]:\n{summary}")


def is_summary(message: Message) -> bool:
    return message.role == "system" and message.text.startswith(SUMMARY_PREFIX)


def _adjust_boundary(messages: list[Message], end: int) -> int:
    # A tool result must stay next to the assistant message that requested it.
    while end > 0 and messages[end].role == "tool":
        end -= 1
    return end


def _format_for_summarization(messages: list[Message]) -> str:
    lines = []
    for msg in messages:
        if isinstance(msg.content, str):
            content = msg.content
        else:
            content = json.dumps([b.to_dict() for b in msg.content])
        for call in msg.tool_calls:
            content += f"\n[Tool call: {call.name}({json.dumps(call.arguments)})]"
        lines.append(f"[{msg.role}]: {content[:_PREVIEW_CHARS]}")

    formatted = "\n".join(lines)
    if len(formatted) > _MAX_SUMMARY_INPUT_CHARS:
        half = _MAX_SUMMARY_INPUT_CHARS // 2
        formatted = (
            formatted[:half]
            + "\n\n[...middle of conversation omitted for brevity...]\n\n"
            + formatted[-half:]
        )
    return formatted


_SUMMARIZE_PROMPT = """\
Summarize this conversation history concisely. Preserve:
- The user's requests and any specific instructions
- Decisions made and their reasoning
- Key facts, file paths, URLs and identifiers that may be needed later
- Current task status and next steps

Do not reproduce raw tool output, just note what was retrieved.

---
CONVERSATION HISTORY:

"""


def create_compaction_strategy(name: str, summarize: Summarizer, threshold_tokens: int) -> CompactionStrategy:
    if name.lower() == "summarize":
        return SummarizeCompactionStrategy(summarize, threshold_tokens)
    if name.lower() == "none":
        return NoneCompactionStrategy()
    raise ValueError(f"Unknown compaction strategy: {name}")
