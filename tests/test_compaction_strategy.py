import asyncio
import unittest

from agent_runtime.compaction import (
    NoneCompactionStrategy,
    SummarizeCompactionStrategy,
    _format_for_summarization,
    create_compaction_strategy,
    estimate_tokens,
    is_summary,
    summary_message,
)
from agent_runtime.models import Message, ToolCall, ToolResult

_FILLER = "x" * 200


class _Summarizer:
    def __init__(self, reply: str = "summary text", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    async def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


def _chat(count: int) -> list[Message]:
    return [
        Message.user(f"question {i} {_FILLER}") if i % 2 == 0 else Message.assistant(f"answer {i} {_FILLER}")
        for i in range(count)
    ]


def _compact(strategy, messages):
    return asyncio.run(strategy.maybe_compact(messages))


class CompactionStrategyTests(unittest.TestCase):
    def test_format_for_summarization_includes_tool_calls(self) -> None:
        messages = [
            Message.user("hello"),
            Message.assistant("ok", [ToolCall("1", "read_file", {"path": "x"})]),
            Message.tool(ToolResult("1", "done"), name="read_file"),
        ]

        formatted = _format_for_summarization(messages)

        self.assertIn("[user]: hello", formatted)
        self.assertIn('[Tool call: read_file({"path": "x"})]', formatted)
        self.assertIn("[tool]: done", formatted)

    def test_long_messages_are_previewed(self) -> None:
        formatted = _format_for_summarization([Message.user("y" * 2000)])

        self.assertEqual(len("[user]: ") + 500, len(formatted))

    def test_maybe_compact_returns_original_below_threshold(self) -> None:
        summarizer = _Summarizer()
        messages = _chat(12)

        result = _compact(SummarizeCompactionStrategy(summarizer, threshold_tokens=100_000), messages)

        self.assertIs(messages, result)
        self.assertEqual([], summarizer.prompts)

    def test_keeps_the_newest_messages_verbatim(self) -> None:
        summarizer = _Summarizer()
        messages = _chat(30)

        result = _compact(SummarizeCompactionStrategy(summarizer, threshold_tokens=10), messages)

        self.assertEqual(11, len(result))
        self.assertTrue(is_summary(result[0]))
        self.assertEqual("[Conversation summary of 20 earlier messages]:\nsummary text", result[0].text)
        self.assertEqual(messages[20:], result[1:])
        self.assertEqual(30, len(messages))
        self.assertIn("[user]: question 0", summarizer.prompts[0])
        self.assertNotIn("question 20", summarizer.prompts[0])

    def test_compacting_a_compacted_history_is_a_no_op(self) -> None:
        summarizer = _Summarizer()
        strategy = SummarizeCompactionStrategy(summarizer, threshold_tokens=1_000)
        messages = _chat(30)
        self.assertGreater(estimate_tokens(messages), 1_000)

        once = _compact(strategy, messages)
        self.assertLessEqual(estimate_tokens(once), 1_000)
        twice = _compact(strategy, once)

        self.assertIs(once, twice)
        self.assertEqual(1, len(summarizer.prompts))

    def test_keep_count_scales_with_short_histories(self) -> None:
        messages = _chat(9)

        result = _compact(SummarizeCompactionStrategy(_Summarizer(), threshold_tokens=10), messages)

        self.assertEqual(messages[6:], result[1:])

    def test_boundary_never_orphans_tool_results(self) -> None:
        messages = _chat(5) + [
            Message.assistant("", [ToolCall("a", "list_dir", {}), ToolCall("b", "list_dir", {})]),
            Message.tool(ToolResult("a", _FILLER)),
            Message.tool(ToolResult("b", _FILLER)),
            Message.assistant("done"),
        ]

        result = _compact(SummarizeCompactionStrategy(_Summarizer(), threshold_tokens=10), messages)

        # keep = 3 would start the tail on a tool result; the cut moves back to its assistant message.
        self.assertEqual(messages[5:], result[1:])
        self.assertEqual("[Conversation summary of 5 earlier messages]:\nsummary text", result[0].text)

    def test_too_few_messages_are_left_alone(self) -> None:
        summarizer = _Summarizer()
        messages = [Message.user(_FILLER * 10), Message.assistant(_FILLER * 10)]

        result = _compact(SummarizeCompactionStrategy(summarizer, threshold_tokens=10), messages)

        self.assertIs(messages, result)
        self.assertEqual([], summarizer.prompts)

    def test_lone_summary_prefix_is_not_summarized_again(self) -> None:
        summarizer = _Summarizer()
        messages = [
            summary_message("earlier work", 40),
            Message.assistant("", [ToolCall("a", "bash", {"command": "ls"})]),
            Message.tool(ToolResult("a", _FILLER)),
            Message.tool(ToolResult("a", _FILLER)),
            Message.tool(ToolResult("a", _FILLER)),
            Message.tool(ToolResult("a", _FILLER)),
        ]

        result = _compact(SummarizeCompactionStrategy(summarizer, threshold_tokens=10), messages)

        self.assertIs(messages, result)
        self.assertEqual([], summarizer.prompts)

    def test_summarizer_failure_keeps_history(self) -> None:
        summarizer = _Summarizer(error=RuntimeError("All providers failed"))
        messages = _chat(30)

        result = _compact(SummarizeCompactionStrategy(summarizer, threshold_tokens=10), messages)

        self.assertIs(messages, result)
        self.assertEqual(1, len(summarizer.prompts))

    def test_none_strategy(self) -> None:
        messages = _chat(30)

        self.assertIs(messages, _compact(NoneCompactionStrategy(), messages))

    def test_estimate_tokens(self) -> None:
        self.assertEqual(2, estimate_tokens([Message.user("abcd"), Message.assistant("efgh")]))

    def test_create_compaction_strategy(self) -> None:
        summarizer = _Summarizer()

        self.assertIsInstance(create_compaction_strategy("Summarize", summarizer, 10), SummarizeCompactionStrategy)
        self.assertIsInstance(create_compaction_strategy("none", summarizer, 10), NoneCompactionStrategy)
        with self.assertRaises(ValueError):
            create_compaction_strategy("truncate", summarizer, 10)


if __name__ == "__main__":
    unittest.main()
