from collections.abc import AsyncIterator

import anthropic
from loguru import logger
from tenacity import retry

from agent_runtime.models import Message
from agent_runtime.provider import ChatOptions, ToolSchema
from agent_runtime.providers.common import default_retry_kwargs, parse_tool_arguments
from agent_runtime.stream import StreamChunk, TokenUsage

_DEFAULT_MODEL = "claude-sonnet-4-5-20250929"


def _to_anthropic_content(message: Message) -> str | list[dict]:
    if isinstance(message.content, str):
        return message.content
    blocks: list[dict] = []
    for block in message.content:
        if block.type == "image" and block.data:
            blocks.append({
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": block.mime_type or "image/png",
                    "data": block.data,
                },
            })
        else:
            blocks.append({"type": "text", "text": block.text or ""})
    return blocks


def _to_anthropic_messages(system_prompt: str, messages: list[Message]) -> tuple[str, list[dict]]:
    """Convert internal messages to (system, messages) in Anthropic format.

    System messages (e.g. compaction summaries) are folded into the system
    prompt. Consecutive tool results are merged into one user turn.
    """
    system_parts = [system_prompt] if system_prompt else []
    out: list[dict] = []

    for msg in messages:
        if msg.role == "system":
            system_parts.append(msg.text)
            continue

        if msg.role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id or "",
                "content": msg.text,
            }
            previous = out[-1] if out else None
            if (
                previous is not None
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
                and all(b.get("type") == "tool_result" for b in previous["content"])
            ):
                previous["content"].append(block)
            else:
                out.append({"role": "user", "content": [block]})
            continue

        if msg.role == "assistant":
            content: list[dict] = []
            if msg.text:
                content.append({"type": "text", "text": msg.text})
            for call in msg.tool_calls:
                content.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": call.arguments,
                })
            if content:
                out.append({"role": "assistant", "content": content})
            continue

        out.append({"role": "user", "content": _to_anthropic_content(msg)})

    return "\n\n".join(system_parts), out


def _to_anthropic_tools(tools: list[ToolSchema]) -> list[dict]:
    return [
        {
            "name": t.name,
            "description": t.description,
            "input_schema": t.parameters or {"type": "object", "properties": {}},
        }
        for t in tools
    ]


class AnthropicProvider:
    def __init__(self, api_key: str, *, model: str | None = None, base_url: str | None = None):
        self._model = model or _DEFAULT_MODEL
        self._client: anthropic.AsyncAnthropic | None = None
        if api_key:
            self._client = anthropic.AsyncAnthropic(api_key=api_key, base_url=base_url)

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def model(self) -> str:
        return self._model

    def is_available(self) -> bool:
        return self._client is not None

    @retry(**default_retry_kwargs((
        anthropic.RateLimitError,
        anthropic.APIConnectionError,
        anthropic.APITimeoutError,
    )))
    async def _open_stream(self, **kwargs):
        return await self._client.messages.create(**kwargs)

    async def chat(self, messages: list[Message], options: ChatOptions) -> AsyncIterator[StreamChunk]:
        if self._client is None:
            yield StreamChunk.failure("Anthropic provider not configured")
            return

        system, anthropic_messages = _to_anthropic_messages(options.system_prompt, messages)
        tools = _to_anthropic_tools(options.tools)
        model = options.model or self._model

        kwargs: dict = dict(
            model=model,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            system=system,
            messages=anthropic_messages,
            stream=True,
        )
        if tools:
            kwargs["tools"] = tools

        # content block index -> {"id", "name", "arguments_parts"}
        tool_blocks: dict[int, dict] = {}
        input_tokens = 0
        output_tokens = 0

        try:
            logger.debug(
                f"API request: provider=anthropic, model={model}, "
                f"messages={len(anthropic_messages)}, tools={len(tools)}"
            )
            stream = await self._open_stream(**kwargs)

            async for event in stream:
                if event.type == "message_start":
                    input_tokens = event.message.usage.input_tokens
                elif event.type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        tool_blocks[event.index] = {"id": block.id, "name": block.name, "arguments_parts": []}
                        yield StreamChunk.tool_call_start(event.index, block.id, block.name)
                elif event.type == "content_block_delta":
                    if event.delta.type == "text_delta":
                        yield StreamChunk.text_delta(event.delta.text)
                    elif event.delta.type == "input_json_delta":
                        acc = tool_blocks.get(event.index)
                        if acc is not None:
                            acc["arguments_parts"].append(event.delta.partial_json)
                            yield StreamChunk.tool_call_delta(event.index, event.delta.partial_json, acc["id"])
                elif event.type == "content_block_stop":
                    acc = tool_blocks.pop(event.index, None)
                    if acc is not None:
                        yield StreamChunk.tool_call_end(
                            event.index,
                            acc["id"],
                            acc["name"],
                            parse_tool_arguments("".join(acc["arguments_parts"])),
                        )
                elif event.type == "message_delta":
                    output_tokens = event.usage.output_tokens
        except Exception as ex:
            logger.error(f"Anthropic chat error: {ex}")
            yield StreamChunk.failure(str(ex) or type(ex).__name__)
            return

        logger.debug(
            f"API response: provider=anthropic, input_tokens={input_tokens}, output_tokens={output_tokens}"
        )
        yield StreamChunk.done(TokenUsage(prompt_tokens=input_tokens, completion_tokens=output_tokens))
