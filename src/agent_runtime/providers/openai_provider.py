import json
from collections.abc import AsyncIterator

import openai
from loguru import logger
from tenacity import retry

from agent_runtime.models import Message
from agent_runtime.provider import ChatOptions, ToolSchema
from agent_runtime.providers.common import default_retry_kwargs, parse_tool_arguments
from agent_runtime.stream import StreamChunk, TokenUsage

_DEFAULT_MODEL = "gpt-4o"


def _to_openai_content(message: Message) -> str | list[dict]:
    if isinstance(message.content, str):
        return message.content
    parts: list[dict] = []
    for block in message.content:
        if block.type == "image" and block.data:
            parts.append({
                "type": "image_url",
                "image_url": {"url": f"data:{block.mime_type or 'image/png'};base64,{block.data}"},
            })
        elif block.type == "image" and block.url:
            parts.append({"type": "image_url", "image_url": {"url": block.url}})
        else:
            parts.append({"type": "text", "text": block.text or ""})
    return parts


def _to_openai_messages(system_prompt: str, messages: list[Message]) -> list[dict]:
    """Convert internal messages to OpenAI chat format."""
    out: list[dict] = []

    if system_prompt:
        out.append({"role": "system", "content": system_prompt})

    for msg in messages:
        if msg.role == "tool":
            out.append({
                "role": "tool",
                "tool_call_id": msg.tool_call_id or "",
                "content": msg.text,
            })
        elif msg.role == "assistant":
            oai_msg: dict = {"role": "assistant", "content": msg.text or None}
            if msg.tool_calls:
                oai_msg["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                    }
                    for call in msg.tool_calls
                ]
            out.append(oai_msg)
        elif msg.role == "system":
            out.append({"role": "system", "content": msg.text})
        else:
            out.append({"role": "user", "content": _to_openai_content(msg)})

    return out


def _to_openai_tools(tools: list[ToolSchema]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters,
            },
        }
        for t in tools
    ]


class OpenAIProvider:
    def __init__(self, api_key: str, *, model: str | None = None, base_url: str | None = None):
        self._model = model or _DEFAULT_MODEL
        self._client: openai.AsyncOpenAI | None = None
        if api_key:
            self._client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url)

    @property
    def name(self) -> str:
        return "openai"

    @property
    def model(self) -> str:
        return self._model

    def is_available(self) -> bool:
        return self._client is not None

    @retry(**default_retry_kwargs((
        openai.RateLimitError,
        openai.APIConnectionError,
        openai.APITimeoutError,
    )))
    async def _open_stream(self, **kwargs):
        return await self._client.chat.completions.create(**kwargs)

    async def chat(self, messages: list[Message], options: ChatOptions) -> AsyncIterator[StreamChunk]:
        if self._client is None:
            yield StreamChunk.failure("OpenAI provider not configured")
            return

        oai_messages = _to_openai_messages(options.system_prompt, messages)
        oai_tools = _to_openai_tools(options.tools)
        model = options.model or self._model

        kwargs: dict = dict(
            model=model,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            messages=oai_messages,
            stream=True,
            stream_options={"include_usage": True},
        )
        if oai_tools:
            kwargs["tools"] = oai_tools

        # index -> {"id", "name", "arguments_parts"}
        tool_calls_acc: dict[int, dict] = {}
        usage: TokenUsage | None = None

        try:
            logger.debug(
                f"API request: provider=openai, model={model}, "
                f"messages={len(oai_messages)}, tools={len(oai_tools)}"
            )
            stream = await self._open_stream(**kwargs)

            async for chunk in stream:
                if not chunk.choices:
                    if chunk.usage:
                        usage = TokenUsage(
                            prompt_tokens=chunk.usage.prompt_tokens,
                            completion_tokens=chunk.usage.completion_tokens,
                        )
                    continue

                choice = chunk.choices[0]
                delta = choice.delta

                if delta is not None and delta.content:
                    yield StreamChunk.text_delta(delta.content)

                if delta is not None and delta.tool_calls:
                    for tc_delta in delta.tool_calls:
                        idx = tc_delta.index
                        fn = tc_delta.function
                        if idx not in tool_calls_acc:
                            tool_calls_acc[idx] = {
                                "id": tc_delta.id or "",
                                "name": (fn.name if fn and fn.name else ""),
                                "arguments_parts": [],
                            }
                            yield StreamChunk.tool_call_start(
                                idx, tool_calls_acc[idx]["id"], tool_calls_acc[idx]["name"]
                            )
                        acc = tool_calls_acc[idx]
                        if tc_delta.id:
                            acc["id"] = tc_delta.id
                        if fn and fn.name:
                            acc["name"] = fn.name
                        if fn and fn.arguments:
                            acc["arguments_parts"].append(fn.arguments)
                            yield StreamChunk.tool_call_delta(idx, fn.arguments, acc["id"])

                if choice.finish_reason:
                    for idx in sorted(tool_calls_acc):
                        acc = tool_calls_acc[idx]
                        yield StreamChunk.tool_call_end(
                            idx,
                            acc["id"],
                            acc["name"],
                            parse_tool_arguments("".join(acc["arguments_parts"])),
                        )
                    tool_calls_acc.clear()
        except Exception as ex:
            logger.error(f"OpenAI chat error: {ex}")
            yield StreamChunk.failure(str(ex) or type(ex).__name__)
            return

        logger.debug(f"API response: provider=openai, usage={usage}")
        yield StreamChunk.done(usage)
