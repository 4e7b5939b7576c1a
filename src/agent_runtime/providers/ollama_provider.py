import json
from collections.abc import AsyncIterator

import httpx
from loguru import logger

from agent_runtime.models import Message
from agent_runtime.provider import ChatOptions, ToolSchema
from agent_runtime.providers.common import parse_tool_arguments
from agent_runtime.stream import StreamChunk, TokenUsage

_DEFAULT_MODEL = "llama3.1"
_TIMEOUT_SECONDS = 120


def _to_ollama_messages(system_prompt: str, messages: list[Message]) -> list[dict]:
    out: list[dict] = []
    if system_prompt:
        out.append({"role": "system", "content": system_prompt})
    for msg in messages:
        entry: dict = {"role": msg.role, "content": msg.text}
        if msg.role == "user" and not isinstance(msg.content, str):
            images = [b.data for b in msg.content if b.type == "image" and b.data]
            if images:
                entry["images"] = images
        if msg.tool_calls:
            entry["tool_calls"] = [
                {"function": {"name": call.name, "arguments": call.arguments}} for call in msg.tool_calls
            ]
        out.append(entry)
    return out


def _to_ollama_tools(tools: list[ToolSchema]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {"name": t.name, "description": t.description, "parameters": t.parameters},
        }
        for t in tools
    ]


class OllamaProvider:
    """Local models served by Ollama's /api/chat endpoint (NDJSON stream)."""

    def __init__(
        self,
        base_url: str | None,
        *,
        model: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = (base_url or "").rstrip("/")
        self._model = model or _DEFAULT_MODEL
        self._transport = transport

    @property
    def name(self) -> str:
        return "ollama"

    @property
    def model(self) -> str:
        return self._model

    def is_available(self) -> bool:
        return bool(self._base_url)

    async def chat(self, messages: list[Message], options: ChatOptions) -> AsyncIterator[StreamChunk]:
        if not self._base_url:
            yield StreamChunk.failure("Ollama provider not configured")
            return

        model = options.model or self._model
        payload: dict = {
            "model": model,
            "messages": _to_ollama_messages(options.system_prompt, messages),
            "stream": True,
            "options": {"temperature": options.temperature, "num_predict": options.max_tokens},
        }
        if options.tools:
            payload["tools"] = _to_ollama_tools(options.tools)

        next_index = 0
        usage: TokenUsage | None = None

        try:
            logger.debug(f"API request: provider=ollama, model={model}, messages={len(payload['messages'])}")
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=_TIMEOUT_SECONDS,
                transport=self._transport,
            ) as client:
                async with client.stream("POST", "/api/chat", json=payload) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode(errors="replace")
                        yield StreamChunk.failure(f"HTTP {response.status_code}: {body[:200]}")
                        return

                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        data = json.loads(line)
                        if data.get("error"):
                            yield StreamChunk.failure(str(data["error"]))
                            return

                        message = data.get("message") or {}
                        if message.get("content"):
                            yield StreamChunk.text_delta(message["content"])

                        # Ollama delivers each tool call whole.
                        for call in message.get("tool_calls") or []:
                            fn = call.get("function") or {}
                            call_id = call.get("id") or f"ollama_{next_index}"
                            arguments = fn.get("arguments") or {}
                            if not isinstance(arguments, dict):
                                arguments = parse_tool_arguments(arguments if isinstance(arguments, str) else "")
                            yield StreamChunk.tool_call_start(next_index, call_id, fn.get("name", ""))
                            yield StreamChunk.tool_call_delta(next_index, json.dumps(arguments), call_id)
                            yield StreamChunk.tool_call_end(next_index, call_id, fn.get("name", ""), arguments)
                            next_index += 1

                        if data.get("done"):
                            usage = TokenUsage(
                                prompt_tokens=int(data.get("prompt_eval_count", 0)),
                                completion_tokens=int(data.get("eval_count", 0)),
                            )
        except Exception as ex:
            logger.error(f"Ollama chat error: {ex}")
            yield StreamChunk.failure(str(ex) or type(ex).__name__)
            return

        yield StreamChunk.done(usage)
