from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from agent_runtime.models import Message
from agent_runtime.stream import StreamChunk


@dataclass(frozen=True)
class ToolSchema:
    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChatOptions:
    model: str | None = None
    max_tokens: int = 8192
    temperature: float = 0.7
    tools: list[ToolSchema] = field(default_factory=list)
    system_prompt: str = ""


@runtime_checkable
class LLMProvider(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def model(self) -> str: ...

    def is_available(self) -> bool: ...

    def chat(self, messages: list[Message], options: ChatOptions) -> AsyncIterator[StreamChunk]:
        """Stream a chat completion as StreamChunks.

        Implementations never raise: failures are reported as a single
        terminal error chunk.
        """
        ...


def parse_model_string(model: str) -> tuple[str, str]:
    """Split "provider/model" into its parts; a bare model name belongs to anthropic."""
    provider, sep, name = model.partition("/")
    if not sep:
        return "anthropic", model
    return provider, name


def create_provider(
    provider_name: str,
    api_key: str = "",
    *,
    model: str | None = None,
    base_url: str | None = None,
) -> LLMProvider:
    """Factory: create an LLMProvider by name."""
    name = provider_name.strip().lower()
    if name == "anthropic":
        from agent_runtime.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(api_key, model=model, base_url=base_url)
    if name == "openai":
        from agent_runtime.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(api_key, model=model, base_url=base_url)
    if name == "ollama":
        from agent_runtime.providers.ollama_provider import OllamaProvider
        return OllamaProvider(base_url, model=model)
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'anthropic', 'openai', 'ollama'")
