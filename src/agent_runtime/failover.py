from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass, replace

from loguru import logger

from agent_runtime.models import Message
from agent_runtime.provider import ChatOptions, LLMProvider
from agent_runtime.stream import ChunkType, StreamChunk

DEFAULT_COOLDOWN_SECONDS = 60.0
DEFAULT_STREAM_TIMEOUT_SECONDS = 120.0


@dataclass
class ProviderHealth:
    healthy: bool = True
    unhealthy_until: float | None = None


@dataclass(frozen=True)
class ProviderStatus:
    name: str
    model: str
    available: bool
    healthy: bool


class _StreamFailure(Exception):
    pass


class FailoverRouter:
    """Routes chat requests to the first healthy backend in priority order.

    A backend whose stream errors is marked unhealthy for ``cooldown_seconds``.
    The next backend is tried only while nothing has been yielded to the
    caller; once content has been streamed a failure is terminal for the turn.
    """

    def __init__(
        self,
        providers: list[LLMProvider],
        priority: list[str] | None = None,
        *,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        stream_timeout_seconds: float | None = DEFAULT_STREAM_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._providers: dict[str, LLMProvider] = {p.name: p for p in providers}
        self._priority = list(priority) if priority else [p.name for p in providers]
        if not self._priority:
            raise ValueError("Provider priority list must not be empty")
        self._cooldown_seconds = cooldown_seconds
        self._stream_timeout_seconds = stream_timeout_seconds
        self._clock = clock
        self._health: dict[str, ProviderHealth] = {}

    @property
    def priority(self) -> list[str]:
        return list(self._priority)

    def get_provider(self, name: str) -> LLMProvider | None:
        return self._providers.get(name)

    def is_healthy(self, name: str) -> bool:
        health = self._health.get(name)
        if health is None or health.healthy:
            return True
        if health.unhealthy_until is not None and self._clock() >= health.unhealthy_until:
            # Cooldown elapsed.
            del self._health[name]
            logger.info(f"Provider {name} health reset")
            return True
        return False

    def mark_unhealthy(self, name: str) -> None:
        self._health[name] = ProviderHealth(
            healthy=False,
            unhealthy_until=self._clock() + self._cooldown_seconds,
        )
        logger.warning(f"Provider {name} marked unhealthy for {self._cooldown_seconds:.0f}s")

    def mark_healthy(self, name: str) -> None:
        self._health[name] = ProviderHealth(healthy=True)

    def status(self) -> list[ProviderStatus]:
        return [
            ProviderStatus(
                name=name,
                model=provider.model,
                available=provider.is_available(),
                healthy=self.is_healthy(name),
            )
            for name, provider in self._providers.items()
        ]

    async def route(self, messages: list[Message], options: ChatOptions) -> AsyncIterator[StreamChunk]:
        tried: list[str] = []

        for name in self._priority:
            provider = self._providers.get(name)
            if provider is None or not provider.is_available():
                continue
            if not self.is_healthy(name):
                logger.debug(f"Skipping unhealthy provider: {name}")
                continue

            tried.append(name)
            logger.debug(f"Trying provider: {name}")
            yielded = False
            failure = ""

            try:
                async with aclosing(self._guarded(provider, messages, options)) as stream:
                    async for chunk in stream:
                        if chunk.type == ChunkType.ERROR:
                            failure = chunk.error
                            break
                        if chunk.type == ChunkType.DONE:
                            chunk = replace(chunk, provider=name)
                        yielded = yielded or chunk.is_content
                        yield chunk
            except _StreamFailure as ex:
                failure = str(ex)

            if not failure:
                self.mark_healthy(name)
                return

            logger.warning(f"Provider {name} error: {failure}")
            self.mark_unhealthy(name)

            if yielded:
                yield StreamChunk.failure(f"Provider {name} failed mid-stream: {failure}")
                return

        attempted = ", ".join(tried) or "none available"
        yield StreamChunk.failure(f"All providers failed. Tried: {attempted}. Check your API keys.")

    async def complete(
        self,
        prompt: str,
        *,
        max_tokens: int = 2048,
        temperature: float = 0.0,
    ) -> str:
        """Run a single non-tool request and return its text.

        Raises RuntimeError when the request ends in an error chunk.
        """
        parts: list[str] = []
        options = ChatOptions(max_tokens=max_tokens, temperature=temperature)
        async for chunk in self.route([Message.user(prompt)], options):
            if chunk.type == ChunkType.TEXT:
                parts.append(chunk.text)
            elif chunk.type == ChunkType.ERROR:
                raise RuntimeError(chunk.error)
        return "".join(parts)

    async def _guarded(
        self,
        provider: LLMProvider,
        messages: list[Message],
        options: ChatOptions,
    ) -> AsyncIterator[StreamChunk]:
        stream = provider.chat(messages, options)
        try:
            while True:
                try:
                    if self._stream_timeout_seconds is None:
                        chunk = await anext(stream)
                    else:
                        chunk = await asyncio.wait_for(anext(stream), self._stream_timeout_seconds)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError:
                    raise _StreamFailure(
                        f"no response within {self._stream_timeout_seconds:.0f}s"
                    ) from None
                except Exception as ex:
                    raise _StreamFailure(str(ex) or type(ex).__name__) from ex
                yield chunk
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
