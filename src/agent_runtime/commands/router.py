from __future__ import annotations

from collections.abc import Awaitable, Callable

from agent_runtime.models import Session

Handler = Callable[[Session], Awaitable[str]]


class CommandRouter:
    """Maps slash commands to handlers; each handler returns the reply text."""

    def __init__(
        self,
        *,
        on_help: Handler,
        on_reset: Handler,
        on_status: Handler,
        on_tasks: Handler,
        on_unknown: Callable[[str], str],
    ) -> None:
        self._on_help = on_help
        self._on_reset = on_reset
        self._on_status = on_status
        self._on_tasks = on_tasks
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str, session: Session) -> str | None:
        """Return the reply for a local command, or None when the text is not one."""
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return None

        command = trimmed.split(maxsplit=1)[0].lower()
        if command == "/help":
            return await self._on_help(session)
        if command == "/reset":
            return await self._on_reset(session)
        if command == "/status":
            return await self._on_status(session)
        if command == "/tasks":
            return await self._on_tasks(session)

        return self._on_unknown(trimmed)
