from __future__ import annotations

import asyncio

from loguru import logger

from agent_runtime.bus import ApprovalRequested, ApprovalResponded, MessageBus
from agent_runtime.models import new_id

DEFAULT_APPROVAL_TIMEOUT_SECONDS = 120.0


class ApprovalBroker:
    """Pairs approval requests with responses by request id.

    A request publishes ``ApprovalRequested`` and waits on a future keyed by
    its id. The wait races a deadline: no response in time counts as a denial.
    """

    def __init__(self, bus: MessageBus, *, timeout_seconds: float = DEFAULT_APPROVAL_TIMEOUT_SECONDS):
        self._bus = bus
        self._timeout_seconds = timeout_seconds
        self._pending: dict[str, asyncio.Future[bool]] = {}
        bus.subscribe(ApprovalResponded, self._on_response)

    @property
    def pending_ids(self) -> list[str]:
        return list(self._pending)

    async def request(self, description: str, session_id: str = "") -> bool:
        request_id = new_id(8)
        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            self._bus.publish(ApprovalRequested(id=request_id, description=description, session_id=session_id))
            return await asyncio.wait_for(future, self._timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Approval {request_id} timed out after {self._timeout_seconds:.0f}s, defaulting to deny")
            return False
        finally:
            self._pending.pop(request_id, None)

    def respond(self, request_id: str, approved: bool) -> bool:
        future = self._pending.get(request_id)
        if future is None or future.done():
            logger.warning(f"Ignoring response for unknown or expired approval: {request_id}")
            return False
        future.set_result(bool(approved))
        return True

    def _on_response(self, event: ApprovalResponded) -> None:
        self.respond(event.id, event.approved)
