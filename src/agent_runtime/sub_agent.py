from __future__ import annotations

import asyncio

from loguru import logger

from agent_runtime.agent import Agent
from agent_runtime.bus import MessageBus, SubAgentCompleted, SubAgentSpawned
from agent_runtime.memory.knowledge import KnowledgeStore
from agent_runtime.models import IncomingMessage, SubAgentStatus, SubAgentTask, new_id, utc_now
from agent_runtime.stream import ChunkType

DEFAULT_MAX_CONCURRENT = 3
SUB_AGENT_CHANNEL = "sub-agent"
_STORED_RESULT_CHARS = 2000


class SubAgentLimitError(RuntimeError):
    pass


def build_directive(description: str) -> str:
    return "\n".join(
        [
            "You are a sub-agent executing a delegated task.",
            f"Task: {description}",
            "",
            "Complete this task thoroughly and report your results.",
            "Be concise but complete: your output will be returned to the parent agent.",
        ]
    )


class SubAgentSupervisor:
    """Runs delegated tasks as background agent loops, at most ``max_concurrent`` at a time.

    Each task gets its own session on the ``sub-agent`` channel. Its final
    text is kept on the task, stored in the knowledge store when one is
    configured, and announced with ``SubAgentCompleted``.
    """

    def __init__(
        self,
        agent: Agent,
        *,
        bus: MessageBus,
        knowledge: KnowledgeStore | None = None,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    ):
        self._agent = agent
        self._bus = bus
        self._knowledge = knowledge
        self._max_concurrent = max(1, max_concurrent)
        self._tasks: dict[str, SubAgentTask] = {}
        self._running: dict[str, asyncio.Task] = {}

    @property
    def running_count(self) -> int:
        return sum(1 for t in self._tasks.values() if t.status == SubAgentStatus.RUNNING)

    def spawn(self, description: str, parent_session_id: str) -> SubAgentTask:
        """Start a background task and return it immediately in the running state.

        Raises SubAgentLimitError when the concurrency ceiling is reached.
        """
        if self.running_count >= self._max_concurrent:
            raise SubAgentLimitError(
                f"Max concurrent sub-agents reached ({self._max_concurrent}). "
                "Wait for a running task to complete."
            )

        task = SubAgentTask(id=new_id(8), parent_session_id=parent_session_id, description=description)
        task.status = SubAgentStatus.RUNNING
        self._tasks[task.id] = task
        logger.info(f'Sub-agent spawned: {task.id} "{description[:80]}"')
        self._bus.publish(SubAgentSpawned(task.id, description, parent_session_id))

        runner = asyncio.create_task(self._execute(task), name=f"sub-agent-{task.id}")
        self._running[task.id] = runner
        runner.add_done_callback(lambda _: self._running.pop(task.id, None))
        return task

    def get_task(self, task_id: str) -> SubAgentTask | None:
        return self._tasks.get(task_id)

    def list_tasks(self, status: SubAgentStatus | None = None) -> list[SubAgentTask]:
        tasks = list(self._tasks.values())
        if status is not None:
            tasks = [t for t in tasks if t.status == status]
        return tasks

    def get_result(self, task_id: str) -> str | None:
        task = self._tasks.get(task_id)
        return task.result if task is not None else None

    async def wait(self, task_id: str) -> SubAgentTask | None:
        runner = self._running.get(task_id)
        if runner is not None:
            await asyncio.gather(runner, return_exceptions=True)
        return self._tasks.get(task_id)

    async def shutdown(self) -> None:
        runners = list(self._running.values())
        for runner in runners:
            runner.cancel()
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)

    async def _execute(self, task: SubAgentTask) -> None:
        incoming = IncomingMessage(
            channel_name=SUB_AGENT_CHANNEL,
            chat_id=f"sub_{task.id}",
            user_id=SUB_AGENT_CHANNEL,
            text=build_directive(task.description),
            id=f"sub_{task.id}",
        )
        parts: list[str] = []
        error = ""
        try:
            async for chunk in self._agent.process_message(incoming):
                if chunk.type == ChunkType.TEXT:
                    parts.append(chunk.text)
                elif chunk.type == ChunkType.ERROR:
                    error = chunk.error
        except asyncio.CancelledError:
            self._finish(task, error="Cancelled")
            raise
        except Exception as ex:
            error = str(ex) or type(ex).__name__

        if error:
            self._finish(task, error=error)
        else:
            self._finish(task, result="".join(parts))

    def _finish(self, task: SubAgentTask, *, result: str | None = None, error: str | None = None) -> None:
        task.completed_at = utc_now()
        if error is not None:
            task.status = SubAgentStatus.FAILED
            task.error = error
            logger.error(f"Sub-agent {task.id} failed: {error}")
            self._bus.publish(SubAgentCompleted(task.id, task.parent_session_id, f"Error: {error}", False))
            return

        task.status = SubAgentStatus.COMPLETED
        task.result = result or ""
        if self._knowledge is not None:
            try:
                self._knowledge.store(
                    f"sub_agent_result:{task.id}",
                    task.result[:_STORED_RESULT_CHARS],
                    "sub-agent",
                )
            except Exception as ex:
                logger.warning(f"Failed to store result of sub-agent {task.id}: {ex}")
        logger.info(f"Sub-agent {task.id} completed successfully")
        self._bus.publish(SubAgentCompleted(task.id, task.parent_session_id, task.result, True))
