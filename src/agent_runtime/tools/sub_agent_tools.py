from typing import Any

from agent_runtime.sub_agent import SubAgentSupervisor
from agent_runtime.tool import ApprovalLevel, ToolContext


class SpawnSubAgentTool:
    def __init__(self, supervisor: SubAgentSupervisor):
        self._supervisor = supervisor

    @property
    def name(self) -> str:
        return "spawn_sub_agent"

    @property
    def description(self) -> str:
        return (
            "Delegate a task to a background sub-agent. The sub-agent runs asynchronously; "
            "poll its result later with check_sub_agent. Use for long-running or independent tasks."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "task": {
                    "type": "string",
                    "minLength": 1,
                    "description": "A clear, self-contained description of the task to delegate",
                },
            },
            "required": ["task"],
        }

    @property
    def approval_level(self) -> ApprovalLevel:
        return ApprovalLevel.SUPERVISED

    async def execute(self, tool_input: dict[str, Any], context: ToolContext) -> str:
        # SubAgentLimitError propagates and becomes an error result.
        task = self._supervisor.spawn(tool_input["task"], context.session_id)
        return (
            f"Sub-agent spawned with ID: {task.id}\n"
            f"Task: {task.description}\n"
            f"Status: {task.status.value}\n\n"
            "Use check_sub_agent with this ID to poll for results."
        )


class CheckSubAgentTool:
    def __init__(self, supervisor: SubAgentSupervisor):
        self._supervisor = supervisor

    @property
    def name(self) -> str:
        return "check_sub_agent"

    @property
    def description(self) -> str:
        return "Check the status and result of a previously spawned sub-agent task."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "taskId": {
                    "type": "string",
                    "description": "The sub-agent task ID returned by spawn_sub_agent",
                },
            },
            "required": ["taskId"],
        }

    @property
    def approval_level(self) -> ApprovalLevel:
        return ApprovalLevel.READ

    async def execute(self, tool_input: dict[str, Any], context: ToolContext) -> str:
        task_id = tool_input["taskId"]
        task = self._supervisor.get_task(task_id)
        if task is None:
            raise LookupError(f"No sub-agent task found with ID: {task_id}")

        lines = [
            f"Task ID: {task.id}",
            f"Status: {task.status.value}",
            f"Description: {task.description}",
        ]
        if task.completed_at is not None:
            lines.append(f"Completed: {task.completed_at.isoformat(timespec='seconds')}")
        if task.result:
            lines.append(f"\nResult:\n{task.result}")
        if task.error:
            lines.append(f"\nError: {task.error}")
        return "\n".join(lines)
