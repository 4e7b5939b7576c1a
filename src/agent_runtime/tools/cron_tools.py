from typing import Any

from agent_runtime.memory.cron_store import CronJobStore
from agent_runtime.tool import ApprovalLevel, ToolContext


class CronAddTool:
    def __init__(self, jobs: CronJobStore):
        self._jobs = jobs

    @property
    def name(self) -> str:
        return "cron_add"

    @property
    def description(self) -> str:
        return (
            "Schedule a task to run periodically using a cron expression. When the schedule "
            "fires, the message is sent to the agent in this chat as a system trigger."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "name": {"type": "string", "minLength": 1, "description": "Unique name for the job"},
                "schedule": {
                    "type": "string",
                    "description": 'Cron expression in local time (e.g. "0 9 * * *" for daily at 9am)',
                },
                "message": {"type": "string", "description": "Instruction to send to the agent when triggered"},
            },
            "required": ["name", "schedule", "message"],
        }

    @property
    def approval_level(self) -> ApprovalLevel:
        return ApprovalLevel.SUPERVISED

    async def execute(self, tool_input: dict[str, Any], context: ToolContext) -> str:
        job = self._jobs.add(
            tool_input["name"].strip(),
            tool_input["schedule"],
            tool_input["message"],
            channel_name=context.channel_name,
            chat_id=context.chat_id,
            user_id=context.user_id,
        )
        return f'Scheduled job "{job.name}" with ID {job.id} to run at "{job.schedule}".'


class CronListTool:
    def __init__(self, jobs: CronJobStore):
        self._jobs = jobs

    @property
    def name(self) -> str:
        return "cron_list"

    @property
    def description(self) -> str:
        return "List all scheduled cron jobs."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    @property
    def approval_level(self) -> ApprovalLevel:
        return ApprovalLevel.READ

    async def execute(self, tool_input: dict[str, Any], context: ToolContext) -> str:
        jobs = self._jobs.list_jobs()
        if not jobs:
            return "No scheduled jobs."
        lines = ["Scheduled jobs:"]
        for job in jobs:
            state = "enabled" if job.enabled else "disabled"
            last_run = f", last run {job.last_run}" if job.last_run else ""
            lines.append(f'- [{job.id}] {job.name} ({job.schedule}): "{job.message}" ({state}{last_run})')
        return "\n".join(lines)


class CronRemoveTool:
    def __init__(self, jobs: CronJobStore):
        self._jobs = jobs

    @property
    def name(self) -> str:
        return "cron_remove"

    @property
    def description(self) -> str:
        return "Remove a scheduled cron job by ID."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"id": {"type": "string", "description": "Job ID to remove"}},
            "required": ["id"],
        }

    @property
    def approval_level(self) -> ApprovalLevel:
        return ApprovalLevel.SUPERVISED

    async def execute(self, tool_input: dict[str, Any], context: ToolContext) -> str:
        job_id = tool_input["id"].strip()
        if not self._jobs.remove(job_id):
            raise ValueError(f"No cron job with ID {job_id}")
        return f"Removed job {job_id}."
