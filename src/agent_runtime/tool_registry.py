from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError
from loguru import logger

from agent_runtime.bus import MessageBus, ToolCompleted, ToolStarted
from agent_runtime.models import ToolResult
from agent_runtime.provider import ToolSchema
from agent_runtime.tool import ApprovalLevel, Tool, ToolContext


@dataclass(frozen=True)
class ValidatedArguments:
    values: dict[str, Any]


@dataclass(frozen=True)
class RawArguments:
    """Arguments that did not match the tool's schema, kept as received."""

    values: dict[str, Any]
    errors: list[str] = field(default_factory=list)


ToolArguments = ValidatedArguments | RawArguments


def validate_arguments(schema: dict[str, Any], arguments: dict[str, Any]) -> ToolArguments:
    if not schema:
        return ValidatedArguments(arguments)
    try:
        Draft7Validator.check_schema(schema)
        validator = Draft7Validator(schema)
        errors = sorted(validator.iter_errors(arguments), key=lambda item: list(item.path))
    except SchemaError as ex:
        logger.warning(f"Tool schema is invalid, skipping argument validation: {ex.message}")
        return ValidatedArguments(arguments)
    except Exception as ex:
        # Unresolvable $ref and similar failures only surface while validating.
        logger.warning(f"Tool schema could not be applied: {ex}")
        return RawArguments(arguments, [f"$: schema could not be applied: {ex}"])
    if not errors:
        return ValidatedArguments(arguments)
    formatted = []
    for error in errors:
        path = ".".join(str(segment) for segment in error.path) or "$"
        formatted.append(f"{path}: {error.message}")
    return RawArguments(arguments, formatted)


def describe_call(name: str, arguments: dict[str, Any]) -> str:
    return f"Tool: {name}\nArgs: {json.dumps(arguments, indent=2, default=str)}"


class ToolRegistry:
    """Holds tool definitions and dispatches calls through the approval gate.

    ``execute`` never raises: unknown tools, invalid arguments, denials and
    tool failures all come back as a ToolResult.
    """

    def __init__(
        self,
        *,
        bus: MessageBus | None = None,
        approval_gates_enabled: bool = True,
        max_result_chars: int = 40_000,
    ):
        self._tools: dict[str, Tool] = {}
        self._bus = bus
        self._approval_gates_enabled = approval_gates_enabled
        self._max_result_chars = max_result_chars

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool
        logger.debug(f"Tool registered: {tool.name} [{ApprovalLevel(tool.approval_level).value}]")

    def register_all(self, tools: list[Tool]) -> None:
        for tool in tools:
            self.register(tool)

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def get_all(self) -> list[Tool]:
        return list(self._tools.values())

    def get_schemas(self) -> list[ToolSchema]:
        return [
            ToolSchema(name=t.name, description=t.description, parameters=t.input_schema)
            for t in self._tools.values()
        ]

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        context: ToolContext,
        *,
        tool_call_id: str = "",
    ) -> ToolResult:
        tool = self._tools.get(name)
        if tool is None:
            return ToolResult(tool_call_id, f'Error: Unknown tool "{name}"', is_error=True)

        checked = validate_arguments(tool.input_schema, arguments)
        if isinstance(checked, RawArguments):
            logger.warning(f"Invalid arguments for tool {name}: {checked.errors}")
            return ToolResult(
                tool_call_id,
                f'Error: Invalid arguments for tool "{name}":\n' + "\n".join(f"- {e}" for e in checked.errors),
                is_error=True,
            )

        if not await self._approve(tool, checked.values, context):
            return ToolResult(tool_call_id, f'Tool "{name}" was denied by user.')

        self._publish(ToolStarted(context.session_id, tool_call_id, name))
        try:
            logger.info(f"Executing tool: {name} (args: {sorted(checked.values)})")
            output = await tool.execute(checked.values, context)
            result = ToolResult(tool_call_id, self._truncate(output, name))
        except Exception as ex:
            logger.error(f"Tool execution error: {name}: {ex}")
            result = ToolResult(tool_call_id, f'Error executing tool "{name}": {ex}', is_error=True)
        self._publish(ToolCompleted(context.session_id, tool_call_id, name, result.is_error))
        return result

    async def _approve(self, tool: Tool, arguments: dict[str, Any], context: ToolContext) -> bool:
        if not self._approval_gates_enabled:
            return True
        if ApprovalLevel(tool.approval_level) != ApprovalLevel.SUPERVISED:
            return True
        logger.info(f"Approval required for tool: {tool.name}")
        try:
            return bool(await context.request_approval(describe_call(tool.name, arguments)))
        except Exception as ex:
            logger.error(f"Approval request for {tool.name} failed, denying: {ex}")
            return False

    def _truncate(self, result: str, tool_name: str) -> str:
        if self._max_result_chars <= 0 or len(result) <= self._max_result_chars:
            return result

        original_length = len(result)
        logger.warning(
            f"{tool_name} output truncated from {original_length:,} to {self._max_result_chars:,} chars"
        )
        return (
            result[: self._max_result_chars]
            + f"\n\n[OUTPUT TRUNCATED: Showing {self._max_result_chars:,} "
            f"of {original_length:,} characters from {tool_name}]"
        )

    def _publish(self, event: object) -> None:
        if self._bus is not None:
            self._bus.publish(event)


@dataclass(frozen=True)
class ToolGroup:
    enabled: Callable[[dict], bool]
    build: Callable[[dict], list[Tool]]


def _always(_: dict) -> bool:
    return True


def _base_tools(ctx: dict) -> list[Tool]:
    from agent_runtime.tools.bash_tool import BashTool
    from agent_runtime.tools.file_tools import ListDirTool, ReadFileTool, WriteFileTool
    from agent_runtime.tools.search_providers import DuckDuckGoSearchProvider
    from agent_runtime.tools.web_fetch_tool import WebFetchTool
    from agent_runtime.tools.web_search_tool import WebSearchTool

    workspace = ctx["workspace_path"]
    restrict = ctx.get("restrict_to_workspace", True)
    return [
        BashTool(workspace, blocklist=ctx.get("blocklist"), restrict_to_workspace=restrict),
        ReadFileTool(workspace, restrict_to_workspace=restrict),
        WriteFileTool(workspace, restrict_to_workspace=restrict),
        ListDirTool(workspace, restrict_to_workspace=restrict),
        WebFetchTool(),
        WebSearchTool(ctx.get("search_provider") or DuckDuckGoSearchProvider()),
    ]


def _memory_enabled(ctx: dict) -> bool:
    return ctx.get("knowledge") is not None


def _memory_tools(ctx: dict) -> list[Tool]:
    from agent_runtime.tools.memory_tools import RecallTool, RememberTool

    return [RememberTool(ctx["knowledge"]), RecallTool(ctx["knowledge"])]


def _sub_agent_enabled(ctx: dict) -> bool:
    return ctx.get("supervisor") is not None


def _sub_agent_tools(ctx: dict) -> list[Tool]:
    from agent_runtime.tools.sub_agent_tools import CheckSubAgentTool, SpawnSubAgentTool

    return [SpawnSubAgentTool(ctx["supervisor"]), CheckSubAgentTool(ctx["supervisor"])]


def _cron_enabled(ctx: dict) -> bool:
    return ctx.get("cron_jobs") is not None


def _cron_tools(ctx: dict) -> list[Tool]:
    from agent_runtime.tools.cron_tools import CronAddTool, CronListTool, CronRemoveTool

    jobs = ctx["cron_jobs"]
    return [CronAddTool(jobs), CronListTool(jobs), CronRemoveTool(jobs)]


_GROUPS = [
    ToolGroup(enabled=_always, build=_base_tools),
    ToolGroup(enabled=_memory_enabled, build=_memory_tools),
    ToolGroup(enabled=_sub_agent_enabled, build=_sub_agent_tools),
    ToolGroup(enabled=_cron_enabled, build=_cron_tools),
]


def get_builtin_tools(
    workspace_path: str,
    *,
    blocklist: list[str] | None = None,
    restrict_to_workspace: bool = True,
    knowledge: Any = None,
    supervisor: Any = None,
    cron_jobs: Any = None,
    search_provider: Any = None,
) -> list[Tool]:
    ctx = {
        "workspace_path": workspace_path,
        "blocklist": blocklist,
        "restrict_to_workspace": restrict_to_workspace,
        "knowledge": knowledge,
        "supervisor": supervisor,
        "cron_jobs": cron_jobs,
        "search_provider": search_provider,
    }

    tools: list[Tool] = []
    for group in _GROUPS:
        if group.enabled(ctx):
            tools.extend(group.build(ctx))
    return tools
