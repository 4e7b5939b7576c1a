import asyncio

from dotenv import load_dotenv
from loguru import logger

from agent_runtime.app_config import AppConfig, load_json_config, parse_app_config, resolve_runtime_env
from agent_runtime.bootstrap import AppRuntime, bootstrap_runtime
from agent_runtime.bus import ApprovalRequested, ApprovalResponded, OutgoingMessage, SubAgentCompleted
from agent_runtime.models import IncomingMessage
from agent_runtime.stream import ChunkType

_LINE_PREFIX = "assistant> "
_USER_PROMPT = "you> "
_CONSOLE_CHANNEL = "console"


class ConsoleChannel:
    """Terminal front end: reads user lines, streams replies, answers approval prompts."""

    def __init__(self, runtime: AppRuntime):
        self._runtime = runtime
        self._input_lock = asyncio.Lock()
        bus = runtime.bus
        bus.subscribe(ApprovalRequested, self._on_approval_requested)
        bus.subscribe(SubAgentCompleted, self._on_sub_agent_completed)
        bus.subscribe(OutgoingMessage, self._on_outgoing)

    async def read_line(self, prompt: str) -> str:
        async with self._input_lock:
            return await asyncio.to_thread(input, prompt)

    async def handle(self, text: str) -> None:
        incoming = IncomingMessage(channel_name=_CONSOLE_CHANNEL, chat_id="local", user_id="local", text=text)
        print(_LINE_PREFIX, end="", flush=True)
        async for chunk in self._runtime.agent.process_message(incoming):
            if chunk.type == ChunkType.TEXT:
                print(chunk.text, end="", flush=True)
            elif chunk.type == ChunkType.TOOL_CALL_START:
                print(f"\n{_LINE_PREFIX}[calling {chunk.tool_name}]", flush=True)
            elif chunk.type == ChunkType.ERROR:
                print(f"\n{_LINE_PREFIX}[error] {chunk.error}", flush=True)
        print("\n")

    async def _on_approval_requested(self, event: ApprovalRequested) -> None:
        async with self._input_lock:
            # The request may have timed out while another prompt held the terminal.
            if event.id not in self._runtime.approvals.pending_ids:
                logger.info(f"Approval {event.id} expired before it could be shown")
                return
            print(f"\n{_LINE_PREFIX}Approval required ({event.id}):\n{event.description}")
            try:
                answer = await asyncio.to_thread(input, "approve? [y/N] ")
            except (EOFError, KeyboardInterrupt):
                answer = ""
        approved = answer.strip().lower() in {"y", "yes"}
        self._runtime.bus.publish(ApprovalResponded(event.id, approved))

    def _on_sub_agent_completed(self, event: SubAgentCompleted) -> None:
        status = "completed" if event.success else "failed"
        preview = event.result if len(event.result) <= 300 else event.result[:300] + "..."
        print(f"\n{_LINE_PREFIX}[sub-agent {event.task_id} {status}] {preview}\n")

    def _on_outgoing(self, event: OutgoingMessage) -> None:
        if event.channel_name != _CONSOLE_CHANNEL:
            print(f"\n{_LINE_PREFIX}[{event.channel_name}] {event.text}\n")
        else:
            print(f"\n{_LINE_PREFIX}{event.text}\n")


def _print_banner(runtime: AppRuntime, app: AppConfig) -> None:
    print("agent-runtime (type 'exit' to quit, '/help' for commands)")
    print("Backends: " + ", ".join(
        f"{s.name}{'' if s.available else ' (unavailable)'}" for s in runtime.router.status()
    ))
    print("Tools:")
    for tool in runtime.registry.get_all():
        print(f"  - {tool.name} [{tool.approval_level.value}]")
    print(f"Workspace: {app.workspace_path}")
    if app.compaction_strategy_name != "none":
        print(f"Compaction: {app.compaction_strategy_name} (threshold: {app.compaction_threshold_tokens:,} tokens)")
    if runtime.heartbeat is not None:
        print(f"Heartbeat: every {app.heartbeat_interval_minutes:g} min")
    if runtime.cron is not None:
        print(f"Cron: checking every {app.cron_check_interval_seconds:g}s")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    runtime = await bootstrap_runtime(app, resolve_runtime_env())
    console = ConsoleChannel(runtime)
    _print_banner(runtime, app)

    try:
        while True:
            try:
                user_input = await console.read_line(_USER_PROMPT)
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            try:
                await console.handle(trimmed)
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
