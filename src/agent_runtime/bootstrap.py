from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from agent_runtime.agent import Agent
from agent_runtime.agent_config import AgentConfig
from agent_runtime.app_config import AppConfig, RuntimeEnv
from agent_runtime.approval import ApprovalBroker
from agent_runtime.bus import MessageBus
from agent_runtime.compaction import create_compaction_strategy
from agent_runtime.context import ContextBuilder
from agent_runtime.cron import CronScheduler
from agent_runtime.failover import FailoverRouter
from agent_runtime.heartbeat import HeartbeatScheduler
from agent_runtime.logging_config import setup_logging
from agent_runtime.memory import (
    AsyncEventSink,
    CronJobStore,
    KnowledgeStore,
    MemoryStore,
    SessionStore,
    UsageTracker,
    prune_memory,
)
from agent_runtime.provider import LLMProvider, create_provider
from agent_runtime.sub_agent import SubAgentSupervisor
from agent_runtime.tool_registry import ToolRegistry, get_builtin_tools
from agent_runtime.tools.search_providers import (
    BraveSearchProvider,
    DuckDuckGoSearchProvider,
    SearchProvider,
)


@dataclass
class AppRuntime:
    agent: Agent
    bus: MessageBus
    router: FailoverRouter
    registry: ToolRegistry
    approvals: ApprovalBroker
    supervisor: SubAgentSupervisor
    memory_store: MemoryStore
    knowledge: KnowledgeStore
    event_sink: AsyncEventSink
    heartbeat: HeartbeatScheduler | None
    cron: CronScheduler | None
    log_descriptions: list[str]

    async def close(self) -> None:
        if self.heartbeat is not None:
            await self.heartbeat.stop()
        if self.cron is not None:
            await self.cron.stop()
        await self.supervisor.shutdown()
        await self.bus.drain()
        await self.event_sink.close()
        self.memory_store.close()


def build_providers(app: AppConfig, env: RuntimeEnv) -> list[LLMProvider]:
    """Create one adapter per backend in the priority list.

    Raises ValueError for an unknown backend name.
    """
    providers: list[LLMProvider] = []
    for name in app.provider_priority:
        settings = app.provider_settings(name)
        base_url = settings.base_url
        if name == "ollama":
            base_url = base_url or env.ollama_base_url
        provider = create_provider(name, env.api_key_for(name), model=settings.model, base_url=base_url)
        if not provider.is_available():
            logger.debug(f"Provider {name} has no credentials configured")
        providers.append(provider)
    return providers


def build_search_provider(env: RuntimeEnv) -> SearchProvider:
    if env.brave_api_key:
        return BraveSearchProvider(env.brave_api_key)
    return DuckDuckGoSearchProvider()


def _resolve(path: str) -> Path:
    resolved = Path(path).expanduser()
    if not resolved.is_absolute():
        resolved = Path.cwd() / resolved
    return resolved


async def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    workspace = _resolve(app.workspace_path)
    workspace.mkdir(parents=True, exist_ok=True)

    bus = MessageBus()
    router = FailoverRouter(
        build_providers(app, env),
        app.provider_priority,
        cooldown_seconds=app.provider_cooldown_seconds,
        stream_timeout_seconds=app.stream_timeout_seconds,
    )

    memory_store = MemoryStore(str(_resolve(app.memory_db_path)))
    prune_memory(
        memory_store,
        max_sessions=app.memory_max_sessions,
        retention_days=app.memory_retention_days,
    )
    event_sink = AsyncEventSink(memory_store)
    event_sink.attach(bus)
    await event_sink.start()

    knowledge = KnowledgeStore(memory_store, memory_file=workspace / "memory" / "MEMORY.md")
    context = ContextBuilder(str(workspace), knowledge=knowledge)
    approvals = ApprovalBroker(bus, timeout_seconds=app.approval_timeout_seconds)
    registry = ToolRegistry(
        bus=bus,
        approval_gates_enabled=app.approval_gates_enabled,
        max_result_chars=app.max_tool_result_chars,
    )

    agent = Agent(
        AgentConfig(
            router=router,
            sessions=SessionStore(memory_store),
            context=context,
            registry=registry,
            bus=bus,
            approvals=approvals,
            usage=UsageTracker(memory_store),
            compaction_strategy=create_compaction_strategy(
                app.compaction_strategy_name,
                router.complete,
                app.compaction_threshold_tokens,
            ),
            max_tokens=app.max_tokens,
            temperature=app.temperature,
            max_turns=app.max_turns,
            workspace_path=str(workspace),
        )
    )

    supervisor = SubAgentSupervisor(
        agent,
        bus=bus,
        knowledge=knowledge,
        max_concurrent=app.max_concurrent_sub_agents,
    )
    agent.attach_supervisor(supervisor)
    cron_jobs = CronJobStore(memory_store) if app.cron_enabled else None
    registry.register_all(
        get_builtin_tools(
            str(workspace),
            blocklist=app.blocklist,
            restrict_to_workspace=app.restrict_to_workspace,
            knowledge=knowledge,
            supervisor=supervisor,
            cron_jobs=cron_jobs,
            search_provider=build_search_provider(env),
        )
    )

    heartbeat: HeartbeatScheduler | None = None
    if app.heartbeat_enabled:
        heartbeat = HeartbeatScheduler(
            agent,
            context,
            bus,
            interval_seconds=app.heartbeat_interval_minutes * 60,
        )
        await heartbeat.start()

    cron: CronScheduler | None = None
    if cron_jobs is not None:
        cron = CronScheduler(
            cron_jobs,
            agent,
            bus,
            check_interval_seconds=app.cron_check_interval_seconds,
        )
        await cron.start()

    return AppRuntime(
        agent=agent,
        bus=bus,
        router=router,
        registry=registry,
        approvals=approvals,
        supervisor=supervisor,
        memory_store=memory_store,
        knowledge=knowledge,
        event_sink=event_sink,
        heartbeat=heartbeat,
        cron=cron,
        log_descriptions=log_descriptions,
    )
