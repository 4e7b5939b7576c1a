from dataclasses import dataclass, field

from agent_runtime.approval import ApprovalBroker
from agent_runtime.bus import MessageBus
from agent_runtime.compaction import CompactionStrategy, NoneCompactionStrategy
from agent_runtime.context import ContextBuilder, SkillManifest
from agent_runtime.failover import FailoverRouter
from agent_runtime.memory.session_store import SessionStore
from agent_runtime.memory.usage import UsageTracker
from agent_runtime.tool_registry import ToolRegistry
from agent_runtime.turn_engine import DEFAULT_MAX_TURNS


@dataclass
class AgentConfig:
    router: FailoverRouter
    sessions: SessionStore
    context: ContextBuilder
    registry: ToolRegistry = field(default_factory=ToolRegistry)
    bus: MessageBus = field(default_factory=MessageBus)
    approvals: ApprovalBroker | None = None
    usage: UsageTracker | None = None
    compaction_strategy: CompactionStrategy = field(default_factory=NoneCompactionStrategy)
    skills: list[SkillManifest] = field(default_factory=list)
    max_tokens: int = 8192
    temperature: float = 0.7
    max_turns: int = DEFAULT_MAX_TURNS
    workspace_path: str = "."
