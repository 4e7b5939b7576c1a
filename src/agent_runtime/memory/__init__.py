from agent_runtime.memory.cron_store import CronJob, CronJobStore
from agent_runtime.memory.event_sink import AsyncEventSink
from agent_runtime.memory.knowledge import KnowledgeEntry, KnowledgeStore
from agent_runtime.memory.pruning import prune_memory
from agent_runtime.memory.session_store import SessionStore
from agent_runtime.memory.store import MemoryStore
from agent_runtime.memory.usage import UsageSummary, UsageTracker

__all__ = [
    "AsyncEventSink",
    "CronJob",
    "CronJobStore",
    "KnowledgeEntry",
    "KnowledgeStore",
    "MemoryStore",
    "SessionStore",
    "UsageSummary",
    "UsageTracker",
    "prune_memory",
]
