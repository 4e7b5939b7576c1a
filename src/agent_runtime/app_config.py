from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from agent_runtime.provider import parse_model_string


@dataclass
class RuntimeEnv:
    anthropic_api_key: str
    openai_api_key: str
    ollama_base_url: str | None
    brave_api_key: str = ""

    def api_key_for(self, provider_name: str) -> str:
        if provider_name == "anthropic":
            return self.anthropic_api_key
        if provider_name == "openai":
            return self.openai_api_key
        return ""


@dataclass
class ProviderSettings:
    model: str | None = None
    base_url: str | None = None


@dataclass
class AppConfig:
    model: str = "anthropic/claude-sonnet-4-5-20250929"
    max_tokens: int = 8192
    temperature: float = 0.7
    max_turns: int = 25
    compaction_strategy_name: str = "summarize"
    compaction_threshold_tokens: int = 100_000
    provider_priority: list[str] = field(default_factory=lambda: ["anthropic", "openai", "ollama"])
    providers: dict[str, ProviderSettings] = field(default_factory=dict)
    provider_cooldown_seconds: float = 60.0
    stream_timeout_seconds: float = 120.0
    approval_gates_enabled: bool = True
    approval_timeout_seconds: float = 120.0
    max_concurrent_sub_agents: int = 3
    max_tool_result_chars: int = 40_000
    workspace_path: str = "workspace"
    restrict_to_workspace: bool = True
    blocklist: list[str] | None = None
    memory_db_path: str = ".agent_runtime/memory.db"
    memory_max_sessions: int = 200
    memory_retention_days: int = 30
    heartbeat_enabled: bool = False
    heartbeat_interval_minutes: float = 30.0
    cron_enabled: bool = True
    cron_check_interval_seconds: float = 30.0
    log_level: str = "INFO"
    log_consumers: list | None = None

    @property
    def primary_provider(self) -> str:
        return parse_model_string(self.model)[0]

    def provider_settings(self, name: str) -> ProviderSettings:
        settings = self.providers.get(name, ProviderSettings())
        provider_name, model_name = parse_model_string(self.model)
        if settings.model is None and name == provider_name:
            return ProviderSettings(model=model_name, base_url=settings.base_url)
        return settings


def load_json_config(path: str | Path | None = None) -> dict:
    config_path = Path(path) if path else Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _parse_providers(raw: object) -> dict[str, ProviderSettings]:
    if not isinstance(raw, dict):
        return {}
    result: dict[str, ProviderSettings] = {}
    for name, entry in raw.items():
        entry = entry if isinstance(entry, dict) else {}
        result[str(name).strip().lower()] = ProviderSettings(
            model=entry.get("Model") or None,
            base_url=entry.get("BaseUrl") or None,
        )
    return result


def _parse_priority(raw: object, model: str) -> list[str]:
    if isinstance(raw, str):
        raw = [p for p in raw.split(",")]
    if isinstance(raw, list) and raw:
        return [str(p).strip().lower() for p in raw if str(p).strip()]
    primary = parse_model_string(model)[0]
    return [primary] + [p for p in ("anthropic", "openai", "ollama") if p != primary]


def parse_app_config(config: dict) -> AppConfig:
    defaults = AppConfig()
    model = str(config.get("Model", defaults.model))
    blocklist = config.get("Blocklist")
    return AppConfig(
        model=model,
        max_tokens=int(config.get("MaxTokens", defaults.max_tokens)),
        temperature=float(config.get("Temperature", defaults.temperature)),
        max_turns=max(1, int(config.get("MaxTurns", defaults.max_turns))),
        compaction_strategy_name=str(config.get("CompactionStrategy", defaults.compaction_strategy_name)).lower(),
        compaction_threshold_tokens=int(config.get("CompactionThresholdTokens", defaults.compaction_threshold_tokens)),
        provider_priority=_parse_priority(config.get("ProviderPriority"), model),
        providers=_parse_providers(config.get("Providers")),
        provider_cooldown_seconds=float(config.get("ProviderCooldownSeconds", defaults.provider_cooldown_seconds)),
        stream_timeout_seconds=float(config.get("StreamTimeoutSeconds", defaults.stream_timeout_seconds)),
        approval_gates_enabled=_to_bool(config.get("ApprovalGatesEnabled"), default=True),
        approval_timeout_seconds=float(config.get("ApprovalTimeoutSeconds", defaults.approval_timeout_seconds)),
        max_concurrent_sub_agents=int(config.get("MaxConcurrentSubAgents", defaults.max_concurrent_sub_agents)),
        max_tool_result_chars=int(config.get("MaxToolResultChars", defaults.max_tool_result_chars)),
        workspace_path=str(config.get("WorkspacePath", defaults.workspace_path)),
        restrict_to_workspace=_to_bool(config.get("RestrictToWorkspace"), default=True),
        blocklist=[str(b) for b in blocklist] if isinstance(blocklist, list) else None,
        memory_db_path=str(config.get("MemoryDbPath", defaults.memory_db_path)),
        memory_max_sessions=int(config.get("MemoryMaxSessions", defaults.memory_max_sessions)),
        memory_retention_days=int(config.get("MemoryRetentionDays", defaults.memory_retention_days)),
        heartbeat_enabled=_to_bool(config.get("HeartbeatEnabled"), default=False),
        heartbeat_interval_minutes=float(config.get("HeartbeatIntervalMinutes", defaults.heartbeat_interval_minutes)),
        cron_enabled=_to_bool(config.get("CronEnabled"), default=True),
        cron_check_interval_seconds=float(
            config.get("CronCheckIntervalSeconds", defaults.cron_check_interval_seconds)
        ),
        log_level=str(config.get("LogLevel", defaults.log_level)),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
        openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
        ollama_base_url=os.environ.get("OLLAMA_BASE_URL") or None,
        brave_api_key=os.environ.get("BRAVE_API_KEY", ""),
    )
