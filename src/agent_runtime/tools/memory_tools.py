from typing import Any

from agent_runtime.memory.knowledge import KnowledgeStore
from agent_runtime.tool import ApprovalLevel, ToolContext


class RememberTool:
    def __init__(self, knowledge: KnowledgeStore):
        self._knowledge = knowledge

    @property
    def name(self) -> str:
        return "remember"

    @property
    def description(self) -> str:
        return (
            "Store a fact, preference or piece of knowledge in persistent memory so it is "
            "available in future conversations. Storing an existing key overwrites it."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "key": {"type": "string", "minLength": 1, "description": "Short unique name for the memory"},
                "value": {"type": "string", "description": "The content to remember"},
                "category": {
                    "type": "string",
                    "description": "Category tag, e.g. preference, fact, project (default general)",
                },
            },
            "required": ["key", "value"],
        }

    @property
    def approval_level(self) -> ApprovalLevel:
        return ApprovalLevel.AUTONOMOUS

    async def execute(self, tool_input: dict[str, Any], context: ToolContext) -> str:
        key = tool_input["key"].strip()
        category = tool_input.get("category") or "general"
        self._knowledge.store(key, tool_input["value"], category)
        return f'Remembered "{key}" ({category}).'


class RecallTool:
    def __init__(self, knowledge: KnowledgeStore):
        self._knowledge = knowledge

    @property
    def name(self) -> str:
        return "recall"

    @property
    def description(self) -> str:
        return "Search persistent memory by keyword, or list everything in a category."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Keyword matched against memory keys and values"},
                "category": {"type": "string", "description": "Return all memories in this category instead"},
                "limit": {"type": "integer", "minimum": 1, "maximum": 50, "description": "Max results (default 10)"},
            },
        }

    @property
    def approval_level(self) -> ApprovalLevel:
        return ApprovalLevel.READ

    async def execute(self, tool_input: dict[str, Any], context: ToolContext) -> str:
        category = tool_input.get("category")
        query = tool_input.get("query", "")
        if category:
            entries = self._knowledge.by_category(category)
        else:
            entries = self._knowledge.search(query, int(tool_input.get("limit", 10)))

        if not entries:
            return "No matching memories."
        return "\n".join(f"- {e.key} [{e.category}]: {e.value}" for e in entries)
