from typing import Any

import httpx

from agent_runtime.tool import ApprovalLevel, ToolContext
from agent_runtime.tools.search_providers import SearchProvider

_DEFAULT_COUNT = 5
_MAX_COUNT = 20
_MAX_QUERY_CHARS = 400


class SearchError(Exception):
    pass


class WebSearchTool:
    def __init__(self, provider: SearchProvider) -> None:
        self._provider = provider

    @property
    def name(self) -> str:
        return "web_search"

    @property
    def description(self) -> str:
        return (
            "Search the web and return a list of results with titles, URLs, "
            "and descriptions. Use this to discover URLs before fetching "
            "their full content with web_fetch."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "minLength": 1,
                    "description": "Search query (max 400 characters)",
                },
                "count": {
                    "type": "integer",
                    "description": "Number of results to return (1-20, default 5)",
                },
            },
            "required": ["query"],
        }

    @property
    def approval_level(self) -> ApprovalLevel:
        return ApprovalLevel.READ

    async def execute(self, tool_input: dict[str, Any], context: ToolContext) -> str:
        query = tool_input["query"].strip()[:_MAX_QUERY_CHARS]
        if not query:
            raise SearchError("query must not be empty")
        count = max(1, min(_MAX_COUNT, int(tool_input.get("count", _DEFAULT_COUNT))))

        try:
            results = await self._provider.search(query, count)
        except httpx.TimeoutException as ex:
            raise SearchError("Search request timed out") from ex
        except httpx.HTTPStatusError as ex:
            raise SearchError(f"HTTP {ex.response.status_code} from {self._provider.provider_name}") from ex

        if not results:
            return f"No results found for: {query}"

        lines = [f'Search: "{query}"', f"Results: {len(results)}", ""]
        for i, result in enumerate(results, 1):
            lines.append(f"{i}. {result.title}")
            lines.append(f"   {result.url}")
            if result.description:
                lines.append(f"   {result.description}")
            lines.append("")

        return "\n".join(lines).rstrip()
