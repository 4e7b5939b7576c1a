import asyncio
import unittest

import httpx

from agent_runtime.tool import ToolContext
from agent_runtime.tools.search_providers import (
    BraveSearchProvider,
    DuckDuckGoSearchProvider,
    SearchResult,
)
from agent_runtime.tools.web_search_tool import SearchError, WebSearchTool

_CONTEXT = ToolContext(session_id="s1")

_DUCKDUCKGO_PAGE = """\
<html><body>
  <div class="result">
    <a class="result__a" href="//duckduckgo.com/l/?uddg=https%3A%2F%2Fdocs.python.org%2F3%2F&amp;rut=abc">Python docs</a>
    <a class="result__snippet">The official documentation.</a>
  </div>
  <div class="result"><span>sponsored, no link</span></div>
  <div class="result">
    <a class="result__a" href="https://peps.python.org/">PEP index</a>
  </div>
  <div class="result">
    <a class="result__a" href="https://example.com/third">Third</a>
  </div>
</body></html>
"""


class StaticProvider:
    def __init__(self, results=None, error: Exception | None = None):
        self.results = results or []
        self.error = error
        self.calls: list[tuple[str, int]] = []

    @property
    def provider_name(self) -> str:
        return "Static"

    async def search(self, query: str, count: int) -> list[SearchResult]:
        self.calls.append((query, count))
        if self.error is not None:
            raise self.error
        return self.results[:count]


def _search(tool: WebSearchTool, **tool_input) -> str:
    return asyncio.run(tool.execute(tool_input, _CONTEXT))


class BraveSearchProviderTests(unittest.TestCase):
    def test_sends_key_and_maps_results(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"web": {"results": [
                {"title": "Python", "url": "https://python.org", "description": "Home"},
                {"url": "https://example.com"},
            ]}})

        provider = BraveSearchProvider("secret", transport=httpx.MockTransport(handler))

        results = asyncio.run(provider.search("python", 5))

        self.assertEqual("secret", seen[0].headers["X-Subscription-Token"])
        self.assertEqual("python", seen[0].url.params["q"])
        self.assertEqual(
            [SearchResult("Python", "https://python.org", "Home"), SearchResult("(no title)", "https://example.com", "")],
            results,
        )

    def test_missing_web_section_means_no_results(self) -> None:
        provider = BraveSearchProvider("secret", transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))

        self.assertEqual([], asyncio.run(provider.search("python", 5)))


class DuckDuckGoSearchProviderTests(unittest.TestCase):
    def test_parses_results_and_unwraps_redirect_links(self) -> None:
        provider = DuckDuckGoSearchProvider(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, text=_DUCKDUCKGO_PAGE))
        )

        results = asyncio.run(provider.search("python", 2))

        self.assertEqual(
            [
                SearchResult("Python docs", "https://docs.python.org/3/", "The official documentation."),
                SearchResult("PEP index", "https://peps.python.org/", ""),
            ],
            results,
        )

    def test_http_error_is_raised(self) -> None:
        provider = DuckDuckGoSearchProvider(transport=httpx.MockTransport(lambda r: httpx.Response(503)))

        with self.assertRaises(httpx.HTTPStatusError):
            asyncio.run(provider.search("python", 5))


class WebSearchToolTests(unittest.TestCase):
    def test_formats_numbered_results(self) -> None:
        provider = StaticProvider([
            SearchResult("Python", "https://python.org", "Home"),
            SearchResult("PyPI", "https://pypi.org", ""),
        ])

        result = _search(WebSearchTool(provider), query=" python ")

        self.assertEqual(
            'Search: "python"\nResults: 2\n\n'
            "1. Python\n   https://python.org\n   Home\n\n"
            "2. PyPI\n   https://pypi.org",
            result,
        )
        self.assertEqual([("python", 5)], provider.calls)

    def test_count_is_clamped_and_query_truncated(self) -> None:
        provider = StaticProvider()
        tool = WebSearchTool(provider)

        _search(tool, query="x" * 500, count=50)
        _search(tool, query="y", count=0)

        self.assertEqual([("x" * 400, 20), ("y", 1)], provider.calls)

    def test_no_results(self) -> None:
        self.assertEqual("No results found for: python", _search(WebSearchTool(StaticProvider()), query="python"))

    def test_blank_query_is_rejected(self) -> None:
        with self.assertRaises(SearchError):
            _search(WebSearchTool(StaticProvider()), query="   ")

    def test_http_status_becomes_search_error(self) -> None:
        request = httpx.Request("GET", "https://search.example.com")
        error = httpx.HTTPStatusError("boom", request=request, response=httpx.Response(429, request=request))

        with self.assertRaisesRegex(SearchError, "HTTP 429 from Static"):
            _search(WebSearchTool(StaticProvider(error=error)), query="python")

    def test_timeout_becomes_search_error(self) -> None:
        with self.assertRaisesRegex(SearchError, "timed out"):
            _search(WebSearchTool(StaticProvider(error=httpx.ReadTimeout("slow"))), query="python")


if __name__ == "__main__":
    unittest.main()
