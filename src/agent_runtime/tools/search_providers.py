from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from urllib.parse import parse_qs, urlparse

import httpx
from bs4 import BeautifulSoup

_BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
_DUCKDUCKGO_URL = "https://html.duckduckgo.com/html/"
_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class SearchResult:
    title: str
    url: str
    description: str


@runtime_checkable
class SearchProvider(Protocol):
    @property
    def provider_name(self) -> str: ...

    async def search(self, query: str, count: int) -> list[SearchResult]:
        """Return search results. Raises on errors (caller handles formatting)."""
        ...


class BraveSearchProvider:
    def __init__(self, api_key: str, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._api_key = api_key
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "Brave"

    async def search(self, query: str, count: int) -> list[SearchResult]:
        headers = {
            "X-Subscription-Token": self._api_key,
            "Accept": "application/json",
        }
        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS, transport=self._transport) as client:
            response = await client.get(_BRAVE_SEARCH_URL, headers=headers, params={"q": query, "count": count})
        response.raise_for_status()

        raw_results = response.json().get("web", {}).get("results", [])
        return [
            SearchResult(
                title=r.get("title", "(no title)"),
                url=r.get("url", ""),
                description=r.get("description", ""),
            )
            for r in raw_results[:count]
        ]


def _unwrap_redirect(href: str) -> str:
    # Result links point at duckduckgo.com/l/?uddg=<target>.
    parsed = urlparse(href)
    if parsed.path.startswith("/l/"):
        target = parse_qs(parsed.query).get("uddg")
        if target:
            return target[0]
    if href.startswith("//"):
        return "https:" + href
    return href


class DuckDuckGoSearchProvider:
    """Scrapes the DuckDuckGo HTML endpoint; needs no API key."""

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "DuckDuckGo"

    async def search(self, query: str, count: int) -> list[SearchResult]:
        async with httpx.AsyncClient(
            timeout=_TIMEOUT_SECONDS,
            headers={"User-Agent": "agent-runtime/0.1 (+web_search)"},
            transport=self._transport,
        ) as client:
            response = await client.get(_DUCKDUCKGO_URL, params={"q": query})
        response.raise_for_status()

        soup = BeautifulSoup(response.text, "lxml")
        results: list[SearchResult] = []
        for block in soup.select(".result"):
            link = block.select_one("a.result__a")
            if link is None or not link.get("href"):
                continue
            snippet = block.select_one(".result__snippet")
            results.append(
                SearchResult(
                    title=link.get_text(" ", strip=True) or "(no title)",
                    url=_unwrap_redirect(link["href"]),
                    description=snippet.get_text(" ", strip=True) if snippet else "",
                )
            )
            if len(results) >= count:
                break
        return results
