import json
import re
from typing import Any
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from agent_runtime.tool import ApprovalLevel, ToolContext

_DEFAULT_MAX_CHARS = 10_000
_MAX_RESPONSE_BYTES = 2_000_000
_TIMEOUT_SECONDS = 15
_MAX_REDIRECTS = 5

_HEADERS = {
    "User-Agent": "agent-runtime/0.1 (+web_fetch)",
    "Accept": "text/html,application/xhtml+xml,application/json,text/plain;q=0.9,*/*;q=0.8",
}

_BLOCK_TAGS = ["p", "div", "section", "article", "tr", "li", "h1", "h2", "h3", "h4", "h5", "h6", "pre"]


class FetchError(Exception):
    pass


def extract_text(html: str) -> tuple[str, str]:
    """Return ``(title, text)`` for an HTML document."""
    soup = BeautifulSoup(html, "lxml")
    title = soup.title.get_text(strip=True) if soup.title else ""

    for tag in soup(["script", "style", "noscript", "template", "head"]):
        tag.decompose()
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.insert_after("\n")
    for br in soup.find_all("br"):
        br.replace_with("\n")

    root = soup.body or soup
    text = root.get_text(" ")
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return title, text.strip()


class WebFetchTool:
    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    @property
    def name(self) -> str:
        return "web_fetch"

    @property
    def description(self) -> str:
        return (
            "Fetch a URL and return its content as readable text. "
            "HTML is reduced to plain text, JSON is pretty-printed. GET requests only."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "url": {
                    "type": "string",
                    "description": "The HTTP or HTTPS URL to fetch",
                },
                "maxLength": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Maximum characters of content to return (default 10000)",
                },
            },
            "required": ["url"],
        }

    @property
    def approval_level(self) -> ApprovalLevel:
        return ApprovalLevel.READ

    async def execute(self, tool_input: dict[str, Any], context: ToolContext) -> str:
        url: str = tool_input["url"]
        max_length = int(tool_input.get("maxLength", _DEFAULT_MAX_CHARS))

        if urlparse(url).scheme not in ("http", "https"):
            raise FetchError("URL must use http or https scheme")

        try:
            async with httpx.AsyncClient(
                headers=_HEADERS,
                timeout=_TIMEOUT_SECONDS,
                follow_redirects=True,
                max_redirects=_MAX_REDIRECTS,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException as ex:
            raise FetchError(f"Request timed out after {_TIMEOUT_SECONDS} seconds") from ex
        except httpx.TooManyRedirects as ex:
            raise FetchError(f"Too many redirects (max {_MAX_REDIRECTS})") from ex

        if response.status_code >= 400:
            raise FetchError(f"HTTP {response.status_code} fetching {url}")
        if len(response.content) > _MAX_RESPONSE_BYTES:
            raise FetchError(f"Response too large ({len(response.content):,} bytes)")

        content_type = response.headers.get("content-type", "")
        title = ""
        if "html" in content_type:
            title, content = extract_text(response.text)
        elif "application/json" in content_type:
            try:
                content = json.dumps(response.json(), indent=2)
            except ValueError:
                content = response.text
        else:
            content = response.text

        original_length = len(content)
        if original_length > max_length:
            content = content[:max_length] + f"\n\n[Content truncated at {max_length:,} of {original_length:,} characters]"

        header = [f"URL: {url}", f"Status: {response.status_code}"]
        if str(response.url) != url:
            header.append(f"Final URL: {response.url}")
        if title:
            header.append(f"Title: {title}")
        return "\n".join(header) + "\n\n" + content
