"""Web tools: fetch a URL and search the web through DuckDuckGo's HTML page."""

from __future__ import annotations

import html
import logging
import re
from typing import Any
from urllib.parse import unquote, urlparse

import httpx

from newapi_chat.tools.base import Tool, ToolParameter, ToolResult

_logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
SEARCH_URL = "https://html.duckduckgo.com/html/"

_SCRIPT_RE = re.compile(r"<script\b[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_STYLE_RE = re.compile(r"<style\b[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_BLANK_LINES_RE = re.compile(r"\n\s*\n")

# result__a anchors carry the title and link, in either attribute order
_RESULT_LINK_RE = re.compile(
    r'<a\s+[^>]*(?:class="[^"]*result__a[^"]*"[^>]*href="([^"]*)"'
    r'|href="([^"]*)"[^>]*class="[^"]*result__a[^"]*")[^>]*>(.*?)</a>',
    re.DOTALL,
)
_RESULT_SNIPPET_RE = re.compile(
    r'<a\s+[^>]*class="[^"]*result__snippet[^"]*"[^>]*>(.*?)</a>',
    re.DOTALL,
)


def strip_scripts(text: str) -> str:
    return _STYLE_RE.sub("", _SCRIPT_RE.sub("", text))


def html_to_text(text: str) -> str:
    """Drop script and style blocks, turn tags into line breaks, squeeze blank lines."""
    text = _TAG_RE.sub("\n", strip_scripts(text))
    text = html.unescape(text)
    return _BLANK_LINES_RE.sub("\n", text).strip()


def _inline_text(fragment: str) -> str:
    return html.unescape(_TAG_RE.sub("", fragment)).strip()


def _result_url(raw: str) -> str:
    """Unwrap DuckDuckGo's redirect links."""
    url = html.unescape(raw)
    match = re.search(r"uddg=([^&]+)", url)
    if match:
        return unquote(match.group(1))
    if url.startswith("//"):
        return "https:" + url
    return url


class _WebTool(Tool):
    """Shared HTTP plumbing; a client can be injected for tests."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30,
    ) -> None:
        self._client = client
        self.timeout = timeout

    async def _get(self, url: str, **kwargs: Any) -> httpx.Response:
        headers = {"User-Agent": USER_AGENT}
        if self._client is not None:
            return await self._client.get(url, headers=headers, **kwargs)
        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True,
        ) as client:
            return await client.get(url, headers=headers, **kwargs)


class ReadUrlTool(_WebTool):
    """Fetch a web page or API response as text."""

    name = "read_url"
    description = (
        "Fetch the content of a URL. Use it to read online documentation, "
        "web pages or API responses."
    )
    max_output = 20000
    html_limit = 15000
    json_limit = 20000
    parameters = [
        ToolParameter(
            name="url",
            type="string",
            description="Target URL (http or https)",
        ),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        url = kwargs.get("url", "")
        if not url:
            return ToolResult(success=False, output="", error="No url provided")
        scheme = urlparse(url).scheme.lower()
        if scheme not in ("http", "https"):
            return ToolResult(
                success=False, output="",
                error=f"Unsupported URL scheme '{scheme}'. Only http/https allowed.",
            )

        _logger.info("Reading URL %s", url)
        try:
            resp = await self._get(url)
        except httpx.HTTPError as e:
            return ToolResult(success=False, output="", error=f"Failed to fetch URL: {e}")

        if not resp.is_success:
            return ToolResult(
                success=False, output="",
                error=f"Failed to fetch URL ({resp.status_code} {resp.reason_phrase})",
            )

        content_type = resp.headers.get("content-type", "")
        text = resp.text
        if "application/json" in content_type:
            return ToolResult(success=True, output=text[:self.json_limit])
        if "text/html" in content_type:
            text = html_to_text(text)
            if len(text) > self.html_limit:
                text = text[:self.html_limit] + "\n...(truncated)"
            return ToolResult(success=True, output=text)
        return ToolResult(success=True, output=text[:self.html_limit])


class SearchWebTool(_WebTool):
    """Search the web through the DuckDuckGo HTML endpoint (no API key)."""

    name = "search_web"
    description = (
        "Search the internet. Use it for recent information, unfamiliar "
        "errors or to find documentation."
    )
    max_results = 8
    raw_limit = 5000
    parameters = [
        ToolParameter(
            name="query",
            type="string",
            description="Search keywords",
        ),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        query = kwargs.get("query", "")
        if not query:
            return ToolResult(success=False, output="", error="No query provided")

        _logger.info("Searching the web for %r", query)
        try:
            resp = await self._get(SEARCH_URL, params={"q": query})
        except httpx.HTTPError as e:
            return ToolResult(success=False, output="", error=f"Search failed: {e}")
        if not resp.is_success:
            return ToolResult(
                success=False, output="",
                error=f"Search failed ({resp.status_code})",
            )

        page = strip_scripts(resp.text)
        results = self._parse_results(page)
        if not results:
            raw = _BLANK_LINES_RE.sub("\n", _TAG_RE.sub("\n", page)).strip()
            return ToolResult(
                success=True,
                output=f"Search Results (Raw Text):\n{raw[:self.raw_limit]}",
            )

        entries = [f"- [{title}]({link})\n  {snippet}" for title, link, snippet in results]
        return ToolResult(
            success=True,
            output=f'Search Results for "{query}":\n\n' + "\n\n".join(entries),
            metadata={"results": len(results)},
        )

    def _parse_results(self, page: str) -> list[tuple[str, str, str]]:
        snippets = _RESULT_SNIPPET_RE.findall(page)
        results: list[tuple[str, str, str]] = []
        for i, (href_a, href_b, raw_title) in enumerate(_RESULT_LINK_RE.findall(page)):
            title = _inline_text(raw_title)
            link = _result_url(href_a or href_b)
            if not title or not link:
                continue
            # sponsored entries link through the ad redirector
            if "duckduckgo.com/y.js" in link or link.startswith("/y.js"):
                continue
            snippet = _inline_text(snippets[i]) if i < len(snippets) else ""
            results.append((title, link, snippet))
            if len(results) >= self.max_results:
                break
        return results
