"""Actions the agent loop may invoke: scrape_url, crawl_links and complete."""
from __future__ import annotations

from typing import Any

from loguru import logger

from webaccess.access_core.acquire.service import AcquisitionService
from webaccess.access_core.models.interfaces import (
    AcquiredContent,
    AcquireMethod,
    AcquireOptions,
    CrawledPage,
    ToolCall,
    ToolResult,
)
from webaccess.config import settings
from webaccess.tools import crawl4ai_client
from webaccess.tools.web_utils import extract_internal_links

DEFAULT_CRAWL_PAGES = 10

TOOLS: list[dict[str, Any]] = [
    {
        "name": "scrape_url",
        "description": "Scrape content from a URL. Use this to get HTML and text content from a webpage.",
        "params": [
            {
                "name": "url",
                "type": "string",
                "description": "The full URL to scrape (must include https://)",
                "required": True,
            },
            {
                "name": "method",
                "type": "string",
                "description": (
                    'Scraping method: "http" (fast, default), "flaresolverr" (bypasses Cloudflare), '
                    '"browser" (renders JavaScript)'
                ),
                "required": False,
            },
        ],
    },
    {
        "name": "crawl_links",
        "description": (
            "Discover and list internal links from a webpage. "
            "Use this to find related pages like /about, /contact, /products."
        ),
        "params": [
            {"name": "url", "type": "string", "description": "The base URL to crawl from", "required": True},
            {
                "name": "max_pages",
                "type": "number",
                "description": "Maximum number of pages to discover (default 10)",
                "required": False,
            },
        ],
    },
    {
        "name": "complete",
        "description": "Return the final result. Call this when you have gathered enough information to answer the task.",
        "params": [
            {
                "name": "result",
                "type": "string",
                "description": "Your complete text answer to the task. Be detailed and comprehensive.",
                "required": True,
            },
        ],
    },
]

TOOL_NAMES = tuple(tool["name"] for tool in TOOLS)

METHOD_ALIASES: dict[str, AcquireMethod] = {
    "http": "http",
    "flaresolverr": "flaresolverr",
    "browser": "browser",
    "puppeteer": "browser",
    "playwright": "browser",
}


def format_tools_for_llm() -> str:
    blocks: list[str] = []
    for tool in TOOLS:
        lines = [f"{tool['name']}: {tool['description']}"]
        for param in tool["params"]:
            requirement = "required" if param["required"] else "optional"
            lines.append(f"  - {param['name']} ({param['type']}, {requirement}): {param['description']}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


class AgentToolSet:
    """Tool dispatcher bound to one agent run's accumulated-content map."""

    def __init__(
        self,
        acquisition: AcquisitionService,
        accumulated: dict[str, AcquiredContent],
        *,
        bypass_url: str | None = None,
        crawl4ai_base_url: str | None = None,
    ):
        self.acquisition = acquisition
        self.accumulated = accumulated
        self.bypass_url = bypass_url
        configured = settings.crawl4ai_base_url if crawl4ai_base_url is None else crawl4ai_base_url
        self.crawl4ai_base_url = configured.strip()

    async def execute(self, call: ToolCall) -> ToolResult:
        params = call.params or {}
        if call.tool == "scrape_url":
            return await self.scrape_url(params.get("url"), params.get("method"))
        if call.tool == "crawl_links":
            return await self.crawl_links(params.get("url"), params.get("max_pages"))
        if call.tool == "complete":
            return self.complete(params.get("result"))
        return ToolResult(success=False, error=f"Unknown tool: {call.tool}")

    async def scrape_url(self, url: Any, method: Any = None) -> ToolResult:
        if not isinstance(url, str) or not url.strip():
            return ToolResult(success=False, error="url parameter is required")
        url = url.strip()

        method_name = str(method or "http").strip().lower()
        resolved = METHOD_ALIASES.get(method_name)
        if resolved is None:
            return ToolResult(
                success=False,
                error=f"Invalid method: {method_name}. Use one of: http, flaresolverr, browser",
            )

        existing = self.accumulated.get(url)
        if existing is not None:
            return ToolResult(
                success=True,
                content=existing,
                data={"already_scraped": True, "text_preview": existing.text[:500]},
            )

        content = await self.acquisition.acquire(
            url,
            AcquireOptions(bypass_url=self.bypass_url, preferred_method=resolved),
        )
        if not content.success:
            return ToolResult(success=False, content=content, error=content.error or "Failed to scrape URL")

        self.accumulated[url] = content
        return ToolResult(
            success=True,
            content=content,
            data={
                "method": content.method,
                "text_length": len(content.text),
                "text_preview": content.text[:1000],
            },
        )

    async def crawl_links(self, url: Any, max_pages: Any = None) -> ToolResult:
        if not isinstance(url, str) or not url.strip():
            return ToolResult(success=False, error="url parameter is required")
        url = url.strip()
        try:
            limit = int(max_pages) if max_pages is not None else DEFAULT_CRAWL_PAGES
        except (TypeError, ValueError):
            limit = DEFAULT_CRAWL_PAGES
        limit = max(1, min(limit, settings.max_crawl_pages))

        if self.crawl4ai_base_url:
            try:
                pages = await crawl4ai_client.crawl(self.crawl4ai_base_url, url, limit)
            except Exception as exc:
                logger.warning(f"crawl4ai discovery failed for {url}, parsing links instead: {exc}")
                pages = []
            if pages:
                return self._pages_result(pages[:limit], found=len(pages))

        content = self.accumulated.get(url)
        if content is None:
            content = await self.acquisition.acquire(url, AcquireOptions(bypass_url=self.bypass_url))
            if content.success:
                self.accumulated[url] = content

        if content.html:
            links = extract_internal_links(content.html, url)
            pages = [CrawledPage(url=link) for link in links[:limit]]
            return self._pages_result(pages, found=len(links))

        return ToolResult(success=False, error=content.error or "Could not crawl links from URL")

    def complete(self, result: Any) -> ToolResult:
        if not isinstance(result, str) or not result.strip():
            return ToolResult(success=False, error="result parameter is required")
        return ToolResult(success=True, data={"result": result})

    @staticmethod
    def _pages_result(pages: list[CrawledPage], *, found: int) -> ToolResult:
        listed: list[dict[str, Any]] = []
        for page in pages:
            entry: dict[str, Any] = {"url": page.url}
            if page.title:
                entry["title"] = page.title
            listed.append(entry)
        return ToolResult(success=True, pages=pages, data={"pages_found": found, "pages": listed})
