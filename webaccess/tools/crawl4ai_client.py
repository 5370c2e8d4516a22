"""Link discovery through a self-hosted crawl4ai server.

The server has answered /crawl in several shapes across versions (NDJSON
stream, a bare array, a single object, or ``{"results": [...]}``). All shape
handling lives in the normalizer functions below.
"""
from __future__ import annotations

import json
from typing import Any, Iterable

import httpx
from loguru import logger

from webaccess.access_core.models.interfaces import CrawledPage
from webaccess.config import settings
from webaccess.tools.web_utils import is_same_site

SNIPPET_CHARS = 200

SOCIAL_MEDIA_DOMAINS = [
    "facebook.com",
    "twitter.com",
    "x.com",
    "linkedin.com",
    "instagram.com",
    "pinterest.com",
    "tiktok.com",
    "snapchat.com",
    "reddit.com",
    "youtube.com",
]


def build_crawl_request(seed_url: str) -> dict[str, Any]:
    return {
        "urls": [seed_url],
        "crawler_config": {
            "type": "CrawlerRunConfig",
            "params": {
                "scraping_strategy": {"type": "LXMLWebScrapingStrategy", "params": {}},
                "exclude_social_media_domains": SOCIAL_MEDIA_DOMAINS,
                "stream": True,
            },
        },
    }


def normalize_page(item: Any) -> CrawledPage | None:
    """Map one crawler record to a CrawledPage; None when it carries no URL."""
    if not isinstance(item, dict):
        return None
    url = item.get("url")
    if not isinstance(url, str) or not url.strip():
        return None

    title = item.get("title")
    if not isinstance(title, str) or not title:
        metadata = item.get("metadata")
        title = metadata.get("title") if isinstance(metadata, dict) else None
        if not isinstance(title, str):
            title = None

    snippet = None
    for key in ("content", "text", "markdown"):
        value = item.get(key)
        if isinstance(value, dict):
            value = value.get("raw_markdown") or value.get("markdown")
        if isinstance(value, str) and value.strip():
            snippet = value.strip()[:SNIPPET_CHARS]
            break

    return CrawledPage(url=url.strip(), title=title or None, snippet=snippet)


def normalize_payload(payload: Any) -> list[CrawledPage]:
    """Flatten any known non-streaming /crawl response into pages."""
    items: Iterable[Any]
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict) and isinstance(payload.get("results"), list):
        items = payload["results"]
    elif isinstance(payload, dict) and "url" in payload:
        items = [payload]
    else:
        return []
    return [page for page in (normalize_page(item) for item in items) if page is not None]


def normalize_stream_line(line: str) -> list[CrawledPage]:
    """One NDJSON line may hold a page, a results wrapper, or a status marker."""
    line = line.strip()
    if not line:
        return []
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        logger.debug(f"Skipping malformed crawl4ai line: {line[:80]}")
        return []
    return normalize_payload(payload)


def _filter_pages(pages: Iterable[CrawledPage], seed_url: str, max_pages: int) -> list[CrawledPage]:
    kept: list[CrawledPage] = []
    seen: set[str] = set()
    for page in pages:
        if page.url in seen or not is_same_site(page.url, seed_url):
            continue
        seen.add(page.url)
        kept.append(page)
        if len(kept) >= max_pages:
            break
    return kept


async def crawl(
    base_url: str,
    seed_url: str,
    max_pages: int = 100,
    *,
    timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[CrawledPage]:
    """Discover pages reachable from the seed on the same site.

    Returns an empty list on any failure so callers can fall back to parsing
    links out of HTML themselves.
    """
    endpoint = base_url.rstrip("/") + "/crawl"
    timeout_seconds = settings.crawl4ai_timeout_seconds if timeout is None else timeout
    max_pages = max(1, min(int(max_pages), settings.max_crawl_pages))
    collected: list[CrawledPage] = []

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds, transport=transport) as client:
            async with client.stream("POST", endpoint, json=build_crawl_request(seed_url)) as response:
                if response.status_code >= 400:
                    logger.warning(f"crawl4ai /crawl failed: {response.status_code}")
                    return []

                content_type = response.headers.get("content-type", "")
                if "ndjson" in content_type or "stream" in content_type:
                    async for line in response.aiter_lines():
                        collected.extend(normalize_stream_line(line))
                        if len(_filter_pages(collected, seed_url, max_pages)) >= max_pages:
                            break
                else:
                    raw = await response.aread()
                    try:
                        collected = normalize_payload(json.loads(raw))
                    except ValueError:
                        # Some builds stream NDJSON without the header; bodies may not be valid UTF-8
                        for line in raw.decode("utf-8", errors="replace").splitlines():
                            collected.extend(normalize_stream_line(line))
    except httpx.HTTPError as exc:
        logger.warning(f"crawl4ai crawl error for {seed_url}: {exc}")
        return []

    pages = _filter_pages(collected, seed_url, max_pages)
    logger.debug(f"crawl4ai discovered {len(pages)} same-site pages from {seed_url}")
    return pages
