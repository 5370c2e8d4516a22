"""Direct HTTP transport: the cheapest acquisition method."""
from __future__ import annotations

import ssl
from dataclasses import dataclass
from pathlib import PurePosixPath
from urllib.parse import unquote, urlparse

import httpx
from loguru import logger

from webaccess.access_core.models.interfaces import TransportResult
from webaccess.config import settings
from webaccess.tools.web_utils import extract_text_content, is_blocked_content, validate_url

HTML_CONTENT_TYPES = ("text/html", "application/xhtml")
MAX_ASSET_BYTES = 25 * 1024 * 1024


def _browser_headers(user_agent: str) -> dict[str, str]:
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
        "Upgrade-Insecure-Requests": "1",
    }


class RedirectBlocked(httpx.RequestError):
    """A redirect pointed at a host the URL guard refuses."""


async def _guard_request(request: httpx.Request) -> None:
    # Runs for the first request and for every redirect hop
    validation = validate_url(str(request.url))
    if not validation.valid:
        raise RedirectBlocked(f"Redirect blocked: {validation.error}", request=request)


def _status_error(response: httpx.Response) -> str:
    status = response.status_code
    if status == 403:
        return "Access forbidden (403) - site may be blocking automated requests"
    if status == 429:
        return "Rate limited (429) - too many requests"
    if status == 404:
        return "Page not found (404)"
    return f"HTTP error: {status} {response.reason_phrase}".strip()


def _describe_transport_error(exc: Exception, timeout: float) -> str:
    if isinstance(exc, RedirectBlocked):
        return str(exc)
    if isinstance(exc, httpx.TimeoutException):
        return f"Request timed out after {timeout:g}s"
    message = str(exc)
    lowered = message.lower()
    if isinstance(exc, httpx.ConnectError):
        if "name or service not known" in lowered or "getaddrinfo" in lowered or "nodename" in lowered:
            return "Domain not found - check the URL"
        if "refused" in lowered:
            return "Connection refused by server"
    if isinstance(exc, ssl.SSLError) or "certificate" in lowered or "ssl" in lowered:
        return "SSL/TLS certificate error"
    return f"Request failed: {message or type(exc).__name__}"


async def fetch(
    url: str,
    *,
    timeout: float | None = None,
    user_agent: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TransportResult:
    """GET a page and return its HTML and visible text.

    Never raises for network problems; every failure class maps to a short
    error string on an unsuccessful result.
    """
    timeout_seconds = settings.http_timeout_seconds if timeout is None else timeout
    headers = _browser_headers(user_agent or settings.user_agent)

    try:
        async with httpx.AsyncClient(
            timeout=timeout_seconds,
            follow_redirects=True,
            event_hooks={"request": [_guard_request]},
            transport=transport,
        ) as client:
            response = await client.get(url, headers=headers)
    except (httpx.HTTPError, ssl.SSLError) as exc:
        error = _describe_transport_error(exc, timeout_seconds)
        logger.debug(f"HTTP fetch failed for {url}: {error}")
        return TransportResult(success=False, error=error)

    if response.status_code >= 400:
        return TransportResult(
            success=False,
            error=_status_error(response),
            status_code=response.status_code,
        )

    content_type = response.headers.get("content-type", "")
    if not any(kind in content_type.lower() for kind in HTML_CONTENT_TYPES):
        return TransportResult(
            success=False,
            error=f"Non-HTML content type: {content_type or 'unknown'}",
            status_code=response.status_code,
        )

    html = response.text
    if not html or not html.strip():
        return TransportResult(success=False, error="Empty response body", status_code=response.status_code)

    if is_blocked_content(html):
        return TransportResult(
            success=False,
            html=html,
            error="Content appears to be blocked (CAPTCHA, rate limit, etc.)",
            status_code=response.status_code,
        )

    return TransportResult(
        success=True,
        html=html,
        text=extract_text_content(html),
        status_code=response.status_code,
    )


@dataclass(frozen=True, slots=True)
class DownloadedAsset:
    url: str
    filename: str
    content_type: str
    content: bytes


def filename_from_url(url: str, index: int = 0) -> str:
    name = unquote(PurePosixPath(urlparse(url).path).name)
    return name or f"asset_{index + 1}"


async def download_asset(
    url: str,
    *,
    index: int = 0,
    timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DownloadedAsset | None:
    """Fetch raw bytes of an asset; None when the URL is refused or the fetch fails."""
    validation = validate_url(url)
    if not validation.valid:
        logger.warning(f"Skipping asset {url}: {validation.error}")
        return None

    timeout_seconds = settings.http_timeout_seconds if timeout is None else timeout
    try:
        async with httpx.AsyncClient(
            timeout=timeout_seconds,
            follow_redirects=True,
            event_hooks={"request": [_guard_request]},
            transport=transport,
        ) as client:
            response = await client.get(url, headers={"User-Agent": settings.user_agent})
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning(f"Asset download failed for {url}: {exc}")
        return None

    if len(response.content) > MAX_ASSET_BYTES:
        logger.warning(f"Skipping asset {url}: larger than {MAX_ASSET_BYTES} bytes")
        return None

    return DownloadedAsset(
        url=url,
        filename=filename_from_url(url, index),
        content_type=response.headers.get("content-type", "application/octet-stream"),
        content=response.content,
    )
