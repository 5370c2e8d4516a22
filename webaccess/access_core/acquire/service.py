from __future__ import annotations

import time

from loguru import logger

from webaccess.access_core.models.interfaces import (
    ACQUIRE_METHODS,
    AcquiredContent,
    AcquireMethod,
    AcquireOptions,
    MethodAttempt,
    TransportResult,
)
from webaccess.config import settings
from webaccess.tools import flaresolverr, http_fetcher
from webaccess.tools.browser import BrowserService
from webaccess.tools.web_utils import validate_url

ALL_METHODS_FAILED = "All acquisition methods failed"


def _elapsed_ms(started: float) -> int:
    return max(int((time.monotonic() - started) * 1000), 0)


class AcquisitionService:
    """Cost-ordered fetch chain: direct HTTP, then bypass proxy, then browser.

    Owns the shared ``BrowserService``; callers release it through
    ``close_all`` once a batch is finished.
    """

    def __init__(
        self,
        *,
        flaresolverr_url: str | None = None,
        browser: BrowserService | None = None,
    ):
        configured = settings.flaresolverr_url if flaresolverr_url is None else flaresolverr_url
        self.flaresolverr_url = configured.strip()
        self.browser = browser or BrowserService()

    def method_order(self, options: AcquireOptions) -> list[AcquireMethod]:
        """Methods to try for these options, preferred one first."""
        order: list[AcquireMethod] = []
        if options.preferred_method:
            order.append(options.preferred_method)

        bypass_endpoint = options.bypass_url or self.flaresolverr_url
        for method in ACQUIRE_METHODS:
            if method in order:
                continue
            if method == "flaresolverr" and (options.skip_bypass or not bypass_endpoint):
                continue
            if method == "browser" and options.skip_render:
                continue
            order.append(method)
        return order

    async def acquire(self, url: str, options: AcquireOptions | None = None) -> AcquiredContent:
        options = options or AcquireOptions()
        started = time.monotonic()

        validation = validate_url(url)
        if not validation.valid:
            logger.info(f"Rejected URL {url}: {validation.error}")
            return AcquiredContent(
                url=url,
                html="",
                text="",
                method="http",
                elapsed_ms=_elapsed_ms(started),
                success=False,
                error=validation.error or "Invalid URL",
            )

        attempts: list[MethodAttempt] = []
        last_method: AcquireMethod = "http"
        for method in self.method_order(options):
            last_method = method
            result = await self._try_method(url, method, options)
            attempts.append(MethodAttempt(method=method, success=result.success, error=result.error))
            if result.success:
                logger.debug(f"Acquired {url} via {method}")
                return AcquiredContent(
                    url=url,
                    html=result.html,
                    text=result.text,
                    method=method,
                    elapsed_ms=_elapsed_ms(started),
                    success=True,
                    methods_tried=tuple(attempts),
                )
            logger.debug(f"{method} failed for {url}: {result.error}")

        logger.info(f"All acquisition methods failed for {url}: {[a.method for a in attempts]}")
        return AcquiredContent(
            url=url,
            html="",
            text="",
            method=last_method,
            elapsed_ms=_elapsed_ms(started),
            success=False,
            error=ALL_METHODS_FAILED,
            methods_tried=tuple(attempts),
        )

    async def close_all(self) -> None:
        await self.browser.close_all()

    async def _try_method(
        self,
        url: str,
        method: AcquireMethod,
        options: AcquireOptions,
    ) -> TransportResult:
        try:
            if method == "http":
                result = await self._fetch_http(url)
            elif method == "flaresolverr":
                endpoint = options.bypass_url or self.flaresolverr_url
                if not endpoint:
                    return TransportResult(success=False, error="FlareSolverr URL not configured")
                result = await self._fetch_bypass(url, endpoint)
            elif method == "browser":
                result = await self._fetch_browser(url)
            else:
                return TransportResult(success=False, error=f"Unknown method: {method}")
        except Exception as exc:
            return TransportResult(success=False, error=str(exc) or type(exc).__name__)

        if result.success and not result.html:
            return TransportResult(success=False, error=f"{method} returned no content")
        return result

    async def _fetch_http(self, url: str) -> TransportResult:
        return await http_fetcher.fetch(url)

    async def _fetch_bypass(self, url: str, endpoint: str) -> TransportResult:
        return await flaresolverr.fetch(url, endpoint)

    async def _fetch_browser(self, url: str) -> TransportResult:
        page = await self.browser.render(url)
        return TransportResult(success=True, html=page.html, text=page.text)
