"""Shared headless-browser transport (playwright chromium).

One browser process is launched lazily and reused by every render, screenshot
and script call until ``close_all`` is called. Each call gets its own context
so a page closing never interferes with another page being opened.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable

from loguru import logger

from webaccess.access_core.models.interfaces import RenderedPage
from webaccess.config import settings

Launcher = Callable[[bool], Awaitable[tuple[Any, Any]]]

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--window-size=1920,1080",
]

VIEWPORT = {"width": 1920, "height": 1080}

PAGE_CONTEXT_SCRIPT = """(script) => {
    const pageContext = {
        location: window.location.href,
        html: document.documentElement ? document.documentElement.outerHTML : "",
        text: document.body ? document.body.innerText : "",
    };
    const fn = new Function("pageContext", script);
    return fn(pageContext);
}"""

INNER_TEXT_SCRIPT = "() => (document.body ? document.body.innerText : '')"


async def _launch_chromium(headless: bool) -> tuple[Any, Any]:
    from playwright.async_api import async_playwright

    driver = await async_playwright().start()
    try:
        browser = await driver.chromium.launch(headless=headless, args=CHROMIUM_ARGS)
    except Exception:
        await driver.stop()
        raise
    return driver, browser


async def _block_fonts(route: Any) -> None:
    if route.request.resource_type == "font":
        await route.abort()
    else:
        await route.continue_()


class BrowserService:
    def __init__(
        self,
        *,
        headless: bool | None = None,
        timeout_seconds: float | None = None,
        user_agent: str | None = None,
        wait_until: str = "networkidle",
        launcher: Launcher | None = None,
    ):
        self.headless = settings.browser_headless if headless is None else headless
        self.timeout_seconds = settings.browser_timeout_seconds if timeout_seconds is None else timeout_seconds
        self.user_agent = user_agent or settings.user_agent
        self.wait_until = wait_until
        self._launcher = launcher or _launch_chromium
        self._driver: Any | None = None
        self._browser: Any | None = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._browser is not None

    async def open(self) -> Any:
        """Return the shared browser, launching it on first use or after a crash."""
        async with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            if self._browser is not None:
                logger.info("Browser disconnected; relaunching")
                await self._shutdown()
            self._driver, self._browser = await self._launcher(self.headless)
            logger.debug("Launched shared browser")
            return self._browser

    async def close_all(self) -> None:
        """Close the shared browser. Safe to call repeatedly."""
        async with self._lock:
            await self._shutdown()

    async def _shutdown(self) -> None:
        browser, driver = self._browser, self._driver
        self._browser = None
        self._driver = None
        if browser is not None:
            try:
                await browser.close()
            except Exception as exc:
                logger.warning(f"Browser close failed: {exc}")
        if driver is not None:
            try:
                await driver.stop()
            except Exception as exc:
                logger.warning(f"Playwright driver stop failed: {exc}")

    async def __aenter__(self) -> "BrowserService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close_all()

    @asynccontextmanager
    async def _page(self, url: str) -> AsyncIterator[Any]:
        browser = await self.open()
        context = await browser.new_context(user_agent=self.user_agent, viewport=VIEWPORT)
        try:
            page = await context.new_page()
            timeout_ms = int(self.timeout_seconds * 1000)
            page.set_default_timeout(timeout_ms)
            page.set_default_navigation_timeout(timeout_ms)
            await page.route("**/*", _block_fonts)
            await page.goto(url, wait_until=self.wait_until, timeout=timeout_ms)
            yield page
        finally:
            await context.close()

    async def render(self, url: str) -> RenderedPage:
        """Navigate and return rendered markup and innerText. Raises on failure."""
        async with self._page(url) as page:
            html = await page.content()
            text = await page.evaluate(INNER_TEXT_SCRIPT)
            return RenderedPage(html=html, text=(text or "").strip(), final_url=page.url)

    async def screenshot(self, url: str, *, full_page: bool = False) -> bytes:
        async with self._page(url) as page:
            # Let animations settle
            await asyncio.sleep(1.0)
            return await page.screenshot(full_page=full_page, type="png")

    async def run_script(self, url: str, script: str) -> Any:
        """Evaluate a user script body with a ``pageContext`` argument. Not sandboxed."""
        async with self._page(url) as page:
            return await page.evaluate(PAGE_CONTEXT_SCRIPT, script)
