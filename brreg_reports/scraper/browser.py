"""Headless browser pool using Playwright's async API.

The rendered-DOM strategy needs a real browser for pages whose annual report
links only appear after client-side rendering. Launching Chromium is slow, so
a small pool of browsers is reused across organizations. Each checkout gets a
fresh browser context, so cookies and storage never leak between pages.

Main components:
- create_browser: Launch Chromium with server-friendly args
- create_browser_context: Context with viewport and user agent
- BrowserPool: Bounded pool handing out pages via ``async with pool.acquire()``

Notes
-----
Uses Chromium headless mode by default. Chrome args disable GPU and sandbox
for compatibility with containerized/server environments.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from playwright.async_api import async_playwright

from brreg_reports.config import setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from playwright.async_api import Browser, BrowserContext, Page, Playwright

logger = setup_logging(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


async def create_browser(playwright: Playwright, headless: bool = True) -> Browser:
    """Launch a Chromium browser instance.

    Parameters
    ----------
    playwright : Playwright
        Started async Playwright driver.
    headless : bool, optional
        Run browser in headless mode. Default True for server use.

    Returns
    -------
    Browser
        Configured Chromium browser instance.
    """
    return await playwright.chromium.launch(
        headless=headless,
        args=[
            "--disable-gpu",  # No GPU in headless environments
            "--disable-dev-shm-usage",  # Prevents /dev/shm overflow in Docker
            "--no-sandbox",  # Required for root/containerized execution
        ],
    )


async def create_browser_context(browser: Browser, accept_language: str = "nb-NO") -> BrowserContext:
    """Create an isolated context with a desktop viewport and Norwegian locale."""
    return await browser.new_context(
        viewport={"width": 1920, "height": 1080},
        user_agent=USER_AGENT,
        locale=accept_language.split(",")[0],
    )


class BrowserPool:
    """Bounded pool of Chromium browsers.

    Parameters
    ----------
    size : int, optional
        Maximum number of browsers (and concurrent pages).
    headless : bool, optional
        Launch browsers headless.

    Notes
    -----
    Playwright is started lazily on the first checkout, so a run that never
    reaches the rendered-DOM strategy never launches a browser.
    """

    def __init__(self, size: int = 2, headless: bool = True) -> None:
        self.size = max(1, size)
        self.headless = headless
        self._slots = asyncio.Semaphore(self.size)
        self._idle: list[Browser] = []
        self._all: list[Browser] = []
        self._playwright: Playwright | None = None
        self._lock = asyncio.Lock()
        self._closed = False

    async def _checkout(self) -> Browser:
        async with self._lock:
            if self._closed:
                msg = "BrowserPool is closed"
                raise RuntimeError(msg)
            while self._idle:
                browser = self._idle.pop()
                if browser.is_connected():
                    return browser
                self._all.remove(browser)
                logger.warning("Discarding disconnected browser")

            if self._playwright is None:
                self._playwright = await async_playwright().start()
            browser = await create_browser(self._playwright, headless=self.headless)
            self._all.append(browser)
            logger.debug("Launched browser %s/%s", len(self._all), self.size)
            return browser

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Page]:
        """Check out a browser and yield a fresh page on a new context.

        Yields
        ------
        Page
            Page owned by the caller until the block exits; its context is
            closed and the browser returned to the pool afterwards.
        """
        async with self._slots:
            browser = await self._checkout()
            context: BrowserContext | None = None
            try:
                context = await create_browser_context(browser)
                page = await context.new_page()
                yield page
            finally:
                if context is not None:
                    await context.close()
                self._idle.append(browser)

    async def close(self) -> None:
        """Close every browser and stop Playwright."""
        async with self._lock:
            self._closed = True
            for browser in self._all:
                if browser.is_connected():
                    await browser.close()
            self._all.clear()
            self._idle.clear()
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
