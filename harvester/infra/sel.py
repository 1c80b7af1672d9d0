"""
sel.py - Async Playwright helpers for crawling retail list pages.

* `PlaywrightClient` owns the browser and one shared context per site run:
    async with PlaywrightClient(user_agent=ua) as pw:
        page = await pw.new_page()
* `PlaywrightPageLoader` is the crawler-facing loader: one long-lived list
  page plus short-lived auxiliary pages for product detail lookups.
"""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any, Dict, Optional, Type

try:
    from playwright.async_api import (
        async_playwright,
        Browser,
        BrowserContext,
        Page,
        TimeoutError as PlaywrightTimeout,
    )
except ImportError as e:  # pragma: no cover
    raise ImportError(
        "Package 'playwright' is required.  Install with:  pip install playwright"
    ) from e

logger = logging.getLogger(__name__)


class PlaywrightClient:
    """
    Thin wrapper around Playwright: one browser, one context.

    Examples
    --------
    async with PlaywrightClient(headless=True) as pw:
        page = await pw.new_page()
        await page.goto("https://example.com")
        html = await page.content()
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        timeout: float = 30_000,
        user_agent: Optional[str] = None,
    ) -> None:
        self.headless = headless
        self.timeout = timeout
        self.user_agent = user_agent

        # Internal Playwright handles
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    # --------------------------------------------------------------------- #
    # Async context-manager sugar
    async def __aenter__(self) -> "PlaywrightClient":  # noqa: D401
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.stop()

    # --------------------------------------------------------------------- #
    # Lifecycle helpers
    async def start(self) -> None:
        """Launch browser & shared context if not already started."""
        if self._browser:
            return

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)

        context_kwargs: Dict[str, Any] = {}
        if self.user_agent:
            context_kwargs["user_agent"] = self.user_agent
        self._context = await self._browser.new_context(**context_kwargs)

        logger.info("Playwright started: chromium (headless=%s)", self.headless)

    async def stop(self) -> None:
        """Gracefully close context, browser & Playwright."""
        if self._context:
            await self._context.close()
            self._context = None
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Playwright stopped")

    async def new_page(self) -> Page:
        """Return a fresh Page in the shared context."""
        if not self._context:
            await self.start()
        page = await self._context.new_page()
        page.set_default_timeout(self.timeout)
        return page


class PlaywrightPageLoader:
    """Navigates list and detail pages for the crawler.

    ``goto`` makes exactly one navigation attempt and raises on failure; the
    crawler owns retry/backoff.
    """

    def __init__(
        self,
        client: PlaywrightClient,
        *,
        wait_selector: Optional[str] = None,
        wait_timeout_ms: float = 10_000,
        detail_timeout_ms: float = 15_000,
    ) -> None:
        self._client = client
        self._wait_selector = wait_selector
        self._wait_timeout_ms = wait_timeout_ms
        self._detail_timeout_ms = detail_timeout_ms
        self._page: Optional[Page] = None

    async def goto(self, url: str) -> str:
        if self._page is None:
            self._page = await self._client.new_page()
        await self._page.goto(url, wait_until="networkidle")

        if self._wait_selector:
            try:
                await self._page.wait_for_selector(self._wait_selector, timeout=self._wait_timeout_ms)
            except PlaywrightTimeout:
                logger.warning("Timed out waiting for %r on %s; reading page anyway", self._wait_selector, url)

        return await self._page.content()

    async def fetch_detail(self, url: str) -> str:
        page = await self._client.new_page()
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self._detail_timeout_ms)
            return await page.content()
        finally:
            await page.close()

    async def close(self) -> None:
        if self._page is not None:
            await self._page.close()
            self._page = None
