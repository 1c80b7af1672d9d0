"""
Paginated list-page crawler for one site.

The crawler is a small state machine::

    NAVIGATING(n) -> EXTRACTING(n) -> DETERMINING_NEXT(n) -> NAVIGATING(n+1) | DONE

and an async generator: each page's rows are yielded as soon as they are
extracted, so the caller can persist them before the next page is loaded.
"""

from __future__ import annotations

import asyncio
import logging
import math
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Set
from urllib.parse import parse_qs, urlencode, urljoin, urlparse, urlunparse

from .extractor import (
    PaginationLink,
    extract_rows,
    pagination_links,
    parse_rows,
    read_total_count,
)
from .interfaces import Fetcher, PageLoader
from .models import ScrapedRow, SiteDescriptor


logger = logging.getLogger(__name__)

NEXT_CLASS_HINT = "pagination__item--next"


class CrawlState(str, Enum):
    NAVIGATING = "navigating"
    EXTRACTING = "extracting"
    DETERMINING_NEXT = "determining_next"
    DONE = "done"


class NavigationError(Exception):
    """A list page could not be loaded within the retry budget."""

    def __init__(self, url: str, attempts: int, cause: BaseException):
        self.url = url
        self.attempts = attempts
        super().__init__(f"Failed to load {url} after {attempts} attempt(s): {cause}")


def with_query_param(url: str, name: str, value: int) -> str:
    parts = urlparse(url)
    query = parse_qs(parts.query, keep_blank_values=True)
    query[name] = [str(value)]
    return urlunparse(parts._replace(query=urlencode(query, doseq=True)))


def _page_number(link: PaginationLink, absolute_href: str, page_param: str) -> Optional[int]:
    if link.data_page and link.data_page.isdigit():
        return int(link.data_page)
    values = parse_qs(urlparse(absolute_href).query).get(page_param) or []
    if values and values[0].isdigit():
        return int(values[0])
    return None


def _looks_like_next(link: PaginationLink) -> bool:
    return (
        "next" in link.rel.lower().split()
        or NEXT_CLASS_HINT in link.class_name
        or link.text.strip().lower() == "next"
        or "next page" in link.aria_label.lower()
    )


def resolve_next_url(
    links: List[PaginationLink],
    current_url: str,
    current_page: int,
    page_param: str = "page",
) -> Optional[str]:
    """Pick the next list page from the page's pagination links.

    Order: explicit ``data-page == n+1``; smallest numbered page above ``n``;
    a link that looks like "next". Relative hrefs resolve against the page
    they were found on.
    """
    target = str(current_page + 1)
    for link in links:
        if link.data_page == target:
            if link.href:
                return urljoin(current_url, link.href)
            break

    candidates = []
    for link in links:
        if not link.href:
            continue
        absolute = urljoin(current_url, link.href)
        number = _page_number(link, absolute, page_param)
        if number is not None and number > current_page:
            candidates.append((number, absolute))
    if candidates:
        return min(candidates, key=lambda c: c[0])[1]

    for link in links:
        if _looks_like_next(link):
            return urljoin(current_url, link.href) if link.href else None

    return None


class SiteCrawler(Fetcher):
    """Walks a site's list pages and yields one batch of rows per page."""

    def __init__(
        self,
        site: SiteDescriptor,
        loader: PageLoader,
        *,
        max_pages: Optional[int] = None,
        start_page: int = 1,
        enable_detail_images: bool = False,
        max_attempts: int = 3,
        retry_base_delay: float = 5.0,
        default_rate_limit_ms: float = 2000,
        debug_html_dir: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.site = site
        self._loader = loader
        self._max_pages = max_pages if max_pages and max_pages > 0 else None
        self._start_page = max(1, int(start_page or 1))
        self._detail_images = enable_detail_images
        self._max_attempts = max(1, max_attempts)
        self._retry_base_delay = retry_base_delay
        rate_limit_ms = site.rate_limit_ms if site.rate_limit_ms is not None else default_rate_limit_ms
        self._rate_limit_s = max(0.0, rate_limit_ms) / 1000.0
        self._debug_dir = debug_html_dir
        self._sleep = sleep

        self.state = CrawlState.NAVIGATING
        self.visited_urls: List[str] = []
        self.derived_total_pages: Optional[int] = None

    @property
    def name(self) -> str:
        return f"SiteCrawler[{self.site.site_id}]"

    # ------------------------------------------------------------------ #
    def _transition(self, state: CrawlState, page: int, **extra) -> None:
        self.state = state
        logger.debug("[%s] page %d -> %s %s", self.site.site_id, page, state.value, extra or "")

    async def _goto_with_retry(self, url: str, page: int) -> str:
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._loader.goto(url)
            except Exception as e:  # noqa: BLE001 - any navigation failure is retryable
                if attempt >= self._max_attempts:
                    logger.error(
                        "[%s] Failed to navigate to page %d (%s) after %d attempts; giving up on further pages: %s",
                        self.site.site_id,
                        page,
                        url,
                        attempt,
                        e,
                    )
                    raise NavigationError(url, attempt, e) from e
                backoff = self._retry_base_delay * 2 ** (attempt - 1)
                logger.warning(
                    "[%s] Navigation to page %d failed (attempt %d/%d); retrying in %.1fs: %s",
                    self.site.site_id,
                    page,
                    attempt,
                    self._max_attempts,
                    backoff,
                    e,
                )
                await self._sleep(backoff)
        raise RuntimeError("Unreachable retry loop")

    def _dump_debug_html(self, html: str, page: int) -> None:
        if not self._debug_dir:
            return
        path = Path(self._debug_dir) / f"debug-{self.site.site_id}-page-{page}.html"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(html, encoding="utf-8")
            logger.info("[%s] Wrote debug HTML dump to %s", self.site.site_id, path)
        except OSError as e:
            logger.warning("[%s] Could not write debug HTML dump %s: %s", self.site.site_id, path, e)

    def _derive_total_pages(self, html: str, products_on_page: int) -> None:
        total = read_total_count(html, self.site)
        if total is None:
            return
        self.derived_total_pages = math.ceil(total / products_on_page)
        logger.info(
            "[%s] Derived %d total pages from %d products at %d per page",
            self.site.site_id,
            self.derived_total_pages,
            total,
            products_on_page,
        )

    async def _extract(self, html: str, page: int) -> List[ScrapedRow]:
        try:
            if page < self._start_page:
                # Skipped page: count products, don't chase detail images
                return parse_rows(html, self.site)
            return await extract_rows(
                html,
                self.site,
                loader=self._loader,
                enable_detail_images=self._detail_images,
            )
        except Exception as e:  # noqa: BLE001 - a bad selector must not end the crawl
            logger.warning("[%s] Extraction failed on page %d: %s", self.site.site_id, page, e)
            return []

    def _next_url(self, html: str, current_url: str, page: int) -> Optional[str]:
        if self.derived_total_pages is not None:
            if page >= self.derived_total_pages:
                return None
            return with_query_param(current_url, self.site.page_param, page + 1)
        return resolve_next_url(
            pagination_links(html, self.site),
            current_url,
            page,
            self.site.page_param,
        )

    # ------------------------------------------------------------------ #
    async def fetch(self) -> AsyncIterator[List[ScrapedRow]]:
        site_id = self.site.site_id
        page = 1
        url: Optional[str] = self.site.list_page_url
        seen: Set[str] = set()
        self.visited_urls = []
        self.derived_total_pages = None

        while url and (self._max_pages is None or page <= self._max_pages):
            self._transition(CrawlState.NAVIGATING, page, url=url)
            if url in seen:
                logger.warning("[%s] Page %d URL %s already visited; stopping to avoid a loop", site_id, page, url)
                break
            seen.add(url)

            try:
                html = await self._goto_with_retry(url, page)
            except NavigationError:
                break
            self.visited_urls.append(url)

            if page == 1:
                self._dump_debug_html(html, page)

            self._transition(CrawlState.EXTRACTING, page)
            rows = await self._extract(html, page)
            logger.info("[%s] Found %d products on page %d", site_id, len(rows), page)

            if self.derived_total_pages is None and rows and self.site.total_count_selector:
                self._derive_total_pages(html, len(rows))

            if page >= self._start_page and rows:
                yield rows
            elif page < self._start_page:
                logger.info("[%s] Skipping rows of page %d (start page %d)", site_id, page, self._start_page)

            self._transition(CrawlState.DETERMINING_NEXT, page)
            next_url = self._next_url(html, url, page)

            await self._sleep(self._rate_limit_s)

            if not next_url:
                logger.info("[%s] No further pages after page %d", site_id, page)
                break
            if next_url in seen:
                logger.warning(
                    "[%s] Next page URL %s was already visited; stopping pagination",
                    site_id,
                    next_url,
                )
                break

            url = next_url
            page += 1
        else:
            if url and self._max_pages is not None:
                logger.info("[%s] Reached max pages (%d)", site_id, self._max_pages)

        self._transition(CrawlState.DONE, page)
        logger.info("[%s] Crawl finished after %d page(s)", site_id, len(self.visited_urls))
