"""
Scrape run orchestration: crawl → stage → normalize → enqueue → deliver,
one site at a time.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import (
    AsyncContextManager,
    AsyncIterator,
    Awaitable,
    Callable,
    List,
    Optional,
    Sequence,
    Tuple,
)

from .backend import BackendClient, DeliveryError
from .config import Settings
from .crawler import SiteCrawler
from .infra.sel import PlaywrightClient, PlaywrightPageLoader
from .interfaces import PageLoader
from .models import (
    RunOutcome,
    ScrapeRunStatus,
    SiteDescriptor,
    dump_queue_payload,
    utc_now_iso,
)
from .normalizer import normalize_rows
from .sites import active_sites
from .staging import StagingSink, StagingStore
from .sync_queue import SyncQueue
from .worker import next_attempt_at

logger = logging.getLogger(__name__)

LoaderFactory = Callable[[SiteDescriptor], AsyncContextManager[PageLoader]]

SAMPLE_NAMES = 5


def playwright_loader_factory(settings: Settings) -> LoaderFactory:
    """One browser and context per site, torn down when the crawl ends."""

    @asynccontextmanager
    async def open_loader(site: SiteDescriptor) -> AsyncIterator[PageLoader]:
        async with PlaywrightClient(headless=settings.headless, user_agent=settings.user_agent) as client:
            loader = PlaywrightPageLoader(client, wait_selector=site.selectors.product_list)
            try:
                yield loader
            finally:
                await loader.close()

    return open_loader


class ScrapeRunner:
    """Runs every active site once and reports each run to the backend.

    ``staging`` and ``queue`` are ``None`` when persistence is disabled; the
    crawl then only counts products.
    """

    def __init__(
        self,
        settings: Settings,
        sites: Sequence[SiteDescriptor],
        *,
        backend: BackendClient,
        staging: Optional[StagingStore] = None,
        queue: Optional[SyncQueue] = None,
        loader_factory: Optional[LoaderFactory] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if (staging is None) != (queue is None):
            raise ValueError("staging and queue must be given together")
        self.settings = settings
        self.sites = list(sites)
        self.backend = backend
        self.staging = staging
        self.queue = queue
        self._loader_factory = loader_factory or playwright_loader_factory(settings)
        self._sleep = sleep

    @property
    def persistence_enabled(self) -> bool:
        return self.staging is not None

    async def run(self, site_ids: Optional[Sequence[str]] = None) -> List[ScrapeRunStatus]:
        selected = active_sites(self.sites, site_ids or self.settings.site_ids or None)
        if not selected:
            logger.warning("No active sites to scrape")
            return []

        logger.info("Scraping %d site(s): %s", len(selected), ", ".join(s.site_id for s in selected))
        results = []
        for site in selected:
            results.append(await self.run_site(site))
        return results

    async def run_site(self, site: SiteDescriptor) -> ScrapeRunStatus:
        started_at = utc_now_iso()
        run_id = f"{site.site_id}-{started_at}"
        item_count = 0
        run_error: Optional[str] = None

        logger.info("[%s] Starting run %s", site.site_id, run_id)
        try:
            item_count, sample = await self._crawl(site, started_at)
            logger.info("[%s] Crawled %d products (sample: %s)", site.site_id, item_count, sample)

            if not self.persistence_enabled:
                logger.info("[%s] SQLite disabled; skipping persistence and delivery", site.site_id)
            elif item_count == 0:
                # The latest snapshot would be an older run's rows; re-sending them
                # under this run id would post stale prices as fresh observations.
                logger.warning("[%s] Nothing staged this run; not enqueuing", site.site_id)
            else:
                run_error = await self._enqueue_and_deliver(site, run_id)
        except Exception as e:  # noqa: BLE001 - one site's failure must not stop the others
            logger.exception("[%s] Run %s failed", site.site_id, run_id)
            run_error = str(e) or type(e).__name__

        status = ScrapeRunStatus(
            site_id=site.site_id,
            status=RunOutcome.FAILURE if run_error else RunOutcome.SUCCESS,
            started_at=started_at,
            finished_at=utc_now_iso(),
            item_count=item_count,
            error_message=run_error,
            run_id=run_id,
        )
        reported = await self.backend.report_run_status(status)
        for error in reported.errors:
            logger.warning("[%s] Could not report run status: %s", site.site_id, error)

        logger.info("[%s] Run %s finished: %s", site.site_id, run_id, status.status.value)
        return status

    # ------------------------------------------------------------------ #
    async def _crawl(self, site: SiteDescriptor, started_at: str) -> Tuple[int, List[str]]:
        count = 0
        sample: List[str] = []

        async with self._loader_factory(site) as loader:
            crawler = SiteCrawler(
                site,
                loader,
                max_pages=self.settings.max_pages,
                start_page=self.settings.start_page,
                enable_detail_images=self.settings.enable_detail_images,
                max_attempts=self.settings.max_retries,
                retry_base_delay=self.settings.retry_delay_ms / 1000.0,
                default_rate_limit_ms=self.settings.rate_limit_delay_ms,
                debug_html_dir=self.settings.debug_html_dir,
                sleep=self._sleep,
            )
            stream = crawler.fetch()
            if self.staging is not None:
                stream = StagingSink(self.staging, site.site_id, started_at)(stream)

            async for rows in stream:
                count += len(rows)
                sample.extend(r.name for r in rows[: SAMPLE_NAMES - len(sample)])

        return count, sample

    async def _enqueue_and_deliver(self, site: SiteDescriptor, run_id: str) -> Optional[str]:
        """Returns the delivery error message, if any."""
        latest = await self.staging.latest_snapshot(site.site_id)
        observations = normalize_rows(site, latest)
        entry_id = await self.queue.enqueue(run_id, site.site_id, dump_queue_payload(observations))
        logger.info(
            "[%s] Enqueued %d observations as sync entry %d",
            site.site_id,
            len(observations),
            entry_id,
        )

        await self.queue.mark_sending(entry_id)
        try:
            summary = await self.backend.send_price_snapshots(observations)
        except DeliveryError as e:
            await self.queue.mark_failed(entry_id, str(e), next_attempt_at(1))
            logger.error(
                "[%s] Delivery of entry %d failed; left for the sync worker: %s",
                site.site_id,
                entry_id,
                e,
            )
            return str(e)
        except Exception as e:  # noqa: BLE001 - the entry must not stay in sending
            logger.exception("[%s] Unexpected error delivering entry %d", site.site_id, entry_id)
            message = str(e) or type(e).__name__
            await self.queue.mark_failed(entry_id, message, next_attempt_at(1))
            return message

        await self.queue.mark_sent(entry_id)
        logger.info(
            "[%s] Delivered entry %d: %d accepted, %d failed, %d new products",
            site.site_id,
            entry_id,
            summary.accepted,
            summary.failed,
            summary.new_products,
        )

        images = await self.backend.forward_images(observations)
        for error in images.errors:
            logger.warning("[%s] Image forward failed: %s", site.site_id, error)
        return None
