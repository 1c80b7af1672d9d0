"""
Main entry point for the price harvester: one-shot scrape run, or a
long-running service that scrapes on a cron schedule.
"""

import asyncio
import logging
import signal
import sys

from harvester.backend import BackendClient
from harvester.config import ConfigError, Settings, load_settings, setup_logging
from harvester.infra.db import Database
from harvester.infra.scheduler import Scheduler
from harvester.orchestrator import ScrapeRunner
from harvester.sites import load_site_descriptors
from harvester.staging import StagingStore
from harvester.sync_queue import SyncQueue


logger = logging.getLogger(__name__)


async def run_service(runner: ScrapeRunner, settings: Settings) -> None:
    """Scrape now, then on every tick of SCRAPE_SCHEDULE until signalled."""
    scheduler = Scheduler()
    stop_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        asyncio.get_running_loop().add_signal_handler(sig, signal_handler)

    scheduler.add_cron_job(runner.run, settings.scrape_schedule, job_id="scrape-run", run_now=True)
    await scheduler.start()
    logger.info("Service mode: scraping now and on schedule %r", settings.scrape_schedule)

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        await scheduler.stop()


async def main() -> int:
    try:
        settings = load_settings()
    except ConfigError as e:
        setup_logging()
        logger.error("Configuration error: %s", e)
        return 2

    setup_logging(settings.log_level)

    sites = load_site_descriptors(settings.sites_dir)
    logger.info("Loaded %d site config(s) from %s", len(sites), settings.sites_dir)

    db = None
    staging = queue = None
    if not settings.disable_sqlite:
        db = Database(settings.sqlite_path)
        staging = StagingStore(db)
        queue = SyncQueue(db)
        await staging.init()
        await queue.init()
        await db.connect()
    else:
        logger.info("SCRAPER_DISABLE_SQLITE is set; runs will not be persisted")

    backend = BackendClient(
        settings.backend_api_url,
        settings.api_key,
        batch_size=settings.backend_batch_size,
    )
    runner = ScrapeRunner(settings, sites, backend=backend, staging=staging, queue=queue)

    try:
        if settings.service_mode:
            await run_service(runner, settings)
        else:
            results = await runner.run()
            failed = [r.site_id for r in results if r.error_message]
            logger.info(
                "Scrape run completed: %d site(s), %d failed%s",
                len(results),
                len(failed),
                f" ({', '.join(failed)})" if failed else "",
            )
    finally:
        await backend.close()
        if db is not None:
            await db.close()
    return 0


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
