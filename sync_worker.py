"""
Long-running sync worker: retries queued price-history batches until the
ingestion API accepts them.
"""

import asyncio
import logging
import signal
import sys

from harvester.backend import BackendClient
from harvester.config import ConfigError, load_settings, setup_logging
from harvester.infra.db import Database
from harvester.infra.scheduler import Scheduler
from harvester.sync_queue import SyncQueue
from harvester.worker import SyncWorker


logger = logging.getLogger(__name__)


async def main() -> int:
    try:
        settings = load_settings()
    except ConfigError as e:
        setup_logging()
        logger.error("Configuration error: %s", e)
        return 2

    setup_logging(settings.log_level)

    if settings.disable_sqlite:
        logger.error("SCRAPER_DISABLE_SQLITE is set; there is no queue to drain")
        return 1

    api_url, api_key = settings.sync_target
    logger.info("Sync worker targeting %s (store %s)", api_url, settings.sqlite_path)

    async with Database(settings.sqlite_path) as db:
        queue = SyncQueue(db)
        await queue.init()
        await queue.requeue_stale_sending()
        logger.info("Queue state at startup: %s", await queue.count_by_status())

        async with BackendClient(api_url, api_key, batch_size=settings.backend_batch_size) as backend:
            worker = SyncWorker(queue, backend)
            scheduler = Scheduler()
            stop_event = asyncio.Event()

            def signal_handler():
                logger.info("Received shutdown signal")
                stop_event.set()

            for sig in (signal.SIGTERM, signal.SIGINT):
                asyncio.get_running_loop().add_signal_handler(sig, signal_handler)

            interval_s = settings.sync_worker_interval_ms / 1000.0
            scheduler.add_interval_job(
                worker.tick,
                seconds=interval_s,
                job_id="sync-queue",
                run_now=True,
                kwargs={"limit": settings.sync_worker_batch_limit},
            )
            await scheduler.start()
            logger.info(
                "Sync worker started (interval %.1fs, batch limit %d)",
                interval_s,
                settings.sync_worker_batch_limit,
            )
            try:
                await stop_event.wait()
            finally:
                await scheduler.stop()
                logger.info("Sync worker stopped")
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
