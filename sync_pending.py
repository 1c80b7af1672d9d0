#!/usr/bin/env python3
"""
Manually push eligible price-history queue entries to the ingestion API.

Usage: python sync_pending.py [--limit N] [--run-id RUN_ID] [--api-url URL] [--api-key KEY]
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from harvester.backend import BackendClient
from harvester.config import ConfigError, load_settings, setup_logging
from harvester.infra.db import Database
from harvester.sync_queue import SyncQueue
from harvester.worker import SyncWorker


logger = logging.getLogger(__name__)


def _positive_int(raw: str) -> int:
    try:
        n = int(float(raw))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not a number: {raw!r}") from e
    if n <= 0:
        raise argparse.ArgumentTypeError("must be greater than zero")
    return n


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    argp = argparse.ArgumentParser(description="Sync pending price-history batches to the backend")
    argp.add_argument("--limit", type=_positive_int, default=50, help="Maximum entries to process")
    argp.add_argument("--run-id", dest="run_id", default=None, help="Only process entries of this run")
    argp.add_argument("--api-url", dest="api_url", default=None, help="Override SYNC_API_URL / BACKEND_API_URL")
    argp.add_argument("--api-key", dest="api_key", default=None, help="Override SYNC_API_KEY / API_KEY")
    return argp.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings()
    except ConfigError as e:
        setup_logging()
        logger.error("Configuration error: %s", e)
        return 2

    setup_logging(settings.log_level)

    env_url, env_key = settings.sync_target
    api_url = args.api_url or env_url
    api_key = args.api_key or env_key
    logger.info(
        "Manual sync: store=%s limit=%d run_id=%s api=%s",
        settings.sqlite_path,
        args.limit,
        args.run_id or "*",
        api_url,
    )

    async with Database(settings.sqlite_path) as db:
        queue = SyncQueue(db)
        await queue.init()
        await queue.requeue_stale_sending()
        async with BackendClient(api_url, api_key, batch_size=settings.backend_batch_size) as backend:
            processed = await SyncWorker(queue, backend).process_batch(args.limit, run_id=args.run_id)
        logger.info("Processed %d entr%s; queue now %s", processed, "y" if processed == 1 else "ies", await queue.count_by_status())
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
