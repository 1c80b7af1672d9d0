"""
Queue dispatch loop and the retry schedule it applies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from .backend import BackendClient, DeliveryError
from .models import NormalizedObservation, QueueEntry, load_queue_payload, utc_now
from .sync_queue import SyncQueue

logger = logging.getLogger(__name__)

BASE_BACKOFF = timedelta(seconds=30)
MAX_BACKOFF = timedelta(hours=1)


def backoff_delay(attempts: int) -> timedelta:
    """Delay before retry number ``attempts`` (1-based): 30s doubling, capped at 1h."""
    attempts = max(1, attempts)
    if attempts > 16:
        return MAX_BACKOFF
    return min(BASE_BACKOFF * 2 ** (attempts - 1), MAX_BACKOFF)


def next_attempt_at(attempts: int, now: Optional[datetime] = None) -> datetime:
    return (now or utc_now()) + backoff_delay(attempts)


class SyncWorker:
    """Delivers eligible queue entries one at a time."""

    def __init__(self, queue: SyncQueue, backend: BackendClient):
        self.queue = queue
        self.backend = backend

    async def process_batch(self, limit: int, run_id: Optional[str] = None) -> int:
        entries = await self.queue.fetch_eligible(utc_now(), limit, run_id=run_id)
        if not entries:
            logger.debug("No eligible sync entries")
            return 0

        logger.info("Processing %d sync entr%s", len(entries), "y" if len(entries) == 1 else "ies")
        for entry in entries:
            await self._process(entry)
        return len(entries)

    async def _process(self, entry: QueueEntry) -> None:
        await self.queue.mark_sending(entry.id)
        attempt = entry.attempts + 1
        try:
            observations = await self._deliver(entry, attempt)
        except Exception as e:  # noqa: BLE001 - the entry must not stay in sending
            logger.exception("Sync entry %d failed unexpectedly on attempt %d", entry.id, attempt)
            await self.queue.mark_failed(entry.id, str(e) or type(e).__name__, next_attempt_at(attempt))
            return

        if not observations:
            return
        try:
            images = await self.backend.forward_images(observations)
        except Exception:  # noqa: BLE001 - images are best-effort once sent
            logger.exception("Image forwarding for entry %d failed", entry.id)
            return
        for error in images.errors:
            logger.warning("Image forward failed for entry %d: %s", entry.id, error)

    async def _deliver(self, entry: QueueEntry, attempt: int) -> List[NormalizedObservation]:
        """Send one entry and record the outcome; returns what was delivered."""
        try:
            observations = load_queue_payload(entry.payload_json)
        except ValueError as e:
            logger.error("Sync entry %d has an unreadable payload: %s", entry.id, e)
            await self.queue.mark_failed(entry.id, f"Invalid payload: {e}", next_attempt_at(attempt))
            return []

        if not observations:
            await self.queue.mark_sent(entry.id)
            logger.info("Sync entry %d had nothing to send; marked sent", entry.id)
            return []

        try:
            summary = await self.backend.send_price_snapshots(observations)
        except DeliveryError as e:
            retry_at = next_attempt_at(attempt)
            await self.queue.mark_failed(entry.id, str(e), retry_at)
            logger.warning(
                "Sync entry %d (%s) failed on attempt %d; next try at %s: %s",
                entry.id,
                entry.site_id,
                attempt,
                retry_at.isoformat(),
                e,
            )
            return []

        await self.queue.mark_sent(entry.id)
        logger.info(
            "Sync entry %d (%s) sent on attempt %d: %d accepted, %d failed",
            entry.id,
            entry.site_id,
            attempt,
            summary.accepted,
            summary.failed,
        )
        return observations

    async def tick(self, limit: int) -> None:
        """One scheduled pass over the queue; errors are logged, not raised."""
        try:
            await self.process_batch(limit)
        except Exception:  # noqa: BLE001 - the next tick retries
            logger.exception("Sync batch failed; will retry next tick")
