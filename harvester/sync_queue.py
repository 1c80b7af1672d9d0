"""
Durable price-history sync queue.

Entries move ``pending -> sending -> sent`` or ``-> failed`` (and back into
the eligible pool once ``next_attempt_at`` has passed). Nothing is ever
deleted; the table doubles as the delivery audit log. The retry schedule is
chosen by the caller, see :mod:`harvester.worker`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Union

from .infra.db import Database
from .models import QueueEntry, QueueStatus, to_iso, utc_now_iso

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, run_id, site_id, payload_json, status, attempts, next_attempt_at, "
    "last_error, target_env, created_at, updated_at"
)


def _iso(value: Union[str, datetime]) -> str:
    return to_iso(value) if isinstance(value, datetime) else value


class SyncQueue:
    _DDL = """
CREATE TABLE IF NOT EXISTS price_history_sync_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id TEXT NOT NULL,
    site_id TEXT NOT NULL,
    payload_json TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    attempts INTEGER NOT NULL DEFAULT 0,
    next_attempt_at TEXT NOT NULL,
    last_error TEXT,
    target_env TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_price_history_sync_queue_status_next
    ON price_history_sync_queue (status, next_attempt_at);

CREATE INDEX IF NOT EXISTS idx_price_history_sync_queue_run
    ON price_history_sync_queue (run_id);
"""

    def __init__(self, db: Database):
        self.db = db

    async def init(self) -> None:
        await self.db.ensure_schema(self._DDL)

    async def enqueue(
        self,
        run_id: str,
        site_id: str,
        payload_json: str,
        target_env: Optional[str] = None,
    ) -> int:
        now = utc_now_iso()
        entry_id = await self.db.insert(
            """
            INSERT INTO price_history_sync_queue (
                run_id, site_id, payload_json, status, attempts,
                next_attempt_at, last_error, target_env, created_at, updated_at
            ) VALUES (?, ?, ?, ?, 0, ?, NULL, ?, ?, ?)
            """,
            (run_id, site_id, payload_json, QueueStatus.PENDING.value, now, target_env, now, now),
        )
        logger.info("Enqueued sync entry %d for %s (run %s)", entry_id, site_id, run_id)
        return entry_id

    async def fetch_eligible(
        self,
        now: Union[str, datetime],
        limit: int,
        run_id: Optional[str] = None,
    ) -> List[QueueEntry]:
        """Pending/failed entries due at ``now``, oldest first."""
        if limit <= 0:
            return []

        sql = f"""
            SELECT {_COLUMNS}
            FROM price_history_sync_queue
            WHERE status IN (?, ?)
              AND next_attempt_at <= ?
        """
        params: list = [QueueStatus.PENDING.value, QueueStatus.FAILED.value, _iso(now)]
        if run_id:
            sql += " AND run_id = ?"
            params.append(run_id)
        sql += " ORDER BY id ASC LIMIT ?"
        params.append(limit)

        rows = await self.db.fetch_all(sql, params)
        return [QueueEntry(**dict(r)) for r in rows]

    async def get(self, entry_id: int) -> Optional[QueueEntry]:
        row = await self.db.fetch_one(
            f"SELECT {_COLUMNS} FROM price_history_sync_queue WHERE id = ?",
            (entry_id,),
        )
        return QueueEntry(**dict(row)) if row else None

    async def mark_sending(self, entry_id: int) -> None:
        await self._set_status(entry_id, QueueStatus.SENDING)

    async def mark_sent(self, entry_id: int) -> None:
        await self._set_status(entry_id, QueueStatus.SENT)

    async def mark_failed(
        self,
        entry_id: int,
        error: str,
        next_attempt_at: Union[str, datetime],
    ) -> None:
        await self.db.execute(
            """
            UPDATE price_history_sync_queue
            SET status = ?,
                attempts = attempts + 1,
                next_attempt_at = ?,
                last_error = ?,
                updated_at = ?
            WHERE id = ?
            """,
            (QueueStatus.FAILED.value, _iso(next_attempt_at), error, utc_now_iso(), entry_id),
        )

    async def requeue_stale_sending(self, before: Optional[Union[str, datetime]] = None) -> int:
        """Return entries stuck in ``sending`` (last touched before ``before``,
        default now) to the eligible pool as ``failed``, due immediately.

        A process killed between mark_sending and the outcome leaves its entry
        in ``sending``; the attempt counter is left as it was.
        """
        cutoff = _iso(before) if before is not None else utc_now_iso()
        now = utc_now_iso()
        cursor = await self.db.execute(
            """
            UPDATE price_history_sync_queue
            SET status = ?,
                next_attempt_at = ?,
                last_error = ?,
                updated_at = ?
            WHERE status = ? AND updated_at <= ?
            """,
            (
                QueueStatus.FAILED.value,
                now,
                "Interrupted while sending",
                now,
                QueueStatus.SENDING.value,
                cutoff,
            ),
        )
        requeued = max(cursor.rowcount, 0)
        if requeued:
            logger.warning("Requeued %d sync entr%s left in sending", requeued, "y" if requeued == 1 else "ies")
        return requeued

    async def count_by_status(self) -> Dict[str, int]:
        rows = await self.db.fetch_all(
            "SELECT status, COUNT(*) AS n FROM price_history_sync_queue GROUP BY status"
        )
        return {r["status"]: r["n"] for r in rows}

    async def _set_status(self, entry_id: int, status: QueueStatus) -> None:
        await self.db.execute(
            "UPDATE price_history_sync_queue SET status = ?, updated_at = ? WHERE id = ?",
            (status.value, utc_now_iso(), entry_id),
        )
