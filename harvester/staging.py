"""
Local staging store for raw scrapes.

Every page of every run is appended to ``scraped_products_raw`` tagged with
the run's timestamp. The latest snapshot of a site is the set of rows at the
maximum timestamp for that site, so a reader never mixes two runs.
"""

from __future__ import annotations

import logging
from typing import Any, List, Sequence

from .infra.db import Database
from .interfaces import Sink
from .models import ScrapedRow, StagedRow

logger = logging.getLogger(__name__)


class StagingStore:
    _DDL = """
CREATE TABLE IF NOT EXISTS scraped_products_raw (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    site_id TEXT NOT NULL,
    source_product_id TEXT,
    name TEXT,
    url TEXT,
    price REAL,
    price_text TEXT,
    rrp REAL,
    rrp_text TEXT,
    availability_text TEXT,
    sku TEXT,
    image_url TEXT,
    raw_json TEXT NOT NULL,
    scraped_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_scraped_products_site_time
    ON scraped_products_raw (site_id, scraped_at);
"""

    _COLUMNS = (
        "site_id",
        "source_product_id",
        "name",
        "url",
        "price",
        "price_text",
        "rrp",
        "rrp_text",
        "availability_text",
        "sku",
        "image_url",
        "raw_json",
        "scraped_at",
    )

    def __init__(self, db: Database):
        self.db = db

    async def init(self) -> None:
        await self.db.ensure_schema(self._DDL)

    async def append(self, site_id: str, rows: Sequence[ScrapedRow], scraped_at: str) -> int:
        """Persist one page of rows; returns the number written."""
        if not rows:
            return 0
        for row in rows:
            if row.site_id != site_id:
                raise ValueError(f"Row for site {row.site_id!r} appended under {site_id!r}")

        sql = (
            f"INSERT INTO scraped_products_raw ({', '.join(self._COLUMNS)}) "
            f"VALUES ({', '.join('?' * len(self._COLUMNS))})"
        )
        await self.db.executemany(
            sql,
            [
                (
                    row.site_id,
                    row.source_product_id,
                    row.name,
                    row.url,
                    row.price,
                    row.price_text,
                    row.rrp,
                    row.rrp_text,
                    row.availability_text,
                    row.sku,
                    row.image_url,
                    row.model_dump_json(by_alias=True),
                    scraped_at,
                )
                for row in rows
            ],
        )
        logger.debug("Staged %d rows for %s @ %s", len(rows), site_id, scraped_at)
        return len(rows)

    async def latest_snapshot(self, site_id: str) -> List[StagedRow]:
        latest = await self.db.fetch_one(
            "SELECT MAX(scraped_at) AS scraped_at FROM scraped_products_raw WHERE site_id = ?",
            (site_id,),
        )
        if latest is None or latest["scraped_at"] is None:
            return []

        rows = await self.db.fetch_all(
            f"""
            SELECT id, {', '.join(self._COLUMNS)}
            FROM scraped_products_raw
            WHERE site_id = ? AND scraped_at = ?
            ORDER BY id ASC
            """,
            (site_id, latest["scraped_at"]),
        )
        return [self._to_staged(r) for r in rows]

    async def snapshot_times(self, site_id: str) -> List[str]:
        rows = await self.db.fetch_all(
            "SELECT DISTINCT scraped_at FROM scraped_products_raw WHERE site_id = ? ORDER BY scraped_at DESC",
            (site_id,),
        )
        return [r["scraped_at"] for r in rows]

    @staticmethod
    def _to_staged(r: Any) -> StagedRow:
        return StagedRow(
            id=r["id"],
            site_id=r["site_id"],
            source_product_id=r["source_product_id"],
            name=r["name"] or "",
            url=r["url"] or "",
            price=r["price"],
            price_text=r["price_text"],
            rrp=r["rrp"],
            rrp_text=r["rrp_text"],
            availability_text=r["availability_text"],
            sku=r["sku"],
            image_url=r["image_url"],
            scraped_at=r["scraped_at"],
        )


class StagingSink(Sink):
    """Pipeline stage that stages each crawled page under one run timestamp."""

    name = "StagingSink"

    def __init__(self, store: StagingStore, site_id: str, scraped_at: str):
        self._store = store
        self._site_id = site_id
        self._scraped_at = scraped_at
        self.rows_written = 0
        self.pages_written = 0

    async def handle(self, item: List[ScrapedRow]) -> None:
        written = await self._store.append(self._site_id, item, self._scraped_at)
        self.rows_written += written
        self.pages_written += 1
        logger.info(
            "[%s] Staged page %d (%d rows, %d total)",
            self._site_id,
            self.pages_written,
            written,
            self.rows_written,
        )
