"""
Database infrastructure with SQLite and async support.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

import aiosqlite


logger = logging.getLogger(__name__)


class Database:
    """Async SQLite database wrapper.

    One instance is opened per process and shared by every store that needs
    it (staging rows, sync queue).
    """

    def __init__(self, db_path: str = "data/scraper.db"):
        self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None
        self._schemas: List[str] = []

    async def connect(self) -> None:
        """Open the connection and apply every registered schema."""
        if self._connection:
            return

        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode; multi-statement writes go through transaction()
        self._connection = await aiosqlite.connect(self.db_path, timeout=30, isolation_level=None)
        self._connection.row_factory = aiosqlite.Row
        # Improve concurrency: use WAL journal mode and set busy timeout (ms)
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA busy_timeout=30000;")
        for ddl in self._schemas:
            await self._connection.executescript(ddl)
        logger.debug("Opened SQLite database at %s", self.db_path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def ensure_schema(self, ddl: str) -> None:
        """Register DDL to run on connect (and run it now if already open)."""
        if ddl not in self._schemas:
            self._schemas.append(ddl)
        if self._connection:
            await self._connection.executescript(ddl)

    async def _conn(self) -> aiosqlite.Connection:
        if not self._connection:
            await self.connect()
        return self._connection

    @asynccontextmanager
    async def transaction(self):
        """Context manager for database transactions."""
        conn = await self._conn()
        await conn.execute("BEGIN")
        try:
            yield conn
        except Exception:
            await conn.execute("ROLLBACK")
            raise
        else:
            await conn.execute("COMMIT")

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement."""
        conn = await self._conn()
        return await conn.execute(sql, tuple(params))

    async def executemany(self, sql: str, rows: Iterable[Sequence[Any]]) -> None:
        """Execute one statement for many parameter rows inside a transaction."""
        async with self.transaction() as conn:
            await conn.executemany(sql, [tuple(r) for r in rows])

    async def insert(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute an INSERT and return the new rowid."""
        cursor = await self.execute(sql, params)
        return int(cursor.lastrowid)

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[aiosqlite.Row]:
        """Fetch one row."""
        cursor = await self.execute(sql, params)
        return await cursor.fetchone()

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[aiosqlite.Row]:
        """Fetch all rows."""
        cursor = await self.execute(sql, params)
        return list(await cursor.fetchall())
