"""SQLite database management with WAL mode and schema versioning."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

-- Append-only activity log (rolling retention window)
CREATE TABLE IF NOT EXISTS activities (
    id TEXT PRIMARY KEY,
    application_name TEXT NOT NULL,
    window_title TEXT,
    process_path TEXT,
    start_time DATETIME NOT NULL,
    end_time DATETIME NOT NULL,
    duration INTEGER NOT NULL,
    project_id TEXT,
    task_id TEXT,
    is_idle BOOLEAN DEFAULT FALSE,
    category_id TEXT,
    category_auto_assigned BOOLEAN DEFAULT TRUE,
    category_confidence INTEGER,
    source TEXT DEFAULT 'desktop',
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_activities_start ON activities(start_time);

-- Pending uploads, drained by the sync engine
CREATE TABLE IF NOT EXISTS sync_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    activity_id TEXT NOT NULL,
    payload JSON NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

-- Queue entries that could not be decoded, kept out of the push path
CREATE TABLE IF NOT EXISTS sync_quarantine (
    id INTEGER PRIMARY KEY,
    payload TEXT NOT NULL,
    error TEXT,
    quarantined_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

-- Small key/value state (device id, last sync time)
CREATE TABLE IF NOT EXISTS kv_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
"""


class Database:
    """SQLite database manager with WAL mode."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        """Initialize database connection with WAL mode."""
        if self._connection is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            isolation_level=None,  # Autocommit mode, we handle transactions manually
        )

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA busy_timeout=5000")

        self._connection.row_factory = aiosqlite.Row

        await self._init_schema()

        logger.info(f"Database connected: {self.db_path}")

    async def _init_schema(self) -> None:
        if self._connection is None:
            raise RuntimeError("Database not connected")

        await self._connection.executescript(SCHEMA)

        async with self._connection.execute(
            "SELECT MAX(version) FROM schema_version"
        ) as cursor:
            row = await cursor.fetchone()
            current_version = row[0] if row and row[0] else 0

        if current_version < SCHEMA_VERSION:
            await self._connection.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            logger.info(f"Schema updated to version {SCHEMA_VERSION}")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("Database not connected")
        return self._connection

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run statements atomically. Yields the raw connection."""
        connection = self._require_connection()

        async with self._lock:
            await connection.execute("BEGIN")
            try:
                yield connection
                await connection.execute("COMMIT")
            except Exception:
                await connection.execute("ROLLBACK")
                raise

    async def execute(self, query: str, params: tuple[Any, ...] = ()) -> int:
        """Execute a query and return the number of affected rows."""
        connection = self._require_connection()

        async with self._lock:
            cursor = await connection.execute(query, params)
            return cursor.rowcount

    async def fetch_one(
        self, query: str, params: tuple[Any, ...] = ()
    ) -> dict[str, Any] | None:
        """Fetch a single row."""
        connection = self._require_connection()

        async with connection.execute(query, params) as cursor:
            row = await cursor.fetchone()
            if row:
                return dict(row)
            return None

    async def fetch_all(
        self, query: str, params: tuple[Any, ...] = ()
    ) -> list[dict[str, Any]]:
        """Fetch all rows."""
        connection = self._require_connection()

        async with connection.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]

    async def get_size_mb(self) -> float:
        """Get database file size in MB."""
        if self.db_path.exists():
            return self.db_path.stat().st_size / (1024 * 1024)
        return 0.0

    # Key/value helpers
    async def get_state(self, key: str, default: str | None = None) -> str | None:
        row = await self.fetch_one("SELECT value FROM kv_state WHERE key = ?", (key,))
        if row:
            return row["value"]
        return default

    async def set_state(self, key: str, value: str) -> None:
        await self.execute(
            """INSERT INTO kv_state (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP""",
            (key, value),
        )


async def init_database(db_path: Path) -> Database:
    """Create and connect a database."""
    db = Database(db_path)
    await db.connect()
    return db
