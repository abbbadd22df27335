"""Async SQLite database for hedge bookkeeping.

Holds the trade-group audit trail, the unsupported-symbol set and a log of
ranked funding scores. Uses aiosqlite with WAL mode.
"""

import os
from typing import Self

import aiosqlite

from hedger.exceptions import StorageError
from hedger.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS trade_groups (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    exchange_id TEXT NOT NULL,
    symbol TEXT NOT NULL,
    spot_order_id TEXT NOT NULL,
    futures_order_id TEXT NOT NULL,
    leverage INTEGER NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS unsupported_symbols (
    symbol TEXT PRIMARY KEY,
    reason TEXT NOT NULL DEFAULT '',
    added_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS funding_scores (
    symbol TEXT NOT NULL,
    recorded_at TEXT NOT NULL,
    score TEXT NOT NULL,
    latest_rate TEXT NOT NULL,
    period_averages TEXT NOT NULL,
    PRIMARY KEY (symbol, recorded_at)
);
"""

_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_trade_groups_symbol_active
    ON trade_groups(symbol, active);
"""


class HedgeDatabase:
    """Async SQLite connection manager.

    Usage:
        async with HedgeDatabase("data/hedger.db") as database:
            store = SqliteHedgeStore(database)
    """

    def __init__(self, db_path: str = "data/hedger.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises StorageError if not connected.
        """
        if self._connection is None:
            raise StorageError("Database not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open the connection, set pragmas and create the schema."""
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.executescript(_CREATE_INDEXES_SQL)
        await self._connection.commit()
        await self._ensure_schema_version()

        logger.info("hedge_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("hedge_db_closed", db_path=self._db_path)

    async def _ensure_schema_version(self) -> None:
        cursor = await self.db.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        if row is None:
            await self.db.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            await self.db.commit()
            logger.info("schema_version_set", version=SCHEMA_VERSION)

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
