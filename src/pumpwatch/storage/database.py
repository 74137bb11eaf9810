"""
Async SQLite database connection management.

The dashboard keeps everything in one local SQLite file: tokens, trades,
subscription intents, settings and auto-watch metrics. Access goes through
aiosqlite so every call is an await point on the event loop.

All work is serialised through a single asyncio lock. A transaction holds the
lock from BEGIN to COMMIT, so a logical unit of work (e.g. "record this trade
and refresh the token's metrics") is never observed half-applied.
"""
from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import aiosqlite
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS tokens (
    mint TEXT PRIMARY KEY,
    symbol TEXT,
    name TEXT,
    uri TEXT,
    watch_status TEXT NOT NULL DEFAULT 'unwatched',
    create_time INTEGER NOT NULL,
    last_update INTEGER NOT NULL,
    last_trade_time INTEGER,
    bonding_curve_key TEXT,
    sol_reserve REAL NOT NULL DEFAULT 0,
    token_reserve REAL NOT NULL DEFAULT 0,
    last_price REAL NOT NULL DEFAULT 0,
    market_cap_sol REAL NOT NULL DEFAULT 0,
    metrics TEXT
);
CREATE INDEX IF NOT EXISTS idx_tokens_symbol ON tokens(symbol);
CREATE INDEX IF NOT EXISTS idx_tokens_watch_status ON tokens(watch_status);
CREATE INDEX IF NOT EXISTS idx_tokens_create_time ON tokens(create_time);
CREATE INDEX IF NOT EXISTS idx_tokens_last_update ON tokens(last_update);

CREATE TABLE IF NOT EXISTS trades (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    token_mint TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    side TEXT NOT NULL,
    price REAL NOT NULL DEFAULT 0,
    volume REAL NOT NULL DEFAULT 0,
    token_amount REAL NOT NULL DEFAULT 0,
    signature TEXT NOT NULL,
    trader TEXT,
    bonding_curve_key TEXT,
    market_cap_sol REAL,
    new_token_balance REAL,
    sol_reserve REAL,
    token_reserve REAL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_trades_identity
    ON trades(token_mint, timestamp, signature);
CREATE INDEX IF NOT EXISTS idx_trades_token_mint ON trades(token_mint, timestamp);
CREATE INDEX IF NOT EXISTS idx_trades_timestamp ON trades(timestamp);
CREATE INDEX IF NOT EXISTS idx_trades_side ON trades(side);
CREATE INDEX IF NOT EXISTS idx_trades_trader ON trades(trader);

CREATE TABLE IF NOT EXISTS subscriptions (
    mint TEXT PRIMARY KEY,
    subscribe_time INTEGER NOT NULL,
    status TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_subscriptions_time ON subscriptions(subscribe_time);
CREATE INDEX IF NOT EXISTS idx_subscriptions_status ON subscriptions(status);

CREATE TABLE IF NOT EXISTS settings (
    id TEXT PRIMARY KEY,
    auto_resubscribe INTEGER NOT NULL DEFAULT 0,
    detailed_logging INTEGER NOT NULL DEFAULT 0,
    prune_threshold_minutes INTEGER NOT NULL DEFAULT 0,
    watch_similar_names INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS watch_metrics (
    mint TEXT PRIMARY KEY,
    create_time INTEGER NOT NULL,
    watch_start_time INTEGER NOT NULL DEFAULT 0,
    peak_volume REAL NOT NULL DEFAULT 0,
    peak_price REAL NOT NULL DEFAULT 0,
    last_price REAL,
    volume_velocity TEXT NOT NULL DEFAULT '[]',
    trade_frequency TEXT NOT NULL DEFAULT '[]',
    buy_wall_strength REAL NOT NULL DEFAULT 0,
    last_trade_time INTEGER NOT NULL DEFAULT 0,
    manipulation_score REAL NOT NULL DEFAULT 0,
    wallet_concentration TEXT NOT NULL DEFAULT '{}',
    last_update INTEGER NOT NULL
);
"""

# Wiped by clear_all(), in dependency order.
DATA_TABLES = ("trades", "tokens", "subscriptions", "settings", "watch_metrics")


class DatabaseError(Exception):
    """Raised when the database cannot be opened or used."""
    pass


class DatabaseConfig(BaseModel):
    """SQLite database configuration."""

    model_config = ConfigDict(frozen=True)

    path: str = os.environ.get("PUMPWATCH_DB_PATH", "pumpwatch.sqlite3")
    timeout: float = 30.0
    busy_timeout_ms: int = 5000
    wal: bool = True


class Connection:
    """
    Thin query interface over an open aiosqlite connection.

    Handed out by Database.connection() and Database.transaction().
    Repositories accept one of these as ``conn`` to take part in a
    caller's transaction.
    """

    def __init__(self, raw: aiosqlite.Connection) -> None:
        self._raw = raw

    async def execute(self, query: str, *args: Any) -> int:
        """Execute a statement and return the number of affected rows."""
        async with self._raw.execute(query, args) as cursor:
            return cursor.rowcount

    async def insert(self, query: str, *args: Any) -> Optional[int]:
        """Execute an INSERT and return the new rowid (None if ignored)."""
        async with self._raw.execute(query, args) as cursor:
            if cursor.rowcount == 0:
                return None
            return cursor.lastrowid

    async def fetch(self, query: str, *args: Any) -> list[aiosqlite.Row]:
        """Fetch all rows matching query."""
        async with self._raw.execute(query, args) as cursor:
            return list(await cursor.fetchall())

    async def fetchrow(self, query: str, *args: Any) -> Optional[aiosqlite.Row]:
        """Fetch a single row."""
        async with self._raw.execute(query, args) as cursor:
            return await cursor.fetchone()

    async def fetchval(self, query: str, *args: Any) -> Any:
        """Fetch the first column of the first row."""
        row = await self.fetchrow(query, *args)
        return row[0] if row is not None else None


class Database:
    """
    Async SQLite connection manager.

    Usage:
        db = Database(DatabaseConfig(path="pumpwatch.sqlite3"))
        await db.initialize()

        rows = await db.fetch("SELECT * FROM tokens WHERE watch_status = ?", "watched")

        async with db.transaction() as conn:
            await conn.execute("INSERT INTO tokens ...")
            # Commits on success, rolls back on exception

        await db.close()
    """

    def __init__(self, config: Optional[DatabaseConfig] = None) -> None:
        self.config = config or DatabaseConfig()
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        """Check if the database file is open."""
        return self._conn is not None

    async def initialize(self) -> None:
        """
        Open the database file and create the schema.

        Raises DatabaseError if the file cannot be opened. The app refuses
        to start without a usable database.
        """
        if self._conn is not None:
            return

        try:
            # isolation_level=None: autocommit, transactions are explicit
            conn = await aiosqlite.connect(
                self.config.path,
                timeout=self.config.timeout,
                isolation_level=None,
            )
            conn.row_factory = aiosqlite.Row
            await conn.execute(f"PRAGMA busy_timeout={int(self.config.busy_timeout_ms)}")
            if self.config.wal and self.config.path != ":memory:":
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA synchronous=NORMAL")
            await conn.executescript(SCHEMA)
        except (aiosqlite.Error, OSError) as e:
            raise DatabaseError(f"Failed to open database at {self.config.path}: {e}") from e

        self._conn = conn
        logger.info(f"Database opened ({self.config.path})")

    async def close(self) -> None:
        """Close the database file."""
        if self._conn is not None:
            async with self._lock:
                await self._conn.close()
                self._conn = None
            logger.info("Database closed")

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[Connection]:
        """
        Get exclusive access to the connection without a transaction.

        Each statement autocommits. Use for reads and single writes.
        """
        async with self._lock:
            yield Connection(self._require_conn())

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Connection]:
        """
        Get the connection inside a write transaction.

        Commits on successful exit, rolls back on exception (including
        cancellation), then re-raises.
        """
        async with self._lock:
            raw = self._require_conn()
            await raw.execute("BEGIN IMMEDIATE")
            try:
                yield Connection(raw)
            except BaseException:
                await raw.rollback()
                raise
            else:
                await raw.commit()

    async def health_check(self) -> bool:
        """Return True if the database answers a trivial query."""
        if not self.is_connected:
            return False
        try:
            return await self.fetchval("SELECT 1") == 1
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    async def clear_all(self) -> None:
        """
        Delete every row from every data table.

        This is the user-facing wipe. Trigger groups are stored outside
        the database and are not affected.
        """
        async with self.transaction() as conn:
            for table in DATA_TABLES:
                await conn.execute(f"DELETE FROM {table}")
        logger.info("Database cleared")

    async def execute(self, query: str, *args: Any) -> int:
        """Execute a statement and return the affected row count."""
        async with self.connection() as conn:
            return await conn.execute(query, *args)

    async def insert(self, query: str, *args: Any) -> Optional[int]:
        """Execute an INSERT and return the new rowid."""
        async with self.connection() as conn:
            return await conn.insert(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[aiosqlite.Row]:
        """Fetch all rows matching query."""
        async with self.connection() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> Optional[aiosqlite.Row]:
        """Fetch a single row."""
        async with self.connection() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        """Fetch a single value."""
        async with self.connection() as conn:
            return await conn.fetchval(query, *args)
