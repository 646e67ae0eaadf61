"""Database connection factory.

Provides singleton async connection to SQLite with WAL mode, plus the
per-connection write lock that serializes store transactions.
"""
from __future__ import annotations

import asyncio
import logging
import os
import weakref
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from lifesync import config

logger = logging.getLogger("lifesync.db")

# Database file location
DB_PATH = Path(os.getenv("LIFESYNC_DB_PATH", str(config.DATA_DIR / "lifesync.db")))

DbConnection = aiosqlite.Connection

_connection: DbConnection | None = None
_write_locks: "weakref.WeakKeyDictionary[aiosqlite.Connection, asyncio.Lock]" = weakref.WeakKeyDictionary()


async def get_connection() -> DbConnection:
    """Return the singleton database connection, creating it if needed."""
    global _connection
    if _connection is not None:
        return _connection

    if config.DB_BACKEND != "sqlite":
        raise ValueError(f"Unsupported database backend: {config.DB_BACKEND}")

    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(str(DB_PATH))
    conn.row_factory = aiosqlite.Row
    # Enable WAL mode for better concurrent read performance
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA busy_timeout=5000")
    logger.info(f"Database connection established: {DB_PATH}")
    _connection = conn
    return _connection


async def close_connection() -> None:
    """Close the database connection."""
    global _connection
    if _connection is not None:
        await _connection.close()
        _connection = None
        logger.info("Database connection closed")


def write_lock(db: aiosqlite.Connection) -> asyncio.Lock:
    """Return the lock guarding writes on this connection."""
    lock = _write_locks.get(db)
    if lock is None:
        lock = asyncio.Lock()
        _write_locks[db] = lock
    return lock


@asynccontextmanager
async def transaction(db: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    """Run a block of writes as one unit: commit on success, roll back on error.

    Repository write methods called inside the block must pass ``commit=False``.
    """
    async with write_lock(db):
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        else:
            await db.commit()
