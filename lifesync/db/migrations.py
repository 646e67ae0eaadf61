"""Database migration dispatcher.

Routes migration calls to the backend implementation.
"""
from __future__ import annotations

import logging
from typing import Any

import aiosqlite

from lifesync.db import sqlite_migrations

logger = logging.getLogger("lifesync.db")


async def run_migrations(db: Any) -> None:
    """Run migrations on the provided database connection."""
    if isinstance(db, aiosqlite.Connection):
        logger.info("Running SQLite migrations...")
        await sqlite_migrations.run_migrations(db)
        return

    logger.warning(f"Unknown database connection type: {type(db)}")
