"""Repository factory to abstract the DB backend."""
from __future__ import annotations

from typing import Any
import aiosqlite

from lifesync.db.repositories.entities import SqliteEntityRepository
from lifesync.db.repositories.issues import SqliteSyncIssueRepository
from lifesync.db.repositories.sync_runs import SqliteSyncRunRepository


def _require_sqlite(db: Any) -> aiosqlite.Connection:
    if not isinstance(db, aiosqlite.Connection):
        raise TypeError(f"Unsupported database connection type: {type(db)}")
    return db

def get_entity_repository(db: Any):
    return SqliteEntityRepository(_require_sqlite(db))

def get_issue_repository(db: Any):
    return SqliteSyncIssueRepository(_require_sqlite(db))

def get_sync_run_repository(db: Any):
    return SqliteSyncRunRepository(_require_sqlite(db))
