"""Repository package for database access."""

from .entities import ENTITY_TABLES, SqliteEntityRepository
from .issues import SqliteSyncIssueRepository
from .sync_runs import SqliteSyncRunRepository

__all__ = [
    "ENTITY_TABLES",
    "SqliteEntityRepository",
    "SqliteSyncIssueRepository",
    "SqliteSyncRunRepository",
]
