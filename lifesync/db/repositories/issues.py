"""SQLite implementation of SyncIssueRepository."""
from __future__ import annotations

from typing import Any

import aiosqlite

from lifesync.db.connection import transaction

_ISSUE_COLUMNS = (
    "id", "identity_key", "type", "severity", "layer",
    "entity_type", "entity_id", "entity_title",
    "linked_entity_type", "linked_entity_id",
    "suggested_goal_id", "suggested_goal_title",
    "description", "suggestion", "confidence",
    "detected_at", "resolved_at", "resolution",
)


class SqliteSyncIssueRepository:
    """Persisted sync issues with an open/resolved lifecycle."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get_by_id(self, issue_id: str) -> dict | None:
        async with self.db.execute("SELECT * FROM sync_issues WHERE id = ?", (issue_id,)) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def list_unresolved(
        self,
        layer: int | None = None,
        severity: str | None = None,
    ) -> list[dict]:
        clauses = ["resolved_at IS NULL"]
        params: list[Any] = []
        if layer is not None:
            clauses.append("layer = ?")
            params.append(layer)
        if severity:
            clauses.append("severity = ?")
            params.append(severity)
        query = f"""SELECT * FROM sync_issues
                    WHERE {' AND '.join(clauses)}
                    ORDER BY detected_at DESC, id"""
        async with self.db.execute(query, tuple(params)) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def list_unresolved_for_entity(self, entity_type: str, entity_id: str) -> list[dict]:
        async with self.db.execute(
            """SELECT * FROM sync_issues
               WHERE entity_type = ? AND entity_id = ? AND resolved_at IS NULL
               ORDER BY detected_at DESC, id""",
            (entity_type, entity_id),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def open_identity_keys(self, layer: int) -> set[str]:
        async with self.db.execute(
            "SELECT identity_key FROM sync_issues WHERE layer = ? AND resolved_at IS NULL",
            (layer,),
        ) as cur:
            return {str(r[0]) for r in await cur.fetchall()}

    async def count_unresolved(self) -> int:
        async with self.db.execute("SELECT COUNT(*) FROM sync_issues WHERE resolved_at IS NULL") as cur:
            row = await cur.fetchone()
            return int(row[0]) if row else 0

    async def bulk_insert(self, rows: list[dict], *, commit: bool = True) -> int:
        """Insert issue rows, skipping any that collide with an open identity key."""
        if not rows:
            return 0
        placeholders = ", ".join("?" for _ in _ISSUE_COLUMNS)
        sql = f"INSERT OR IGNORE INTO sync_issues ({', '.join(_ISSUE_COLUMNS)}) VALUES ({placeholders})"

        async def _insert() -> int:
            inserted = 0
            for row in rows:
                cur = await self.db.execute(sql, tuple(row.get(col) for col in _ISSUE_COLUMNS))
                inserted += max(0, cur.rowcount or 0)
            return inserted

        if commit:
            async with transaction(self.db):
                return await _insert()
        return await _insert()

    async def mark_resolved(
        self,
        issue_id: str,
        resolution: str,
        resolved_at: str,
        *,
        commit: bool = True,
    ) -> bool:
        sql = """UPDATE sync_issues SET resolved_at = ?, resolution = ?
                 WHERE id = ? AND resolved_at IS NULL"""
        params = (resolved_at, resolution, issue_id)
        if commit:
            async with transaction(self.db):
                cur = await self.db.execute(sql, params)
        else:
            cur = await self.db.execute(sql, params)
        return (cur.rowcount or 0) > 0

    async def resolve_open_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        resolution: str,
        resolved_at: str,
        *,
        commit: bool = True,
    ) -> int:
        sql = """UPDATE sync_issues SET resolved_at = ?, resolution = ?
                 WHERE entity_type = ? AND entity_id = ? AND resolved_at IS NULL"""
        params = (resolved_at, resolution, entity_type, entity_id)
        if commit:
            async with transaction(self.db):
                cur = await self.db.execute(sql, params)
        else:
            cur = await self.db.execute(sql, params)
        return max(0, cur.rowcount or 0)
