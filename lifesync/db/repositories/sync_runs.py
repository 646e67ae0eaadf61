"""SQLite implementation of SyncRunRepository."""
from __future__ import annotations

import json

import aiosqlite

from lifesync.db.connection import transaction


class SqliteSyncRunRepository:
    """Append-only log of completed sync runs."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def add(self, run: dict) -> None:
        async with transaction(self.db):
            await self.db.execute(
                """INSERT INTO sync_runs (
                    id, run_type, started_at, completed_at, duration_ms,
                    total_issues, new_issues, resolved_issues, result_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    run["id"],
                    run.get("runType", "manual"),
                    run["startedAt"],
                    run.get("completedAt", ""),
                    run.get("duration", 0),
                    run.get("totalIssues", 0),
                    run.get("newIssues", 0),
                    run.get("resolvedIssues", 0),
                    json.dumps(run),
                ),
            )

    async def list_recent(self, limit: int = 20) -> list[dict]:
        async with self.db.execute(
            "SELECT result_json FROM sync_runs ORDER BY started_at DESC LIMIT ?",
            (max(1, limit),),
        ) as cur:
            rows = await cur.fetchall()
        results: list[dict] = []
        for row in rows:
            try:
                payload = json.loads(row[0] or "{}")
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                results.append(payload)
        return results
