import unittest

import aiosqlite

from lifesync.db.repositories.issues import SqliteSyncIssueRepository
from lifesync.db.repositories.sync_runs import SqliteSyncRunRepository
from lifesync.db.sqlite_migrations import run_migrations


def _row(issue_id: str, key: str, layer: int = 2, **overrides) -> dict:
    row = {
        "id": issue_id,
        "identity_key": key,
        "type": "unlinked_item",
        "severity": "info",
        "layer": layer,
        "entity_type": "task",
        "entity_id": key.split(":")[1],
        "entity_title": "Evening jog",
        "description": "",
        "confidence": 0.6,
        "detected_at": "2026-01-01T00:00:00+00:00",
    }
    row.update(overrides)
    return row


class SyncIssueRepositoryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.repo = SqliteSyncIssueRepository(self.db)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_open_identity_key_is_unique_per_layer(self) -> None:
        inserted = await self.repo.bulk_insert([
            _row("SI-1", "task:T-1"),
            _row("SI-2", "task:T-1"),
            _row("SI-3", "task:T-1", layer=3),
        ])

        self.assertEqual(inserted, 2)
        self.assertEqual(await self.repo.open_identity_keys(2), {"task:T-1"})
        self.assertEqual(await self.repo.count_unresolved(), 2)

    async def test_resolved_key_can_be_reopened(self) -> None:
        await self.repo.bulk_insert([_row("SI-1", "task:T-1")])
        self.assertTrue(await self.repo.mark_resolved("SI-1", "ignored", "2026-01-02T00:00:00+00:00"))

        inserted = await self.repo.bulk_insert([_row("SI-2", "task:T-1")])

        self.assertEqual(inserted, 1)
        unresolved = await self.repo.list_unresolved(layer=2)
        self.assertEqual([r["id"] for r in unresolved], ["SI-2"])

    async def test_mark_resolved_only_touches_open_issues(self) -> None:
        await self.repo.bulk_insert([_row("SI-1", "task:T-1")])

        self.assertTrue(await self.repo.mark_resolved("SI-1", "linked", "2026-01-02T00:00:00+00:00"))
        self.assertFalse(await self.repo.mark_resolved("SI-1", "ignored", "2026-01-03T00:00:00+00:00"))
        row = await self.repo.get_by_id("SI-1")
        self.assertEqual(row["resolution"], "linked")

    async def test_filters_and_entity_lookup(self) -> None:
        await self.repo.bulk_insert([
            _row("SI-1", "task:T-1"),
            _row("SI-2", "task:T-2", severity="warning", layer=3, type="misaligned_task"),
            _row("SI-3", "task:T-1:G-9", layer=1, severity="critical", type="orphaned_link", entity_id="T-1"),
        ])

        warnings = await self.repo.list_unresolved(severity="warning")
        self.assertEqual([r["id"] for r in warnings], ["SI-2"])
        for_entity = await self.repo.list_unresolved_for_entity("task", "T-1")
        self.assertEqual({r["id"] for r in for_entity}, {"SI-1", "SI-3"})

        closed = await self.repo.resolve_open_for_entity("task", "T-1", "deleted", "2026-01-02T00:00:00+00:00")
        self.assertEqual(closed, 2)
        self.assertEqual(await self.repo.count_unresolved(), 1)


class SyncRunRepositoryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.repo = SqliteSyncRunRepository(self.db)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_list_recent_returns_newest_first(self) -> None:
        await self.repo.add({"id": "SR-1", "runType": "manual", "startedAt": "2026-01-01T00:00:00+00:00", "totalIssues": 1})
        await self.repo.add({"id": "SR-2", "runType": "realtime", "startedAt": "2026-01-02T00:00:00+00:00", "totalIssues": 0})

        runs = await self.repo.list_recent(limit=5)

        self.assertEqual([r["id"] for r in runs], ["SR-2", "SR-1"])
        self.assertEqual(runs[1]["totalIssues"], 1)


if __name__ == "__main__":
    unittest.main()
