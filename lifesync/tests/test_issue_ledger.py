import unittest
from unittest.mock import patch

import aiosqlite

from lifesync.db.repositories.entities import SqliteEntityRepository
from lifesync.db.sqlite_migrations import run_migrations
from lifesync.sync.errors import IssueNotFoundError, ResolutionError
from lifesync.sync.integrity import IntegrityChecker
from lifesync.sync.ledger import IssueLedger, identity_key, new_issue


def _suggestion(entity_id: str = "T-1", goal_id: str = "G-1", **overrides):
    fields = {
        "type": "unlinked_item",
        "severity": "info",
        "entityType": "task",
        "entityId": entity_id,
        "entityTitle": "Evening jog",
        "linkedEntityType": "weeklyGoal",
        "suggestedGoalId": goal_id,
        "suggestedGoalTitle": "Run 3x/week",
        "confidence": 0.6,
        "layer": 2,
    }
    fields.update(overrides)
    return new_issue(**fields)


class IdentityKeyTests(unittest.TestCase):
    def test_layer_two_ignores_linked_entity(self) -> None:
        self.assertEqual(identity_key(2, "task", "T-1", "G-1"), "task:T-1")
        self.assertEqual(identity_key(3, "task", "T-1", "G-1"), "task:T-1:G-1")
        self.assertEqual(identity_key(1, "meal", "M-1"), "meal:M-1:")


class IssueLedgerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.entities = SqliteEntityRepository(self.db)
        self.ledger = IssueLedger(self.db)
        await self.entities.insert("weeklyGoal", {"id": "G-1", "title": "Run 3x/week", "aspect": "fitness"})
        await self.entities.insert("task", {"id": "T-1", "title": "Evening jog", "aspect": "fitness"})

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_record_issues_dedupes_within_batch_and_against_store(self) -> None:
        first = await self.ledger.record_issues(2, [_suggestion(), _suggestion()])
        second = await self.ledger.record_issues(2, [_suggestion(goal_id="G-2")])

        self.assertEqual(len(first), 1)
        self.assertEqual(second, [])
        issues = await self.ledger.get_unresolved_issues()
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].id, first[0].id)
        self.assertEqual(issues[0].detectedAt, first[0].detectedAt)

    async def test_linked_sets_link_and_resolves_atomically(self) -> None:
        [issue] = await self.ledger.record_issues(2, [_suggestion()])

        resolved = await self.ledger.resolve_issue(issue.id, "linked")

        self.assertEqual(resolved.resolution, "linked")
        self.assertIsNotNone(resolved.resolvedAt)
        task = await self.entities.get("task", "T-1")
        self.assertEqual(task["weekly_goal_id"], "G-1")
        self.assertEqual(await self.ledger.get_unresolved_issues(), [])

    async def test_linked_with_explicit_goal_overrides_suggestion(self) -> None:
        await self.entities.insert("weeklyGoal", {"id": "G-2", "title": "Sleep 8h", "aspect": "fitness"})
        [issue] = await self.ledger.record_issues(2, [_suggestion()])

        await self.ledger.resolve_issue(issue.id, "linked", new_link_id="G-2")

        task = await self.entities.get("task", "T-1")
        self.assertEqual(task["weekly_goal_id"], "G-2")

    async def test_linked_to_missing_goal_leaves_issue_open(self) -> None:
        [issue] = await self.ledger.record_issues(2, [_suggestion(goal_id="G-gone")])

        with self.assertRaises(ResolutionError):
            await self.ledger.resolve_issue(issue.id, "linked")

        task = await self.entities.get("task", "T-1")
        self.assertIsNone(task["weekly_goal_id"])
        self.assertEqual(len(await self.ledger.get_unresolved_issues()), 1)

    async def test_failure_after_entity_update_rolls_back_both(self) -> None:
        [issue] = await self.ledger.record_issues(2, [_suggestion()])

        with patch.object(self.ledger.issue_repo, "mark_resolved", side_effect=RuntimeError("disk full")):
            with self.assertRaises(RuntimeError):
                await self.ledger.resolve_issue(issue.id, "linked")

        task = await self.entities.get("task", "T-1")
        self.assertIsNone(task["weekly_goal_id"])
        still_open = await self.ledger.get_unresolved_issues()
        self.assertEqual([i.id for i in still_open], [issue.id])

    async def test_unlinked_clears_orphaned_reference(self) -> None:
        await self.entities.update("task", "T-1", {"weekly_goal_id": "G-gone"})
        await IntegrityChecker(self.db, self.ledger).run_integrity_check()
        [issue] = await self.ledger.get_unresolved_issues(layer=1)

        await self.ledger.resolve_issue(issue.id, "unlinked")

        task = await self.entities.get("task", "T-1")
        self.assertIsNone(task["weekly_goal_id"])
        stats = await IntegrityChecker(self.db, self.ledger).run_integrity_check()
        self.assertEqual(stats["issuesFound"], 0)

    async def test_deleted_removes_entity_and_closes_its_other_issues(self) -> None:
        await self.entities.update("task", "T-1", {"parent_task_id": "T-gone"})
        [orphan] = (await IntegrityChecker(self.db, self.ledger).run_integrity_check())["issues"]
        [suggestion] = await self.ledger.record_issues(2, [_suggestion()])

        await self.ledger.resolve_issue(orphan.id, "deleted")

        self.assertIsNone(await self.entities.get("task", "T-1"))
        self.assertEqual(await self.ledger.get_unresolved_issues(), [])
        closed = await self.ledger.get_issue(suggestion.id)
        self.assertEqual(closed.resolution, "deleted")
        stats = await IntegrityChecker(self.db, self.ledger).run_integrity_check()
        self.assertEqual(stats["newIssues"], 0)

    async def test_ignored_leaves_entity_untouched(self) -> None:
        [issue] = await self.ledger.record_issues(2, [_suggestion()])

        dismissed = await self.ledger.dismiss_issue(issue.id)

        self.assertEqual(dismissed.resolution, "ignored")
        task = await self.entities.get("task", "T-1")
        self.assertIsNone(task["weekly_goal_id"])
        reopened = await self.ledger.record_issues(2, [_suggestion()])
        self.assertEqual(len(reopened), 1)
        self.assertNotEqual(reopened[0].id, issue.id)

    async def test_resolving_missing_entity_raises_and_keeps_issue(self) -> None:
        [issue] = await self.ledger.record_issues(2, [_suggestion()])
        await self.entities.delete("task", "T-1")

        with self.assertRaises(ResolutionError):
            await self.ledger.resolve_issue(issue.id, "unlinked")

        self.assertEqual(len(await self.ledger.get_unresolved_issues()), 1)

    async def test_unknown_issue_and_double_resolution(self) -> None:
        [issue] = await self.ledger.record_issues(2, [_suggestion()])

        with self.assertRaises(IssueNotFoundError):
            await self.ledger.resolve_issue("SI-missing", "ignored")
        with self.assertRaises(ResolutionError):
            await self.ledger.resolve_issue(issue.id, "archived")

        await self.ledger.dismiss_issue(issue.id)
        with self.assertRaises(ResolutionError):
            await self.ledger.dismiss_issue(issue.id)

    async def test_severity_and_entity_queries(self) -> None:
        await self.ledger.record_issues(2, [_suggestion()])
        await self.ledger.record_issues(3, [
            _suggestion(type="misaligned_task", severity="warning", layer=3, linkedEntityId="G-1", suggestedGoalId=None),
        ])

        warnings = await self.ledger.get_issues_by_severity("warning")
        for_task = await self.ledger.get_issues_for_entity("task", "T-1")

        self.assertEqual([i.layer for i in warnings], [3])
        self.assertEqual({i.layer for i in for_task}, {2, 3})


if __name__ == "__main__":
    unittest.main()
