import unittest

import aiosqlite

from lifesync.db.repositories.entities import SqliteEntityRepository
from lifesync.db.sqlite_migrations import run_migrations
from lifesync.sync.integrity import IntegrityChecker
from lifesync.sync.ledger import IssueLedger


class IntegrityCheckerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.entities = SqliteEntityRepository(self.db)
        self.ledger = IssueLedger(self.db)
        self.checker = IntegrityChecker(self.db, self.ledger)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_task_with_deleted_goal_reports_critical_orphan(self) -> None:
        await self.entities.insert("task", {"id": "T-1", "title": "Evening jog", "weekly_goal_id": "G1"})

        stats = await self.checker.run_integrity_check(auto_resolve=False)

        self.assertEqual(stats["issuesFound"], 1)
        self.assertEqual(stats["issuesFixed"], 0)
        self.assertEqual(stats["newIssues"], 1)
        issues = await self.ledger.get_unresolved_issues(layer=1)
        self.assertEqual(len(issues), 1)
        issue = issues[0]
        self.assertEqual(issue.type, "orphaned_link")
        self.assertEqual(issue.severity, "critical")
        self.assertEqual(issue.entityId, "T-1")
        self.assertEqual(issue.linkedEntityType, "weeklyGoal")
        self.assertEqual(issue.linkedEntityId, "G1")

    async def test_auto_resolve_clears_optional_link_without_issue(self) -> None:
        await self.entities.insert("training", {"id": "S-1", "type": "strength", "date": "2026-01-05", "linked_goal_id": "G-gone"})

        stats = await self.checker.run_integrity_check(auto_resolve=True)

        self.assertEqual(stats["issuesFixed"], 1)
        self.assertEqual(stats["newIssues"], 0)
        self.assertEqual(await self.ledger.get_unresolved_issues(), [])
        session = await self.entities.get("training", "S-1")
        self.assertIsNone(session["linked_goal_id"])

    async def test_auto_resolve_never_clears_structural_links(self) -> None:
        await self.entities.insert("weeklyGoal", {"id": "W-1", "title": "Ship MVP", "monthly_goal_id": "M-gone"})

        stats = await self.checker.run_integrity_check(auto_resolve=True)

        self.assertEqual(stats["issuesFixed"], 0)
        self.assertEqual(stats["newIssues"], 1)
        goal = await self.entities.get("weeklyGoal", "W-1")
        self.assertEqual(goal["monthly_goal_id"], "M-gone")

    async def test_second_pass_is_idempotent(self) -> None:
        await self.entities.insert("task", {"id": "T-1", "title": "Evening jog", "weekly_goal_id": "G1"})
        await self.entities.insert("meal", {"id": "M-1", "type": "lunch", "date": "2026-01-05", "linked_goal_id": "G2"})

        first = await self.checker.run_integrity_check(auto_resolve=True)
        second = await self.checker.run_integrity_check(auto_resolve=True)

        self.assertEqual(first["issuesFixed"], 1)
        self.assertEqual(second["issuesFixed"], 0)
        self.assertEqual(second["newIssues"], 0)
        self.assertEqual(len(await self.ledger.get_unresolved_issues()), 1)

    async def test_valid_references_produce_nothing(self) -> None:
        await self.entities.insert("yearlyGoal", {"id": "Y-1", "title": "Get fit"})
        await self.entities.insert("monthlyGoal", {"id": "M-1", "title": "Run monthly", "yearly_goal_id": "Y-1"})
        await self.entities.insert("weeklyGoal", {"id": "W-1", "title": "Run 3x/week", "monthly_goal_id": "M-1"})
        await self.entities.insert("task", {"id": "T-1", "title": "Evening jog", "weekly_goal_id": "W-1"})
        await self.entities.insert("task", {"id": "T-2", "title": "Stretch", "parent_task_id": "T-1"})
        await self.entities.insert("scheduleBlock", {"id": "B-1", "title": "Jog slot", "linked_task_id": "T-1"})

        stats = await self.checker.run_integrity_check()

        self.assertEqual(stats["issuesFound"], 0)
        self.assertEqual(stats["newIssues"], 0)

    async def test_dangling_parent_task_is_reported(self) -> None:
        await self.entities.insert("task", {"id": "T-2", "title": "Subtask", "parent_task_id": "T-gone"})

        stats = await self.checker.run_integrity_check(auto_resolve=True)

        self.assertEqual(stats["newIssues"], 1)
        issue = (await self.ledger.get_unresolved_issues())[0]
        self.assertEqual(issue.linkedEntityType, "task")
        self.assertEqual(issue.linkedEntityId, "T-gone")

    async def test_recipe_template_and_shopping_links_are_checked(self) -> None:
        await self.entities.insert("meal", {"id": "M-1", "type": "dinner", "recipe_id": "R-gone"})
        await self.entities.insert("task", {"id": "T-1", "title": "Laundry", "recurrence_template_id": "RT-gone"})
        await self.entities.insert("shoppingItem", {"id": "I-1", "item": "Oats", "list_id": "L-gone"})

        stats = await self.checker.run_integrity_check(auto_resolve=True)

        self.assertEqual(stats["issuesFound"], 3)
        self.assertEqual(stats["issuesFixed"], 2)
        self.assertIsNone((await self.entities.get("meal", "M-1"))["recipe_id"])
        self.assertIsNone((await self.entities.get("task", "T-1"))["recurrence_template_id"])
        issues = await self.ledger.get_unresolved_issues()
        self.assertEqual(len(issues), 1)
        self.assertEqual(issues[0].entityType, "shoppingItem")
        self.assertEqual(issues[0].entityTitle, "Oats")
        self.assertEqual(issues[0].linkedEntityType, "shoppingList")
        self.assertEqual(issues[0].linkedEntityId, "L-gone")

    async def test_journal_goal_list_reports_each_missing_goal(self) -> None:
        await self.entities.insert("weeklyGoal", {"id": "G-1", "title": "Run 3x/week"})
        await self.entities.insert(
            "journal",
            {"id": "J-1", "timestamp": "2026-01-05T08:00:00+00:00", "linked_goal_ids": ["G-1", "G-gone", "G-old"]},
        )

        stats = await self.checker.run_integrity_check(auto_resolve=False)

        self.assertEqual(stats["issuesFound"], 2)
        issues = await self.ledger.get_unresolved_issues(layer=1)
        self.assertEqual(sorted(i.linkedEntityId for i in issues), ["G-gone", "G-old"])
        self.assertEqual(issues[0].entityTitle, "Journal entry from 2026-01-05")

        unlink = next(i for i in issues if i.linkedEntityId == "G-gone")
        await self.ledger.resolve_issue(unlink.id, "unlinked")
        relink = next(i for i in issues if i.linkedEntityId == "G-old")
        await self.entities.insert("weeklyGoal", {"id": "G-2", "title": "Sleep 8h"})
        await self.ledger.resolve_issue(relink.id, "linked", "G-2")

        entry = await self.entities.get("journal", "J-1")
        self.assertEqual(entry["linked_goal_ids"], ["G-1", "G-2"])
        self.assertEqual((await self.checker.run_integrity_check())["issuesFound"], 0)

    async def test_auto_resolve_drops_every_missing_journal_goal(self) -> None:
        await self.entities.insert("weeklyGoal", {"id": "G-1", "title": "Run 3x/week"})
        await self.entities.insert("journal", {"id": "J-1", "linked_goal_ids": ["G-gone", "G-1", "G-old"]})

        stats = await self.checker.run_integrity_check(auto_resolve=True)

        self.assertEqual(stats["issuesFixed"], 2)
        self.assertEqual(stats["newIssues"], 0)
        entry = await self.entities.get("journal", "J-1")
        self.assertEqual(entry["linked_goal_ids"], ["G-1"])


if __name__ == "__main__":
    unittest.main()
