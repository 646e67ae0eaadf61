import argparse
import contextlib
import io
import json
import sqlite3
import unittest
from unittest.mock import AsyncMock, patch

import aiosqlite

from lifesync.db import connection
from lifesync.db.repositories.entities import SqliteEntityRepository
from lifesync.db.sqlite_migrations import run_migrations
from lifesync.scripts import run_sync
from lifesync.sync.orchestrator import SyncService


class ParseLayersTests(unittest.TestCase):
    def test_parses_and_defaults(self) -> None:
        self.assertEqual(run_sync._parse_layers("1, 3"), {1, 3})
        self.assertEqual(run_sync._parse_layers(""), {1, 2, 3})
        with self.assertRaises(argparse.ArgumentTypeError):
            run_sync._parse_layers("4")


class RunSyncScriptTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.close = AsyncMock()
        self._patches = [
            patch.object(connection, "get_connection", AsyncMock(return_value=self.db)),
            patch.object(connection, "close_connection", self.close),
            patch.object(run_sync.config, "STATE_PATH", None),
        ]
        for p in self._patches:
            p.start()

    async def asyncTearDown(self) -> None:
        for p in self._patches:
            p.stop()
        await self.db.close()

    async def test_prints_json_result_and_closes_connection(self) -> None:
        entities = SqliteEntityRepository(self.db)
        await entities.insert("task", {"id": "T-1", "title": "Evening jog", "weekly_goal_id": "G-gone"})
        out = io.StringIO()

        with contextlib.redirect_stdout(out):
            code = await run_sync._run({1}, use_reasoning=False, as_json=True)

        self.assertEqual(code, 0)
        payload = json.loads(out.getvalue())
        self.assertEqual(payload["layer1"]["issuesFound"], 1)
        self.close.assert_awaited_once()

    async def test_store_error_is_reported_and_connection_closed(self) -> None:
        out = io.StringIO()
        failing = AsyncMock(side_effect=sqlite3.OperationalError("database is locked"))

        with patch.object(SyncService, "run_sync", failing), contextlib.redirect_stdout(out):
            code = await run_sync._run({1, 2, 3}, use_reasoning=False, as_json=False)

        self.assertEqual(code, 1)
        self.assertIn("database is locked", out.getvalue())
        self.close.assert_awaited_once()

    async def test_unexpected_error_still_closes_connection(self) -> None:
        failing = AsyncMock(side_effect=RuntimeError("boom"))

        with patch.object(SyncService, "run_sync", failing):
            with self.assertRaises(RuntimeError):
                await run_sync._run({1}, use_reasoning=False, as_json=False)

        self.close.assert_awaited_once()


if __name__ == "__main__":
    unittest.main()
