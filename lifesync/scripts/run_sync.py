#!/usr/bin/env python3
"""Run one sync pass against the local LifeSync database.

Usage:
  python lifesync/scripts/run_sync.py
  python lifesync/scripts/run_sync.py --layers 1
  python lifesync/scripts/run_sync.py --layers 1,2 --no-reasoning --json
"""
from __future__ import annotations

import argparse
import asyncio
import json

import aiosqlite

from lifesync import config
from lifesync.db import connection, migrations
from lifesync.reasoning import OllamaReasoningClient
from lifesync.state_store import SyncStateStore
from lifesync.sync.errors import SyncError
from lifesync.sync.orchestrator import SyncService


def _parse_layers(raw: str) -> set[int]:
    layers = set()
    for token in (raw or "").split(","):
        token = token.strip()
        if not token:
            continue
        if token not in {"1", "2", "3"}:
            raise argparse.ArgumentTypeError(f"Unknown layer: {token}")
        layers.add(int(token))
    return layers or {1, 2, 3}


async def _run(layers: set[int], use_reasoning: bool, as_json: bool) -> int:
    db = await connection.get_connection()
    try:
        await migrations.run_migrations(db)
        service = SyncService(
            db,
            reasoning=OllamaReasoningClient() if use_reasoning else None,
            state_store=SyncStateStore(config.STATE_PATH),
        )
        try:
            result = await service.run_sync(1 in layers, 2 in layers, 3 in layers, run_type="manual")
        except (SyncError, aiosqlite.Error) as e:
            print(f"Sync failed: {e}")
            return 1

        if as_json:
            print(json.dumps(result.model_dump(), indent=2))
        else:
            print(
                f"{result.id}: total={result.totalIssues} new={result.newIssues} "
                f"fixed={result.resolvedIssues} unresolved={result.unresolvedCount} "
                f"duration_ms={result.duration}"
            )
            for issue in service.issues:
                print(f"  [L{issue.layer} {issue.severity}] {issue.entityType} {issue.entityTitle}: {issue.description}")
        return 0
    finally:
        await connection.close_connection()


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--layers", type=_parse_layers, default={1, 2, 3}, help="Comma-separated layers to run (default: 1,2,3)")
    parser.add_argument("--no-reasoning", action="store_true", help="Skip the reasoning service and use rule-based matching only")
    parser.add_argument("--json", action="store_true", help="Print the run result as JSON")
    args = parser.parse_args()
    return asyncio.run(_run(args.layers, not args.no_reasoning, args.json))


if __name__ == "__main__":
    raise SystemExit(main())
