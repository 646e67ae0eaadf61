"""SQLite implementation of the entity accessor (goals, tasks, sessions, meals...)."""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any

import aiosqlite

from lifesync.db.connection import transaction

# entity type -> (table, writable columns)
ENTITY_TABLES: dict[str, tuple[str, tuple[str, ...]]] = {
    "yearlyGoal": (
        "yearly_goals",
        ("aspect", "title", "description", "status", "year"),
    ),
    "monthlyGoal": (
        "monthly_goals",
        ("yearly_goal_id", "aspect", "title", "status", "month"),
    ),
    "weeklyGoal": (
        "weekly_goals",
        ("monthly_goal_id", "aspect", "title", "status", "week"),
    ),
    "task": (
        "tasks",
        (
            "weekly_goal_id", "parent_task_id", "recurrence_template_id", "aspect",
            "title", "notes", "status", "defer_count", "scheduled_date",
        ),
    ),
    "training": (
        "training_sessions",
        ("type", "date", "duration", "intensity", "notes", "linked_goal_id"),
    ),
    "meal": (
        "meals",
        ("type", "date", "description", "cooked", "notes", "linked_goal_id", "recipe_id"),
    ),
    "financial": (
        "financial_snapshots",
        ("date", "savings_balance", "net_worth", "on_track", "notes", "linked_goal_id"),
    ),
    "scheduleBlock": (
        "schedule_blocks",
        ("title", "date", "start_time", "end_time", "linked_task_id", "linked_goal_id"),
    ),
    "recipe": ("recipes", ("title", "description", "servings", "notes")),
    "recurrenceTemplate": (
        "recurrence_templates",
        ("title", "aspect", "frequency", "active"),
    ),
    "journal": (
        "journal_entries",
        ("timestamp", "content", "mood", "linked_goal_ids"),
    ),
    "shoppingList": ("shopping_lists", ("title", "status")),
    "shoppingItem": (
        "shopping_items",
        ("list_id", "item", "quantity", "checked"),
    ),
}

# columns stored as JSON text (lists of ids)
_JSON_COLUMNS = frozenset({"linked_goal_ids"})

_QUERYABLE_EXTRA = ("id", "created_at", "updated_at")


def _table_for(entity_type: str) -> tuple[str, tuple[str, ...]]:
    try:
        return ENTITY_TABLES[entity_type]
    except KeyError:
        raise ValueError(f"Unknown entity type: {entity_type}") from None


def _checked_field(entity_type: str, field: str) -> str:
    _, columns = _table_for(entity_type)
    if field not in columns and field not in _QUERYABLE_EXTRA:
        raise ValueError(f"Unknown field {field!r} for entity type {entity_type}")
    return field


def _encode(values: dict) -> dict:
    encoded = dict(values)
    for col in _JSON_COLUMNS.intersection(encoded):
        value = encoded[col]
        if value is None:
            continue
        encoded[col] = json.dumps(list(value) if isinstance(value, (list, tuple, set)) else [value])
    return encoded


def _decode(row: aiosqlite.Row) -> dict:
    data = dict(row)
    for col in _JSON_COLUMNS.intersection(data):
        try:
            data[col] = json.loads(data[col]) if data[col] else []
        except (TypeError, json.JSONDecodeError):
            data[col] = []
    return data


class SqliteEntityRepository:
    """Typed read/query/update access over every entity table."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get(self, entity_type: str, entity_id: str) -> dict | None:
        table, _ = _table_for(entity_type)
        async with self.db.execute(f"SELECT * FROM {table} WHERE id = ?", (entity_id,)) as cur:
            row = await cur.fetchone()
            return _decode(row) if row else None

    async def exists(self, entity_type: str, entity_id: str) -> bool:
        table, _ = _table_for(entity_type)
        async with self.db.execute(f"SELECT 1 FROM {table} WHERE id = ?", (entity_id,)) as cur:
            return await cur.fetchone() is not None

    async def list_all(self, entity_type: str) -> list[dict]:
        table, _ = _table_for(entity_type)
        async with self.db.execute(f"SELECT * FROM {table} ORDER BY created_at, id") as cur:
            return [_decode(r) for r in await cur.fetchall()]

    async def list_ids(self, entity_type: str) -> set[str]:
        table, _ = _table_for(entity_type)
        async with self.db.execute(f"SELECT id FROM {table}") as cur:
            return {str(r[0]) for r in await cur.fetchall()}

    async def query_by_field(self, entity_type: str, field: str, value: Any) -> list[dict]:
        """Rows where ``field`` equals ``value``; ``None`` matches empty links too."""
        table, _ = _table_for(entity_type)
        column = _checked_field(entity_type, field)
        if value is None:
            query = f"SELECT * FROM {table} WHERE {column} IS NULL OR {column} = '' ORDER BY created_at, id"
            params: tuple[Any, ...] = ()
        else:
            query = f"SELECT * FROM {table} WHERE {column} = ? ORDER BY created_at, id"
            params = (value,)
        async with self.db.execute(query, params) as cur:
            return [_decode(r) for r in await cur.fetchall()]

    async def query_by_status(self, entity_type: str, status: str) -> list[dict]:
        return await self.query_by_field(entity_type, "status", status)

    async def insert(self, entity_type: str, data: dict, *, commit: bool = True) -> dict:
        table, columns = _table_for(entity_type)
        now = datetime.now(timezone.utc).isoformat()
        unknown = set(data) - set(columns) - set(_QUERYABLE_EXTRA)
        if unknown:
            raise ValueError(f"Unknown fields for {entity_type}: {sorted(unknown)}")
        row = {
            "id": str(data.get("id") or uuid.uuid4().hex),
            **{col: data[col] for col in columns if col in data},
            "created_at": data.get("created_at") or now,
            "updated_at": data.get("updated_at") or now,
        }
        values = tuple(_encode(row).values())
        names = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        sql = f"INSERT INTO {table} ({names}) VALUES ({placeholders})"
        if commit:
            async with transaction(self.db):
                await self.db.execute(sql, values)
        else:
            await self.db.execute(sql, values)
        return row

    async def update(self, entity_type: str, entity_id: str, patch: dict, *, commit: bool = True) -> bool:
        """Apply ``patch`` to one record. Returns False when the record does not exist."""
        table, columns = _table_for(entity_type)
        if not patch:
            return await self.exists(entity_type, entity_id)
        unknown = set(patch) - set(columns)
        if unknown:
            raise ValueError(f"Unknown fields for {entity_type}: {sorted(unknown)}")
        assignments = ", ".join(f"{col} = ?" for col in patch)
        params = (*_encode(patch).values(), datetime.now(timezone.utc).isoformat(), entity_id)
        sql = f"UPDATE {table} SET {assignments}, updated_at = ? WHERE id = ?"
        if commit:
            async with transaction(self.db):
                cur = await self.db.execute(sql, params)
        else:
            cur = await self.db.execute(sql, params)
        return (cur.rowcount or 0) > 0

    async def delete(self, entity_type: str, entity_id: str, *, commit: bool = True) -> bool:
        table, _ = _table_for(entity_type)
        sql = f"DELETE FROM {table} WHERE id = ?"
        if commit:
            async with transaction(self.db):
                cur = await self.db.execute(sql, (entity_id,))
        else:
            cur = await self.db.execute(sql, (entity_id,))
        return (cur.rowcount or 0) > 0
