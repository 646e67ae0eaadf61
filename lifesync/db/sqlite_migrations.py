"""Database schema creation and versioning.

All CREATE TABLE statements for the entity store and the sync ledger.
Uses IF NOT EXISTS for idempotent runs.

Entity references (goal ids, parent task ids) are plain TEXT columns, not
SQL foreign keys: dangling references are what the integrity layer detects.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("lifesync.db")

SCHEMA_VERSION = 3

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Goal hierarchy ──────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS yearly_goals (
    id          TEXT PRIMARY KEY,
    aspect      TEXT DEFAULT '',
    title       TEXT NOT NULL,
    description TEXT DEFAULT '',
    status      TEXT DEFAULT 'active',
    year        INTEGER,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS monthly_goals (
    id             TEXT PRIMARY KEY,
    yearly_goal_id TEXT,
    aspect         TEXT DEFAULT '',
    title          TEXT NOT NULL,
    status         TEXT DEFAULT 'active',
    month          TEXT DEFAULT '',
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_monthly_goals_yearly ON monthly_goals(yearly_goal_id);

CREATE TABLE IF NOT EXISTS weekly_goals (
    id              TEXT PRIMARY KEY,
    monthly_goal_id TEXT,
    aspect          TEXT DEFAULT '',
    title           TEXT NOT NULL,
    status          TEXT DEFAULT 'active',
    week            TEXT DEFAULT '',
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_weekly_goals_monthly ON weekly_goals(monthly_goal_id);
CREATE INDEX IF NOT EXISTS idx_weekly_goals_status  ON weekly_goals(status);

-- ── 2. Tasks ───────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS tasks (
    id             TEXT PRIMARY KEY,
    weekly_goal_id TEXT,
    parent_task_id TEXT,
    recurrence_template_id TEXT,
    aspect         TEXT DEFAULT '',
    title          TEXT NOT NULL,
    notes          TEXT DEFAULT '',
    status         TEXT DEFAULT 'pending',
    defer_count    INTEGER DEFAULT 0,
    scheduled_date TEXT DEFAULT '',
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_weekly_goal ON tasks(weekly_goal_id);
CREATE INDEX IF NOT EXISTS idx_tasks_status      ON tasks(status);

-- ── 3. Tracked activities ──────────────────────────────────────────
CREATE TABLE IF NOT EXISTS training_sessions (
    id             TEXT PRIMARY KEY,
    type           TEXT DEFAULT 'other',
    date           TEXT DEFAULT '',
    duration       INTEGER DEFAULT 0,
    intensity      INTEGER DEFAULT 0,
    notes          TEXT DEFAULT '',
    linked_goal_id TEXT,
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS meals (
    id             TEXT PRIMARY KEY,
    type           TEXT DEFAULT 'dinner',
    date           TEXT DEFAULT '',
    description    TEXT DEFAULT '',
    cooked         INTEGER DEFAULT 0,
    notes          TEXT DEFAULT '',
    linked_goal_id TEXT,
    recipe_id      TEXT,
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS financial_snapshots (
    id              TEXT PRIMARY KEY,
    date            TEXT DEFAULT '',
    savings_balance REAL,
    net_worth       REAL,
    on_track        INTEGER DEFAULT 1,
    notes           TEXT DEFAULT '',
    linked_goal_id  TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS schedule_blocks (
    id             TEXT PRIMARY KEY,
    title          TEXT NOT NULL,
    date           TEXT DEFAULT '',
    start_time     TEXT DEFAULT '',
    end_time       TEXT DEFAULT '',
    linked_task_id TEXT,
    linked_goal_id TEXT,
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL
);

-- ── 4. Recipes, recurrence, journal, shopping ──────────────────────
CREATE TABLE IF NOT EXISTS recipes (
    id          TEXT PRIMARY KEY,
    title       TEXT NOT NULL,
    description TEXT DEFAULT '',
    servings    INTEGER,
    notes       TEXT DEFAULT '',
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS recurrence_templates (
    id         TEXT PRIMARY KEY,
    title      TEXT NOT NULL,
    aspect     TEXT DEFAULT '',
    frequency  TEXT DEFAULT 'weekly',
    active     INTEGER DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS journal_entries (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT DEFAULT '',
    content         TEXT DEFAULT '',
    mood            INTEGER,
    linked_goal_ids TEXT DEFAULT '[]',  -- JSON array of weekly goal ids
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS shopping_lists (
    id         TEXT PRIMARY KEY,
    title      TEXT NOT NULL,
    status     TEXT DEFAULT 'active',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS shopping_items (
    id         TEXT PRIMARY KEY,
    list_id    TEXT,
    item       TEXT NOT NULL,
    quantity   TEXT DEFAULT '',
    checked    INTEGER DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_shopping_items_list ON shopping_items(list_id);

-- ── 5. Sync ledger ─────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS sync_issues (
    id                   TEXT PRIMARY KEY,
    identity_key         TEXT NOT NULL,
    type                 TEXT NOT NULL,
    severity             TEXT NOT NULL,
    layer                INTEGER NOT NULL,
    entity_type          TEXT NOT NULL,
    entity_id            TEXT NOT NULL,
    entity_title         TEXT DEFAULT '',
    linked_entity_type   TEXT,
    linked_entity_id     TEXT,
    suggested_goal_id    TEXT,
    suggested_goal_title TEXT,
    description          TEXT DEFAULT '',
    suggestion           TEXT,
    confidence           REAL DEFAULT 1.0,
    detected_at          TEXT NOT NULL,
    resolved_at          TEXT,
    resolution           TEXT
);

CREATE INDEX IF NOT EXISTS idx_sync_issues_entity   ON sync_issues(entity_type, entity_id);
CREATE INDEX IF NOT EXISTS idx_sync_issues_severity ON sync_issues(severity) WHERE resolved_at IS NULL;
CREATE UNIQUE INDEX IF NOT EXISTS idx_sync_issues_open_key
    ON sync_issues(layer, identity_key) WHERE resolved_at IS NULL;

CREATE TABLE IF NOT EXISTS sync_runs (
    id           TEXT PRIMARY KEY,
    run_type     TEXT NOT NULL,
    started_at   TEXT NOT NULL,
    completed_at TEXT NOT NULL,
    duration_ms  INTEGER DEFAULT 0,
    total_issues INTEGER DEFAULT 0,
    new_issues   INTEGER DEFAULT 0,
    resolved_issues INTEGER DEFAULT 0,
    result_json  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sync_runs_started ON sync_runs(started_at DESC);
"""


async def _column_exists(db: aiosqlite.Connection, table: str, column: str) -> bool:
    async with db.execute(f"PRAGMA table_info({table})") as cur:
        rows = await cur.fetchall()
    return any(row[1] == column for row in rows)


async def _ensure_column(db: aiosqlite.Connection, table: str, column: str, definition: str) -> None:
    if await _column_exists(db, table, column):
        return
    await db.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables. Idempotent."""
    # Check current schema version
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except Exception:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.info(f"Schema is up to date (version {current_version})")
        return

    logger.info(f"Running migrations: {current_version} → {SCHEMA_VERSION}")

    await db.executescript(_TABLES)

    # Version 2: subtasks and schedule blocks joined the reference graph.
    await _ensure_column(db, "tasks", "parent_task_id", "TEXT")
    await _ensure_column(db, "schedule_blocks", "linked_task_id", "TEXT")
    # Version 3: recipes, recurrence templates, journal and shopping links.
    await _ensure_column(db, "tasks", "recurrence_template_id", "TEXT")
    await _ensure_column(db, "meals", "recipe_id", "TEXT")

    await db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    await db.commit()
    logger.info(f"Migrations complete (version {SCHEMA_VERSION})")
