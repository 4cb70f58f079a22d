"""Database schema creation and versioning.

All CREATE TABLE statements for checkpoints and the derived ledgers.
Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("ledger.db")

SCHEMA_VERSION = 1

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── Sync checkpoints (one row per transcript file) ─────────────────
CREATE TABLE IF NOT EXISTS sync_state (
    file_path    TEXT PRIMARY KEY,
    session_id   TEXT NOT NULL DEFAULT '',
    line_count   INTEGER NOT NULL DEFAULT 0,
    byte_offset  INTEGER NOT NULL DEFAULT 0,
    inode        INTEGER NOT NULL DEFAULT 0,
    file_size    INTEGER NOT NULL DEFAULT 0,
    generation   INTEGER NOT NULL DEFAULT 0,
    last_synced  TEXT NOT NULL DEFAULT '',
    parse_ms     INTEGER DEFAULT 0
);

-- ── Per-ledger replay watermarks ───────────────────────────────────
CREATE TABLE IF NOT EXISTS ledger_watermarks (
    ledger       TEXT NOT NULL,
    session_id   TEXT NOT NULL,
    generation   INTEGER NOT NULL DEFAULT 0,
    sequence     INTEGER NOT NULL DEFAULT -1,
    PRIMARY KEY (ledger, session_id)
);

-- ── Task ledger ────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS agent_tasks (
    id                   TEXT PRIMARY KEY,
    label                TEXT NOT NULL,
    description          TEXT DEFAULT '',
    model                TEXT DEFAULT 'default',
    status               TEXT NOT NULL DEFAULT 'in_progress',
    spawned_at           TEXT,
    completed_at         TEXT,
    duration_seconds     INTEGER,
    session_id           TEXT DEFAULT '',
    spawn_generation     INTEGER DEFAULT 0,
    spawn_sequence       INTEGER DEFAULT -1,
    completion_sequence  INTEGER
);
CREATE INDEX IF NOT EXISTS idx_agent_tasks_spawned ON agent_tasks(spawned_at DESC);

CREATE TABLE IF NOT EXISTS todos (
    id           TEXT PRIMARY KEY,
    title        TEXT NOT NULL DEFAULT '',
    description  TEXT DEFAULT '',
    created_at   TEXT NOT NULL
);

-- ── Cost ledger ────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS cost_records (
    provider      TEXT NOT NULL,
    model         TEXT NOT NULL,
    agent         TEXT DEFAULT 'main',
    total_input   INTEGER DEFAULT 0,
    total_output  INTEGER DEFAULT 0,
    cache_read    INTEGER DEFAULT 0,
    cache_write   INTEGER DEFAULT 0,
    total_cost    REAL DEFAULT 0.0,
    messages      INTEGER DEFAULT 0,
    sessions      INTEGER DEFAULT 0,
    PRIMARY KEY (provider, model)
);

CREATE TABLE IF NOT EXISTS cost_record_sessions (
    provider    TEXT NOT NULL,
    model       TEXT NOT NULL,
    session_id  TEXT NOT NULL,
    PRIMARY KEY (provider, model, session_id)
);

CREATE TABLE IF NOT EXISTS session_costs (
    session_id  TEXT PRIMARY KEY,
    short_id    TEXT DEFAULT '',
    model       TEXT DEFAULT '',
    cost        REAL DEFAULT 0.0,
    tokens      INTEGER DEFAULT 0,
    messages    INTEGER DEFAULT 0,
    timestamp   TEXT DEFAULT ''
);

-- ── Activity ledger ────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS activity_items (
    id          TEXT PRIMARY KEY,
    agent       TEXT DEFAULT 'main',
    action      TEXT DEFAULT '',
    details     TEXT DEFAULT '',
    level       TEXT DEFAULT 'info',
    created_at  TEXT NOT NULL,
    session     TEXT
);
CREATE INDEX IF NOT EXISTS idx_activity_created ON activity_items(created_at DESC);

CREATE TABLE IF NOT EXISTS agent_presence (
    session_id   TEXT PRIMARY KEY,
    model        TEXT DEFAULT '',
    provider     TEXT DEFAULT '',
    last_active  TEXT DEFAULT ''
);
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
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.OperationalError:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.info(f"Schema is up to date (version {current_version})")
        return

    logger.info(f"Running migrations: {current_version} -> {SCHEMA_VERSION}")

    await db.executescript(_TABLES)

    # Older checkpoint stores only tracked line counts.
    await _ensure_column(db, "sync_state", "byte_offset", "INTEGER NOT NULL DEFAULT 0")
    await _ensure_column(db, "sync_state", "generation", "INTEGER NOT NULL DEFAULT 0")

    await db.execute(
        "INSERT INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    await db.commit()
    logger.info(f"Migrations complete, schema version {SCHEMA_VERSION}")
