#!/usr/bin/env python3
"""
Sprint Bot Database Schema

SQLite schema for the workflow store. Includes:
- projects: team projects bound to chat channels
- sprints: time-boxed containers, at most one active per project
- task_items: tasks and bugs, the claimable work items
- users: XP balances keyed by external identity
- standup_reports: one report per (project, local date, user)

Schema version is stored in PRAGMA user_version. The migrate() function
applies schema changes incrementally and is idempotent.

Concurrency rules:
- All write transactions use BEGIN IMMEDIATE (see write_transaction)
- PRAGMA busy_timeout=5000 is set on connection open
- WAL mode enables concurrent reads during write transactions
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

# Current schema version; increment when adding tables or columns
SCHEMA_VERSION = 1

# ---------------------------------------------------------------------------
# Connection helpers
# ---------------------------------------------------------------------------


def open_db(db_path: str | Path) -> sqlite3.Connection:
    """
    Open (or create) the workflow database with required PRAGMAs.

    Sets:
    - journal_mode=WAL: concurrent reads while single writer holds lock
    - busy_timeout=5000: retry on locked DB for up to 5 seconds
    - foreign_keys=ON: enforce referential integrity and project cascades
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def write_transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    Run a block inside BEGIN IMMEDIATE ... COMMIT.

    BEGIN IMMEDIATE takes the reserved lock up front, so concurrent writers
    serialize on busy_timeout instead of failing mid-transaction. Any
    exception rolls the transaction back and propagates.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    conn.execute("COMMIT")


# ---------------------------------------------------------------------------
# DDL, ordered by dependency (no FK violations on fresh create)
# ---------------------------------------------------------------------------

_CREATE_PROJECTS = """
CREATE TABLE IF NOT EXISTS projects (
    id                       INTEGER PRIMARY KEY AUTOINCREMENT,
    name                     TEXT NOT NULL,
    channel_ref              TEXT NOT NULL UNIQUE,   -- main project channel
    bug_channel_ref          TEXT,
    standup_channel_ref      TEXT,
    notification_channel_ref TEXT,
    daily_summary_ref        TEXT,                   -- last posted standup summary
    last_standup_date        TEXT,                   -- local date of last prompt
    created_at               TEXT NOT NULL
)
"""

_CREATE_SPRINTS = """
CREATE TABLE IF NOT EXISTS sprints (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id  INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name        TEXT NOT NULL,
    goal        TEXT NOT NULL DEFAULT '',
    is_active   INTEGER NOT NULL DEFAULT 0 CHECK(is_active IN (0, 1)),
    start_local TEXT,
    end_local   TEXT,
    created_at  TEXT NOT NULL,
    ended_at    TEXT
)
"""

_CREATE_TASK_ITEMS = """
CREATE TABLE IF NOT EXISTS task_items (
    id                          INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id                  INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    sprint_id                   INTEGER REFERENCES sprints(id) ON DELETE SET NULL,
    kind                        TEXT NOT NULL CHECK(kind IN ('task', 'bug')),
    status                      TEXT NOT NULL
                                    CHECK(status IN ('backlog', 'todo', 'in_progress', 'done')),
    title                       TEXT NOT NULL,
    description                 TEXT,
    points                      INTEGER NOT NULL DEFAULT 1 CHECK(points > 0),
    assignee                    TEXT,
    created_by                  TEXT NOT NULL,
    created_at                  TEXT NOT NULL,
    last_overdue_reminder_date  TEXT,           -- local date of last overdue reminder
    CHECK(kind = 'task' OR status <> 'backlog')
)
"""

_CREATE_USERS = """
CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,                   -- external identity
    xp      INTEGER NOT NULL DEFAULT 0 CHECK(xp >= 0)
)
"""

_CREATE_STANDUP_REPORTS = """
CREATE TABLE IF NOT EXISTS standup_reports (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id  INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    user_id     TEXT NOT NULL,
    local_date  TEXT NOT NULL,
    yesterday   TEXT NOT NULL DEFAULT '',
    today       TEXT NOT NULL DEFAULT '',
    blockers    TEXT NOT NULL DEFAULT '',
    reported_at TEXT NOT NULL,
    UNIQUE(project_id, local_date, user_id)
)
"""

# ---------------------------------------------------------------------------
# Indexes for common queries
# ---------------------------------------------------------------------------

_INDEXES = [
    # Partial unique index: the store itself rejects a second active sprint
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_sprints_one_active ON sprints(project_id) WHERE is_active = 1",
    "CREATE INDEX IF NOT EXISTS idx_task_items_status ON task_items(project_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_task_items_sprint ON task_items(project_id, sprint_id)",
    "CREATE INDEX IF NOT EXISTS idx_task_items_assignee ON task_items(assignee, status)",
    "CREATE INDEX IF NOT EXISTS idx_projects_bug_channel ON projects(bug_channel_ref)",
    "CREATE INDEX IF NOT EXISTS idx_projects_standup_channel ON projects(standup_channel_ref)",
]

# All DDL in dependency order
SCHEMA_STATEMENTS: list[str] = [
    _CREATE_PROJECTS,
    _CREATE_SPRINTS,
    _CREATE_TASK_ITEMS,
    _CREATE_USERS,
    _CREATE_STANDUP_REPORTS,
    *_INDEXES,
]

# Tables in delete order (children first), used by maintenance reset
TABLES_DELETE_ORDER: list[str] = [
    "standup_reports",
    "task_items",
    "sprints",
    "users",
    "projects",
]


# ---------------------------------------------------------------------------
# Migration runner
# ---------------------------------------------------------------------------


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Read the current schema version from PRAGMA user_version."""
    return conn.execute("PRAGMA user_version").fetchone()[0]


def set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Write schema version to PRAGMA user_version (no param binding, so an f-string)."""
    conn.execute(f"PRAGMA user_version = {int(version)}")


def migrate(conn: sqlite3.Connection) -> None:
    """
    Apply schema migrations incrementally.

    Idempotent and safe to call on an existing database. Uses PRAGMA user_version
    to track which migrations have been applied.

    Version history:
    0 → 1: Initial schema (projects, sprints, task_items, users,
            standup_reports, indexes)
    """
    current = get_schema_version(conn)

    if current < 1:
        for stmt in SCHEMA_STATEMENTS:
            conn.execute(stmt)
        set_schema_version(conn, 1)
        conn.commit()


def create_db(db_path: str | Path) -> sqlite3.Connection:
    """
    Create or open a workflow database, applying all migrations.

    Returns an open connection with WAL mode, busy_timeout=5000,
    and foreign_keys=ON. The caller is responsible for closing it.
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = open_db(path)
    migrate(conn)
    return conn
