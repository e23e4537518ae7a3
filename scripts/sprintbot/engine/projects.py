#!/usr/bin/env python3
"""
Sprint Bot Projects

A project is bound to a main channel plus optional bug, standup and
notification channels. Channel refs are opaque strings supplied by the
presentation layer; the engine never interprets them.
"""

import sqlite3
from datetime import datetime, timezone

from .models import Project, format_timestamp
from .schema import write_transaction


def upsert_project(
    conn: sqlite3.Connection,
    name: str,
    channel_ref: str,
    bug_channel_ref: str | None = None,
    standup_channel_ref: str | None = None,
    notification_channel_ref: str | None = None,
    now: datetime | None = None,
) -> Project:
    """
    Create the project bound to channel_ref, or update the existing one.

    On update a None notification_channel_ref keeps the previous value;
    the other channel refs are replaced.
    """
    created_at = format_timestamp(now or datetime.now(timezone.utc))
    with write_transaction(conn):
        row = conn.execute(
            """
            INSERT INTO projects
                (name, channel_ref, bug_channel_ref, standup_channel_ref,
                 notification_channel_ref, created_at)
            VALUES (:name, :channel_ref, :bug, :standup, :notify, :created_at)
            ON CONFLICT(channel_ref) DO UPDATE SET
                name = excluded.name,
                bug_channel_ref = excluded.bug_channel_ref,
                standup_channel_ref = excluded.standup_channel_ref,
                notification_channel_ref =
                    COALESCE(excluded.notification_channel_ref, notification_channel_ref)
            RETURNING *
            """,
            {
                "name": name,
                "channel_ref": channel_ref,
                "bug": bug_channel_ref,
                "standup": standup_channel_ref,
                "notify": notification_channel_ref,
                "created_at": created_at,
            },
        ).fetchone()
    return Project.from_row(row)


def get_project(conn: sqlite3.Connection, project_id: int) -> Project | None:
    row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    return Project.from_row(row) if row else None


def resolve_project_by_channel(conn: sqlite3.Connection, channel_ref: str) -> Project | None:
    """Find the project whose main, bug or standup channel is channel_ref."""
    row = conn.execute(
        """
        SELECT * FROM projects
        WHERE channel_ref = :ref OR bug_channel_ref = :ref OR standup_channel_ref = :ref
        ORDER BY id ASC
        LIMIT 1
        """,
        {"ref": channel_ref},
    ).fetchone()
    return Project.from_row(row) if row else None


def list_projects(conn: sqlite3.Connection) -> list[Project]:
    rows = conn.execute("SELECT * FROM projects ORDER BY id ASC").fetchall()
    return [Project.from_row(r) for r in rows]


def set_daily_summary_ref(conn: sqlite3.Connection, project_id: int, ref: str | None) -> bool:
    """Record the presentation's handle for today's standup summary post."""
    with write_transaction(conn):
        cursor = conn.execute(
            "UPDATE projects SET daily_summary_ref = ? WHERE id = ?", (ref, project_id)
        )
    return cursor.rowcount == 1
