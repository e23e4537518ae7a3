#!/usr/bin/env python3
"""
Sprint Bot Daily Standups

Members file one report per project per local day; filing again replaces
the earlier report. The scheduler opens the standup once a day and hands
the day's reports to the dispatcher.
"""

import sqlite3
from datetime import date, datetime, timezone

from .models import StandupReport, format_timestamp
from .outcomes import Invalid, NotFound
from .schema import write_transaction


def save_standup_report(
    conn: sqlite3.Connection,
    project_id: int,
    user_id: str,
    local_date: date,
    yesterday: str = "",
    today: str = "",
    blockers: str = "",
    now: datetime | None = None,
) -> StandupReport | NotFound | Invalid:
    """Insert or replace user_id's report for (project, local_date)."""
    yesterday, today, blockers = (s.strip() if s else "" for s in (yesterday, today, blockers))
    if not (yesterday or today or blockers):
        return Invalid("Standup report is empty")
    reported_at = format_timestamp(now or datetime.now(timezone.utc))
    with write_transaction(conn):
        if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
            return NotFound("project", project_id)
        row = conn.execute(
            """
            INSERT INTO standup_reports
                (project_id, user_id, local_date, yesterday, today, blockers, reported_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(project_id, local_date, user_id) DO UPDATE SET
                yesterday = excluded.yesterday,
                today = excluded.today,
                blockers = excluded.blockers,
                reported_at = excluded.reported_at
            RETURNING *
            """,
            (project_id, user_id, local_date.isoformat(), yesterday, today, blockers, reported_at),
        ).fetchone()
    return StandupReport.from_row(row)


def list_reports(conn: sqlite3.Connection, project_id: int, local_date: date) -> list[StandupReport]:
    rows = conn.execute(
        """
        SELECT * FROM standup_reports
        WHERE project_id = ? AND local_date = ?
        ORDER BY reported_at ASC, id ASC
        """,
        (project_id, local_date.isoformat()),
    ).fetchall()
    return [StandupReport.from_row(r) for r in rows]


def missing_reporters(
    conn: sqlite3.Connection, project_id: int, local_date: date, members: list[str]
) -> list[str]:
    """Members (in given order) with no report for the day."""
    reported = {r.user_id for r in list_reports(conn, project_id, local_date)}
    return [m for m in members if m not in reported]


def mark_standup_opened(conn: sqlite3.Connection, project_id: int, local_date: date) -> bool:
    """
    Stamp last_standup_date unless it already equals local_date.

    Returns True only for the caller that set the stamp, so a day's
    standup opens at most once even with overlapping ticks.
    """
    with write_transaction(conn):
        cursor = conn.execute(
            """
            UPDATE projects SET last_standup_date = :day
            WHERE id = :project_id
              AND (last_standup_date IS NULL OR last_standup_date <> :day)
            """,
            {"day": local_date.isoformat(), "project_id": project_id},
        )
    return cursor.rowcount == 1
