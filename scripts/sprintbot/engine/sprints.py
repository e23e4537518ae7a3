#!/usr/bin/env python3
"""
Sprint Bot Sprint Lifecycle

Starting, ending and inspecting sprints.

Start: lead/admin only. The "one active sprint per project" rule is checked
explicitly and also enforced by the idx_sprints_one_active partial unique
index, so two concurrent starts produce one sprint and one Conflict.

End (manual or scheduled): the sprint is deactivated with a guarded
UPDATE ... WHERE is_active = 1. Only the caller that flips the flag goes on
to compute velocity and roll items back, so concurrent closers (a lead and
the scheduler, say) produce exactly one SprintEnded. Velocity counts the
points of done items only; every other item bound to the sprint returns to
the backlog with sprint and assignee cleared.

End-date semantics: an end timestamp at exactly midnight means the end of
that day, so a sprint ending "2025-03-14" stays open through 23:59:59.
"""

import logging
import sqlite3
from datetime import datetime, time, timedelta, timezone
from typing import Any

from .events import Dispatcher, SprintEnded, SprintStarted, dispatch
from .models import SYSTEM_ACTOR, Sprint, TaskItem, TaskKind, TaskStatus, format_timestamp
from .outcomes import Conflict, Forbidden, Invalid, NotFound
from .schema import write_transaction
from .state_machine import sql_source_list

logger = logging.getLogger(__name__)

BACKLOG_OFFER_LIMIT = 25

# Accepted manual input formats; date-only values get a default time of day
SPRINT_INPUT_FORMATS = ("%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M", "%Y-%m-%d")
DEFAULT_START_TIME = time(9, 0)
DEFAULT_END_TIME = time(23, 59)


# ---------------------------------------------------------------------------
# Date handling
# ---------------------------------------------------------------------------


def parse_sprint_datetime(raw: str | None, is_end: bool) -> datetime | None:
    """
    Parse a manually entered sprint bound.

    Accepts 'YYYY-MM-DD HH:MM', 'YYYY-MM-DDTHH:MM' or 'YYYY-MM-DD'. A bare
    date becomes 09:00 for a start and 23:59 for an end. Returns None when
    the input matches none of the formats.
    """
    text = (raw or "").strip()
    if not text:
        return None
    for fmt in SPRINT_INPUT_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if fmt == "%Y-%m-%d":
            parsed = datetime.combine(parsed.date(), DEFAULT_END_TIME if is_end else DEFAULT_START_TIME)
        return parsed
    return None


def effective_end(end_local: datetime) -> datetime:
    """Treat a midnight end as the last instant of that day."""
    if end_local.time() == time(0, 0):
        return end_local + timedelta(days=1) - timedelta(microseconds=1)
    return end_local


def is_due(sprint: Sprint, local_now: datetime) -> bool:
    """True if an active sprint with an end bound has reached its effective end."""
    if not sprint.is_active or sprint.end_local is None:
        return False
    return local_now >= effective_end(sprint.end_local)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def get_active_sprint(conn: sqlite3.Connection, project_id: int) -> Sprint | None:
    row = conn.execute(
        "SELECT * FROM sprints WHERE project_id = ? AND is_active = 1", (project_id,)
    ).fetchone()
    return Sprint.from_row(row) if row else None


def get_sprint(conn: sqlite3.Connection, sprint_id: int) -> Sprint | None:
    row = conn.execute("SELECT * FROM sprints WHERE id = ?", (sprint_id,)).fetchone()
    return Sprint.from_row(row) if row else None


def list_active_sprints(conn: sqlite3.Connection) -> list[Sprint]:
    rows = conn.execute(
        "SELECT * FROM sprints WHERE is_active = 1 ORDER BY id ASC"
    ).fetchall()
    return [Sprint.from_row(r) for r in rows]


def list_backlog(conn: sqlite3.Connection, project_id: int, limit: int | None = None) -> list[TaskItem]:
    """Backlog tasks for a project, oldest first."""
    rows = conn.execute(
        """
        SELECT * FROM task_items
        WHERE project_id = ? AND kind = 'task' AND status = 'backlog'
        ORDER BY created_at ASC, id ASC
        LIMIT ?
        """,
        (project_id, -1 if limit is None else limit),
    ).fetchall()
    return [TaskItem.from_row(r) for r in rows]


def sprint_progress(conn: sqlite3.Connection, sprint_id: int) -> dict[str, int]:
    """Per-status item and point counts for a sprint."""
    rows = conn.execute(
        """
        SELECT status, COUNT(*) AS items, COALESCE(SUM(points), 0) AS points
        FROM task_items WHERE sprint_id = ?
        GROUP BY status
        """,
        (sprint_id,),
    ).fetchall()
    by_status = {r["status"]: r for r in rows}
    progress: dict[str, int] = {"total_items": 0, "total_points": 0}
    for status in (TaskStatus.TODO, TaskStatus.IN_PROGRESS, TaskStatus.DONE):
        row = by_status.get(status.value)
        progress[f"{status.value}_items"] = row["items"] if row else 0
        progress[f"{status.value}_points"] = row["points"] if row else 0
        progress["total_items"] += progress[f"{status.value}_items"]
        progress["total_points"] += progress[f"{status.value}_points"]
    return progress


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class SprintStart:
    """A new active sprint plus the backlog tasks offered for admission."""

    def __init__(self, sprint: Sprint, backlog_offer: list[TaskItem]):
        self.sprint = sprint
        self.backlog_offer = backlog_offer
        self.success = True

    def __str__(self) -> str:
        return f"Sprint '{self.sprint.name}' started ({len(self.backlog_offer)} backlog task(s) offered)"

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "sprint": self.sprint.to_dict(),
            "backlog_offer": [t.to_dict() for t in self.backlog_offer],
        }


class SprintClose:
    """Metrics of a sprint that has just been closed."""

    def __init__(self, sprint: Sprint, velocity: int, completed: int, rolled_back: int, actor: str):
        self.sprint = sprint
        self.velocity = velocity
        self.completed = completed
        self.rolled_back = rolled_back
        self.actor = actor
        self.success = True

    def __str__(self) -> str:
        return (
            f"Sprint '{self.sprint.name}' ended: velocity {self.velocity}, "
            f"{self.completed} completed, {self.rolled_back} returned to backlog"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "sprint": self.sprint.to_dict(),
            "velocity": self.velocity,
            "completed": self.completed,
            "rolled_back": self.rolled_back,
            "closed_by": self.actor,
        }


# ---------------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------------


def start_sprint(
    conn: sqlite3.Connection,
    project_id: int,
    name: str,
    actor: str,
    is_privileged: bool,
    goal: str = "",
    start_local: datetime | None = None,
    end_local: datetime | None = None,
    offer_limit: int = BACKLOG_OFFER_LIMIT,
    now: datetime | None = None,
    dispatcher: Dispatcher | None = None,
) -> SprintStart | Forbidden | Invalid | NotFound | Conflict:
    """Create the project's active sprint and offer backlog tasks for it."""
    if not is_privileged:
        return Forbidden("start a sprint")
    name = (name or "").strip()
    if not name:
        return Invalid("Sprint name must not be empty")
    if start_local and end_local and end_local < start_local:
        return Invalid("Sprint end must not be before its start")

    created_at = format_timestamp(now or datetime.now(timezone.utc))
    conflict = Conflict(f"Project {project_id} already has an active sprint")
    try:
        with write_transaction(conn):
            if conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is None:
                return NotFound("project", project_id)
            if get_active_sprint(conn, project_id) is not None:
                return conflict
            row = conn.execute(
                """
                INSERT INTO sprints
                    (project_id, name, goal, is_active, start_local, end_local, created_at)
                VALUES (?, ?, ?, 1, ?, ?, ?)
                RETURNING *
                """,
                (
                    project_id,
                    name,
                    (goal or "").strip(),
                    format_timestamp(start_local) if start_local else None,
                    format_timestamp(end_local) if end_local else None,
                    created_at,
                ),
            ).fetchone()
            sprint = Sprint.from_row(row)
            offer = list_backlog(conn, project_id, offer_limit)
    except sqlite3.IntegrityError:
        # Lost a concurrent start to the partial unique index
        logger.info("Concurrent sprint start rejected for project %s", project_id)
        return conflict

    logger.info("Sprint %s '%s' started for project %s by %s", sprint.id, sprint.name, project_id, actor)
    dispatch(
        dispatcher,
        SprintStarted(
            project_id=project_id,
            actor=actor,
            sprint_id=sprint.id,
            name=sprint.name,
            start_local=format_timestamp(start_local) if start_local else None,
            end_local=format_timestamp(end_local) if end_local else None,
        ),
    )
    return SprintStart(sprint, offer)


# ---------------------------------------------------------------------------
# End / close
# ---------------------------------------------------------------------------


def return_to_backlog(conn: sqlite3.Connection, sprint_id: int) -> int:
    """
    Move every non-done task of a sprint back to the backlog, clearing sprint
    and assignee. Joins the caller's transaction. Returns the count moved.
    """
    cursor = conn.execute(
        f"""
        UPDATE task_items
        SET status = 'backlog', sprint_id = NULL, assignee = NULL
        WHERE sprint_id = ? AND kind = ?
          AND status IN ({sql_source_list(TaskKind.TASK, TaskStatus.BACKLOG)})
        """,
        (sprint_id, TaskKind.TASK.value),
    )
    return cursor.rowcount


def close_sprint(
    conn: sqlite3.Connection,
    sprint_id: int,
    actor: str = SYSTEM_ACTOR,
    now: datetime | None = None,
    dispatcher: Dispatcher | None = None,
) -> SprintClose | NotFound | Conflict:
    """
    Close an active sprint: deactivate, compute velocity, roll back open items.

    Shared by the manual end and the scheduler's auto-close. A sprint that
    was already closed by someone else yields Conflict.
    """
    ended_at = format_timestamp(now or datetime.now(timezone.utc))
    with write_transaction(conn):
        cursor = conn.execute(
            "UPDATE sprints SET is_active = 0, ended_at = ? WHERE id = ? AND is_active = 1",
            (ended_at, sprint_id),
        )
        if cursor.rowcount == 0:
            if get_sprint(conn, sprint_id) is None:
                return NotFound("sprint", sprint_id)
            return Conflict(f"Sprint {sprint_id} has already ended")

        done = conn.execute(
            """
            SELECT COUNT(*) AS completed, COALESCE(SUM(points), 0) AS velocity
            FROM task_items WHERE sprint_id = ? AND status = ?
            """,
            (sprint_id, TaskStatus.DONE.value),
        ).fetchone()
        rolled_back = return_to_backlog(conn, sprint_id)
        sprint = get_sprint(conn, sprint_id)

    result = SprintClose(sprint, done["velocity"], done["completed"], rolled_back, actor)
    logger.info(
        "Sprint %s closed by %s: velocity=%d completed=%d rolled_back=%d",
        sprint_id, actor, result.velocity, result.completed, result.rolled_back,
    )
    dispatch(
        dispatcher,
        SprintEnded(
            project_id=sprint.project_id,
            actor=actor,
            sprint_id=sprint.id,
            name=sprint.name,
            velocity=result.velocity,
            completed=result.completed,
            rolled_back=result.rolled_back,
        ),
    )
    return result


def end_sprint(
    conn: sqlite3.Connection,
    project_id: int,
    actor: str,
    is_privileged: bool,
    now: datetime | None = None,
    dispatcher: Dispatcher | None = None,
) -> SprintClose | Forbidden | NotFound | Conflict:
    """Manually end the project's active sprint (lead/admin only)."""
    if not is_privileged:
        return Forbidden("end a sprint")
    sprint = get_active_sprint(conn, project_id)
    if sprint is None:
        return NotFound("active sprint for project", project_id)
    return close_sprint(conn, sprint.id, actor, now=now, dispatcher=dispatcher)
