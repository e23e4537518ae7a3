#!/usr/bin/env python3
"""
Sprint Bot Claim Protocol

Every item mutation is a single conditional UPDATE:

    UPDATE task_items SET status = :new, assignee = :actor
    WHERE id = :id AND status = :old AND (assignee IS NULL OR assignee = :actor)

run inside BEGIN IMMEDIATE, and the caller inspects whether a row came back
to learn if it won. There is no read-then-write window: two actors racing
for the same item both issue the UPDATE, the store serializes them, and the
loser's WHERE clause no longer matches.

Batches (multi-select claim) attempt each id independently. The result
lists the ids that went through and how many were skipped; a batch where
everything was lost is a Conflict, never an exception. For a lost item the
row is re-read to tell the caller whether it was missing, already done, or
held by someone else.

Completion awards XP to the actor in the same transaction as the
transition, so an item is never done without its reward or vice versa.
"""

import logging
import sqlite3
from typing import Any

from .events import (
    BugClaimed,
    BugFixed,
    Dispatcher,
    TaskAssigned,
    TaskClaimed,
    TaskCompleted,
    dispatch,
)
from .models import TaskItem, TaskKind, TaskStatus
from .outcomes import Conflict, Failure, Forbidden, Invalid, NotFound
from .rewards import award_xp, bug_fix_xp, task_completion_xp
from .schema import write_transaction
from .sprints import get_active_sprint
from .state_machine import can_transition, is_terminal, sql_source_list

logger = logging.getLogger(__name__)

CLAIMABLE_LIMIT = 25


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class BatchResult:
    """Items that went through a batch mutation, plus what was skipped."""

    def __init__(self, action: str, items: list[TaskItem], skipped: dict[int, Failure]):
        self.action = action
        self.items = items
        self.skipped = skipped
        self.xp_awarded = 0
        self.balance: int | None = None
        self.success = True

    @property
    def ids(self) -> list[int]:
        return [item.id for item in self.items]

    @property
    def partial(self) -> bool:
        return bool(self.skipped)

    def __str__(self) -> str:
        msg = f"{self.action}: {len(self.items)} item(s)"
        if self.skipped:
            msg += f", {len(self.skipped)} skipped"
        return msg

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "success": True,
            "action": self.action,
            "succeeded": self.ids,
            "skipped": len(self.skipped),
            "skipped_reasons": {str(k): str(v) for k, v in self.skipped.items()},
            "items": [item.to_dict() for item in self.items],
        }
        if self.balance is not None:
            d["xp_awarded"] = self.xp_awarded
            d["balance"] = self.balance
        return d


class ItemResult:
    """A single item mutation that went through."""

    def __init__(self, action: str, item: TaskItem, xp_awarded: int = 0, balance: int | None = None):
        self.action = action
        self.item = item
        self.xp_awarded = xp_awarded
        self.balance = balance
        self.success = True

    def __str__(self) -> str:
        return f"{self.action}: #{self.item.id} {self.item.title}"

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": True, "action": self.action, "item": self.item.to_dict()}
        if self.balance is not None:
            d["xp_awarded"] = self.xp_awarded
            d["balance"] = self.balance
        return d


# ---------------------------------------------------------------------------
# Conditional updates
# ---------------------------------------------------------------------------

_TASK = TaskKind.TASK
_BUG = TaskKind.BUG

_CLAIM_TASK_SQL = f"""
UPDATE task_items
SET status = 'in_progress', assignee = :actor
WHERE id = :task_id AND project_id = :project_id
  AND kind = 'task' AND status IN ({sql_source_list(_TASK, TaskStatus.IN_PROGRESS)})
  AND assignee IS NULL
RETURNING *
"""

_START_TASK_SQL = f"""
UPDATE task_items
SET status = 'in_progress', assignee = :actor
WHERE id = :task_id AND project_id = :project_id
  AND kind = 'task' AND status IN ({sql_source_list(_TASK, TaskStatus.IN_PROGRESS)})
  AND (assignee IS NULL OR assignee = :actor)
RETURNING *
"""

_COMPLETE_TASK_SQL = f"""
UPDATE task_items
SET status = 'done'
WHERE id = :task_id AND project_id = :project_id
  AND kind = 'task' AND status IN ({sql_source_list(_TASK, TaskStatus.DONE)})
  AND assignee = :actor
RETURNING *
"""

_ADMIT_TASK_SQL = f"""
UPDATE task_items
SET status = 'todo', sprint_id = :sprint_id
WHERE id = :task_id AND project_id = :project_id
  AND kind = 'task' AND status IN ({sql_source_list(_TASK, TaskStatus.TODO)})
RETURNING *
"""

_CLAIM_BUG_SQL = f"""
UPDATE task_items
SET status = 'in_progress', assignee = :actor
WHERE id = :task_id AND kind = 'bug'
  AND status IN ({sql_source_list(_BUG, TaskStatus.IN_PROGRESS)})
  AND (assignee IS NULL OR assignee = :actor)
RETURNING *
"""

_FIX_BUG_SQL = f"""
UPDATE task_items
SET status = 'done', assignee = :actor
WHERE id = :task_id AND kind = 'bug'
  AND status IN ({sql_source_list(_BUG, TaskStatus.DONE)})
  AND (assignee IS NULL OR assignee = :actor OR :privileged = 1)
RETURNING *
"""

# Assignment leaves status alone and applies to open sprint tasks.
_ASSIGN_TASK_SQL = f"""
UPDATE task_items
SET assignee = :assignee
WHERE id = :task_id AND kind = 'task'
  AND status IN ({sql_source_list(_TASK, TaskStatus.BACKLOG)})
  AND sprint_id = (
      SELECT s.id FROM sprints s
      WHERE s.project_id = task_items.project_id AND s.is_active = 1
  )
RETURNING *
"""


def _diagnose(
    conn: sqlite3.Connection,
    task_id: int,
    actor: str,
    action: str,
    target: TaskStatus,
    project_id: int | None = None,
) -> Failure:
    """Explain why a conditional update matched no row."""
    row = conn.execute("SELECT * FROM task_items WHERE id = ?", (task_id,)).fetchone()
    if row is None or (project_id is not None and row["project_id"] != project_id):
        return NotFound("task", task_id)
    item = TaskItem.from_row(row)
    if is_terminal(item.status):
        return Conflict(f"Task {task_id} is already done")
    if item.assignee is not None and item.assignee != actor:
        return Conflict(f"Task {task_id} is held by {item.assignee}")
    if not can_transition(item.kind, item.status, target):
        return Conflict(f"Task {task_id} cannot {action} from status '{item.status.value}'")
    return Conflict(f"Task {task_id} cannot {action}")


def _unique(task_ids: list[int]) -> list[int] | Invalid:
    try:
        return list(dict.fromkeys(int(t) for t in task_ids))
    except (TypeError, ValueError):
        return Invalid(f"Malformed task id in {task_ids!r}")


def _run_batch(
    conn: sqlite3.Connection,
    sql: str,
    action: str,
    target: TaskStatus,
    project_id: int,
    task_ids: list[int],
    actor: str,
    params: dict[str, Any] | None = None,
) -> tuple[list[TaskItem], dict[int, Failure]]:
    """Apply sql to each id; must be called inside write_transaction."""
    items: list[TaskItem] = []
    skipped: dict[int, Failure] = {}
    for task_id in task_ids:
        row = conn.execute(
            sql,
            {"task_id": task_id, "project_id": project_id, "actor": actor, **(params or {})},
        ).fetchone()
        if row is None:
            skipped[task_id] = _diagnose(conn, task_id, actor, action, target, project_id)
        else:
            items.append(TaskItem.from_row(row))
    return items, skipped


def _batch_outcome(
    action: str,
    task_ids: list[int],
    items: list[TaskItem],
    skipped: dict[int, Failure],
) -> BatchResult | Failure:
    if items:
        return BatchResult(action, items, skipped)
    if len(task_ids) == 1:
        return skipped[task_ids[0]]
    return Conflict(f"None of the {len(task_ids)} item(s) could {action}", succeeded=0, skipped=len(skipped))


# ---------------------------------------------------------------------------
# Task operations
# ---------------------------------------------------------------------------


def claim_tasks(
    conn: sqlite3.Connection,
    project_id: int,
    task_ids: list[int],
    actor: str,
    dispatcher: Dispatcher | None = None,
) -> BatchResult | Failure:
    """Claim unassigned todo tasks: todo → in_progress, assignee = actor."""
    task_ids = _unique(task_ids)
    if isinstance(task_ids, Invalid):
        return task_ids
    if not task_ids:
        return Invalid("No task ids given")
    with write_transaction(conn):
        items, skipped = _run_batch(
            conn, _CLAIM_TASK_SQL, "claim", TaskStatus.IN_PROGRESS, project_id, task_ids, actor
        )
    result = _batch_outcome("claim", task_ids, items, skipped)
    if isinstance(result, BatchResult):
        logger.info("%s claimed %s (skipped %d)", actor, result.ids, len(skipped))
        dispatch(dispatcher, TaskClaimed(project_id=project_id, actor=actor, task_ids=result.ids))
    return result


def start_tasks(
    conn: sqlite3.Connection,
    project_id: int,
    task_ids: list[int],
    actor: str,
    dispatcher: Dispatcher | None = None,
) -> BatchResult | Failure:
    """Start todo tasks that are unassigned or already assigned to actor."""
    task_ids = _unique(task_ids)
    if isinstance(task_ids, Invalid):
        return task_ids
    if not task_ids:
        return Invalid("No task ids given")
    with write_transaction(conn):
        items, skipped = _run_batch(
            conn, _START_TASK_SQL, "start", TaskStatus.IN_PROGRESS, project_id, task_ids, actor
        )
    result = _batch_outcome("start", task_ids, items, skipped)
    if isinstance(result, BatchResult):
        dispatch(dispatcher, TaskClaimed(project_id=project_id, actor=actor, task_ids=result.ids))
    return result


def complete_tasks(
    conn: sqlite3.Connection,
    project_id: int,
    task_ids: list[int],
    actor: str,
    dispatcher: Dispatcher | None = None,
) -> BatchResult | Failure:
    """
    Complete in-progress tasks held by actor and award their XP.

    XP per task is max(10, points * 10); the sum is credited in the same
    transaction as the transitions.
    """
    task_ids = _unique(task_ids)
    if isinstance(task_ids, Invalid):
        return task_ids
    if not task_ids:
        return Invalid("No task ids given")
    with write_transaction(conn):
        items, skipped = _run_batch(
            conn, _COMPLETE_TASK_SQL, "complete", TaskStatus.DONE, project_id, task_ids, actor
        )
        xp = sum(task_completion_xp(item.points) for item in items)
        balance = award_xp(conn, actor, xp) if items else None
    result = _batch_outcome("complete", task_ids, items, skipped)
    if isinstance(result, BatchResult):
        result.xp_awarded = xp
        result.balance = balance
        logger.info("%s completed %s (+%d XP)", actor, result.ids, xp)
        dispatch(
            dispatcher,
            TaskCompleted(
                project_id=project_id,
                actor=actor,
                task_ids=result.ids,
                xp_awarded=xp,
                balance=balance,
            ),
        )
    return result


def admit_to_sprint(
    conn: sqlite3.Connection,
    project_id: int,
    task_ids: list[int],
    actor: str,
    is_privileged: bool,
) -> BatchResult | Failure:
    """Move backlog tasks into the project's active sprint (lead/admin only)."""
    if not is_privileged:
        return Forbidden("add tasks to a sprint")
    task_ids = _unique(task_ids)
    if isinstance(task_ids, Invalid):
        return task_ids
    if not task_ids:
        return Invalid("No task ids given")
    with write_transaction(conn):
        sprint = get_active_sprint(conn, project_id)
        if sprint is None:
            return NotFound("active sprint for project", project_id)
        items, skipped = _run_batch(
            conn, _ADMIT_TASK_SQL, "join the sprint", TaskStatus.TODO, project_id, task_ids, actor,
            {"sprint_id": sprint.id},
        )
    logger.info("%s admitted %d task(s) into sprint %s", actor, len(items), sprint.id)
    return _batch_outcome("join the sprint", task_ids, items, skipped)


def assign_task(
    conn: sqlite3.Connection,
    task_id: int,
    assignee: str,
    actor: str,
    is_privileged: bool,
    dispatcher: Dispatcher | None = None,
) -> ItemResult | Failure:
    """
    Set the assignee of a todo/in-progress task in an active sprint.

    Lead/admin only. Status is left unchanged; the assignee still has to
    start (todo) or complete (in progress) the task themselves.
    """
    if not is_privileged:
        return Forbidden("assign tasks")
    if not assignee:
        return Invalid("Assignee must not be empty")
    with write_transaction(conn):
        row = conn.execute(_ASSIGN_TASK_SQL, {"task_id": task_id, "assignee": assignee}).fetchone()
        if row is None:
            existing = get_task(conn, task_id)
            if existing is None:
                return NotFound("task", task_id)
            if existing.is_done:
                return Conflict(f"Task {task_id} is already done")
            return Conflict(f"Task {task_id} is not an open task of an active sprint")
    item = TaskItem.from_row(row)
    logger.info("%s assigned task %s to %s", actor, task_id, assignee)
    dispatch(
        dispatcher,
        TaskAssigned(project_id=item.project_id, actor=actor, task_id=item.id, assignee=assignee),
    )
    return ItemResult("assign", item)


# ---------------------------------------------------------------------------
# Bug operations
# ---------------------------------------------------------------------------


def claim_bug(
    conn: sqlite3.Connection,
    task_id: int,
    actor: str,
    dispatcher: Dispatcher | None = None,
) -> ItemResult | Failure:
    """Claim a bug that is unassigned or already held by actor."""
    with write_transaction(conn):
        row = conn.execute(_CLAIM_BUG_SQL, {"task_id": task_id, "actor": actor}).fetchone()
        if row is None:
            return _diagnose(conn, task_id, actor, "be claimed", TaskStatus.IN_PROGRESS)
    item = TaskItem.from_row(row)
    dispatch(dispatcher, BugClaimed(project_id=item.project_id, actor=actor, task_id=item.id))
    return ItemResult("claim bug", item)


def fix_bug(
    conn: sqlite3.Connection,
    task_id: int,
    actor: str,
    is_privileged: bool = False,
    dispatcher: Dispatcher | None = None,
) -> ItemResult | Failure:
    """
    Mark a bug done and award max(20, points * 5) XP to actor.

    Allowed when the bug is unassigned, held by actor, or actor is a
    lead/admin (who may close a bug someone else holds).
    """
    with write_transaction(conn):
        row = conn.execute(
            _FIX_BUG_SQL,
            {"task_id": task_id, "actor": actor, "privileged": 1 if is_privileged else 0},
        ).fetchone()
        if row is None:
            return _diagnose(conn, task_id, actor, "be fixed", TaskStatus.DONE)
        item = TaskItem.from_row(row)
        xp = bug_fix_xp(item.points)
        balance = award_xp(conn, actor, xp)
    logger.info("%s fixed bug %s (+%d XP)", actor, task_id, xp)
    dispatch(
        dispatcher,
        BugFixed(project_id=item.project_id, actor=actor, task_id=item.id, xp_awarded=xp, balance=balance),
    )
    return ItemResult("fix bug", item, xp_awarded=xp, balance=balance)


# ---------------------------------------------------------------------------
# Queries (read-only)
# ---------------------------------------------------------------------------


def get_task(conn: sqlite3.Connection, task_id: int) -> TaskItem | None:
    row = conn.execute("SELECT * FROM task_items WHERE id = ?", (task_id,)).fetchone()
    return TaskItem.from_row(row) if row else None


def list_claimable(conn: sqlite3.Connection, project_id: int, limit: int = CLAIMABLE_LIMIT) -> list[TaskItem]:
    """Unassigned todo tasks of the active sprint, oldest first."""
    rows = conn.execute(
        """
        SELECT t.* FROM task_items t
        JOIN sprints s ON s.id = t.sprint_id AND s.is_active = 1
        WHERE t.project_id = ? AND t.kind = 'task'
          AND t.status = 'todo' AND t.assignee IS NULL
        ORDER BY t.created_at ASC, t.id ASC
        LIMIT ?
        """,
        (project_id, limit),
    ).fetchall()
    return [TaskItem.from_row(r) for r in rows]


def list_open_bugs(conn: sqlite3.Connection, project_id: int, limit: int = CLAIMABLE_LIMIT) -> list[TaskItem]:
    """Bugs that are not done yet, oldest first."""
    rows = conn.execute(
        """
        SELECT * FROM task_items
        WHERE project_id = ? AND kind = 'bug' AND status <> 'done'
        ORDER BY created_at ASC, id ASC
        LIMIT ?
        """,
        (project_id, limit),
    ).fetchall()
    return [TaskItem.from_row(r) for r in rows]


def list_my_items(conn: sqlite3.Connection, actor: str, project_id: int | None = None) -> list[TaskItem]:
    """Tasks and bugs assigned to actor that are still todo or in progress."""
    sql = """
        SELECT * FROM task_items
        WHERE assignee = :actor AND status IN (:todo, :in_progress)
    """
    params: dict[str, Any] = {
        "actor": actor,
        "todo": TaskStatus.TODO.value,
        "in_progress": TaskStatus.IN_PROGRESS.value,
    }
    if project_id is not None:
        sql += " AND project_id = :project_id"
        params["project_id"] = project_id
    sql += " ORDER BY status ASC, created_at ASC, id ASC"
    rows = conn.execute(sql, params).fetchall()
    return [TaskItem.from_row(r) for r in rows]


def list_sprint_items(conn: sqlite3.Connection, sprint_id: int) -> list[TaskItem]:
    rows = conn.execute(
        "SELECT * FROM task_items WHERE sprint_id = ? AND kind = ? ORDER BY id ASC",
        (sprint_id, TaskKind.TASK.value),
    ).fetchall()
    return [TaskItem.from_row(r) for r in rows]
