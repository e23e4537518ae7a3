#!/usr/bin/env python3
"""
Sprint Bot Backlog Entry

Creates work items: tasks land in the backlog (no sprint, no assignee),
bugs are immediately claimable in todo. Also provides bulk JSON import
and lead-only backlog editing.

JSON import accepts either an array of objects or an object with an
`items` array. Field names are matched case-insensitively with aliases:

    title       title, taskTitle, name, quest
    description description, desc, details, note
    points      points, point, score

Points are clamped to the configured bounds; missing or unparseable
points fall back to 1.
"""

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any

from .models import TaskItem, TaskKind, TaskStatus, format_timestamp
from .outcomes import Forbidden, Invalid, NotFound
from .schema import write_transaction
from .state_machine import INITIAL_STATUS

MIN_POINTS = 1
MAX_POINTS = 100
IMPORT_MAX_ITEMS = 50

_TITLE_KEYS = ("title", "taskTitle", "name", "quest")
_DESCRIPTION_KEYS = ("description", "desc", "details", "note")
_POINTS_KEYS = ("points", "point", "score")

# Description values that clear an existing description on edit
_CLEAR_MARKERS = ("[clear]", "/clear")


def clamp_points(value: Any, low: int = MIN_POINTS, high: int = MAX_POINTS, fallback: int = 1) -> int:
    """Coerce value to an int in [low, high]; non-numeric input yields fallback."""
    try:
        points = int(str(value).strip())
    except (TypeError, ValueError):
        return fallback
    return max(low, min(high, points))


def _insert_item(
    conn: sqlite3.Connection,
    project_id: int,
    kind: TaskKind,
    title: str,
    created_by: str,
    points: int,
    description: str | None,
    created_at: str,
) -> TaskItem:
    row = conn.execute(
        """
        INSERT INTO task_items
            (project_id, kind, status, title, description, points, created_by, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        RETURNING *
        """,
        (
            project_id,
            kind.value,
            INITIAL_STATUS[kind].value,
            title,
            description,
            points,
            created_by,
            created_at,
        ),
    ).fetchone()
    return TaskItem.from_row(row)


def _project_exists(conn: sqlite3.Connection, project_id: int) -> bool:
    return conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone() is not None


def _create(
    conn: sqlite3.Connection,
    kind: TaskKind,
    project_id: int,
    title: str,
    created_by: str,
    points: Any,
    description: str | None,
    min_points: int,
    max_points: int,
    now: datetime | None,
) -> TaskItem | NotFound | Invalid:
    title = (title or "").strip()
    if not title:
        return Invalid("Title must not be empty")
    description = description.strip() if description and description.strip() else None
    created_at = format_timestamp(now or datetime.now(timezone.utc))
    with write_transaction(conn):
        if not _project_exists(conn, project_id):
            return NotFound("project", project_id)
        return _insert_item(
            conn,
            project_id,
            kind,
            title,
            created_by,
            clamp_points(points, min_points, max_points),
            description,
            created_at,
        )


def create_task(
    conn: sqlite3.Connection,
    project_id: int,
    title: str,
    created_by: str,
    points: Any = 1,
    description: str | None = None,
    min_points: int = MIN_POINTS,
    max_points: int = MAX_POINTS,
    now: datetime | None = None,
) -> TaskItem | NotFound | Invalid:
    """Create a backlog task."""
    return _create(
        conn, TaskKind.TASK, project_id, title, created_by, points, description,
        min_points, max_points, now,
    )


def report_bug(
    conn: sqlite3.Connection,
    project_id: int,
    title: str,
    reporter: str,
    points: Any = 1,
    description: str | None = None,
    min_points: int = MIN_POINTS,
    max_points: int = MAX_POINTS,
    now: datetime | None = None,
) -> TaskItem | NotFound | Invalid:
    """Report a bug. Bugs start in todo and skip the backlog."""
    return _create(
        conn, TaskKind.BUG, project_id, title, reporter, points, description,
        min_points, max_points, now,
    )


# ---------------------------------------------------------------------------
# JSON import
# ---------------------------------------------------------------------------


class ImportResult:
    """Tasks created by a bulk import."""

    def __init__(self, tasks: list[TaskItem]):
        self.tasks = tasks
        self.success = True

    def __str__(self) -> str:
        return f"Imported {len(self.tasks)} backlog task(s)"

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "imported": len(self.tasks),
            "task_ids": [t.id for t in self.tasks],
            "total_points": sum(t.points for t in self.tasks),
        }


def _strip_code_fence(raw: str) -> str:
    """Drop a surrounding ``` fence (with optional language tag) if present."""
    text = raw.strip()
    if not text.startswith("```"):
        return text
    first_newline = text.find("\n")
    last_fence = text.rfind("```")
    if first_newline < 0 or last_fence <= first_newline:
        return text
    return text[first_newline + 1:last_fence].strip()


def _lookup(item: dict[str, Any], keys: tuple[str, ...]) -> Any:
    lowered = {str(k).lower(): v for k, v in item.items()}
    for key in keys:
        value = lowered.get(key.lower())
        if value is None or isinstance(value, (dict, list)):
            continue
        return value
    return None


def parse_backlog_json(
    raw: str,
    min_points: int = MIN_POINTS,
    max_points: int = MAX_POINTS,
    max_items: int = IMPORT_MAX_ITEMS,
) -> list[dict[str, Any]] | Invalid:
    """
    Parse an import payload into [{title, description, points}, ...].

    Returns Invalid describing the first problem found; no partial result.
    """
    text = _strip_code_fence(raw or "")
    if not text:
        return Invalid("Empty JSON payload")
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as e:
        return Invalid(f"Invalid JSON: {e}")

    if isinstance(doc, dict):
        items = next((v for k, v in doc.items() if str(k).lower() == "items"), None)
    else:
        items = doc
    if not isinstance(items, list):
        return Invalid("JSON must be an array or an object with an 'items' array")

    drafts: list[dict[str, Any]] = []
    for index, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            return Invalid(f"Item {index} is not a JSON object")
        title = _lookup(item, _TITLE_KEYS)
        title = str(title).strip() if title is not None else ""
        if not title:
            return Invalid(f"Item {index} is missing 'title' (or 'name'/'quest')")
        description = _lookup(item, _DESCRIPTION_KEYS)
        description = str(description).strip() if description is not None else ""
        drafts.append({
            "title": title,
            "description": description or None,
            "points": clamp_points(_lookup(item, _POINTS_KEYS), min_points, max_points),
        })

    if not drafts:
        return Invalid("JSON contains no items to import")
    if len(drafts) > max_items:
        return Invalid(f"At most {max_items} items can be imported at once")
    return drafts


def import_backlog_json(
    conn: sqlite3.Connection,
    project_id: int,
    raw: str,
    created_by: str,
    is_privileged: bool,
    min_points: int = MIN_POINTS,
    max_points: int = MAX_POINTS,
    now: datetime | None = None,
) -> ImportResult | Forbidden | NotFound | Invalid:
    """Create one backlog task per item of the payload, all in one transaction."""
    if not is_privileged:
        return Forbidden("import backlog")
    drafts = parse_backlog_json(raw, min_points, max_points)
    if isinstance(drafts, Invalid):
        return drafts
    created_at = format_timestamp(now or datetime.now(timezone.utc))
    with write_transaction(conn):
        if not _project_exists(conn, project_id):
            return NotFound("project", project_id)
        tasks = [
            _insert_item(
                conn, project_id, TaskKind.TASK, d["title"], created_by,
                d["points"], d["description"], created_at,
            )
            for d in drafts
        ]
    return ImportResult(tasks)


# ---------------------------------------------------------------------------
# Backlog editing (lead/admin)
# ---------------------------------------------------------------------------


def edit_backlog_task(
    conn: sqlite3.Connection,
    project_id: int,
    task_id: int,
    is_privileged: bool,
    title: str | None = None,
    points: Any = None,
    description: str | None = None,
    min_points: int = MIN_POINTS,
    max_points: int = MAX_POINTS,
) -> TaskItem | Forbidden | NotFound | Invalid:
    """
    Update title/points/description of a task still in the backlog.

    A description of "[clear]" or "/clear" removes it.
    """
    if not is_privileged:
        return Forbidden("edit the backlog")
    updates: dict[str, Any] = {}
    if title is not None and title.strip():
        updates["title"] = title.strip()
    if points is not None and str(points).strip():
        try:
            int(str(points).strip())
        except ValueError:
            return Invalid(f"Points must be an integer, got {points!r}")
        updates["points"] = clamp_points(points, min_points, max_points)
    if description is not None and description.strip():
        text = description.strip()
        updates["description"] = None if text.lower() in _CLEAR_MARKERS else text
    if not updates:
        return Invalid("Nothing to update")

    assignments = ", ".join(f"{col} = :{col}" for col in updates)
    with write_transaction(conn):
        row = conn.execute(
            f"""
            UPDATE task_items SET {assignments}
            WHERE id = :task_id AND project_id = :project_id
              AND kind = 'task' AND status = 'backlog'
            RETURNING *
            """,
            {**updates, "task_id": task_id, "project_id": project_id},
        ).fetchone()
    if row is None:
        return NotFound("backlog task", task_id)
    return TaskItem.from_row(row)


def delete_backlog_task(
    conn: sqlite3.Connection,
    project_id: int,
    task_id: int,
    is_privileged: bool,
) -> TaskItem | Forbidden | NotFound:
    """Delete a task that is still in the backlog."""
    if not is_privileged:
        return Forbidden("delete backlog tasks")
    with write_transaction(conn):
        row = conn.execute(
            """
            DELETE FROM task_items
            WHERE id = ? AND project_id = ? AND kind = ? AND status = ?
            RETURNING *
            """,
            (task_id, project_id, TaskKind.TASK.value, TaskStatus.BACKLOG.value),
        ).fetchone()
    if row is None:
        return NotFound("backlog task", task_id)
    return TaskItem.from_row(row)
