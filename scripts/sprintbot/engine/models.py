#!/usr/bin/env python3
"""
Sprint Bot Data Models

Typed dataclasses representing the core domain objects: projects, sprints,
task items (tasks and bugs), users and standup reports. Status and kind are
closed enums; the database stores their string values.

Timestamps follow two conventions:
- *_at fields are UTC, stored as 'YYYY-MM-DD HH:MM:SS'
- *_local fields and local dates are studio wall-clock values (no offset)
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Status / kind enums
# ---------------------------------------------------------------------------


class TaskKind(str, Enum):
    TASK = "task"
    BUG = "bug"


class TaskStatus(str, Enum):
    BACKLOG = "backlog"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


# Actor used for scheduler-initiated transitions
SYSTEM_ACTOR = "system"


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_timestamp(value: datetime) -> str:
    """Format a datetime for storage (seconds precision, no offset)."""
    return value.replace(tzinfo=None).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into a naive datetime."""
    if not value:
        return None
    return datetime.fromisoformat(value)


def parse_date(value: str | None) -> date | None:
    if not value:
        return None
    return date.fromisoformat(value[:10])


# ---------------------------------------------------------------------------
# Core dataclasses
# ---------------------------------------------------------------------------


@dataclass
class Project:
    """A team project bound to chat channels (opaque external refs)."""
    id: int
    name: str
    channel_ref: str
    bug_channel_ref: str | None = None
    standup_channel_ref: str | None = None
    notification_channel_ref: str | None = None
    daily_summary_ref: str | None = None
    last_standup_date: date | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "Project":
        """Construct from a sqlite3.Row or dict."""
        d = dict(row)
        return cls(
            id=d["id"],
            name=d["name"],
            channel_ref=d["channel_ref"],
            bug_channel_ref=d.get("bug_channel_ref"),
            standup_channel_ref=d.get("standup_channel_ref"),
            notification_channel_ref=d.get("notification_channel_ref"),
            daily_summary_ref=d.get("daily_summary_ref"),
            last_standup_date=parse_date(d.get("last_standup_date")),
            created_at=parse_timestamp(d.get("created_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "channel_ref": self.channel_ref,
            "bug_channel_ref": self.bug_channel_ref,
            "standup_channel_ref": self.standup_channel_ref,
            "notification_channel_ref": self.notification_channel_ref,
            "last_standup_date": self.last_standup_date.isoformat() if self.last_standup_date else None,
        }


@dataclass
class Sprint:
    """A time-boxed container of tasks. At most one is active per project."""
    id: int
    project_id: int
    name: str
    goal: str = ""
    is_active: bool = False
    start_local: datetime | None = None
    end_local: datetime | None = None
    created_at: datetime | None = None
    ended_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "Sprint":
        """Construct from a sqlite3.Row or dict."""
        d = dict(row)
        return cls(
            id=d["id"],
            project_id=d["project_id"],
            name=d["name"],
            goal=d.get("goal") or "",
            is_active=bool(d.get("is_active", 0)),
            start_local=parse_timestamp(d.get("start_local")),
            end_local=parse_timestamp(d.get("end_local")),
            created_at=parse_timestamp(d.get("created_at")),
            ended_at=parse_timestamp(d.get("ended_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "goal": self.goal,
            "is_active": self.is_active,
            "start_local": format_timestamp(self.start_local) if self.start_local else None,
            "end_local": format_timestamp(self.end_local) if self.end_local else None,
            "ended_at": format_timestamp(self.ended_at) if self.ended_at else None,
        }


@dataclass
class TaskItem:
    """A unit of work: a Task (sprint-planned) or a Bug (always claimable)."""
    id: int
    project_id: int
    kind: TaskKind
    status: TaskStatus
    title: str
    created_by: str
    points: int = 1
    sprint_id: int | None = None
    description: str | None = None
    assignee: str | None = None
    created_at: datetime | None = None
    last_overdue_reminder_date: date | None = None

    @property
    def is_bug(self) -> bool:
        return self.kind is TaskKind.BUG

    @property
    def is_done(self) -> bool:
        return self.status is TaskStatus.DONE

    @classmethod
    def from_row(cls, row: Any) -> "TaskItem":
        """Construct from a sqlite3.Row or dict."""
        d = dict(row)
        return cls(
            id=d["id"],
            project_id=d["project_id"],
            kind=TaskKind(d["kind"]),
            status=TaskStatus(d["status"]),
            title=d["title"],
            created_by=d["created_by"],
            points=d.get("points") or 1,
            sprint_id=d.get("sprint_id"),
            description=d.get("description"),
            assignee=d.get("assignee"),
            created_at=parse_timestamp(d.get("created_at")),
            last_overdue_reminder_date=parse_date(d.get("last_overdue_reminder_date")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "sprint_id": self.sprint_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "title": self.title,
            "points": self.points,
            "assignee": self.assignee,
            "created_by": self.created_by,
        }


@dataclass
class User:
    """XP holder keyed by external identity."""
    user_id: str
    xp: int = 0

    @classmethod
    def from_row(cls, row: Any) -> "User":
        d = dict(row)
        return cls(user_id=d["user_id"], xp=d["xp"])


@dataclass
class StandupReport:
    """One member's daily standup for a project and local date."""
    id: int
    project_id: int
    user_id: str
    local_date: date
    yesterday: str = ""
    today: str = ""
    blockers: str = ""
    reported_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "StandupReport":
        """Construct from a sqlite3.Row or dict."""
        d = dict(row)
        return cls(
            id=d["id"],
            project_id=d["project_id"],
            user_id=d["user_id"],
            local_date=parse_date(d["local_date"]),
            yesterday=d.get("yesterday") or "",
            today=d.get("today") or "",
            blockers=d.get("blockers") or "",
            reported_at=parse_timestamp(d.get("reported_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "local_date": self.local_date.isoformat(),
            "yesterday": self.yesterday,
            "today": self.today,
            "blockers": self.blockers,
        }


# ---------------------------------------------------------------------------
# Runtime configuration (from .sprintbot/config.yaml, not stored in DB)
# ---------------------------------------------------------------------------


@dataclass
class BotConfig:
    """Runtime configuration loaded from .sprintbot/config.yaml."""
    db_path: str = "data/sprintbot.db"
    timezone: str = "Asia/Bangkok"
    tick_seconds: int = 60
    standup_time: str = "09:00"             # local HH:MM
    standup_grace_minutes: int = 60
    overdue_after_hours: int = 24
    overdue_sweep_minutes: int = 30
    overdue_batch_limit: int = 100
    backlog_offer_limit: int = 25
    draft_ttl_minutes: int = 20
    min_points: int = 1
    max_points: int = 100
    log_level: str = "INFO"
    log_file: str | None = None
