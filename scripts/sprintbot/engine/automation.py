#!/usr/bin/env python3
"""
Sprint Bot Automation Scheduler

One cooperative loop per process. Every tick runs three sweeps in order:

1. Standup prompt: once per project per local day, when local time is
   inside [standup_time, standup_time + grace). The per-project
   last_standup_date stamp is the once-a-day guard.
2. Overdue reminder: at most once per overdue_sweep_minutes. Sprint-bound,
   not-done tasks older than overdue_after_hours get one TaskOverdue per
   local day; last_overdue_reminder_date is the de-duplication stamp.
3. Sprint auto-close: every tick. Active sprints whose effective end has
   passed are closed through sprints.close_sprint() as the system actor.

Each sweep is guarded on its own: an exception is logged and the remaining
sweeps still run. run_forever() checks its stop event only between ticks,
so a tick that has started always finishes.
"""

import logging
import sqlite3
import threading
from datetime import datetime, time, timedelta

from .clock import StudioClock
from .events import Dispatcher, StandupOpened, TaskOverdue, dispatch
from .models import SYSTEM_ACTOR, BotConfig, TaskItem, format_timestamp
from .projects import list_projects
from .schema import write_transaction
from .sprints import SprintClose, close_sprint, is_due, list_active_sprints
from .standup import list_reports, mark_standup_opened

logger = logging.getLogger(__name__)


def parse_standup_time(raw: str) -> time:
    """Parse 'HH:MM' into a time; raises ValueError on malformed input."""
    return datetime.strptime(raw.strip(), "%H:%M").time()


class AutomationScheduler:
    """Periodic standup, overdue and auto-close sweeps over one connection."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: BotConfig,
        clock: StudioClock | None = None,
        dispatcher: Dispatcher | None = None,
    ):
        self.conn = conn
        self.config = config
        self.clock = clock or StudioClock(config.timezone)
        self.dispatcher = dispatcher
        self.standup_time = parse_standup_time(config.standup_time)
        self._last_overdue_sweep: datetime | None = None

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def tick(self) -> dict[str, int]:
        """Run all three sweeps once. Returns per-sweep counts (-1 = failed)."""
        summary: dict[str, int] = {}
        for name, sweep in (
            ("standups_opened", self.run_standup_prompt),
            ("overdue_reminders", self.run_overdue_reminders),
            ("sprints_closed", self.run_sprint_auto_close),
        ):
            try:
                summary[name] = sweep()
            except Exception:
                logger.exception("Automation sweep %s failed", name)
                summary[name] = -1
        return summary

    def run_forever(self, stop_event: threading.Event) -> None:
        """Tick every tick_seconds until stop_event is set."""
        logger.info("Automation scheduler started (tick=%ss)", self.config.tick_seconds)
        while not stop_event.is_set():
            self.tick()
            stop_event.wait(self.config.tick_seconds)
        logger.info("Automation scheduler stopped")

    # ------------------------------------------------------------------
    # Sweep 1: standup prompt
    # ------------------------------------------------------------------

    def in_standup_window(self, local_now: datetime) -> bool:
        trigger = datetime.combine(local_now.date(), self.standup_time)
        window_end = trigger + timedelta(minutes=max(1, self.config.standup_grace_minutes))
        return trigger <= local_now < window_end

    def run_standup_prompt(self) -> int:
        local_now = self.clock.local_now()
        if not self.in_standup_window(local_now):
            return 0
        today = local_now.date()
        opened = 0
        for project in list_projects(self.conn):
            if project.last_standup_date == today:
                continue
            if not mark_standup_opened(self.conn, project.id, today):
                continue
            reports = list_reports(self.conn, project.id, today)
            dispatch(
                self.dispatcher,
                StandupOpened(
                    project_id=project.id,
                    actor=SYSTEM_ACTOR,
                    local_date=today.isoformat(),
                    channel_ref=project.standup_channel_ref or project.channel_ref,
                    reports=[r.to_dict() for r in reports],
                ),
            )
            logger.info("Opened standup for project %s on %s", project.id, today)
            opened += 1
        return opened

    # ------------------------------------------------------------------
    # Sweep 2: overdue reminders
    # ------------------------------------------------------------------

    def run_overdue_reminders(self) -> int:
        local_now = self.clock.local_now()
        interval = timedelta(minutes=self.config.overdue_sweep_minutes)
        if self._last_overdue_sweep is not None and local_now - self._last_overdue_sweep < interval:
            return 0
        self._last_overdue_sweep = local_now

        now_utc = self.clock.now_utc()
        today = local_now.date().isoformat()
        threshold = format_timestamp(now_utc - timedelta(hours=self.config.overdue_after_hours))

        reminded: list[TaskItem] = []
        with write_transaction(self.conn):
            rows = self.conn.execute(
                """
                SELECT * FROM task_items
                WHERE kind = 'task' AND sprint_id IS NOT NULL AND status <> 'done'
                  AND created_at <= :threshold
                  AND (last_overdue_reminder_date IS NULL OR last_overdue_reminder_date < :today)
                ORDER BY created_at ASC, id ASC
                LIMIT :limit
                """,
                {"threshold": threshold, "today": today, "limit": self.config.overdue_batch_limit},
            ).fetchall()
            for row in rows:
                cursor = self.conn.execute(
                    """
                    UPDATE task_items SET last_overdue_reminder_date = :today
                    WHERE id = :id
                      AND (last_overdue_reminder_date IS NULL OR last_overdue_reminder_date < :today)
                    """,
                    {"today": today, "id": row["id"]},
                )
                if cursor.rowcount == 1:
                    reminded.append(TaskItem.from_row(row))

        naive_now = now_utc.replace(tzinfo=None)
        for task in reminded:
            overdue_by = naive_now - task.created_at
            dispatch(
                self.dispatcher,
                TaskOverdue(
                    project_id=task.project_id,
                    actor=SYSTEM_ACTOR,
                    task_id=task.id,
                    title=task.title,
                    assignee=task.assignee,
                    overdue_hours=int(overdue_by.total_seconds() // 3600),
                ),
            )
        if reminded:
            logger.info("Sent %d overdue reminder(s)", len(reminded))
        return len(reminded)

    # ------------------------------------------------------------------
    # Sweep 3: sprint auto-close
    # ------------------------------------------------------------------

    def run_sprint_auto_close(self) -> int:
        local_now = self.clock.local_now()
        closed = 0
        for sprint in list_active_sprints(self.conn):
            if not is_due(sprint, local_now):
                continue
            result = close_sprint(
                self.conn,
                sprint.id,
                SYSTEM_ACTOR,
                now=self.clock.now_utc(),
                dispatcher=self.dispatcher,
            )
            if isinstance(result, SprintClose):
                logger.info(
                    "Auto-closed sprint %s of project %s at %s",
                    sprint.id, sprint.project_id, local_now,
                )
                closed += 1
            else:
                logger.info("Sprint %s not auto-closed: %s", sprint.id, result)
        return closed
