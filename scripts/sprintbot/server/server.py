#!/usr/bin/env python3
"""
Sprint Bot MCP Server

FastMCP server exposing the sprint workflow to the chat presentation layer.
The presentation resolves identities and roles; every mutation takes the
acting user's id and, where the operation is privileged, whether that user
is a lead/admin. Domain events are buffered in a queue and fetched with
drain_events.

Usage (stdio mode):
    python server.py <db_path> --project-root <path>

Usage (SSE mode):
    python server.py <db_path> --project-root <path> --transport sse --port 8080

Usage (with the automation loop in a background thread):
    python server.py <db_path> --project-root <path> --with-automation

MCP Tools exposed:
    register_project      create or update a project bound to a channel
    resolve_project       find the project for a channel ref
    get_board             active sprint, progress, claimable tasks, open bugs
    create_task           add a backlog task
    import_backlog        bulk-add backlog tasks from JSON
    edit_backlog_task     edit a backlog task (lead/admin)
    delete_backlog_task   delete a backlog task (lead/admin)
    list_backlog          backlog tasks, oldest first
    report_bug            report a bug (immediately claimable)
    list_open_bugs        bugs not yet fixed
    start_sprint          start a sprint with explicit bounds (lead/admin)
    open_sprint_draft     begin two-step sprint creation, returns a token
    set_sprint_draft_bounds  pick start/end for a draft; starts the sprint when complete
    end_sprint            end the active sprint (lead/admin)
    admit_to_sprint       move backlog tasks into the active sprint (lead/admin)
    list_claimable        unassigned todo tasks of the active sprint
    list_my_items         the caller's todo/in-progress items
    claim_tasks           claim one or more tasks
    start_tasks           start todo tasks assigned to the caller
    complete_tasks        complete in-progress tasks held by the caller
    assign_task           assign a sprint task (lead/admin)
    claim_bug             claim a bug
    fix_bug               mark a bug fixed
    get_task              one task item
    get_balance           XP balance
    spend_xp              atomically spend XP
    leaderboard           top XP holders
    submit_standup        file today's standup report
    list_standup_reports  reports for a local date
    drain_events          fetch buffered domain events
    run_automation_tick   run the three automation sweeps once
"""

import argparse
import json
import logging
import sqlite3
import sys
import threading
from datetime import date, timedelta
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

# Allow running from the scripts/sprintbot directory or as a module
_HERE = Path(__file__).parent
sys.path.insert(0, str(_HERE.parent.parent))  # scripts/

from sprintbot.engine import backlog as backlog_mod
from sprintbot.engine import claim as claim_mod
from sprintbot.engine import projects as projects_mod
from sprintbot.engine import rewards as rewards_mod
from sprintbot.engine import sprints as sprints_mod
from sprintbot.engine import standup as standup_mod
from sprintbot.engine.automation import AutomationScheduler
from sprintbot.engine.clock import StudioClock
from sprintbot.engine.config import load_bot_config
from sprintbot.engine.drafts import SprintDraft, SprintDraftStore, parse_picker_value, picker_options
from sprintbot.engine.events import QueueDispatcher
from sprintbot.engine.log import setup_logging
from sprintbot.engine.outcomes import Forbidden, Invalid, NotFound
from sprintbot.engine.schema import create_db, open_db, write_transaction

logger = logging.getLogger(__name__)

# Undrained events beyond this are dropped (and logged) by dispatch().
EVENT_QUEUE_LIMIT = 1000


def _payload(result: Any) -> Any:
    """Convert engine results (objects with to_dict, lists of them) to JSON-able data."""
    if result is None:
        return None
    if isinstance(result, list):
        return [_payload(r) for r in result]
    if hasattr(result, "to_dict"):
        return result.to_dict()
    return result


class BotServer:
    """
    Sprint bot server wrapping the SQLite database.

    Owns the database connection, the sprint draft store and the event
    queue. The FastMCP tools delegate to this class.
    """

    def __init__(self, db_path: str | None, project_root: str, clock: StudioClock | None = None):
        self.project_root = Path(project_root)
        self.config = load_bot_config(project_root)
        self.db_path = db_path or self.config.db_path
        self.conn = create_db(self.db_path)
        self.clock = clock or StudioClock(self.config.timezone)
        self.events = QueueDispatcher(maxsize=EVENT_QUEUE_LIMIT)
        self.drafts = SprintDraftStore(ttl=timedelta(minutes=self.config.draft_ttl_minutes))
        self._automation_thread: threading.Thread | None = None
        self._automation_stop = threading.Event()

    def close(self) -> None:
        """Stop the automation thread (if any) and close the database connection."""
        self.stop_automation()
        self.conn.close()

    # -----------------------------------------------------------------------
    # Projects
    # -----------------------------------------------------------------------

    def register_project(
        self,
        name: str,
        channel_ref: str,
        bug_channel_ref: str | None = None,
        standup_channel_ref: str | None = None,
        notification_channel_ref: str | None = None,
    ) -> dict[str, Any]:
        project = projects_mod.upsert_project(
            self.conn, name, channel_ref, bug_channel_ref, standup_channel_ref,
            notification_channel_ref, now=self.clock.now_utc(),
        )
        return project.to_dict()

    def resolve_project(self, channel_ref: str) -> dict[str, Any]:
        project = projects_mod.resolve_project_by_channel(self.conn, channel_ref)
        if project is None:
            return NotFound("project for channel", channel_ref).to_dict()
        return project.to_dict()

    def get_board(self, project_id: int) -> dict[str, Any]:
        """
        Snapshot of a project's board.

        Returns:
            {project, active_sprint, progress, claimable, open_bugs}
        """
        project = projects_mod.get_project(self.conn, project_id)
        if project is None:
            return NotFound("project", project_id).to_dict()
        sprint = sprints_mod.get_active_sprint(self.conn, project_id)
        return {
            "project": project.to_dict(),
            "active_sprint": sprint.to_dict() if sprint else None,
            "progress": sprints_mod.sprint_progress(self.conn, sprint.id) if sprint else None,
            "claimable": _payload(claim_mod.list_claimable(self.conn, project_id)),
            "open_bugs": _payload(claim_mod.list_open_bugs(self.conn, project_id)),
        }

    # -----------------------------------------------------------------------
    # Backlog and bugs
    # -----------------------------------------------------------------------

    def create_task(
        self, project_id: int, title: str, actor: str, points: int = 1, description: str | None = None
    ) -> dict[str, Any]:
        return _payload(backlog_mod.create_task(
            self.conn, project_id, title, actor, points, description,
            self.config.min_points, self.config.max_points, now=self.clock.now_utc(),
        ))

    def import_backlog(self, project_id: int, payload: str, actor: str, is_privileged: bool) -> dict[str, Any]:
        return _payload(backlog_mod.import_backlog_json(
            self.conn, project_id, payload, actor, is_privileged,
            self.config.min_points, self.config.max_points, now=self.clock.now_utc(),
        ))

    def edit_backlog_task(
        self,
        project_id: int,
        task_id: int,
        is_privileged: bool,
        title: str | None = None,
        points: int | None = None,
        description: str | None = None,
    ) -> dict[str, Any]:
        return _payload(backlog_mod.edit_backlog_task(
            self.conn, project_id, task_id, is_privileged, title, points, description,
            self.config.min_points, self.config.max_points,
        ))

    def delete_backlog_task(self, project_id: int, task_id: int, is_privileged: bool) -> dict[str, Any]:
        return _payload(backlog_mod.delete_backlog_task(self.conn, project_id, task_id, is_privileged))

    def list_backlog(self, project_id: int, limit: int | None = None) -> list[dict[str, Any]]:
        return _payload(sprints_mod.list_backlog(self.conn, project_id, limit))

    def report_bug(
        self, project_id: int, title: str, actor: str, points: int = 1, description: str | None = None
    ) -> dict[str, Any]:
        return _payload(backlog_mod.report_bug(
            self.conn, project_id, title, actor, points, description,
            self.config.min_points, self.config.max_points, now=self.clock.now_utc(),
        ))

    def list_open_bugs(self, project_id: int) -> list[dict[str, Any]]:
        return _payload(claim_mod.list_open_bugs(self.conn, project_id))

    # -----------------------------------------------------------------------
    # Sprints
    # -----------------------------------------------------------------------

    def start_sprint(
        self,
        project_id: int,
        name: str,
        actor: str,
        is_privileged: bool,
        goal: str = "",
        start: str | None = None,
        end: str | None = None,
    ) -> dict[str, Any]:
        """
        Start a sprint. start/end accept 'YYYY-MM-DD HH:MM', 'YYYY-MM-DDTHH:MM'
        or 'YYYY-MM-DD'.
        """
        start_local = sprints_mod.parse_sprint_datetime(start, is_end=False)
        end_local = sprints_mod.parse_sprint_datetime(end, is_end=True)
        if start and start_local is None:
            return Invalid(f"Unrecognized start date: {start!r}").to_dict()
        if end and end_local is None:
            return Invalid(f"Unrecognized end date: {end!r}").to_dict()
        return _payload(sprints_mod.start_sprint(
            self.conn, project_id, name, actor, is_privileged,
            goal=goal, start_local=start_local, end_local=end_local,
            offer_limit=self.config.backlog_offer_limit,
            now=self.clock.now_utc(), dispatcher=self.events,
        ))

    def open_sprint_draft(
        self, project_id: int, name: str, actor: str, is_privileged: bool, goal: str = ""
    ) -> dict[str, Any]:
        """Begin two-step sprint creation. Returns the draft token and selectable bounds."""
        if not is_privileged:
            return Forbidden("start a sprint").to_dict()
        draft = self.drafts.open(project_id, actor, name, goal, now=self.clock.now_utc())
        if isinstance(draft, Invalid):
            return draft.to_dict()
        d = draft.to_dict()
        d["options"] = picker_options(self.clock.local_date())
        return d

    def set_sprint_draft_bounds(
        self,
        token: str,
        actor: str,
        is_privileged: bool,
        start: str | None = None,
        end: str | None = None,
    ) -> dict[str, Any]:
        """Record picked bounds; starts the sprint once both are set."""
        start_local = parse_picker_value(start) if start else None
        end_local = parse_picker_value(end) if end else None
        if start and start_local is None:
            return Invalid(f"Unrecognized start option: {start!r}").to_dict()
        if end and end_local is None:
            return Invalid(f"Unrecognized end option: {end!r}").to_dict()
        now = self.clock.now_utc()
        updated = self.drafts.set_bound(token, actor, start_local, end_local, now=now)
        if not isinstance(updated, SprintDraft):
            return updated.to_dict()
        result = self.drafts.finalize(
            self.conn, token, actor, is_privileged,
            offer_limit=self.config.backlog_offer_limit, now=now, dispatcher=self.events,
        )
        d = _payload(result)
        if isinstance(result, SprintDraft):
            d["pending"] = True
        return d

    def end_sprint(self, project_id: int, actor: str, is_privileged: bool) -> dict[str, Any]:
        return _payload(sprints_mod.end_sprint(
            self.conn, project_id, actor, is_privileged,
            now=self.clock.now_utc(), dispatcher=self.events,
        ))

    def admit_to_sprint(
        self, project_id: int, task_ids: list[int], actor: str, is_privileged: bool
    ) -> dict[str, Any]:
        return _payload(claim_mod.admit_to_sprint(self.conn, project_id, task_ids, actor, is_privileged))

    # -----------------------------------------------------------------------
    # Claim protocol
    # -----------------------------------------------------------------------

    def list_claimable(self, project_id: int) -> list[dict[str, Any]]:
        return _payload(claim_mod.list_claimable(self.conn, project_id))

    def list_my_items(self, actor: str, project_id: int | None = None) -> list[dict[str, Any]]:
        return _payload(claim_mod.list_my_items(self.conn, actor, project_id))

    def claim_tasks(self, project_id: int, task_ids: list[int], actor: str) -> dict[str, Any]:
        return _payload(claim_mod.claim_tasks(self.conn, project_id, task_ids, actor, self.events))

    def start_tasks(self, project_id: int, task_ids: list[int], actor: str) -> dict[str, Any]:
        return _payload(claim_mod.start_tasks(self.conn, project_id, task_ids, actor, self.events))

    def complete_tasks(self, project_id: int, task_ids: list[int], actor: str) -> dict[str, Any]:
        return _payload(claim_mod.complete_tasks(self.conn, project_id, task_ids, actor, self.events))

    def assign_task(self, task_id: int, assignee: str, actor: str, is_privileged: bool) -> dict[str, Any]:
        return _payload(claim_mod.assign_task(self.conn, task_id, assignee, actor, is_privileged, self.events))

    def claim_bug(self, task_id: int, actor: str) -> dict[str, Any]:
        return _payload(claim_mod.claim_bug(self.conn, task_id, actor, self.events))

    def fix_bug(self, task_id: int, actor: str, is_privileged: bool = False) -> dict[str, Any]:
        return _payload(claim_mod.fix_bug(self.conn, task_id, actor, is_privileged, self.events))

    def get_task(self, task_id: int) -> dict[str, Any]:
        task = claim_mod.get_task(self.conn, task_id)
        if task is None:
            return NotFound("task", task_id).to_dict()
        return task.to_dict()

    # -----------------------------------------------------------------------
    # Rewards
    # -----------------------------------------------------------------------

    def get_balance(self, user_id: str) -> dict[str, Any]:
        return {"user_id": user_id, "xp": rewards_mod.get_balance(self.conn, user_id)}

    def spend_xp(self, user_id: str, cost: int) -> dict[str, Any]:
        """Atomically spend XP; a failed spend must not grant the purchase."""
        if cost < 0:
            return Invalid("Cost must be non-negative").to_dict()
        with write_transaction(self.conn):
            result = rewards_mod.spend_xp(self.conn, user_id, cost)
        return result.to_dict()

    def leaderboard(self, limit: int = 10) -> list[dict[str, Any]]:
        return [{"user_id": u.user_id, "xp": u.xp} for u in rewards_mod.leaderboard(self.conn, limit)]

    # -----------------------------------------------------------------------
    # Standups
    # -----------------------------------------------------------------------

    def submit_standup(
        self, project_id: int, actor: str, yesterday: str = "", today: str = "", blockers: str = ""
    ) -> dict[str, Any]:
        return _payload(standup_mod.save_standup_report(
            self.conn, project_id, actor, self.clock.local_date(),
            yesterday, today, blockers, now=self.clock.now_utc(),
        ))

    def list_standup_reports(self, project_id: int, local_date: str | None = None) -> list[dict[str, Any]] | dict[str, Any]:
        try:
            day = date.fromisoformat(local_date) if local_date else self.clock.local_date()
        except ValueError:
            return Invalid(f"Invalid date: {local_date!r}").to_dict()
        return _payload(standup_mod.list_reports(self.conn, project_id, day))

    # -----------------------------------------------------------------------
    # Events and automation
    # -----------------------------------------------------------------------

    def drain_events(self, limit: int | None = None) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self.events.drain(limit)]

    def make_scheduler(self, conn: sqlite3.Connection | None = None) -> AutomationScheduler:
        return AutomationScheduler(conn or self.conn, self.config, self.clock, self.events)

    def run_automation_tick(self) -> dict[str, int]:
        return self.make_scheduler().tick()

    def start_automation(self) -> None:
        """Run the automation loop in a daemon thread on its own connection."""
        if self._automation_thread is not None:
            return
        conn = open_db(self.db_path)
        scheduler = self.make_scheduler(conn)

        def run() -> None:
            try:
                scheduler.run_forever(self._automation_stop)
            finally:
                conn.close()

        self._automation_stop.clear()
        self._automation_thread = threading.Thread(
            target=run,
            name="sprintbot-automation",
            daemon=True,
        )
        self._automation_thread.start()

    def stop_automation(self, timeout: float | None = 10.0) -> None:
        if self._automation_thread is None:
            return
        self._automation_stop.set()
        self._automation_thread.join(timeout)
        self._automation_thread = None


# ---------------------------------------------------------------------------
# FastMCP server factory
# ---------------------------------------------------------------------------


def _dumps(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


def create_mcp_server(bot: BotServer) -> FastMCP:
    """Create a FastMCP server whose tools delegate to bot."""
    mcp = FastMCP("sprintbot")

    @mcp.tool()
    def register_project(
        name: str,
        channel_ref: str,
        bug_channel_ref: str | None = None,
        standup_channel_ref: str | None = None,
        notification_channel_ref: str | None = None,
    ) -> str:
        """
        Create or update the project bound to channel_ref.

        Args:
            name: Project name
            channel_ref: Main project channel (unique per project)
            bug_channel_ref: Channel where bugs are reported
            standup_channel_ref: Channel where standups are posted
            notification_channel_ref: Channel for global notifications (kept if omitted)
        """
        return _dumps(bot.register_project(
            name, channel_ref, bug_channel_ref, standup_channel_ref, notification_channel_ref
        ))

    @mcp.tool()
    def resolve_project(channel_ref: str) -> str:
        """Find the project whose main, bug or standup channel is channel_ref."""
        return _dumps(bot.resolve_project(channel_ref))

    @mcp.tool()
    def get_board(project_id: int) -> str:
        """Active sprint, per-status progress, claimable tasks and open bugs."""
        return _dumps(bot.get_board(project_id))

    @mcp.tool()
    def create_task(project_id: int, title: str, actor: str, points: int = 1, description: str | None = None) -> str:
        """
        Add a task to the project backlog.

        Args:
            project_id: Project ID
            title: Task title
            actor: Creating user's id
            points: Story points (clamped to the configured bounds)
            description: Optional details
        """
        return _dumps(bot.create_task(project_id, title, actor, points, description))

    @mcp.tool()
    def import_backlog(project_id: int, payload: str, actor: str, is_privileged: bool) -> str:
        """
        Bulk-add backlog tasks from JSON (lead/admin).

        payload is an array of objects, or an object with an 'items' array.
        Each item needs a title (aliases: taskTitle, name, quest) and may
        carry description (desc, details, note) and points (point, score).
        A surrounding ``` code fence is ignored.
        """
        return _dumps(bot.import_backlog(project_id, payload, actor, is_privileged))

    @mcp.tool()
    def edit_backlog_task(
        project_id: int,
        task_id: int,
        is_privileged: bool,
        title: str | None = None,
        points: int | None = None,
        description: str | None = None,
    ) -> str:
        """Edit a backlog task (lead/admin). description '[clear]' removes it."""
        return _dumps(bot.edit_backlog_task(project_id, task_id, is_privileged, title, points, description))

    @mcp.tool()
    def delete_backlog_task(project_id: int, task_id: int, is_privileged: bool) -> str:
        """Delete a task that is still in the backlog (lead/admin)."""
        return _dumps(bot.delete_backlog_task(project_id, task_id, is_privileged))

    @mcp.tool()
    def list_backlog(project_id: int, limit: int | None = None) -> str:
        """Backlog tasks, oldest first."""
        return _dumps(bot.list_backlog(project_id, limit))

    @mcp.tool()
    def report_bug(project_id: int, title: str, actor: str, points: int = 1, description: str | None = None) -> str:
        """Report a bug. Bugs skip the backlog and are immediately claimable."""
        return _dumps(bot.report_bug(project_id, title, actor, points, description))

    @mcp.tool()
    def list_open_bugs(project_id: int) -> str:
        """Bugs not yet fixed, oldest first."""
        return _dumps(bot.list_open_bugs(project_id))

    @mcp.tool()
    def start_sprint(
        project_id: int,
        name: str,
        actor: str,
        is_privileged: bool,
        goal: str = "",
        start: str | None = None,
        end: str | None = None,
    ) -> str:
        """
        Start a sprint (lead/admin). Fails with a conflict if one is active.

        Args:
            start: 'YYYY-MM-DD HH:MM', 'YYYY-MM-DDTHH:MM' or 'YYYY-MM-DD' (09:00)
            end: same formats; a bare date means 23:59 that day

        Returns the sprint and backlog tasks offered for admit_to_sprint.
        """
        return _dumps(bot.start_sprint(project_id, name, actor, is_privileged, goal, start, end))

    @mcp.tool()
    def open_sprint_draft(project_id: int, name: str, actor: str, is_privileged: bool, goal: str = "") -> str:
        """Begin two-step sprint creation. Returns a token and selectable bounds."""
        return _dumps(bot.open_sprint_draft(project_id, name, actor, is_privileged, goal))

    @mcp.tool()
    def set_sprint_draft_bounds(
        token: str, actor: str, is_privileged: bool, start: str | None = None, end: str | None = None
    ) -> str:
        """Pick start and/or end for a draft. The sprint starts once both are set."""
        return _dumps(bot.set_sprint_draft_bounds(token, actor, is_privileged, start, end))

    @mcp.tool()
    def end_sprint(project_id: int, actor: str, is_privileged: bool) -> str:
        """
        End the active sprint (lead/admin).

        Returns velocity (points of done tasks only), completed count and
        how many unfinished tasks went back to the backlog.
        """
        return _dumps(bot.end_sprint(project_id, actor, is_privileged))

    @mcp.tool()
    def admit_to_sprint(project_id: int, task_ids: list[int], actor: str, is_privileged: bool) -> str:
        """Move backlog tasks into the active sprint (lead/admin)."""
        return _dumps(bot.admit_to_sprint(project_id, task_ids, actor, is_privileged))

    @mcp.tool()
    def list_claimable(project_id: int) -> str:
        """Unassigned todo tasks of the active sprint (max 25, oldest first)."""
        return _dumps(bot.list_claimable(project_id))

    @mcp.tool()
    def list_my_items(actor: str, project_id: int | None = None) -> str:
        """The caller's todo and in-progress tasks and bugs."""
        return _dumps(bot.list_my_items(actor, project_id))

    @mcp.tool()
    def claim_tasks(project_id: int, task_ids: list[int], actor: str) -> str:
        """
        Claim one or more tasks.

        Each id is claimed independently; ids lost to another member are
        reported as skipped rather than failing the batch.
        """
        return _dumps(bot.claim_tasks(project_id, task_ids, actor))

    @mcp.tool()
    def start_tasks(project_id: int, task_ids: list[int], actor: str) -> str:
        """Start todo tasks that are unassigned or assigned to the caller."""
        return _dumps(bot.start_tasks(project_id, task_ids, actor))

    @mcp.tool()
    def complete_tasks(project_id: int, task_ids: list[int], actor: str) -> str:
        """Complete in-progress tasks held by the caller; awards max(10, points*10) XP each."""
        return _dumps(bot.complete_tasks(project_id, task_ids, actor))

    @mcp.tool()
    def assign_task(task_id: int, assignee: str, actor: str, is_privileged: bool) -> str:
        """Assign a todo/in-progress task of the active sprint (lead/admin)."""
        return _dumps(bot.assign_task(task_id, assignee, actor, is_privileged))

    @mcp.tool()
    def claim_bug(task_id: int, actor: str) -> str:
        """Claim a bug that is unassigned or already yours."""
        return _dumps(bot.claim_bug(task_id, actor))

    @mcp.tool()
    def fix_bug(task_id: int, actor: str, is_privileged: bool = False) -> str:
        """Mark a bug fixed; awards max(20, points*5) XP."""
        return _dumps(bot.fix_bug(task_id, actor, is_privileged))

    @mcp.tool()
    def get_task(task_id: int) -> str:
        """One task item."""
        return _dumps(bot.get_task(task_id))

    @mcp.tool()
    def get_balance(user_id: str) -> str:
        """XP balance (0 for unknown users)."""
        return _dumps(bot.get_balance(user_id))

    @mcp.tool()
    def spend_xp(user_id: str, cost: int) -> str:
        """
        Spend XP if the balance covers cost.

        Do not grant the purchased effect unless success is true.
        """
        return _dumps(bot.spend_xp(user_id, cost))

    @mcp.tool()
    def leaderboard(limit: int = 10) -> str:
        """Top XP holders."""
        return _dumps(bot.leaderboard(limit))

    @mcp.tool()
    def submit_standup(project_id: int, actor: str, yesterday: str = "", today: str = "", blockers: str = "") -> str:
        """File (or replace) the caller's standup report for today."""
        return _dumps(bot.submit_standup(project_id, actor, yesterday, today, blockers))

    @mcp.tool()
    def list_standup_reports(project_id: int, local_date: str | None = None) -> str:
        """Standup reports for a local date (YYYY-MM-DD, default today)."""
        return _dumps(bot.list_standup_reports(project_id, local_date))

    @mcp.tool()
    def drain_events(limit: int | None = None) -> str:
        """Fetch and remove buffered domain events, oldest first."""
        return _dumps(bot.drain_events(limit))

    @mcp.tool()
    def run_automation_tick() -> str:
        """Run the standup, overdue and auto-close sweeps once."""
        return _dumps(bot.run_automation_tick())

    # MCP Resources
    @mcp.resource("sprintbot://board/{project_id}")
    def board_resource(project_id: str) -> str:
        """Board snapshot for a project."""
        return _dumps(bot.get_board(int(project_id)))

    return mcp


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Sprint Bot MCP Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # MCP server mode (stdio)
    python server.py data/sprintbot.db --project-root .

    # SSE mode with the automation loop
    python server.py sprintbot.db --project-root /app --transport sse --port 8080 --with-automation
        """,
    )
    parser.add_argument("database", nargs="?", help="Path to the SQLite database (default: from config)")
    parser.add_argument("--project-root", default=".", help="Deployment root containing .sprintbot/")
    parser.add_argument("--transport", choices=["stdio", "sse"], default="stdio")
    parser.add_argument("--port", type=int, default=8080, help="Port for SSE mode")
    parser.add_argument("--with-automation", action="store_true", help="Run the automation loop in-process")
    args = parser.parse_args()

    bot = BotServer(args.database, args.project_root)
    setup_logging(bot.config.log_level, bot.config.log_file)
    logger.info("Serving %s over %s", bot.db_path, args.transport)
    if args.with_automation:
        bot.start_automation()

    mcp_server = create_mcp_server(bot)
    try:
        if args.transport == "sse":
            mcp_server.settings.port = args.port
            mcp_server.run(transport="sse")
        else:
            mcp_server.run(transport="stdio")
    finally:
        bot.close()


if __name__ == "__main__":
    main()
