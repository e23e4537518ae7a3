#!/usr/bin/env python3
"""
Sprint Bot CLI

Operator command-line interface: database setup, inspection, manual sprint
control, running the automation loop outside the MCP server, and resets.
Commands run with lead/admin privilege.

Usage:
    # All commands auto-detect .sprintbot/config.yaml from the current directory
    # or accept --db and --project-root overrides.

    sprintbot init-db                          # create/migrate the database
    sprintbot projects                         # list projects
    sprintbot project-add <name> <channel> [--bug-channel C] [--standup-channel C]

    sprintbot backlog <project-id>             # list backlog tasks
    sprintbot add-task <project-id> <title> [--points N]
    sprintbot import-backlog <project-id> <file.json>
    sprintbot report-bug <project-id> <title> [--points N]

    sprintbot sprint-status <project-id>       # active sprint and progress
    sprintbot start-sprint <project-id> <name> --start 2025-03-03 --end 2025-03-14
    sprintbot admit <project-id> <task-id>...
    sprintbot end-sprint <project-id>

    sprintbot claim <project-id> <task-id>... --as <user>
    sprintbot complete <project-id> <task-id>... --as <user>
    sprintbot balance <user>
    sprintbot leaderboard

    sprintbot tick                             # run the automation sweeps once
    sprintbot run-automation                   # run the automation loop until Ctrl-C
    sprintbot reset-db --yes                   # delete all data
"""

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path

# Allow running as script or module
_HERE = Path(__file__).parent
sys.path.insert(0, str(_HERE.parent.parent))  # scripts/

from sprintbot.engine import backlog as backlog_mod
from sprintbot.engine import claim as claim_mod
from sprintbot.engine import projects as projects_mod
from sprintbot.engine import rewards as rewards_mod
from sprintbot.engine import sprints as sprints_mod
from sprintbot.engine.automation import AutomationScheduler
from sprintbot.engine.clock import StudioClock
from sprintbot.engine.config import CONFIG_DIR, load_bot_config
from sprintbot.engine.events import LoggingDispatcher
from sprintbot.engine.log import setup_logging
from sprintbot.engine.maintenance import StoreUnavailableError, reset_database
from sprintbot.engine.outcomes import is_failure
from sprintbot.engine.schema import create_db, get_schema_version

logger = logging.getLogger(__name__)

OPERATOR = "cli-operator"


def _find_project_root(start: Path | None = None) -> Path:
    """Walk up from start directory to find .sprintbot/ directory."""
    current = start or Path.cwd()
    for candidate in [current] + list(current.parents):
        if (candidate / CONFIG_DIR).exists():
            return candidate
    return current  # fallback to cwd


def _open_db(args: argparse.Namespace) -> tuple:
    """Open database and load config from args or auto-discovery."""
    project_root = Path(args.project_root) if args.project_root else _find_project_root()
    config = load_bot_config(project_root)
    setup_logging(args.log_level or config.log_level, config.log_file)

    db_path = args.db if args.db else config.db_path
    conn = create_db(db_path)
    return conn, config, project_root


def _report(result) -> int:
    """Print an engine result; exit code 0 on success, 1 on a typed failure."""
    if getattr(result, "success", False):
        print(str(result))
        return 0
    print(f"Error: {result}", file=sys.stderr)
    return 1


def _print_tasks(tasks) -> None:
    if not tasks:
        print("(none)")
        return
    print(f"{'ID':<6} {'Kind':<5} {'Status':<12} {'Pts':>4}  {'Assignee':<16} {'Title'}")
    print("-" * 80)
    for t in tasks:
        print(
            f"{t.id:<6} {t.kind.value:<5} {t.status.value:<12} {t.points:>4}  "
            f"{t.assignee or '-':<16} {t.title}"
        )


# ---------------------------------------------------------------------------
# Setup and projects
# ---------------------------------------------------------------------------


def cmd_init_db(args: argparse.Namespace) -> int:
    """Create or migrate the database."""
    conn, config, _ = _open_db(args)
    try:
        print(f"Database ready: {args.db or config.db_path} (schema v{get_schema_version(conn)})")
        return 0
    finally:
        conn.close()


def cmd_projects(args: argparse.Namespace) -> int:
    conn, _, _ = _open_db(args)
    try:
        projects = projects_mod.list_projects(conn)
        if not projects:
            print("No projects registered.")
            return 0
        print(f"{'ID':<5} {'Name':<24} {'Channel':<20} {'Bugs':<20} {'Standup':<20} {'Last standup'}")
        print("-" * 100)
        for p in projects:
            print(
                f"{p.id:<5} {p.name:<24} {p.channel_ref:<20} {p.bug_channel_ref or '-':<20} "
                f"{p.standup_channel_ref or '-':<20} {p.last_standup_date or '-'}"
            )
        return 0
    finally:
        conn.close()


def cmd_project_add(args: argparse.Namespace) -> int:
    conn, _, _ = _open_db(args)
    try:
        project = projects_mod.upsert_project(
            conn, args.name, args.channel, args.bug_channel, args.standup_channel, args.notify_channel
        )
        print(f"Project {project.id} '{project.name}' bound to {project.channel_ref}")
        return 0
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Backlog
# ---------------------------------------------------------------------------


def cmd_backlog(args: argparse.Namespace) -> int:
    conn, _, _ = _open_db(args)
    try:
        _print_tasks(sprints_mod.list_backlog(conn, args.project_id, args.limit))
        return 0
    finally:
        conn.close()


def cmd_add_task(args: argparse.Namespace) -> int:
    conn, config, _ = _open_db(args)
    try:
        result = backlog_mod.create_task(
            conn, args.project_id, args.title, args.by, args.points, args.description,
            config.min_points, config.max_points,
        )
        if is_failure(result):
            return _report(result)
        print(f"Task {result.id} added to backlog ({result.points} pts)")
        return 0
    finally:
        conn.close()


def cmd_import_backlog(args: argparse.Namespace) -> int:
    conn, config, _ = _open_db(args)
    try:
        payload = Path(args.file).read_text(encoding="utf-8")
        result = backlog_mod.import_backlog_json(
            conn, args.project_id, payload, args.by, True, config.min_points, config.max_points
        )
        return _report(result)
    finally:
        conn.close()


def cmd_report_bug(args: argparse.Namespace) -> int:
    conn, config, _ = _open_db(args)
    try:
        result = backlog_mod.report_bug(
            conn, args.project_id, args.title, args.by, args.points, args.description,
            config.min_points, config.max_points,
        )
        if is_failure(result):
            return _report(result)
        print(f"Bug {result.id} reported")
        return 0
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Sprints
# ---------------------------------------------------------------------------


def cmd_sprint_status(args: argparse.Namespace) -> int:
    conn, _, _ = _open_db(args)
    try:
        sprint = sprints_mod.get_active_sprint(conn, args.project_id)
        if sprint is None:
            print(f"No active sprint for project {args.project_id}.")
            return 0
        print(f"Sprint {sprint.id}: {sprint.name}")
        if sprint.goal:
            print(f"  Goal:  {sprint.goal}")
        print(f"  Start: {sprint.start_local or '-'}")
        print(f"  End:   {sprint.end_local or '-'}")
        progress = sprints_mod.sprint_progress(conn, sprint.id)
        print(
            f"  Done:  {progress['done_points']}/{progress['total_points']} pts "
            f"({progress['done_items']}/{progress['total_items']} tasks)"
        )
        print()
        _print_tasks(claim_mod.list_sprint_items(conn, sprint.id))
        return 0
    finally:
        conn.close()


def cmd_start_sprint(args: argparse.Namespace) -> int:
    conn, config, _ = _open_db(args)
    try:
        start_local = sprints_mod.parse_sprint_datetime(args.start, is_end=False)
        end_local = sprints_mod.parse_sprint_datetime(args.end, is_end=True)
        if (args.start and start_local is None) or (args.end and end_local is None):
            print("Error: dates must be YYYY-MM-DD or YYYY-MM-DD HH:MM", file=sys.stderr)
            return 1
        result = sprints_mod.start_sprint(
            conn, args.project_id, args.name, args.by, True,
            goal=args.goal or "", start_local=start_local, end_local=end_local,
            offer_limit=config.backlog_offer_limit, dispatcher=LoggingDispatcher(),
        )
        code = _report(result)
        if code == 0 and result.backlog_offer:
            print("\nBacklog available for admission (sprintbot admit <project-id> <task-id>...):")
            _print_tasks(result.backlog_offer)
        return code
    finally:
        conn.close()


def cmd_admit(args: argparse.Namespace) -> int:
    conn, _, _ = _open_db(args)
    try:
        return _report(claim_mod.admit_to_sprint(conn, args.project_id, args.task_ids, args.by, True))
    finally:
        conn.close()


def cmd_end_sprint(args: argparse.Namespace) -> int:
    conn, _, _ = _open_db(args)
    try:
        return _report(sprints_mod.end_sprint(conn, args.project_id, args.by, True, dispatcher=LoggingDispatcher()))
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Claiming and rewards
# ---------------------------------------------------------------------------


def cmd_claim(args: argparse.Namespace) -> int:
    conn, _, _ = _open_db(args)
    try:
        return _report(claim_mod.claim_tasks(conn, args.project_id, args.task_ids, args.user, LoggingDispatcher()))
    finally:
        conn.close()


def cmd_complete(args: argparse.Namespace) -> int:
    conn, _, _ = _open_db(args)
    try:
        result = claim_mod.complete_tasks(conn, args.project_id, args.task_ids, args.user, LoggingDispatcher())
        code = _report(result)
        if code == 0:
            print(f"+{result.xp_awarded} XP, balance {result.balance}")
        return code
    finally:
        conn.close()


def cmd_balance(args: argparse.Namespace) -> int:
    conn, _, _ = _open_db(args)
    try:
        print(f"{args.user}: {rewards_mod.get_balance(conn, args.user)} XP")
        return 0
    finally:
        conn.close()


def cmd_leaderboard(args: argparse.Namespace) -> int:
    conn, _, _ = _open_db(args)
    try:
        users = rewards_mod.leaderboard(conn, args.limit)
        if not users:
            print("No XP awarded yet.")
            return 0
        for rank, user in enumerate(users, start=1):
            print(f"{rank:>3}. {user.user_id:<24} {user.xp:>8} XP")
        return 0
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Automation and maintenance
# ---------------------------------------------------------------------------


def cmd_tick(args: argparse.Namespace) -> int:
    """Run the three automation sweeps once."""
    conn, config, _ = _open_db(args)
    try:
        scheduler = AutomationScheduler(conn, config, StudioClock(config.timezone), LoggingDispatcher())
        summary = scheduler.tick()
        print(json.dumps(summary, indent=2))
        return 1 if any(v < 0 for v in summary.values()) else 0
    finally:
        conn.close()


def cmd_run_automation(args: argparse.Namespace) -> int:
    """Run the automation loop until SIGINT/SIGTERM."""
    conn, config, _ = _open_db(args)
    stop = threading.Event()

    def _stop(signum, frame):
        logger.info("Received signal %s, stopping after the current tick", signum)
        stop.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    try:
        scheduler = AutomationScheduler(conn, config, StudioClock(config.timezone), LoggingDispatcher())
        scheduler.run_forever(stop)
        return 0
    finally:
        conn.close()


def cmd_reset_db(args: argparse.Namespace) -> int:
    if not args.yes:
        print("Refusing to reset without --yes", file=sys.stderr)
        return 1
    conn, _, _ = _open_db(args)
    try:
        deleted = reset_database(conn)
    except StoreUnavailableError as e:
        logger.error("%s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        conn.close()
    for table, count in deleted.items():
        print(f"  {table:<18} {count} row(s) deleted")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="sprintbot",
        description="Sprint Bot CLI: setup, inspection, sprint control and automation",
    )
    parser.add_argument(
        "--db",
        metavar="PATH",
        help="Path to the database (default: read from .sprintbot/config.yaml)",
    )
    parser.add_argument(
        "--project-root",
        metavar="PATH",
        help="Deployment root (default: auto-detect from .sprintbot/)",
    )
    parser.add_argument("--log-level", help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # init-db
    p_init = subparsers.add_parser("init-db", help="Create or migrate the database")
    p_init.set_defaults(func=cmd_init_db)

    # projects
    p_projects = subparsers.add_parser("projects", help="List projects")
    p_projects.set_defaults(func=cmd_projects)

    # project-add
    p_padd = subparsers.add_parser("project-add", help="Register or update a project")
    p_padd.add_argument("name", help="Project name")
    p_padd.add_argument("channel", help="Main channel ref")
    p_padd.add_argument("--bug-channel", help="Bug channel ref")
    p_padd.add_argument("--standup-channel", help="Standup channel ref")
    p_padd.add_argument("--notify-channel", help="Notification channel ref")
    p_padd.set_defaults(func=cmd_project_add)

    # backlog
    p_backlog = subparsers.add_parser("backlog", help="List backlog tasks")
    p_backlog.add_argument("project_id", type=int)
    p_backlog.add_argument("--limit", type=int, help="Max tasks to show")
    p_backlog.set_defaults(func=cmd_backlog)

    # add-task
    p_task = subparsers.add_parser("add-task", help="Add a backlog task")
    p_task.add_argument("project_id", type=int)
    p_task.add_argument("title")
    p_task.add_argument("--points", type=int, default=1)
    p_task.add_argument("--description")
    p_task.add_argument("--by", default=OPERATOR, help="Creator identifier")
    p_task.set_defaults(func=cmd_add_task)

    # import-backlog
    p_import = subparsers.add_parser("import-backlog", help="Import backlog tasks from a JSON file")
    p_import.add_argument("project_id", type=int)
    p_import.add_argument("file", help="JSON file (array, or object with 'items')")
    p_import.add_argument("--by", default=OPERATOR, help="Creator identifier")
    p_import.set_defaults(func=cmd_import_backlog)

    # report-bug
    p_bug = subparsers.add_parser("report-bug", help="Report a bug")
    p_bug.add_argument("project_id", type=int)
    p_bug.add_argument("title")
    p_bug.add_argument("--points", type=int, default=1)
    p_bug.add_argument("--description")
    p_bug.add_argument("--by", default=OPERATOR, help="Reporter identifier")
    p_bug.set_defaults(func=cmd_report_bug)

    # sprint-status
    p_status = subparsers.add_parser("sprint-status", help="Show the active sprint")
    p_status.add_argument("project_id", type=int)
    p_status.set_defaults(func=cmd_sprint_status)

    # start-sprint
    p_start = subparsers.add_parser("start-sprint", help="Start a sprint")
    p_start.add_argument("project_id", type=int)
    p_start.add_argument("name")
    p_start.add_argument("--goal")
    p_start.add_argument("--start", help="YYYY-MM-DD [HH:MM] (date only = 09:00)")
    p_start.add_argument("--end", help="YYYY-MM-DD [HH:MM] (date only = 23:59)")
    p_start.add_argument("--by", default=OPERATOR, help="Actor identifier")
    p_start.set_defaults(func=cmd_start_sprint)

    # admit
    p_admit = subparsers.add_parser("admit", help="Move backlog tasks into the active sprint")
    p_admit.add_argument("project_id", type=int)
    p_admit.add_argument("task_ids", type=int, nargs="+")
    p_admit.add_argument("--by", default=OPERATOR, help="Actor identifier")
    p_admit.set_defaults(func=cmd_admit)

    # end-sprint
    p_end = subparsers.add_parser("end-sprint", help="End the active sprint")
    p_end.add_argument("project_id", type=int)
    p_end.add_argument("--by", default=OPERATOR, help="Actor identifier")
    p_end.set_defaults(func=cmd_end_sprint)

    # claim
    p_claim = subparsers.add_parser("claim", help="Claim tasks on behalf of a user")
    p_claim.add_argument("project_id", type=int)
    p_claim.add_argument("task_ids", type=int, nargs="+")
    p_claim.add_argument("--as", dest="user", required=True, help="User identifier")
    p_claim.set_defaults(func=cmd_claim)

    # complete
    p_complete = subparsers.add_parser("complete", help="Complete tasks on behalf of a user")
    p_complete.add_argument("project_id", type=int)
    p_complete.add_argument("task_ids", type=int, nargs="+")
    p_complete.add_argument("--as", dest="user", required=True, help="User identifier")
    p_complete.set_defaults(func=cmd_complete)

    # balance
    p_balance = subparsers.add_parser("balance", help="Show a user's XP")
    p_balance.add_argument("user")
    p_balance.set_defaults(func=cmd_balance)

    # leaderboard
    p_board = subparsers.add_parser("leaderboard", help="Top XP holders")
    p_board.add_argument("--limit", type=int, default=10)
    p_board.set_defaults(func=cmd_leaderboard)

    # tick
    p_tick = subparsers.add_parser("tick", help="Run the automation sweeps once")
    p_tick.set_defaults(func=cmd_tick)

    # run-automation
    p_run = subparsers.add_parser("run-automation", help="Run the automation loop until interrupted")
    p_run.set_defaults(func=cmd_run_automation)

    # reset-db
    p_reset = subparsers.add_parser("reset-db", help="Delete all data")
    p_reset.add_argument("--yes", action="store_true", help="Confirm the reset")
    p_reset.set_defaults(func=cmd_reset_db)

    args = parser.parse_args()
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
