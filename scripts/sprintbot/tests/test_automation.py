"""
Tests for engine/automation.py

Validates:
- Standup prompt fires once per project per local day inside the window
- Overdue reminders: threshold, once per local day, sweep interval gate
- Sprint auto-close at the effective end, as the system actor, exactly once
- A failing sweep or dispatcher does not stop the other sweeps
- run_forever exits when its stop event is set
"""

import sys
import threading
from datetime import date, datetime, time, timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from sprintbot.engine.automation import AutomationScheduler, parse_standup_time
from sprintbot.engine.backlog import create_task
from sprintbot.engine.claim import admit_to_sprint, claim_tasks, complete_tasks
from sprintbot.engine.clock import FixedClock
from sprintbot.engine.events import (
    Dispatcher,
    RecordingDispatcher,
    SprintEnded,
    StandupOpened,
    TaskOverdue,
)
from sprintbot.engine.models import SYSTEM_ACTOR, BotConfig
from sprintbot.engine.projects import get_project, upsert_project
from sprintbot.engine.schema import create_db
from sprintbot.engine.sprints import get_active_sprint, start_sprint
from sprintbot.engine.standup import save_standup_report


@pytest.fixture
def db_conn(tmp_path):
    conn = create_db(str(tmp_path / "test.db"))
    yield conn
    conn.close()


@pytest.fixture
def project(db_conn):
    return upsert_project(db_conn, "Demo", "chan-main", standup_channel_ref="chan-standup")


def _scheduler(conn, local_now, **overrides):
    config = BotConfig(**overrides)
    clock = FixedClock.at_local(local_now, config.timezone)
    recorder = RecordingDispatcher()
    return AutomationScheduler(conn, config, clock=clock, dispatcher=recorder), clock, recorder


def test_parse_standup_time():
    assert parse_standup_time("09:30") == time(9, 30)
    with pytest.raises(ValueError):
        parse_standup_time("9am")


# ---------------------------------------------------------------------------
# Standup prompt
# ---------------------------------------------------------------------------


def test_standup_opens_once_per_day(db_conn, project):
    scheduler, clock, recorder = _scheduler(db_conn, datetime(2025, 3, 10, 9, 15))
    save_standup_report(db_conn, project.id, "alice", date(2025, 3, 10), today="Level design")

    assert scheduler.run_standup_prompt() == 1
    assert scheduler.run_standup_prompt() == 0

    (event,) = recorder.of_type(StandupOpened)
    assert event.local_date == "2025-03-10"
    assert event.channel_ref == "chan-standup"
    assert [r["user_id"] for r in event.reports] == ["alice"]
    assert get_project(db_conn, project.id).last_standup_date == date(2025, 3, 10)

    clock.advance(days=1)
    assert scheduler.run_standup_prompt() == 1
    assert len(recorder.of_type(StandupOpened)) == 2


def test_standup_falls_back_to_main_channel(db_conn):
    upsert_project(db_conn, "Plain", "chan-plain")
    scheduler, _, recorder = _scheduler(db_conn, datetime(2025, 3, 10, 9, 0))
    scheduler.run_standup_prompt()
    (event,) = recorder.of_type(StandupOpened)
    assert event.channel_ref == "chan-plain"


@pytest.mark.parametrize(
    "local_now,expected",
    [
        (datetime(2025, 3, 10, 8, 59), 0),
        (datetime(2025, 3, 10, 9, 0), 1),
        (datetime(2025, 3, 10, 9, 59), 1),
        (datetime(2025, 3, 10, 10, 0), 0),
    ],
)
def test_standup_window(db_conn, project, local_now, expected):
    scheduler, _, _ = _scheduler(db_conn, local_now)
    assert scheduler.run_standup_prompt() == expected


def test_standup_window_has_minimum_length(db_conn, project):
    scheduler, _, _ = _scheduler(db_conn, datetime(2025, 3, 10, 7, 0), standup_time="07:00", standup_grace_minutes=0)
    assert scheduler.in_standup_window(datetime(2025, 3, 10, 7, 0))
    assert not scheduler.in_standup_window(datetime(2025, 3, 10, 7, 1))


# ---------------------------------------------------------------------------
# Overdue reminders
# ---------------------------------------------------------------------------


def _sprint_task(conn, project_id, created_at, title="Task"):
    if get_active_sprint(conn, project_id) is None:
        start_sprint(conn, project_id, "S", "lead", True)
    task = create_task(conn, project_id, title, "lead", now=created_at)
    admit_to_sprint(conn, project_id, [task.id], "lead", True)
    return task.id


def test_overdue_reminder_once_per_day(db_conn, project):
    scheduler, clock, recorder = _scheduler(db_conn, datetime(2025, 3, 10, 14, 0))
    old = _sprint_task(db_conn, project.id, clock.now_utc() - timedelta(hours=25), "Old")
    _sprint_task(db_conn, project.id, clock.now_utc() - timedelta(hours=1), "Fresh")

    assert scheduler.run_overdue_reminders() == 1
    (event,) = recorder.of_type(TaskOverdue)
    assert event.task_id == old
    assert event.overdue_hours == 25
    assert event.actor == SYSTEM_ACTOR

    clock.advance(hours=1)
    assert scheduler.run_overdue_reminders() == 0

    clock.advance(days=1)
    assert scheduler.run_overdue_reminders() == 2


def test_overdue_sweep_interval_gate(db_conn, project):
    scheduler, clock, recorder = _scheduler(db_conn, datetime(2025, 3, 10, 14, 0))
    assert scheduler.run_overdue_reminders() == 0

    _sprint_task(db_conn, project.id, clock.now_utc() - timedelta(hours=30))
    clock.advance(minutes=10)
    assert scheduler.run_overdue_reminders() == 0

    clock.advance(minutes=20)
    assert scheduler.run_overdue_reminders() == 1


def test_overdue_skips_done_and_backlog(db_conn, project):
    scheduler, clock, recorder = _scheduler(db_conn, datetime(2025, 3, 10, 14, 0))
    long_ago = clock.now_utc() - timedelta(hours=48)
    done = _sprint_task(db_conn, project.id, long_ago)
    claim_tasks(db_conn, project.id, [done], "alice")
    complete_tasks(db_conn, project.id, [done], "alice")
    create_task(db_conn, project.id, "Backlog", "lead", now=long_ago)

    assert scheduler.run_overdue_reminders() == 0


def test_overdue_batch_limit(db_conn, project):
    scheduler, clock, recorder = _scheduler(db_conn, datetime(2025, 3, 10, 14, 0), overdue_batch_limit=2)
    for i in range(3):
        _sprint_task(db_conn, project.id, clock.now_utc() - timedelta(hours=30), f"T{i}")
    assert scheduler.run_overdue_reminders() == 2


# ---------------------------------------------------------------------------
# Sprint auto-close
# ---------------------------------------------------------------------------


def test_auto_close_after_midnight_end(db_conn, project):
    start_sprint(
        db_conn, project.id, "S", "lead", True,
        start_local=datetime(2025, 3, 10, 9, 0),
        end_local=datetime(2025, 3, 14, 0, 0),
    )
    scheduler, clock, recorder = _scheduler(db_conn, datetime(2025, 3, 14, 23, 59))

    assert scheduler.run_sprint_auto_close() == 0

    clock.advance(minutes=1)
    assert scheduler.run_sprint_auto_close() == 1
    assert scheduler.run_sprint_auto_close() == 0

    (event,) = recorder.of_type(SprintEnded)
    assert event.actor == SYSTEM_ACTOR
    assert get_active_sprint(db_conn, project.id) is None


def test_sprint_without_end_never_auto_closes(db_conn, project):
    start_sprint(db_conn, project.id, "S", "lead", True)
    scheduler, _, _ = _scheduler(db_conn, datetime(2030, 1, 1, 12, 0))
    assert scheduler.run_sprint_auto_close() == 0


# ---------------------------------------------------------------------------
# tick / run_forever
# ---------------------------------------------------------------------------


def test_tick_summary(db_conn, project):
    start_sprint(db_conn, project.id, "S", "lead", True, end_local=datetime(2025, 3, 9, 18, 0))
    scheduler, _, _ = _scheduler(db_conn, datetime(2025, 3, 10, 9, 5))
    assert scheduler.tick() == {"standups_opened": 1, "overdue_reminders": 0, "sprints_closed": 1}


def test_failing_sweep_does_not_stop_others(db_conn, project, monkeypatch):
    start_sprint(db_conn, project.id, "S", "lead", True, end_local=datetime(2025, 3, 9, 18, 0))
    scheduler, _, _ = _scheduler(db_conn, datetime(2025, 3, 10, 9, 5))

    def boom():
        raise RuntimeError("standup store down")

    monkeypatch.setattr(scheduler, "run_standup_prompt", boom)
    summary = scheduler.tick()

    assert summary["standups_opened"] == -1
    assert summary["sprints_closed"] == 1
    assert not db_conn.in_transaction


def test_failing_dispatcher_does_not_undo_close(db_conn, project):
    class BrokenDispatcher(Dispatcher):
        def deliver(self, event):
            raise ConnectionError("chat gateway unreachable")

    start_sprint(db_conn, project.id, "S", "lead", True, end_local=datetime(2025, 3, 9, 18, 0))
    config = BotConfig()
    clock = FixedClock.at_local(datetime(2025, 3, 10, 12, 0), config.timezone)
    scheduler = AutomationScheduler(db_conn, config, clock=clock, dispatcher=BrokenDispatcher())

    assert scheduler.tick()["sprints_closed"] == 1
    assert get_active_sprint(db_conn, project.id) is None


def test_run_forever_stops_on_event(db_conn):
    scheduler, _, _ = _scheduler(db_conn, datetime(2025, 3, 10, 12, 0), tick_seconds=0)
    stop = threading.Event()
    ticks = []

    def tick():
        ticks.append(1)
        if len(ticks) == 3:
            stop.set()
        return {}

    scheduler.tick = tick
    scheduler.run_forever(stop)
    assert len(ticks) == 3
