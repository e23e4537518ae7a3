"""
Tests for engine/claim.py

Validates:
- claim_tasks: todo → in_progress, race losers get Conflict, batches are partial
- complete_tasks: only the assignee completes, XP awarded atomically
- start_tasks / assign_task: lead assignment then assignee start
- admit_to_sprint: backlog → todo inside the active sprint, lead only
- claim_bug / fix_bug: bug protocol, lead override, bug XP
- Read-only listings
- Concurrent claims from separate connections: exactly one winner
"""

import sys
import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from sprintbot.engine.backlog import create_task, report_bug
from sprintbot.engine.claim import (
    BatchResult,
    ItemResult,
    admit_to_sprint,
    assign_task,
    claim_bug,
    claim_tasks,
    complete_tasks,
    fix_bug,
    get_task,
    list_claimable,
    list_my_items,
    list_open_bugs,
    list_sprint_items,
    start_tasks,
)
from sprintbot.engine.events import (
    BugClaimed,
    BugFixed,
    RecordingDispatcher,
    TaskAssigned,
    TaskClaimed,
    TaskCompleted,
)
from sprintbot.engine.models import TaskStatus
from sprintbot.engine.outcomes import Conflict, Forbidden, Invalid, NotFound
from sprintbot.engine.projects import upsert_project
from sprintbot.engine.rewards import get_balance
from sprintbot.engine.schema import create_db, open_db
from sprintbot.engine.sprints import start_sprint

NOW = datetime(2025, 3, 10, 2, 0, tzinfo=timezone.utc)


@pytest.fixture
def db_conn(tmp_path):
    conn = create_db(str(tmp_path / "test.db"))
    yield conn
    conn.close()


@pytest.fixture
def project(db_conn):
    return upsert_project(db_conn, "Demo", "chan-main", now=NOW)


def _start(conn, project_id):
    result = start_sprint(conn, project_id, "Sprint 1", "lead", True, now=NOW)
    return result.sprint


def _sprint_tasks(conn, project_id, points=(1,)):
    """Create tasks with the given points and admit them to a fresh sprint."""
    _start(conn, project_id)
    ids = [create_task(conn, project_id, f"Task {i}", "lead", points=p, now=NOW).id for i, p in enumerate(points)]
    admitted = admit_to_sprint(conn, project_id, ids, "lead", True)
    assert isinstance(admitted, BatchResult)
    return ids


# ---------------------------------------------------------------------------
# claim_tasks
# ---------------------------------------------------------------------------


def test_claim_moves_todo_to_in_progress(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id)
    result = claim_tasks(db_conn, project.id, [task_id], "alice")

    assert isinstance(result, BatchResult)
    assert result.ids == [task_id]
    assert not result.partial
    task = get_task(db_conn, task_id)
    assert task.status == TaskStatus.IN_PROGRESS
    assert task.assignee == "alice"


def test_claim_held_task_is_conflict(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id)
    claim_tasks(db_conn, project.id, [task_id], "alice")

    result = claim_tasks(db_conn, project.id, [task_id], "bob")

    assert isinstance(result, Conflict)
    assert "held by alice" in result.message
    assert get_task(db_conn, task_id).assignee == "alice"


def test_claim_backlog_task_is_conflict(db_conn, project):
    task = create_task(db_conn, project.id, "Not admitted", "lead", now=NOW)
    result = claim_tasks(db_conn, project.id, [task.id], "alice")
    assert isinstance(result, Conflict)
    assert "backlog" in result.message


def test_claim_missing_task_is_not_found(db_conn, project):
    result = claim_tasks(db_conn, project.id, [999], "alice")
    assert isinstance(result, NotFound)


def test_claim_task_of_other_project_is_not_found(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id)
    other = upsert_project(db_conn, "Other", "chan-other", now=NOW)
    result = claim_tasks(db_conn, other.id, [task_id], "alice")
    assert isinstance(result, NotFound)


def test_claim_partial_batch(db_conn, project):
    first, second = _sprint_tasks(db_conn, project.id, points=(1, 2))
    claim_tasks(db_conn, project.id, [second], "bob")

    result = claim_tasks(db_conn, project.id, [first, second], "alice")

    assert isinstance(result, BatchResult)
    assert result.ids == [first]
    assert result.partial
    assert isinstance(result.skipped[second], Conflict)
    d = result.to_dict()
    assert d["succeeded"] == [first]
    assert d["skipped"] == 1


def test_claim_batch_all_lost_is_conflict_with_counts(db_conn, project):
    ids = _sprint_tasks(db_conn, project.id, points=(1, 2))
    claim_tasks(db_conn, project.id, ids, "bob")

    result = claim_tasks(db_conn, project.id, ids, "alice")

    assert isinstance(result, Conflict)
    assert result.succeeded == 0
    assert result.skipped == 2


def test_claim_no_ids_is_invalid(db_conn, project):
    assert isinstance(claim_tasks(db_conn, project.id, [], "alice"), Invalid)


@pytest.mark.parametrize("operation", [claim_tasks, start_tasks, complete_tasks])
def test_malformed_task_id_is_invalid(db_conn, project, operation):
    result = operation(db_conn, project.id, ["abc"], "alice")
    assert isinstance(result, Invalid)
    assert "abc" in result.message
    assert not db_conn.in_transaction


def test_admit_malformed_task_id_is_invalid(db_conn, project):
    _start(db_conn, project.id)
    assert isinstance(admit_to_sprint(db_conn, project.id, [None], "lead", True), Invalid)


def test_claim_duplicate_ids_counted_once(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id)
    result = claim_tasks(db_conn, project.id, [task_id, task_id], "alice")
    assert isinstance(result, BatchResult)
    assert result.ids == [task_id]
    assert not result.partial


def test_claim_emits_event(db_conn, project):
    ids = _sprint_tasks(db_conn, project.id, points=(1, 1))
    recorder = RecordingDispatcher()
    claim_tasks(db_conn, project.id, ids, "alice", dispatcher=recorder)

    (event,) = recorder.of_type(TaskClaimed)
    assert event.task_ids == ids
    assert event.actor == "alice"


def test_lost_claim_emits_nothing(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id)
    claim_tasks(db_conn, project.id, [task_id], "alice")
    recorder = RecordingDispatcher()
    claim_tasks(db_conn, project.id, [task_id], "bob", dispatcher=recorder)
    assert recorder.events == []


# ---------------------------------------------------------------------------
# complete_tasks
# ---------------------------------------------------------------------------


def test_complete_awards_xp(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id, points=(5,))
    claim_tasks(db_conn, project.id, [task_id], "alice")
    recorder = RecordingDispatcher()

    result = complete_tasks(db_conn, project.id, [task_id], "alice", dispatcher=recorder)

    assert isinstance(result, BatchResult)
    assert result.xp_awarded == 50
    assert result.balance == 50
    assert get_balance(db_conn, "alice") == 50
    assert get_task(db_conn, task_id).status == TaskStatus.DONE
    (event,) = recorder.of_type(TaskCompleted)
    assert event.xp_awarded == 50


def test_complete_batch_sums_xp_with_floor(db_conn, project):
    ids = _sprint_tasks(db_conn, project.id, points=(1, 3))
    claim_tasks(db_conn, project.id, ids, "alice")

    result = complete_tasks(db_conn, project.id, ids, "alice")

    # 1 point hits the 10 XP floor, 3 points earns 30
    assert result.xp_awarded == 40
    assert get_balance(db_conn, "alice") == 40


def test_complete_by_non_assignee_is_conflict(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id)
    claim_tasks(db_conn, project.id, [task_id], "alice")

    result = complete_tasks(db_conn, project.id, [task_id], "bob")

    assert isinstance(result, Conflict)
    assert get_balance(db_conn, "bob") == 0
    assert get_task(db_conn, task_id).status == TaskStatus.IN_PROGRESS


def test_complete_requires_in_progress(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id)
    result = complete_tasks(db_conn, project.id, [task_id], "alice")
    assert isinstance(result, Conflict)
    assert "from status 'todo'" in result.message
    assert get_task(db_conn, task_id).status == TaskStatus.TODO


def test_complete_twice_awards_once(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id, points=(2,))
    claim_tasks(db_conn, project.id, [task_id], "alice")
    complete_tasks(db_conn, project.id, [task_id], "alice")

    again = complete_tasks(db_conn, project.id, [task_id], "alice")

    assert isinstance(again, Conflict)
    assert "already done" in again.message
    assert get_balance(db_conn, "alice") == 20


# ---------------------------------------------------------------------------
# assign_task / start_tasks
# ---------------------------------------------------------------------------


def test_assign_then_start(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id)
    recorder = RecordingDispatcher()

    assigned = assign_task(db_conn, task_id, "alice", "lead", True, dispatcher=recorder)

    assert isinstance(assigned, ItemResult)
    assert assigned.item.assignee == "alice"
    assert assigned.item.status == TaskStatus.TODO
    (event,) = recorder.of_type(TaskAssigned)
    assert event.assignee == "alice"

    assert isinstance(start_tasks(db_conn, project.id, [task_id], "bob"), Conflict)
    started = start_tasks(db_conn, project.id, [task_id], "alice")
    assert isinstance(started, BatchResult)
    assert get_task(db_conn, task_id).status == TaskStatus.IN_PROGRESS


def test_assigned_task_is_not_claimable_by_others(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id)
    assign_task(db_conn, task_id, "alice", "lead", True)
    assert isinstance(claim_tasks(db_conn, project.id, [task_id], "bob"), Conflict)
    assert list_claimable(db_conn, project.id) == []


def test_assign_requires_privilege(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id)
    assert isinstance(assign_task(db_conn, task_id, "alice", "bob", False), Forbidden)


def test_assign_backlog_task_is_conflict(db_conn, project):
    task = create_task(db_conn, project.id, "Backlog", "lead", now=NOW)
    assert isinstance(assign_task(db_conn, task.id, "alice", "lead", True), Conflict)


def test_assign_done_task_is_conflict(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id)
    claim_tasks(db_conn, project.id, [task_id], "alice")
    complete_tasks(db_conn, project.id, [task_id], "alice")
    result = assign_task(db_conn, task_id, "bob", "lead", True)
    assert isinstance(result, Conflict)
    assert "already done" in result.message


def test_assign_missing_task_is_not_found(db_conn, project):
    assert isinstance(assign_task(db_conn, 404, "alice", "lead", True), NotFound)


def test_assign_empty_assignee_is_invalid(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id)
    assert isinstance(assign_task(db_conn, task_id, "", "lead", True), Invalid)


# ---------------------------------------------------------------------------
# admit_to_sprint
# ---------------------------------------------------------------------------


def test_admit_requires_privilege(db_conn, project):
    _start(db_conn, project.id)
    task = create_task(db_conn, project.id, "T", "lead", now=NOW)
    assert isinstance(admit_to_sprint(db_conn, project.id, [task.id], "bob", False), Forbidden)


def test_admit_without_active_sprint_is_not_found(db_conn, project):
    task = create_task(db_conn, project.id, "T", "lead", now=NOW)
    assert isinstance(admit_to_sprint(db_conn, project.id, [task.id], "lead", True), NotFound)


def test_admit_binds_task_to_sprint(db_conn, project):
    sprint = _start(db_conn, project.id)
    task = create_task(db_conn, project.id, "T", "lead", now=NOW)

    result = admit_to_sprint(db_conn, project.id, [task.id], "lead", True)

    assert isinstance(result, BatchResult)
    admitted = get_task(db_conn, task.id)
    assert admitted.status == TaskStatus.TODO
    assert admitted.sprint_id == sprint.id
    assert [t.id for t in list_sprint_items(db_conn, sprint.id)] == [task.id]


def test_admit_twice_is_conflict(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id)
    result = admit_to_sprint(db_conn, project.id, [task_id], "lead", True)
    assert isinstance(result, Conflict)


# ---------------------------------------------------------------------------
# Bugs
# ---------------------------------------------------------------------------


def test_bug_claim_and_fix(db_conn, project):
    bug = report_bug(db_conn, project.id, "Crash on load", "qa", points=8, now=NOW)
    recorder = RecordingDispatcher()

    claimed = claim_bug(db_conn, bug.id, "alice", dispatcher=recorder)
    assert isinstance(claimed, ItemResult)
    assert claimed.item.status == TaskStatus.IN_PROGRESS

    fixed = fix_bug(db_conn, bug.id, "alice", dispatcher=recorder)
    assert isinstance(fixed, ItemResult)
    assert fixed.xp_awarded == 40
    assert get_balance(db_conn, "alice") == 40
    assert len(recorder.of_type(BugClaimed)) == 1
    assert len(recorder.of_type(BugFixed)) == 1


def test_bug_reclaim_by_holder_is_allowed(db_conn, project):
    bug = report_bug(db_conn, project.id, "Bug", "qa", now=NOW)
    claim_bug(db_conn, bug.id, "alice")
    assert isinstance(claim_bug(db_conn, bug.id, "alice"), ItemResult)


def test_bug_claim_held_by_other_is_conflict(db_conn, project):
    bug = report_bug(db_conn, project.id, "Bug", "qa", now=NOW)
    claim_bug(db_conn, bug.id, "alice")
    result = claim_bug(db_conn, bug.id, "bob")
    assert isinstance(result, Conflict)
    assert "held by alice" in result.message


def test_fix_unclaimed_bug_uses_floor(db_conn, project):
    bug = report_bug(db_conn, project.id, "Typo", "qa", points=1, now=NOW)
    result = fix_bug(db_conn, bug.id, "bob")
    assert result.xp_awarded == 20
    assert get_task(db_conn, bug.id).assignee == "bob"


def test_fix_held_bug_needs_holder_or_lead(db_conn, project):
    bug = report_bug(db_conn, project.id, "Bug", "qa", points=2, now=NOW)
    claim_bug(db_conn, bug.id, "alice")

    assert isinstance(fix_bug(db_conn, bug.id, "bob"), Conflict)

    overridden = fix_bug(db_conn, bug.id, "lead", is_privileged=True)
    assert isinstance(overridden, ItemResult)
    assert get_balance(db_conn, "lead") == 20
    assert get_balance(db_conn, "alice") == 0


def test_fix_done_bug_is_conflict(db_conn, project):
    bug = report_bug(db_conn, project.id, "Bug", "qa", now=NOW)
    fix_bug(db_conn, bug.id, "alice")
    assert isinstance(fix_bug(db_conn, bug.id, "alice"), Conflict)
    assert isinstance(claim_bug(db_conn, bug.id, "alice"), Conflict)
    assert get_balance(db_conn, "alice") == 20


def test_claim_tasks_ignores_bugs(db_conn, project):
    bug = report_bug(db_conn, project.id, "Bug", "qa", now=NOW)
    assert isinstance(claim_tasks(db_conn, project.id, [bug.id], "alice"), Conflict)


def test_claim_bug_on_task_is_conflict(db_conn, project):
    (task_id,) = _sprint_tasks(db_conn, project.id)
    result = claim_bug(db_conn, task_id, "alice")
    assert isinstance(result, Conflict)
    assert get_task(db_conn, task_id).status == TaskStatus.TODO


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


def test_list_claimable_and_my_items(db_conn, project):
    first, second, third = _sprint_tasks(db_conn, project.id, points=(1, 2, 3))
    claim_tasks(db_conn, project.id, [first], "alice")
    assign_task(db_conn, third, "alice", "lead", True)
    bug = report_bug(db_conn, project.id, "Bug", "qa", now=NOW)
    claim_bug(db_conn, bug.id, "alice")

    assert [t.id for t in list_claimable(db_conn, project.id)] == [second]
    mine = list_my_items(db_conn, "alice", project.id)
    assert [t.id for t in mine] == [first, bug.id, third]
    assert list_my_items(db_conn, "bob") == []


def test_list_open_bugs_excludes_done(db_conn, project):
    open_bug = report_bug(db_conn, project.id, "Open", "qa", now=NOW)
    done_bug = report_bug(db_conn, project.id, "Done", "qa", now=NOW)
    fix_bug(db_conn, done_bug.id, "alice")
    assert [b.id for b in list_open_bugs(db_conn, project.id)] == [open_bug.id]


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


def test_concurrent_claims_single_winner(tmp_path):
    """Eight connections race for one task; exactly one claim succeeds."""
    db_path = tmp_path / "race.db"
    setup = create_db(db_path)
    project = upsert_project(setup, "Race", "chan-race", now=NOW)
    (task_id,) = _sprint_tasks(setup, project.id)
    setup.close()

    n = 8
    barrier = threading.Barrier(n)
    results: list = [None] * n

    def worker(index):
        conn = open_db(db_path)
        try:
            barrier.wait()
            results[index] = claim_tasks(conn, project.id, [task_id], f"user-{index}")
        finally:
            conn.close()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    winners = [r for r in results if isinstance(r, BatchResult)]
    losers = [r for r in results if isinstance(r, Conflict)]
    assert len(winners) == 1
    assert len(losers) == n - 1

    check = open_db(db_path)
    try:
        task = get_task(check, task_id)
        assert task.assignee == f"user-{results.index(winners[0])}"
    finally:
        check.close()
