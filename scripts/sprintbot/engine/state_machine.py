#!/usr/bin/env python3
"""
Sprint Bot Task State Machine

Defines valid task item status transitions per kind and validates them.

Task diagram:
    backlog     → todo         (admitted into the active sprint)
    todo        → in_progress  (claimed or started)
    in_progress → done         (completed by the assignee)
    todo        → backlog      (rolled back at sprint end)
    in_progress → backlog      (rolled back at sprint end)

Bug diagram (bugs never enter backlog):
    todo        → in_progress  (claimed)
    todo        → done         (fixed without a prior claim)
    in_progress → in_progress  (re-claimed by the same actor)
    in_progress → done         (fixed)

done is terminal for both kinds; the only way back into motion is a new item.
The claim protocol expresses each of these transitions as a conditional
UPDATE whose WHERE clause is derived from the same rules.
"""

from .models import TaskKind, TaskStatus


# ---------------------------------------------------------------------------
# Valid transitions: {kind: {from_status: set(to_statuses)}}
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[TaskKind, dict[TaskStatus, frozenset[TaskStatus]]] = {
    TaskKind.TASK: {
        TaskStatus.BACKLOG: frozenset([TaskStatus.TODO]),
        TaskStatus.TODO: frozenset([TaskStatus.IN_PROGRESS, TaskStatus.BACKLOG]),
        TaskStatus.IN_PROGRESS: frozenset([TaskStatus.DONE, TaskStatus.BACKLOG]),
        TaskStatus.DONE: frozenset(),
    },
    TaskKind.BUG: {
        TaskStatus.TODO: frozenset([TaskStatus.IN_PROGRESS, TaskStatus.DONE]),
        TaskStatus.IN_PROGRESS: frozenset([TaskStatus.IN_PROGRESS, TaskStatus.DONE]),
        TaskStatus.DONE: frozenset(),
    },
}

# Initial status on creation
INITIAL_STATUS: dict[TaskKind, TaskStatus] = {
    TaskKind.TASK: TaskStatus.BACKLOG,
    TaskKind.BUG: TaskStatus.TODO,
}


# ---------------------------------------------------------------------------
# Error types
# ---------------------------------------------------------------------------


class InvalidTransitionError(ValueError):
    """Raised when a status transition is not allowed by the state machine."""

    def __init__(
        self,
        kind: TaskKind,
        from_status: TaskStatus,
        to_status: TaskStatus,
        task_id: int | None = None,
    ):
        self.kind = kind
        self.from_status = from_status
        self.to_status = to_status
        self.task_id = task_id
        task_info = f" (task_id={task_id})" if task_id is not None else ""
        allowed = sorted(s.value for s in available_transitions(kind, from_status))
        super().__init__(
            f"Invalid {kind.value} transition{task_info}: "
            f"'{from_status.value}' -> '{to_status.value}'. "
            f"Valid transitions from '{from_status.value}': {allowed}"
        )


class UnknownStatusError(ValueError):
    """Raised when a status is unknown, or not defined for the item's kind."""

    def __init__(self, kind: TaskKind, status: str):
        self.kind = kind
        self.status = status
        valid = sorted(s.value for s in VALID_TRANSITIONS[kind])
        super().__init__(
            f"Unknown {kind.value} status: '{status}'. Valid statuses: {valid}"
        )


# ---------------------------------------------------------------------------
# State machine functions
# ---------------------------------------------------------------------------


def _coerce(kind: TaskKind, status: TaskStatus | str) -> TaskStatus:
    try:
        coerced = TaskStatus(status)
    except ValueError:
        raise UnknownStatusError(kind, str(status)) from None
    if coerced not in VALID_TRANSITIONS[kind]:
        raise UnknownStatusError(kind, coerced.value)
    return coerced


def validate_transition(
    kind: TaskKind,
    from_status: TaskStatus | str,
    to_status: TaskStatus | str,
    task_id: int | None = None,
) -> None:
    """
    Validate that a status transition is allowed for an item of this kind.

    Raises:
        UnknownStatusError: if either status is unknown or undefined for kind
        InvalidTransitionError: if the transition is not in VALID_TRANSITIONS
    """
    src = _coerce(kind, from_status)
    dst = _coerce(kind, to_status)
    if dst not in VALID_TRANSITIONS[kind][src]:
        raise InvalidTransitionError(kind, src, dst, task_id)


def can_transition(kind: TaskKind, from_status: TaskStatus | str, to_status: TaskStatus | str) -> bool:
    """Return True if the transition from_status → to_status is valid for kind."""
    try:
        validate_transition(kind, from_status, to_status)
    except ValueError:
        return False
    return True


def is_terminal(status: TaskStatus | str) -> bool:
    """Return True if the status is terminal (no further transitions possible)."""
    return TaskStatus(status) is TaskStatus.DONE


def is_claimable(kind: TaskKind, status: TaskStatus | str, assignee: str | None, actor: str) -> bool:
    """
    Return True if actor may take ownership of an item in this state.

    Tasks: todo and unassigned. Bugs: todo/in_progress, unassigned or
    already held by actor.
    """
    status = TaskStatus(status)
    if kind is TaskKind.TASK:
        return status is TaskStatus.TODO and assignee is None
    return status in (TaskStatus.TODO, TaskStatus.IN_PROGRESS) and assignee in (None, actor)


def available_transitions(kind: TaskKind, from_status: TaskStatus | str) -> frozenset[TaskStatus]:
    """Return the set of valid destination statuses from from_status."""
    try:
        return VALID_TRANSITIONS[kind].get(TaskStatus(from_status), frozenset())
    except ValueError:
        return frozenset()


def source_statuses(kind: TaskKind, to_status: TaskStatus | str) -> frozenset[TaskStatus]:
    """Return the set of statuses from which an item of kind may move to to_status."""
    dst = _coerce(kind, to_status)
    return frozenset(src for src, targets in VALID_TRANSITIONS[kind].items() if dst in targets)


def sql_source_list(kind: TaskKind, to_status: TaskStatus | str) -> str:
    """
    Render source_statuses() as an SQL list literal, e.g. "'todo', 'in_progress'".

    Conditional UPDATEs guard on `status IN (...)` built from this, so the
    store only ever applies transitions listed in VALID_TRANSITIONS.
    """
    return ", ".join(f"'{s.value}'" for s in sorted(source_statuses(kind, to_status), key=lambda s: s.value))
