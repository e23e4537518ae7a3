#!/usr/bin/env python3
"""
Sprint Bot Domain Events

Events describe committed state changes and are handed to a notification
dispatcher after the transaction commits. Delivery is fire-and-forget: a
failing dispatcher is logged and never undoes or fails the operation that
produced the event.
"""

import logging
import queue
import threading
from dataclasses import asdict, dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------


@dataclass
class Event:
    project_id: int
    actor: str

    @property
    def event_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event_type, **asdict(self)}


@dataclass
class TaskClaimed(Event):
    task_ids: list[int] = field(default_factory=list)


@dataclass
class TaskCompleted(Event):
    task_ids: list[int] = field(default_factory=list)
    xp_awarded: int = 0
    balance: int = 0


@dataclass
class TaskAssigned(Event):
    task_id: int = 0
    assignee: str = ""


@dataclass
class TaskOverdue(Event):
    task_id: int = 0
    title: str = ""
    assignee: str | None = None
    overdue_hours: int = 0


@dataclass
class SprintStarted(Event):
    sprint_id: int = 0
    name: str = ""
    start_local: str | None = None
    end_local: str | None = None


@dataclass
class SprintEnded(Event):
    sprint_id: int = 0
    name: str = ""
    velocity: int = 0
    completed: int = 0
    rolled_back: int = 0


@dataclass
class BugClaimed(Event):
    task_id: int = 0


@dataclass
class BugFixed(Event):
    task_id: int = 0
    xp_awarded: int = 0
    balance: int = 0


@dataclass
class StandupOpened(Event):
    local_date: str = ""
    channel_ref: str | None = None
    reports: list[dict[str, Any]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Dispatchers
# ---------------------------------------------------------------------------


class Dispatcher:
    """Notification sink. Subclasses implement deliver()."""

    def deliver(self, event: Event) -> None:
        raise NotImplementedError


class LoggingDispatcher(Dispatcher):
    """Writes every event to the log. Default when no presentation is wired."""

    def deliver(self, event: Event) -> None:
        logger.info("event %s %s", event.event_type, event.to_dict())


class QueueDispatcher(Dispatcher):
    """Buffers events until the presentation layer drains them."""

    def __init__(self, maxsize: int = 0):
        self._queue: queue.Queue[Event] = queue.Queue(maxsize)

    def deliver(self, event: Event) -> None:
        self._queue.put_nowait(event)

    def drain(self, limit: int | None = None) -> list[Event]:
        events: list[Event] = []
        while limit is None or len(events) < limit:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return events


class RecordingDispatcher(Dispatcher):
    """Keeps delivered events in a list."""

    def __init__(self):
        self.events: list[Event] = []
        self._lock = threading.Lock()

    def deliver(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: type) -> list[Event]:
        with self._lock:
            return [e for e in self.events if isinstance(e, event_type)]


def dispatch(dispatcher: Dispatcher | None, event: Event) -> None:
    """Hand event to dispatcher; failures are logged, never raised."""
    if dispatcher is None:
        return
    try:
        dispatcher.deliver(event)
    except Exception:
        logger.exception("Dispatcher failed to deliver %s", event.event_type)
