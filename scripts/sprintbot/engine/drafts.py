#!/usr/bin/env python3
"""
Sprint Draft Sessions

Two-step sprint creation: a lead names the sprint, then picks start and end
bounds in separate interactions. Partial input lives in a SprintDraftStore
keyed by a random token. Drafts belong to the actor who opened them and
expire DRAFT_TTL after creation; expiry is checked on every read, so an
abandoned draft never needs a sweeper.

The store is process-local and guarded by a lock; a draft is popped before
it is finalized, so a double submit finalizes at most once.
"""

import secrets
import sqlite3
import threading
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any

from .events import Dispatcher
from .outcomes import Conflict, Forbidden, Invalid, NotFound
from .sprints import BACKLOG_OFFER_LIMIT, SprintStart, start_sprint

DRAFT_TTL = timedelta(minutes=20)

# Offered bounds: the next PICKER_DAYS days at each of PICKER_HOURS
PICKER_DAYS = 5
PICKER_HOURS = (9, 12, 15, 18, 21)
PICKER_FORMAT = "%Y-%m-%d %H:%M"


@dataclass(frozen=True)
class SprintDraft:
    token: str
    project_id: int
    owner: str
    name: str
    goal: str
    created_at: datetime
    start_local: datetime | None = None
    end_local: datetime | None = None

    @property
    def complete(self) -> bool:
        return self.start_local is not None and self.end_local is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "project_id": self.project_id,
            "name": self.name,
            "goal": self.goal,
            "start_local": self.start_local.strftime(PICKER_FORMAT) if self.start_local else None,
            "end_local": self.end_local.strftime(PICKER_FORMAT) if self.end_local else None,
        }


def picker_options(local_today: date) -> list[str]:
    """Selectable sprint bounds, formatted for parse_picker_value()."""
    options = []
    for offset in range(PICKER_DAYS):
        day = local_today + timedelta(days=offset)
        for hour in PICKER_HOURS:
            options.append(datetime(day.year, day.month, day.day, hour).strftime(PICKER_FORMAT))
    return options


def parse_picker_value(raw: str | None) -> datetime | None:
    try:
        return datetime.strptime((raw or "").strip(), PICKER_FORMAT)
    except ValueError:
        return None


class SprintDraftStore:
    """Token-keyed, TTL-bounded sprint drafts."""

    def __init__(self, ttl: timedelta = DRAFT_TTL):
        self.ttl = ttl
        self._drafts: dict[str, SprintDraft] = {}
        self._lock = threading.Lock()

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def open(self, project_id: int, owner: str, name: str, goal: str = "", now: datetime | None = None) -> SprintDraft | Invalid:
        name = (name or "").strip()
        if not name:
            return Invalid("Sprint name must not be empty")
        draft = SprintDraft(
            token=secrets.token_hex(6),
            project_id=project_id,
            owner=owner,
            name=name,
            goal=(goal or "").strip(),
            created_at=now or self._now(),
        )
        with self._lock:
            self._drafts[draft.token] = draft
        return draft

    def _get_locked(self, token: str, actor: str, now: datetime) -> SprintDraft | NotFound | Forbidden:
        draft = self._drafts.get(token)
        if draft is None:
            return NotFound("sprint draft", token)
        if now - draft.created_at > self.ttl:
            del self._drafts[token]
            return NotFound("sprint draft", token)
        if draft.owner != actor:
            return Forbidden("edit another member's sprint draft")
        return draft

    def get(self, token: str, actor: str, now: datetime | None = None) -> SprintDraft | NotFound | Forbidden:
        with self._lock:
            return self._get_locked(token, actor, now or self._now())

    def set_bound(
        self,
        token: str,
        actor: str,
        start_local: datetime | None = None,
        end_local: datetime | None = None,
        now: datetime | None = None,
    ) -> SprintDraft | NotFound | Forbidden:
        """Record a start and/or end bound; unset arguments keep their value."""
        with self._lock:
            draft = self._get_locked(token, actor, now or self._now())
            if not isinstance(draft, SprintDraft):
                return draft
            changes = {}
            if start_local is not None:
                changes["start_local"] = start_local
            if end_local is not None:
                changes["end_local"] = end_local
            draft = replace(draft, **changes)
            self._drafts[token] = draft
            return draft

    def discard(self, token: str) -> bool:
        with self._lock:
            return self._drafts.pop(token, None) is not None

    def purge_expired(self, now: datetime | None = None) -> int:
        now = now or self._now()
        with self._lock:
            expired = [t for t, d in self._drafts.items() if now - d.created_at > self.ttl]
            for token in expired:
                del self._drafts[token]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._drafts)

    def finalize(
        self,
        conn: sqlite3.Connection,
        token: str,
        actor: str,
        is_privileged: bool,
        offer_limit: int = BACKLOG_OFFER_LIMIT,
        now: datetime | None = None,
        dispatcher: Dispatcher | None = None,
    ) -> SprintStart | SprintDraft | Forbidden | Invalid | NotFound | Conflict:
        """
        Start the sprint once both bounds are set.

        Returns the draft itself while a bound is still missing, so the
        caller can show what has been picked so far.
        """
        with self._lock:
            draft = self._get_locked(token, actor, now or self._now())
            if not isinstance(draft, SprintDraft):
                return draft
            if not draft.complete:
                return draft
            if draft.end_local < draft.start_local:
                return Invalid("Sprint end must not be before its start")
            del self._drafts[token]
        return start_sprint(
            conn,
            draft.project_id,
            draft.name,
            actor,
            is_privileged,
            goal=draft.goal,
            start_local=draft.start_local,
            end_local=draft.end_local,
            offer_limit=offer_limit,
            now=now,
            dispatcher=dispatcher,
        )
