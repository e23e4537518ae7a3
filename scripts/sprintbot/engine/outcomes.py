#!/usr/bin/env python3
"""
Sprint Bot Operation Outcomes

Every engine operation returns either a success payload or one of four
typed failures. Failures are ordinary return values, not exceptions: a
lost claim race is a Conflict the caller reports, never escalates.

    Invalid     malformed input (empty name, inverted date range)
    NotFound    referenced project/sprint/task absent
    Forbidden   actor lacks lead/admin privilege
    Conflict    race lost, item not in a claimable state, or an active
                 sprint already exists
"""

from typing import Any


class Failure:
    """Base class for typed failure results."""

    reason = "failure"
    success = False

    def __init__(self, message: str):
        self.message = message

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "reason": self.reason, "message": self.message}


class Invalid(Failure):
    reason = "invalid"


class NotFound(Failure):
    reason = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} {entity_id} not found")


class Forbidden(Failure):
    reason = "forbidden"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Only a lead or admin can {action}")


class Conflict(Failure):
    """
    Non-fatal conflict. For batch operations, succeeded/skipped carry how
    many items of the batch went through vs. were lost to a competitor.
    """

    reason = "conflict"

    def __init__(self, message: str, succeeded: int = 0, skipped: int = 0):
        self.succeeded = succeeded
        self.skipped = skipped
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["succeeded"] = self.succeeded
        d["skipped"] = self.skipped
        return d


def is_failure(result: Any) -> bool:
    """Return True if result is one of the typed failures."""
    return isinstance(result, Failure)
