#!/usr/bin/env python3
"""
Studio Clock

The studio works on wall-clock time in one configured IANA zone. Stored
*_at timestamps are UTC; sprint bounds, standup triggers and reminder
de-duplication use local time. Zone resolution falls back to Asia/Bangkok
and then to a fixed UTC+07:00 offset when the tz database is unavailable.
"""

import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Asia/Bangkok"
FALLBACK_OFFSET = timezone(timedelta(hours=7), "UTC+07:00")


def resolve_timezone(name: str | None) -> tzinfo:
    """Resolve name to a tzinfo, falling back to the studio default zone."""
    for candidate in (name, DEFAULT_TIMEZONE):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Timezone %r not available, trying fallback", candidate)
    return FALLBACK_OFFSET


class StudioClock:
    """Real clock in the studio's zone."""

    def __init__(self, tz_name: str | None = DEFAULT_TIMEZONE):
        self.tz = resolve_timezone(tz_name)

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)

    def local_now(self) -> datetime:
        """Current local wall-clock time, naive."""
        return self.now_utc().astimezone(self.tz).replace(tzinfo=None)

    def local_date(self) -> date:
        return self.local_now().date()


class FixedClock(StudioClock):
    """
    Clock pinned to a given UTC instant. Used by tests and dry runs; call
    advance() to move time forward.
    """

    def __init__(self, utc_now: datetime, tz_name: str | None = DEFAULT_TIMEZONE):
        super().__init__(tz_name)
        if utc_now.tzinfo is None:
            utc_now = utc_now.replace(tzinfo=timezone.utc)
        self._now = utc_now

    @classmethod
    def at_local(cls, local: datetime, tz_name: str | None = DEFAULT_TIMEZONE) -> "FixedClock":
        """Build a clock whose local wall-clock time is `local`."""
        tz = resolve_timezone(tz_name)
        return cls(local.replace(tzinfo=tz).astimezone(timezone.utc), tz_name)

    def now_utc(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> None:
        self._now += timedelta(**kwargs)
