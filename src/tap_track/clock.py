"""Wall-clock access, calendar-date keys and duration formatting."""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional

DATE_KEY_FMT = "%Y-%m-%d"


class Clock:
    """Source of the current time in the user's local timezone.

    Date keys are always derived from local time; deriving them from UTC would
    put late-evening sessions on the wrong day for users away from UTC.
    """

    def __init__(self, tz: Optional[tzinfo] = None) -> None:
        self.tz = tz

    def now(self) -> datetime:
        if self.tz is None:
            return datetime.now().astimezone()
        return datetime.now(self.tz)

    def today_key(self) -> str:
        return self.date_key(self.now())

    def date_key(self, value: datetime) -> str:
        return local_date_key(value, self.tz)


def local_date_key(value: datetime, tz: Optional[tzinfo] = None) -> str:
    """Return ``YYYY-MM-DD`` for the local calendar day containing ``value``."""
    if value.tzinfo is None:
        raise ValueError("Datetime must be timezone-aware")
    local = value.astimezone(tz) if tz is not None else value.astimezone()
    return local.date().isoformat()


def parse_date_key(value: str) -> date:
    return datetime.strptime(value, DATE_KEY_FMT).date()


def whole_seconds_between(start: datetime, end: datetime) -> int:
    """Whole seconds from ``start`` to ``end``, rounded down."""
    return math.floor((end - start).total_seconds())


def last_n_days(n: int, today: date) -> list[str]:
    """Return the last ``n`` date keys ending at ``today``, newest first."""
    return [(today - timedelta(days=offset)).isoformat() for offset in range(n)]


def format_time(seconds: Optional[int]) -> str:
    """Format seconds as ``HH:MM:SS``."""
    if not seconds:
        return "00:00:00"
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_duration(seconds: Optional[int]) -> str:
    """Format seconds as ``Xh Ym``, dropping a zero component."""
    if not seconds:
        return "0m"
    hours, remainder = divmod(int(seconds), 3600)
    minutes = remainder // 60
    if hours == 0:
        return f"{minutes}m"
    if minutes == 0:
        return f"{hours}h"
    return f"{hours}h {minutes}m"


def format_date(key: str) -> str:
    """Render a date key as e.g. ``Mon, Apr 5``."""
    day = parse_date_key(key)
    return f"{day.strftime('%a, %b')} {day.day}"
