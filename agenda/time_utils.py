"""Calendar helpers shared by the recurrence evaluator and aggregation."""

from __future__ import annotations

import calendar
from datetime import date, datetime, time
from typing import Callable, List

Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Return the current clinic-local time as a naive ``datetime``."""

    return datetime.now().replace(microsecond=0)


def to_local_naive(value: datetime) -> datetime:
    """Return ``value`` as naive clinic-local time.

    Aware values (e.g. ``...Z`` timestamps from a calendar export) are
    converted to the local zone first; naive values are returned unchanged.
    """

    if value.tzinfo is None or value.utcoffset() is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def month_days(year: int, month: int) -> List[date]:
    """Return every date of ``month`` in ascending order.

    Raises ``ValueError`` when ``(year, month)`` is not a calendar month.
    """

    if not 1 <= month <= 12:
        raise ValueError(f"month must be between 1 and 12; got {month!r}")
    _, count = calendar.monthrange(year, month)
    return [date(year, month, day) for day in range(1, count + 1)]


def sunday_weekday(day: date) -> int:
    """Return the weekday of ``day`` numbered from Sunday (0) to Saturday (6)."""

    return (day.weekday() + 1) % 7


def day_key(value: date | datetime) -> str:
    """Return the ``YYYY-MM-DD`` prefix used for per-day matching."""

    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


def in_month(value: datetime, year: int, month: int) -> bool:
    return value.year == year and value.month == month


def parse_time_of_day(text: str) -> time:
    """Parse ``HH:MM`` (or ``HH:MM:SS``) into a ``time``."""

    cleaned = (text or "").strip()
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(cleaned, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"invalid time of day {text!r}; expected HH:MM")


__all__ = [
    "Clock",
    "local_now",
    "to_local_naive",
    "month_days",
    "sunday_weekday",
    "day_key",
    "in_month",
    "parse_time_of_day",
]
