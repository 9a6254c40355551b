"""Business-day arithmetic (Monday to Friday, no holiday calendar)."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

_SATURDAY = 5
_SUNDAY = 6


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def is_business_day(day: date) -> bool:
    return day.weekday() not in (_SATURDAY, _SUNDAY)


def add_business_days(start: datetime, business_days: int) -> datetime:
    """Step forward one calendar day at a time, counting only weekdays.

    The time of day of ``start`` is preserved. Starting on a weekend still
    counts the following Monday as the first business day.
    """
    result = start
    remaining = business_days
    while remaining > 0:
        result = result + timedelta(days=1)
        if is_business_day(result):
            remaining -= 1
    return result
