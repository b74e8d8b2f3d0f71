from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta

# Report periods
TODAY = "today"
YESTERDAY = "yesterday"
LAST_7_DAYS = "last7days"
LAST_30_DAYS = "last30days"
THIS_MONTH = "thisMonth"
LAST_MONTH = "lastMonth"
CUSTOM = "custom"

REPORT_PERIODS = (TODAY, YESTERDAY, LAST_7_DAYS, LAST_30_DAYS, THIS_MONTH, LAST_MONTH, CUSTOM)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values (SQLite drops tzinfo) and normalise aware ones."""
    if value is None:
        return None
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.min, tzinfo=timezone.utc)


def end_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.max, tzinfo=timezone.utc)


def lookback_start(period: str, now: datetime) -> Optional[datetime]:
    """Start of a trailing window ending at ``now``; ``None`` for ``all``."""
    if period == "all":
        return None
    if period == "today":
        return start_of_day(now)
    if period == "day":
        return now - timedelta(days=1)
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return now - relativedelta(months=1)
    if period == "year":
        return now - relativedelta(years=1)
    raise ValueError(f"Unknown period: {period}")


def report_range(
    period: str,
    now: datetime,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """Resolve a report period to an inclusive ``(start, end)`` pair of day bounds.

    Custom periods without both bounds fall back to the last 30 days.
    """
    range_start = start_of_day(now)
    range_end = end_of_day(now)

    if period == TODAY:
        pass
    elif period == YESTERDAY:
        range_start -= timedelta(days=1)
        range_end -= timedelta(days=1)
    elif period == LAST_7_DAYS:
        range_start -= timedelta(days=6)
    elif period == LAST_30_DAYS:
        range_start -= timedelta(days=29)
    elif period == THIS_MONTH:
        range_start = range_start.replace(day=1)
    elif period == LAST_MONTH:
        range_start = range_start.replace(day=1) - relativedelta(months=1)
        range_end = end_of_day(now.replace(day=1) - timedelta(days=1))
    elif period == CUSTOM:
        if start and end:
            range_start = start_of_day(ensure_utc(start))
            range_end = end_of_day(ensure_utc(end))
        else:
            range_start -= timedelta(days=29)
    else:
        raise ValueError(f"Unknown report period: {period}")

    return range_start, range_end


def days_in_range(start: datetime, end: datetime) -> list[str]:
    """ISO dates from ``start`` to ``end`` inclusive."""
    days: list[str] = []
    current: date = start.date()
    while current <= end.date():
        days.append(current.isoformat())
        current += timedelta(days=1)
    return days
