"""
Period Calculator - canonical period buckets for time-series rollups.

Converts timestamps into canonical period-start dates and half-open date
ranges for the four supported granularities. All functions are pure and
operate on UTC-normalized calendar dates.

Week buckets start on Monday (ISO weeks): a Sunday belongs to the week that
started six days earlier.
"""

import calendar
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Union

from feedback_analytics.models.enums import Granularity

DateLike = Union[date, datetime, str]


def to_utc_date(value: DateLike) -> date:
    """
    Normalize a date, datetime or ISO string to a UTC calendar date.

    Naive datetimes are taken as UTC; aware datetimes are converted first.
    """
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        value = datetime.fromisoformat(text.replace("Z", "+00:00"))

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()

    return value


def start_of_day(value: date) -> datetime:
    """Naive UTC midnight of a date, for timestamp range queries."""
    return datetime.combine(value, time.min)


def add_months(value: date, months: int) -> date:
    """Shift a date by whole calendar months, clamping the day to the month end."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def period_start_date(value: DateLike, granularity: Union[Granularity, str]) -> date:
    """Canonical start date of the period containing ``value``."""
    granularity = Granularity(granularity)
    day = to_utc_date(value)

    if granularity == Granularity.DAY:
        return day
    if granularity == Granularity.WEEK:
        # weekday(): Monday == 0 ... Sunday == 6, so Sunday rolls back to the prior Monday
        return day - timedelta(days=day.weekday())
    if granularity == Granularity.MONTH:
        return day.replace(day=1)
    return date(day.year, 1, 1)


def period_start(value: DateLike, granularity: Union[Granularity, str]) -> str:
    """
    Canonical period-start date string (YYYY-MM-DD).

    Args:
        value: Date, datetime or ISO string
        granularity: day, week, month or year

    Returns:
        The date itself (day), Monday of its ISO week (week), the 1st of its
        month (month) or January 1st of its year (year)

    Raises:
        ValueError: For an unknown granularity

    Example:
        >>> period_start("2026-10-18", "week")
        '2026-10-12'
    """
    return period_start_date(value, granularity).isoformat()


def next_period(value: DateLike, granularity: Union[Granularity, str]) -> date:
    """Advance a date by one bucket of the granularity."""
    granularity = Granularity(granularity)
    day = to_utc_date(value)

    if granularity == Granularity.DAY:
        return day + timedelta(days=1)
    if granularity == Granularity.WEEK:
        return day + timedelta(days=7)
    if granularity == Granularity.MONTH:
        return add_months(day, 1)
    return add_months(day, 12)


def period_range(period_start_value: DateLike, granularity: Union[Granularity, str]) -> tuple[date, date]:
    """
    Half-open ``[start, end)`` date range of a period.

    The range spans exactly one day, seven days, one calendar month or one
    calendar year. Every period membership test uses this range so a
    timestamp on a boundary belongs to exactly one bucket.
    """
    start = to_utc_date(period_start_value)
    return start, next_period(start, granularity)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Every calendar day in the half-open range ``[start, end)``."""
    current = start
    while current < end:
        yield current
        current += timedelta(days=1)


def iter_periods(
    window_start: DateLike, now: DateLike, granularity: Union[Granularity, str]
) -> Iterator[str]:
    """
    Period-start strings from the bucket containing ``window_start`` through
    the bucket containing ``now``, inclusive, in chronological order.
    """
    current = period_start_date(window_start, granularity)
    last = period_start_date(now, granularity)
    while current <= last:
        yield current.isoformat()
        current = period_start_date(next_period(current, granularity), granularity)
