"""
Date helpers for the monthly DAS obligation.

The DAS always falls due on the 20th of the month that follows its
competence period. Everything here is pure: no clock reads, no I/O.
"""

import calendar
import math
from datetime import date, datetime, timedelta
from typing import Union

DUE_DAY = 20

DateLike = Union[date, datetime]


def _as_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def _next_month(year: int, month: int) -> tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


def next_due_date(reference: DateLike, due_day: int = DUE_DAY) -> date:
    """
    Next DAS due date on or after the reference day.

    On or before the due day the obligation of the reference month is
    still open; after it, the next one falls in the following month.
    """
    year, month = reference.year, reference.month
    if reference.day > due_day:
        year, month = _next_month(year, month)
    return date(year, month, due_day)


def days_until(due: DateLike, reference: DateLike) -> int:
    """Whole days until `due`, rounded up. Negative once overdue."""
    delta = _as_datetime(due) - _as_datetime(reference)
    return math.ceil(delta / timedelta(days=1))


def period_key(value: DateLike) -> str:
    """Competence key "YYYY-MM" of the given date's own month."""
    return f"{value.year:04d}-{value.month:02d}"


def next_period_key(reference: DateLike) -> str:
    """Competence key of the month after the reference month."""
    year, month = _next_month(reference.year, reference.month)
    return f"{year:04d}-{month:02d}"


def parse_period_key(key: str) -> tuple[int, int]:
    """Split "YYYY-MM" into (year, month), rejecting anything else."""
    try:
        year_text, month_text = key.split("-")
        year, month = int(year_text), int(month_text)
    except ValueError:
        raise ValueError(f"Invalid competence period: {key!r} (expected YYYY-MM)") from None
    if len(year_text) != 4 or len(month_text) != 2 or not 1 <= month <= 12:
        raise ValueError(f"Invalid competence period: {key!r} (expected YYYY-MM)")
    return year, month


def due_date_for_period(key: str, due_day: int = DUE_DAY) -> date:
    """Due date of a competence period: the due day of the following month."""
    year, month = _next_month(*parse_period_key(key))
    return date(year, month, due_day)


def format_due_date(value: DateLike) -> str:
    """DD/MM/YYYY, the format alert messages carry."""
    return f"{value.day:02d}/{value.month:02d}/{value.year:04d}"


def month_bounds(reference: DateLike) -> tuple[date, date]:
    """First and last day of the reference month."""
    last_day = calendar.monthrange(reference.year, reference.month)[1]
    return (
        date(reference.year, reference.month, 1),
        date(reference.year, reference.month, last_day),
    )


def year_bounds(reference: DateLike) -> tuple[date, date]:
    """First and last day of the reference year."""
    return date(reference.year, 1, 1), date(reference.year, 12, 31)
