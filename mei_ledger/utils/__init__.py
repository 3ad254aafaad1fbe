"""Utility helpers."""

from mei_ledger.utils.dates import (
    DUE_DAY,
    days_until,
    due_date_for_period,
    format_due_date,
    month_bounds,
    next_due_date,
    next_period_key,
    parse_period_key,
    period_key,
    year_bounds,
)

__all__ = [
    "DUE_DAY",
    "days_until",
    "due_date_for_period",
    "format_due_date",
    "month_bounds",
    "next_due_date",
    "next_period_key",
    "parse_period_key",
    "period_key",
    "year_bounds",
]
