"""Tests for the DAS date helpers."""

from datetime import date, datetime

import pytest

from mei_ledger.utils.dates import (
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


class TestNextDueDate:
    """The DAS falls due on the 20th."""

    def test_before_due_day_is_same_month(self):
        assert next_due_date(date(2026, 3, 15)) == date(2026, 3, 20)

    def test_on_due_day_is_same_month(self):
        assert next_due_date(date(2026, 3, 20)) == date(2026, 3, 20)

    def test_after_due_day_is_next_month(self):
        assert next_due_date(date(2026, 3, 25)) == date(2026, 4, 20)

    def test_december_rolls_over_to_january(self):
        assert next_due_date(date(2026, 12, 25)) == date(2027, 1, 20)

    def test_accepts_datetime(self):
        assert next_due_date(datetime(2026, 3, 21, 8, 30)) == date(2026, 4, 20)


class TestDaysUntil:

    def test_same_day_is_zero(self):
        assert days_until(date(2026, 10, 20), date(2026, 10, 20)) == 0

    def test_future(self):
        assert days_until(date(2026, 10, 20), date(2026, 10, 15)) == 5

    def test_overdue_is_negative(self):
        assert days_until(date(2026, 10, 20), date(2026, 10, 22)) == -2

    def test_partial_day_rounds_up(self):
        assert days_until(date(2026, 10, 20), datetime(2026, 10, 19, 18, 0)) == 1


class TestPeriodKeys:

    def test_period_key(self):
        assert period_key(date(2026, 3, 31)) == "2026-03"

    def test_next_period_key(self):
        assert next_period_key(date(2026, 3, 1)) == "2026-04"
        assert next_period_key(date(2026, 12, 31)) == "2027-01"

    def test_parse_period_key(self):
        assert parse_period_key("2026-09") == (2026, 9)

    @pytest.mark.parametrize("key", ["2026-9", "2026-13", "09-2026", "garbage", "2026-00"])
    def test_parse_rejects_malformed(self, key):
        with pytest.raises(ValueError):
            parse_period_key(key)

    def test_due_date_for_period(self):
        assert due_date_for_period("2026-09") == date(2026, 10, 20)
        assert due_date_for_period("2026-12") == date(2027, 1, 20)


class TestFormattingAndBounds:

    def test_format_due_date(self):
        assert format_due_date(date(2026, 1, 5)) == "05/01/2026"

    def test_month_bounds(self):
        assert month_bounds(date(2028, 2, 10)) == (date(2028, 2, 1), date(2028, 2, 29))

    def test_year_bounds(self):
        assert year_bounds(date(2026, 6, 1)) == (date(2026, 1, 1), date(2026, 12, 31))
