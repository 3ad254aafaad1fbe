"""
Summary Calculator

Income, expense and balance over the current month or year.

DESIGN DECISION: The summary is a read-only projection for dashboards.
It never fails: when the ledger can't be read (or nobody is signed in)
it returns a zero summary and logs why.
"""

from datetime import date
from decimal import Decimal
from typing import Callable, Union

import structlog

from mei_ledger.context import OwnerContext
from mei_ledger.models.ledger import EntryKind, FinancialSummary, SummaryPeriod
from mei_ledger.services.storage import LedgerStorageInterface
from mei_ledger.utils.dates import month_bounds, year_bounds


logger = structlog.get_logger("mei_ledger.summary")

Clock = Callable[[], date]


class SummaryCalculator:
    """
    Period totals for the signed-in owner.

    Args:
        context: Owner resolution
        ledger: Ledger store to read from
        clock: Returns "today"; read at every call
    """

    def __init__(
        self,
        context: OwnerContext,
        ledger: LedgerStorageInterface,
        clock: Clock = date.today,
    ):
        self._context = context
        self._ledger = ledger
        self._clock = clock

    def bounds(self, period: SummaryPeriod) -> tuple[date, date]:
        """First and last day of the current month or year."""
        today = self._clock()
        if period == SummaryPeriod.YEAR:
            return year_bounds(today)
        return month_bounds(today)

    async def summarize(
        self,
        period: Union[SummaryPeriod, str] = SummaryPeriod.MONTH,
    ) -> FinancialSummary:
        period = SummaryPeriod(period)
        try:
            owner_id = await self._context.require_owner()
            start, end = self.bounds(period)
            entries = await self._ledger.list_entries(owner_id, date_from=start, date_to=end)
        except Exception as e:
            logger.warning("summary_unavailable", period=period.value, error=str(e))
            return FinancialSummary.empty(period)

        income = sum(
            (e.amount for e in entries if e.kind == EntryKind.INCOME),
            Decimal("0"),
        )
        expense = sum(
            (e.amount for e in entries if e.kind == EntryKind.EXPENSE),
            Decimal("0"),
        )
        return FinancialSummary(
            period=period,
            start=start,
            end=end,
            income=income,
            expense=expense,
            balance=income - expense,
            entries=entries,
        )
