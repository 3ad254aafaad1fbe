"""
Tax Obligation Service

Manages the monthly DAS obligations of the signed-in owner.

STATUS TRANSITIONS:
- pending -> paid: an expense entry is written, then linked
- paid -> pending: the link and payment date are cleared, the entry deleted
- delete: the obligation, its expense entry and its receipt all go

DAS AMOUNT:
The fixed monthly DAS of an MEI is the INSS share (5% of the minimum
wage, 12% for truck drivers) plus R$5 ISS for service activities and
R$1 ICMS for commerce/industry.
"""

from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional

import structlog

from mei_ledger.audit import AuditLogger, create_correlation_id
from mei_ledger.config import AppSettings
from mei_ledger.context import OwnerContext
from mei_ledger.models.ledger import (
    TaxObligation,
    TaxObligationCreate,
    TaxObligationUpdate,
    TaxStatus,
)
from mei_ledger.models.results import OperationResult
from mei_ledger.operations import BaseService, InsufficientBalanceError
from mei_ledger.services.receipts import ReceiptStorageInterface
from mei_ledger.services.storage import NotFoundError, TaxObligationStorageInterface
from mei_ledger.summary import SummaryCalculator
from mei_ledger.sync import SynchronizationEngine
from mei_ledger.utils.dates import due_date_for_period, next_due_date, period_key


logger = structlog.get_logger("mei_ledger.tax")

CENT = Decimal("0.01")

INSS_RATE = Decimal("0.05")
INSS_RATE_TRUCK_DRIVER = Decimal("0.12")
ISS_AMOUNT = Decimal("5.00")
ICMS_AMOUNT = Decimal("1.00")

ACTIVITIES = ("commerce", "services", "both")


def calculate_das_amount(
    activity: str,
    truck_driver: bool = False,
    minimum_wage: Decimal = Decimal("1518.00"),
) -> Decimal:
    """
    Monthly DAS for an MEI.

    Args:
        activity: "commerce", "services" or "both"
        truck_driver: MEI truck drivers pay 12% INSS instead of 5%
        minimum_wage: Minimum wage in force

    Raises:
        ValueError: For an unknown activity
    """
    if activity not in ACTIVITIES:
        raise ValueError(f"Unknown MEI activity: {activity!r}")

    rate = INSS_RATE_TRUCK_DRIVER if truck_driver else INSS_RATE
    amount = (minimum_wage * rate).quantize(CENT, rounding=ROUND_HALF_UP)
    if activity in ("services", "both"):
        amount += ISS_AMOUNT
    if activity in ("commerce", "both"):
        amount += ICMS_AMOUNT
    return amount


class TaxObligationService(BaseService):
    """DAS obligations of the signed-in owner."""

    def __init__(
        self,
        context: OwnerContext,
        obligations: TaxObligationStorageInterface,
        engine: SynchronizationEngine,
        settings: Optional[AppSettings] = None,
        summary: Optional[SummaryCalculator] = None,
        receipts: Optional[ReceiptStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], date] = date.today,
        receipts_folder: Optional[str] = None,
    ):
        super().__init__(context, receipts, audit_logger)
        self._obligations = obligations
        self._engine = engine
        self._settings = settings or AppSettings()
        self._summary = summary
        self._clock = clock
        self._receipts_folder = receipts_folder

    # =========================================================================
    # READS
    # =========================================================================

    async def list_obligations(
        self,
        competence: Optional[str] = None,
        status: Optional[TaxStatus] = None,
        due_from: Optional[date] = None,
        due_to: Optional[date] = None,
    ) -> OperationResult:
        return await self._run(
            "list_obligations",
            "Error fetching DAS payments",
            lambda owner_id: self._obligations.list_obligations(
                owner_id,
                competence=competence,
                status=status,
                due_from=due_from,
                due_to=due_to,
            ),
        )

    async def _require(self, owner_id: str, obligation_id: str) -> TaxObligation:
        obligation = await self._obligations.get_obligation(owner_id, obligation_id)
        if obligation is None:
            raise NotFoundError(f"Tax obligation not found: {obligation_id}")
        return obligation

    async def get_obligation(self, obligation_id: str) -> OperationResult:
        return await self._run(
            "get_obligation",
            "DAS payment not found",
            lambda owner_id: self._require(owner_id, obligation_id),
        )

    # =========================================================================
    # WRITES
    # =========================================================================

    async def _check_balance(self, amount: Decimal) -> None:
        """Refuse a payment the current month's balance can't cover."""
        if not self._settings.enforce_balance_check or self._summary is None:
            return
        summary = await self._summary.summarize("month")
        if summary.balance < amount:
            raise InsufficientBalanceError(
                f"Insufficient balance: current balance R$ {summary.balance:.2f}, "
                f"DAS amount R$ {amount:.2f}"
            )

    async def create_obligation(self, payload: TaxObligationCreate) -> OperationResult:
        """
        Register an obligation.

        The due date defaults to the one derived from the competence. An
        obligation registered as paid gets its expense entry first.
        """
        async def work(owner_id: str) -> TaxObligation:
            obligation = TaxObligation(
                owner_id=owner_id,
                competence=payload.competence,
                due_date=payload.due_date or due_date_for_period(
                    payload.competence, self._settings.tax_due_day
                ),
                amount=payload.amount,
                das_number=payload.das_number,
                receipt_url=payload.receipt_url,
            )
            if payload.status == TaxStatus.PAID:
                await self._check_balance(payload.amount)
            return await self._engine.create_obligation(
                obligation,
                payment_date=payload.payment_date if payload.status == TaxStatus.PAID else None,
                correlation_id=create_correlation_id(),
            )

        return await self._run("create_obligation", "Error creating DAS payment", work)

    async def update_obligation(
        self,
        obligation_id: str,
        payload: TaxObligationUpdate,
    ) -> OperationResult:
        """Apply a partial update, running the status transition it implies."""
        async def work(owner_id: str) -> TaxObligation:
            current = await self._require(owner_id, obligation_id)
            changes = payload.changes()
            new_status = changes.pop("status", None) or current.status

            if "competence" in changes and "due_date" not in changes:
                changes["due_date"] = due_date_for_period(
                    changes["competence"], self._settings.tax_due_day
                )

            correlation_id = create_correlation_id()
            if current.status == TaxStatus.PENDING and new_status == TaxStatus.PAID:
                payment_date = changes.pop("payment_date", None) or self._clock()
                await self._check_balance(changes.get("amount", current.amount))
                return await self._engine.mark_paid(
                    owner_id, current, payment_date, changes, correlation_id,
                )
            if current.status == TaxStatus.PAID and new_status == TaxStatus.PENDING:
                changes.pop("payment_date", None)
                return await self._engine.mark_pending(owner_id, current, changes, correlation_id)
            if not changes:
                return current
            return await self._engine.update_obligation(owner_id, current, changes, correlation_id)

        return await self._run("update_obligation", "Error updating DAS payment", work)

    async def mark_as_paid(
        self,
        obligation_id: str,
        payment_date: date,
        receipt: Optional[bytes] = None,
        receipt_filename: str = "receipt.pdf",
    ) -> OperationResult:
        """
        pending -> paid, optionally storing the payment receipt.

        Marking an already-paid obligation returns it unchanged.
        """
        async def work(owner_id: str) -> TaxObligation:
            current = await self._require(owner_id, obligation_id)
            if current.status == TaxStatus.PAID:
                return current
            await self._check_balance(current.amount)

            changes = {}
            if receipt:
                changes["receipt_url"] = await self._upload_receipt(
                    receipt, receipt_filename, owner_id, self._receipts_folder,
                )
            try:
                paid = await self._engine.mark_paid(
                    owner_id, current, payment_date, changes, create_correlation_id(),
                )
            except Exception:
                await self._discard_receipt(changes.get("receipt_url"))
                raise
            if "receipt_url" in changes:
                await self._discard_receipt(current.receipt_url)
            return paid

        return await self._run("mark_as_paid", "Error registering DAS payment", work)

    async def mark_as_pending(self, obligation_id: str) -> OperationResult:
        """paid -> pending. A pending obligation is returned unchanged."""
        async def work(owner_id: str) -> TaxObligation:
            current = await self._require(owner_id, obligation_id)
            if current.status == TaxStatus.PENDING:
                return current
            return await self._engine.mark_pending(
                owner_id, current, correlation_id=create_correlation_id(),
            )

        return await self._run("mark_as_pending", "Error reopening DAS payment", work)

    async def delete_obligation(self, obligation_id: str) -> OperationResult:
        """Delete the obligation, its expense entry and its receipt."""
        async def work(owner_id: str) -> bool:
            current = await self._require(owner_id, obligation_id)
            await self._engine.delete_obligation(owner_id, current, create_correlation_id())
            await self._discard_receipt(current.receipt_url)
            return True

        return await self._run("delete_obligation", "Error deleting DAS payment", work)

    async def attach_receipt(
        self,
        obligation_id: str,
        content: bytes,
        filename: str,
    ) -> OperationResult:
        """Store a receipt and point the obligation at it, replacing any old one."""
        async def work(owner_id: str) -> TaxObligation:
            current = await self._require(owner_id, obligation_id)
            url = await self._upload_receipt(content, filename, owner_id, self._receipts_folder)
            try:
                updated = await self._obligations.update_obligation(
                    owner_id, obligation_id, {"receipt_url": url},
                )
            except Exception:
                await self._discard_receipt(url)
                raise
            await self._discard_receipt(current.receipt_url)
            return updated

        return await self._run("attach_receipt", "Error uploading DAS receipt", work)

    async def ensure_next_period(self) -> OperationResult:
        """
        Make sure the obligation that falls due next exists.

        The next due date is the 20th of this month (or of next month once
        the 20th has passed); its competence is the month before. Creates
        it as pending with the configured default amount when missing,
        otherwise returns the existing one.
        """
        async def work(owner_id: str) -> TaxObligation:
            due = next_due_date(self._clock(), self._settings.tax_due_day)
            competence = period_key(date(due.year, due.month, 1) - timedelta(days=1))

            existing = await self._obligations.list_obligations(owner_id, competence=competence)
            if existing:
                return existing[0]

            obligation = TaxObligation(
                owner_id=owner_id,
                competence=competence,
                due_date=due,
                amount=self.calculate_das_amount(
                    self._settings.das_activity, self._settings.das_truck_driver,
                ),
            )
            logger.info("next_period_created", owner_id=owner_id, competence=competence)
            return await self._engine.create_obligation(
                obligation, correlation_id=create_correlation_id(),
            )

        return await self._run("ensure_next_period", "Error creating next DAS payment", work)

    def calculate_das_amount(self, activity: str, truck_driver: bool = False) -> Decimal:
        """DAS amount using the configured minimum wage."""
        return calculate_das_amount(activity, truck_driver, self._settings.minimum_wage)
