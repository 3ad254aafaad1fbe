"""Tests for DAS obligations and the DAS amount rules."""

from datetime import date
from decimal import Decimal

import pytest

from mei_ledger.config import AppSettings
from mei_ledger.models import (
    EntryKind,
    ErrorCode,
    LedgerEntryCreate,
    LinkedKind,
    TaxObligationCreate,
    TaxObligationUpdate,
    TaxStatus,
)
from mei_ledger.tax import TaxObligationService, calculate_das_amount


def pending(competence="2026-09", amount="80.90"):
    return TaxObligationCreate(competence=competence, amount=Decimal(amount))


async def create(app, payload=None):
    result = await app.tax.create_obligation(payload or pending())
    assert result.success, result.error
    return result.data


async def entries(app):
    return (await app.ledger.list_entries()).data


class TestCalculateDasAmount:
    """Fixed monthly DAS with the default minimum wage of R$ 1518.00."""

    def test_services(self):
        assert calculate_das_amount("services") == Decimal("80.90")

    def test_commerce(self):
        assert calculate_das_amount("commerce") == Decimal("76.90")

    def test_both(self):
        assert calculate_das_amount("both") == Decimal("81.90")

    def test_truck_driver(self):
        assert calculate_das_amount("services", truck_driver=True) == Decimal("187.16")

    def test_custom_minimum_wage(self):
        assert calculate_das_amount("commerce", minimum_wage=Decimal("1412.00")) == Decimal("71.60")

    def test_unknown_activity(self):
        with pytest.raises(ValueError):
            calculate_das_amount("farming")

    def test_service_method_uses_settings(self, app):
        assert app.tax.calculate_das_amount("both") == Decimal("81.90")


class TestCreateObligation:

    @pytest.mark.asyncio
    async def test_due_date_defaults_from_competence(self, app):
        obligation = await create(app)

        assert obligation.owner_id == "owner-1"
        assert obligation.status == TaxStatus.PENDING
        assert obligation.due_date == date(2026, 10, 20)
        assert await entries(app) == []

    @pytest.mark.asyncio
    async def test_explicit_due_date_is_kept(self, app):
        payload = TaxObligationCreate(
            competence="2026-09", amount=Decimal("80.90"), due_date=date(2026, 10, 21),
        )
        obligation = await create(app, payload)

        assert obligation.due_date == date(2026, 10, 21)

    @pytest.mark.asyncio
    async def test_created_as_paid_writes_entry(self, app):
        payload = TaxObligationCreate(
            competence="2026-09",
            amount=Decimal("80.90"),
            status=TaxStatus.PAID,
            payment_date=date(2026, 10, 10),
        )
        obligation = await create(app, payload)

        [entry] = await entries(app)
        assert obligation.status == TaxStatus.PAID
        assert obligation.transaction_id == entry.id
        assert entry.entry_date == date(2026, 10, 10)
        assert entry.linked_kind == LinkedKind.TAX_OBLIGATION

    @pytest.mark.asyncio
    async def test_signed_out(self, app, identity):
        identity.sign_out()

        result = await app.tax.create_obligation(pending())

        assert not result.success
        assert result.error_code == ErrorCode.NOT_AUTHENTICATED


class TestStatusTransitions:
    """pending <-> paid keeps exactly one expense entry while paid."""

    @pytest.mark.asyncio
    async def test_mark_as_paid_creates_expense_entry(self, app):
        obligation = await create(app)

        result = await app.tax.mark_as_paid(obligation.id, date(2026, 10, 18))

        assert result.success
        paid = result.data
        [entry] = await entries(app)
        assert paid.status == TaxStatus.PAID
        assert paid.payment_date == date(2026, 10, 18)
        assert paid.transaction_id == entry.id
        assert entry.kind == EntryKind.EXPENSE
        assert entry.amount == Decimal("80.90")
        assert entry.entry_date == date(2026, 10, 18)
        assert "DAS" in entry.description
        assert "2026-09" in entry.description
        assert entry.payment_method == "Transfer"

    @pytest.mark.asyncio
    async def test_mark_as_paid_twice_keeps_one_entry(self, app):
        obligation = await create(app)
        await app.tax.mark_as_paid(obligation.id, date(2026, 10, 18))

        again = await app.tax.mark_as_paid(obligation.id, date(2026, 10, 19))

        assert again.success
        assert again.data.payment_date == date(2026, 10, 18)
        assert len(await entries(app)) == 1

    @pytest.mark.asyncio
    async def test_mark_as_paid_with_receipt(self, app):
        obligation = await create(app)

        result = await app.tax.mark_as_paid(
            obligation.id, date(2026, 10, 18), receipt=b"%PDF-1.4", receipt_filename="das.pdf",
        )

        url = result.data.receipt_url
        assert url.endswith("_das.pdf")
        assert app.tax._receipts.files[url] == b"%PDF-1.4"

    @pytest.mark.asyncio
    async def test_paid_then_pending_leaves_no_entry(self, app):
        obligation = await create(app)
        await app.tax.mark_as_paid(obligation.id, date(2026, 10, 18))

        result = await app.tax.mark_as_pending(obligation.id)

        reopened = result.data
        assert reopened.status == TaxStatus.PENDING
        assert reopened.payment_date is None
        assert reopened.transaction_id is None
        assert await entries(app) == []

    @pytest.mark.asyncio
    async def test_mark_pending_obligation_as_pending(self, app):
        obligation = await create(app)

        result = await app.tax.mark_as_pending(obligation.id)

        assert result.success
        assert result.data.status == TaxStatus.PENDING

    @pytest.mark.asyncio
    async def test_update_with_status_paid(self, app):
        obligation = await create(app)

        result = await app.tax.update_obligation(
            obligation.id,
            TaxObligationUpdate(status=TaxStatus.PAID, payment_date=date(2026, 10, 12)),
        )

        assert result.data.status == TaxStatus.PAID
        [entry] = await entries(app)
        assert entry.entry_date == date(2026, 10, 12)

    @pytest.mark.asyncio
    async def test_update_with_status_paid_defaults_to_today(self, app):
        obligation = await create(app)

        result = await app.tax.update_obligation(
            obligation.id, TaxObligationUpdate(status=TaxStatus.PAID),
        )

        assert result.data.payment_date == date(2026, 10, 15)

    @pytest.mark.asyncio
    async def test_update_with_status_pending(self, app):
        obligation = await create(app)
        await app.tax.mark_as_paid(obligation.id, date(2026, 10, 18))

        result = await app.tax.update_obligation(
            obligation.id, TaxObligationUpdate(status=TaxStatus.PENDING),
        )

        assert result.data.status == TaxStatus.PENDING
        assert await entries(app) == []


class TestUpdateObligation:

    @pytest.mark.asyncio
    async def test_paid_amount_change_updates_entry(self, app):
        obligation = await create(app)
        await app.tax.mark_as_paid(obligation.id, date(2026, 10, 18))

        result = await app.tax.update_obligation(
            obligation.id, TaxObligationUpdate(amount=Decimal("81.90")),
        )

        assert result.data.amount == Decimal("81.90")
        [entry] = await entries(app)
        assert entry.amount == Decimal("81.90")

    @pytest.mark.asyncio
    async def test_competence_change_moves_due_date_and_description(self, app):
        obligation = await create(app)
        await app.tax.mark_as_paid(obligation.id, date(2026, 10, 18))

        result = await app.tax.update_obligation(
            obligation.id, TaxObligationUpdate(competence="2026-10"),
        )

        assert result.data.due_date == date(2026, 11, 20)
        [entry] = await entries(app)
        assert "2026-10" in entry.description

    @pytest.mark.asyncio
    async def test_pending_update_touches_no_entry(self, app):
        obligation = await create(app)

        result = await app.tax.update_obligation(
            obligation.id, TaxObligationUpdate(das_number="0712345"),
        )

        assert result.data.das_number == "0712345"
        assert await entries(app) == []

    @pytest.mark.asyncio
    async def test_empty_update_returns_current(self, app):
        obligation = await create(app)

        result = await app.tax.update_obligation(obligation.id, TaxObligationUpdate())

        assert result.data.id == obligation.id

    @pytest.mark.asyncio
    async def test_not_found(self, app):
        result = await app.tax.update_obligation(
            "missing", TaxObligationUpdate(amount=Decimal("1")),
        )

        assert result.error_code == ErrorCode.NOT_FOUND


class TestDeleteAndReceipts:

    @pytest.mark.asyncio
    async def test_delete_removes_entry_and_receipt(self, app):
        obligation = await create(app)
        paid = (await app.tax.mark_as_paid(
            obligation.id, date(2026, 10, 18), receipt=b"receipt",
        )).data

        result = await app.tax.delete_obligation(obligation.id)

        assert result.success
        assert await entries(app) == []
        assert paid.receipt_url not in app.tax._receipts.files
        assert (await app.tax.get_obligation(obligation.id)).error_code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_delete_missing(self, app):
        result = await app.tax.delete_obligation("missing")

        assert not result.success
        assert result.error_code == ErrorCode.NOT_FOUND
        assert result.error.message == "Error deleting DAS payment"

    @pytest.mark.asyncio
    async def test_attach_receipt_replaces_old_one(self, app):
        obligation = await create(app)
        first = (await app.tax.attach_receipt(obligation.id, b"one", "one.pdf")).data

        second = (await app.tax.attach_receipt(obligation.id, b"two", "two.pdf")).data

        files = app.tax._receipts.files
        assert first.receipt_url not in files
        assert files[second.receipt_url] == b"two"

    @pytest.mark.asyncio
    async def test_attach_empty_receipt_fails(self, app):
        obligation = await create(app)

        result = await app.tax.attach_receipt(obligation.id, b"", "empty.pdf")

        assert result.error_code == ErrorCode.STORE_ERROR


class TestEnsureNextPeriod:

    @pytest.mark.asyncio
    async def test_creates_next_obligation(self, app):
        result = await app.tax.ensure_next_period()

        obligation = result.data
        assert obligation.due_date == date(2026, 10, 20)
        assert obligation.competence == "2026-09"
        assert obligation.amount == Decimal("80.90")
        assert obligation.status == TaxStatus.PENDING

    @pytest.mark.asyncio
    async def test_second_call_returns_existing(self, app):
        first = (await app.tax.ensure_next_period()).data
        second = (await app.tax.ensure_next_period()).data

        assert first.id == second.id
        assert len((await app.tax.list_obligations()).data) == 1

    @pytest.mark.asyncio
    async def test_after_due_day_rolls_to_next_month(self, app):
        app.tax._clock = lambda: date(2026, 12, 21)

        obligation = (await app.tax.ensure_next_period()).data

        assert obligation.due_date == date(2027, 1, 20)
        assert obligation.competence == "2026-12"


class TestBalanceCheck:
    """Only enforced when enabled in AppSettings."""

    def service(self, app):
        return TaxObligationService(
            app.context,
            app.stores.tax_obligations,
            app.engine,
            settings=AppSettings(enforce_balance_check=True),
            summary=app.summary,
            receipts=app.tax._receipts,
            clock=lambda: date(2026, 10, 15),
        )

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, app):
        obligation = await create(app)

        result = await self.service(app).mark_as_paid(obligation.id, date(2026, 10, 18))

        assert result.error_code == ErrorCode.INSUFFICIENT_BALANCE
        assert "80.90" in result.error.message
        assert await entries(app) == []

    @pytest.mark.asyncio
    async def test_enough_balance(self, app):
        await app.ledger.create_entry(LedgerEntryCreate(
            kind=EntryKind.INCOME, entry_date=date(2026, 10, 2), amount=Decimal("500"),
        ))
        obligation = await create(app)

        result = await self.service(app).mark_as_paid(obligation.id, date(2026, 10, 18))

        assert result.success

    @pytest.mark.asyncio
    async def test_disabled_by_default(self, app):
        obligation = await create(app)

        result = await app.tax.mark_as_paid(obligation.id, date(2026, 10, 18))

        assert result.success
