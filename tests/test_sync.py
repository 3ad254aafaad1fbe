"""
Tests for ledger <-> derived record synchronization.

Every test runs against in-memory stores. Failure paths use store
subclasses that raise on a chosen call.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from mei_ledger.context import StaticIdentityProvider
from mei_ledger.models import (
    AuditEventType,
    EntryKind,
    ErrorCode,
    LedgerEntry,
    LedgerEntryCreate,
    LedgerEntryUpdate,
    LinkedKind,
    SaleCreate,
    TaxObligation,
    TaxObligationCreate,
    TaxStatus,
)
from mei_ledger.notifications import InMemoryNotificationCache
from mei_ledger.orchestrator import Stores, create_app_components
from mei_ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    InMemorySaleStorage,
    InMemoryTaxObligationStorage,
    StorageError,
)
from mei_ledger.sync import PartialSyncFailure, Saga, classify


OWNER = "owner-1"
TODAY = date(2026, 10, 15)


def build_app(stores: Stores):
    return create_app_components(
        StaticIdentityProvider(OWNER),
        use_storage=False,
        stores=stores,
        notification_cache=InMemoryNotificationCache(),
        today=lambda: TODAY,
        now=lambda: datetime(2026, 10, 15, 12, 0, tzinfo=timezone.utc),
    )


async def audit_types(app) -> list[AuditEventType]:
    return [e.event_type for e in await app.stores.audit.get_recent_events(limit=1000)]


async def assert_back_references_valid(app):
    """
    Every derived back-reference points at an existing entry of the same
    owner, and of the kind the record mirrors: a paid DAS links an expense,
    a sale an income.
    """
    obligations = await app.stores.tax_obligations.list_obligations(OWNER)
    sales = await app.stores.sales.list_sales(OWNER)
    for record in [*obligations, *sales]:
        if record.transaction_id is not None:
            entry = await app.stores.ledger.get_entry(OWNER, record.transaction_id)
            assert entry is not None, f"dangling reference on {record.id}"
            assert entry.owner_id == record.owner_id
    for obligation in obligations:
        if obligation.status == TaxStatus.PAID:
            assert obligation.payment_date is not None
            assert obligation.transaction_id is not None
            entry = await app.stores.ledger.get_entry(OWNER, obligation.transaction_id)
            assert entry.kind == EntryKind.EXPENSE, f"DAS {obligation.id} linked to {entry.kind}"
    for sale in sales:
        if sale.transaction_id is None:
            continue
        entry = await app.stores.ledger.get_entry(OWNER, sale.transaction_id)
        assert entry.kind == EntryKind.INCOME, f"sale {sale.id} linked to {entry.kind}"


class FailingSaleStorage(InMemorySaleStorage):
    async def insert_sale(self, sale):
        raise StorageError("sales sheet unavailable")


class FailingDeleteLedgerStorage(InMemoryLedgerStorage):
    async def delete_entry(self, owner_id, entry_id):
        raise StorageError("ledger sheet unavailable")


class FailingTaxUpdateStorage(InMemoryTaxObligationStorage):
    async def update_obligation(self, owner_id, obligation_id, changes):
        raise StorageError("tax sheet unavailable")


class TestClassify:

    def _entry(self, kind, description, linked_kind=None):
        return LedgerEntry(
            owner_id=OWNER,
            kind=kind,
            entry_date=TODAY,
            amount=Decimal("10"),
            description=description,
            linked_kind=linked_kind,
        )

    def test_expense_with_marker_is_tax(self):
        entry = self._entry(EntryKind.EXPENSE, "DAS - Competence 2026-09")
        assert classify(entry) == LinkedKind.TAX_OBLIGATION

    def test_expense_without_marker_is_plain(self):
        assert classify(self._entry(EntryKind.EXPENSE, "Office rent")) is None

    def test_income_is_sale(self):
        assert classify(self._entry(EntryKind.INCOME, "Consulting")) == LinkedKind.SALE

    def test_discriminator_wins_over_heuristic(self):
        entry = self._entry(EntryKind.EXPENSE, "Office rent", LinkedKind.TAX_OBLIGATION)
        assert classify(entry) == LinkedKind.TAX_OBLIGATION

    def test_custom_marker(self):
        entry = self._entry(EntryKind.EXPENSE, "Imposto mensal")
        assert classify(entry, marker="Imposto") == LinkedKind.TAX_OBLIGATION


class TestEntryDelete:
    """Deleting a ledger entry removes its derived record."""

    @pytest.mark.asyncio
    async def test_deleting_tax_entry_deletes_obligation(self, app):
        created = await app.tax.create_obligation(TaxObligationCreate(
            competence="2026-09",
            amount=Decimal("80.90"),
            status=TaxStatus.PAID,
            payment_date=date(2026, 10, 10),
        ))
        assert created.success
        entry = await app.stores.ledger.get_entry(OWNER, created.data.transaction_id)
        assert entry.kind == EntryKind.EXPENSE
        assert "DAS" in entry.description

        result = await app.ledger.delete_entry(entry.id)

        assert result.success
        assert await app.stores.tax_obligations.get_obligation(OWNER, created.data.id) is None
        assert await app.stores.ledger.get_entry(OWNER, entry.id) is None

    @pytest.mark.asyncio
    async def test_legacy_entry_found_by_description(self, app):
        """Entries without a discriminator are matched on the DAS marker."""
        entry = await app.stores.ledger.insert_entry(LedgerEntry(
            owner_id=OWNER,
            kind=EntryKind.EXPENSE,
            entry_date=date(2026, 10, 10),
            amount=Decimal("80.90"),
            description="Pagamento DAS setembro",
        ))
        obligation = await app.stores.tax_obligations.insert_obligation(TaxObligation(
            owner_id=OWNER,
            competence="2026-09",
            due_date=date(2026, 10, 20),
            amount=Decimal("80.90"),
            status=TaxStatus.PAID,
            payment_date=date(2026, 10, 10),
            transaction_id=entry.id,
        ))

        result = await app.ledger.delete_entry(entry.id)

        assert result.success
        assert await app.stores.tax_obligations.get_obligation(OWNER, obligation.id) is None

    @pytest.mark.asyncio
    async def test_plain_entry_is_deleted(self, app):
        created = await app.ledger.create_entry(LedgerEntryCreate(
            kind=EntryKind.EXPENSE,
            entry_date=TODAY,
            amount=Decimal("200"),
            description="Office rent",
        ))
        result = await app.ledger.delete_entry(created.data.id)
        assert result.success
        assert await app.stores.ledger.list_entries(OWNER) == []

    @pytest.mark.asyncio
    async def test_deleting_sale_entry_deletes_sale_and_receipt(self, app):
        created = await app.sales.create_sale(
            SaleCreate(
                sale_date=TODAY,
                description="Logo design",
                amount=Decimal("100"),
                payment_method="Pix",
            ),
            receipt=b"%PDF-1.4",
            receipt_filename="nf.pdf",
        )
        receipt_url = created.data.receipt_url
        assert receipt_url

        result = await app.ledger.delete_entry(created.data.transaction_id)

        assert result.success
        assert await app.stores.sales.get_sale(OWNER, created.data.id) is None
        assert await app.sales._receipts.delete(receipt_url) is False

    @pytest.mark.asyncio
    async def test_missing_entry_is_not_found(self, app):
        result = await app.ledger.delete_entry("nope")
        assert result.error_code == ErrorCode.NOT_FOUND
        assert result.error.message == "Error deleting transaction"

    @pytest.mark.asyncio
    async def test_failed_entry_delete_restores_derived_record(self):
        stores = Stores(
            ledger=FailingDeleteLedgerStorage(),
            tax_obligations=InMemoryTaxObligationStorage(),
            sales=InMemorySaleStorage(),
            audit=InMemoryAuditStorage(),
        )
        app = build_app(stores)
        created = await app.sales.create_sale(SaleCreate(
            sale_date=TODAY,
            description="Logo design",
            amount=Decimal("100"),
            payment_method="Pix",
        ))

        result = await app.ledger.delete_entry(created.data.transaction_id)

        assert result.error_code == ErrorCode.STORE_ERROR
        restored = await stores.sales.get_sale(OWNER, created.data.id)
        assert restored is not None
        assert restored.transaction_id == created.data.transaction_id
        assert AuditEventType.SYNC_ROLLED_BACK in await audit_types(app)


class TestEntryUpdate:
    """Entry updates propagate only what changed."""

    @pytest.mark.asyncio
    async def test_amount_change_propagates_to_sale(self, app):
        created = await app.sales.create_sale(SaleCreate(
            sale_date=TODAY,
            description="Logo design",
            amount=Decimal("100"),
            payment_method="Pix",
        ))

        result = await app.ledger.update_entry(
            created.data.transaction_id,
            LedgerEntryUpdate(amount=Decimal("150")),
        )

        assert result.success
        sale = await app.stores.sales.get_sale(OWNER, created.data.id)
        assert sale.amount == Decimal("150")
        assert sale.description == "Logo design"
        assert AuditEventType.SYNC_PROPAGATED in await audit_types(app)

    @pytest.mark.asyncio
    async def test_unchanged_description_is_not_written(self, app):
        """A sale whose description differs from its entry keeps it on amount-only updates."""
        created = await app.sales.create_sale(SaleCreate(
            sale_date=TODAY,
            description="Logo design",
            amount=Decimal("100"),
            payment_method="Pix",
        ))
        await app.stores.sales.update_sale(OWNER, created.data.id, {"description": "Logo v2"})

        await app.ledger.update_entry(
            created.data.transaction_id,
            LedgerEntryUpdate(amount=Decimal("150")),
        )

        sale = await app.stores.sales.get_sale(OWNER, created.data.id)
        assert sale.description == "Logo v2"

    @pytest.mark.asyncio
    async def test_date_change_propagates_to_payment_date(self, app):
        created = await app.tax.create_obligation(TaxObligationCreate(
            competence="2026-09",
            amount=Decimal("80.90"),
            status=TaxStatus.PAID,
            payment_date=date(2026, 10, 10),
        ))

        result = await app.ledger.update_entry(
            created.data.transaction_id,
            LedgerEntryUpdate(entry_date=date(2026, 10, 12), amount=Decimal("81.90")),
        )

        assert result.success
        obligation = await app.stores.tax_obligations.get_obligation(OWNER, created.data.id)
        assert obligation.payment_date == date(2026, 10, 12)
        assert obligation.amount == Decimal("81.90")

    @pytest.mark.asyncio
    async def test_classification_change_is_logged_not_relinked(self, app):
        entry = await app.stores.ledger.insert_entry(LedgerEntry(
            owner_id=OWNER,
            kind=EntryKind.EXPENSE,
            entry_date=date(2026, 10, 10),
            amount=Decimal("80.90"),
            description="DAS setembro",
        ))
        obligation = await app.stores.tax_obligations.insert_obligation(TaxObligation(
            owner_id=OWNER,
            competence="2026-09",
            due_date=date(2026, 10, 20),
            amount=Decimal("80.90"),
            status=TaxStatus.PAID,
            payment_date=date(2026, 10, 10),
            transaction_id=entry.id,
        ))

        result = await app.ledger.update_entry(
            entry.id,
            LedgerEntryUpdate(description="Office supplies", amount=Decimal("50")),
        )

        assert result.success
        unchanged = await app.stores.tax_obligations.get_obligation(OWNER, obligation.id)
        assert unchanged.amount == Decimal("80.90")
        assert unchanged.transaction_id == entry.id
        assert AuditEventType.SYNC_CLASSIFICATION_CHANGED in await audit_types(app)

    @pytest.mark.asyncio
    async def test_failed_propagation_rolls_back_entry(self):
        stores = Stores(
            ledger=InMemoryLedgerStorage(),
            tax_obligations=FailingTaxUpdateStorage(),
            sales=InMemorySaleStorage(),
            audit=InMemoryAuditStorage(),
        )
        app = build_app(stores)
        entry = await stores.ledger.insert_entry(LedgerEntry(
            owner_id=OWNER,
            kind=EntryKind.EXPENSE,
            entry_date=date(2026, 10, 10),
            amount=Decimal("80.90"),
            description="DAS - Competence 2026-09",
            linked_kind=LinkedKind.TAX_OBLIGATION,
        ))
        await stores.tax_obligations.insert_obligation(TaxObligation(
            owner_id=OWNER,
            competence="2026-09",
            due_date=date(2026, 10, 20),
            amount=Decimal("80.90"),
            status=TaxStatus.PAID,
            payment_date=date(2026, 10, 10),
            transaction_id=entry.id,
        ))

        result = await app.ledger.update_entry(entry.id, LedgerEntryUpdate(amount=Decimal("99")))

        assert result.error_code == ErrorCode.STORE_ERROR
        assert result.error.message == "Error updating transaction"
        restored = await stores.ledger.get_entry(OWNER, entry.id)
        assert restored.amount == Decimal("80.90")

    @pytest.mark.asyncio
    async def test_update_without_link_touches_only_entry(self, app):
        created = await app.ledger.create_entry(LedgerEntryCreate(
            kind=EntryKind.EXPENSE,
            entry_date=TODAY,
            amount=Decimal("200"),
            description="Office rent",
        ))
        result = await app.ledger.update_entry(
            created.data.id, LedgerEntryUpdate(amount=Decimal("210")),
        )
        assert result.success
        assert result.data.amount == Decimal("210")

    @pytest.mark.asyncio
    async def test_paid_das_entry_cannot_become_income(self, app):
        created = await app.tax.create_obligation(TaxObligationCreate(
            competence="2026-09",
            amount=Decimal("80.90"),
            status=TaxStatus.PAID,
            payment_date=date(2026, 10, 10),
        ))

        result = await app.ledger.update_entry(
            created.data.transaction_id,
            LedgerEntryUpdate(kind=EntryKind.INCOME, amount=Decimal("90")),
        )

        assert result.error_code == ErrorCode.VALIDATION_ERROR
        entry = await app.stores.ledger.get_entry(OWNER, created.data.transaction_id)
        assert entry.kind == EntryKind.EXPENSE
        assert entry.amount == Decimal("80.90")
        obligation = await app.stores.tax_obligations.get_obligation(OWNER, created.data.id)
        assert obligation.amount == Decimal("80.90")
        assert AuditEventType.ENTRY_UPDATED not in await audit_types(app)
        await assert_back_references_valid(app)

    @pytest.mark.asyncio
    async def test_sale_entry_cannot_become_expense(self, app):
        created = await app.sales.create_sale(SaleCreate(
            sale_date=TODAY,
            description="Logo design",
            amount=Decimal("100"),
            payment_method="Pix",
        ))

        result = await app.ledger.update_entry(
            created.data.transaction_id,
            LedgerEntryUpdate(kind=EntryKind.EXPENSE),
        )

        assert result.error_code == ErrorCode.VALIDATION_ERROR
        entry = await app.stores.ledger.get_entry(OWNER, created.data.transaction_id)
        assert entry.kind == EntryKind.INCOME
        await assert_back_references_valid(app)

    @pytest.mark.asyncio
    async def test_plain_entry_kind_can_change(self, app):
        created = await app.ledger.create_entry(LedgerEntryCreate(
            kind=EntryKind.EXPENSE,
            entry_date=TODAY,
            amount=Decimal("200"),
            description="Refund",
        ))

        result = await app.ledger.update_entry(
            created.data.id, LedgerEntryUpdate(kind=EntryKind.INCOME),
        )

        assert result.success
        assert result.data.kind == EntryKind.INCOME

    @pytest.mark.asyncio
    async def test_same_kind_on_linked_entry_is_accepted(self, app):
        created = await app.sales.create_sale(SaleCreate(
            sale_date=TODAY,
            description="Logo design",
            amount=Decimal("100"),
            payment_method="Pix",
        ))

        result = await app.ledger.update_entry(
            created.data.transaction_id,
            LedgerEntryUpdate(kind=EntryKind.INCOME, amount=Decimal("110")),
        )

        assert result.success
        sale = await app.stores.sales.get_sale(OWNER, created.data.id)
        assert sale.amount == Decimal("110")


class TestDerivedCreate:

    @pytest.mark.asyncio
    async def test_failed_sale_insert_removes_entry(self):
        stores = Stores(
            ledger=InMemoryLedgerStorage(),
            tax_obligations=InMemoryTaxObligationStorage(),
            sales=FailingSaleStorage(),
            audit=InMemoryAuditStorage(),
        )
        app = build_app(stores)

        result = await app.sales.create_sale(SaleCreate(
            sale_date=TODAY,
            description="Logo design",
            amount=Decimal("100"),
            payment_method="Pix",
        ))

        assert result.error_code == ErrorCode.STORE_ERROR
        assert result.error.message == "Error creating sale"
        assert await stores.ledger.list_entries(OWNER) == []
        assert AuditEventType.SYNC_ROLLED_BACK in await audit_types(app)

    @pytest.mark.asyncio
    async def test_failed_compensation_is_partial_failure(self):
        stores = Stores(
            ledger=FailingDeleteLedgerStorage(),
            tax_obligations=InMemoryTaxObligationStorage(),
            sales=FailingSaleStorage(),
            audit=InMemoryAuditStorage(),
        )
        app = build_app(stores)

        result = await app.sales.create_sale(SaleCreate(
            sale_date=TODAY,
            description="Logo design",
            amount=Decimal("100"),
            payment_method="Pix",
        ))

        assert result.error_code == ErrorCode.PARTIAL_SYNC_FAILURE
        # The orphaned entry is left behind and reported
        assert len(await stores.ledger.list_entries(OWNER)) == 1
        assert AuditEventType.SYNC_FAILED in await audit_types(app)


class TestBackReferenceInvariant:

    @pytest.mark.asyncio
    async def test_references_stay_valid_across_operations(self, app):
        sale = await app.sales.create_sale(SaleCreate(
            sale_date=TODAY,
            description="Logo design",
            amount=Decimal("100"),
            payment_method="Pix",
        ))
        tax = await app.tax.create_obligation(TaxObligationCreate(
            competence="2026-09",
            amount=Decimal("80.90"),
        ))
        await assert_back_references_valid(app)

        paid = await app.tax.mark_as_paid(tax.data.id, date(2026, 10, 12))
        await assert_back_references_valid(app)

        await app.ledger.update_entry(
            sale.data.transaction_id, LedgerEntryUpdate(amount=Decimal("120")),
        )
        await assert_back_references_valid(app)

        await app.ledger.update_entry(
            paid.data.transaction_id, LedgerEntryUpdate(entry_date=date(2026, 10, 13)),
        )
        await assert_back_references_valid(app)

        await app.ledger.update_entry(
            paid.data.transaction_id, LedgerEntryUpdate(kind=EntryKind.INCOME),
        )
        await app.ledger.update_entry(
            sale.data.transaction_id, LedgerEntryUpdate(kind=EntryKind.EXPENSE),
        )
        await assert_back_references_valid(app)

        await app.tax.mark_as_pending(tax.data.id)
        await assert_back_references_valid(app)

        await app.ledger.delete_entry(sale.data.transaction_id)
        await assert_back_references_valid(app)


class TestSaga:
    """Unit tests for the compensation order."""

    @pytest.mark.asyncio
    async def test_compensates_in_reverse_order(self):
        undone = []

        async def ok(value):
            return value

        async def undo(result):
            undone.append(result)

        async def fail():
            raise StorageError("boom")

        saga = Saga("test", OWNER)
        await saga.step("first", lambda: ok(1), compensation=undo)
        await saga.step("second", lambda: ok(2), compensation=undo)

        with pytest.raises(StorageError):
            await saga.step("third", fail)

        assert undone == [2, 1]

    @pytest.mark.asyncio
    async def test_failed_compensation_raises_partial_failure(self):
        async def ok():
            return "done"

        async def broken_undo(_):
            raise StorageError("cannot undo")

        async def fail():
            raise StorageError("boom")

        saga = Saga("test", OWNER)
        await saga.step("first", ok, compensation=broken_undo)

        with pytest.raises(PartialSyncFailure) as exc_info:
            await saga.step("second", fail)

        assert "first" in exc_info.value.residual_state
        assert isinstance(exc_info.value.cause, StorageError)
