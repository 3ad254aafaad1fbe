"""Tests for sales and their linked income entries."""

from datetime import date
from decimal import Decimal

import pytest

from mei_ledger.config import get_settings
from mei_ledger.models import (
    EntryKind,
    ErrorCode,
    LinkedKind,
    SaleCreate,
    SaleUpdate,
)
from mei_ledger.notifications import InMemoryNotificationCache
from mei_ledger.orchestrator import create_app_components


def sale_payload(**overrides):
    fields = dict(
        sale_date=date(2026, 10, 5),
        description="Logo design",
        amount=Decimal("450.00"),
        payment_method="Pix",
    )
    fields.update(overrides)
    return SaleCreate(**fields)


async def create(app, **overrides):
    result = await app.sales.create_sale(sale_payload(**overrides))
    assert result.success, result.error
    return result.data


class TestCreateSale:

    @pytest.mark.asyncio
    async def test_creates_linked_income_entry(self, app):
        sale = await create(app)

        entry = (await app.ledger.get_entry(sale.transaction_id)).data
        assert entry.kind == EntryKind.INCOME
        assert entry.linked_kind == LinkedKind.SALE
        assert entry.amount == Decimal("450.00")
        assert entry.entry_date == date(2026, 10, 5)
        assert entry.description == "Logo design"
        assert entry.payment_method == "Pix"

    @pytest.mark.asyncio
    async def test_receipt_upload(self, app):
        result = await app.sales.create_sale(
            sale_payload(), receipt=b"png-bytes", receipt_filename="pix.png",
        )

        url = result.data.receipt_url
        assert app.sales._receipts.files[url] == b"png-bytes"

    @pytest.mark.asyncio
    async def test_entry_gets_no_category_by_default(self, app):
        sale = await create(app)

        entry = (await app.ledger.get_entry(sale.transaction_id)).data
        assert entry.category_id is None

    @pytest.mark.asyncio
    async def test_configured_sales_category_is_applied(self, monkeypatch, identity):
        monkeypatch.setenv("SALES_CATEGORY_ID", "cat-sales")
        get_settings.cache_clear()
        try:
            app = create_app_components(
                identity,
                use_storage=False,
                notification_cache=InMemoryNotificationCache(),
            )
        finally:
            get_settings.cache_clear()

        sale = await create(app)

        entry = (await app.ledger.get_entry(sale.transaction_id)).data
        assert entry.category_id == "cat-sales"

    @pytest.mark.asyncio
    async def test_signed_out(self, app, identity):
        identity.sign_out()

        result = await app.sales.create_sale(sale_payload())

        assert result.error_code == ErrorCode.NOT_AUTHENTICATED
        assert result.error.message == "User not authenticated"


class TestUpdateSale:

    @pytest.mark.asyncio
    async def test_amount_and_date_follow_to_entry(self, app):
        sale = await create(app)

        result = await app.sales.update_sale(
            sale.id, SaleUpdate(amount=Decimal("500.00"), sale_date=date(2026, 10, 6)),
        )

        assert result.data.amount == Decimal("500.00")
        entry = (await app.ledger.get_entry(sale.transaction_id)).data
        assert entry.amount == Decimal("500.00")
        assert entry.entry_date == date(2026, 10, 6)

    @pytest.mark.asyncio
    async def test_customer_change_leaves_entry_alone(self, app):
        sale = await create(app)
        before = (await app.ledger.get_entry(sale.transaction_id)).data

        result = await app.sales.update_sale(sale.id, SaleUpdate(customer_id="cust-9"))

        assert result.data.customer_id == "cust-9"
        after = (await app.ledger.get_entry(sale.transaction_id)).data
        assert after.updated_at == before.updated_at

    @pytest.mark.asyncio
    async def test_new_receipt_discards_old_one(self, app):
        first = (await app.sales.create_sale(sale_payload(), receipt=b"old")).data
        files = app.sales._receipts.files
        new_url = await app.sales._receipts.upload(b"new", "new.pdf", "owner-1")

        await app.sales.update_sale(first.id, SaleUpdate(receipt_url=new_url))

        assert first.receipt_url not in files
        assert new_url in files

    @pytest.mark.asyncio
    async def test_not_found(self, app):
        result = await app.sales.update_sale("missing", SaleUpdate(amount=Decimal("1")))

        assert result.error_code == ErrorCode.NOT_FOUND


class TestDeleteSale:

    @pytest.mark.asyncio
    async def test_removes_sale_entry_and_receipt(self, app):
        sale = (await app.sales.create_sale(sale_payload(), receipt=b"bytes")).data

        result = await app.sales.delete_sale(sale.id)

        assert result.success
        assert (await app.ledger.list_entries()).data == []
        assert (await app.sales.get_sale(sale.id)).error_code == ErrorCode.NOT_FOUND
        assert app.sales._receipts.files == {}

    @pytest.mark.asyncio
    async def test_delete_missing(self, app):
        result = await app.sales.delete_sale("missing")

        assert result.error_code == ErrorCode.NOT_FOUND
        assert result.error.message == "Error deleting sale"


class TestQueries:

    @pytest.mark.asyncio
    async def test_filters(self, app):
        await create(app, customer_id="cust-1", sale_date=date(2026, 9, 28))
        await create(app, customer_id="cust-2", payment_method="Cash")
        await create(app, customer_id="cust-1", sale_date=date(2026, 10, 12))

        by_customer = (await app.sales.list_sales(customer_id="cust-1")).data
        october = (await app.sales.list_sales(date_from=date(2026, 10, 1))).data
        cash = (await app.sales.list_sales(payment_method="Cash")).data

        assert len(by_customer) == 2
        assert len(october) == 2
        assert [s.customer_id for s in cash] == ["cust-2"]

    @pytest.mark.asyncio
    async def test_total_sales(self, app):
        await create(app, amount=Decimal("100.00"), sale_date=date(2026, 9, 30))
        await create(app, amount=Decimal("250.50"))
        await create(app, amount=Decimal("49.50"))

        assert (await app.sales.total_sales()).data == Decimal("400.00")
        october = await app.sales.total_sales(date_from=date(2026, 10, 1), date_to=date(2026, 10, 31))
        assert october.data == Decimal("300.00")

    @pytest.mark.asyncio
    async def test_total_with_no_sales(self, app):
        assert (await app.sales.total_sales()).data == Decimal("0")
