"""
Sale Service

Sales of the signed-in owner. Each sale is mirrored by one income entry
in the ledger: the entry is written first, and both change and disappear
together.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from mei_ledger.audit import AuditLogger, create_correlation_id
from mei_ledger.context import OwnerContext
from mei_ledger.models.ledger import SaleCreate, SaleRecord, SaleUpdate
from mei_ledger.models.results import OperationResult
from mei_ledger.operations import BaseService
from mei_ledger.services.receipts import ReceiptStorageInterface
from mei_ledger.services.storage import NotFoundError, SaleStorageInterface
from mei_ledger.sync import SynchronizationEngine


class SaleService(BaseService):
    """Sales and their income entries."""

    def __init__(
        self,
        context: OwnerContext,
        sales: SaleStorageInterface,
        engine: SynchronizationEngine,
        receipts: Optional[ReceiptStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        sales_category_id: Optional[str] = None,
        receipts_folder: Optional[str] = None,
    ):
        super().__init__(context, receipts, audit_logger)
        self._sales = sales
        self._engine = engine
        self._sales_category_id = sales_category_id
        self._receipts_folder = receipts_folder

    async def list_sales(
        self,
        customer_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        payment_method: Optional[str] = None,
    ) -> OperationResult:
        return await self._run(
            "list_sales",
            "Error fetching sales",
            lambda owner_id: self._sales.list_sales(
                owner_id,
                customer_id=customer_id,
                date_from=date_from,
                date_to=date_to,
                payment_method=payment_method,
            ),
        )

    async def _require(self, owner_id: str, sale_id: str) -> SaleRecord:
        sale = await self._sales.get_sale(owner_id, sale_id)
        if sale is None:
            raise NotFoundError(f"Sale not found: {sale_id}")
        return sale

    async def get_sale(self, sale_id: str) -> OperationResult:
        return await self._run(
            "get_sale",
            "Sale not found",
            lambda owner_id: self._require(owner_id, sale_id),
        )

    async def create_sale(
        self,
        payload: SaleCreate,
        receipt: Optional[bytes] = None,
        receipt_filename: str = "receipt.pdf",
    ) -> OperationResult:
        """Register a sale: income entry first, then the sale."""
        async def work(owner_id: str) -> SaleRecord:
            receipt_url = payload.receipt_url
            uploaded = None
            if receipt:
                uploaded = receipt_url = await self._upload_receipt(
                    receipt, receipt_filename, owner_id, self._receipts_folder,
                )
            sale = SaleRecord(
                owner_id=owner_id,
                **payload.model_dump(exclude={"receipt_url"}),
                receipt_url=receipt_url,
            )
            try:
                return await self._engine.create_sale(
                    sale, self._sales_category_id, create_correlation_id(),
                )
            except Exception:
                await self._discard_receipt(uploaded)
                raise

        return await self._run("create_sale", "Error creating sale", work)

    async def update_sale(self, sale_id: str, payload: SaleUpdate) -> OperationResult:
        """Update a sale and its income entry together."""
        async def work(owner_id: str) -> SaleRecord:
            current = await self._require(owner_id, sale_id)
            changes = payload.changes()
            if not changes:
                return current
            updated = await self._engine.update_sale(
                owner_id, current, changes, create_correlation_id(),
            )
            if current.receipt_url and updated.receipt_url != current.receipt_url:
                await self._discard_receipt(current.receipt_url)
            return updated

        return await self._run("update_sale", "Error updating sale", work)

    async def delete_sale(self, sale_id: str) -> OperationResult:
        """Delete the sale, its income entry and its receipt."""
        async def work(owner_id: str) -> bool:
            current = await self._require(owner_id, sale_id)
            await self._engine.delete_sale(owner_id, current, create_correlation_id())
            await self._discard_receipt(current.receipt_url)
            return True

        return await self._run("delete_sale", "Error deleting sale", work)

    async def total_sales(
        self,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> OperationResult:
        """Sum of sale amounts, optionally within a date range."""
        async def work(owner_id: str) -> Decimal:
            sales = await self._sales.list_sales(owner_id, date_from=date_from, date_to=date_to)
            return sum((s.amount for s in sales), Decimal("0"))

        return await self._run("total_sales", "Error calculating sales total", work)
