"""
Ledger Service

Result-shaped operations over the owner's income and expense entries.
Updates and deletes go through the SynchronizationEngine so the derived
record of an entry (DAS obligation or sale) follows along.
"""

from datetime import date
from typing import Optional

from mei_ledger.audit import AuditLogger, create_correlation_id
from mei_ledger.context import OwnerContext
from mei_ledger.models.audit import AuditEventType
from mei_ledger.models.ledger import (
    EntryKind,
    LedgerEntry,
    LedgerEntryCreate,
    LedgerEntryUpdate,
)
from mei_ledger.models.results import OperationResult
from mei_ledger.operations import BaseService
from mei_ledger.services.receipts import ReceiptStorageInterface
from mei_ledger.services.storage import LedgerStorageInterface, NotFoundError
from mei_ledger.sync import SynchronizationEngine


class LedgerService(BaseService):
    """Income and expense entries of the signed-in owner."""

    def __init__(
        self,
        context: OwnerContext,
        ledger: LedgerStorageInterface,
        engine: SynchronizationEngine,
        receipts: Optional[ReceiptStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(context, receipts, audit_logger)
        self._ledger = ledger
        self._engine = engine

    async def list_entries(self) -> OperationResult:
        return await self._run(
            "list_entries",
            "Error fetching transactions",
            lambda owner_id: self._ledger.list_entries(owner_id),
        )

    async def get_entry(self, entry_id: str) -> OperationResult:
        async def work(owner_id: str) -> LedgerEntry:
            entry = await self._ledger.get_entry(owner_id, entry_id)
            if entry is None:
                raise NotFoundError(f"Entry not found: {entry_id}")
            return entry

        return await self._run("get_entry", "Transaction not found", work)

    async def list_by_date_range(self, start: date, end: date) -> OperationResult:
        return await self._run(
            "list_by_date_range",
            "Error fetching transactions for the period",
            lambda owner_id: self._ledger.list_entries(owner_id, date_from=start, date_to=end),
        )

    async def list_by_kind(self, kind: EntryKind) -> OperationResult:
        return await self._run(
            "list_by_kind",
            f"Error fetching {kind.value} transactions",
            lambda owner_id: self._ledger.list_entries(owner_id, kind=kind),
        )

    async def list_by_category(self, category_id: str) -> OperationResult:
        return await self._run(
            "list_by_category",
            "Error fetching transactions for the category",
            lambda owner_id: self._ledger.list_entries(owner_id, category_id=category_id),
        )

    async def create_entry(self, payload: LedgerEntryCreate) -> OperationResult:
        async def work(owner_id: str) -> LedgerEntry:
            entry = LedgerEntry(owner_id=owner_id, **payload.model_dump())
            created = await self._ledger.insert_entry(entry)
            if self._audit_logger:
                await self._audit_logger.log_record_written(
                    event_type=AuditEventType.ENTRY_CREATED,
                    owner_id=owner_id,
                    entity_type="entry",
                    entity_id=created.id,
                    description=f"{created.kind.value.capitalize()} entry created",
                )
            return created

        return await self._run("create_entry", "Error creating transaction", work)

    async def update_entry(self, entry_id: str, payload: LedgerEntryUpdate) -> OperationResult:
        """Update an entry; changed fields propagate to its derived record."""
        return await self._run(
            "update_entry",
            "Error updating transaction",
            lambda owner_id: self._engine.update_entry(
                owner_id, entry_id, payload.changes(), create_correlation_id(),
            ),
        )

    async def delete_entry(self, entry_id: str) -> OperationResult:
        """
        Delete an entry and the derived record linked to it.

        Receipts of the deleted derived records are removed afterwards.
        """
        async def work(owner_id: str) -> bool:
            deleted = await self._engine.delete_entry(owner_id, entry_id, create_correlation_id())
            for record in deleted:
                await self._discard_receipt(record.receipt_url)
            return True

        return await self._run("delete_entry", "Error deleting transaction", work)
