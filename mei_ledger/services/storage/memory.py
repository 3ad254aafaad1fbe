"""
In-Memory Storage Implementation

Used by the test suite and for running the library without a backend.
Records are copied on the way in and out so callers can never mutate
stored state by accident.
"""

from datetime import date
from typing import Any, Optional
from uuid import UUID

from mei_ledger.models.audit import AuditEvent
from mei_ledger.models.ledger import (
    EntryKind,
    LedgerEntry,
    SaleRecord,
    TaxObligation,
    TaxStatus,
)
from mei_ledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    SaleStorageInterface,
    TaxObligationStorageInterface,
    merge_changes,
)


def _in_range(value: date, date_from: Optional[date], date_to: Optional[date]) -> bool:
    if date_from and value < date_from:
        return False
    if date_to and value > date_to:
        return False
    return True


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Ledger entries keyed by (owner_id, id)."""

    def __init__(self):
        self._entries: dict[tuple[str, str], LedgerEntry] = {}

    async def list_entries(
        self,
        owner_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        kind: Optional[EntryKind] = None,
        category_id: Optional[str] = None,
    ) -> list[LedgerEntry]:
        entries = [
            entry.model_copy()
            for (owner, _), entry in self._entries.items()
            if owner == owner_id
            and _in_range(entry.entry_date, date_from, date_to)
            and (kind is None or entry.kind == kind)
            and (category_id is None or entry.category_id == category_id)
        ]
        entries.sort(key=lambda e: e.entry_date, reverse=True)
        return entries

    async def get_entry(self, owner_id: str, entry_id: str) -> Optional[LedgerEntry]:
        entry = self._entries.get((owner_id, entry_id))
        return entry.model_copy() if entry else None

    async def insert_entry(self, entry: LedgerEntry) -> LedgerEntry:
        key = (entry.owner_id, entry.id)
        if key in self._entries:
            raise DuplicateError(f"Entry already exists: {entry.id}")
        self._entries[key] = entry.model_copy()
        return entry.model_copy()

    async def update_entry(
        self,
        owner_id: str,
        entry_id: str,
        changes: dict[str, Any],
    ) -> LedgerEntry:
        key = (owner_id, entry_id)
        if key not in self._entries:
            raise NotFoundError(f"Entry not found: {entry_id}")
        updated = merge_changes(self._entries[key], changes)
        self._entries[key] = updated
        return updated.model_copy()

    async def delete_entry(self, owner_id: str, entry_id: str) -> bool:
        return self._entries.pop((owner_id, entry_id), None) is not None


class InMemoryTaxObligationStorage(TaxObligationStorageInterface):
    """DAS obligations keyed by (owner_id, id)."""

    def __init__(self):
        self._obligations: dict[tuple[str, str], TaxObligation] = {}

    async def list_obligations(
        self,
        owner_id: str,
        competence: Optional[str] = None,
        status: Optional[TaxStatus] = None,
        due_from: Optional[date] = None,
        due_to: Optional[date] = None,
    ) -> list[TaxObligation]:
        obligations = [
            obligation.model_copy()
            for (owner, _), obligation in self._obligations.items()
            if owner == owner_id
            and (competence is None or obligation.competence == competence)
            and (status is None or obligation.status == status)
            and _in_range(obligation.due_date, due_from, due_to)
        ]
        obligations.sort(key=lambda o: o.due_date, reverse=True)
        return obligations

    async def get_obligation(
        self,
        owner_id: str,
        obligation_id: str,
    ) -> Optional[TaxObligation]:
        obligation = self._obligations.get((owner_id, obligation_id))
        return obligation.model_copy() if obligation else None

    async def find_by_transaction_id(
        self,
        owner_id: str,
        transaction_id: str,
    ) -> list[TaxObligation]:
        return [
            obligation.model_copy()
            for (owner, _), obligation in self._obligations.items()
            if owner == owner_id and obligation.transaction_id == transaction_id
        ]

    async def insert_obligation(self, obligation: TaxObligation) -> TaxObligation:
        key = (obligation.owner_id, obligation.id)
        if key in self._obligations:
            raise DuplicateError(f"Tax obligation already exists: {obligation.id}")
        self._obligations[key] = obligation.model_copy()
        return obligation.model_copy()

    async def update_obligation(
        self,
        owner_id: str,
        obligation_id: str,
        changes: dict[str, Any],
    ) -> TaxObligation:
        key = (owner_id, obligation_id)
        if key not in self._obligations:
            raise NotFoundError(f"Tax obligation not found: {obligation_id}")
        updated = merge_changes(self._obligations[key], changes)
        self._obligations[key] = updated
        return updated.model_copy()

    async def delete_obligation(self, owner_id: str, obligation_id: str) -> bool:
        return self._obligations.pop((owner_id, obligation_id), None) is not None


class InMemorySaleStorage(SaleStorageInterface):
    """Sales keyed by (owner_id, id)."""

    def __init__(self):
        self._sales: dict[tuple[str, str], SaleRecord] = {}

    async def list_sales(
        self,
        owner_id: str,
        customer_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        payment_method: Optional[str] = None,
    ) -> list[SaleRecord]:
        sales = [
            sale.model_copy()
            for (owner, _), sale in self._sales.items()
            if owner == owner_id
            and (customer_id is None or sale.customer_id == customer_id)
            and _in_range(sale.sale_date, date_from, date_to)
            and (payment_method is None or sale.payment_method == payment_method)
        ]
        sales.sort(key=lambda s: s.sale_date, reverse=True)
        return sales

    async def get_sale(self, owner_id: str, sale_id: str) -> Optional[SaleRecord]:
        sale = self._sales.get((owner_id, sale_id))
        return sale.model_copy() if sale else None

    async def find_by_transaction_id(
        self,
        owner_id: str,
        transaction_id: str,
    ) -> list[SaleRecord]:
        return [
            sale.model_copy()
            for (owner, _), sale in self._sales.items()
            if owner == owner_id and sale.transaction_id == transaction_id
        ]

    async def insert_sale(self, sale: SaleRecord) -> SaleRecord:
        key = (sale.owner_id, sale.id)
        if key in self._sales:
            raise DuplicateError(f"Sale already exists: {sale.id}")
        self._sales[key] = sale.model_copy()
        return sale.model_copy()

    async def update_sale(
        self,
        owner_id: str,
        sale_id: str,
        changes: dict[str, Any],
    ) -> SaleRecord:
        key = (owner_id, sale_id)
        if key not in self._sales:
            raise NotFoundError(f"Sale not found: {sale_id}")
        updated = merge_changes(self._sales[key], changes)
        self._sales[key] = updated
        return updated.model_copy()

    async def delete_sale(self, owner_id: str, sale_id: str) -> bool:
        return self._sales.pop((owner_id, sale_id), None) is not None


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
