"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a hosted relational database
2. Use in-memory storage for testing
3. Keep the synchronization logic decoupled from the backend

The interface is intentionally simple - we're not building a full ORM.
Every read and write is scoped by owner id; no method exists that could
touch another owner's records.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError

from mei_ledger.models.audit import AuditEvent
from mei_ledger.models.ledger import (
    EntryKind,
    LedgerEntry,
    SaleRecord,
    TaxObligation,
    TaxStatus,
    utc_now,
)


RecordT = TypeVar("RecordT", bound=BaseModel)

# Fields a partial update may never overwrite
IMMUTABLE_FIELDS = frozenset({"id", "owner_id", "created_at"})


def merge_changes(record: RecordT, changes: dict[str, Any]) -> RecordT:
    """
    Apply a partial update to a record and re-validate the result.

    Raises:
        InvalidRecordError: If the merged record violates its schema
    """
    illegal = IMMUTABLE_FIELDS.intersection(changes)
    if illegal:
        raise InvalidRecordError(f"Cannot update immutable fields: {sorted(illegal)}")

    data = record.model_dump()
    data.update(changes)
    data["updated_at"] = utc_now()
    try:
        return type(record).model_validate(data)
    except ValidationError as e:
        raise InvalidRecordError(str(e)) from e


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger entry storage.

    The ledger is the source of truth for all money movements.
    """

    @abstractmethod
    async def list_entries(
        self,
        owner_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        kind: Optional[EntryKind] = None,
        category_id: Optional[str] = None,
    ) -> list[LedgerEntry]:
        """
        List an owner's entries, newest first.

        Args:
            owner_id: Owner whose entries to list
            date_from: Entries on or after this date
            date_to: Entries on or before this date
            kind: Only income or only expense
            category_id: Only entries in this category

        Raises:
            StorageError: If the read fails
        """

    @abstractmethod
    async def get_entry(self, owner_id: str, entry_id: str) -> Optional[LedgerEntry]:
        """Return the entry, or None if the owner has no such entry."""

    @abstractmethod
    async def insert_entry(self, entry: LedgerEntry) -> LedgerEntry:
        """
        Persist a new entry.

        Raises:
            DuplicateError: If the id already exists
            StorageError: If the write fails
        """

    @abstractmethod
    async def update_entry(
        self,
        owner_id: str,
        entry_id: str,
        changes: dict[str, Any],
    ) -> LedgerEntry:
        """
        Apply a partial update and return the stored result.

        Raises:
            NotFoundError: If the entry doesn't exist for this owner
            InvalidRecordError: If the update breaks the schema
        """

    @abstractmethod
    async def delete_entry(self, owner_id: str, entry_id: str) -> bool:
        """Delete an entry. Returns False if nothing was deleted."""


class TaxObligationStorageInterface(ABC):
    """Abstract interface for DAS obligation storage."""

    @abstractmethod
    async def list_obligations(
        self,
        owner_id: str,
        competence: Optional[str] = None,
        status: Optional[TaxStatus] = None,
        due_from: Optional[date] = None,
        due_to: Optional[date] = None,
    ) -> list[TaxObligation]:
        """List an owner's obligations, latest due date first."""

    @abstractmethod
    async def get_obligation(
        self,
        owner_id: str,
        obligation_id: str,
    ) -> Optional[TaxObligation]:
        """Return the obligation, or None if the owner has no such record."""

    @abstractmethod
    async def find_by_transaction_id(
        self,
        owner_id: str,
        transaction_id: str,
    ) -> list[TaxObligation]:
        """Obligations whose back-reference equals the given entry id."""

    @abstractmethod
    async def insert_obligation(self, obligation: TaxObligation) -> TaxObligation:
        """Persist a new obligation."""

    @abstractmethod
    async def update_obligation(
        self,
        owner_id: str,
        obligation_id: str,
        changes: dict[str, Any],
    ) -> TaxObligation:
        """Apply a partial update and return the stored result."""

    @abstractmethod
    async def delete_obligation(self, owner_id: str, obligation_id: str) -> bool:
        """Delete an obligation. Returns False if nothing was deleted."""


class SaleStorageInterface(ABC):
    """Abstract interface for sale storage."""

    @abstractmethod
    async def list_sales(
        self,
        owner_id: str,
        customer_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        payment_method: Optional[str] = None,
    ) -> list[SaleRecord]:
        """List an owner's sales, newest first."""

    @abstractmethod
    async def get_sale(self, owner_id: str, sale_id: str) -> Optional[SaleRecord]:
        """Return the sale, or None if the owner has no such record."""

    @abstractmethod
    async def find_by_transaction_id(
        self,
        owner_id: str,
        transaction_id: str,
    ) -> list[SaleRecord]:
        """Sales whose back-reference equals the given entry id."""

    @abstractmethod
    async def insert_sale(self, sale: SaleRecord) -> SaleRecord:
        """Persist a new sale."""

    @abstractmethod
    async def update_sale(
        self,
        owner_id: str,
        sale_id: str,
        changes: dict[str, Any],
    ) -> SaleRecord:
        """Apply a partial update and return the stored result."""

    @abstractmethod
    async def delete_sale(self, owner_id: str, sale_id: str) -> bool:
        """Delete a sale. Returns False if nothing was deleted."""


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events of one operation, in chronological order."""

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """The most recent events, newest first."""


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class InvalidRecordError(StorageError):
    """The store rejected a record that violates its schema."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
