"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the hosted backend; the in-memory stores back the tests
and local runs. Both are interchangeable behind the interfaces.
"""

from mei_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    InvalidRecordError,
    LedgerStorageInterface,
    NotFoundError,
    SaleStorageInterface,
    StorageError,
    TaxObligationStorageInterface,
    merge_changes,
)
from mei_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    InMemorySaleStorage,
    InMemoryTaxObligationStorage,
)
from mei_ledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    GoogleSheetsSaleStorage,
    GoogleSheetsTaxObligationStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    "SaleStorageInterface",
    "TaxObligationStorageInterface",
    "merge_changes",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "InvalidRecordError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "InMemorySaleStorage",
    "InMemoryTaxObligationStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
    "GoogleSheetsSaleStorage",
    "GoogleSheetsTaxObligationStorage",
]
