"""Services package: record stores and receipt storage."""

from mei_ledger.services.receipts import (
    CloudinaryReceiptStorage,
    InMemoryReceiptStorage,
    ReceiptStorageError,
    ReceiptStorageInterface,
    ReceiptUploadError,
)
from mei_ledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    GoogleSheetsSaleStorage,
    GoogleSheetsTaxObligationStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    InMemorySaleStorage,
    InMemoryTaxObligationStorage,
    InvalidRecordError,
    LedgerStorageInterface,
    NotFoundError,
    SaleStorageInterface,
    StorageError,
    TaxObligationStorageInterface,
)

__all__ = [
    # Receipt services
    "CloudinaryReceiptStorage",
    "InMemoryReceiptStorage",
    "ReceiptStorageError",
    "ReceiptStorageInterface",
    "ReceiptUploadError",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
    "GoogleSheetsSaleStorage",
    "GoogleSheetsTaxObligationStorage",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "InMemorySaleStorage",
    "InMemoryTaxObligationStorage",
    "InvalidRecordError",
    "LedgerStorageInterface",
    "NotFoundError",
    "SaleStorageInterface",
    "StorageError",
    "TaxObligationStorageInterface",
]
