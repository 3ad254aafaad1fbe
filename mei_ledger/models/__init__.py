"""
Data Models Package

This package contains all Pydantic models used in MEI Ledger.
All data flowing through the system must conform to these schemas.
"""

from mei_ledger.models.ledger import (
    EntryKind,
    FinancialSummary,
    LedgerEntry,
    LedgerEntryCreate,
    LedgerEntryUpdate,
    LinkedKind,
    SaleCreate,
    SaleRecord,
    SaleUpdate,
    SummaryPeriod,
    TaxObligation,
    TaxObligationCreate,
    TaxObligationUpdate,
    TaxStatus,
    new_record_id,
)
from mei_ledger.models.notification import (
    NotificationCategory,
    NotificationItem,
    NotificationPriority,
)
from mei_ledger.models.results import (
    ErrorCode,
    ErrorInfo,
    OperationResult,
)
from mei_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "EntryKind",
    "FinancialSummary",
    "LedgerEntry",
    "LedgerEntryCreate",
    "LedgerEntryUpdate",
    "LinkedKind",
    "SaleCreate",
    "SaleRecord",
    "SaleUpdate",
    "SummaryPeriod",
    "TaxObligation",
    "TaxObligationCreate",
    "TaxObligationUpdate",
    "TaxStatus",
    "new_record_id",
    # Notification models
    "NotificationCategory",
    "NotificationItem",
    "NotificationPriority",
    # Results
    "ErrorCode",
    "ErrorInfo",
    "OperationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
