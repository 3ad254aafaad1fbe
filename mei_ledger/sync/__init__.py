"""Ledger <-> derived record synchronization."""

from mei_ledger.sync.engine import (
    DerivedRecord,
    SynchronizationEngine,
    classify,
    tax_entry_description,
)
from mei_ledger.sync.saga import PartialSyncFailure, Saga, SyncError

__all__ = [
    "DerivedRecord",
    "PartialSyncFailure",
    "Saga",
    "SyncError",
    "SynchronizationEngine",
    "classify",
    "tax_entry_description",
]
