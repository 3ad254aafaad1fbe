"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets stands in for the hosted relational store:
1. Owners can inspect their ledger directly in Sheets
2. No database setup required
3. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (fine for a single MEI)
- No transactions: multi-record writes rely on the sync saga's
  compensating steps
- Limited query capabilities (we filter in Python)

Each entity lives in its own worksheet, one record per row, with the
owner id in a dedicated column so every lookup can be owner-scoped.
"""

import json
from abc import abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Generic, Optional, TypeVar
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from mei_ledger.config import get_settings
from mei_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from mei_ledger.models.ledger import (
    EntryKind,
    LedgerEntry,
    LinkedKind,
    SaleRecord,
    TaxObligation,
    TaxStatus,
)
from mei_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    SaleStorageInterface,
    StorageError,
    TaxObligationStorageInterface,
    merge_changes,
)


LEDGER_COLUMNS = [
    "id",
    "owner_id",
    "kind",
    "entry_date",
    "amount",
    "description",
    "category_id",
    "payment_method",
    "linked_kind",
    "created_at",
    "updated_at",
]

TAX_COLUMNS = [
    "id",
    "owner_id",
    "competence",
    "due_date",
    "amount",
    "das_number",
    "status",
    "payment_date",
    "receipt_url",
    "transaction_id",
    "created_at",
    "updated_at",
]

SALE_COLUMNS = [
    "id",
    "owner_id",
    "sale_date",
    "description",
    "amount",
    "payment_method",
    "customer_id",
    "receipt_url",
    "transaction_id",
    "created_at",
    "updated_at",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "owner_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

SHEETS_RETRY = dict(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def _safe_getter(row: list):
    """Column accessor that tolerates short rows."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


def _opt_date(value: str) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _iso(value: Optional[date]) -> str:
    return value.isoformat() if value else ""


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(**SHEETS_RETRY)
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_ledger_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.ledger_sheet_name, LEDGER_COLUMNS)

    def get_tax_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.tax_sheet_name, TAX_COLUMNS)

    def get_sales_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.sales_sheet_name, SALE_COLUMNS)

    def get_audit_sheet(self) -> gspread.Worksheet:
        # More rows for audit log
        return self.get_worksheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)


RecordT = TypeVar("RecordT", bound=BaseModel)


class _SheetTable(Generic[RecordT]):
    """
    Owner-scoped record table on one worksheet.

    Column 0 holds the record id and column 1 the owner id for every
    entity sheet.
    """

    entity_name = "record"

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @abstractmethod
    def _sheet(self) -> gspread.Worksheet:
        ...

    @abstractmethod
    def _to_row(self, record: RecordT) -> list:
        ...

    @abstractmethod
    def _from_row(self, row: list) -> RecordT:
        ...

    def _owned_records(self, owner_id: str) -> list[RecordT]:
        records = []
        for row in self._sheet().get_all_values()[1:]:  # Skip header
            if not row or not row[0] or len(row) < 2 or row[1] != owner_id:
                continue
            try:
                records.append(self._from_row(row))
            except Exception:
                continue  # Skip malformed rows
        return records

    def _find_row(self, sheet: gspread.Worksheet, owner_id: str, record_id: str) -> Optional[tuple[int, list]]:
        # Start from 2 (row 1 is header)
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
            if len(row) > 1 and row[0] == record_id and row[1] == owner_id:
                return idx, row
        return None

    async def _get(self, owner_id: str, record_id: str) -> Optional[RecordT]:
        try:
            found = self._find_row(self._sheet(), owner_id, record_id)
            return self._from_row(found[1]) if found else None
        except Exception as e:
            raise StorageError(f"Failed to get {self.entity_name}: {e}")

    @retry(retry=retry_if_not_exception_type(DuplicateError), **SHEETS_RETRY)
    async def _insert(self, owner_id: str, record_id: str, record: RecordT) -> RecordT:
        try:
            sheet = self._sheet()
            if self._find_row(sheet, owner_id, record_id):
                raise DuplicateError(f"{self.entity_name} already exists: {record_id}")
            sheet.append_row(self._to_row(record), value_input_option="RAW")
            return record
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save {self.entity_name}: {e}")

    async def _update(self, owner_id: str, record_id: str, changes: dict[str, Any]) -> RecordT:
        try:
            sheet = self._sheet()
            found = self._find_row(sheet, owner_id, record_id)
            if not found:
                raise NotFoundError(f"{self.entity_name} not found: {record_id}")
            idx, row = found
            updated = merge_changes(self._from_row(row), changes)
            for col_idx, value in enumerate(self._to_row(updated), start=1):
                sheet.update_cell(idx, col_idx, value)
            return updated
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {self.entity_name}: {e}")

    async def _delete(self, owner_id: str, record_id: str) -> bool:
        try:
            sheet = self._sheet()
            found = self._find_row(sheet, owner_id, record_id)
            if not found:
                return False
            sheet.delete_rows(found[0])
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete {self.entity_name}: {e}")


class GoogleSheetsLedgerStorage(_SheetTable[LedgerEntry], LedgerStorageInterface):
    """Ledger entries, one per row of the Transactions sheet."""

    entity_name = "entry"

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_ledger_sheet()

    def _to_row(self, entry: LedgerEntry) -> list:
        return [
            entry.id,
            entry.owner_id,
            entry.kind.value,
            entry.entry_date.isoformat(),
            str(entry.amount),
            entry.description,
            entry.category_id or "",
            entry.payment_method or "",
            entry.linked_kind.value if entry.linked_kind else "",
            entry.created_at.isoformat(),
            entry.updated_at.isoformat(),
        ]

    def _from_row(self, row: list) -> LedgerEntry:
        safe_get = _safe_getter(row)
        return LedgerEntry(
            id=safe_get(0),
            owner_id=safe_get(1),
            kind=EntryKind(safe_get(2)),
            entry_date=date.fromisoformat(safe_get(3)),
            amount=Decimal(safe_get(4)),
            description=safe_get(5),
            category_id=safe_get(6) or None,
            payment_method=safe_get(7) or None,
            linked_kind=LinkedKind(safe_get(8)) if safe_get(8) else None,
            created_at=datetime.fromisoformat(safe_get(9)),
            updated_at=datetime.fromisoformat(safe_get(10)),
        )

    async def list_entries(
        self,
        owner_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        kind: Optional[EntryKind] = None,
        category_id: Optional[str] = None,
    ) -> list[LedgerEntry]:
        try:
            entries = [
                entry for entry in self._owned_records(owner_id)
                if not (date_from and entry.entry_date < date_from)
                and not (date_to and entry.entry_date > date_to)
                and (kind is None or entry.kind == kind)
                and (category_id is None or entry.category_id == category_id)
            ]
        except Exception as e:
            raise StorageError(f"Failed to list entries: {e}")
        entries.sort(key=lambda e: e.entry_date, reverse=True)
        return entries

    async def get_entry(self, owner_id: str, entry_id: str) -> Optional[LedgerEntry]:
        return await self._get(owner_id, entry_id)

    async def insert_entry(self, entry: LedgerEntry) -> LedgerEntry:
        return await self._insert(entry.owner_id, entry.id, entry)

    async def update_entry(self, owner_id: str, entry_id: str, changes: dict[str, Any]) -> LedgerEntry:
        return await self._update(owner_id, entry_id, changes)

    async def delete_entry(self, owner_id: str, entry_id: str) -> bool:
        return await self._delete(owner_id, entry_id)


class GoogleSheetsTaxObligationStorage(_SheetTable[TaxObligation], TaxObligationStorageInterface):
    """DAS obligations, one per row of the TaxObligations sheet."""

    entity_name = "tax obligation"

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_tax_sheet()

    def _to_row(self, obligation: TaxObligation) -> list:
        return [
            obligation.id,
            obligation.owner_id,
            obligation.competence,
            obligation.due_date.isoformat(),
            str(obligation.amount),
            obligation.das_number or "",
            obligation.status.value,
            _iso(obligation.payment_date),
            obligation.receipt_url or "",
            obligation.transaction_id or "",
            obligation.created_at.isoformat(),
            obligation.updated_at.isoformat(),
        ]

    def _from_row(self, row: list) -> TaxObligation:
        safe_get = _safe_getter(row)
        return TaxObligation(
            id=safe_get(0),
            owner_id=safe_get(1),
            competence=safe_get(2),
            due_date=date.fromisoformat(safe_get(3)),
            amount=Decimal(safe_get(4)),
            das_number=safe_get(5) or None,
            status=TaxStatus(safe_get(6)),
            payment_date=_opt_date(safe_get(7)),
            receipt_url=safe_get(8) or None,
            transaction_id=safe_get(9) or None,
            created_at=datetime.fromisoformat(safe_get(10)),
            updated_at=datetime.fromisoformat(safe_get(11)),
        )

    async def list_obligations(
        self,
        owner_id: str,
        competence: Optional[str] = None,
        status: Optional[TaxStatus] = None,
        due_from: Optional[date] = None,
        due_to: Optional[date] = None,
    ) -> list[TaxObligation]:
        try:
            obligations = [
                o for o in self._owned_records(owner_id)
                if (competence is None or o.competence == competence)
                and (status is None or o.status == status)
                and not (due_from and o.due_date < due_from)
                and not (due_to and o.due_date > due_to)
            ]
        except Exception as e:
            raise StorageError(f"Failed to list tax obligations: {e}")
        obligations.sort(key=lambda o: o.due_date, reverse=True)
        return obligations

    async def get_obligation(self, owner_id: str, obligation_id: str) -> Optional[TaxObligation]:
        return await self._get(owner_id, obligation_id)

    async def find_by_transaction_id(self, owner_id: str, transaction_id: str) -> list[TaxObligation]:
        try:
            return [
                o for o in self._owned_records(owner_id)
                if o.transaction_id == transaction_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to look up tax obligations: {e}")

    async def insert_obligation(self, obligation: TaxObligation) -> TaxObligation:
        return await self._insert(obligation.owner_id, obligation.id, obligation)

    async def update_obligation(
        self,
        owner_id: str,
        obligation_id: str,
        changes: dict[str, Any],
    ) -> TaxObligation:
        return await self._update(owner_id, obligation_id, changes)

    async def delete_obligation(self, owner_id: str, obligation_id: str) -> bool:
        return await self._delete(owner_id, obligation_id)


class GoogleSheetsSaleStorage(_SheetTable[SaleRecord], SaleStorageInterface):
    """Sales, one per row of the Sales sheet."""

    entity_name = "sale"

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_sales_sheet()

    def _to_row(self, sale: SaleRecord) -> list:
        return [
            sale.id,
            sale.owner_id,
            sale.sale_date.isoformat(),
            sale.description,
            str(sale.amount),
            sale.payment_method,
            sale.customer_id or "",
            sale.receipt_url or "",
            sale.transaction_id or "",
            sale.created_at.isoformat(),
            sale.updated_at.isoformat(),
        ]

    def _from_row(self, row: list) -> SaleRecord:
        safe_get = _safe_getter(row)
        return SaleRecord(
            id=safe_get(0),
            owner_id=safe_get(1),
            sale_date=date.fromisoformat(safe_get(2)),
            description=safe_get(3),
            amount=Decimal(safe_get(4)),
            payment_method=safe_get(5),
            customer_id=safe_get(6) or None,
            receipt_url=safe_get(7) or None,
            transaction_id=safe_get(8) or None,
            created_at=datetime.fromisoformat(safe_get(9)),
            updated_at=datetime.fromisoformat(safe_get(10)),
        )

    async def list_sales(
        self,
        owner_id: str,
        customer_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        payment_method: Optional[str] = None,
    ) -> list[SaleRecord]:
        try:
            sales = [
                s for s in self._owned_records(owner_id)
                if (customer_id is None or s.customer_id == customer_id)
                and not (date_from and s.sale_date < date_from)
                and not (date_to and s.sale_date > date_to)
                and (payment_method is None or s.payment_method == payment_method)
            ]
        except Exception as e:
            raise StorageError(f"Failed to list sales: {e}")
        sales.sort(key=lambda s: s.sale_date, reverse=True)
        return sales

    async def get_sale(self, owner_id: str, sale_id: str) -> Optional[SaleRecord]:
        return await self._get(owner_id, sale_id)

    async def find_by_transaction_id(self, owner_id: str, transaction_id: str) -> list[SaleRecord]:
        try:
            return [
                s for s in self._owned_records(owner_id)
                if s.transaction_id == transaction_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to look up sales: {e}")

    async def insert_sale(self, sale: SaleRecord) -> SaleRecord:
        return await self._insert(sale.owner_id, sale.id, sale)

    async def update_sale(self, owner_id: str, sale_id: str, changes: dict[str, Any]) -> SaleRecord:
        return await self._update(owner_id, sale_id, changes)

    async def delete_sale(self, owner_id: str, sale_id: str) -> bool:
        return await self._delete(owner_id, sale_id)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        safe_get = _safe_getter(row)
        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            owner_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )

    def _all_events(self) -> list[AuditEvent]:
        events = []
        for row in self._client.get_audit_sheet().get_all_values()[1:]:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except Exception:
                    continue
        return events

    @retry(**SHEETS_RETRY)
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [e for e in self._all_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._all_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
