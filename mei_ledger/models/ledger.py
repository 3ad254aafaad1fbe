"""
Core Data Models for MEI Ledger

These models define the strict schemas for every record the ledger
subsystem reads or writes. They are designed to:
1. Enforce type safety at the store boundary
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Carry the ledger <-> derived record back-references explicitly

DESIGN DECISION: Records coming out of any store are re-validated into
these models. Nothing downstream ever handles an untyped row.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


COMPETENCE_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"

Money = Annotated[Decimal, Field(ge=0, decimal_places=2)]


def new_record_id() -> str:
    """Opaque record id (UUID4 text)."""
    return str(uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class EntryKind(str, Enum):
    """Direction of a ledger entry."""
    INCOME = "income"
    EXPENSE = "expense"


class LinkedKind(str, Enum):
    """
    Which derived record a ledger entry mirrors.

    DESIGN DECISION: Entries written by this library carry an explicit
    discriminator. The description-marker heuristic is only consulted for
    entries that predate it (linked_kind is None).
    """
    TAX_OBLIGATION = "tax_obligation"
    SALE = "sale"


class TaxStatus(str, Enum):
    """Payment status of a DAS obligation."""
    PENDING = "pending"
    PAID = "paid"


class SummaryPeriod(str, Enum):
    """Window for financial summaries."""
    MONTH = "month"
    YEAR = "year"


# =============================================================================
# LEDGER ENTRY - source of truth for all money movements
# =============================================================================

class LedgerEntry(BaseModel):
    """
    A single income or expense entry.

    Owner scoping is mandatory: every store operation filters on owner_id.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_record_id,
        min_length=1,
        description="Unique entry id (per owner)"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Owner the entry belongs to"
    )
    kind: EntryKind
    entry_date: date = Field(
        ...,
        description="Calendar day the money moved"
    )
    amount: Money
    description: str = Field(
        default="",
        max_length=500,
    )
    category_id: Optional[str] = None
    payment_method: Optional[str] = Field(
        default=None,
        max_length=50,
    )
    linked_kind: Optional[LinkedKind] = Field(
        default=None,
        description="Derived record this entry mirrors, if any"
    )

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class LedgerEntryCreate(BaseModel):
    """Payload for creating a ledger entry."""
    model_config = ConfigDict(str_strip_whitespace=True)

    kind: EntryKind
    entry_date: date
    amount: Money
    description: str = Field(default="", max_length=500)
    category_id: Optional[str] = None
    payment_method: Optional[str] = Field(default=None, max_length=50)
    linked_kind: Optional[LinkedKind] = None


class LedgerEntryUpdate(BaseModel):
    """
    Partial update of a ledger entry.

    Only fields explicitly set by the caller are written.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    kind: Optional[EntryKind] = None
    entry_date: Optional[date] = None
    amount: Optional[Money] = None
    description: Optional[str] = Field(default=None, max_length=500)
    category_id: Optional[str] = None
    payment_method: Optional[str] = Field(default=None, max_length=50)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# =============================================================================
# TAX OBLIGATION (DAS)
# =============================================================================

class TaxObligation(BaseModel):
    """
    A monthly DAS obligation.

    CRITICAL: A paid obligation always carries a payment date and a
    back-reference to its expense entry. A pending one carries neither.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_record_id, min_length=1)
    owner_id: str = Field(..., min_length=1)

    competence: str = Field(
        ...,
        pattern=COMPETENCE_PATTERN,
        description="Year-month the obligation covers (YYYY-MM)"
    )
    due_date: date = Field(
        ...,
        description="Due date, the 20th of the month after the competence"
    )
    amount: Money
    das_number: Optional[str] = Field(
        default=None,
        max_length=50,
        description="Number printed on the DAS document"
    )

    status: TaxStatus = TaxStatus.PENDING
    payment_date: Optional[date] = None
    receipt_url: Optional[str] = None
    transaction_id: Optional[str] = Field(
        default=None,
        description="Back-reference to the expense entry (set only once paid)"
    )

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_payment_state(self) -> 'TaxObligation':
        """Keep status, payment date and back-reference consistent."""
        if self.status == TaxStatus.PAID:
            if self.payment_date is None:
                raise ValueError("A paid obligation requires a payment date")
            if self.transaction_id is None:
                raise ValueError("A paid obligation requires a linked ledger entry")
        else:
            if self.payment_date is not None:
                raise ValueError("A pending obligation cannot have a payment date")
            if self.transaction_id is not None:
                raise ValueError("A pending obligation cannot be linked to a ledger entry")
        return self


class TaxObligationCreate(BaseModel):
    """Payload for registering a DAS obligation."""
    model_config = ConfigDict(str_strip_whitespace=True)

    competence: str = Field(..., pattern=COMPETENCE_PATTERN)
    due_date: Optional[date] = Field(
        default=None,
        description="Defaults to the due date derived from the competence"
    )
    amount: Money
    das_number: Optional[str] = Field(default=None, max_length=50)
    status: TaxStatus = TaxStatus.PENDING
    payment_date: Optional[date] = None
    receipt_url: Optional[str] = None

    @model_validator(mode='after')
    def validate_payment_date(self) -> 'TaxObligationCreate':
        if self.status == TaxStatus.PAID and self.payment_date is None:
            raise ValueError("A paid obligation requires a payment date")
        if self.status == TaxStatus.PENDING and self.payment_date is not None:
            raise ValueError("A pending obligation cannot have a payment date")
        return self


class TaxObligationUpdate(BaseModel):
    """Partial update of a DAS obligation."""
    model_config = ConfigDict(str_strip_whitespace=True)

    competence: Optional[str] = Field(default=None, pattern=COMPETENCE_PATTERN)
    due_date: Optional[date] = None
    amount: Optional[Money] = None
    das_number: Optional[str] = Field(default=None, max_length=50)
    status: Optional[TaxStatus] = None
    payment_date: Optional[date] = None
    receipt_url: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# =============================================================================
# SALE
# =============================================================================

class SaleRecord(BaseModel):
    """
    A sale, mirrored by exactly one income entry.

    Created, mutated and deleted in lockstep with that entry.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_record_id, min_length=1)
    owner_id: str = Field(..., min_length=1)

    sale_date: date
    description: str = Field(..., min_length=1, max_length=500)
    amount: Money
    payment_method: str = Field(..., min_length=1, max_length=50)
    customer_id: Optional[str] = None
    receipt_url: Optional[str] = None
    transaction_id: Optional[str] = Field(
        default=None,
        description="Back-reference to the income entry"
    )

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class SaleCreate(BaseModel):
    """Payload for registering a sale."""
    model_config = ConfigDict(str_strip_whitespace=True)

    sale_date: date
    description: str = Field(..., min_length=1, max_length=500)
    amount: Money
    payment_method: str = Field(..., min_length=1, max_length=50)
    customer_id: Optional[str] = None
    receipt_url: Optional[str] = None


class SaleUpdate(BaseModel):
    """Partial update of a sale."""
    model_config = ConfigDict(str_strip_whitespace=True)

    sale_date: Optional[date] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    amount: Optional[Money] = None
    payment_method: Optional[str] = Field(default=None, min_length=1, max_length=50)
    customer_id: Optional[str] = None
    receipt_url: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# =============================================================================
# SUMMARY
# =============================================================================

class FinancialSummary(BaseModel):
    """Income, expense and balance over a period."""

    period: SummaryPeriod
    start: Optional[date] = None
    end: Optional[date] = None
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    entries: list[LedgerEntry] = Field(default_factory=list)

    @classmethod
    def empty(cls, period: SummaryPeriod) -> 'FinancialSummary':
        """Zero summary returned whenever the ledger can't be read."""
        return cls(period=period)
