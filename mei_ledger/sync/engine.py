"""
Synchronization Engine

Keeps every ledger entry and the derived record that mirrors it (a DAS
obligation or a sale) consistent across create, update and delete.

RULES:
1. The ledger entry is written first; the derived record then points
   back at it through transaction_id
2. At most one derived record links to an entry
3. Entry updates propagate only the fields the caller changed, and only
   when the values actually differ
4. Deleting an entry deletes its derived record; deleting a derived
   record deletes its entry
5. Every multi-record write runs as a Saga (see saga.py)

DESIGN DECISION: Which kind of derived record an entry mirrors is read
from its linked_kind discriminator. Entries that predate the
discriminator fall back to the description heuristic: an expense whose
description contains the tax marker is a DAS payment, any income is a
sale.
"""

from datetime import date
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from mei_ledger.audit import AuditLogger
from mei_ledger.models.audit import AuditEventType
from mei_ledger.models.ledger import (
    EntryKind,
    LedgerEntry,
    LinkedKind,
    SaleRecord,
    TaxObligation,
    TaxStatus,
)
from mei_ledger.services.storage import (
    InvalidRecordError,
    LedgerStorageInterface,
    NotFoundError,
    SaleStorageInterface,
    TaxObligationStorageInterface,
)
from mei_ledger.sync.saga import PartialSyncFailure, Saga


logger = structlog.get_logger("mei_ledger.sync")

DerivedRecord = Union[TaxObligation, SaleRecord]

# Entry field -> derived record field
TAX_FIELD_MAP = {
    "amount": "amount",
    "entry_date": "payment_date",
}
SALE_FIELD_MAP = {
    "amount": "amount",
    "entry_date": "sale_date",
    "description": "description",
    "payment_method": "payment_method",
}
# Sale field -> entry field
SALE_TO_ENTRY_MAP = {v: k for k, v in SALE_FIELD_MAP.items()}


def classify(entry: LedgerEntry, marker: str = "DAS") -> Optional[LinkedKind]:
    """Which derived record the entry mirrors, or None for a plain entry."""
    if entry.linked_kind is not None:
        return entry.linked_kind
    if entry.kind == EntryKind.EXPENSE and marker in (entry.description or ""):
        return LinkedKind.TAX_OBLIGATION
    if entry.kind == EntryKind.INCOME:
        return LinkedKind.SALE
    return None


def tax_entry_description(competence: str, marker: str = "DAS") -> str:
    """Description of the expense entry that records a DAS payment."""
    return f"{marker} - Competence {competence}"


class SynchronizationEngine:
    """
    Applies linked writes to the ledger and derived stores.

    Raises store exceptions unchanged after compensating; the services
    turn them into results.
    """

    def __init__(
        self,
        ledger: LedgerStorageInterface,
        tax_obligations: TaxObligationStorageInterface,
        sales: SaleStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        marker: str = "DAS",
        tax_payment_method: str = "Transfer",
    ):
        self._ledger = ledger
        self._tax = tax_obligations
        self._sales = sales
        self._audit_logger = audit_logger
        self.marker = marker
        self.tax_payment_method = tax_payment_method

    def classify(self, entry: LedgerEntry) -> Optional[LinkedKind]:
        return classify(entry, self.marker)

    def _saga(self, operation: str, owner_id: str, correlation_id: Optional[UUID]) -> Saga:
        return Saga(operation, owner_id, self._audit_logger, correlation_id)

    async def _audit(self, event_type: AuditEventType, owner_id: str, entity_type: str,
                     entity_id: str, description: str,
                     correlation_id: Optional[UUID] = None,
                     details: Optional[dict] = None) -> None:
        if self._audit_logger:
            await self._audit_logger.log_record_written(
                event_type=event_type,
                owner_id=owner_id,
                entity_type=entity_type,
                entity_id=entity_id,
                description=description,
                correlation_id=correlation_id,
                details=details,
            )

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def find_linked(
        self,
        owner_id: str,
        entry: LedgerEntry,
    ) -> Optional[DerivedRecord]:
        """The derived record linked to an entry, per its classification."""
        target = self.classify(entry)
        if target == LinkedKind.TAX_OBLIGATION:
            matches = await self._tax.find_by_transaction_id(owner_id, entry.id)
        elif target == LinkedKind.SALE:
            matches = await self._sales.find_by_transaction_id(owner_id, entry.id)
        else:
            return None
        return matches[0] if matches else None

    async def find_references(self, owner_id: str, entry_id: str) -> list[DerivedRecord]:
        """Every derived record, of either kind, that points at an entry."""
        obligations = await self._tax.find_by_transaction_id(owner_id, entry_id)
        sales = await self._sales.find_by_transaction_id(owner_id, entry_id)
        return [*obligations, *sales]

    async def _require_entry(self, owner_id: str, entry_id: str) -> LedgerEntry:
        entry = await self._ledger.get_entry(owner_id, entry_id)
        if entry is None:
            raise NotFoundError(f"Entry not found: {entry_id}")
        return entry

    # =========================================================================
    # LEDGER ENTRY WRITES
    # =========================================================================

    async def update_entry(
        self,
        owner_id: str,
        entry_id: str,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> LedgerEntry:
        """
        Update an entry and propagate the changed fields to its derived record.

        Only fields present in `changes` are candidates for propagation,
        and of those only the ones whose value differs on the derived
        record are written.
        """
        before = await self._require_entry(owner_id, entry_id)
        if not changes:
            return before
        if "kind" in changes and changes["kind"] != before.kind:
            await self._check_kind_change(owner_id, entry_id, changes["kind"])

        saga = self._saga("update_entry", owner_id, correlation_id)
        previous = {field: getattr(before, field) for field in changes}

        updated = await saga.step(
            "update_entry",
            lambda: self._ledger.update_entry(owner_id, entry_id, changes),
            compensation=lambda _: self._ledger.update_entry(owner_id, entry_id, previous),
        )

        before_kind = self.classify(before)
        after_kind = self.classify(updated)
        if before_kind != after_kind:
            logger.warning(
                "sync_classification_changed",
                owner_id=owner_id,
                entry_id=entry_id,
                before=before_kind.value if before_kind else None,
                after=after_kind.value if after_kind else None,
            )
            if self._audit_logger:
                await self._audit_logger.log_classification_changed(
                    owner_id=owner_id,
                    entry_id=entry_id,
                    before=before_kind.value if before_kind else None,
                    after=after_kind.value if after_kind else None,
                    correlation_id=correlation_id,
                )

        linked = await self.find_linked(owner_id, updated)
        if linked is not None:
            await self._propagate_to_derived(saga, owner_id, updated, linked, changes)

        await self._audit(
            AuditEventType.ENTRY_UPDATED, owner_id, "entry", entry_id,
            "Ledger entry updated", correlation_id,
            details={"fields": sorted(changes)},
        )
        return updated

    async def _check_kind_change(self, owner_id: str, entry_id: str, kind: EntryKind) -> None:
        """A DAS payment entry must stay an expense and a sale entry an income."""
        for record in await self.find_references(owner_id, entry_id):
            if isinstance(record, TaxObligation):
                required, label = EntryKind.EXPENSE, "DAS payment"
            else:
                required, label = EntryKind.INCOME, "sale"
            if EntryKind(kind) != required:
                logger.warning(
                    "sync_kind_change_rejected",
                    owner_id=owner_id,
                    entry_id=entry_id,
                    linked_id=record.id,
                    requested=EntryKind(kind).value,
                )
                raise InvalidRecordError(
                    f"Entry {entry_id} records a {label} and must stay {required.value}"
                )

    async def _propagate_to_derived(
        self,
        saga: Saga,
        owner_id: str,
        entry: LedgerEntry,
        linked: DerivedRecord,
        changes: dict[str, Any],
    ) -> None:
        if isinstance(linked, TaxObligation):
            field_map, entity_type = TAX_FIELD_MAP, "tax_obligation"
            update = self._tax.update_obligation
        else:
            field_map, entity_type = SALE_FIELD_MAP, "sale"
            update = self._sales.update_sale

        derived_changes = {}
        for entry_field, derived_field in field_map.items():
            if entry_field not in changes:
                continue
            value = getattr(entry, entry_field)
            # Sales require a description and payment method
            if value in (None, "") and entity_type == "sale":
                continue
            if getattr(linked, derived_field) != value:
                derived_changes[derived_field] = value

        if not derived_changes:
            return

        previous = {field: getattr(linked, field) for field in derived_changes}
        await saga.step(
            f"propagate_to_{entity_type}",
            lambda: update(owner_id, linked.id, derived_changes),
            compensation=lambda _: update(owner_id, linked.id, previous),
        )

        if self._audit_logger:
            await self._audit_logger.log_sync_propagated(
                owner_id=owner_id,
                entity_type=entity_type,
                entity_id=linked.id,
                fields=sorted(derived_changes),
                correlation_id=saga.correlation_id,
            )

    async def delete_entry(
        self,
        owner_id: str,
        entry_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[DerivedRecord]:
        """
        Delete an entry together with any derived record pointing at it.

        The entry is deleted whether or not a derived record was found.

        Returns:
            The derived records that were deleted (their receipts are the
            caller's to clean up)

        Raises:
            NotFoundError: If the entry doesn't exist
            PartialSyncFailure: If a derived record still references the
                entry afterwards
        """
        entry = await self._require_entry(owner_id, entry_id)
        linked = await self.find_references(owner_id, entry_id)

        saga = self._saga("delete_entry", owner_id, correlation_id)
        for record in linked:
            await self._delete_derived_step(saga, owner_id, record)

        await saga.step(
            "delete_entry",
            lambda: self._ledger.delete_entry(owner_id, entry_id),
            compensation=lambda _: self._ledger.insert_entry(entry),
        )

        stale = await self.find_references(owner_id, entry_id)
        if stale:
            residual = (
                f"{len(stale)} derived record(s) still reference deleted entry {entry_id}"
            )
            if self._audit_logger:
                await self._audit_logger.log_sync_failed(
                    owner_id=owner_id,
                    operation="delete_entry",
                    residual_state=residual,
                    error_message="stale back-reference after delete",
                    correlation_id=correlation_id,
                )
            raise PartialSyncFailure("delete_entry", residual)

        await self._audit(
            AuditEventType.ENTRY_DELETED, owner_id, "entry", entry_id,
            "Ledger entry deleted", correlation_id,
            details={"derived_deleted": [r.id for r in linked]},
        )
        return linked

    async def _delete_derived_step(self, saga: Saga, owner_id: str, record: DerivedRecord) -> None:
        if isinstance(record, TaxObligation):
            await saga.step(
                "delete_tax_obligation",
                lambda: self._tax.delete_obligation(owner_id, record.id),
                compensation=lambda _: self._tax.insert_obligation(record),
            )
        else:
            await saga.step(
                "delete_sale",
                lambda: self._sales.delete_sale(owner_id, record.id),
                compensation=lambda _: self._sales.insert_sale(record),
            )

    # =========================================================================
    # TAX OBLIGATION TRANSITIONS
    # =========================================================================

    def _tax_entry(
        self,
        owner_id: str,
        competence: str,
        amount,
        payment_date: date,
    ) -> LedgerEntry:
        return LedgerEntry(
            owner_id=owner_id,
            kind=EntryKind.EXPENSE,
            entry_date=payment_date,
            amount=amount,
            description=tax_entry_description(competence, self.marker),
            payment_method=self.tax_payment_method,
            linked_kind=LinkedKind.TAX_OBLIGATION,
        )

    async def create_obligation(
        self,
        obligation: TaxObligation,
        payment_date: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TaxObligation:
        """
        Insert an obligation; when a payment date is given, as paid.

        A paid obligation gets its expense entry written first.
        """
        owner_id = obligation.owner_id
        if payment_date is None:
            created = await self._tax.insert_obligation(obligation)
            await self._audit(
                AuditEventType.TAX_OBLIGATION_CREATED, owner_id, "tax_obligation",
                created.id, f"DAS {created.competence} registered", correlation_id,
            )
            return created

        saga = self._saga("create_paid_obligation", owner_id, correlation_id)
        entry = await saga.step(
            "insert_entry",
            lambda: self._ledger.insert_entry(
                self._tax_entry(owner_id, obligation.competence, obligation.amount, payment_date)
            ),
            compensation=lambda created: self._ledger.delete_entry(owner_id, created.id),
        )
        paid = TaxObligation.model_validate({
            **obligation.model_dump(),
            "status": TaxStatus.PAID,
            "payment_date": payment_date,
            "transaction_id": entry.id,
        })
        created = await saga.step(
            "insert_obligation",
            lambda: self._tax.insert_obligation(paid),
        )
        await self._audit(
            AuditEventType.TAX_OBLIGATION_PAID, owner_id, "tax_obligation", created.id,
            f"DAS {created.competence} registered as paid", correlation_id,
            details={"transaction_id": entry.id},
        )
        return created

    async def mark_paid(
        self,
        owner_id: str,
        obligation: TaxObligation,
        payment_date: date,
        extra_changes: Optional[dict[str, Any]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TaxObligation:
        """pending -> paid: write the expense entry, then link it."""
        extra_changes = dict(extra_changes or {})
        amount = extra_changes.get("amount", obligation.amount)
        competence = extra_changes.get("competence", obligation.competence)

        saga = self._saga("mark_paid", owner_id, correlation_id)
        entry = await saga.step(
            "insert_entry",
            lambda: self._ledger.insert_entry(
                self._tax_entry(owner_id, competence, amount, payment_date)
            ),
            compensation=lambda created: self._ledger.delete_entry(owner_id, created.id),
        )
        changes = {
            **extra_changes,
            "status": TaxStatus.PAID,
            "payment_date": payment_date,
            "transaction_id": entry.id,
        }
        paid = await saga.step(
            "link_obligation",
            lambda: self._tax.update_obligation(owner_id, obligation.id, changes),
        )
        await self._audit(
            AuditEventType.TAX_OBLIGATION_PAID, owner_id, "tax_obligation", paid.id,
            f"DAS {paid.competence} marked as paid", correlation_id,
            details={"transaction_id": entry.id, "payment_date": payment_date.isoformat()},
        )
        return paid

    async def mark_pending(
        self,
        owner_id: str,
        obligation: TaxObligation,
        extra_changes: Optional[dict[str, Any]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TaxObligation:
        """paid -> pending: unlink, then delete the expense entry."""
        entry = None
        if obligation.transaction_id:
            entry = await self._ledger.get_entry(owner_id, obligation.transaction_id)

        saga = self._saga("mark_pending", owner_id, correlation_id)
        previous = {
            "status": obligation.status,
            "payment_date": obligation.payment_date,
            "transaction_id": obligation.transaction_id,
        }
        changes = {
            **(extra_changes or {}),
            "status": TaxStatus.PENDING,
            "payment_date": None,
            "transaction_id": None,
        }
        previous.update({k: getattr(obligation, k) for k in (extra_changes or {})})

        reopened = await saga.step(
            "unlink_obligation",
            lambda: self._tax.update_obligation(owner_id, obligation.id, changes),
            compensation=lambda _: self._tax.update_obligation(owner_id, obligation.id, previous),
        )
        if entry is not None:
            await saga.step(
                "delete_entry",
                lambda: self._ledger.delete_entry(owner_id, entry.id),
            )
        await self._audit(
            AuditEventType.TAX_OBLIGATION_REOPENED, owner_id, "tax_obligation", reopened.id,
            f"DAS {reopened.competence} reopened", correlation_id,
            details={"deleted_entry": entry.id if entry else None},
        )
        return reopened

    async def update_obligation(
        self,
        owner_id: str,
        obligation: TaxObligation,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> TaxObligation:
        """Update an obligation, keeping a paid one's expense entry in lockstep."""
        entry_changes = {}
        if "amount" in changes:
            entry_changes["amount"] = changes["amount"]
        if changes.get("payment_date") is not None:
            entry_changes["entry_date"] = changes["payment_date"]
        if "competence" in changes:
            entry_changes["description"] = tax_entry_description(changes["competence"], self.marker)

        saga = self._saga("update_obligation", owner_id, correlation_id)
        entry = None
        if entry_changes and obligation.transaction_id:
            entry = await self._ledger.get_entry(owner_id, obligation.transaction_id)
        if entry is not None:
            entry_changes = {k: v for k, v in entry_changes.items() if getattr(entry, k) != v}
            previous = {k: getattr(entry, k) for k in entry_changes}
            if entry_changes:
                await saga.step(
                    "update_entry",
                    lambda: self._ledger.update_entry(owner_id, entry.id, entry_changes),
                    compensation=lambda _: self._ledger.update_entry(owner_id, entry.id, previous),
                )

        updated = await saga.step(
            "update_obligation",
            lambda: self._tax.update_obligation(owner_id, obligation.id, changes),
        )
        await self._audit(
            AuditEventType.TAX_OBLIGATION_UPDATED, owner_id, "tax_obligation", updated.id,
            f"DAS {updated.competence} updated", correlation_id,
            details={"fields": sorted(changes)},
        )
        return updated

    async def delete_obligation(
        self,
        owner_id: str,
        obligation: TaxObligation,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Delete an obligation and its expense entry, if any."""
        await self._delete_with_entry(
            owner_id, obligation, obligation.transaction_id, correlation_id,
        )
        await self._audit(
            AuditEventType.TAX_OBLIGATION_DELETED, owner_id, "tax_obligation",
            obligation.id, f"DAS {obligation.competence} deleted", correlation_id,
        )

    # =========================================================================
    # SALES
    # =========================================================================

    async def create_sale(
        self,
        sale: SaleRecord,
        category_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> SaleRecord:
        """Write the income entry first, then the sale pointing at it."""
        owner_id = sale.owner_id
        saga = self._saga("create_sale", owner_id, correlation_id)
        entry = await saga.step(
            "insert_entry",
            lambda: self._ledger.insert_entry(LedgerEntry(
                owner_id=owner_id,
                kind=EntryKind.INCOME,
                entry_date=sale.sale_date,
                amount=sale.amount,
                description=sale.description,
                category_id=category_id,
                payment_method=sale.payment_method,
                linked_kind=LinkedKind.SALE,
            )),
            compensation=lambda created: self._ledger.delete_entry(owner_id, created.id),
        )
        linked = sale.model_copy(update={"transaction_id": entry.id})
        created = await saga.step(
            "insert_sale",
            lambda: self._sales.insert_sale(linked),
        )
        await self._audit(
            AuditEventType.SALE_CREATED, owner_id, "sale", created.id,
            "Sale registered", correlation_id,
            details={"transaction_id": entry.id},
        )
        return created

    async def update_sale(
        self,
        owner_id: str,
        sale: SaleRecord,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> SaleRecord:
        """Update a sale and its income entry in lockstep."""
        saga = self._saga("update_sale", owner_id, correlation_id)

        entry = None
        if sale.transaction_id:
            entry = await self._ledger.get_entry(owner_id, sale.transaction_id)
        if entry is not None:
            entry_changes = {
                SALE_TO_ENTRY_MAP[field]: value
                for field, value in changes.items()
                if field in SALE_TO_ENTRY_MAP
                and getattr(entry, SALE_TO_ENTRY_MAP[field]) != value
            }
            if entry_changes:
                previous = {k: getattr(entry, k) for k in entry_changes}
                await saga.step(
                    "update_entry",
                    lambda: self._ledger.update_entry(owner_id, entry.id, entry_changes),
                    compensation=lambda _: self._ledger.update_entry(owner_id, entry.id, previous),
                )

        updated = await saga.step(
            "update_sale",
            lambda: self._sales.update_sale(owner_id, sale.id, changes),
        )
        await self._audit(
            AuditEventType.SALE_UPDATED, owner_id, "sale", updated.id,
            "Sale updated", correlation_id,
            details={"fields": sorted(changes)},
        )
        return updated

    async def delete_sale(
        self,
        owner_id: str,
        sale: SaleRecord,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Delete a sale and its income entry."""
        await self._delete_with_entry(owner_id, sale, sale.transaction_id, correlation_id)
        await self._audit(
            AuditEventType.SALE_DELETED, owner_id, "sale", sale.id,
            "Sale deleted", correlation_id,
        )

    async def _delete_with_entry(
        self,
        owner_id: str,
        record: DerivedRecord,
        entry_id: Optional[str],
        correlation_id: Optional[UUID],
    ) -> None:
        entry = await self._ledger.get_entry(owner_id, entry_id) if entry_id else None

        operation = "delete_tax_obligation" if isinstance(record, TaxObligation) else "delete_sale"
        saga = self._saga(operation, owner_id, correlation_id)
        await self._delete_derived_step(saga, owner_id, record)
        if entry is not None:
            await saga.step(
                "delete_entry",
                lambda: self._ledger.delete_entry(owner_id, entry.id),
            )
