"""
Audit Models for MEI Ledger

Every write the ledger subsystem performs is logged for audit purposes.
This provides:
1. Traceability of every propagated change between a ledger entry and
   its derived record
2. Debugging information when a multi-step write fails halfway
3. A record of what the user was told

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from mei_ledger.models.ledger import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Ledger entries
    ENTRY_CREATED = "entry_created"
    ENTRY_UPDATED = "entry_updated"
    ENTRY_DELETED = "entry_deleted"

    # Tax obligations
    TAX_OBLIGATION_CREATED = "tax_obligation_created"
    TAX_OBLIGATION_UPDATED = "tax_obligation_updated"
    TAX_OBLIGATION_PAID = "tax_obligation_paid"
    TAX_OBLIGATION_REOPENED = "tax_obligation_reopened"
    TAX_OBLIGATION_DELETED = "tax_obligation_deleted"

    # Sales
    SALE_CREATED = "sale_created"
    SALE_UPDATED = "sale_updated"
    SALE_DELETED = "sale_deleted"

    # Synchronization
    SYNC_PROPAGATED = "sync_propagated"
    SYNC_ROLLED_BACK = "sync_rolled_back"
    SYNC_FAILED = "sync_failed"
    SYNC_CLASSIFICATION_CHANGED = "sync_classification_changed"

    # Receipts
    RECEIPT_UPLOADED = "receipt_uploaded"
    RECEIPT_DELETED = "receipt_deleted"

    # Notifications
    NOTIFICATION_CREATED = "notification_created"
    NOTIFICATIONS_SEEDED = "notifications_seeded"

    # System events
    AUTH_REQUIRED = "auth_required"
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about, and whose?
    owner_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'entry', 'tax_obligation', 'sale')"
    )
    entity_id: Optional[str] = None

    # Correlation - for tracking the steps of one operation
    correlation_id: Optional[UUID] = None

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, owner_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.owner_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.entry_deleted(owner_id, entry_id, correlation_id)
        event = AuditEventBuilder.sync_failed(owner_id, "entry", entry_id, ...)
    """

    @staticmethod
    def record_written(
        event_type: AuditEventType,
        owner_id: str,
        entity_type: str,
        entity_id: str,
        description: str,
        correlation_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=description,
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def sync_propagated(
        owner_id: str,
        entity_type: str,
        entity_id: str,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_PROPAGATED,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Propagated {', '.join(fields)} to {entity_type}",
            details={"fields": fields},
        )

    @staticmethod
    def sync_rolled_back(
        owner_id: str,
        operation: str,
        completed_steps: list[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_ROLLED_BACK,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"{operation} failed and was rolled back",
            details={"compensated_steps": completed_steps},
            error_message=error_message,
        )

    @staticmethod
    def sync_failed(
        owner_id: str,
        operation: str,
        residual_state: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_FAILED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"{operation} left records inconsistent",
            details={"residual_state": residual_state},
            error_code="partial_sync_failure",
            error_message=error_message,
        )

    @staticmethod
    def classification_changed(
        owner_id: str,
        entry_id: str,
        before: Optional[str],
        after: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_CLASSIFICATION_CHANGED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="entry",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description="Entry changed classification; derived link left as-is",
            details={"before": before, "after": after},
        )

    @staticmethod
    def notification_created(
        owner_id: Optional[str],
        notification_id: str,
        priority: str,
        obligation_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATION_CREATED,
            owner_id=owner_id,
            entity_type="notification",
            entity_id=notification_id,
            description=f"Tax alert created with {priority} priority",
            details={"priority": priority, "obligation_id": obligation_id},
        )

    @staticmethod
    def notifications_seeded(owner_id: Optional[str], count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.NOTIFICATIONS_SEEDED,
            owner_id=owner_id,
            entity_type="notification",
            description=f"Seeded {count} welcome and tip notifications",
            details={"count": count},
        )

    @staticmethod
    def auth_required(operation: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTH_REQUIRED,
            severity=AuditSeverity.WARNING,
            description=f"{operation} attempted without an authenticated owner",
            error_code="not_authenticated",
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
