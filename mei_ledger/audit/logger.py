"""
Audit Logger

DESIGN DECISION: Every write the ledger subsystem performs is logged.
This provides:
1. Complete traceability of propagated changes
2. Debugging capability when a multi-step write fails halfway
3. A record of residual inconsistencies that need a human

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace the steps of one operation
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from mei_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from mei_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. An audit store (Google Sheets or in-memory), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("mei_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_record_written(
        self,
        event_type: AuditEventType,
        owner_id: str,
        entity_type: str,
        entity_id: str,
        description: str,
        correlation_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Log a create/update/delete of an entry, obligation or sale."""
        await self.log(AuditEventBuilder.record_written(
            event_type=event_type,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            correlation_id=correlation_id,
            details=details,
        ))

    async def log_sync_propagated(
        self,
        owner_id: str,
        entity_type: str,
        entity_id: str,
        fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log fields copied from a ledger entry to its derived record."""
        await self.log(AuditEventBuilder.sync_propagated(
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            fields=fields,
            correlation_id=correlation_id,
        ))

    async def log_sync_rolled_back(
        self,
        owner_id: str,
        operation: str,
        completed_steps: list[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a multi-record write that failed and was fully compensated."""
        await self.log(AuditEventBuilder.sync_rolled_back(
            owner_id=owner_id,
            operation=operation,
            completed_steps=completed_steps,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_sync_failed(
        self,
        owner_id: str,
        operation: str,
        residual_state: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a multi-record write that left records inconsistent."""
        await self.log(AuditEventBuilder.sync_failed(
            owner_id=owner_id,
            operation=operation,
            residual_state=residual_state,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_classification_changed(
        self,
        owner_id: str,
        entry_id: str,
        before: Optional[str],
        after: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.classification_changed(
            owner_id=owner_id,
            entry_id=entry_id,
            before=before,
            after=after,
            correlation_id=correlation_id,
        ))

    async def log_notification_created(
        self,
        owner_id: Optional[str],
        notification_id: str,
        priority: str,
        obligation_id: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.notification_created(
            owner_id=owner_id,
            notification_id=notification_id,
            priority=priority,
            obligation_id=obligation_id,
        ))

    async def log_notifications_seeded(self, owner_id: Optional[str], count: int) -> None:
        await self.log(AuditEventBuilder.notifications_seeded(owner_id, count))

    async def log_auth_required(self, operation: str) -> None:
        """Log an operation attempted with no authenticated owner."""
        await self.log(AuditEventBuilder.auth_required(operation))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a user action (e.g., marking a DAS paid).
    Pass it through all subsequent steps.
    """
    return uuid4()
