"""
Compensating multi-record writes.

DESIGN DECISION: The stores have no transactions spanning records, so a
write that touches a ledger entry and its derived record runs as a saga:
an ordered list of steps, each with an optional compensating action.
When a step fails, the completed steps are undone in reverse order and
the original error is re-raised. If an undo step fails too, the records
are left inconsistent; that is reported as PartialSyncFailure, never
silently ignored.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import structlog

from mei_ledger.audit import AuditLogger


logger = structlog.get_logger("mei_ledger.sync")

T = TypeVar("T")

Action = Callable[[], Awaitable[T]]
Compensation = Callable[[Any], Awaitable[Any]]


class SyncError(Exception):
    """Base exception for synchronization failures."""
    pass


class PartialSyncFailure(SyncError):
    """
    A multi-record write left the records inconsistent.

    Attributes:
        operation: Name of the failed operation
        residual_state: What is left behind and needs attention
        cause: The error that started the failure
    """

    def __init__(
        self,
        operation: str,
        residual_state: str,
        cause: Optional[BaseException] = None,
    ):
        self.operation = operation
        self.residual_state = residual_state
        self.cause = cause
        super().__init__(f"{operation}: {residual_state}")


@dataclass
class _CompletedStep:
    name: str
    compensation: Optional[Compensation]
    result: Any


class Saga:
    """
    Runs steps in order and undoes them on failure.

    Usage:
        saga = Saga("create_sale", owner_id, audit_logger, correlation_id)
        entry = await saga.step(
            "insert_entry",
            lambda: ledger.insert_entry(entry),
            compensation=lambda created: ledger.delete_entry(owner_id, created.id),
        )
        await saga.step("insert_sale", lambda: sales.insert_sale(sale))

    The compensation receives the result of its own step.
    """

    def __init__(
        self,
        operation: str,
        owner_id: str,
        audit_logger: Optional[AuditLogger] = None,
        correlation_id: Optional[UUID] = None,
    ):
        self.operation = operation
        self.owner_id = owner_id
        self.correlation_id = correlation_id
        self._audit_logger = audit_logger
        self._completed: list[_CompletedStep] = []

    @property
    def completed_steps(self) -> list[str]:
        return [step.name for step in self._completed]

    async def step(
        self,
        name: str,
        action: Action,
        compensation: Optional[Compensation] = None,
    ) -> Any:
        """
        Run one step.

        Raises:
            The step's own exception, once earlier steps are compensated
            PartialSyncFailure: If compensating an earlier step failed
        """
        try:
            result = await action()
        except Exception as exc:
            logger.warning(
                "saga_step_failed",
                operation=self.operation,
                step=name,
                error=str(exc),
            )
            await self._compensate(exc)
            raise
        self._completed.append(_CompletedStep(name, compensation, result))
        return result

    async def _compensate(self, error: Exception) -> None:
        compensated: list[str] = []
        pending = list(reversed(self._completed))

        for index, step in enumerate(pending):
            if step.compensation is None:
                continue
            try:
                await step.compensation(step.result)
            except Exception as comp_error:
                not_undone = [s.name for s in pending[index:] if s.compensation]
                residual = f"could not undo {', '.join(not_undone)}"
                if self._audit_logger:
                    await self._audit_logger.log_sync_failed(
                        owner_id=self.owner_id,
                        operation=self.operation,
                        residual_state=residual,
                        error_message=str(comp_error),
                        correlation_id=self.correlation_id,
                    )
                raise PartialSyncFailure(self.operation, residual, error) from comp_error
            compensated.append(step.name)

        self._completed.clear()
        if compensated and self._audit_logger:
            await self._audit_logger.log_sync_rolled_back(
                owner_id=self.owner_id,
                operation=self.operation,
                completed_steps=compensated,
                error_message=str(error),
                correlation_id=self.correlation_id,
            )
