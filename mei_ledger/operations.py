"""
Shared plumbing for the result-shaped services.

Every service operation follows the same shape:
1. Resolve the signed-in owner (or fail with not_authenticated)
2. Run the store / sync work for that owner
3. Convert any error into an OperationResult carrying a short message
   that names the action; the internal error text only goes to the log
"""

from typing import Any, Awaitable, Callable, Optional

import structlog

from mei_ledger.audit import AuditLogger
from mei_ledger.context import NotAuthenticatedError, OwnerContext
from mei_ledger.models.results import ErrorCode, OperationResult
from mei_ledger.services.receipts import ReceiptStorageError, ReceiptStorageInterface
from mei_ledger.services.storage import (
    InvalidRecordError,
    NotFoundError,
    StorageError,
)
from mei_ledger.sync import PartialSyncFailure


logger = structlog.get_logger("mei_ledger.services")


class InsufficientBalanceError(Exception):
    """The month's balance can't cover a payment."""
    pass


class BaseService:
    """Owner resolution and error conversion shared by the services."""

    def __init__(
        self,
        context: OwnerContext,
        receipts: Optional[ReceiptStorageInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._context = context
        self._receipts = receipts
        self._audit_logger = audit_logger

    async def _run(
        self,
        operation: str,
        error_message: str,
        work: Callable[[str], Awaitable[Any]],
    ) -> OperationResult:
        """
        Run `work(owner_id)` and wrap its outcome.

        Args:
            operation: Name used in logs
            error_message: Short user-facing message, e.g. "Error deleting transaction"
            work: Coroutine function receiving the owner id
        """
        try:
            owner_id = await self._context.require_owner()
        except NotAuthenticatedError:
            logger.warning("auth_required", operation=operation)
            if self._audit_logger:
                await self._audit_logger.log_auth_required(operation)
            return OperationResult.fail(ErrorCode.NOT_AUTHENTICATED, "User not authenticated")

        try:
            return OperationResult.ok(await work(owner_id))
        except NotFoundError as e:
            logger.info("record_not_found", operation=operation, owner_id=owner_id, error=str(e))
            return OperationResult.fail(ErrorCode.NOT_FOUND, error_message)
        except InsufficientBalanceError as e:
            logger.info("insufficient_balance", operation=operation, owner_id=owner_id, error=str(e))
            return OperationResult.fail(ErrorCode.INSUFFICIENT_BALANCE, str(e))
        except (InvalidRecordError, ValueError) as e:
            logger.warning("invalid_record", operation=operation, owner_id=owner_id, error=str(e))
            return OperationResult.fail(ErrorCode.VALIDATION_ERROR, error_message)
        except PartialSyncFailure as e:
            logger.error(
                "partial_sync_failure",
                operation=operation,
                owner_id=owner_id,
                residual_state=e.residual_state,
                error=str(e.cause) if e.cause else None,
            )
            return OperationResult.fail(ErrorCode.PARTIAL_SYNC_FAILURE, error_message)
        except (StorageError, ReceiptStorageError) as e:
            logger.error("store_error", operation=operation, owner_id=owner_id, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"operation": operation},
                )
            return OperationResult.fail(ErrorCode.STORE_ERROR, error_message)

    async def _discard_receipt(self, url: Optional[str]) -> None:
        """
        Delete a receipt that no record references any more.

        A failure here leaves an orphaned file, not an inconsistent
        record, so it is logged and does not fail the operation.
        """
        if not url or self._receipts is None:
            return
        try:
            await self._receipts.delete(url)
        except ReceiptStorageError as e:
            logger.warning("receipt_delete_failed", url=url, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service="receipts",
                    error_message=str(e),
                )

    async def _upload_receipt(
        self,
        content: bytes,
        filename: str,
        owner_id: str,
        folder: Optional[str] = None,
    ) -> str:
        if self._receipts is None:
            raise ReceiptStorageError("No receipt storage configured")
        return await self._receipts.upload(content, filename, owner_id, folder=folder)
