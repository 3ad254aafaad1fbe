"""
Operation result shapes.

DESIGN DECISION: Store and sync errors are caught where they occur and
converted into a result. Callers (UI event handlers) never see a raw
exception, only a short message naming the action that failed.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    NOT_FOUND = "not_found"
    STORE_ERROR = "store_error"
    VALIDATION_ERROR = "validation_error"
    PARTIAL_SYNC_FAILURE = "partial_sync_failure"
    INSUFFICIENT_BALANCE = "insufficient_balance"


class ErrorInfo(BaseModel):
    """User-facing error: a code plus a short message."""

    code: ErrorCode
    message: str = Field(..., max_length=300)


class OperationResult(BaseModel):
    """
    Outcome of a service operation.

    `data` holds the record (or list of records) on success; `error` is set
    on failure.
    """

    success: bool
    data: Any = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def ok(cls, data: Any = None) -> 'OperationResult':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: ErrorCode, message: str) -> 'OperationResult':
        return cls(success=False, error=ErrorInfo(code=code, message=message))

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error else None
