"""Closed error taxonomy for workflow operations.

Every failure raised by the guards, the transition validator and the
services is a WorkflowError carrying one of the codes below. The API layer
turns it into the standard failure envelope; the HTTP status is derived
from the code alone.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes exposed to API clients."""

    VALIDATION_FAILED = "VALIDATION_FAILED"
    FORBIDDEN = "FORBIDDEN"
    TENANT_SCOPE_VIOLATION = "TENANT_SCOPE_VIOLATION"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_STATUS: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_FAILED: 400,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.TENANT_SCOPE_VIOLATION: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_TRANSITION: 409,
    ErrorCode.CONFLICT: 409,
    ErrorCode.INTERNAL_ERROR: 500,
}


class WorkflowError(Exception):
    """Domain error with a stable code and domain-relevant details.

    Details must only carry ids, roles, statuses and similar context that
    is safe to return to the caller.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def status_code(self) -> int:
        """HTTP status code for this error."""
        return ERROR_STATUS[self.code]

    def __repr__(self) -> str:
        return f"WorkflowError({self.code.value!r}, {self.message!r})"


def not_found(entity: str, **ids: Any) -> WorkflowError:
    """Build a NOT_FOUND error for a missing referenced entity."""
    return WorkflowError(ErrorCode.NOT_FOUND, f"{entity} not found", dict(ids))


def validation_failed(message: str, **details: Any) -> WorkflowError:
    """Build a VALIDATION_FAILED error."""
    return WorkflowError(ErrorCode.VALIDATION_FAILED, message, dict(details))


def forbidden(message: str, **details: Any) -> WorkflowError:
    """Build a FORBIDDEN error."""
    return WorkflowError(ErrorCode.FORBIDDEN, message, dict(details))
