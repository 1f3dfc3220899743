"""Waterpoint Gateway - Custom exceptions.

Every operational error carries an HTTP status and a stable error code so the
API layer can render it without knowing which service raised it.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes returned to API callers."""

    INVALID_INPUT = "INVALID_INPUT"
    OUT_OF_RANGE = "OUT_OF_RANGE"
    NOT_FOUND = "NOT_FOUND"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    TRANSACTION_NOT_COMPLETED = "TRANSACTION_NOT_COMPLETED"
    EXPIRED = "EXPIRED"
    ALREADY_USED = "ALREADY_USED"
    BLOCKED = "BLOCKED"
    INVALID_CODE = "INVALID_CODE"
    FORBIDDEN_STATION_LOCK = "FORBIDDEN_STATION_LOCK"
    IN_USE_ELSEWHERE = "IN_USE_ELSEWHERE"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    DUPLICATE_REFERENCE = "DUPLICATE_REFERENCE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class WaterpointError(Exception):
    """Base exception for all expected, user-correctable errors."""

    status_code: int = 400
    default_code: ErrorCode = ErrorCode.INVALID_INPUT

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode | None = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        self.code = code or self.default_code
        super().__init__(message)


class ValidationError(WaterpointError):
    """Input validation failed."""

    pass


class OutOfRangeError(ValidationError):
    """Amount outside the configured bounds."""

    default_code = ErrorCode.OUT_OF_RANGE


class NotFoundError(WaterpointError):
    """Referenced transaction or credential does not exist."""

    status_code = 404
    default_code = ErrorCode.NOT_FOUND


class DomainStateError(WaterpointError):
    """Entity exists but its state forbids the operation."""

    pass


class ForbiddenError(WaterpointError):
    """Credential is locked to another station."""

    status_code = 403
    default_code = ErrorCode.FORBIDDEN_STATION_LOCK


class ConflictError(WaterpointError):
    """Credential is being dispensed by another station."""

    status_code = 409
    default_code = ErrorCode.IN_USE_ELSEWHERE


class SignatureError(WaterpointError):
    """Provider webhook signature did not verify."""

    status_code = 401
    default_code = ErrorCode.INVALID_SIGNATURE


class UpstreamError(WaterpointError):
    """Payment or notification provider call failed."""

    status_code = 502
    default_code = ErrorCode.UPSTREAM_ERROR
