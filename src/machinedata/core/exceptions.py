"""
Custom exceptions for the machine data service.

Provides structured error handling with appropriate HTTP status codes
and error details for API responses.
"""

from typing import Any, Dict, List, Optional


class MachineDataException(Exception):
    """Base exception for the machine data service."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ValidationError(MachineDataException):
    """Raised when a request payload or parameter is rejected."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=400,
            error_code="validation_error",
            details=details,
        )


class MissingFieldsError(ValidationError):
    """Raised by strict ingestion when required fields are absent."""

    def __init__(self, missing: List[str], received: List[str]) -> None:
        super().__init__(
            message="Missing required fields: machineId, timestamp, data",
            details={"missingFields": missing, "receivedFields": received},
        )
        self.error_code = "missing_fields"


class PayloadTooLargeError(MachineDataException):
    """Raised when the request body exceeds the configured limit."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            message="Payload too large",
            status_code=413,
            error_code="payload_too_large",
            details={"size": size, "limit": limit},
        )


class RateLimitError(MachineDataException):
    """Raised when rate limit is exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = dict(details or {})
        if retry_after:
            details["retryAfter"] = retry_after

        super().__init__(
            message=message,
            status_code=429,
            error_code="rate_limit_exceeded",
            details=details,
        )
        self.retry_after = retry_after


class NotFoundError(MachineDataException):
    """Raised when no stored records match a lookup."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=404,
            error_code="not_found",
            details=details,
        )


class StorageError(MachineDataException):
    """
    Raised when the record store is unavailable, times out or holds corrupted rows.

    The message returned to callers is always generic; the cause is logged
    where the error is raised.
    """

    def __init__(self, message: str = "Database error occurred") -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="storage_error",
        )
