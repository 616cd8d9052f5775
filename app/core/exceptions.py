"""
Base exception classes for application-wide error handling.

Every domain error raised by a service carries a human-readable message,
a machine-readable error code and an optional details dict. Each class also
declares the HTTP status an API view should answer with, so views can
translate any ``BaseApplicationError`` without a per-view mapping.

Exception Hierarchy:
    BaseApplicationError (base, 500)
    ├── ValidationError - Input validation failures (400)
    ├── NotFoundError - Resource not found (404)
    ├── PermissionDeniedError - Authorization failures (403)
    ├── ConflictError - State conflicts, concurrent modifications (409)
    ├── RateLimitError - Attempt limits exceeded (429)
    └── ExternalServiceError - Third-party service failures (502)

Usage:
    from core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(
        "Payment transaction not found",
        error_code="TRANSACTION_NOT_FOUND",
        details={"transaction_id": str(transaction_id)},
    )

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=e.http_status)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, identifiers, etc.)
        http_status: Status code API views respond with
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Refund exceeds remaining amount",
                "error_code": "REFUND_EXCEEDS_AMOUNT",
                "details": {"remaining": "70.00"}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input or a business rule fails validation.

    Use for service-layer checks such as non-positive amounts or refunds
    larger than the remaining balance. DRF serializers keep handling
    request-shape validation.
    """

    default_error_code: str = "VALIDATION_ERROR"
    http_status: int = 400


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource does not exist.

    Use for single-resource lookups where existence is expected. List
    queries return empty results instead.
    """

    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller lacks permission for an operation.

    Authentication failures (missing or invalid token) stay with DRF's
    ``NotAuthenticated``; this class covers ownership and role checks.
    """

    default_error_code: str = "PERMISSION_DENIED"
    http_status: int = 403


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with the current resource state.

    Use for invalid state transitions and optimistic locking failures.
    """

    default_error_code: str = "CONFLICT"
    http_status: int = 409


class RateLimitError(BaseApplicationError):
    """
    Raised when an attempt limit is exceeded.

    Include ``max_attempts`` (and ``retry_after`` when it applies) in
    details so clients can explain the limit.
    """

    default_error_code: str = "RATE_LIMIT_EXCEEDED"
    http_status: int = 429


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Log the provider's raw error for debugging, but keep the message
    returned to clients free of internal details.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status: int = 502
