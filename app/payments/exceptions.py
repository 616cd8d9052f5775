"""
Payment-specific exceptions.

Every error carries a message, a machine-readable error code, optional
details and the HTTP status API views answer with (inherited from the
``core.exceptions`` base it extends).

Exception Hierarchy:
    PaymentError (500) - generic wrap for unexpected failures
    └── UnverifiedWebhookError (400) - signature verification failed

    NotFoundError (404) - transaction, method, provider or gateway missing
    ForbiddenError (403) - not the owner, or not a payment reviewer
    InvalidStateError (409) - operation not allowed in the current status
    StaleRecordError (409) - compare-and-swap write lost a race
    ValidationError (400) - bad amount, refund overflow, bad action
    TooManyAttemptsError (429) - proof upload cap reached
    GatewayError (502) - provider call failed; ``is_retryable`` set per cause

Usage:
    from payments.exceptions import InvalidStateError, StaleRecordError

    if txn.status not in REFUNDABLE_TRANSACTION_STATUSES:
        raise InvalidStateError(
            "Only succeeded payments can be refunded",
            details={"current_status": txn.status},
        )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core import exceptions as core_exceptions

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(core_exceptions.BaseApplicationError):
    """
    Base exception for payment operations that have no better category.

    Orchestrator entry points wrap unexpected exceptions into this class
    with an operation-specific message, so internals never reach clients.

    Example:
        except BaseApplicationError:
            raise
        except Exception as e:
            logger.error("Payment intent creation failed", exc_info=True)
            raise PaymentError("Failed to create payment intent") from e
    """

    default_error_code: str = "PAYMENT_ERROR"
    http_status: int = 500


class UnverifiedWebhookError(PaymentError):
    """
    Raised when a webhook signature cannot be verified.

    The event must be rejected before any state mutation or persistence.
    """

    default_error_code: str = "WEBHOOK_SIGNATURE_INVALID"
    http_status: int = 400


class NotFoundError(core_exceptions.NotFoundError):
    """
    Raised when a transaction, payment method, provider or gateway is missing.

    Example:
        raise NotFoundError(
            f"Payment method {code} not found",
            error_code="PAYMENT_METHOD_NOT_FOUND",
            details={"payment_method": code},
        )
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"


class ForbiddenError(core_exceptions.PermissionDeniedError):
    """
    Raised when the caller does not own the transaction, or lacks the
    ADMIN/MODERATOR role for manual payment review.
    """

    default_error_code: str = "PAYMENT_FORBIDDEN"


class ValidationError(core_exceptions.ValidationError):
    """
    Raised for malformed input and business rule violations.

    Example:
        raise ValidationError(
            "Refund exceeds remaining refundable amount",
            error_code="REFUND_EXCEEDS_AMOUNT",
            details={"requested": "80.00", "remaining": "70.00"},
        )
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"


class TooManyAttemptsError(core_exceptions.RateLimitError):
    """
    Raised when the proof upload attempt cap is reached.

    Checked right after ownership, before the transaction state.
    """

    default_error_code: str = "TOO_MANY_ATTEMPTS"


# =============================================================================
# State and Concurrency Exceptions
# =============================================================================


class InvalidStateError(core_exceptions.ConflictError):
    """
    Raised when an operation is attempted in the wrong lifecycle state.

    Example:
        raise InvalidStateError(
            "Transaction is not awaiting verification",
            details={"current_status": txn.status, "expected_status": "PROCESSING"},
        )
    """

    default_error_code: str = "INVALID_STATE"


class StaleRecordError(core_exceptions.ConflictError):
    """
    Raised when a compare-and-swap write finds the row changed.

    The row no longer has the expected status or version. Callers either
    re-read and decide again, or treat the race as lost.

    Attributes:
        details: Contains model, pk, expected_status and expected_version
    """

    default_error_code: str = "STALE_RECORD"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(core_exceptions.ExternalServiceError):
    """
    Raised when a payment provider call fails or returns an unexpected shape.

    Attributes:
        provider: Provider code ("stripe", "xendit")
        provider_code: The provider's own error code, if any
        is_retryable: True for timeouts, rate limits and 5xx responses

    Example:
        except GatewayError as e:
            if e.is_retryable:
                schedule_retry(...)
    """

    default_error_code: str = "GATEWAY_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        provider: str | None = None,
        provider_code: str | None = None,
        is_retryable: bool = False,
    ):
        details = details or {}
        if provider:
            details["provider"] = provider
        if provider_code:
            details["provider_code"] = provider_code
        super().__init__(message, error_code=error_code, details=details)
        self.provider = provider
        self.provider_code = provider_code
        self.is_retryable = is_retryable


__all__ = [
    "ForbiddenError",
    "GatewayError",
    "InvalidStateError",
    "NotFoundError",
    "PaymentError",
    "StaleRecordError",
    "TooManyAttemptsError",
    "UnverifiedWebhookError",
    "ValidationError",
]
