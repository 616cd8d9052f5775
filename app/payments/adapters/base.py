"""
Gateway adapter interface.

Every payment provider integration subclasses GatewayAdapter. The engine
only talks to providers through this interface, so the orchestrator can be
tested with a fake gateway and new providers are added without touching
core logic.

Each adapter declares:
    - provider_code: Registry key, matches PaymentProvider.provider_code
    - EVENT_STATUS_MAP: Provider webhook vocabulary -> TransactionStatus.
      Unlisted events are ignored; there is no substring matching.
    - FEE_PERCENTAGE / FEE_FIXED: Gateway fee schedule

Outbound calls go through ``_call``, which applies the circuit breaker and
logs start, completion and failure with timing.
"""

from __future__ import annotations

import hashlib
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from django.conf import settings

from core.circuit_breaker import CircuitBreaker, CircuitOpenError
from payments.exceptions import GatewayError
from payments.money import ZERO, to_money

if TYPE_CHECKING:
    from collections.abc import Callable

MONEY_MOVING_OPERATIONS = frozenset({"refund_payment", "create_payout"})

# =============================================================================
# Data Types
# =============================================================================


class GatewayPaymentStatus(str, Enum):
    """Provider-neutral payment status returned by ``confirm_payment``."""

    PAID = "PAID"
    SETTLED = "SETTLED"
    PENDING = "PENDING"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


@dataclass
class IntentRequest:
    """
    Parameters for creating a payment intent / invoice.

    Attributes:
        amount: Decimal major-unit amount; adapters convert to minor units
        currency: Upper-case ISO 4217 code
        description: Customer-facing description
        customer_id: Provider customer id, if any
        payment_method: Method code the payer picked
        metadata: Attached to the provider object (transaction_id, ...)
        idempotency_key: Key for safe retries
    """

    amount: Decimal
    currency: str
    description: str = ""
    customer_id: str | None = None
    payment_method: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    idempotency_key: str | None = None

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if not self.currency:
            raise ValueError("currency is required")


@dataclass
class IntentResult:
    intent_id: str
    client_secret: str | None = None
    payment_url: str | None = None
    expires_at: datetime | None = None
    raw_status: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayStatusResult:
    status: GatewayPaymentStatus
    raw_status: str = ""
    failure_reason: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundRequest:
    gateway_transaction_id: str
    amount: Decimal
    currency: str
    reason: str = ""
    idempotency_key: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayRefundResult:
    refund_id: str
    status: str
    amount: Decimal


@dataclass
class PayoutRequest:
    """
    Transfer of a released payout to a recipient.

    Attributes:
        payout_id: Local PayoutDistribution id (used as external reference)
        recipient_id: Local user id of the recipient
        destination: Provider-side destination (connected account, bank ref)
    """

    payout_id: str
    recipient_id: str
    amount: Decimal
    currency: str
    destination: str = ""
    description: str = ""
    idempotency_key: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayPayoutResult:
    payout_id: str
    status: str


@dataclass
class ParsedWebhookEvent:
    event_id: str
    event_type: str
    gateway_transaction_id: str
    data: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Idempotency Keys
# =============================================================================


def make_idempotency_key(operation: str, entity_id: Any, attempt: int | str = 1) -> str:
    """
    Build a provider idempotency key.

    Format: "{operation}:{entity_id}:{attempt}:{hash}". The hash is keyed with
    SECRET_KEY so keys cannot be guessed from entity ids alone.

    Example:
        make_idempotency_key("refund", txn.id, attempt=txn.version)
        # "refund:550e8400-e29b-41d4-a716-446655440000:3:a1b2c3d4"
    """
    entity_str = str(entity_id)
    hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
    short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]
    return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Adapter Interface
# =============================================================================


class GatewayAdapter(ABC):
    """
    Base class for payment provider adapters.

    Adapters are constructed once per process by the engine and shared by
    web requests and Celery tasks; they hold configuration only.
    """

    provider_code: str = ""
    display_name: str = ""
    signature_header: str = ""

    EVENT_STATUS_MAP: dict[str, str] = {}

    FEE_PERCENTAGE: Decimal = ZERO
    FEE_FIXED: dict[str, Decimal] = {}

    supported_currencies: tuple[str, ...] = ()

    def __init__(
        self,
        timeout: float | None = None,
        failure_threshold: int | None = None,
        recovery_timeout: int | None = None,
    ):
        self.timeout = timeout or getattr(settings, "PAYMENT_GATEWAY_TIMEOUT_SECONDS", 10)
        self.circuit = CircuitBreaker(
            f"gateway:{self.provider_code}",
            failure_threshold=failure_threshold or getattr(settings, "GATEWAY_CIRCUIT_FAILURE_THRESHOLD", 5),
            recovery_timeout=recovery_timeout or getattr(settings, "GATEWAY_CIRCUIT_RECOVERY_TIMEOUT", 60),
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider_code={self.provider_code!r})"

    # =========================================================================
    # Provider Operations
    # =========================================================================

    @abstractmethod
    def create_payment_intent(self, request: IntentRequest) -> IntentResult:
        """Create the provider-side payment object the payer completes."""

    @abstractmethod
    def confirm_payment(self, gateway_transaction_id: str) -> GatewayStatusResult:
        """Fetch the current provider status of a payment."""

    @abstractmethod
    def refund_payment(self, request: RefundRequest) -> GatewayRefundResult:
        """Refund all or part of a payment."""

    @abstractmethod
    def create_payout(self, request: PayoutRequest) -> GatewayPayoutResult:
        """Transfer released escrow funds to a recipient."""

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Return True only when the webhook provably came from the provider."""

    @abstractmethod
    def parse_webhook_event(self, payload: bytes) -> ParsedWebhookEvent:
        """Extract id, type and referenced payment from a verified payload."""

    # =========================================================================
    # Shared Behaviour
    # =========================================================================

    def calculate_fees(self, amount: Decimal, currency: str) -> Decimal:
        """Gateway fee: ``amount * FEE_PERCENTAGE / 100 + FEE_FIXED[currency]``."""
        fixed = self.FEE_FIXED.get(currency.upper(), ZERO)
        return to_money(Decimal(amount) * self.FEE_PERCENTAGE / Decimal("100") + fixed)

    def status_for_event(self, event_type: str) -> str | None:
        return self.EVENT_STATUS_MAP.get(event_type)

    def supports_currency(self, currency: str) -> bool:
        return not self.supported_currencies or currency.upper() in self.supported_currencies

    def health_check(self) -> bool:
        return self.circuit.is_available()

    def _call(self, operation: str, func: Callable[[], Any], **log_context: Any) -> Any:
        """
        Run one provider call under the circuit breaker.

        Only retryable failures (transport, rate limit, 5xx) count against
        the circuit; a declined card is a provider answer, not an outage.

        Raises:
            GatewayError: Provider call failed, or the circuit is open
        """
        logger = self.get_logger()
        context = {"operation": operation, "provider": self.provider_code, **log_context}

        if not self.circuit.is_available():
            logger.warning("Gateway circuit open, refusing call", extra=context)
            raise GatewayError(
                f"{self.display_name or self.provider_code} is temporarily unavailable",
                error_code=CircuitOpenError.default_error_code,
                provider=self.provider_code,
                is_retryable=True,
            )

        start_time = time.time()
        logger.info("Starting gateway operation", extra=context)

        try:
            result = self._invoke(operation, func, context)
        except GatewayError as e:
            duration_ms = (time.time() - start_time) * 1000
            if e.is_retryable:
                self.circuit.record_failure()
            else:
                self.circuit.record_success()
            logger.warning(
                f"Gateway operation failed: {e.message}",
                extra={**context, "duration_ms": duration_ms, "retryable": e.is_retryable},
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        self.circuit.record_success()
        logger.info(
            "Gateway operation completed",
            extra={**context, "duration_ms": duration_ms},
        )
        return result

    def _invoke(self, operation: str, func: Callable[[], Any], context: dict) -> Any:
        """
        Call ``func`` and turn a malformed 2xx body into a GatewayError.

        Refunds and payouts may already have moved money when the body is
        unreadable, so those are logged at critical for reconciliation.
        """
        try:
            return func()
        except (KeyError, TypeError, AttributeError) as e:
            log = (
                self.get_logger().critical
                if operation in MONEY_MOVING_OPERATIONS
                else self.get_logger().error
            )
            log(
                "Gateway returned an unexpected response body",
                extra={**context, "error": repr(e)},
            )
            raise GatewayError(
                f"{self.display_name or self.provider_code} returned an unexpected response",
                error_code="GATEWAY_BAD_RESPONSE",
                provider=self.provider_code,
                details={"operation": operation},
                is_retryable=False,
            ) from e
