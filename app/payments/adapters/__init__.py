"""
Payment gateway adapters.

All external payment API calls go through these adapters to ensure
consistent error handling, timeouts, idempotency and observability.

Usage:
    from payments.adapters import IntentRequest
    from payments.engine import get_engine

    adapter = get_engine().gateways.get_adapter("stripe")
    result = adapter.create_payment_intent(
        IntentRequest(amount=Decimal("50.00"), currency="MYR", idempotency_key=key)
    )
"""

from payments.adapters.base import (
    GatewayAdapter,
    GatewayPaymentStatus,
    GatewayPayoutResult,
    GatewayRefundResult,
    GatewayStatusResult,
    IntentRequest,
    IntentResult,
    ParsedWebhookEvent,
    PayoutRequest,
    RefundRequest,
    make_idempotency_key,
)
from payments.adapters.registry import GatewayRegistry

__all__ = [
    "GatewayAdapter",
    "GatewayPaymentStatus",
    "GatewayPayoutResult",
    "GatewayRefundResult",
    "GatewayRegistry",
    "GatewayStatusResult",
    "IntentRequest",
    "IntentResult",
    "ParsedWebhookEvent",
    "PayoutRequest",
    "RefundRequest",
    "make_idempotency_key",
]
