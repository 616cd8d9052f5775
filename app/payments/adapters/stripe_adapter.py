"""
Stripe gateway adapter.

Encapsulates every Stripe API interaction behind the GatewayAdapter
interface: PaymentIntents for collection, Refunds, Connect Transfers for
payouts, and signed webhooks.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)

Amounts cross the boundary as Decimal major units and are converted to
Stripe's minor units here.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any

import stripe
from django.conf import settings

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
)
from payments.exceptions import GatewayError, UnverifiedWebhookError
from payments.money import from_minor_units, to_minor_units
from payments.state_machines import TransactionStatus

# PaymentIntent.status -> provider-neutral status
INTENT_STATUS_MAP = {
    "succeeded": GatewayPaymentStatus.PAID,
    "processing": GatewayPaymentStatus.PENDING,
    "requires_capture": GatewayPaymentStatus.PENDING,
    "requires_action": GatewayPaymentStatus.PENDING,
    "requires_confirmation": GatewayPaymentStatus.PENDING,
    "requires_payment_method": GatewayPaymentStatus.PENDING,
    "canceled": GatewayPaymentStatus.EXPIRED,
}


class StripeGateway(GatewayAdapter):
    """
    Adapter for Stripe API operations.

    Thread-safe for use from Celery workers; the API key and HTTP client
    are configured on the module before each call.
    """

    provider_code = "stripe"
    display_name = "Stripe"
    signature_header = "Stripe-Signature"

    EVENT_STATUS_MAP = {
        "payment_intent.succeeded": TransactionStatus.SUCCEEDED,
        "payment_intent.payment_failed": TransactionStatus.FAILED,
        "payment_intent.canceled": TransactionStatus.CANCELED,
        "payment_intent.processing": TransactionStatus.PROCESSING,
    }

    FEE_PERCENTAGE = Decimal("2.9")
    FEE_FIXED = {
        "USD": Decimal("0.30"),
        "MYR": Decimal("1.50"),
        "SGD": Decimal("0.50"),
    }

    supported_currencies = ("USD", "MYR", "SGD", "EUR", "GBP", "AUD")

    def __init__(
        self,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(
            timeout=timeout or getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10),
            **kwargs,
        )
        self.secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET

    # =========================================================================
    # Configuration
    # =========================================================================

    def _configure_stripe(self) -> None:
        """Configure Stripe client with API key and timeout."""
        stripe.api_key = self.secret_key
        stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)

    # =========================================================================
    # Core Operations
    # =========================================================================

    def create_payment_intent(self, request: IntentRequest) -> IntentResult:
        self._configure_stripe()

        def call() -> IntentResult:
            try:
                intent = stripe.PaymentIntent.create(
                    amount=to_minor_units(request.amount, request.currency),
                    currency=request.currency.lower(),
                    description=request.description or None,
                    metadata={k: str(v) for k, v in request.metadata.items()},
                    customer=request.customer_id,
                    automatic_payment_methods={"enabled": True},
                    idempotency_key=request.idempotency_key,
                )
            except stripe.StripeError as e:
                raise self._translate_error(e) from e

            return IntentResult(
                intent_id=intent.id,
                client_secret=intent.client_secret,
                raw_status=intent.status,
                metadata={"stripe_status": intent.status},
            )

        return self._call(
            "create_payment_intent",
            call,
            amount=str(request.amount),
            currency=request.currency,
            idempotency_key=request.idempotency_key,
        )

    def confirm_payment(self, gateway_transaction_id: str) -> GatewayStatusResult:
        self._configure_stripe()

        def call() -> GatewayStatusResult:
            try:
                intent = stripe.PaymentIntent.retrieve(gateway_transaction_id)
            except stripe.StripeError as e:
                raise self._translate_error(e) from e

            last_error = intent.last_payment_error
            failure_reason = (last_error.message or "") if last_error else ""
            status = INTENT_STATUS_MAP.get(intent.status, GatewayPaymentStatus.FAILED)
            if intent.status == "requires_payment_method" and last_error:
                status = GatewayPaymentStatus.FAILED

            return GatewayStatusResult(
                status=status,
                raw_status=intent.status,
                failure_reason=failure_reason,
                raw_response=intent.to_dict(),
            )

        return self._call("confirm_payment", call, payment_intent_id=gateway_transaction_id)

    def refund_payment(self, request: RefundRequest) -> GatewayRefundResult:
        self._configure_stripe()

        def call() -> GatewayRefundResult:
            metadata = {k: str(v) for k, v in request.metadata.items()}
            if request.reason:
                metadata["reason"] = request.reason[:500]
            try:
                refund = stripe.Refund.create(
                    payment_intent=request.gateway_transaction_id,
                    amount=to_minor_units(request.amount, request.currency),
                    metadata=metadata,
                    idempotency_key=request.idempotency_key,
                )
            except stripe.StripeError as e:
                raise self._translate_error(e) from e

            return GatewayRefundResult(
                refund_id=refund.id,
                status=refund.status,
                amount=from_minor_units(refund.amount, request.currency),
            )

        return self._call(
            "refund_payment",
            call,
            payment_intent_id=request.gateway_transaction_id,
            amount=str(request.amount),
            idempotency_key=request.idempotency_key,
        )

    def create_payout(self, request: PayoutRequest) -> GatewayPayoutResult:
        if not request.destination:
            raise GatewayError(
                "Recipient has no Stripe connected account",
                error_code="PAYOUT_DESTINATION_MISSING",
                provider=self.provider_code,
                details={"payout_id": request.payout_id, "recipient_id": request.recipient_id},
            )

        self._configure_stripe()

        def call() -> GatewayPayoutResult:
            try:
                transfer = stripe.Transfer.create(
                    amount=to_minor_units(request.amount, request.currency),
                    currency=request.currency.lower(),
                    destination=request.destination,
                    description=request.description or None,
                    metadata={"payout_id": request.payout_id, **{k: str(v) for k, v in request.metadata.items()}},
                    idempotency_key=request.idempotency_key,
                )
            except stripe.StripeError as e:
                raise self._translate_error(e) from e

            return GatewayPayoutResult(payout_id=transfer.id, status="paid")

        return self._call(
            "create_payout",
            call,
            payout_id=request.payout_id,
            destination_account=request.destination,
            idempotency_key=request.idempotency_key,
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        if not signature or not self.webhook_secret:
            return False
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (stripe.SignatureVerificationError, ValueError) as e:
            self.get_logger().warning(
                "Stripe webhook signature verification failed",
                extra={"error": str(e)},
            )
            return False
        return True

    def parse_webhook_event(self, payload: bytes) -> ParsedWebhookEvent:
        try:
            event = json.loads(payload)
            data_object = event["data"]["object"]
            return ParsedWebhookEvent(
                event_id=event["id"],
                event_type=event["type"],
                gateway_transaction_id=data_object.get("id", ""),
                data=data_object,
            )
        except (ValueError, KeyError, TypeError) as e:
            raise UnverifiedWebhookError(
                "Malformed Stripe webhook payload",
                error_code="WEBHOOK_MALFORMED",
            ) from e

    # =========================================================================
    # Error Handling
    # =========================================================================

    def _translate_error(self, error: stripe.StripeError) -> GatewayError:
        """
        Translate Stripe exceptions to GatewayError.

        Rate limits, connection problems and Stripe 5xx responses are
        retryable; card and request errors are not.
        """
        logger = self.get_logger()
        provider_code = getattr(error, "code", None)

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning("Card error from Stripe", extra={"decline_code": decline_code})
            return GatewayError(
                str(error.user_message or error),
                error_code="CARD_DECLINED",
                provider=self.provider_code,
                provider_code=decline_code or provider_code,
            )

        if isinstance(error, stripe.InvalidRequestError):
            logger.error("Invalid request to Stripe", extra={"stripe_code": provider_code})
            return GatewayError(
                str(error.user_message or error),
                error_code="GATEWAY_INVALID_REQUEST",
                provider=self.provider_code,
                provider_code=provider_code,
            )

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe")
            return GatewayError(
                "Stripe rate limit exceeded. Please retry.",
                error_code="GATEWAY_RATE_LIMITED",
                provider=self.provider_code,
                provider_code="rate_limit",
                is_retryable=True,
            )

        if isinstance(error, stripe.AuthenticationError):
            logger.critical("Stripe authentication failed - check API key")
            return GatewayError(
                "Stripe authentication failed",
                error_code="GATEWAY_MISCONFIGURED",
                provider=self.provider_code,
                provider_code="authentication_error",
            )

        if isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
            logger.error("Stripe unavailable", exc_info=True)
            return GatewayError(
                "Could not reach Stripe. Please retry.",
                error_code="GATEWAY_UNAVAILABLE",
                provider=self.provider_code,
                provider_code=provider_code or "api_error",
                is_retryable=True,
            )

        logger.error(f"Unexpected error from Stripe: {type(error).__name__}", exc_info=True)
        return GatewayError(
            f"Unexpected Stripe error: {error}",
            provider=self.provider_code,
            provider_code="unknown_error",
        )
