"""
Xendit gateway adapter.

Uses the Xendit Invoice API for collection, the Refund API, and
Disbursements for payouts. Calls go over httpx with an explicit timeout
and HTTP basic auth (secret key as username, empty password).

Configuration (via settings):
- XENDIT_SECRET_KEY: API secret key
- XENDIT_CALLBACK_TOKEN: Token Xendit sends in ``x-callback-token``
- XENDIT_API_BASE_URL: API root (default: https://api.xendit.co)
- PAYMENT_GATEWAY_TIMEOUT_SECONDS: Request timeout (default: 10)

Webhook callbacks carry an invoice object. The event type is taken from
``event`` when Xendit sends one, otherwise derived from the invoice status
(``invoice.paid``, ``invoice.expired``, ``invoice.payment_failed``).
"""

from __future__ import annotations

import hmac
import json
from decimal import Decimal
from typing import Any

import httpx
from django.conf import settings
from django.utils.dateparse import parse_datetime

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
from payments.money import to_money
from payments.state_machines import TransactionStatus

# Status codes worth retrying
TRANSIENT_HTTP_ERRORS = frozenset({408, 429, 500, 502, 503, 504})

INVOICE_STATUS_EVENTS = {
    "PAID": "invoice.paid",
    "SETTLED": "invoice.paid",
    "EXPIRED": "invoice.expired",
    "FAILED": "invoice.payment_failed",
}


class XenditGateway(GatewayAdapter):
    """Adapter for the Xendit REST API."""

    provider_code = "xendit"
    display_name = "Xendit"
    signature_header = "X-Callback-Token"

    EVENT_STATUS_MAP = {
        "invoice.paid": TransactionStatus.SUCCEEDED,
        "invoice.expired": TransactionStatus.CANCELED,
        "invoice.payment_failed": TransactionStatus.FAILED,
    }

    FEE_PERCENTAGE = Decimal("2.9")
    FEE_FIXED = {"MYR": Decimal("1.50")}

    supported_currencies = ("IDR", "PHP", "THB", "VND", "MYR", "SGD", "USD")

    INVOICE_DURATION_SECONDS = 24 * 60 * 60

    def __init__(
        self,
        secret_key: str | None = None,
        callback_token: str | None = None,
        base_url: str | None = None,
        transport: httpx.BaseTransport | None = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.secret_key = secret_key if secret_key is not None else settings.XENDIT_SECRET_KEY
        self.callback_token = callback_token if callback_token is not None else settings.XENDIT_CALLBACK_TOKEN
        self.base_url = (base_url or getattr(settings, "XENDIT_API_BASE_URL", "https://api.xendit.co")).rstrip("/")
        self.transport = transport

    # =========================================================================
    # HTTP
    # =========================================================================

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            auth=(self.secret_key, ""),
            timeout=httpx.Timeout(self.timeout),
            transport=self.transport,
        )

    def _request(
        self,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        headers = {"Idempotency-key": idempotency_key} if idempotency_key else {}
        try:
            with self._client() as client:
                response = client.request(method, path, json=json_body, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise self._status_error(e.response) from e
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise GatewayError(
                "Could not reach Xendit. Please retry.",
                error_code="GATEWAY_UNAVAILABLE",
                provider=self.provider_code,
                provider_code=type(e).__name__,
                is_retryable=True,
            ) from e
        except ValueError as e:
            raise GatewayError(
                "Xendit returned an unreadable response",
                error_code="GATEWAY_BAD_RESPONSE",
                provider=self.provider_code,
            ) from e

    def _status_error(self, response: httpx.Response) -> GatewayError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        return GatewayError(
            body.get("message") or f"Xendit request failed with HTTP {response.status_code}",
            error_code="GATEWAY_REQUEST_FAILED",
            provider=self.provider_code,
            provider_code=body.get("error_code"),
            details={"http_status": response.status_code},
            is_retryable=response.status_code in TRANSIENT_HTTP_ERRORS,
        )

    # =========================================================================
    # Core Operations
    # =========================================================================

    def create_payment_intent(self, request: IntentRequest) -> IntentResult:
        body: dict[str, Any] = {
            "external_id": str(request.metadata.get("transaction_id") or request.idempotency_key),
            "amount": float(request.amount),
            "currency": request.currency.upper(),
            "description": request.description,
            "invoice_duration": self.INVOICE_DURATION_SECONDS,
            "metadata": {k: str(v) for k, v in request.metadata.items()},
        }
        if request.payment_method:
            body["payment_methods"] = [request.payment_method.upper()]

        def call() -> IntentResult:
            invoice = self._request("POST", "/v2/invoices", body, idempotency_key=request.idempotency_key)
            expiry = invoice.get("expiry_date")
            return IntentResult(
                intent_id=invoice["id"],
                client_secret=invoice["id"],
                payment_url=invoice.get("invoice_url"),
                expires_at=parse_datetime(expiry) if expiry else None,
                raw_status=invoice.get("status", ""),
                metadata={"xendit_status": invoice.get("status", ""), "external_id": body["external_id"]},
            )

        return self._call(
            "create_payment_intent",
            call,
            amount=str(request.amount),
            currency=request.currency,
            idempotency_key=request.idempotency_key,
        )

    def confirm_payment(self, gateway_transaction_id: str) -> GatewayStatusResult:
        def call() -> GatewayStatusResult:
            invoice = self._request("GET", f"/v2/invoices/{gateway_transaction_id}")
            raw_status = invoice.get("status", "")
            try:
                status = GatewayPaymentStatus(raw_status)
            except ValueError:
                status = GatewayPaymentStatus.FAILED
            return GatewayStatusResult(
                status=status,
                raw_status=raw_status,
                failure_reason=invoice.get("failure_reason", "") or "",
                raw_response=invoice,
            )

        return self._call("confirm_payment", call, invoice_id=gateway_transaction_id)

    def refund_payment(self, request: RefundRequest) -> GatewayRefundResult:
        body = {
            "invoice_id": request.gateway_transaction_id,
            "amount": float(request.amount),
            "currency": request.currency.upper(),
            "reason": "REQUESTED_BY_CUSTOMER",
            "metadata": {"reason": request.reason[:500], **{k: str(v) for k, v in request.metadata.items()}},
        }

        def call() -> GatewayRefundResult:
            refund = self._request("POST", "/refunds", body, idempotency_key=request.idempotency_key)
            return GatewayRefundResult(
                refund_id=refund["id"],
                status=refund.get("status", ""),
                amount=to_money(refund.get("amount", request.amount)),
            )

        return self._call(
            "refund_payment",
            call,
            invoice_id=request.gateway_transaction_id,
            amount=str(request.amount),
            idempotency_key=request.idempotency_key,
        )

    def create_payout(self, request: PayoutRequest) -> GatewayPayoutResult:
        bank = request.metadata
        missing = [k for k in ("bank_code", "account_number", "account_holder_name") if not bank.get(k)]
        if missing:
            raise GatewayError(
                "Recipient bank details are incomplete",
                error_code="PAYOUT_DESTINATION_MISSING",
                provider=self.provider_code,
                details={"payout_id": request.payout_id, "missing": missing},
            )

        body = {
            "external_id": request.payout_id,
            "amount": float(request.amount),
            "bank_code": bank["bank_code"],
            "account_number": bank["account_number"],
            "account_holder_name": bank["account_holder_name"],
            "description": request.description or f"Payout {request.payout_id}",
        }

        def call() -> GatewayPayoutResult:
            disbursement = self._request("POST", "/disbursements", body, idempotency_key=request.idempotency_key)
            return GatewayPayoutResult(
                payout_id=disbursement["id"],
                status=disbursement.get("status", ""),
            )

        return self._call(
            "create_payout",
            call,
            payout_id=request.payout_id,
            idempotency_key=request.idempotency_key,
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        if not signature or not self.callback_token:
            return False
        return hmac.compare_digest(signature.encode(), self.callback_token.encode())

    def parse_webhook_event(self, payload: bytes) -> ParsedWebhookEvent:
        try:
            body = json.loads(payload)
            invoice = body.get("data", body) if "event" in body else body
            invoice_id = invoice["id"]
            status = str(invoice.get("status", "")).upper()
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise UnverifiedWebhookError(
                "Malformed Xendit webhook payload",
                error_code="WEBHOOK_MALFORMED",
            ) from e

        event_type = body.get("event") or INVOICE_STATUS_EVENTS.get(status, f"invoice.{status.lower()}")
        return ParsedWebhookEvent(
            event_id=body.get("webhook_id") or f"{invoice_id}:{event_type}",
            event_type=event_type,
            gateway_transaction_id=invoice_id,
            data=invoice,
        )
