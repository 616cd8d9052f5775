"""
Gateway webhook processing.

Two phases, split across the request and a Celery task:

    receive()  (view)   verify signature -> parse -> store WebhookEvent
    process()  (task)   map event type -> locate transaction -> apply status

Nothing is written and no transaction is touched until the signature has
been verified. Events are stored once per (provider_code, event_id);
redeliveries return the stored row.

Status changes go through ``PaymentOrchestrator.apply_status``, the same
helper gateway confirmation uses, so a webhook that arrives after a
confirm (or twice) is a logged no-op.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from django.db import IntegrityError, transaction

from core.services import BaseService
from payments.exceptions import UnverifiedWebhookError
from payments.models import PaymentTransaction, WebhookEvent

if TYPE_CHECKING:
    from payments.adapters import GatewayRegistry
    from payments.services.payment_orchestrator import PaymentOrchestrator


def transaction_id_hint(data: dict[str, Any]) -> str | None:
    """Our own transaction id echoed back by the gateway, if present."""
    metadata = data.get("metadata") or {}
    candidate = metadata.get("transaction_id") if isinstance(metadata, dict) else None
    candidate = candidate or data.get("external_id")
    if not candidate:
        return None
    try:
        return str(uuid.UUID(str(candidate)))
    except ValueError:
        return None


def failure_reason_from(data: dict[str, Any]) -> str:
    error = data.get("last_payment_error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if data.get("failure_code"):
        return f"Gateway failure: {data['failure_code']}"
    if data.get("cancellation_reason"):
        return f"Canceled: {data['cancellation_reason']}"
    return ""


class WebhookProcessor(BaseService):
    """Verifies, records and applies gateway webhooks."""

    def __init__(self, gateways: GatewayRegistry, orchestrator: PaymentOrchestrator):
        self.gateways = gateways
        self.orchestrator = orchestrator

    # =========================================================================
    # Receive
    # =========================================================================

    def receive(self, provider_code: str, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and record an incoming webhook.

        Raises:
            NotFoundError: Unknown provider code
            UnverifiedWebhookError: Bad signature or malformed payload
        """
        logger = self.get_logger()
        adapter = self.gateways.get_adapter(provider_code)

        if not adapter.verify_webhook_signature(payload, signature or ""):
            logger.warning(
                "Rejected webhook with invalid signature",
                extra={"provider": provider_code, "payload_bytes": len(payload)},
            )
            raise UnverifiedWebhookError(
                "Webhook signature verification failed",
                details={"provider": provider_code},
            )

        parsed = adapter.parse_webhook_event(payload)
        defaults = {
            "event_type": parsed.event_type,
            "gateway_transaction_id": parsed.gateway_transaction_id or "",
            "payload": parsed.data,
        }

        try:
            with transaction.atomic():
                event, created = WebhookEvent.objects.get_or_create(
                    provider_code=provider_code,
                    event_id=parsed.event_id,
                    defaults=defaults,
                )
        except IntegrityError:
            event = WebhookEvent.objects.get(provider_code=provider_code, event_id=parsed.event_id)
            created = False

        logger.info(
            "Webhook recorded" if created else "Duplicate webhook delivery",
            extra={
                "provider": provider_code,
                "event_id": parsed.event_id,
                "event_type": parsed.event_type,
                "webhook_event_id": str(event.id),
                "status": event.status,
            },
        )
        return event

    # =========================================================================
    # Process
    # =========================================================================

    def process(self, event: WebhookEvent) -> str:
        """
        Apply a stored webhook to its transaction.

        Returns:
            Outcome: "already_processed", "ignored", "transaction_not_found"
            or "processed"

        Raises:
            Exception: Anything the status change raised, after the event
                has been marked failed
        """
        logger = self.get_logger()

        if event.is_processed:
            return "already_processed"

        adapter = self.gateways.get_adapter(event.provider_code)
        target = adapter.status_for_event(event.event_type)
        if target is None:
            event.mark_processed()
            event.error_message = "Event type not mapped to a payment status"
            event.save(update_fields=["status", "processed_at", "error_message", "updated_at"])
            logger.info(
                "Ignored unmapped webhook event",
                extra={"provider": event.provider_code, "event_type": event.event_type},
            )
            return "ignored"

        event.mark_processing()
        event.save(update_fields=["status", "retry_count", "updated_at"])

        txn = self._locate_transaction(event)
        if txn is None:
            event.mark_failed("No transaction for gateway id")
            event.save(update_fields=["status", "error_message", "updated_at"])
            logger.warning(
                "Webhook for unknown transaction",
                extra={
                    "provider": event.provider_code,
                    "event_id": event.event_id,
                    "gateway_transaction_id": event.gateway_transaction_id,
                },
            )
            return "transaction_not_found"

        try:
            self.orchestrator.apply_status(
                txn.id,
                target,
                reason=failure_reason_from(event.payload or {}),
                gateway_transaction_id=event.gateway_transaction_id or None,
                source=f"webhook:{event.provider_code}",
            )
        except Exception as e:
            event.mark_failed(f"{type(e).__name__}: {e}")
            event.save(update_fields=["status", "error_message", "updated_at"])
            raise

        event.mark_processed()
        event.save(update_fields=["status", "processed_at", "error_message", "updated_at"])
        logger.info(
            "Webhook processed",
            extra={
                "provider": event.provider_code,
                "event_type": event.event_type,
                "transaction_id": str(txn.id),
                "target_status": target,
            },
        )
        return "processed"

    def _locate_transaction(self, event: WebhookEvent) -> PaymentTransaction | None:
        if event.gateway_transaction_id:
            txn = PaymentTransaction.objects.filter(gateway_transaction_id=event.gateway_transaction_id).first()
            if txn is not None:
                return txn
        hint = transaction_id_hint(event.payload or {})
        if hint:
            return PaymentTransaction.objects.filter(pk=hint).first()
        return None

