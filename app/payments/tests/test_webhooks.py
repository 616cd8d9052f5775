"""
Tests for gateway webhook handling.

Test Classes:
    TestReceive: Signature verification and idempotent storage
    TestProcess: Applying stored events to transactions
    TestWebhookView: HTTP endpoint
    TestWebhookTasks: Retry and cleanup tasks
"""

import json
from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone

from payments.exceptions import NotFoundError, UnverifiedWebhookError
from payments.models import PaymentTransaction, PayoutDistribution, WebhookEvent
from payments.state_machines import TransactionStatus, WebhookEventStatus
from payments.tasks import (
    cleanup_old_webhooks,
    cleanup_stuck_webhooks,
    process_webhook_event,
    retry_failed_webhooks,
)
from payments.tests.factories import WebhookEventFactory
from payments.webhooks.processor import failure_reason_from, transaction_id_hint


def webhook_body(event_id="evt_1", event_type="payment.succeeded", object_id="inv_1", **data):
    return json.dumps({"id": event_id, "type": event_type, "object_id": object_id, "data": data}).encode()


@pytest.mark.django_db
class TestReceive:
    """Tests for WebhookProcessor.receive."""

    def test_bad_signature_writes_nothing(self, engine, pending_transaction):
        """Should reject the event before storing or touching anything."""
        body = webhook_body(object_id=pending_transaction.gateway_transaction_id)

        with pytest.raises(UnverifiedWebhookError):
            engine.webhooks.receive("xendit", body, "forged")

        assert not WebhookEvent.objects.exists()
        assert PaymentTransaction.objects.get(pk=pending_transaction.pk).status == TransactionStatus.PENDING

    def test_stores_verified_event(self, engine):
        """Should store the parsed event once."""
        event = engine.webhooks.receive("xendit", webhook_body(amount="100.00"), "valid-signature")

        assert event.provider_code == "xendit"
        assert event.event_id == "evt_1"
        assert event.event_type == "payment.succeeded"
        assert event.gateway_transaction_id == "inv_1"
        assert event.payload == {"amount": "100.00"}
        assert event.status == WebhookEventStatus.PENDING

    def test_duplicate_delivery_returns_stored_event(self, engine):
        """Should return the same row for a redelivered event."""
        first = engine.webhooks.receive("xendit", webhook_body(), "valid-signature")
        second = engine.webhooks.receive("xendit", webhook_body(), "valid-signature")

        assert first.id == second.id
        assert WebhookEvent.objects.count() == 1

    def test_malformed_payload(self, engine):
        """Should reject a verified but unparseable body."""
        with pytest.raises(UnverifiedWebhookError):
            engine.webhooks.receive("xendit", b"not json", "valid-signature")

        assert not WebhookEvent.objects.exists()

    def test_unknown_provider(self, engine):
        """Should raise NotFoundError for providers with no adapter."""
        with pytest.raises(NotFoundError):
            engine.webhooks.receive("paypal", webhook_body(), "valid-signature")


@pytest.mark.django_db
class TestProcess:
    """Tests for WebhookProcessor.process."""

    def test_success_event_settles_payment(self, engine, notifier, order, pending_transaction):
        """Should move the payment to SUCCEEDED and create its payout."""
        event = WebhookEventFactory(gateway_transaction_id=pending_transaction.gateway_transaction_id)

        assert engine.webhooks.process(event) == "processed"

        stored_event = WebhookEvent.objects.get(pk=event.pk)
        assert stored_event.status == WebhookEventStatus.PROCESSED
        assert stored_event.processed_at is not None
        txn = PaymentTransaction.objects.get(pk=pending_transaction.pk)
        assert txn.status == TransactionStatus.SUCCEEDED
        assert PayoutDistribution.objects.filter(payment_transaction=txn).count() == 1

    def test_processed_event_is_not_applied_again(self, engine, order, pending_transaction):
        """Should return already_processed for a processed event."""
        event = WebhookEventFactory(gateway_transaction_id=pending_transaction.gateway_transaction_id)
        engine.webhooks.process(event)

        assert engine.webhooks.process(WebhookEvent.objects.get(pk=event.pk)) == "already_processed"

    def test_second_event_for_settled_payment_is_noop(self, engine, notifier, order, pending_transaction):
        """Should leave a settled payment alone when another success arrives."""
        first = WebhookEventFactory(gateway_transaction_id=pending_transaction.gateway_transaction_id)
        second = WebhookEventFactory(gateway_transaction_id=pending_transaction.gateway_transaction_id)
        engine.webhooks.process(first)
        notifier.sent.clear()

        assert engine.webhooks.process(second) == "processed"
        assert notifier.sent == []
        assert PayoutDistribution.objects.filter(payment_transaction=pending_transaction).count() == 1

    def test_failed_event(self, engine, pending_transaction):
        """Should record the gateway's failure reason."""
        event = WebhookEventFactory(
            event_type="payment.failed",
            gateway_transaction_id=pending_transaction.gateway_transaction_id,
            payload={"failure_code": "INSUFFICIENT_BALANCE"},
        )

        engine.webhooks.process(event)

        txn = PaymentTransaction.objects.get(pk=pending_transaction.pk)
        assert txn.status == TransactionStatus.FAILED
        assert txn.failure_reason == "Gateway failure: INSUFFICIENT_BALANCE"

    def test_expired_event_while_processing_is_ignored(self, engine, pending_transaction):
        """Should not cancel a payment that is already processing."""
        engine.orchestrator.apply_status(pending_transaction.id, TransactionStatus.PROCESSING)
        event = WebhookEventFactory(
            event_type="payment.expired",
            gateway_transaction_id=pending_transaction.gateway_transaction_id,
        )

        assert engine.webhooks.process(event) == "processed"
        assert PaymentTransaction.objects.get(pk=pending_transaction.pk).status == TransactionStatus.PROCESSING

    def test_unmapped_event_is_ignored(self, engine, pending_transaction):
        """Should mark unmapped events processed without touching the payment."""
        event = WebhookEventFactory(
            event_type="customer.updated",
            gateway_transaction_id=pending_transaction.gateway_transaction_id,
        )

        assert engine.webhooks.process(event) == "ignored"
        assert WebhookEvent.objects.get(pk=event.pk).status == WebhookEventStatus.PROCESSED
        assert PaymentTransaction.objects.get(pk=pending_transaction.pk).status == TransactionStatus.PENDING

    def test_unknown_transaction_is_failed_for_retry(self, engine):
        """Should mark the event failed so the retry task picks it up."""
        event = WebhookEventFactory(gateway_transaction_id="inv_missing")

        assert engine.webhooks.process(event) == "transaction_not_found"

        stored_event = WebhookEvent.objects.get(pk=event.pk)
        assert stored_event.status == WebhookEventStatus.FAILED
        assert stored_event.retry_count == 1
        assert stored_event.can_retry

    def test_locates_by_metadata_transaction_id(self, engine, pending_transaction):
        """Should fall back to our own transaction id echoed in the payload."""
        event = WebhookEventFactory(
            gateway_transaction_id="pi_unknown",
            payload={"metadata": {"transaction_id": str(pending_transaction.id)}},
        )

        assert engine.webhooks.process(event) == "processed"

    def test_status_error_marks_event_failed(self, engine, pending_transaction, mocker):
        """Should mark the event failed and re-raise for Celery to retry."""
        mocker.patch.object(engine.orchestrator, "apply_status", side_effect=RuntimeError("db down"))
        event = WebhookEventFactory(gateway_transaction_id=pending_transaction.gateway_transaction_id)

        with pytest.raises(RuntimeError):
            engine.webhooks.process(event)

        stored_event = WebhookEvent.objects.get(pk=event.pk)
        assert stored_event.status == WebhookEventStatus.FAILED
        assert "db down" in stored_event.error_message


class TestPayloadHelpers:
    """Tests for payload helpers."""

    def test_transaction_id_hint_from_metadata(self):
        """Should read a UUID from metadata."""
        assert transaction_id_hint({"metadata": {"transaction_id": "3f2b1c4e-0f5e-4a7a-9d52-1c2b3a4d5e6f"}})

    def test_transaction_id_hint_from_external_id(self):
        """Should read a UUID from external_id."""
        value = "3f2b1c4e-0f5e-4a7a-9d52-1c2b3a4d5e6f"

        assert transaction_id_hint({"external_id": value}) == value

    def test_transaction_id_hint_rejects_garbage(self):
        """Should ignore values that are not UUIDs."""
        assert transaction_id_hint({"external_id": "order-1"}) is None

    def test_failure_reason_prefers_error_message(self):
        """Should prefer the provider's error message."""
        data = {"last_payment_error": {"message": "Your card was declined."}, "failure_code": "card_declined"}

        assert failure_reason_from(data) == "Your card was declined."


@pytest.mark.django_db
class TestWebhookView:
    """Tests for the webhook HTTP endpoint."""

    def url(self, provider="xendit"):
        return reverse("payments:gateway-webhook", kwargs={"provider_code": provider})

    def test_valid_webhook_is_accepted_and_processed(self, client, engine, order, pending_transaction):
        """Should accept the event and apply it (Celery eager in tests)."""
        body = webhook_body(object_id=pending_transaction.gateway_transaction_id)

        response = client.post(
            self.url(), data=body, content_type="application/json", headers={"X-Fake-Signature": "valid-signature"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "accepted"
        assert PaymentTransaction.objects.get(pk=pending_transaction.pk).status == TransactionStatus.SUCCEEDED

    def test_invalid_signature(self, client, engine, pending_transaction):
        """Should answer 400 and store nothing."""
        body = webhook_body(object_id=pending_transaction.gateway_transaction_id)

        response = client.post(self.url(), data=body, content_type="application/json", headers={"X-Fake-Signature": "x"})

        assert response.status_code == 400
        assert response.json()["error_code"] == "WEBHOOK_SIGNATURE_INVALID"
        assert not WebhookEvent.objects.exists()

    def test_missing_signature(self, client, engine):
        """Should answer 400 when the signature header is absent."""
        response = client.post(self.url(), data=webhook_body(), content_type="application/json")

        assert response.status_code == 400

    def test_duplicate_delivery(self, client, engine, order, pending_transaction):
        """Should acknowledge a redelivered processed event without reprocessing."""
        body = webhook_body(object_id=pending_transaction.gateway_transaction_id)
        headers = {"X-Fake-Signature": "valid-signature"}
        client.post(self.url(), data=body, content_type="application/json", headers=headers)

        response = client.post(self.url(), data=body, content_type="application/json", headers=headers)

        assert response.json()["status"] == "already_processed"
        assert WebhookEvent.objects.count() == 1

    def test_unknown_provider(self, client, engine):
        """Should answer 404 for unknown providers."""
        response = client.post(self.url("paypal"), data=webhook_body(), content_type="application/json")

        assert response.status_code == 404

    def test_get_not_allowed(self, client, engine):
        """Should only accept POST."""
        assert client.get(self.url()).status_code == 405


@pytest.mark.django_db
class TestWebhookTasks:
    """Tests for webhook Celery tasks."""

    def test_process_task(self, engine, order, pending_transaction):
        """Should process the stored event."""
        event = WebhookEventFactory(gateway_transaction_id=pending_transaction.gateway_transaction_id)

        result = process_webhook_event.apply(args=[str(event.id)]).get()

        assert result["status"] == "processed"

    def test_process_task_unknown_event(self, engine):
        """Should report unknown ids without raising."""
        result = process_webhook_event.apply(args=["00000000-0000-0000-0000-000000000000"]).get()

        assert result["status"] == "not_found"

    def test_retry_failed_webhooks(self, engine, pending_transaction):
        """Should re-queue failed events under the cap and never-queued pending ones."""
        retryable = WebhookEventFactory(
            status=WebhookEventStatus.FAILED,
            retry_count=1,
            gateway_transaction_id=pending_transaction.gateway_transaction_id,
        )
        WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=5)
        WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        result = retry_failed_webhooks.apply().get()

        assert result == {"queued_count": 1}
        assert WebhookEvent.objects.get(pk=retryable.pk).status == WebhookEventStatus.PROCESSED

    def test_cleanup_stuck_webhooks(self, engine):
        """Should reset events stuck in processing."""
        stuck = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)
        WebhookEvent.objects.filter(pk=stuck.pk).update(updated_at=timezone.now() - timedelta(hours=1))
        fresh = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)

        result = cleanup_stuck_webhooks.apply().get()

        assert result == {"reset_count": 1}
        assert WebhookEvent.objects.get(pk=stuck.pk).status == WebhookEventStatus.FAILED
        assert WebhookEvent.objects.get(pk=fresh.pk).status == WebhookEventStatus.PROCESSING

    def test_cleanup_old_webhooks(self, engine):
        """Should delete old processed events and keep failed ones."""
        WebhookEventFactory(status=WebhookEventStatus.PROCESSED, processed_at=timezone.now() - timedelta(days=120))
        WebhookEventFactory(status=WebhookEventStatus.FAILED)

        result = cleanup_old_webhooks.apply().get()

        assert result == {"deleted_count": 1}
        assert WebhookEvent.objects.count() == 1
