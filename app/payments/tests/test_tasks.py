"""
Tests for maintenance tasks and the default notifier.

Webhook tasks are covered in test_webhooks.py and payout tasks in
test_payout_executor.py.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from notifications.models import Notification
from payments.models import PaymentTransaction
from payments.notifier import NotificationServiceNotifier
from payments.protocols import PaymentNotification
from payments.state_machines import TransactionStatus
from payments.tasks import expire_stale_manual_payments
from payments.tests.factories import ManualTransactionFactory


@pytest.mark.django_db
class TestExpireStaleManualPaymentsTask:
    """Tests for the expire_stale_manual_payments task."""

    def test_cancels_overdue_payments(self, engine, payer, manual_provider):
        """Cancels manual payments past their upload deadline."""
        overdue = ManualTransactionFactory(
            user=payer, provider=manual_provider, upload_deadline=timezone.now() - timedelta(minutes=1)
        )
        on_time = ManualTransactionFactory(user=payer, provider=manual_provider)

        result = expire_stale_manual_payments.apply().get()

        assert result == {"expired_count": 1}
        assert PaymentTransaction.objects.get(pk=overdue.pk).status == TransactionStatus.CANCELED
        assert PaymentTransaction.objects.get(pk=on_time.pk).status == TransactionStatus.PENDING

    def test_nothing_to_expire(self, engine):
        """Reports zero when nothing is overdue."""
        assert expire_stale_manual_payments.apply().get() == {"expired_count": 0}


@pytest.mark.django_db
class TestNotificationServiceNotifier:
    """Tests for the notifier backed by the notifications app."""

    def notification(self, **overrides):
        values = {
            "notification_type": "payment_succeeded",
            "title": "Payment received",
            "message": "We received your payment of MYR 100.00.",
            "metadata": {"transaction_id": "txn-1"},
            "idempotency_key": "payment_succeeded:txn-1",
        }
        values.update(overrides)
        return PaymentNotification(**values)

    def test_creates_notification(self, payer):
        """Stores a notification row for the user."""
        NotificationServiceNotifier(send_email=False).notify(payer.pk, self.notification())

        [row] = Notification.objects.filter(recipient=payer)
        assert row.notification_type == "payment_succeeded"
        assert row.body == "We received your payment of MYR 100.00."
        assert row.data["transaction_id"] == "txn-1"

    def test_duplicate_is_skipped(self, payer):
        """Does not create a second row for the same idempotency key."""
        notifier = NotificationServiceNotifier(send_email=False)

        notifier.notify(payer.pk, self.notification())
        notifier.notify(payer.pk, self.notification())

        assert Notification.objects.filter(recipient=payer).count() == 1

    def test_unknown_user_is_ignored(self):
        """Logs and returns when the user does not exist."""
        NotificationServiceNotifier(send_email=False).notify(999999, self.notification())

        assert not Notification.objects.exists()
