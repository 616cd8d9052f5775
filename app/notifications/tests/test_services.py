"""
Tests for NotificationService.

Test Classes:
    TestNotificationServiceCreate: Tests for create_notification()
    TestNotificationServiceMarkAsRead: Tests for mark_as_read()
    TestNotificationServiceMarkAllAsRead: Tests for mark_all_as_read()
"""

from unittest.mock import patch

import pytest

from authentication.tests.factories import UserFactory
from notifications.models import EmailStatus, Notification
from notifications.services import NotificationService
from notifications.tests.factories import NotificationFactory


@pytest.mark.django_db
class TestNotificationServiceCreate:
    """Tests for NotificationService.create_notification()."""

    def test_creates_in_app_notification(self, user):
        """Should persist the rendered notification with its context data."""
        result = NotificationService.create_notification(
            recipient=user,
            notification_type="payment_initiated",
            title="Payment Initiated",
            body="Complete your payment of MYR 100.00",
            action_url="/payments/abc",
            data={"transaction_id": "abc"},
        )

        assert result.success
        notification = result.data
        assert notification.recipient == user
        assert notification.data == {"transaction_id": "abc"}
        assert notification.email_status == EmailStatus.NOT_REQUESTED

    def test_duplicate_idempotency_key_returns_failure(self, user):
        """Should refuse a second notification with the same key."""
        first = NotificationService.create_notification(
            recipient=user,
            notification_type="payment_succeeded",
            title="Payment Successful",
            idempotency_key="payment_succeeded:txn-1",
        )
        second = NotificationService.create_notification(
            recipient=user,
            notification_type="payment_succeeded",
            title="Payment Successful",
            idempotency_key="payment_succeeded:txn-1",
        )

        assert first.success
        assert not second.success
        assert second.error_code == "DUPLICATE"
        assert Notification.objects.filter(recipient=user).count() == 1

    def test_inactive_recipient_is_skipped(self):
        """Should not notify deactivated accounts."""
        inactive = UserFactory(is_active=False)

        result = NotificationService.create_notification(
            recipient=inactive, notification_type="payment_failed", title="Payment Failed"
        )

        assert result.error_code == "RECIPIENT_INACTIVE"
        assert not Notification.objects.exists()

    def test_send_email_queues_task_after_commit(self, user, django_capture_on_commit_callbacks):
        """Should mark email pending and queue delivery on commit."""
        with patch("notifications.tasks.send_email_notification.delay") as mock_delay:
            with django_capture_on_commit_callbacks(execute=True):
                result = NotificationService.create_notification(
                    recipient=user,
                    notification_type="refund_processed",
                    title="Refund Processed",
                    send_email=True,
                )

        assert result.data.email_status == EmailStatus.PENDING
        mock_delay.assert_called_once_with(result.data.id)


@pytest.mark.django_db
class TestNotificationServiceMarkAsRead:
    """Tests for NotificationService.mark_as_read()."""

    def test_marks_own_notification_read(self, user):
        """Should set is_read and read_at."""
        notification = NotificationFactory(recipient=user)

        result = NotificationService.mark_as_read(notification, user)

        assert result.success
        notification.refresh_from_db()
        assert notification.is_read is True
        assert notification.read_at is not None

    def test_rejects_other_users_notification(self, user, other_user):
        """Should fail with NOT_OWNER."""
        notification = NotificationFactory(recipient=other_user)

        result = NotificationService.mark_as_read(notification, user)

        assert result.error_code == "NOT_OWNER"


@pytest.mark.django_db
class TestNotificationServiceMarkAllAsRead:
    """Tests for NotificationService.mark_all_as_read()."""

    def test_marks_only_users_unread(self, user, other_user):
        """Should return the count of newly read notifications."""
        NotificationFactory.create_batch(3, recipient=user)
        NotificationFactory(recipient=user, is_read=True)
        NotificationFactory(recipient=other_user)

        result = NotificationService.mark_all_as_read(user)

        assert result.data == 3
        assert Notification.objects.filter(recipient=other_user, is_read=False).count() == 1
