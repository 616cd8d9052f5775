"""
Tests for notification email delivery tasks.
"""

import pytest

from notifications.models import EmailStatus, Notification
from notifications.tasks import send_email_notification
from notifications.tests.factories import NotificationFactory


@pytest.mark.django_db
class TestSendEmailNotification:
    """Tests for send_email_notification task."""

    def test_sends_pending_email(self, user, mailoutbox):
        """Should email the recipient and mark the row SENT."""
        notification = NotificationFactory(
            recipient=user,
            title="Payment Successful",
            body="Your payment has been confirmed.",
            action_url="/payments/123",
            email_status=EmailStatus.PENDING,
        )

        assert send_email_notification.apply(args=[notification.id]).get() is True

        assert len(mailoutbox) == 1
        assert mailoutbox[0].subject == "Payment Successful"
        assert mailoutbox[0].to == [user.email]
        assert "/payments/123" in mailoutbox[0].body
        notification = Notification.objects.get(pk=notification.pk)
        assert notification.email_status == EmailStatus.SENT
        assert notification.emailed_at is not None

    def test_already_sent_is_noop(self, user, mailoutbox):
        """Should not send twice."""
        notification = NotificationFactory(recipient=user, email_status=EmailStatus.SENT)

        assert send_email_notification.apply(args=[notification.id]).get() is True

        assert mailoutbox == []

    def test_missing_notification_is_noop(self, db, mailoutbox):
        """Should return True for unknown ids."""
        assert send_email_notification.apply(args=[987654]).get() is True
        assert mailoutbox == []
