"""
Default Notifier backed by the notifications app.

Writes a ``notifications.Notification`` row for the user and queues an email
copy on Celery. Missing or inactive users and duplicate idempotency keys are
logged and skipped.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from django.contrib.auth import get_user_model

from notifications.services import NotificationService

if TYPE_CHECKING:
    from payments.protocols import PaymentNotification

logger = logging.getLogger(__name__)


class NotificationServiceNotifier:
    """Notifier that delegates to ``NotificationService.create_notification``."""

    def __init__(self, send_email: bool = True):
        self.send_email = send_email

    def notify(self, user_id: Any, notification: PaymentNotification) -> None:
        User = get_user_model()
        try:
            recipient = User.objects.get(pk=user_id)
        except User.DoesNotExist:
            logger.warning(
                "Notification recipient not found",
                extra={"user_id": str(user_id), "notification_type": notification.notification_type},
            )
            return

        result = NotificationService.create_notification(
            recipient=recipient,
            notification_type=notification.notification_type,
            title=notification.title,
            body=notification.message,
            action_url=notification.action_url,
            data=notification.metadata,
            idempotency_key=notification.idempotency_key,
            send_email=self.send_email,
        )
        if not result:
            logger.info(
                f"Payment notification skipped: {result.error}",
                extra={
                    "user_id": str(user_id),
                    "notification_type": notification.notification_type,
                    "error_code": result.error_code,
                },
            )
