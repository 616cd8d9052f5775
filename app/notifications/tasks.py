"""
Celery tasks for notification delivery.

Tasks:
    send_email_notification: Email a copy of an in-app notification

Design:
    - Tasks receive the notification id, never the model instance
    - Tasks are idempotent: re-running on a non-PENDING row is a no-op
    - SMTP errors are retried with exponential backoff

Usage:
    # Queued automatically by NotificationService.create_notification()
    send_email_notification.delay(notification_id)
"""

from __future__ import annotations

import logging
from smtplib import SMTPException

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail
from django.utils import timezone

from notifications.models import EmailStatus, Notification

logger = logging.getLogger(__name__)

MAX_EMAIL_RETRIES = 3


@shared_task(
    bind=True,
    autoretry_for=(SMTPException, ConnectionError),
    retry_backoff=True,
    retry_kwargs={"max_retries": MAX_EMAIL_RETRIES},
)
def send_email_notification(self, notification_id: int) -> bool:
    """
    Send a notification by email.

    Flow:
        1. Fetch notification; skip unless email_status is PENDING
        2. Send via the configured Django email backend
        3. Mark SENT (or FAILED once retries are exhausted)

    Returns:
        True if sent or nothing to do, False on permanent failure
    """
    notification = (
        Notification.objects.select_related("recipient")
        .filter(pk=notification_id, email_status=EmailStatus.PENDING)
        .first()
    )
    if notification is None:
        return True

    recipient = notification.recipient
    if not recipient.email:
        Notification.objects.filter(pk=notification.pk).update(
            email_status=EmailStatus.FAILED, updated_at=timezone.now()
        )
        logger.info(f"Email skipped for notification {notification_id}: recipient has no email")
        return False

    body = notification.body
    if notification.action_url:
        body = f"{body}\n\n{notification.action_url}"

    try:
        send_mail(
            subject=notification.title,
            message=body,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[recipient.email],
        )
    except (SMTPException, ConnectionError):
        if self.request.retries >= MAX_EMAIL_RETRIES:
            Notification.objects.filter(pk=notification.pk).update(
                email_status=EmailStatus.FAILED, updated_at=timezone.now()
            )
            logger.exception(f"Email permanently failed for notification {notification_id}")
            return False
        logger.warning(f"Email failed for notification {notification_id}, will retry")
        raise

    now = timezone.now()
    Notification.objects.filter(pk=notification.pk).update(
        email_status=EmailStatus.SENT, emailed_at=now, updated_at=now
    )
    logger.info(
        f"Email sent for notification {notification_id}",
        extra={"notification_type": notification.notification_type},
    )
    return True
