"""
Notification service layer.

Services:
    NotificationService: Notification creation and read status management

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures return ServiceResult.failure()
    - Email delivery is queued on Celery after the row is committed

Usage:
    from notifications.services import NotificationService

    result = NotificationService.create_notification(
        recipient=user,
        notification_type="payment_succeeded",
        title="Payment Successful",
        body="Your payment of MYR 100.00 has been confirmed.",
        data={"transaction_id": str(txn.id)},
        send_email=True,
    )
    if result.success:
        notification = result.data
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.utils import timezone

from core.services import BaseService, ServiceResult
from notifications.models import EmailStatus, Notification

if TYPE_CHECKING:
    from authentication.models import User


class NotificationService(BaseService):
    """
    Service for notification operations.

    Methods:
        create_notification: Create a notification, optionally emailing it
        mark_as_read: Mark a single notification as read
        mark_all_as_read: Mark all of a user's unread notifications as read
    """

    @classmethod
    def create_notification(
        cls,
        recipient: User,
        notification_type: str,
        title: str,
        body: str = "",
        action_url: str = "",
        data: dict | None = None,
        idempotency_key: str | None = None,
        send_email: bool = False,
    ) -> ServiceResult[Notification]:
        """
        Create a new notification for a user.

        Args:
            recipient: User receiving the notification
            notification_type: Producer-defined type key
            title: Rendered title
            body: Rendered body
            action_url: Client deep link
            data: Context dict stored with the notification
            idempotency_key: Optional key to prevent duplicates
            send_email: Queue an email copy after commit

        Returns:
            ServiceResult with the created Notification

        Error codes:
            RECIPIENT_INACTIVE: Recipient account is deactivated
            DUPLICATE: A notification with this idempotency_key exists
        """
        from notifications import tasks

        if not recipient.is_active:
            cls.get_logger().info(
                "Skipping notification for inactive user",
                extra={"user_id": str(recipient.pk), "notification_type": notification_type},
            )
            return ServiceResult.failure(
                "Recipient is inactive",
                error_code="RECIPIENT_INACTIVE",
            )

        if idempotency_key and Notification.objects.filter(idempotency_key=idempotency_key).exists():
            cls.get_logger().info(f"Duplicate notification prevented: idempotency_key={idempotency_key}")
            return ServiceResult.failure(
                f"Notification with idempotency_key already exists: {idempotency_key}",
                error_code="DUPLICATE",
            )

        try:
            with transaction.atomic():
                notification = Notification.objects.create(
                    recipient=recipient,
                    notification_type=notification_type,
                    title=title,
                    body=body,
                    action_url=action_url,
                    data=data or {},
                    idempotency_key=idempotency_key,
                    email_status=EmailStatus.PENDING if send_email else EmailStatus.NOT_REQUESTED,
                )
        except IntegrityError:
            # Concurrent producer won the idempotency race
            return ServiceResult.failure(
                f"Notification with idempotency_key already exists: {idempotency_key}",
                error_code="DUPLICATE",
            )

        cls.get_logger().info(
            f"Created notification {notification.id} of type {notification_type}",
            extra={"user_id": str(recipient.pk), "notification_type": notification_type},
        )

        if send_email:
            notification_id = notification.id
            transaction.on_commit(lambda: tasks.send_email_notification.delay(notification_id))

        return ServiceResult.ok(notification)

    @classmethod
    def mark_as_read(cls, notification: Notification, user: User) -> ServiceResult[Notification]:
        """
        Mark a single notification as read. Idempotent.

        Error codes:
            NOT_OWNER: User doesn't own the notification
        """
        if notification.recipient_id != user.pk:
            cls.get_logger().warning(
                f"User {user.pk} attempted to mark notification {notification.id} "
                f"owned by user {notification.recipient_id}"
            )
            return ServiceResult.failure(
                "Cannot mark notification you don't own",
                error_code="NOT_OWNER",
            )

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = timezone.now()
            notification.save(update_fields=["is_read", "read_at", "updated_at"])

        return ServiceResult.ok(notification)

    @classmethod
    def mark_all_as_read(cls, user: User) -> ServiceResult[int]:
        """Mark all of a user's unread notifications as read in one query."""
        now = timezone.now()
        count = Notification.objects.filter(recipient=user, is_read=False).update(
            is_read=True, read_at=now, updated_at=now
        )
        cls.get_logger().info(f"Marked {count} notifications as read for user {user.pk}")
        return ServiceResult.ok(count)
