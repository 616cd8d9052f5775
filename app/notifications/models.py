"""
Notification models.

A Notification is the in-app record of something the platform told a user
(payment initiated, payment succeeded, proof awaiting review, ...). Email
delivery is tracked on the same row.

Design Decisions:
    - Notification inherits from BaseModel (timestamps, ordering)
    - notification_type is a plain key; producers own their vocabulary
    - idempotency_key is unique when set, so retried producers do not
      create duplicates

Usage:
    from notifications.models import Notification

    unread = Notification.objects.filter(recipient=user, is_read=False)
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel


class EmailStatus(models.TextChoices):
    """
    Email delivery status for a notification.

    State Flow:
        NOT_REQUESTED (in-app only)
        PENDING -> SENT
        PENDING -> FAILED (retries exhausted)
    """

    NOT_REQUESTED = "not_requested", "Not requested"
    PENDING = "pending", "Pending"
    SENT = "sent", "Sent"
    FAILED = "failed", "Failed"


class Notification(BaseModel):
    """
    Individual notification record for a user.

    Title and body are fully rendered strings, kept as a historical record.

    Fields:
        recipient: User receiving the notification
        notification_type: Producer-defined key (e.g. "payment_succeeded")
        title: Rendered title
        body: Rendered body
        action_url: Deep link the client opens on tap
        data: Arbitrary JSON context (transaction id, amounts, ...)
        is_read / read_at: Read state
        email_status / emailed_at: Email delivery tracking
        idempotency_key: Optional producer key preventing duplicates
    """

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
        help_text="User receiving this notification",
    )
    notification_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Programmatic type key (e.g. 'payment_succeeded')",
    )
    title = models.CharField(
        max_length=500,
        help_text="Fully rendered notification title",
    )
    body = models.TextField(
        blank=True,
        default="",
        help_text="Fully rendered notification body",
    )
    action_url = models.CharField(
        max_length=500,
        blank=True,
        default="",
        help_text="Client deep link",
    )
    data = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary context data",
    )

    is_read = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether recipient has read this notification",
    )
    read_at = models.DateTimeField(null=True, blank=True)

    email_status = models.CharField(
        max_length=20,
        choices=EmailStatus.choices,
        default=EmailStatus.NOT_REQUESTED,
        help_text="Email delivery status",
    )
    emailed_at = models.DateTimeField(null=True, blank=True)

    idempotency_key = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Idempotency key to prevent duplicate notifications",
    )

    class Meta:
        db_table = "notifications_notification"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["recipient", "is_read", "-created_at"],
                name="notif_recipient_unread_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["idempotency_key"],
                name="notif_idempotency_key_unique",
                condition=models.Q(idempotency_key__isnull=False),
            ),
        ]

    def __str__(self) -> str:
        read_status = "read" if self.is_read else "unread"
        return f"Notification({self.notification_type}) -> User {self.recipient_id} [{read_status}]"
