"""
WebhookEvent model for gateway webhook tracking.

Every verified webhook is stored before processing, keyed by
(provider_code, event_id), so redelivered events are detected and the
processor can be retried from the stored payload.

Usage:
    from payments.models import WebhookEvent

    event, created = WebhookEvent.objects.get_or_create(
        provider_code="xendit",
        event_id=parsed.event_id,
        defaults={"event_type": parsed.event_type, "payload": payload},
    )
    if not created and event.is_processed:
        return  # duplicate delivery
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import WebhookEventStatus

MAX_WEBHOOK_RETRIES = 5


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Stored webhook delivery.

    Processing Flow:
        1. View verifies the signature (rejects before any write)
        2. Insert/get WebhookEvent by (provider_code, event_id)
        3. Celery task marks PROCESSING, applies the status change
        4. PROCESSED on success, FAILED with error_message otherwise

    Fields:
        provider_code: Which gateway sent it
        event_id: Provider's unique event id
        event_type: Provider's event vocabulary (e.g. "invoice.paid")
        gateway_transaction_id: Intent/invoice the event refers to
        payload: Parsed JSON body
        status: Processing status
        retry_count: Processing attempts so far
    """

    provider_code = models.CharField(max_length=30)
    event_id = models.CharField(max_length=255)
    event_type = models.CharField(max_length=100, db_index=True)
    gateway_transaction_id = models.CharField(max_length=255, blank=True, default="")
    payload = models.JSONField()

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )
    processed_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(blank=True, default="")
    retry_count = models.PositiveSmallIntegerField(default=0)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="webhook_status_created_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["provider_code", "event_id"],
                name="webhook_event_unique_per_provider",
            ),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.provider_code}:{self.event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def can_retry(self) -> bool:
        return self.status == WebhookEventStatus.FAILED and self.retry_count < MAX_WEBHOOK_RETRIES

    def mark_processing(self) -> None:
        """Note: does not save."""
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        """Note: does not save."""
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = ""

    def mark_failed(self, error: str) -> None:
        """Note: does not save."""
        self.status = WebhookEventStatus.FAILED
        self.error_message = error
