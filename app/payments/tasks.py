"""
Celery tasks for payment processing.

This module provides async tasks for:
- Processing stored gateway webhook events
- Retrying failed or never-queued webhook events
- Resetting webhooks stuck in processing
- Cleaning up old processed webhooks
- Expiring manual payments whose proof was never uploaded
- Releasing due payouts (re-exported from payments.workers)

Usage:
    from payments.tasks import process_webhook_event

    # Queue a webhook for async processing
    process_webhook_event.delay(str(webhook_event.id))

    # Release due payouts (typically via celery-beat)
    from payments.tasks import release_due_payouts
    release_due_payouts.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import Q
from django.utils import timezone

from payments.models import WebhookEvent
from payments.models.webhook_event import MAX_WEBHOOK_RETRIES
from payments.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STUCK_PROCESSING_THRESHOLD_MINUTES = 30
UNQUEUED_PENDING_THRESHOLD_MINUTES = 5


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_WEBHOOK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Apply a stored webhook event to its payment.

    Args:
        webhook_event_id: UUID of the WebhookEvent to process

    Returns:
        Dict with the processing outcome

    Raises:
        Exception: Re-raised to trigger Celery retry mechanism
    """
    from payments.engine import get_engine

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except (WebhookEvent.DoesNotExist, DjangoValidationError, ValueError):
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    logger.info(
        f"Processing webhook: {webhook_event.event_type}",
        extra={
            "webhook_event_id": str(webhook_event.id),
            "provider": webhook_event.provider_code,
            "event_id": webhook_event.event_id,
            "retry_count": webhook_event.retry_count,
            "celery_retries": self.request.retries,
        },
    )

    outcome = get_engine().webhooks.process(webhook_event)
    return {"status": outcome, "webhook_event_id": str(webhook_event.id)}


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Re-queue FAILED webhooks under the retry cap, and PENDING ones that
    were never picked up.

    This task should be scheduled via celery-beat, e.g., every 5 minutes.
    """
    pending_cutoff = timezone.now() - timedelta(minutes=UNQUEUED_PENDING_THRESHOLD_MINUTES)
    webhooks = WebhookEvent.objects.filter(
        Q(status=WebhookEventStatus.FAILED, retry_count__lt=MAX_WEBHOOK_RETRIES)
        | Q(status=WebhookEventStatus.PENDING, created_at__lt=pending_cutoff)
    ).order_by("created_at")[:100]

    queued_count = 0
    for webhook in webhooks:
        try:
            process_webhook_event.delay(str(webhook.id))
            queued_count += 1
        except Exception:
            logger.error(
                "Failed to queue webhook for retry",
                extra={"webhook_event_id": str(webhook.id)},
                exc_info=True,
            )

    logger.info(
        f"Queued {queued_count} webhooks for retry",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Reset webhooks stuck in PROCESSING (worker crashed) to FAILED so they
    can be retried.
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)
    stuck_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        webhook.mark_failed("Processing timed out - reset for retry")
        webhook.save(update_fields=["status", "error_message", "updated_at"])
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={"webhook_event_id": str(webhook.id), "provider": webhook.provider_code},
        )

    return {"reset_count": reset_count}


@shared_task
def cleanup_old_webhooks(days: int = 90) -> dict:
    """Delete processed webhook events older than ``days``; failed ones are kept."""
    cutoff = timezone.now() - timedelta(days=days)
    deleted_count, _ = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSED,
        processed_at__lt=cutoff,
    ).delete()

    if deleted_count > 0:
        logger.info(
            f"Deleted {deleted_count} old webhook events",
            extra={"deleted_count": deleted_count, "cutoff_date": cutoff.isoformat()},
        )
    return {"deleted_count": deleted_count}


# =============================================================================
# Manual Payment Expiry
# =============================================================================


@shared_task
def expire_stale_manual_payments() -> dict:
    """Cancel manual payments whose proof upload deadline has passed."""
    from payments.engine import get_engine

    expired_count = get_engine().orchestrator.expire_stale_manual_payments()
    return {"expired_count": expired_count}


# =============================================================================
# Re-exported Worker Tasks
# =============================================================================
# Defined in payments.workers, re-exported so Celery autodiscover finds them.

from payments.workers import execute_payout, recover_stuck_payouts, release_due_payouts  # noqa: E402, F401
