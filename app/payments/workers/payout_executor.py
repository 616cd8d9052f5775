"""
Payout executor: releases due escrow holds to recipients.

Tasks:
- release_due_payouts: Periodic task that scans for due payouts and queues them
- execute_payout: Executes a single payout through the provider adapter
- recover_stuck_payouts: Resets payouts left in PROCESSING by a dead worker

A payout is due when it is PENDING with ``release_date <= now``, or FAILED
with ``next_attempt_at <= now`` and attempts remaining. Execution moves it
PENDING/FAILED -> PROCESSING under a row lock, calls the provider outside
the lock, then RELEASED or FAILED:

    attempt 1 fails -> retry after base
    attempt 2 fails -> retry after base * 2
    ...             -> capped at PAYOUT_RETRY_MAX_SECONDS
    attempt N == PAYOUT_MAX_ATTEMPTS fails -> stays FAILED

Non-retryable gateway errors (e.g. no payout destination) leave the payout
FAILED with no next attempt. Payouts left PROCESSING by a crashed worker are
reset to FAILED by recover_stuck_payouts without counting the lost attempt.

Usage:
    # Typically called via celery-beat schedule
    from payments.workers import release_due_payouts

    release_due_payouts.delay()
    execute_payout.delay(str(payout.id))
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from celery import shared_task
from django.conf import settings
from django.db import models, transaction
from django.utils import timezone

from core.services import BaseService
from payments.adapters import PayoutRequest, make_idempotency_key
from payments.exceptions import GatewayError, NotFoundError
from payments.locks import lock_payout, save_transition
from payments.models import PaymentTransaction, PayoutDistribution
from payments.protocols import PaymentNotification
from payments.side_effects import SideEffectQueue
from payments.state_machines import REFUNDABLE_TRANSACTION_STATUSES, PayoutStatus

if TYPE_CHECKING:
    from payments.adapters import GatewayRegistry
    from payments.protocols import Notifier

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Maximum payouts to queue per scan
BATCH_SIZE = 100

# PROCESSING longer than this means the worker died mid-attempt
STUCK_PROCESSING_THRESHOLD_MINUTES = 30

DEFAULT_PAYOUT_PROVIDER = "xendit"


def backoff_delay(attempt: int, base: int | None = None, cap: int | None = None) -> timedelta:
    """Exponential delay before retrying after ``attempt`` failed attempts."""
    base = base if base is not None else getattr(settings, "PAYOUT_RETRY_BASE_SECONDS", 60)
    cap = cap if cap is not None else getattr(settings, "PAYOUT_RETRY_MAX_SECONDS", 3600)
    seconds = base * (2 ** max(0, attempt - 1))
    return timedelta(seconds=min(seconds, cap))


# =============================================================================
# Executor
# =============================================================================


class PayoutExecutor(BaseService):
    """Moves payout holds through PROCESSING to RELEASED or FAILED."""

    def __init__(
        self,
        gateways: GatewayRegistry,
        notifier: Notifier | None = None,
        max_attempts: int | None = None,
        default_provider: str | None = None,
    ):
        self.gateways = gateways
        self.notifier = notifier
        self.max_attempts = max_attempts or getattr(settings, "PAYOUT_MAX_ATTEMPTS", 5)
        self.default_provider = default_provider or getattr(
            settings, "PAYOUT_PROVIDER_CODE", DEFAULT_PAYOUT_PROVIDER
        )

    def due_payout_ids(self, now: datetime | None = None, limit: int = BATCH_SIZE) -> list[Any]:
        now = now or timezone.now()
        due = models.Q(status=PayoutStatus.PENDING, release_date__lte=now) | models.Q(
            status=PayoutStatus.FAILED,
            next_attempt_at__isnull=False,
            next_attempt_at__lte=now,
            attempt_count__lt=self.max_attempts,
        )
        return list(
            PayoutDistribution.objects.filter(due).order_by("release_date", "created_at").values_list("id", flat=True)[
                :limit
            ]
        )

    def provider_code_for(self, payout: PayoutDistribution) -> str:
        provider = payout.payment_transaction.provider
        if provider is not None and not provider.is_manual:
            return provider.provider_code
        return self.default_provider

    def execute_payout(self, payout_id: Any, now: datetime | None = None) -> str:
        """
        Execute one payout.

        Returns:
            "released", "failed", "not_due", "exhausted" or "skipped"

        Raises:
            NotFoundError: Unknown payout
        """
        now = now or timezone.now()

        with transaction.atomic():
            payout = lock_payout(payout_id)
            skip = self._skip_reason(payout, now)
            if skip:
                logger.info(
                    "Payout not executable",
                    extra={"payout_id": str(payout.id), "status": payout.status, "reason": skip},
                )
                return skip

            expected = payout.status
            payout.start_processing()
            save_transition(payout, expected, ["status", "attempt_count", "next_attempt_at"])

        payout = PayoutDistribution.objects.select_related("payment_transaction__provider").get(pk=payout.pk)
        provider_code = self.provider_code_for(payout)

        logger.info(
            "Executing payout",
            extra={
                "payout_id": str(payout.id),
                "provider": provider_code,
                "attempt": payout.attempt_count,
                "amount": str(payout.amount),
            },
        )

        try:
            adapter = self.gateways.get_adapter(provider_code)
            result = adapter.create_payout(
                PayoutRequest(
                    payout_id=str(payout.id),
                    recipient_id=str(payout.recipient_id),
                    amount=payout.amount,
                    currency=payout.currency,
                    destination=str(payout.metadata.get("destination", "")),
                    description=f"Payout for payment {payout.payment_transaction_id}",
                    idempotency_key=make_idempotency_key("payout", payout.id, payout.attempt_count),
                    metadata=dict(payout.metadata),
                )
            )
        except GatewayError as e:
            return self._record_failure(payout, e.message, retryable=e.is_retryable)
        except NotFoundError as e:
            return self._record_failure(payout, e.message, retryable=False)
        except Exception as e:
            logger.exception(
                "Unexpected error during payout execution",
                extra={"payout_id": str(payout.id)},
            )
            return self._record_failure(payout, f"{type(e).__name__}: {e}", retryable=True)

        effects = SideEffectQueue(operation="execute_payout", payout_id=str(payout.id))
        with transaction.atomic():
            payout = lock_payout(payout.pk)
            payout.release(result.payout_id)
            save_transition(
                payout,
                PayoutStatus.PROCESSING,
                ["status", "released_at", "gateway_payout_id", "failure_reason"],
            )
            self._notify(
                effects,
                payout.recipient_id,
                PaymentNotification(
                    notification_type="payout_released",
                    title="Payout Released",
                    message=f"{payout.currency} {payout.amount} has been sent to you.",
                    metadata={"payout_id": str(payout.id), "gateway_payout_id": result.payout_id},
                    idempotency_key=f"payout_released:{payout.id}",
                ),
            )

        logger.info(
            "Payout released",
            extra={"payout_id": str(payout.id), "gateway_payout_id": result.payout_id},
        )
        effects.run()
        return "released"

    def recover_stuck_payouts(self, now: datetime | None = None) -> int:
        """
        Return payouts stuck in PROCESSING to FAILED, due immediately.

        The interrupted attempt is not counted, so the retry sends the same
        idempotency key and the provider returns the original transfer if
        the first call went through.
        """
        now = now or timezone.now()
        threshold = now - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)
        stuck_ids = list(
            PayoutDistribution.objects.filter(
                status=PayoutStatus.PROCESSING,
                updated_at__lt=threshold,
            ).values_list("id", flat=True)[:BATCH_SIZE]
        )

        recovered = 0
        for payout_id in stuck_ids:
            with transaction.atomic():
                payout = lock_payout(payout_id)
                if payout.status != PayoutStatus.PROCESSING or payout.updated_at >= threshold:
                    continue
                payout.recover("Processing timed out - reset for retry")
                save_transition(
                    payout,
                    PayoutStatus.PROCESSING,
                    ["status", "attempt_count", "next_attempt_at", "failure_reason", "notes"],
                )
            recovered += 1
            logger.warning(
                "Reset stuck payout",
                extra={"payout_id": str(payout_id), "attempt": payout.attempt_count + 1},
            )
        return recovered

    def _skip_reason(self, payout: PayoutDistribution, now: datetime) -> str | None:
        if payout.status in (PayoutStatus.PENDING, PayoutStatus.FAILED):
            txn_status = (
                PaymentTransaction.objects.filter(pk=payout.payment_transaction_id)
                .values_list("status", flat=True)
                .first()
            )
            # Only settled payments pay out
            if txn_status not in REFUNDABLE_TRANSACTION_STATUSES:
                return "skipped"
        if payout.status == PayoutStatus.PENDING:
            return "not_due" if payout.release_date > now else None
        if payout.status == PayoutStatus.FAILED:
            if payout.attempt_count >= self.max_attempts or payout.next_attempt_at is None:
                return "exhausted"
            return "not_due" if payout.next_attempt_at > now else None
        return "skipped"

    def _record_failure(self, payout: PayoutDistribution, reason: str, retryable: bool) -> str:
        next_attempt_at = None
        if retryable and payout.attempt_count < self.max_attempts:
            next_attempt_at = timezone.now() + backoff_delay(payout.attempt_count)

        with transaction.atomic():
            payout = lock_payout(payout.pk)
            payout.fail(reason, next_attempt_at=next_attempt_at)
            save_transition(payout, PayoutStatus.PROCESSING, ["status", "failure_reason", "next_attempt_at"])

        log = logger.warning if next_attempt_at else logger.error
        log(
            "Payout failed" if next_attempt_at else "Payout failed permanently",
            extra={
                "payout_id": str(payout.id),
                "attempt": payout.attempt_count,
                "reason": reason,
                "next_attempt_at": next_attempt_at.isoformat() if next_attempt_at else None,
            },
        )
        return "failed"

    def _notify(self, effects: SideEffectQueue, user_id: Any, notification: PaymentNotification) -> None:
        if self.notifier is None:
            return
        effects.add(
            f"notify:{notification.notification_type}",
            lambda: self.notifier.notify(user_id, notification),
        )


# =============================================================================
# Celery Tasks
# =============================================================================


@shared_task(bind=True)
def release_due_payouts(self) -> dict:
    """
    Scan for due payouts and queue execution tasks.

    Idempotent: execute_payout re-checks status under a row lock.
    """
    from payments.engine import get_engine

    executor = get_engine().payout_executor
    payout_ids = executor.due_payout_ids()

    queued_count = 0
    for payout_id in payout_ids:
        try:
            execute_payout.delay(str(payout_id))
            queued_count += 1
        except Exception:
            logger.error(
                "Failed to queue payout for execution",
                extra={"payout_id": str(payout_id)},
                exc_info=True,
            )

    logger.info(
        f"Due payout scan complete: queued {queued_count} payouts",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}


@shared_task(bind=True, acks_late=True)
def execute_payout(self, payout_id: str) -> dict:
    """Execute a single payout; failures are recorded on the row, not raised."""
    from payments.engine import get_engine

    try:
        outcome = get_engine().payout_executor.execute_payout(payout_id)
    except NotFoundError:
        logger.warning("Payout not found", extra={"payout_id": str(payout_id)})
        return {"status": "not_found", "payout_id": str(payout_id)}

    return {"status": outcome, "payout_id": str(payout_id)}


@shared_task
def recover_stuck_payouts() -> dict:
    """Reset payouts whose worker died between PROCESSING and the outcome."""
    from payments.engine import get_engine

    recovered_count = get_engine().payout_executor.recover_stuck_payouts()
    return {"recovered_count": recovered_count}
