"""
PayoutDistribution model: money owed to a recipient from a succeeded payment.

A distribution is created once per transaction (escrow hold, PENDING) and
released by the payout executor after its hold period.

Usage:
    from payments.models import PayoutDistribution
    from payments.state_machines import PayoutStatus

    due = PayoutDistribution.objects.filter(
        status=PayoutStatus.PENDING,
        release_date__lte=timezone.now(),
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines import PayoutStatus, RecipientType


class PayoutDistribution(UUIDPrimaryKeyMixin, BaseModel):
    """
    Escrow payout hold for one recipient of one transaction.

    State Flow:
        PENDING -> PROCESSING -> RELEASED
        PROCESSING -> FAILED -> PROCESSING (retry with backoff)
        PENDING/FAILED -> FROZEN -> PENDING (dispute)
        PENDING/FAILED/FROZEN -> CANCELED (refunded to buyer)

    Fields:
        payment_transaction: Source transaction (must be SUCCEEDED)
        recipient: User receiving the money
        recipient_type: Why they receive it
        amount, currency: Net amount owed
        status: Current FSM state
        release_date: When the hold ends and the payout becomes due
        can_release_at: Earliest date the release may be expedited
        hold_reason: Human-readable reason for the hold
        gateway_payout_id: Provider transfer id once released
        frozen_at, canceled_at: Dispute and cancellation stamps
        notes: Audit trail of escrow actions, one line each
        attempt_count, next_attempt_at: Executor retry bookkeeping
        version: Optimistic locking version
    """

    payment_transaction = models.ForeignKey(
        "payments.PaymentTransaction",
        on_delete=models.PROTECT,
        related_name="payout_distributions",
    )

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payout_distributions",
    )

    recipient_type = models.CharField(
        max_length=30,
        choices=RecipientType.choices,
    )

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3)

    status = FSMField(
        default=PayoutStatus.PENDING,
        choices=PayoutStatus.choices,
        db_index=True,
        protected=True,
    )

    version = models.PositiveIntegerField(default=1)

    # ==========================================================================
    # Hold & Release
    # ==========================================================================

    release_date = models.DateTimeField(db_index=True)
    can_release_at = models.DateTimeField(null=True, blank=True)
    hold_reason = models.CharField(max_length=255, blank=True, default="")
    released_at = models.DateTimeField(null=True, blank=True)
    gateway_payout_id = models.CharField(max_length=255, blank=True, default="")
    frozen_at = models.DateTimeField(null=True, blank=True)
    canceled_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")

    # ==========================================================================
    # Retry Bookkeeping
    # ==========================================================================

    attempt_count = models.PositiveSmallIntegerField(default=0)
    next_attempt_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True, default="")

    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payout Distribution"
        verbose_name_plural = "Payout Distributions"
        indexes = [
            models.Index(fields=["status", "release_date"], name="payout_due_idx"),
            models.Index(fields=["recipient", "status"], name="payout_recipient_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name="payout_amount_positive"),
            models.UniqueConstraint(
                fields=["payment_transaction", "recipient"],
                name="payout_one_per_recipient",
            ),
        ]

    def __str__(self) -> str:
        return f"PayoutDistribution({self.id}, {self.status}, {self.amount} {self.currency})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[PayoutStatus.PENDING, PayoutStatus.FAILED],
        target=PayoutStatus.PROCESSING,
    )
    def start_processing(self):
        """
        Executor picked the payout up.

        Transition: PENDING/FAILED -> PROCESSING
        """
        self.attempt_count += 1
        self.next_attempt_at = None

    @transition(
        field=status,
        source=PayoutStatus.PROCESSING,
        target=PayoutStatus.RELEASED,
    )
    def release(self, gateway_payout_id: str = ""):
        """
        Provider accepted the transfer.

        Transition: PROCESSING -> RELEASED
        """
        self.released_at = timezone.now()
        self.gateway_payout_id = gateway_payout_id
        self.failure_reason = ""

    @transition(
        field=status,
        source=PayoutStatus.PROCESSING,
        target=PayoutStatus.FAILED,
    )
    def fail(self, reason: str, next_attempt_at=None):
        """
        Transfer failed; ``next_attempt_at`` is None when no retry remains.

        Transition: PROCESSING -> FAILED
        """
        self.failure_reason = reason
        self.next_attempt_at = next_attempt_at

    @transition(
        field=status,
        source=[PayoutStatus.PENDING, PayoutStatus.FAILED],
        target=PayoutStatus.FROZEN,
    )
    def freeze(self, reason: str):
        """
        Dispute opened; the executor ignores the payout until it is unfrozen.

        Transition: PENDING/FAILED -> FROZEN
        """
        self.frozen_at = timezone.now()
        self.next_attempt_at = None
        self.hold_reason = reason
        self.add_note(f"Frozen: {reason}")

    @transition(
        field=status,
        source=PayoutStatus.FROZEN,
        target=PayoutStatus.PENDING,
    )
    def unfreeze(self, release_date, reason: str):
        """
        Dispute resolved in the recipient's favour.

        Transition: FROZEN -> PENDING
        """
        self.frozen_at = None
        self.release_date = release_date
        self.can_release_at = release_date
        self.hold_reason = reason
        self.add_note(f"Unfrozen: {reason}")

    @transition(
        field=status,
        source=[PayoutStatus.PENDING, PayoutStatus.FAILED, PayoutStatus.FROZEN],
        target=PayoutStatus.CANCELED,
    )
    def cancel(self, reason: str):
        """
        The payment went back to the payer; nothing is owed.

        Transition: PENDING/FAILED/FROZEN -> CANCELED
        """
        self.canceled_at = timezone.now()
        self.next_attempt_at = None
        self.add_note(f"Canceled: {reason}")

    @transition(
        field=status,
        source=PayoutStatus.PROCESSING,
        target=PayoutStatus.FAILED,
    )
    def recover(self, reason: str):
        """
        Worker died mid-attempt. The attempt is not counted, so the retry
        reuses its idempotency key and the provider deduplicates it.

        Transition: PROCESSING -> FAILED
        """
        self.attempt_count = max(0, self.attempt_count - 1)
        self.next_attempt_at = timezone.now()
        self.failure_reason = reason
        self.add_note(reason)

    def add_note(self, note: str) -> None:
        stamp = timezone.now().isoformat()
        self.notes = f"{self.notes}\n[{stamp}] {note}".lstrip("\n")
