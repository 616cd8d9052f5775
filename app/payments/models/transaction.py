"""
PaymentTransaction model: the ledger record of one payment attempt.

A transaction is created PENDING at intent time and moves through a closed
state machine. Identity and reference fields never change after creation;
only status, fees (while still PENDING), refund and manual-review fields
mutate.

Usage:
    from payments.models import PaymentTransaction
    from payments.locks import save_transition
    from payments.state_machines import TransactionStatus

    txn = PaymentTransaction.objects.create(
        user=user,
        transaction_type=TransactionType.MARKETPLACE_ORDER,
        reference_type="order",
        reference_id=str(order_id),
        amount=Decimal("100.00"),
        currency="MYR",
    )

    # State transitions use django-fsm, persisted with compare-and-swap
    txn.succeed()
    save_transition(txn, TransactionStatus.PENDING, ["status", "processed_at"])
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone
from django_fsm import RETURN_VALUE, FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.money import ZERO, to_money
from payments.state_machines import TransactionStatus, TransactionType

if TYPE_CHECKING:
    from payments.services.fee_calculator import FeeBreakdown


MONEY_FIELD_KWARGS = {"max_digits": 12, "decimal_places": 2}


class PaymentTransaction(UUIDPrimaryKeyMixin, BaseModel):
    """
    Durable record of a payment attempt.

    State Flow:
        PENDING -> PROCESSING -> SUCCEEDED | FAILED
        PENDING -> SUCCEEDED | FAILED | CANCELED
        SUCCEEDED | PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED | REFUNDED

    Fields:
        user: Paying user
        transaction_type: What the payment is for
        reference_type/reference_id: Pointer to the external entity paid for
        amount, currency: Charged amount (Decimal, upper-case ISO 4217)
        platform_fee, gateway_fee, total_fees, net_amount: Fee breakdown
        refunded_amount: Cumulative refunds, never above amount
        provider, payment_method, is_manual: Routing decision
        gateway_transaction_id, gateway_metadata: Provider linkage
        status: Current FSM state
        proof_* / verified_* / rejection_reason: Manual review data
        version: Optimistic locking version

    Note:
        ``status`` is FSM-protected. Persist transitions through
        ``payments.locks.save_transition`` and re-read rows with
        ``PaymentTransaction.objects.get`` rather than ``refresh_from_db``.
    """

    # ==========================================================================
    # Ownership & Classification
    # ==========================================================================

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payment_transactions",
        help_text="User making the payment",
    )

    transaction_type = models.CharField(
        max_length=30,
        choices=TransactionType.choices,
        default=TransactionType.GENERIC,
        db_index=True,
    )

    reference_type = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Kind of entity paid for (ticket, order, subscription, user, community, event)",
    )

    reference_id = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Identifier of the entity paid for (opaque to the engine)",
    )

    description = models.CharField(max_length=500, blank=True, default="")

    # ==========================================================================
    # Money
    # ==========================================================================

    amount = models.DecimalField(**MONEY_FIELD_KWARGS)
    currency = models.CharField(max_length=3, help_text="ISO 4217 code, upper-case")
    platform_fee = models.DecimalField(default=ZERO, **MONEY_FIELD_KWARGS)
    gateway_fee = models.DecimalField(default=ZERO, **MONEY_FIELD_KWARGS)
    total_fees = models.DecimalField(default=ZERO, **MONEY_FIELD_KWARGS)
    net_amount = models.DecimalField(default=ZERO, **MONEY_FIELD_KWARGS)
    refunded_amount = models.DecimalField(default=ZERO, **MONEY_FIELD_KWARGS)

    # ==========================================================================
    # Routing & Gateway Linkage
    # ==========================================================================

    provider = models.ForeignKey(
        "payments.PaymentProvider",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transactions",
    )

    payment_method = models.CharField(
        max_length=50,
        null=True,
        blank=True,
        help_text="PaymentMethodConfig.method_code chosen by the payer",
    )

    is_manual = models.BooleanField(
        default=False,
        help_text="Manual method: no gateway call, proof review instead",
    )

    gateway_transaction_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Provider's intent/invoice id",
    )

    gateway_metadata = models.JSONField(default=dict, blank=True)

    # ==========================================================================
    # Lifecycle
    # ==========================================================================

    status = FSMField(
        default=TransactionStatus.PENDING,
        choices=TransactionStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state (managed by FSM)",
    )

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each transition",
    )

    processed_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    canceled_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True, default="")

    # ==========================================================================
    # Manual Payment Review
    # ==========================================================================

    payment_reference_code = models.CharField(
        max_length=20,
        blank=True,
        default="",
        db_index=True,
        help_text="Code the payer quotes on a manual transfer (PAY-XXXXXXXX)",
    )
    upload_deadline = models.DateTimeField(null=True, blank=True)
    manual_payment_details = models.JSONField(default=dict, blank=True)

    proof_of_payment_url = models.CharField(max_length=1000, blank=True, default="")
    proof_of_payment_key = models.CharField(max_length=500, blank=True, default="")
    proof_uploaded_at = models.DateTimeField(null=True, blank=True)
    proof_upload_attempts = models.PositiveSmallIntegerField(default=0)

    verified_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="verified_payment_transactions",
    )
    verified_at = models.DateTimeField(null=True, blank=True)
    verification_notes = models.TextField(blank=True, default="")
    rejection_reason = models.TextField(blank=True, default="")

    metadata = models.JSONField(default=dict, blank=True)

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Transaction"
        verbose_name_plural = "Payment Transactions"
        indexes = [
            models.Index(
                fields=["user", "reference_id", "reference_type", "status"],
                name="txn_user_reference_status_idx",
            ),
            models.Index(fields=["user", "created_at"], name="txn_user_created_idx"),
            models.Index(fields=["status", "proof_uploaded_at"], name="txn_status_proof_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="txn_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(refunded_amount__gte=0) & Q(refunded_amount__lte=F("amount")),
                name="txn_refund_within_amount",
            ),
            models.UniqueConstraint(
                fields=["user", "reference_type", "reference_id"],
                condition=Q(status=TransactionStatus.PENDING),
                name="txn_single_pending_per_reference",
            ),
        ]

    def __str__(self) -> str:
        return f"PaymentTransaction({self.id}, {self.status}, {self.amount} {self.currency})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def remaining_refundable(self) -> Decimal:
        return to_money(self.amount - self.refunded_amount)

    @property
    def has_proof(self) -> bool:
        return bool(self.proof_of_payment_key or self.proof_of_payment_url)

    def apply_fees(self, breakdown: FeeBreakdown) -> None:
        """Copy a fee breakdown onto the row; totals are always derived."""
        self.platform_fee = breakdown.platform_fee
        self.gateway_fee = breakdown.gateway_fee
        self.total_fees = to_money(breakdown.platform_fee + breakdown.gateway_fee)
        self.net_amount = to_money(self.amount - self.total_fees)

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=TransactionStatus.PENDING,
        target=TransactionStatus.PROCESSING,
    )
    def mark_processing(self):
        """
        Gateway reports the payment as pending, or manual proof was uploaded.

        Transition: PENDING -> PROCESSING
        """

    @transition(
        field=status,
        source=[TransactionStatus.PENDING, TransactionStatus.PROCESSING],
        target=TransactionStatus.SUCCEEDED,
    )
    def succeed(self):
        """
        Payment confirmed by the gateway or approved by a reviewer.

        Transition: PENDING/PROCESSING -> SUCCEEDED
        """
        self.processed_at = timezone.now()

    @transition(
        field=status,
        source=[TransactionStatus.PENDING, TransactionStatus.PROCESSING],
        target=TransactionStatus.FAILED,
    )
    def fail(self, reason: str = ""):
        """
        Payment declined by the gateway or rejected by a reviewer.

        Transition: PENDING/PROCESSING -> FAILED
        """
        self.processed_at = timezone.now()
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=TransactionStatus.PENDING,
        target=TransactionStatus.CANCELED,
    )
    def cancel(self, reason: str = ""):
        """
        Intent expired before the payer completed it.

        Transition: PENDING -> CANCELED
        """
        self.canceled_at = timezone.now()
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=[TransactionStatus.SUCCEEDED, TransactionStatus.PARTIALLY_REFUNDED],
        target=RETURN_VALUE(TransactionStatus.PARTIALLY_REFUNDED, TransactionStatus.REFUNDED),
    )
    def apply_refund(self, amount: Decimal):
        """
        Record a refund; fully refunded payments become REFUNDED.

        Transition: SUCCEEDED/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED/REFUNDED

        The caller has already checked ``amount <= remaining_refundable``.
        """
        self.refunded_amount = to_money(self.refunded_amount + amount)
        self.refunded_at = timezone.now()
        if self.refunded_amount >= self.amount:
            return TransactionStatus.REFUNDED
        return TransactionStatus.PARTIALLY_REFUNDED
