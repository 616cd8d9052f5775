"""
Escrow holds for payouts.

A payout hold is a PENDING PayoutDistribution with a release date chosen by
transaction type:

    MARKETPLACE_ORDER  7 days after payment        (early release after 3 days)
    EVENT_TICKET       event date + 3 days         (early release event date + 1 day)
    everything else    24 hours after payment      (early release immediately)

The event date comes from the hold context (reference entity); when it is
unknown the payment time is used.

Holds can also be frozen for a dispute, unfrozen once it is resolved,
released early once ``can_release_at`` has passed, and reduced or canceled
when the payment is refunded.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from core.services import BaseService
from payments.exceptions import InvalidStateError, ValidationError
from payments.locks import lock_payout, save_fields, save_transition
from payments.models import PayoutDistribution
from payments.money import ZERO, to_money
from payments.state_machines import (
    ADJUSTABLE_PAYOUT_STATUSES,
    DisputeResolution,
    PayoutStatus,
    TransactionType,
)

if TYPE_CHECKING:
    from decimal import Decimal

    from payments.models import PaymentTransaction


MARKETPLACE_HOLD = timedelta(days=7)
MARKETPLACE_EARLY_RELEASE = timedelta(days=3)
EVENT_HOLD_AFTER_EVENT = timedelta(days=3)
EVENT_EARLY_RELEASE_AFTER_EVENT = timedelta(days=1)
DEFAULT_HOLD = timedelta(hours=24)


@dataclass(frozen=True)
class HoldPeriod:
    release_date: datetime
    can_release_at: datetime
    hold_reason: str


def parse_event_date(value: Any) -> datetime | None:
    """Accepts datetime, date or ISO strings; naive values are made aware."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, datetime.min.time())
    else:
        parsed = parse_datetime(str(value))
        if parsed is None:
            day = parse_date(str(value))
            parsed = datetime.combine(day, datetime.min.time()) if day else None
    if parsed is not None and timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def hold_period_for(transaction_type: str, now: datetime, event_date: datetime | None = None) -> HoldPeriod:
    if transaction_type == TransactionType.MARKETPLACE_ORDER:
        return HoldPeriod(
            release_date=now + MARKETPLACE_HOLD,
            can_release_at=now + MARKETPLACE_EARLY_RELEASE,
            hold_reason="Marketplace escrow: 7-day buyer protection",
        )

    if transaction_type == TransactionType.EVENT_TICKET:
        anchor = event_date or now
        return HoldPeriod(
            release_date=anchor + EVENT_HOLD_AFTER_EVENT,
            can_release_at=anchor + EVENT_EARLY_RELEASE_AFTER_EVENT,
            hold_reason="Event escrow: released 3 days after the event",
        )

    return HoldPeriod(
        release_date=now + DEFAULT_HOLD,
        can_release_at=now,
        hold_reason="Standard 24-hour hold",
    )


class EscrowService(BaseService):
    """Creates payout holds and applies escrow actions to them."""

    def create_payout_hold(
        self,
        payment_transaction: PaymentTransaction,
        recipient_id: Any,
        recipient_type: str,
        amount: Decimal,
        currency: str,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> PayoutDistribution:
        """
        Create one PENDING payout hold.

        Callers hold the transaction row lock and have already checked that
        no distribution exists for it.
        """
        now = now or timezone.now()
        metadata = dict(metadata or {})
        event_date = parse_event_date(metadata.get("event_date"))
        if event_date is not None:
            metadata["event_date"] = event_date.isoformat()
        period = hold_period_for(payment_transaction.transaction_type, now, event_date=event_date)

        payout = PayoutDistribution.objects.create(
            payment_transaction=payment_transaction,
            recipient_id=recipient_id,
            recipient_type=recipient_type,
            amount=to_money(amount),
            currency=currency,
            release_date=period.release_date,
            can_release_at=period.can_release_at,
            hold_reason=period.hold_reason,
            metadata={"transaction_id": str(payment_transaction.id), **metadata},
        )

        self.get_logger().info(
            "Created payout hold",
            extra={
                "payout_id": str(payout.id),
                "transaction_id": str(payment_transaction.id),
                "recipient_id": str(recipient_id),
                "amount": str(payout.amount),
                "release_date": period.release_date.isoformat(),
            },
        )
        return payout

    # =========================================================================
    # Disputes and Early Release
    # =========================================================================

    def freeze_payout(self, payout_id: Any, reason: str) -> PayoutDistribution:
        """
        Stop a hold from being released while a dispute is open.

        Raises:
            NotFoundError: Unknown payout
            InvalidStateError: Payout is not PENDING or FAILED
        """
        with transaction.atomic():
            payout = lock_payout(payout_id)
            self._require_status(payout, (PayoutStatus.PENDING, PayoutStatus.FAILED), "frozen")
            expected = payout.status
            payout.freeze(reason)
            save_transition(payout, expected, ["status", "frozen_at", "next_attempt_at", "hold_reason", "notes"])

        self.get_logger().info(
            "Payout frozen",
            extra={"payout_id": str(payout.id), "reason": reason},
        )
        return payout

    def unfreeze_payout(
        self,
        payout_id: Any,
        resolution: str,
        now: datetime | None = None,
    ) -> PayoutDistribution:
        """
        Resolve the dispute on a frozen hold.

        ``release_to_seller`` makes the payout due immediately;
        ``refund_to_buyer`` cancels it, and the caller refunds the payment.

        Raises:
            NotFoundError: Unknown payout
            InvalidStateError: Payout is not FROZEN
            ValidationError: Unknown resolution
        """
        if resolution not in DisputeResolution.values:
            raise ValidationError(
                f"Unknown dispute resolution: {resolution}",
                error_code="INVALID_RESOLUTION",
                details={"resolution": resolution, "allowed": list(DisputeResolution.values)},
            )
        now = now or timezone.now()

        with transaction.atomic():
            payout = lock_payout(payout_id)
            self._require_status(payout, (PayoutStatus.FROZEN,), "unfrozen")
            if resolution == DisputeResolution.REFUND_TO_BUYER:
                payout.cancel("Dispute resolved: full refund to buyer")
                save_transition(payout, PayoutStatus.FROZEN, ["status", "canceled_at", "next_attempt_at", "notes"])
            else:
                payout.unfreeze(now, "Dispute resolved in favour of the recipient")
                save_transition(
                    payout,
                    PayoutStatus.FROZEN,
                    ["status", "frozen_at", "release_date", "can_release_at", "hold_reason", "notes"],
                )

        self.get_logger().info(
            "Payout unfrozen",
            extra={"payout_id": str(payout.id), "resolution": resolution, "status": payout.status},
        )
        return payout

    def expedite_release(self, payout_id: Any, reason: str, now: datetime | None = None) -> PayoutDistribution:
        """
        Make a PENDING hold due now, e.g. when the buyer confirms delivery.

        Raises:
            NotFoundError: Unknown payout
            InvalidStateError: Payout is not PENDING (frozen payouts included)
            ValidationError: The minimum hold (``can_release_at``) has not passed
        """
        now = now or timezone.now()

        with transaction.atomic():
            payout = lock_payout(payout_id)
            self._require_status(payout, (PayoutStatus.PENDING,), "expedited")
            if payout.can_release_at and payout.can_release_at > now:
                raise ValidationError(
                    "Cannot expedite release before the minimum hold period",
                    error_code="HOLD_PERIOD_NOT_ELAPSED",
                    details={"payout_id": str(payout.id), "can_release_at": payout.can_release_at.isoformat()},
                )
            if payout.release_date > now:
                payout.release_date = now
            payout.hold_reason = reason
            payout.add_note(f"Expedited: {reason}")
            save_fields(payout, ["release_date", "hold_reason", "notes"])

        self.get_logger().info(
            "Payout release expedited",
            extra={"payout_id": str(payout.id), "reason": reason},
        )
        return payout

    # =========================================================================
    # Refunds
    # =========================================================================

    def ensure_refundable(self, payment_transaction: PaymentTransaction) -> None:
        """
        Raises:
            InvalidStateError: A payout for the transaction is being sent
        """
        in_flight = PayoutDistribution.objects.filter(
            payment_transaction=payment_transaction,
            status=PayoutStatus.PROCESSING,
        ).values_list("id", flat=True)
        self._reject_in_flight(payment_transaction, list(in_flight))

    def lock_refund_holds(self, payment_transaction: PaymentTransaction) -> list[PayoutDistribution]:
        """
        Lock the transaction's payouts for a refund.

        Called inside the refund's atomic block with the transaction row
        already locked.

        Raises:
            InvalidStateError: A payout for the transaction is being sent
        """
        payouts = list(
            PayoutDistribution.objects.select_for_update()
            .filter(payment_transaction=payment_transaction)
            .order_by("created_at")
        )
        self._reject_in_flight(
            payment_transaction,
            [payout.id for payout in payouts if payout.status == PayoutStatus.PROCESSING],
        )
        return payouts

    def adjust_for_refund(
        self,
        payouts: list[PayoutDistribution],
        refund_amount: Decimal,
        fully_refunded: bool,
    ) -> list[PayoutDistribution]:
        """
        Take a refund out of the holds that have not been paid yet.

        A full refund cancels every open hold. A partial refund reduces holds
        in creation order and cancels any that reach zero. Released payouts
        are left alone.

        Returns:
            The payouts that changed
        """
        logger = self.get_logger()
        changed = []
        remaining = to_money(refund_amount)

        for payout in payouts:
            if payout.status not in ADJUSTABLE_PAYOUT_STATUSES:
                if payout.status == PayoutStatus.RELEASED:
                    logger.warning(
                        "Refund issued after payout release",
                        extra={"payout_id": str(payout.id), "transaction_id": str(payout.payment_transaction_id)},
                    )
                continue

            expected = payout.status
            cut = min(payout.amount, remaining)
            if fully_refunded or payout.amount - cut <= ZERO:
                payout.cancel(f"Payment refunded ({refund_amount} {payout.currency})")
                save_transition(payout, expected, ["status", "canceled_at", "next_attempt_at", "notes"])
            elif cut > ZERO:
                payout.amount = to_money(payout.amount - cut)
                payout.add_note(f"Reduced by {cut} after a partial refund")
                save_fields(payout, ["amount", "notes"])
            else:
                continue

            remaining = to_money(remaining - cut)
            changed.append(payout)
            logger.info(
                "Payout adjusted for refund",
                extra={"payout_id": str(payout.id), "status": payout.status, "amount": str(payout.amount)},
            )

        return changed

    def _reject_in_flight(self, payment_transaction: PaymentTransaction, payout_ids: list[Any]) -> None:
        if payout_ids:
            raise InvalidStateError(
                "A payout for this payment is being sent; retry the refund once it completes",
                error_code="PAYOUT_IN_FLIGHT",
                details={
                    "transaction_id": str(payment_transaction.id),
                    "payout_ids": [str(pk) for pk in payout_ids],
                },
            )

    def _require_status(self, payout: PayoutDistribution, allowed: tuple[str, ...], action: str) -> None:
        if payout.status not in allowed:
            raise InvalidStateError(
                f"Payout in status {payout.status} cannot be {action}",
                details={"payout_id": str(payout.id), "current_status": payout.status},
            )
