"""
Payout distribution for succeeded payments.

distribute_payout turns a SUCCEEDED transaction into escrow payout holds:

    1. Lock the transaction row
    2. Return existing distributions unchanged (idempotent)
    3. Resolve the recipient through the reference handler table
    4. Create one hold for amount - platform_fee - gateway_fee

Subscriptions and platform donations resolve to no recipient and create no
rows; the platform's share stays on the transaction record.

Usage:
    distributor = PayoutDistributor(handlers, EscrowService(), notifier)
    payouts = distributor.distribute_payout(txn.id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from django.contrib.auth import get_user_model
from django.db import transaction

from core.services import BaseService
from payments.exceptions import InvalidStateError
from payments.locks import lock_transaction
from payments.money import ZERO, to_money
from payments.protocols import PaymentNotification
from payments.side_effects import SideEffectQueue
from payments.state_machines import TransactionStatus

if TYPE_CHECKING:
    from payments.models import PayoutDistribution
    from payments.protocols import Notifier
    from payments.references import ReferenceHandlers
    from payments.services.escrow import EscrowService


class PayoutDistributor(BaseService):
    """Creates payout holds exactly once per succeeded transaction."""

    def __init__(
        self,
        handlers: ReferenceHandlers,
        escrow: EscrowService,
        notifier: Notifier | None = None,
    ):
        self.handlers = handlers
        self.escrow = escrow
        self.notifier = notifier

    def distribute_payout(self, transaction_id: Any) -> list[PayoutDistribution]:
        """
        Create the payout hold for a SUCCEEDED transaction.

        Returns:
            The transaction's distributions (existing or newly created);
            empty when the platform keeps the proceeds

        Raises:
            NotFoundError: Unknown transaction
            InvalidStateError: Transaction is not SUCCEEDED
        """
        logger = self.get_logger()
        effects = SideEffectQueue(operation="distribute_payout", transaction_id=str(transaction_id))

        with transaction.atomic():
            txn = lock_transaction(transaction_id)

            if txn.status != TransactionStatus.SUCCEEDED:
                raise InvalidStateError(
                    "Payouts are only distributed for succeeded payments",
                    details={"transaction_id": str(txn.id), "current_status": txn.status},
                )

            existing = list(txn.payout_distributions.all())
            if existing:
                logger.info(
                    "Payout already distributed",
                    extra={"transaction_id": str(txn.id), "payout_count": len(existing)},
                )
                return existing

            handler = self.handlers.for_transaction(txn)
            recipient = handler.resolve_recipient(txn)
            if recipient is None:
                logger.info(
                    "No payout recipient; platform keeps proceeds",
                    extra={"transaction_id": str(txn.id), "transaction_type": txn.transaction_type},
                )
                return []

            if not get_user_model().objects.filter(pk=recipient.user_id).exists():
                logger.warning(
                    "Payout recipient does not exist",
                    extra={"transaction_id": str(txn.id), "recipient_id": str(recipient.user_id)},
                )
                return []

            amount = to_money(txn.amount - txn.platform_fee - txn.gateway_fee)
            if amount <= ZERO:
                logger.warning(
                    "Net amount leaves nothing to pay out",
                    extra={"transaction_id": str(txn.id), "net_amount": str(amount)},
                )
                return []

            payout = self.escrow.create_payout_hold(
                payment_transaction=txn,
                recipient_id=recipient.user_id,
                recipient_type=recipient.recipient_type,
                amount=amount,
                currency=txn.currency,
                metadata=handler.hold_context(txn),
            )

            if self.notifier is not None:
                note = PaymentNotification(
                    notification_type="payout_scheduled",
                    title="Payout Scheduled",
                    message=(
                        f"{payout.currency} {payout.amount} will be released to you on "
                        f"{payout.release_date:%Y-%m-%d}."
                    ),
                    metadata={"payout_id": str(payout.id), "transaction_id": str(txn.id)},
                    idempotency_key=f"payout_scheduled:{payout.id}",
                )
                effects.add("notify_recipient", lambda: self.notifier.notify(recipient.user_id, note))

        effects.run()
        return [payout]
