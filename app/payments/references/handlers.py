"""
Reference handlers: per-transaction-type behaviour toward the entity paid for.

Each TransactionType maps to one handler exposing the same capabilities:

    resolve_recipient(txn) -> Recipient | None   who receives the net payout
    on_succeeded(txn)                           entity updates after payment
    on_refunded(txn)                            entity updates after refund
    link_transaction(txn)                       record the pending payment
    describe(txn) -> str | None                 customer-facing description
    hold_context(txn) -> dict                   metadata for the payout hold

Recipient table:
    EVENT_TICKET       event host            event_organizer
    MARKETPLACE_ORDER  order seller          marketplace_seller
    SUBSCRIPTION       none (platform keeps 100%)
    DONATION           per reference_type    donation_recipient /
                       (user/community/event) community_organizer /
                                              event_organizer
    GENERIC            the paying user       user

Usage:
    handlers = build_reference_handlers(ReferenceStoreRegistry.from_config(...))
    recipient = handlers[txn.transaction_type].resolve_recipient(txn)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from payments.state_machines import RecipientType, TransactionStatus, TransactionType

if TYPE_CHECKING:
    from payments.models import PaymentTransaction
    from payments.protocols import ReferenceEntityStore
    from payments.references.stores import ReferenceStoreRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recipient:
    user_id: Any
    recipient_type: str


# Entity statuses the engine writes
PENDING_PAYMENT = "PENDING_PAYMENT"
CONFIRMED = "CONFIRMED"
ACTIVE = "ACTIVE"
REFUNDED = "REFUNDED"
PAID = "PAID"


class ReferenceHandler:
    """Default behaviour: the paying user is the recipient, no entity updates."""

    transaction_type: str = TransactionType.GENERIC

    def __init__(self, stores: ReferenceStoreRegistry):
        self.stores = stores

    def store_for(self, reference_type: str) -> ReferenceEntityStore | None:
        return self.stores.get(reference_type)

    def find(self, reference_type: str, reference_id: Any) -> dict[str, Any] | None:
        if not reference_id:
            return None
        store = self.store_for(reference_type)
        if store is None:
            return None
        return store.find_by_id(reference_type, str(reference_id))

    def entity(self, txn: PaymentTransaction) -> dict[str, Any] | None:
        return self.find(txn.reference_type, txn.reference_id)

    def resolve_recipient(self, txn: PaymentTransaction) -> Recipient | None:
        return Recipient(user_id=txn.user_id, recipient_type=RecipientType.USER)

    def on_succeeded(self, txn: PaymentTransaction) -> None:
        return None

    def on_refunded(self, txn: PaymentTransaction) -> None:
        return None

    def link_transaction(self, txn: PaymentTransaction) -> None:
        return None

    def describe(self, txn: PaymentTransaction) -> str | None:
        entity = self.entity(txn)
        if entity:
            return entity.get("title") or entity.get("name")
        return None

    def hold_context(self, txn: PaymentTransaction) -> dict[str, Any]:
        return {}

    # -------------------------------------------------------------------------
    # Shared helpers
    # -------------------------------------------------------------------------

    def _set_status(self, txn: PaymentTransaction, status: str, **fields: Any) -> None:
        store = self.store_for(txn.reference_type)
        if store is None or not txn.reference_id:
            logger.debug(
                "No reference store for status update",
                extra={"reference_type": txn.reference_type, "transaction_id": str(txn.id)},
            )
            return
        store.update_status(txn.reference_type, str(txn.reference_id), status, **fields)

    def _link_pending(self, txn: PaymentTransaction) -> None:
        self._set_status(txn, PENDING_PAYMENT, payment_transaction_id=str(txn.id))


class EventTicketHandler(ReferenceHandler):
    """
    Tickets and direct event registrations.

    A ``ticket`` entity carries ``event_id`` (and optionally ``host_id``);
    the host is read from the ``event`` entity when the ticket lacks one.
    """

    transaction_type = TransactionType.EVENT_TICKET

    def _event_for(self, txn: PaymentTransaction) -> tuple[dict[str, Any] | None, dict[str, Any] | None]:
        entity = self.entity(txn)
        if txn.reference_type == "event":
            return entity, entity
        event = self.find("event", entity.get("event_id")) if entity else None
        return entity, event

    def resolve_recipient(self, txn: PaymentTransaction) -> Recipient | None:
        ticket, event = self._event_for(txn)
        host_id = (ticket or {}).get("host_id") or (event or {}).get("host_id")
        if not host_id:
            logger.warning(
                "Event host not found for ticket payment",
                extra={"transaction_id": str(txn.id), "reference_id": txn.reference_id},
            )
            return None
        return Recipient(user_id=host_id, recipient_type=RecipientType.EVENT_ORGANIZER)

    def on_succeeded(self, txn: PaymentTransaction) -> None:
        self._set_status(txn, CONFIRMED, payment_status=PAID, payment_transaction_id=str(txn.id))
        ticket, event = self._event_for(txn)
        event_id = (event or {}).get("id") or (ticket or {}).get("event_id")
        store = self.store_for("event")
        if event_id and store is not None:
            store.increment_sold_quantity("event", str(event_id), quantity=1)

    def on_refunded(self, txn: PaymentTransaction) -> None:
        if txn.status == TransactionStatus.REFUNDED:
            self._set_status(txn, REFUNDED, payment_status=REFUNDED)

    def link_transaction(self, txn: PaymentTransaction) -> None:
        self._link_pending(txn)

    def hold_context(self, txn: PaymentTransaction) -> dict[str, Any]:
        ticket, event = self._event_for(txn)
        context: dict[str, Any] = {}
        if txn.reference_type == "ticket":
            context["ticket_id"] = str(txn.reference_id)
        event_id = (event or {}).get("id") or (ticket or {}).get("event_id")
        if event_id:
            context["event_id"] = str(event_id)
        event_date = (event or {}).get("event_date") or (ticket or {}).get("event_date")
        if event_date:
            context["event_date"] = event_date
        return context


class MarketplaceOrderHandler(ReferenceHandler):
    transaction_type = TransactionType.MARKETPLACE_ORDER

    def resolve_recipient(self, txn: PaymentTransaction) -> Recipient | None:
        order = self.entity(txn)
        if not order or not order.get("seller_id"):
            logger.warning(
                "Seller not found for marketplace order payment",
                extra={"transaction_id": str(txn.id), "reference_id": txn.reference_id},
            )
            return None
        return Recipient(user_id=order["seller_id"], recipient_type=RecipientType.MARKETPLACE_SELLER)

    def on_succeeded(self, txn: PaymentTransaction) -> None:
        self._set_status(txn, CONFIRMED, payment_status=PAID, payment_transaction_id=str(txn.id))

    def on_refunded(self, txn: PaymentTransaction) -> None:
        if txn.status == TransactionStatus.REFUNDED:
            self._set_status(txn, REFUNDED, payment_status=REFUNDED)

    def link_transaction(self, txn: PaymentTransaction) -> None:
        self._link_pending(txn)

    def hold_context(self, txn: PaymentTransaction) -> dict[str, Any]:
        order = self.entity(txn) or {}
        context = {"order_id": str(txn.reference_id)} if txn.reference_id else {}
        if order.get("listing_id"):
            context["listing_id"] = str(order["listing_id"])
        return context


class SubscriptionHandler(ReferenceHandler):
    """Platform keeps subscription revenue; no payout is created."""

    transaction_type = TransactionType.SUBSCRIPTION

    def resolve_recipient(self, txn: PaymentTransaction) -> Recipient | None:
        return None

    def on_succeeded(self, txn: PaymentTransaction) -> None:
        self._set_status(txn, ACTIVE, payment_transaction_id=str(txn.id))

    def link_transaction(self, txn: PaymentTransaction) -> None:
        self._link_pending(txn)


class DonationHandler(ReferenceHandler):
    """
    Donations to a user, a community or an event.

    A donation without a reference goes to the platform (no payout).
    """

    transaction_type = TransactionType.DONATION

    def resolve_recipient(self, txn: PaymentTransaction) -> Recipient | None:
        if not txn.reference_id:
            return None

        if txn.reference_type == "user":
            return Recipient(user_id=txn.reference_id, recipient_type=RecipientType.DONATION_RECIPIENT)

        entity = self.entity(txn) or {}
        if txn.reference_type == "community" and entity.get("organizer_id"):
            return Recipient(user_id=entity["organizer_id"], recipient_type=RecipientType.COMMUNITY_ORGANIZER)
        if txn.reference_type == "event" and entity.get("host_id"):
            return Recipient(user_id=entity["host_id"], recipient_type=RecipientType.EVENT_ORGANIZER)

        logger.warning(
            "Donation recipient could not be resolved",
            extra={
                "transaction_id": str(txn.id),
                "reference_type": txn.reference_type,
                "reference_id": txn.reference_id,
            },
        )
        return None

    def hold_context(self, txn: PaymentTransaction) -> dict[str, Any]:
        if not txn.reference_id:
            return {}
        return {f"{txn.reference_type or 'reference'}_id": str(txn.reference_id)}


HANDLER_CLASSES: dict[str, type[ReferenceHandler]] = {
    TransactionType.EVENT_TICKET: EventTicketHandler,
    TransactionType.MARKETPLACE_ORDER: MarketplaceOrderHandler,
    TransactionType.SUBSCRIPTION: SubscriptionHandler,
    TransactionType.DONATION: DonationHandler,
    TransactionType.GENERIC: ReferenceHandler,
}


class ReferenceHandlers:
    """TransactionType -> ReferenceHandler table; unknown types use the default."""

    def __init__(self, handlers: dict[str, ReferenceHandler], default: ReferenceHandler):
        self._handlers = handlers
        self.default = default

    def __getitem__(self, transaction_type: str) -> ReferenceHandler:
        return self._handlers.get(transaction_type, self.default)

    def for_transaction(self, txn: PaymentTransaction) -> ReferenceHandler:
        return self[txn.transaction_type]


def build_reference_handlers(stores: ReferenceStoreRegistry) -> ReferenceHandlers:
    handlers = {tx_type: handler_cls(stores) for tx_type, handler_cls in HANDLER_CLASSES.items()}
    return ReferenceHandlers(handlers, default=handlers[TransactionType.GENERIC])
