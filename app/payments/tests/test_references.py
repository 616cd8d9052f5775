"""
Tests for reference handlers and stores.

Test Classes:
    TestRecipientResolution: Who receives the payout per transaction type
    TestEntityUpdates: Status writes after success and refund
    TestHoldContext: Metadata carried onto payout holds
    TestReferenceStoreRegistry: Settings-driven store loading
"""

import pytest

from payments.references import InMemoryReferenceStore, ReferenceStoreRegistry
from payments.state_machines import RecipientType, TransactionStatus, TransactionType
from payments.tests.factories import PaymentTransactionFactory


@pytest.fixture
def handlers(engine):
    return engine.handlers


@pytest.mark.django_db
class TestRecipientResolution:
    """Tests for resolve_recipient on each handler."""

    def test_marketplace_order_pays_seller(self, handlers, order, seller):
        """Should route marketplace payouts to the order's seller."""
        txn = PaymentTransactionFactory(reference_id="order-1")

        recipient = handlers[TransactionType.MARKETPLACE_ORDER].resolve_recipient(txn)

        assert recipient.user_id == seller.pk
        assert recipient.recipient_type == RecipientType.MARKETPLACE_SELLER

    def test_marketplace_order_without_seller(self, handlers, reference_store):
        """Should return None when the order has no seller."""
        reference_store.add("order", "orphan")
        txn = PaymentTransactionFactory(reference_id="orphan")

        assert handlers[TransactionType.MARKETPLACE_ORDER].resolve_recipient(txn) is None

    def test_ticket_pays_event_host(self, handlers, reference_store, seller):
        """Should read the host from the ticket's event."""
        reference_store.add("event", "event-1", host_id=seller.pk)
        reference_store.add("ticket", "ticket-1", event_id="event-1")
        txn = PaymentTransactionFactory(
            transaction_type=TransactionType.EVENT_TICKET,
            reference_type="ticket",
            reference_id="ticket-1",
        )

        recipient = handlers[TransactionType.EVENT_TICKET].resolve_recipient(txn)

        assert recipient.user_id == seller.pk
        assert recipient.recipient_type == RecipientType.EVENT_ORGANIZER

    def test_subscription_has_no_recipient(self, handlers):
        """Should keep subscription revenue on the platform."""
        txn = PaymentTransactionFactory(transaction_type=TransactionType.SUBSCRIPTION, reference_type="subscription")

        assert handlers[TransactionType.SUBSCRIPTION].resolve_recipient(txn) is None

    def test_donation_to_user(self, handlers, seller):
        """Should pay the referenced user directly."""
        txn = PaymentTransactionFactory(
            transaction_type=TransactionType.DONATION,
            reference_type="user",
            reference_id=str(seller.pk),
        )

        recipient = handlers[TransactionType.DONATION].resolve_recipient(txn)

        assert recipient.user_id == str(seller.pk)
        assert recipient.recipient_type == RecipientType.DONATION_RECIPIENT

    def test_donation_to_community(self, handlers, reference_store, seller):
        """Should pay the community organizer."""
        reference_store.add("community", "c-1", organizer_id=seller.pk)
        txn = PaymentTransactionFactory(
            transaction_type=TransactionType.DONATION,
            reference_type="community",
            reference_id="c-1",
        )

        recipient = handlers[TransactionType.DONATION].resolve_recipient(txn)

        assert recipient.recipient_type == RecipientType.COMMUNITY_ORGANIZER

    def test_donation_without_reference_goes_to_platform(self, handlers):
        """Should return None for an unreferenced donation."""
        txn = PaymentTransactionFactory(transaction_type=TransactionType.DONATION, reference_type="", reference_id=None)

        assert handlers[TransactionType.DONATION].resolve_recipient(txn) is None

    def test_generic_pays_the_payer(self, handlers, payer):
        """Should route generic payments back to the paying user."""
        txn = PaymentTransactionFactory(user=payer, transaction_type=TransactionType.GENERIC)

        recipient = handlers[TransactionType.GENERIC].resolve_recipient(txn)

        assert recipient.user_id == payer.pk
        assert recipient.recipient_type == RecipientType.USER


@pytest.mark.django_db
class TestEntityUpdates:
    """Tests for on_succeeded, on_refunded and link_transaction."""

    def test_link_marks_order_pending(self, handlers, reference_store, order):
        """Should mark the order as awaiting payment."""
        txn = PaymentTransactionFactory(reference_id="order-1")

        handlers.for_transaction(txn).link_transaction(txn)

        entity = reference_store.find_by_id("order", "order-1")
        assert entity["status"] == "PENDING_PAYMENT"
        assert entity["payment_transaction_id"] == str(txn.id)

    def test_success_confirms_order(self, handlers, reference_store, order):
        """Should confirm the order once paid."""
        txn = PaymentTransactionFactory(reference_id="order-1", status=TransactionStatus.SUCCEEDED)

        handlers.for_transaction(txn).on_succeeded(txn)

        entity = reference_store.find_by_id("order", "order-1")
        assert entity["status"] == "CONFIRMED"
        assert entity["payment_status"] == "PAID"

    def test_ticket_success_counts_sale(self, handlers, reference_store, seller):
        """Should confirm the ticket and count the sale on the event."""
        reference_store.add("event", "event-1", host_id=seller.pk)
        reference_store.add("ticket", "ticket-1", event_id="event-1")
        txn = PaymentTransactionFactory(
            transaction_type=TransactionType.EVENT_TICKET,
            reference_type="ticket",
            reference_id="ticket-1",
            status=TransactionStatus.SUCCEEDED,
        )

        handlers.for_transaction(txn).on_succeeded(txn)

        assert reference_store.find_by_id("ticket", "ticket-1")["status"] == "CONFIRMED"
        assert reference_store.find_by_id("event", "event-1")["sold_quantity"] == 1

    def test_partial_refund_leaves_order_alone(self, handlers, reference_store, order):
        """Should only mark the order refunded after a full refund."""
        txn = PaymentTransactionFactory(reference_id="order-1", status=TransactionStatus.PARTIALLY_REFUNDED)

        handlers.for_transaction(txn).on_refunded(txn)

        assert "status" not in reference_store.find_by_id("order", "order-1")

    def test_full_refund_marks_order(self, handlers, reference_store, order):
        """Should mark the order refunded."""
        txn = PaymentTransactionFactory(reference_id="order-1", status=TransactionStatus.REFUNDED)

        handlers.for_transaction(txn).on_refunded(txn)

        assert reference_store.find_by_id("order", "order-1")["status"] == "REFUNDED"

    def test_describe_uses_entity_title(self, handlers, order):
        """Should describe the payment with the entity title."""
        txn = PaymentTransactionFactory(reference_id="order-1")

        assert handlers.for_transaction(txn).describe(txn) == "Vintage camera"

    def test_missing_store_is_tolerated(self, handlers):
        """Should do nothing for a reference type with no store."""
        txn = PaymentTransactionFactory(reference_type="unknown", reference_id="x-1")

        handlers.for_transaction(txn).link_transaction(txn)

        assert handlers.for_transaction(txn).describe(txn) is None


@pytest.mark.django_db
class TestHoldContext:
    """Tests for hold_context."""

    def test_ticket_context_carries_event_date(self, handlers, reference_store, seller):
        """Should pass the event date through to the payout hold."""
        reference_store.add("event", "event-1", host_id=seller.pk, event_date="2026-12-01T18:00:00+00:00")
        reference_store.add("ticket", "ticket-1", event_id="event-1")
        txn = PaymentTransactionFactory(
            transaction_type=TransactionType.EVENT_TICKET,
            reference_type="ticket",
            reference_id="ticket-1",
        )

        context = handlers.for_transaction(txn).hold_context(txn)

        assert context == {
            "ticket_id": "ticket-1",
            "event_id": "event-1",
            "event_date": "2026-12-01T18:00:00+00:00",
        }

    def test_order_context(self, handlers, reference_store, seller):
        """Should carry the order and listing ids."""
        reference_store.add("order", "order-7", seller_id=seller.pk, listing_id="listing-3")
        txn = PaymentTransactionFactory(reference_id="order-7")

        assert handlers.for_transaction(txn).hold_context(txn) == {"order_id": "order-7", "listing_id": "listing-3"}


class TestReferenceStoreRegistry:
    """Tests for ReferenceStoreRegistry."""

    def test_from_config_shares_instances(self):
        """Should build one instance per dotted path."""
        path = "payments.references.InMemoryReferenceStore"

        registry = ReferenceStoreRegistry.from_config({"ticket": path, "event": path})

        assert registry.get("ticket") is registry.get("event")
        assert registry.reference_types == ["event", "ticket"]

    def test_unknown_type(self):
        """Should return None for unregistered types."""
        registry = ReferenceStoreRegistry()

        assert registry.get("order") is None
        assert "order" not in registry

    def test_in_memory_store_returns_copies(self):
        """Should not let callers mutate stored entities."""
        store = InMemoryReferenceStore()
        store.add("order", "o-1", seller_id=1)

        store.find_by_id("order", "o-1")["seller_id"] = 2

        assert store.find_by_id("order", "o-1")["seller_id"] == 1
