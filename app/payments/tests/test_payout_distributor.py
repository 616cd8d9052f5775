"""
Tests for PayoutDistributor and escrow hold periods.
"""

from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal

import pytest
from django.utils import timezone
from freezegun import freeze_time

from payments.exceptions import InvalidStateError
from payments.models import PayoutDistribution
from payments.services import hold_period_for
from payments.services.escrow import parse_event_date
from payments.state_machines import PayoutStatus, RecipientType, TransactionStatus, TransactionType
from payments.tests.factories import PaymentTransactionFactory


class TestHoldPeriod:
    """Tests for hold_period_for."""

    NOW = datetime(2026, 3, 1, 12, 0, tzinfo=dt_timezone.utc)

    def test_marketplace(self):
        """Should hold marketplace payouts for 7 days, releasable after 3."""
        period = hold_period_for(TransactionType.MARKETPLACE_ORDER, self.NOW)

        assert period.release_date == self.NOW + timedelta(days=7)
        assert period.can_release_at == self.NOW + timedelta(days=3)

    def test_event_ticket_uses_event_date(self):
        """Should release ticket payouts 3 days after the event."""
        event_date = datetime(2026, 4, 10, 18, 0, tzinfo=dt_timezone.utc)

        period = hold_period_for(TransactionType.EVENT_TICKET, self.NOW, event_date=event_date)

        assert period.release_date == event_date + timedelta(days=3)
        assert period.can_release_at == event_date + timedelta(days=1)

    def test_event_ticket_without_date(self):
        """Should anchor on the payment time when the event date is unknown."""
        period = hold_period_for(TransactionType.EVENT_TICKET, self.NOW)

        assert period.release_date == self.NOW + timedelta(days=3)

    @pytest.mark.parametrize("transaction_type", [TransactionType.DONATION, TransactionType.GENERIC])
    def test_default_hold(self, transaction_type):
        """Should hold other payouts for 24 hours."""
        period = hold_period_for(transaction_type, self.NOW)

        assert period.release_date == self.NOW + timedelta(hours=24)
        assert period.can_release_at == self.NOW


class TestParseEventDate:
    """Tests for parse_event_date."""

    def test_iso_datetime(self):
        """Should parse ISO datetimes."""
        parsed = parse_event_date("2026-04-10T18:00:00+00:00")

        assert parsed == datetime(2026, 4, 10, 18, 0, tzinfo=dt_timezone.utc)

    def test_date_only(self):
        """Should treat a bare date as midnight."""
        parsed = parse_event_date("2026-04-10")

        assert parsed.date().isoformat() == "2026-04-10"
        assert timezone.is_aware(parsed)

    @pytest.mark.parametrize("value", [None, "", "not a date"])
    def test_unparseable(self, value):
        """Should return None for missing or garbage values."""
        assert parse_event_date(value) is None


@pytest.mark.django_db
class TestDistributePayout:
    """Tests for distribute_payout."""

    @freeze_time("2026-03-01 12:00:00")
    def test_marketplace_hold(self, engine, notifier, seller, order, succeeded_transaction):
        """Should hold amount - platform fee - gateway fee for the seller for 7 days."""
        [payout] = engine.distributor.distribute_payout(succeeded_transaction.id)

        assert payout.recipient == seller
        assert payout.recipient_type == RecipientType.MARKETPLACE_SELLER
        assert payout.amount == Decimal("90.60")
        assert payout.currency == "MYR"
        assert payout.status == PayoutStatus.PENDING
        assert payout.release_date == timezone.now() + timedelta(days=7)
        assert payout.can_release_at == timezone.now() + timedelta(days=3)
        assert payout.metadata["order_id"] == "order-1"
        assert payout.metadata["transaction_id"] == str(succeeded_transaction.id)
        assert [n.notification_type for n in notifier.for_user(seller)] == ["payout_scheduled"]

    def test_is_idempotent(self, engine, notifier, order, succeeded_transaction):
        """Should return the existing hold on a second call."""
        first = engine.distributor.distribute_payout(succeeded_transaction.id)
        second = engine.distributor.distribute_payout(succeeded_transaction.id)

        assert [p.id for p in first] == [p.id for p in second]
        assert PayoutDistribution.objects.filter(payment_transaction=succeeded_transaction).count() == 1
        assert notifier.types.count("payout_scheduled") == 1

    def test_event_ticket_hold(self, engine, reference_store, seller, payer):
        """Should release ticket payouts 3 days after the event."""
        reference_store.add("event", "event-1", host_id=seller.pk, event_date="2026-12-01T18:00:00+00:00")
        reference_store.add("ticket", "ticket-1", event_id="event-1")
        txn = PaymentTransactionFactory(
            user=payer,
            transaction_type=TransactionType.EVENT_TICKET,
            reference_type="ticket",
            reference_id="ticket-1",
            status=TransactionStatus.SUCCEEDED,
        )

        [payout] = engine.distributor.distribute_payout(txn.id)

        assert payout.recipient_type == RecipientType.EVENT_ORGANIZER
        assert payout.release_date == datetime(2026, 12, 4, 18, 0, tzinfo=dt_timezone.utc)

    def test_subscription_creates_nothing(self, engine, payer):
        """Should leave subscription proceeds with the platform."""
        txn = PaymentTransactionFactory(
            user=payer,
            transaction_type=TransactionType.SUBSCRIPTION,
            reference_type="subscription",
            status=TransactionStatus.SUCCEEDED,
        )

        assert engine.distributor.distribute_payout(txn.id) == []
        assert not PayoutDistribution.objects.exists()

    def test_missing_recipient_user(self, engine, reference_store, payer):
        """Should skip a recipient that is not a known user."""
        reference_store.add("order", "order-ghost", seller_id=999999)
        txn = PaymentTransactionFactory(user=payer, reference_id="order-ghost", status=TransactionStatus.SUCCEEDED)

        assert engine.distributor.distribute_payout(txn.id) == []

    def test_nothing_left_to_pay(self, engine, payer, order):
        """Should skip a payout when fees consume the whole amount."""
        txn = PaymentTransactionFactory(
            user=payer,
            reference_id="order-1",
            amount=Decimal("1.00"),
            platform_fee=Decimal("0.50"),
            gateway_fee=Decimal("0.50"),
            status=TransactionStatus.SUCCEEDED,
        )

        assert engine.distributor.distribute_payout(txn.id) == []

    def test_requires_succeeded_payment(self, engine, order, pending_transaction):
        """Should refuse to distribute before the payment succeeded."""
        with pytest.raises(InvalidStateError):
            engine.distributor.distribute_payout(pending_transaction.id)
