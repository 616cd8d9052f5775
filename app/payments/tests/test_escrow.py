"""
Tests for EscrowService dispute and early-release actions.

Test Classes:
    TestFreezePayout: Holding a payout while a dispute is open
    TestUnfreezePayout: Resolving the dispute either way
    TestExpediteRelease: Early release after the minimum hold
    TestAdjustForRefund: Cancelling and reducing holds on refunds
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from payments.exceptions import InvalidStateError, NotFoundError, ValidationError
from payments.models import PayoutDistribution
from payments.services import EscrowService
from payments.state_machines import DisputeResolution, PayoutStatus
from payments.tests.factories import PayoutDistributionFactory


def stored(payout):
    return PayoutDistribution.objects.get(pk=payout.pk)


def held_payout(**overrides):
    """Marketplace hold created now: due in 7 days, releasable after 3."""
    now = timezone.now()
    values = {
        "release_date": now + timedelta(days=7),
        "can_release_at": now + timedelta(days=3),
    }
    values.update(overrides)
    return PayoutDistributionFactory(**values)


@pytest.mark.django_db
class TestFreezePayout:
    """Tests for freeze_payout."""

    def test_freeze_pending(self):
        """Should freeze a PENDING hold and record why."""
        payout = held_payout()

        EscrowService().freeze_payout(payout.id, "Buyer opened a dispute")

        result = stored(payout)
        assert result.status == PayoutStatus.FROZEN
        assert result.frozen_at is not None
        assert result.hold_reason == "Buyer opened a dispute"
        assert "Buyer opened a dispute" in result.notes
        assert result.version == payout.version + 1

    def test_freeze_failed_clears_retry(self):
        """Should stop a scheduled retry when freezing a FAILED payout."""
        payout = PayoutDistributionFactory(
            status=PayoutStatus.FAILED,
            attempt_count=1,
            next_attempt_at=timezone.now() + timedelta(minutes=5),
        )

        EscrowService().freeze_payout(payout.id, "Chargeback")

        result = stored(payout)
        assert result.status == PayoutStatus.FROZEN
        assert result.next_attempt_at is None

    @pytest.mark.parametrize("status", [PayoutStatus.RELEASED, PayoutStatus.PROCESSING, PayoutStatus.CANCELED])
    def test_cannot_freeze(self, status):
        """Should refuse payouts that are sent, being sent or canceled."""
        payout = PayoutDistributionFactory(status=status)

        with pytest.raises(InvalidStateError):
            EscrowService().freeze_payout(payout.id, "Dispute")

        assert stored(payout).status == status

    def test_unknown_payout(self):
        """Should raise NotFoundError for an unknown id."""
        with pytest.raises(NotFoundError):
            EscrowService().freeze_payout("00000000-0000-0000-0000-000000000000", "Dispute")


@pytest.mark.django_db
class TestUnfreezePayout:
    """Tests for unfreeze_payout."""

    def test_release_to_seller(self):
        """Should return the hold to PENDING and make it due now."""
        payout = held_payout(status=PayoutStatus.FROZEN, frozen_at=timezone.now())
        now = timezone.now()

        EscrowService().unfreeze_payout(payout.id, DisputeResolution.RELEASE_TO_SELLER, now=now)

        result = stored(payout)
        assert result.status == PayoutStatus.PENDING
        assert result.frozen_at is None
        assert result.release_date == now
        assert result.can_release_at == now

    def test_refund_to_buyer(self):
        """Should cancel the hold."""
        payout = held_payout(status=PayoutStatus.FROZEN, frozen_at=timezone.now())

        EscrowService().unfreeze_payout(payout.id, DisputeResolution.REFUND_TO_BUYER)

        result = stored(payout)
        assert result.status == PayoutStatus.CANCELED
        assert result.canceled_at is not None

    def test_unknown_resolution(self):
        """Should refuse resolutions it does not know."""
        payout = held_payout(status=PayoutStatus.FROZEN)

        with pytest.raises(ValidationError) as exc_info:
            EscrowService().unfreeze_payout(payout.id, "split")

        assert exc_info.value.error_code == "INVALID_RESOLUTION"
        assert stored(payout).status == PayoutStatus.FROZEN

    def test_requires_frozen(self):
        """Should refuse a payout that is not frozen."""
        payout = held_payout()

        with pytest.raises(InvalidStateError):
            EscrowService().unfreeze_payout(payout.id, DisputeResolution.RELEASE_TO_SELLER)


@pytest.mark.django_db
class TestExpediteRelease:
    """Tests for expedite_release."""

    def test_before_minimum_hold(self):
        """Should refuse until can_release_at has passed."""
        payout = held_payout()

        with pytest.raises(ValidationError) as exc_info:
            EscrowService().expedite_release(payout.id, "Buyer confirmed delivery")

        assert exc_info.value.error_code == "HOLD_PERIOD_NOT_ELAPSED"
        assert stored(payout).release_date == payout.release_date

    def test_after_minimum_hold(self, engine):
        """Should make the hold due now so the next sweep releases it."""
        payout = held_payout()
        later = timezone.now() + timedelta(days=4)

        EscrowService().expedite_release(payout.id, "Buyer confirmed delivery", now=later)

        result = stored(payout)
        assert result.release_date == later
        assert result.hold_reason == "Buyer confirmed delivery"
        assert payout.id in engine.payout_executor.due_payout_ids(now=later)

    def test_never_delays(self):
        """Should keep a release date that is already earlier than now."""
        past = timezone.now() - timedelta(hours=1)
        payout = held_payout(release_date=past, can_release_at=past)

        EscrowService().expedite_release(payout.id, "Support override")

        assert stored(payout).release_date == past

    def test_frozen_payout(self):
        """Should refuse to expedite a disputed payout."""
        payout = held_payout(status=PayoutStatus.FROZEN, can_release_at=timezone.now() - timedelta(days=1))

        with pytest.raises(InvalidStateError):
            EscrowService().expedite_release(payout.id, "Buyer confirmed delivery")


@pytest.mark.django_db
class TestAdjustForRefund:
    """Tests for adjust_for_refund."""

    def test_full_refund_cancels_open_holds(self):
        """Should cancel PENDING, FAILED and FROZEN holds."""
        pending = PayoutDistributionFactory()
        txn = pending.payment_transaction
        frozen = PayoutDistributionFactory(payment_transaction=txn, status=PayoutStatus.FROZEN)
        service = EscrowService()

        changed = service.adjust_for_refund(service.lock_refund_holds(txn), Decimal("100.00"), fully_refunded=True)

        assert {p.id for p in changed} == {pending.id, frozen.id}
        assert stored(pending).status == PayoutStatus.CANCELED
        assert stored(frozen).status == PayoutStatus.CANCELED

    def test_partial_refund_reduces_hold(self):
        """Should take the refund out of the hold."""
        payout = PayoutDistributionFactory(amount=Decimal("90.60"))
        service = EscrowService()

        service.adjust_for_refund(
            service.lock_refund_holds(payout.payment_transaction), Decimal("30.00"), fully_refunded=False
        )

        result = stored(payout)
        assert result.status == PayoutStatus.PENDING
        assert result.amount == Decimal("60.60")
        assert "Reduced by 30.00" in result.notes

    def test_partial_refund_larger_than_hold_cancels_it(self):
        """Should cancel a hold the refund uses up."""
        payout = PayoutDistributionFactory(amount=Decimal("20.00"))
        service = EscrowService()

        service.adjust_for_refund(
            service.lock_refund_holds(payout.payment_transaction), Decimal("25.00"), fully_refunded=False
        )

        assert stored(payout).status == PayoutStatus.CANCELED

    def test_released_payout_is_untouched(self):
        """Should leave money already sent alone."""
        payout = PayoutDistributionFactory(status=PayoutStatus.RELEASED)
        service = EscrowService()

        changed = service.adjust_for_refund(
            service.lock_refund_holds(payout.payment_transaction), Decimal("100.00"), fully_refunded=True
        )

        assert changed == []
        assert stored(payout).status == PayoutStatus.RELEASED

    def test_in_flight_payout_blocks_refund(self):
        """Should refuse while a payout is being sent."""
        payout = PayoutDistributionFactory(status=PayoutStatus.PROCESSING)

        with pytest.raises(InvalidStateError) as exc_info:
            EscrowService().lock_refund_holds(payout.payment_transaction)

        assert exc_info.value.error_code == "PAYOUT_IN_FLIGHT"
