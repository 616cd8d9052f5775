"""
Tests for payment models.

Test Classes:
    TestPaymentTransactionTransitions: django-fsm transitions and closure
    TestPaymentTransactionConstraints: Database-level invariants
    TestPayoutDistributionTransitions: Payout lifecycle
    TestCatalogModels: Provider currencies, method availability, fee windows
    TestWebhookEvent: Processing status helpers
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import IntegrityError
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from payments.models import PaymentMethodConfig, PlatformFeeConfig
from payments.models.webhook_event import MAX_WEBHOOK_RETRIES
from payments.services import FeeBreakdown
from payments.state_machines import (
    TRANSACTION_TRANSITIONS,
    MethodType,
    PayoutStatus,
    TransactionStatus,
    TransactionType,
    WebhookEventStatus,
)
from payments.tests.factories import (
    PaymentMethodConfigFactory,
    PaymentProviderFactory,
    PaymentTransactionFactory,
    PayoutDistributionFactory,
    PlatformFeeConfigFactory,
    WebhookEventFactory,
)

TRANSITION_METHODS = {
    TransactionStatus.PROCESSING: lambda txn: txn.mark_processing(),
    TransactionStatus.SUCCEEDED: lambda txn: txn.succeed(),
    TransactionStatus.FAILED: lambda txn: txn.fail("declined"),
    TransactionStatus.CANCELED: lambda txn: txn.cancel("expired"),
}


@pytest.mark.django_db
class TestPaymentTransactionTransitions:
    """Tests for PaymentTransaction state transitions."""

    def test_succeed_stamps_processed_at(self):
        """Should move PENDING to SUCCEEDED and record the time."""
        txn = PaymentTransactionFactory()

        txn.succeed()

        assert txn.status == TransactionStatus.SUCCEEDED
        assert txn.processed_at is not None

    def test_fail_records_reason(self):
        """Should keep the failure reason."""
        txn = PaymentTransactionFactory(status=TransactionStatus.PROCESSING)

        txn.fail("Card declined")

        assert txn.status == TransactionStatus.FAILED
        assert txn.failure_reason == "Card declined"

    def test_cancel_only_from_pending(self):
        """Should not cancel a payment already being processed."""
        txn = PaymentTransactionFactory(status=TransactionStatus.PROCESSING)

        with pytest.raises(TransitionNotAllowed):
            txn.cancel("expired")

    def test_partial_refund(self):
        """Should land in PARTIALLY_REFUNDED while money remains."""
        txn = PaymentTransactionFactory(status=TransactionStatus.SUCCEEDED)

        txn.apply_refund(Decimal("30.00"))

        assert txn.status == TransactionStatus.PARTIALLY_REFUNDED
        assert txn.refunded_amount == Decimal("30.00")
        assert txn.remaining_refundable == Decimal("70.00")

    def test_refund_of_remainder_is_full_refund(self):
        """Should land in REFUNDED once everything is returned."""
        txn = PaymentTransactionFactory(
            status=TransactionStatus.PARTIALLY_REFUNDED,
            refunded_amount=Decimal("30.00"),
        )

        txn.apply_refund(Decimal("70.00"))

        assert txn.status == TransactionStatus.REFUNDED
        assert txn.refunded_at is not None

    def test_status_cannot_be_assigned_directly(self):
        """Should only change status through transitions."""
        txn = PaymentTransactionFactory()

        with pytest.raises(AttributeError):
            txn.status = TransactionStatus.SUCCEEDED

    @pytest.mark.parametrize("source", list(TransactionStatus.values))
    @pytest.mark.parametrize("target", list(TRANSITION_METHODS))
    def test_transition_table_matches_model(self, source, target):
        """Should allow exactly the transitions listed in TRANSACTION_TRANSITIONS."""
        txn = PaymentTransactionFactory(status=source)
        allowed = target in TRANSACTION_TRANSITIONS[source]

        if allowed:
            TRANSITION_METHODS[target](txn)
            assert txn.status == target
        else:
            with pytest.raises(TransitionNotAllowed):
                TRANSITION_METHODS[target](txn)
            assert txn.status == source

    @pytest.mark.parametrize(
        "terminal",
        [TransactionStatus.FAILED, TransactionStatus.CANCELED, TransactionStatus.REFUNDED],
    )
    def test_terminal_states_are_closed(self, terminal):
        """Should refuse every transition out of a terminal state."""
        txn = PaymentTransactionFactory(status=terminal, refunded_amount=Decimal("0.00"))

        for transition in TRANSITION_METHODS.values():
            with pytest.raises(TransitionNotAllowed):
                transition(txn)
        with pytest.raises(TransitionNotAllowed):
            txn.apply_refund(Decimal("1.00"))
        assert txn.status == terminal

    def test_apply_fees_derives_totals(self):
        """Should store total and net derived from the breakdown."""
        txn = PaymentTransactionFactory()
        breakdown = FeeBreakdown(
            amount=Decimal("100.00"),
            currency="MYR",
            platform_fee=Decimal("5.00"),
            gateway_fee=Decimal("4.40"),
            total_fees=Decimal("9.40"),
            net_amount=Decimal("90.60"),
        )

        txn.apply_fees(breakdown)

        assert txn.total_fees == Decimal("9.40")
        assert txn.net_amount == Decimal("90.60")


@pytest.mark.django_db
class TestPaymentTransactionConstraints:
    """Tests for database constraints on PaymentTransaction."""

    def test_single_pending_per_reference(self, payer):
        """Should refuse a second PENDING row for the same user and reference."""
        PaymentTransactionFactory(user=payer, reference_type="order", reference_id="order-9")

        with pytest.raises(IntegrityError):
            PaymentTransactionFactory(user=payer, reference_type="order", reference_id="order-9")

    def test_pending_uniqueness_ignores_finished_rows(self, payer):
        """Should allow a new PENDING row once the old one has failed."""
        PaymentTransactionFactory(
            user=payer,
            reference_id="order-9",
            status=TransactionStatus.FAILED,
        )

        txn = PaymentTransactionFactory(user=payer, reference_id="order-9")

        assert txn.status == TransactionStatus.PENDING

    def test_amount_must_be_positive(self):
        """Should refuse zero amounts at the database."""
        with pytest.raises(IntegrityError):
            PaymentTransactionFactory(amount=Decimal("0.00"))

    def test_refunded_amount_cannot_exceed_amount(self):
        """Should refuse over-refunded rows at the database."""
        with pytest.raises(IntegrityError):
            PaymentTransactionFactory(
                status=TransactionStatus.REFUNDED,
                refunded_amount=Decimal("100.01"),
            )


@pytest.mark.django_db
class TestPayoutDistributionTransitions:
    """Tests for PayoutDistribution state transitions."""

    def test_start_processing_counts_attempt(self):
        """Should count the attempt and clear the retry time."""
        payout = PayoutDistributionFactory(next_attempt_at=timezone.now())

        payout.start_processing()

        assert payout.status == PayoutStatus.PROCESSING
        assert payout.attempt_count == 1
        assert payout.next_attempt_at is None

    def test_release_records_gateway_id(self):
        """Should record the provider transfer id."""
        payout = PayoutDistributionFactory(status=PayoutStatus.PROCESSING, failure_reason="earlier failure")

        payout.release("disb_123")

        assert payout.status == PayoutStatus.RELEASED
        assert payout.gateway_payout_id == "disb_123"
        assert payout.failure_reason == ""
        assert payout.released_at is not None

    def test_failed_payout_can_be_retried(self):
        """Should allow FAILED -> PROCESSING for a retry."""
        payout = PayoutDistributionFactory(status=PayoutStatus.FAILED, attempt_count=1)

        payout.start_processing()

        assert payout.status == PayoutStatus.PROCESSING
        assert payout.attempt_count == 2

    def test_released_payout_is_final(self):
        """Should not process a released payout again."""
        payout = PayoutDistributionFactory(status=PayoutStatus.RELEASED)

        with pytest.raises(TransitionNotAllowed):
            payout.start_processing()

    def test_frozen_payout_cannot_be_processed(self):
        """Should block execution of a frozen hold until it is unfrozen."""
        payout = PayoutDistributionFactory()
        payout.freeze("Dispute opened")

        with pytest.raises(TransitionNotAllowed):
            payout.start_processing()

    def test_canceled_payout_is_final(self):
        """Should not reopen a canceled hold."""
        payout = PayoutDistributionFactory()
        payout.cancel("Payment refunded")

        assert payout.status == PayoutStatus.CANCELED
        with pytest.raises(TransitionNotAllowed):
            payout.freeze("Dispute opened")

    def test_recover_rolls_back_attempt(self):
        """Should return a stuck payout to FAILED without counting the attempt."""
        payout = PayoutDistributionFactory(status=PayoutStatus.PROCESSING, attempt_count=2)

        payout.recover("Processing timed out")

        assert payout.status == PayoutStatus.FAILED
        assert payout.attempt_count == 1
        assert payout.next_attempt_at is not None
        assert payout.notes.endswith("Processing timed out")

    def test_one_payout_per_recipient(self, seller):
        """Should refuse a second hold for the same transaction and recipient."""
        payout = PayoutDistributionFactory(recipient=seller)

        with pytest.raises(IntegrityError):
            PayoutDistributionFactory(recipient=seller, payment_transaction=payout.payment_transaction)


@pytest.mark.django_db
class TestCatalogModels:
    """Tests for providers, methods and fee configs."""

    def test_provider_with_no_currency_list_accepts_any(self):
        """Should treat an empty currency list as unrestricted."""
        provider = PaymentProviderFactory(provider_code="manual", supported_currencies=[])

        assert provider.supports_currency("IDR")

    def test_provider_currency_check_is_case_insensitive(self):
        """Should match lower-case currency codes."""
        provider = PaymentProviderFactory(supported_currencies=["MYR"])

        assert provider.supports_currency("myr")
        assert not provider.supports_currency("USD")

    def test_manual_method_type(self):
        """Should flag manual_* method types as manual."""
        method = PaymentMethodConfigFactory(method_type=MethodType.MANUAL_EWALLET)

        assert method.is_manual

    def test_available_methods_respect_limits(self):
        """Should drop inactive methods and those outside amount, country or currency limits."""
        PaymentMethodConfigFactory(method_code="card", display_order=1)
        PaymentMethodConfigFactory(method_code="fpx", available_countries=["MY"], display_order=2)
        PaymentMethodConfigFactory(method_code="big_only", min_amount=Decimal("500.00"))
        PaymentMethodConfigFactory(method_code="sgd_only", available_currencies=["SGD"])
        PaymentMethodConfigFactory(method_code="retired", is_active=False)

        methods = PaymentMethodConfig.objects.available(country="MY", currency="MYR", amount=Decimal("100"))

        assert [m.method_code for m in methods] == ["card", "fpx"]

    def test_fee_config_window_and_priority(self):
        """Should pick the highest-priority config whose window contains the time."""
        now = timezone.now()
        PlatformFeeConfigFactory(fee_percentage=Decimal("5.00"), priority=0)
        promo = PlatformFeeConfigFactory(fee_percentage=Decimal("2.00"), priority=10)
        PlatformFeeConfigFactory(
            fee_percentage=Decimal("1.00"),
            priority=20,
            effective_from=now - timedelta(days=10),
            effective_until=now - timedelta(days=5),
        )

        effective = PlatformFeeConfig.objects.effective_for(TransactionType.MARKETPLACE_ORDER, now).first()

        assert effective == promo


@pytest.mark.django_db
class TestWebhookEvent:
    """Tests for WebhookEvent status helpers."""

    def test_mark_processing_counts_attempts(self):
        """Should count each processing attempt."""
        event = WebhookEventFactory()

        event.mark_processing()

        assert event.status == WebhookEventStatus.PROCESSING
        assert event.retry_count == 1

    def test_can_retry_until_cap(self):
        """Should stop retrying at the cap."""
        retryable = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=MAX_WEBHOOK_RETRIES - 1)
        exhausted = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=MAX_WEBHOOK_RETRIES)

        assert retryable.can_retry
        assert not exhausted.can_retry

    def test_unique_per_provider(self):
        """Should store an event id once per provider."""
        WebhookEventFactory(provider_code="xendit", event_id="evt_1")

        with pytest.raises(IntegrityError):
            WebhookEventFactory(provider_code="xendit", event_id="evt_1")
