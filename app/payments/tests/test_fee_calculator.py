"""
Tests for FeeCalculator.

Covers the platform fee rule selection, the gateway fee schedule and the
derived totals.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from payments.state_machines import TransactionType
from payments.tests.factories import PlatformFeeConfigFactory


@pytest.mark.django_db
class TestCalculateFees:
    """Tests for FeeCalculator.calculate_fees."""

    def test_marketplace_breakdown(self, engine, xendit_provider, marketplace_fee):
        """Should charge 5% platform and 2.9% + 1.50 gateway on 100 MYR."""
        breakdown = engine.fee_calculator.calculate_fees(
            Decimal("100.00"),
            TransactionType.MARKETPLACE_ORDER,
            provider=xendit_provider,
            currency="MYR",
        )

        assert breakdown.platform_fee == Decimal("5.00")
        assert breakdown.gateway_fee == Decimal("4.40")
        assert breakdown.total_fees == Decimal("9.40")
        assert breakdown.net_amount == Decimal("90.60")
        assert breakdown.fee_config_id == marketplace_fee.pk
        assert breakdown.provider_code == "xendit"

    def test_totals_always_add_up(self, engine, xendit_provider, marketplace_fee):
        """Should keep total = platform + gateway and net = amount - total."""
        for raw in ("1.00", "19.99", "333.33", "12345.67"):
            breakdown = engine.fee_calculator.calculate_fees(
                Decimal(raw), TransactionType.MARKETPLACE_ORDER, provider=xendit_provider, currency="MYR"
            )

            assert breakdown.total_fees == breakdown.platform_fee + breakdown.gateway_fee
            assert breakdown.net_amount == breakdown.amount - breakdown.total_fees

    def test_is_deterministic(self, engine, xendit_provider, marketplace_fee):
        """Should return identical breakdowns for identical inputs."""
        first = engine.fee_calculator.calculate_fees(
            Decimal("57.35"), TransactionType.MARKETPLACE_ORDER, provider=xendit_provider, currency="MYR"
        )
        second = engine.fee_calculator.calculate_fees(
            Decimal("57.35"), TransactionType.MARKETPLACE_ORDER, provider=xendit_provider, currency="MYR"
        )

        assert first == second

    def test_rounds_half_up(self, engine, marketplace_fee):
        """Should round the platform fee half-up to cents."""
        breakdown = engine.fee_calculator.calculate_fees(Decimal("0.10"), TransactionType.MARKETPLACE_ORDER)

        # 5% of 0.10 = 0.005
        assert breakdown.platform_fee == Decimal("0.01")

    def test_manual_provider_has_no_gateway_fee(self, engine, manual_provider, marketplace_fee):
        """Should charge only the platform fee for manual payments."""
        breakdown = engine.fee_calculator.calculate_fees(
            Decimal("100.00"), TransactionType.MARKETPLACE_ORDER, provider=manual_provider, currency="MYR"
        )

        assert breakdown.gateway_fee == Decimal("0.00")
        assert breakdown.net_amount == Decimal("95.00")

    def test_no_config_means_no_platform_fee(self, engine, xendit_provider):
        """Should charge no platform fee when no config applies."""
        breakdown = engine.fee_calculator.calculate_fees(
            Decimal("100.00"), TransactionType.DONATION, provider=xendit_provider, currency="MYR"
        )

        assert breakdown.platform_fee == Decimal("0.00")
        assert breakdown.fee_config_id is None
        assert breakdown.gateway_fee == Decimal("4.40")

    def test_min_fee_clamp(self, engine):
        """Should raise small fees to the minimum."""
        PlatformFeeConfigFactory(transaction_type=TransactionType.EVENT_TICKET, min_fee=Decimal("2.00"))

        breakdown = engine.fee_calculator.calculate_fees(Decimal("10.00"), TransactionType.EVENT_TICKET)

        assert breakdown.platform_fee == Decimal("2.00")

    def test_max_fee_clamp(self, engine):
        """Should cap large fees at the maximum."""
        PlatformFeeConfigFactory(transaction_type=TransactionType.EVENT_TICKET, max_fee=Decimal("20.00"))

        breakdown = engine.fee_calculator.calculate_fees(Decimal("1000.00"), TransactionType.EVENT_TICKET)

        assert breakdown.platform_fee == Decimal("20.00")

    def test_fixed_component(self, engine):
        """Should add the fixed platform fee after the percentage."""
        PlatformFeeConfigFactory(
            transaction_type=TransactionType.SUBSCRIPTION,
            fee_percentage=Decimal("3.00"),
            fee_fixed=Decimal("0.50"),
        )

        breakdown = engine.fee_calculator.calculate_fees(Decimal("100.00"), TransactionType.SUBSCRIPTION)

        assert breakdown.platform_fee == Decimal("3.50")

    def test_expired_config_is_ignored(self, engine):
        """Should skip configs whose window has ended."""
        now = timezone.now()
        PlatformFeeConfigFactory(
            transaction_type=TransactionType.EVENT_TICKET,
            effective_from=now - timedelta(days=30),
            effective_until=now - timedelta(days=1),
        )

        breakdown = engine.fee_calculator.calculate_fees(Decimal("100.00"), TransactionType.EVENT_TICKET)

        assert breakdown.platform_fee == Decimal("0.00")

    def test_to_dict_stringifies_money(self, engine, marketplace_fee):
        """Should render Decimals as strings."""
        payload = engine.fee_calculator.calculate_fees(Decimal("100.00"), TransactionType.MARKETPLACE_ORDER).to_dict()

        assert payload["platform_fee"] == "5.00"
        assert payload["net_amount"] == "95.00"
