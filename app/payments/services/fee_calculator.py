"""
Fee calculation.

Platform fee comes from the best PlatformFeeConfig for the transaction type;
gateway fee comes from the provider's adapter. Manual providers (and
payments with no provider yet) carry no gateway fee.

    platform_fee = clamp(amount * pct / 100 + fixed, min_fee, max_fee)
    total_fees   = platform_fee + gateway_fee
    net_amount   = amount - total_fees

All values are Decimal quantized to 0.01, ROUND_HALF_UP.

Usage:
    calculator = FeeCalculator(gateways)
    breakdown = calculator.calculate_fees(
        Decimal("100.00"), TransactionType.MARKETPLACE_ORDER, provider=xendit, currency="MYR"
    )
    breakdown.net_amount  # Decimal("90.60") with 5% platform + 2.9% + 1.50 gateway
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.utils import timezone

from core.services import BaseService
from payments.models import PlatformFeeConfig
from payments.money import ZERO, to_money

if TYPE_CHECKING:
    from datetime import datetime

    from payments.adapters import GatewayRegistry
    from payments.models import PaymentProvider


@dataclass(frozen=True)
class FeeBreakdown:
    """
    Result of a fee calculation.

    Attributes:
        amount: Charged amount
        platform_fee / gateway_fee / total_fees / net_amount: The breakdown
        platform_fee_percentage / platform_fee_fixed: Config that applied
        gateway_fee_percentage / gateway_fee_fixed: Adapter schedule that applied
        fee_config_id: PlatformFeeConfig used, None when no config matched
        provider_code: Provider the gateway fee was computed for
    """

    amount: Decimal
    currency: str
    platform_fee: Decimal
    gateway_fee: Decimal
    total_fees: Decimal
    net_amount: Decimal
    platform_fee_percentage: Decimal = ZERO
    platform_fee_fixed: Decimal = ZERO
    gateway_fee_percentage: Decimal = ZERO
    gateway_fee_fixed: Decimal = ZERO
    fee_config_id: int | None = None
    provider_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            key: (str(value) if isinstance(value, Decimal) else value)
            for key, value in asdict(self).items()
        }


class FeeCalculator(BaseService):
    """Computes platform and gateway fees for an amount."""

    def __init__(self, gateways: GatewayRegistry):
        self.gateways = gateways

    def get_fee_config(self, transaction_type: str, at: datetime | None = None) -> PlatformFeeConfig | None:
        return PlatformFeeConfig.objects.effective_for(transaction_type, at or timezone.now()).first()

    def calculate_platform_fee(
        self,
        amount: Decimal,
        config: PlatformFeeConfig | None,
    ) -> Decimal:
        if config is None:
            return ZERO
        fee = amount * config.fee_percentage / Decimal("100") + config.fee_fixed
        if config.min_fee is not None and fee < config.min_fee:
            fee = config.min_fee
        if config.max_fee is not None and fee > config.max_fee:
            fee = config.max_fee
        return to_money(fee)

    def calculate_gateway_fee(
        self,
        amount: Decimal,
        provider: PaymentProvider | None,
        currency: str,
    ) -> tuple[Decimal, Decimal, Decimal]:
        """Returns (gateway_fee, percentage, fixed)."""
        if provider is None or provider.is_manual:
            return ZERO, ZERO, ZERO
        adapter = self.gateways.get_adapter(provider.provider_code)
        fixed = adapter.FEE_FIXED.get(currency.upper(), ZERO)
        return adapter.calculate_fees(amount, currency), adapter.FEE_PERCENTAGE, fixed

    def calculate_fees(
        self,
        amount: Decimal,
        transaction_type: str,
        provider: PaymentProvider | None = None,
        currency: str | None = None,
        at: datetime | None = None,
    ) -> FeeBreakdown:
        """
        Compute the full fee breakdown.

        Deterministic for a given (amount, transaction_type, provider) and
        config state.
        """
        amount = to_money(amount)
        currency = (currency or getattr(settings, "PAYMENTS_DEFAULT_CURRENCY", "MYR")).upper()

        config = self.get_fee_config(transaction_type, at)
        platform_fee = self.calculate_platform_fee(amount, config)
        gateway_fee, gateway_pct, gateway_fixed = self.calculate_gateway_fee(amount, provider, currency)
        total_fees = to_money(platform_fee + gateway_fee)

        breakdown = FeeBreakdown(
            amount=amount,
            currency=currency,
            platform_fee=platform_fee,
            gateway_fee=gateway_fee,
            total_fees=total_fees,
            net_amount=to_money(amount - total_fees),
            platform_fee_percentage=config.fee_percentage if config else ZERO,
            platform_fee_fixed=config.fee_fixed if config else ZERO,
            gateway_fee_percentage=gateway_pct,
            gateway_fee_fixed=gateway_fixed,
            fee_config_id=config.pk if config else None,
            provider_code=provider.provider_code if provider else None,
        )

        self.get_logger().debug(
            "Calculated fees",
            extra={
                "transaction_type": transaction_type,
                "amount": str(amount),
                "platform_fee": str(platform_fee),
                "gateway_fee": str(gateway_fee),
                "provider": breakdown.provider_code,
            },
        )
        return breakdown
