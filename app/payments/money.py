"""
Decimal money helpers.

All amounts are ``Decimal`` with two places, rounded half-up. Gateways that
bill in minor units convert at the adapter boundary.

Usage:
    from payments.money import to_money, to_minor_units

    fee = to_money(Decimal("100") * Decimal("2.9") / 100)  # Decimal("2.90")
    to_minor_units(Decimal("12.34"))  # 1234
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# ISO 4217 currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "VND", "IDR", "CLP", "XAF", "XOF"})


def to_money(value) -> Decimal:
    """Quantize to 0.01 with ROUND_HALF_UP. Accepts Decimal, int or str."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal, currency: str = "") -> int:
    """Convert a decimal amount into the gateway's smallest currency unit."""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(to_money(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(value: int, currency: str = "") -> Decimal:
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return to_money(value)
    return to_money(Decimal(value) / 100)
