"""
Provider selection.

Used when the payer names neither a payment method nor a provider. Active
routing rules are evaluated highest priority first; the first rule whose
conditions all match, and whose provider is active, wins. Otherwise the
active default provider with the lowest priority_order is used, then any
active provider.

Condition forms (per routing-context field):
    {"min": "10", "max": "5000"}   numeric range, inclusive
    {"in": ["MYR", "SGD"]}         membership
    {"regex": "^(MY|SG)$"}         regular expression, searched in the value
    "MARKETPLACE_ORDER"            equality

Fields the context does not carry are skipped. A rule whose conditions cannot
be evaluated (bad pattern, non-numeric bound) is logged and never matches.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from core.services import BaseService
from payments.exceptions import NotFoundError
from payments.models import PaymentProvider, ProviderRoutingRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutingContext:
    amount: Decimal
    currency: str
    transaction_type: str
    country: str | None = None

    def as_fields(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


def _to_decimal(value: Any) -> Decimal | None:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def condition_matches(value: Any, condition: Any) -> bool:
    """Evaluate one routing condition against one context value."""
    if isinstance(condition, dict):
        if "min" in condition or "max" in condition:
            number = _to_decimal(value)
            if number is None:
                return False
            if "min" in condition and number < Decimal(str(condition["min"])):
                return False
            if "max" in condition and number > Decimal(str(condition["max"])):
                return False
            return True
        if "in" in condition:
            options = condition["in"]
            if isinstance(value, str):
                return value.upper() in {str(o).upper() for o in options}
            return value in options
        if "regex" in condition:
            return re.search(condition["regex"], str(value)) is not None
        return False

    if isinstance(value, str) and isinstance(condition, str):
        return value.upper() == condition.upper()
    return value == condition


def rule_matches(conditions: dict[str, Any], context: RoutingContext, rule_name: str = "") -> bool:
    fields = context.as_fields()
    for field_name, condition in (conditions or {}).items():
        if field_name not in fields:
            continue
        try:
            matched = condition_matches(fields[field_name], condition)
        except (re.error, InvalidOperation, TypeError, ValueError) as e:
            logger.warning(
                "Routing rule condition is invalid, treating rule as not matching",
                extra={"rule": rule_name, "field": field_name, "error": str(e)},
            )
            return False
        if not matched:
            return False
    return True


class ProviderSelector(BaseService):
    """Chooses a PaymentProvider for a routing context."""

    def select(self, context: RoutingContext) -> PaymentProvider:
        """
        Raises:
            NotFoundError: No active provider is configured
        """
        logger = self.get_logger()

        rules = ProviderRoutingRule.objects.filter(is_active=True).select_related("provider").order_by("-priority", "id")
        for rule in rules:
            if not rule.provider.is_active:
                continue
            if rule_matches(rule.conditions, context, rule_name=rule.name):
                logger.info(
                    "Provider selected by routing rule",
                    extra={"rule": rule.name, "provider": rule.provider.provider_code},
                )
                return rule.provider

        active = PaymentProvider.objects.filter(is_active=True).order_by("priority_order", "id")
        provider = active.filter(is_default=True).first() or active.first()
        if provider is None:
            raise NotFoundError(
                "No active payment provider is configured",
                error_code="PROVIDER_NOT_FOUND",
                details={"currency": context.currency, "transaction_type": context.transaction_type},
            )

        logger.info(
            "Provider selected by fallback",
            extra={"provider": provider.provider_code, "is_default": provider.is_default},
        )
        return provider
