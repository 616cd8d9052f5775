"""
Payment method catalog shown to payers.

Listing omits account details; fetching a single method by code includes
them so a manual payer can see where to transfer.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from core.services import BaseService
from payments.exceptions import NotFoundError
from payments.models import PaymentMethodConfig


def format_payment_method(method: PaymentMethodConfig, include_account_details: bool = False) -> dict[str, Any]:
    data = {
        "id": method.pk,
        "method_code": method.method_code,
        "method_name": method.method_name,
        "display_name": method.display_name,
        "description": method.description,
        "category": method.category,
        "method_type": method.method_type,
        "is_manual": method.is_manual,
        "is_default": method.is_default,
        "requires_proof": method.requires_proof,
        "processing_time": method.processing_time,
        "available_countries": method.available_countries,
        "available_currencies": method.available_currencies,
        "min_amount": str(method.min_amount) if method.min_amount is not None else None,
        "max_amount": str(method.max_amount) if method.max_amount is not None else None,
        "provider": method.provider.provider_code if method.provider_id else None,
    }
    if include_account_details and method.account_details:
        data["account_details"] = method.account_details
    return data


class PaymentMethodService(BaseService):
    """Read access to PaymentMethodConfig."""

    @classmethod
    def get_available_payment_methods(
        cls,
        country: str | None = None,
        currency: str | None = None,
        amount: Decimal | None = None,
    ) -> list[dict[str, Any]]:
        methods = PaymentMethodConfig.objects.available(country=country, currency=currency, amount=amount)
        return [format_payment_method(method) for method in methods]

    @classmethod
    def get_payment_method(cls, method_code: str) -> dict[str, Any]:
        """
        Raises:
            NotFoundError: No active method with this code
        """
        method = (
            PaymentMethodConfig.objects.select_related("provider")
            .filter(method_code=method_code, is_active=True)
            .first()
        )
        if method is None:
            raise NotFoundError(
                f"Payment method {method_code} not found",
                error_code="PAYMENT_METHOD_NOT_FOUND",
                details={"payment_method": method_code},
            )
        return format_payment_method(method, include_account_details=True)
