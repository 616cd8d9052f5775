"""
Provider and payment method configuration.

- PaymentProvider: a gateway (stripe, xendit) or the manual review channel
- ProviderRoutingRule: condition-based routing used when the payer names
  neither a method nor a provider
- PaymentMethodConfig: what the payer picks in the checkout UI; maps a
  method code to a provider and decides manual vs gateway handling

These are read-mostly tables maintained through the admin.
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q

from core.models import BaseModel
from payments.state_machines import MethodType


class PaymentProvider(BaseModel):
    """
    A payment channel.

    Fields:
        provider_code: Registry key ("stripe", "xendit", "manual")
        is_manual: Payments are verified by human review, not a gateway
        is_default / priority_order: Fallback selection (lowest order first)
        supported_currencies: Upper-case ISO codes; empty means any
        settings: Non-secret adapter settings shown in admin
    """

    provider_code = models.CharField(max_length=30, unique=True)
    provider_name = models.CharField(max_length=100)
    is_manual = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True, db_index=True)
    is_default = models.BooleanField(default=False)
    priority_order = models.PositiveIntegerField(default=100)
    supported_currencies = models.JSONField(default=list, blank=True)
    settings = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["priority_order", "provider_code"]
        verbose_name = "Payment Provider"
        verbose_name_plural = "Payment Providers"

    def __str__(self) -> str:
        return f"{self.provider_name} ({self.provider_code})"

    def supports_currency(self, currency: str) -> bool:
        return not self.supported_currencies or currency.upper() in self.supported_currencies


class ProviderRoutingRule(BaseModel):
    """
    Routes a payment to a provider when all conditions match.

    ``conditions`` maps a routing-context field to a condition:

        {
            "currency": {"in": ["MYR", "SGD"]},
            "amount": {"min": "10.00", "max": "5000"},
            "transaction_type": "MARKETPLACE_ORDER",
            "country": {"regex": "^(MY|SG)$"}
        }

    Fields absent from the routing context are skipped.
    """

    provider = models.ForeignKey(
        PaymentProvider,
        on_delete=models.CASCADE,
        related_name="routing_rules",
    )
    name = models.CharField(max_length=100)
    priority = models.IntegerField(default=0, help_text="Higher is evaluated first")
    conditions = models.JSONField(default=dict, blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["-priority", "id"]
        verbose_name = "Provider Routing Rule"
        verbose_name_plural = "Provider Routing Rules"

    def __str__(self) -> str:
        return f"{self.name} -> {self.provider.provider_code}"


class PaymentMethodConfigQuerySet(models.QuerySet):
    def available(self, country: str | None = None, currency: str | None = None, amount=None):
        """Active methods filtered by country, currency and amount limits."""
        qs = self.filter(is_active=True)
        if amount is not None:
            qs = qs.filter(Q(min_amount__isnull=True) | Q(min_amount__lte=amount))
            qs = qs.filter(Q(max_amount__isnull=True) | Q(max_amount__gte=amount))
        methods = list(qs.select_related("provider").order_by("display_order", "method_code"))
        # JSON list membership is filtered in Python so it works on every backend
        if country:
            methods = [m for m in methods if not m.available_countries or country.upper() in m.available_countries]
        if currency:
            methods = [m for m in methods if not m.available_currencies or currency.upper() in m.available_currencies]
        return methods


class PaymentMethodConfig(BaseModel):
    """
    A payment method offered to payers.

    Fields:
        method_code: Stable key sent by clients ("card", "fpx", "duitnow_qr")
        method_type: gateway, manual_bank or manual_ewallet
        provider: Provider that processes this method
        account_details: Where manual payers send money (bank account, QR)
        requires_proof: Manual payment must be proven by an upload
        available_countries / available_currencies: Empty means all
        min_amount / max_amount: Optional limits
    """

    method_code = models.CharField(max_length=50, unique=True)
    method_type = models.CharField(
        max_length=20,
        choices=MethodType.choices,
        default=MethodType.GATEWAY,
    )
    method_name = models.CharField(max_length=100)
    display_name = models.CharField(max_length=100)
    description = models.TextField(blank=True, default="")
    category = models.CharField(max_length=50, blank=True, default="")
    display_order = models.PositiveIntegerField(default=100)
    is_active = models.BooleanField(default=True)
    is_default = models.BooleanField(default=False)
    available_countries = models.JSONField(default=list, blank=True)
    available_currencies = models.JSONField(default=list, blank=True)
    provider = models.ForeignKey(
        PaymentProvider,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payment_methods",
    )
    account_details = models.JSONField(default=dict, blank=True)
    requires_proof = models.BooleanField(default=False)
    processing_time = models.CharField(max_length=100, blank=True, default="")
    min_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    max_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    objects = PaymentMethodConfigQuerySet.as_manager()

    class Meta:
        ordering = ["display_order", "method_code"]
        verbose_name = "Payment Method"
        verbose_name_plural = "Payment Methods"

    def __str__(self) -> str:
        return f"{self.display_name} ({self.method_code})"

    @property
    def is_manual(self) -> bool:
        return self.method_type.startswith("manual_")
