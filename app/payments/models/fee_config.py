"""
PlatformFeeConfig model: the platform's cut per transaction type.

The active, date-valid config with the highest priority wins; ties go to the
most recently effective one.

Usage:
    PlatformFeeConfig.objects.create(
        name="Marketplace standard",
        transaction_type=TransactionType.MARKETPLACE_ORDER,
        fee_percentage=Decimal("5.00"),
        effective_from=timezone.now(),
    )
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q

from core.models import BaseModel
from payments.money import ZERO
from payments.state_machines import TransactionType


class PlatformFeeConfigQuerySet(models.QuerySet):
    def effective_for(self, transaction_type: str, at):
        """Active configs for a type whose window contains ``at``, best first."""
        return (
            self.filter(is_active=True, transaction_type=transaction_type, effective_from__lte=at)
            .filter(Q(effective_until__isnull=True) | Q(effective_until__gt=at))
            .order_by("-priority", "-effective_from", "-id")
        )


class PlatformFeeConfig(BaseModel):
    """
    Platform fee rule for one transaction type.

    Fields:
        fee_percentage: Percent of the amount (5.00 means 5%)
        fee_fixed: Flat amount added after the percentage
        min_fee / max_fee: Optional clamp bounds
        effective_from / effective_until: Validity window (until is exclusive)
        priority: Higher wins when windows overlap
    """

    name = models.CharField(max_length=100)
    transaction_type = models.CharField(
        max_length=30,
        choices=TransactionType.choices,
        db_index=True,
    )
    fee_percentage = models.DecimalField(max_digits=5, decimal_places=2, default=ZERO)
    fee_fixed = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO)
    min_fee = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    max_fee = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    effective_from = models.DateTimeField()
    effective_until = models.DateTimeField(null=True, blank=True)
    priority = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)

    objects = PlatformFeeConfigQuerySet.as_manager()

    class Meta:
        ordering = ["transaction_type", "-priority"]
        verbose_name = "Platform Fee Config"
        verbose_name_plural = "Platform Fee Configs"
        constraints = [
            models.CheckConstraint(
                condition=Q(fee_percentage__gte=0) & Q(fee_fixed__gte=0),
                name="fee_config_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.transaction_type}: {self.fee_percentage}% + {self.fee_fixed})"
