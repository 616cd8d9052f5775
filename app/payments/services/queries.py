"""
Read-side queries for transactions and payouts.

Both list operations return a page of rows plus a summary computed over the
whole filtered set (not just the page).

Usage:
    page = TransactionQueryService.list_user_transactions(
        user, TransactionQuery(status=TransactionStatus.SUCCEEDED, limit=50)
    )
    page.summary["total_amount"]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.db.models import Count, Q, Sum

from core.helpers import calculate_pagination, normalize_page
from core.services import BaseService
from payments.exceptions import ValidationError
from payments.models import PaymentTransaction, PayoutDistribution
from payments.money import ZERO, to_money
from payments.state_machines import PayoutStatus, RecipientType, TransactionStatus, TransactionType

if TYPE_CHECKING:
    from django.db.models import QuerySet

    from authentication.models import User


MAX_PAGE_SIZE = 100


def _money(value: Decimal | None) -> Decimal:
    return to_money(value) if value is not None else ZERO


# =============================================================================
# Transactions
# =============================================================================


@dataclass
class TransactionQuery:
    status: str | None = None
    transaction_type: str | None = None
    provider: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    page: int = 1
    limit: int = 20

    def __post_init__(self) -> None:
        if self.status and self.status not in TransactionStatus.values:
            raise ValidationError(
                f"Unknown status: {self.status}",
                details={"supported": list(TransactionStatus.values)},
            )
        if self.transaction_type and self.transaction_type not in TransactionType.values:
            raise ValidationError(
                f"Unknown transaction type: {self.transaction_type}",
                details={"supported": list(TransactionType.values)},
            )
        if self.min_amount is not None and self.max_amount is not None and self.min_amount > self.max_amount:
            raise ValidationError("min_amount cannot exceed max_amount")
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValidationError("date_from cannot be after date_to")


@dataclass
class TransactionPage:
    items: list[PaymentTransaction] = field(default_factory=list)
    pagination: dict[str, Any] = field(default_factory=dict)
    summary: dict[str, Any] = field(default_factory=dict)


class TransactionQueryService(BaseService):
    """Filtered, paginated transaction history."""

    @classmethod
    def filter_queryset(cls, queryset: QuerySet, query: TransactionQuery) -> QuerySet:
        if query.status:
            queryset = queryset.filter(status=query.status)
        if query.transaction_type:
            queryset = queryset.filter(transaction_type=query.transaction_type)
        if query.provider:
            queryset = queryset.filter(provider__provider_code=query.provider)
        if query.date_from:
            queryset = queryset.filter(created_at__gte=query.date_from)
        if query.date_to:
            queryset = queryset.filter(created_at__lte=query.date_to)
        if query.min_amount is not None:
            queryset = queryset.filter(amount__gte=query.min_amount)
        if query.max_amount is not None:
            queryset = queryset.filter(amount__lte=query.max_amount)
        return queryset

    @classmethod
    def summarize(cls, queryset: QuerySet) -> dict[str, Any]:
        totals = queryset.aggregate(
            total_amount=Sum("amount"),
            total_fees=Sum("total_fees"),
            total_refunded=Sum("refunded_amount"),
            count=Count("id"),
            succeeded_count=Count("id", filter=Q(status=TransactionStatus.SUCCEEDED)),
            pending_count=Count(
                "id",
                filter=Q(status__in=[TransactionStatus.PENDING, TransactionStatus.PROCESSING]),
            ),
            failed_count=Count("id", filter=Q(status=TransactionStatus.FAILED)),
        )
        return {
            "total_amount": _money(totals["total_amount"]),
            "total_fees": _money(totals["total_fees"]),
            "total_refunded": _money(totals["total_refunded"]),
            "count": totals["count"],
            "succeeded_count": totals["succeeded_count"],
            "pending_count": totals["pending_count"],
            "failed_count": totals["failed_count"],
        }

    @classmethod
    def list_user_transactions(cls, user: User, query: TransactionQuery | None = None) -> TransactionPage:
        query = query or TransactionQuery()
        page, limit = normalize_page(query.page, query.limit, max_limit=MAX_PAGE_SIZE)

        queryset = cls.filter_queryset(
            PaymentTransaction.objects.filter(user=user).select_related("provider"),
            query,
        )
        summary = cls.summarize(queryset)
        pagination = calculate_pagination(total=summary["count"], page=page, per_page=limit)
        offset = (pagination["page"] - 1) * limit
        items = list(queryset.order_by("-created_at", "-id")[offset : offset + limit])

        return TransactionPage(items=items, pagination=pagination, summary=summary)


# =============================================================================
# Payouts
# =============================================================================


@dataclass
class PayoutQuery:
    status: str | None = None
    recipient_type: str | None = None
    page: int = 1
    limit: int = 20

    def __post_init__(self) -> None:
        if self.status and self.status not in PayoutStatus.values:
            raise ValidationError(
                f"Unknown payout status: {self.status}",
                details={"supported": list(PayoutStatus.values)},
            )
        if self.recipient_type and self.recipient_type not in RecipientType.values:
            raise ValidationError(
                f"Unknown recipient type: {self.recipient_type}",
                details={"supported": list(RecipientType.values)},
            )


@dataclass
class PayoutPage:
    items: list[PayoutDistribution] = field(default_factory=list)
    pagination: dict[str, Any] = field(default_factory=dict)
    summary: dict[str, Any] = field(default_factory=dict)


class PayoutQueryService(BaseService):
    """Payout holds owed to a user."""

    @classmethod
    def list_user_payouts(cls, user: User, query: PayoutQuery | None = None) -> PayoutPage:
        query = query or PayoutQuery()
        page, limit = normalize_page(query.page, query.limit, max_limit=MAX_PAGE_SIZE)

        queryset = PayoutDistribution.objects.filter(recipient=user).select_related("payment_transaction")
        if query.status:
            queryset = queryset.filter(status=query.status)
        if query.recipient_type:
            queryset = queryset.filter(recipient_type=query.recipient_type)

        totals = queryset.aggregate(
            total_amount=Sum("amount"),
            pending_amount=Sum(
                "amount",
                filter=Q(
                    status__in=[PayoutStatus.PENDING, PayoutStatus.PROCESSING, PayoutStatus.FAILED, PayoutStatus.FROZEN]
                ),
            ),
            released_amount=Sum("amount", filter=Q(status=PayoutStatus.RELEASED)),
            count=Count("id"),
        )
        summary = {
            "total_amount": _money(totals["total_amount"]),
            "pending_amount": _money(totals["pending_amount"]),
            "released_amount": _money(totals["released_amount"]),
            "count": totals["count"],
        }

        pagination = calculate_pagination(total=summary["count"], page=page, per_page=limit)
        offset = (pagination["page"] - 1) * limit
        items = list(queryset.order_by("release_date", "id")[offset : offset + limit])

        return PayoutPage(items=items, pagination=pagination, summary=summary)
