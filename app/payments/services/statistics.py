"""
Payment statistics for the admin dashboard.

Revenue figures count SUCCEEDED payments only. When both ends of the window
are given, the same-length window immediately before it is used for
percentage changes.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.db.models import Count, Q, Sum

from core.services import BaseService
from payments.exceptions import ForbiddenError, ValidationError
from payments.models import PaymentTransaction
from payments.money import ZERO, to_money
from payments.state_machines import TransactionStatus

if TYPE_CHECKING:
    from django.db.models import QuerySet

    from authentication.models import User


def percentage_change(current: Decimal, previous: Decimal) -> Decimal:
    if not previous:
        return ZERO
    return to_money((current - previous) / previous * Decimal("100"))


class PaymentStatisticsService(BaseService):
    """Aggregates over PaymentTransaction for reviewers."""

    @classmethod
    def _window(cls, start: datetime | None, end: datetime | None) -> QuerySet:
        queryset = PaymentTransaction.objects.all()
        if start:
            queryset = queryset.filter(created_at__gte=start)
        if end:
            queryset = queryset.filter(created_at__lte=end)
        return queryset

    @classmethod
    def _revenue(cls, queryset: QuerySet) -> dict[str, Any]:
        totals = queryset.filter(status=TransactionStatus.SUCCEEDED).aggregate(
            revenue=Sum("amount"),
            fees=Sum("total_fees"),
            net=Sum("net_amount"),
            count=Count("id"),
        )
        return {
            "revenue": to_money(totals["revenue"] or ZERO),
            "fees": to_money(totals["fees"] or ZERO),
            "net": to_money(totals["net"] or ZERO),
            "count": totals["count"],
        }

    @classmethod
    def get_payment_statistics(
        cls,
        user: User,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Raises:
            ForbiddenError: Caller is not a reviewer
            ValidationError: start after end
        """
        if not getattr(user, "is_payment_reviewer", False):
            raise ForbiddenError("Only administrators and moderators can view payment statistics")
        if start and end and start > end:
            raise ValidationError("start cannot be after end")

        window = cls._window(start, end)
        current = cls._revenue(window)
        counts = window.aggregate(
            pending=Count(
                "id",
                filter=Q(status__in=[TransactionStatus.PENDING, TransactionStatus.PROCESSING]),
            ),
            failed=Count(
                "id",
                filter=Q(status__in=[TransactionStatus.FAILED, TransactionStatus.CANCELED]),
            ),
            awaiting_review=Count(
                "id",
                filter=Q(status=TransactionStatus.PROCESSING, is_manual=True, proof_uploaded_at__isnull=False),
            ),
        )

        changes = {"revenue": ZERO, "fees": ZERO, "net_amount": ZERO}
        if start and end:
            previous = cls._revenue(cls._window(start - (end - start), start))
            changes = {
                "revenue": percentage_change(current["revenue"], previous["revenue"]),
                "fees": percentage_change(current["fees"], previous["fees"]),
                "net_amount": percentage_change(current["net"], previous["net"]),
            }

        by_method = [
            {
                "payment_method": row["payment_method"],
                "count": row["count"],
                "total_amount": to_money(row["total_amount"] or ZERO),
                "total_fees": to_money(row["total_fees"] or ZERO),
            }
            for row in window.filter(status=TransactionStatus.SUCCEEDED)
            .values("payment_method")
            .annotate(count=Count("id"), total_amount=Sum("amount"), total_fees=Sum("total_fees"))
            .order_by("-total_amount")
        ]

        cls.get_logger().info(
            "Payment statistics computed",
            extra={"user_id": str(user.pk), "start": str(start), "end": str(end)},
        )

        return {
            "total_revenue": current["revenue"],
            "total_fees": current["fees"],
            "net_amount": current["net"],
            "total_transactions": current["count"],
            "pending_count": counts["pending"],
            "failed_count": counts["failed"],
            "awaiting_review_count": counts["awaiting_review"],
            "percentage_changes": changes,
            "by_payment_method": by_method,
        }
