"""
Payment services.

This module provides:
- PaymentOrchestrator: Intent creation, confirmation, refunds and expiry
- FeeCalculator: Platform and gateway fee breakdowns
- ProviderSelector: Rule-based provider routing
- EscrowService / PayoutDistributor: Payout holds for succeeded payments
- ManualVerificationService: Proof uploads and reviewer decisions
- TransactionQueryService / PayoutQueryService: Paginated history with summaries
- PaymentMethodService: Payment method catalog
- PaymentStatisticsService: Admin dashboard aggregates

Services with collaborators are built once by ``payments.engine``; reach
them through ``get_engine()`` rather than constructing them in views.

Usage:
    from payments.engine import get_engine
    from payments.services import CreatePaymentIntentInput

    result = get_engine().orchestrator.create_payment_intent(
        user,
        CreatePaymentIntentInput(amount=Decimal("25.00"), currency="MYR"),
    )
"""

from payments.services.escrow import EscrowService, HoldPeriod, hold_period_for
from payments.services.fee_calculator import FeeBreakdown, FeeCalculator
from payments.services.manual_verification import (
    ManualVerificationFilters,
    ManualVerificationService,
    PendingVerification,
    PendingVerificationPage,
)
from payments.services.payment_methods import PaymentMethodService
from payments.services.payment_orchestrator import (
    CreatePaymentIntentInput,
    PaymentIntentResult,
    PaymentOrchestrator,
    map_gateway_status,
)
from payments.services.payout_distributor import PayoutDistributor
from payments.services.provider_selector import ProviderSelector, RoutingContext
from payments.services.queries import (
    PayoutPage,
    PayoutQuery,
    PayoutQueryService,
    TransactionPage,
    TransactionQuery,
    TransactionQueryService,
)
from payments.services.statistics import PaymentStatisticsService

__all__ = [
    "CreatePaymentIntentInput",
    "EscrowService",
    "FeeBreakdown",
    "FeeCalculator",
    "HoldPeriod",
    "ManualVerificationFilters",
    "ManualVerificationService",
    "PaymentIntentResult",
    "PaymentMethodService",
    "PaymentOrchestrator",
    "PaymentStatisticsService",
    "PayoutDistributor",
    "PayoutPage",
    "PayoutQuery",
    "PayoutQueryService",
    "PendingVerification",
    "PendingVerificationPage",
    "ProviderSelector",
    "RoutingContext",
    "TransactionPage",
    "TransactionQuery",
    "TransactionQueryService",
    "hold_period_for",
    "map_gateway_status",
]
