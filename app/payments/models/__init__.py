"""
Payment domain models.

- PaymentTransaction: Ledger record of one payment attempt
- PayoutDistribution: Escrow payout hold owed to a recipient
- PlatformFeeConfig: Platform fee rules per transaction type
- PaymentProvider: Gateways and the manual review channel
- ProviderRoutingRule: Condition-based provider routing
- PaymentMethodConfig: Payer-facing payment methods
- WebhookEvent: Stored gateway webhooks for idempotent processing
"""

from payments.models.fee_config import PlatformFeeConfig
from payments.models.payment_method import (
    PaymentMethodConfig,
    PaymentProvider,
    ProviderRoutingRule,
)
from payments.models.payout_distribution import PayoutDistribution
from payments.models.transaction import PaymentTransaction
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "PaymentMethodConfig",
    "PaymentProvider",
    "PaymentTransaction",
    "PayoutDistribution",
    "PlatformFeeConfig",
    "ProviderRoutingRule",
    "WebhookEvent",
]
