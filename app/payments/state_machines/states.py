"""
State and classification enums for payment models.

These are Django TextChoices for database storage and admin integration.
Status fields are driven by django-fsm transitions on the models.

State Machines Overview:

PaymentTransaction States:
    pending → processing → succeeded | failed
    pending → succeeded | failed | canceled
    succeeded → partially_refunded → partially_refunded | refunded
    succeeded → refunded

PayoutDistribution States:
    pending → processing → released
    pending → processing → failed → processing (retry with backoff)
    pending | failed → frozen → pending (dispute)
    pending | failed | frozen → canceled (refund to buyer)
"""

from django.db import models


class TransactionStatus(models.TextChoices):
    """
    States for the PaymentTransaction lifecycle.

    Terminal states: FAILED, CANCELED, REFUNDED

    State Flow (Gateway):
        PENDING → PROCESSING (gateway reports pending) → SUCCEEDED | FAILED
        PENDING → SUCCEEDED | FAILED
        PENDING → CANCELED (gateway expiry, stale manual payment)

    State Flow (Manual):
        PENDING → PROCESSING (proof uploaded) → SUCCEEDED | FAILED (review)

    Refund Flow:
        SUCCEEDED → PARTIALLY_REFUNDED | REFUNDED
        PARTIALLY_REFUNDED → PARTIALLY_REFUNDED | REFUNDED
    """

    PENDING = "PENDING", "Pending"
    PROCESSING = "PROCESSING", "Processing"
    SUCCEEDED = "SUCCEEDED", "Succeeded"
    FAILED = "FAILED", "Failed"
    CANCELED = "CANCELED", "Canceled"
    REFUNDED = "REFUNDED", "Refunded"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED", "Partially Refunded"


TERMINAL_TRANSACTION_STATUSES = frozenset(
    {TransactionStatus.FAILED, TransactionStatus.CANCELED, TransactionStatus.REFUNDED}
)

REFUNDABLE_TRANSACTION_STATUSES = frozenset(
    {TransactionStatus.SUCCEEDED, TransactionStatus.PARTIALLY_REFUNDED}
)

# Allowed next states; mirrors the @transition sources on PaymentTransaction
TRANSACTION_TRANSITIONS: dict[str, frozenset[str]] = {
    TransactionStatus.PENDING: frozenset(
        {
            TransactionStatus.PROCESSING,
            TransactionStatus.SUCCEEDED,
            TransactionStatus.FAILED,
            TransactionStatus.CANCELED,
        }
    ),
    TransactionStatus.PROCESSING: frozenset({TransactionStatus.SUCCEEDED, TransactionStatus.FAILED}),
    TransactionStatus.SUCCEEDED: frozenset(
        {TransactionStatus.PARTIALLY_REFUNDED, TransactionStatus.REFUNDED}
    ),
    TransactionStatus.PARTIALLY_REFUNDED: frozenset(
        {TransactionStatus.PARTIALLY_REFUNDED, TransactionStatus.REFUNDED}
    ),
    TransactionStatus.FAILED: frozenset(),
    TransactionStatus.CANCELED: frozenset(),
    TransactionStatus.REFUNDED: frozenset(),
}


class TransactionType(models.TextChoices):
    """What the payment is for. Selects fee config and reference handling."""

    EVENT_TICKET = "EVENT_TICKET", "Event Ticket"
    MARKETPLACE_ORDER = "MARKETPLACE_ORDER", "Marketplace Order"
    SUBSCRIPTION = "SUBSCRIPTION", "Subscription"
    DONATION = "DONATION", "Donation"
    GENERIC = "GENERIC", "Generic"


class PayoutStatus(models.TextChoices):
    """
    States for the PayoutDistribution lifecycle.

    State Flow:
        PENDING → PROCESSING → RELEASED
        PROCESSING → FAILED → PROCESSING (retry until attempts exhausted)
        PENDING | FAILED → FROZEN → PENDING (dispute opened, then resolved)
        PENDING | FAILED | FROZEN → CANCELED (payment refunded to buyer)

    Terminal states: RELEASED, CANCELED
    """

    PENDING = "PENDING", "Pending"
    PROCESSING = "PROCESSING", "Processing"
    RELEASED = "RELEASED", "Released"
    FAILED = "FAILED", "Failed"
    FROZEN = "FROZEN", "Frozen"
    CANCELED = "CANCELED", "Canceled"


# Holds a refund may still cancel or reduce
ADJUSTABLE_PAYOUT_STATUSES = frozenset({PayoutStatus.PENDING, PayoutStatus.FAILED, PayoutStatus.FROZEN})


class DisputeResolution(models.TextChoices):
    """How a frozen payout leaves the dispute."""

    RELEASE_TO_SELLER = "release_to_seller", "Release to Seller"
    REFUND_TO_BUYER = "refund_to_buyer", "Refund to Buyer"


class RecipientType(models.TextChoices):
    """Why a user receives a payout."""

    EVENT_ORGANIZER = "event_organizer", "Event Organizer"
    MARKETPLACE_SELLER = "marketplace_seller", "Marketplace Seller"
    DONATION_RECIPIENT = "donation_recipient", "Donation Recipient"
    COMMUNITY_ORGANIZER = "community_organizer", "Community Organizer"
    USER = "user", "User"


class MethodType(models.TextChoices):
    """
    Payment method families.

    Manual methods bypass the gateway and go through proof review.
    """

    GATEWAY = "gateway", "Gateway"
    MANUAL_BANK = "manual_bank", "Manual Bank Transfer"
    MANUAL_EWALLET = "manual_ewallet", "Manual E-Wallet"


class VerificationAction(models.TextChoices):
    """Reviewer decisions on a manual payment proof."""

    APPROVE = "approve", "Approve"
    REJECT = "reject", "Reject"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


__all__ = [
    "ADJUSTABLE_PAYOUT_STATUSES",
    "DisputeResolution",
    "MethodType",
    "PayoutStatus",
    "REFUNDABLE_TRANSACTION_STATUSES",
    "RecipientType",
    "TERMINAL_TRANSACTION_STATUSES",
    "TRANSACTION_TRANSITIONS",
    "TransactionStatus",
    "TransactionType",
    "VerificationAction",
    "WebhookEventStatus",
]
