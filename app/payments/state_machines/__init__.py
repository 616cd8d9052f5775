"""
State machine enums and helpers for payment models.

This module defines the state enums used by payment models with django-fsm.
"""

from payments.state_machines.states import (
    ADJUSTABLE_PAYOUT_STATUSES,
    REFUNDABLE_TRANSACTION_STATUSES,
    TERMINAL_TRANSACTION_STATUSES,
    TRANSACTION_TRANSITIONS,
    DisputeResolution,
    MethodType,
    PayoutStatus,
    RecipientType,
    TransactionStatus,
    TransactionType,
    VerificationAction,
    WebhookEventStatus,
)

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
