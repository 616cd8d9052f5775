"""
Reference-entity strategy table.

Usage:
    from payments.references import ReferenceStoreRegistry, build_reference_handlers

    handlers = build_reference_handlers(
        ReferenceStoreRegistry.from_config(settings.PAYMENTS_REFERENCE_STORES)
    )
"""

from payments.references.handlers import (
    DonationHandler,
    EventTicketHandler,
    MarketplaceOrderHandler,
    Recipient,
    ReferenceHandler,
    ReferenceHandlers,
    SubscriptionHandler,
    build_reference_handlers,
)
from payments.references.stores import InMemoryReferenceStore, ReferenceStoreRegistry

__all__ = [
    "DonationHandler",
    "EventTicketHandler",
    "InMemoryReferenceStore",
    "MarketplaceOrderHandler",
    "Recipient",
    "ReferenceHandler",
    "ReferenceHandlers",
    "ReferenceStoreRegistry",
    "SubscriptionHandler",
    "build_reference_handlers",
]
