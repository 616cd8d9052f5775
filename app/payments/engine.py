"""
Payment engine composition root.

Builds the object graph once per process: gateway registry, reference
stores and handlers, notifier, proof storage, and the services that use
them. ``PaymentsConfig.ready()`` installs the engine built from settings;
views and Celery tasks reach it through ``get_engine()``. Tests install
their own engine with fakes via ``set_engine()``.

Settings:
    PAYMENT_GATEWAYS: {"stripe": "payments.adapters.stripe_adapter.StripeGateway", ...}
    PAYMENTS_REFERENCE_STORES: {"order": "myapp.stores.OrderStore", ...}
    PAYMENTS_NOTIFIER: Dotted path of the Notifier class
    PAYMENTS_PROOF_STORAGE: Dotted path of the ProofStorage class

Usage:
    from payments.engine import get_engine

    engine = get_engine()
    engine.orchestrator.refund_payment(user, txn_id, reason="Duplicate")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils.module_loading import import_string

from payments.adapters import GatewayRegistry
from payments.references import ReferenceStoreRegistry, build_reference_handlers
from payments.services import (
    EscrowService,
    FeeCalculator,
    ManualVerificationService,
    PaymentOrchestrator,
    PayoutDistributor,
    ProviderSelector,
)
from payments.webhooks.processor import WebhookProcessor
from payments.workers.payout_executor import PayoutExecutor

if TYPE_CHECKING:
    from payments.protocols import Notifier, ProofStorage
    from payments.references import ReferenceHandlers

logger = logging.getLogger(__name__)

DEFAULT_NOTIFIER = "payments.notifier.NotificationServiceNotifier"
DEFAULT_PROOF_STORAGE = "payments.storage.DefaultStorageProofStorage"


@dataclass
class PaymentEngine:
    gateways: GatewayRegistry
    stores: ReferenceStoreRegistry
    handlers: ReferenceHandlers
    notifier: Notifier
    proof_storage: ProofStorage
    fee_calculator: FeeCalculator
    provider_selector: ProviderSelector
    escrow: EscrowService
    distributor: PayoutDistributor
    orchestrator: PaymentOrchestrator
    manual_verification: ManualVerificationService
    webhooks: WebhookProcessor
    payout_executor: PayoutExecutor

    @classmethod
    def build(
        cls,
        gateways: GatewayRegistry,
        stores: ReferenceStoreRegistry,
        notifier: Notifier,
        proof_storage: ProofStorage,
    ) -> PaymentEngine:
        """Wire services around the four pluggable collaborators."""
        handlers = build_reference_handlers(stores)
        fee_calculator = FeeCalculator(gateways)
        provider_selector = ProviderSelector()
        escrow = EscrowService()
        distributor = PayoutDistributor(handlers, escrow, notifier)
        orchestrator = PaymentOrchestrator(
            gateways=gateways,
            fee_calculator=fee_calculator,
            provider_selector=provider_selector,
            handlers=handlers,
            distributor=distributor,
            notifier=notifier,
        )
        return cls(
            gateways=gateways,
            stores=stores,
            handlers=handlers,
            notifier=notifier,
            proof_storage=proof_storage,
            fee_calculator=fee_calculator,
            provider_selector=provider_selector,
            escrow=escrow,
            distributor=distributor,
            orchestrator=orchestrator,
            manual_verification=ManualVerificationService(orchestrator, proof_storage, notifier),
            webhooks=WebhookProcessor(gateways, orchestrator),
            payout_executor=PayoutExecutor(gateways, notifier),
        )

    @classmethod
    def from_settings(cls) -> PaymentEngine:
        gateways = GatewayRegistry.from_config(getattr(settings, "PAYMENT_GATEWAYS", {}))
        stores = ReferenceStoreRegistry.from_config(getattr(settings, "PAYMENTS_REFERENCE_STORES", {}))
        notifier = import_string(getattr(settings, "PAYMENTS_NOTIFIER", DEFAULT_NOTIFIER))()
        proof_storage = import_string(getattr(settings, "PAYMENTS_PROOF_STORAGE", DEFAULT_PROOF_STORAGE))()
        engine = cls.build(gateways, stores, notifier, proof_storage)
        logger.info(
            "Payment engine ready",
            extra={"providers": sorted(gateways), "reference_types": stores.reference_types},
        )
        return engine


_engine: PaymentEngine | None = None


def get_engine() -> PaymentEngine:
    """The process-wide engine; built from settings on first use."""
    global _engine
    if _engine is None:
        _engine = PaymentEngine.from_settings()
    return _engine


def set_engine(engine: PaymentEngine | None) -> PaymentEngine | None:
    """Install ``engine`` (None clears it); returns the previous one."""
    global _engine
    previous, _engine = _engine, engine
    return previous
