"""
Pytest fixtures for payment tests.

The engine fixture installs a PaymentEngine wired with in-memory fakes:

    FakeGateway           scripted gateway adapter registered as "xendit"
    RecordingNotifier     collects notifications instead of sending them
    InMemoryProofStorage  keeps proof uploads in a dict
    InMemoryReferenceStore  order / ticket / event / community entities

Usage:
    def test_confirm_flips_to_succeeded(engine, gateway, pending_transaction):
        gateway.confirm_status = GatewayPaymentStatus.PAID
        txn = engine.orchestrator.confirm_payment(pending_transaction.user, pending_transaction.id)
        assert txn.status == TransactionStatus.SUCCEEDED
"""

from __future__ import annotations

import json
import os
from decimal import Decimal

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile
from rest_framework.test import APIClient

from authentication.tests.factories import ReviewerFactory, UserFactory
from payments.adapters import (
    GatewayAdapter,
    GatewayPaymentStatus,
    GatewayPayoutResult,
    GatewayRefundResult,
    GatewayRegistry,
    GatewayStatusResult,
    IntentResult,
    ParsedWebhookEvent,
)
from payments.engine import PaymentEngine, set_engine
from payments.exceptions import UnverifiedWebhookError
from payments.protocols import StoredProof
from payments.references import InMemoryReferenceStore, ReferenceStoreRegistry
from payments.state_machines import MethodType, TransactionStatus, TransactionType
from payments.tests.factories import (
    ManualTransactionFactory,
    PaymentMethodConfigFactory,
    PaymentProviderFactory,
    PaymentTransactionFactory,
    PlatformFeeConfigFactory,
)

# =============================================================================
# Fakes
# =============================================================================


class FakeGateway(GatewayAdapter):
    """
    Gateway adapter that records requests and returns scripted answers.

    Set ``fail_with[operation]`` to an exception to make that operation raise.
    Webhook bodies are JSON: {"id", "type", "object_id", "data"}.
    """

    display_name = "Fake Gateway"
    signature_header = "X-Fake-Signature"
    SIGNATURE = "valid-signature"

    EVENT_STATUS_MAP = {
        "payment.succeeded": TransactionStatus.SUCCEEDED,
        "payment.failed": TransactionStatus.FAILED,
        "payment.expired": TransactionStatus.CANCELED,
        "payment.pending": TransactionStatus.PROCESSING,
    }
    FEE_PERCENTAGE = Decimal("2.9")
    FEE_FIXED = {"MYR": Decimal("1.50")}

    def __init__(self, provider_code: str = "xendit"):
        self.provider_code = provider_code
        super().__init__()
        self.intents = []
        self.confirmations = []
        self.refunds = []
        self.payouts = []
        self.confirm_status = GatewayPaymentStatus.PAID
        self.fail_with: dict[str, Exception] = {}

    def _raise_if_scripted(self, operation: str) -> None:
        error = self.fail_with.get(operation)
        if error is not None:
            raise error

    def create_payment_intent(self, request):
        def call():
            self._raise_if_scripted("create_payment_intent")
            self.intents.append(request)
            number = len(self.intents)
            return IntentResult(
                intent_id=f"{self.provider_code}_inv_{number}",
                client_secret=f"secret_{number}",
                payment_url=f"https://pay.example.com/{number}",
                raw_status="PENDING",
            )

        return self._call("create_payment_intent", call)

    def confirm_payment(self, gateway_transaction_id):
        self._raise_if_scripted("confirm_payment")
        self.confirmations.append(gateway_transaction_id)
        return GatewayStatusResult(status=self.confirm_status, raw_status=str(self.confirm_status.value))

    def refund_payment(self, request):
        self._raise_if_scripted("refund_payment")
        self.refunds.append(request)
        return GatewayRefundResult(refund_id=f"rf_{len(self.refunds)}", status="SUCCEEDED", amount=request.amount)

    def create_payout(self, request):
        self._raise_if_scripted("create_payout")
        self.payouts.append(request)
        return GatewayPayoutResult(payout_id=f"po_{len(self.payouts)}", status="COMPLETED")

    def verify_webhook_signature(self, payload, signature):
        return signature == self.SIGNATURE

    def parse_webhook_event(self, payload):
        try:
            body = json.loads(payload)
            return ParsedWebhookEvent(
                event_id=body["id"],
                event_type=body["type"],
                gateway_transaction_id=body.get("object_id", ""),
                data=body.get("data", {}),
            )
        except (ValueError, KeyError) as e:
            raise UnverifiedWebhookError("Malformed payload", error_code="WEBHOOK_MALFORMED") from e


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, user_id, notification):
        self.sent.append((str(user_id), notification))

    @property
    def types(self):
        return [notification.notification_type for _, notification in self.sent]

    def for_user(self, user):
        return [notification for user_id, notification in self.sent if user_id == str(user.pk)]


class InMemoryProofStorage:
    def __init__(self):
        self.files = {}

    def upload_proof(self, file, transaction_id):
        key = f"payment_proofs/{transaction_id}/{len(self.files) + 1}-{os.path.basename(file.name)}"
        self.files[key] = file.read()
        return StoredProof(url=f"https://files.example.com/{key}", key=key)

    def get_signed_url(self, key, ttl_seconds):
        return f"https://files.example.com/{key}?expires={ttl_seconds}"

    def delete_proof(self, key):
        self.files.pop(key, None)


# =============================================================================
# Engine
# =============================================================================


@pytest.fixture
def gateway():
    return FakeGateway("xendit")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def proof_storage():
    return InMemoryProofStorage()


@pytest.fixture
def reference_store():
    return InMemoryReferenceStore()


@pytest.fixture
def engine(gateway, notifier, proof_storage, reference_store):
    """PaymentEngine with fakes, installed for views and tasks too."""
    stores = ReferenceStoreRegistry(
        {reference_type: reference_store for reference_type in ("order", "ticket", "event", "community", "subscription")}
    )
    engine = PaymentEngine.build(GatewayRegistry({"xendit": gateway}), stores, notifier, proof_storage)
    previous = set_engine(engine)
    yield engine
    set_engine(previous)


# =============================================================================
# Users & Clients
# =============================================================================


@pytest.fixture
def payer(db):
    return UserFactory(email="payer@example.com")


@pytest.fixture
def seller(db):
    return UserFactory(email="seller@example.com")


@pytest.fixture
def reviewer(db):
    return ReviewerFactory()


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def payer_client(payer):
    client = APIClient()
    client.force_authenticate(user=payer)
    return client


@pytest.fixture
def reviewer_client(reviewer):
    client = APIClient()
    client.force_authenticate(user=reviewer)
    return client


# =============================================================================
# Catalog
# =============================================================================


@pytest.fixture
def xendit_provider(db):
    return PaymentProviderFactory(provider_code="xendit", is_default=True, priority_order=1)


@pytest.fixture
def manual_provider(db):
    return PaymentProviderFactory(
        provider_code="manual",
        provider_name="Manual Review",
        is_manual=True,
        priority_order=50,
        supported_currencies=[],
    )


@pytest.fixture
def card_method(xendit_provider):
    return PaymentMethodConfigFactory(
        method_code="card",
        method_name="Card",
        display_name="Credit / Debit Card",
        provider=xendit_provider,
        display_order=1,
    )


@pytest.fixture
def bank_transfer_method(manual_provider):
    return PaymentMethodConfigFactory(
        method_code="bank_transfer",
        method_type=MethodType.MANUAL_BANK,
        method_name="Bank Transfer",
        display_name="Manual Bank Transfer",
        provider=manual_provider,
        requires_proof=True,
        processing_time="1-2 business days",
        account_details={"bank_name": "Maybank", "account_number": "5140 1234 5678", "account_name": "Platform Sdn Bhd"},
        available_currencies=["MYR"],
        display_order=2,
    )


@pytest.fixture
def marketplace_fee(db):
    """5% + 0 platform fee on marketplace orders."""
    return PlatformFeeConfigFactory(transaction_type=TransactionType.MARKETPLACE_ORDER)


@pytest.fixture
def order(reference_store, seller):
    return reference_store.add("order", "order-1", seller_id=seller.pk, title="Vintage camera")


# =============================================================================
# Transactions in Various States
# =============================================================================


@pytest.fixture
def pending_transaction(payer, xendit_provider):
    return PaymentTransactionFactory(
        user=payer,
        provider=xendit_provider,
        reference_id="order-1",
        platform_fee=Decimal("5.00"),
        gateway_fee=Decimal("4.40"),
    )


@pytest.fixture
def succeeded_transaction(payer, xendit_provider):
    return PaymentTransactionFactory(
        user=payer,
        provider=xendit_provider,
        reference_id="order-1",
        status=TransactionStatus.SUCCEEDED,
        platform_fee=Decimal("5.00"),
        gateway_fee=Decimal("4.40"),
    )


@pytest.fixture
def manual_transaction(payer, manual_provider, bank_transfer_method):
    return ManualTransactionFactory(user=payer, provider=manual_provider, reference_id="order-1")


@pytest.fixture
def proof_file():
    return SimpleUploadedFile("receipt.png", b"\x89PNG fake receipt", content_type="image/png")
