"""
Payment orchestrator: the entry point for payment lifecycle operations.

The orchestrator coordinates the fee calculator, provider selector, gateway
adapters, reference handlers, payout distributor and notifier. It is built
once per process by ``payments.engine.PaymentEngine`` with its collaborators
injected, so tests can construct one with fakes.

Every status change goes through ``payments.locks.save_transition`` inside
``transaction.atomic()`` with the row locked. Best-effort work
(notifications, payout distribution, reference linkage) is queued on a
SideEffectQueue and runs after the commit; its failures are logged and never
undo the payment's own status change.

Usage:
    from payments.engine import get_engine

    orchestrator = get_engine().orchestrator
    result = orchestrator.create_payment_intent(
        user,
        CreatePaymentIntentInput(
            amount=Decimal("100.00"),
            currency="MYR",
            transaction_type=TransactionType.MARKETPLACE_ORDER,
            reference_type="order",
            reference_id=str(order_id),
        ),
    )
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import BaseApplicationError
from core.services import BaseService
from payments.adapters import GatewayPaymentStatus, IntentRequest, RefundRequest, make_idempotency_key
from payments.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PaymentError,
    StaleRecordError,
    ValidationError,
)
from payments.locks import lock_transaction, save_fields, save_transition
from payments.models import PaymentMethodConfig, PaymentProvider, PaymentTransaction
from payments.money import ZERO, to_money
from payments.protocols import PaymentNotification
from payments.services.provider_selector import RoutingContext
from payments.side_effects import SideEffectQueue
from payments.state_machines import (
    REFUNDABLE_TRANSACTION_STATUSES,
    TRANSACTION_TRANSITIONS,
    TransactionStatus,
    TransactionType,
)

if TYPE_CHECKING:
    from authentication.models import User
    from payments.adapters import GatewayRegistry
    from payments.protocols import Notifier
    from payments.references import ReferenceHandlers
    from payments.services.fee_calculator import FeeBreakdown, FeeCalculator
    from payments.services.escrow import EscrowService
    from payments.services.payout_distributor import PayoutDistributor
    from payments.services.provider_selector import ProviderSelector
    from payments.services.queries import TransactionPage, TransactionQuery


# =============================================================================
# Parameter and Result Types
# =============================================================================


def parse_amount(value: Any, field_name: str = "amount") -> Decimal:
    """
    Parse and quantize a positive money amount.

    Raises:
        ValidationError: Not a number, or not greater than zero
    """
    try:
        amount = to_money(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(
            f"{field_name} must be a number",
            error_code="INVALID_AMOUNT",
            details={field_name: str(value)},
        ) from None
    if amount <= ZERO:
        raise ValidationError(
            f"{field_name} must be greater than zero",
            error_code="INVALID_AMOUNT",
            details={field_name: str(value)},
        )
    return amount


@dataclass
class CreatePaymentIntentInput:
    """
    Parameters for creating a payment intent.

    Attributes:
        amount: Amount to charge, major units
        currency: ISO 4217 code (upper-cased)
        transaction_type: TransactionType value
        reference_type / reference_id: Entity being paid for
        payment_method: PaymentMethodConfig.method_code (takes precedence)
        provider_id: PaymentProvider pk (used when no method is given)
        country: Payer country for routing rules
    """

    amount: Decimal
    currency: str
    transaction_type: str = TransactionType.GENERIC
    reference_type: str = ""
    reference_id: str | None = None
    payment_method: str | None = None
    provider_id: int | None = None
    description: str = ""
    country: str | None = None
    customer_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.amount = parse_amount(self.amount)
        if not self.currency or len(self.currency.strip()) != 3:
            raise ValidationError(
                "currency must be a 3-letter ISO 4217 code",
                error_code="INVALID_CURRENCY",
                details={"currency": self.currency},
            )
        self.currency = self.currency.strip().upper()
        if self.transaction_type not in TransactionType.values:
            raise ValidationError(
                f"Unknown transaction type: {self.transaction_type}",
                error_code="INVALID_TRANSACTION_TYPE",
                details={"supported": list(TransactionType.values)},
            )
        if self.reference_id is not None:
            self.reference_id = str(self.reference_id)
        self.reference_type = self.reference_type or ""


@dataclass
class PaymentIntentResult:
    """
    Outcome of create_payment_intent.

    Automatic payments carry ``client_secret`` / ``payment_url``; manual
    payments carry ``requires_proof=True`` and transfer ``instructions``.
    """

    transaction: PaymentTransaction
    fees: FeeBreakdown
    requires_proof: bool = False
    client_secret: str | None = None
    payment_url: str | None = None
    expires_at: datetime | None = None
    instructions: dict[str, Any] | None = None
    reused: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": str(self.transaction.id),
            "status": self.transaction.status,
            "amount": str(self.transaction.amount),
            "currency": self.transaction.currency,
            "fees": self.fees.to_dict(),
            "requires_proof": self.requires_proof,
            "client_secret": self.client_secret,
            "payment_url": self.payment_url,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "instructions": self.instructions,
            "reused": self.reused,
        }


def map_gateway_status(status: GatewayPaymentStatus | str) -> str:
    """PAID/SETTLED -> SUCCEEDED, PENDING -> PROCESSING, EXPIRED -> CANCELED, else FAILED."""
    if status in (GatewayPaymentStatus.PAID, GatewayPaymentStatus.SETTLED):
        return TransactionStatus.SUCCEEDED
    if status == GatewayPaymentStatus.PENDING:
        return TransactionStatus.PROCESSING
    if status == GatewayPaymentStatus.EXPIRED:
        return TransactionStatus.CANCELED
    return TransactionStatus.FAILED


# Fields an in-place refresh of a PENDING intent rewrites
INTENT_REFRESH_FIELDS = [
    "amount",
    "currency",
    "transaction_type",
    "description",
    "platform_fee",
    "gateway_fee",
    "total_fees",
    "net_amount",
    "provider",
    "payment_method",
    "is_manual",
    "gateway_transaction_id",
    "gateway_metadata",
    "payment_reference_code",
    "upload_deadline",
    "manual_payment_details",
    "metadata",
]

TRANSITION_FIELDS = [
    "status",
    "processed_at",
    "canceled_at",
    "failure_reason",
    "gateway_transaction_id",
]


# =============================================================================
# Payment Orchestrator
# =============================================================================


class PaymentOrchestrator(BaseService):
    """
    Central coordinator for payment operations.

    Collaborators:
        gateways: GatewayRegistry (provider_code -> adapter)
        fee_calculator: FeeCalculator
        provider_selector: ProviderSelector
        handlers: ReferenceHandlers (TransactionType -> handler)
        distributor: PayoutDistributor
        notifier: Notifier
    """

    def __init__(
        self,
        gateways: GatewayRegistry,
        fee_calculator: FeeCalculator,
        provider_selector: ProviderSelector,
        handlers: ReferenceHandlers,
        distributor: PayoutDistributor,
        notifier: Notifier,
    ):
        self.gateways = gateways
        self.fee_calculator = fee_calculator
        self.provider_selector = provider_selector
        self.handlers = handlers
        self.distributor = distributor
        self.notifier = notifier

    @property
    def escrow(self) -> EscrowService:
        return self.distributor.escrow

    # =========================================================================
    # Intent Creation
    # =========================================================================

    def create_payment_intent(self, user: User, data: CreatePaymentIntentInput) -> PaymentIntentResult:
        """
        Create (or refresh) a PENDING transaction and start the payment.

        Raises:
            NotFoundError: Unknown/inactive payment method or provider
            ValidationError: Provider does not accept the currency
            GatewayError: Provider refused or could not be reached
            PaymentError: Any unexpected failure
        """
        try:
            return self._create_payment_intent(user, data)
        except BaseApplicationError:
            raise
        except Exception as e:
            self.get_logger().error(
                "Payment intent creation failed",
                extra={"user_id": str(user.pk), "reference_id": data.reference_id},
                exc_info=True,
            )
            raise PaymentError("Failed to create payment intent") from e

    def _create_payment_intent(self, user: User, data: CreatePaymentIntentInput) -> PaymentIntentResult:
        logger = self.get_logger()
        provider, method = self.resolve_provider(
            amount=data.amount,
            currency=data.currency,
            transaction_type=data.transaction_type,
            payment_method=data.payment_method,
            provider_id=data.provider_id,
            country=data.country,
        )
        is_manual = method.is_manual if method is not None else provider.is_manual
        fees = self.fee_calculator.calculate_fees(
            data.amount,
            data.transaction_type,
            provider=provider,
            currency=data.currency,
        )

        effects = SideEffectQueue(operation="create_payment_intent", user_id=str(user.pk))

        with transaction.atomic():
            txn, reused = self._upsert_pending(user, data, provider, method, is_manual, fees)
            if is_manual:
                instructions = self._apply_manual_instructions(txn, provider, method)
                save_fields(txn, ["payment_reference_code", "upload_deadline", "manual_payment_details"])

        handler = self.handlers.for_transaction(txn)
        effects.add("link_transaction", lambda: handler.link_transaction(txn))

        logger.info(
            "Payment transaction ready",
            extra={
                "transaction_id": str(txn.id),
                "user_id": str(user.pk),
                "provider": provider.provider_code,
                "is_manual": is_manual,
                "reused": reused,
                "amount": str(txn.amount),
                "currency": txn.currency,
            },
        )

        if is_manual:
            effects.run()
            return PaymentIntentResult(
                transaction=txn,
                fees=fees,
                requires_proof=True,
                instructions=instructions,
                expires_at=txn.upload_deadline,
                reused=reused,
            )

        adapter = self.gateways.get_adapter(provider.provider_code)
        description = data.description or handler.describe(txn) or f"{txn.get_transaction_type_display()} payment"
        intent = adapter.create_payment_intent(
            IntentRequest(
                amount=txn.amount,
                currency=txn.currency,
                description=description,
                customer_id=data.customer_id,
                payment_method=data.payment_method,
                metadata={
                    "transaction_id": str(txn.id),
                    "user_id": str(user.pk),
                    "transaction_type": txn.transaction_type,
                    "reference_type": txn.reference_type,
                    "reference_id": txn.reference_id or "",
                },
                idempotency_key=make_idempotency_key("create_intent", txn.id, txn.version),
            )
        )

        with transaction.atomic():
            txn = lock_transaction(txn.id)
            txn.gateway_transaction_id = intent.intent_id
            txn.gateway_metadata = {
                **intent.metadata,
                "payment_url": intent.payment_url,
                "expires_at": intent.expires_at.isoformat() if intent.expires_at else None,
            }
            save_fields(txn, ["gateway_transaction_id", "gateway_metadata"])

        self._notify(
            effects,
            user.pk,
            PaymentNotification(
                notification_type="payment_initiated",
                title="Payment Initiated",
                message=f"Your payment of {txn.currency} {txn.amount} has been initiated.",
                metadata={"transaction_id": str(txn.id)},
            ),
        )
        effects.run()

        return PaymentIntentResult(
            transaction=txn,
            fees=fees,
            client_secret=intent.client_secret,
            payment_url=intent.payment_url,
            expires_at=intent.expires_at,
            reused=reused,
        )

    def _upsert_pending(
        self,
        user: User,
        data: CreatePaymentIntentInput,
        provider: PaymentProvider,
        method: PaymentMethodConfig | None,
        is_manual: bool,
        fees: FeeBreakdown,
    ) -> tuple[PaymentTransaction, bool]:
        """Reuse the caller's PENDING transaction for this reference, or insert one."""
        existing = self._find_pending(user, data)
        if existing is None:
            txn = PaymentTransaction(
                user=user,
                transaction_type=data.transaction_type,
                reference_type=data.reference_type,
                reference_id=data.reference_id,
                amount=data.amount,
                currency=data.currency,
                description=data.description,
                provider=provider,
                payment_method=method.method_code if method else None,
                is_manual=is_manual,
                metadata=dict(data.metadata),
            )
            txn.apply_fees(fees)
            try:
                with transaction.atomic():
                    txn.save()
                return txn, False
            except IntegrityError:
                # A concurrent request inserted the PENDING row first
                existing = self._find_pending(user, data)
                if existing is None:
                    raise

        existing.amount = data.amount
        existing.currency = data.currency
        existing.transaction_type = data.transaction_type
        existing.description = data.description
        existing.provider = provider
        existing.payment_method = method.method_code if method else None
        existing.is_manual = is_manual
        existing.gateway_transaction_id = None
        existing.gateway_metadata = {}
        existing.metadata = {**existing.metadata, **data.metadata}
        existing.apply_fees(fees)
        save_fields(existing, INTENT_REFRESH_FIELDS)
        return existing, True

    def _find_pending(self, user: User, data: CreatePaymentIntentInput) -> PaymentTransaction | None:
        if data.reference_id is None:
            return None
        return (
            PaymentTransaction.objects.select_for_update()
            .filter(
                user=user,
                reference_type=data.reference_type,
                reference_id=data.reference_id,
                status=TransactionStatus.PENDING,
            )
            .first()
        )

    def _apply_manual_instructions(
        self,
        txn: PaymentTransaction,
        provider: PaymentProvider,
        method: PaymentMethodConfig | None,
    ) -> dict[str, Any]:
        if not txn.payment_reference_code:
            txn.payment_reference_code = f"PAY-{secrets.token_hex(4).upper()}"
        hours = getattr(settings, "MANUAL_PAYMENT_UPLOAD_DEADLINE_HOURS", 48)
        txn.upload_deadline = timezone.now() + timedelta(hours=hours)

        instructions = {
            "method_code": method.method_code if method else None,
            "method_name": method.display_name if method else provider.provider_name,
            "account_details": method.account_details if method else provider.settings.get("account_details", {}),
            "reference_code": txn.payment_reference_code,
            "amount": str(txn.amount),
            "currency": txn.currency,
            "upload_deadline": txn.upload_deadline.isoformat(),
            "processing_time": method.processing_time if method else "",
            "requires_proof": method.requires_proof if method else True,
        }
        txn.manual_payment_details = instructions
        return instructions

    def resolve_provider(
        self,
        amount: Decimal,
        currency: str,
        transaction_type: str,
        payment_method: str | None = None,
        provider_id: int | None = None,
        country: str | None = None,
    ) -> tuple[PaymentProvider, PaymentMethodConfig | None]:
        """
        Payment method first, then explicit provider, then routing rules.

        Raises:
            NotFoundError: Unknown/inactive method, or method without provider
            ValidationError: Provider does not accept the currency
        """
        method = None
        if payment_method:
            method = (
                PaymentMethodConfig.objects.select_related("provider")
                .filter(method_code=payment_method, is_active=True)
                .first()
            )
            if method is None:
                raise NotFoundError(
                    f"Payment method {payment_method} not found",
                    error_code="PAYMENT_METHOD_NOT_FOUND",
                    details={"payment_method": payment_method},
                )
            if method.provider is None or not method.provider.is_active:
                raise NotFoundError(
                    f"Payment method {payment_method} has no active provider",
                    error_code="PROVIDER_NOT_FOUND",
                    details={"payment_method": payment_method},
                )
            provider = method.provider
        elif provider_id:
            provider = PaymentProvider.objects.filter(pk=provider_id, is_active=True).first()
            if provider is None:
                raise NotFoundError(
                    "Payment provider not found",
                    error_code="PROVIDER_NOT_FOUND",
                    details={"provider_id": provider_id},
                )
        else:
            provider = self.provider_selector.select(
                RoutingContext(
                    amount=amount,
                    currency=currency,
                    transaction_type=transaction_type,
                    country=country,
                )
            )

        if not provider.supports_currency(currency):
            raise ValidationError(
                f"{provider.provider_name} does not accept {currency}",
                error_code="CURRENCY_NOT_SUPPORTED",
                details={"provider": provider.provider_code, "currency": currency},
            )
        return provider, method

    # =========================================================================
    # Confirmation
    # =========================================================================

    def confirm_payment(
        self,
        user: User,
        transaction_id: Any,
        gateway_transaction_id: str | None = None,
    ) -> PaymentTransaction:
        """
        Ask the gateway for the payment's status and apply it.

        Non-PENDING transactions, manual payments and transactions with no
        gateway id are returned unchanged.

        Raises:
            NotFoundError: Unknown transaction
            ForbiddenError: Caller does not own it
            GatewayError: Provider status lookup failed
        """
        try:
            txn = self._get_owned(user, transaction_id)
            if txn.status != TransactionStatus.PENDING:
                return txn

            external_id = gateway_transaction_id or txn.gateway_transaction_id
            if not external_id or txn.is_manual or txn.provider is None:
                return txn

            adapter = self.gateways.get_adapter(txn.provider.provider_code)
            result = adapter.confirm_payment(external_id)
            target = map_gateway_status(result.status)

            self.get_logger().info(
                "Gateway confirmation received",
                extra={
                    "transaction_id": str(txn.id),
                    "provider": txn.provider.provider_code,
                    "gateway_status": result.raw_status,
                    "target_status": target,
                },
            )

            return self.apply_status(
                txn.id,
                target,
                reason=result.failure_reason,
                gateway_transaction_id=external_id,
                source="confirm",
            )
        except BaseApplicationError:
            raise
        except Exception as e:
            self.get_logger().error(
                "Payment confirmation failed",
                extra={"transaction_id": str(transaction_id)},
                exc_info=True,
            )
            raise PaymentError("Failed to confirm payment") from e

    def apply_status(
        self,
        transaction_id: Any,
        target: str,
        reason: str = "",
        gateway_transaction_id: str | None = None,
        source: str = "",
    ) -> PaymentTransaction:
        """
        Move a transaction to ``target`` if the state machine allows it.

        Shared by gateway confirmation and webhook processing. A target the
        current status cannot reach (already there, or already past it) is
        a logged no-op.
        """
        logger = self.get_logger()
        effects = SideEffectQueue(operation=f"apply_status:{source}", transaction_id=str(transaction_id))

        with transaction.atomic():
            txn = lock_transaction(transaction_id)
            current = txn.status

            if target == current or target not in TRANSACTION_TRANSITIONS.get(current, frozenset()):
                logger.info(
                    "Status change ignored",
                    extra={
                        "transaction_id": str(txn.id),
                        "current_status": current,
                        "target_status": target,
                        "source": source,
                    },
                )
                return txn

            if gateway_transaction_id and not txn.gateway_transaction_id:
                txn.gateway_transaction_id = gateway_transaction_id

            if target == TransactionStatus.PROCESSING:
                txn.mark_processing()
            elif target == TransactionStatus.SUCCEEDED:
                txn.succeed()
            elif target == TransactionStatus.FAILED:
                txn.fail(reason or "Payment was declined by the provider")
            elif target == TransactionStatus.CANCELED:
                txn.cancel(reason or "Payment expired before completion")
            else:
                raise InvalidStateError(
                    f"{target} cannot be applied from a provider status",
                    details={"transaction_id": str(txn.id), "target_status": target},
                )

            save_transition(txn, current, TRANSITION_FIELDS)

            logger.info(
                f"Payment {current} -> {txn.status}",
                extra={
                    "transaction_id": str(txn.id),
                    "user_id": str(txn.user_id),
                    "status": txn.status,
                    "source": source,
                },
            )

            if txn.status == TransactionStatus.SUCCEEDED:
                self.queue_success_effects(txn, effects)
            elif txn.status == TransactionStatus.FAILED:
                self._notify(
                    effects,
                    txn.user_id,
                    PaymentNotification(
                        notification_type="payment_failed",
                        title="Payment Failed",
                        message=f"Your payment of {txn.currency} {txn.amount} failed: {txn.failure_reason}",
                        metadata={"transaction_id": str(txn.id), "reason": txn.failure_reason},
                        idempotency_key=f"payment_failed:{txn.id}",
                    ),
                )
            elif txn.status == TransactionStatus.CANCELED:
                self._notify(
                    effects,
                    txn.user_id,
                    PaymentNotification(
                        notification_type="payment_canceled",
                        title="Payment Canceled",
                        message=f"Your payment of {txn.currency} {txn.amount} was canceled: {txn.failure_reason}",
                        metadata={"transaction_id": str(txn.id)},
                        idempotency_key=f"payment_canceled:{txn.id}",
                    ),
                )

        effects.run()
        return txn

    def queue_success_effects(self, txn: PaymentTransaction, effects: SideEffectQueue) -> None:
        """
        Reference update (inside the caller's atomic block, in a savepoint),
        then payout distribution and the payer notification after commit.
        """
        handler = self.handlers.for_transaction(txn)
        self.run_reference_hook("on_succeeded", handler.on_succeeded, txn)

        transaction_id = txn.id
        effects.add("distribute_payout", lambda: self.distributor.distribute_payout(transaction_id))
        self._notify(
            effects,
            txn.user_id,
            PaymentNotification(
                notification_type="payment_succeeded",
                title="Payment Successful",
                message=f"Your payment of {txn.currency} {txn.amount} has been confirmed.",
                metadata={"transaction_id": str(txn.id), "amount": str(txn.amount)},
                idempotency_key=f"payment_succeeded:{txn.id}",
            ),
        )

    def run_reference_hook(self, name: str, hook, txn: PaymentTransaction) -> bool:
        """Run a reference handler hook in a savepoint; failures are logged."""
        try:
            with transaction.atomic():
                hook(txn)
        except Exception:
            self.get_logger().error(
                f"Reference hook {name} failed",
                extra={
                    "transaction_id": str(txn.id),
                    "transaction_type": txn.transaction_type,
                    "reference_type": txn.reference_type,
                    "reference_id": txn.reference_id,
                },
                exc_info=True,
            )
            return False
        return True

    # =========================================================================
    # Refunds
    # =========================================================================

    def refund_payment(
        self,
        user: User,
        transaction_id: Any,
        amount: Decimal | None = None,
        reason: str = "",
    ) -> PaymentTransaction:
        """
        Refund all or part of a succeeded payment.

        The gateway refund is issued first, outside the row lock; the ledger
        is then updated with a compare-and-swap write. Manual payments are
        refunded outside any gateway and only recorded here. Unpaid payout
        holds are canceled on a full refund and reduced on a partial one.

        Raises:
            ForbiddenError: Caller is neither the owner nor a reviewer
            InvalidStateError: Payment is not SUCCEEDED/PARTIALLY_REFUNDED, or
                one of its payouts is PROCESSING
            ValidationError: Amount not positive, or exceeds what remains
            GatewayError: Provider refund failed
        """
        try:
            return self._refund_payment(user, transaction_id, amount, reason)
        except BaseApplicationError:
            raise
        except Exception as e:
            self.get_logger().error(
                "Refund failed",
                extra={"transaction_id": str(transaction_id)},
                exc_info=True,
            )
            raise PaymentError("Failed to refund payment") from e

    def _refund_payment(
        self,
        user: User,
        transaction_id: Any,
        amount: Decimal | None,
        reason: str,
    ) -> PaymentTransaction:
        logger = self.get_logger()
        txn = self._get_owned(user, transaction_id, allow_reviewer=True)
        refund_amount = self._validate_refund(txn, amount)
        self.escrow.ensure_refundable(txn)

        refund_id = None
        if not txn.is_manual and txn.provider is not None and txn.gateway_transaction_id:
            adapter = self.gateways.get_adapter(txn.provider.provider_code)
            result = adapter.refund_payment(
                RefundRequest(
                    gateway_transaction_id=txn.gateway_transaction_id,
                    amount=refund_amount,
                    currency=txn.currency,
                    reason=reason,
                    idempotency_key=make_idempotency_key("refund", txn.id, f"{txn.version}:{refund_amount}"),
                    metadata={"transaction_id": str(txn.id)},
                )
            )
            refund_id = result.refund_id

        effects = SideEffectQueue(operation="refund_payment", transaction_id=str(txn.id))

        with transaction.atomic():
            locked = lock_transaction(txn.id)
            try:
                self._validate_refund(locked, refund_amount)
                payouts = self.escrow.lock_refund_holds(locked)
            except BaseApplicationError:
                if refund_id:
                    logger.critical(
                        "Gateway refund issued but ledger rejected it",
                        extra={"transaction_id": str(locked.id), "refund_id": refund_id, "amount": str(refund_amount)},
                    )
                raise

            expected = locked.status
            locked.apply_refund(refund_amount)
            refunds = list(locked.metadata.get("refunds", []))
            refunds.append(
                {
                    "refund_id": refund_id,
                    "amount": str(refund_amount),
                    "reason": reason,
                    "manual": refund_id is None,
                    "refunded_by": str(user.pk),
                    "refunded_at": locked.refunded_at.isoformat(),
                }
            )
            locked.metadata = {**locked.metadata, "refunds": refunds}
            save_transition(locked, expected, ["status", "refunded_amount", "refunded_at", "metadata"])
            self.escrow.adjust_for_refund(
                payouts,
                refund_amount,
                fully_refunded=locked.status == TransactionStatus.REFUNDED,
            )

            logger.info(
                "Payment refunded",
                extra={
                    "transaction_id": str(locked.id),
                    "amount": str(refund_amount),
                    "refunded_amount": str(locked.refunded_amount),
                    "status": locked.status,
                    "refund_id": refund_id,
                },
            )

            handler = self.handlers.for_transaction(locked)
            self.run_reference_hook("on_refunded", handler.on_refunded, locked)

            message = f"{locked.currency} {refund_amount} has been refunded to you."
            if reason:
                message = f"{message} Reason: {reason}"
            self._notify(
                effects,
                locked.user_id,
                PaymentNotification(
                    notification_type="payment_refunded",
                    title="Payment Refunded",
                    message=message,
                    metadata={"transaction_id": str(locked.id), "amount": str(refund_amount), "reason": reason},
                    idempotency_key=f"payment_refunded:{locked.id}:{locked.version}",
                ),
            )

        effects.run()
        return locked

    def _validate_refund(self, txn: PaymentTransaction, amount: Decimal | None) -> Decimal:
        if txn.status not in REFUNDABLE_TRANSACTION_STATUSES:
            raise InvalidStateError(
                "Only succeeded payments can be refunded",
                details={"transaction_id": str(txn.id), "current_status": txn.status},
            )
        refund_amount = txn.remaining_refundable if amount is None else to_money(amount)
        if refund_amount <= ZERO:
            raise ValidationError(
                "Refund amount must be greater than zero",
                error_code="INVALID_REFUND_AMOUNT",
                details={"amount": str(refund_amount)},
            )
        if txn.refunded_amount + refund_amount > txn.amount:
            raise ValidationError(
                "Refund exceeds remaining refundable amount",
                error_code="REFUND_EXCEEDS_AMOUNT",
                details={
                    "requested": str(refund_amount),
                    "remaining": str(txn.remaining_refundable),
                    "refunded_amount": str(txn.refunded_amount),
                },
            )
        return refund_amount

    # =========================================================================
    # Queries
    # =========================================================================

    def get_transaction(self, user: User, transaction_id: Any) -> PaymentTransaction:
        """
        Raises:
            NotFoundError: Unknown transaction
            ForbiddenError: Caller is neither the owner nor a reviewer
        """
        return self._get_owned(user, transaction_id, allow_reviewer=True)

    def list_user_transactions(self, user: User, query: TransactionQuery) -> TransactionPage:
        from payments.services.queries import TransactionQueryService

        return TransactionQueryService.list_user_transactions(user, query)

    def calculate_fee_quote(
        self,
        amount: Any,
        transaction_type: str,
        currency: str | None = None,
        provider_id: int | None = None,
        payment_method: str | None = None,
    ) -> FeeBreakdown:
        """
        Fee breakdown for an amount without creating anything.

        Raises:
            ValidationError: Bad amount or transaction type
            NotFoundError: Unknown method/provider
        """
        amount = parse_amount(amount)
        if transaction_type not in TransactionType.values:
            raise ValidationError(
                f"Unknown transaction type: {transaction_type}",
                error_code="INVALID_TRANSACTION_TYPE",
            )
        currency = (currency or getattr(settings, "PAYMENTS_DEFAULT_CURRENCY", "MYR")).upper()
        provider, _ = self.resolve_provider(
            amount=amount,
            currency=currency,
            transaction_type=transaction_type,
            payment_method=payment_method,
            provider_id=provider_id,
        )
        return self.fee_calculator.calculate_fees(amount, transaction_type, provider=provider, currency=currency)

    # =========================================================================
    # Maintenance
    # =========================================================================

    def expire_stale_manual_payments(self, now: datetime | None = None, limit: int = 500) -> int:
        """
        Cancel PENDING manual payments whose proof upload deadline passed.

        Returns:
            Number of transactions canceled
        """
        logger = self.get_logger()
        now = now or timezone.now()

        candidate_ids = list(
            PaymentTransaction.objects.filter(
                status=TransactionStatus.PENDING,
                is_manual=True,
                upload_deadline__lt=now,
                proof_uploaded_at__isnull=True,
            )
            .order_by("upload_deadline")
            .values_list("id", flat=True)[:limit]
        )

        expired = 0
        for transaction_id in candidate_ids:
            effects = SideEffectQueue(operation="expire_stale_manual_payment", transaction_id=str(transaction_id))
            try:
                with transaction.atomic():
                    txn = lock_transaction(transaction_id)
                    if txn.status != TransactionStatus.PENDING or txn.proof_uploaded_at is not None:
                        continue
                    txn.cancel("Proof of payment was not uploaded before the deadline")
                    save_transition(txn, TransactionStatus.PENDING, TRANSITION_FIELDS)
                    self._notify(
                        effects,
                        txn.user_id,
                        PaymentNotification(
                            notification_type="payment_expired",
                            title="Payment Expired",
                            message=(
                                f"Your manual payment {txn.payment_reference_code} expired because no "
                                "proof of payment was uploaded in time."
                            ),
                            metadata={"transaction_id": str(txn.id)},
                            idempotency_key=f"payment_expired:{txn.id}",
                        ),
                    )
            except (StaleRecordError, NotFoundError):
                logger.info(
                    "Stale manual payment changed concurrently, skipping",
                    extra={"transaction_id": str(transaction_id)},
                )
                continue
            effects.run()
            expired += 1

        if expired:
            logger.info("Expired stale manual payments", extra={"count": expired})
        return expired

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get_owned(self, user: User, transaction_id: Any, allow_reviewer: bool = False) -> PaymentTransaction:
        try:
            txn = PaymentTransaction.objects.select_related("provider").get(pk=transaction_id)
        except (PaymentTransaction.DoesNotExist, DjangoValidationError, ValueError, TypeError):
            raise NotFoundError(
                "Payment transaction not found",
                error_code="TRANSACTION_NOT_FOUND",
                details={"transaction_id": str(transaction_id)},
            ) from None

        if txn.user_id != user.pk and not (allow_reviewer and getattr(user, "is_payment_reviewer", False)):
            raise ForbiddenError(
                "You do not have access to this transaction",
                details={"transaction_id": str(txn.id)},
            )
        return txn

    def _notify(self, effects: SideEffectQueue, user_id: Any, notification: PaymentNotification) -> None:
        if self.notifier is None:
            return
        effects.add(
            f"notify:{notification.notification_type}",
            lambda: self.notifier.notify(user_id, notification),
        )
