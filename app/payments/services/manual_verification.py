"""
Manual payment verification.

Manual methods (bank transfer, e-wallet) never touch a gateway. The payer
transfers money outside the platform, uploads a proof of payment, and a
reviewer (ADMIN or MODERATOR) approves or rejects it:

    PENDING --upload_payment_proof--> PROCESSING
    PROCESSING --approve--> SUCCEEDED (payout distribution follows)
    PROCESSING --reject--> FAILED (payer starts a fresh intent)

Uploads are capped per transaction. The attempt counter is committed before
any other check so that failed uploads still count.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from core.helpers import calculate_pagination, normalize_page
from core.services import BaseService
from payments.exceptions import (
    ForbiddenError,
    InvalidStateError,
    TooManyAttemptsError,
    ValidationError,
)
from payments.locks import lock_transaction, save_fields, save_transition
from payments.models import PaymentMethodConfig, PaymentTransaction
from payments.protocols import PaymentNotification
from payments.side_effects import SideEffectQueue
from payments.state_machines import TransactionStatus, VerificationAction
from payments.storage import ALLOWED_PROOF_EXTENSIONS, MAX_PROOF_SIZE_BYTES

if TYPE_CHECKING:
    from django.core.files.base import File

    from authentication.models import User
    from payments.protocols import Notifier, ProofStorage
    from payments.services.payment_orchestrator import PaymentOrchestrator


PROOF_FIELDS = [
    "status",
    "proof_of_payment_url",
    "proof_of_payment_key",
    "proof_uploaded_at",
]

VERIFICATION_FIELDS = [
    "status",
    "processed_at",
    "failure_reason",
    "verified_by",
    "verified_at",
    "verification_notes",
    "rejection_reason",
]


@dataclass
class ManualVerificationFilters:
    transaction_type: str | None = None
    payment_method: str | None = None
    uploaded_after: datetime | None = None
    uploaded_before: datetime | None = None
    page: int = 1
    limit: int = 20


@dataclass
class PendingVerification:
    transaction: PaymentTransaction
    proof_url: str

    def to_dict(self) -> dict[str, Any]:
        txn = self.transaction
        return {
            "transaction_id": str(txn.id),
            "user_id": str(txn.user_id),
            "user_email": txn.user.email,
            "transaction_type": txn.transaction_type,
            "amount": str(txn.amount),
            "currency": txn.currency,
            "payment_method": txn.payment_method,
            "payment_reference_code": txn.payment_reference_code,
            "proof_uploaded_at": txn.proof_uploaded_at.isoformat() if txn.proof_uploaded_at else None,
            "proof_upload_attempts": txn.proof_upload_attempts,
            "proof_url": self.proof_url,
        }


@dataclass
class PendingVerificationPage:
    items: list[PendingVerification] = field(default_factory=list)
    pagination: dict[str, Any] = field(default_factory=dict)


def validate_proof_file(file: File) -> None:
    """
    Raises:
        ValidationError: Unsupported extension or file too large
    """
    name = getattr(file, "name", "") or ""
    extension = os.path.splitext(name)[1].lower()
    if extension not in ALLOWED_PROOF_EXTENSIONS:
        raise ValidationError(
            "Proof of payment must be an image or PDF",
            error_code="INVALID_PROOF_FILE",
            details={"allowed": sorted(ALLOWED_PROOF_EXTENSIONS), "extension": extension},
        )
    size = getattr(file, "size", None)
    if size is not None and size > MAX_PROOF_SIZE_BYTES:
        raise ValidationError(
            "Proof of payment file is too large",
            error_code="PROOF_FILE_TOO_LARGE",
            details={"max_bytes": MAX_PROOF_SIZE_BYTES, "size": size},
        )


class ManualVerificationService(BaseService):
    """Proof uploads and reviewer decisions for manual payments."""

    def __init__(
        self,
        orchestrator: PaymentOrchestrator,
        storage: ProofStorage,
        notifier: Notifier | None = None,
    ):
        self.orchestrator = orchestrator
        self.storage = storage
        self.notifier = notifier

    # =========================================================================
    # Payer Side
    # =========================================================================

    def upload_payment_proof(self, user: User, transaction_id: Any, file: File) -> PaymentTransaction:
        """
        Store a proof of payment and move the transaction to PROCESSING.

        Raises:
            NotFoundError: Unknown transaction
            ForbiddenError: Caller does not own it
            TooManyAttemptsError: Upload cap already reached
            InvalidStateError: Transaction is not PENDING
            ValidationError: Not a proof-based manual payment, or bad file
        """
        logger = self.get_logger()
        max_uploads = getattr(settings, "MANUAL_PAYMENT_MAX_PROOF_UPLOADS", 3)

        with transaction.atomic():
            txn = lock_transaction(transaction_id)
            if txn.user_id != user.pk:
                raise ForbiddenError(
                    "You do not have access to this transaction",
                    details={"transaction_id": str(txn.id)},
                )
            if txn.proof_upload_attempts >= max_uploads:
                raise TooManyAttemptsError(
                    "Maximum proof upload attempts reached",
                    details={"transaction_id": str(txn.id), "max_attempts": max_uploads},
                )
            txn.proof_upload_attempts += 1
            save_fields(txn, ["proof_upload_attempts"])

        logger.info(
            "Proof upload attempt",
            extra={
                "transaction_id": str(txn.id),
                "user_id": str(user.pk),
                "attempt": txn.proof_upload_attempts,
            },
        )

        if txn.status != TransactionStatus.PENDING:
            raise InvalidStateError(
                "Proof can only be uploaded for pending payments",
                details={"transaction_id": str(txn.id), "current_status": txn.status},
            )
        self._require_proof_method(txn)
        validate_proof_file(file)

        stored = self.storage.upload_proof(file, txn.id)

        effects = SideEffectQueue(operation="upload_payment_proof", transaction_id=str(txn.id))
        try:
            with transaction.atomic():
                txn = lock_transaction(txn.id)
                if txn.status != TransactionStatus.PENDING:
                    raise InvalidStateError(
                        "Proof can only be uploaded for pending payments",
                        details={"transaction_id": str(txn.id), "current_status": txn.status},
                    )
                txn.proof_of_payment_url = stored.url
                txn.proof_of_payment_key = stored.key
                txn.proof_uploaded_at = timezone.now()
                txn.mark_processing()
                save_transition(txn, TransactionStatus.PENDING, PROOF_FIELDS)
        except Exception:
            self._discard_proof(stored.key, txn.id)
            raise

        self._queue_review_requests(txn, effects)
        self._notify(
            effects,
            txn.user_id,
            PaymentNotification(
                notification_type="payment_proof_received",
                title="Proof of Payment Received",
                message=(
                    f"We received your proof for payment {txn.payment_reference_code}. "
                    "It will be reviewed shortly."
                ),
                metadata={"transaction_id": str(txn.id)},
                idempotency_key=f"payment_proof_received:{txn.id}:{txn.version}",
            ),
        )

        logger.info(
            "Proof of payment uploaded",
            extra={"transaction_id": str(txn.id), "user_id": str(user.pk), "key": stored.key},
        )
        effects.run()
        return txn

    def _discard_proof(self, key: str, transaction_id: Any) -> None:
        """Remove a stored proof that never got attached to its transaction."""
        logger = self.get_logger()
        try:
            self.storage.delete_proof(key)
        except Exception:
            logger.error(
                "Failed to delete orphaned payment proof",
                extra={"transaction_id": str(transaction_id), "key": key},
                exc_info=True,
            )
            return
        logger.info(
            "Deleted orphaned payment proof",
            extra={"transaction_id": str(transaction_id), "key": key},
        )

    def _require_proof_method(self, txn: PaymentTransaction) -> None:
        if not txn.is_manual:
            raise ValidationError(
                "This payment does not accept proof of payment",
                error_code="NOT_MANUAL_PAYMENT",
                details={"transaction_id": str(txn.id)},
            )
        if txn.payment_method:
            method = PaymentMethodConfig.objects.filter(method_code=txn.payment_method).first()
            if method is not None and not (method.is_manual and method.requires_proof):
                raise ValidationError(
                    "This payment method does not require proof of payment",
                    error_code="PROOF_NOT_REQUIRED",
                    details={"payment_method": txn.payment_method},
                )

    def _queue_review_requests(self, txn: PaymentTransaction, effects: SideEffectQueue) -> None:
        reviewer_ids = list(get_user_model().objects.payment_reviewers().values_list("pk", flat=True))
        for reviewer_id in reviewer_ids:
            self._notify(
                effects,
                reviewer_id,
                PaymentNotification(
                    notification_type="manual_payment_review",
                    title="Manual Payment Awaiting Review",
                    message=(
                        f"Payment {txn.payment_reference_code} of {txn.currency} {txn.amount} "
                        "has a new proof of payment to review."
                    ),
                    metadata={"transaction_id": str(txn.id)},
                    idempotency_key=f"manual_payment_review:{txn.id}:{txn.version}:{reviewer_id}",
                ),
            )

    # =========================================================================
    # Reviewer Side
    # =========================================================================

    def verify_manual_payment(
        self,
        reviewer: User,
        transaction_id: Any,
        action: str,
        notes: str = "",
    ) -> PaymentTransaction:
        """
        Approve or reject an uploaded proof.

        Raises:
            ForbiddenError: Caller is not ADMIN or MODERATOR
            ValidationError: Unknown action
            NotFoundError: Unknown transaction
            InvalidStateError: Not PROCESSING, or no proof stored
        """
        self._require_reviewer(reviewer)
        if action not in VerificationAction.values:
            raise ValidationError(
                f"Unknown verification action: {action}",
                error_code="INVALID_VERIFICATION_ACTION",
                details={"supported": list(VerificationAction.values)},
            )

        logger = self.get_logger()
        effects = SideEffectQueue(operation="verify_manual_payment", transaction_id=str(transaction_id))

        with transaction.atomic():
            txn = lock_transaction(transaction_id)
            if txn.status != TransactionStatus.PROCESSING or not txn.has_proof:
                raise InvalidStateError(
                    "Only payments with an uploaded proof awaiting review can be verified",
                    details={"transaction_id": str(txn.id), "current_status": txn.status},
                )

            txn.verified_by = reviewer
            txn.verified_at = timezone.now()
            txn.verification_notes = notes

            if action == VerificationAction.APPROVE:
                txn.succeed()
                save_transition(txn, TransactionStatus.PROCESSING, VERIFICATION_FIELDS)
                self.orchestrator.queue_success_effects(txn, effects)
            else:
                txn.rejection_reason = notes
                txn.fail(notes or "Proof of payment rejected")
                save_transition(txn, TransactionStatus.PROCESSING, VERIFICATION_FIELDS)
                message = "Your proof of payment was rejected."
                if notes:
                    message = f"{message} Reason: {notes}."
                message = f"{message} You can start a new payment and upload a new proof."
                self._notify(
                    effects,
                    txn.user_id,
                    PaymentNotification(
                        notification_type="payment_proof_rejected",
                        title="Proof of Payment Rejected",
                        message=message,
                        metadata={"transaction_id": str(txn.id), "reason": notes, "can_retry": True},
                        idempotency_key=f"payment_proof_rejected:{txn.id}",
                    ),
                )

            logger.info(
                "Manual payment approved" if action == VerificationAction.APPROVE else "Manual payment rejected",
                extra={
                    "transaction_id": str(txn.id),
                    "reviewer_id": str(reviewer.pk),
                    "status": txn.status,
                },
            )

        effects.run()
        return txn

    def get_pending_manual_verifications(
        self,
        reviewer: User,
        filters: ManualVerificationFilters | None = None,
    ) -> PendingVerificationPage:
        """
        Manual payments awaiting review, oldest upload first, each with a
        short-lived proof URL.

        Raises:
            ForbiddenError: Caller is not ADMIN or MODERATOR
        """
        self._require_reviewer(reviewer)
        filters = filters or ManualVerificationFilters()
        page, limit = normalize_page(filters.page, filters.limit)
        ttl = getattr(settings, "PROOF_SIGNED_URL_TTL_SECONDS", 3600)

        queryset = PaymentTransaction.objects.select_related("user").filter(
            status=TransactionStatus.PROCESSING,
            is_manual=True,
            proof_uploaded_at__isnull=False,
        )
        if filters.transaction_type:
            queryset = queryset.filter(transaction_type=filters.transaction_type)
        if filters.payment_method:
            queryset = queryset.filter(payment_method=filters.payment_method)
        if filters.uploaded_after:
            queryset = queryset.filter(proof_uploaded_at__gte=filters.uploaded_after)
        if filters.uploaded_before:
            queryset = queryset.filter(proof_uploaded_at__lte=filters.uploaded_before)
        queryset = queryset.order_by("proof_uploaded_at", "id")

        total = queryset.count()
        pagination = calculate_pagination(total=total, page=page, per_page=limit)
        offset = (pagination["page"] - 1) * limit

        items = []
        for txn in queryset[offset : offset + limit]:
            if txn.proof_of_payment_key:
                url = self.storage.get_signed_url(txn.proof_of_payment_key, ttl)
            else:
                url = txn.proof_of_payment_url
            items.append(PendingVerification(transaction=txn, proof_url=url))

        return PendingVerificationPage(items=items, pagination=pagination)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_reviewer(self, user: User) -> None:
        if not getattr(user, "is_payment_reviewer", False):
            raise ForbiddenError(
                "Only administrators and moderators can review manual payments",
                error_code="REVIEWER_REQUIRED",
            )

    def _notify(self, effects: SideEffectQueue, user_id: Any, notification: PaymentNotification) -> None:
        if self.notifier is None:
            return
        effects.add(
            f"notify:{notification.notification_type}",
            lambda: self.notifier.notify(user_id, notification),
        )
