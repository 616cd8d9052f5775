"""
Collaborator interfaces consumed by the payment engine.

The engine never imports a concrete notification, storage or reference-entity
implementation directly. It is handed objects satisfying these protocols
when it is constructed (see ``payments.engine``).

Defaults:
    Notifier -> payments.notifier.NotificationServiceNotifier
    ProofStorage -> payments.storage.DefaultStorageProofStorage
    ReferenceEntityStore -> configured per reference type in
        settings.PAYMENTS_REFERENCE_STORES
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from django.core.files.base import File


# =============================================================================
# Notifications
# =============================================================================


@dataclass(frozen=True)
class PaymentNotification:
    """
    Payload handed to a Notifier.

    Attributes:
        notification_type: Machine-readable type ("payment_succeeded", ...)
        title: Short headline
        message: Body text shown to the user
        action_url: Optional deep link
        metadata: Extra structured data (transaction_id, amount, ...)
        idempotency_key: Optional key so retried side effects do not duplicate
    """

    notification_type: str
    title: str
    message: str
    action_url: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    idempotency_key: str | None = None


@runtime_checkable
class Notifier(Protocol):
    """Fire-and-forget notification sink."""

    def notify(self, user_id: Any, notification: PaymentNotification) -> None: ...


# =============================================================================
# Proof Storage
# =============================================================================


@dataclass(frozen=True)
class StoredProof:
    url: str
    key: str


@runtime_checkable
class ProofStorage(Protocol):
    """Stores proof-of-payment uploads and hands out short-lived links."""

    def upload_proof(self, file: File, transaction_id: Any) -> StoredProof: ...

    def get_signed_url(self, key: str, ttl_seconds: int) -> str: ...

    def delete_proof(self, key: str) -> None: ...


# =============================================================================
# Reference Entities
# =============================================================================


@runtime_checkable
class ReferenceEntityStore(Protocol):
    """
    Access to the external entity a payment is for (order, ticket, event...).

    Entities are plain dicts. The engine only reads the fields it needs for
    recipient resolution (``seller_id``, ``host_id``, ``organizer_id``,
    ``event_id``, ``event_date``, ``title``) and only performs the status
    changes it is told to.
    """

    def find_by_id(self, reference_type: str, reference_id: str) -> dict[str, Any] | None: ...

    def update_status(
        self,
        reference_type: str,
        reference_id: str,
        status: str,
        **fields: Any,
    ) -> None: ...

    def increment_sold_quantity(
        self,
        reference_type: str,
        reference_id: str,
        quantity: int = 1,
    ) -> None: ...
