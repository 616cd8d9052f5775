"""
Concurrency control for payment ledger writes.

Two complementary mechanisms:

1. **Row locks** (lock_transaction, lock_payout)
   - ``SELECT ... FOR UPDATE`` inside ``transaction.atomic()``
   - Use for read-decide-write sequences on one row

2. **Compare-and-swap writes** (save_transition)
   - ``UPDATE ... WHERE pk=? AND status=? AND version=?``
   - Zero rows updated means another writer got there first
   - Every status change on PaymentTransaction and PayoutDistribution
     goes through it

Usage:
    from payments.locks import lock_transaction, save_transition

    with transaction.atomic():
        txn = lock_transaction(transaction_id)
        expected = txn.status
        txn.succeed()
        save_transition(txn, expected, ["status", "processed_at"])
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db.models import F
from django.utils import timezone

from payments.exceptions import NotFoundError, StaleRecordError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any

    from django.db import models

    from payments.models import PaymentTransaction, PayoutDistribution


# =============================================================================
# Row Locks
# =============================================================================


def lock_transaction(pk: Any) -> PaymentTransaction:
    """
    Lock a PaymentTransaction row for the rest of the atomic block.

    Raises:
        NotFoundError: No transaction with this id
    """
    from payments.models import PaymentTransaction

    try:
        return PaymentTransaction.objects.select_for_update().get(pk=pk)
    except PaymentTransaction.DoesNotExist:
        raise NotFoundError(
            "Payment transaction not found",
            error_code="TRANSACTION_NOT_FOUND",
            details={"transaction_id": str(pk)},
        ) from None


def lock_payout(pk: Any) -> PayoutDistribution:
    """Lock a PayoutDistribution row for the rest of the atomic block."""
    from payments.models import PayoutDistribution

    try:
        return PayoutDistribution.objects.select_for_update().get(pk=pk)
    except PayoutDistribution.DoesNotExist:
        raise NotFoundError(
            "Payout distribution not found",
            error_code="PAYOUT_NOT_FOUND",
            details={"payout_id": str(pk)},
        ) from None


# =============================================================================
# Compare-and-Swap Writes
# =============================================================================


def save_transition(
    instance: models.Model,
    expected_status: str,
    fields: Iterable[str],
) -> None:
    """
    Persist ``fields`` only if the row still has ``expected_status`` and
    the instance's version.

    The version is incremented in the same UPDATE, and ``updated_at`` is
    stamped explicitly because ``QuerySet.update`` bypasses ``auto_now``.

    Args:
        instance: Model instance already mutated in memory (by a django-fsm
            transition or plain attribute writes)
        expected_status: Status the row must have in the database
        fields: Field names to write

    Raises:
        StaleRecordError: The row changed since it was read
    """
    model_class = type(instance)
    now = timezone.now()
    values = {name: getattr(instance, name) for name in fields}
    values["version"] = F("version") + 1
    values["updated_at"] = now

    rows = model_class.objects.filter(
        pk=instance.pk,
        status=expected_status,
        version=instance.version,
    ).update(**values)

    if rows == 0:
        current = model_class.objects.filter(pk=instance.pk).values("status", "version").first()
        raise StaleRecordError(
            f"{model_class.__name__} {instance.pk} was modified by another process",
            details={
                "model": model_class.__name__,
                "pk": str(instance.pk),
                "expected_status": str(expected_status),
                "expected_version": instance.version,
                "current_status": current["status"] if current else None,
                "current_version": current["version"] if current else None,
            },
        )

    instance.version += 1
    instance.updated_at = now


def save_fields(instance: models.Model, fields: Iterable[str]) -> None:
    """
    Version-checked write that leaves status alone.

    Used for non-transition updates such as counting a proof upload
    attempt or refreshing a PENDING intent in place.

    Raises:
        StaleRecordError: The row changed since it was read
    """
    save_transition(instance, instance.status, fields)
