"""
Reference-entity store loading.

``settings.PAYMENTS_REFERENCE_STORES`` maps a reference type to the dotted
path of a ReferenceEntityStore class. Each distinct class is instantiated
once and shared by every reference type that names it.

    PAYMENTS_REFERENCE_STORES = {
        "order": "marketplace.payment_store.OrderStore",
        "ticket": "events.payment_store.TicketStore",
        "event": "events.payment_store.TicketStore",
    }
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import TYPE_CHECKING, Any

from django.utils.module_loading import import_string

if TYPE_CHECKING:
    from payments.protocols import ReferenceEntityStore

logger = logging.getLogger(__name__)


class ReferenceStoreRegistry:
    """reference_type -> ReferenceEntityStore lookup."""

    def __init__(self, stores: dict[str, ReferenceEntityStore] | None = None):
        self._stores = dict(stores or {})

    def __contains__(self, reference_type: str) -> bool:
        return reference_type in self._stores

    def get(self, reference_type: str) -> ReferenceEntityStore | None:
        return self._stores.get(reference_type)

    def register(self, reference_type: str, store: ReferenceEntityStore) -> None:
        self._stores[reference_type] = store

    @property
    def reference_types(self) -> list[str]:
        return sorted(self._stores)

    @classmethod
    def from_config(cls, config: dict[str, str]) -> ReferenceStoreRegistry:
        instances: dict[str, Any] = {}
        stores = {}
        for reference_type, dotted_path in config.items():
            if dotted_path not in instances:
                instances[dotted_path] = import_string(dotted_path)()
            stores[reference_type] = instances[dotted_path]
        logger.info(
            "Loaded reference entity stores",
            extra={"reference_types": sorted(stores)},
        )
        return cls(stores)


class InMemoryReferenceStore:
    """
    Process-local ReferenceEntityStore.

    Entities are dicts keyed by (reference_type, reference_id). Used for
    local development when no owning app provides a store, and in tests.
    """

    def __init__(self, entities: dict[tuple[str, str], dict[str, Any]] | None = None):
        self._lock = threading.Lock()
        self.entities: dict[tuple[str, str], dict[str, Any]] = {}
        for key, entity in (entities or {}).items():
            self.add(key[0], key[1], **entity)

    def add(self, reference_type: str, reference_id: Any, **fields: Any) -> dict[str, Any]:
        entity = {"id": str(reference_id), "sold_quantity": 0, **fields}
        with self._lock:
            self.entities[(reference_type, str(reference_id))] = entity
        return entity

    def find_by_id(self, reference_type: str, reference_id: str) -> dict[str, Any] | None:
        entity = self.entities.get((reference_type, str(reference_id)))
        return copy.deepcopy(entity) if entity is not None else None

    def update_status(self, reference_type: str, reference_id: str, status: str, **fields: Any) -> None:
        with self._lock:
            entity = self.entities.get((reference_type, str(reference_id)))
            if entity is None:
                logger.warning(
                    "Status update for unknown reference entity",
                    extra={"reference_type": reference_type, "reference_id": str(reference_id)},
                )
                return
            entity["status"] = status
            entity.update(fields)

    def increment_sold_quantity(self, reference_type: str, reference_id: str, quantity: int = 1) -> None:
        with self._lock:
            entity = self.entities.get((reference_type, str(reference_id)))
            if entity is not None:
                entity["sold_quantity"] = entity.get("sold_quantity", 0) + quantity
