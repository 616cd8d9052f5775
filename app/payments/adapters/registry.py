"""
Gateway registry: provider_code -> adapter instance.

Built once per process from ``settings.PAYMENT_GATEWAYS``:

    PAYMENT_GATEWAYS = {
        "stripe": "payments.adapters.stripe_adapter.StripeGateway",
        "xendit": "payments.adapters.xendit_adapter.XenditGateway",
    }
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING

from django.utils.module_loading import import_string

from payments.exceptions import NotFoundError

if TYPE_CHECKING:
    from payments.adapters.base import GatewayAdapter

logger = logging.getLogger(__name__)


class GatewayRegistry(Mapping):
    """Read-only mapping of provider codes to adapters."""

    def __init__(self, adapters: dict[str, GatewayAdapter] | None = None):
        self._adapters = dict(adapters or {})

    def __getitem__(self, provider_code: str) -> GatewayAdapter:
        return self._adapters[provider_code]

    def __iter__(self) -> Iterator[str]:
        return iter(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)

    def get_adapter(self, provider_code: str) -> GatewayAdapter:
        """
        Raises:
            NotFoundError: No adapter registered for this provider
        """
        try:
            return self._adapters[provider_code]
        except KeyError:
            raise NotFoundError(
                f"No payment gateway registered for provider '{provider_code}'",
                error_code="GATEWAY_NOT_FOUND",
                details={"provider_code": provider_code, "registered": sorted(self._adapters)},
            ) from None

    @classmethod
    def from_config(cls, config: dict[str, str]) -> GatewayRegistry:
        adapters = {}
        for provider_code, dotted_path in config.items():
            adapter = import_string(dotted_path)()
            if adapter.provider_code != provider_code:
                logger.warning(
                    "Gateway registered under a different code than it declares",
                    extra={"provider_code": provider_code, "adapter": repr(adapter)},
                )
            adapters[provider_code] = adapter
        logger.info("Loaded payment gateways", extra={"providers": sorted(adapters)})
        return cls(adapters)
