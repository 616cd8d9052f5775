"""
Circuit breaker for outbound calls to payment gateways and other providers.

State lives in Django's cache (Redis via django-redis in production) so all
web and Celery processes agree on whether a provider is currently failing.

States:
    - CLOSED: calls pass through
    - OPEN: calls fail fast until ``recovery_timeout`` elapses
    - HALF_OPEN: one probe call is allowed; success closes, failure reopens

Usage:
    from core.circuit_breaker import CircuitBreaker, CircuitOpenError

    breaker = CircuitBreaker("gateway:stripe", failure_threshold=5)

    with breaker.call():
        stripe.PaymentIntent.retrieve(intent_id)

Note:
    Cache errors never block traffic; the breaker fails open.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING

from django.core.cache import cache

from core.exceptions import ExternalServiceError

if TYPE_CHECKING:
    from collections.abc import Generator

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(ExternalServiceError):
    """
    Raised when a call is refused because the circuit is open.

    Signals that the provider is considered unavailable; no request was
    made, so the operation is always safe to retry later.
    """

    default_error_code: str = "CIRCUIT_OPEN"
    http_status: int = 503
    is_retryable: bool = True


class CircuitBreaker:
    """
    Cache-backed circuit breaker.

    The whole state is one cache entry::

        {"state": "open", "failures": 5, "opened_at": 1700000000.0}

    Attributes:
        name: Unique identifier (e.g. "gateway:xendit")
        failure_threshold: Consecutive failures before opening
        recovery_timeout: Seconds before a half-open probe is allowed
    """

    CACHE_TTL = 3600

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._key = f"circuit:{name}"

    # =========================================================================
    # Public API
    # =========================================================================

    def is_available(self) -> bool:
        """Return True when a call may go through (closed or half-open probe)."""
        try:
            record = self._load()
        except Exception as e:
            logger.warning(
                f"Circuit breaker cache error, failing open: {e}",
                extra={"circuit": self.name},
            )
            return True

        state = CircuitState(record["state"])
        if state == CircuitState.CLOSED:
            return True

        if state == CircuitState.OPEN:
            elapsed = time.time() - (record.get("opened_at") or 0)
            if elapsed < self.recovery_timeout:
                return False
            record["state"] = CircuitState.HALF_OPEN.value
            record["probing"] = True
            self._store(record)
            logger.info(
                "Circuit breaker half-open, allowing probe call",
                extra={"circuit": self.name},
            )
            return True

        # Half-open: only the single in-flight probe is allowed
        if record.get("probing"):
            return False
        record["probing"] = True
        self._store(record)
        return True

    def record_success(self) -> None:
        try:
            record = self._load()
            if record["state"] != CircuitState.CLOSED.value:
                logger.info(
                    "Circuit breaker closed after successful call",
                    extra={"circuit": self.name},
                )
            self._store(self._closed())
        except Exception as e:
            logger.warning(
                f"Circuit breaker failed to record success: {e}",
                extra={"circuit": self.name},
            )

    def record_failure(self) -> None:
        try:
            record = self._load()
            if record["state"] == CircuitState.HALF_OPEN.value:
                self._open(record["failures"])
                logger.warning(
                    "Circuit breaker reopened after failed probe",
                    extra={"circuit": self.name},
                )
                return

            failures = record["failures"] + 1
            if failures >= self.failure_threshold:
                self._open(failures)
                logger.warning(
                    f"Circuit breaker opened after {failures} failures",
                    extra={
                        "circuit": self.name,
                        "failure_count": failures,
                        "threshold": self.failure_threshold,
                    },
                )
            else:
                record["failures"] = failures
                self._store(record)
        except Exception as e:
            logger.warning(
                f"Circuit breaker failed to record failure: {e}",
                extra={"circuit": self.name},
            )

    @contextmanager
    def call(self) -> Generator[None, None, None]:
        """
        Guard a block of code with the breaker.

        Raises:
            CircuitOpenError: The circuit refuses calls right now
        """
        if not self.is_available():
            raise CircuitOpenError(
                f"{self.name} is temporarily unavailable",
                details={"circuit": self.name},
            )
        try:
            yield
        except Exception:
            self.record_failure()
            raise
        self.record_success()

    def reset(self) -> None:
        """Force the circuit closed (admin action, tests)."""
        cache.delete(self._key)

    def get_status(self) -> dict:
        """Current state for health checks and monitoring."""
        try:
            record = self._load()
        except Exception as e:
            return {"name": self.name, "state": "unknown", "error": str(e)}
        status = {
            "name": self.name,
            "state": record["state"],
            "failure_count": record["failures"],
            "failure_threshold": self.failure_threshold,
        }
        if record.get("opened_at"):
            status["opened_seconds_ago"] = int(time.time() - record["opened_at"])
        return status

    # =========================================================================
    # Cache record helpers
    # =========================================================================

    @staticmethod
    def _closed() -> dict:
        return {"state": CircuitState.CLOSED.value, "failures": 0, "opened_at": None}

    def _load(self) -> dict:
        record = cache.get(self._key)
        if not isinstance(record, dict) or "state" not in record:
            return self._closed()
        return record

    def _store(self, record: dict) -> None:
        cache.set(self._key, record, timeout=self.CACHE_TTL)

    def _open(self, failures: int) -> None:
        self._store(
            {
                "state": CircuitState.OPEN.value,
                "failures": failures,
                "opened_at": time.time(),
            }
        )

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r})"
