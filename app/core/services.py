"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Result wrapper for operations whose failures are expected
- BaseService: Base class with logging and transaction helpers

Pattern Comparison:
    - ServiceResult: Use for expected, non-exceptional outcomes (a webhook
      event that references an unknown transaction, a notification type
      that is switched off)
    - Exceptions: Use for errors callers must handle (see core.exceptions)

Usage:
    from core.services import BaseService, ServiceResult

    class NotificationService(BaseService):
        @classmethod
        def create_notification(cls, recipient, ...) -> ServiceResult[Notification]:
            with cls.atomic():
                notification = Notification.objects.create(...)
            cls.get_logger().info("Created notification", extra={...})
            return ServiceResult.ok(notification)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Callable, Generator
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures

    Usage:
        result = WebhookProcessor(...).process(event)
        if not result:
            logger.warning(result.error, extra={"error_code": result.error_code})
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def ok(cls, data: T) -> ServiceResult[T]:
        """Create a successful result."""
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Example:
            return ServiceResult.failure(
                "No transaction for gateway id",
                error_code="TRANSACTION_NOT_FOUND",
            )
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
        )

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """Create a failed result from a caught exception."""
        return cls(
            success=False,
            error=str(exc),
            error_code=error_code
            or getattr(exc, "error_code", None)
            or exc.__class__.__name__.upper(),
        )

    def to_response(self) -> dict[str, Any]:
        """Convert to API response format."""
        if self.success:
            return {"success": True, "data": self.data}

        response: dict[str, Any] = {
            "success": False,
            "error": self.error,
        }
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        return response

    def map(self, func: Callable[[T], Any]) -> ServiceResult:
        """Transform the data if successful; failures pass through unchanged."""
        if self.success and self.data is not None:
            return ServiceResult.ok(func(self.data))
        return self

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides:
    - A logger named after the concrete service class
    - Explicit transaction boundaries via ``atomic()``
    - Consistent conversion of caught exceptions into ServiceResult

    Services that hold injected collaborators (gateway registry, notifier,
    storage) are instantiated; stateless services use classmethods.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named ``<module>.<ClassName>`` for easy filtering.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        Thin wrapper around ``django.db.transaction.atomic`` that makes
        transaction boundaries explicit in service code.
        """
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
    ) -> ServiceResult:
        """
        Log an exception and convert it to a failed ServiceResult.

        Example:
            try:
                send_mail(...)
            except SMTPException as e:
                return cls.handle_exception(e, "notification email")
        """
        message = f"{context}: {exc}" if context else str(exc)
        cls.get_logger().log(log_level, message, exc_info=True)
        return ServiceResult.from_exception(exc)
