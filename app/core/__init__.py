"""
Core Application - Infrastructure & Base Classes

Generic building blocks shared by the domain apps. No payment logic lives
here; ``payments`` extends these classes.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - VersionedMixin: Version counter for optimistic locking

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes and HTTP status
    - ValidationError, NotFoundError, PermissionDeniedError,
      ConflictError, RateLimitError, ExternalServiceError

Circuit breaker (import from core.circuit_breaker):
    - CircuitBreaker, CircuitOpenError

Helpers (import from core.helpers):
    - calculate_pagination, normalize_page

Note:
    Django models and model mixins are NOT imported here to avoid
    AppRegistryNotReady errors. Import them directly from their modules.
"""

from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ValidationError,
)
from .helpers import calculate_pagination, normalize_page
from .services import BaseService, ServiceResult

__all__ = [
    # Services
    "BaseService",
    "ServiceResult",
    # Exceptions
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
    "RateLimitError",
    "ExternalServiceError",
    # Helpers
    "calculate_pagination",
    "normalize_page",
]
