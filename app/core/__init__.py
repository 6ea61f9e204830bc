"""
Core infrastructure shared by the settlement service.

Services (import from core.services):
    - BaseService: Logger and transaction helpers for service classes
    - ServiceResult: Success/failure wrapper for webhook handlers

Exceptions (import from core.exceptions):
    - BaseApplicationError and its categories, each with an HTTP status
      applied by core.exception_handler

Helpers (import from core.helpers):
    - hash_string, stable_digest: Deterministic hashing
    - parse_uuid: Lenient UUID parsing
    - get_client_ip: Client IP extraction from request

Note:
    Models and model mixins are NOT imported here to avoid AppRegistryNotReady
    errors. Import them directly:
        from core.models import BaseModel
        from core.model_mixins import UUIDPrimaryKeyMixin
"""

from .services import BaseService, ServiceResult

from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ValidationError,
)

from .helpers import get_client_ip, hash_string, parse_uuid, stable_digest

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
    "get_client_ip",
    "hash_string",
    "parse_uuid",
    "stable_digest",
]
