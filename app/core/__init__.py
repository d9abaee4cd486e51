"""
Shared infrastructure for the bookings and cancellations apps.

- core.models: BaseModel (timestamps), UUIDPrimaryKeyMixin, VersionedModel
- core.services: BaseService, ServiceResult
- core.exceptions: BaseApplicationError and its subclasses
- core.pagination: paginate() and Page
- core.views: health_check

Models are not re-exported here; importing them before the app registry
is ready raises AppRegistryNotReady.
"""

from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .services import BaseService, ServiceResult

__all__ = [
    "BaseApplicationError",
    "BaseService",
    "ConflictError",
    "ExternalServiceError",
    "NotFoundError",
    "PermissionDeniedError",
    "ServiceResult",
    "ValidationError",
]
