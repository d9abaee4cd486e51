"""
Application exceptions shared by the domain apps.

Exception Hierarchy:
    BaseApplicationError
    ├── ValidationError - Bad input or a broken business rule
    ├── NotFoundError - Missing booking, request or transaction
    ├── PermissionDeniedError - Actor may not touch this resource
    ├── ConflictError - Duplicate or out-of-date state
    └── ExternalServiceError - A third-party call failed

Services raise these inside a transaction and convert them to a failed
ServiceResult with BaseService.handle_exception(); error_code and details
travel into the result unchanged.

Usage:
    from core.exceptions import ConflictError

    raise ConflictError(
        "An active cancellation request already exists for this booking",
        error_code="DUPLICATE_CANCELLATION_REQUEST",
        details={"existing_request_id": str(existing.id)},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Attributes:
        message: Human-readable description
        error_code: Machine-readable code; defaults per subclass
        details: Structured context (ids, current state, field errors)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class ValidationError(BaseApplicationError):
    # Serializer-level validation stays with DRF
    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    default_error_code: str = "NOT_FOUND"


class PermissionDeniedError(BaseApplicationError):
    """Ownership and role checks inside services; authentication is DRF's job."""

    default_error_code: str = "PERMISSION_DENIED"


class ConflictError(BaseApplicationError):
    """
    The resource is not in a state that allows the operation.

    Put the state collided with in details, e.g. {"current_status": "approved"}.
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """A call to a third party failed. Keep provider internals out of message."""

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"


__all__ = [
    "BaseApplicationError",
    "ConflictError",
    "ExternalServiceError",
    "NotFoundError",
    "PermissionDeniedError",
    "ValidationError",
]
