"""
Service layer building blocks.

Views translate HTTP, models hold data and guard their own state
transitions, services coordinate the two and never return a response.

- ServiceResult: outcome of a service call. Expected failures (a booking
  that is not cancellable, a refund declined at the gateway) come back
  as failed results with an error_code.
- BaseService: classmethod-only base with a per-class logger, transaction
  helper and small validation helpers.

Unexpected failures (database errors, bugs) are left to propagate.

Usage:
    from core.services import BaseService, ServiceResult

    class BookingService(BaseService):
        @classmethod
        def cancel(cls, booking_id) -> ServiceResult[Booking]:
            with cls.atomic():
                booking = Booking.objects.select_for_update().get(id=booking_id)
                booking.status = BookingStatus.CANCELLED
                booking.save(update_fields=["status", "updated_at"])
            return ServiceResult.success(booking)

    result = BookingService.cancel(booking_id)
    if not result.success:
        return Response(result.to_response(), status=400)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Iterator
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Outcome of a service operation.

    A failure may still carry data: a failed refund returns the failed
    RefundTransaction so the caller can show what was attempted.

    Attributes:
        success: Whether the operation succeeded
        data: Payload (always set on success)
        error: Human-readable message on failure
        error_code: Machine-readable code such as "REFUND_FAILED"
        errors: Field errors or structured details of the failure
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, Any] | None = None

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, Any] | None = None,
        data: T | None = None,
    ) -> ServiceResult[T]:
        return cls(success=False, data=data, error=error, error_code=error_code, errors=errors)

    @classmethod
    def from_exception(cls, exc: Exception) -> ServiceResult[T]:
        """
        Failed result from a caught exception.

        BaseApplicationError subclasses keep their error_code and details;
        anything else is coded after its class name.
        """
        return cls(
            success=False,
            error=getattr(exc, "message", None) or str(exc),
            error_code=getattr(exc, "error_code", None) or exc.__class__.__name__.upper(),
            errors=getattr(exc, "details", None) or None,
        )

    def to_response(self) -> dict[str, Any]:
        """
        Body for an API error response.

        Example:
            {
                "success": false,
                "error": "Only FAILED requests can be retried",
                "error_code": "INVALID_STATE_TRANSITION",
                "errors": {"current_status": "completed"}
            }
        """
        if self.success:
            return {"success": True, "data": self.data}

        body: dict[str, Any] = {"success": False, "error": self.error}
        if self.error_code:
            body["error_code"] = self.error_code
        if self.errors:
            body["errors"] = self.errors
        return body


class BaseService:
    """
    Base class for stateless, classmethod-only services.

    Collaborators that reach outside the process (the refund gateway) are
    held as class attributes so tests can swap them.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        # e.g. cancellations.services.payment_gateway_service.PaymentGatewayService
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Iterator[None]:
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
    ) -> ServiceResult:
        """Log a caught application error and turn it into a failed result."""
        message = f"{context}: {exc}" if context else str(exc)
        cls.get_logger().log(log_level, message, exc_info=log_level >= logging.ERROR)
        return ServiceResult.from_exception(exc)

    @classmethod
    def validate_required(cls, **kwargs) -> ServiceResult | None:
        """
        Failed result naming every argument that is None or blank, else None.

        Example:
            invalid = cls.validate_required(reason=reason)
            if invalid:
                return invalid
        """
        errors = {
            name: ["This field is required."]
            for name, value in kwargs.items()
            if value is None or (isinstance(value, str) and not value.strip())
        }
        if errors:
            return ServiceResult.failure(
                "Required fields missing",
                error_code="VALIDATION_ERROR",
                errors=errors,
            )
        return None


__all__ = [
    "BaseService",
    "ServiceResult",
]
