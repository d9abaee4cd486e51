"""
Cancellation and refund exceptions.

Exception Hierarchy:
    CancellationError (base for the cancellation domain)
    ├── PolicyValidationError - Policy document rejected by validation
    └── RefundGatewayError - Base for payment gateway failures
        ├── GatewayDeclinedError - Refund declined (permanent)
        ├── GatewayInvalidRequestError - Bad parameters (permanent)
        ├── GatewayResponseError - Unusable gateway payload (permanent)
        ├── GatewayRateLimitError - Rate limited (transient)
        ├── GatewayUnavailableError - Network or 5xx failure (transient)
        └── GatewayTimeoutError - No response in time (transient)

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)

Usage:
    from cancellations.exceptions import RefundGatewayError

    try:
        StripeRefundAdapter.create_refund(params, idempotency_key=key)
    except RefundGatewayError as e:
        transaction.fail(error=e.message)
        if e.is_retryable:
            ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError, ExternalServiceError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Cancellation Domain Exceptions
# =============================================================================


class CancellationError(BaseApplicationError):
    """Base exception for cancellation workflow errors."""

    default_error_code: str = "CANCELLATION_ERROR"


class PolicyValidationError(CancellationError):
    """
    Raised when a cancellation policy document fails validation.

    details["errors"] holds every validation message, not just the first.

    Example:
        errors = PolicyManager.validate(document)
        if errors:
            raise PolicyValidationError(
                "Invalid cancellation policy",
                details={"errors": errors},
            )
    """

    default_error_code: str = "INVALID_CANCELLATION_POLICY"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class RefundGatewayError(ExternalServiceError):
    """
    Base exception for payment gateway refund errors.

    Attributes:
        gateway_code: Provider's own error code, if any
        is_retryable: Whether a later attempt could succeed

    Note:
        A timeout does not mean the refund failed at the provider.
        Retries reuse the attempt's idempotency key semantics, so a
        refund that went through is not issued twice.
    """

    default_error_code: str = "REFUND_GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        gateway_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if gateway_code:
            details["gateway_code"] = gateway_code
        super().__init__(message, error_code=error_code, details=details)
        self.gateway_code = gateway_code


# -----------------------------------------------------------------------------
# Permanent Errors
# -----------------------------------------------------------------------------


class GatewayDeclinedError(RefundGatewayError):
    """The provider refused the refund (charge disputed, already refunded, ...)."""

    default_error_code: str = "REFUND_DECLINED"


class GatewayInvalidRequestError(RefundGatewayError):
    """
    The provider rejected the request parameters.

    Usually an unknown charge reference or an amount larger than what
    remains refundable on the charge.
    """

    default_error_code: str = "REFUND_INVALID_REQUEST"


class GatewayResponseError(RefundGatewayError):
    """The provider answered, but without a usable refund id or status."""

    default_error_code: str = "REFUND_INVALID_RESPONSE"


# -----------------------------------------------------------------------------
# Transient Errors
# -----------------------------------------------------------------------------


class GatewayRateLimitError(RefundGatewayError):
    default_error_code: str = "REFUND_GATEWAY_RATE_LIMITED"
    is_retryable: bool = True


class GatewayUnavailableError(RefundGatewayError):
    """Network failure, DNS failure or a 5xx from the provider."""

    default_error_code: str = "REFUND_GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class GatewayTimeoutError(RefundGatewayError):
    """
    The refund call timed out.

    The refund may still have been created at the provider; the
    reconciliation sweep resolves that case.
    """

    default_error_code: str = "REFUND_GATEWAY_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    details carries pk, expected_version and current_version.
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock can't be acquired in time.

    Another worker is processing the same cancellation request.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a state transition isn't allowed from the current state.

    details carries current_state and the attempted action.
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


__all__ = [
    "CancellationError",
    "GatewayDeclinedError",
    "GatewayInvalidRequestError",
    "GatewayRateLimitError",
    "GatewayResponseError",
    "GatewayTimeoutError",
    "GatewayUnavailableError",
    "InvalidStateTransitionError",
    "LockAcquisitionError",
    "PolicyValidationError",
    "RefundGatewayError",
    "StaleRecordError",
]
