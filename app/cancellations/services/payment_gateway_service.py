"""
Payment gateway orchestration for cancellation refunds.

PaymentGatewayService is the only code that creates or changes
RefundTransaction records. Every refund follows a two-phase pattern:

1. Phase 1 (DB transaction): lock the cancellation request, check it is
   PROCESSING, and write a PENDING RefundTransaction.
2. Phase 2 (no transaction): call the gateway with the attempt's
   idempotency key.
3. Phase 3 (DB transaction): record the outcome on the transaction,
   the request and the booking's refund ledger.

A crash between phases leaves a PENDING transaction that
reconcile_transaction() resolves against the gateway later.

Gateway failures never propagate as exceptions: they come back as a
failed ServiceResult and leave both records in FAILED.

Usage:
    from cancellations.services import PaymentGatewayService, RefundRequestParams

    result = PaymentGatewayService.process_refund(
        RefundRequestParams(
            cancellation_request_id=request.id,
            booking_id=request.booking_id,
            amount=Decimal("475.00"),
            payment_reference=booking.payment_reference,
        )
    )
    if result.success:
        result.data.gateway_refund_id   # "re_..."

Testing:
    PaymentGatewayService.set_gateway_adapter(mock_adapter)
    ...
    PaymentGatewayService.set_gateway_adapter(None)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any

from django.db import IntegrityError
from django.utils import timezone

from bookings.services import BookingRefundLedger, RefundEntryParams
from cancellations.adapters import (
    GatewayRefundParams,
    GatewayRefundResult,
    IdempotencyKeyGenerator,
    StripeRefundAdapter,
)
from cancellations.conf import (
    ABANDONED_TRANSACTION_HOURS,
    MAX_REFUND_RETRIES,
    REFUND_GATEWAY_PROVIDER,
)
from cancellations.exceptions import LockAcquisitionError, RefundGatewayError
from cancellations.locks import refund_lock
from cancellations.models import CancellationRequest, RefundTransaction
from cancellations.money import to_decimal, to_minor_units
from cancellations.signals import refund_completed, refund_failed, send_on_commit
from cancellations.state_machines import CancellationStatus, RefundTransactionStatus
from core.exceptions import ValidationError
from core.services import BaseService, ServiceResult

# =============================================================================
# Gateway Status Mapping
# =============================================================================

REFUND_STATUS_COMPLETED = "completed"
REFUND_STATUS_PROCESSING = "processing"
REFUND_STATUS_FAILED = "failed"

GATEWAY_STATUS_MAP = {
    "succeeded": REFUND_STATUS_COMPLETED,
    "pending": REFUND_STATUS_PROCESSING,
    "requires_action": REFUND_STATUS_PROCESSING,
    "failed": REFUND_STATUS_FAILED,
    "canceled": REFUND_STATUS_FAILED,
}

GATEWAY_ADAPTERS = {
    "stripe": StripeRefundAdapter,
}


def canonical_refund_status(gateway_status: str | None) -> str:
    """Map a raw gateway status to completed/processing/failed. Unknown -> processing."""
    return GATEWAY_STATUS_MAP.get((gateway_status or "").lower(), REFUND_STATUS_PROCESSING)


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class RefundRequestParams:
    """Parameters for a gateway refund of one cancellation request."""

    cancellation_request_id: uuid.UUID
    booking_id: uuid.UUID
    amount: Decimal
    payment_reference: str
    reason: str = ""


@dataclass
class RefundProcessingResult:
    """
    Outcome of a refund attempt.

    status is the canonical refund status: completed, processing (the
    gateway has not settled yet) or failed.
    """

    refund_transaction: RefundTransaction
    gateway_refund_id: str | None = None
    status: str = REFUND_STATUS_PROCESSING


@dataclass
class RefundStatusResult:
    gateway_refund_id: str
    status: str
    gateway_status: str


def _response_payload(result: GatewayRefundResult) -> dict[str, Any]:
    if result.raw_response:
        return result.raw_response
    return {
        "id": result.id,
        "status": result.status,
        "amount": result.amount_minor,
        "currency": result.currency,
    }


# =============================================================================
# Service
# =============================================================================


class PaymentGatewayService(BaseService):
    """
    Gateway orchestration with bounded retry and reconciliation.

    Operations:
        process_refund         - Refund a PROCESSING request through the gateway
        check_refund_status    - Read-only status lookup at the gateway
        retry_refund           - Retry a FAILED request (bounded by MAX_REFUND_RETRIES)
        reconcile_transaction  - Resolve a PENDING transaction against the gateway
        release_unsent_refund  - Return a PROCESSING request with no attempt to FAILED
    """

    _gateway_adapter: type | None = None

    @classmethod
    def get_gateway_adapter(cls):
        return cls._gateway_adapter or GATEWAY_ADAPTERS[REFUND_GATEWAY_PROVIDER]

    @classmethod
    def set_gateway_adapter(cls, adapter) -> None:
        """Replace the gateway adapter. Pass None to restore the default."""
        cls._gateway_adapter = adapter

    # =========================================================================
    # process_refund
    # =========================================================================

    @classmethod
    def process_refund(
        cls, params: RefundRequestParams
    ) -> ServiceResult[RefundProcessingResult]:
        """
        Refund a cancellation request through the payment gateway.

        The request must already be PROCESSING. A PENDING transaction is
        committed before the gateway is called.

        Returns:
            ServiceResult[RefundProcessingResult]. On gateway failure the
            result is a failure whose data holds the failed transaction
            and whose errors carry gateway_code and retryable.

        Error codes:
            VALIDATION_ERROR: Missing ids or a non-positive amount (no
                transaction is created)
            CANCELLATION_REQUEST_NOT_FOUND
            BOOKING_MISMATCH: booking_id doesn't belong to the request
            INVALID_STATE_TRANSITION: Request isn't PROCESSING
            REFUND_IN_PROGRESS: Another attempt holds the lock or is pending
            REFUND_LOCK_UNAVAILABLE: Redis could not be reached for the lock
            REFUND_FAILED: The gateway refused or could not be reached
            REFUND_RECORDING_FAILED: The gateway refunded but the outcome
                could not be written; reconciliation will finish it
        """
        logger = cls.get_logger()

        invalid = cls.validate_required(
            cancellation_request_id=params.cancellation_request_id,
            booking_id=params.booking_id,
            payment_reference=params.payment_reference,
            amount=params.amount,
        )
        if invalid:
            return invalid

        try:
            amount = to_decimal(params.amount)
        except ValidationError:
            amount = None
        if amount is None or not amount.is_finite() or amount <= 0:
            return ServiceResult.failure(
                "Refund amount must be greater than zero",
                error_code="VALIDATION_ERROR",
                errors={"amount": ["Must be greater than zero."]},
            )

        logger.info(
            "Starting refund processing",
            extra={
                "cancellation_request_id": str(params.cancellation_request_id),
                "booking_id": str(params.booking_id),
                "amount": str(amount),
            },
        )

        try:
            with refund_lock(params.cancellation_request_id):
                return cls._process_refund_locked(params, amount)
        except LockAcquisitionError as e:
            logger.warning(
                "Failed to acquire lock for refund processing",
                extra={
                    "cancellation_request_id": str(params.cancellation_request_id),
                    "error": str(e),
                },
            )
            if e.error_code == "LOCK_BACKEND_UNAVAILABLE":
                return ServiceResult.failure(
                    "Refund lock is unavailable, try again later",
                    error_code="REFUND_LOCK_UNAVAILABLE",
                    errors=e.details,
                )
            return ServiceResult.failure(
                "A refund is already being processed for this request",
                error_code="REFUND_IN_PROGRESS",
                errors=e.details,
            )

    @classmethod
    def _process_refund_locked(
        cls, params: RefundRequestParams, amount: Decimal
    ) -> ServiceResult[RefundProcessingResult]:
        logger = cls.get_logger()

        # Phase 1: durable PENDING record
        try:
            with cls.atomic():
                request = (
                    CancellationRequest.objects.select_for_update()
                    .filter(id=params.cancellation_request_id)
                    .first()
                )
                if request is None:
                    return ServiceResult.failure(
                        "Cancellation request not found",
                        error_code="CANCELLATION_REQUEST_NOT_FOUND",
                        errors={"cancellation_request_id": str(params.cancellation_request_id)},
                    )
                if str(request.booking_id) != str(params.booking_id):
                    return ServiceResult.failure(
                        "Booking does not belong to this cancellation request",
                        error_code="BOOKING_MISMATCH",
                        errors={
                            "booking_id": str(params.booking_id),
                            "expected_booking_id": str(request.booking_id),
                        },
                    )
                if request.status != CancellationStatus.PROCESSING:
                    return ServiceResult.failure(
                        f"Cannot process refund for a request in {request.status} state",
                        error_code="INVALID_STATE_TRANSITION",
                        errors={"current_status": request.status},
                    )
                if request.refund_transactions.filter(
                    status=RefundTransactionStatus.PENDING
                ).exists():
                    return ServiceResult.failure(
                        "A refund is already pending for this request",
                        error_code="REFUND_IN_PROGRESS",
                        errors={"cancellation_request_id": str(request.id)},
                    )

                try:
                    amount_minor = to_minor_units(amount, request.currency)
                except ValidationError as e:
                    return ServiceResult.from_exception(e)

                attempt = request.retry_count + 1
                adapter = cls.get_gateway_adapter()
                txn = RefundTransaction.objects.create(
                    cancellation_request=request,
                    booking_id=request.booking_id,
                    client_id=request.client_id,
                    owner_id=request.owner_id,
                    amount=amount,
                    currency=request.currency,
                    original_transaction_id=params.payment_reference,
                    reason=params.reason,
                    gateway_provider=getattr(adapter, "provider", REFUND_GATEWAY_PROVIDER),
                    idempotency_key=IdempotencyKeyGenerator.generate(
                        "refund", request.id, attempt
                    ),
                    attempt=attempt,
                )
        except IntegrityError:
            logger.warning(
                "Refund transaction already exists for this attempt",
                extra={"cancellation_request_id": str(params.cancellation_request_id)},
            )
            return ServiceResult.failure(
                "A refund is already pending for this request",
                error_code="REFUND_IN_PROGRESS",
                errors={"cancellation_request_id": str(params.cancellation_request_id)},
            )

        # Phase 2: gateway call outside any transaction
        logger.info(
            "Calling payment gateway",
            extra={
                "refund_transaction_id": str(txn.id),
                "amount_minor": amount_minor,
                "attempt": attempt,
            },
        )
        gateway_params = GatewayRefundParams(
            payment_reference=params.payment_reference,
            amount_minor=amount_minor,
            currency=txn.currency,
            note=params.reason or f"Refund for cancellation request {request.id}",
            metadata={
                "cancellation_request_id": str(request.id),
                "refund_transaction_id": str(txn.id),
                "booking_id": str(request.booking_id),
            },
        )
        try:
            gateway_result = adapter.create_refund(
                gateway_params, idempotency_key=txn.idempotency_key
            )
        except RefundGatewayError as e:
            logger.warning(
                f"Gateway refund failed: {type(e).__name__}",
                extra={
                    "refund_transaction_id": str(txn.id),
                    "error": e.message,
                    "is_retryable": e.is_retryable,
                },
            )
            return cls._record_failure(
                txn.id,
                e.message,
                gateway_code=e.gateway_code,
                retryable=e.is_retryable,
            )
        except Exception as e:
            logger.exception(
                "Unexpected error from payment gateway adapter",
                extra={"refund_transaction_id": str(txn.id)},
            )
            return cls._record_failure(
                txn.id,
                f"Unexpected payment gateway error: {e}",
                gateway_code="unknown_error",
                retryable=True,
            )

        # Phase 3: record the outcome
        return cls._apply_gateway_result(txn, gateway_result)

    @classmethod
    def _apply_gateway_result(
        cls,
        txn: RefundTransaction,
        gateway_result: GatewayRefundResult,
    ) -> ServiceResult[RefundProcessingResult]:
        status = canonical_refund_status(gateway_result.status)

        if status == REFUND_STATUS_COMPLETED:
            return cls._record_success(txn.id, gateway_result)

        if status == REFUND_STATUS_FAILED:
            return cls._record_failure(
                txn.id,
                f"Refund was {gateway_result.status} by the payment gateway",
                gateway_code=gateway_result.status,
                retryable=False,
                response=_response_payload(gateway_result),
            )

        # Not settled yet; stays PENDING for reconciliation.
        txn.gateway_response = _response_payload(gateway_result)
        txn.gateway_status = gateway_result.status
        txn.save(update_fields=["gateway_response", "gateway_status", "updated_at"])
        cls.get_logger().info(
            "Gateway refund not settled yet",
            extra={
                "refund_transaction_id": str(txn.id),
                "gateway_refund_id": gateway_result.id,
                "gateway_status": gateway_result.status,
            },
        )
        return ServiceResult.success(
            RefundProcessingResult(
                refund_transaction=txn,
                gateway_refund_id=gateway_result.id,
                status=REFUND_STATUS_PROCESSING,
            )
        )

    @classmethod
    def _record_success(
        cls,
        txn_id: uuid.UUID,
        gateway_result: GatewayRefundResult,
    ) -> ServiceResult[RefundProcessingResult]:
        logger = cls.get_logger()
        try:
            with cls.atomic():
                txn = RefundTransaction.objects.select_for_update().get(id=txn_id)
                request = CancellationRequest.objects.select_for_update().get(
                    id=txn.cancellation_request_id
                )

                if txn.is_pending:
                    txn.complete(
                        gateway_refund_id=gateway_result.id,
                        response=_response_payload(gateway_result),
                    )
                    txn.save()

                if request.status == CancellationStatus.PROCESSING:
                    request.complete(gateway_refund_id=gateway_result.id)
                    request.save()

                BookingRefundLedger.append_refund(
                    RefundEntryParams(
                        booking_id=txn.booking_id,
                        amount=txn.amount,
                        currency=txn.currency,
                        gateway_refund_id=gateway_result.id,
                        cancellation_request_id=request.id,
                    )
                )
        except Exception as e:
            # The gateway has refunded; the transaction stays PENDING for reconciliation.
            logger.error(
                "Failed to record refund after gateway success - reconciliation needed",
                extra={
                    "refund_transaction_id": str(txn_id),
                    "gateway_refund_id": gateway_result.id,
                    "error": str(e),
                },
                exc_info=True,
            )
            return ServiceResult.failure(
                "Refund was issued but could not be recorded",
                error_code="REFUND_RECORDING_FAILED",
                errors={"gateway_refund_id": gateway_result.id},
                data=RefundProcessingResult(
                    refund_transaction=RefundTransaction.objects.get(id=txn_id),
                    gateway_refund_id=gateway_result.id,
                    status=REFUND_STATUS_PROCESSING,
                ),
            )

        send_on_commit(
            refund_completed,
            sender=CancellationRequest,
            request=request,
            refund_transaction=txn,
        )
        logger.info(
            "Refund completed",
            extra={
                "refund_transaction_id": str(txn.id),
                "cancellation_request_id": str(request.id),
                "gateway_refund_id": gateway_result.id,
                "amount": str(txn.amount),
            },
        )
        return ServiceResult.success(
            RefundProcessingResult(
                refund_transaction=txn,
                gateway_refund_id=gateway_result.id,
                status=REFUND_STATUS_COMPLETED,
            )
        )

    @classmethod
    def _record_failure(
        cls,
        txn_id: uuid.UUID,
        message: str,
        gateway_code: str | None = None,
        retryable: bool = False,
        response: dict[str, Any] | None = None,
    ) -> ServiceResult[RefundProcessingResult]:
        if response is None:
            response = {
                "error": {"code": gateway_code, "message": message, "retryable": retryable}
            }

        with cls.atomic():
            txn = RefundTransaction.objects.select_for_update().get(id=txn_id)
            request = CancellationRequest.objects.select_for_update().get(
                id=txn.cancellation_request_id
            )

            if txn.is_pending:
                txn.fail(error=message, response=response)
                txn.save()

            if request.status == CancellationStatus.PROCESSING:
                request.fail(reason=f"Refund could not be processed: {message}")
                request.save()

        send_on_commit(
            refund_failed,
            sender=CancellationRequest,
            request=request,
            refund_transaction=txn,
        )
        cls.get_logger().warning(
            "Refund failed",
            extra={
                "refund_transaction_id": str(txn.id),
                "cancellation_request_id": str(request.id),
                "gateway_code": gateway_code,
                "retry_count": request.retry_count,
            },
        )
        return ServiceResult.failure(
            f"Refund failed: {message}",
            error_code="REFUND_FAILED",
            errors={"gateway_code": gateway_code, "retryable": retryable},
            data=RefundProcessingResult(
                refund_transaction=txn,
                gateway_refund_id=None,
                status=REFUND_STATUS_FAILED,
            ),
        )

    # =========================================================================
    # check_refund_status
    # =========================================================================

    @classmethod
    def check_refund_status(cls, gateway_refund_id: str) -> ServiceResult[RefundStatusResult]:
        """
        Look up a refund at the gateway. Read-only: no record is touched.
        """
        invalid = cls.validate_required(gateway_refund_id=gateway_refund_id)
        if invalid:
            return invalid

        try:
            gateway_result = cls.get_gateway_adapter().retrieve_refund(gateway_refund_id)
        except RefundGatewayError as e:
            cls.get_logger().warning(
                "Refund status lookup failed",
                extra={"gateway_refund_id": gateway_refund_id, "error": e.message},
            )
            return ServiceResult.from_exception(e)

        return ServiceResult.success(
            RefundStatusResult(
                gateway_refund_id=gateway_result.id,
                status=canonical_refund_status(gateway_result.status),
                gateway_status=gateway_result.status,
            )
        )

    # =========================================================================
    # retry_refund
    # =========================================================================

    @classmethod
    def retry_refund(
        cls, cancellation_request_id: uuid.UUID
    ) -> ServiceResult[RefundProcessingResult]:
        """
        Retry the refund of a FAILED request.

        The retry is recorded (retry_count, last_retry_at, state back to
        PROCESSING) and committed before the gateway is called. Once
        retry_count reaches MAX_REFUND_RETRIES the gateway is not contacted.
        """
        logger = cls.get_logger()

        request = (
            CancellationRequest.objects.select_related("booking")
            .filter(id=cancellation_request_id)
            .first()
        )
        if request is None:
            return ServiceResult.failure(
                "Cancellation request not found",
                error_code="CANCELLATION_REQUEST_NOT_FOUND",
                errors={"cancellation_request_id": str(cancellation_request_id)},
            )

        if request.retries_exhausted:
            logger.warning(
                "Refund retry rejected, retry budget exhausted",
                extra={
                    "cancellation_request_id": str(request.id),
                    "retry_count": request.retry_count,
                },
            )
            return ServiceResult.failure(
                "Maximum retry attempts reached",
                error_code="MAX_RETRIES_REACHED",
                errors={
                    "retry_count": request.retry_count,
                    "max_retries": MAX_REFUND_RETRIES,
                },
            )

        if request.status != CancellationStatus.FAILED:
            return ServiceResult.failure(
                f"Only failed refunds can be retried (current state: {request.status})",
                error_code="INVALID_STATE_TRANSITION",
                errors={"current_status": request.status},
            )

        amount = request.refund_amount.value
        if amount <= 0:
            return ServiceResult.failure(
                "No refund amount to retry",
                error_code="NO_REFUND_DUE",
                errors={"amount": str(amount)},
            )

        payment_reference = request.booking.payment_reference
        if not payment_reference:
            return ServiceResult.failure(
                "Booking has no payment reference to refund against",
                error_code="MISSING_PAYMENT_REFERENCE",
            )

        with cls.atomic():
            locked = CancellationRequest.objects.select_for_update().get(id=request.id)
            if not locked.can_retry:
                return ServiceResult.failure(
                    "Cancellation request changed while preparing the retry",
                    error_code="INVALID_STATE_TRANSITION",
                    errors={
                        "current_status": locked.status,
                        "retry_count": locked.retry_count,
                    },
                )
            locked.retry()
            locked.save()

        logger.info(
            "Retrying refund",
            extra={
                "cancellation_request_id": str(locked.id),
                "retry_count": locked.retry_count,
            },
        )

        result = cls.process_refund(
            RefundRequestParams(
                cancellation_request_id=locked.id,
                booking_id=locked.booking_id,
                amount=amount,
                payment_reference=payment_reference,
                reason=f"Retry {locked.retry_count} for cancellation request {locked.id}",
            )
        )
        if not result.success and result.data is None:
            # The attempt never reached the gateway, so it doesn't use up the budget.
            cls.release_unsent_refund(
                locked.id,
                reason=result.error,
                retry_count=locked.retry_count - 1,
            )
        return result

    @classmethod
    def release_unsent_refund(
        cls,
        cancellation_request_id: uuid.UUID,
        reason: str | None = None,
        retry_count: int | None = None,
    ) -> bool:
        """
        Move a PROCESSING request back to FAILED when no attempt is pending.

        Callers move a request to PROCESSING before process_refund() runs.
        When that call fails before a RefundTransaction is written (lock
        contention, Redis down, an amount the currency can't represent)
        there is nothing for reconciliation to pick up, so the request is
        failed here and can be retried or completed by an admin.

        Args:
            cancellation_request_id: Request to release
            reason: Failure reason stored on the request
            retry_count: Value to restore on the request, if given

        Returns:
            True if the request was moved to FAILED
        """
        with cls.atomic():
            request = (
                CancellationRequest.objects.select_for_update()
                .filter(id=cancellation_request_id)
                .first()
            )
            if request is None or request.status != CancellationStatus.PROCESSING:
                return False
            if request.refund_transactions.filter(
                status=RefundTransactionStatus.PENDING
            ).exists():
                return False

            request.fail(reason=f"Refund was not sent to the gateway: {reason or 'unknown error'}")
            if retry_count is not None:
                request.retry_count = max(retry_count, 0)
            request.save()

        cls.get_logger().warning(
            "Refund not sent to gateway, request released to failed",
            extra={
                "cancellation_request_id": str(request.id),
                "retry_count": request.retry_count,
                "reason": reason,
            },
        )
        return True

    # =========================================================================
    # reconcile_transaction
    # =========================================================================

    @classmethod
    def reconcile_transaction(
        cls, refund_transaction_id: uuid.UUID
    ) -> ServiceResult[RefundProcessingResult]:
        """
        Resolve a PENDING transaction against the gateway.

        The gateway refund is found by its stored id, or by listing refunds
        on the original charge and matching our transaction id in the
        metadata. A completed or failed refund is recorded; a processing
        refund leaves the transaction PENDING. A transaction with no trace
        at the gateway after ABANDONED_TRANSACTION_HOURS is failed.
        """
        txn = RefundTransaction.objects.filter(id=refund_transaction_id).first()
        if txn is None:
            return ServiceResult.failure(
                "Refund transaction not found",
                error_code="REFUND_TRANSACTION_NOT_FOUND",
                errors={"refund_transaction_id": str(refund_transaction_id)},
            )
        if not txn.is_pending:
            return ServiceResult.success(cls._settled_result(txn))

        try:
            with refund_lock(txn.cancellation_request_id, blocking=False):
                return cls._reconcile_locked(txn.id)
        except LockAcquisitionError:
            cls.get_logger().info(
                "Skipping reconciliation, refund is being processed",
                extra={"refund_transaction_id": str(txn.id)},
            )
            return ServiceResult.failure(
                "A refund is already being processed for this request",
                error_code="REFUND_IN_PROGRESS",
            )

    @classmethod
    def _reconcile_locked(cls, txn_id: uuid.UUID) -> ServiceResult[RefundProcessingResult]:
        logger = cls.get_logger()
        txn = RefundTransaction.objects.get(id=txn_id)
        if not txn.is_pending:
            return ServiceResult.success(cls._settled_result(txn))

        try:
            gateway_result = cls._find_gateway_refund(txn)
        except RefundGatewayError as e:
            logger.warning(
                "Reconciliation lookup failed",
                extra={"refund_transaction_id": str(txn.id), "error": e.message},
            )
            return ServiceResult.from_exception(e)

        if gateway_result is None:
            age = timezone.now() - txn.initiated_at
            if age >= timedelta(hours=ABANDONED_TRANSACTION_HOURS):
                logger.warning(
                    "No gateway refund found for abandoned transaction",
                    extra={
                        "refund_transaction_id": str(txn.id),
                        "age_hours": age.total_seconds() / 3600,
                    },
                )
                return cls._record_failure(
                    txn.id,
                    "No refund was found at the payment gateway",
                    gateway_code="not_found",
                    retryable=True,
                )
            return ServiceResult.success(RefundProcessingResult(refund_transaction=txn))

        logger.info(
            "Reconciling transaction with gateway refund",
            extra={
                "refund_transaction_id": str(txn.id),
                "gateway_refund_id": gateway_result.id,
                "gateway_status": gateway_result.status,
            },
        )
        return cls._apply_gateway_result(txn, gateway_result)

    @classmethod
    def _find_gateway_refund(cls, txn: RefundTransaction) -> GatewayRefundResult | None:
        adapter = cls.get_gateway_adapter()
        gateway_refund_id = txn.refund_transaction_id or (txn.gateway_response or {}).get("id")
        if gateway_refund_id:
            return adapter.retrieve_refund(gateway_refund_id)

        for gateway_refund in adapter.list_refunds(txn.original_transaction_id):
            if gateway_refund.metadata.get("refund_transaction_id") == str(txn.id):
                return gateway_refund
        return None

    @staticmethod
    def _settled_result(txn: RefundTransaction) -> RefundProcessingResult:
        status = {
            RefundTransactionStatus.COMPLETED: REFUND_STATUS_COMPLETED,
            RefundTransactionStatus.PENDING: REFUND_STATUS_PROCESSING,
        }.get(txn.status, REFUND_STATUS_FAILED)
        return RefundProcessingResult(
            refund_transaction=txn,
            gateway_refund_id=txn.refund_transaction_id,
            status=status,
        )


__all__ = [
    "GATEWAY_STATUS_MAP",
    "REFUND_STATUS_COMPLETED",
    "REFUND_STATUS_FAILED",
    "REFUND_STATUS_PROCESSING",
    "PaymentGatewayService",
    "RefundProcessingResult",
    "RefundRequestParams",
    "RefundStatusResult",
    "canonical_refund_status",
]
