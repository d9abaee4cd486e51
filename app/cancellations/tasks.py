"""
Celery tasks for the cancellation workflow.

This module provides async tasks for:
- Processing automatically approved cancellation requests
- Retrying refunds that failed for a transient reason
- Reconciling refund transactions stuck in PENDING

Usage:
    from cancellations.tasks import process_cancellation_refund

    # Queued by CancellationWorkflowService after an automatic approval
    process_cancellation_refund.delay(str(request.id))

Celery Beat Schedule (registered by migration 0002_add_refund_sweep_schedules):
    retry_failed_refunds                    every 15 minutes
    reconcile_pending_refund_transactions   every 10 minutes
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.utils import timezone

from cancellations.conf import (
    MAX_REFUND_RETRIES,
    RETRY_BACKOFF_MINUTES,
    STUCK_TRANSACTION_MINUTES,
)
from cancellations.models import CancellationRequest, RefundTransaction
from cancellations.state_machines import CancellationStatus, RefundTransactionStatus

logger = logging.getLogger(__name__)

BATCH_SIZE = 100


# =============================================================================
# Automatic Refund
# =============================================================================


@shared_task(bind=True, acks_late=True)
def process_cancellation_refund(self, cancellation_request_id: str) -> dict:
    """
    Send the refund of an automatically approved request to the gateway.

    Idempotent: a request that has already left APPROVED is reported
    and left alone.

    Returns:
        Dict with status ("processed", "skipped" or "failed") and the
        request's resulting state
    """
    from cancellations.services import CancellationWorkflowService

    logger.info(
        "Processing automatic cancellation refund",
        extra={"cancellation_request_id": cancellation_request_id, "task_id": self.request.id},
    )

    result = CancellationWorkflowService.process_automatic_refund(cancellation_request_id)
    outcome = result.data

    if result.success:
        return {
            "status": "processed" if outcome.refund_attempted else "skipped",
            "cancellation_request_id": cancellation_request_id,
            "request_status": outcome.request.status,
            "refund_status": outcome.refund_status,
            "message": outcome.message,
        }

    logger.warning(
        f"Automatic refund failed: {result.error}",
        extra={
            "cancellation_request_id": cancellation_request_id,
            "error_code": result.error_code,
        },
    )
    return {
        "status": "failed",
        "cancellation_request_id": cancellation_request_id,
        "request_status": outcome.request.status if outcome else None,
        "error": result.error,
        "error_code": result.error_code,
    }


# =============================================================================
# Periodic Task: Retry Failed Refunds
# =============================================================================


@shared_task(bind=True)
def retry_failed_refunds(self, limit: int = BATCH_SIZE) -> dict:
    """
    Retry failed refunds whose last attempt failed for a transient reason.

    Requests that exhausted their retry budget, or whose last failure was
    a permanent one (declined, invalid request), are skipped and left for
    an admin.

    Returns:
        Dict with retried_count, succeeded_count and skipped_count
    """
    from cancellations.services import PaymentGatewayService

    cutoff = timezone.now() - timedelta(minutes=RETRY_BACKOFF_MINUTES)
    candidates = (
        CancellationRequest.objects.filter(
            status=CancellationStatus.FAILED,
            retry_count__lt=MAX_REFUND_RETRIES,
            updated_at__lte=cutoff,
        )
        .order_by("updated_at")[:limit]
    )

    retried_count = 0
    succeeded_count = 0
    skipped_count = 0

    for request in candidates:
        latest = request.refund_transactions.order_by("-initiated_at").first()
        if latest is None or not latest.is_retryable_failure:
            logger.info(
                "Refund failure not retryable, skipping",
                extra={"cancellation_request_id": str(request.id)},
            )
            skipped_count += 1
            continue

        try:
            result = PaymentGatewayService.retry_refund(request.id)
        except Exception as e:
            logger.exception(
                f"Unexpected error retrying refund: {e}",
                extra={"cancellation_request_id": str(request.id)},
            )
            skipped_count += 1
            continue

        retried_count += 1
        if result.success:
            succeeded_count += 1

    logger.info(
        f"Failed refund retry scan complete: retried {retried_count}, skipped {skipped_count}",
        extra={
            "retried_count": retried_count,
            "succeeded_count": succeeded_count,
            "skipped_count": skipped_count,
        },
    )
    return {
        "retried_count": retried_count,
        "succeeded_count": succeeded_count,
        "skipped_count": skipped_count,
    }


# =============================================================================
# Periodic Task: Reconcile Pending Transactions
# =============================================================================


@shared_task(bind=True)
def reconcile_pending_refund_transactions(self, limit: int = BATCH_SIZE) -> dict:
    """
    Resolve refund transactions left PENDING by a crash or an unsettled
    gateway refund.

    Returns:
        Dict with checked_count, resolved_count and error_count
    """
    from cancellations.services import PaymentGatewayService

    cutoff = timezone.now() - timedelta(minutes=STUCK_TRANSACTION_MINUTES)
    pending_ids = list(
        RefundTransaction.objects.filter(
            status=RefundTransactionStatus.PENDING,
            initiated_at__lte=cutoff,
        )
        .order_by("initiated_at")
        .values_list("id", flat=True)[:limit]
    )

    resolved_count = 0
    error_count = 0

    for txn_id in pending_ids:
        try:
            result = PaymentGatewayService.reconcile_transaction(txn_id)
        except Exception as e:
            logger.exception(
                f"Unexpected error reconciling refund transaction: {e}",
                extra={"refund_transaction_id": str(txn_id)},
            )
            error_count += 1
            continue

        if result.data is not None and not result.data.refund_transaction.is_pending:
            resolved_count += 1
        elif not result.success:
            error_count += 1

    logger.info(
        "Pending refund reconciliation complete",
        extra={
            "checked_count": len(pending_ids),
            "resolved_count": resolved_count,
            "error_count": error_count,
        },
    )
    return {
        "checked_count": len(pending_ids),
        "resolved_count": resolved_count,
        "error_count": error_count,
    }


__all__ = [
    "process_cancellation_refund",
    "reconcile_pending_refund_transactions",
    "retry_failed_refunds",
]
