"""
Cancellation services.

This module provides:
- CancellationWorkflowService: Request lifecycle (create, approve, reject, process)
- PaymentGatewayService: Gateway refunds, retries and reconciliation
- CancellationQueryService: Admin list, detail and statistics

Usage:
    from cancellations.services import CancellationWorkflowService

    result = CancellationWorkflowService.create_request(
        booking_id=booking.id,
        client=user,
        reason="schedule_change",
    )

    from cancellations.services import PaymentGatewayService

    result = PaymentGatewayService.retry_refund(request.id)
"""

from cancellations.services.payment_gateway_service import (
    GATEWAY_STATUS_MAP,
    PaymentGatewayService,
    RefundProcessingResult,
    RefundRequestParams,
    RefundStatusResult,
    canonical_refund_status,
)
from cancellations.services.query_service import (
    CancellationDetail,
    CancellationListFilters,
    CancellationQueryService,
)
from cancellations.services.workflow_service import (
    CancellationWorkflowService,
    ProcessingOutcome,
)

__all__ = [
    "GATEWAY_STATUS_MAP",
    "CancellationDetail",
    "CancellationListFilters",
    "CancellationQueryService",
    "CancellationWorkflowService",
    "PaymentGatewayService",
    "ProcessingOutcome",
    "RefundProcessingResult",
    "RefundRequestParams",
    "RefundStatusResult",
    "canonical_refund_status",
]
