"""
State machine definitions for cancellation models.

Usage:
    from cancellations.state_machines import CancellationStatus

    request.status == CancellationStatus.PENDING
"""

from .states import (
    ACTIVE_CANCELLATION_STATUSES,
    CancellationReason,
    CancellationStatus,
    CompletionMethod,
    PolicyType,
    RefundTransactionStatus,
)

__all__ = [
    "ACTIVE_CANCELLATION_STATUSES",
    "CancellationReason",
    "CancellationStatus",
    "CompletionMethod",
    "PolicyType",
    "RefundTransactionStatus",
]
