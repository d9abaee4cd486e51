"""
Cancellation models.

Usage:
    from cancellations.models import CancellationRequest, RefundTransaction
"""

from .cancellation_request import CancellationRequest
from .refund_transaction import RefundTransaction

__all__ = [
    "CancellationRequest",
    "RefundTransaction",
]
