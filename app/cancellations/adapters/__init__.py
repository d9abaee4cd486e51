"""
Payment gateway adapters for refunds.

Usage:
    from cancellations.adapters import StripeRefundAdapter, GatewayRefundParams
"""

from .stripe_adapter import (
    STRIPE_REFUND_REASON,
    GatewayRefundParams,
    GatewayRefundResult,
    IdempotencyKeyGenerator,
    StripeRefundAdapter,
)

__all__ = [
    "STRIPE_REFUND_REASON",
    "GatewayRefundParams",
    "GatewayRefundResult",
    "IdempotencyKeyGenerator",
    "StripeRefundAdapter",
]
