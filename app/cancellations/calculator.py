"""
Refund calculation.

Combines a policy decision with the booking amount and the processing
fee into an immutable RefundCalculation snapshot that is stored on the
cancellation request.

Arithmetic:
    refund_amount  = original_amount * refund_percentage / 100
    processing_fee = refund_amount * fee_percentage / 100
    final_refund   = refund_amount - processing_fee   (never below 0)

Every step is Decimal arithmetic rounded half-up to cents.

Usage:
    from cancellations.calculator import RefundCalculator

    calc = RefundCalculator.calculate(Decimal("1000"), Decimal("50"), Decimal("5"))
    calc.final_refund  # Decimal("475.00")

    calc = RefundCalculator.quote(booking, policy, now=timezone.now())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.utils import timezone

from cancellations.money import quantize, to_decimal
from cancellations.policies import (
    HUNDRED,
    ZERO,
    CancellationPolicy,
    PolicyDecision,
    PolicyTier,
    RefundPolicy,
)
from core.exceptions import ValidationError

if TYPE_CHECKING:
    from bookings.models import Booking

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefundCalculation:
    """Snapshot of how a refund amount was derived."""

    original_amount: Decimal
    refund_percentage: Decimal
    refund_amount: Decimal
    processing_fee: Decimal
    final_refund: Decimal
    hours_until_booking: float | None = None
    applied_tier: PolicyTier | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe form for the request's refund_calculation column."""
        return {
            "original_amount": str(self.original_amount),
            "refund_percentage": str(self.refund_percentage),
            "refund_amount": str(self.refund_amount),
            "processing_fee": str(self.processing_fee),
            "final_refund": str(self.final_refund),
            "hours_until_booking": (
                round(self.hours_until_booking, 4)
                if self.hours_until_booking is not None
                else None
            ),
            "applied_tier": self.applied_tier.to_dict() if self.applied_tier else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RefundCalculation:
        data = data or {}
        tier_data = data.get("applied_tier")
        tier = None
        if tier_data:
            tier = PolicyTier(
                hours_before_booking=float(tier_data.get("hours_before_booking", 0)),
                refund_percentage=to_decimal(tier_data.get("refund_percentage", 0)),
                description=str(tier_data.get("description") or ""),
            )
        hours = data.get("hours_until_booking")
        return cls(
            original_amount=quantize(data.get("original_amount", 0)),
            refund_percentage=to_decimal(data.get("refund_percentage", 0)),
            refund_amount=quantize(data.get("refund_amount", 0)),
            processing_fee=quantize(data.get("processing_fee", 0)),
            final_refund=quantize(data.get("final_refund", 0)),
            hours_until_booking=float(hours) if hours is not None else None,
            applied_tier=tier,
        )


class RefundCalculator:
    """Pure refund arithmetic."""

    @staticmethod
    def _clamp_percentage(value: Any, label: str) -> Decimal:
        try:
            percentage = to_decimal(value)
        except ValidationError:
            logger.warning("Non-numeric %s, using 0", label, extra={"value": repr(value)})
            return ZERO
        if not percentage.is_finite():
            logger.warning("Non-finite %s, using 0", label, extra={"value": repr(value)})
            return ZERO
        if percentage < ZERO or percentage > HUNDRED:
            clamped = min(max(percentage, ZERO), HUNDRED)
            logger.warning(
                "%s out of range, clamped",
                label,
                extra={"value": str(percentage), "clamped": str(clamped)},
            )
            return clamped
        return percentage

    @classmethod
    def calculate(
        cls,
        original_amount: Any,
        refund_percentage: Any,
        fee_percentage: Any = ZERO,
        hours_until_booking: float | None = None,
        applied_tier: PolicyTier | None = None,
    ) -> RefundCalculation:
        """
        Compute the refund for a booking amount.

        Never raises for bad percentages: they are clamped to 0..100.
        A negative original amount is treated as 0.

        Returns:
            RefundCalculation with 0 <= final_refund <= original_amount
        """
        original = quantize(original_amount)
        if original < ZERO:
            logger.warning("Negative original amount, using 0", extra={"value": str(original)})
            original = quantize(ZERO)

        percentage = cls._clamp_percentage(refund_percentage, "refund percentage")
        fee_pct = cls._clamp_percentage(fee_percentage, "processing fee percentage")

        refund_amount = quantize(original * percentage / HUNDRED)
        processing_fee = quantize(refund_amount * fee_pct / HUNDRED)
        final_refund = max(refund_amount - processing_fee, ZERO)
        final_refund = quantize(min(final_refund, original))

        return RefundCalculation(
            original_amount=original,
            refund_percentage=percentage,
            refund_amount=refund_amount,
            processing_fee=processing_fee,
            final_refund=final_refund,
            hours_until_booking=hours_until_booking,
            applied_tier=applied_tier,
        )

    @classmethod
    def from_decision(
        cls,
        original_amount: Any,
        decision: PolicyDecision,
        policy: CancellationPolicy,
    ) -> RefundCalculation:
        return cls.calculate(
            original_amount,
            decision.refund_percentage,
            policy.processing_fee_percentage,
            hours_until_booking=decision.hours_until_booking,
            applied_tier=decision.applied_tier,
        )

    @classmethod
    def quote(
        cls,
        booking: Booking,
        policy: CancellationPolicy,
        now: datetime | None = None,
    ) -> RefundCalculation:
        """Evaluate the policy for a booking and compute its refund."""
        decision = RefundPolicy.evaluate(policy, booking.start_date, now or timezone.now())
        return cls.from_decision(booking.amount, decision, policy)


__all__ = [
    "RefundCalculation",
    "RefundCalculator",
]
