"""
Cancellation policies and the refund tier evaluator.

A listing embeds its cancellation policy as a JSON document. This module
turns that document into typed objects, decides which refund tier a
cancellation qualifies for, and manages the built-in policy templates.

Nothing here touches the database except PolicyManager.set_policy().

Policy document:
    {
        "type": "moderate",
        "allow_cancellation": true,
        "automatic_refund": true,
        "tiers": [
            {"hours_before_booking": 168, "refund_percentage": 100, "description": "..."},
            {"hours_before_booking": 48, "refund_percentage": 50, "description": "..."},
            {"hours_before_booking": 0, "refund_percentage": 0, "description": "..."}
        ],
        "processing_fee_percentage": 5
    }

    camelCase keys (hoursBeforeBooking, refundPercentage, allowCancellation,
    automaticRefund, processingFeePercentage) are accepted on read.

Tier selection:
    Among tiers whose threshold is at or below the hours left before the
    booking starts, the largest threshold wins. Equal thresholds resolve
    to the first one listed. A booking that already started gets 0%.

Usage:
    from cancellations.policies import PolicyManager, RefundPolicy

    policy = PolicyManager.get_policy(listing)
    decision = RefundPolicy.evaluate(policy, booking.start_date, timezone.now())
    decision.refund_percentage   # Decimal("50")
    decision.applied_tier        # PolicyTier(hours_before_booking=48.0, ...)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from cancellations.exceptions import PolicyValidationError
from cancellations.state_machines import PolicyType

if TYPE_CHECKING:
    from bookings.models import Listing

logger = logging.getLogger(__name__)

# Equal thresholds: the tier listed first is applied.
TIER_TIE_BREAK = "first_listed"

DEFAULT_POLICY_TYPE = PolicyType.MODERATE

HUNDRED = Decimal("100")
ZERO = Decimal("0")


# =============================================================================
# Policy Types
# =============================================================================


@dataclass(frozen=True)
class PolicyTier:
    """A minimum lead time and the refund percentage it earns."""

    hours_before_booking: float
    refund_percentage: Decimal
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "hours_before_booking": self.hours_before_booking,
            "refund_percentage": float(self.refund_percentage),
            "description": self.description,
        }


@dataclass(frozen=True)
class CancellationPolicy:
    """Typed view of a listing's policy document."""

    type: str = DEFAULT_POLICY_TYPE
    allow_cancellation: bool = True
    automatic_refund: bool = False
    tiers: tuple[PolicyTier, ...] = field(default_factory=tuple)
    processing_fee_percentage: Decimal = ZERO

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CancellationPolicy:
        """
        Build a policy from a stored document.

        Malformed tiers are dropped with a warning; a malformed fee
        becomes 0. A document that isn't an object, or whose tiers aren't
        a list, is read as having no tiers. Never raises for bad data.
        """
        if not isinstance(data, dict):
            if data:
                logger.warning(
                    "Ignoring cancellation policy that is not an object",
                    extra={"policy": repr(data)[:200]},
                )
            data = {}

        raw_tiers = _pick(data, "tiers", "tiers") or []
        if not isinstance(raw_tiers, (list, tuple)):
            logger.warning(
                "Ignoring cancellation policy tiers that are not a list",
                extra={"tiers": repr(raw_tiers)[:200]},
            )
            raw_tiers = []

        tiers = []
        for index, raw in enumerate(raw_tiers):
            tier = _parse_tier(raw)
            if tier is None:
                logger.warning(
                    "Skipping malformed cancellation policy tier",
                    extra={"tier_index": index, "tier": repr(raw)[:200]},
                )
                continue
            tiers.append(tier)

        fee = _to_decimal(
            _pick(data, "processing_fee_percentage", "processingFeePercentage")
        )
        if fee is None:
            fee = ZERO

        return cls(
            type=str(data.get("type") or DEFAULT_POLICY_TYPE),
            allow_cancellation=bool(
                _pick(data, "allow_cancellation", "allowCancellation", default=True)
            ),
            automatic_refund=bool(
                _pick(data, "automatic_refund", "automaticRefund", default=False)
            ),
            tiers=tuple(tiers),
            processing_fee_percentage=fee,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "allow_cancellation": self.allow_cancellation,
            "automatic_refund": self.automatic_refund,
            "tiers": [tier.to_dict() for tier in self.tiers],
            "processing_fee_percentage": float(self.processing_fee_percentage),
        }


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of evaluating a policy at a point in time."""

    refund_percentage: Decimal
    applied_tier: PolicyTier | None
    hours_until_booking: float


def _pick(data: dict[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    if snake in data:
        return data[snake]
    return data.get(camel, default)


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not result.is_finite():
        return None
    return result


def _parse_tier(raw: Any) -> PolicyTier | None:
    if not isinstance(raw, dict):
        return None

    hours = _to_decimal(_pick(raw, "hours_before_booking", "hoursBeforeBooking"))
    percentage = _to_decimal(_pick(raw, "refund_percentage", "refundPercentage"))
    if hours is None or percentage is None:
        return None
    if hours < 0 or percentage < 0 or percentage > HUNDRED:
        return None

    return PolicyTier(
        hours_before_booking=float(hours),
        refund_percentage=percentage,
        description=str(raw.get("description") or ""),
    )


# =============================================================================
# Evaluation
# =============================================================================


class RefundPolicy:
    """Pure evaluator of a cancellation policy against elapsed time."""

    @staticmethod
    def hours_until(booking_start: datetime, now: datetime) -> float:
        return (booking_start - now).total_seconds() / 3600

    @classmethod
    def evaluate(
        cls,
        policy: CancellationPolicy,
        booking_start: datetime,
        now: datetime,
    ) -> PolicyDecision:
        """
        Decide the refund percentage for cancelling at ``now``.

        Args:
            policy: Listing policy
            booking_start: When the booking starts
            now: Cancellation time

        Returns:
            PolicyDecision. applied_tier is None when cancellation is not
            allowed, the booking already started, or no tier qualifies.
        """
        hours = cls.hours_until(booking_start, now)

        if not policy.allow_cancellation:
            return PolicyDecision(ZERO, None, hours)

        if hours < 0 or not math.isfinite(hours):
            return PolicyDecision(ZERO, None, hours)

        selected: PolicyTier | None = None
        for tier in policy.tiers:
            if tier.hours_before_booking > hours:
                continue
            # Strictly greater only, so the first of equal thresholds stays.
            if selected is None or tier.hours_before_booking > selected.hours_before_booking:
                selected = tier

        if selected is None:
            return PolicyDecision(ZERO, None, hours)
        return PolicyDecision(selected.refund_percentage, selected, hours)


# =============================================================================
# Templates & Management
# =============================================================================


POLICY_TEMPLATES: dict[str, dict[str, Any]] = {
    PolicyType.FLEXIBLE: {
        "type": PolicyType.FLEXIBLE,
        "allow_cancellation": True,
        "automatic_refund": True,
        "tiers": [
            {
                "hours_before_booking": 24,
                "refund_percentage": 100,
                "description": "Full refund if cancelled 24+ hours before",
            },
            {
                "hours_before_booking": 0,
                "refund_percentage": 0,
                "description": "No refund if cancelled less than 24 hours before",
            },
        ],
        "processing_fee_percentage": 0,
    },
    PolicyType.MODERATE: {
        "type": PolicyType.MODERATE,
        "allow_cancellation": True,
        "automatic_refund": True,
        "tiers": [
            {
                "hours_before_booking": 168,
                "refund_percentage": 100,
                "description": "Full refund if cancelled 7+ days before",
            },
            {
                "hours_before_booking": 48,
                "refund_percentage": 50,
                "description": "50% refund if cancelled 2-7 days before",
            },
            {
                "hours_before_booking": 0,
                "refund_percentage": 0,
                "description": "No refund if cancelled less than 48 hours before",
            },
        ],
        "processing_fee_percentage": 5,
    },
    PolicyType.STRICT: {
        "type": PolicyType.STRICT,
        "allow_cancellation": True,
        "automatic_refund": False,
        "tiers": [
            {
                "hours_before_booking": 336,
                "refund_percentage": 50,
                "description": "50% refund if cancelled 14+ days before",
            },
            {
                "hours_before_booking": 0,
                "refund_percentage": 0,
                "description": "No refund if cancelled less than 14 days before",
            },
        ],
        "processing_fee_percentage": 10,
    },
    PolicyType.NONE: {
        "type": PolicyType.NONE,
        "allow_cancellation": False,
        "automatic_refund": False,
        "tiers": [],
        "processing_fee_percentage": 0,
    },
}


class PolicyManager:
    """Built-in templates, validation and storage of listing policies."""

    @staticmethod
    def templates() -> dict[str, dict[str, Any]]:
        return {key: dict(value) for key, value in POLICY_TEMPLATES.items()}

    @staticmethod
    def template(policy_type: str) -> CancellationPolicy:
        document = POLICY_TEMPLATES.get(policy_type, POLICY_TEMPLATES[DEFAULT_POLICY_TYPE])
        return CancellationPolicy.from_dict(document)

    @classmethod
    def get_policy(cls, listing: Listing) -> CancellationPolicy:
        """Listing policy, or the moderate template when none is stored."""
        document = listing.cancellation_policy if listing is not None else None
        if not document:
            return cls.template(DEFAULT_POLICY_TYPE)
        return CancellationPolicy.from_dict(document)

    @staticmethod
    def validate(document: dict[str, Any]) -> list[str]:
        """
        Validate a policy document.

        Returns:
            Every validation message; an empty list means valid.
        """
        if not isinstance(document, dict):
            return ["Policy must be an object"]

        errors: list[str] = []
        policy_type = document.get("type")
        if policy_type not in PolicyType.values:
            errors.append(f"Invalid policy type: {policy_type}")

        allow = _pick(document, "allow_cancellation", "allowCancellation", default=True)
        tiers = _pick(document, "tiers", "tiers") or []
        if not isinstance(tiers, list):
            errors.append("Tiers must be a list")
            tiers = []

        if allow and policy_type != PolicyType.NONE and not tiers:
            errors.append("At least one tier is required when cancellation is allowed")

        parsed: list[tuple[Decimal, Decimal]] = []
        seen_hours: set[Decimal] = set()
        for index, raw in enumerate(tiers, start=1):
            if not isinstance(raw, dict):
                errors.append(f"Tier {index}: must be an object")
                continue

            hours = _to_decimal(_pick(raw, "hours_before_booking", "hoursBeforeBooking"))
            percentage = _to_decimal(_pick(raw, "refund_percentage", "refundPercentage"))

            if hours is None:
                errors.append(f"Tier {index}: hours before booking must be a number")
            elif hours < 0:
                errors.append(f"Tier {index}: hours before booking cannot be negative")
            elif hours in seen_hours:
                errors.append(f"Tier {index}: duplicate threshold of {hours} hours")
            else:
                seen_hours.add(hours)

            if percentage is None:
                errors.append(f"Tier {index}: refund percentage must be a number")
            elif percentage < 0 or percentage > HUNDRED:
                errors.append(f"Tier {index}: refund percentage must be between 0 and 100")

            if not str(raw.get("description") or "").strip():
                errors.append(f"Tier {index}: description is required")

            if hours is not None and percentage is not None:
                parsed.append((hours, percentage))

        # Shorter lead time must never earn a larger refund.
        ordered = sorted(parsed, key=lambda pair: pair[0], reverse=True)
        for (longer_hours, longer_pct), (shorter_hours, shorter_pct) in zip(
            ordered, ordered[1:]
        ):
            if shorter_pct > longer_pct:
                errors.append(
                    f"Refund percentage must not increase as lead time decreases "
                    f"({shorter_hours}h gives {shorter_pct}% but {longer_hours}h gives {longer_pct}%)"
                )

        fee = _pick(document, "processing_fee_percentage", "processingFeePercentage")
        if fee is not None:
            fee_value = _to_decimal(fee)
            if fee_value is None or fee_value < 0 or fee_value > HUNDRED:
                errors.append("Processing fee percentage must be between 0 and 100")

        return errors

    @classmethod
    def set_policy(cls, listing: Listing, document: dict[str, Any]) -> CancellationPolicy:
        """
        Validate and store a policy on a listing.

        Raises:
            PolicyValidationError: With every validation message in details
        """
        errors = cls.validate(document)
        if errors:
            raise PolicyValidationError(
                "Invalid cancellation policy",
                details={"errors": errors},
            )

        policy = CancellationPolicy.from_dict(document)
        listing.cancellation_policy = policy.to_dict()
        listing.save(update_fields=["cancellation_policy", "updated_at"])
        logger.info(
            "Cancellation policy updated",
            extra={"listing_id": str(listing.pk), "policy_type": policy.type},
        )
        return policy


__all__ = [
    "DEFAULT_POLICY_TYPE",
    "POLICY_TEMPLATES",
    "TIER_TIE_BREAK",
    "CancellationPolicy",
    "PolicyDecision",
    "PolicyManager",
    "PolicyTier",
    "RefundPolicy",
]
