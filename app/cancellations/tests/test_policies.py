"""
Tests for cancellation policy evaluation, templates and validation.
"""

from copy import deepcopy
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from bookings.tests.factories import ListingFactory
from cancellations.calculator import RefundCalculator
from cancellations.exceptions import PolicyValidationError
from cancellations.policies import (
    CancellationPolicy,
    PolicyManager,
    RefundPolicy,
)
from cancellations.state_machines import PolicyType
from cancellations.tests.factories import EXAMPLE_POLICY

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _policy(**overrides) -> CancellationPolicy:
    document = deepcopy(EXAMPLE_POLICY)
    document.update(overrides)
    return CancellationPolicy.from_dict(document)


def _final_refund(policy, hours_before, amount="1000.00"):
    decision = RefundPolicy.evaluate(policy, NOW + timedelta(hours=hours_before), NOW)
    return RefundCalculator.from_decision(Decimal(amount), decision, policy)


# =============================================================================
# Evaluation
# =============================================================================


class TestRefundPolicyEvaluate:
    def test_thirty_hours_out_earns_half_minus_fee(self):
        calc = _final_refund(_policy(), 30)

        assert calc.refund_percentage == Decimal("50")
        assert calc.refund_amount == Decimal("500.00")
        assert calc.processing_fee == Decimal("25.00")
        assert calc.final_refund == Decimal("475.00")
        assert calc.applied_tier.hours_before_booking == 24

    def test_two_hundred_hours_out_earns_full_minus_fee(self):
        calc = _final_refund(_policy(), 200)

        assert calc.refund_percentage == Decimal("100")
        assert calc.final_refund == Decimal("950.00")

    def test_started_booking_earns_nothing(self):
        calc = _final_refund(_policy(), -5)

        assert calc.final_refund == Decimal("0.00")
        assert calc.applied_tier is None
        assert calc.hours_until_booking == pytest.approx(-5)

    def test_tier_threshold_is_inclusive(self):
        decision = RefundPolicy.evaluate(_policy(), NOW + timedelta(hours=24), NOW)

        assert decision.refund_percentage == Decimal("50")

    def test_just_under_threshold_falls_to_next_tier(self):
        decision = RefundPolicy.evaluate(
            _policy(), NOW + timedelta(hours=23, minutes=59), NOW
        )

        assert decision.refund_percentage == Decimal("0")
        assert decision.applied_tier.hours_before_booking == 0

    def test_cancellation_not_allowed(self):
        decision = RefundPolicy.evaluate(
            _policy(allow_cancellation=False), NOW + timedelta(days=30), NOW
        )

        assert decision.refund_percentage == Decimal("0")
        assert decision.applied_tier is None

    def test_no_qualifying_tier(self):
        policy = _policy(
            tiers=[{"hours_before_booking": 48, "refund_percentage": 100, "description": "x"}]
        )

        decision = RefundPolicy.evaluate(policy, NOW + timedelta(hours=10), NOW)

        assert decision.refund_percentage == Decimal("0")
        assert decision.applied_tier is None

    def test_equal_thresholds_first_listed_wins(self):
        policy = _policy(
            tiers=[
                {"hours_before_booking": 24, "refund_percentage": 80, "description": "first"},
                {"hours_before_booking": 24, "refund_percentage": 40, "description": "second"},
            ]
        )

        decision = RefundPolicy.evaluate(policy, NOW + timedelta(hours=30), NOW)

        assert decision.refund_percentage == Decimal("80")
        assert decision.applied_tier.description == "first"

    def test_tier_order_does_not_matter(self):
        shuffled = _policy(tiers=list(reversed(EXAMPLE_POLICY["tiers"])))

        assert _final_refund(shuffled, 30).final_refund == Decimal("475.00")
        assert _final_refund(shuffled, 200).final_refund == Decimal("950.00")

    def test_refund_never_grows_as_booking_approaches(self):
        policy = _policy()
        hours = [400, 200, 168, 100, 48, 24, 12, 1, 0, -1]

        refunds = [_final_refund(policy, h).final_refund for h in hours]

        assert refunds == sorted(refunds, reverse=True)


# =============================================================================
# Parsing
# =============================================================================


class TestCancellationPolicyFromDict:
    def test_malformed_tiers_are_dropped(self):
        policy = CancellationPolicy.from_dict(
            {
                "type": "moderate",
                "tiers": [
                    "not a tier",
                    {"hours_before_booking": "abc", "refund_percentage": 50},
                    {"hours_before_booking": 24, "refund_percentage": 150},
                    {"hours_before_booking": 24, "refund_percentage": 50},
                ],
            }
        )

        assert len(policy.tiers) == 1
        assert policy.tiers[0].refund_percentage == Decimal("50")

    @pytest.mark.parametrize(
        "document",
        [
            {"type": "moderate", "tiers": 5},
            {"type": "moderate", "tiers": "24h full refund"},
            {"type": "moderate", "tiers": {"hours_before_booking": 24}},
            [{"hours_before_booking": 24, "refund_percentage": 50}],
            "moderate",
        ],
    )
    def test_malformed_document_reads_as_no_tiers(self, document):
        policy = CancellationPolicy.from_dict(document)

        assert policy.tiers == ()
        assert _final_refund(policy, 48).final_refund == Decimal("0.00")

    def test_camel_case_keys_accepted(self):
        policy = CancellationPolicy.from_dict(
            {
                "type": "flexible",
                "allowCancellation": True,
                "automaticRefund": True,
                "tiers": [{"hoursBeforeBooking": 24, "refundPercentage": 100}],
                "processingFeePercentage": 2.5,
            }
        )

        assert policy.automatic_refund is True
        assert policy.tiers[0].hours_before_booking == 24
        assert policy.processing_fee_percentage == Decimal("2.5")

    def test_bad_fee_becomes_zero(self):
        policy = CancellationPolicy.from_dict({"processing_fee_percentage": "lots"})

        assert policy.processing_fee_percentage == Decimal("0")

    def test_empty_document_uses_defaults(self):
        policy = CancellationPolicy.from_dict(None)

        assert policy.type == PolicyType.MODERATE
        assert policy.allow_cancellation is True
        assert policy.tiers == ()


# =============================================================================
# Templates & Validation
# =============================================================================


class TestPolicyManager:
    @pytest.mark.parametrize("policy_type", sorted(PolicyManager.templates()))
    def test_templates_are_valid(self, policy_type):
        document = PolicyManager.templates()[policy_type]

        assert PolicyManager.validate(document) == []

    @pytest.mark.django_db
    def test_listing_without_policy_gets_moderate_template(self):
        listing = ListingFactory(cancellation_policy={})

        policy = PolicyManager.get_policy(listing)

        assert policy.type == PolicyType.MODERATE
        assert [t.hours_before_booking for t in policy.tiers] == [168, 48, 0]

    @pytest.mark.django_db
    def test_listing_with_corrupt_policy_still_reads(self):
        listing = ListingFactory(cancellation_policy={"type": "strict", "tiers": 5})

        policy = PolicyManager.get_policy(listing)

        assert policy.type == PolicyType.STRICT
        assert policy.tiers == ()
        assert policy.processing_fee_percentage == Decimal("5")

    def test_validate_reports_every_problem(self):
        errors = PolicyManager.validate(
            {
                "type": "bogus",
                "tiers": [
                    {"hours_before_booking": -1, "refund_percentage": 50, "description": "a"},
                    {"hours_before_booking": 10, "refund_percentage": 120, "description": ""},
                ],
                "processing_fee_percentage": 101,
            }
        )

        assert "Invalid policy type: bogus" in errors
        assert "Tier 1: hours before booking cannot be negative" in errors
        assert "Tier 2: refund percentage must be between 0 and 100" in errors
        assert "Tier 2: description is required" in errors
        assert "Processing fee percentage must be between 0 and 100" in errors

    def test_validate_rejects_duplicate_thresholds(self):
        errors = PolicyManager.validate(
            {
                "type": "moderate",
                "tiers": [
                    {"hours_before_booking": 24, "refund_percentage": 50, "description": "a"},
                    {"hours_before_booking": 24, "refund_percentage": 40, "description": "b"},
                ],
            }
        )

        assert any("duplicate threshold" in e for e in errors)

    def test_validate_rejects_refund_growing_closer_to_booking(self):
        errors = PolicyManager.validate(
            {
                "type": "moderate",
                "tiers": [
                    {"hours_before_booking": 168, "refund_percentage": 50, "description": "a"},
                    {"hours_before_booking": 24, "refund_percentage": 100, "description": "b"},
                ],
            }
        )

        assert any("must not increase" in e for e in errors)

    def test_validate_requires_tiers_when_cancellation_allowed(self):
        errors = PolicyManager.validate({"type": "strict", "tiers": []})

        assert "At least one tier is required when cancellation is allowed" in errors

    def test_validate_non_object(self):
        assert PolicyManager.validate(["tiers"]) == ["Policy must be an object"]

    @pytest.mark.django_db
    def test_set_policy_stores_normalized_document(self):
        listing = ListingFactory()

        policy = PolicyManager.set_policy(listing, deepcopy(EXAMPLE_POLICY))

        listing.refresh_from_db()
        assert policy.processing_fee_percentage == Decimal("5")
        assert listing.cancellation_policy["tiers"][1]["hours_before_booking"] == 24
        assert PolicyManager.get_policy(listing) == policy

    @pytest.mark.django_db
    def test_set_policy_rejects_invalid_document(self):
        listing = ListingFactory(cancellation_policy={})

        with pytest.raises(PolicyValidationError) as exc_info:
            PolicyManager.set_policy(listing, {"type": "bogus", "tiers": []})

        assert exc_info.value.error_code == "INVALID_CANCELLATION_POLICY"
        assert "Invalid policy type: bogus" in exc_info.value.details["errors"]
        listing.refresh_from_db()
        assert listing.cancellation_policy == {}
