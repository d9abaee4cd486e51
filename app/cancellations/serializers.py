"""
Serializers for the cancellation API.

Serializers:
    CancellationRequestSerializer: Read-only request representation
    RefundTransactionSerializer: Read-only refund attempt (no raw gateway payload)
    CancellationDetailSerializer: Request plus its refund attempts
    RefundQuoteSerializer: Refund preview for a booking
    CreateCancellationSerializer: Client creates a request
    ApproveCancellationSerializer: Owner/admin approves, optionally overriding the amount
    RejectCancellationSerializer: Owner/admin rejects with a reason
    CompleteWithoutGatewaySerializer: Admin closes a request without a gateway refund
    RequestFilterSerializer (+ Admin/Owner variants): List query params
    AdminStatsSerializer / OwnerStatsSerializer: Statistics responses
    ProcessingOutcomeSerializer / RefundAttemptSerializer: Refund attempt outcomes

Usage:
    serializer = CreateCancellationSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    result = CancellationWorkflowService.create_request(
        client=request.user, **serializer.validated_data
    )
"""

from __future__ import annotations

from rest_framework import serializers

from cancellations.models import CancellationRequest, RefundTransaction
from cancellations.state_machines import CancellationReason, CancellationStatus
from core.pagination import DEFAULT_PAGE_SIZE

STATUS_FILTER_CHOICES = ["all", *CancellationStatus.values]


# =============================================================================
# Read Serializers
# =============================================================================


class RefundTierSerializer(serializers.Serializer):
    hours_before_booking = serializers.FloatField(read_only=True)
    refund_percentage = serializers.DecimalField(max_digits=5, decimal_places=2, read_only=True)
    description = serializers.CharField(read_only=True)


class PolicyTierSerializer(serializers.Serializer):
    hours_before_booking = serializers.FloatField(read_only=True)
    refund_percentage = serializers.FloatField(read_only=True)
    description = serializers.CharField(read_only=True)


class CancellationPolicySerializer(serializers.Serializer):
    """A listing's cancellation policy, as stored on the listing."""

    type = serializers.CharField(read_only=True)
    allow_cancellation = serializers.BooleanField(read_only=True)
    automatic_refund = serializers.BooleanField(read_only=True)
    tiers = PolicyTierSerializer(many=True, read_only=True)
    processing_fee_percentage = serializers.FloatField(read_only=True)


class RefundQuoteSerializer(serializers.Serializer):
    """
    Refund preview built from a RefundCalculation.

    Usage:
        calculation = CancellationWorkflowService.quote_refund(booking_id, user).data
        RefundQuoteSerializer(calculation).data
    """

    original_amount = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    refund_percentage = serializers.DecimalField(max_digits=5, decimal_places=2, read_only=True)
    refund_amount = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    processing_fee = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    final_refund = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)
    hours_until_booking = serializers.FloatField(read_only=True, allow_null=True)
    applied_tier = RefundTierSerializer(read_only=True, allow_null=True)


class CancellationRequestSerializer(serializers.ModelSerializer):
    """
    Read-only cancellation request.

    refund_amount is what the request refunds: the owner's override when
    one was set, otherwise the computed final refund.
    """

    listing_title = serializers.CharField(source="listing.title", read_only=True)
    client_email = serializers.EmailField(source="client.email", read_only=True)
    refund_calculation = serializers.SerializerMethodField()
    refund_amount = serializers.SerializerMethodField()
    is_refund_override = serializers.SerializerMethodField()

    class Meta:
        model = CancellationRequest
        fields = [
            "id",
            "booking",
            "listing",
            "listing_title",
            "client",
            "client_email",
            "owner",
            "status",
            "is_automatic",
            "cancellation_reason",
            "cancellation_reason_other",
            "booking_start_date",
            "booking_end_date",
            "booking_amount",
            "currency",
            "refund_calculation",
            "refund_amount",
            "is_refund_override",
            "custom_refund_note",
            "approved_by",
            "approved_at",
            "rejected_by",
            "rejected_at",
            "rejection_reason",
            "processed_at",
            "refund_transaction_id",
            "completion_method",
            "completed_by",
            "completion_note",
            "retry_count",
            "last_retry_at",
            "failure_reason",
            "requested_at",
            "version",
        ]
        read_only_fields = fields

    def get_refund_calculation(self, obj: CancellationRequest) -> dict:
        return RefundQuoteSerializer(obj.calculation).data

    def get_refund_amount(self, obj: CancellationRequest) -> str:
        return str(obj.refund_amount.value)

    def get_is_refund_override(self, obj: CancellationRequest) -> bool:
        return obj.refund_amount.is_override


class RefundTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = RefundTransaction
        fields = [
            "id",
            "cancellation_request",
            "amount",
            "currency",
            "payment_method",
            "original_transaction_id",
            "refund_transaction_id",
            "status",
            "gateway_provider",
            "gateway_status",
            "gateway_error",
            "attempt",
            "initiated_at",
            "completed_at",
            "failed_at",
        ]
        read_only_fields = fields


class CancellationDetailSerializer(serializers.Serializer):
    """Admin detail: the request, its latest refund attempt and the full history."""

    request = CancellationRequestSerializer(read_only=True)
    latest_transaction = RefundTransactionSerializer(read_only=True, allow_null=True)
    transactions = RefundTransactionSerializer(many=True, read_only=True)


# =============================================================================
# Write Serializers
# =============================================================================


class CreateCancellationSerializer(serializers.Serializer):
    booking_id = serializers.UUIDField()
    reason = serializers.ChoiceField(choices=CancellationReason.choices)
    reason_other = serializers.CharField(
        required=False,
        allow_blank=True,
        default="",
        max_length=2000,
    )

    def validate(self, attrs: dict) -> dict:
        if attrs["reason"] == CancellationReason.OTHER and not attrs.get("reason_other", "").strip():
            raise serializers.ValidationError(
                {"reason_other": "Please describe the reason for cancelling."}
            )
        return attrs


class ApproveCancellationSerializer(serializers.Serializer):
    """
    Fields:
        custom_refund_amount: Optional override of the computed refund
        custom_refund_note: Required with an override
        version: Version the caller last read (optimistic locking)
    """

    custom_refund_amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=0,
        required=False,
        allow_null=True,
    )
    custom_refund_note = serializers.CharField(
        required=False,
        allow_blank=True,
        default="",
        max_length=2000,
    )
    version = serializers.IntegerField(required=False, min_value=1)

    def validate(self, attrs: dict) -> dict:
        if attrs.get("custom_refund_amount") is not None and not attrs.get(
            "custom_refund_note", ""
        ).strip():
            raise serializers.ValidationError(
                {"custom_refund_note": "A note is required when overriding the refund amount."}
            )
        return attrs


class RejectCancellationSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=2000)
    version = serializers.IntegerField(required=False, min_value=1)


class CompleteWithoutGatewaySerializer(serializers.Serializer):
    note = serializers.CharField(max_length=2000)


# =============================================================================
# Query Parameter Serializers
# =============================================================================


class RequestFilterSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=STATUS_FILTER_CHOICES, required=False)
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)
    page = serializers.IntegerField(required=False, default=1)
    limit = serializers.IntegerField(required=False, default=DEFAULT_PAGE_SIZE)

    def validate(self, attrs: dict) -> dict:
        date_from, date_to = attrs.get("date_from"), attrs.get("date_to")
        if date_from and date_to and date_from > date_to:
            raise serializers.ValidationError({"date_to": "Must not be before date_from."})
        return attrs


class AdminRequestFilterSerializer(RequestFilterSerializer):
    is_automatic = serializers.BooleanField(required=False, allow_null=True, default=None)
    search = serializers.CharField(required=False, allow_blank=True, max_length=200)


class OwnerRequestFilterSerializer(RequestFilterSerializer):
    listing_id = serializers.UUIDField(required=False)


# =============================================================================
# Statistics
# =============================================================================


class AdminStatsSerializer(serializers.Serializer):
    total = serializers.IntegerField()
    by_status = serializers.DictField(child=serializers.IntegerField())
    by_type = serializers.DictField(child=serializers.IntegerField())
    total_refund_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    avg_refund_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_granted_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    total_original_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    refund_rate = serializers.DecimalField(max_digits=7, decimal_places=2)


class OwnerStatsSerializer(serializers.Serializer):
    total = serializers.IntegerField()
    by_status = serializers.DictField(child=serializers.IntegerField())
    approval_rate = serializers.DecimalField(max_digits=7, decimal_places=2)
    total_refunded = serializers.DecimalField(max_digits=14, decimal_places=2)
    average_refund = serializers.DecimalField(max_digits=14, decimal_places=2)
    by_reason = serializers.DictField(child=serializers.IntegerField())


# =============================================================================
# Processing Outcomes
# =============================================================================


class ProcessingOutcomeSerializer(serializers.Serializer):
    """Approval response: the request and what happened to its refund."""

    request = CancellationRequestSerializer(read_only=True)
    refund_attempted = serializers.BooleanField(read_only=True)
    refund_status = serializers.CharField(read_only=True, allow_null=True)
    message = serializers.CharField(read_only=True, allow_blank=True)
    error_code = serializers.CharField(read_only=True, allow_null=True)


class RefundAttemptSerializer(serializers.Serializer):
    refund_transaction = RefundTransactionSerializer(read_only=True)
    gateway_refund_id = serializers.CharField(read_only=True, allow_null=True)
    status = serializers.CharField(read_only=True)
