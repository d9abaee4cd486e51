"""
CancellationRequest model: a client's request to cancel a booking.

The request snapshots the booking and the refund calculation at
creation time, then moves through the workflow states. Requests are
never deleted; terminal requests stay as the audit record.

Usage:
    from cancellations.models import CancellationRequest

    request.approve(by=owner)           # pending -> approved
    request.save()
    request.begin_processing()          # approved -> processing
    request.save()
    request.complete(gateway_refund_id="re_123")
    request.save()

State transitions are django-fsm methods. The status field is
protected, so it can only change through them.
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from cancellations.amounts import RefundAmount, resolve_refund_amount
from cancellations.calculator import RefundCalculation
from cancellations.conf import MAX_REFUND_RETRIES
from cancellations.state_machines import (
    ACTIVE_CANCELLATION_STATUSES,
    CancellationReason,
    CancellationStatus,
    CompletionMethod,
)
from core.models import BaseModel, UUIDPrimaryKeyMixin, VersionedModel


def _booking_has_payment_reference(instance: CancellationRequest) -> bool:
    return bool(instance.booking.payment_reference)


def _retry_budget_left(instance: CancellationRequest) -> bool:
    return instance.retry_count < MAX_REFUND_RETRIES


class CancellationRequest(UUIDPrimaryKeyMixin, VersionedModel, BaseModel):
    """
    Aggregate root of the cancellation workflow.

    State Flow:
        PENDING -> APPROVED -> PROCESSING -> COMPLETED
        PENDING -> REJECTED
        PROCESSING -> FAILED -> PROCESSING (retry while retry_count < MAX_REFUND_RETRIES)
        APPROVED/FAILED -> COMPLETED (administrative override, no gateway call)

    Constraints:
        At most one request per booking in PENDING, APPROVED or PROCESSING.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="cancellation_requests",
    )
    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="cancellation_requests",
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="owned_cancellation_requests",
    )
    listing = models.ForeignKey(
        "bookings.Listing",
        on_delete=models.PROTECT,
        related_name="cancellation_requests",
    )

    # ==========================================================================
    # Snapshot (set once at creation)
    # ==========================================================================

    booking_start_date = models.DateTimeField()
    booking_end_date = models.DateTimeField()
    booking_amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="usd")
    refund_calculation = models.JSONField(
        default=dict,
        help_text="RefundCalculation snapshot taken when the request was created",
    )
    policy_snapshot = models.JSONField(
        default=dict,
        blank=True,
        help_text="Listing cancellation policy in force when the request was created",
    )
    cancellation_reason = models.CharField(
        max_length=32,
        choices=CancellationReason.choices,
    )
    cancellation_reason_other = models.TextField(blank=True, default="")
    requested_at = models.DateTimeField(default=timezone.now)

    # ==========================================================================
    # Workflow State
    # ==========================================================================

    status = FSMField(
        default=CancellationStatus.PENDING,
        choices=CancellationStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the request (managed by FSM)",
    )
    is_automatic = models.BooleanField(
        default=False,
        help_text="Approved by the system under an automatic-refund policy",
    )

    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    rejected_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    rejected_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True, default="")

    custom_refund_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Owner/admin override of the computed refund",
    )
    custom_refund_note = models.TextField(blank=True, default="")

    # ==========================================================================
    # Processing
    # ==========================================================================

    processed_at = models.DateTimeField(null=True, blank=True)
    refund_transaction_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Gateway refund reference of the successful refund",
    )
    completion_method = models.CharField(
        max_length=32,
        choices=CompletionMethod.choices,
        blank=True,
        default="",
    )
    completed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
        help_text="Admin who completed the request without a gateway refund",
    )
    completion_note = models.TextField(blank=True, default="")
    retry_count = models.PositiveSmallIntegerField(default=0)
    last_retry_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True, default="")

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-requested_at"]
        verbose_name = "Cancellation request"
        verbose_name_plural = "Cancellation requests"
        indexes = [
            models.Index(fields=["status", "requested_at"], name="cancel_status_requested_idx"),
            models.Index(fields=["owner", "status"], name="cancel_owner_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["booking"],
                condition=models.Q(status__in=ACTIVE_CANCELLATION_STATUSES),
                name="one_active_cancellation_per_booking",
            ),
        ]

    def __str__(self) -> str:
        return f"CancellationRequest({self.id}, {self.status})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=CancellationStatus.PENDING,
        target=CancellationStatus.APPROVED,
    )
    def approve(
        self,
        by=None,
        custom_amount: Decimal | None = None,
        custom_note: str = "",
    ):
        """
        Approve the request.

        Args:
            by: Approving user; None when the system approves automatically
            custom_amount: Optional override of the computed refund
            custom_note: Justification for the override
        """
        self.approved_by = by
        self.approved_at = timezone.now()
        if custom_amount is not None:
            self.custom_refund_amount = custom_amount
            self.custom_refund_note = custom_note

    @transition(
        field=status,
        source=CancellationStatus.PENDING,
        target=CancellationStatus.REJECTED,
    )
    def reject(self, by=None, reason: str = ""):
        self.rejected_by = by
        self.rejected_at = timezone.now()
        self.rejection_reason = reason

    @transition(
        field=status,
        source=CancellationStatus.APPROVED,
        target=CancellationStatus.PROCESSING,
        conditions=[_booking_has_payment_reference],
    )
    def begin_processing(self):
        """Hand the request to the gateway. retry_count is unchanged."""
        self.failure_reason = ""

    @transition(
        field=status,
        source=CancellationStatus.PROCESSING,
        target=CancellationStatus.COMPLETED,
    )
    def complete(self, gateway_refund_id: str):
        self.processed_at = timezone.now()
        self.refund_transaction_id = gateway_refund_id
        self.completion_method = CompletionMethod.GATEWAY
        self.failure_reason = ""

    @transition(
        field=status,
        source=CancellationStatus.PROCESSING,
        target=CancellationStatus.FAILED,
    )
    def fail(self, reason: str = ""):
        self.failure_reason = reason or "Refund failed"

    @transition(
        field=status,
        source=CancellationStatus.FAILED,
        target=CancellationStatus.PROCESSING,
        conditions=[_retry_budget_left],
    )
    def retry(self):
        """Start another gateway attempt. Recorded before the call is made."""
        self.retry_count += 1
        self.last_retry_at = timezone.now()

    @transition(
        field=status,
        source=[CancellationStatus.APPROVED, CancellationStatus.FAILED],
        target=CancellationStatus.COMPLETED,
    )
    def complete_without_gateway(self, by=None, note: str = ""):
        """
        Close the request without moving money through the gateway.

        Administrative override for bookings with no charge to refund
        against, or for refunds settled outside the system.
        """
        self.processed_at = timezone.now()
        self.completion_method = CompletionMethod.MANUAL_OVERRIDE
        self.completed_by = by
        self.completion_note = note

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def calculation(self) -> RefundCalculation:
        return RefundCalculation.from_dict(self.refund_calculation)

    @property
    def refund_amount(self) -> RefundAmount:
        return resolve_refund_amount(
            self.calculation,
            self.custom_refund_amount,
            self.custom_refund_note,
        )

    @property
    def policy_allows_refund(self) -> bool:
        return bool(self.policy_snapshot.get("allow_cancellation", True))

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_CANCELLATION_STATUSES

    @property
    def can_retry(self) -> bool:
        return (
            self.status == CancellationStatus.FAILED
            and self.retry_count < MAX_REFUND_RETRIES
        )

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= MAX_REFUND_RETRIES
