"""
RefundTransaction model: one attempt to return money through the gateway.

A transaction is written in PENDING before the gateway is called, so a
crash mid-call leaves a durable record for reconciliation to resolve.
Each retry of a cancellation request creates a new transaction; the
request keeps the full attempt history.

Only PaymentGatewayService creates or changes these records.

Usage:
    from cancellations.models import RefundTransaction

    txn.complete(gateway_refund_id="re_123", response={...})
    txn.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from cancellations.state_machines import RefundTransactionStatus
from core.models import BaseModel, UUIDPrimaryKeyMixin, VersionedModel


class RefundTransaction(UUIDPrimaryKeyMixin, VersionedModel, BaseModel):
    """
    Record of a single gateway refund attempt.

    State Flow:
        PENDING -> COMPLETED
        PENDING -> FAILED
        PENDING -> CANCELLED

    Fields:
        cancellation_request: Request this attempt belongs to
        amount / currency: Refund amount in major units
        original_transaction_id: Charge reference being refunded
        refund_transaction_id: Gateway refund reference, set on success
            or when reconciliation finds the refund at the gateway
        gateway_status: Raw status last reported by the gateway
        gateway_response: Raw gateway payload for audit (never shown to users)
        gateway_error: Most specific error message available on failure
        idempotency_key: Key sent with the gateway call
        attempt: 1 for the first attempt, retry_count + 1 afterwards
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    cancellation_request = models.ForeignKey(
        "cancellations.CancellationRequest",
        on_delete=models.PROTECT,
        related_name="refund_transactions",
    )
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.PROTECT,
        related_name="refund_transactions",
    )
    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
    )

    # ==========================================================================
    # Amount & References
    # ==========================================================================

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="usd")
    payment_method = models.CharField(max_length=32, default="card")
    original_transaction_id = models.CharField(
        max_length=255,
        help_text="Gateway charge reference being refunded",
    )
    refund_transaction_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Gateway refund reference",
    )
    reason = models.TextField(blank=True, default="")

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=RefundTransactionStatus.PENDING,
        choices=RefundTransactionStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the attempt (managed by FSM)",
    )

    # ==========================================================================
    # Gateway
    # ==========================================================================

    gateway_provider = models.CharField(max_length=32, default="stripe")
    gateway_status = models.CharField(max_length=32, blank=True, default="")
    gateway_response = models.JSONField(default=dict, blank=True)
    gateway_error = models.TextField(blank=True, default="")
    idempotency_key = models.CharField(max_length=255, unique=True)
    attempt = models.PositiveSmallIntegerField(default=1)

    # ==========================================================================
    # Timestamps
    # ==========================================================================

    initiated_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-initiated_at"]
        verbose_name = "Refund transaction"
        verbose_name_plural = "Refund transactions"
        indexes = [
            models.Index(fields=["status", "initiated_at"], name="refund_txn_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["cancellation_request"],
                condition=models.Q(status=RefundTransactionStatus.PENDING),
                name="one_pending_refund_per_request",
            ),
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="refund_transaction_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"RefundTransaction({self.id}, {self.status}, {self.amount} {self.currency.upper()})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=RefundTransactionStatus.PENDING,
        target=RefundTransactionStatus.COMPLETED,
    )
    def complete(self, gateway_refund_id: str, response: dict | None = None):
        self.refund_transaction_id = gateway_refund_id
        self.completed_at = timezone.now()
        if response is not None:
            self.gateway_response = response
            self.gateway_status = str(response.get("status") or "")

    @transition(
        field=status,
        source=RefundTransactionStatus.PENDING,
        target=RefundTransactionStatus.FAILED,
    )
    def fail(self, error: str, response: dict | None = None):
        self.gateway_error = error
        self.failed_at = timezone.now()
        if response is not None:
            self.gateway_response = response
            self.gateway_status = str(response.get("status") or "")

    @transition(
        field=status,
        source=RefundTransactionStatus.PENDING,
        target=RefundTransactionStatus.CANCELLED,
    )
    def cancel(self, reason: str = ""):
        self.cancelled_at = timezone.now()
        if reason:
            self.gateway_error = reason

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_pending(self) -> bool:
        return self.status == RefundTransactionStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status != RefundTransactionStatus.PENDING

    @property
    def is_retryable_failure(self) -> bool:
        """Failed for a transient reason (timeout, network, rate limit)."""
        if self.status != RefundTransactionStatus.FAILED:
            return False
        error = (self.gateway_response or {}).get("error") or {}
        return bool(error.get("retryable", False))
