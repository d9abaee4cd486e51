"""
Booking-side models used by the cancellation workflow.

Usage:
    from bookings.models import Booking, BookingStatus

    booking = Booking.objects.select_related("listing__owner").get(id=booking_id)
    if booking.is_cancellable:
        ...

    # Refund history for a booking, oldest first
    booking.refund_entries.order_by("sequence")
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from core.models import BaseModel, UUIDPrimaryKeyMixin, VersionedModel


class BookingStatus(models.TextChoices):
    """
    Booking lifecycle states relevant to cancellation.

    Only PAID, PENDING_PAYMENT and AWAITING_PAYMENT bookings can be
    cancelled. Cancellation approval moves a booking to CANCELLED.
    """

    PENDING_PAYMENT = "pending_payment", "Pending Payment"
    AWAITING_PAYMENT = "awaiting_payment", "Awaiting Payment"
    PAID = "paid", "Paid"
    CANCELLED = "cancelled", "Cancelled"
    COMPLETED = "completed", "Completed"


CANCELLABLE_BOOKING_STATUSES = frozenset(
    {
        BookingStatus.PAID,
        BookingStatus.PENDING_PAYMENT,
        BookingStatus.AWAITING_PAYMENT,
    }
)


class Listing(UUIDPrimaryKeyMixin, BaseModel):
    """
    A bookable coworking space.

    Fields:
        owner: User who owns the space and reviews cancellations
        title: Display title (searchable from the admin list)
        city: Location shown in admin tooling
        cancellation_policy: Embedded policy document. An empty document
            means the platform default policy applies.
    """

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="listings",
        help_text="Space owner",
    )
    title = models.CharField(max_length=255)
    city = models.CharField(max_length=120, blank=True, default="")
    cancellation_policy = models.JSONField(
        default=dict,
        blank=True,
        help_text="Cancellation policy document (type, tiers, fees)",
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Listing"
        verbose_name_plural = "Listings"

    def __str__(self) -> str:
        return f"Listing({self.id}, {self.title})"


class Booking(UUIDPrimaryKeyMixin, VersionedModel, BaseModel):
    """
    A client's reservation of a listing.

    Fields:
        client: User who booked and paid
        listing: Reserved space
        status: Booking lifecycle state
        start_date / end_date: Reserved period
        amount: Total paid, in major currency units
        currency: ISO 4217 code (lowercase)
        payment_reference: Gateway charge reference (e.g. a PaymentIntent id).
            Empty when the booking was never paid through the gateway.
        payment_provider: Gateway that holds the charge
        cancelled_at: When the booking was cancelled
    """

    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    listing = models.ForeignKey(
        Listing,
        on_delete=models.PROTECT,
        related_name="bookings",
    )
    status = models.CharField(
        max_length=32,
        choices=BookingStatus.choices,
        default=BookingStatus.PENDING_PAYMENT,
        db_index=True,
    )
    start_date = models.DateTimeField()
    end_date = models.DateTimeField()
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0"))],
    )
    currency = models.CharField(max_length=3, default="usd")
    payment_reference = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Gateway charge reference used as the refund source",
    )
    payment_provider = models.CharField(max_length=32, default="stripe")
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-start_date"]
        verbose_name = "Booking"
        verbose_name_plural = "Bookings"
        indexes = [
            models.Index(fields=["client", "status"], name="booking_client_status_idx"),
        ]

    def __str__(self) -> str:
        return f"Booking({self.id}, {self.status}, {self.amount} {self.currency.upper()})"

    @property
    def owner(self):
        return self.listing.owner

    @property
    def is_cancellable(self) -> bool:
        return self.status in CANCELLABLE_BOOKING_STATUSES

    def has_started(self, now=None) -> bool:
        return self.start_date <= (now or timezone.now())

    def mark_cancelled(self) -> None:
        """Move the booking to CANCELLED. Caller saves."""
        self.status = BookingStatus.CANCELLED
        self.cancelled_at = timezone.now()


class BookingRefundEntry(BaseModel):
    """
    Append-only record of a refund issued against a booking.

    Entries are numbered per booking by ``sequence`` and are never
    updated or deleted. ``gateway_refund_id`` is unique, so recording the
    same gateway refund twice yields a single entry.

    Fields:
        booking: Booking the refund was issued against
        sequence: 1-based position within the booking's refund history
        amount / currency: Refunded amount in major units
        gateway_refund_id: Gateway refund reference
        cancellation_request_id: Cancellation request that produced it
        status: Gateway outcome when recorded
        source: What recorded it ("gateway" or "reconciliation")
        recorded_at: When it was recorded
    """

    booking = models.ForeignKey(
        Booking,
        on_delete=models.PROTECT,
        related_name="refund_entries",
    )
    sequence = models.PositiveIntegerField()
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3)
    gateway_refund_id = models.CharField(max_length=255, unique=True)
    cancellation_request_id = models.UUIDField(null=True, blank=True, db_index=True)
    status = models.CharField(max_length=32, default="completed")
    source = models.CharField(max_length=32, default="gateway")
    recorded_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["booking", "sequence"]
        verbose_name = "Booking refund entry"
        verbose_name_plural = "Booking refund entries"
        constraints = [
            models.UniqueConstraint(
                fields=["booking", "sequence"],
                name="booking_refund_entry_sequence_unique",
            ),
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="booking_refund_entry_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"BookingRefundEntry({self.booking_id}#{self.sequence}, {self.amount})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Booking refund entries are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Booking refund entries cannot be deleted")
