"""
Booking refund ledger service.

Appends refund entries to a booking's payment record. The ledger is
append-only: each entry gets the next per-booking sequence number and
a unique gateway refund id.

Concurrency:
    Two writers may compute the same next sequence. The unique
    (booking, sequence) constraint rejects the loser, which re-reads the
    tail and tries again, up to LEDGER_APPEND_MAX_ATTEMPTS times.

Idempotency:
    The gateway refund id is the idempotency key. Appending an entry for
    a refund id that is already recorded returns the existing entry.

Usage:
    from bookings.services import BookingRefundLedger, RefundEntryParams

    entry, created = BookingRefundLedger.append_refund(
        RefundEntryParams(
            booking_id=booking.id,
            amount=Decimal("475.00"),
            currency="usd",
            gateway_refund_id="re_123",
            cancellation_request_id=request.id,
        )
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.db.models import Max, Sum

from bookings.models import Booking, BookingRefundEntry
from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.services import BaseService

LEDGER_APPEND_MAX_ATTEMPTS = 5


@dataclass
class RefundEntryParams:
    """Parameters for appending a refund entry to a booking."""

    booking_id: uuid.UUID
    amount: Decimal
    currency: str
    gateway_refund_id: str
    cancellation_request_id: uuid.UUID | None = None
    status: str = "completed"
    source: str = "gateway"


class BookingRefundLedger(BaseService):
    """Append-only refund history for bookings."""

    @classmethod
    def append_refund(cls, params: RefundEntryParams) -> tuple[BookingRefundEntry, bool]:
        """
        Append a refund entry to a booking.

        Args:
            params: Entry parameters

        Returns:
            Tuple of (entry, created). created is False when the gateway
            refund id was already recorded.

        Raises:
            ValidationError: If the amount is not positive or the refund id is blank
            NotFoundError: If the booking doesn't exist
            ConflictError: If the sequence could not be claimed after
                LEDGER_APPEND_MAX_ATTEMPTS tries
        """
        if params.amount is None or Decimal(params.amount) <= 0:
            raise ValidationError(
                "Refund entry amount must be greater than zero",
                details={"amount": str(params.amount)},
            )
        if not params.gateway_refund_id:
            raise ValidationError("Refund entry requires a gateway refund id")

        existing = BookingRefundEntry.objects.filter(
            gateway_refund_id=params.gateway_refund_id
        ).first()
        if existing:
            return existing, False

        if not Booking.objects.filter(id=params.booking_id).exists():
            raise NotFoundError(
                f"Booking {params.booking_id} not found",
                error_code="BOOKING_NOT_FOUND",
                details={"booking_id": str(params.booking_id)},
            )

        logger = cls.get_logger()
        for attempt in range(1, LEDGER_APPEND_MAX_ATTEMPTS + 1):
            next_sequence = cls._next_sequence(params.booking_id)
            try:
                with transaction.atomic():
                    entry = BookingRefundEntry.objects.create(
                        booking_id=params.booking_id,
                        sequence=next_sequence,
                        amount=params.amount,
                        currency=params.currency,
                        gateway_refund_id=params.gateway_refund_id,
                        cancellation_request_id=params.cancellation_request_id,
                        status=params.status,
                        source=params.source,
                    )
            except IntegrityError:
                existing = BookingRefundEntry.objects.filter(
                    gateway_refund_id=params.gateway_refund_id
                ).first()
                if existing:
                    return existing, False
                logger.warning(
                    "Refund entry sequence conflict, retrying",
                    extra={
                        "booking_id": str(params.booking_id),
                        "sequence": next_sequence,
                        "attempt": attempt,
                    },
                )
                continue

            logger.info(
                "Appended booking refund entry",
                extra={
                    "booking_id": str(params.booking_id),
                    "sequence": entry.sequence,
                    "amount": str(entry.amount),
                    "gateway_refund_id": entry.gateway_refund_id,
                },
            )
            return entry, True

        raise ConflictError(
            f"Could not append refund entry to booking {params.booking_id}",
            error_code="LEDGER_APPEND_CONFLICT",
            details={
                "booking_id": str(params.booking_id),
                "attempts": LEDGER_APPEND_MAX_ATTEMPTS,
            },
        )

    @staticmethod
    def _next_sequence(booking_id: uuid.UUID) -> int:
        current = BookingRefundEntry.objects.filter(booking_id=booking_id).aggregate(
            last=Max("sequence")
        )["last"]
        return (current or 0) + 1

    @staticmethod
    def total_refunded(booking_id: uuid.UUID) -> Decimal:
        """Sum of all refund entries recorded for a booking."""
        total = BookingRefundEntry.objects.filter(booking_id=booking_id).aggregate(
            total=Sum("amount")
        )["total"]
        return total or Decimal("0.00")


__all__ = [
    "LEDGER_APPEND_MAX_ATTEMPTS",
    "BookingRefundLedger",
    "RefundEntryParams",
]
