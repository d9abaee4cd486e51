"""
Cancellation workflow: create, quote, approve, reject, process.

CancellationWorkflowService drives a CancellationRequest from creation
to a terminal state. Gateway work is delegated to PaymentGatewayService.

Flow:
    create_request
        -> PENDING (manual review)
        -> APPROVED + refund task enqueued (automatic-refund policies)
    approve_request   PENDING -> APPROVED, booking cancelled, refund attempted
    reject_request    PENDING -> REJECTED
    process_approved_request
        APPROVED -> PROCESSING -> COMPLETED / FAILED, or stays APPROVED
        when there is nothing the gateway can refund
    complete_without_gateway
        APPROVED / FAILED -> COMPLETED (admin override)

All operations return ServiceResult; business-rule failures carry an
error_code and, for state conflicts, the current status in errors.

Usage:
    from cancellations.services import CancellationWorkflowService

    result = CancellationWorkflowService.create_request(
        booking_id=booking.id,
        client=request.user,
        reason=CancellationReason.SCHEDULE_CHANGE,
    )
    if not result.success:
        return Response(result.to_response(), status=400)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.db import IntegrityError, transaction
from django.db.models import Count, Q
from django.utils import timezone

from bookings.models import Booking, BookingStatus, Listing
from cancellations.calculator import RefundCalculation, RefundCalculator
from cancellations.conf import AUTOMATIC_REFUND_MIN_LEAD_HOURS, AUTOMATIC_REFUND_MIN_PERCENTAGE
from cancellations.exceptions import InvalidStateTransitionError
from cancellations.locks import check_version
from cancellations.models import CancellationRequest
from cancellations.money import quantize, to_decimal
from cancellations.policies import CancellationPolicy, PolicyManager, RefundPolicy
from cancellations.services.payment_gateway_service import (
    PaymentGatewayService,
    RefundRequestParams,
)
from cancellations.services.query_service import (
    refund_totals,
    requested_between,
)
from cancellations.signals import (
    cancellation_approved,
    cancellation_rejected,
    cancellation_requested,
    send_on_commit,
)
from cancellations.state_machines import (
    ACTIVE_CANCELLATION_STATUSES,
    CancellationReason,
    CancellationStatus,
    RefundTransactionStatus,
)
from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from core.pagination import DEFAULT_PAGE_SIZE, Page, paginate
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser
    from django.db.models import QuerySet


# Requests that were granted, whatever happened to the money afterwards.
APPROVED_OUTCOME_STATUSES = (
    CancellationStatus.APPROVED,
    CancellationStatus.PROCESSING,
    CancellationStatus.COMPLETED,
    CancellationStatus.FAILED,
)


@dataclass
class ProcessingOutcome:
    """
    What happened after a request was approved.

    Attributes:
        request: The request as it stands now
        refund_attempted: Whether the gateway was called
        refund_status: completed / processing / failed when attempted
        message: Why the refund was skipped or failed
        error_code: Machine-readable code for a skip or failure
    """

    request: CancellationRequest
    refund_attempted: bool = False
    refund_status: str | None = None
    message: str = ""
    error_code: str | None = None


class CancellationWorkflowService(BaseService):
    """Lifecycle operations on cancellation requests."""

    # =========================================================================
    # Quote & Create
    # =========================================================================

    @classmethod
    def quote_refund(
        cls,
        booking_id: uuid.UUID,
        client: AbstractBaseUser,
        now: datetime | None = None,
    ) -> ServiceResult[RefundCalculation]:
        """Preview the refund a cancellation would earn right now."""
        booking = Booking.objects.select_related("listing").filter(id=booking_id).first()
        if booking is None:
            return ServiceResult.failure(
                "Booking not found",
                error_code="BOOKING_NOT_FOUND",
                errors={"booking_id": str(booking_id)},
            )
        if booking.client_id != client.pk:
            return ServiceResult.failure(
                "You can only cancel your own bookings",
                error_code="NOT_BOOKING_CLIENT",
            )

        policy = PolicyManager.get_policy(booking.listing)
        return ServiceResult.success(RefundCalculator.quote(booking, policy, now))

    @classmethod
    def create_request(
        cls,
        booking_id: uuid.UUID,
        client: AbstractBaseUser,
        reason: str,
        reason_other: str = "",
        now: datetime | None = None,
    ) -> ServiceResult[CancellationRequest]:
        """
        Create a cancellation request for a client's booking.

        Snapshots the booking, the policy and the refund calculation.
        Under an automatic-refund policy with a full refund and enough
        lead time the request is approved immediately, the booking is
        cancelled and the refund is queued.

        Error codes:
            VALIDATION_ERROR, BOOKING_NOT_FOUND, NOT_BOOKING_CLIENT,
            BOOKING_NOT_CANCELLABLE, BOOKING_ALREADY_STARTED,
            DUPLICATE_CANCELLATION_REQUEST (errors carry the existing
            request id and status)
        """
        logger = cls.get_logger()
        invalid = cls.validate_required(booking_id=booking_id, reason=reason)
        if invalid:
            return invalid
        if reason not in CancellationReason.values:
            return ServiceResult.failure(
                f"Invalid cancellation reason: {reason}",
                error_code="VALIDATION_ERROR",
                errors={"reason": [f"Must be one of: {', '.join(CancellationReason.values)}"]},
            )
        if reason == CancellationReason.OTHER and not (reason_other or "").strip():
            return ServiceResult.failure(
                "Please describe the reason for cancelling",
                error_code="VALIDATION_ERROR",
                errors={"reason_other": ["Required when the reason is 'other'."]},
            )

        now = now or timezone.now()
        try:
            with cls.atomic():
                booking = cls._lock_cancellable_booking(booking_id, client, now)

                policy = PolicyManager.get_policy(booking.listing)
                decision = RefundPolicy.evaluate(policy, booking.start_date, now)
                calculation = RefundCalculator.from_decision(booking.amount, decision, policy)

                request = CancellationRequest.objects.create(
                    booking=booking,
                    client_id=booking.client_id,
                    owner_id=booking.listing.owner_id,
                    listing_id=booking.listing_id,
                    booking_start_date=booking.start_date,
                    booking_end_date=booking.end_date,
                    booking_amount=booking.amount,
                    currency=booking.currency,
                    refund_calculation=calculation.to_dict(),
                    policy_snapshot=policy.to_dict(),
                    cancellation_reason=reason,
                    cancellation_reason_other=(reason_other or "").strip(),
                    requested_at=now,
                )

                if cls._qualifies_for_automatic_refund(policy, calculation):
                    request.is_automatic = True
                    request.approve(by=None)
                    request.save()
                    cls._cancel_booking(booking)
                    cls._enqueue_automatic_refund(request.id)
        except IntegrityError:
            # Lost the race against a concurrent request for the same booking.
            existing = (
                CancellationRequest.objects.filter(
                    booking_id=booking_id, status__in=ACTIVE_CANCELLATION_STATUSES
                )
                .values("id", "status")
                .first()
            )
            logger.warning(
                "Concurrent cancellation request rejected by unique index",
                extra={"booking_id": str(booking_id)},
            )
            return ServiceResult.failure(
                "An active cancellation request already exists for this booking",
                error_code="DUPLICATE_CANCELLATION_REQUEST",
                errors={
                    "existing_request_id": str(existing["id"]) if existing else None,
                    "status": existing["status"] if existing else None,
                },
            )
        except BaseApplicationError as e:
            return cls.handle_exception(
                e, "Cancellation request rejected", log_level=logging.INFO
            )

        send_on_commit(cancellation_requested, sender=CancellationRequest, request=request)
        if request.is_automatic:
            send_on_commit(cancellation_approved, sender=CancellationRequest, request=request)

        logger.info(
            "Cancellation request created",
            extra={
                "cancellation_request_id": str(request.id),
                "booking_id": str(booking_id),
                "refund_percentage": str(calculation.refund_percentage),
                "final_refund": str(calculation.final_refund),
                "is_automatic": request.is_automatic,
            },
        )
        return ServiceResult.success(request)

    @staticmethod
    def _lock_cancellable_booking(
        booking_id: uuid.UUID,
        client: AbstractBaseUser,
        now: datetime,
    ) -> Booking:
        booking = (
            Booking.objects.select_for_update()
            .select_related("listing")
            .filter(id=booking_id)
            .first()
        )
        if booking is None:
            raise NotFoundError(
                "Booking not found",
                error_code="BOOKING_NOT_FOUND",
                details={"booking_id": str(booking_id)},
            )
        if booking.client_id != client.pk:
            raise PermissionDeniedError(
                "You can only cancel your own bookings",
                error_code="NOT_BOOKING_CLIENT",
            )
        if not booking.is_cancellable:
            raise ValidationError(
                f"A booking in {booking.status} status cannot be cancelled",
                error_code="BOOKING_NOT_CANCELLABLE",
                details={"booking_status": booking.status},
            )
        if booking.has_started(now):
            raise ValidationError(
                "Cannot cancel a booking that has already started",
                error_code="BOOKING_ALREADY_STARTED",
                details={"start_date": booking.start_date.isoformat()},
            )

        existing = CancellationRequest.objects.filter(
            booking=booking, status__in=ACTIVE_CANCELLATION_STATUSES
        ).first()
        if existing:
            raise ConflictError(
                "An active cancellation request already exists for this booking",
                error_code="DUPLICATE_CANCELLATION_REQUEST",
                details={
                    "existing_request_id": str(existing.id),
                    "status": existing.status,
                },
            )
        return booking

    @staticmethod
    def _qualifies_for_automatic_refund(
        policy: CancellationPolicy, calculation: RefundCalculation
    ) -> bool:
        return (
            policy.allow_cancellation
            and policy.automatic_refund
            and calculation.refund_percentage >= Decimal(AUTOMATIC_REFUND_MIN_PERCENTAGE)
            and calculation.hours_until_booking is not None
            and calculation.hours_until_booking >= AUTOMATIC_REFUND_MIN_LEAD_HOURS
        )

    @staticmethod
    def _enqueue_automatic_refund(request_id: uuid.UUID) -> None:
        from cancellations.tasks import process_cancellation_refund

        transaction.on_commit(lambda: process_cancellation_refund.delay(str(request_id)))

    @staticmethod
    def _cancel_booking(booking: Booking) -> None:
        if booking.status == BookingStatus.CANCELLED:
            return
        booking.mark_cancelled()
        booking.save(update_fields=["status", "cancelled_at", "updated_at"])

    # =========================================================================
    # Approve & Reject
    # =========================================================================

    @staticmethod
    def _may_decide(request: CancellationRequest, actor: AbstractBaseUser) -> bool:
        return bool(actor.is_staff) or request.owner_id == actor.pk

    @classmethod
    def _lock_request(
        cls,
        request_id: uuid.UUID,
        expected_version: int | None = None,
    ) -> CancellationRequest:
        if expected_version is not None:
            return check_version(CancellationRequest, request_id, expected_version)

        request = CancellationRequest.objects.select_for_update().filter(id=request_id).first()
        if request is None:
            raise NotFoundError(
                "Cancellation request not found",
                error_code="CANCELLATION_REQUEST_NOT_FOUND",
                details={"cancellation_request_id": str(request_id)},
            )
        return request

    @classmethod
    def approve_request(
        cls,
        request_id: uuid.UUID,
        actor: AbstractBaseUser,
        custom_amount: Any = None,
        custom_note: str = "",
        expected_version: int | None = None,
    ) -> ServiceResult[ProcessingOutcome]:
        """
        Approve a pending request and attempt the refund.

        The owner of the listing or an admin may approve. An optional
        custom amount (0..booking amount, with a note) overrides the
        computed refund. The booking is cancelled on approval.

        Returns:
            ServiceResult[ProcessingOutcome] describing whether the refund
            was attempted and how it went. Approval stands even when the
            refund fails.
        """
        logger = cls.get_logger()
        try:
            with cls.atomic():
                request = cls._lock_request(request_id, expected_version)
                if not cls._may_decide(request, actor):
                    raise PermissionDeniedError(
                        "Only the listing owner or an admin can approve this request",
                        error_code="NOT_LISTING_OWNER",
                    )
                if request.status != CancellationStatus.PENDING:
                    raise InvalidStateTransitionError(
                        f"Cannot approve a request in {request.status} state",
                        details={"current_status": request.status, "action": "approve"},
                    )

                override = None
                if custom_amount is not None and custom_amount != "":
                    override = cls._validate_custom_amount(request, custom_amount, custom_note)

                request.approve(
                    by=actor,
                    custom_amount=override,
                    custom_note=(custom_note or "").strip(),
                )
                request.save()
                cls._cancel_booking(Booking.objects.select_for_update().get(id=request.booking_id))
        except BaseApplicationError as e:
            return cls.handle_exception(e, "Approval rejected", log_level=logging.INFO)

        send_on_commit(cancellation_approved, sender=CancellationRequest, request=request)
        logger.info(
            "Cancellation request approved",
            extra={
                "cancellation_request_id": str(request.id),
                "approved_by": str(actor.pk),
                "custom_refund_amount": str(override) if override is not None else None,
            },
        )

        processed = cls.process_approved_request(request.id)
        if processed.data is not None:
            return ServiceResult.success(processed.data)
        return ServiceResult.success(
            ProcessingOutcome(
                request=CancellationRequest.objects.get(id=request.id),
                message=processed.error or "",
                error_code=processed.error_code,
            )
        )

    @staticmethod
    def _validate_custom_amount(
        request: CancellationRequest, custom_amount: Any, custom_note: str
    ) -> Decimal:
        amount = to_decimal(custom_amount)
        if not amount.is_finite() or amount < 0 or amount > request.booking_amount:
            raise ValidationError(
                f"Custom refund must be between 0 and {request.booking_amount}",
                error_code="INVALID_REFUND_AMOUNT",
                details={
                    "custom_amount": str(custom_amount),
                    "booking_amount": str(request.booking_amount),
                },
            )
        if not (custom_note or "").strip():
            raise ValidationError(
                "A note is required when overriding the refund amount",
                error_code="VALIDATION_ERROR",
                details={"custom_note": ["Required with a custom refund amount."]},
            )
        return quantize(amount)

    @classmethod
    def reject_request(
        cls,
        request_id: uuid.UUID,
        actor: AbstractBaseUser,
        reason: str,
        expected_version: int | None = None,
    ) -> ServiceResult[CancellationRequest]:
        """Reject a pending request. A reason is required."""
        invalid = cls.validate_required(reason=reason)
        if invalid:
            return invalid

        try:
            with cls.atomic():
                request = cls._lock_request(request_id, expected_version)
                if not cls._may_decide(request, actor):
                    raise PermissionDeniedError(
                        "Only the listing owner or an admin can reject this request",
                        error_code="NOT_LISTING_OWNER",
                    )
                if request.status != CancellationStatus.PENDING:
                    raise InvalidStateTransitionError(
                        f"Cannot reject a request in {request.status} state",
                        details={"current_status": request.status, "action": "reject"},
                    )
                request.reject(by=actor, reason=reason.strip())
                request.save()
        except BaseApplicationError as e:
            return cls.handle_exception(e, "Rejection refused", log_level=logging.INFO)

        send_on_commit(cancellation_rejected, sender=CancellationRequest, request=request)
        cls.get_logger().info(
            "Cancellation request rejected",
            extra={"cancellation_request_id": str(request.id), "rejected_by": str(actor.pk)},
        )
        return ServiceResult.success(request)

    # =========================================================================
    # Processing
    # =========================================================================

    @staticmethod
    def _processing_blocker(request: CancellationRequest) -> tuple[str, str] | None:
        if not request.policy_allows_refund:
            return "Cancellation policy does not allow a refund", "REFUND_NOT_ALLOWED"
        if request.refund_amount.value <= 0:
            return "No refund is due for this cancellation", "NO_REFUND_DUE"
        if not request.booking.payment_reference:
            return (
                "Booking has no payment reference; complete the request manually",
                "MISSING_PAYMENT_REFERENCE",
            )
        return None

    @classmethod
    def process_approved_request(
        cls, request_id: uuid.UUID
    ) -> ServiceResult[ProcessingOutcome]:
        """
        Send an approved request's refund to the gateway.

        When there is nothing to send (policy forbids a refund, amount is
        zero, or no payment reference) the request stays APPROVED and the
        outcome says why.
        """
        logger = cls.get_logger()
        request = (
            CancellationRequest.objects.select_related("booking").filter(id=request_id).first()
        )
        if request is None:
            return ServiceResult.failure(
                "Cancellation request not found",
                error_code="CANCELLATION_REQUEST_NOT_FOUND",
                errors={"cancellation_request_id": str(request_id)},
            )
        if request.status != CancellationStatus.APPROVED:
            return ServiceResult.failure(
                f"Cannot process a request in {request.status} state",
                error_code="INVALID_STATE_TRANSITION",
                errors={"current_status": request.status},
            )

        blocker = cls._processing_blocker(request)
        if blocker:
            message, code = blocker
            logger.info(
                "Refund not sent to gateway",
                extra={"cancellation_request_id": str(request.id), "skip_reason": code},
            )
            return ServiceResult.success(
                ProcessingOutcome(request=request, message=message, error_code=code)
            )

        with cls.atomic():
            locked = CancellationRequest.objects.select_for_update().get(id=request.id)
            if locked.status != CancellationStatus.APPROVED:
                return ServiceResult.failure(
                    "Cancellation request changed before processing",
                    error_code="INVALID_STATE_TRANSITION",
                    errors={"current_status": locked.status},
                )
            locked.begin_processing()
            locked.save()

        refund = PaymentGatewayService.process_refund(
            RefundRequestParams(
                cancellation_request_id=request.id,
                booking_id=request.booking_id,
                amount=request.refund_amount.value,
                payment_reference=request.booking.payment_reference,
                reason=f"Refund for cancellation request {request.id}",
            )
        )
        if not refund.success and refund.data is None:
            PaymentGatewayService.release_unsent_refund(request.id, reason=refund.error)

        outcome = ProcessingOutcome(
            request=CancellationRequest.objects.get(id=request.id),
            refund_attempted=True,
            refund_status=refund.data.status if refund.data else None,
            message=refund.error or "",
            error_code=refund.error_code,
        )
        if refund.success:
            return ServiceResult.success(outcome)
        return ServiceResult.failure(
            refund.error or "Refund failed",
            error_code=refund.error_code,
            errors=refund.errors,
            data=outcome,
        )

    @classmethod
    def process_automatic_refund(
        cls, request_id: uuid.UUID
    ) -> ServiceResult[ProcessingOutcome]:
        """
        Process an automatically approved request.

        Safe to run more than once: a request that has already left
        APPROVED is reported as is.
        """
        request = CancellationRequest.objects.filter(id=request_id).first()
        if request is None:
            return ServiceResult.failure(
                "Cancellation request not found",
                error_code="CANCELLATION_REQUEST_NOT_FOUND",
                errors={"cancellation_request_id": str(request_id)},
            )
        if not request.is_automatic:
            return ServiceResult.failure(
                "Request was not approved automatically",
                error_code="NOT_AUTOMATIC",
            )
        if request.status != CancellationStatus.APPROVED:
            cls.get_logger().info(
                "Automatic refund already handled",
                extra={"cancellation_request_id": str(request.id), "status": request.status},
            )
            return ServiceResult.success(ProcessingOutcome(request=request))

        return cls.process_approved_request(request.id)

    @classmethod
    def complete_without_gateway(
        cls,
        request_id: uuid.UUID,
        admin: AbstractBaseUser,
        note: str,
    ) -> ServiceResult[CancellationRequest]:
        """
        Administrative override: close an APPROVED or FAILED request
        without a gateway refund.

        For bookings with no charge to refund against, or refunds settled
        outside the system. Admin only; a note is required.
        """
        invalid = cls.validate_required(note=note)
        if invalid:
            return invalid

        try:
            with cls.atomic():
                if not admin.is_staff:
                    raise PermissionDeniedError(
                        "Only an admin can complete a request without a gateway refund",
                        error_code="ADMIN_REQUIRED",
                    )
                request = cls._lock_request(request_id)
                if request.status not in (CancellationStatus.APPROVED, CancellationStatus.FAILED):
                    raise InvalidStateTransitionError(
                        f"Cannot complete a request in {request.status} state",
                        details={
                            "current_status": request.status,
                            "action": "complete_without_gateway",
                        },
                    )
                if request.refund_transactions.filter(
                    status=RefundTransactionStatus.PENDING
                ).exists():
                    raise ConflictError(
                        "A gateway refund is still pending for this request",
                        error_code="REFUND_IN_PROGRESS",
                    )
                request.complete_without_gateway(by=admin, note=note.strip())
                request.save()
                cls._cancel_booking(Booking.objects.select_for_update().get(id=request.booking_id))
        except BaseApplicationError as e:
            return cls.handle_exception(e, "Manual completion refused", log_level=logging.INFO)

        cls.get_logger().warning(
            "Cancellation request completed by administrative override",
            extra={
                "cancellation_request_id": str(request.id),
                "completed_by": str(admin.pk),
                "refund_amount": str(request.refund_amount.value),
            },
        )
        return ServiceResult.success(request)

    # =========================================================================
    # Listing Policies
    # =========================================================================

    @staticmethod
    def _owned_listing(
        listing_id: uuid.UUID, actor: AbstractBaseUser, lock: bool = False
    ) -> Listing:
        queryset = Listing.objects.select_for_update() if lock else Listing.objects
        listing = queryset.filter(id=listing_id).first()
        if listing is None:
            raise NotFoundError(
                "Listing not found",
                error_code="LISTING_NOT_FOUND",
                details={"listing_id": str(listing_id)},
            )
        if not (actor.is_staff or listing.owner_id == actor.pk):
            raise PermissionDeniedError(
                "Only the listing owner or an admin can manage its cancellation policy",
                error_code="NOT_LISTING_OWNER",
            )
        return listing

    @classmethod
    def get_listing_policy(
        cls, listing_id: uuid.UUID, actor: AbstractBaseUser
    ) -> ServiceResult[CancellationPolicy]:
        """The listing's effective policy (the default template when none is stored)."""
        try:
            listing = cls._owned_listing(listing_id, actor)
        except BaseApplicationError as e:
            return ServiceResult.from_exception(e)
        return ServiceResult.success(PolicyManager.get_policy(listing))

    @classmethod
    def set_listing_policy(
        cls,
        listing_id: uuid.UUID,
        actor: AbstractBaseUser,
        document: dict[str, Any],
    ) -> ServiceResult[CancellationPolicy]:
        """
        Validate and store a listing's policy.

        Requests already made keep the policy snapshot taken when they
        were created.
        """
        try:
            with cls.atomic():
                listing = cls._owned_listing(listing_id, actor, lock=True)
                policy = PolicyManager.set_policy(listing, document)
        except BaseApplicationError as e:
            return cls.handle_exception(e, "Policy update rejected", log_level=logging.INFO)
        return ServiceResult.success(policy)

    # =========================================================================
    # Owner & Client Queries
    # =========================================================================

    @staticmethod
    def _filtered(
        queryset: QuerySet,
        status: str | None = None,
        listing_id: uuid.UUID | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> QuerySet:
        if status and status != "all":
            queryset = queryset.filter(status=status)
        if listing_id:
            queryset = queryset.filter(listing_id=listing_id)
        return requested_between(queryset, date_from, date_to)

    @classmethod
    def get_owner_requests(
        cls,
        owner: AbstractBaseUser,
        status: str | None = None,
        listing_id: uuid.UUID | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        page: Any = 1,
        limit: Any = DEFAULT_PAGE_SIZE,
    ) -> ServiceResult[Page]:
        queryset = CancellationRequest.objects.filter(owner=owner).select_related(
            "booking", "client", "listing"
        )
        queryset = cls._filtered(queryset, status, listing_id, date_from, date_to)
        return ServiceResult.success(paginate(queryset.order_by("-requested_at"), page, limit))

    @classmethod
    def get_client_requests(
        cls,
        client: AbstractBaseUser,
        status: str | None = None,
        page: Any = 1,
        limit: Any = DEFAULT_PAGE_SIZE,
    ) -> ServiceResult[Page]:
        queryset = CancellationRequest.objects.filter(client=client).select_related(
            "booking", "listing"
        )
        queryset = cls._filtered(queryset, status)
        return ServiceResult.success(paginate(queryset.order_by("-requested_at"), page, limit))

    @classmethod
    def get_owner_stats(
        cls,
        owner: AbstractBaseUser,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> ServiceResult[dict[str, Any]]:
        """
        Cancellation figures across an owner's listings.

        approval_rate is granted requests as a percentage of decided ones
        (granted + rejected). Refund totals cover approved, processing and
        completed requests.
        """
        queryset = requested_between(
            CancellationRequest.objects.filter(owner=owner), date_from, date_to
        )

        counts = queryset.aggregate(
            total=Count("id"),
            granted=Count("id", filter=Q(status__in=APPROVED_OUTCOME_STATUSES)),
            **{
                status: Count("id", filter=Q(status=status))
                for status in CancellationStatus.values
            },
        )
        decided = counts["granted"] + counts[CancellationStatus.REJECTED]
        approval_rate = (
            quantize(Decimal(counts["granted"]) / decided * 100) if decided else quantize(0)
        )

        reasons = {
            row["cancellation_reason"]: row["count"]
            for row in queryset.order_by()
            .values("cancellation_reason")
            .annotate(count=Count("id"))
        }

        totals = refund_totals(
            queryset.filter(
                status__in=(
                    CancellationStatus.APPROVED,
                    CancellationStatus.PROCESSING,
                    CancellationStatus.COMPLETED,
                )
            )
        )

        return ServiceResult.success(
            {
                "total": counts["total"],
                "by_status": {status: counts[status] for status in CancellationStatus.values},
                "approval_rate": approval_rate,
                "total_refunded": totals["total_refund_amount"],
                "average_refund": totals["avg_refund_amount"],
                "by_reason": {
                    reason: reasons.get(reason, 0) for reason in CancellationReason.values
                },
            }
        )


__all__ = [
    "APPROVED_OUTCOME_STATUSES",
    "CancellationWorkflowService",
    "ProcessingOutcome",
]
