"""
Read-side queries over cancellation requests for the admin API.

Usage:
    from cancellations.services import CancellationListFilters, CancellationQueryService

    page = CancellationQueryService.list_requests(
        CancellationListFilters(status="pending", search="jane", page=2)
    ).data
    page.items, page.pagination

    stats = CancellationQueryService.get_stats().data
    stats["refund_rate"]
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from django.db.models import Avg, Count, DecimalField, Q, Sum
from django.db.models.fields.json import KT
from django.db.models.functions import Cast, Coalesce

from cancellations.models import CancellationRequest, RefundTransaction
from cancellations.money import quantize
from cancellations.state_machines import CancellationStatus
from core.pagination import DEFAULT_PAGE_SIZE, Page, paginate
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from django.db.models import QuerySet

# Requests whose refund is granted or on its way.
REFUNDING_STATUSES = (
    CancellationStatus.APPROVED,
    CancellationStatus.PROCESSING,
    CancellationStatus.COMPLETED,
)

ALL_STATUSES = "all"


def requested_between(
    queryset: QuerySet,
    date_from: date | None = None,
    date_to: date | None = None,
) -> QuerySet:
    """Filter on requested_at by calendar day, both bounds inclusive."""
    if date_from:
        queryset = queryset.filter(requested_at__date__gte=date_from)
    if date_to:
        queryset = queryset.filter(requested_at__date__lte=date_to)
    return queryset


def search_requests(queryset: QuerySet, search: str | None) -> QuerySet:
    """
    Free-text search over client and owner names and emails, listing
    title, and the booking id (exact match when the term is a UUID).
    """
    term = (search or "").strip()
    if not term:
        return queryset

    condition = (
        Q(client__first_name__icontains=term)
        | Q(client__last_name__icontains=term)
        | Q(client__email__icontains=term)
        | Q(owner__first_name__icontains=term)
        | Q(owner__last_name__icontains=term)
        | Q(owner__email__icontains=term)
        | Q(listing__title__icontains=term)
    )
    try:
        condition |= Q(booking_id=uuid.UUID(term))
    except ValueError:
        pass
    return queryset.filter(condition)


@dataclass
class CancellationListFilters:
    """Admin list filters. status "all" (or None) means no status filter."""

    status: str | None = None
    is_automatic: bool | None = None
    date_from: date | None = None
    date_to: date | None = None
    search: str | None = None
    page: Any = 1
    limit: Any = DEFAULT_PAGE_SIZE


@dataclass
class CancellationDetail:
    request: CancellationRequest
    latest_transaction: RefundTransaction | None = None
    transactions: list[RefundTransaction] = field(default_factory=list)


class CancellationQueryService(BaseService):
    """Admin list, detail and statistics queries."""

    @staticmethod
    def base_queryset() -> QuerySet:
        return CancellationRequest.objects.select_related(
            "booking", "client", "owner", "listing"
        )

    @classmethod
    def list_requests(
        cls, filters: CancellationListFilters | None = None
    ) -> ServiceResult[Page]:
        filters = filters or CancellationListFilters()
        queryset = cls.base_queryset()

        if filters.status and filters.status != ALL_STATUSES:
            if filters.status not in CancellationStatus.values:
                return ServiceResult.failure(
                    f"Unknown status: {filters.status}",
                    error_code="VALIDATION_ERROR",
                    errors={"status": [f"Must be one of: {', '.join(CancellationStatus.values)}"]},
                )
            queryset = queryset.filter(status=filters.status)

        if filters.is_automatic is not None:
            queryset = queryset.filter(is_automatic=filters.is_automatic)

        queryset = requested_between(queryset, filters.date_from, filters.date_to)
        queryset = search_requests(queryset, filters.search)

        return ServiceResult.success(
            paginate(queryset.order_by("-requested_at"), filters.page, filters.limit)
        )

    @classmethod
    def get_request_detail(cls, request_id: uuid.UUID) -> ServiceResult[CancellationDetail]:
        request = cls.base_queryset().filter(id=request_id).first()
        if request is None:
            return ServiceResult.failure(
                "Cancellation request not found",
                error_code="CANCELLATION_REQUEST_NOT_FOUND",
                errors={"cancellation_request_id": str(request_id)},
            )

        transactions = list(request.refund_transactions.order_by("-initiated_at"))
        return ServiceResult.success(
            CancellationDetail(
                request=request,
                latest_transaction=transactions[0] if transactions else None,
                transactions=transactions,
            )
        )

    @classmethod
    def get_stats(cls) -> ServiceResult[dict[str, Any]]:
        """
        Counts and refund totals across all requests.

        Refund figures cover approved, processing and completed requests;
        refund_rate is total refunded as a percentage of their original
        booking amounts.
        """
        counts = {
            row["status"]: row["count"]
            for row in CancellationRequest.objects.order_by()
            .values("status")
            .annotate(count=Count("id"))
        }
        by_status = {status: counts.get(status, 0) for status in CancellationStatus.values}

        by_type = CancellationRequest.objects.aggregate(
            automatic=Count("id", filter=Q(is_automatic=True)),
            manual=Count("id", filter=Q(is_automatic=False)),
        )

        totals = refund_totals(
            CancellationRequest.objects.filter(status__in=REFUNDING_STATUSES)
        )

        return ServiceResult.success(
            {
                "total": sum(by_status.values()),
                "by_status": by_status,
                "by_type": by_type,
                **totals,
            }
        )


def refund_totals(queryset: QuerySet) -> dict[str, Any]:
    """
    Aggregate refunds over ``queryset`` in the database.

    total/avg_refund_amount are over the policy's final_refund. Owner
    overrides show up only in total_granted_amount.
    """
    final_refund = Cast(
        KT("refund_calculation__final_refund"),
        DecimalField(max_digits=12, decimal_places=2),
    )
    totals = queryset.order_by().aggregate(
        total_refund=Sum(final_refund),
        avg_refund=Avg(final_refund),
        total_granted=Sum(Coalesce("custom_refund_amount", final_refund)),
        total_original=Sum("booking_amount"),
    )
    total_refund = totals["total_refund"] or Decimal("0")
    total_original = totals["total_original"] or Decimal("0")

    return {
        "total_refund_amount": quantize(total_refund),
        "avg_refund_amount": quantize(totals["avg_refund"] or 0),
        "total_granted_amount": quantize(totals["total_granted"] or 0),
        "total_original_amount": quantize(total_original),
        "refund_rate": (
            quantize(total_refund / total_original * 100) if total_original else quantize(0)
        ),
    }


__all__ = [
    "REFUNDING_STATUSES",
    "CancellationDetail",
    "CancellationListFilters",
    "CancellationQueryService",
    "refund_totals",
    "requested_between",
    "search_requests",
]
