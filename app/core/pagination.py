"""
Offset pagination for service-layer list queries.

Services return a Page instead of a DRF paginated response so the same
query can back an admin endpoint, an owner endpoint and a Celery sweep.

Usage:
    from core.pagination import paginate

    page = paginate(CancellationRequest.objects.filter(owner=owner), page=2, limit=20)
    page.items            # list of model instances
    page.pagination       # {"page": 2, "limit": 20, "total": 41, "pages": 3, ...}
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from django.db.models import QuerySet

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def clamp_page_params(
    page: Any,
    limit: Any,
    default_limit: int = DEFAULT_PAGE_SIZE,
    max_limit: int = MAX_PAGE_SIZE,
) -> tuple[int, int]:
    """
    Coerce raw page/limit values into a usable pair.

    Non-numeric input falls back to the defaults; page is at least 1 and
    limit lies in 1..max_limit.
    """
    try:
        page_number = int(page)
    except (TypeError, ValueError):
        page_number = 1
    try:
        page_size = int(limit)
    except (TypeError, ValueError):
        page_size = default_limit

    return max(1, page_number), max(1, min(page_size, max_limit))


def calculate_pagination(total: int, page: int, limit: int) -> dict[str, Any]:
    """
    Calculate pagination metadata.

    Example:
        calculate_pagination(total=41, page=3, limit=20)
        # {"page": 3, "limit": 20, "total": 41, "pages": 3,
        #  "has_next": False, "has_previous": True}
    """
    pages = math.ceil(total / limit) if limit > 0 else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": pages,
        "has_next": page < pages,
        "has_previous": page > 1,
    }


@dataclass
class Page:
    """One page of results plus its pagination metadata."""

    items: list[Any] = field(default_factory=list)
    pagination: dict[str, Any] = field(default_factory=dict)


def paginate(
    queryset: QuerySet,
    page: Any = 1,
    limit: Any = DEFAULT_PAGE_SIZE,
    max_limit: int = MAX_PAGE_SIZE,
) -> Page:
    """
    Slice a queryset into a Page.

    The queryset should already be ordered.
    """
    page_number, page_size = clamp_page_params(page, limit, max_limit=max_limit)
    total = queryset.count()
    offset = (page_number - 1) * page_size
    items = list(queryset[offset : offset + page_size])
    return Page(
        items=items,
        pagination=calculate_pagination(total, page_number, page_size),
    )


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "Page",
    "calculate_pagination",
    "clamp_page_params",
    "paginate",
]
