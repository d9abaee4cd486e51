"""
State enums for cancellation models.

These are Django TextChoices used by django-fsm fields and admin filters.

State Machines Overview:

CancellationRequest:
    pending → approved → processing → completed
    pending → rejected
    processing → failed → processing (retry, bounded)
    approved/failed → completed (administrative override, no gateway call)

RefundTransaction:
    pending → completed
    pending → failed
    pending → cancelled
"""

from django.db import models


class CancellationStatus(models.TextChoices):
    """
    States for the CancellationRequest lifecycle.

    Terminal states: REJECTED, COMPLETED, and FAILED once the retry
    budget is spent.
    """

    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


# At most one request per booking may be in one of these states.
ACTIVE_CANCELLATION_STATUSES = (
    CancellationStatus.PENDING,
    CancellationStatus.APPROVED,
    CancellationStatus.PROCESSING,
)


class RefundTransactionStatus(models.TextChoices):
    """
    States for a single gateway refund attempt.

    Terminal states: COMPLETED, FAILED, CANCELLED
    """

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


class CancellationReason(models.TextChoices):
    SCHEDULE_CHANGE = "schedule_change", "Schedule change"
    FOUND_ALTERNATIVE = "found_alternative", "Found alternative"
    EMERGENCY = "emergency", "Emergency"
    OTHER = "other", "Other"


class PolicyType(models.TextChoices):
    FLEXIBLE = "flexible", "Flexible"
    MODERATE = "moderate", "Moderate"
    STRICT = "strict", "Strict"
    CUSTOM = "custom", "Custom"
    NONE = "none", "No cancellation"


class CompletionMethod(models.TextChoices):
    """How a completed request reached COMPLETED."""

    GATEWAY = "gateway", "Gateway refund"
    MANUAL_OVERRIDE = "manual_override", "Administrative override"
