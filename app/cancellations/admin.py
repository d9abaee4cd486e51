"""
Cancellation admin configuration.

Requests and refund transactions are audit records: status fields are
read-only here and change only through the workflow services.
"""

from django.contrib import admin

from cancellations.models import CancellationRequest, RefundTransaction


class RefundTransactionInline(admin.TabularInline):
    model = RefundTransaction
    extra = 0
    can_delete = False
    fields = [
        "attempt",
        "status",
        "amount",
        "currency",
        "refund_transaction_id",
        "gateway_status",
        "gateway_error",
        "initiated_at",
    ]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(CancellationRequest)
class CancellationRequestAdmin(admin.ModelAdmin):
    """Visibility into cancellation requests and their refund attempts."""

    list_display = [
        "id",
        "booking",
        "client",
        "owner",
        "status",
        "is_automatic",
        "booking_amount",
        "retry_count",
        "requested_at",
    ]
    list_filter = ["status", "is_automatic", "cancellation_reason", "completion_method"]
    search_fields = ["id", "booking__id", "client__email", "owner__email", "listing__title"]
    readonly_fields = [
        "id",
        "status",
        "refund_calculation",
        "policy_snapshot",
        "retry_count",
        "last_retry_at",
        "refund_transaction_id",
        "completion_method",
        "created_at",
        "updated_at",
        "version",
    ]
    date_hierarchy = "requested_at"
    ordering = ["-requested_at"]
    inlines = [RefundTransactionInline]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "booking", "listing", "client", "owner", "status", "is_automatic"),
            },
        ),
        (
            "Reason",
            {
                "fields": ("cancellation_reason", "cancellation_reason_other", "requested_at"),
            },
        ),
        (
            "Refund",
            {
                "fields": (
                    "booking_amount",
                    "currency",
                    "refund_calculation",
                    "custom_refund_amount",
                    "custom_refund_note",
                ),
            },
        ),
        (
            "Decision",
            {
                "fields": (
                    "approved_by",
                    "approved_at",
                    "rejected_by",
                    "rejected_at",
                    "rejection_reason",
                ),
            },
        ),
        (
            "Processing",
            {
                "fields": (
                    "processed_at",
                    "refund_transaction_id",
                    "completion_method",
                    "completed_by",
                    "completion_note",
                    "retry_count",
                    "last_retry_at",
                    "failure_reason",
                ),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("policy_snapshot", "version", "created_at", "updated_at"),
                "classes": ("collapse",),
            },
        ),
    )


@admin.register(RefundTransaction)
class RefundTransactionAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "cancellation_request",
        "attempt",
        "amount",
        "currency",
        "status",
        "gateway_provider",
        "initiated_at",
    ]
    list_filter = ["status", "gateway_provider", "currency"]
    search_fields = [
        "id",
        "refund_transaction_id",
        "original_transaction_id",
        "idempotency_key",
        "cancellation_request__id",
    ]
    readonly_fields = [
        "id",
        "status",
        "idempotency_key",
        "gateway_response",
        "initiated_at",
        "completed_at",
        "failed_at",
        "cancelled_at",
        "created_at",
        "updated_at",
        "version",
    ]
    date_hierarchy = "initiated_at"
    ordering = ["-initiated_at"]
