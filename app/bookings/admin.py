from django.contrib import admin

from bookings.models import Booking, BookingRefundEntry, Listing


@admin.register(Listing)
class ListingAdmin(admin.ModelAdmin):
    list_display = ["title", "owner", "city", "is_active", "created_at"]
    list_filter = ["is_active", "city"]
    search_fields = ["title", "owner__email"]


class BookingRefundEntryInline(admin.TabularInline):
    model = BookingRefundEntry
    extra = 0
    can_delete = False
    readonly_fields = [
        "sequence",
        "amount",
        "currency",
        "gateway_refund_id",
        "status",
        "source",
        "recorded_at",
    ]

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ["id", "listing", "client", "status", "start_date", "amount", "currency"]
    list_filter = ["status", "payment_provider"]
    search_fields = ["id", "client__email", "listing__title", "payment_reference"]
    readonly_fields = ["version", "cancelled_at", "created_at", "updated_at"]
    inlines = [BookingRefundEntryInline]
