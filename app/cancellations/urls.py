"""
URL configuration for the cancellations app.

All routes are prefixed with /api/v1/cancellations/ when included in the
main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("cancellations/", include("cancellations.urls")),
    ]
"""

from django.urls import path

from cancellations import views

app_name = "cancellations"

urlpatterns = [
    # Client
    path("requests/", views.ClientCancellationRequestsView.as_view(), name="client_requests"),
    path(
        "bookings/<uuid:booking_id>/refund-quote/",
        views.RefundQuoteView.as_view(),
        name="refund_quote",
    ),
    # Owner
    path(
        "owner/requests/",
        views.OwnerCancellationRequestsView.as_view(),
        name="owner_requests",
    ),
    path("owner/stats/", views.OwnerCancellationStatsView.as_view(), name="owner_stats"),
    path(
        "owner/policy-templates/",
        views.CancellationPolicyTemplatesView.as_view(),
        name="policy_templates",
    ),
    path(
        "owner/listings/<uuid:listing_id>/policy/",
        views.ListingCancellationPolicyView.as_view(),
        name="listing_policy",
    ),
    path(
        "requests/<uuid:request_id>/approve/",
        views.ApproveCancellationView.as_view(),
        name="approve",
    ),
    path(
        "requests/<uuid:request_id>/reject/",
        views.RejectCancellationView.as_view(),
        name="reject",
    ),
    # Admin
    path("admin/requests/", views.AdminCancellationListView.as_view(), name="admin_requests"),
    path(
        "admin/requests/<uuid:request_id>/",
        views.AdminCancellationDetailView.as_view(),
        name="admin_request_detail",
    ),
    path("admin/stats/", views.AdminCancellationStatsView.as_view(), name="admin_stats"),
    path(
        "admin/requests/<uuid:request_id>/retry/",
        views.AdminRetryRefundView.as_view(),
        name="admin_retry",
    ),
    path(
        "admin/requests/<uuid:request_id>/complete/",
        views.AdminCompleteWithoutGatewayView.as_view(),
        name="admin_complete",
    ),
]
