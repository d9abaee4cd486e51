"""
URL configuration for the cancellation service.

URL Structure:
    /                                  - ReDoc API documentation
    /admin/                            - Django admin interface
    /health/                           - Health check endpoint (load balancers, Docker)
    /schema/                           - OpenAPI schema (YAML)
    /api/v1/cancellations/             - Cancellation endpoints
        requests/                      - Client: list/create own requests
        bookings/{id}/refund-quote/    - Client: refund preview
        owner/requests/                - Owner: requests on own listings
        owner/stats/                   - Owner: cancellation figures
        requests/{id}/approve/         - Owner/admin: approve
        requests/{id}/reject/          - Owner/admin: reject
        admin/requests/                - Admin: list/search
        admin/requests/{id}/           - Admin: detail with refund history
        admin/requests/{id}/retry/     - Admin: retry failed refund
        admin/requests/{id}/complete/  - Admin: complete without gateway
        admin/stats/                   - Admin: statistics
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    path("cancellations/", include("cancellations.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Cancellations Admin"
admin.site.site_title = "Cancellations Admin"
admin.site.index_title = "Cancellation & Refund Operations"
