"""
DRF views for the cancellations app.

Views are thin: they validate input with a serializer, call a service and
turn the ServiceResult into a response. Error codes map to HTTP status in
error_response().

Related files:
    - services/: CancellationWorkflowService, PaymentGatewayService,
      CancellationQueryService
    - serializers.py: Request/response serializers
    - urls.py: URL routing

Endpoints:
    Client:
        GET  /api/v1/cancellations/requests/ - List own requests
        POST /api/v1/cancellations/requests/ - Request a cancellation
        GET  /api/v1/cancellations/bookings/{booking_id}/refund-quote/ - Preview refund

    Owner:
        GET  /api/v1/cancellations/owner/requests/ - Requests on own listings
        GET  /api/v1/cancellations/owner/stats/ - Cancellation figures
        GET  /api/v1/cancellations/owner/policy-templates/ - Built-in policies
        GET  /api/v1/cancellations/owner/listings/{listing_id}/policy/ - Listing policy
        PUT  /api/v1/cancellations/owner/listings/{listing_id}/policy/ - Replace listing policy
        POST /api/v1/cancellations/requests/{id}/approve/ - Approve (owner or admin)
        POST /api/v1/cancellations/requests/{id}/reject/ - Reject (owner or admin)

    Admin:
        GET  /api/v1/cancellations/admin/requests/ - List/search all requests
        GET  /api/v1/cancellations/admin/requests/{id}/ - Request with refund history
        GET  /api/v1/cancellations/admin/stats/ - Platform-wide figures
        POST /api/v1/cancellations/admin/requests/{id}/retry/ - Retry a failed refund
        POST /api/v1/cancellations/admin/requests/{id}/complete/ - Complete without gateway

Security:
    - All endpoints require authentication
    - Admin endpoints require is_staff
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from cancellations.policies import PolicyManager
from cancellations.serializers import (
    AdminRequestFilterSerializer,
    AdminStatsSerializer,
    ApproveCancellationSerializer,
    CancellationDetailSerializer,
    CancellationPolicySerializer,
    CancellationRequestSerializer,
    CompleteWithoutGatewaySerializer,
    CreateCancellationSerializer,
    OwnerRequestFilterSerializer,
    OwnerStatsSerializer,
    ProcessingOutcomeSerializer,
    RefundAttemptSerializer,
    RefundQuoteSerializer,
    RejectCancellationSerializer,
    RequestFilterSerializer,
)
from cancellations.services import (
    CancellationListFilters,
    CancellationQueryService,
    CancellationWorkflowService,
    PaymentGatewayService,
)
from core.services import ServiceResult

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    "BOOKING_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "LISTING_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "CANCELLATION_REQUEST_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "REFUND_TRANSACTION_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "NOT_BOOKING_CLIENT": status.HTTP_403_FORBIDDEN,
    "NOT_LISTING_OWNER": status.HTTP_403_FORBIDDEN,
    "ADMIN_REQUIRED": status.HTTP_403_FORBIDDEN,
    "DUPLICATE_CANCELLATION_REQUEST": status.HTTP_409_CONFLICT,
    "INVALID_STATE_TRANSITION": status.HTTP_409_CONFLICT,
    "REFUND_IN_PROGRESS": status.HTTP_409_CONFLICT,
    "STALE_RECORD": status.HTTP_409_CONFLICT,
    "MAX_RETRIES_REACHED": status.HTTP_409_CONFLICT,
    "REFUND_FAILED": status.HTTP_502_BAD_GATEWAY,
    "REFUND_LOCK_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_response(result: ServiceResult) -> Response:
    """Render a failed ServiceResult with the status its error code maps to."""
    return Response(
        result.to_response(),
        status=ERROR_STATUS_CODES.get(result.error_code, status.HTTP_400_BAD_REQUEST),
    )


def paginated_response(page, serializer_class) -> Response:
    return Response(
        {
            "results": serializer_class(page.items, many=True).data,
            "pagination": page.pagination,
        }
    )


# =============================================================================
# Client
# =============================================================================


class ClientCancellationRequestsView(APIView):
    """
    List or create the current user's cancellation requests.

    GET /api/v1/cancellations/requests/?status=pending&page=1&limit=20
    POST /api/v1/cancellations/requests/

    Request body:
        {
            "booking_id": "uuid",
            "reason": "schedule_change",
            "reason_other": ""
        }
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_my_cancellation_requests",
        summary="List my cancellation requests",
        parameters=[RequestFilterSerializer],
        responses={200: CancellationRequestSerializer(many=True)},
        tags=["Cancellations - Client"],
    )
    def get(self, request):
        filters = RequestFilterSerializer(data=request.query_params)
        filters.is_valid(raise_exception=True)
        params = filters.validated_data

        result = CancellationWorkflowService.get_client_requests(
            client=request.user,
            status=params.get("status"),
            page=params["page"],
            limit=params["limit"],
        )
        return paginated_response(result.data, CancellationRequestSerializer)

    @extend_schema(
        operation_id="create_cancellation_request",
        summary="Request a cancellation",
        description=(
            "Create a cancellation request for one of your bookings. The refund "
            "is calculated from the listing's policy now. Under an automatic "
            "policy the request is approved at once and the refund is queued."
        ),
        request=CreateCancellationSerializer,
        responses={
            201: CancellationRequestSerializer,
            400: OpenApiResponse(description="Invalid input or booking not cancellable"),
            403: OpenApiResponse(description="Booking belongs to another client"),
            404: OpenApiResponse(description="Booking not found"),
            409: OpenApiResponse(description="An active request already exists"),
        },
        tags=["Cancellations - Client"],
    )
    def post(self, request):
        serializer = CreateCancellationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = CancellationWorkflowService.create_request(
            client=request.user,
            **serializer.validated_data,
        )
        if not result.success:
            return error_response(result)

        return Response(
            CancellationRequestSerializer(result.data).data,
            status=status.HTTP_201_CREATED,
        )


class RefundQuoteView(APIView):
    """
    Preview the refund a cancellation would earn right now.

    GET /api/v1/cancellations/bookings/{booking_id}/refund-quote/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_refund_quote",
        summary="Preview refund",
        responses={
            200: RefundQuoteSerializer,
            403: OpenApiResponse(description="Booking belongs to another client"),
            404: OpenApiResponse(description="Booking not found"),
        },
        tags=["Cancellations - Client"],
    )
    def get(self, request, booking_id):
        result = CancellationWorkflowService.quote_refund(booking_id, request.user)
        if not result.success:
            return error_response(result)
        return Response(RefundQuoteSerializer(result.data).data)


# =============================================================================
# Owner
# =============================================================================


class OwnerCancellationRequestsView(APIView):
    """
    Cancellation requests on the current user's listings.

    GET /api/v1/cancellations/owner/requests/?status=pending&listing_id=...
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_owner_cancellation_requests",
        summary="List requests on my listings",
        parameters=[OwnerRequestFilterSerializer],
        responses={200: CancellationRequestSerializer(many=True)},
        tags=["Cancellations - Owner"],
    )
    def get(self, request):
        filters = OwnerRequestFilterSerializer(data=request.query_params)
        filters.is_valid(raise_exception=True)

        result = CancellationWorkflowService.get_owner_requests(
            owner=request.user,
            **filters.validated_data,
        )
        return paginated_response(result.data, CancellationRequestSerializer)


class OwnerCancellationStatsView(APIView):
    """GET /api/v1/cancellations/owner/stats/?date_from=2025-01-01&date_to=2025-01-31"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_owner_cancellation_stats",
        summary="Cancellation figures for my listings",
        parameters=[OwnerRequestFilterSerializer],
        responses={200: OwnerStatsSerializer},
        tags=["Cancellations - Owner"],
    )
    def get(self, request):
        filters = OwnerRequestFilterSerializer(data=request.query_params)
        filters.is_valid(raise_exception=True)
        params = filters.validated_data

        result = CancellationWorkflowService.get_owner_stats(
            owner=request.user,
            date_from=params.get("date_from"),
            date_to=params.get("date_to"),
        )
        return Response(OwnerStatsSerializer(result.data).data)


class CancellationPolicyTemplatesView(APIView):
    """GET /api/v1/cancellations/owner/policy-templates/"""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_cancellation_policy_templates",
        summary="Built-in cancellation policies",
        responses={200: CancellationPolicySerializer(many=True)},
        tags=["Cancellations - Owner"],
    )
    def get(self, request):
        templates = [PolicyManager.template(key) for key in PolicyManager.templates()]
        return Response(CancellationPolicySerializer(templates, many=True).data)


class ListingCancellationPolicyView(APIView):
    """
    Read or replace a listing's cancellation policy.

    GET /api/v1/cancellations/owner/listings/{listing_id}/policy/
    PUT /api/v1/cancellations/owner/listings/{listing_id}/policy/

    Request body (PUT): the policy document
        {
            "type": "moderate",
            "allow_cancellation": true,
            "automatic_refund": false,
            "tiers": [{"hours_before_booking": 48, "refund_percentage": 50, "description": "..."}],
            "processing_fee_percentage": 5
        }
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_listing_cancellation_policy",
        summary="Get listing policy",
        responses={
            200: CancellationPolicySerializer,
            403: OpenApiResponse(description="Not the listing owner or an admin"),
            404: OpenApiResponse(description="Listing not found"),
        },
        tags=["Cancellations - Owner"],
    )
    def get(self, request, listing_id):
        result = CancellationWorkflowService.get_listing_policy(listing_id, request.user)
        if not result.success:
            return error_response(result)
        return Response(CancellationPolicySerializer(result.data).data)

    @extend_schema(
        operation_id="set_listing_cancellation_policy",
        summary="Replace listing policy",
        request=CancellationPolicySerializer,
        responses={
            200: CancellationPolicySerializer,
            400: OpenApiResponse(description="Policy failed validation"),
            403: OpenApiResponse(description="Not the listing owner or an admin"),
            404: OpenApiResponse(description="Listing not found"),
        },
        tags=["Cancellations - Owner"],
    )
    def put(self, request, listing_id):
        result = CancellationWorkflowService.set_listing_policy(
            listing_id, request.user, request.data
        )
        if not result.success:
            return error_response(result)
        return Response(CancellationPolicySerializer(result.data).data)


class ApproveCancellationView(APIView):
    """
    Approve a pending request and attempt its refund.

    POST /api/v1/cancellations/requests/{id}/approve/

    Request body:
        {
            "custom_refund_amount": "250.00",   # optional override
            "custom_refund_note": "Goodwill",    # required with an override
            "version": 1                         # optional optimistic check
        }

    Returns 200 once approved, whatever happened to the refund; the
    refund outcome is in the response body.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="approve_cancellation_request",
        summary="Approve cancellation",
        request=ApproveCancellationSerializer,
        responses={
            200: ProcessingOutcomeSerializer,
            403: OpenApiResponse(description="Not the listing owner or an admin"),
            404: OpenApiResponse(description="Request not found"),
            409: OpenApiResponse(description="Request is not pending or was modified"),
        },
        tags=["Cancellations - Owner"],
    )
    def post(self, request, request_id):
        serializer = ApproveCancellationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = CancellationWorkflowService.approve_request(
            request_id,
            actor=request.user,
            custom_amount=data.get("custom_refund_amount"),
            custom_note=data.get("custom_refund_note", ""),
            expected_version=data.get("version"),
        )
        if not result.success:
            return error_response(result)
        return Response(ProcessingOutcomeSerializer(result.data).data)


class RejectCancellationView(APIView):
    """
    Reject a pending request.

    POST /api/v1/cancellations/requests/{id}/reject/

    Request body:
        {"reason": "Outside the cancellation window", "version": 1}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="reject_cancellation_request",
        summary="Reject cancellation",
        request=RejectCancellationSerializer,
        responses={
            200: CancellationRequestSerializer,
            403: OpenApiResponse(description="Not the listing owner or an admin"),
            404: OpenApiResponse(description="Request not found"),
            409: OpenApiResponse(description="Request is not pending or was modified"),
        },
        tags=["Cancellations - Owner"],
    )
    def post(self, request, request_id):
        serializer = RejectCancellationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = CancellationWorkflowService.reject_request(
            request_id,
            actor=request.user,
            reason=serializer.validated_data["reason"],
            expected_version=serializer.validated_data.get("version"),
        )
        if not result.success:
            return error_response(result)
        return Response(CancellationRequestSerializer(result.data).data)


# =============================================================================
# Admin
# =============================================================================


class AdminCancellationListView(APIView):
    """
    Search all cancellation requests.

    GET /api/v1/cancellations/admin/requests/?status=all&is_automatic=true&search=jane
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="admin_list_cancellation_requests",
        summary="List cancellation requests",
        parameters=[AdminRequestFilterSerializer],
        responses={200: CancellationRequestSerializer(many=True)},
        tags=["Cancellations - Admin"],
    )
    def get(self, request):
        filters = AdminRequestFilterSerializer(data=request.query_params)
        filters.is_valid(raise_exception=True)

        result = CancellationQueryService.list_requests(
            CancellationListFilters(**filters.validated_data)
        )
        if not result.success:
            return error_response(result)
        return paginated_response(result.data, CancellationRequestSerializer)


class AdminCancellationDetailView(APIView):
    """GET /api/v1/cancellations/admin/requests/{id}/"""

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="admin_get_cancellation_request",
        summary="Cancellation request detail",
        description="The request, its latest refund attempt and every attempt made.",
        responses={
            200: CancellationDetailSerializer,
            404: OpenApiResponse(description="Request not found"),
        },
        tags=["Cancellations - Admin"],
    )
    def get(self, request, request_id):
        result = CancellationQueryService.get_request_detail(request_id)
        if not result.success:
            return error_response(result)
        return Response(CancellationDetailSerializer(result.data).data)


class AdminCancellationStatsView(APIView):
    """GET /api/v1/cancellations/admin/stats/"""

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="admin_get_cancellation_stats",
        summary="Cancellation statistics",
        responses={200: AdminStatsSerializer},
        tags=["Cancellations - Admin"],
    )
    def get(self, request):
        result = CancellationQueryService.get_stats()
        return Response(AdminStatsSerializer(result.data).data)


class AdminRetryRefundView(APIView):
    """
    Retry the refund of a FAILED request.

    POST /api/v1/cancellations/admin/requests/{id}/retry/
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="admin_retry_refund",
        summary="Retry failed refund",
        request=None,
        responses={
            200: RefundAttemptSerializer,
            404: OpenApiResponse(description="Request not found"),
            409: OpenApiResponse(description="Not failed, or retry budget exhausted"),
            502: OpenApiResponse(description="Gateway rejected the refund again"),
        },
        tags=["Cancellations - Admin"],
    )
    def post(self, request, request_id):
        result = PaymentGatewayService.retry_refund(request_id)
        if not result.success:
            logger.info(
                "Admin refund retry unsuccessful",
                extra={
                    "cancellation_request_id": str(request_id),
                    "error_code": result.error_code,
                    "admin_id": str(request.user.pk),
                },
            )
            return error_response(result)
        return Response(RefundAttemptSerializer(result.data).data)


class AdminCompleteWithoutGatewayView(APIView):
    """
    Close an APPROVED or FAILED request without a gateway refund.

    POST /api/v1/cancellations/admin/requests/{id}/complete/

    Request body:
        {"note": "Refunded by bank transfer, ref 8812"}
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="admin_complete_cancellation_without_gateway",
        summary="Complete without gateway refund",
        request=CompleteWithoutGatewaySerializer,
        responses={
            200: CancellationRequestSerializer,
            404: OpenApiResponse(description="Request not found"),
            409: OpenApiResponse(description="Wrong state, or a gateway refund is pending"),
        },
        tags=["Cancellations - Admin"],
    )
    def post(self, request, request_id):
        serializer = CompleteWithoutGatewaySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = CancellationWorkflowService.complete_without_gateway(
            request_id,
            admin=request.user,
            note=serializer.validated_data["note"],
        )
        if not result.success:
            return error_response(result)
        return Response(CancellationRequestSerializer(result.data).data)
