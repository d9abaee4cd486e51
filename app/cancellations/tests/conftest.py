"""
Pytest fixtures for cancellation tests.

Provides users, requests in each workflow state and a mock gateway
adapter. Redis is replaced by a MagicMock for every test in this
package, so the refund lock always succeeds unless a test says otherwise.

Usage:
    def test_retry(failed_request, gateway_adapter):
        gateway_adapter.create_refund.return_value = gateway_refund()
        PaymentGatewayService.retry_refund(failed_request.id)
"""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from bookings.tests.factories import (
    AdminUserFactory,
    BookingFactory,
    ListingFactory,
    UserFactory,
)
from cancellations.services import PaymentGatewayService
from cancellations.tests.factories import (
    EXAMPLE_POLICY,
    CancellationRequestFactory,
    gateway_refund,
)


# =============================================================================
# Infrastructure
# =============================================================================


@pytest.fixture(autouse=True)
def mock_redis_lock():
    """Mock Redis for distributed locking."""
    with patch("cancellations.locks.get_redis_connection") as mock:
        mock_redis = MagicMock()
        mock_redis.set.return_value = True
        mock_redis.get.return_value = None
        mock_redis.delete.return_value = 1
        mock_redis.eval.return_value = 1
        mock.return_value = mock_redis
        yield mock_redis


@pytest.fixture
def gateway_adapter():
    """Mock gateway adapter installed on PaymentGatewayService."""
    adapter = MagicMock()
    adapter.provider = "stripe"
    adapter.create_refund.return_value = gateway_refund()
    adapter.list_refunds.return_value = []
    PaymentGatewayService.set_gateway_adapter(adapter)
    yield adapter
    PaymentGatewayService.set_gateway_adapter(None)


@pytest.fixture
def api_client_for():
    """Return a factory for API clients authenticated with a JWT for a user."""

    def _client(user) -> APIClient:
        client = APIClient()
        refresh = RefreshToken.for_user(user)
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
        return client

    return _client


# =============================================================================
# Users, Listings and Bookings
# =============================================================================


@pytest.fixture
def client_user(db):
    return UserFactory()


@pytest.fixture
def owner(db):
    return UserFactory()


@pytest.fixture
def admin_user(db):
    return AdminUserFactory()


@pytest.fixture
def listing(db, owner):
    """Listing with the example tier policy (manual review)."""
    return ListingFactory(owner=owner, cancellation_policy=EXAMPLE_POLICY)


@pytest.fixture
def booking(db, client_user, listing):
    """Paid booking of 1000.00 starting in ten days."""
    return BookingFactory(client=client_user, listing=listing, amount=Decimal("1000.00"))


# =============================================================================
# CancellationRequest State Fixtures
# =============================================================================


@pytest.fixture
def pending_request(db, booking):
    return CancellationRequestFactory(booking=booking)


@pytest.fixture
def approved_request(db, pending_request, owner):
    pending_request.approve(by=owner)
    pending_request.save()
    return pending_request


@pytest.fixture
def processing_request(db, approved_request):
    approved_request.begin_processing()
    approved_request.save()
    return approved_request


@pytest.fixture
def failed_request(db, processing_request):
    processing_request.fail(reason="Refund could not be processed: timed out")
    processing_request.save()
    return processing_request
