"""
Tests for the /health/ endpoint.

Redis is patched; the database is the test database.
"""

from unittest.mock import patch

import pytest
from django.urls import reverse
from rest_framework import status


@pytest.mark.django_db
class TestHealthCheck:
    @patch("core.views.get_redis_connection")
    def test_healthy(self, mock_redis, client):
        response = client.get(reverse("health_check"))

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "status": "healthy",
            "database": "connected",
            "redis": "connected",
        }
        mock_redis.return_value.ping.assert_called_once()

    @patch("core.views.get_redis_connection")
    def test_redis_down_is_unhealthy(self, mock_redis, client):
        mock_redis.return_value.ping.side_effect = ConnectionError("Connection refused")

        response = client.get(reverse("health_check"))

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["status"] == "unhealthy"
        assert response.json()["redis"] == "disconnected"
        assert response.json()["database"] == "connected"

    @patch("core.views.connection")
    @patch("core.views.get_redis_connection")
    def test_database_down_is_unhealthy(self, mock_redis, mock_connection, client):
        mock_connection.cursor.side_effect = Exception("could not connect to server")

        response = client.get(reverse("health_check"))

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["database"] == "disconnected"
