"""
Core views providing infrastructure endpoints.
"""

import logging

from django.db import connection
from django.http import JsonResponse
from django_redis import get_redis_connection

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint for Docker, Kubernetes probes and load balancers.

    Redis counts as critical: refunds cannot be processed without the
    per-request lock it holds.

    HTTP Status Codes:
        200: All systems operational
        503: Database or Redis unreachable

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "redis": "connected"
        }
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "redis": "unknown",
    }

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception as e:
        logger.warning(f"Health check: database unreachable: {e}")
        health_status["database"] = "disconnected"

    try:
        get_redis_connection("default").ping()
        health_status["redis"] = "connected"
    except Exception as e:
        logger.warning(f"Health check: redis unreachable: {e}")
        health_status["redis"] = "disconnected"

    is_healthy = health_status["database"] == "connected" and health_status["redis"] == "connected"
    if not is_healthy:
        health_status["status"] = "unhealthy"

    return JsonResponse(health_status, status=200 if is_healthy else 503)
