"""
Core views providing infrastructure endpoints.

Only the liveness/readiness probe lives here; payment gateway health is
reported by the payments admin endpoints because it needs tenant context.
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def _database_connected() -> bool:
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except DatabaseError:
        logger.exception("Health check: database unreachable")
        return False
    return True


def _cache_connected() -> bool:
    # django-redis is configured with IGNORE_EXCEPTIONS, so an outage shows
    # up as a failed round trip rather than an exception.
    cache.set("health_check", "ok", timeout=1)
    return cache.get("health_check") == "ok"


def health_check(request):
    """
    Health check endpoint for load balancers and orchestration probes.

    Returns:
        JsonResponse with status and component health:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "disconnected"
        - cache: "connected" or "disconnected" (degraded, not fatal)
        - payments_environment: "test" or "live"

    HTTP Status Codes:
        200: Database reachable
        503: Database unreachable
    """
    database_ok = _database_connected()
    health_status = {
        "status": "healthy" if database_ok else "unhealthy",
        "database": "connected" if database_ok else "disconnected",
        "cache": "connected" if _cache_connected() else "disconnected",
        "payments_environment": settings.PAYMENTS_ENVIRONMENT,
    }
    return JsonResponse(health_status, status=200 if database_ok else 503)
