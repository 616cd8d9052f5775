"""
Infrastructure endpoints that sit outside the payment domain.

The health check reports database and cache connectivity plus the circuit
state of every configured payment gateway, so an operator can see at a
glance whether a provider is being failed fast.
"""

import logging

from django.core.cache import cache
from django.db import connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def health_check(request):
    """
    Health check endpoint for load balancers and container probes.

    Returns:
        JsonResponse with:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "disconnected"
        - cache: "connected" or "disconnected"
        - gateways: circuit breaker status per provider code

    HTTP Status Codes:
        200: Database reachable
        503: Database unreachable

    Note:
        Cache problems and open gateway circuits degrade the report but
        never fail the probe.
    """
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "cache": "unknown",
        "gateways": {},
    }
    is_healthy = True

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        health_status["database"] = "connected"
    except Exception:
        logger.exception("Health check database probe failed")
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"
        is_healthy = False

    try:
        cache.set("health_check", "ok", timeout=1)
        health_status["cache"] = "connected" if cache.get("health_check") == "ok" else "disconnected"
    except Exception:
        logger.warning("Health check cache probe failed", exc_info=True)
        health_status["cache"] = "disconnected"

    from payments.engine import get_engine

    for code, adapter in get_engine().gateways.items():
        health_status["gateways"][code] = adapter.circuit.get_status()

    return JsonResponse(health_status, status=200 if is_healthy else 503)
