"""
Infrastructure endpoints that sit outside the settlement domain.

GET /health/ is polled by Docker, Kubernetes probes and load balancers.
"""

import logging

from django.conf import settings
from django.core.cache import cache
from django.db import DatabaseError, connection
from django.http import JsonResponse
from django.views.decorators.http import require_GET

logger = logging.getLogger(__name__)


@require_GET
def health_check(request):
    """
    Report database, cache and Stripe configuration health.

    The database is the only hard dependency: webhooks cannot be
    recorded without it, so a failed query answers 503. The cache only
    backs the refund and onboarding locks and degrades to "disconnected".

    Example Response:
        {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
            "stripe": "configured"
        }
    """
    health_status = {
        "status": "healthy",
        "database": "connected",
        "cache": "connected",
        "stripe": "configured" if settings.STRIPE_SECRET_KEY else "missing_key",
    }

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except DatabaseError:
        logger.exception("Health check: database unreachable")
        health_status["database"] = "disconnected"
        health_status["status"] = "unhealthy"

    try:
        cache.set("health_check", "ok", timeout=1)
        if cache.get("health_check") != "ok":
            health_status["cache"] = "disconnected"
    except Exception:
        # django-redis raises ConnectionInterrupted or redis errors here
        logger.warning("Health check: cache unreachable", exc_info=True)
        health_status["cache"] = "disconnected"

    status_code = 200 if health_status["status"] == "healthy" else 503
    return JsonResponse(health_status, status=status_code)
