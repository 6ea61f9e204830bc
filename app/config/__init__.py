# =============================================================================
# Settlement Service Configuration Package
# =============================================================================
# Settings, URLs, ASGI/WSGI entry points and the Celery app.
#
# The Celery app is imported here so that @shared_task in settlement.tasks
# binds to it when Django starts (webhook replay, cleanup and polling).
# =============================================================================

from config.celery import app as celery_app

__all__ = ("celery_app",)
