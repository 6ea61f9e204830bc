"""
DRF exception handler for application errors.

Translates BaseApplicationError subclasses raised by services into JSON
responses using each category's http_status; everything else falls
through to DRF's default handler.

Configured in settings:
    REST_FRAMEWORK = {
        "EXCEPTION_HANDLER": "core.exception_handler.api_exception_handler",
    }
"""

from __future__ import annotations

import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

from core.exceptions import BaseApplicationError

logger = logging.getLogger(__name__)


def api_exception_handler(exc, context):
    """Return a JSON error body for application errors."""
    if not isinstance(exc, BaseApplicationError):
        return exception_handler(exc, context)

    view = context.get("view")
    log = logger.error if exc.http_status >= 500 else logger.info
    log(
        f"API request rejected: {exc.error_code}",
        extra={
            "error_code": exc.error_code,
            "status_code": exc.http_status,
            "view": view.__class__.__name__ if view else None,
        },
    )
    return Response(exc.to_dict(), status=exc.http_status)
