"""
Webhook endpoint view for Stripe.

The view verifies the signature and applies the event synchronously
through the WebhookReconciler, so the status code tells Stripe whether
to redeliver:

- 200: Event applied, skipped or already handled
- 400: Missing or invalid signature, malformed event
- 500: Event could not be applied yet; Stripe redelivers it

Usage:
    # In urls.py
    from settlement.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/payments/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from core.exceptions import ValidationError
from core.helpers import get_client_ip

from settlement.exceptions import InvalidSignatureError
from settlement.webhooks.reconciler import WebhookReconciler

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and apply a Stripe webhook event.

    Security:
    - Signature verification over the raw body prevents spoofed webhooks
    - CSRF exemption required for external webhooks
    - Only POST requests accepted

    Idempotency:
    - WebhookEvent.stripe_event_id is unique
    - Duplicate deliveries return 200 without reprocessing

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    signature = request.headers.get("Stripe-Signature", "")

    try:
        webhook_event = WebhookReconciler().handle(request.body, signature)
    except InvalidSignatureError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": e.message, "client_ip": get_client_ip(request)},
        )
        return HttpResponse("Invalid signature", status=400)
    except ValidationError as e:
        logger.warning("Webhook missing required fields", extra={"error": e.message})
        return HttpResponse("Invalid event", status=400)
    except Exception as e:
        # Already logged and recorded as FAILED by the reconciler
        logger.error(
            f"Webhook not applied: {type(e).__name__}",
            extra={"client_ip": get_client_ip(request)},
        )
        return HttpResponse("Processing error", status=500)

    if webhook_event.is_failed:
        return HttpResponse("Processing failed", status=500)

    return HttpResponse("Accepted", status=200)
