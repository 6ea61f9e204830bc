"""
Stripe webhook intake for the settlement app.

Usage:
    from settlement.webhooks import WebhookReconciler, dispatch_webhook
"""

from settlement.webhooks.handlers import (
    SKIP_ERROR_CODES,
    WEBHOOK_HANDLERS,
    dispatch_webhook,
    register_handler,
)
from settlement.webhooks.reconciler import WebhookReconciler

__all__ = [
    "SKIP_ERROR_CODES",
    "WEBHOOK_HANDLERS",
    "WebhookReconciler",
    "dispatch_webhook",
    "register_handler",
]
