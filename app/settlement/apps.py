"""
Settlement app configuration.

This app provides the marketplace settlement core:
- Commission split calculation
- Payee (Stripe Connect) account registry
- Purchase ledger with refund and dispute tracking
- Stripe webhook reconciliation
"""

from django.apps import AppConfig


class SettlementConfig(AppConfig):
    """Configuration for the settlement application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "settlement"
    verbose_name = "Settlement"
