"""
Settlement domain models.

This module contains all settlement-related models:
- PayeeAccount: Stripe Connect account of a developer receiving payouts
- Purchase: Ledger entry with the commission split of a buyer transaction
- RefundRequest: Money returned to a buyer against a purchase
- DisputeCase: Card-network dispute (chargeback) against a purchase
- WebhookEvent: Stripe webhook event tracking for idempotent processing
"""

from settlement.models.dispute_case import DisputeCase
from settlement.models.payee_account import PayeeAccount
from settlement.models.purchase import Purchase
from settlement.models.refund_request import RefundRequest
from settlement.models.webhook_event import WebhookEvent

__all__ = [
    "DisputeCase",
    "PayeeAccount",
    "Purchase",
    "RefundRequest",
    "WebhookEvent",
]
