"""
State machine enums for settlement models.

This module defines the state enums used by settlement models with django-fsm.
"""

from settlement.state_machines.states import (
    DisputeStatus,
    PayeeAccountType,
    PurchaseStatus,
    RefundReason,
    RefundStatus,
    VerificationStatus,
    WebhookEventStatus,
)

__all__ = [
    "DisputeStatus",
    "PayeeAccountType",
    "PurchaseStatus",
    "RefundReason",
    "RefundStatus",
    "VerificationStatus",
    "WebhookEventStatus",
]
