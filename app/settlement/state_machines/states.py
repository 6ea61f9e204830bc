"""
State enums for settlement models.

This module defines all state enums used by settlement models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Purchase States:
    pending → completed | failed
    completed → refunded | partially_refunded | disputed
    partially_refunded → refunded | partially_refunded | disputed
    disputed → previous status (won) | refunded | partially_refunded (lost)

RefundRequest States:
    pending → succeeded | failed | canceled

DisputeCase States:
    warning_needs_response ↔ warning_under_review
    needs_response ↔ under_review
    any open state → won | lost (terminal)
"""

from django.db import models


class PurchaseStatus(models.TextChoices):
    """
    States for the Purchase (ledger entry) lifecycle.

    Terminal states: FAILED, REFUNDED

    State Flow:
        PENDING → COMPLETED (verified charge succeeded)
        PENDING → FAILED (charge failed, intent canceled, processor timeout)

    Refund Flow:
        COMPLETED / PARTIALLY_REFUNDED → PARTIALLY_REFUNDED / REFUNDED

    Dispute Flow:
        COMPLETED / PARTIALLY_REFUNDED → DISPUTED
        DISPUTED → status before dispute (won)
        DISPUTED → PARTIALLY_REFUNDED / REFUNDED (lost)
    """

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"
    REFUNDED = "refunded", "Refunded"
    DISPUTED = "disputed", "Disputed"
    FAILED = "failed", "Failed"


class RefundStatus(models.TextChoices):
    """
    States for the RefundRequest lifecycle.

    Mirrors Stripe's refund status. Only the webhook reconciler (or an
    explicit status sync) moves a refund out of PENDING, except CANCELED
    which is applied once Stripe confirms the cancellation.

    Terminal states: SUCCEEDED, FAILED, CANCELED
    """

    PENDING = "pending", "Pending"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    CANCELED = "canceled", "Canceled"


class RefundReason(models.TextChoices):
    """Reasons accepted for a refund request."""

    DUPLICATE = "duplicate", "Duplicate"
    FRAUDULENT = "fraudulent", "Fraudulent"
    REQUESTED_BY_CUSTOMER = "requested_by_customer", "Requested by Customer"
    OTHER = "other", "Other"


class DisputeStatus(models.TextChoices):
    """
    Card-network dispute status as reported by Stripe.

    Terminal states: WON, LOST (immutable once reached)
    """

    WARNING_NEEDS_RESPONSE = "warning_needs_response", "Warning - Needs Response"
    WARNING_UNDER_REVIEW = "warning_under_review", "Warning - Under Review"
    NEEDS_RESPONSE = "needs_response", "Needs Response"
    UNDER_REVIEW = "under_review", "Under Review"
    WON = "won", "Won"
    LOST = "lost", "Lost"


class PayeeAccountType(models.TextChoices):
    """Stripe Connect account types."""

    EXPRESS = "express", "Express"
    STANDARD = "standard", "Standard"
    CUSTOM = "custom", "Custom"


class VerificationStatus(models.TextChoices):
    """
    Verification status of a payee account, derived from Stripe capability flags.

    VERIFIED requires both charges and payouts to be enabled.
    DEAUTHORIZED is set when the payee disconnects the platform.
    """

    PENDING = "pending", "Pending"
    VERIFIED = "verified", "Verified"
    REJECTED = "rejected", "Rejected"
    DEAUTHORIZED = "deauthorized", "Deauthorized"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    Tracks the lifecycle of webhook event processing for idempotency.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → SKIPPED (acknowledged, not applied)
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    SKIPPED = "skipped", "Skipped"
    FAILED = "failed", "Failed"


__all__ = [
    "DisputeStatus",
    "PayeeAccountType",
    "PurchaseStatus",
    "RefundReason",
    "RefundStatus",
    "VerificationStatus",
    "WebhookEventStatus",
]
