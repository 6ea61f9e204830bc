"""
RefundRequest model for money returned to buyers.

A RefundRequest is created by an administrative action against a
Purchase, then mirrors the Stripe Refund lifecycle. One Purchase can
have several refund requests for partial refunds; the sum of succeeded
refunds never exceeds the purchase gross.

Refunds issued directly from the Stripe dashboard are mirrored as
RefundRequests without an admin.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from settlement.state_machines import RefundReason, RefundStatus


class RefundRequest(UUIDPrimaryKeyMixin, BaseModel):
    """
    Represents a refund of (part of) a purchase.

    State Flow:
        PENDING -> SUCCEEDED
        PENDING -> FAILED
        PENDING -> CANCELED (after Stripe confirms cancellation)

    Fields:
        purchase: Purchase being refunded
        stripe_payment_intent_id: PaymentIntent the refund is issued against
        amount_cents: Refund amount in cents
        currency: ISO 4217 currency code
        reason: Refund reason
        description: Free-form admin note
        status: Current FSM status
        stripe_refund_id: Stripe Refund ID (re_xxx), set once Stripe assigns it
        admin: Administrator who requested the refund (None if mirrored)
        last_event_at: Timestamp of the latest Stripe refund event applied
        version: Optimistic locking version
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    purchase = models.ForeignKey(
        "settlement.Purchase",
        on_delete=models.PROTECT,
        related_name="refund_requests",
        help_text="Purchase being refunded",
    )

    admin = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="refund_requests",
        help_text="Administrator who requested the refund",
    )

    # ==========================================================================
    # Amount & Reason
    # ==========================================================================

    stripe_payment_intent_id = models.CharField(
        max_length=255,
        help_text="Stripe PaymentIntent ID the refund is issued against",
    )

    amount_cents = models.PositiveBigIntegerField(
        help_text="Refund amount in smallest currency unit (e.g., cents)",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    reason = models.CharField(
        max_length=30,
        choices=RefundReason.choices,
        default=RefundReason.REQUESTED_BY_CUSTOMER,
        help_text="Reason for the refund",
    )

    description = models.TextField(
        blank=True,
        default="",
        help_text="Internal note from the requesting administrator",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=RefundStatus.PENDING,
        choices=RefundStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current status of the refund (managed by FSM)",
    )

    stripe_refund_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        db_index=True,
        help_text="Stripe Refund ID (re_xxx)",
    )

    last_event_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Timestamp of the latest Stripe refund event applied",
    )

    # ==========================================================================
    # Timestamps & Error Info
    # ==========================================================================

    succeeded_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    canceled_at = models.DateTimeField(null=True, blank=True)

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Detailed reason if refund failed",
    )

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata for extensibility",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund Request"
        verbose_name_plural = "Refund Requests"
        indexes = [
            models.Index(
                fields=["purchase", "status"],
                name="settlement__purchas_7a2e88_idx",
            ),
            models.Index(
                fields=["status", "created_at"],
                name="settlement__status_93bd0f_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="refund_request_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with ID, status, and amount."""
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency.upper()}"
        return f"RefundRequest({self.id}, {self.status}, {amount_display})"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.
        """
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=RefundStatus.PENDING,
        target=RefundStatus.SUCCEEDED,
    )
    def succeed(self):
        """
        Mark refund as succeeded.

        Transition: PENDING -> SUCCEEDED

        The caller must apply the amount to the purchase in the same
        transaction.
        """
        self.succeeded_at = timezone.now()

    @transition(
        field=status,
        source=RefundStatus.PENDING,
        target=RefundStatus.FAILED,
    )
    def fail(self, reason: str | None = None):
        """
        Mark refund as failed.

        Transition: PENDING -> FAILED

        Args:
            reason: Optional failure reason for debugging
        """
        self.failed_at = timezone.now()
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=RefundStatus.PENDING,
        target=RefundStatus.CANCELED,
    )
    def cancel(self):
        """
        Mark refund as canceled.

        Transition: PENDING -> CANCELED
        """
        self.canceled_at = timezone.now()

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_pending(self) -> bool:
        """Check if the refund still reserves part of the purchase balance."""
        return self.status == RefundStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        """Check if the refund reached a final status."""
        return self.status in (
            RefundStatus.SUCCEEDED,
            RefundStatus.FAILED,
            RefundStatus.CANCELED,
        )
