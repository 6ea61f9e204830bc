"""
Purchase model - the settlement ledger entry.

A Purchase records one buyer transaction: who paid, which payee receives
the split, the server-computed commission split and the Stripe identifiers
used to reconcile webhook events against it.

Money is stored in integer cents. The split is written once when the
purchase is opened and never changes afterwards; refunds and dispute
losses are tracked in separate running totals.

Usage:
    from settlement.services import SettlementLedger

    # Purchases are only created through the ledger
    purchase = SettlementLedger.open_purchase(
        buyer=user,
        app_id="app_123",
        payee_id=payee.id,
        gross_cents=10000,
    )

    # State transitions using django-fsm
    purchase.complete()  # pending -> completed
    purchase.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import RETURN_VALUE, FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from settlement.state_machines import PurchaseStatus


class Purchase(UUIDPrimaryKeyMixin, BaseModel):
    """
    Ledger entry for a buyer's purchase of an app.

    State Flow:
        PENDING -> COMPLETED (charge succeeded webhook)
        PENDING -> FAILED (charge failed, canceled or processor timeout)
        COMPLETED/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED/REFUNDED (refund succeeded)
        COMPLETED/PARTIALLY_REFUNDED -> DISPUTED (dispute opened)
        DISPUTED -> status before dispute (won) or refund status (lost)

    Fields:
        buyer: User who paid
        app_id: External catalog identifier of the purchased app
        payee: PayeeAccount receiving the payee share
        gross_amount_cents: Amount charged to the buyer
        processor_fee_cents: Stripe fee share of the gross
        platform_fee_cents: Platform commission share of the gross
        payee_amount_cents: Payee share of the gross
        refunded_amount_cents: Sum of succeeded refunds
        disputed_loss_cents: Amount forfeited through lost disputes
        status: Current FSM status
        status_before_dispute: Status to restore when a dispute is won
        last_event_at: Timestamp of the latest Stripe charge event applied
        version: Optimistic locking version

    Invariants (database constraints):
        gross_amount_cents > 0
        gross = processor_fee + platform_fee + payee_amount
        refunded_amount + disputed_loss <= gross
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="purchases",
        help_text="User who paid for this purchase",
    )

    payee = models.ForeignKey(
        "settlement.PayeeAccount",
        on_delete=models.PROTECT,
        related_name="purchases",
        help_text="Payee account receiving the payee share",
    )

    app_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="External catalog identifier of the purchased app",
    )

    # ==========================================================================
    # Amounts (cents)
    # ==========================================================================

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    gross_amount_cents = models.PositiveBigIntegerField(
        help_text="Amount charged to the buyer in cents",
    )

    processor_fee_cents = models.PositiveBigIntegerField(
        help_text="Stripe processing fee share in cents",
    )

    platform_fee_cents = models.PositiveBigIntegerField(
        help_text="Platform commission share in cents",
    )

    payee_amount_cents = models.PositiveBigIntegerField(
        help_text="Payee share in cents",
    )

    refunded_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Sum of succeeded refunds in cents",
    )

    disputed_loss_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Amount forfeited through lost disputes in cents",
    )

    # ==========================================================================
    # Stripe Integration
    # ==========================================================================

    stripe_payment_intent_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        db_index=True,
        help_text="Stripe PaymentIntent ID (pi_xxx)",
    )

    stripe_customer_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Customer ID (cus_xxx) of the buyer",
    )

    stripe_charge_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Stripe Charge ID (ch_xxx) once the charge succeeded",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PurchaseStatus.PENDING,
        choices=PurchaseStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current status of the purchase (managed by FSM)",
    )

    status_before_dispute = models.CharField(
        max_length=20,
        choices=PurchaseStatus.choices,
        blank=True,
        default="",
        help_text="Status restored if an open dispute is won",
    )

    last_event_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Timestamp of the latest Stripe charge event applied",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Reason the charge failed",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the charge was confirmed",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the purchase failed",
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

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Purchase"
        verbose_name_plural = "Purchases"
        indexes = [
            models.Index(
                fields=["payee", "status"],
                name="settlement__payee_i_5c1e2a_idx",
            ),
            models.Index(
                fields=["buyer", "created_at"],
                name="settlement__buyer_i_8d3f41_idx",
            ),
            models.Index(
                fields=["status", "created_at"],
                name="settlement__status_2b7c90_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(gross_amount_cents__gt=0),
                name="purchase_gross_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(
                    gross_amount_cents=(
                        F("processor_fee_cents")
                        + F("platform_fee_cents")
                        + F("payee_amount_cents")
                    )
                ),
                name="purchase_split_conserves_gross",
            ),
            models.CheckConstraint(
                condition=models.Q(
                    gross_amount_cents__gte=(
                        F("refunded_amount_cents") + F("disputed_loss_cents")
                    )
                ),
                name="purchase_refunds_within_gross",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with ID, status, and amount."""
        amount_display = f"{self.gross_amount_cents / 100:.2f} {self.currency.upper()}"
        return f"Purchase({self.id}, {self.status}, {amount_display})"

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
        source=PurchaseStatus.PENDING,
        target=PurchaseStatus.COMPLETED,
    )
    def complete(self):
        """
        Confirm the charge.

        Transition: PENDING -> COMPLETED

        Called only from a verified charge-succeeded webhook.
        """
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=PurchaseStatus.PENDING,
        target=PurchaseStatus.FAILED,
    )
    def fail(self, reason: str | None = None):
        """
        Mark the purchase as failed.

        Transition: PENDING -> FAILED

        Args:
            reason: Optional failure reason for debugging
        """
        self.failed_at = timezone.now()
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=[PurchaseStatus.COMPLETED, PurchaseStatus.PARTIALLY_REFUNDED],
        target=PurchaseStatus.PARTIALLY_REFUNDED,
    )
    def refund_partial(self):
        """
        Record a partial refund.

        Transition: COMPLETED/PARTIALLY_REFUNDED -> PARTIALLY_REFUNDED
        """
        pass

    @transition(
        field=status,
        source=[PurchaseStatus.COMPLETED, PurchaseStatus.PARTIALLY_REFUNDED],
        target=PurchaseStatus.REFUNDED,
    )
    def refund_full(self):
        """
        Record that the gross has been fully refunded.

        Transition: COMPLETED/PARTIALLY_REFUNDED -> REFUNDED
        """
        pass

    @transition(
        field=status,
        source=[PurchaseStatus.COMPLETED, PurchaseStatus.PARTIALLY_REFUNDED],
        target=PurchaseStatus.DISPUTED,
    )
    def open_dispute(self):
        """
        Flag the purchase as disputed.

        Transition: COMPLETED/PARTIALLY_REFUNDED -> DISPUTED

        Remembers the current status so a won dispute can restore it.
        """
        self.status_before_dispute = self.status

    @transition(
        field=status,
        source=PurchaseStatus.DISPUTED,
        target=RETURN_VALUE(
            PurchaseStatus.COMPLETED,
            PurchaseStatus.PARTIALLY_REFUNDED,
            PurchaseStatus.REFUNDED,
        ),
    )
    def close_dispute(self, resolved_status: str):
        """
        Leave the disputed status.

        Transition: DISPUTED -> resolved_status

        Args:
            resolved_status: Status computed by the ledger from the
                dispute outcome and the refund totals

        Returns:
            The new status (consumed by django-fsm)
        """
        self.status_before_dispute = ""
        return resolved_status

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def settled_reduction_cents(self) -> int:
        """Amount no longer held by the payee (refunds plus dispute losses)."""
        return self.refunded_amount_cents + self.disputed_loss_cents

    @property
    def is_refundable_status(self) -> bool:
        """Check if the purchase accepts new refund requests."""
        return self.status in (
            PurchaseStatus.COMPLETED,
            PurchaseStatus.PARTIALLY_REFUNDED,
            PurchaseStatus.DISPUTED,
        )
