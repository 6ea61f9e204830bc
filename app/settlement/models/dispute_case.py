"""
DisputeCase model for card-network disputes (chargebacks).

DisputeCases are created exclusively from Stripe dispute webhooks, keyed
by the Stripe dispute id. Their status follows Stripe; the only local
action is evidence submission, which is a request to Stripe rather than a
transition. Once a case reaches WON or LOST it never changes again.
"""

from __future__ import annotations

from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import RETURN_VALUE, FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from settlement.state_machines import DisputeStatus

OPEN_DISPUTE_STATUSES = (
    DisputeStatus.WARNING_NEEDS_RESPONSE,
    DisputeStatus.WARNING_UNDER_REVIEW,
    DisputeStatus.NEEDS_RESPONSE,
    DisputeStatus.UNDER_REVIEW,
)

TERMINAL_DISPUTE_STATUSES = (DisputeStatus.WON, DisputeStatus.LOST)

# Stripe statuses outside the local enum, folded into a terminal outcome
STRIPE_STATUS_ALIASES = {
    "warning_closed": DisputeStatus.WON,
    "prevented": DisputeStatus.WON,
    "charge_refunded": DisputeStatus.LOST,
}


class DisputeCase(UUIDPrimaryKeyMixin, BaseModel):
    """
    Local mirror of a Stripe dispute.

    State Flow:
        WARNING_NEEDS_RESPONSE <-> WARNING_UNDER_REVIEW
        NEEDS_RESPONSE <-> UNDER_REVIEW
        any open status -> WON | LOST (terminal, immutable)

    Fields:
        purchase: Disputed purchase
        stripe_dispute_id: Unique Stripe Dispute ID (dp_xxx)
        stripe_charge_id: Disputed Stripe Charge ID
        amount_cents: Disputed amount in cents
        reason: Card-network reason reported by Stripe
        status: Current FSM status
        evidence_due_by: Deadline for evidence submission
        evidence: Last evidence payload submitted
        evidence_submitted_at: When evidence was last submitted
        closed_at: When the dispute reached a terminal status
        last_event_at: Timestamp of the latest Stripe dispute event applied
    """

    purchase = models.ForeignKey(
        "settlement.Purchase",
        on_delete=models.PROTECT,
        related_name="dispute_cases",
        help_text="Disputed purchase",
    )

    stripe_dispute_id = models.CharField(
        max_length=255,
        unique=True,
        db_index=True,
        help_text="Stripe Dispute ID (dp_xxx)",
    )

    stripe_charge_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Disputed Stripe Charge ID (ch_xxx)",
    )

    amount_cents = models.PositiveBigIntegerField(
        help_text="Disputed amount in cents",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    reason = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Card-network dispute reason (e.g. 'fraudulent')",
    )

    status = FSMField(
        default=DisputeStatus.NEEDS_RESPONSE,
        choices=DisputeStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current dispute status (managed by FSM)",
    )

    evidence_due_by = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Deadline for submitting evidence",
    )

    evidence = models.JSONField(
        default=dict,
        blank=True,
        help_text="Last evidence payload submitted to Stripe",
    )

    evidence_submitted_at = models.DateTimeField(null=True, blank=True)
    closed_at = models.DateTimeField(null=True, blank=True)

    last_event_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Timestamp of the latest Stripe dispute event applied",
    )

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
        verbose_name = "Dispute Case"
        verbose_name_plural = "Dispute Cases"
        indexes = [
            models.Index(
                fields=["status", "evidence_due_by"],
                name="settlement__status_d07c6b_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["purchase"],
                condition=models.Q(status__in=OPEN_DISPUTE_STATUSES),
                name="dispute_case_one_open_per_purchase",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with Stripe ID and status."""
        return f"DisputeCase({self.stripe_dispute_id}, {self.status})"

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
        source=list(OPEN_DISPUTE_STATUSES),
        target=RETURN_VALUE(*OPEN_DISPUTE_STATUSES),
    )
    def update_status(self, new_status: str):
        """
        Follow a Stripe status change between open statuses.

        Returns:
            The new status (consumed by django-fsm)
        """
        return new_status

    @transition(
        field=status,
        source=list(OPEN_DISPUTE_STATUSES),
        target=RETURN_VALUE(*TERMINAL_DISPUTE_STATUSES),
    )
    def close(self, outcome: str):
        """
        Close the dispute with a terminal outcome.

        Transition: open status -> WON | LOST

        Returns:
            The terminal status (consumed by django-fsm)
        """
        self.closed_at = timezone.now()
        return outcome

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        """Check if the dispute is closed."""
        return self.status in TERMINAL_DISPUTE_STATUSES

    @property
    def evidence_window_open(self) -> bool:
        """Check if evidence can still be submitted."""
        if self.is_terminal:
            return False
        if self.evidence_due_by is None:
            return True
        return timezone.now() <= self.evidence_due_by

    @staticmethod
    def normalize_stripe_status(stripe_status: str | None) -> str | None:
        """
        Map a Stripe dispute status onto the local enum.

        Returns:
            The local status, or None for statuses this model does not track
        """
        if stripe_status in DisputeStatus.values:
            return stripe_status
        return STRIPE_STATUS_ALIASES.get(stripe_status or "")
