"""
PayeeAccount model for Stripe Connect payee accounts.

A PayeeAccount represents the Stripe Connected Account a developer uses
to receive their share of marketplace sales. There is at most one per
owner, and rows are never deleted so the audit trail of who was paid
stays intact.

Usage:
    from settlement.models import PayeeAccount

    account = PayeeAccount.objects.get(owner=user)
    if account.can_receive_charges:
        # Purchases may be opened against this payee
        ...
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from settlement.state_machines import PayeeAccountType, VerificationStatus


class PayeeAccount(UUIDPrimaryKeyMixin, BaseModel):
    """
    A developer's Stripe Connected Account.

    Capability flags and verification status are only ever written from
    data pulled from Stripe (account.updated webhooks or explicit refresh),
    never from client-supplied input.

    Fields:
        owner: Developer (user) who owns this payee account
        stripe_account_id: Unique Stripe Account ID (acct_xxx)
        account_type: Stripe Connect account type
        country: ISO 3166-1 alpha-2 country code
        email: Email the account was created with
        charges_enabled: Whether Stripe allows charges to this account
        payouts_enabled: Whether Stripe allows payouts from this account
        details_submitted: Whether onboarding details were submitted
        verification_status: Derived verification status
        disabled_reason: Stripe requirements.disabled_reason, if any
        last_synced_at: When state was last pulled from Stripe
        version: Optimistic locking version field
        metadata: Flexible JSON storage

    Invariant:
        verification_status == VERIFIED implies charges_enabled and
        payouts_enabled (enforced by a database constraint).
    """

    # ==========================================================================
    # Ownership
    # ==========================================================================

    owner = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payee_account",
        help_text="Developer this payee account belongs to",
    )

    # ==========================================================================
    # Stripe Integration
    # ==========================================================================

    stripe_account_id = models.CharField(
        max_length=255,
        unique=True,
        db_index=True,
        help_text="Stripe Account ID (acct_xxx)",
    )

    account_type = models.CharField(
        max_length=20,
        choices=PayeeAccountType.choices,
        default=PayeeAccountType.EXPRESS,
        help_text="Stripe Connect account type",
    )

    country = models.CharField(
        max_length=2,
        default="US",
        help_text="ISO 3166-1 alpha-2 country code",
    )

    email = models.EmailField(
        blank=True,
        default="",
        help_text="Email address the Stripe account was created with",
    )

    # ==========================================================================
    # Capability State (mirrored from Stripe)
    # ==========================================================================

    charges_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled charges for this account",
    )

    payouts_enabled = models.BooleanField(
        default=False,
        help_text="Whether Stripe has enabled payouts for this account",
    )

    details_submitted = models.BooleanField(
        default=False,
        help_text="Whether the payee has submitted onboarding details",
    )

    verification_status = models.CharField(
        max_length=20,
        choices=VerificationStatus.choices,
        default=VerificationStatus.PENDING,
        db_index=True,
        help_text="Verification status derived from Stripe capability flags",
    )

    disabled_reason = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe requirements.disabled_reason, if the account is restricted",
    )

    last_synced_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When account state was last pulled from Stripe",
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
        verbose_name = "Payee Account"
        verbose_name_plural = "Payee Accounts"
        constraints = [
            models.CheckConstraint(
                condition=(
                    ~models.Q(verification_status=VerificationStatus.VERIFIED)
                    | models.Q(charges_enabled=True, payouts_enabled=True)
                ),
                name="payee_verified_requires_capabilities",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with Stripe ID and status."""
        return f"PayeeAccount({self.stripe_account_id}, {self.verification_status})"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.

        On update, atomically increments the version field to detect
        concurrent modifications.
        """
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            # Refresh to get actual version value after F() expression
            self.refresh_from_db(fields=["version"])

    @property
    def can_receive_charges(self) -> bool:
        """Check if purchases may be opened against this payee."""
        return (
            self.charges_enabled
            and self.verification_status != VerificationStatus.DEAUTHORIZED
        )

    @property
    def is_verified(self) -> bool:
        """Check if Stripe has fully enabled the account."""
        return self.verification_status == VerificationStatus.VERIFIED

    @staticmethod
    def derive_verification_status(
        charges_enabled: bool,
        payouts_enabled: bool,
        disabled_reason: str | None = None,
    ) -> str:
        """
        Derive verification status from Stripe capability flags.

        Returns:
            VERIFIED when both charges and payouts are enabled,
            REJECTED when Stripe disabled the account with a rejection reason,
            PENDING otherwise
        """
        if charges_enabled and payouts_enabled:
            return VerificationStatus.VERIFIED
        if disabled_reason and disabled_reason.startswith("rejected"):
            return VerificationStatus.REJECTED
        return VerificationStatus.PENDING
