"""
Payee account registry.

Tracks each developer's Stripe Connect account and its capability state.
Local rows are written only from Stripe responses, never from client
input, and are never deleted.

Onboarding Flow:
    1. begin_onboarding: create the Express account (once per owner) and
       return a single-use onboarding link
    2. The developer completes the hosted Stripe form
    3. account.updated webhook -> refresh_account_status pulls fresh flags
    4. create_reauth_link issues a new link if the old one expired

Usage:
    from settlement.services import PayeeAccountRegistry

    registry = PayeeAccountRegistry()
    result = registry.begin_onboarding(owner=user, email=user.email)
    return redirect(result.onboarding_url)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from core.services import BaseService

from settlement.adapters import IdempotencyKeyGenerator, get_stripe_adapter
from settlement.exceptions import PayeeAccountNotFoundError, StripeError
from settlement.locks import onboarding_lock
from settlement.models import PayeeAccount
from settlement.services.ledger import PayeeTotals, SettlementLedger
from settlement.state_machines import PayeeAccountType, VerificationStatus

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

    from settlement.adapters import AccountResult, StripeAdapter


ACCOUNT_LINK_TYPES = ("account_onboarding", "account_update")


@dataclass
class OnboardingResult:
    """Where to send the developer next."""

    account_id: str
    onboarding_url: str
    created: bool = False


@dataclass
class EarningsSummary:
    """
    Payee earnings view.

    The ledger totals are authoritative. The Stripe balance fields are a
    best-effort read-through taken at a different moment, so the two are
    not expected to reconcile exactly; they are None when Stripe could
    not be reached.
    """

    totals: PayeeTotals
    currency: str
    available_balance_cents: int | None = None
    pending_balance_cents: int | None = None


class PayeeAccountRegistry(BaseService):
    """
    Service for payee onboarding and capability sync.

    Failure semantics:
        Account creation is never retried automatically; the onboarding
        lock plus the one-row-per-owner lookup prevent duplicate Stripe
        accounts. Account reads are retried by the adapter.
    """

    def __init__(self, stripe_adapter: StripeAdapter | None = None) -> None:
        self.stripe = stripe_adapter or get_stripe_adapter()

    # =========================================================================
    # Onboarding
    # =========================================================================

    def begin_onboarding(
        self,
        owner: AbstractBaseUser,
        email: str,
        country: str | None = None,
    ) -> OnboardingResult:
        """
        Start or resume Connect onboarding for a developer.

        If the owner already has a payee account only a fresh link is
        issued. Otherwise the Stripe account is created first and the local
        row is written only after Stripe succeeded.

        Raises:
            LockAcquisitionError: Another onboarding for this owner is running
            StripeError: Stripe call failed; no local row was written
        """
        country = country or settings.SETTLEMENT_DEFAULT_PAYEE_COUNTRY

        with onboarding_lock(owner.pk):
            account = PayeeAccount.objects.filter(owner=owner).first()
            created = account is None

            if created:
                result = self.stripe.create_account(
                    email=email,
                    country=country,
                    owner_id=owner.pk,
                    idempotency_key=IdempotencyKeyGenerator.generate(
                        "create_account", owner.pk
                    ),
                )
                account, _ = PayeeAccount.objects.update_or_create(
                    owner=owner,
                    defaults={
                        "stripe_account_id": result.id,
                        "account_type": PayeeAccountType.EXPRESS,
                        "country": result.country or country,
                        "email": result.email or email,
                        "charges_enabled": result.charges_enabled,
                        "payouts_enabled": result.payouts_enabled,
                        "details_submitted": result.details_submitted,
                        "verification_status": PayeeAccount.derive_verification_status(
                            result.charges_enabled,
                            result.payouts_enabled,
                            result.disabled_reason,
                        ),
                        "disabled_reason": result.disabled_reason or "",
                        "last_synced_at": timezone.now(),
                    },
                )
                self.get_logger().info(
                    "Payee account created",
                    extra={
                        "owner_id": str(owner.pk),
                        "stripe_account_id": account.stripe_account_id,
                    },
                )

        url = self.create_reauth_link(account, "account_onboarding")
        return OnboardingResult(
            account_id=account.stripe_account_id,
            onboarding_url=url,
            created=created,
        )

    def create_reauth_link(self, account: PayeeAccount, link_type: str) -> str:
        """
        Issue a fresh single-use account link.

        Links are short-lived and never cached.

        Args:
            link_type: 'account_onboarding' or 'account_update'
        """
        if link_type not in ACCOUNT_LINK_TYPES:
            raise ValueError(f"link_type must be one of {ACCOUNT_LINK_TYPES}")

        link = self.stripe.create_account_link(
            account_id=account.stripe_account_id,
            refresh_url=settings.SETTLEMENT_ONBOARDING_REFRESH_URL,
            return_url=settings.SETTLEMENT_ONBOARDING_RETURN_URL,
            link_type=link_type,
        )
        return link.url

    # =========================================================================
    # Capability Sync
    # =========================================================================

    def refresh_account_status(self, stripe_account_id: str) -> PayeeAccount:
        """
        Pull capability flags from Stripe and overwrite the local row.

        Idempotent; safe to call from webhooks and from the polling task.

        Raises:
            PayeeAccountNotFoundError: No local row for this Stripe account
        """
        if not PayeeAccount.objects.filter(stripe_account_id=stripe_account_id).exists():
            raise PayeeAccountNotFoundError(
                f"No payee account for {stripe_account_id}",
                details={"stripe_account_id": stripe_account_id},
            )

        result = self.stripe.retrieve_account(stripe_account_id)

        with self.atomic():
            account = PayeeAccount.objects.select_for_update().get(
                stripe_account_id=stripe_account_id
            )
            self._apply_account_result(account, result)
            account.save()

        self.get_logger().info(
            "Payee account refreshed",
            extra={
                "stripe_account_id": stripe_account_id,
                "charges_enabled": account.charges_enabled,
                "payouts_enabled": account.payouts_enabled,
                "verification_status": account.verification_status,
            },
        )
        return account

    def mark_deauthorized(self, stripe_account_id: str) -> PayeeAccount:
        """
        Record that the developer disconnected the account from the platform.

        No further purchases can be opened against it.
        """
        with self.atomic():
            account = (
                PayeeAccount.objects.select_for_update()
                .filter(stripe_account_id=stripe_account_id)
                .first()
            )
            if account is None:
                raise PayeeAccountNotFoundError(
                    f"No payee account for {stripe_account_id}",
                    details={"stripe_account_id": stripe_account_id},
                )
            if account.verification_status == VerificationStatus.DEAUTHORIZED:
                return account

            account.charges_enabled = False
            account.payouts_enabled = False
            account.verification_status = VerificationStatus.DEAUTHORIZED
            account.last_synced_at = timezone.now()
            account.save()

        self.get_logger().warning(
            "Payee account deauthorized",
            extra={"stripe_account_id": stripe_account_id},
        )
        return account

    @staticmethod
    def _apply_account_result(account: PayeeAccount, result: AccountResult) -> None:
        account.charges_enabled = result.charges_enabled
        account.payouts_enabled = result.payouts_enabled
        account.details_submitted = result.details_submitted
        account.disabled_reason = result.disabled_reason or ""
        if result.email:
            account.email = result.email
        # Deauthorization is terminal for this platform; Stripe keeps
        # reporting the account's own capabilities.
        if account.verification_status == VerificationStatus.DEAUTHORIZED:
            account.charges_enabled = False
            account.payouts_enabled = False
        else:
            account.verification_status = PayeeAccount.derive_verification_status(
                result.charges_enabled,
                result.payouts_enabled,
                result.disabled_reason,
            )
        account.last_synced_at = timezone.now()

    # =========================================================================
    # Queries
    # =========================================================================

    def get_account(self, owner: AbstractBaseUser) -> PayeeAccount:
        account = PayeeAccount.objects.filter(owner=owner).first()
        if account is None:
            raise PayeeAccountNotFoundError(
                "No payee account for this user",
                details={"owner_id": str(owner.pk)},
            )
        return account

    def get_earnings(self, owner: AbstractBaseUser) -> EarningsSummary:
        """
        Ledger totals for the owner's payee account plus Stripe balances.

        A Stripe failure only blanks the balance fields.
        """
        account = self.get_account(owner)
        currency = settings.SETTLEMENT_CURRENCY
        summary = EarningsSummary(
            totals=SettlementLedger.payee_totals(account),
            currency=currency,
        )

        try:
            balance = self.stripe.retrieve_balance(account.stripe_account_id, currency)
        except StripeError as e:
            self.get_logger().warning(
                "Balance read-through failed",
                extra={
                    "stripe_account_id": account.stripe_account_id,
                    "error_code": e.error_code,
                },
            )
        else:
            summary.available_balance_cents = balance.available_cents
            summary.pending_balance_cents = balance.pending_cents

        return summary
