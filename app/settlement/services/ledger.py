"""
Settlement ledger - the local record of what we believe happened.

SettlementLedger owns Purchase rows. It is the only code that creates a
Purchase or changes its status and money totals; the orchestrator, the
refund and dispute managers and the webhook handlers all go through it.

Every mutating method locks the Purchase row (select_for_update) for the
duration of its transaction, so concurrent webhook handlers for the same
purchase serialize while different purchases proceed in parallel.

Event ordering:
    Charge events carry the Stripe event timestamp (event_at). A Purchase
    keeps the newest applied timestamp in last_event_at and rejects older
    events with StaleEventError. Idempotent no-ops are detected before the
    watermark check, so a late duplicate of an applied event is harmless.

Usage:
    from settlement.services import SettlementLedger

    purchase = SettlementLedger.open_purchase(
        buyer=user,
        app_id="app_123",
        payee_id=payee.id,
        gross_cents=10000,
    )
    SettlementLedger.mark_completed("pi_xxx", event_at=event.event_time)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import Count, Sum
from django.db.models.functions import Coalesce

from core.services import BaseService

from settlement.commission import split, validate_charge_amount
from settlement.exceptions import (
    EventOutOfOrderError,
    InvalidAmountError,
    InvalidTransitionError,
    PayeeNotEligibleError,
    PurchaseNotFoundError,
    StaleEventError,
)
from settlement.models import PayeeAccount, Purchase
from settlement.state_machines import PurchaseStatus, RefundStatus

if TYPE_CHECKING:
    from datetime import datetime

    from django.contrib.auth.models import AbstractBaseUser


logger = logging.getLogger(__name__)

# Statuses in which the buyer's charge has settled
SETTLED_STATUSES = (
    PurchaseStatus.COMPLETED,
    PurchaseStatus.PARTIALLY_REFUNDED,
    PurchaseStatus.REFUNDED,
    PurchaseStatus.DISPUTED,
)


# =============================================================================
# Reporting Types
# =============================================================================


@dataclass
class PayeeTotals:
    """
    Ledger totals for one payee over settled purchases.

    net_earnings_cents is the payee share minus the payee's proportional
    part of refunds and lost disputes. Stripe reverses destination
    transfers pro rata, so the ledger does the same.
    """

    sales_count: int
    gross_cents: int
    payee_amount_cents: int
    refunded_cents: int
    disputed_loss_cents: int
    net_earnings_cents: int


@dataclass
class PlatformRevenue:
    """Platform-wide totals over settled purchases."""

    purchase_count: int
    gross_cents: int
    processor_fee_cents: int
    platform_fee_cents: int
    payee_amount_cents: int
    refunded_cents: int
    disputed_loss_cents: int


# =============================================================================
# Settlement Ledger
# =============================================================================


class SettlementLedger(BaseService):
    """
    Service class for Purchase bookkeeping.

    All methods are classmethods - no instance state is maintained.
    """

    # =========================================================================
    # Creation
    # =========================================================================

    @classmethod
    def open_purchase(
        cls,
        buyer: AbstractBaseUser,
        app_id: str,
        payee_id: uuid.UUID | str,
        gross_cents: int,
        stripe_customer_id: str = "",
        metadata: dict | None = None,
    ) -> Purchase:
        """
        Validate the payee, compute the split and write a pending Purchase.

        This is the only way a Purchase row is created.

        Args:
            buyer: Authenticated buyer
            app_id: External catalog identifier of the app being bought
            payee_id: PayeeAccount receiving the payee share
            gross_cents: Server-side price in cents

        Returns:
            The new PENDING Purchase

        Raises:
            InvalidAmountError: Amount outside the configured charge limits
            PayeeNotEligibleError: Payee missing or cannot accept charges
        """
        validate_charge_amount(gross_cents)

        payee = PayeeAccount.objects.filter(id=payee_id).first()
        if payee is None or not payee.can_receive_charges:
            raise PayeeNotEligibleError(
                "Payee cannot receive split payments",
                details={"payee_id": str(payee_id)},
            )

        commission = split(gross_cents)

        purchase = Purchase.objects.create(
            buyer=buyer,
            app_id=app_id,
            payee=payee,
            currency=settings.SETTLEMENT_CURRENCY,
            gross_amount_cents=commission.gross_cents,
            processor_fee_cents=commission.processor_fee_cents,
            platform_fee_cents=commission.platform_fee_cents,
            payee_amount_cents=commission.payee_amount_cents,
            stripe_customer_id=stripe_customer_id,
            metadata=metadata or {},
        )

        logger.info(
            "Purchase opened",
            extra={
                "purchase_id": str(purchase.id),
                "payee_id": str(payee.id),
                "app_id": app_id,
                "gross_cents": commission.gross_cents,
                "platform_fee_cents": commission.platform_fee_cents,
                "payee_amount_cents": commission.payee_amount_cents,
            },
        )
        return purchase

    @classmethod
    def attach_payment_intent(
        cls,
        purchase_id: uuid.UUID | str,
        payment_intent_id: str,
    ) -> Purchase:
        """Record the Stripe PaymentIntent created for a pending purchase."""
        with cls.atomic():
            purchase = cls._lock(purchase_id)
            purchase.stripe_payment_intent_id = payment_intent_id
            purchase.save(update_fields=["stripe_payment_intent_id", "version", "updated_at"])
        return purchase

    # =========================================================================
    # Charge Outcome
    # =========================================================================

    @classmethod
    def mark_completed(
        cls,
        payment_intent_id: str,
        event_at: datetime | None = None,
        charge_id: str | None = None,
    ) -> Purchase:
        """
        Confirm a purchase after a verified charge-succeeded event.

        Idempotent: a purchase that already completed (or moved on to a
        refund or dispute status) is returned unchanged.

        Raises:
            PurchaseNotFoundError: No purchase for this PaymentIntent
            InvalidTransitionError: The purchase already failed
            StaleEventError: Event older than the purchase watermark
        """
        with cls.atomic():
            purchase = cls._lock_by_intent(payment_intent_id)

            if purchase.status in SETTLED_STATUSES:
                cls._fill_charge_id(purchase, charge_id)
                return purchase

            if purchase.status == PurchaseStatus.FAILED:
                raise InvalidTransitionError(
                    "Cannot complete a failed purchase",
                    details={
                        "purchase_id": str(purchase.id),
                        "current_status": purchase.status,
                        "target_status": PurchaseStatus.COMPLETED,
                    },
                )

            cls._check_watermark(purchase, event_at)
            purchase.complete()
            if charge_id:
                purchase.stripe_charge_id = charge_id
            cls._advance_watermark(purchase, event_at)
            purchase.save()

        logger.info(
            "Purchase completed",
            extra={
                "purchase_id": str(purchase.id),
                "payment_intent_id": payment_intent_id,
                "gross_cents": purchase.gross_amount_cents,
            },
        )
        return purchase

    @classmethod
    def mark_failed(
        cls,
        payment_intent_id: str,
        reason: str | None = None,
        event_at: datetime | None = None,
    ) -> Purchase:
        """
        Fail a pending purchase after a charge-failed event.

        Idempotent for purchases that already failed.

        Raises:
            PurchaseNotFoundError: No purchase for this PaymentIntent
            InvalidTransitionError: The charge already succeeded
            StaleEventError: Event older than the purchase watermark
        """
        with cls.atomic():
            purchase = cls._lock_by_intent(payment_intent_id)
            cls._fail(purchase, reason, event_at)
        return purchase

    @classmethod
    def abandon_purchase(
        cls,
        purchase_id: uuid.UUID | str,
        reason: str,
    ) -> Purchase:
        """
        Fail a pending purchase whose PaymentIntent could not be created.

        Used by the orchestrator when the Stripe call errors or times out,
        so no PENDING purchase is left without a processor object.
        """
        with cls.atomic():
            purchase = cls._lock(purchase_id)
            cls._fail(purchase, reason, None)
        return purchase

    @classmethod
    def _fail(
        cls,
        purchase: Purchase,
        reason: str | None,
        event_at: datetime | None,
    ) -> None:
        if purchase.status == PurchaseStatus.FAILED:
            return

        if purchase.status != PurchaseStatus.PENDING:
            raise InvalidTransitionError(
                f"Cannot fail purchase in '{purchase.status}' status",
                details={
                    "purchase_id": str(purchase.id),
                    "current_status": purchase.status,
                    "target_status": PurchaseStatus.FAILED,
                },
            )

        cls._check_watermark(purchase, event_at)
        purchase.fail(reason)
        cls._advance_watermark(purchase, event_at)
        purchase.save()

        logger.info(
            "Purchase failed",
            extra={"purchase_id": str(purchase.id), "reason": reason},
        )

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def apply_refund(
        cls,
        purchase_id: uuid.UUID | str,
        refunded_amount_cents: int,
    ) -> Purchase:
        """
        Add a succeeded refund to the purchase totals and recompute status.

        Call inside the same transaction that marks the RefundRequest
        succeeded; the RefundRequest status is what makes this idempotent.

        A purchase under dispute stays DISPUTED; the status it returns to
        when the dispute closes is updated instead.

        Raises:
            InvalidAmountError: Refund exceeds the remaining balance
            EventOutOfOrderError: The charge has not been confirmed yet
            InvalidTransitionError: Purchase failed or is already refunded
        """
        with cls.atomic():
            purchase = cls._lock(purchase_id)

            if purchase.status == PurchaseStatus.PENDING:
                raise EventOutOfOrderError(
                    "Refund succeeded before the charge was confirmed",
                    details={"purchase_id": str(purchase.id)},
                )
            if purchase.status in (PurchaseStatus.FAILED, PurchaseStatus.REFUNDED):
                raise InvalidTransitionError(
                    f"Cannot refund purchase in '{purchase.status}' status",
                    details={
                        "purchase_id": str(purchase.id),
                        "current_status": purchase.status,
                    },
                )

            remaining = purchase.gross_amount_cents - purchase.settled_reduction_cents
            if refunded_amount_cents <= 0 or refunded_amount_cents > remaining:
                raise InvalidAmountError(
                    "Refund exceeds remaining balance",
                    details={
                        "purchase_id": str(purchase.id),
                        "requested_cents": refunded_amount_cents,
                        "remaining_cents": remaining,
                    },
                )

            purchase.refunded_amount_cents += refunded_amount_cents
            fully_refunded = purchase.settled_reduction_cents >= purchase.gross_amount_cents

            if purchase.status == PurchaseStatus.DISPUTED:
                purchase.status_before_dispute = (
                    PurchaseStatus.REFUNDED
                    if fully_refunded
                    else PurchaseStatus.PARTIALLY_REFUNDED
                )
            elif fully_refunded:
                purchase.refund_full()
            else:
                purchase.refund_partial()
            purchase.save()

        logger.info(
            "Refund applied to purchase",
            extra={
                "purchase_id": str(purchase.id),
                "refunded_amount_cents": refunded_amount_cents,
                "total_refunded_cents": purchase.refunded_amount_cents,
                "status": purchase.status,
            },
        )
        return purchase

    # =========================================================================
    # Disputes
    # =========================================================================

    @classmethod
    def mark_disputed(cls, purchase_id: uuid.UUID | str) -> Purchase:
        """
        Flag a purchase as disputed.

        Idempotent for purchases that are already disputed.

        Raises:
            EventOutOfOrderError: The charge has not been confirmed yet
            InvalidTransitionError: Purchase failed or fully refunded
        """
        with cls.atomic():
            purchase = cls._lock(purchase_id)

            if purchase.status == PurchaseStatus.DISPUTED:
                return purchase
            if purchase.status == PurchaseStatus.PENDING:
                raise EventOutOfOrderError(
                    "Dispute opened before the charge was confirmed",
                    details={"purchase_id": str(purchase.id)},
                )
            if purchase.status in (PurchaseStatus.FAILED, PurchaseStatus.REFUNDED):
                raise InvalidTransitionError(
                    f"Cannot dispute purchase in '{purchase.status}' status",
                    details={
                        "purchase_id": str(purchase.id),
                        "current_status": purchase.status,
                        "target_status": PurchaseStatus.DISPUTED,
                    },
                )

            purchase.open_dispute()
            purchase.save()

        logger.info("Purchase disputed", extra={"purchase_id": str(purchase.id)})
        return purchase

    @classmethod
    def clear_dispute(
        cls,
        purchase_id: uuid.UUID | str,
        won: bool,
        lost_amount_cents: int = 0,
    ) -> Purchase:
        """
        Leave the disputed status once the dispute closes.

        Won: restore the status held before the dispute. Lost: record the
        forfeited amount and move to REFUNDED when refunds plus losses
        cover the gross, else PARTIALLY_REFUNDED. The loss is recorded,
        not clawed back; Stripe already debited the funds.

        Idempotent for purchases that are no longer disputed.
        """
        with cls.atomic():
            purchase = cls._lock(purchase_id)

            if purchase.status != PurchaseStatus.DISPUTED:
                return purchase

            if won:
                resolved = purchase.status_before_dispute or PurchaseStatus.COMPLETED
            else:
                remaining = purchase.gross_amount_cents - purchase.settled_reduction_cents
                loss = min(lost_amount_cents, remaining)
                if loss < lost_amount_cents:
                    logger.warning(
                        "Dispute loss capped at remaining balance",
                        extra={
                            "purchase_id": str(purchase.id),
                            "lost_amount_cents": lost_amount_cents,
                            "remaining_cents": remaining,
                        },
                    )
                purchase.disputed_loss_cents += loss
                if purchase.settled_reduction_cents >= purchase.gross_amount_cents:
                    resolved = PurchaseStatus.REFUNDED
                elif purchase.settled_reduction_cents > 0:
                    resolved = PurchaseStatus.PARTIALLY_REFUNDED
                else:
                    resolved = PurchaseStatus.COMPLETED

            purchase.close_dispute(resolved)
            purchase.save()

        logger.info(
            "Purchase dispute cleared",
            extra={
                "purchase_id": str(purchase.id),
                "won": won,
                "status": purchase.status,
                "disputed_loss_cents": purchase.disputed_loss_cents,
            },
        )
        return purchase

    # =========================================================================
    # Queries
    # =========================================================================

    @classmethod
    def get_purchase(cls, purchase_id: uuid.UUID | str) -> Purchase:
        try:
            return Purchase.objects.select_related("payee").get(id=purchase_id)
        except Purchase.DoesNotExist:
            raise PurchaseNotFoundError(
                f"Purchase {purchase_id} not found",
                details={"purchase_id": str(purchase_id)},
            )

    @classmethod
    def get_purchase_by_intent(cls, payment_intent_id: str) -> Purchase:
        try:
            return Purchase.objects.select_related("payee").get(
                stripe_payment_intent_id=payment_intent_id
            )
        except Purchase.DoesNotExist:
            raise PurchaseNotFoundError(
                f"No purchase for PaymentIntent {payment_intent_id}",
                details={"payment_intent_id": payment_intent_id},
            )

    @classmethod
    def refundable_balance(cls, purchase: Purchase) -> int:
        """
        Amount that can still be refunded.

        gross - succeeded refunds - dispute losses - refunds still pending.
        """
        pending = purchase.refund_requests.filter(
            status=RefundStatus.PENDING
        ).aggregate(total=Coalesce(Sum("amount_cents"), 0))["total"]
        return max(
            purchase.gross_amount_cents - purchase.settled_reduction_cents - pending,
            0,
        )

    @classmethod
    def payee_totals(cls, payee: PayeeAccount) -> PayeeTotals:
        """Aggregate the settled purchases of a payee."""
        rows = Purchase.objects.filter(
            payee=payee, status__in=SETTLED_STATUSES
        ).values_list(
            "gross_amount_cents",
            "payee_amount_cents",
            "refunded_amount_cents",
            "disputed_loss_cents",
        )

        totals = PayeeTotals(0, 0, 0, 0, 0, 0)
        for gross, payee_amount, refunded, lost in rows.iterator():
            reversed_cents = payee_amount * (refunded + lost) // gross
            totals.sales_count += 1
            totals.gross_cents += gross
            totals.payee_amount_cents += payee_amount
            totals.refunded_cents += refunded
            totals.disputed_loss_cents += lost
            totals.net_earnings_cents += payee_amount - reversed_cents
        return totals

    @classmethod
    def platform_revenue(
        cls,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> PlatformRevenue:
        """Aggregate settled purchases created within [start, end)."""
        queryset = Purchase.objects.filter(status__in=SETTLED_STATUSES)
        if start is not None:
            queryset = queryset.filter(created_at__gte=start)
        if end is not None:
            queryset = queryset.filter(created_at__lt=end)

        sums = queryset.aggregate(
            purchase_count=Count("id"),
            gross_cents=Coalesce(Sum("gross_amount_cents"), 0),
            processor_fee_cents=Coalesce(Sum("processor_fee_cents"), 0),
            platform_fee_cents=Coalesce(Sum("platform_fee_cents"), 0),
            payee_amount_cents=Coalesce(Sum("payee_amount_cents"), 0),
            refunded_cents=Coalesce(Sum("refunded_amount_cents"), 0),
            disputed_loss_cents=Coalesce(Sum("disputed_loss_cents"), 0),
        )
        return PlatformRevenue(**sums)

    # =========================================================================
    # Helpers
    # =========================================================================

    @classmethod
    def _lock(cls, purchase_id: uuid.UUID | str) -> Purchase:
        purchase = Purchase.objects.select_for_update().filter(id=purchase_id).first()
        if purchase is None:
            raise PurchaseNotFoundError(
                f"Purchase {purchase_id} not found",
                details={"purchase_id": str(purchase_id)},
            )
        return purchase

    @classmethod
    def _lock_by_intent(cls, payment_intent_id: str) -> Purchase:
        purchase = (
            Purchase.objects.select_for_update()
            .filter(stripe_payment_intent_id=payment_intent_id)
            .first()
        )
        if purchase is None:
            raise PurchaseNotFoundError(
                f"No purchase for PaymentIntent {payment_intent_id}",
                details={"payment_intent_id": payment_intent_id},
            )
        return purchase

    @staticmethod
    def _check_watermark(purchase: Purchase, event_at: datetime | None) -> None:
        if event_at and purchase.last_event_at and event_at < purchase.last_event_at:
            raise StaleEventError(
                "Event is older than the last event applied to the purchase",
                details={
                    "purchase_id": str(purchase.id),
                    "event_at": event_at.isoformat(),
                    "last_event_at": purchase.last_event_at.isoformat(),
                },
            )

    @staticmethod
    def _advance_watermark(purchase: Purchase, event_at: datetime | None) -> None:
        if event_at and (purchase.last_event_at is None or event_at > purchase.last_event_at):
            purchase.last_event_at = event_at

    @staticmethod
    def _fill_charge_id(purchase: Purchase, charge_id: str | None) -> None:
        if charge_id and not purchase.stripe_charge_id:
            purchase.stripe_charge_id = charge_id
            purchase.save(update_fields=["stripe_charge_id", "version", "updated_at"])
