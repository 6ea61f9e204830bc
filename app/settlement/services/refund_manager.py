"""
Refund manager for money returned to buyers.

Issues refunds against settled purchases and mirrors the Stripe Refund
lifecycle onto RefundRequest rows. Refund status only moves on Stripe's
word: a webhook, or an explicit status sync.

Two-Phase Pattern (request_refund):
    1. Distributed lock on the purchase, so concurrent admin requests
       cannot both reserve the same balance
    2. Phase 1 (transaction): lock the purchase, check status and
       refundable balance, insert a PENDING RefundRequest
    3. Phase 2 (no transaction): call Stripe with an idempotency key
       derived from the RefundRequest id
    4. Store the Stripe refund id; webhooks advance the status

Balance:
    refundable = gross - succeeded refunds - dispute losses - pending refunds

Usage:
    from settlement.services import RefundManager

    refund = RefundManager().request_refund(
        purchase_id=purchase.id,
        amount_cents=2500,
        reason=RefundReason.REQUESTED_BY_CUSTOMER,
        admin=request.user,
    )
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from django.utils import timezone

from core.helpers import parse_uuid
from core.services import BaseService

from settlement.adapters import IdempotencyKeyGenerator, RefundResult, get_stripe_adapter
from settlement.exceptions import (
    InvalidAmountError,
    InvalidTransitionError,
    PurchaseNotFoundError,
    RefundRequestNotFoundError,
    StaleEventError,
    StripeError,
)
from settlement.locks import purchase_refund_lock
from settlement.models import Purchase, RefundRequest
from settlement.services.ledger import SettlementLedger
from settlement.state_machines import PurchaseStatus, RefundReason, RefundStatus

if TYPE_CHECKING:
    from datetime import datetime

    from django.contrib.auth.models import AbstractBaseUser

    from settlement.adapters import StripeAdapter


logger = logging.getLogger(__name__)

# Stripe refund statuses that still reserve part of the purchase balance
STRIPE_PENDING_STATUSES = frozenset(["pending", "requires_action"])


class RefundManager(BaseService):
    """
    Service for issuing and reconciling refunds.

    Error Handling:
        - Stripe rejects the refund (permanent error): RefundRequest FAILED,
          error re-raised
        - Stripe unreachable after retries: RefundRequest stays PENDING
          without a Stripe id; sync_refund_status replays the create with
          the same idempotency key, which either returns the refund Stripe
          already made or makes it now
    """

    def __init__(self, stripe_adapter: StripeAdapter | None = None) -> None:
        self.stripe = stripe_adapter or get_stripe_adapter()

    # =========================================================================
    # Admin Operations
    # =========================================================================

    def request_refund(
        self,
        purchase_id: uuid.UUID | str,
        amount_cents: int | None = None,
        reason: str = RefundReason.REQUESTED_BY_CUSTOMER,
        admin: AbstractBaseUser | None = None,
        description: str = "",
    ) -> RefundRequest:
        """
        Refund (part of) a purchase.

        Args:
            purchase_id: Purchase to refund
            amount_cents: Amount to refund (default: full refundable balance)
            reason: RefundReason value
            admin: Administrator issuing the refund
            description: Internal note

        Returns:
            The PENDING RefundRequest

        Raises:
            PurchaseNotFoundError: Unknown purchase
            InvalidTransitionError: Purchase not in a refundable status
            InvalidAmountError: Amount exceeds the refundable balance
            LockAcquisitionError: Another refund for this purchase is running
            StripeError: Stripe rejected the refund
        """
        with purchase_refund_lock(purchase_id):
            refund = self._reserve_refund(
                purchase_id, amount_cents, reason, admin, description
            )
            self._submit_to_stripe(refund)
        return refund

    def _reserve_refund(
        self,
        purchase_id: uuid.UUID | str,
        amount_cents: int | None,
        reason: str,
        admin: AbstractBaseUser | None,
        description: str,
    ) -> RefundRequest:
        with self.atomic():
            purchase = Purchase.objects.select_for_update().filter(id=purchase_id).first()
            if purchase is None:
                raise PurchaseNotFoundError(
                    f"Purchase {purchase_id} not found",
                    details={"purchase_id": str(purchase_id)},
                )

            if purchase.status == PurchaseStatus.REFUNDED:
                raise InvalidAmountError(
                    "Purchase has no refundable balance left",
                    details={
                        "purchase_id": str(purchase.id),
                        "requested_cents": amount_cents,
                        "refundable_cents": 0,
                    },
                )

            if not purchase.is_refundable_status or not purchase.stripe_payment_intent_id:
                raise InvalidTransitionError(
                    f"Cannot refund purchase in '{purchase.status}' status",
                    details={
                        "purchase_id": str(purchase.id),
                        "current_status": purchase.status,
                    },
                )

            balance = SettlementLedger.refundable_balance(purchase)
            amount = balance if amount_cents is None else amount_cents
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0 or amount > balance:
                raise InvalidAmountError(
                    "Refund exceeds remaining refundable balance",
                    details={
                        "purchase_id": str(purchase.id),
                        "requested_cents": amount,
                        "refundable_cents": balance,
                    },
                )

            refund = RefundRequest.objects.create(
                purchase=purchase,
                admin=admin,
                stripe_payment_intent_id=purchase.stripe_payment_intent_id,
                amount_cents=amount,
                currency=purchase.currency,
                reason=reason,
                description=description,
            )

        self.get_logger().info(
            "Refund reserved",
            extra={
                "refund_id": str(refund.id),
                "purchase_id": str(purchase.id),
                "amount_cents": amount,
                "refundable_cents": balance,
            },
        )
        return refund

    def _submit_to_stripe(self, refund: RefundRequest) -> None:
        try:
            result = self.stripe.create_refund(
                payment_intent_id=refund.stripe_payment_intent_id,
                amount_cents=refund.amount_cents,
                idempotency_key=IdempotencyKeyGenerator.generate("refund", refund.id),
                reason=refund.reason,
                metadata={
                    "refund_request_id": str(refund.id),
                    "purchase_id": str(refund.purchase_id),
                },
            )
        except StripeError as e:
            if e.is_retryable:
                self.get_logger().error(
                    "Refund outcome unknown, left pending for sync",
                    extra={"refund_id": str(refund.id), "error_code": e.error_code},
                )
            else:
                with self.atomic():
                    locked = RefundRequest.objects.select_for_update().get(id=refund.id)
                    if locked.is_pending:
                        locked.fail(e.message)
                        locked.save()
                self.get_logger().error(
                    "Refund rejected by Stripe",
                    extra={"refund_id": str(refund.id), "error_code": e.error_code},
                )
            raise

        with self.atomic():
            locked = RefundRequest.objects.select_for_update().get(id=refund.id)
            if not locked.stripe_refund_id:
                locked.stripe_refund_id = result.id
                locked.save(update_fields=["stripe_refund_id", "version", "updated_at"])
        refund.stripe_refund_id = result.id

        self.get_logger().info(
            "Refund submitted to Stripe",
            extra={
                "refund_id": str(refund.id),
                "stripe_refund_id": result.id,
                "stripe_status": result.status,
            },
        )

    def cancel_refund(
        self,
        refund_id: uuid.UUID | str,
        admin: AbstractBaseUser | None = None,
    ) -> RefundRequest:
        """
        Cancel a refund that Stripe has not completed yet.

        The local status becomes CANCELED only after Stripe confirms.

        Raises:
            RefundRequestNotFoundError: Unknown refund
            InvalidTransitionError: Refund not pending or not yet at Stripe
            StripeInvalidRequestError: Stripe no longer allows cancellation
        """
        refund = self.get_refund(refund_id)

        if refund.status == RefundStatus.CANCELED:
            return refund
        if not refund.is_pending or not refund.stripe_refund_id:
            raise InvalidTransitionError(
                "Only refunds pending at Stripe can be canceled",
                details={
                    "refund_id": str(refund.id),
                    "current_status": refund.status,
                    "stripe_refund_id": refund.stripe_refund_id,
                },
            )

        result = self.stripe.cancel_refund(
            refund.stripe_refund_id,
            idempotency_key=IdempotencyKeyGenerator.generate("cancel_refund", refund.id),
        )

        if admin is not None:
            RefundRequest.objects.filter(id=refund.id).update(
                metadata={**refund.metadata, "canceled_by": str(admin.pk)}
            )

        self.get_logger().info(
            "Refund cancel confirmed by Stripe",
            extra={"refund_id": str(refund.id), "stripe_status": result.status},
        )
        return self.apply_processor_refund(result, event_at=timezone.now())

    def sync_refund_status(self, refund_id: uuid.UUID | str) -> RefundRequest:
        """
        Pull the refund status from Stripe and apply it.

        A pending refund without a Stripe id had an ambiguous create; the
        create is replayed with its original idempotency key.
        """
        refund = self.get_refund(refund_id)
        if refund.is_terminal:
            return refund

        if refund.stripe_refund_id:
            result = self.stripe.retrieve_refund(refund.stripe_refund_id)
        else:
            result = self.stripe.create_refund(
                payment_intent_id=refund.stripe_payment_intent_id,
                amount_cents=refund.amount_cents,
                idempotency_key=IdempotencyKeyGenerator.generate("refund", refund.id),
                reason=refund.reason,
                metadata={
                    "refund_request_id": str(refund.id),
                    "purchase_id": str(refund.purchase_id),
                },
            )

        return self.apply_processor_refund(result, event_at=timezone.now())

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def apply_processor_refund(
        self,
        result: RefundResult,
        event_at: datetime | None = None,
    ) -> RefundRequest | None:
        """
        Mirror a Stripe refund onto its RefundRequest.

        Matches by Stripe refund id, then by metadata.refund_request_id.
        Refunds made directly in the Stripe dashboard for a known purchase
        are mirrored as new RefundRequests without an admin.

        Returns:
            The RefundRequest, or None if the refund is for a PaymentIntent
            this platform does not know

        Raises:
            InvalidTransitionError: Refund already in a different final status
            StaleEventError: Event older than the refund watermark
            EventOutOfOrderError: Purchase charge not confirmed yet
        """
        with self.atomic():
            refund = self._lock_for_result(result)
            if refund is None:
                return None

            target = self._target_status(result.status)
            if target is None or refund.status == target:
                if refund.is_pending:
                    self._advance_watermark(refund, event_at)
                refund.save()
                return refund

            if refund.is_terminal:
                raise InvalidTransitionError(
                    f"Refund already {refund.status}, Stripe reports {result.status}",
                    details={
                        "refund_id": str(refund.id),
                        "current_status": refund.status,
                        "stripe_status": result.status,
                    },
                )

            if event_at and refund.last_event_at and event_at < refund.last_event_at:
                raise StaleEventError(
                    "Event is older than the last event applied to the refund",
                    details={
                        "refund_id": str(refund.id),
                        "event_at": event_at.isoformat(),
                        "last_event_at": refund.last_event_at.isoformat(),
                    },
                )

            if target == RefundStatus.SUCCEEDED:
                if result.amount_cents and result.amount_cents != refund.amount_cents:
                    logger.warning(
                        "Stripe refund amount differs from request",
                        extra={
                            "refund_id": str(refund.id),
                            "requested_cents": refund.amount_cents,
                            "stripe_amount_cents": result.amount_cents,
                        },
                    )
                    refund.amount_cents = result.amount_cents
                refund.succeed()
                SettlementLedger.apply_refund(refund.purchase_id, refund.amount_cents)
            elif target == RefundStatus.FAILED:
                refund.fail(result.failure_reason)
            else:
                refund.cancel()

            self._advance_watermark(refund, event_at)
            refund.save()

        logger.info(
            "Refund status applied",
            extra={
                "refund_id": str(refund.id),
                "stripe_refund_id": result.id,
                "status": refund.status,
            },
        )
        return refund

    def _lock_for_result(self, result: RefundResult) -> RefundRequest | None:
        refund = (
            RefundRequest.objects.select_for_update()
            .filter(stripe_refund_id=result.id)
            .first()
        )
        if refund is not None:
            return refund

        request_id = parse_uuid(result.metadata.get("refund_request_id"))
        if request_id is not None:
            refund = RefundRequest.objects.select_for_update().filter(id=request_id).first()
            if refund is not None:
                if not refund.stripe_refund_id:
                    refund.stripe_refund_id = result.id
                return refund

        purchase = (
            Purchase.objects.filter(stripe_payment_intent_id=result.payment_intent_id).first()
            if result.payment_intent_id
            else None
        )
        if purchase is None:
            return None

        logger.info(
            "Mirroring refund created outside the platform",
            extra={"stripe_refund_id": result.id, "purchase_id": str(purchase.id)},
        )
        return RefundRequest.objects.create(
            purchase=purchase,
            stripe_payment_intent_id=result.payment_intent_id,
            stripe_refund_id=result.id,
            amount_cents=result.amount_cents,
            currency=result.currency or purchase.currency,
            reason=RefundReason.OTHER,
            description="Issued outside the platform",
            metadata={"source": "stripe"},
        )

    @staticmethod
    def _target_status(stripe_status: str) -> str | None:
        if stripe_status in STRIPE_PENDING_STATUSES:
            return None
        if stripe_status in (RefundStatus.SUCCEEDED, RefundStatus.FAILED, RefundStatus.CANCELED):
            return stripe_status
        return None

    @staticmethod
    def _advance_watermark(refund: RefundRequest, event_at: datetime | None) -> None:
        if event_at and (refund.last_event_at is None or event_at > refund.last_event_at):
            refund.last_event_at = event_at

    # =========================================================================
    # Queries
    # =========================================================================

    def get_refund(self, refund_id: uuid.UUID | str) -> RefundRequest:
        try:
            return RefundRequest.objects.select_related("purchase").get(id=refund_id)
        except RefundRequest.DoesNotExist:
            raise RefundRequestNotFoundError(
                f"Refund {refund_id} not found",
                details={"refund_id": str(refund_id)},
            )
