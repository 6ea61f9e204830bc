"""
Dispute manager for card-network chargebacks.

DisputeCases are created and moved exclusively by Stripe dispute events.
The one local action, evidence submission, is a request to Stripe; the
status it stores is whatever Stripe answers.

Event Flow:
    charge.dispute.created -> on_dispute_opened -> Purchase DISPUTED
    charge.dispute.updated -> on_dispute_updated (status, deadline)
    charge.dispute.closed  -> on_dispute_closed -> WON | LOST, ledger cleared

Terminal cases (WON, LOST) are immutable; later events for them are
no-ops.

Usage:
    from settlement.services import DisputeManager

    case = DisputeManager().submit_evidence(
        dispute_id=case.id,
        evidence={"uncategorized_text": "Buyer downloaded the app twice"},
    )
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db.models import Q
from django.utils import timezone

from core.helpers import stable_digest
from core.services import BaseService

from settlement.adapters import DisputeResult, IdempotencyKeyGenerator, get_stripe_adapter
from settlement.exceptions import (
    DisputeCaseNotFoundError,
    EvidenceWindowClosedError,
    InvalidTransitionError,
    StaleEventError,
    StaleRecordError,
)
from settlement.locks import check_version
from settlement.models import DisputeCase, Purchase
from settlement.models.dispute_case import OPEN_DISPUTE_STATUSES, TERMINAL_DISPUTE_STATUSES
from settlement.services.ledger import SettlementLedger
from settlement.state_machines import DisputeStatus

if TYPE_CHECKING:
    from datetime import datetime

    from settlement.adapters import StripeAdapter


class DisputeManager(BaseService):
    """Service mirroring Stripe disputes onto DisputeCase rows."""

    def __init__(self, stripe_adapter: StripeAdapter | None = None) -> None:
        self.stripe = stripe_adapter or get_stripe_adapter()

    # =========================================================================
    # Stripe Events
    # =========================================================================

    def on_dispute_opened(
        self,
        dispute: DisputeResult,
        event_at: datetime | None = None,
    ) -> DisputeCase | None:
        """
        Create the DisputeCase and flag the purchase as disputed.

        Idempotent on the Stripe dispute id.

        Returns:
            The case, or None if the disputed charge is not ours

        Raises:
            EventOutOfOrderError: Charge not confirmed locally yet
            InvalidTransitionError: Purchase cannot be disputed (failed, refunded)
        """
        with self.atomic():
            case = self._lock_case(dispute.id)
            if case is not None:
                return case

            purchase = self._resolve_purchase(dispute)
            if purchase is None:
                self.get_logger().warning(
                    "Dispute for unknown charge",
                    extra={
                        "stripe_dispute_id": dispute.id,
                        "charge_id": dispute.charge_id,
                        "payment_intent_id": dispute.payment_intent_id,
                    },
                )
                return None

            SettlementLedger.mark_disputed(purchase.id)

            status = DisputeCase.normalize_stripe_status(dispute.status)
            if status not in OPEN_DISPUTE_STATUSES:
                status = DisputeStatus.NEEDS_RESPONSE

            case = DisputeCase.objects.create(
                purchase=purchase,
                stripe_dispute_id=dispute.id,
                stripe_charge_id=dispute.charge_id or purchase.stripe_charge_id,
                amount_cents=dispute.amount_cents,
                currency=dispute.currency or purchase.currency,
                reason=dispute.reason or "",
                status=status,
                evidence_due_by=dispute.evidence_due_by,
                last_event_at=event_at,
            )

        self.get_logger().warning(
            "Dispute opened",
            extra={
                "dispute_case_id": str(case.id),
                "stripe_dispute_id": dispute.id,
                "purchase_id": str(case.purchase_id),
                "amount_cents": case.amount_cents,
                "reason": case.reason,
            },
        )
        return case

    def on_dispute_updated(
        self,
        dispute: DisputeResult,
        event_at: datetime | None = None,
    ) -> DisputeCase | None:
        """
        Follow a status or deadline change of an open dispute.

        Creates the case if the created event was missed; closes it if
        Stripe already reports a terminal status.
        """
        status = DisputeCase.normalize_stripe_status(dispute.status)
        if status in TERMINAL_DISPUTE_STATUSES:
            return self.on_dispute_closed(dispute, event_at)

        with self.atomic():
            case = self._lock_case(dispute.id)
            if case is None:
                return self.on_dispute_opened(dispute, event_at)

            if case.is_terminal:
                self.get_logger().info(
                    "Ignoring update for closed dispute",
                    extra={"stripe_dispute_id": dispute.id, "status": case.status},
                )
                return case

            self._check_watermark(case, event_at)

            if status is not None and status != case.status:
                case.update_status(status)
            if dispute.evidence_due_by:
                case.evidence_due_by = dispute.evidence_due_by
            if dispute.reason:
                case.reason = dispute.reason
            self._advance_watermark(case, event_at)
            case.save()

        return case

    def on_dispute_closed(
        self,
        dispute: DisputeResult,
        event_at: datetime | None = None,
    ) -> DisputeCase | None:
        """
        Close the case as WON or LOST and clear the purchase dispute.

        A lost dispute records the disputed amount as forfeited.

        Raises:
            InvalidTransitionError: Stripe status is not a final outcome
        """
        outcome = DisputeCase.normalize_stripe_status(dispute.status)
        if outcome not in TERMINAL_DISPUTE_STATUSES:
            raise InvalidTransitionError(
                f"Dispute closed with non-final status '{dispute.status}'",
                details={"stripe_dispute_id": dispute.id, "stripe_status": dispute.status},
            )

        with self.atomic():
            case = self._lock_case(dispute.id)
            if case is None:
                if self.on_dispute_opened(dispute, event_at) is None:
                    return None
                case = self._lock_case(dispute.id)

            if case.is_terminal:
                return case

            self._check_watermark(case, event_at)
            case.close(outcome)
            self._advance_watermark(case, event_at)
            case.save()

            SettlementLedger.clear_dispute(
                case.purchase_id,
                won=outcome == DisputeStatus.WON,
                lost_amount_cents=case.amount_cents,
            )

        self.get_logger().warning(
            "Dispute closed",
            extra={
                "dispute_case_id": str(case.id),
                "stripe_dispute_id": dispute.id,
                "outcome": outcome,
                "amount_cents": case.amount_cents,
            },
        )
        return case

    # =========================================================================
    # Evidence
    # =========================================================================

    def submit_evidence(
        self,
        dispute_id: uuid.UUID | str,
        evidence: dict[str, str],
        submit: bool = True,
    ) -> DisputeCase:
        """
        Forward evidence to Stripe and store the status it returns.

        Args:
            dispute_id: Local DisputeCase id
            evidence: Stripe dispute evidence fields
            submit: Submit now (Stripe accepts a single submission)

        Raises:
            DisputeCaseNotFoundError: Unknown case
            EvidenceWindowClosedError: Past evidence_due_by or case closed
        """
        case = self.get_case(dispute_id)
        if not case.evidence_window_open:
            raise EvidenceWindowClosedError(
                "Evidence can no longer be submitted for this dispute",
                details={
                    "dispute_case_id": str(case.id),
                    "status": case.status,
                    "evidence_due_by": (
                        case.evidence_due_by.isoformat() if case.evidence_due_by else None
                    ),
                },
            )

        seen_version = case.version
        digest = stable_digest(evidence)
        result = self.stripe.update_dispute(
            case.stripe_dispute_id,
            evidence=evidence,
            idempotency_key=IdempotencyKeyGenerator.generate(
                "dispute_evidence", f"{case.id}:{digest}"
            ),
            submit=submit,
        )

        with self.atomic():
            try:
                case = check_version(DisputeCase, case.id, seen_version)
                status = DisputeCase.normalize_stripe_status(result.status)
            except StaleRecordError:
                # A webhook moved the case meanwhile; its status wins
                case = DisputeCase.objects.select_for_update().get(id=case.id)
                status = None

            case.evidence = evidence
            if submit:
                case.evidence_submitted_at = timezone.now()
            if (
                status in OPEN_DISPUTE_STATUSES
                and not case.is_terminal
                and status != case.status
            ):
                case.update_status(status)
            case.save()

        self.get_logger().info(
            "Dispute evidence submitted",
            extra={
                "dispute_case_id": str(case.id),
                "stripe_dispute_id": case.stripe_dispute_id,
                "status": case.status,
                "submitted": submit,
            },
        )
        return case

    # =========================================================================
    # Queries & Helpers
    # =========================================================================

    def get_case(self, dispute_id: uuid.UUID | str) -> DisputeCase:
        try:
            return DisputeCase.objects.select_related("purchase").get(id=dispute_id)
        except DisputeCase.DoesNotExist:
            raise DisputeCaseNotFoundError(
                f"Dispute {dispute_id} not found",
                details={"dispute_case_id": str(dispute_id)},
            )

    @staticmethod
    def _lock_case(stripe_dispute_id: str) -> DisputeCase | None:
        return (
            DisputeCase.objects.select_for_update()
            .filter(stripe_dispute_id=stripe_dispute_id)
            .first()
        )

    @staticmethod
    def _resolve_purchase(dispute: DisputeResult) -> Purchase | None:
        lookup = Q()
        if dispute.payment_intent_id:
            lookup |= Q(stripe_payment_intent_id=dispute.payment_intent_id)
        if dispute.charge_id:
            lookup |= Q(stripe_charge_id=dispute.charge_id)
        if not lookup:
            return None
        return Purchase.objects.filter(lookup).first()

    @staticmethod
    def _check_watermark(case: DisputeCase, event_at: datetime | None) -> None:
        if event_at and case.last_event_at and event_at < case.last_event_at:
            raise StaleEventError(
                "Event is older than the last event applied to the dispute",
                details={
                    "dispute_case_id": str(case.id),
                    "event_at": event_at.isoformat(),
                    "last_event_at": case.last_event_at.isoformat(),
                },
            )

    @staticmethod
    def _advance_watermark(case: DisputeCase, event_at: datetime | None) -> None:
        if event_at and (case.last_event_at is None or event_at > case.last_event_at):
            case.last_event_at = event_at
