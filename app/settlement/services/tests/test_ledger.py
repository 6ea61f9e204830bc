"""
Tests for SettlementLedger.

Covers purchase creation with the commission split, charge outcomes with
watermark ordering, refund and dispute bookkeeping, and the reporting
aggregates.
"""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from settlement.exceptions import (
    EventOutOfOrderError,
    InvalidAmountError,
    InvalidTransitionError,
    PayeeNotEligibleError,
    PurchaseNotFoundError,
    StaleEventError,
)
from settlement.models import Purchase
from settlement.services import SettlementLedger
from settlement.state_machines import PurchaseStatus, RefundStatus, VerificationStatus
from settlement.tests.factories import (
    CompletedPurchaseFactory,
    PayeeAccountFactory,
    PurchaseFactory,
    RefundRequestFactory,
)


def get_fresh_purchase(purchase_id) -> Purchase:
    """
    Get a fresh Purchase instance from the database.

    django-fsm's protected FSMField doesn't allow refresh_from_db() to
    overwrite the status, so a new instance is loaded instead.
    """
    return Purchase.objects.get(id=purchase_id)


# =============================================================================
# Creation
# =============================================================================


@pytest.mark.django_db
class TestOpenPurchase:
    def test_creates_pending_purchase_with_split(self, user, payee_account):
        purchase = SettlementLedger.open_purchase(
            buyer=user,
            app_id="app_123",
            payee_id=payee_account.id,
            gross_cents=10000,
            stripe_customer_id="cus_123",
        )

        assert purchase.status == PurchaseStatus.PENDING
        assert purchase.buyer == user
        assert purchase.payee == payee_account
        assert purchase.currency == "usd"
        assert purchase.gross_amount_cents == 10000
        assert purchase.processor_fee_cents == 320
        assert purchase.platform_fee_cents == 1936
        assert purchase.payee_amount_cents == 7744
        assert purchase.stripe_customer_id == "cus_123"
        assert purchase.stripe_payment_intent_id is None

    def test_rejects_unknown_payee(self, user):
        with pytest.raises(PayeeNotEligibleError):
            SettlementLedger.open_purchase(
                buyer=user,
                app_id="app_123",
                payee_id=uuid.uuid4(),
                gross_cents=10000,
            )

        assert Purchase.objects.count() == 0

    def test_rejects_payee_without_charges(self, user, pending_payee_account):
        with pytest.raises(PayeeNotEligibleError):
            SettlementLedger.open_purchase(
                buyer=user,
                app_id="app_123",
                payee_id=pending_payee_account.id,
                gross_cents=10000,
            )

    def test_rejects_deauthorized_payee(self, user, db):
        payee = PayeeAccountFactory(
            payouts_enabled=False,
            verification_status=VerificationStatus.DEAUTHORIZED,
        )

        with pytest.raises(PayeeNotEligibleError):
            SettlementLedger.open_purchase(
                buyer=user, app_id="app_123", payee_id=payee.id, gross_cents=10000
            )

    @pytest.mark.parametrize("gross_cents", [0, 49, 1000000, -100])
    def test_rejects_amount_outside_limits(self, user, payee_account, gross_cents):
        with pytest.raises(InvalidAmountError):
            SettlementLedger.open_purchase(
                buyer=user,
                app_id="app_123",
                payee_id=payee_account.id,
                gross_cents=gross_cents,
            )

        assert Purchase.objects.count() == 0


@pytest.mark.django_db
class TestAttachPaymentIntent:
    def test_attaches_intent(self, user, payee_account):
        purchase = PurchaseFactory(
            buyer=user, payee=payee_account, stripe_payment_intent_id=None
        )

        SettlementLedger.attach_payment_intent(purchase.id, "pi_new")

        assert get_fresh_purchase(purchase.id).stripe_payment_intent_id == "pi_new"

    def test_unknown_purchase(self, db):
        with pytest.raises(PurchaseNotFoundError):
            SettlementLedger.attach_payment_intent(uuid.uuid4(), "pi_new")


# =============================================================================
# Charge Outcome
# =============================================================================


@pytest.mark.django_db
class TestMarkCompleted:
    def test_completes_pending_purchase(self, pending_purchase):
        event_at = timezone.now()

        purchase = SettlementLedger.mark_completed(
            pending_purchase.stripe_payment_intent_id,
            event_at=event_at,
            charge_id="ch_123",
        )

        fresh = get_fresh_purchase(purchase.id)
        assert fresh.status == PurchaseStatus.COMPLETED
        assert fresh.stripe_charge_id == "ch_123"
        assert fresh.last_event_at == event_at
        assert fresh.completed_at is not None

    def test_idempotent_for_completed_purchase(self, completed_purchase):
        version = completed_purchase.version

        purchase = SettlementLedger.mark_completed(
            completed_purchase.stripe_payment_intent_id
        )

        assert purchase.status == PurchaseStatus.COMPLETED
        assert get_fresh_purchase(purchase.id).version == version

    def test_late_success_after_refund_is_noop(self, partially_refunded_purchase):
        purchase = SettlementLedger.mark_completed(
            partially_refunded_purchase.stripe_payment_intent_id
        )

        assert purchase.status == PurchaseStatus.PARTIALLY_REFUNDED

    def test_fills_missing_charge_id_on_duplicate(self, db):
        purchase = CompletedPurchaseFactory(stripe_charge_id="")

        SettlementLedger.mark_completed(
            purchase.stripe_payment_intent_id, charge_id="ch_late"
        )

        assert get_fresh_purchase(purchase.id).stripe_charge_id == "ch_late"

    def test_failed_purchase_cannot_complete(self, failed_purchase):
        with pytest.raises(InvalidTransitionError):
            SettlementLedger.mark_completed(failed_purchase.stripe_payment_intent_id)

        assert get_fresh_purchase(failed_purchase.id).status == PurchaseStatus.FAILED

    def test_stale_event_rejected(self, db):
        now = timezone.now()
        purchase = PurchaseFactory(last_event_at=now)

        with pytest.raises(StaleEventError):
            SettlementLedger.mark_completed(
                purchase.stripe_payment_intent_id,
                event_at=now - timedelta(seconds=5),
            )

        assert get_fresh_purchase(purchase.id).status == PurchaseStatus.PENDING

    def test_unknown_intent(self, db):
        with pytest.raises(PurchaseNotFoundError):
            SettlementLedger.mark_completed("pi_unknown")


@pytest.mark.django_db
class TestMarkFailed:
    def test_fails_pending_purchase(self, pending_purchase):
        SettlementLedger.mark_failed(
            pending_purchase.stripe_payment_intent_id,
            reason="Your card was declined.",
            event_at=timezone.now(),
        )

        fresh = get_fresh_purchase(pending_purchase.id)
        assert fresh.status == PurchaseStatus.FAILED
        assert fresh.failure_reason == "Your card was declined."

    def test_idempotent_for_failed_purchase(self, failed_purchase):
        purchase = SettlementLedger.mark_failed(
            failed_purchase.stripe_payment_intent_id, reason="again"
        )

        assert purchase.status == PurchaseStatus.FAILED
        assert get_fresh_purchase(purchase.id).failure_reason == "Card declined"

    def test_completed_purchase_cannot_fail(self, completed_purchase):
        with pytest.raises(InvalidTransitionError):
            SettlementLedger.mark_failed(completed_purchase.stripe_payment_intent_id)

    def test_success_then_failure_keeps_completed(self, pending_purchase):
        t0 = timezone.now()
        SettlementLedger.mark_completed(pending_purchase.stripe_payment_intent_id, event_at=t0)

        with pytest.raises(InvalidTransitionError):
            SettlementLedger.mark_failed(
                pending_purchase.stripe_payment_intent_id,
                event_at=t0 - timedelta(seconds=1),
            )

        assert get_fresh_purchase(pending_purchase.id).status == PurchaseStatus.COMPLETED


@pytest.mark.django_db
class TestAbandonPurchase:
    def test_fails_pending_purchase_without_intent(self, db):
        purchase = PurchaseFactory(stripe_payment_intent_id=None)

        SettlementLedger.abandon_purchase(purchase.id, reason="Stripe timed out")

        fresh = get_fresh_purchase(purchase.id)
        assert fresh.status == PurchaseStatus.FAILED
        assert fresh.failure_reason == "Stripe timed out"


# =============================================================================
# Refunds
# =============================================================================


@pytest.mark.django_db
class TestApplyRefund:
    def test_partial_refund(self, completed_purchase):
        purchase = SettlementLedger.apply_refund(completed_purchase.id, 3000)

        assert purchase.status == PurchaseStatus.PARTIALLY_REFUNDED
        assert purchase.refunded_amount_cents == 3000

    def test_remaining_refund_completes_it(self, partially_refunded_purchase):
        purchase = SettlementLedger.apply_refund(partially_refunded_purchase.id, 7000)

        assert purchase.status == PurchaseStatus.REFUNDED
        assert purchase.refunded_amount_cents == 10000

    def test_full_refund_in_one_go(self, completed_purchase):
        purchase = SettlementLedger.apply_refund(completed_purchase.id, 10000)

        assert purchase.status == PurchaseStatus.REFUNDED

    def test_refund_over_remaining_balance_rejected(self, partially_refunded_purchase):
        with pytest.raises(InvalidAmountError) as exc_info:
            SettlementLedger.apply_refund(partially_refunded_purchase.id, 7001)

        assert exc_info.value.details["remaining_cents"] == 7000
        fresh = get_fresh_purchase(partially_refunded_purchase.id)
        assert fresh.refunded_amount_cents == 3000

    def test_pending_purchase_is_out_of_order(self, pending_purchase):
        with pytest.raises(EventOutOfOrderError):
            SettlementLedger.apply_refund(pending_purchase.id, 1000)

    @pytest.mark.parametrize("fixture_name", ["failed_purchase", "refunded_purchase"])
    def test_terminal_purchase_rejected(self, request, fixture_name):
        purchase = request.getfixturevalue(fixture_name)

        with pytest.raises(InvalidTransitionError):
            SettlementLedger.apply_refund(purchase.id, 1000)

    def test_disputed_purchase_stays_disputed(self, disputed_purchase):
        purchase = SettlementLedger.apply_refund(disputed_purchase.id, 2500)

        assert purchase.status == PurchaseStatus.DISPUTED
        assert purchase.refunded_amount_cents == 2500
        assert purchase.status_before_dispute == PurchaseStatus.PARTIALLY_REFUNDED


# =============================================================================
# Disputes
# =============================================================================


@pytest.mark.django_db
class TestMarkDisputed:
    def test_flags_completed_purchase(self, completed_purchase):
        purchase = SettlementLedger.mark_disputed(completed_purchase.id)

        assert purchase.status == PurchaseStatus.DISPUTED
        assert purchase.status_before_dispute == PurchaseStatus.COMPLETED

    def test_idempotent(self, disputed_purchase):
        purchase = SettlementLedger.mark_disputed(disputed_purchase.id)

        assert purchase.status == PurchaseStatus.DISPUTED

    def test_pending_purchase_is_out_of_order(self, pending_purchase):
        with pytest.raises(EventOutOfOrderError):
            SettlementLedger.mark_disputed(pending_purchase.id)

    def test_refunded_purchase_rejected(self, refunded_purchase):
        with pytest.raises(InvalidTransitionError):
            SettlementLedger.mark_disputed(refunded_purchase.id)


@pytest.mark.django_db
class TestClearDispute:
    def test_won_restores_previous_status(self, db):
        purchase = CompletedPurchaseFactory(
            status=PurchaseStatus.DISPUTED,
            status_before_dispute=PurchaseStatus.PARTIALLY_REFUNDED,
            refunded_amount_cents=2000,
        )

        cleared = SettlementLedger.clear_dispute(purchase.id, won=True)

        assert cleared.status == PurchaseStatus.PARTIALLY_REFUNDED
        assert cleared.disputed_loss_cents == 0
        assert cleared.status_before_dispute == ""

    def test_lost_full_amount_moves_to_refunded(self, disputed_purchase):
        cleared = SettlementLedger.clear_dispute(
            disputed_purchase.id, won=False, lost_amount_cents=10000
        )

        assert cleared.status == PurchaseStatus.REFUNDED
        assert cleared.disputed_loss_cents == 10000

    def test_lost_partial_amount_moves_to_partially_refunded(self, disputed_purchase):
        cleared = SettlementLedger.clear_dispute(
            disputed_purchase.id, won=False, lost_amount_cents=4000
        )

        assert cleared.status == PurchaseStatus.PARTIALLY_REFUNDED
        assert cleared.disputed_loss_cents == 4000

    def test_loss_capped_at_remaining_balance(self, db):
        purchase = CompletedPurchaseFactory(
            status=PurchaseStatus.DISPUTED,
            status_before_dispute=PurchaseStatus.PARTIALLY_REFUNDED,
            refunded_amount_cents=6000,
        )

        cleared = SettlementLedger.clear_dispute(
            purchase.id, won=False, lost_amount_cents=10000
        )

        assert cleared.disputed_loss_cents == 4000
        assert cleared.settled_reduction_cents == cleared.gross_amount_cents
        assert cleared.status == PurchaseStatus.REFUNDED

    def test_noop_when_not_disputed(self, completed_purchase):
        cleared = SettlementLedger.clear_dispute(completed_purchase.id, won=False, lost_amount_cents=10000)

        assert cleared.status == PurchaseStatus.COMPLETED
        assert cleared.disputed_loss_cents == 0


# =============================================================================
# Queries & Reporting
# =============================================================================


@pytest.mark.django_db
class TestQueries:
    def test_get_purchase(self, completed_purchase):
        assert SettlementLedger.get_purchase(completed_purchase.id) == completed_purchase

    def test_get_purchase_not_found(self, db):
        with pytest.raises(PurchaseNotFoundError):
            SettlementLedger.get_purchase(uuid.uuid4())

    def test_get_purchase_by_intent(self, completed_purchase):
        found = SettlementLedger.get_purchase_by_intent(
            completed_purchase.stripe_payment_intent_id
        )

        assert found.id == completed_purchase.id

    def test_refundable_balance_subtracts_pending_refunds(self, partially_refunded_purchase):
        RefundRequestFactory(purchase=partially_refunded_purchase, amount_cents=2000)
        RefundRequestFactory(
            purchase=partially_refunded_purchase,
            amount_cents=1000,
            status=RefundStatus.FAILED,
        )

        assert SettlementLedger.refundable_balance(partially_refunded_purchase) == 5000


@pytest.mark.django_db
class TestReporting:
    def test_payee_totals_net_of_refunds_and_losses(self, payee_account):
        CompletedPurchaseFactory(payee=payee_account)
        CompletedPurchaseFactory(
            payee=payee_account,
            status=PurchaseStatus.PARTIALLY_REFUNDED,
            refunded_amount_cents=5000,
        )
        CompletedPurchaseFactory(
            payee=payee_account,
            status=PurchaseStatus.REFUNDED,
            refunded_amount_cents=6000,
            disputed_loss_cents=4000,
        )
        # Not settled: excluded
        PurchaseFactory(payee=payee_account)
        PurchaseFactory(payee=payee_account, status=PurchaseStatus.FAILED)

        totals = SettlementLedger.payee_totals(payee_account)

        assert totals.sales_count == 3
        assert totals.gross_cents == 30000
        assert totals.payee_amount_cents == 3 * 7744
        assert totals.refunded_cents == 11000
        assert totals.disputed_loss_cents == 4000
        # 7744 + (7744 - 3872) + 0
        assert totals.net_earnings_cents == 11616

    def test_payee_totals_empty(self, payee_account):
        totals = SettlementLedger.payee_totals(payee_account)

        assert totals.sales_count == 0
        assert totals.net_earnings_cents == 0

    def test_platform_revenue(self, db):
        CompletedPurchaseFactory()
        CompletedPurchaseFactory(
            status=PurchaseStatus.PARTIALLY_REFUNDED, refunded_amount_cents=1000
        )
        PurchaseFactory(status=PurchaseStatus.FAILED)

        revenue = SettlementLedger.platform_revenue()

        assert revenue.purchase_count == 2
        assert revenue.gross_cents == 20000
        assert revenue.processor_fee_cents == 640
        assert revenue.platform_fee_cents == 3872
        assert revenue.payee_amount_cents == 15488
        assert revenue.refunded_cents == 1000
        assert revenue.disputed_loss_cents == 0

    def test_platform_revenue_window(self, db):
        old = CompletedPurchaseFactory()
        Purchase.objects.filter(id=old.id).update(
            created_at=timezone.now() - timedelta(days=40)
        )
        CompletedPurchaseFactory()

        revenue = SettlementLedger.platform_revenue(
            start=timezone.now() - timedelta(days=30),
            end=timezone.now() + timedelta(minutes=1),
        )

        assert revenue.purchase_count == 1

    def test_platform_revenue_empty(self, db):
        revenue = SettlementLedger.platform_revenue()

        assert revenue.purchase_count == 0
        assert revenue.gross_cents == 0
