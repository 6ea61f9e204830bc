"""
Tests for settlement model properties and database constraints.
"""

from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone
from freezegun import freeze_time

from settlement.models import DisputeCase, PayeeAccount, Purchase, WebhookEvent
from settlement.models.webhook_event import MAX_WEBHOOK_RETRIES
from settlement.state_machines import (
    DisputeStatus,
    PurchaseStatus,
    VerificationStatus,
    WebhookEventStatus,
)
from settlement.tests.factories import (
    DisputeCaseFactory,
    PayeeAccountFactory,
    PurchaseFactory,
    RefundRequestFactory,
    WebhookEventFactory,
)


# =============================================================================
# PayeeAccount
# =============================================================================


@pytest.mark.django_db
class TestPayeeAccount:
    def test_str(self, payee_account):
        assert str(payee_account) == (
            f"PayeeAccount({payee_account.stripe_account_id}, verified)"
        )

    def test_version_increments_on_save(self, payee_account):
        assert payee_account.version == 1

        payee_account.email = "new@example.com"
        payee_account.save()

        assert payee_account.version == 2

    def test_can_receive_charges(self, payee_account, pending_payee_account):
        assert payee_account.can_receive_charges is True
        assert pending_payee_account.can_receive_charges is False

    def test_deauthorized_account_cannot_receive_charges(self, db):
        account = PayeeAccountFactory(
            payouts_enabled=False,
            verification_status=VerificationStatus.DEAUTHORIZED,
        )

        assert account.can_receive_charges is False

    @pytest.mark.parametrize(
        "charges, payouts, disabled_reason, expected",
        [
            (True, True, None, VerificationStatus.VERIFIED),
            (True, False, None, VerificationStatus.PENDING),
            (False, False, "requirements.past_due", VerificationStatus.PENDING),
            (False, False, "rejected.fraud", VerificationStatus.REJECTED),
            (True, True, "rejected.other", VerificationStatus.VERIFIED),
        ],
    )
    def test_derive_verification_status(self, charges, payouts, disabled_reason, expected):
        assert (
            PayeeAccount.derive_verification_status(charges, payouts, disabled_reason)
            == expected
        )

    def test_verified_requires_capabilities(self, db):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                PayeeAccountFactory(
                    charges_enabled=False,
                    verification_status=VerificationStatus.VERIFIED,
                )

    def test_one_account_per_owner(self, payee_account):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                PayeeAccountFactory(owner=payee_account.owner)


# =============================================================================
# Purchase
# =============================================================================


@pytest.mark.django_db
class TestPurchase:
    def test_defaults(self, pending_purchase):
        assert pending_purchase.status == PurchaseStatus.PENDING
        assert pending_purchase.refunded_amount_cents == 0
        assert pending_purchase.disputed_loss_cents == 0
        assert pending_purchase.version == 1

    def test_str(self, pending_purchase):
        assert str(pending_purchase) == f"Purchase({pending_purchase.id}, pending, 100.00 USD)"

    def test_settled_reduction(self, db):
        purchase = PurchaseFactory(
            status=PurchaseStatus.PARTIALLY_REFUNDED,
            refunded_amount_cents=2000,
            disputed_loss_cents=500,
        )

        assert purchase.settled_reduction_cents == 2500

    @pytest.mark.parametrize(
        "status, expected",
        [
            (PurchaseStatus.PENDING, False),
            (PurchaseStatus.COMPLETED, True),
            (PurchaseStatus.PARTIALLY_REFUNDED, True),
            (PurchaseStatus.DISPUTED, True),
            (PurchaseStatus.REFUNDED, False),
            (PurchaseStatus.FAILED, False),
        ],
    )
    def test_is_refundable_status(self, db, status, expected):
        assert PurchaseFactory(status=status).is_refundable_status is expected

    def test_split_must_conserve_gross(self, db):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                PurchaseFactory(payee_amount_cents=7000)

    def test_gross_must_be_positive(self, db):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                PurchaseFactory(
                    gross_amount_cents=0,
                    processor_fee_cents=0,
                    platform_fee_cents=0,
                    payee_amount_cents=0,
                )

    def test_refunds_cannot_exceed_gross(self, db):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                PurchaseFactory(
                    status=PurchaseStatus.REFUNDED,
                    refunded_amount_cents=9000,
                    disputed_loss_cents=1001,
                )

    def test_payment_intent_is_unique(self, pending_purchase):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                PurchaseFactory(
                    stripe_payment_intent_id=pending_purchase.stripe_payment_intent_id
                )

    def test_status_is_protected(self, pending_purchase):
        with pytest.raises(AttributeError):
            pending_purchase.status = PurchaseStatus.COMPLETED


# =============================================================================
# RefundRequest
# =============================================================================


@pytest.mark.django_db
class TestRefundRequest:
    def test_pending_by_default(self, db):
        refund = RefundRequestFactory()

        assert refund.is_pending is True
        assert refund.is_terminal is False
        assert refund.stripe_payment_intent_id == refund.purchase.stripe_payment_intent_id

    def test_amount_must_be_positive(self, db):
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                RefundRequestFactory(amount_cents=0)


# =============================================================================
# DisputeCase
# =============================================================================


@pytest.mark.django_db
class TestDisputeCase:
    def test_evidence_window_open_before_deadline(self, db):
        case = DisputeCaseFactory()

        assert case.evidence_window_open is True

    def test_evidence_window_closed_after_deadline(self, db):
        case = DisputeCaseFactory(evidence_due_by=timezone.now() - timedelta(hours=1))

        assert case.evidence_window_open is False

    def test_evidence_window_closes_when_deadline_passes(self, db):
        case = DisputeCaseFactory(
            evidence_due_by=datetime(2026, 5, 1, 12, 0, tzinfo=dt_timezone.utc)
        )

        with freeze_time("2026-05-01 12:00:00"):
            assert case.evidence_window_open is True
        with freeze_time("2026-05-01 12:00:01"):
            assert case.evidence_window_open is False

    def test_evidence_window_open_without_deadline(self, db):
        case = DisputeCaseFactory(evidence_due_by=None)

        assert case.evidence_window_open is True

    def test_evidence_window_closed_for_terminal_case(self, db):
        case = DisputeCaseFactory(status=DisputeStatus.WON)

        assert case.is_terminal is True
        assert case.evidence_window_open is False

    @pytest.mark.parametrize(
        "stripe_status, expected",
        [
            ("needs_response", DisputeStatus.NEEDS_RESPONSE),
            ("warning_under_review", DisputeStatus.WARNING_UNDER_REVIEW),
            ("won", DisputeStatus.WON),
            ("lost", DisputeStatus.LOST),
            ("warning_closed", DisputeStatus.WON),
            ("prevented", DisputeStatus.WON),
            ("charge_refunded", DisputeStatus.LOST),
            ("something_new", None),
            (None, None),
        ],
    )
    def test_normalize_stripe_status(self, stripe_status, expected):
        assert DisputeCase.normalize_stripe_status(stripe_status) == expected

    def test_one_open_dispute_per_purchase(self, db):
        case = DisputeCaseFactory()

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                DisputeCaseFactory(purchase=case.purchase)

    def test_closed_dispute_allows_new_one(self, db):
        closed = DisputeCaseFactory(status=DisputeStatus.WON)

        DisputeCaseFactory(purchase=closed.purchase)

        assert closed.purchase.dispute_cases.count() == 2


# =============================================================================
# WebhookEvent
# =============================================================================


@pytest.mark.django_db
class TestWebhookEvent:
    def test_stripe_event_id_is_unique(self, db):
        event = WebhookEventFactory()

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                WebhookEventFactory(stripe_event_id=event.stripe_event_id)

    def test_mark_processing_increments_retry_count(self, db):
        event = WebhookEventFactory()

        event.mark_processing()

        assert event.status == WebhookEventStatus.PROCESSING
        assert event.retry_count == 1

    def test_mark_processed_clears_error(self, db):
        event = WebhookEventFactory(error_message="old error")

        event.mark_processed()

        assert event.is_done is True
        assert event.processed_at is not None
        assert event.error_message is None

    def test_mark_skipped_keeps_reason(self, db):
        event = WebhookEventFactory()

        event.mark_skipped("Unhandled event type")

        assert event.is_done is True
        assert event.error_message == "Unhandled event type"

    def test_can_retry_until_max_retries(self, db):
        event = WebhookEventFactory(
            status=WebhookEventStatus.FAILED,
            retry_count=MAX_WEBHOOK_RETRIES - 1,
        )
        assert event.can_retry is True

        event.retry_count = MAX_WEBHOOK_RETRIES
        assert event.can_retry is False

    def test_data_object_and_object_id(self, db):
        event = WebhookEventFactory(
            payload={"data": {"object": {"id": "re_123", "status": "succeeded"}}}
        )

        assert event.data_object == {"id": "re_123", "status": "succeeded"}
        assert event.get_object_id() == "re_123"

    def test_data_object_tolerates_malformed_payload(self, db):
        event = WebhookEventFactory(payload={"data": None})

        assert event.data_object == {}
        assert event.get_object_id() is None

    def test_event_time_falls_back_to_receipt_time(self, db):
        event = WebhookEventFactory(event_created_at=None)

        assert event.event_time == event.created_at

    @freeze_time("2026-03-31 12:00:00")
    def test_retention_cutoff(self, settings):
        settings.SETTLEMENT_WEBHOOK_RETENTION_DAYS = 30

        cutoff = WebhookEvent.retention_cutoff()

        assert cutoff == datetime(2026, 3, 1, 12, 0, tzinfo=dt_timezone.utc)
