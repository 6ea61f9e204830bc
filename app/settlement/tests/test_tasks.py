"""
Tests for settlement Celery tasks.

Tasks are called directly (synchronously). Services build their adapter
through get_stripe_adapter, which is patched to return mock_stripe.
"""

import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from settlement.adapters import AccountResult, RefundResult
from settlement.exceptions import EventOutOfOrderError, StripeAPIUnavailableError
from settlement.models import PayeeAccount, Purchase, RefundRequest, WebhookEvent
from settlement.models.webhook_event import MAX_WEBHOOK_RETRIES
from settlement.state_machines import (
    PurchaseStatus,
    RefundStatus,
    VerificationStatus,
    WebhookEventStatus,
)
from settlement.tasks import (
    cleanup_old_webhooks,
    cleanup_stuck_webhooks,
    process_webhook_event,
    refresh_pending_payee_accounts,
    retry_failed_webhooks,
    sync_pending_refunds,
)
from settlement.tests.factories import (
    PayeeAccountFactory,
    RefundRequestFactory,
    WebhookEventFactory,
)


@pytest.fixture
def stripe_everywhere(mocker, mock_stripe):
    """Route every service's default adapter to mock_stripe."""
    for module in (
        "settlement.webhooks.reconciler",
        "settlement.services.payee_registry",
        "settlement.services.refund_manager",
    ):
        mocker.patch(f"{module}.get_stripe_adapter", return_value=mock_stripe)
    return mock_stripe


def succeeded_event_for(purchase, **kwargs):
    event_id = f"evt_{uuid.uuid4().hex[:12]}"
    return WebhookEventFactory(
        stripe_event_id=event_id,
        event_type="payment_intent.succeeded",
        payload={
            "id": event_id,
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": purchase.stripe_payment_intent_id}},
        },
        **kwargs,
    )


# =============================================================================
# process_webhook_event
# =============================================================================


@pytest.mark.django_db
class TestProcessWebhookEvent:
    def test_processes_failed_event(self, stripe_everywhere, pending_purchase):
        event = succeeded_event_for(
            pending_purchase, status=WebhookEventStatus.FAILED, retry_count=1
        )

        result = process_webhook_event(str(event.id))

        assert result["status"] == WebhookEventStatus.PROCESSED
        assert result["stripe_event_id"] == event.stripe_event_id
        assert Purchase.objects.get(id=pending_purchase.id).status == PurchaseStatus.COMPLETED

    def test_already_handled(self, stripe_everywhere, completed_purchase):
        event = succeeded_event_for(completed_purchase, status=WebhookEventStatus.PROCESSED)

        result = process_webhook_event(str(event.id))

        assert result["status"] == "already_handled"

    def test_not_found(self, stripe_everywhere, db):
        result = process_webhook_event(str(uuid.uuid4()))

        assert result["status"] == "not_found"

    def test_failure_propagates_for_retry(self, stripe_everywhere, pending_purchase):
        RefundRequestFactory(purchase=pending_purchase, stripe_refund_id="re_early")
        event = WebhookEventFactory(
            event_type="refund.updated",
            status=WebhookEventStatus.FAILED,
            payload={
                "data": {
                    "object": {
                        "id": "re_early",
                        "amount": 5000,
                        "currency": "usd",
                        "status": "succeeded",
                    }
                }
            },
        )

        with pytest.raises(EventOutOfOrderError):
            process_webhook_event(str(event.id))

        assert WebhookEvent.objects.get(id=event.id).status == WebhookEventStatus.FAILED


# =============================================================================
# retry_failed_webhooks
# =============================================================================


@pytest.mark.django_db
class TestRetryFailedWebhooks:
    def test_queues_retryable_failures(self):
        retryable = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=1)
        WebhookEventFactory(
            status=WebhookEventStatus.FAILED, retry_count=MAX_WEBHOOK_RETRIES
        )
        WebhookEventFactory(status=WebhookEventStatus.PROCESSED)
        WebhookEventFactory(status=WebhookEventStatus.PENDING)

        with patch("settlement.tasks.process_webhook_event.delay") as mock_delay:
            result = retry_failed_webhooks()

        assert result["queued_count"] == 1
        mock_delay.assert_called_once_with(str(retryable.id))

    def test_nothing_to_retry(self):
        with patch("settlement.tasks.process_webhook_event.delay") as mock_delay:
            result = retry_failed_webhooks()

        assert result["queued_count"] == 0
        mock_delay.assert_not_called()


# =============================================================================
# Cleanup
# =============================================================================


@pytest.mark.django_db
class TestCleanupStuckWebhooks:
    def test_resets_old_processing_events(self):
        stuck = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)
        fresh = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)
        WebhookEvent.objects.filter(id=stuck.id).update(
            updated_at=timezone.now() - timedelta(hours=1)
        )

        result = cleanup_stuck_webhooks()

        assert result["reset_count"] == 1
        stuck = WebhookEvent.objects.get(id=stuck.id)
        assert stuck.status == WebhookEventStatus.FAILED
        assert "timed out" in stuck.error_message
        assert WebhookEvent.objects.get(id=fresh.id).status == WebhookEventStatus.PROCESSING


@pytest.mark.django_db
class TestCleanupOldWebhooks:
    def test_deletes_done_events_past_retention(self):
        old_time = timezone.now() - timedelta(days=100)
        old_processed = WebhookEventFactory(
            status=WebhookEventStatus.PROCESSED, processed_at=old_time
        )
        old_skipped = WebhookEventFactory(
            status=WebhookEventStatus.SKIPPED, processed_at=old_time
        )
        old_failed = WebhookEventFactory(status=WebhookEventStatus.FAILED)
        recent = WebhookEventFactory(
            status=WebhookEventStatus.PROCESSED, processed_at=timezone.now()
        )

        result = cleanup_old_webhooks(days=90)

        assert result["deleted_count"] == 2
        remaining = set(WebhookEvent.objects.values_list("id", flat=True))
        assert remaining == {old_failed.id, recent.id}
        assert old_processed.id not in remaining
        assert old_skipped.id not in remaining

    def test_uses_retention_setting(self, settings):
        settings.SETTLEMENT_WEBHOOK_RETENTION_DAYS = 7
        WebhookEventFactory(
            status=WebhookEventStatus.PROCESSED,
            processed_at=timezone.now() - timedelta(days=8),
        )

        assert cleanup_old_webhooks()["deleted_count"] == 1


# =============================================================================
# Polling Safety Nets
# =============================================================================


@pytest.mark.django_db
class TestRefreshPendingPayeeAccounts:
    def test_refreshes_pending_accounts_only(self, stripe_everywhere, pending_payee_account, payee_account):
        stripe_everywhere.retrieve_account.return_value = AccountResult(
            id=pending_payee_account.stripe_account_id,
            charges_enabled=True,
            payouts_enabled=True,
            details_submitted=True,
        )

        result = refresh_pending_payee_accounts()

        assert result == {"refreshed": 1, "failed": 0}
        stripe_everywhere.retrieve_account.assert_called_once_with(
            pending_payee_account.stripe_account_id
        )
        account = PayeeAccount.objects.get(id=pending_payee_account.id)
        assert account.verification_status == VerificationStatus.VERIFIED

    def test_stripe_failure_counted_and_skipped(self, stripe_everywhere, db):
        PayeeAccountFactory(
            charges_enabled=False,
            payouts_enabled=False,
            verification_status=VerificationStatus.PENDING,
        )
        PayeeAccountFactory(
            charges_enabled=False,
            payouts_enabled=False,
            verification_status=VerificationStatus.PENDING,
        )
        stripe_everywhere.retrieve_account.side_effect = StripeAPIUnavailableError("down")

        result = refresh_pending_payee_accounts()

        assert result == {"refreshed": 0, "failed": 2}


@pytest.mark.django_db
class TestSyncPendingRefunds:
    def test_syncs_old_pending_refunds(self, stripe_everywhere, completed_purchase):
        old = RefundRequestFactory(
            purchase=completed_purchase, amount_cents=3000, stripe_refund_id="re_old"
        )
        RefundRequest.objects.filter(id=old.id).update(
            created_at=timezone.now() - timedelta(hours=2)
        )
        RefundRequestFactory(
            purchase=completed_purchase, amount_cents=1000, stripe_refund_id="re_new"
        )
        stripe_everywhere.retrieve_refund.return_value = RefundResult(
            id="re_old", amount_cents=3000, currency="usd", status="succeeded"
        )

        result = sync_pending_refunds()

        assert result == {"synced": 1, "failed": 0}
        stripe_everywhere.retrieve_refund.assert_called_once_with("re_old")
        assert RefundRequest.objects.get(id=old.id).status == RefundStatus.SUCCEEDED
        purchase = Purchase.objects.get(id=completed_purchase.id)
        assert purchase.refunded_amount_cents == 3000

    def test_stripe_failure_counted(self, stripe_everywhere, completed_purchase):
        old = RefundRequestFactory(purchase=completed_purchase, stripe_refund_id="re_old")
        RefundRequest.objects.filter(id=old.id).update(
            created_at=timezone.now() - timedelta(hours=2)
        )
        stripe_everywhere.retrieve_refund.side_effect = StripeAPIUnavailableError("down")

        result = sync_pending_refunds()

        assert result == {"synced": 0, "failed": 1}
        assert RefundRequest.objects.get(id=old.id).is_pending
