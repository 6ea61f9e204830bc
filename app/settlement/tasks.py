"""
Celery tasks for settlement.

This module provides async tasks for:
- Replaying Stripe webhook events that failed
- Periodic cleanup of stuck and expired webhook events
- Polling Stripe for payee accounts still being verified
- Pulling the status of refunds whose webhook never arrived

Schedules are registered with django-celery-beat by migration
0002_register_periodic_tasks.

Usage:
    from settlement.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.utils import timezone

from settlement.exceptions import InvalidTransitionError, StripeError
from settlement.models import PayeeAccount, RefundRequest, WebhookEvent
from settlement.models.webhook_event import MAX_WEBHOOK_RETRIES
from settlement.state_machines import RefundStatus, VerificationStatus, WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STUCK_PROCESSING_THRESHOLD_MINUTES = 30
RETRY_BATCH_SIZE = 100
PENDING_REFUND_AGE_MINUTES = 60


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_WEBHOOK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Replay a stored Stripe webhook event.

    Delegates to WebhookReconciler.process, which is idempotent: events
    already processed, skipped or in flight are left alone.

    Args:
        webhook_event_id: UUID of the WebhookEvent to process

    Returns:
        Dict with the resulting event status

    Raises:
        Exception: Re-raised to trigger Celery retry mechanism
    """
    # Import here to avoid circular imports
    from settlement.webhooks.reconciler import WebhookReconciler

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.is_done:
        return {
            "status": "already_handled",
            "webhook_event_id": str(webhook_event_id),
        }

    webhook_event = WebhookReconciler().process(webhook_event)

    return {
        "status": webhook_event.status,
        "webhook_event_id": str(webhook_event_id),
        "stripe_event_id": webhook_event.stripe_event_id,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to retry failed webhook events.

    Finds failed webhooks that haven't exceeded max retries and
    re-queues them for processing, oldest first.

    Returns:
        Dict with count of webhooks queued for retry
    """
    failed_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=MAX_WEBHOOK_RETRIES,
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in failed_webhooks:
        process_webhook_event.delay(str(webhook.id))
        queued_count += 1
        logger.info(
            "Queued failed webhook for retry",
            extra={
                "webhook_event_id": str(webhook.id),
                "stripe_event_id": webhook.stripe_event_id,
                "retry_count": webhook.retry_count,
            },
        )

    if queued_count:
        logger.info(
            f"Queued {queued_count} failed webhooks for retry",
            extra={"queued_count": queued_count},
        )

    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Periodic task to reset stuck webhooks.

    Webhooks left in PROCESSING by a crashed worker are reset to FAILED
    so retry_failed_webhooks picks them up.

    Returns:
        Dict with count of webhooks reset
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)

    stuck_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        stuck_since = webhook.updated_at
        webhook.mark_failed("Processing timed out - reset for retry")
        webhook.save()
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": str(webhook.id),
                "stripe_event_id": webhook.stripe_event_id,
                "stuck_since": stuck_since.isoformat(),
            },
        )

    return {"reset_count": reset_count}


@shared_task
def cleanup_old_webhooks(days: int | None = None) -> dict:
    """
    Periodic task expiring the webhook dedup table.

    Removes processed and skipped events older than the retention
    window. Failed events are kept for investigation.

    Args:
        days: Override SETTLEMENT_WEBHOOK_RETENTION_DAYS

    Returns:
        Dict with count of webhooks deleted
    """
    if days is None:
        cutoff = WebhookEvent.retention_cutoff()
    else:
        cutoff = timezone.now() - timedelta(days=days)

    deleted_count, _ = WebhookEvent.objects.filter(
        status__in=[WebhookEventStatus.PROCESSED, WebhookEventStatus.SKIPPED],
        processed_at__lt=cutoff,
    ).delete()

    if deleted_count > 0:
        logger.info(
            f"Deleted {deleted_count} old webhook events",
            extra={
                "deleted_count": deleted_count,
                "cutoff_date": cutoff.isoformat(),
            },
        )

    return {"deleted_count": deleted_count}


# =============================================================================
# Polling Safety Nets
# =============================================================================


@shared_task
def refresh_pending_payee_accounts() -> dict:
    """
    Poll Stripe for payee accounts that are not verified yet.

    Complements account.updated webhooks. Accounts that Stripe cannot
    return are logged and left for the next run.

    Returns:
        Dict with refreshed and failed counts
    """
    from settlement.services import PayeeAccountRegistry

    registry = PayeeAccountRegistry()
    refreshed = failed = 0

    pending_ids = PayeeAccount.objects.filter(
        verification_status=VerificationStatus.PENDING,
    ).values_list("stripe_account_id", flat=True)

    for stripe_account_id in pending_ids:
        try:
            registry.refresh_account_status(stripe_account_id)
            refreshed += 1
        except StripeError as e:
            failed += 1
            logger.warning(
                "Could not refresh payee account",
                extra={
                    "stripe_account_id": stripe_account_id,
                    "error_code": e.error_code,
                },
            )

    return {"refreshed": refreshed, "failed": failed}


@shared_task
def sync_pending_refunds(older_than_minutes: int = PENDING_REFUND_AGE_MINUTES) -> dict:
    """
    Pull Stripe status for refunds still pending after a while.

    Covers lost refund webhooks and refund requests whose Stripe call
    ended ambiguously (the create call is replayed with its original
    idempotency key).

    Returns:
        Dict with synced and failed counts
    """
    from settlement.services import RefundManager

    manager = RefundManager()
    synced = failed = 0
    threshold = timezone.now() - timedelta(minutes=older_than_minutes)

    pending_ids = RefundRequest.objects.filter(
        status=RefundStatus.PENDING,
        created_at__lt=threshold,
    ).values_list("id", flat=True)

    for refund_id in pending_ids:
        try:
            manager.sync_refund_status(refund_id)
            synced += 1
        except (StripeError, InvalidTransitionError) as e:
            failed += 1
            logger.warning(
                "Could not sync refund status",
                extra={"refund_id": str(refund_id), "error_code": e.error_code},
            )

    return {"synced": synced, "failed": failed}
