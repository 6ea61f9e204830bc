"""
Webhook reconciler.

Turns Stripe's at-least-once, possibly reordered event stream into
exactly-once effects on the settlement models.

Processing Flow:
    1. Verify the Stripe-Signature header against the raw body
    2. get_or_create the WebhookEvent on stripe_event_id (dedup)
    3. Claim the event (row lock, PENDING/FAILED -> PROCESSING)
    4. Dispatch to the handler registry inside one transaction
    5. Record the outcome:
       - PROCESSED: handler applied the event
       - SKIPPED: unknown type, foreign object, stale or impossible
         transition (reason kept in error_message)
       - FAILED: anything else; the exception propagates so the HTTP
         layer answers 500 and Stripe redelivers, and
         retry_failed_webhooks replays it meanwhile

Usage:
    from settlement.webhooks import WebhookReconciler

    webhook_event = WebhookReconciler().handle(request.body, signature)
"""

from __future__ import annotations

from datetime import datetime, timezone as dt_timezone
from typing import TYPE_CHECKING, Any

from core.exceptions import ValidationError
from core.services import BaseService

from settlement.adapters import get_stripe_adapter
from settlement.exceptions import (
    EventOutOfOrderError,
    InvalidAmountError,
    InvalidTransitionError,
)
from settlement.models import WebhookEvent
from settlement.state_machines import WebhookEventStatus
from settlement.webhooks.handlers import SKIP_ERROR_CODES, dispatch_webhook

if TYPE_CHECKING:
    from settlement.adapters import StripeAdapter


# Acknowledged without effect: replaying them can never succeed
SKIPPABLE_ERRORS = (InvalidTransitionError, InvalidAmountError)


class WebhookReconciler(BaseService):
    """Verifies, deduplicates and applies Stripe webhook events."""

    def __init__(self, stripe_adapter: StripeAdapter | None = None) -> None:
        self.stripe = stripe_adapter or get_stripe_adapter()

    def handle(self, raw_payload: bytes, signature_header: str | None) -> WebhookEvent:
        """
        Verify, record and process one webhook delivery.

        Args:
            raw_payload: Request body exactly as received
            signature_header: Value of the Stripe-Signature header

        Returns:
            The stored WebhookEvent with its final status

        Raises:
            InvalidSignatureError: Missing or invalid signature
            ValidationError: Verified payload without id or type
            Exception: Whatever a handler raised that is not skippable;
                the event is FAILED before the exception propagates
        """
        event_data = self.stripe.verify_webhook_signature(raw_payload, signature_header)

        stripe_event_id = event_data.get("id")
        event_type = event_data.get("type")
        if not stripe_event_id or not event_type:
            raise ValidationError(
                "Webhook event is missing id or type",
                error_code="MALFORMED_WEBHOOK_EVENT",
            )

        webhook_event, created = WebhookEvent.objects.get_or_create(
            stripe_event_id=stripe_event_id,
            defaults={
                "event_type": event_type,
                "payload": event_data,
                "event_created_at": _event_created_at(event_data),
                "status": WebhookEventStatus.PENDING,
            },
        )

        self.get_logger().info(
            f"Received Stripe webhook: {event_type}",
            extra={
                "stripe_event_id": stripe_event_id,
                "event_type": event_type,
                "duplicate": not created,
            },
        )

        if webhook_event.is_done:
            self.get_logger().info(
                "Webhook already handled, acknowledging",
                extra={
                    "stripe_event_id": stripe_event_id,
                    "status": webhook_event.status,
                },
            )
            return webhook_event

        return self.process(webhook_event)

    def process(self, webhook_event: WebhookEvent) -> WebhookEvent:
        """
        Apply a stored event through the handler registry.

        Used for live deliveries and for replays of FAILED events. An
        event already being processed by another worker is returned
        untouched.
        """
        logger = self.get_logger()
        if not self._claim(webhook_event):
            logger.info(
                "Webhook not claimable, leaving as is",
                extra={
                    "stripe_event_id": webhook_event.stripe_event_id,
                    "status": webhook_event.status,
                },
            )
            return webhook_event

        log_context = {
            "webhook_event_id": str(webhook_event.id),
            "stripe_event_id": webhook_event.stripe_event_id,
            "event_type": webhook_event.event_type,
            "retry_count": webhook_event.retry_count,
        }

        try:
            with self.atomic():
                result = dispatch_webhook(webhook_event, self.stripe)

        except SKIPPABLE_ERRORS as e:
            webhook_event.mark_skipped(str(e))
            webhook_event.save()
            logger.warning(
                "Webhook skipped: transition rejected",
                extra={**log_context, "reason": e.message, "error_code": e.error_code},
            )
            return webhook_event

        except EventOutOfOrderError as e:
            webhook_event.mark_failed(str(e))
            webhook_event.save()
            logger.warning(
                "Webhook arrived before its prerequisite, will be redelivered",
                extra={**log_context, "reason": e.message},
            )
            raise

        except Exception as e:
            webhook_event.mark_failed(f"{type(e).__name__}: {e}")
            webhook_event.save()
            logger.exception(
                "Webhook processing failed with exception",
                extra=log_context,
            )
            raise

        if result.success:
            webhook_event.mark_processed()
            webhook_event.save()
            logger.info("Webhook processed successfully", extra=log_context)
        elif result.error_code in SKIP_ERROR_CODES:
            webhook_event.mark_skipped(result.error or result.error_code)
            webhook_event.save()
            logger.info(
                "Webhook skipped",
                extra={**log_context, "reason": result.error, "error_code": result.error_code},
            )
        else:
            error_msg = result.error or "Handler returned failure"
            webhook_event.mark_failed(error_msg)
            webhook_event.save()
            logger.warning(
                f"Webhook handler failed: {error_msg}",
                extra={**log_context, "error_code": result.error_code},
            )

        return webhook_event

    @classmethod
    def _claim(cls, webhook_event: WebhookEvent) -> bool:
        """Move the event to PROCESSING unless it is done or in flight."""
        with cls.atomic():
            locked = WebhookEvent.objects.select_for_update().get(id=webhook_event.id)
            if locked.is_done or locked.status == WebhookEventStatus.PROCESSING:
                webhook_event.status = locked.status
                return False
            locked.mark_processing()
            locked.save(update_fields=["status", "retry_count", "updated_at"])

        webhook_event.status = locked.status
        webhook_event.retry_count = locked.retry_count
        return True


def _event_created_at(event_data: dict[str, Any]) -> datetime | None:
    created = event_data.get("created")
    if not created:
        return None
    try:
        return datetime.fromtimestamp(int(created), tz=dt_timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None
