"""
WebhookEvent model for Stripe webhook deduplication.

Stores every verified webhook event received from Stripe. The unique
stripe_event_id turns Stripe's at-least-once delivery into at-most-once
effect. Rows are kept for SETTLEMENT_WEBHOOK_RETENTION_DAYS, well beyond
Stripe's redelivery window, then removed by cleanup_old_webhooks.
"""

from __future__ import annotations

from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from settlement.state_machines import WebhookEventStatus

MAX_WEBHOOK_RETRIES = 5


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks Stripe webhook events for idempotent processing.

    Processing Flow:
        1. Webhook arrives, verify Stripe signature
        2. Insert/get WebhookEvent with stripe_event_id
        3. If exists and PROCESSED or SKIPPED -> return 200 (duplicate)
        4. Set status to PROCESSING
        5. Route to appropriate handler
        6. Set status to PROCESSED, SKIPPED or FAILED
        7. If FAILED, retry_failed_webhooks picks it up later

    SKIPPED means the event was acknowledged but not applied: an unknown
    event type, a stale or causally impossible transition, or an object
    that does not belong to this platform. The reason is kept in
    error_message.

    Note:
        No version field needed - the unique stripe_event_id is the guard.
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    stripe_event_id = models.CharField(
        max_length=255,
        unique=True,
        db_index=True,
        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Stripe event type (e.g., 'payment_intent.succeeded')",
    )

    event_created_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When Stripe created the event (used for ordering)",
    )

    payload = models.JSONField(
        help_text="Full webhook payload from Stripe (JSON)",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Current processing status",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When event processing finished (processed or skipped)",
    )

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Failure or skip reason",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(
                fields=["status", "created_at"],
                name="settlement__status_6e0a13_idx",
            ),
            models.Index(
                fields=["event_type", "created_at"],
                name="settlement__event_t_4f9b27_idx",
            ),
            models.Index(
                fields=["status", "retry_count"],
                name="settlement__status_a41d5e_idx",
            ),
        ]

    def __str__(self) -> str:
        """Return string representation with event ID and type."""
        return f"WebhookEvent({self.stripe_event_id}, {self.event_type})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_done(self) -> bool:
        """Check if event needs no further processing."""
        return self.status in (WebhookEventStatus.PROCESSED, WebhookEventStatus.SKIPPED)

    @property
    def is_failed(self) -> bool:
        return self.status == WebhookEventStatus.FAILED

    @property
    def can_retry(self) -> bool:
        """Check if event can be retried (failed with retry count < max)."""
        return self.is_failed and self.retry_count < MAX_WEBHOOK_RETRIES

    @property
    def data_object(self) -> dict:
        """The Stripe object the event is about (payload.data.object)."""
        try:
            return self.payload.get("data", {}).get("object", {}) or {}
        except (AttributeError, TypeError):
            return {}

    @property
    def event_time(self):
        """Event timestamp for watermark comparisons (falls back to receipt time)."""
        return self.event_created_at or self.created_at or timezone.now()

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def mark_processing(self) -> None:
        """
        Mark event as being processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        """
        Mark event as successfully processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_skipped(self, reason: str) -> None:
        """
        Mark event as acknowledged without effect.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.SKIPPED
        self.processed_at = timezone.now()
        self.error_message = reason

    def mark_failed(self, error_message: str) -> None:
        """
        Mark event as failed with error message.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message

    def get_object_id(self) -> str | None:
        """
        Extract the primary object ID from the webhook payload.

        Returns:
            The object ID if found, None otherwise
        """
        return self.data_object.get("id")

    @classmethod
    def retention_cutoff(cls):
        """Oldest processed_at kept by the dedup table."""
        days = getattr(settings, "SETTLEMENT_WEBHOOK_RETENTION_DAYS", 90)
        return timezone.now() - timedelta(days=days)
