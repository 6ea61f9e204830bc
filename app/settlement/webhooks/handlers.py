"""
Webhook event handlers for Stripe events.

This module provides a handler registry and implementations for
applying Stripe events to the settlement models.

Handlers receive the stored WebhookEvent and the StripeAdapter the
reconciler was built with, and return a ServiceResult. A failure result
whose error_code is in SKIP_ERROR_CODES means the event is acknowledged
without effect (an object this platform does not own, or a payload that
will never become processable).

Domain exceptions raised by the services propagate to the reconciler,
which decides between skipping and failing the event.

Usage:
    from settlement.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event, stripe_adapter) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event, stripe_adapter)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from core.helpers import parse_uuid
from core.services import ServiceResult

from settlement.adapters import DisputeResult, RefundResult
from settlement.exceptions import (
    PayeeAccountNotFoundError,
    PurchaseNotFoundError,
    StaleEventError,
)
from settlement.models import DisputeCase, Purchase, WebhookEvent
from settlement.services import (
    DisputeManager,
    PayeeAccountRegistry,
    RefundManager,
    SettlementLedger,
)
from settlement.state_machines import PurchaseStatus, RefundStatus

if TYPE_CHECKING:
    from settlement.adapters import StripeAdapter


logger = logging.getLogger(__name__)

Handler = Callable[[WebhookEvent, "StripeAdapter | None"], ServiceResult]

UNHANDLED_EVENT_TYPE = "UNHANDLED_EVENT_TYPE"
INVALID_WEBHOOK_PAYLOAD = "INVALID_WEBHOOK_PAYLOAD"
PURCHASE_NOT_FOUND = "PURCHASE_NOT_FOUND"
PAYEE_ACCOUNT_NOT_FOUND = "PAYEE_ACCOUNT_NOT_FOUND"
DISPUTE_CHARGE_UNKNOWN = "DISPUTE_CHARGE_UNKNOWN"

SKIP_ERROR_CODES = frozenset(
    {
        UNHANDLED_EVENT_TYPE,
        INVALID_WEBHOOK_PAYLOAD,
        PURCHASE_NOT_FOUND,
        PAYEE_ACCOUNT_NOT_FOUND,
        DISPUTE_CHARGE_UNKNOWN,
    }
)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Handler] = {}


def register_handler(*event_types: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    One handler may serve several event types that carry the same object.

    Usage:
        @register_handler("payment_intent.succeeded", "charge.succeeded")
        def handle_charge_succeeded(webhook_event, stripe_adapter) -> ServiceResult:
            ...
    """

    def decorator(func: Handler) -> Handler:
        for event_type in event_types:
            WEBHOOK_HANDLERS[event_type] = func
            logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(
    webhook_event: WebhookEvent,
    stripe_adapter: StripeAdapter | None = None,
) -> ServiceResult:
    """
    Dispatch a webhook event to the appropriate handler.

    Unknown event types return a failure with UNHANDLED_EVENT_TYPE so the
    reconciler can acknowledge them as skipped.

    Args:
        webhook_event: The WebhookEvent to process
        stripe_adapter: Adapter passed on to the services

    Returns:
        ServiceResult from the handler
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.failure(
            f"Unhandled event type: {webhook_event.event_type}",
            error_code=UNHANDLED_EVENT_TYPE,
        )

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )

    return handler(webhook_event, stripe_adapter)


# =============================================================================
# Charge Handlers
# =============================================================================


def _charge_references(webhook_event: WebhookEvent) -> tuple[str | None, str | None]:
    """(payment_intent_id, charge_id) for a payment_intent.* or charge.* event."""
    data_object = webhook_event.data_object
    if webhook_event.event_type.startswith("charge."):
        return data_object.get("payment_intent"), data_object.get("id")
    return data_object.get("id"), data_object.get("latest_charge")


def _ensure_intent_attached(webhook_event: WebhookEvent, payment_intent_id: str) -> None:
    """
    Attach the intent to its purchase when the event beats the checkout commit.

    The PaymentIntent metadata carries purchase_id; a pending purchase that
    has no intent yet gets it from the event.
    """
    if Purchase.objects.filter(stripe_payment_intent_id=payment_intent_id).exists():
        return

    purchase_id = parse_uuid(
        (webhook_event.data_object.get("metadata") or {}).get("purchase_id")
    )
    if purchase_id is None:
        return

    purchase = Purchase.objects.filter(
        id=purchase_id,
        status=PurchaseStatus.PENDING,
        stripe_payment_intent_id__isnull=True,
    ).first()
    if purchase is not None:
        SettlementLedger.attach_payment_intent(purchase.id, payment_intent_id)
        logger.info(
            "Attached PaymentIntent from webhook metadata",
            extra={
                "purchase_id": str(purchase.id),
                "payment_intent_id": payment_intent_id,
                "stripe_event_id": webhook_event.stripe_event_id,
            },
        )


def _purchase_not_found(webhook_event: WebhookEvent, payment_intent_id: str) -> ServiceResult:
    logger.warning(
        "Purchase not found for payment_intent_id",
        extra={
            "payment_intent_id": payment_intent_id,
            "stripe_event_id": webhook_event.stripe_event_id,
        },
    )
    return ServiceResult.failure(
        f"Purchase not found for intent: {payment_intent_id}",
        error_code=PURCHASE_NOT_FOUND,
    )


def _missing_field(webhook_event: WebhookEvent, field: str) -> ServiceResult:
    logger.error(
        f"{webhook_event.event_type}: Could not extract {field}",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )
    return ServiceResult.failure(
        f"Could not extract {field} from webhook",
        error_code=INVALID_WEBHOOK_PAYLOAD,
    )


@register_handler("payment_intent.succeeded", "charge.succeeded")
def handle_charge_succeeded(
    webhook_event: WebhookEvent,
    stripe_adapter: StripeAdapter | None = None,
) -> ServiceResult:
    """
    Handle a successful charge.

    Both payment_intent.succeeded and charge.succeeded confirm the same
    purchase; whichever arrives second is a no-op.
    """
    payment_intent_id, charge_id = _charge_references(webhook_event)
    if not payment_intent_id:
        return _missing_field(webhook_event, "payment_intent_id")

    logger.info(
        f"Processing {webhook_event.event_type}",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "payment_intent_id": payment_intent_id,
        },
    )

    _ensure_intent_attached(webhook_event, payment_intent_id)
    try:
        purchase = SettlementLedger.mark_completed(
            payment_intent_id,
            event_at=webhook_event.event_time,
            charge_id=charge_id,
        )
    except PurchaseNotFoundError:
        return _purchase_not_found(webhook_event, payment_intent_id)

    return ServiceResult.success(purchase)


@register_handler(
    "payment_intent.payment_failed",
    "payment_intent.canceled",
    "charge.failed",
)
def handle_charge_failed(
    webhook_event: WebhookEvent,
    stripe_adapter: StripeAdapter | None = None,
) -> ServiceResult:
    """Handle a failed or canceled charge for a pending purchase."""
    payment_intent_id, _ = _charge_references(webhook_event)
    if not payment_intent_id:
        return _missing_field(webhook_event, "payment_intent_id")

    data_object = webhook_event.data_object
    last_error = data_object.get("last_payment_error") or {}
    reason = (
        last_error.get("message")
        or data_object.get("failure_message")
        or data_object.get("cancellation_reason")
        or "Payment failed"
    )

    logger.info(
        f"Processing {webhook_event.event_type}",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "payment_intent_id": payment_intent_id,
            "reason": reason,
        },
    )

    _ensure_intent_attached(webhook_event, payment_intent_id)
    try:
        purchase = SettlementLedger.mark_failed(
            payment_intent_id,
            reason=reason,
            event_at=webhook_event.event_time,
        )
    except PurchaseNotFoundError:
        return _purchase_not_found(webhook_event, payment_intent_id)

    return ServiceResult.success(purchase)


# =============================================================================
# Refund Handlers
# =============================================================================


@register_handler(
    "refund.created",
    "refund.updated",
    "refund.failed",
    "charge.refund.updated",
)
def handle_refund_event(
    webhook_event: WebhookEvent,
    stripe_adapter: StripeAdapter | None = None,
) -> ServiceResult:
    """Mirror the refund object carried by the event onto its RefundRequest."""
    if not webhook_event.get_object_id():
        return _missing_field(webhook_event, "refund_id")

    result = RefundResult.from_dict(webhook_event.data_object)
    refund = RefundManager(stripe_adapter).apply_processor_refund(
        result, event_at=webhook_event.event_time
    )

    if refund is None:
        return _purchase_not_found(webhook_event, result.payment_intent_id or "")

    return ServiceResult.success(refund)


@register_handler("charge.refunded")
def handle_charge_refunded(
    webhook_event: WebhookEvent,
    stripe_adapter: StripeAdapter | None = None,
) -> ServiceResult:
    """
    Apply the refunds of a refunded charge.

    The charge lists its refunds under ``refunds.data`` only on API
    versions that still embed them. Without that list, every pending
    refund the purchase knows about is re-read from Stripe.
    """
    charge = webhook_event.data_object
    payment_intent_id = charge.get("payment_intent")
    if not payment_intent_id:
        return _missing_field(webhook_event, "payment_intent")

    purchase = Purchase.objects.filter(stripe_payment_intent_id=payment_intent_id).first()
    if purchase is None:
        return _purchase_not_found(webhook_event, payment_intent_id)

    manager = RefundManager(stripe_adapter)
    embedded = (charge.get("refunds") or {}).get("data") or []
    applied = []

    if embedded:
        for refund_data in embedded:
            result = RefundResult.from_dict(
                {**refund_data, "payment_intent": refund_data.get("payment_intent") or payment_intent_id}
            )
            try:
                refund = manager.apply_processor_refund(
                    result, event_at=webhook_event.event_time
                )
            except StaleEventError:
                logger.info(
                    "Refund already newer than charge event",
                    extra={
                        "stripe_event_id": webhook_event.stripe_event_id,
                        "stripe_refund_id": result.id,
                    },
                )
                continue
            if refund is not None:
                applied.append(refund)
    else:
        pending = purchase.refund_requests.filter(status=RefundStatus.PENDING)
        for refund_id in pending.values_list("id", flat=True):
            applied.append(manager.sync_refund_status(refund_id))

    logger.info(
        "Charge refund applied",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "purchase_id": str(purchase.id),
            "refund_count": len(applied),
        },
    )
    return ServiceResult.success(applied)


# =============================================================================
# Dispute Handlers
# =============================================================================


def _dispute_result(
    webhook_event: WebhookEvent,
    case: DisputeCase | None,
) -> ServiceResult:
    if case is None:
        return ServiceResult.failure(
            "Dispute is for a charge this platform does not know",
            error_code=DISPUTE_CHARGE_UNKNOWN,
        )
    return ServiceResult.success(case)


@register_handler("charge.dispute.created")
def handle_dispute_created(
    webhook_event: WebhookEvent,
    stripe_adapter: StripeAdapter | None = None,
) -> ServiceResult:
    if not webhook_event.get_object_id():
        return _missing_field(webhook_event, "dispute_id")

    case = DisputeManager(stripe_adapter).on_dispute_opened(
        DisputeResult.from_dict(webhook_event.data_object),
        event_at=webhook_event.event_time,
    )
    return _dispute_result(webhook_event, case)


@register_handler("charge.dispute.updated")
def handle_dispute_updated(
    webhook_event: WebhookEvent,
    stripe_adapter: StripeAdapter | None = None,
) -> ServiceResult:
    if not webhook_event.get_object_id():
        return _missing_field(webhook_event, "dispute_id")

    case = DisputeManager(stripe_adapter).on_dispute_updated(
        DisputeResult.from_dict(webhook_event.data_object),
        event_at=webhook_event.event_time,
    )
    return _dispute_result(webhook_event, case)


@register_handler("charge.dispute.closed")
def handle_dispute_closed(
    webhook_event: WebhookEvent,
    stripe_adapter: StripeAdapter | None = None,
) -> ServiceResult:
    """Handle the final outcome (won or lost) of a dispute."""
    if not webhook_event.get_object_id():
        return _missing_field(webhook_event, "dispute_id")

    case = DisputeManager(stripe_adapter).on_dispute_closed(
        DisputeResult.from_dict(webhook_event.data_object),
        event_at=webhook_event.event_time,
    )
    return _dispute_result(webhook_event, case)


# =============================================================================
# Connect Account Handlers
# =============================================================================


def _payee_not_found(webhook_event: WebhookEvent, account_id: str) -> ServiceResult:
    logger.info(
        "PayeeAccount not found for Stripe account (OK)",
        extra={
            "stripe_account_id": account_id,
            "stripe_event_id": webhook_event.stripe_event_id,
        },
    )
    return ServiceResult.failure(
        f"PayeeAccount not found: {account_id}",
        error_code=PAYEE_ACCOUNT_NOT_FOUND,
    )


@register_handler("account.updated")
def handle_account_updated(
    webhook_event: WebhookEvent,
    stripe_adapter: StripeAdapter | None = None,
) -> ServiceResult:
    """
    Handle a Connect account capability or verification change.

    The account is re-read from Stripe rather than taken from the payload,
    so out-of-order account.updated events always converge on the latest
    state.
    """
    account_id = webhook_event.get_object_id()
    if not account_id:
        return _missing_field(webhook_event, "account_id")

    try:
        account = PayeeAccountRegistry(stripe_adapter).refresh_account_status(account_id)
    except PayeeAccountNotFoundError:
        return _payee_not_found(webhook_event, account_id)

    return ServiceResult.success(account)


@register_handler("account.application.deauthorized")
def handle_account_deauthorized(
    webhook_event: WebhookEvent,
    stripe_adapter: StripeAdapter | None = None,
) -> ServiceResult:
    """Handle a payee disconnecting the platform from their account."""
    # Connect events name the account at the top level of the event
    account_id = webhook_event.payload.get("account")
    if not account_id:
        return _missing_field(webhook_event, "account")

    try:
        account = PayeeAccountRegistry(stripe_adapter).mark_deauthorized(account_id)
    except PayeeAccountNotFoundError:
        return _payee_not_found(webhook_event, account_id)

    return ServiceResult.success(account)
