"""
Settlement-specific exceptions.

This module maps the settlement error taxonomy onto the core exception
hierarchy so the HTTP layer can translate every error to a status code
without knowing the settlement domain.

Exception Hierarchy:
    ValidationError (core)
    ├── InvalidAmountError - Split or refund arithmetic guard
    └── PayeeNotEligibleError - Payee cannot receive split payments

    NotFoundError (core)
    ├── AppNotFoundError - App id unknown to the catalog
    ├── PurchaseNotFoundError
    ├── PayeeAccountNotFoundError
    ├── RefundRequestNotFoundError
    └── DisputeCaseNotFoundError

    ConflictError (core)
    ├── InvalidTransitionError - Causally impossible state change
    │   └── StaleEventError - Event older than the entity watermark
    ├── EventOutOfOrderError - Event arrived before its prerequisite state
    ├── EvidenceWindowClosedError - Evidence submitted after the deadline
    ├── StaleRecordError - Optimistic locking conflict
    └── LockAcquisitionError - Distributed lock timeout

    InvalidSignatureError - Webhook payload failed verification

    ExternalServiceError (core)
    └── StripeError - Base for all Stripe errors
        ├── StripeCardDeclinedError - Card declined (permanent)
        ├── StripeInsufficientFundsError - Insufficient funds (permanent)
        ├── StripeInvalidAccountError - Invalid Connect account (permanent)
        ├── StripeInvalidRequestError - Invalid request params (permanent)
        ├── StripeRateLimitError - Rate limited (transient, retry)
        ├── StripeAPIUnavailableError - API unavailable (transient, retry)
        └── StripeTimeoutError - Request timeout (transient, retry)

Usage:
    from settlement.exceptions import InvalidAmountError, StaleEventError

    raise InvalidAmountError(
        "Refund exceeds remaining balance",
        details={"requested_cents": 5000, "refundable_cents": 2500},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Validation Exceptions
# =============================================================================


class InvalidAmountError(ValidationError):
    """
    Raised when a money amount fails a split or refund guard.

    Use for:
    - Non-positive or non-integer gross amounts
    - Gross amounts outside the configured charge limits
    - Refunds exceeding the remaining refundable balance
    """

    default_error_code: str = "INVALID_AMOUNT"


class PayeeNotEligibleError(ValidationError):
    """
    Raised when a payee cannot receive split payments.

    The payee's Stripe account must have charges enabled before a
    purchase can be opened against it. This is a business rule
    rejection and is never retried.
    """

    default_error_code: str = "PAYEE_NOT_ELIGIBLE"


# =============================================================================
# Not Found Exceptions
# =============================================================================


class AppNotFoundError(NotFoundError):
    """Raised when the catalog has no price or payee for an app id."""

    default_error_code: str = "APP_NOT_FOUND"


class PurchaseNotFoundError(NotFoundError):
    """Raised when a Purchase lookup fails."""

    default_error_code: str = "PURCHASE_NOT_FOUND"


class PayeeAccountNotFoundError(NotFoundError):
    """Raised when a PayeeAccount lookup fails."""

    default_error_code: str = "PAYEE_ACCOUNT_NOT_FOUND"


class RefundRequestNotFoundError(NotFoundError):
    """Raised when a RefundRequest lookup fails."""

    default_error_code: str = "REFUND_NOT_FOUND"


class DisputeCaseNotFoundError(NotFoundError):
    """Raised when a DisputeCase lookup fails."""

    default_error_code: str = "DISPUTE_NOT_FOUND"


# =============================================================================
# State Exceptions
# =============================================================================


class InvalidTransitionError(ConflictError):
    """
    Raised when a state change is causally impossible.

    Example: a charge.succeeded event arriving after the purchase has
    already been marked failed. The change is rejected and logged for
    manual investigation, never silently coerced.

    Example:
        raise InvalidTransitionError(
            "Cannot complete purchase in 'failed' status",
            details={"current_status": "failed", "target_status": "completed"},
        )
    """

    default_error_code: str = "INVALID_TRANSITION"


class StaleEventError(InvalidTransitionError):
    """
    Raised when an event is older than the last event applied to an entity.

    Each mutable entity keeps a last_event_at watermark taken from the
    Stripe event timestamp. Late replays are rejected instead of
    rolling the entity back.
    """

    default_error_code: str = "STALE_EVENT"


class EventOutOfOrderError(ConflictError):
    """
    Raised when an event arrives before the state it depends on.

    Example: a dispute event for a purchase whose charge.succeeded event
    has not been processed yet. Unlike InvalidTransitionError, the event
    is kept FAILED and replayed by retry_failed_webhooks.
    """

    default_error_code: str = "EVENT_OUT_OF_ORDER"


class EvidenceWindowClosedError(ConflictError):
    """Raised when dispute evidence is submitted after evidence_due_by."""

    default_error_code: str = "EVIDENCE_WINDOW_CLOSED"


class InvalidSignatureError(BaseApplicationError):
    """
    Raised when a webhook payload fails signature verification.

    Unverified payloads are never processed. Always logged, never retried.
    """

    default_error_code: str = "INVALID_SIGNATURE"


# =============================================================================
# Stripe-Specific Exceptions
# =============================================================================


class StripeError(ExternalServiceError):
    """
    Base exception for all Stripe-related errors.

    Provides common attributes for Stripe error handling:
    - stripe_code: Stripe's internal error code
    - decline_code: Card decline code (if applicable)
    - is_retryable: Whether the operation can be retried

    Use is_retryable to determine retry behavior:
    - True: Transient error, safe to retry with backoff
    - False: Permanent error, do not retry
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class StripeCardDeclinedError(StripeError):
    """
    Card was declined by the issuing bank.

    The decline_code attribute contains the specific reason.
    """

    default_error_code: str = "CARD_DECLINED"
    is_retryable: bool = False


class StripeInsufficientFundsError(StripeError):
    """Insufficient funds on the payment method."""

    default_error_code: str = "INSUFFICIENT_FUNDS"
    is_retryable: bool = False


class StripeInvalidAccountError(StripeError):
    """
    The Stripe Connect account is invalid or cannot receive funds.

    Raised for unknown account IDs and accounts that were deauthorized.
    """

    default_error_code: str = "INVALID_STRIPE_ACCOUNT"
    is_retryable: bool = False


class StripeInvalidRequestError(StripeError):
    """
    Invalid parameters sent to Stripe, or the resource does not allow the action.

    Also raised for authentication failures (bad API key), which are
    operational problems rather than caller mistakes.
    """

    default_error_code: str = "STRIPE_INVALID_REQUEST"
    is_retryable: bool = False


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with backoff)
# -----------------------------------------------------------------------------


class StripeRateLimitError(StripeError):
    """Rate limited by Stripe API."""

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """
    Stripe API is temporarily unavailable.

    Covers network connectivity issues and Stripe 5xx responses.
    """

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out.

    The request was sent but no response was received within
    STRIPE_API_TIMEOUT_SECONDS.

    IMPORTANT: The operation may have succeeded on Stripe's side.
    Retries must reuse the same idempotency key.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when an optimistic locking version check fails.

    Example:
        raise StaleRecordError(
            f"Purchase {pk} has been modified",
            details={"pk": str(pk), "expected_version": 3, "current_version": 4},
        )
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Another worker holds the lock for the same entity. Callers may
    retry after a short delay.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


__all__ = [
    "AppNotFoundError",
    "DisputeCaseNotFoundError",
    "EventOutOfOrderError",
    "EvidenceWindowClosedError",
    "InvalidAmountError",
    "InvalidSignatureError",
    "InvalidTransitionError",
    "LockAcquisitionError",
    "PayeeAccountNotFoundError",
    "PayeeNotEligibleError",
    "PurchaseNotFoundError",
    "RefundRequestNotFoundError",
    "StaleEventError",
    "StaleRecordError",
    "StripeAPIUnavailableError",
    "StripeCardDeclinedError",
    "StripeError",
    "StripeInsufficientFundsError",
    "StripeInvalidAccountError",
    "StripeInvalidRequestError",
    "StripeRateLimitError",
    "StripeTimeoutError",
]
