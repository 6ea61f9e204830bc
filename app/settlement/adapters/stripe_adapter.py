"""
Stripe API adapter for settlement operations.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions. All Stripe calls go through this adapter to
ensure consistent error handling, timeouts, idempotency, and
observability.

Features:
- Configurable timeouts on all API calls
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Idempotency keys on every POST
- Bounded retries with backoff for reads and idempotency-keyed writes

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_VERSION: Pinned API version (optional)
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: Max retry attempts for retryable calls (default: 3)

Usage:
    from settlement.adapters import get_stripe_adapter, CreatePaymentIntentParams

    adapter = get_stripe_adapter()
    result = adapter.create_payment_intent(
        CreatePaymentIntentParams(
            amount_cents=1000,
            currency="usd",
            destination_account="acct_xxx",
            application_fee_cents=429,
            idempotency_key="purchase_intent:<purchase_id>:1:<hash>",
        )
    )
"""

from __future__ import annotations

import functools
import hashlib
import json
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from settlement.exceptions import (
    InvalidSignatureError,
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeError,
    StripeInsufficientFundsError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)

if TYPE_CHECKING:
    from collections.abc import Callable


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreatePaymentIntentParams:
    """
    Parameters for creating a destination-charge PaymentIntent.

    Attributes:
        amount_cents: Gross amount in smallest currency unit (e.g., cents)
        currency: ISO 4217 currency code
        destination_account: Connect account receiving the payee share
        application_fee_cents: Amount retained by the platform (processor
            fee + platform fee)
        idempotency_key: Unique key for idempotent creation
        customer_id: Optional Stripe Customer ID
        metadata: Key-value pairs to attach to the PaymentIntent
        payment_method_types: Allowed payment methods (default: ['card'])
    """

    amount_cents: int
    currency: str
    destination_account: str
    application_fee_cents: int
    idempotency_key: str
    customer_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    payment_method_types: list[str] = field(default_factory=lambda: ["card"])

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.currency:
            raise ValueError("currency is required")
        if not self.destination_account:
            raise ValueError("destination_account is required")
        if not 0 <= self.application_fee_cents < self.amount_cents:
            raise ValueError("application_fee_cents must be in [0, amount_cents)")


@dataclass
class PaymentIntentResult:
    """
    Result from Stripe PaymentIntent operations.

    Attributes:
        id: PaymentIntent ID (pi_xxx)
        status: Current status (requires_payment_method, succeeded, etc.)
        amount_cents: Amount in cents
        currency: Currency code
        client_secret: Secret for client-side confirmation
        latest_charge_id: Charge created by the intent, if any
        metadata: Attached metadata
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    client_secret: str | None = None
    latest_charge_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class CustomerResult:
    """Result from Stripe Customer operations."""

    id: str
    email: str | None = None
    created: bool = False


@dataclass
class AccountResult:
    """
    Result from Stripe Connect Account operations.

    Attributes:
        id: Account ID (acct_xxx)
        email: Account email
        country: Two-letter country code
        charges_enabled: Account can accept charges
        payouts_enabled: Account can receive payouts
        details_submitted: Onboarding form completed
        disabled_reason: Stripe requirements.disabled_reason, if any
        currently_due: Outstanding requirement keys
    """

    id: str
    email: str | None = None
    country: str | None = None
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    disabled_reason: str | None = None
    currently_due: list[str] = field(default_factory=list)


@dataclass
class AccountLinkResult:
    """Single-use onboarding link for a Connect account."""

    url: str
    expires_at: datetime | None = None


@dataclass
class BalanceResult:
    """Balance of a connected account in a single currency."""

    available_cents: int
    pending_cents: int
    currency: str


@dataclass
class RefundResult:
    """
    Result from Stripe Refund operations.

    Attributes:
        id: Refund ID (re_xxx)
        amount_cents: Refunded amount in cents
        currency: Currency code
        status: Refund status (pending, succeeded, failed, canceled)
        payment_intent_id: Original PaymentIntent ID
        failure_reason: Stripe failure reason when status is failed
        metadata: Attached metadata
    """

    id: str
    amount_cents: int
    currency: str
    status: str
    payment_intent_id: str | None = None
    failure_reason: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RefundResult:
        """Build from a refund object embedded in a webhook payload."""
        return cls(
            id=data["id"],
            amount_cents=data.get("amount") or 0,
            currency=data.get("currency") or "",
            status=data.get("status") or "",
            payment_intent_id=data.get("payment_intent"),
            failure_reason=data.get("failure_reason"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class DisputeResult:
    """Result from Stripe Dispute operations."""

    id: str
    status: str
    amount_cents: int
    currency: str
    reason: str | None = None
    charge_id: str | None = None
    payment_intent_id: str | None = None
    evidence_due_by: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DisputeResult:
        """Build from a dispute object embedded in a webhook payload."""
        evidence_details = data.get("evidence_details") or {}
        return cls(
            id=data["id"],
            status=data.get("status") or "",
            amount_cents=data.get("amount") or 0,
            currency=data.get("currency") or "",
            reason=data.get("reason"),
            charge_id=data.get("charge"),
            payment_intent_id=data.get("payment_intent"),
            evidence_due_by=_from_timestamp(evidence_details.get("due_by")),
        )


@dataclass
class PaymentMethodResult:
    """A saved card of a Stripe customer."""

    id: str
    brand: str | None = None
    last4: str | None = None
    exp_month: int | None = None
    exp_year: int | None = None


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The hash component provides uniqueness across deployments sharing a
    Stripe account while the structured format aids debugging.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="refund",
            entity_id=refund_request.id,
        )
        # Result: "refund:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str | int,
        attempt: int = 1,
    ) -> str:
        """
        Generate a deterministic idempotency key.

        Args:
            operation: The Stripe operation (purchase_intent, refund, etc.)
            entity_id: The local entity ID the call is made for
            attempt: Attempt number, bump to force a new Stripe object

        Returns:
            Formatted idempotency key string
        """
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def is_retryable_stripe_error(error: Exception) -> bool:
    """
    Check if a Stripe error is retryable.

    Use this in Celery tasks to decide whether to retry:

        @shared_task(bind=True, max_retries=3)
        def sync_refund(self, refund_id):
            try:
                adapter.retrieve_refund(refund_id)
            except Exception as e:
                if is_retryable_stripe_error(e):
                    raise self.retry(exc=e, countdown=backoff_delay(self.request.retries))
                raise

    Returns:
        True if the error is a transient Stripe error that can be retried
    """
    if isinstance(error, StripeError):
        return getattr(error, "is_retryable", False)
    return False


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 1: 2.0 - 2.5 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


def _from_timestamp(value: int | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=dt_timezone.utc)


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    Wraps a stripe.StripeClient so API key, version and timeout are per
    instance rather than module globals. Thread-safe for use from Celery
    workers. The SDK's own network retries are disabled; retries happen
    here, where they are logged and bounded.

    Usage:
        adapter = StripeAdapter.from_settings()
        result = adapter.create_refund(...)

    Tests pass a mock ``client`` to avoid network access.
    """

    # Errors that mean the connected account itself cannot take the charge
    INVALID_ACCOUNT_CODES = frozenset({"account_invalid"})
    DESTINATION_PARAMS = frozenset({"destination", "transfer_data[destination]"})

    def __init__(
        self,
        api_key: str,
        webhook_secret: str = "",
        timeout: float = 10,
        max_retries: int = 3,
        api_version: str | None = None,
        client: Any = None,
    ) -> None:
        self.webhook_secret = webhook_secret
        self.max_retries = max_retries
        self._client = client or stripe.StripeClient(
            api_key,
            stripe_version=api_version or None,
            http_client=stripe.RequestsClient(timeout=timeout),
            max_network_retries=0,
        )

    @classmethod
    def from_settings(cls) -> StripeAdapter:
        """Build an adapter from STRIPE_* settings."""
        return cls(
            api_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            timeout=getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10),
            max_retries=getattr(settings, "STRIPE_MAX_RETRIES", 3),
            api_version=getattr(settings, "STRIPE_API_VERSION", None),
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @property
    def api(self) -> Any:
        """The v1 service namespace of the underlying client."""
        return self._client.v1

    # =========================================================================
    # Execution
    # =========================================================================

    def _execute(
        self,
        log_context: dict[str, Any],
        call: Callable[[], Any],
        retry: bool = False,
    ) -> Any:
        """
        Run a Stripe call with timing, logging and error translation.

        Args:
            log_context: Structured logging context (must include 'operation')
            call: Zero-argument callable performing the SDK request
            retry: Retry transient errors with backoff. Only for reads and
                POSTs carrying an idempotency key.

        Raises:
            StripeError: Translated domain exception
        """
        logger = self.get_logger()
        attempts = self.max_retries + 1 if retry else 1

        for attempt in range(attempts):
            start_time = time.time()
            logger.info(
                "Starting Stripe operation",
                extra={**log_context, "attempt": attempt + 1},
            )
            try:
                result = call()
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                try:
                    self._handle_stripe_error(e, log_context, duration_ms)
                except StripeError as domain_error:
                    if attempt + 1 < attempts and is_retryable_stripe_error(
                        domain_error
                    ):
                        delay = backoff_delay(attempt)
                        logger.warning(
                            "Retrying Stripe operation",
                            extra={
                                **log_context,
                                "attempt": attempt + 1,
                                "delay_seconds": delay,
                                "error_code": domain_error.error_code,
                            },
                        )
                        time.sleep(delay)
                        continue
                    raise

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={**log_context, "duration_ms": duration_ms},
            )
            return result

    # =========================================================================
    # Customers & Payment Methods
    # =========================================================================

    def find_customer(self, email: str) -> CustomerResult | None:
        """
        Find an existing Stripe customer by email.

        Returns:
            The first matching customer, or None
        """
        customers = self._execute(
            {"operation": "find_customer"},
            lambda: self.api.customers.list(params={"email": email, "limit": 1}),
            retry=True,
        )
        if not customers.data:
            return None
        customer = customers.data[0]
        return CustomerResult(id=customer.id, email=customer.email)

    def get_or_create_customer(
        self,
        email: str,
        buyer_id: Any,
        idempotency_key: str,
    ) -> CustomerResult:
        """
        Return the buyer's Stripe customer, creating it if needed.

        Args:
            email: Buyer email (lookup key)
            buyer_id: Local buyer ID stored in customer metadata
            idempotency_key: Key for the create call

        Returns:
            CustomerResult, with created=True if a new customer was made
        """
        existing = self.find_customer(email)
        if existing is not None:
            return existing

        customer = self._execute(
            {"operation": "create_customer", "buyer_id": str(buyer_id)},
            lambda: self.api.customers.create(
                params={"email": email, "metadata": {"buyer_id": str(buyer_id)}},
                options={"idempotency_key": idempotency_key},
            ),
        )
        return CustomerResult(id=customer.id, email=customer.email, created=True)

    def list_payment_methods(self, customer_id: str) -> list[PaymentMethodResult]:
        """List the saved cards of a customer."""
        methods = self._execute(
            {"operation": "list_payment_methods", "customer_id": customer_id},
            lambda: self.api.payment_methods.list(
                params={"customer": customer_id, "type": "card"}
            ),
            retry=True,
        )
        results = []
        for method in methods.data:
            card = getattr(method, "card", None)
            results.append(
                PaymentMethodResult(
                    id=method.id,
                    brand=getattr(card, "brand", None),
                    last4=getattr(card, "last4", None),
                    exp_month=getattr(card, "exp_month", None),
                    exp_year=getattr(card, "exp_year", None),
                )
            )
        return results

    # =========================================================================
    # Payment Intents
    # =========================================================================

    def create_payment_intent(
        self,
        params: CreatePaymentIntentParams,
    ) -> PaymentIntentResult:
        """
        Create a destination-charge PaymentIntent.

        The payee account receives amount - application_fee once the
        charge succeeds; the platform keeps the application fee.

        Not retried here: on timeout the caller marks the purchase failed
        and the buyer starts over with a new purchase.

        Raises:
            StripeInvalidAccountError: Destination account cannot receive funds
            StripeInvalidRequestError: Invalid parameters
            StripeAPIUnavailableError: Stripe service unavailable
            StripeTimeoutError: Request timed out
        """
        request: dict[str, Any] = {
            "amount": params.amount_cents,
            "currency": params.currency,
            "application_fee_amount": params.application_fee_cents,
            "transfer_data": {"destination": params.destination_account},
            "payment_method_types": params.payment_method_types,
            "metadata": params.metadata,
        }
        if params.customer_id:
            request["customer"] = params.customer_id

        intent = self._execute(
            {
                "operation": "create_payment_intent",
                "amount_cents": params.amount_cents,
                "currency": params.currency,
                "destination_account": params.destination_account,
                "idempotency_key": params.idempotency_key,
            },
            lambda: self.api.payment_intents.create(
                params=request,
                options={"idempotency_key": params.idempotency_key},
            ),
        )
        return PaymentIntentResult(
            id=intent.id,
            status=intent.status,
            amount_cents=intent.amount,
            currency=intent.currency,
            client_secret=intent.client_secret,
            latest_charge_id=getattr(intent, "latest_charge", None),
            metadata=dict(intent.metadata or {}),
        )

    # =========================================================================
    # Connect Accounts
    # =========================================================================

    def create_account(
        self,
        email: str,
        country: str,
        owner_id: Any,
        idempotency_key: str,
    ) -> AccountResult:
        """
        Create an Express Connect account for a payee.

        Never retried automatically: a duplicate account would orphan one
        of them. The onboarding lock serializes callers.
        """
        account = self._execute(
            {"operation": "create_account", "owner_id": str(owner_id)},
            lambda: self.api.accounts.create(
                params={
                    "type": "express",
                    "country": country,
                    "email": email,
                    "business_type": "individual",
                    "capabilities": {
                        "card_payments": {"requested": True},
                        "transfers": {"requested": True},
                    },
                    "metadata": {"user_id": str(owner_id)},
                },
                options={"idempotency_key": idempotency_key},
            ),
        )
        return self._to_account_result(account)

    def retrieve_account(self, account_id: str) -> AccountResult:
        """Fetch the current capabilities of a Connect account."""
        account = self._execute(
            {"operation": "retrieve_account", "account_id": account_id},
            lambda: self.api.accounts.retrieve(account_id),
            retry=True,
        )
        return self._to_account_result(account)

    def create_account_link(
        self,
        account_id: str,
        refresh_url: str,
        return_url: str,
        link_type: str = "account_onboarding",
    ) -> AccountLinkResult:
        """
        Create a single-use onboarding (or update) link.

        Args:
            link_type: 'account_onboarding' or 'account_update'
        """
        link = self._execute(
            {
                "operation": "create_account_link",
                "account_id": account_id,
                "link_type": link_type,
            },
            lambda: self.api.account_links.create(
                params={
                    "account": account_id,
                    "refresh_url": refresh_url,
                    "return_url": return_url,
                    "type": link_type,
                }
            ),
        )
        return AccountLinkResult(
            url=link.url,
            expires_at=_from_timestamp(getattr(link, "expires_at", None)),
        )

    def retrieve_balance(self, account_id: str, currency: str) -> BalanceResult:
        """
        Fetch the Stripe-side balance of a connected account.

        Only the entries in ``currency`` are summed.
        """
        balance = self._execute(
            {"operation": "retrieve_balance", "account_id": account_id},
            lambda: self.api.balance.retrieve(options={"stripe_account": account_id}),
            retry=True,
        )

        def _sum(entries) -> int:
            return sum(
                entry.amount for entry in entries or [] if entry.currency == currency
            )

        return BalanceResult(
            available_cents=_sum(balance.available),
            pending_cents=_sum(balance.pending),
            currency=currency,
        )

    @staticmethod
    def _to_account_result(account: Any) -> AccountResult:
        requirements = getattr(account, "requirements", None)
        return AccountResult(
            id=account.id,
            email=getattr(account, "email", None),
            country=getattr(account, "country", None),
            charges_enabled=bool(account.charges_enabled),
            payouts_enabled=bool(account.payouts_enabled),
            details_submitted=bool(getattr(account, "details_submitted", False)),
            disabled_reason=getattr(requirements, "disabled_reason", None),
            currently_due=list(getattr(requirements, "currently_due", None) or []),
        )

    # =========================================================================
    # Refunds
    # =========================================================================

    def create_refund(
        self,
        payment_intent_id: str,
        amount_cents: int,
        idempotency_key: str,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        """
        Refund (part of) a PaymentIntent.

        Retried on transient errors with the same idempotency key, so a
        timed out request never produces a second refund.

        Args:
            reason: Stripe refund reason. 'other' is not a Stripe value and
                is omitted.
        """
        request: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "amount": amount_cents,
            "reverse_transfer": True,
            "refund_application_fee": True,
            "metadata": metadata or {},
        }
        if reason and reason != "other":
            request["reason"] = reason

        refund = self._execute(
            {
                "operation": "create_refund",
                "payment_intent_id": payment_intent_id,
                "amount_cents": amount_cents,
                "idempotency_key": idempotency_key,
            },
            lambda: self.api.refunds.create(
                params=request,
                options={"idempotency_key": idempotency_key},
            ),
            retry=True,
        )
        return self._to_refund_result(refund)

    def cancel_refund(self, refund_id: str, idempotency_key: str) -> RefundResult:
        """
        Cancel a pending refund.

        Stripe only allows this while the refund awaits customer action.

        Raises:
            StripeInvalidRequestError: Refund is no longer cancelable
        """
        refund = self._execute(
            {"operation": "cancel_refund", "refund_id": refund_id},
            lambda: self.api.refunds.cancel(
                refund_id,
                options={"idempotency_key": idempotency_key},
            ),
            retry=True,
        )
        return self._to_refund_result(refund)

    def retrieve_refund(self, refund_id: str) -> RefundResult:
        """Fetch the current status of a refund."""
        refund = self._execute(
            {"operation": "retrieve_refund", "refund_id": refund_id},
            lambda: self.api.refunds.retrieve(refund_id),
            retry=True,
        )
        return self._to_refund_result(refund)

    @staticmethod
    def _to_refund_result(refund: Any) -> RefundResult:
        return RefundResult(
            id=refund.id,
            amount_cents=refund.amount,
            currency=refund.currency,
            status=refund.status,
            payment_intent_id=getattr(refund, "payment_intent", None),
            failure_reason=getattr(refund, "failure_reason", None),
            metadata=dict(getattr(refund, "metadata", None) or {}),
        )

    # =========================================================================
    # Disputes
    # =========================================================================

    def update_dispute(
        self,
        dispute_id: str,
        evidence: dict[str, str],
        idempotency_key: str,
        submit: bool = True,
    ) -> DisputeResult:
        """
        Attach evidence to a dispute.

        Args:
            submit: Submit the evidence immediately. Stripe accepts only one
                submission, so False stages evidence for later edits.
        """
        dispute = self._execute(
            {"operation": "update_dispute", "dispute_id": dispute_id, "submit": submit},
            lambda: self.api.disputes.update(
                dispute_id,
                params={"evidence": evidence, "submit": submit},
                options={"idempotency_key": idempotency_key},
            ),
            retry=True,
        )
        return self._to_dispute_result(dispute)

    def retrieve_dispute(self, dispute_id: str) -> DisputeResult:
        """Fetch the current status of a dispute."""
        dispute = self._execute(
            {"operation": "retrieve_dispute", "dispute_id": dispute_id},
            lambda: self.api.disputes.retrieve(dispute_id),
            retry=True,
        )
        return self._to_dispute_result(dispute)

    @staticmethod
    def _to_dispute_result(dispute: Any) -> DisputeResult:
        evidence_details = getattr(dispute, "evidence_details", None)
        return DisputeResult(
            id=dispute.id,
            status=dispute.status,
            amount_cents=dispute.amount,
            currency=dispute.currency,
            reason=getattr(dispute, "reason", None),
            charge_id=getattr(dispute, "charge", None),
            payment_intent_id=getattr(dispute, "payment_intent", None),
            evidence_due_by=_from_timestamp(getattr(evidence_details, "due_by", None)),
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Args:
            payload: Raw webhook payload bytes
            signature: Stripe-Signature header value

        Returns:
            Parsed event data dict

        Raises:
            InvalidSignatureError: Missing, malformed or forged signature
        """
        if not signature:
            raise InvalidSignatureError("Missing Stripe-Signature header")
        try:
            self._client.construct_event(payload, signature, self.webhook_secret)
            return json.loads(payload)
        except stripe.SignatureVerificationError as e:
            raise InvalidSignatureError(
                "Invalid webhook signature",
                details={"error": str(e)},
            ) from e
        except ValueError as e:
            raise InvalidSignatureError(
                "Malformed webhook payload",
                details={"error": str(e)},
            ) from e

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to domain exceptions.

        Raises:
            StripeCardDeclinedError: Card was declined
            StripeInsufficientFundsError: Insufficient funds
            StripeInvalidAccountError: Invalid Connect account
            StripeInvalidRequestError: Invalid request parameters
            StripeRateLimitError: Rate limited
            StripeAPIUnavailableError: API unavailable
            StripeTimeoutError: Request timed out
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None) or getattr(
                getattr(error, "error", None), "decline_code", None
            )
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )

            if decline_code == "insufficient_funds":
                raise StripeInsufficientFundsError(
                    str(error.user_message or error),
                    stripe_code=error.code,
                    decline_code=decline_code,
                )

            raise StripeCardDeclinedError(
                str(error.user_message or error),
                stripe_code=error.code,
                decline_code=decline_code,
            )

        elif isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )

            if error.code in cls.INVALID_ACCOUNT_CODES or (
                error.code == "resource_missing" and error.param in cls.DESTINATION_PARAMS
            ):
                raise StripeInvalidAccountError(
                    str(error),
                    stripe_code=error.code,
                )

            raise StripeInvalidRequestError(
                str(error),
                stripe_code=error.code,
            )

        elif isinstance(error, stripe.RateLimitError):
            logger.warning(
                "Rate limited by Stripe",
                extra=log_context,
            )
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            )

        elif isinstance(error, stripe.APIConnectionError):
            message = str(error).lower()
            if "timeout" in message or "timed out" in message:
                logger.error(
                    "Stripe request timed out",
                    extra=log_context,
                )
                raise StripeTimeoutError(
                    "Stripe request timed out. The operation may have succeeded.",
                    stripe_code="timeout",
                )

            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            )

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise StripeInvalidRequestError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            )

        elif isinstance(error, stripe.APIError):
            logger.error(
                "Stripe API error",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            )

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                f"Unexpected Stripe error: {error}",
                stripe_code="unknown_error",
            )


@functools.lru_cache(maxsize=1)
def get_stripe_adapter() -> StripeAdapter:
    """Process-wide adapter built from settings."""
    return StripeAdapter.from_settings()
