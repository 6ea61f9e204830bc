"""
Settlement adapters for external services.

All Stripe API calls go through StripeAdapter to ensure consistent error
handling, timeouts, idempotency, and observability.

Usage:
    from settlement.adapters import get_stripe_adapter

    adapter = get_stripe_adapter()
    account = adapter.retrieve_account("acct_xxx")
"""

from settlement.adapters.stripe_adapter import (
    AccountLinkResult,
    AccountResult,
    BalanceResult,
    CreatePaymentIntentParams,
    CustomerResult,
    DisputeResult,
    IdempotencyKeyGenerator,
    PaymentIntentResult,
    PaymentMethodResult,
    RefundResult,
    StripeAdapter,
    backoff_delay,
    get_stripe_adapter,
    is_retryable_stripe_error,
)

__all__ = [
    "AccountLinkResult",
    "AccountResult",
    "BalanceResult",
    "CreatePaymentIntentParams",
    "CustomerResult",
    "DisputeResult",
    "IdempotencyKeyGenerator",
    "PaymentIntentResult",
    "PaymentMethodResult",
    "RefundResult",
    "StripeAdapter",
    "backoff_delay",
    "get_stripe_adapter",
    "is_retryable_stripe_error",
]
