"""
Marketplace settlement app.

Turns a buyer's payment into an auditable split between the processor fee,
the platform commission and the payee (developer) payout, and keeps that
split consistent while refunds, disputes and account changes arrive from
Stripe as asynchronous webhooks.

Subpackages:
    - adapters: Stripe API client wrapper
    - models: PayeeAccount, Purchase, RefundRequest, DisputeCase, WebhookEvent
    - services: Payee registry, ledger, orchestrator, refund and dispute managers
    - state_machines: TextChoices enums used by the FSM fields
    - webhooks: Signature verification, deduplication and event dispatch
"""
