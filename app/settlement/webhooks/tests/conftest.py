"""
Pytest fixtures for webhook tests.

Provides a builder for stored WebhookEvents; payload builders live in
payloads.py.
Purchases, payees and the mock adapter come from settlement/conftest.py.
"""

import pytest

from settlement.tests.factories import WebhookEventFactory


@pytest.fixture
def make_webhook_event(db):
    """
    Store a WebhookEvent for an event envelope.

    Usage:
        event = make_webhook_event(build_event("refund.updated", refund_object()))
    """

    def _make(event: dict, **kwargs):
        return WebhookEventFactory(
            stripe_event_id=event["id"],
            event_type=event["type"],
            payload=event,
            **kwargs,
        )

    return _make
