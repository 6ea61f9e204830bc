"""
Tests for the Stripe webhook endpoint.

The reconciler is patched; these tests cover the mapping from
reconciler outcomes to HTTP status codes.
"""

import json
from unittest.mock import patch

import pytest
from django.test import RequestFactory
from django.urls import reverse

from core.exceptions import ValidationError
from settlement.exceptions import EventOutOfOrderError, InvalidSignatureError
from settlement.state_machines import WebhookEventStatus
from settlement.tests.factories import WebhookEventFactory
from settlement.webhooks.views import stripe_webhook

WEBHOOK_PATH = "/api/v1/settlement/webhooks/payments/"


@pytest.fixture
def rf():
    return RequestFactory()


def make_webhook_request(rf, payload: dict, signature: str = "t=1,v1=sig"):
    """Create a POST request to the webhook endpoint."""
    return rf.post(
        WEBHOOK_PATH,
        data=json.dumps(payload),
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE=signature,
    )


@pytest.fixture
def mock_reconciler():
    with patch("settlement.webhooks.views.WebhookReconciler") as reconciler_cls:
        yield reconciler_cls.return_value


@pytest.mark.django_db
class TestStripeWebhookView:
    def test_url_resolves(self):
        assert reverse("settlement:stripe_webhook") == WEBHOOK_PATH

    def test_processed_event_returns_200(self, rf, mock_reconciler):
        mock_reconciler.handle.return_value = WebhookEventFactory(
            status=WebhookEventStatus.PROCESSED
        )

        response = stripe_webhook(make_webhook_request(rf, {"id": "evt_1"}))

        assert response.status_code == 200

    def test_raw_body_and_signature_forwarded(self, rf, mock_reconciler):
        mock_reconciler.handle.return_value = WebhookEventFactory(
            status=WebhookEventStatus.SKIPPED
        )
        request = make_webhook_request(rf, {"id": "evt_1"}, signature="t=5,v1=abc")

        stripe_webhook(request)

        mock_reconciler.handle.assert_called_once_with(request.body, "t=5,v1=abc")

    def test_skipped_event_returns_200(self, rf, mock_reconciler):
        mock_reconciler.handle.return_value = WebhookEventFactory(
            status=WebhookEventStatus.SKIPPED
        )

        assert stripe_webhook(make_webhook_request(rf, {})).status_code == 200

    def test_invalid_signature_returns_400(self, rf, mock_reconciler):
        mock_reconciler.handle.side_effect = InvalidSignatureError("Invalid webhook signature")

        response = stripe_webhook(make_webhook_request(rf, {}, signature="forged"))

        assert response.status_code == 400
        assert b"Invalid signature" in response.content

    def test_malformed_event_returns_400(self, rf, mock_reconciler):
        mock_reconciler.handle.side_effect = ValidationError("Webhook event is missing id or type")

        assert stripe_webhook(make_webhook_request(rf, {})).status_code == 400

    def test_out_of_order_event_returns_500(self, rf, mock_reconciler):
        mock_reconciler.handle.side_effect = EventOutOfOrderError("Refund before charge")

        assert stripe_webhook(make_webhook_request(rf, {})).status_code == 500

    def test_unexpected_error_returns_500(self, rf, mock_reconciler):
        mock_reconciler.handle.side_effect = RuntimeError("boom")

        assert stripe_webhook(make_webhook_request(rf, {})).status_code == 500

    def test_failed_event_returns_500(self, rf, mock_reconciler):
        mock_reconciler.handle.return_value = WebhookEventFactory(
            status=WebhookEventStatus.FAILED
        )

        assert stripe_webhook(make_webhook_request(rf, {})).status_code == 500

    def test_get_not_allowed(self, rf):
        response = stripe_webhook(rf.get(WEBHOOK_PATH))

        assert response.status_code == 405

    def test_end_to_end_without_csrf(self, client, mock_reconciler):
        mock_reconciler.handle.return_value = WebhookEventFactory(
            status=WebhookEventStatus.PROCESSED
        )

        response = client.post(
            WEBHOOK_PATH,
            data=json.dumps({"id": "evt_1"}),
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE="t=1,v1=sig",
        )

        assert response.status_code == 200

    def test_root_path_serves_same_endpoint(self, client, mock_reconciler):
        mock_reconciler.handle.return_value = WebhookEventFactory(
            status=WebhookEventStatus.PROCESSED
        )

        response = client.post(
            reverse("stripe_webhook"),
            data=json.dumps({"id": "evt_1"}),
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE="t=1,v1=sig",
        )

        assert reverse("stripe_webhook") == "/webhooks/payments/"
        assert response.status_code == 200
