"""
Serializers for the settlement API.

Request serializers only validate shape; amounts, eligibility and state
rules are enforced by the services. Response serializers are read-only.

Provides:
- CreatePurchaseSerializer / PurchaseIntentSerializer: Buyer checkout
- PurchaseSerializer: Buyer's view of a purchase
- PaymentMethodSerializer: Saved cards
- PayeeAccountSerializer, OnboardingSerializer, AccountLinkSerializer,
  EarningsSerializer: Payee onboarding and earnings
- RefundRequestSerializer, CreateRefundSerializer: Admin refunds
- DisputeCaseSerializer, SubmitEvidenceSerializer: Admin disputes
- PlatformRevenueSerializer: Admin revenue report
"""

from __future__ import annotations

from django.conf import settings
from rest_framework import serializers

from settlement.models import DisputeCase, PayeeAccount, Purchase, RefundRequest
from settlement.services.payee_registry import ACCOUNT_LINK_TYPES
from settlement.state_machines import RefundReason

# Fields Stripe accepts as dispute evidence text or file ids
EVIDENCE_FIELDS = (
    "access_activity_log",
    "billing_address",
    "cancellation_policy_disclosure",
    "cancellation_rebuttal",
    "customer_communication",
    "customer_email_address",
    "customer_name",
    "customer_purchase_ip",
    "duplicate_charge_explanation",
    "product_description",
    "receipt",
    "refund_policy",
    "refund_policy_disclosure",
    "refund_refusal_explanation",
    "service_date",
    "service_documentation",
    "uncategorized_file",
    "uncategorized_text",
)


# =============================================================================
# Purchases
# =============================================================================


class CreatePurchaseSerializer(serializers.Serializer):
    """
    Buyer checkout request.

    Only the app id is accepted. Price and payee come from the catalog
    resolver, so any amount or payee sent by the client is ignored.
    """

    app_id = serializers.CharField(max_length=255)


class PurchaseIntentSerializer(serializers.Serializer):
    client_secret = serializers.CharField()
    purchase_id = serializers.UUIDField()
    payment_intent_id = serializers.CharField()
    publishable_key = serializers.SerializerMethodField()

    def get_publishable_key(self, obj) -> str:
        """Key the buyer's client needs to initialise Stripe.js."""
        return settings.STRIPE_PUBLISHABLE_KEY


class PurchaseSerializer(serializers.ModelSerializer):
    class Meta:
        model = Purchase
        fields = [
            "id",
            "app_id",
            "payee",
            "status",
            "currency",
            "gross_amount_cents",
            "processor_fee_cents",
            "platform_fee_cents",
            "payee_amount_cents",
            "refunded_amount_cents",
            "disputed_loss_cents",
            "stripe_payment_intent_id",
            "failure_reason",
            "completed_at",
            "failed_at",
            "created_at",
        ]
        read_only_fields = fields


class PaymentMethodSerializer(serializers.Serializer):
    id = serializers.CharField()
    brand = serializers.CharField(allow_null=True)
    last4 = serializers.CharField(allow_null=True)
    exp_month = serializers.IntegerField(allow_null=True)
    exp_year = serializers.IntegerField(allow_null=True)


# =============================================================================
# Payee Accounts
# =============================================================================


class PayeeAccountSerializer(serializers.ModelSerializer):
    class Meta:
        model = PayeeAccount
        fields = [
            "id",
            "stripe_account_id",
            "account_type",
            "country",
            "email",
            "charges_enabled",
            "payouts_enabled",
            "details_submitted",
            "verification_status",
            "disabled_reason",
            "last_synced_at",
            "created_at",
        ]
        read_only_fields = fields


class OnboardingSerializer(serializers.Serializer):
    """Start onboarding; e-mail defaults to the user's account e-mail."""

    email = serializers.EmailField(required=False)
    country = serializers.CharField(min_length=2, max_length=2, required=False)

    def validate_country(self, value: str) -> str:
        return value.upper()


class OnboardingResultSerializer(serializers.Serializer):
    account_id = serializers.CharField()
    onboarding_url = serializers.URLField()
    created = serializers.BooleanField()


class AccountLinkSerializer(serializers.Serializer):
    link_type = serializers.ChoiceField(
        choices=ACCOUNT_LINK_TYPES,
        default="account_onboarding",
    )


class AccountLinkResultSerializer(serializers.Serializer):
    url = serializers.URLField()


class EarningsSerializer(serializers.Serializer):
    currency = serializers.CharField()
    sales_count = serializers.IntegerField(source="totals.sales_count")
    gross_cents = serializers.IntegerField(source="totals.gross_cents")
    payee_amount_cents = serializers.IntegerField(source="totals.payee_amount_cents")
    refunded_cents = serializers.IntegerField(source="totals.refunded_cents")
    disputed_loss_cents = serializers.IntegerField(source="totals.disputed_loss_cents")
    net_earnings_cents = serializers.IntegerField(source="totals.net_earnings_cents")
    available_balance_cents = serializers.IntegerField(allow_null=True)
    pending_balance_cents = serializers.IntegerField(allow_null=True)


# =============================================================================
# Refunds (admin)
# =============================================================================


class RefundRequestSerializer(serializers.ModelSerializer):
    class Meta:
        model = RefundRequest
        fields = [
            "id",
            "purchase",
            "admin",
            "amount_cents",
            "currency",
            "reason",
            "description",
            "status",
            "stripe_refund_id",
            "failure_reason",
            "succeeded_at",
            "failed_at",
            "canceled_at",
            "created_at",
        ]
        read_only_fields = fields


class CreateRefundSerializer(serializers.Serializer):
    """Omit amount_cents to refund the full remaining balance."""

    purchase_id = serializers.UUIDField()
    amount_cents = serializers.IntegerField(min_value=1, required=False)
    reason = serializers.ChoiceField(
        choices=RefundReason.choices,
        default=RefundReason.REQUESTED_BY_CUSTOMER,
    )
    description = serializers.CharField(required=False, allow_blank=True, default="")


# =============================================================================
# Disputes (admin)
# =============================================================================


class DisputeCaseSerializer(serializers.ModelSerializer):
    evidence_window_open = serializers.BooleanField(read_only=True)

    class Meta:
        model = DisputeCase
        fields = [
            "id",
            "purchase",
            "stripe_dispute_id",
            "amount_cents",
            "currency",
            "reason",
            "status",
            "evidence_due_by",
            "evidence_window_open",
            "evidence",
            "evidence_submitted_at",
            "closed_at",
            "created_at",
        ]
        read_only_fields = fields


class SubmitEvidenceSerializer(serializers.Serializer):
    evidence = serializers.DictField(child=serializers.CharField(max_length=20000))
    submit = serializers.BooleanField(default=True)

    def validate_evidence(self, value: dict) -> dict:
        if not value:
            raise serializers.ValidationError("At least one evidence field is required.")
        unknown = sorted(set(value) - set(EVIDENCE_FIELDS))
        if unknown:
            raise serializers.ValidationError(
                f"Unknown evidence fields: {', '.join(unknown)}"
            )
        return value


# =============================================================================
# Reporting (admin)
# =============================================================================


class RevenueQuerySerializer(serializers.Serializer):
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)


class PlatformRevenueSerializer(serializers.Serializer):
    currency = serializers.SerializerMethodField()
    purchase_count = serializers.IntegerField()
    gross_cents = serializers.IntegerField()
    processor_fee_cents = serializers.IntegerField()
    platform_fee_cents = serializers.IntegerField()
    payee_amount_cents = serializers.IntegerField()
    refunded_cents = serializers.IntegerField()
    disputed_loss_cents = serializers.IntegerField()

    def get_currency(self, obj) -> str:
        return settings.SETTLEMENT_CURRENCY
