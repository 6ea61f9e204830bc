"""
Payment intent orchestrator.

Entry point for buyer checkout. Creates the pending ledger row and the
Stripe destination-charge PaymentIntent that carries the server-computed
split. The charge amount and split never come from the client.

Flow:
    1. Resolve or create the buyer's Stripe customer
    2. SettlementLedger.open_purchase (payee eligibility + split)
    3. Create the PaymentIntent with application_fee_amount and
       transfer_data.destination, tagged with purchase_id
    4. Return the client secret; the purchase stays PENDING until the
       charge-succeeded webhook arrives

Usage:
    from settlement.services import PaymentIntentOrchestrator

    intent = PaymentIntentOrchestrator().create_purchase_intent(
        buyer=request.user,
        app_id=entry.app_id,
        payee_id=entry.payee_id,
        gross_cents=entry.price_cents,
        buyer_email=request.user.email,
    )
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from core.services import BaseService

from settlement.adapters import (
    CreatePaymentIntentParams,
    CustomerResult,
    IdempotencyKeyGenerator,
    PaymentMethodResult,
    get_stripe_adapter,
)
from settlement.commission import validate_charge_amount
from settlement.exceptions import StripeError
from settlement.services.ledger import SettlementLedger

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

    from settlement.adapters import StripeAdapter


@dataclass
class PurchaseIntent:
    """What the buyer's client needs to confirm the charge."""

    client_secret: str
    purchase_id: uuid.UUID
    payment_intent_id: str


class PaymentIntentOrchestrator(BaseService):
    """Coordinates the ledger and Stripe for buyer checkout."""

    def __init__(self, stripe_adapter: StripeAdapter | None = None) -> None:
        self.stripe = stripe_adapter or get_stripe_adapter()

    def create_purchase_intent(
        self,
        buyer: AbstractBaseUser,
        app_id: str,
        payee_id: uuid.UUID | str,
        gross_cents: int,
        buyer_email: str,
    ) -> PurchaseIntent:
        """
        Open a purchase and create its PaymentIntent.

        Raises:
            InvalidAmountError: Amount outside the configured limits
            PayeeNotEligibleError: Payee cannot accept charges (no charge call made)
            StripeError: Stripe failed; the purchase, if opened, is now FAILED
        """
        validate_charge_amount(gross_cents)

        customer = self.get_or_create_customer(buyer_email, buyer.pk)

        purchase = SettlementLedger.open_purchase(
            buyer=buyer,
            app_id=app_id,
            payee_id=payee_id,
            gross_cents=gross_cents,
            stripe_customer_id=customer.id,
        )

        params = CreatePaymentIntentParams(
            amount_cents=purchase.gross_amount_cents,
            currency=purchase.currency,
            destination_account=purchase.payee.stripe_account_id,
            application_fee_cents=purchase.processor_fee_cents + purchase.platform_fee_cents,
            idempotency_key=IdempotencyKeyGenerator.generate("purchase_intent", purchase.id),
            customer_id=customer.id,
            metadata={
                "purchase_id": str(purchase.id),
                "app_id": app_id,
                "buyer_id": str(buyer.pk),
                "processor_fee_cents": str(purchase.processor_fee_cents),
                "platform_fee_cents": str(purchase.platform_fee_cents),
                "payee_amount_cents": str(purchase.payee_amount_cents),
            },
        )

        try:
            intent = self.stripe.create_payment_intent(params)
        except StripeError as e:
            self.get_logger().error(
                "PaymentIntent creation failed, abandoning purchase",
                extra={
                    "purchase_id": str(purchase.id),
                    "error_code": e.error_code,
                },
            )
            SettlementLedger.abandon_purchase(purchase.id, reason=e.message)
            raise

        SettlementLedger.attach_payment_intent(purchase.id, intent.id)

        self.get_logger().info(
            "Purchase intent created",
            extra={
                "purchase_id": str(purchase.id),
                "payment_intent_id": intent.id,
                "gross_cents": purchase.gross_amount_cents,
            },
        )
        return PurchaseIntent(
            client_secret=intent.client_secret,
            purchase_id=purchase.id,
            payment_intent_id=intent.id,
        )

    def get_or_create_customer(self, email: str, buyer_id) -> CustomerResult:
        """Look the buyer up by email, creating the Stripe customer if missing."""
        return self.stripe.get_or_create_customer(
            email=email,
            buyer_id=buyer_id,
            idempotency_key=IdempotencyKeyGenerator.generate("create_customer", buyer_id),
        )

    def list_payment_methods(self, buyer_email: str) -> list[PaymentMethodResult]:
        """Saved cards of the buyer; empty if they never checked out."""
        customer = self.stripe.find_customer(buyer_email)
        if customer is None:
            return []
        return self.stripe.list_payment_methods(customer.id)
