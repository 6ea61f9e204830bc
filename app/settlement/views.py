"""
DRF views for the settlement app.

This module provides API views for:
- Buyer checkout (purchase intent, purchase status, saved cards)
- Payee onboarding, account links and earnings
- Admin refunds, disputes and revenue reporting

Services raise typed application errors; core.exception_handler turns
them into JSON responses (400/403/404/409/429/502).

Endpoints (under /api/v1/settlement/):
    POST purchases/                      - Create purchase intent
    GET  purchases/{purchase_id}/        - Buyer's purchase
    GET  payment-methods/                - Buyer's saved cards
    GET  payee-account/                  - Current user's payee account
    POST payee-account/onboarding/       - Start Connect onboarding
    POST payee-account/links/            - Fresh onboarding/update link
    GET  payee-account/earnings/         - Earnings summary
    GET/POST admin/refunds/              - List / issue refunds
    GET  admin/refunds/{refund_id}/      - Refund detail
    POST admin/refunds/{refund_id}/cancel/
    POST admin/refunds/{refund_id}/sync/
    GET  admin/disputes/                 - List disputes
    GET  admin/disputes/{dispute_id}/    - Dispute detail
    POST admin/disputes/{dispute_id}/evidence/
    GET  admin/revenue/                  - Platform revenue report

Security:
    - All endpoints require authentication
    - admin/ endpoints require is_staff
"""

from __future__ import annotations

import logging

from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import generics, status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from settlement.catalog import resolve_app
from settlement.filters import DisputeCaseFilter, RefundRequestFilter
from settlement.models import DisputeCase, Purchase, RefundRequest
from settlement.serializers import (
    AccountLinkResultSerializer,
    AccountLinkSerializer,
    CreatePurchaseSerializer,
    CreateRefundSerializer,
    DisputeCaseSerializer,
    EarningsSerializer,
    OnboardingResultSerializer,
    OnboardingSerializer,
    PayeeAccountSerializer,
    PaymentMethodSerializer,
    PlatformRevenueSerializer,
    PurchaseIntentSerializer,
    PurchaseSerializer,
    RefundRequestSerializer,
    RevenueQuerySerializer,
    SubmitEvidenceSerializer,
)
from settlement.services import (
    DisputeManager,
    PayeeAccountRegistry,
    PaymentIntentOrchestrator,
    RefundManager,
    SettlementLedger,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Buyer Checkout
# =============================================================================


class PurchaseCreateView(APIView):
    """
    Create a purchase and its Stripe PaymentIntent.

    POST /api/v1/settlement/purchases/

    Request body:
        {"app_id": "app_123"}

    Returns:
        {"client_secret": "...", "purchase_id": "...",
         "payment_intent_id": "pi_...", "publishable_key": "pk_..."}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_purchase_intent",
        summary="Create purchase intent",
        description=(
            "Looks up the app's price and payee in the catalog, opens a "
            "pending purchase with the commission split computed "
            "server-side and creates a destination-charge PaymentIntent. "
            "The purchase completes when Stripe confirms the charge."
        ),
        request=CreatePurchaseSerializer,
        responses={
            201: OpenApiResponse(response=PurchaseIntentSerializer),
            400: OpenApiResponse(description="Invalid amount or payee not eligible"),
            404: OpenApiResponse(description="App not in the catalog"),
            502: OpenApiResponse(description="Stripe unavailable"),
        },
        tags=["Settlement - Checkout"],
    )
    def post(self, request):
        serializer = CreatePurchaseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        entry = resolve_app(serializer.validated_data["app_id"])

        intent = PaymentIntentOrchestrator().create_purchase_intent(
            buyer=request.user,
            app_id=entry.app_id,
            payee_id=entry.payee_id,
            gross_cents=entry.price_cents,
            buyer_email=request.user.email,
        )
        return Response(
            PurchaseIntentSerializer(intent).data,
            status=status.HTTP_201_CREATED,
        )


class PurchaseDetailView(APIView):
    """
    Buyer's view of one of their purchases.

    GET /api/v1/settlement/purchases/{purchase_id}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_purchase",
        summary="Get purchase",
        responses={
            200: OpenApiResponse(response=PurchaseSerializer),
            404: OpenApiResponse(description="Purchase not found"),
        },
        tags=["Settlement - Checkout"],
    )
    def get(self, request, purchase_id):
        purchase = Purchase.objects.filter(id=purchase_id, buyer=request.user).first()
        if purchase is None:
            return Response(
                {"error": "Purchase not found"},
                status=status.HTTP_404_NOT_FOUND,
            )
        return Response(PurchaseSerializer(purchase).data)


class PaymentMethodListView(APIView):
    """
    Saved cards of the current buyer.

    GET /api/v1/settlement/payment-methods/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_payment_methods",
        summary="List saved payment methods",
        responses={200: PaymentMethodSerializer(many=True)},
        tags=["Settlement - Checkout"],
    )
    def get(self, request):
        methods = PaymentIntentOrchestrator().list_payment_methods(request.user.email)
        return Response(PaymentMethodSerializer(methods, many=True).data)


# =============================================================================
# Payee Accounts
# =============================================================================


class PayeeAccountView(APIView):
    """
    Current user's payee account.

    GET /api/v1/settlement/payee-account/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_payee_account",
        summary="Get payee account",
        responses={
            200: OpenApiResponse(response=PayeeAccountSerializer),
            404: OpenApiResponse(description="User has not started onboarding"),
        },
        tags=["Settlement - Payees"],
    )
    def get(self, request):
        account = PayeeAccountRegistry().get_account(request.user)
        return Response(PayeeAccountSerializer(account).data)


class PayeeOnboardingView(APIView):
    """
    Start (or resume) Stripe Connect onboarding.

    POST /api/v1/settlement/payee-account/onboarding/

    Returns 201 when a Stripe account was created, 200 when an existing
    one only got a fresh onboarding link.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="begin_payee_onboarding",
        summary="Begin payee onboarding",
        request=OnboardingSerializer,
        responses={
            200: OpenApiResponse(response=OnboardingResultSerializer),
            201: OpenApiResponse(response=OnboardingResultSerializer),
            409: OpenApiResponse(description="Onboarding already in progress"),
            502: OpenApiResponse(description="Stripe unavailable"),
        },
        tags=["Settlement - Payees"],
    )
    def post(self, request):
        serializer = OnboardingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = PayeeAccountRegistry().begin_onboarding(
            owner=request.user,
            email=serializer.validated_data.get("email") or request.user.email,
            country=serializer.validated_data.get("country"),
        )
        return Response(
            OnboardingResultSerializer(result).data,
            status=status.HTTP_201_CREATED if result.created else status.HTTP_200_OK,
        )


class PayeeAccountLinkView(APIView):
    """
    Create a fresh onboarding or account-update link.

    POST /api/v1/settlement/payee-account/links/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_payee_account_link",
        summary="Create account link",
        request=AccountLinkSerializer,
        responses={
            200: OpenApiResponse(response=AccountLinkResultSerializer),
            404: OpenApiResponse(description="User has no payee account"),
        },
        tags=["Settlement - Payees"],
    )
    def post(self, request):
        serializer = AccountLinkSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        registry = PayeeAccountRegistry()
        account = registry.get_account(request.user)
        url = registry.create_reauth_link(account, serializer.validated_data["link_type"])
        return Response(AccountLinkResultSerializer({"url": url}).data)


class PayeeEarningsView(APIView):
    """
    Earnings summary of the current payee.

    GET /api/v1/settlement/payee-account/earnings/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_payee_earnings",
        summary="Get payee earnings",
        description=(
            "Ledger totals net of refunds and chargeback losses, plus a "
            "best-effort Stripe balance (null when Stripe is unreachable)."
        ),
        responses={
            200: OpenApiResponse(response=EarningsSerializer),
            404: OpenApiResponse(description="User has no payee account"),
        },
        tags=["Settlement - Payees"],
    )
    def get(self, request):
        summary = PayeeAccountRegistry().get_earnings(request.user)
        return Response(EarningsSerializer(summary).data)


# =============================================================================
# Admin - Refunds
# =============================================================================


class AdminRefundListCreateView(generics.ListAPIView):
    """
    List refunds or issue a new one.

    GET  /api/v1/settlement/admin/refunds/?status=pending
    POST /api/v1/settlement/admin/refunds/
    """

    permission_classes = [IsAdminUser]
    serializer_class = RefundRequestSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_class = RefundRequestFilter
    queryset = RefundRequest.objects.select_related("purchase").order_by("-created_at")

    @extend_schema(
        operation_id="admin_list_refunds",
        summary="List refunds",
        tags=["Settlement - Admin"],
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    @extend_schema(
        operation_id="admin_create_refund",
        summary="Issue refund",
        description=(
            "Reserves the amount against the purchase balance and submits "
            "the refund to Stripe. The refund stays pending until Stripe "
            "confirms it."
        ),
        request=CreateRefundSerializer,
        responses={
            201: OpenApiResponse(response=RefundRequestSerializer),
            400: OpenApiResponse(description="Amount exceeds refundable balance"),
            404: OpenApiResponse(description="Purchase not found"),
            409: OpenApiResponse(description="Purchase not refundable, or refund in progress"),
            502: OpenApiResponse(description="Stripe rejected or unavailable"),
        },
        tags=["Settlement - Admin"],
    )
    def post(self, request):
        serializer = CreateRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        refund = RefundManager().request_refund(
            purchase_id=data["purchase_id"],
            amount_cents=data.get("amount_cents"),
            reason=data["reason"],
            admin=request.user,
            description=data["description"],
        )
        logger.info(
            "Refund issued by admin",
            extra={"refund_id": str(refund.id), "admin_id": str(request.user.pk)},
        )
        return Response(
            RefundRequestSerializer(refund).data,
            status=status.HTTP_201_CREATED,
        )


class AdminRefundDetailView(generics.RetrieveAPIView):
    """GET /api/v1/settlement/admin/refunds/{refund_id}/"""

    permission_classes = [IsAdminUser]
    serializer_class = RefundRequestSerializer
    queryset = RefundRequest.objects.all()
    lookup_url_kwarg = "refund_id"

    @extend_schema(
        operation_id="admin_get_refund",
        summary="Get refund",
        tags=["Settlement - Admin"],
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class AdminRefundCancelView(APIView):
    """POST /api/v1/settlement/admin/refunds/{refund_id}/cancel/"""

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="admin_cancel_refund",
        summary="Cancel refund",
        description="Cancels a refund Stripe has not completed yet.",
        request=None,
        responses={
            200: OpenApiResponse(response=RefundRequestSerializer),
            409: OpenApiResponse(description="Refund no longer cancelable"),
        },
        tags=["Settlement - Admin"],
    )
    def post(self, request, refund_id):
        refund = RefundManager().cancel_refund(refund_id, admin=request.user)
        return Response(RefundRequestSerializer(refund).data)


class AdminRefundSyncView(APIView):
    """POST /api/v1/settlement/admin/refunds/{refund_id}/sync/"""

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="admin_sync_refund",
        summary="Sync refund status from Stripe",
        request=None,
        responses={200: OpenApiResponse(response=RefundRequestSerializer)},
        tags=["Settlement - Admin"],
    )
    def post(self, request, refund_id):
        refund = RefundManager().sync_refund_status(refund_id)
        return Response(RefundRequestSerializer(refund).data)


# =============================================================================
# Admin - Disputes
# =============================================================================


class AdminDisputeListView(generics.ListAPIView):
    """GET /api/v1/settlement/admin/disputes/?status=needs_response"""

    permission_classes = [IsAdminUser]
    serializer_class = DisputeCaseSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_class = DisputeCaseFilter
    queryset = DisputeCase.objects.select_related("purchase").order_by("evidence_due_by")

    @extend_schema(
        operation_id="admin_list_disputes",
        summary="List disputes",
        tags=["Settlement - Admin"],
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class AdminDisputeDetailView(generics.RetrieveAPIView):
    """GET /api/v1/settlement/admin/disputes/{dispute_id}/"""

    permission_classes = [IsAdminUser]
    serializer_class = DisputeCaseSerializer
    queryset = DisputeCase.objects.all()
    lookup_url_kwarg = "dispute_id"

    @extend_schema(
        operation_id="admin_get_dispute",
        summary="Get dispute",
        tags=["Settlement - Admin"],
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class AdminDisputeEvidenceView(APIView):
    """POST /api/v1/settlement/admin/disputes/{dispute_id}/evidence/"""

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="admin_submit_dispute_evidence",
        summary="Submit dispute evidence",
        description=(
            "Forwards evidence to Stripe. Rejected once the evidence "
            "deadline has passed or the dispute is closed."
        ),
        request=SubmitEvidenceSerializer,
        responses={
            200: OpenApiResponse(response=DisputeCaseSerializer),
            409: OpenApiResponse(description="Evidence window closed"),
            502: OpenApiResponse(description="Stripe rejected or unavailable"),
        },
        tags=["Settlement - Admin"],
    )
    def post(self, request, dispute_id):
        serializer = SubmitEvidenceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        case = DisputeManager().submit_evidence(
            dispute_id,
            evidence=serializer.validated_data["evidence"],
            submit=serializer.validated_data["submit"],
        )
        return Response(DisputeCaseSerializer(case).data)


# =============================================================================
# Admin - Reporting
# =============================================================================


class AdminRevenueView(APIView):
    """GET /api/v1/settlement/admin/revenue/?start=...&end=..."""

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="admin_platform_revenue",
        summary="Platform revenue",
        parameters=[RevenueQuerySerializer],
        responses={200: OpenApiResponse(response=PlatformRevenueSerializer)},
        tags=["Settlement - Admin"],
    )
    def get(self, request):
        query = RevenueQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        revenue = SettlementLedger.platform_revenue(
            start=query.validated_data.get("start"),
            end=query.validated_data.get("end"),
        )
        return Response(PlatformRevenueSerializer(revenue).data)
