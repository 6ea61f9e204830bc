"""
URL configuration for the settlement app.

All routes are prefixed with /api/v1/settlement/ when included in the
main URLconf, so Stripe posts to /api/v1/settlement/webhooks/payments/.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("settlement/", include("settlement.urls")),
    ]
"""

from django.urls import path

from settlement import views
from settlement.webhooks.views import stripe_webhook

app_name = "settlement"

urlpatterns = [
    # Webhook endpoint
    path("webhooks/payments/", stripe_webhook, name="stripe_webhook"),
    # Buyer checkout
    path("purchases/", views.PurchaseCreateView.as_view(), name="purchase_create"),
    path(
        "purchases/<uuid:purchase_id>/",
        views.PurchaseDetailView.as_view(),
        name="purchase_detail",
    ),
    path(
        "payment-methods/",
        views.PaymentMethodListView.as_view(),
        name="payment_methods",
    ),
    # Payee accounts
    path("payee-account/", views.PayeeAccountView.as_view(), name="payee_account"),
    path(
        "payee-account/onboarding/",
        views.PayeeOnboardingView.as_view(),
        name="payee_onboarding",
    ),
    path(
        "payee-account/links/",
        views.PayeeAccountLinkView.as_view(),
        name="payee_account_link",
    ),
    path(
        "payee-account/earnings/",
        views.PayeeEarningsView.as_view(),
        name="payee_earnings",
    ),
    # Admin - refunds
    path(
        "admin/refunds/",
        views.AdminRefundListCreateView.as_view(),
        name="admin_refunds",
    ),
    path(
        "admin/refunds/<uuid:refund_id>/",
        views.AdminRefundDetailView.as_view(),
        name="admin_refund_detail",
    ),
    path(
        "admin/refunds/<uuid:refund_id>/cancel/",
        views.AdminRefundCancelView.as_view(),
        name="admin_refund_cancel",
    ),
    path(
        "admin/refunds/<uuid:refund_id>/sync/",
        views.AdminRefundSyncView.as_view(),
        name="admin_refund_sync",
    ),
    # Admin - disputes
    path(
        "admin/disputes/",
        views.AdminDisputeListView.as_view(),
        name="admin_disputes",
    ),
    path(
        "admin/disputes/<uuid:dispute_id>/",
        views.AdminDisputeDetailView.as_view(),
        name="admin_dispute_detail",
    ),
    path(
        "admin/disputes/<uuid:dispute_id>/evidence/",
        views.AdminDisputeEvidenceView.as_view(),
        name="admin_dispute_evidence",
    ),
    # Admin - reporting
    path("admin/revenue/", views.AdminRevenueView.as_view(), name="admin_revenue"),
]
