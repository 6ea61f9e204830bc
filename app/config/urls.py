"""
URL configuration for the marketplace settlement service.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /webhooks/payments/            - Stripe webhook endpoint (same view as below)
    /api/v1/settlement/            - Settlement endpoints
        webhooks/payments/         - Stripe webhook endpoint (POST, signature-verified)
        purchases/                 - Create purchase and PaymentIntent (buyer)
        purchases/{id}/            - Purchase detail (buyer)
        payment-methods/           - Saved cards (buyer)
        payee-account/             - Connected account status (payee)
        payee-account/onboarding/  - Start Stripe Connect onboarding (payee)
        payee-account/links/       - Fresh onboarding/update link (payee)
        payee-account/earnings/    - Earnings summary (payee)
        admin/refunds/             - List/issue refunds (staff)
        admin/refunds/{id}/        - Refund detail, cancel/, sync/ (staff)
        admin/disputes/            - Open disputes by evidence deadline (staff)
        admin/disputes/{id}/       - Dispute detail, evidence/ (staff)
        admin/revenue/             - Platform revenue report (staff)

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check
from settlement.webhooks.views import stripe_webhook

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    path("settlement/", include("settlement.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # Stripe webhook at the path registered in the Stripe dashboard
    path("webhooks/payments/", stripe_webhook, name="stripe_webhook"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Settlement Admin"
admin.site.site_title = "Settlement Admin Portal"
admin.site.index_title = "Purchases, refunds and disputes"
