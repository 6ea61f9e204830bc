"""
Settlement admin configuration.

The admin is read-mostly: statuses are owned by the services and the
Stripe webhooks, so FSM fields and money columns are read-only here.
Payee accounts and purchases can never be deleted (audit trail).
"""

from django.contrib import admin

from settlement.models import (
    DisputeCase,
    PayeeAccount,
    Purchase,
    RefundRequest,
    WebhookEvent,
)


def format_cents(amount_cents: int, currency: str) -> str:
    return f"{amount_cents / 100:.2f} {currency.upper()}"


@admin.register(PayeeAccount)
class PayeeAccountAdmin(admin.ModelAdmin):
    """Visibility into Stripe Connect account status."""

    list_display = [
        "id",
        "owner",
        "stripe_account_id",
        "verification_status",
        "charges_enabled",
        "payouts_enabled",
        "last_synced_at",
    ]
    list_filter = ["verification_status", "charges_enabled", "payouts_enabled", "country"]
    search_fields = ["id", "stripe_account_id", "email", "owner__email"]
    readonly_fields = [
        "id",
        "owner",
        "stripe_account_id",
        "charges_enabled",
        "payouts_enabled",
        "details_submitted",
        "verification_status",
        "disabled_reason",
        "last_synced_at",
        "created_at",
        "updated_at",
        "version",
    ]
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "owner", "stripe_account_id", "account_type")}),
        ("Contact", {"fields": ("email", "country")}),
        (
            "Status",
            {
                "fields": (
                    "verification_status",
                    "charges_enabled",
                    "payouts_enabled",
                    "details_submitted",
                    "disabled_reason",
                    "last_synced_at",
                ),
            },
        ),
        ("Metadata", {"fields": ("metadata", "version"), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    def has_delete_permission(self, request, obj=None) -> bool:
        """Payee accounts are never hard-deleted."""
        return False


@admin.register(Purchase)
class PurchaseAdmin(admin.ModelAdmin):
    """
    Purchases and their commission split.

    State changes go through SettlementLedger, not the admin.
    """

    list_display = [
        "id",
        "buyer",
        "payee",
        "app_id",
        "gross_display",
        "status",
        "created_at",
    ]
    list_filter = ["status", "currency", "created_at"]
    search_fields = [
        "id",
        "app_id",
        "stripe_payment_intent_id",
        "stripe_charge_id",
        "buyer__email",
        "payee__stripe_account_id",
    ]
    readonly_fields = [f.name for f in Purchase._meta.fields]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    @admin.display(description="Gross")
    def gross_display(self, obj: Purchase) -> str:
        return format_cents(obj.gross_amount_cents, obj.currency)

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Purchases are the audit trail of every charge."""
        return False


@admin.register(RefundRequest)
class RefundRequestAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "purchase",
        "amount_display",
        "reason",
        "status",
        "admin",
        "created_at",
    ]
    list_filter = ["status", "reason", "created_at"]
    search_fields = ["id", "stripe_refund_id", "stripe_payment_intent_id", "purchase__id"]
    readonly_fields = [f.name for f in RefundRequest._meta.fields if f.name != "description"]
    ordering = ["-created_at"]

    @admin.display(description="Amount")
    def amount_display(self, obj: RefundRequest) -> str:
        return format_cents(obj.amount_cents, obj.currency)

    def has_add_permission(self, request) -> bool:
        """Refunds are issued through the API so Stripe is called."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(DisputeCase)
class DisputeCaseAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "purchase",
        "amount_display",
        "reason",
        "status",
        "evidence_due_by",
        "closed_at",
    ]
    list_filter = ["status", "reason"]
    search_fields = ["id", "stripe_dispute_id", "stripe_charge_id", "purchase__id"]
    readonly_fields = [f.name for f in DisputeCase._meta.fields]
    ordering = ["evidence_due_by"]

    @admin.display(description="Amount")
    def amount_display(self, obj: DisputeCase) -> str:
        return format_cents(obj.amount_cents, obj.currency)

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Stripe webhook log.

    Failed and skipped events keep their reason in error_message.
    """

    list_display = [
        "stripe_event_id",
        "event_type",
        "status",
        "retry_count",
        "event_created_at",
        "processed_at",
    ]
    list_filter = ["status", "event_type"]
    search_fields = ["stripe_event_id", "event_type"]
    readonly_fields = [f.name for f in WebhookEvent._meta.fields]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False
