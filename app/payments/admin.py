"""
Payment admin configuration.

Transactions, payouts and webhook events are read-only here: state changes
go through the service layer (reviewer endpoints, webhooks, workers).
Catalog models (providers, routing rules, methods, fee configs) are edited
in the admin.
"""

from django.contrib import admin

from payments.models import (
    PaymentMethodConfig,
    PaymentProvider,
    PaymentTransaction,
    PayoutDistribution,
    PlatformFeeConfig,
    ProviderRoutingRule,
    WebhookEvent,
)


class ReadOnlyAdminMixin:
    """Disallow add/delete; every field is read-only."""

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]


class PayoutDistributionInline(admin.TabularInline):
    model = PayoutDistribution
    extra = 0
    can_delete = False
    fields = ["recipient", "recipient_type", "amount", "status", "release_date", "released_at", "attempt_count"]
    readonly_fields = fields


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    """
    Admin configuration for PaymentTransaction.

    Manual proofs are approved or rejected through the reviewer API so the
    payout and notification side effects run.
    """

    list_display = [
        "id",
        "user",
        "amount_display",
        "status",
        "transaction_type",
        "payment_method",
        "is_manual",
        "created_at",
    ]
    list_filter = ["status", "transaction_type", "is_manual", "currency", "created_at"]
    search_fields = ["id", "gateway_transaction_id", "payment_reference_code", "user__email", "reference_id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [PayoutDistributionInline]

    fieldsets = (
        (None, {"fields": ("id", "user", "status", "transaction_type", "description")}),
        ("Reference", {"fields": ("reference_type", "reference_id")}),
        (
            "Amount",
            {"fields": ("amount", "currency", "platform_fee", "gateway_fee", "total_fees", "net_amount", "refunded_amount")},
        ),
        ("Gateway", {"fields": ("provider", "payment_method", "is_manual", "gateway_transaction_id", "gateway_metadata")}),
        (
            "Manual Payment",
            {
                "fields": (
                    "payment_reference_code",
                    "upload_deadline",
                    "proof_of_payment_key",
                    "proof_uploaded_at",
                    "proof_upload_attempts",
                    "verified_by",
                    "verified_at",
                    "verification_notes",
                    "rejection_reason",
                ),
                "classes": ("collapse",),
            },
        ),
        ("Timestamps", {"fields": ("processed_at", "refunded_at", "canceled_at", "created_at", "updated_at")}),
        ("Metadata", {"fields": ("failure_reason", "metadata", "version"), "classes": ("collapse",)}),
    )

    @admin.display(description="Amount")
    def amount_display(self, obj):
        return f"{obj.amount} {obj.currency}"


@admin.register(PayoutDistribution)
class PayoutDistributionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ["id", "recipient", "recipient_type", "amount", "currency", "status", "release_date", "attempt_count"]
    list_filter = ["status", "recipient_type", "currency"]
    search_fields = ["id", "recipient__email", "gateway_payout_id", "payment_transaction__id"]
    date_hierarchy = "release_date"
    ordering = ["release_date"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ["id", "provider_code", "event_type", "status", "retry_count", "created_at", "processed_at"]
    list_filter = ["provider_code", "status", "event_type"]
    search_fields = ["id", "event_id", "gateway_transaction_id"]
    ordering = ["-created_at"]


# =============================================================================
# Catalog
# =============================================================================


class ProviderRoutingRuleInline(admin.TabularInline):
    model = ProviderRoutingRule
    extra = 0
    fields = ["name", "priority", "conditions", "is_active"]


@admin.register(PaymentProvider)
class PaymentProviderAdmin(admin.ModelAdmin):
    list_display = ["provider_code", "provider_name", "is_manual", "is_active", "is_default", "priority_order"]
    list_filter = ["is_active", "is_manual"]
    search_fields = ["provider_code", "provider_name"]
    ordering = ["priority_order"]
    inlines = [ProviderRoutingRuleInline]


@admin.register(PaymentMethodConfig)
class PaymentMethodConfigAdmin(admin.ModelAdmin):
    list_display = ["method_code", "display_name", "method_type", "provider", "requires_proof", "is_active", "display_order"]
    list_filter = ["method_type", "is_active", "requires_proof"]
    search_fields = ["method_code", "method_name", "display_name"]
    ordering = ["display_order"]


@admin.register(PlatformFeeConfig)
class PlatformFeeConfigAdmin(admin.ModelAdmin):
    list_display = [
        "name",
        "transaction_type",
        "fee_percentage",
        "fee_fixed",
        "min_fee",
        "max_fee",
        "effective_from",
        "effective_until",
        "priority",
        "is_active",
    ]
    list_filter = ["transaction_type", "is_active"]
    search_fields = ["name"]
    ordering = ["transaction_type", "-priority"]
