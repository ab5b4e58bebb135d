"""
Payment admin configuration.

Payments, refunds, polling jobs and the webhook inbox are read-mostly here:
status changes must go through the service layer so the audit trail and
order projection stay consistent.
"""

from django.contrib import admin

from core.helpers import format_minor_units

from payments.models import (
    IdempotencyKey,
    Payment,
    PaymentEvent,
    PollingJob,
    ProviderConfig,
    Refund,
    WebhookInbox,
)

__all__ = [
    "IdempotencyKeyAdmin",
    "PaymentAdmin",
    "PaymentEventAdmin",
    "PollingJobAdmin",
    "ProviderConfigAdmin",
    "RefundAdmin",
    "WebhookInboxAdmin",
]


class RefundInline(admin.TabularInline):
    """Inline display of refunds for a payment."""

    model = Refund
    extra = 0
    fields = ["id", "merchant_refund_id", "amount_minor", "status", "upi_utr", "created_at"]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Admin configuration for Payment.

    The status field is an FSM-protected field and is never editable.
    """

    list_display = [
        "id",
        "tenant_id",
        "order",
        "provider",
        "status",
        "amount_display",
        "method_kind",
        "created_at",
    ]
    list_filter = ["provider", "status", "method_kind", "environment", "created_at"]
    search_fields = [
        "id",
        "order__id",
        "provider_payment_id",
        "provider_transaction_id",
        "provider_reference_id",
    ]
    readonly_fields = [
        "id",
        "status",
        "amount_authorized_minor",
        "amount_captured_minor",
        "amount_refunded_minor",
        "captured_at",
        "failed_at",
        "cancelled_at",
        "version",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [RefundInline]

    fieldsets = (
        (None, {"fields": ("id", "tenant_id", "order", "status")}),
        (
            "Provider",
            {
                "fields": (
                    "provider",
                    "environment",
                    "provider_payment_id",
                    "provider_order_id",
                    "provider_transaction_id",
                    "provider_reference_id",
                ),
            },
        ),
        (
            "Amount",
            {
                "fields": (
                    "amount_authorized_minor",
                    "amount_captured_minor",
                    "amount_refunded_minor",
                    "currency",
                ),
            },
        ),
        (
            "UPI",
            {
                "fields": (
                    "method_kind",
                    "upi_payer_handle",
                    "upi_utr",
                    "upi_instrument_variant",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Failure Info",
            {"fields": ("failure_code", "failure_message"), "classes": ("collapse",)},
        ),
        (
            "State Timestamps",
            {
                "fields": ("expires_at", "captured_at", "failed_at", "cancelled_at"),
                "classes": ("collapse",),
            },
        ),
        ("Metadata", {"fields": ("metadata", "version"), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    @admin.display(description="Amount")
    def amount_display(self, obj: Payment) -> str:
        return f"{format_minor_units(obj.amount_authorized_minor)} {obj.currency}"

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for payments (audit trail)."""
        return False


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "payment",
        "merchant_refund_id",
        "amount_display",
        "status",
        "created_at",
    ]
    list_filter = ["provider", "status", "created_at"]
    search_fields = ["id", "payment__id", "merchant_refund_id", "provider_refund_id"]
    readonly_fields = [
        "id",
        "status",
        "amount_minor",
        "completed_at",
        "failed_at",
        "version",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    @admin.display(description="Amount")
    def amount_display(self, obj: Refund) -> str:
        return f"{format_minor_units(obj.amount_minor)} {obj.currency}"

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(PaymentEvent)
class PaymentEventAdmin(admin.ModelAdmin):
    """Append-only audit, security and lifecycle trail."""

    list_display = ["event_type", "channel", "tenant_id", "provider", "source", "status", "occurred_at"]
    list_filter = ["channel", "source", "provider", "occurred_at"]
    search_fields = ["event_type", "payment__id", "order_id"]
    readonly_fields = [field.name for field in PaymentEvent._meta.fields]
    ordering = ["-occurred_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(WebhookInbox)
class WebhookInboxAdmin(admin.ModelAdmin):
    list_display = ["id", "provider", "tenant_id", "verified", "attempts", "processed_at", "created_at"]
    list_filter = ["provider", "verified", "created_at"]
    search_fields = ["id", "dedupe_key"]
    readonly_fields = [field.name for field in WebhookInbox._meta.fields]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(IdempotencyKey)
class IdempotencyKeyAdmin(admin.ModelAdmin):
    list_display = ["key", "scope", "tenant_id", "state", "created_at", "completed_at"]
    list_filter = ["scope", "state"]
    search_fields = ["key"]
    readonly_fields = [field.name for field in IdempotencyKey._meta.fields]
    ordering = ["-created_at"]


@admin.register(PollingJob)
class PollingJobAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "payment",
        "status",
        "attempt",
        "next_poll_at",
        "expire_at",
        "last_status",
    ]
    list_filter = ["status"]
    search_fields = ["id", "payment__id", "merchant_transaction_id"]
    readonly_fields = [field.name for field in PollingJob._meta.fields]
    ordering = ["-created_at"]


@admin.register(ProviderConfig)
class ProviderConfigAdmin(admin.ModelAdmin):
    """
    Non-secret provider configuration.

    Edits made here bypass the config cache; it expires within five minutes.
    """

    list_display = ["tenant_id", "provider", "environment", "is_enabled", "merchant_id", "updated_at"]
    list_filter = ["provider", "environment", "is_enabled"]
    search_fields = ["tenant_id", "merchant_id"]
    readonly_fields = ["id", "created_at", "updated_at"]
