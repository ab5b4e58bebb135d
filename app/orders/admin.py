"""Order admin configuration."""

from django.contrib import admin

from core.helpers import format_minor_units

from orders.models import Order


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Admin configuration for Order.

    Status columns follow the order transition tables and are changed by
    the payments services, not by hand.
    """

    list_display = [
        "id",
        "tenant_id",
        "status",
        "payment_status",
        "payment_method",
        "amount_display",
        "created_at",
    ]
    list_filter = ["status", "payment_status", "payment_method", "currency"]
    search_fields = ["id", "customer_email", "customer_phone"]
    readonly_fields = ["id", "status", "payment_status", "payment_failed_at", "created_at", "updated_at"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    @admin.display(description="Amount")
    def amount_display(self, obj: Order) -> str:
        return f"{format_minor_units(obj.amount_minor)} {obj.currency}"
