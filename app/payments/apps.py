"""
Payments app configuration.

This app reconciles gateway payments with orders:
- PhonePe UPI and Stripe adapters behind one interface
- Idempotent payment and refund creation
- Webhook inbox, verification and routing
- Status polling for attempts whose webhook never arrives
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
