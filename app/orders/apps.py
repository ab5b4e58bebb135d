"""
Orders app configuration.

Orders are the aggregate a buyer pays for. Their status fields are written
only by the payments projector through the transition tables in
orders.models.
"""

from django.apps import AppConfig


class OrdersConfig(AppConfig):
    """Configuration for the orders application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "orders"
    verbose_name = "Orders"
