"""
URL configuration for the payments service.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/payments/              - Payment endpoints
        create/                    - Create payment attempt (Idempotency-Key)
        token-url/                 - PhonePe hosted checkout URL
        status/{payment_id}/       - Verified payment status
        verify/                    - Verified payment status (body)
        order-info/{order_id}/     - Order payment summary
        phonepe/return/            - Buyer return from PhonePe
        phonepe/retry/             - Retry a failed UPI payment
        cancel/                    - Cancel a payment attempt
        refunds/                   - Create refund (Idempotency-Key)
        refunds/{refund_id}/       - Refund status
        {payment_id}/refunds/      - Refunds of a payment
        webhook/{provider}/        - Gateway webhook (POST)
        providers/                 - Enabled providers
        idempotency-key/           - Generate an idempotency key
        admin/provider-configs/    - Provider configuration (staff)
        admin/health/              - Gateway health (staff)
        admin/stats/               - Ledger and inbox statistics (staff)

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    path("payments/", include("payments.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Payments Admin"
admin.site.site_title = "Payments Admin Portal"
admin.site.index_title = "Orders, payments and refunds"
