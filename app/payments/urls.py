"""
URL configuration for the payments app.

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.

Usage:
    # In config/urls.py
    api_v1_patterns = [
        path("payments/", include("payments.urls")),
    ]
"""

from django.urls import path

from payments import views
from payments.webhooks.views import provider_webhook

app_name = "payments"

urlpatterns = [
    # Payment attempts
    path("create/", views.CreatePaymentView.as_view(), name="create"),
    path("token-url/", views.TokenUrlView.as_view(), name="token-url"),
    path("status/<str:payment_id>/", views.PaymentStatusView.as_view(), name="status"),
    path("verify/", views.PaymentStatusView.as_view(), name="verify"),
    path("order-info/<str:order_id>/", views.OrderInfoView.as_view(), name="order-info"),
    path("phonepe/return/", views.PhonePeReturnView.as_view(), name="phonepe-return"),
    path("phonepe/retry/", views.RetryPaymentView.as_view(), name="phonepe-retry"),
    path("cancel/", views.CancelPaymentView.as_view(), name="cancel"),
    # Refunds
    path("refunds/", views.RefundCreateView.as_view(), name="refund-create"),
    path("refunds/<str:refund_id>/", views.RefundStatusView.as_view(), name="refund-status"),
    path(
        "<str:payment_id>/refunds/",
        views.PaymentRefundListView.as_view(),
        name="payment-refunds",
    ),
    # Webhook endpoints
    path("webhook/<str:provider>/", provider_webhook, name="webhook"),
    # Providers & keys
    path("providers/", views.ProviderListView.as_view(), name="providers"),
    path("idempotency-key/", views.IdempotencyKeyView.as_view(), name="idempotency-key"),
    # Admin
    path(
        "admin/provider-configs/",
        views.ProviderConfigAdminView.as_view(),
        name="admin-provider-configs",
    ),
    path("admin/health/", views.ProviderHealthView.as_view(), name="admin-health"),
    path("admin/stats/", views.PaymentsStatsView.as_view(), name="admin-stats"),
]
