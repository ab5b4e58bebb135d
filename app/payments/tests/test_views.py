"""
Tests for the payments REST API.

The facade is built with the adapter double from conftest and patched in
as ``payments.views.build_payments_service``, so requests run through the
real serializers, service, ledger and exception handler.

Tests cover:
- Payment creation, token URL, status, return, retry and cancel
- Tenant and Idempotency-Key headers
- Refund endpoints and staff-only permissions
- Provider listing, key generation and admin endpoints
"""

from unittest.mock import patch

import pytest
from django.contrib.auth import get_user_model

from payments.adapters.base import HealthCheckResult
from payments.models import Payment, ProviderConfig
from payments.services.config_resolver import ConfigResolver
from payments.services.payments_service import PaymentsService
from payments.state_machines import PaymentStatus, RefundStatus
from payments.tests.factories import IdempotencyKeyFactory, RefundFactory, WebhookInboxFactory

BASE_URL = "/api/v1/payments"


@pytest.fixture
def service(phonepe_config, fake_factory):
    service = PaymentsService(
        adapter_factory=fake_factory,
        config_resolver=ConfigResolver(),
        sleep=lambda seconds: None,
    )
    with patch("payments.views.build_payments_service", return_value=service):
        yield service


@pytest.fixture
def buyer_client(api_client, db):
    user = get_user_model().objects.create_user(username="buyer", password="not-used")
    api_client.force_authenticate(user=user)
    return api_client


# =============================================================================
# Payment Attempts
# =============================================================================


@pytest.mark.django_db
class TestCreatePaymentView:
    def test_creates_attempt(self, api_client, service, order, fake_adapter):
        response = api_client.post(
            f"{BASE_URL}/create/",
            {"orderId": str(order.id), "customer": {"phone": "9999999999"}},
            format="json",
            HTTP_IDEMPOTENCY_KEY="payment_1",
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["provider"] == "phonepe"
        assert data["amountMinor"] == 1000
        assert Payment.objects.filter(pk=data["paymentId"]).exists()
        params = fake_adapter.create_payment.call_args.args[0]
        assert params.idempotency_key == "payment_1"
        assert params.customer == {"phone": "9999999999"}

    def test_same_key_returns_stored_response(self, api_client, service, order, fake_adapter):
        body = {"orderId": str(order.id)}

        first = api_client.post(
            f"{BASE_URL}/create/", body, format="json", HTTP_IDEMPOTENCY_KEY="payment_1"
        )
        second = api_client.post(
            f"{BASE_URL}/create/", body, format="json", HTTP_IDEMPOTENCY_KEY="payment_1"
        )

        assert first.json() == second.json()
        assert fake_adapter.create_payment.call_count == 1

    def test_same_key_different_body(self, api_client, service, order):
        api_client.post(
            f"{BASE_URL}/create/",
            {"orderId": str(order.id)},
            format="json",
            HTTP_IDEMPOTENCY_KEY="payment_1",
        )

        response = api_client.post(
            f"{BASE_URL}/create/",
            {"orderId": str(order.id), "amount": "5.00"},
            format="json",
            HTTP_IDEMPOTENCY_KEY="payment_1",
        )

        assert response.status_code == 409

    def test_missing_idempotency_key(self, api_client, service, order):
        response = api_client.post(f"{BASE_URL}/create/", {"orderId": str(order.id)}, format="json")

        assert response.status_code == 400
        assert response.json()["error_code"] == "IDEMPOTENCY_KEY_REQUIRED"

    def test_missing_order_id(self, api_client, service):
        response = api_client.post(
            f"{BASE_URL}/create/", {}, format="json", HTTP_IDEMPOTENCY_KEY="payment_1"
        )

        assert response.status_code == 400
        assert "orderId" in response.json()

    def test_order_of_other_tenant(self, api_client, service, order):
        response = api_client.post(
            f"{BASE_URL}/create/",
            {"orderId": str(order.id)},
            format="json",
            HTTP_IDEMPOTENCY_KEY="payment_1",
            HTTP_X_TENANT_ID="tenant-b",
        )

        assert response.status_code == 404

    def test_unavailable_provider(self, api_client, service, order):
        response = api_client.post(
            f"{BASE_URL}/create/",
            {"orderId": str(order.id), "provider": "stripe"},
            format="json",
            HTTP_IDEMPOTENCY_KEY="payment_1",
        )

        assert response.status_code == 404
        assert response.json()["error_code"] == "PROVIDER_NOT_AVAILABLE"


@pytest.mark.django_db
class TestTokenUrlView:
    def test_returns_checkout_url(self, api_client, service, order):
        response = api_client.post(
            f"{BASE_URL}/token-url/",
            {"orderId": str(order.id), "amount": "10.00"},
            format="json",
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert Payment.objects.filter(order=order).count() == 1

    def test_amount_required(self, api_client, service, order):
        response = api_client.post(
            f"{BASE_URL}/token-url/", {"orderId": str(order.id)}, format="json"
        )

        assert response.status_code == 400


@pytest.mark.django_db
class TestPaymentStatusView:
    def test_get(self, api_client, service, payment):
        response = api_client.get(f"{BASE_URL}/status/{payment.id}/")

        assert response.status_code == 200
        assert response.json()["data"]["status"] == PaymentStatus.PROCESSING

    def test_verify_post(self, api_client, service, payment):
        response = api_client.post(
            f"{BASE_URL}/verify/", {"paymentId": payment.provider_transaction_id}, format="json"
        )

        assert response.status_code == 200
        assert response.json()["data"]["responseCode"] == "PAYMENT_PENDING"

    def test_unknown_payment(self, api_client, service):
        response = api_client.get(f"{BASE_URL}/status/TXN_missing/")

        assert response.status_code == 404


@pytest.mark.django_db
class TestOrderInfoView:
    def test_order_summary(self, api_client, service, payment):
        response = api_client.get(f"{BASE_URL}/order-info/{payment.order_id}/")

        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_unknown_order(self, api_client, service):
        response = api_client.get(f"{BASE_URL}/order-info/00000000-0000-0000-0000-000000000000/")

        assert response.status_code == 404


@pytest.mark.django_db
class TestPhonePeReturnView:
    def test_return_is_recorded_not_trusted(self, api_client, service, payment):
        response = api_client.get(
            f"{BASE_URL}/phonepe/return/",
            {"orderId": str(payment.order_id), "state": "COMPLETED"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "processing"
        assert Payment.objects.get(pk=payment.pk).status == PaymentStatus.CREATED

    def test_order_id_required(self, api_client, service):
        response = api_client.get(f"{BASE_URL}/phonepe/return/")

        assert response.status_code == 400
        assert response.json()["error_code"] == "ORDER_ID_REQUIRED"


@pytest.mark.django_db
class TestRetryAndCancelViews:
    def test_retry_blocked_while_polling(self, api_client, service, order):
        api_client.post(
            f"{BASE_URL}/create/",
            {"orderId": str(order.id)},
            format="json",
            HTTP_IDEMPOTENCY_KEY="payment_1",
        )

        response = api_client.post(
            f"{BASE_URL}/phonepe/retry/", {"orderId": str(order.id)}, format="json"
        )

        assert response.status_code == 409

    def test_cancel(self, api_client, service, payment):
        response = api_client.post(
            f"{BASE_URL}/cancel/",
            {"paymentId": str(payment.id), "reason": "changed my mind"},
            format="json",
        )

        assert response.status_code == 200
        assert response.json()["data"]["status"] == PaymentStatus.CANCELLED

    def test_cancel_captured(self, api_client, service, captured_payment):
        response = api_client.post(
            f"{BASE_URL}/cancel/", {"paymentId": str(captured_payment.id)}, format="json"
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "PAYMENT_ALREADY_COMPLETED"


# =============================================================================
# Refunds
# =============================================================================


@pytest.mark.django_db
class TestRefundViews:
    def test_staff_creates_refund(self, admin_client, service, captured_payment):
        response = admin_client.post(
            f"{BASE_URL}/refunds/",
            {"paymentId": str(captured_payment.id), "amount": "3.00", "reason": "damaged"},
            format="json",
            HTTP_IDEMPOTENCY_KEY="refund_1",
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["amountMinor"] == 300
        assert data["status"] == RefundStatus.PROCESSING

    def test_anonymous_cannot_refund(self, api_client, service, captured_payment):
        response = api_client.post(
            f"{BASE_URL}/refunds/",
            {"paymentId": str(captured_payment.id)},
            format="json",
            HTTP_IDEMPOTENCY_KEY="refund_1",
        )

        assert response.status_code == 401

    def test_buyer_cannot_refund(self, buyer_client, service, captured_payment):
        response = buyer_client.post(
            f"{BASE_URL}/refunds/",
            {"paymentId": str(captured_payment.id)},
            format="json",
            HTTP_IDEMPOTENCY_KEY="refund_1",
        )

        assert response.status_code == 403

    def test_refund_status(self, api_client, service, captured_payment):
        refund = RefundFactory(payment=captured_payment, status=RefundStatus.FAILED)

        response = api_client.get(f"{BASE_URL}/refunds/{refund.merchant_refund_id}/")

        assert response.status_code == 200
        assert response.json()["data"]["status"] == RefundStatus.FAILED

    def test_payment_refunds(self, api_client, service, captured_payment):
        RefundFactory(payment=captured_payment, amount_minor=250)

        response = api_client.get(f"{BASE_URL}/{captured_payment.id}/refunds/")

        assert response.status_code == 200
        assert response.json()["data"]["refundableMinor"] == 750


# =============================================================================
# Providers and Keys
# =============================================================================


@pytest.mark.django_db
class TestProviderListView:
    def test_enabled_providers(self, api_client, service):
        response = api_client.get(f"{BASE_URL}/providers/")

        assert response.status_code == 200
        assert [entry["provider"] for entry in response.json()["data"]] == ["phonepe"]


@pytest.mark.django_db
class TestIdempotencyKeyView:
    def test_default_scope(self, api_client):
        response = api_client.post(f"{BASE_URL}/idempotency-key/", {}, format="json")

        assert response.status_code == 200
        assert response.json()["data"]["idempotencyKey"].startswith("payment_")

    def test_custom_scope(self, api_client):
        response = api_client.post(
            f"{BASE_URL}/idempotency-key/", {"scope": "refund"}, format="json"
        )

        assert response.json()["data"]["idempotencyKey"].startswith("refund_")

    def test_invalid_scope(self, api_client):
        response = api_client.post(
            f"{BASE_URL}/idempotency-key/", {"scope": "Not A Scope"}, format="json"
        )

        assert response.status_code == 400


# =============================================================================
# Admin
# =============================================================================


@pytest.mark.django_db
class TestProviderConfigAdminView:
    def test_status(self, admin_client, service):
        response = admin_client.get(f"{BASE_URL}/admin/provider-configs/")

        assert response.status_code == 200
        phonepe = response.json()["data"][0]
        assert phonepe["provider"] == "phonepe"
        assert phonepe["test"]["enabled"] is True
        assert phonepe["test"]["configured"] is True
        assert phonepe["live"]["enabled"] is False

    def test_update(self, admin_client, service):
        response = admin_client.post(
            f"{BASE_URL}/admin/provider-configs/",
            {
                "provider": "phonepe",
                "environment": "live",
                "isEnabled": True,
                "merchantId": "M22LIVE",
                "saltIndex": 2,
            },
            format="json",
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["merchantId"] == "M22LIVE"
        assert data["isEnabled"] is True
        assert "saltKey" not in data
        config = ProviderConfig.objects.get(provider="phonepe", environment="live")
        assert config.salt_index == 2

    def test_unknown_provider(self, admin_client, service):
        response = admin_client.post(
            f"{BASE_URL}/admin/provider-configs/",
            {"provider": "razorpay", "environment": "test"},
            format="json",
        )

        assert response.status_code == 400

    def test_buyer_forbidden(self, buyer_client, service):
        response = buyer_client.get(f"{BASE_URL}/admin/provider-configs/")

        assert response.status_code == 403


@pytest.mark.django_db
class TestProviderHealthView:
    def test_all_healthy(self, admin_client, service):
        response = admin_client.get(f"{BASE_URL}/admin/health/")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["healthy"] is True
        assert data["providers"][0]["provider"] == "phonepe"

    def test_unhealthy_provider(self, admin_client, service, fake_adapter):
        fake_adapter.health_check.return_value = HealthCheckResult(
            provider="phonepe", healthy=False, response_time_ms=5000, error="timeout"
        )

        response = admin_client.get(f"{BASE_URL}/admin/health/")

        assert response.json()["data"]["healthy"] is False


@pytest.mark.django_db
class TestPaymentsStatsView:
    def test_counts(self, admin_client):
        IdempotencyKeyFactory()
        WebhookInboxFactory()

        response = admin_client.get(f"{BASE_URL}/admin/stats/")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["idempotency"]["totalKeys"] == 1
        assert data["webhooks"]["total"] == 1

    def test_anonymous(self, api_client, db):
        response = api_client.get(f"{BASE_URL}/admin/stats/")

        assert response.status_code == 401
