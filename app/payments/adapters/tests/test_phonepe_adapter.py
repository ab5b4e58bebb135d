"""
Tests for the PhonePe adapter.

Tests cover:
- Attempt creation (checksum, request body, token URL, expiry clamping)
- Status queries, including PAYMENT_PENDING answers without a state
- Refund creation and refund status
- Webhook authentication and event parsing
- HTTP error translation and access token refresh
- Module helpers (state mapping, instrument selection, hosts)
"""

import base64
import dataclasses
import hashlib
import hmac
import json
import re
from unittest.mock import MagicMock, patch

import pytest
import requests

from payments.adapters.base import CreatePaymentParams, CreateRefundParams, WebhookVerifyParams
from payments.adapters.phonepe_adapter import (
    PhonePeAdapter,
    clamp_expire_after,
    generate_merchant_transaction_id,
    map_phonepe_payment_state,
    map_phonepe_refund_state,
    resolve_instrument,
)
from payments.adapters.phonepe_auth import PhonePeTokenManager, resolve_phonepe_host
from payments.exceptions import (
    ProviderAuthenticationError,
    ProviderRequestError,
    ProviderUnavailableError,
)

UAT_HOST = "https://api-preprod.phonepe.com/apis/pg-sandbox"
TOKEN_URL = "https://mercury-uat.phonepe.com/transact/pg?token=abc"


def sha256(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


def payment_params(**overrides):
    values = {
        "order_id": "ord-1",
        "tenant_id": "default",
        "amount_minor": 1000,
        "currency": "INR",
        "idempotency_key": "payment_1",
    }
    values.update(overrides)
    return CreatePaymentParams(**values)


def pay_response(**instrument_response):
    return {
        "success": True,
        "code": "PAYMENT_INITIATED",
        "message": "Payment initiated",
        "data": {
            "merchantId": "PGTESTPAYUAT",
            "transactionId": "OMO2401011234",
            "instrumentResponse": {
                "type": "PAY_PAGE",
                "redirectInfo": {"url": TOKEN_URL, "method": "GET"},
                **instrument_response,
            },
        },
    }


def sent_request(mock_request):
    """Decode the base64 request body of the last pay call."""
    encoded = mock_request.call_args.kwargs["json"]["request"]
    return encoded, json.loads(base64.b64decode(encoded))


# =============================================================================
# Payments
# =============================================================================


class TestCreatePayment:
    def test_returns_token_url_attempt(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(pay_response())

        result = phonepe_adapter.create_payment(payment_params())

        assert result.provider == "phonepe"
        assert result.status == "created"
        assert result.redirect_url == TOKEN_URL
        assert result.provider_order_id == "OMO2401011234"
        assert result.provider_payment_id == result.provider_transaction_id
        assert re.match(r"^TXN_\d{13}_[a-z0-9]{9}$", result.provider_payment_id)
        assert result.expire_after_seconds == 900
        assert result.expires_at is not None
        assert result.amount_minor == 1000
        assert result.currency == "INR"
        assert result.instrument_variant == "UPI_COLLECT"
        assert result.upi_intent is None

    def test_request_carries_checksum(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(pay_response())

        phonepe_adapter.create_payment(payment_params())

        method, url = mock_request.call_args.args
        assert method == "POST"
        assert url == f"{UAT_HOST}/pg/v1/pay"
        encoded, _ = sent_request(mock_request)
        headers = mock_request.call_args.kwargs["headers"]
        assert headers["X-VERIFY"] == sha256(f"{encoded}/pg/v1/pay" + "test-salt-key") + "###1"
        assert headers["X-MERCHANT-ID"] == "PGTESTPAYUAT"
        assert "Authorization" not in headers

    def test_request_body(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(pay_response())

        result = phonepe_adapter.create_payment(
            payment_params(expire_after_seconds=60, customer={"phone": "9876543210"})
        )

        _, body = sent_request(mock_request)
        assert body["merchantId"] == "PGTESTPAYUAT"
        assert body["merchantTransactionId"] == result.provider_transaction_id
        assert body["merchantOrderId"] == "ord-1"
        assert body["amount"] == 1000
        assert body["expireAfter"] == 300
        assert body["redirectUrl"] == "https://shop.example.com/payment/success"
        assert body["callbackUrl"] == "https://api.example.com/api/v1/payments/webhook/phonepe/"
        assert body["paymentFlow"] == {"type": "PG_CHECKOUT"}
        assert body["paymentInstrument"] == {"type": "UPI_COLLECT"}
        assert body["mobileNumber"] == "9876543210"
        assert result.expire_after_seconds == 300

    def test_intent_flow_returns_upi_intent(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(
            pay_response(intentUrl="upi://pay?pa=merchant@ybl&am=10.00", merchantName="Shop")
        )

        result = phonepe_adapter.create_payment(payment_params(instrument="intent"))

        _, body = sent_request(mock_request)
        assert body["paymentInstrument"] == {"type": "UPI_INTENT"}
        assert result.instrument_variant == "UPI_INTENT"
        assert result.upi_intent == {
            "intentUrl": "upi://pay?pa=merchant@ybl&am=10.00",
            "merchantName": "Shop",
            "amount": "10.00",
        }

    def test_pay_page_flow(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(pay_response())

        result = phonepe_adapter.create_payment(payment_params(instrument="PAY_PAGE"))

        _, body = sent_request(mock_request)
        assert body["paymentInstrument"] == {"type": "PAY_PAGE"}
        assert result.instrument_variant == ""

    def test_unsuccessful_response_is_rejected(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(
            {"success": False, "code": "BAD_REQUEST", "message": "Invalid amount"}
        )

        with pytest.raises(ProviderRequestError) as exc_info:
            phonepe_adapter.create_payment(payment_params())

        assert exc_info.value.provider_code == "BAD_REQUEST"
        assert "Invalid amount" in exc_info.value.message
        assert exc_info.value.is_retryable is False


class TestGetStatus:
    def test_completed_attempt(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(
            {
                "success": True,
                "code": "PAYMENT_SUCCESS",
                "message": "Your payment is successful.",
                "data": {
                    "merchantId": "PGTESTPAYUAT",
                    "merchantTransactionId": "TXN_1",
                    "transactionId": "T2401011234",
                    "amount": 1000,
                    "state": "COMPLETED",
                    "responseCode": "SUCCESS",
                    "paymentInstrument": {
                        "type": "UPI_COLLECT",
                        "vpa": "buyer@upi",
                        "utr": "UTR1234567",
                    },
                },
            }
        )

        result = phonepe_adapter.get_status("TXN_1")

        assert result.status == "captured"
        assert result.amount_minor == 1000
        assert result.provider_transaction_id == "T2401011234"
        assert result.response_code == "SUCCESS"
        assert result.data["payerVpa"] == "bu***@upi"
        assert result.data["utr"] == "******4567"
        assert result.data["paymentInstrument"]["vpa"] == "bu***@upi"
        assert result.data["instrumentVariant"] == "UPI_COLLECT"

    def test_status_path_and_checksum(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(
            {"success": True, "code": "PAYMENT_SUCCESS", "data": {"state": "COMPLETED"}}
        )

        phonepe_adapter.get_status("TXN_1")

        path = "/pg/v1/status/PGTESTPAYUAT/TXN_1"
        assert mock_request.call_args.args == ("GET", f"{UAT_HOST}{path}")
        assert mock_request.call_args.kwargs["json"] is None
        assert mock_request.call_args.kwargs["headers"]["X-VERIFY"] == (
            sha256(path + "test-salt-key") + "###1"
        )

    def test_pending_code_without_state(self, phonepe_adapter, mock_request, http_response):
        """PhonePe answers pending attempts with success false and a code."""
        mock_request.return_value = http_response(
            {"success": False, "code": "PAYMENT_PENDING", "message": "Payment is pending"}
        )

        result = phonepe_adapter.get_status("TXN_1")

        assert result.status == "processing"
        assert result.response_code == "PAYMENT_PENDING"
        assert result.amount_minor is None

    def test_unknown_code_is_rejected(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(
            {"success": False, "code": "TRANSACTION_NOT_FOUND", "message": "No transaction"}
        )

        with pytest.raises(ProviderRequestError) as exc_info:
            phonepe_adapter.get_status("TXN_missing")

        assert exc_info.value.provider_code == "TRANSACTION_NOT_FOUND"

    def test_failed_attempt(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(
            {
                "success": False,
                "code": "PAYMENT_ERROR",
                "data": {"state": "FAILED", "responseCode": "ZM", "amount": "1000"},
            }
        )

        result = phonepe_adapter.get_status("TXN_1")

        assert result.status == "failed"
        assert result.response_code == "ZM"
        assert result.amount_minor is None


# =============================================================================
# Refunds
# =============================================================================


class TestRefunds:
    def refund_params(self, **overrides):
        values = {
            "provider_payment_id": "TXN_1",
            "merchant_refund_id": " RFD_1 ",
            "amount_minor": 300,
            "currency": "INR",
            "idempotency_key": "refund_1",
            "reason": "Item returned",
        }
        values.update(overrides)
        return CreateRefundParams(**values)

    def test_create_refund(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(
            {
                "success": True,
                "code": "PAYMENT_PENDING",
                "data": {"transactionId": "OMR2401011234", "amount": 300, "state": "PENDING"},
            }
        )

        result = phonepe_adapter.create_refund(self.refund_params())

        assert result.merchant_refund_id == "RFD_1"
        assert result.status == "pending"
        assert result.provider_refund_id == "OMR2401011234"
        assert result.amount_minor == 300
        assert result.failure_message == ""

        assert mock_request.call_args.args == ("POST", f"{UAT_HOST}/pg/v1/payments/v2/refund")
        body = mock_request.call_args.kwargs["json"]
        assert body["merchantRefundId"] == "RFD_1"
        assert body["originalTransactionId"] == "TXN_1"
        assert body["originalMerchantOrderId"] == "TXN_1"
        assert body["amount"] == 300

    def test_create_refund_rejected(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(
            {"success": False, "code": "REFUND_AMOUNT_EXCEEDED", "message": "Too much"}
        )

        with pytest.raises(ProviderRequestError):
            phonepe_adapter.create_refund(self.refund_params())

    def test_refund_status_completed(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(
            {
                "success": True,
                "code": "PAYMENT_SUCCESS",
                "data": {
                    "transactionId": "OMR2401011234",
                    "amount": 300,
                    "state": "COMPLETED",
                    "utr": "UTR1234567",
                },
            }
        )

        result = phonepe_adapter.get_refund_status("RFD_1")

        assert result.status == "succeeded"
        assert result.upi_utr == "******4567"
        assert result.raw_response["data"]["utr"] == "******4567"
        assert mock_request.call_args.args[1] == f"{UAT_HOST}/pg/v1/status/PGTESTPAYUAT/RFD_1"

    def test_refund_status_failed_keeps_message(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(
            {
                "success": False,
                "code": "PAYMENT_ERROR",
                "message": "Refund failed at bank",
                "data": {"state": "FAILED"},
            }
        )

        result = phonepe_adapter.get_refund_status("RFD_1")

        assert result.status == "failed"
        assert result.failure_message == "Refund failed at bank"
        assert result.amount_minor is None

    def test_refund_status_without_state(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(
            {"success": False, "code": "TRANSACTION_NOT_FOUND"}
        )

        with pytest.raises(ProviderRequestError):
            phonepe_adapter.get_refund_status("RFD_missing")


# =============================================================================
# Webhooks
# =============================================================================


PAYMENT_WEBHOOK = json.dumps(
    {
        "type": "CHECKOUT_ORDER_COMPLETED",
        "payload": {
            "orderId": "OMO2401011234",
            "merchantTransactionId": "TXN_1",
            "transactionId": "T2401011234",
            "state": "COMPLETED",
            "amount": 1000,
            "paymentInstrument": {"type": "UPI_COLLECT", "vpa": "buyer@upi", "utr": "UTR1234567"},
        },
    }
)


class TestVerifyWebhook:
    def verify(self, adapter, body, headers):
        return adapter.verify_webhook(WebhookVerifyParams(headers=headers, body=body))

    def test_valid_payment_webhook(self, phonepe_adapter, phonepe_webhook_headers):
        result = self.verify(phonepe_adapter, PAYMENT_WEBHOOK, phonepe_webhook_headers(PAYMENT_WEBHOOK))

        assert result.verified is True
        assert result.error_code is None
        event = result.event
        assert event.event_type == "CHECKOUT_ORDER_COMPLETED"
        assert event.payment_id == "TXN_1"
        assert event.order_id == "OMO2401011234"
        assert event.transaction_id == "T2401011234"
        assert event.status == "captured"
        assert event.refund_id is None
        assert event.data["amount"] == 1000
        assert event.data["paymentInstrument"]["vpa"] == "bu***@upi"
        assert event.data["paymentInstrument"]["utr"] == "******4567"
        assert "eventId" not in event.data

    def test_headers_are_case_insensitive(self, phonepe_adapter, phonepe_webhook_headers):
        headers = {key.lower(): value for key, value in phonepe_webhook_headers(PAYMENT_WEBHOOK).items()}

        assert self.verify(phonepe_adapter, PAYMENT_WEBHOOK, headers).verified is True

    def test_refund_webhook(self, phonepe_adapter, phonepe_webhook_headers):
        body = json.dumps(
            {
                "type": "PG_REFUND_COMPLETED",
                "payload": {"merchantRefundId": "RFD_1", "transactionId": "OMR1", "state": "COMPLETED"},
            }
        )

        event = self.verify(phonepe_adapter, body, phonepe_webhook_headers(body)).event

        assert event.status is None
        assert event.refund_id == "RFD_1"
        assert event.refund_status == "succeeded"

    def test_envelope_event(self, phonepe_adapter, phonepe_webhook_headers):
        body = json.dumps(
            {
                "event": {
                    "id": "evt_1",
                    "type": "PAYMENT_FAILED",
                    "payload": {"merchantTransactionId": "TXN_1", "state": "FAILED"},
                }
            }
        )

        event = self.verify(phonepe_adapter, body, phonepe_webhook_headers(body)).event

        assert event.event_id == "evt_1"
        assert event.event_type == "PAYMENT_FAILED"
        assert event.status == "failed"

    def test_default_event_type(self, phonepe_adapter, phonepe_webhook_headers):
        body = json.dumps({"merchantTransactionId": "TXN_1", "state": "PENDING"})

        event = self.verify(phonepe_adapter, body, phonepe_webhook_headers(body)).event

        assert event.event_type == "payment_status_update"
        assert event.status == "processing"

    @pytest.mark.parametrize("prefix", ["Bearer ", "Basic ", ""])
    def test_authorization_prefixes(self, phonepe_adapter, phonepe_webhook_headers, prefix):
        auth = prefix + sha256("merchant:s3cret")

        result = self.verify(
            phonepe_adapter, PAYMENT_WEBHOOK, phonepe_webhook_headers(PAYMENT_WEBHOOK, authorization=auth)
        )

        assert result.verified is True

    def test_signature_without_index(self, phonepe_adapter, phonepe_webhook_headers):
        digest = hmac.new(b"test-webhook-secret", PAYMENT_WEBHOOK.encode(), hashlib.sha256).hexdigest()

        result = self.verify(
            phonepe_adapter, PAYMENT_WEBHOOK, phonepe_webhook_headers(PAYMENT_WEBHOOK, signature=digest)
        )

        assert result.verified is True

    def test_secret_missing(self, phonepe_resolved_config, phonepe_webhook_headers):
        config = dataclasses.replace(
            phonepe_resolved_config,
            secrets={**phonepe_resolved_config.secrets, "webhook_secret": ""},
        )
        adapter = PhonePeAdapter(config)

        result = self.verify(adapter, PAYMENT_WEBHOOK, phonepe_webhook_headers(PAYMENT_WEBHOOK))

        assert result.verified is False
        assert result.error_code == "WEBHOOK_SECRET_MISSING"

    def test_missing_signature(self, phonepe_adapter, phonepe_webhook_headers):
        headers = phonepe_webhook_headers(PAYMENT_WEBHOOK)
        del headers["X-VERIFY"]

        assert self.verify(phonepe_adapter, PAYMENT_WEBHOOK, headers).error_code == "MISSING_SIGNATURE"

    def test_missing_authorization(self, phonepe_adapter, phonepe_webhook_headers):
        headers = phonepe_webhook_headers(PAYMENT_WEBHOOK, authorization="  ")

        result = self.verify(phonepe_adapter, PAYMENT_WEBHOOK, headers)

        assert result.error_code == "MISSING_AUTHORIZATION"

    @pytest.mark.parametrize(
        "authorization",
        ["not-a-hash", sha256("merchant:wrong"), "Bearer " + sha256("other:s3cret")],
    )
    def test_invalid_authorization(self, phonepe_adapter, phonepe_webhook_headers, authorization):
        headers = phonepe_webhook_headers(PAYMENT_WEBHOOK, authorization=authorization)

        result = self.verify(phonepe_adapter, PAYMENT_WEBHOOK, headers)

        assert result.verified is False
        assert result.error_code == "INVALID_AUTHORIZATION"

    def test_invalid_signature(self, phonepe_adapter, phonepe_webhook_headers):
        headers = phonepe_webhook_headers(PAYMENT_WEBHOOK, signature="deadbeef###1")

        assert self.verify(phonepe_adapter, PAYMENT_WEBHOOK, headers).error_code == "INVALID_SIGNATURE"

    def test_tampered_body(self, phonepe_adapter, phonepe_webhook_headers):
        headers = phonepe_webhook_headers(PAYMENT_WEBHOOK)
        tampered = PAYMENT_WEBHOOK.replace("1000", "1")

        assert self.verify(phonepe_adapter, tampered, headers).error_code == "INVALID_SIGNATURE"

    @pytest.mark.parametrize("body", ["not json", "[1, 2]"])
    def test_invalid_payload(self, phonepe_adapter, phonepe_webhook_headers, body):
        result = self.verify(phonepe_adapter, body, phonepe_webhook_headers(body))

        assert result.verified is False
        assert result.error_code == "INVALID_PAYLOAD"


# =============================================================================
# HTTP Errors
# =============================================================================


class TestHttpErrors:
    def test_unauthorized(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response({"code": "UNAUTHORIZED"}, status_code=401)

        with pytest.raises(ProviderAuthenticationError) as exc_info:
            phonepe_adapter.get_status("TXN_1")

        assert exc_info.value.status_code == 401
        assert exc_info.value.is_retryable is False
        assert mock_request.call_count == 1

    def test_server_error_is_retryable(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response({"code": "INTERNAL_SERVER_ERROR"}, status_code=503)

        with pytest.raises(ProviderUnavailableError) as exc_info:
            phonepe_adapter.get_status("TXN_1")

        assert exc_info.value.is_retryable is True
        assert exc_info.value.status_code == 503

    def test_non_json_body(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response("<html>gateway</html>")

        with pytest.raises(ProviderRequestError):
            phonepe_adapter.get_status("TXN_1")

    def test_client_error_without_state(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response(
            {"success": False, "code": "BAD_REQUEST", "message": "Bad checksum"}, status_code=400
        )

        with pytest.raises(ProviderRequestError) as exc_info:
            phonepe_adapter.get_status("TXN_1")

        assert exc_info.value.status_code == 400
        assert exc_info.value.provider_code == "BAD_REQUEST"

    def test_timeout(self, phonepe_adapter, mock_request):
        mock_request.side_effect = requests.Timeout("read timed out")

        with pytest.raises(ProviderUnavailableError) as exc_info:
            phonepe_adapter.get_status("TXN_1")

        assert exc_info.value.error_code == "PROVIDER_TIMEOUT"

    def test_connection_error(self, phonepe_adapter, mock_request):
        mock_request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(ProviderUnavailableError) as exc_info:
            phonepe_adapter.get_status("TXN_1")

        assert exc_info.value.error_code == "PROVIDER_UNAVAILABLE"
        assert exc_info.value.details["error"] == "refused"

    def test_expired_token_is_refreshed_once(
        self, phonepe_resolved_config, mock_request, http_response
    ):
        token_manager = MagicMock()
        token_manager.is_configured = True
        token_manager.get_access_token.side_effect = ["old-token", "new-token"]
        adapter = PhonePeAdapter(phonepe_resolved_config, token_manager=token_manager)
        mock_request.side_effect = [
            http_response({"code": "TOKEN_EXPIRED"}, status_code=401),
            http_response({"success": True, "code": "PAYMENT_SUCCESS", "data": {"state": "COMPLETED"}}),
        ]

        result = adapter.get_status("TXN_1")

        assert result.status == "captured"
        token_manager.invalidate.assert_called_once()
        assert [call.kwargs["force_refresh"] for call in token_manager.get_access_token.call_args_list] == [
            False,
            True,
        ]
        headers = mock_request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "O-Bearer new-token"


class TestHealthCheck:
    def test_unknown_transaction_is_healthy(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response({"success": False, "code": "TRANSACTION_NOT_FOUND"})

        result = phonepe_adapter.health_check()

        assert result.healthy is True
        assert result.provider == "phonepe"
        assert mock_request.call_args.args[1].startswith(f"{UAT_HOST}/pg/v1/status/PGTESTPAYUAT/HEALTH_CHECK_")

    def test_rejected_credentials_are_unhealthy(self, phonepe_adapter, mock_request, http_response):
        mock_request.return_value = http_response({"code": "UNAUTHORIZED"}, status_code=401)

        result = phonepe_adapter.health_check()

        assert result.healthy is False
        assert result.error == "PhonePe authentication failed"


# =============================================================================
# Helpers
# =============================================================================


class TestHelpers:
    @pytest.mark.parametrize(
        "state,expected",
        [
            ("COMPLETED", "captured"),
            ("payment_success", "captured"),
            ("PAYMENT_PENDING", "processing"),
            ("AUTHORIZED", "authorized"),
            ("PAYMENT_DECLINED", "failed"),
            ("TIMED_OUT", "cancelled"),
            (None, "processing"),
        ],
    )
    def test_payment_state(self, state, expected):
        assert map_phonepe_payment_state(state) == expected

    @pytest.mark.parametrize(
        "state,expected",
        [("SUCCESS", "succeeded"), ("IN_PROGRESS", "processing"), ("FAILED", "failed"), ("weird", "pending")],
    )
    def test_refund_state(self, state, expected):
        assert map_phonepe_refund_state(state) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [(60, 300), (None, 900), (7200, 3600), (True, 900), ("1200", 1200), ("abc", 900), (float("nan"), 900)],
    )
    def test_clamp_expire_after(self, value, expected):
        assert clamp_expire_after(value) == expected

    @pytest.mark.parametrize(
        "preference,expected",
        [
            ("intent", ("UPI_INTENT", False)),
            ("upi-qr", ("UPI_QR", False)),
            ("PAY_PAGE", ("UPI_COLLECT", True)),
            ("collect", ("UPI_COLLECT", False)),
            (None, ("UPI_COLLECT", False)),
        ],
    )
    def test_resolve_instrument(self, preference, expected):
        assert resolve_instrument(preference) == expected

    def test_merchant_transaction_ids_are_unique(self):
        ids = {generate_merchant_transaction_id() for _ in range(50)}

        assert len(ids) == 50
        assert all(re.match(r"^TXN_\d{13}_[a-z0-9]{9}$", value) for value in ids)


class TestHosts:
    def test_environment_selects_host(self, phonepe_resolved_config):
        live = dataclasses.replace(phonepe_resolved_config, environment="live")

        assert resolve_phonepe_host(phonepe_resolved_config) == UAT_HOST
        assert resolve_phonepe_host(live) == "https://api.phonepe.com/apis/pg"

    def test_metadata_overrides(self, phonepe_resolved_config):
        named = dataclasses.replace(phonepe_resolved_config, metadata={"active_host": "prod"})
        literal = dataclasses.replace(
            phonepe_resolved_config, metadata={"active_host": "https://pg.example.com/"}
        )
        custom = dataclasses.replace(
            phonepe_resolved_config,
            metadata={"hosts": {"uat": "https://uat.example.com"}},
        )

        assert resolve_phonepe_host(named) == "https://api.phonepe.com/apis/pg"
        assert resolve_phonepe_host(literal) == "https://pg.example.com"
        assert resolve_phonepe_host(custom) == "https://uat.example.com"


# =============================================================================
# Access Tokens
# =============================================================================


class TestTokenManager:
    def manager(self, client_id="client", client_secret="secret"):
        return PhonePeTokenManager(UAT_HOST, client_id, client_secret)

    def test_unconfigured_returns_none(self):
        manager = self.manager(client_id="")

        assert manager.is_configured is False
        assert manager.get_access_token() is None

    def test_token_is_cached(self, http_response):
        manager = self.manager()
        with patch("payments.adapters.phonepe_auth.requests.post") as mock_post:
            mock_post.return_value = http_response({"accessToken": "tok-1", "expiresIn": 3600})

            assert manager.get_access_token() == "tok-1"
            assert manager.get_access_token() == "tok-1"

        assert mock_post.call_count == 1
        assert mock_post.call_args.args[0] == f"{UAT_HOST}/v3/authorization/oauth/token"
        assert mock_post.call_args.kwargs["json"]["grant_type"] == "client_credentials"

    def test_force_refresh_and_invalidate(self, http_response):
        manager = self.manager()
        with patch("payments.adapters.phonepe_auth.requests.post") as mock_post:
            mock_post.side_effect = [
                http_response({"access_token": "tok-1", "expires_in": 3600}),
                http_response({"access_token": "tok-2", "expires_in": 3600}),
                http_response({"access_token": "tok-3", "expires_in": 3600}),
            ]

            assert manager.get_access_token() == "tok-1"
            assert manager.get_access_token(force_refresh=True) == "tok-2"
            manager.invalidate()
            assert manager.get_access_token() == "tok-3"

    def test_token_close_to_expiry_is_refreshed(self, http_response):
        manager = self.manager()
        with patch("payments.adapters.phonepe_auth.requests.post") as mock_post:
            mock_post.side_effect = [
                http_response({"accessToken": "short", "expiresIn": 60}),
                http_response({"accessToken": "fresh", "expiresIn": 3600}),
            ]

            assert manager.get_access_token() == "short"
            assert manager.get_access_token() == "fresh"

    def test_rejected_credentials(self, http_response):
        manager = self.manager()
        with patch("payments.adapters.phonepe_auth.requests.post") as mock_post:
            mock_post.return_value = http_response({"code": "UNAUTHORIZED"}, status_code=401)

            with pytest.raises(ProviderAuthenticationError):
                manager.get_access_token()

    def test_missing_token_in_response(self, http_response):
        manager = self.manager()
        with patch("payments.adapters.phonepe_auth.requests.post") as mock_post:
            mock_post.return_value = http_response({"expiresIn": 3600})

            with pytest.raises(ProviderRequestError):
                manager.get_access_token()
