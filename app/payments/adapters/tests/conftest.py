"""
Pytest fixtures for gateway adapter tests.

Adapters are built directly from a ResolvedConfig so no database row or
settings lookup is involved. HTTP (PhonePe) and SDK (Stripe) calls are
replaced with mocks returning canned gateway responses.

Sections:
    - Resolved Config Fixtures
    - PhonePe HTTP Fixtures
    - Mock Stripe Objects
    - Stripe Error Fixtures
"""

import json
from dataclasses import dataclass
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import stripe

from payments.adapters.phonepe_adapter import PhonePeAdapter
from payments.adapters.stripe_adapter import StripeAdapter
from payments.services.config_resolver import ResolvedConfig


# =============================================================================
# Resolved Config Fixtures
# =============================================================================


@pytest.fixture
def phonepe_resolved_config():
    """PhonePe UAT config with webhook credentials and no OAuth client."""
    return ResolvedConfig(
        provider="phonepe",
        environment="test",
        tenant_id="default",
        enabled=True,
        merchant_id="PGTESTPAYUAT",
        salt_index=1,
        success_url="https://shop.example.com/payment/success",
        webhook_url="https://api.example.com/api/v1/payments/webhook/phonepe/",
        secrets={
            "salt_key": "test-salt-key",
            "webhook_secret": "test-webhook-secret",
            "webhook_username": "merchant",
            "webhook_password": "s3cret",
        },
    )


@pytest.fixture
def stripe_resolved_config():
    return ResolvedConfig(
        provider="stripe",
        environment="test",
        tenant_id="default",
        enabled=True,
        secrets={"secret_key": "sk_test_123", "webhook_secret": "whsec_test_123"},
    )


@pytest.fixture
def phonepe_adapter(phonepe_resolved_config):
    return PhonePeAdapter(phonepe_resolved_config)


@pytest.fixture
def stripe_adapter(stripe_resolved_config):
    return StripeAdapter(stripe_resolved_config)


# =============================================================================
# PhonePe HTTP Fixtures
# =============================================================================


def make_http_response(body: Any = None, status_code: int = 200) -> MagicMock:
    """
    Mock ``requests.Response`` carrying a JSON body.

    Usage:
        response = make_http_response({"success": True}, status_code=200)
    """
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    if body is None:
        response.content = b""
        response.json.side_effect = ValueError("No JSON")
        response.text = ""
    elif isinstance(body, str):
        response.content = body.encode()
        response.json.side_effect = ValueError("Not JSON")
        response.text = body
    else:
        response.content = json.dumps(body).encode()
        response.json.return_value = body
        response.text = json.dumps(body)
    return response


@pytest.fixture
def http_response():
    return make_http_response


@pytest.fixture
def mock_request():
    """Patch the HTTP call made by the PhonePe adapter."""
    with patch("payments.adapters.phonepe_adapter.requests.request") as mock:
        yield mock


# =============================================================================
# Mock Stripe Objects
# =============================================================================


@dataclass
class MockStripeObject:
    """Mock Stripe API object with to_dict support."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)

    def to_dict(self) -> dict[str, Any]:
        return self.data


@pytest.fixture
def mock_payment_intent():
    """Create a mock PaymentIntent response."""

    def _create(
        id: str = "pi_test123456",
        status: str = "requires_payment_method",
        amount: int = 5000,
        currency: str = "usd",
        client_secret: str = "pi_test123456_secret_abc123",
        amount_received: int = 0,
        metadata: dict | None = None,
        **extra: Any,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_intent",
                "status": status,
                "amount": amount,
                "currency": currency,
                "client_secret": client_secret,
                "amount_received": amount_received,
                "metadata": metadata or {},
                **extra,
            }
        )

    return _create


@pytest.fixture
def mock_refund():
    """Create a mock Refund response."""

    def _create(
        id: str = "re_test123456",
        amount: int = 5000,
        currency: str = "usd",
        status: str = "succeeded",
        payment_intent: str = "pi_test123456",
        metadata: dict | None = None,
        failure_reason: str | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "refund",
                "amount": amount,
                "currency": currency,
                "status": status,
                "payment_intent": payment_intent,
                "metadata": metadata or {},
                "failure_reason": failure_reason,
            }
        )

    return _create


@pytest.fixture
def mock_stripe_payment_intent(mock_payment_intent):
    """Mock stripe.PaymentIntent API."""
    with patch("stripe.PaymentIntent") as mock:
        mock.create.return_value = mock_payment_intent()
        mock.retrieve.return_value = mock_payment_intent()
        yield mock


@pytest.fixture
def mock_stripe_refund(mock_refund):
    """Mock stripe.Refund API."""
    with patch("stripe.Refund") as mock:
        mock.create.return_value = mock_refund()
        mock.retrieve.return_value = mock_refund()
        yield mock


# =============================================================================
# Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    """Create a Stripe CardError."""

    def _create(
        message: str = "Your card was declined.",
        code: str = "card_declined",
        decline_code: str | None = "generic_decline",
    ) -> stripe.CardError:
        error = stripe.CardError(message=message, param=None, code=code)
        error.decline_code = decline_code
        return error

    return _create


@pytest.fixture
def invalid_request_error():
    return stripe.InvalidRequestError(
        message="No such payment_intent: 'pi_missing'",
        param="intent",
        code="resource_missing",
    )


@pytest.fixture
def rate_limit_error():
    return stripe.RateLimitError(message="Too many requests hit the API too quickly.")


@pytest.fixture
def api_connection_error():
    return stripe.APIConnectionError(message="Could not connect to Stripe.")


@pytest.fixture
def api_error():
    return stripe.APIError(message="Something went wrong on Stripe's end.")


@pytest.fixture
def authentication_error():
    return stripe.AuthenticationError(message="Invalid API Key provided.")
