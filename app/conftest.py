"""
Root pytest configuration for the payments service.

This module configures pytest-django and provides project-wide fixtures.
App-specific fixtures live in each app's conftest.py (payments/conftest.py
is shared by the adapters, webhooks, workers and tests packages).
"""

import os

import django
import pytest

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()

    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_scenarios.py → e2e (payment journeys across services)
    - test_views.py, test_router.py, test_*_service.py, ... → integration
    - test_models.py, test_masking.py, test_*_adapter.py, ... → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_scenarios.py"]

    integration_patterns = [
        "test_views.py",
        "test_tasks.py",
        "test_router.py",
        "test_status_poller.py",
        "test_payments_service.py",
        "test_refund_service.py",
        "test_status_transition.py",
        "test_idempotency.py",
        "test_order_projector.py",
        "test_config_resolver.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_masking.py",
        "test_helpers.py",
        "test_exceptions.py",
        "test_states.py",
        "test_phonepe_adapter.py",
        "test_stripe_adapter.py",
        "test_base_adapter.py",
    ]

    for item in items:
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def locmem_cache(settings):
    """
    Replace Redis with a per-test local memory cache.

    PhonePe OAuth tokens and resolved provider configs live in the cache,
    so a shared cache would leak state between tests.
    """
    from django.core.cache import cache

    settings.CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
            "LOCATION": "payments-tests",
        }
    }
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def api_client():
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture
def admin_user(db):
    from django.contrib.auth import get_user_model

    return get_user_model().objects.create_user(
        username="ops",
        email="ops@example.com",
        password="not-used",
        is_staff=True,
    )


@pytest.fixture
def admin_client(api_client, admin_user):
    api_client.force_authenticate(user=admin_user)
    return api_client


# =============================================================================
# Gateway Fixtures
# =============================================================================

PHONEPE_WEBHOOK_SECRET = "test-webhook-secret"
PHONEPE_WEBHOOK_USERNAME = "merchant"
PHONEPE_WEBHOOK_PASSWORD = "s3cret"


@pytest.fixture
def gateway_settings(settings):
    """Secrets for both gateways; PhonePe OAuth stays off so no token calls happen."""
    settings.PAYMENTS_ENVIRONMENT = "test"
    settings.PAYMENTS_BASE_URL = "https://shop.example.com"
    settings.PHONEPE_CLIENT_ID = ""
    settings.PHONEPE_CLIENT_SECRET = ""
    settings.PHONEPE_SALT_KEY = "test-salt-key"
    settings.PHONEPE_WEBHOOK_SECRET = PHONEPE_WEBHOOK_SECRET
    settings.PHONEPE_WEBHOOK_USERNAME = PHONEPE_WEBHOOK_USERNAME
    settings.PHONEPE_WEBHOOK_PASSWORD = PHONEPE_WEBHOOK_PASSWORD
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test_123"
    return settings


@pytest.fixture
def phonepe_config(db, gateway_settings):
    """Enabled PhonePe configuration for the default tenant."""
    from payments.tests.factories import ProviderConfigFactory

    return ProviderConfigFactory()


@pytest.fixture
def stripe_config(db, gateway_settings):
    """Enabled Stripe configuration for the default tenant."""
    from payments.tests.factories import ProviderConfigFactory

    return ProviderConfigFactory(provider="stripe", merchant_id="")


@pytest.fixture
def phonepe_webhook_headers():
    """
    Build valid PhonePe webhook headers for a body.

    Usage:
        headers = phonepe_webhook_headers(body)
        headers = phonepe_webhook_headers(body, authorization="wrong")
    """
    import hashlib
    import hmac

    def _headers(body: str, authorization: str | None = None, signature: str | None = None):
        auth = hashlib.sha256(
            f"{PHONEPE_WEBHOOK_USERNAME}:{PHONEPE_WEBHOOK_PASSWORD}".encode()
        ).hexdigest()
        digest = hmac.new(
            PHONEPE_WEBHOOK_SECRET.encode(), body.encode(), hashlib.sha256
        ).hexdigest()
        return {
            "Content-Type": "application/json",
            "Authorization": authorization if authorization is not None else auth,
            "X-VERIFY": signature if signature is not None else f"{digest}###1",
        }

    return _headers
