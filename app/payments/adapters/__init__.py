"""
Payment adapters for external gateways.

All gateway calls go through these adapters to ensure consistent error
handling, timeouts, masking and observability. Adapters are selected by
provider tag through AdapterFactory.

Usage:
    from payments.adapters import AdapterFactory, CreatePaymentParams

    adapter = AdapterFactory().create("phonepe", "test", tenant_id)
    attempt = adapter.create_payment(CreatePaymentParams(...))
"""

from payments.adapters.base import (
    CreatePaymentParams,
    CreateRefundParams,
    HealthCheckResult,
    PaymentAdapter,
    PaymentAttemptResult,
    PaymentStatusResult,
    RefundAttemptResult,
    WebhookEventData,
    WebhookVerifyParams,
    WebhookVerifyResult,
    backoff_delay,
    is_retryable,
)
from payments.adapters.factory import DEFAULT_REGISTRY, AdapterFactory, build_registry
from payments.adapters.phonepe_adapter import PhonePeAdapter
from payments.adapters.stripe_adapter import StripeAdapter

__all__ = [
    "AdapterFactory",
    "CreatePaymentParams",
    "CreateRefundParams",
    "DEFAULT_REGISTRY",
    "HealthCheckResult",
    "PaymentAdapter",
    "PaymentAttemptResult",
    "PaymentStatusResult",
    "PhonePeAdapter",
    "RefundAttemptResult",
    "StripeAdapter",
    "WebhookEventData",
    "WebhookVerifyParams",
    "WebhookVerifyResult",
    "backoff_delay",
    "build_registry",
    "is_retryable",
]
