"""
Provider adapter interface shared by every payment gateway.

An adapter is the only code that talks to a gateway. It receives plain
dataclasses, calls the gateway, and returns plain dataclasses with:

- statuses already normalised to the Payment / Refund vocabularies
- UPI payer handles and UTRs already masked
- transport and SDK errors translated into ``ProviderError`` subclasses

Adapters are registered by their ``provider`` tag and built per request by
``AdapterFactory`` from a ``ResolvedConfig``.

Usage:
    from payments.adapters import AdapterFactory, CreatePaymentParams

    adapter = AdapterFactory().create("phonepe", "test", tenant_id)
    attempt = adapter.create_payment(
        CreatePaymentParams(
            order_id=str(order.id),
            tenant_id=tenant_id,
            amount_minor=order.amount_minor,
            currency=order.currency,
            idempotency_key=key,
        )
    )
"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from payments.exceptions import ProviderError

if TYPE_CHECKING:
    from datetime import datetime

    from payments.services.config_resolver import ResolvedConfig


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreatePaymentParams:
    """
    Parameters for creating a gateway payment attempt.

    Attributes:
        order_id: Our Order id
        tenant_id: Tenant the order belongs to
        amount_minor: Amount in smallest currency unit (paise, cents)
        currency: ISO 4217 currency code
        idempotency_key: Key forwarded to gateways that support one
        method_kind: upi, card, netbanking or wallet
        customer: Optional name/email/phone of the buyer
        success_url/failure_url/cancel_url: Browser redirect targets
        callback_url: Server-to-server notification URL
        expire_after_seconds: Requested attempt lifetime (clamped by adapters)
        instrument: Preferred UPI flow ("UPI_INTENT", "UPI_COLLECT", "UPI_QR", "PAY_PAGE")
        metadata: Free-form values attached to the attempt
    """

    order_id: str
    tenant_id: str
    amount_minor: int
    currency: str
    idempotency_key: str
    method_kind: str = "upi"
    customer: dict[str, str] = field(default_factory=dict)
    success_url: str = ""
    failure_url: str = ""
    cancel_url: str = ""
    callback_url: str = ""
    expire_after_seconds: int | None = None
    instrument: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.amount_minor <= 0:
            raise ValueError("amount_minor must be positive")
        if not self.currency:
            raise ValueError("currency is required")


@dataclass
class PaymentAttemptResult:
    """
    Gateway response to a create call.

    Attributes:
        provider_payment_id: Id used for later status queries
        provider_order_id: Gateway-side order / transaction id
        provider_transaction_id: Merchant transaction id sent to the gateway
        status: Normalised Payment status
        redirect_url: Hosted checkout URL (PhonePe token URL)
        client_secret: Client-side confirmation secret (Stripe)
        expires_at: When the attempt stops being payable
        expire_after_seconds: Lifetime the gateway accepted
        upi_intent: Intent / QR details for UPI flows, when returned
        raw_response: Gateway response with sensitive fields masked
    """

    provider: str
    provider_payment_id: str
    status: str
    amount_minor: int
    currency: str
    provider_order_id: str | None = None
    provider_transaction_id: str | None = None
    provider_reference_id: str | None = None
    redirect_url: str | None = None
    client_secret: str | None = None
    expires_at: datetime | None = None
    expire_after_seconds: int | None = None
    method_kind: str = "upi"
    instrument_variant: str = ""
    upi_intent: dict[str, Any] | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookVerifyParams:
    """Raw inbound webhook: headers (any case) and the unparsed body."""

    headers: dict[str, str]
    body: str

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass
class WebhookEventData:
    """
    Normalised content of a verified webhook.

    ``status`` is a Payment status, ``refund_status`` a Refund status;
    ``data`` carries the (masked) event payload the transition service
    extracts metadata, failure details and amounts from.
    """

    event_type: str
    event_id: str | None = None
    payment_id: str | None = None
    order_id: str | None = None
    transaction_id: str | None = None
    status: str | None = None
    refund_id: str | None = None
    refund_status: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookVerifyResult:
    """Outcome of webhook verification; ``error_code`` set when not verified."""

    verified: bool
    event: WebhookEventData | None = None
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def rejected(cls, error_code: str, error_message: str) -> WebhookVerifyResult:
        return cls(verified=False, error_code=error_code, error_message=error_message)


@dataclass
class PaymentStatusResult:
    """Authoritative status of an attempt as reported by the gateway."""

    provider_payment_id: str
    status: str
    amount_minor: int | None = None
    provider_transaction_id: str | None = None
    response_code: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class CreateRefundParams:
    """
    Parameters for refunding a captured attempt.

    Attributes:
        provider_payment_id: Gateway payment id being refunded
        merchant_refund_id: Our refund reference (idempotent on the gateway)
        amount_minor: Amount to refund
        provider_order_id: Gateway order id, required by some gateways
    """

    provider_payment_id: str
    merchant_refund_id: str
    amount_minor: int
    currency: str
    idempotency_key: str
    provider_order_id: str | None = None
    reason: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundAttemptResult:
    """Gateway view of a refund; ``status`` is a Refund status."""

    merchant_refund_id: str
    status: str
    amount_minor: int | None = None
    provider_refund_id: str | None = None
    upi_utr: str = ""
    failure_message: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class HealthCheckResult:
    provider: str
    healthy: bool
    response_time_ms: int
    error: str | None = None


# =============================================================================
# Retry Helpers
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """
    Check if a provider error is transient and safe to retry.

    Example:
        try:
            adapter.create_payment(params)
        except ProviderError as e:
            if is_retryable(e):
                time.sleep(backoff_delay(attempt))
    """
    return isinstance(error, ProviderError) and error.is_retryable


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds, jitter included

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 1: 2.0 - 2.5 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2, max_delay=5.0)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return min(delay + jitter, max_delay)


# =============================================================================
# Adapter Interface
# =============================================================================


class PaymentAdapter(ABC):
    """
    Abstract gateway adapter.

    Subclasses set ``provider`` to their tag and implement the full
    capability set; ``AdapterFactory`` selects them by that tag.
    """

    provider: str = ""

    def __init__(self, config: ResolvedConfig):
        self.config = config
        self.environment = config.environment

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @abstractmethod
    def create_payment(self, params: CreatePaymentParams) -> PaymentAttemptResult:
        """Create an attempt on the gateway."""

    @abstractmethod
    def verify_webhook(self, params: WebhookVerifyParams) -> WebhookVerifyResult:
        """Authenticate and parse an inbound webhook. Never raises for bad input."""

    @abstractmethod
    def get_status(self, provider_payment_id: str) -> PaymentStatusResult:
        """Query the authoritative status of an attempt."""

    @abstractmethod
    def create_refund(self, params: CreateRefundParams) -> RefundAttemptResult:
        """Refund part or all of a captured attempt."""

    @abstractmethod
    def get_refund_status(
        self, merchant_refund_id: str, provider_refund_id: str | None = None
    ) -> RefundAttemptResult:
        """Query the status of a refund by our reference or the gateway id."""

    @abstractmethod
    def health_check(self) -> HealthCheckResult:
        """Probe connectivity and credentials."""
