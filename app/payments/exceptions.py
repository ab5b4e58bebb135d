"""
Payment-specific exceptions for payment operations.

This module provides a hierarchy of exceptions for payment operations,
covering payment domain errors, gateway (provider) errors, idempotency
conflicts and Stripe-specific errors.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentNotFoundError (404) - Payment/refund lookup failures
    ├── RefundError (400) - Refund request rejected
    └── PaymentProcessingError (502) - Payment processing failures
        └── ProviderError - Base for all gateway errors
            ├── ProviderUnavailableError - Network/5xx (transient, retry)
            ├── ProviderRequestError - Rejected request (permanent)
            ├── ProviderAuthenticationError - Bad credentials (permanent)
            └── StripeError - Base for all Stripe errors
                ├── StripeCardDeclinedError - Card declined (permanent)
                ├── StripeInvalidRequestError - Invalid request params (permanent)
                ├── StripeRateLimitError - Rate limited (transient, retry)
                ├── StripeAPIUnavailableError - API unavailable (transient, retry)
                └── StripeTimeoutError - Request timeout (transient, retry)

    ProviderNotAvailableError (404) - No enabled config for the provider
    IdempotencyConflictError (409) - Key reused with a different request
    IdempotencyInProgressError (409) - Key claimed by an unfinished request

Usage:
    from payments.exceptions import ProviderError, ProviderUnavailableError

    try:
        result = adapter.create_payment(params)
    except ProviderError as e:
        if e.is_retryable:
            ...  # back off and retry
        raise
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import status

from core.exceptions import BaseApplicationError, ConflictError, NotFoundError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    All payment-specific exceptions inherit from this class,
    which itself inherits from BaseApplicationError for
    consistent API error responses.
    """

    default_error_code: str = "PAYMENT_ERROR"


class PaymentNotFoundError(PaymentError):
    """
    Raised when a payment entity cannot be found for the tenant.

    Use for:
    - Payment lookup fails
    - Refund lookup fails

    Example:
        payment = Payment.objects.filter(id=payment_id, tenant_id=tenant_id).first()
        if not payment:
            raise PaymentNotFoundError(
                "Payment not found",
                details={"payment_id": str(payment_id)},
            )
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"
    http_status: int = status.HTTP_404_NOT_FOUND


class RefundError(PaymentError):
    """
    Raised when a refund request cannot be honoured.

    Example:
        raise RefundError(
            "Refund would exceed captured amount",
            error_code="REFUND_EXCEEDS_CAPTURED_AMOUNT",
            details={"captured_minor": 1000, "projected_minor": 1300},
        )
    """

    default_error_code: str = "REFUND_ERROR"
    http_status: int = status.HTTP_400_BAD_REQUEST


class PaymentProcessingError(PaymentError):
    """
    Raised when payment processing fails at the gateway.

    The facade raises this with ``PROVIDER_UNAVAILABLE`` once its retry
    budget is exhausted, keeping the underlying error in ``details``.
    """

    default_error_code: str = "PAYMENT_PROCESSING_ERROR"
    http_status: int = status.HTTP_502_BAD_GATEWAY


# =============================================================================
# Provider Exceptions
# =============================================================================


class ProviderError(PaymentProcessingError):
    """
    Base exception for all gateway errors.

    Adapters translate transport and SDK errors into this hierarchy so no
    ``requests`` or ``stripe`` exception crosses the adapter boundary.

    Attributes:
        provider: Provider tag ("phonepe", "stripe")
        provider_code: Gateway error code, if any
        is_retryable: Whether the call may succeed when repeated

    Use is_retryable to determine retry behavior:
    - True: Transient error, safe to retry with backoff
    - False: Permanent error, do not retry
    """

    default_error_code: str = "PROVIDER_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        provider: str | None = None,
        provider_code: str | None = None,
        status_code: int | None = None,
    ):
        details = dict(details or {})
        if provider:
            details["provider"] = provider
        if provider_code:
            details["provider_code"] = provider_code
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, error_code=error_code, details=details)
        self.provider = provider
        self.provider_code = provider_code
        self.status_code = status_code


class ProviderUnavailableError(ProviderError):
    """
    Gateway unreachable, timed out or answered with a 5xx.

    IMPORTANT: The operation may have succeeded on the gateway's side.
    Retries reuse the same merchant transaction id where the gateway
    supports it.
    """

    default_error_code: str = "PROVIDER_UNAVAILABLE"
    is_retryable: bool = True


class ProviderRequestError(ProviderError):
    """Gateway rejected the request; repeating it will not help."""

    default_error_code: str = "PROVIDER_REQUEST_REJECTED"


class ProviderAuthenticationError(ProviderError):
    """Gateway rejected our credentials (401/403)."""

    default_error_code: str = "PROVIDER_AUTHENTICATION_FAILED"


# -----------------------------------------------------------------------------
# Stripe
# -----------------------------------------------------------------------------


class StripeError(ProviderError):
    """
    Base exception for all Stripe-related errors.

    Provides common attributes for Stripe error handling:
    - stripe_code: Stripe's internal error code
    - decline_code: Card decline code (if applicable)
    """

    default_error_code: str = "STRIPE_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = dict(details or {})
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(
            message,
            error_code=error_code,
            details=details,
            provider="stripe",
            provider_code=stripe_code,
        )
        self.stripe_code = stripe_code
        self.decline_code = decline_code


class StripeCardDeclinedError(StripeError):
    """
    Card was declined by the issuing bank.

    This is a permanent error - do not retry with the same card.
    The decline_code attribute contains the specific reason.
    """

    default_error_code: str = "CARD_DECLINED"


class StripeInvalidRequestError(StripeError):
    """
    Invalid request parameters sent to Stripe.

    Possible causes:
    - Invalid payment intent ID
    - Invalid amount or currency
    - Operation not allowed (e.g., refund > captured amount)
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"


class StripeRateLimitError(StripeError):
    """Rate limited by Stripe API. Retry with exponential backoff."""

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """
    Stripe API is temporarily unavailable.

    This covers:
    - Network connectivity issues
    - Stripe server errors (5xx)
    - Authentication errors surfaced during outages
    """

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out.

    The request was sent but no response was received within
    STRIPE_API_TIMEOUT_SECONDS. Stripe idempotency keys make the retry safe.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Availability, Idempotency and State Exceptions
# =============================================================================


class ProviderNotAvailableError(NotFoundError):
    """
    Raised when no enabled configuration exists for a provider.

    Rendered as 404 so a caller cannot distinguish "unknown provider" from
    "provider disabled for this tenant".
    """

    default_error_code: str = "PROVIDER_NOT_AVAILABLE"


class IdempotencyConflictError(ConflictError):
    """
    Raised when an idempotency key is reused with a different request body.

    Example:
        raise IdempotencyConflictError(
            "Idempotency key reused with a different request",
            details={"scope": "create_payment", "key": key},
        )
    """

    default_error_code: str = "IDEMPOTENCY_KEY_CONFLICT"


class IdempotencyInProgressError(ConflictError):
    """Raised when the original request for a key has not finished yet."""

    default_error_code: str = "IDEMPOTENCY_KEY_IN_PROGRESS"


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Payment domain
    "PaymentError",
    "PaymentNotFoundError",
    "RefundError",
    "PaymentProcessingError",
    # Providers
    "ProviderError",
    "ProviderUnavailableError",
    "ProviderRequestError",
    "ProviderAuthenticationError",
    "ProviderNotAvailableError",
    # Stripe-specific
    "StripeError",
    "StripeCardDeclinedError",
    "StripeInvalidRequestError",
    "StripeRateLimitError",
    "StripeAPIUnavailableError",
    "StripeTimeoutError",
    # Idempotency
    "IdempotencyConflictError",
    "IdempotencyInProgressError",
]
