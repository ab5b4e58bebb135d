"""
Stripe API adapter for card payments.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions. All Stripe calls should go through this
adapter to ensure consistent error handling, timeouts, idempotency,
and observability.

Features:
- Configurable timeouts on all API calls
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Idempotency keys forwarded on every write

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)

Usage:
    from payments.adapters import AdapterFactory

    adapter = AdapterFactory().create("stripe", "test", tenant_id)
    attempt = adapter.create_payment(params)
    attempt.client_secret  # handed to Stripe.js for confirmation
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

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
)
from payments.exceptions import (
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)
from payments.services.masking import mask_payload
from payments.state_machines import (
    MethodKind,
    PaymentStatus,
    Provider,
    RefundStatus,
    normalize_refund_status,
)

if TYPE_CHECKING:
    from payments.services.config_resolver import ResolvedConfig


# PaymentIntent.status -> Payment status
INTENT_STATUSES = {
    "requires_payment_method": PaymentStatus.CREATED,
    "requires_confirmation": PaymentStatus.CREATED,
    "requires_action": PaymentStatus.REQUIRES_ACTION,
    "processing": PaymentStatus.PROCESSING,
    "requires_capture": PaymentStatus.AUTHORIZED,
    "succeeded": PaymentStatus.CAPTURED,
    "canceled": PaymentStatus.CANCELLED,
}

# Webhook event type -> Payment status
INTENT_EVENTS = {
    "payment_intent.processing": PaymentStatus.PROCESSING,
    "payment_intent.requires_action": PaymentStatus.REQUIRES_ACTION,
    "payment_intent.amount_capturable_updated": PaymentStatus.AUTHORIZED,
    "payment_intent.succeeded": PaymentStatus.CAPTURED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment_intent.canceled": PaymentStatus.CANCELLED,
}


def map_intent_status(status: str | None) -> str:
    mapped = INTENT_STATUSES.get(status or "")
    return mapped.value if mapped is not None else PaymentStatus.PROCESSING.value


def _to_dict(obj: Any) -> dict[str, Any]:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj or {})


class StripeAdapter(PaymentAdapter):
    """
    Adapter for Stripe API operations.

    Thread-safe for use from Celery workers: the API key is passed per
    call rather than stored on the ``stripe`` module.
    """

    provider = Provider.STRIPE

    def __init__(self, config: ResolvedConfig):
        super().__init__(config)
        self.secret_key = config.secret("secret_key")
        self.webhook_secret = config.secret("webhook_secret")
        self._configure_stripe()

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        """Configure the Stripe HTTP client timeout."""
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    # =========================================================================
    # Core Operations
    # =========================================================================

    def create_payment(self, params: CreatePaymentParams) -> PaymentAttemptResult:
        """
        Create a Stripe PaymentIntent.

        Raises:
            StripeCardDeclinedError: Card was declined
            StripeInvalidRequestError: Invalid parameters
            StripeAPIUnavailableError: Stripe service unavailable
        """
        logger = self.get_logger()
        log_context = {
            "operation": "create_payment_intent",
            "order_id": params.order_id,
            "tenant_id": params.tenant_id,
            "amount_minor": params.amount_minor,
            "currency": params.currency,
            "idempotency_key": params.idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.secret_key,
                amount=params.amount_minor,
                currency=params.currency.lower(),
                payment_method_types=["card"],
                receipt_email=params.customer.get("email") or None,
                metadata={
                    "order_id": params.order_id,
                    "tenant_id": params.tenant_id,
                    **{key: str(value) for key, value in params.metadata.items()},
                },
                idempotency_key=params.idempotency_key,
            )
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "payment_intent_id": intent.id,
                "status": intent.status,
                "duration_ms": duration_ms,
            },
        )

        return PaymentAttemptResult(
            provider=self.provider,
            provider_payment_id=intent.id,
            provider_transaction_id=intent.id,
            status=map_intent_status(intent.status),
            amount_minor=intent.amount,
            currency=intent.currency.upper(),
            client_secret=intent.client_secret,
            method_kind=MethodKind.CARD,
            raw_response=_to_dict(intent),
        )

    def get_status(self, provider_payment_id: str) -> PaymentStatusResult:
        """
        Retrieve a PaymentIntent by ID.

        Raises:
            StripeInvalidRequestError: PaymentIntent not found
        """
        logger = self.get_logger()
        log_context = {
            "operation": "retrieve_payment_intent",
            "payment_intent_id": provider_payment_id,
        }

        start_time = time.time()
        logger.debug("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.retrieve(provider_payment_id, api_key=self.secret_key)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.debug(
            "Stripe operation completed",
            extra={**log_context, "status": intent.status, "duration_ms": duration_ms},
        )

        return PaymentStatusResult(
            provider_payment_id=intent.id,
            status=map_intent_status(intent.status),
            amount_minor=intent.amount_received or None,
            provider_transaction_id=intent.id,
            response_code=intent.status,
            data=self._intent_data(_to_dict(intent)),
        )

    def create_refund(self, params: CreateRefundParams) -> RefundAttemptResult:
        """
        Create a refund for a PaymentIntent.

        Raises:
            StripeInvalidRequestError: Refund not possible
        """
        logger = self.get_logger()
        log_context = {
            "operation": "create_refund",
            "payment_intent_id": params.provider_payment_id,
            "merchant_refund_id": params.merchant_refund_id,
            "amount_minor": params.amount_minor,
            "idempotency_key": params.idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        refund_params: dict[str, Any] = {
            "payment_intent": params.provider_payment_id,
            "amount": params.amount_minor,
            "metadata": {
                "merchant_refund_id": params.merchant_refund_id,
                **{key: str(value) for key, value in params.metadata.items()},
            },
        }
        if params.reason in ("duplicate", "fraudulent", "requested_by_customer"):
            refund_params["reason"] = params.reason

        try:
            refund = stripe.Refund.create(
                api_key=self.secret_key,
                idempotency_key=params.idempotency_key,
                **refund_params,
            )
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Stripe operation completed",
            extra={
                **log_context,
                "refund_id": refund.id,
                "status": refund.status,
                "duration_ms": duration_ms,
            },
        )
        return self._refund_result(params.merchant_refund_id, refund)

    def get_refund_status(
        self, merchant_refund_id: str, provider_refund_id: str | None = None
    ) -> RefundAttemptResult:
        if not provider_refund_id:
            raise StripeInvalidRequestError(
                "Stripe refunds are looked up by their re_ id",
                error_code="MISSING_PROVIDER_REFUND_ID",
            )

        log_context = {"operation": "retrieve_refund", "refund_id": provider_refund_id}
        start_time = time.time()
        try:
            refund = stripe.Refund.retrieve(provider_refund_id, api_key=self.secret_key)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._handle_stripe_error(e, log_context, duration_ms)
            raise
        return self._refund_result(merchant_refund_id, refund)

    @staticmethod
    def _refund_result(merchant_refund_id: str, refund: Any) -> RefundAttemptResult:
        status = normalize_refund_status(refund.status) or RefundStatus.PENDING.value
        return RefundAttemptResult(
            merchant_refund_id=merchant_refund_id,
            status=status,
            amount_minor=refund.amount,
            provider_refund_id=refund.id,
            failure_message=(
                str(getattr(refund, "failure_reason", "") or "")
                if status == RefundStatus.FAILED
                else ""
            ),
            raw_response=_to_dict(refund),
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    def verify_webhook(self, params: WebhookVerifyParams) -> WebhookVerifyResult:
        """
        Verify and parse a Stripe webhook event.

        Error codes:
            WEBHOOK_SECRET_MISSING, MISSING_SIGNATURE, INVALID_SIGNATURE,
            INVALID_PAYLOAD
        """
        if not self.webhook_secret:
            return WebhookVerifyResult.rejected(
                "WEBHOOK_SECRET_MISSING", "Webhook secret not configured"
            )
        signature = params.header("stripe-signature")
        if not signature:
            return WebhookVerifyResult.rejected(
                "MISSING_SIGNATURE", "Missing Stripe-Signature header"
            )

        try:
            event = stripe.Webhook.construct_event(params.body, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            self.get_logger().warning(
                "Invalid Stripe webhook signature",
                extra={"provider": self.provider, "error": str(e)},
            )
            return WebhookVerifyResult.rejected("INVALID_SIGNATURE", "Invalid webhook signature")
        except ValueError:
            return WebhookVerifyResult.rejected("INVALID_PAYLOAD", "Webhook body is not JSON")

        return WebhookVerifyResult(verified=True, event=self._parse_event(_to_dict(event)))

    def _parse_event(self, event: dict[str, Any]) -> WebhookEventData:
        event_type = event.get("type") or "unknown"
        obj = (event.get("data") or {}).get("object") or {}

        if obj.get("object") == "refund":
            metadata = obj.get("metadata") or {}
            return WebhookEventData(
                event_type=event_type,
                event_id=event.get("id"),
                payment_id=obj.get("payment_intent"),
                transaction_id=obj.get("id"),
                refund_id=metadata.get("merchant_refund_id") or obj.get("id"),
                refund_status=normalize_refund_status(obj.get("status")),
                data={"refundId": obj.get("id"), "amount": obj.get("amount")},
            )

        status = INTENT_EVENTS.get(event_type)
        if status is None and obj.get("object") == "payment_intent":
            status = map_intent_status(obj.get("status"))
        metadata = obj.get("metadata") or {}
        return WebhookEventData(
            event_type=event_type,
            event_id=event.get("id"),
            payment_id=obj.get("id"),
            order_id=metadata.get("order_id"),
            transaction_id=obj.get("id"),
            status=str(status) if status else None,
            data=self._intent_data(obj),
        )

    @staticmethod
    def _intent_data(intent: dict[str, Any]) -> dict[str, Any]:
        """Fields the transition service reads: amount, failure detail, receipt."""
        data: dict[str, Any] = {"transactionId": intent.get("id")}
        if intent.get("amount_received"):
            data["amount"] = intent["amount_received"]
        error = intent.get("last_payment_error") or {}
        if error:
            data["code"] = error.get("decline_code") or error.get("code")
            data["message"] = error.get("message")
        charge = intent.get("latest_charge")
        if isinstance(charge, dict) and charge.get("receipt_url"):
            data["receiptUrl"] = charge["receipt_url"]
        return mask_payload({key: value for key, value in data.items() if value is not None})

    # =========================================================================
    # Health
    # =========================================================================

    def health_check(self) -> HealthCheckResult:
        start_time = time.time()
        try:
            stripe.Balance.retrieve(api_key=self.secret_key)
        except Exception as e:
            return HealthCheckResult(
                provider=self.provider,
                healthy=False,
                response_time_ms=int((time.time() - start_time) * 1000),
                error=str(e),
            )
        return HealthCheckResult(
            provider=self.provider,
            healthy=True,
            response_time_ms=int((time.time() - start_time) * 1000),
        )

    # =========================================================================
    # Error Handling
    # =========================================================================

    def _handle_stripe_error(
        self,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to domain exceptions.

        Maps Stripe SDK errors to appropriate domain exceptions
        with proper error categorization for retry decisions.

        Raises:
            StripeCardDeclinedError: Card was declined
            StripeInvalidRequestError: Invalid request parameters or credentials
            StripeRateLimitError: Rate limited
            StripeAPIUnavailableError: API unavailable
            StripeTimeoutError: Request timed out
        """
        logger = self.get_logger()

        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, StripeError):
            raise error

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            raise StripeCardDeclinedError(
                str(error.user_message or error),
                stripe_code=error.code,
                decline_code=decline_code,
            ) from error

        elif isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            raise StripeInvalidRequestError(
                str(error),
                stripe_code=error.code,
            ) from error

        elif isinstance(error, stripe.RateLimitError):
            logger.warning(
                "Rate limited by Stripe",
                extra=log_context,
            )
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            ) from error

        elif isinstance(error, stripe.APIConnectionError):
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            if "timeout" in str(error).lower():
                raise StripeTimeoutError(
                    "Stripe request timed out. Please retry.",
                    stripe_code="timeout",
                ) from error
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            ) from error

        elif isinstance(error, stripe.APIError):
            logger.error(
                "Stripe API error",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            ) from error

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise StripeInvalidRequestError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            ) from error

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                f"Unexpected Stripe error: {error}",
                stripe_code="unknown_error",
            ) from error
