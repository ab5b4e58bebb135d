"""
Payments facade: the single entry point used by the API layer.

PaymentsService wires the adapter factory, the idempotency ledger, the
transition service, the status poller and the refund service together.
Views call one method per endpoint; every method either returns a plain
dict ready to be rendered or raises a BaseApplicationError subclass that
the DRF exception handler turns into an error body.

Flows:
    create_payment        Idempotent attempt creation (Idempotency-Key required)
    start_token_url_flow  PhonePe hosted checkout, deduplicated per order/amount
    retry_payment         New attempt after the previous one expired
    record_return         Browser came back from the gateway (never mutates state)
    verify_payment        Authoritative status query funnelled through transitions
    cancel_payment        Buyer abandoned checkout
    create_refund / get_refund_status / list_refunds
    health_check          Per-provider gateway health

Usage:
    from payments.services.payments_service import build_payments_service

    service = build_payments_service()
    response = service.create_payment(
        {"order_id": order.id, "amount": "10.00", "currency": "INR"},
        tenant_id="default",
        idempotency_key=request.headers["Idempotency-Key"],
    )
    response["data"]["redirectUrl"]
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from core.exceptions import (
    ConflictError,
    ExternalServiceError,
    PermissionDeniedError,
    ValidationError,
)
from core.helpers import format_minor_units, parse_uuid, sha256_hex, to_minor_units
from core.services import BaseService

from orders.exceptions import OrderNotFoundError
from orders.models import Order
from payments.adapters import AdapterFactory, CreatePaymentParams, backoff_delay, is_retryable
from payments.exceptions import (
    PaymentNotFoundError,
    PaymentProcessingError,
    ProviderError,
    ProviderNotAvailableError,
)
from payments.models import Payment
from payments.services.config_resolver import ConfigResolver
from payments.services.events import EventRecorder
from payments.services.idempotency import IdempotencyLedger
from payments.services.masking import normalize_instrument_variant
from payments.services.order_projector import (
    OrderProjector,
    serialize_payment,
    serialize_polling_job,
)
from payments.services.refund_service import RefundService, serialize_refund
from payments.services.status_transition import PaymentStatusTransitionService
from payments.state_machines import (
    EventSource,
    MethodKind,
    PaymentStatus,
    PollingJobStatus,
    Provider,
)
from payments.workers.status_poller import StatusPoller

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

    from payments.adapters import PaymentAdapter, PaymentAttemptResult


# =============================================================================
# Constants
# =============================================================================

SUPPORTED_CURRENCIES = ("INR", "USD", "EUR", "GBP")

CREATE_PAYMENT_SCOPE = "create_payment"
CREATE_REFUND_SCOPE = "create_refund"
TOKEN_URL_SCOPE = "phonepe_token_url"

# Cap for the delay between provider create attempts (seconds)
MAX_RETRY_DELAY = 5.0

# Polling window for attempts whose gateway reports no expiry (seconds)
DEFAULT_POLL_EXPIRY_SECONDS = 900

# Statuses a freshly created attempt may start in
INITIAL_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.CREATED, PaymentStatus.PROCESSING, PaymentStatus.REQUIRES_ACTION}
)

RETURN_QUERY_FIELDS = (
    "orderId",
    "merchantTransactionId",
    "providerReferenceId",
    "amount",
    "state",
    "code",
    "checksum",
)


def derive_token_url_digest(tenant_id: str, order_id: Any, amount_minor: int, currency: str) -> str:
    """sha256 of ``tenant:order:amount_minor:currency``, shared by both token-url keys."""
    return sha256_hex(f"{tenant_id}:{order_id}:{amount_minor}:{currency}")


def _iso(value) -> str | None:
    return value.isoformat() if value else None


# =============================================================================
# Facade
# =============================================================================


class PaymentsService(BaseService):
    """
    Orchestrates payment operations for the API layer.

    Args:
        adapter_factory: Builds configured gateway adapters
        config_resolver: Provider configuration (enabled providers, secrets)
        ledger: Idempotency ledger
        transitions: The payment status transition service
        poller: Registers and closes polling jobs
        events: Event recorder
        refunds: Refund service
        projector: Order read model
        environment: "test" or "live" (defaults to PAYMENTS_ENVIRONMENT)
        clock: Callable returning "now"
        sleep: Called with the backoff delay between provider attempts
        max_attempts: Provider create attempts (defaults to PAYMENTS_PROVIDER_MAX_ATTEMPTS)
    """

    def __init__(
        self,
        adapter_factory: AdapterFactory | None = None,
        config_resolver: ConfigResolver | None = None,
        ledger: IdempotencyLedger | None = None,
        transitions: PaymentStatusTransitionService | None = None,
        poller: StatusPoller | None = None,
        events: EventRecorder | None = None,
        refunds: RefundService | None = None,
        projector: OrderProjector | None = None,
        environment: str | None = None,
        clock: Callable[[], Any] | None = None,
        sleep: Callable[[float], None] | None = None,
        max_attempts: int | None = None,
    ):
        self.config_resolver = config_resolver or ConfigResolver()
        self.adapter_factory = adapter_factory or AdapterFactory(config_resolver=self.config_resolver)
        self.events = events or EventRecorder()
        self.ledger = ledger or IdempotencyLedger()
        self.transitions = transitions or PaymentStatusTransitionService(events=self.events)
        self.projector = projector or OrderProjector()
        self.refunds = refunds or RefundService(events=self.events, projector=self.projector)
        self.poller = poller or StatusPoller(verify_payment=self.verify_payment)
        self.environment = environment or getattr(settings, "PAYMENTS_ENVIRONMENT", "test")
        self._clock = clock or timezone.now
        self._sleep = sleep or time.sleep
        self.max_attempts = max(
            1, max_attempts or getattr(settings, "PAYMENTS_PROVIDER_MAX_ATTEMPTS", 3)
        )

    # ==========================================================================
    # Payment creation
    # ==========================================================================

    def create_payment(
        self,
        request: dict[str, Any],
        tenant_id: str,
        provider_hint: str | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """
        Create a payment attempt for an order, at most once per key.

        Args:
            request: order_id, optional amount (major units), currency,
                customer, success_url, failure_url, description, metadata,
                instrument, expire_after_seconds
            tenant_id: Tenant the order belongs to
            provider_hint: Preferred provider; must be enabled for the tenant
            idempotency_key: Client-supplied key (required)

        Returns:
            ``{"success": True, "data": {...}}``; replays return the stored
            response unchanged

        Raises:
            ValidationError: IDEMPOTENCY_KEY_REQUIRED
            OrderNotFoundError: Unknown order for the tenant
            ConflictError: UPI_PAYMENT_ALREADY_CAPTURED
            ProviderNotAvailableError: No usable provider
            PaymentProcessingError: Gateway kept failing (PROVIDER_UNAVAILABLE)
        """
        key = (idempotency_key or "").strip()
        if not key:
            raise ValidationError(
                "Idempotency-Key header is required",
                error_code="IDEMPOTENCY_KEY_REQUIRED",
            )

        provider = provider_hint or request.get("provider")
        payload = {**request, "provider": provider}
        result = self.ledger.execute(
            tenant_id=tenant_id,
            scope=CREATE_PAYMENT_SCOPE,
            key=key,
            request_payload=payload,
            operation=lambda: self._create_attempt(
                request, tenant_id, provider, idempotency_key=key, created_via="api"
            ),
        )
        return result.response

    def start_token_url_flow(self, request: dict[str, Any], tenant_id: str) -> dict[str, Any]:
        """
        Return a PhonePe hosted-checkout token URL for an order.

        Repeated calls for the same order, amount and currency return the
        same URL while it is valid. Once the cached URL (or the attempt's
        polling job) has expired, both derived keys are invalidated and a
        fresh attempt is created.

        Raises:
            OrderNotFoundError: Unknown order
            ValidationError: ORDER_AMOUNT_UNAVAILABLE, ORDER_CURRENCY_UNSUPPORTED
            PermissionDeniedError: TOKEN_URL_PAYLOAD_MISMATCH
            ExternalServiceError: TOKEN_URL_UNAVAILABLE
        """
        order = self._get_order(request.get("order_id"), tenant_id)
        currency = self._order_currency(order)
        amount_minor = order.amount_minor

        request_amount = self._to_minor(request.get("amount"))
        request_currency = str(request.get("currency") or "INR").strip().upper()
        amount_mismatch = request_amount != amount_minor
        currency_mismatch = request_currency != currency
        if amount_mismatch or currency_mismatch:
            self.events.security(
                "token_url.payload_mismatch",
                tenant_id=tenant_id,
                order_id=order.id,
                provider=Provider.PHONEPE,
                source=EventSource.API,
                payload={
                    "amountMismatch": amount_mismatch,
                    "currencyMismatch": currency_mismatch,
                    "expectedAmountMinor": amount_minor,
                    "expectedCurrency": currency,
                    "receivedAmountMinor": request_amount,
                    "receivedCurrency": request_currency,
                },
            )
            raise PermissionDeniedError(
                "Order amount or currency mismatch",
                error_code="TOKEN_URL_PAYLOAD_MISMATCH",
            )

        digest = derive_token_url_digest(tenant_id, order.id, amount_minor, currency)
        token_key = f"phonepe-token:{digest}"
        original_payment_key = f"phonepe-payment:{digest}"
        payment_key = original_payment_key
        now = self._clock()

        invalidate = False
        cached = self.ledger.lookup(tenant_id, TOKEN_URL_SCOPE, token_key)
        if cached is not None:
            expires_at = parse_datetime(str((cached.get("data") or {}).get("expiresAt") or ""))
            if expires_at is not None and expires_at > now:
                return cached
            invalidate = True

        job = self.poller.latest_job_for_order(order)
        if job is not None and job.is_pending and job.is_expired_at(now):
            self.poller.mark_expired(job, "Token URL expired before reuse", last_status="expired")
            invalidate = True

        if invalidate:
            payment_key = self.ledger.generate_key("phonepe_payment_refresh")
            self.ledger.invalidate(tenant_id, TOKEN_URL_SCOPE, token_key)
            self.ledger.invalidate(tenant_id, CREATE_PAYMENT_SCOPE, original_payment_key)
            self.get_logger().info(
                "Token URL refreshed",
                extra={"order_id": str(order.id), "tenant_id": tenant_id},
            )

        redirect_url = request.get("redirect_url") or ""
        base_url = self._base_url()
        attempt_request = {
            "order_id": str(order.id),
            "amount_minor": amount_minor,
            "currency": currency,
            "customer": {
                **(request.get("customer") or {}),
                **({"phone": request["mobile_number"]} if request.get("mobile_number") else {}),
            },
            "success_url": redirect_url or f"{base_url}/payment/success",
            "failure_url": redirect_url or f"{base_url}/payment/failed",
            "cancel_url": redirect_url or f"{base_url}/payment/failed",
            "callback_url": request.get("callback_url") or "",
            "metadata": request.get("metadata") or {},
        }

        def operation() -> dict[str, Any]:
            created = self.ledger.execute(
                tenant_id=tenant_id,
                scope=CREATE_PAYMENT_SCOPE,
                key=payment_key,
                request_payload=attempt_request,
                operation=lambda: self._create_attempt(
                    attempt_request,
                    tenant_id,
                    Provider.PHONEPE,
                    idempotency_key=payment_key,
                    created_via="token-url",
                ),
            ).response
            data = created["data"]
            if not data.get("redirectUrl"):
                raise ExternalServiceError(
                    "PhonePe token URL not available from provider response",
                    error_code="TOKEN_URL_UNAVAILABLE",
                    details={"paymentId": data.get("paymentId")},
                )
            token_data = {
                "tokenUrl": data["redirectUrl"],
                "paymentId": data["paymentId"],
                "merchantTransactionId": data.get("merchantTransactionId") or "",
                "expiresAt": data.get("expiresAt"),
            }
            if data.get("upiIntent"):
                token_data["upiIntent"] = data["upiIntent"]
            return {"success": True, "data": token_data}

        result = self.ledger.execute(
            tenant_id=tenant_id,
            scope=TOKEN_URL_SCOPE,
            key=token_key,
            request_payload={
                "orderId": str(order.id),
                "amountMinor": amount_minor,
                "currency": currency,
            },
            operation=operation,
        )
        return result.response

    def retry_payment(self, order_id: Any, tenant_id: str) -> dict[str, Any]:
        """
        Start a new PhonePe attempt after the previous one expired.

        Raises:
            OrderNotFoundError: Unknown order
            ConflictError: PHONEPE_RETRY_NOT_ALLOWED, PHONEPE_METHOD_MISMATCH
        """
        order = self._get_order(order_id, tenant_id)
        previous_job = self.poller.latest_job_for_order(order)
        if previous_job is None or previous_job.status != PollingJobStatus.EXPIRED:
            raise ConflictError(
                "Latest PhonePe attempt is not expired yet",
                error_code="PHONEPE_RETRY_NOT_ALLOWED",
                details={"orderId": str(order.id)},
            )
        if not order.uses_upi:
            raise ConflictError(
                "Order is not configured for PhonePe payments",
                error_code="PHONEPE_METHOD_MISMATCH",
                details={"orderId": str(order.id), "paymentMethod": order.payment_method},
            )
        currency = self._order_currency(order)

        base_url = self._base_url()
        key = self.ledger.generate_key("phonepe_retry")
        attempt_request = {
            "order_id": str(order.id),
            "amount_minor": order.amount_minor,
            "currency": currency,
            "customer": {
                "name": order.customer_name,
                "email": order.customer_email,
                "phone": order.customer_phone,
            },
            "success_url": f"{base_url}/payment/success",
            "failure_url": f"{base_url}/payment/failed",
            "cancel_url": f"{base_url}/payment/failed",
            "metadata": {
                "previousPaymentId": str(previous_job.payment_id),
                "previousMerchantTransactionId": previous_job.merchant_transaction_id,
            },
        }
        created = self.ledger.execute(
            tenant_id=tenant_id,
            scope=CREATE_PAYMENT_SCOPE,
            key=key,
            request_payload=attempt_request,
            operation=lambda: self._create_attempt(
                attempt_request,
                tenant_id,
                Provider.PHONEPE,
                idempotency_key=key,
                created_via="phonepe-retry",
            ),
        ).response["data"]

        self.events.audit(
            "phonepe.retry.initiated",
            tenant_id=tenant_id,
            order_id=order.id,
            provider=Provider.PHONEPE,
            source=EventSource.API,
            payload={
                "newPaymentId": created["paymentId"],
                "previousPaymentId": str(previous_job.payment_id),
                "previousJobId": str(previous_job.id),
            },
        )

        with transaction.atomic():
            order = Order.objects.select_for_update().get(pk=order.pk)
            if order.mark_payment_processing():
                order.save()

        return {
            "success": True,
            "data": {
                "paymentId": created["paymentId"],
                "providerPaymentId": created["providerPaymentId"],
                "merchantTransactionId": created.get("merchantTransactionId"),
                "status": created["status"],
                "order": {"id": str(order.id), "paymentStatus": order.payment_status},
                "reconciliation": created.get("reconciliation"),
            },
        }

    # ==========================================================================
    # Status
    # ==========================================================================

    def record_return(self, query: dict[str, Any], tenant_id: str) -> dict[str, Any]:
        """
        Acknowledge the buyer's return from PhonePe.

        The redirect carries no trustworthy status, so nothing is changed;
        the event only tells the client to keep polling.

        Raises:
            ValidationError: ORDER_ID_REQUIRED
        """
        order_id = str(query.get("orderId") or "").strip()
        if not order_id:
            raise ValidationError("Order ID is required", error_code="ORDER_ID_REQUIRED")

        details = {
            name: query[name]
            for name in RETURN_QUERY_FIELDS
            if query.get(name) not in (None, "")
        }
        if isinstance(details.get("state"), str):
            details["state"] = details["state"].upper()

        event = self.events.record(
            "phonepe.return.processing",
            tenant_id=tenant_id,
            order_id=order_id,
            provider=Provider.PHONEPE,
            source=EventSource.RETURN,
            status=PaymentStatus.PROCESSING,
            payload={**details, "status": "processing", "reason": "awaiting_webhook"},
        )
        return {
            "status": "processing",
            "orderId": order_id,
            "reconciliation": {
                "shouldPoll": True,
                "reason": "PENDING_WEBHOOK",
                "eventId": str(event.id),
            },
            "message": "PhonePe is processing the payment. We will confirm once their webhook arrives.",
        }

    def verify_payment(
        self,
        payment_id: Any,
        tenant_id: str,
        source: str = EventSource.API,
    ) -> dict[str, Any]:
        """
        Ask the gateway for the attempt's status and apply it as verified.

        Payments without gateway identifiers are returned as stored.

        Raises:
            PaymentNotFoundError: Unknown payment for the tenant
            ProviderError: The status query failed
        """
        payment = self._get_payment(payment_id, tenant_id)
        if not payment.has_provider_reference:
            return self._status_view(payment)

        adapter = self._adapter(payment.provider, tenant_id)
        result = adapter.get_status(payment.provider_payment_id or payment.provider_transaction_id)

        data = dict(result.data or {})
        if result.amount_minor is not None:
            data.setdefault("amount", result.amount_minor)
        self.transitions.apply(
            str(payment.id),
            result.status,
            data,
            tenant_id,
            verified=True,
            source=source,
        )

        payment = Payment.objects.get(pk=payment.pk)
        return self._status_view(
            payment,
            provider_status=result.status,
            response_code=result.response_code,
        )

    def get_order_info(self, order_id: Any, tenant_id: str) -> dict[str, Any]:
        return self.projector.get_order_info(order_id, tenant_id)

    def cancel_payment(
        self,
        payment_id: Any,
        tenant_id: str,
        order_id: Any = None,
        reason: str | None = None,
    ) -> dict[str, Any]:
        """
        Cancel an attempt the buyer abandoned.

        Cancelling an already cancelled attempt is a no-op.

        Raises:
            PaymentNotFoundError: Unknown payment
            ValidationError: ORDER_MISMATCH
            ConflictError: PAYMENT_ALREADY_COMPLETED, PAYMENT_ALREADY_FAILED
        """
        payment = self._get_payment(payment_id, tenant_id)
        if order_id and str(payment.order_id) != str(order_id):
            raise ValidationError(
                "Payment does not belong to the provided order",
                error_code="ORDER_MISMATCH",
                details={"paymentId": str(payment.id), "orderId": str(order_id)},
            )
        if payment.status == PaymentStatus.CAPTURED:
            raise ConflictError(
                "Completed payments cannot be cancelled",
                error_code="PAYMENT_ALREADY_COMPLETED",
            )
        if payment.status == PaymentStatus.CANCELLED:
            return self._status_view(payment)
        if payment.status == PaymentStatus.FAILED:
            raise ConflictError(
                "Payment is already in a failed state",
                error_code="PAYMENT_ALREADY_FAILED",
            )

        previous = payment.status
        reason = reason or "user_cancelled_checkout"
        with transaction.atomic():
            outcome = self.transitions.apply(
                str(payment.id),
                PaymentStatus.CANCELLED,
                {"code": "USER_CANCELLED", "message": reason},
                tenant_id,
                verified=True,
                source=EventSource.API,
            )
            if outcome.changed:
                self.events.audit(
                    "checkout.user_cancelled",
                    tenant_id=tenant_id,
                    payment=outcome.payment,
                    source=EventSource.API,
                    status=PaymentStatus.CANCELLED,
                    payload={
                        "previousStatus": previous,
                        "newStatus": PaymentStatus.CANCELLED,
                        "orderId": str(payment.order_id),
                        "reason": reason,
                    },
                )
                self.poller.close_for_payment(
                    outcome.payment, PollingJobStatus.FAILED, PaymentStatus.CANCELLED
                )

        return self._status_view(Payment.objects.get(pk=payment.pk))

    # ==========================================================================
    # Refunds
    # ==========================================================================

    def create_refund(
        self,
        request: dict[str, Any],
        tenant_id: str,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """
        Refund a captured payment, at most once per key.

        Args:
            request: payment_id, optional amount (major units), reason,
                merchant_refund_id

        Raises:
            ValidationError: IDEMPOTENCY_KEY_REQUIRED
            PaymentNotFoundError: Unknown payment
            RefundError: See RefundService.create_refund
        """
        key = (idempotency_key or "").strip()
        if not key:
            raise ValidationError(
                "Idempotency-Key header is required",
                error_code="IDEMPOTENCY_KEY_REQUIRED",
            )

        def operation() -> dict[str, Any]:
            payment = self._get_payment(request.get("payment_id"), tenant_id)
            amount = request.get("amount")
            refund = self.refunds.create_refund(
                payment=payment,
                adapter=self._adapter(payment.provider, tenant_id),
                tenant_id=tenant_id,
                idempotency_key=key,
                amount_minor=self._to_minor(amount) if amount is not None else None,
                merchant_refund_id=request.get("merchant_refund_id") or None,
                reason=request.get("reason") or "",
            )
            return {"success": True, "data": serialize_refund(refund)}

        return self.ledger.execute(
            tenant_id=tenant_id,
            scope=CREATE_REFUND_SCOPE,
            key=key,
            request_payload=request,
            operation=operation,
        ).response

    def get_refund_status(self, refund_id: Any, tenant_id: str) -> dict[str, Any]:
        """
        Query the gateway for a refund and apply the answer.

        Raises:
            PaymentNotFoundError: REFUND_NOT_FOUND
        """
        refund = self.refunds.get_refund(refund_id, tenant_id)
        if refund is None:
            raise PaymentNotFoundError(
                "Refund not found",
                error_code="REFUND_NOT_FOUND",
                details={"refundId": str(refund_id)},
            )
        if not refund.is_terminal:
            refund = self.refunds.refresh_status(
                refund, self._adapter(refund.provider, tenant_id), tenant_id
            )
        return {"success": True, "data": serialize_refund(refund)}

    def list_refunds(self, payment_id: Any, tenant_id: str) -> dict[str, Any]:
        payment = self._get_payment(payment_id, tenant_id)
        refunds = self.refunds.list_for_payment(payment)
        return {
            "success": True,
            "data": {
                "paymentId": str(payment.id),
                "refundableMinor": self.refunds.refundable_amount(payment),
                "refunds": [serialize_refund(refund) for refund in refunds],
            },
        }

    # ==========================================================================
    # Providers
    # ==========================================================================

    def list_providers(self, tenant_id: str) -> list[dict[str, Any]]:
        """Providers a buyer can pay with, in preference order."""
        return [
            {
                "provider": config.provider,
                "environment": config.environment,
                "capabilities": config.capabilities,
            }
            for config in self.config_resolver.enabled_providers(tenant_id, self.environment)
            if self.adapter_factory.supports(config.provider)
        ]

    def health_check(self, tenant_id: str) -> list[dict[str, Any]]:
        results = []
        for config in self.config_resolver.enabled_providers(tenant_id, self.environment):
            if not self.adapter_factory.supports(config.provider):
                continue
            health = self._adapter(config.provider, tenant_id).health_check()
            entry: dict[str, Any] = {
                "provider": health.provider,
                "healthy": health.healthy,
                "responseTimeMs": health.response_time_ms,
            }
            if health.error:
                entry["error"] = health.error
            results.append(entry)
        return results

    # ==========================================================================
    # Internals
    # ==========================================================================

    def _create_attempt(
        self,
        request: dict[str, Any],
        tenant_id: str,
        provider_hint: str | None,
        idempotency_key: str,
        created_via: str,
    ) -> dict[str, Any]:
        logger = self.get_logger()
        order = self._get_order(request.get("order_id"), tenant_id)

        captured_upi = Payment.objects.filter(
            tenant_id=tenant_id,
            order=order,
            method_kind=MethodKind.UPI,
            status=PaymentStatus.CAPTURED,
        ).exists()
        if captured_upi:
            raise ConflictError(
                "A UPI payment has already been captured for this order",
                error_code="UPI_PAYMENT_ALREADY_CAPTURED",
                details={"orderId": str(order.id)},
            )

        provider = self._resolve_provider(tenant_id, provider_hint)
        adapter = self._adapter(provider, tenant_id)

        if request.get("amount_minor") is not None:
            amount_minor = int(request["amount_minor"])
        elif request.get("amount") is not None:
            amount_minor = self._to_minor(request["amount"])
        else:
            amount_minor = order.amount_minor
        currency = str(request.get("currency") or order.currency).strip().upper()
        base_url = self._base_url()

        try:
            params = CreatePaymentParams(
                order_id=str(order.id),
                tenant_id=tenant_id,
                amount_minor=amount_minor,
                currency=currency,
                idempotency_key=idempotency_key,
                method_kind=request.get("method_kind") or MethodKind.UPI,
                customer={k: v for k, v in (request.get("customer") or {}).items() if v},
                success_url=request.get("success_url") or f"{base_url}/payment/success",
                failure_url=request.get("failure_url") or f"{base_url}/payment/failed",
                cancel_url=request.get("cancel_url") or "",
                callback_url=request.get("callback_url") or "",
                expire_after_seconds=request.get("expire_after_seconds"),
                instrument=request.get("instrument"),
                metadata={
                    **(request.get("metadata") or {}),
                    "createdVia": created_via,
                    "environment": self.environment,
                },
            )
        except ValueError as e:
            raise ValidationError(str(e), error_code="INVALID_PAYMENT_REQUEST") from e

        attempt = self._call_with_retry(adapter, params)

        initial_status = (
            attempt.status if attempt.status in INITIAL_PAYMENT_STATUSES else PaymentStatus.CREATED
        )
        with transaction.atomic():
            payment = Payment.objects.create(
                tenant_id=tenant_id,
                order=order,
                provider=adapter.provider,
                environment=self.environment,
                provider_payment_id=attempt.provider_payment_id,
                provider_order_id=attempt.provider_order_id,
                provider_transaction_id=attempt.provider_transaction_id,
                provider_reference_id=attempt.provider_reference_id,
                status=initial_status,
                amount_authorized_minor=amount_minor,
                currency=currency,
                method_kind=attempt.method_kind or params.method_kind,
                upi_instrument_variant=normalize_instrument_variant(attempt.instrument_variant) or "",
                expires_at=attempt.expires_at,
                metadata={"createdVia": created_via, "provider": attempt.raw_response},
            )
            self.events.audit(
                "payment_created",
                tenant_id=tenant_id,
                payment=payment,
                source=EventSource.API,
                status=payment.status,
                payload={
                    "amountMinor": amount_minor,
                    "currency": currency,
                    "methodKind": payment.method_kind,
                    "orderId": str(order.id),
                    "createdVia": created_via,
                },
            )

        # Every attempt is polled; a webhook may never arrive.
        expire_after_seconds = attempt.expire_after_seconds or getattr(
            settings, "PAYMENTS_POLL_EXPIRY_SECONDS", DEFAULT_POLL_EXPIRY_SECONDS
        )
        job = self.poller.register_job(
            payment,
            attempt.provider_transaction_id or attempt.provider_payment_id,
            expire_after_seconds,
            created_at=payment.created_at,
        )

        logger.info(
            "Payment attempt created",
            extra={
                "payment_id": str(payment.id),
                "order_id": str(order.id),
                "tenant_id": tenant_id,
                "provider": payment.provider,
                "amount_minor": amount_minor,
                "created_via": created_via,
            },
        )
        return {"success": True, "data": self._attempt_view(payment, attempt, job)}

    def _call_with_retry(self, adapter: PaymentAdapter, params: CreatePaymentParams) -> PaymentAttemptResult:
        logger = self.get_logger()
        last_error: ProviderError | None = None
        attempts = 0
        for attempt in range(self.max_attempts):
            attempts = attempt + 1
            try:
                return adapter.create_payment(params)
            except ProviderError as e:
                last_error = e
                if not is_retryable(e) or attempts >= self.max_attempts:
                    break
                delay = backoff_delay(attempt, max_delay=MAX_RETRY_DELAY)
                logger.warning(
                    f"Provider create failed, retrying in {delay:.2f}s",
                    extra={
                        "provider": adapter.provider,
                        "attempt": attempts,
                        "error_code": e.error_code,
                    },
                )
                self._sleep(delay)

        raise PaymentProcessingError(
            "Payment provider failed to create the payment",
            error_code="PROVIDER_UNAVAILABLE",
            details={
                "provider": adapter.provider,
                "attempts": attempts,
                "cause": last_error.to_dict() if last_error else None,
            },
        ) from last_error

    def _resolve_provider(self, tenant_id: str, provider_hint: str | None) -> str:
        enabled = [
            config.provider
            for config in self.config_resolver.enabled_providers(tenant_id, self.environment)
            if self.adapter_factory.supports(config.provider)
        ]
        if provider_hint:
            if provider_hint not in enabled:
                raise ProviderNotAvailableError(
                    f"Payment provider '{provider_hint}' is not available",
                    details={"provider": provider_hint, "environment": self.environment},
                )
            return provider_hint
        if not enabled:
            raise ProviderNotAvailableError(
                f"No payment providers available for the {self.environment} environment",
                details={"environment": self.environment},
            )
        return enabled[0]

    def _adapter(self, provider: str, tenant_id: str) -> PaymentAdapter:
        return self.adapter_factory.create(provider, self.environment, tenant_id)

    @staticmethod
    def _get_order(order_id: Any, tenant_id: str) -> Order:
        order_uuid = parse_uuid(str(order_id or ""))
        order = (
            Order.objects.filter(pk=order_uuid, tenant_id=tenant_id).first() if order_uuid else None
        )
        if order is None:
            raise OrderNotFoundError("Order not found", details={"orderId": str(order_id)})
        return order

    @staticmethod
    def _get_payment(payment_ref: Any, tenant_id: str) -> Payment:
        ref = str(payment_ref or "").strip()
        lookup = Q(provider_payment_id=ref) | Q(provider_transaction_id=ref)
        payment_uuid = parse_uuid(ref)
        if payment_uuid is not None:
            lookup |= Q(id=payment_uuid)
        payment = (
            Payment.objects.filter(lookup, tenant_id=tenant_id).order_by("-created_at").first()
            if ref
            else None
        )
        if payment is None:
            raise PaymentNotFoundError("Payment not found", details={"paymentId": ref})
        return payment

    @staticmethod
    def _order_currency(order: Order) -> str:
        if order.amount_minor <= 0:
            raise ValidationError("Order amount unavailable", error_code="ORDER_AMOUNT_UNAVAILABLE")
        currency = (order.currency or "").strip().upper()
        if currency not in SUPPORTED_CURRENCIES:
            raise ValidationError(
                "Order currency unsupported",
                error_code="ORDER_CURRENCY_UNSUPPORTED",
                details={"currency": currency},
            )
        return currency

    @staticmethod
    def _to_minor(amount: Any) -> int:
        try:
            return to_minor_units(amount)
        except ValueError as e:
            raise ValidationError(str(e), error_code="INVALID_AMOUNT") from e

    @staticmethod
    def _base_url() -> str:
        return str(getattr(settings, "PAYMENTS_BASE_URL", "http://localhost:8000")).rstrip("/")

    @staticmethod
    def _attempt_view(payment: Payment, attempt: PaymentAttemptResult, job) -> dict[str, Any]:
        return {
            "paymentId": str(payment.id),
            "orderId": str(payment.order_id),
            "provider": payment.provider,
            "providerPaymentId": payment.provider_payment_id,
            "merchantTransactionId": payment.provider_transaction_id,
            "status": payment.status,
            "amountMinor": payment.amount_authorized_minor,
            "amount": format_minor_units(payment.amount_authorized_minor),
            "currency": payment.currency,
            "redirectUrl": attempt.redirect_url,
            "clientSecret": attempt.client_secret,
            "upiIntent": attempt.upi_intent,
            "expiresAt": _iso(payment.expires_at),
            "createdAt": _iso(payment.created_at),
            "reconciliation": serialize_polling_job(job),
        }

    @staticmethod
    def _status_view(
        payment: Payment,
        provider_status: str | None = None,
        response_code: str | None = None,
    ) -> dict[str, Any]:
        view = serialize_payment(payment)
        view["providerStatus"] = provider_status
        view["responseCode"] = response_code
        view["error"] = (
            {"code": payment.failure_code or None, "message": payment.failure_message or None}
            if payment.failure_code or payment.failure_message
            else None
        )
        return view


def build_payments_service() -> PaymentsService:
    """Default collaborator graph, sharing one config resolver."""
    resolver = ConfigResolver()
    return PaymentsService(
        adapter_factory=AdapterFactory(config_resolver=resolver),
        config_resolver=resolver,
    )
