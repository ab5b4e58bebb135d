"""
PhonePe payment gateway adapter (UPI).

All PhonePe calls go through this adapter. Requests are JSON over HTTPS
via ``requests``; every call carries an ``X-VERIFY`` checksum and, when
OAuth client credentials are configured, an ``O-Bearer`` access token.

Checksums:
    pay:     sha256(base64(request) + "/pg/v1/pay" + salt) + "###" + salt_index
    status:  sha256(path + salt) + "###" + salt_index

Webhooks are authenticated twice: the ``Authorization`` header must carry
sha256("username:password") and ``X-VERIFY`` must carry
HMAC-SHA256(webhook_secret, body), optionally followed by ``###index``.

Configuration:
- ProviderConfig row: merchant_id, salt_index, urls, metadata (hosts)
- settings.PHONEPE_*: salt key, webhook secret/credentials, OAuth client

Usage:
    from payments.adapters import AdapterFactory

    adapter = AdapterFactory().create("phonepe", "test", tenant_id)
    status = adapter.get_status("TXN_1700000000000_k3j9x0a2b")
    status.status  # "captured"
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import re
import secrets
import string
import time
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import requests
from django.conf import settings
from django.utils import timezone

from core.helpers import format_minor_units, sha256_hex

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
from payments.adapters.phonepe_auth import PhonePeTokenManager, resolve_phonepe_host
from payments.exceptions import (
    ProviderAuthenticationError,
    ProviderError,
    ProviderRequestError,
    ProviderUnavailableError,
)
from payments.services.masking import mask_payload, mask_utr, mask_vpa, normalize_instrument_variant
from payments.state_machines import (
    MethodKind,
    PaymentStatus,
    Provider,
    RefundStatus,
    normalize_payment_status,
)

if TYPE_CHECKING:
    from payments.services.config_resolver import ResolvedConfig


PAY_PATH = "/pg/v1/pay"
REFUND_PATH = "/pg/v1/payments/v2/refund"

MIN_EXPIRY_SECONDS = 300
MAX_EXPIRY_SECONDS = 3600
DEFAULT_EXPIRY_SECONDS = 900

UPI_INSTRUMENT_TYPES = ("UPI_INTENT", "UPI_COLLECT", "UPI_QR")

_ID_ALPHABET = string.ascii_lowercase + string.digits

PHONEPE_PAYMENT_STATES = {
    "PENDING": PaymentStatus.PROCESSING,
    "INITIATED": PaymentStatus.PROCESSING,
    "IN_PROGRESS": PaymentStatus.PROCESSING,
    "AWAITING_PAYMENT": PaymentStatus.PROCESSING,
    "PAYMENT_PENDING": PaymentStatus.PROCESSING,
    "AUTHORIZED": PaymentStatus.AUTHORIZED,
    "AUTHORISED": PaymentStatus.AUTHORIZED,
    "COMPLETED": PaymentStatus.CAPTURED,
    "CAPTURED": PaymentStatus.CAPTURED,
    "SUCCESS": PaymentStatus.CAPTURED,
    "SUCCEEDED": PaymentStatus.CAPTURED,
    "PAYMENT_SUCCESS": PaymentStatus.CAPTURED,
    "FAILED": PaymentStatus.FAILED,
    "DECLINED": PaymentStatus.FAILED,
    "REJECTED": PaymentStatus.FAILED,
    "ERROR": PaymentStatus.FAILED,
    "PAYMENT_ERROR": PaymentStatus.FAILED,
    "PAYMENT_DECLINED": PaymentStatus.FAILED,
    "CANCELLED": PaymentStatus.CANCELLED,
    "CANCELED": PaymentStatus.CANCELLED,
    "TIMEDOUT": PaymentStatus.CANCELLED,
    "TIMED_OUT": PaymentStatus.CANCELLED,
    "TIMEOUT": PaymentStatus.CANCELLED,
    "EXPIRED": PaymentStatus.CANCELLED,
    "ABORTED": PaymentStatus.CANCELLED,
    "USER_CANCELLED": PaymentStatus.CANCELLED,
    "CREATED": PaymentStatus.CREATED,
}

PHONEPE_REFUND_STATES = {
    "PENDING": RefundStatus.PENDING,
    "INITIATED": RefundStatus.PENDING,
    "PROCESSING": RefundStatus.PROCESSING,
    "IN_PROGRESS": RefundStatus.PROCESSING,
    "COMPLETED": RefundStatus.SUCCEEDED,
    "SUCCESS": RefundStatus.SUCCEEDED,
    "SUCCEEDED": RefundStatus.SUCCEEDED,
    "PAYMENT_SUCCESS": RefundStatus.SUCCEEDED,
    "FAILED": RefundStatus.FAILED,
    "ERROR": RefundStatus.FAILED,
    "PAYMENT_ERROR": RefundStatus.FAILED,
    "CANCELLED": RefundStatus.CANCELLED,
    "CANCELED": RefundStatus.CANCELLED,
}

_TOKEN_EXPIRED = re.compile(r"TOKEN.*EXPIRED", re.IGNORECASE)
_AUTH_PREFIX = re.compile(r"^(?:Bearer|Basic)\s+(.+)$", re.IGNORECASE)
_HEX = re.compile(r"^[0-9a-fA-F]+$")


def map_phonepe_payment_state(state: Any) -> str:
    """PhonePe payment state -> Payment status; unknown values use the shared aliases."""
    if not isinstance(state, str):
        return PaymentStatus.PROCESSING.value
    mapped = PHONEPE_PAYMENT_STATES.get(state.strip().upper())
    return mapped.value if mapped is not None else normalize_payment_status(state)


def map_phonepe_refund_state(state: Any) -> str:
    if not isinstance(state, str):
        return RefundStatus.PENDING.value
    mapped = PHONEPE_REFUND_STATES.get(state.strip().upper())
    return mapped.value if mapped is not None else RefundStatus.PENDING.value


def clamp_expire_after(value: Any) -> int:
    """
    Clamp a requested attempt lifetime to PhonePe's accepted range.

    Example:
        clamp_expire_after(60)    # 300
        clamp_expire_after(None)  # 900
        clamp_expire_after(7200)  # 3600
    """
    if isinstance(value, bool):
        return DEFAULT_EXPIRY_SECONDS
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return DEFAULT_EXPIRY_SECONDS
    if numeric != numeric or numeric in (float("inf"), float("-inf")):
        return DEFAULT_EXPIRY_SECONDS
    return max(MIN_EXPIRY_SECONDS, min(MAX_EXPIRY_SECONDS, int(numeric)))


def resolve_instrument(preference: str | None) -> tuple[str, bool]:
    """
    Map an instrument preference to (UPI instrument type, use pay page).

    Example:
        resolve_instrument("intent")    # ("UPI_INTENT", False)
        resolve_instrument("PAY_PAGE")  # ("UPI_COLLECT", True)
    """
    if not preference:
        return "UPI_COLLECT", False
    normalized = re.sub(r"[\s-]+", "_", preference.strip().upper())
    if normalized in ("UPI_INTENT", "INTENT"):
        return "UPI_INTENT", False
    if normalized in ("UPI_QR", "QR", "QR_CODE"):
        return "UPI_QR", False
    if normalized in ("PAY_PAGE", "IFRAME", "EMBEDDED"):
        return "UPI_COLLECT", True
    return "UPI_COLLECT", False


def generate_merchant_transaction_id() -> str:
    """``TXN_{epoch_ms}_{9 random chars}``, unique per attempt."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"TXN_{int(time.time() * 1000)}_{suffix}"


def _pick_string(*values: Any) -> str | None:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


class PhonePeAdapter(PaymentAdapter):
    """
    Adapter for the PhonePe PG API.

    Instances are built per request from a ResolvedConfig; OAuth tokens are
    shared across instances through the cache.
    """

    provider = Provider.PHONEPE

    def __init__(self, config: ResolvedConfig, token_manager: PhonePeTokenManager | None = None):
        super().__init__(config)
        self.merchant_id = config.merchant_id
        self.salt_key = config.secret("salt_key")
        self.salt_index = config.salt_index or 1
        self.webhook_secret = config.secret("webhook_secret")
        self.webhook_username = config.secret("webhook_username")
        self.webhook_password = config.secret("webhook_password")
        self.client_id = config.secret("client_id")
        self.client_version = config.secret("client_version") or "1"
        self.base_url = resolve_phonepe_host(config)
        self.timeout = getattr(settings, "PHONEPE_API_TIMEOUT_SECONDS", 30)
        self.token_manager = token_manager or PhonePeTokenManager(
            self.base_url,
            self.client_id,
            config.secret("client_secret"),
            self.client_version,
            timeout=self.timeout,
        )

    # =========================================================================
    # Payments
    # =========================================================================

    def create_payment(self, params: CreatePaymentParams) -> PaymentAttemptResult:
        """
        Create a PG_CHECKOUT attempt and return its token (redirect) URL.

        Raises:
            ProviderUnavailableError: Timeout, connection error or 5xx
            ProviderRequestError: PhonePe rejected the request
            ProviderAuthenticationError: Credentials rejected
        """
        merchant_transaction_id = generate_merchant_transaction_id()
        expire_after = clamp_expire_after(params.expire_after_seconds)
        instrument_type, use_pay_page = resolve_instrument(params.instrument)
        redirect_url = params.success_url or self.config.success_url or self._default_return_url(
            params.order_id
        )
        callback_url = _pick_string(
            params.callback_url,
            params.metadata.get("callbackUrl"),
            self.config.webhook_url,
            params.cancel_url,
            params.failure_url,
            redirect_url,
        )

        payment_request = {
            "merchantTransactionId": merchant_transaction_id,
            "merchantId": self.merchant_id,
            "merchantOrderId": params.order_id,
            "amount": params.amount_minor,
            "redirectUrl": redirect_url,
            "redirectMode": "POST",
            "callbackUrl": callback_url,
            "paymentFlow": {"type": "PG_CHECKOUT"},
            "expireAfter": expire_after,
            "paymentModeConfig": {
                "paymentModes": [
                    {
                        "paymentMode": "UPI",
                        "enabled": True,
                        "paymentInstruments": [
                            {"type": kind, "enabled": not use_pay_page or kind == instrument_type}
                            for kind in UPI_INSTRUMENT_TYPES
                        ],
                    }
                ]
            },
            "paymentInstrument": {"type": "PAY_PAGE" if use_pay_page else instrument_type},
        }
        if params.customer.get("phone"):
            payment_request["mobileNumber"] = params.customer["phone"]

        encoded = base64.b64encode(json.dumps(payment_request).encode("utf-8")).decode("ascii")
        response = self._call(
            "create_payment",
            "POST",
            PAY_PATH,
            payload={"request": encoded},
            checksum=self._checksum(PAY_PATH, encoded),
            log_context={
                "order_id": params.order_id,
                "tenant_id": params.tenant_id,
                "merchant_transaction_id": merchant_transaction_id,
                "amount_minor": params.amount_minor,
            },
        )
        if not response.get("success"):
            raise self._rejected("PhonePe payment creation failed", response)

        data = _as_dict(response.get("data"))
        instrument_response = _as_dict(data.get("instrumentResponse"))
        token_url = _as_dict(instrument_response.get("redirectInfo")).get("url")

        return PaymentAttemptResult(
            provider=self.provider,
            provider_payment_id=merchant_transaction_id,
            provider_transaction_id=merchant_transaction_id,
            provider_order_id=data.get("transactionId") or merchant_transaction_id,
            provider_reference_id=merchant_transaction_id,
            status=PaymentStatus.CREATED,
            amount_minor=params.amount_minor,
            currency=params.currency,
            redirect_url=token_url,
            expires_at=timezone.now() + timedelta(seconds=expire_after),
            expire_after_seconds=expire_after,
            method_kind=MethodKind.UPI,
            instrument_variant="" if use_pay_page else instrument_type,
            upi_intent=self._upi_intent(instrument_response, params.amount_minor),
            raw_response=mask_payload(response),
        )

    def get_status(self, provider_payment_id: str) -> PaymentStatusResult:
        """
        Query an attempt by merchant transaction id.

        PhonePe answers pending attempts with ``success: false`` and a
        PAYMENT_PENDING code, so the code is used when no state is present.
        """
        path = f"/pg/v1/status/{self.merchant_id}/{provider_payment_id}"
        response = self._call(
            "get_status",
            "GET",
            path,
            checksum=self._checksum(path),
            log_context={"merchant_transaction_id": provider_payment_id},
        )

        data = _as_dict(response.get("data"))
        state = _pick_string(data.get("state"))
        code = _pick_string(response.get("code"))
        if state is None and not (code and code.upper() in PHONEPE_PAYMENT_STATES):
            raise self._rejected("PhonePe status check failed", response)

        instrument = _as_dict(data.get("paymentInstrument"))
        payer_vpa = mask_vpa(
            _pick_string(instrument.get("vpa"), instrument.get("payerVpa"), instrument.get("payerAddress"))
        )
        utr = mask_utr(_pick_string(instrument.get("utr"), data.get("utr")))

        status_data = mask_payload(data)
        status_data.update(
            {
                "state": state or code,
                "code": code,
                "message": response.get("message"),
                "merchantTransactionId": provider_payment_id,
                "transactionId": data.get("transactionId"),
                "payerVpa": payer_vpa,
                "utr": utr,
                "instrumentVariant": normalize_instrument_variant(instrument.get("type")),
            }
        )
        amount = data.get("amount")
        return PaymentStatusResult(
            provider_payment_id=provider_payment_id,
            status=map_phonepe_payment_state(state or code),
            amount_minor=amount if isinstance(amount, int) else None,
            provider_transaction_id=data.get("transactionId"),
            response_code=_pick_string(data.get("responseCode"), code),
            data={key: value for key, value in status_data.items() if value is not None},
        )

    # =========================================================================
    # Refunds
    # =========================================================================

    def create_refund(self, params: CreateRefundParams) -> RefundAttemptResult:
        merchant_refund_id = params.merchant_refund_id.strip()
        refund_request = {
            "merchantId": self.merchant_id,
            "merchantTransactionId": merchant_refund_id,
            "merchantRefundId": merchant_refund_id,
            "originalTransactionId": params.provider_payment_id,
            "originalMerchantOrderId": params.provider_order_id or params.provider_payment_id,
            "amount": params.amount_minor,
            "reason": params.reason,
        }
        response = self._call(
            "create_refund",
            "POST",
            REFUND_PATH,
            payload=refund_request,
            log_context={
                "merchant_refund_id": merchant_refund_id,
                "merchant_transaction_id": params.provider_payment_id,
                "amount_minor": params.amount_minor,
            },
        )
        if not response.get("success"):
            raise self._rejected("PhonePe refund creation failed", response)

        return self._refund_result(merchant_refund_id, response, params.amount_minor)

    def get_refund_status(
        self, merchant_refund_id: str, provider_refund_id: str | None = None
    ) -> RefundAttemptResult:
        path = f"/pg/v1/status/{self.merchant_id}/{merchant_refund_id}"
        response = self._call(
            "get_refund_status",
            "GET",
            path,
            checksum=self._checksum(path),
            log_context={"merchant_refund_id": merchant_refund_id},
        )
        data = _as_dict(response.get("data"))
        if not data.get("state") and not response.get("success"):
            raise self._rejected("PhonePe refund status check failed", response)
        return self._refund_result(merchant_refund_id, response)

    def _refund_result(
        self,
        merchant_refund_id: str,
        response: dict[str, Any],
        requested_amount: int | None = None,
    ) -> RefundAttemptResult:
        data = _as_dict(response.get("data"))
        instrument = _as_dict(data.get("paymentInstrument"))
        utr = _pick_string(data.get("utr"), data.get("upiTransactionId"), instrument.get("utr"))
        status = map_phonepe_refund_state(data.get("state") or "PENDING")
        amount = data.get("amount")
        return RefundAttemptResult(
            merchant_refund_id=merchant_refund_id,
            status=status,
            amount_minor=amount if isinstance(amount, int) else requested_amount,
            provider_refund_id=_pick_string(data.get("transactionId"), data.get("providerReferenceId")),
            upi_utr=mask_utr(utr) or "",
            failure_message=(
                str(response.get("message") or "") if status == RefundStatus.FAILED else ""
            ),
            raw_response=mask_payload(response),
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    def verify_webhook(self, params: WebhookVerifyParams) -> WebhookVerifyResult:
        """
        Authenticate a PhonePe callback and extract its event.

        Error codes:
            WEBHOOK_SECRET_MISSING, MISSING_SIGNATURE, MISSING_AUTHORIZATION,
            INVALID_AUTHORIZATION, INVALID_SIGNATURE, INVALID_PAYLOAD
        """
        if not self.webhook_secret:
            return WebhookVerifyResult.rejected(
                "WEBHOOK_SECRET_MISSING", "Webhook secret not configured"
            )

        signature = params.header("x-verify")
        if not signature:
            return WebhookVerifyResult.rejected(
                "MISSING_SIGNATURE", "Missing PhonePe signature header"
            )

        provided_auth = self._authorization_hash(params.header("authorization"))
        if not provided_auth:
            return WebhookVerifyResult.rejected(
                "MISSING_AUTHORIZATION", "Missing webhook authorization header"
            )
        expected_auth = sha256_hex(f"{self.webhook_username}:{self.webhook_password}")
        if not _HEX.match(provided_auth) or not hmac.compare_digest(
            provided_auth.lower(), expected_auth
        ):
            return WebhookVerifyResult.rejected(
                "INVALID_AUTHORIZATION", "Invalid webhook authorization hash"
            )

        signature_hash = signature.split("###", 1)[0].strip().lower()
        expected_signature = hmac.new(
            self.webhook_secret.encode("utf-8"),
            params.body.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        if not signature_hash or not hmac.compare_digest(signature_hash, expected_signature):
            return WebhookVerifyResult.rejected("INVALID_SIGNATURE", "Invalid webhook signature")

        try:
            body = json.loads(params.body)
        except ValueError:
            return WebhookVerifyResult.rejected("INVALID_PAYLOAD", "Webhook body is not JSON")
        if not isinstance(body, dict):
            return WebhookVerifyResult.rejected("INVALID_PAYLOAD", "Webhook body is not an object")

        return WebhookVerifyResult(verified=True, event=self._parse_event(body))

    def _parse_event(self, body: dict[str, Any]) -> WebhookEventData:
        envelope = _as_dict(body.get("event"))
        payload = (
            _as_dict(envelope.get("payload"))
            or _as_dict(body.get("payload"))
            or _as_dict(body.get("data"))
            or body
        )

        event_id = _pick_string(envelope.get("id"), body.get("eventId"), body.get("id"))
        order_id = _pick_string(envelope.get("orderId"), payload.get("orderId"), body.get("orderId"))
        transaction_id = _pick_string(
            envelope.get("transactionId"),
            payload.get("transactionId"),
            payload.get("providerTransactionId"),
            payload.get("merchantTransactionId"),
            body.get("transactionId"),
            body.get("merchantTransactionId"),
        )
        payment_id = _pick_string(
            payload.get("merchantTransactionId"),
            payload.get("paymentId"),
            payload.get("providerPaymentId"),
            order_id,
            transaction_id,
        )
        state = _pick_string(payload.get("state"), envelope.get("state"), body.get("state"))
        event_type = _pick_string(envelope.get("type"), body.get("type")) or "payment_status_update"

        refund_id = _pick_string(payload.get("merchantRefundId"), payload.get("refundId"))
        is_refund = bool(refund_id) or "refund" in event_type.lower()

        data = mask_payload(payload)
        data.update({"eventId": event_id, "orderId": order_id, "transactionId": transaction_id})
        return WebhookEventData(
            event_type=event_type,
            event_id=event_id,
            payment_id=payment_id,
            order_id=order_id,
            transaction_id=transaction_id,
            status=None if is_refund or not state else map_phonepe_payment_state(state),
            refund_id=refund_id if is_refund else None,
            refund_status=map_phonepe_refund_state(state) if is_refund and state else None,
            data={key: value for key, value in data.items() if value is not None},
        )

    # =========================================================================
    # Health
    # =========================================================================

    def health_check(self) -> HealthCheckResult:
        """
        Probe the status endpoint with a throwaway transaction id.

        Any answer other than an authentication failure counts as healthy;
        an unknown transaction is the expected response.
        """
        start_time = time.time()
        try:
            self.get_status(f"HEALTH_CHECK_{int(time.time() * 1000)}")
        except ProviderAuthenticationError as e:
            return HealthCheckResult(
                provider=self.provider,
                healthy=False,
                response_time_ms=int((time.time() - start_time) * 1000),
                error=e.message,
            )
        except ProviderError:
            pass
        return HealthCheckResult(
            provider=self.provider,
            healthy=True,
            response_time_ms=int((time.time() - start_time) * 1000),
        )

    # =========================================================================
    # HTTP
    # =========================================================================

    def _checksum(self, path: str, payload: str = "") -> str:
        return f"{sha256_hex(f'{payload}{path}{self.salt_key}')}###{self.salt_index}"

    def _call(
        self,
        operation: str,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        checksum: str | None = None,
        log_context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Perform one API call, refreshing the access token once when PhonePe
        reports it expired (401/403 or a ``*TOKEN*EXPIRED*`` code).
        """
        logger = self.get_logger()
        log_context = {
            "operation": operation,
            "provider": self.provider,
            "environment": self.environment,
            **(log_context or {}),
        }
        start_time = time.time()
        logger.info("Starting PhonePe operation", extra=log_context)

        response = None
        body: Any = None
        for attempt in range(2):
            response = self._send(method, path, payload, checksum, force_refresh=attempt > 0, log_context=log_context)
            body = _json_body(response)
            token_expired = response.status_code in (401, 403) or (
                isinstance(body, dict) and _TOKEN_EXPIRED.search(str(body.get("code") or ""))
            )
            if not token_expired or not self.token_manager.is_configured:
                break
            self.token_manager.invalidate()

        duration_ms = (time.time() - start_time) * 1000
        log_context = {**log_context, "duration_ms": duration_ms, "status_code": response.status_code}

        if response.status_code in (401, 403):
            logger.error("PhonePe rejected credentials", extra=log_context)
            raise ProviderAuthenticationError(
                "PhonePe authentication failed",
                provider=self.provider,
                status_code=response.status_code,
            )
        if response.status_code >= 500:
            logger.warning("PhonePe service error", extra=log_context)
            raise ProviderUnavailableError(
                "PhonePe service error. Please retry.",
                provider=self.provider,
                status_code=response.status_code,
            )
        if not isinstance(body, dict):
            logger.error("PhonePe returned a non-JSON response", extra=log_context)
            raise ProviderRequestError(
                "PhonePe returned an unexpected response",
                provider=self.provider,
                status_code=response.status_code,
            )
        if not response.ok and not _as_dict(body.get("data")).get("state"):
            logger.warning(
                "PhonePe request rejected",
                extra={**log_context, "provider_code": body.get("code")},
            )
            raise self._rejected(f"PhonePe {operation} failed", body, response.status_code)

        logger.info(
            "PhonePe operation completed",
            extra={**log_context, "provider_code": body.get("code")},
        )
        return body

    def _send(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None,
        checksum: str | None,
        force_refresh: bool,
        log_context: dict[str, Any],
    ) -> requests.Response:
        headers = {
            "Content-Type": "application/json",
            "accept": "application/json",
            "User-Agent": f"PhonePeAdapter/{self.client_version}",
            "X-MERCHANT-ID": self.merchant_id,
        }
        if checksum:
            headers["X-VERIFY"] = checksum
        access_token = self.token_manager.get_access_token(force_refresh=force_refresh)
        if access_token:
            headers.update(
                {
                    "Authorization": f"O-Bearer {access_token}",
                    "X-CLIENT-ID": self.client_id,
                    "X-CLIENT-VERSION": self.client_version,
                }
            )

        try:
            return requests.request(
                method,
                f"{self.base_url}{path}",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            self.get_logger().warning("PhonePe request timed out", extra=log_context)
            raise ProviderUnavailableError(
                "PhonePe request timed out. Please retry.",
                error_code="PROVIDER_TIMEOUT",
                provider=self.provider,
            ) from e
        except requests.RequestException as e:
            self.get_logger().error(
                "Connection error to PhonePe", extra=log_context, exc_info=True
            )
            raise ProviderUnavailableError(
                "Could not connect to PhonePe. Please retry.",
                provider=self.provider,
                details={"error": str(e)},
            ) from e

    def _rejected(
        self,
        message: str,
        body: dict[str, Any],
        status_code: int | None = None,
    ) -> ProviderRequestError:
        code = body.get("code")
        detail = body.get("message")
        return ProviderRequestError(
            f"{message}: {code} - {detail}" if code else message,
            provider=self.provider,
            provider_code=code,
            status_code=status_code,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _authorization_hash(header: str | None) -> str | None:
        if not header or not header.strip():
            return None
        value = header.strip()
        match = _AUTH_PREFIX.match(value)
        return match.group(1).strip() if match else value

    @staticmethod
    def _upi_intent(instrument_response: dict[str, Any], amount_minor: int) -> dict[str, Any] | None:
        intent = {
            "intentUrl": _pick_string(
                instrument_response.get("intentUrl"), instrument_response.get("intent_url")
            ),
            "qrData": _pick_string(
                instrument_response.get("qrData"),
                instrument_response.get("qrString"),
                instrument_response.get("qrPayload"),
                instrument_response.get("qrCode"),
            ),
            "merchantVpa": _pick_string(
                instrument_response.get("merchantVpa"),
                instrument_response.get("merchantVPA"),
                instrument_response.get("payeeAddress"),
            ),
            "merchantName": _pick_string(
                instrument_response.get("merchantName"), instrument_response.get("payeeName")
            ),
        }
        intent = {key: value for key, value in intent.items() if value}
        if not intent:
            return None
        intent["amount"] = format_minor_units(amount_minor)
        return intent

    def _default_return_url(self, order_id: str) -> str:
        base_url = getattr(settings, "PAYMENTS_BASE_URL", "http://localhost:8000").rstrip("/")
        return f"{base_url}/api/v1/payments/phonepe/return/?orderId={order_id}"


def _json_body(response: requests.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
