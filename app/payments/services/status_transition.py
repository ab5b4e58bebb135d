"""
The single function through which every status signal reaches a Payment.

Webhooks, the browser return path, status polling and manual verification
all call ``PaymentStatusTransitionService.apply``. It holds row locks on
the Payment and its Order for the whole decision, so concurrent signals
for the same payment are serialised.

Rules, in order:
    1. Terminal payments never change (replays and late signals are no-ops)
    2. Statuses outside the Payment vocabulary are ignored
    3. Unverified signals may only move a payment to ``processing``
    4. Transitions the FSM does not allow are rejected and audited
    5. A verified capture whose amount differs from the authorized amount
       is recorded on the security trail and not applied
    6. Captures mark the Order paid; failures mark its payment failed.
       Non-terminal signals leave the Order untouched
    7. A second UPI capture on an already-paid Order is refused and
       recorded on the security trail

Usage:
    from payments.services.status_transition import PaymentStatusTransitionService

    outcome = PaymentStatusTransitionService().apply(
        payment_ref="TXN_1700000000000_k3j9x0a2b",
        incoming_status="captured",
        data={"amount": 1000, "utr": "UTR1234567"},
        tenant_id="default",
        verified=True,
        source="webhook",
    )
    if outcome.changed:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from django_fsm import can_proceed

from core.helpers import parse_uuid, to_minor_units
from core.services import BaseService

from orders.models import Order
from payments.models import Payment, PollingJob
from payments.services.events import EventRecorder
from payments.services.masking import (
    mask_utr,
    mask_vpa,
    normalize_instrument_variant,
)
from payments.state_machines import (
    EventSource,
    MethodKind,
    PaymentStatus,
    PollingJobStatus,
    normalize_payment_status,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

CAPTURED_AMOUNT_KEYS = ("amount", "amountMinor", "transactionAmount", "capturedAmount", "captureAmount")
FAILURE_CODE_KEYS = ("code", "state", "subCode")
FAILURE_MESSAGE_KEYS = ("message", "failureMessage", "reason", "description")


@dataclass
class TransitionOutcome:
    """
    Result of applying a status signal.

    Attributes:
        found: Whether the payment exists for the tenant
        changed: Whether the payment status was written
        reason: Why nothing changed ("terminal", "unknown_status", "unchanged",
            "rejected", "amount_mismatch", "duplicate_capture") or "applied"
        order_updated: Whether the order projection changed
    """

    found: bool
    changed: bool = False
    reason: str = ""
    payment: Payment | None = None
    previous_status: str | None = None
    status: str | None = None
    order_updated: bool = False


# =============================================================================
# Payload extraction
# =============================================================================


def _pick(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _instrument(data: dict[str, Any]) -> dict[str, Any]:
    instrument = data.get("paymentInstrument")
    return instrument if isinstance(instrument, dict) else {}


def extract_provider_metadata(data: dict[str, Any]) -> dict[str, Any]:
    """
    Pull gateway identifiers and UPI details out of a status payload.

    VPA and UTR values come back masked.
    """
    instrument = _instrument(data)
    metadata = {
        "transactionId": _pick(data, "transactionId", "providerTransactionId"),
        "referenceId": _pick(data, "providerReferenceId", "referenceId"),
        "payerHandle": mask_vpa(
            _pick(data, "payerVpa", "vpa", "upiPayerHandle")
            or _pick(instrument, "vpa", "payerVpa", "payerAddress")
        ),
        "utr": mask_utr(_pick(data, "utr", "upiUtr") or _pick(instrument, "utr")),
        "instrumentVariant": normalize_instrument_variant(
            _pick(data, "instrumentVariant") or _pick(instrument, "type")
        ),
        "receiptUrl": _pick(data, "receiptUrl", "receipt_url"),
    }
    return {key: value for key, value in metadata.items() if value is not None}


def extract_failure(data: dict[str, Any]) -> tuple[str | None, str | None]:
    code = _pick(data, *FAILURE_CODE_KEYS)
    message = _pick(data, *FAILURE_MESSAGE_KEYS)
    return (str(code) if code is not None else None, str(message) if message is not None else None)


def extract_captured_amount(data: dict[str, Any]) -> int | None:
    """
    Captured amount in minor units, or None when the payload has none.

    Integers and integer strings are minor units. Floats, Decimals and
    decimal strings are always major units, so 10.0 and "10.00" both mean
    ten rupees.

    Example:
        extract_captured_amount({"amount": 1000})       # 1000
        extract_captured_amount({"amount": "10.00"})    # 1000
        extract_captured_amount({"amount": 10.0})       # 1000
        extract_captured_amount({"capturedAmount": "1000"})  # 1000
    """
    value = _pick(data, *CAPTURED_AMOUNT_KEYS)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        if isinstance(value, (float, Decimal)):
            return to_minor_units(value)
        if isinstance(value, str):
            text = value.strip()
            return to_minor_units(text) if "." in text else int(text)
    except ValueError:
        return None
    return None


# =============================================================================
# Service
# =============================================================================


class PaymentStatusTransitionService(BaseService):
    """
    Applies normalised status signals to Payments and projects the result
    onto their Orders.

    Args:
        events: Event recorder for the audit, security and lifecycle trails
        clock: Callable returning "now"
    """

    def __init__(
        self,
        events: EventRecorder | None = None,
        clock: Callable[[], Any] | None = None,
    ):
        self.events = events or EventRecorder()
        self._clock = clock or timezone.now

    def apply(
        self,
        payment_ref: str,
        incoming_status: Any,
        data: dict[str, Any] | None,
        tenant_id: str,
        verified: bool,
        source: str = EventSource.SYSTEM,
    ) -> TransitionOutcome:
        logger = self.get_logger()
        data = data or {}
        incoming = normalize_payment_status(incoming_status)

        with transaction.atomic():
            payment = self._lock_payment(payment_ref, tenant_id)
            if payment is None:
                logger.info(
                    "Status signal for unknown payment",
                    extra={"payment_ref": payment_ref, "tenant_id": tenant_id, "source": source},
                )
                return TransitionOutcome(found=False, reason="not_found")

            order = Order.objects.select_for_update().get(pk=payment.order_id)
            previous = payment.status
            outcome = TransitionOutcome(
                found=True,
                payment=payment,
                previous_status=previous,
                status=previous,
            )

            if payment.is_terminal:
                outcome.reason = "terminal"
                return outcome

            if incoming not in PaymentStatus.values:
                logger.info(
                    "Ignoring status outside the payment vocabulary",
                    extra={"payment_id": str(payment.id), "incoming_status": incoming},
                )
                outcome.reason = "unknown_status"
                return outcome

            target = incoming if verified else PaymentStatus.PROCESSING.value
            if target == previous:
                outcome.reason = "unchanged"
                return outcome

            method = self._transition_method(payment, target)
            if method is None or not can_proceed(method):
                self.events.audit(
                    "payment.transition_rejected",
                    tenant_id=tenant_id,
                    payment=payment,
                    source=source,
                    status=previous,
                    payload={"from": previous, "to": target, "verified": verified},
                )
                outcome.reason = "rejected"
                return outcome

            self._apply_metadata(payment, data)

            if target == PaymentStatus.CAPTURED:
                captured = extract_captured_amount(data)
                if captured is not None and captured != payment.amount_authorized_minor:
                    self.events.security(
                        "payment.amount_mismatch",
                        tenant_id=tenant_id,
                        payment=payment,
                        source=source,
                        status=previous,
                        payload={
                            "expectedMinor": payment.amount_authorized_minor,
                            "receivedMinor": captured,
                        },
                    )
                    outcome.reason = "amount_mismatch"
                    return outcome
                if self._has_other_upi_capture(payment):
                    return self._refuse_duplicate_capture(payment, tenant_id, source, outcome)
                payment.capture(captured)
            elif target in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
                code, message = extract_failure(data)
                method(code, message)
            else:
                method()

            try:
                with transaction.atomic():
                    payment.save()
            except IntegrityError:
                if target != PaymentStatus.CAPTURED:
                    raise
                return self._refuse_duplicate_capture(payment, tenant_id, source, outcome)
            outcome.changed = True
            outcome.reason = "applied"
            outcome.status = payment.status

            self.events.lifecycle(
                "payment.status_changed",
                tenant_id=tenant_id,
                payment=payment,
                source=source,
                status=payment.status,
                payload={"from": previous, "to": payment.status, "verified": verified},
            )
            outcome.order_updated = self._project_order(order, payment, tenant_id, source)

        logger.info(
            "Payment status changed",
            extra={
                "payment_id": str(payment.id),
                "tenant_id": tenant_id,
                "from_status": previous,
                "to_status": outcome.status,
                "source": source,
                "verified": verified,
            },
        )
        return outcome

    # ==========================================================================
    # Internals
    # ==========================================================================

    @staticmethod
    def _lock_payment(payment_ref: str, tenant_id: str) -> Payment | None:
        ref = str(payment_ref or "").strip()
        if not ref:
            return None
        lookup = Q(provider_payment_id=ref) | Q(provider_transaction_id=ref)
        payment_uuid = parse_uuid(ref)
        if payment_uuid is not None:
            lookup |= Q(id=payment_uuid)
        return (
            Payment.objects.select_for_update()
            .filter(lookup, tenant_id=tenant_id)
            .order_by("-created_at")
            .first()
        )

    @staticmethod
    def _transition_method(payment: Payment, target: str):
        return {
            PaymentStatus.PROCESSING: payment.mark_processing,
            PaymentStatus.REQUIRES_ACTION: payment.require_action,
            PaymentStatus.AUTHORIZED: payment.authorize,
            PaymentStatus.CAPTURED: payment.capture,
            PaymentStatus.FAILED: payment.fail,
            PaymentStatus.CANCELLED: payment.cancel,
        }.get(target)

    @staticmethod
    def _apply_metadata(payment: Payment, data: dict[str, Any]) -> None:
        metadata = extract_provider_metadata(data)
        if not metadata:
            return
        if metadata.get("payerHandle"):
            payment.upi_payer_handle = metadata["payerHandle"]
        if metadata.get("utr"):
            payment.upi_utr = metadata["utr"]
        if metadata.get("instrumentVariant"):
            payment.upi_instrument_variant = metadata["instrumentVariant"]
        if metadata.get("receiptUrl"):
            payment.receipt_url = metadata["receiptUrl"]
        if metadata.get("referenceId") and not payment.provider_reference_id:
            payment.provider_reference_id = metadata["referenceId"]
        payment.metadata = {**(payment.metadata or {}), "provider": metadata}

    @staticmethod
    def _has_other_upi_capture(payment: Payment) -> bool:
        if payment.method_kind != MethodKind.UPI:
            return False
        return (
            Payment.objects.filter(
                order_id=payment.order_id,
                method_kind=MethodKind.UPI,
                status=PaymentStatus.CAPTURED,
            )
            .exclude(pk=payment.pk)
            .exists()
        )

    def _refuse_duplicate_capture(
        self,
        payment: Payment,
        tenant_id: str,
        source: str,
        outcome: TransitionOutcome,
    ) -> TransitionOutcome:
        # The order already holds a captured UPI attempt; the money on this
        # one has to be returned by an operator.
        self.events.security(
            "payment.duplicate_capture",
            tenant_id=tenant_id,
            payment=payment,
            source=source,
            status=outcome.previous_status,
            payload={
                "orderId": str(payment.order_id),
                "amountMinor": payment.amount_authorized_minor,
            },
        )
        PollingJob.objects.filter(payment_id=payment.pk, status=PollingJobStatus.PENDING).update(
            status=PollingJobStatus.FAILED,
            last_status="duplicate_capture",
            last_error="Order already has a captured UPI payment",
            completed_at=self._clock(),
        )
        self.get_logger().warning(
            "Duplicate UPI capture refused",
            extra={"payment_id": str(payment.id), "order_id": str(payment.order_id)},
        )
        outcome.reason = "duplicate_capture"
        return outcome

    def _project_order(self, order: Order, payment: Payment, tenant_id: str, source: str) -> bool:
        if payment.status == PaymentStatus.CAPTURED:
            if not order.mark_paid():
                return False
            order.save()
            self.events.lifecycle(
                "order.paid",
                tenant_id=tenant_id,
                payment=payment,
                source=source,
                status=order.status,
                payload={"amountMinor": payment.amount_captured_minor},
            )
            return True

        if payment.status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            updated = order.mark_payment_failed(self._clock())
            if updated:
                order.save()
            self.events.audit(
                "payment.failed",
                tenant_id=tenant_id,
                payment=payment,
                source=source,
                status=payment.status,
                payload={
                    "failureCode": payment.failure_code,
                    "failureMessage": payment.failure_message,
                },
            )
            return updated

        return False
