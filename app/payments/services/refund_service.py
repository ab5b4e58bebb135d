"""
Refund service for returning money to buyers.

This module provides the RefundService class which handles the critical
path for refunds following a two-phase pattern:

1. Under a row lock on the Payment: check eligibility, compute the
   refundable amount and reserve it by inserting a PENDING Refund
2. Outside the lock: call the gateway, then record its answer on the
   Refund (and recompute refunded totals once a refund succeeds)

Refunds that are pending or processing count against the captured amount,
so two concurrent refunds cannot together exceed it. Only succeeded
refunds count towards ``Payment.amount_refunded_minor``.

Usage:
    from payments.services.refund_service import RefundService

    service = RefundService()
    refund = service.create_refund(
        payment=payment,
        adapter=adapter,
        tenant_id="default",
        amount_minor=300,
        merchant_refund_id="RFD_1700000000000_k3j9x0a2b",
        idempotency_key=key,
    )

    # Later, from a webhook or a status query
    service.apply_refund_status(refund.merchant_refund_id, "succeeded", {}, "default")
"""

from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import transaction
from django.db.models import Q, Sum

from django_fsm import can_proceed

from core.helpers import format_minor_units, parse_uuid
from core.services import BaseService

from payments.adapters.base import CreateRefundParams
from payments.exceptions import ProviderError, RefundError
from payments.models import Payment, Refund
from payments.models.refund import OPEN_REFUND_STATUSES
from payments.services.events import EventRecorder
from payments.services.masking import mask_utr
from payments.services.order_projector import OrderProjector
from payments.state_machines import EventSource, PaymentStatus, RefundStatus, normalize_refund_status

if TYPE_CHECKING:
    from typing import Any

    from payments.adapters.base import PaymentAdapter, RefundAttemptResult


_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_merchant_refund_id() -> str:
    """``RFD_{epoch_ms}_{9 random chars}``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"RFD_{int(time.time() * 1000)}_{suffix}"


@dataclass
class RefundOutcome:
    """Result of applying a refund status signal."""

    found: bool
    changed: bool = False
    refund: Refund | None = None
    previous_status: str | None = None
    status: str | None = None


def serialize_refund(refund: Refund) -> dict[str, Any]:
    return {
        "id": str(refund.id),
        "paymentId": str(refund.payment_id),
        "provider": refund.provider,
        "merchantRefundId": refund.merchant_refund_id,
        "providerRefundId": refund.provider_refund_id,
        "status": refund.status,
        "amountMinor": refund.amount_minor,
        "amount": format_minor_units(refund.amount_minor),
        "currency": refund.currency,
        "utr": refund.upi_utr or None,
        "reason": refund.reason or None,
        "failureMessage": refund.failure_message or None,
        "createdAt": refund.created_at.isoformat() if refund.created_at else None,
        "updatedAt": refund.updated_at.isoformat() if refund.updated_at else None,
    }


class RefundService(BaseService):
    """
    Creates refunds and applies refund status updates.

    Args:
        events: Event recorder for the audit trail
        projector: Recomputes refunded totals on the Payment and Order
    """

    def __init__(
        self,
        events: EventRecorder | None = None,
        projector: OrderProjector | None = None,
    ):
        self.events = events or EventRecorder()
        self.projector = projector or OrderProjector()

    # ==========================================================================
    # Queries
    # ==========================================================================

    @staticmethod
    def reserved_amount(payment: Payment) -> int:
        """Sum of refunds that count against the captured amount."""
        return (
            payment.refunds.exclude(
                status__in=[RefundStatus.FAILED, RefundStatus.CANCELLED]
            ).aggregate(total=Sum("amount_minor"))["total"]
            or 0
        )

    def refundable_amount(self, payment: Payment) -> int:
        return max(payment.amount_captured_minor - self.reserved_amount(payment), 0)

    @staticmethod
    def list_for_payment(payment: Payment) -> list[Refund]:
        return list(payment.refunds.order_by("-created_at"))

    @staticmethod
    def get_refund(refund_ref: Any, tenant_id: str) -> Refund | None:
        lookup = Q(merchant_refund_id=str(refund_ref)) | Q(provider_refund_id=str(refund_ref))
        refund_uuid = parse_uuid(str(refund_ref))
        if refund_uuid is not None:
            lookup |= Q(id=refund_uuid)
        return Refund.objects.filter(lookup, tenant_id=tenant_id).select_related("payment").first()

    # ==========================================================================
    # Creation
    # ==========================================================================

    def create_refund(
        self,
        payment: Payment,
        adapter: PaymentAdapter,
        tenant_id: str,
        idempotency_key: str,
        amount_minor: int | None = None,
        merchant_refund_id: str | None = None,
        reason: str = "",
    ) -> Refund:
        """
        Reserve, request and record a refund.

        An existing refund with the same ``merchant_refund_id`` is returned
        unchanged. Without ``amount_minor`` the full remaining refundable
        amount is refunded.

        Raises:
            RefundError: MISSING_PROVIDER_PAYMENT_ID, NO_CAPTURED_AMOUNT,
                INVALID_REFUND_AMOUNT or REFUND_EXCEEDS_CAPTURED_AMOUNT
            ProviderError: The gateway call failed (the refund is marked failed)
        """
        logger = self.get_logger()

        with transaction.atomic():
            payment = Payment.objects.select_for_update().get(pk=payment.pk)

            if merchant_refund_id:
                existing = payment.refunds.filter(merchant_refund_id=merchant_refund_id).first()
                if existing is not None:
                    logger.info(
                        "Refund already exists for merchant refund id",
                        extra={"refund_id": str(existing.id), "payment_id": str(payment.id)},
                    )
                    return existing

            if not payment.provider_payment_id:
                raise RefundError(
                    "Payment has no provider payment id to refund against",
                    error_code="MISSING_PROVIDER_PAYMENT_ID",
                    details={"payment_id": str(payment.id)},
                )
            if payment.status != PaymentStatus.CAPTURED or payment.amount_captured_minor <= 0:
                raise RefundError(
                    "Payment has no captured amount to refund",
                    error_code="NO_CAPTURED_AMOUNT",
                    details={"payment_id": str(payment.id), "status": payment.status},
                )

            reserved = self.reserved_amount(payment)
            if amount_minor is None:
                amount_minor = payment.amount_captured_minor - reserved
            if amount_minor <= 0:
                raise RefundError(
                    "Refund amount must be positive",
                    error_code="INVALID_REFUND_AMOUNT",
                    details={"payment_id": str(payment.id), "amount_minor": amount_minor},
                )
            exceeded = reserved + amount_minor > payment.amount_captured_minor
            if not exceeded:
                refund = Refund.objects.create(
                    tenant_id=tenant_id,
                    payment=payment,
                    provider=payment.provider,
                    merchant_refund_id=merchant_refund_id or generate_merchant_refund_id(),
                    amount_minor=amount_minor,
                    currency=payment.currency,
                    reason=reason or "",
                )

        if exceeded:
            details = {
                "payment_id": str(payment.id),
                "requested_minor": amount_minor,
                "already_refunded_minor": reserved,
                "captured_minor": payment.amount_captured_minor,
            }
            self.events.audit(
                "refund_attempt_failed",
                tenant_id=tenant_id,
                payment=payment,
                source=EventSource.API,
                payload={"reason": "REFUND_EXCEEDS_CAPTURED_AMOUNT", **details},
            )
            raise RefundError(
                "Refund amount exceeds the remaining captured amount",
                error_code="REFUND_EXCEEDS_CAPTURED_AMOUNT",
                details=details,
            )

        try:
            result = adapter.create_refund(
                CreateRefundParams(
                    provider_payment_id=payment.provider_payment_id,
                    provider_order_id=payment.provider_order_id,
                    merchant_refund_id=refund.merchant_refund_id,
                    amount_minor=amount_minor,
                    currency=payment.currency,
                    idempotency_key=idempotency_key,
                    reason=reason or "",
                )
            )
        except ProviderError as e:
            self._fail_refund(refund, e.message)
            self.events.audit(
                "refund_attempt_failed",
                tenant_id=tenant_id,
                payment=payment,
                source=EventSource.API,
                payload={"refundId": str(refund.id), "errorCode": e.error_code},
            )
            raise

        refund = self._record_result(refund, result)
        self.events.audit(
            "refund_created",
            tenant_id=tenant_id,
            payment=payment,
            source=EventSource.API,
            status=refund.status,
            payload={
                "refundId": str(refund.id),
                "merchantRefundId": refund.merchant_refund_id,
                "amountMinor": refund.amount_minor,
            },
        )
        self.projector.recompute_refunds(payment)
        logger.info(
            "Refund created",
            extra={
                "refund_id": str(refund.id),
                "payment_id": str(payment.id),
                "amount_minor": amount_minor,
                "status": refund.status,
            },
        )
        return refund

    # ==========================================================================
    # Status updates
    # ==========================================================================

    def apply_refund_status(
        self,
        refund_ref: Any,
        incoming_status: Any,
        data: dict[str, Any] | None,
        tenant_id: str,
        source: str = EventSource.SYSTEM,
    ) -> RefundOutcome:
        """
        Move a refund to ``incoming_status`` when its FSM allows it.

        Terminal refunds and unknown statuses are left untouched. A refund
        that becomes SUCCEEDED triggers a refunded-total recompute.
        """
        data = data or {}
        target = normalize_refund_status(incoming_status)

        with transaction.atomic():
            refund = self._lock_refund(refund_ref, tenant_id)
            if refund is None:
                return RefundOutcome(found=False)
            previous = refund.status
            outcome = RefundOutcome(found=True, refund=refund, previous_status=previous, status=previous)
            if refund.is_terminal or target is None or target == previous:
                return outcome

            method = {
                RefundStatus.PROCESSING.value: refund.process,
                RefundStatus.SUCCEEDED.value: refund.succeed,
                RefundStatus.FAILED.value: refund.fail,
                RefundStatus.CANCELLED.value: refund.cancel,
            }.get(target)
            if method is None or not can_proceed(method):
                return outcome

            utr = mask_utr(data.get("utr") or data.get("upiUtr"))
            if utr:
                refund.upi_utr = utr
            provider_refund_id = data.get("refundId") or data.get("providerRefundId")
            if provider_refund_id and not refund.provider_refund_id:
                refund.provider_refund_id = str(provider_refund_id)

            if target == RefundStatus.FAILED:
                method(data.get("message"))
            else:
                method()
            refund.save()

            outcome.changed = True
            outcome.status = refund.status
            self.events.audit(
                "refund_status_changed",
                tenant_id=tenant_id,
                payment=refund.payment,
                source=source,
                status=refund.status,
                payload={"refundId": str(refund.id), "from": previous, "to": refund.status},
            )

        if refund.status == RefundStatus.SUCCEEDED:
            self.projector.recompute_refunds(refund.payment)
        return outcome

    def refresh_status(self, refund: Refund, adapter: PaymentAdapter, tenant_id: str) -> Refund:
        """Ask the gateway for the refund's status and apply it."""
        result = adapter.get_refund_status(refund.merchant_refund_id, refund.provider_refund_id)
        self.apply_refund_status(
            refund.merchant_refund_id,
            result.status,
            {
                "utr": result.upi_utr,
                "refundId": result.provider_refund_id,
                "message": result.failure_message,
            },
            tenant_id,
            source=EventSource.API,
        )
        return Refund.objects.get(pk=refund.pk)

    # ==========================================================================
    # Internals
    # ==========================================================================

    @staticmethod
    def _lock_refund(refund_ref: Any, tenant_id: str) -> Refund | None:
        ref = str(refund_ref or "").strip()
        if not ref:
            return None
        lookup = Q(merchant_refund_id=ref) | Q(provider_refund_id=ref)
        refund_uuid = parse_uuid(ref)
        if refund_uuid is not None:
            lookup |= Q(id=refund_uuid)
        return (
            Refund.objects.select_for_update()
            .select_related("payment")
            .filter(lookup, tenant_id=tenant_id)
            .first()
        )

    def _record_result(self, refund: Refund, result: RefundAttemptResult) -> Refund:
        with transaction.atomic():
            refund = Refund.objects.select_for_update().get(pk=refund.pk)
            if result.provider_refund_id:
                refund.provider_refund_id = result.provider_refund_id
            if result.upi_utr:
                refund.upi_utr = result.upi_utr
            refund.metadata = {**(refund.metadata or {}), "provider": result.raw_response}

            if result.status == RefundStatus.PROCESSING and can_proceed(refund.process):
                refund.process()
            elif result.status == RefundStatus.SUCCEEDED and can_proceed(refund.succeed):
                refund.succeed()
            elif result.status == RefundStatus.FAILED and can_proceed(refund.fail):
                refund.fail(result.failure_message)
            elif result.status == RefundStatus.CANCELLED and can_proceed(refund.cancel):
                refund.cancel()
            refund.save()
        return refund

    def _fail_refund(self, refund: Refund, message: str) -> None:
        with transaction.atomic():
            refund = Refund.objects.select_for_update().get(pk=refund.pk)
            if refund.status in OPEN_REFUND_STATUSES:
                refund.fail(message)
                refund.save()
        self.get_logger().warning(
            "Refund failed at the gateway",
            extra={"refund_id": str(refund.id), "error": message},
        )
