"""
Order status projection from payment attempts.

Pure helpers decide which attempt is the "latest" and what payment status
an order's attempts add up to; ``OrderProjector`` renders the read model
served by the order-info endpoint and re-applies refund totals after a
refund succeeds.

Usage:
    from payments.services.order_projector import OrderProjector, select_latest_payment

    latest = select_latest_payment(order.payments.all())
    info = OrderProjector().get_order_info(order_id, tenant_id="default")
    info["derivedPaymentStatus"]  # "paid"
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import transaction
from django.db.models import Sum

from core.helpers import format_minor_units, parse_uuid
from core.services import BaseService

from orders.exceptions import OrderNotFoundError
from orders.models import Order
from payments.models import Payment, PollingJob
from payments.services.masking import instrument_label
from payments.state_machines import MethodKind, PaymentStatus, RefundStatus

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any


# =============================================================================
# Pure projections
# =============================================================================


def _activity_key(payment) -> tuple:
    return (payment.updated_at or payment.created_at, payment.created_at)


def select_latest_payment(payments: Iterable[Any]):
    """
    Most recent attempt: newest ``updated_at``, falling back to ``created_at``.

    Returns None for an empty collection.
    """
    candidates = [payment for payment in payments if payment is not None]
    if not candidates:
        return None
    return max(candidates, key=_activity_key)


def derive_order_payment_status(payments: Iterable[Any]) -> str:
    """
    Summarise attempts into one order-level payment status.

    Precedence: refunded > partially_refunded > paid > failed > pending.
    """
    payments = list(payments)
    captured = [p for p in payments if p.status == PaymentStatus.CAPTURED]

    if any(0 < p.amount_captured_minor <= p.amount_refunded_minor for p in captured):
        return "refunded"
    if any(0 < p.amount_refunded_minor < p.amount_captured_minor for p in captured):
        return "partially_refunded"
    if captured:
        return "paid"
    if any(p.status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED) for p in payments):
        return "failed"
    return "pending"


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _money(amount_minor: int | None) -> dict[str, Any]:
    return {"minor": amount_minor or 0, "display": format_minor_units(amount_minor)}


def serialize_payment(payment: Payment) -> dict[str, Any]:
    """Status view of one attempt; UPI fields are stored masked already."""
    return {
        "id": str(payment.id),
        "orderId": str(payment.order_id),
        "provider": payment.provider,
        "environment": payment.environment,
        "status": payment.status,
        "methodKind": payment.method_kind,
        "currency": payment.currency,
        "amountMinor": payment.amount_authorized_minor,
        "amount": format_minor_units(payment.amount_authorized_minor),
        "amountCapturedMinor": payment.amount_captured_minor,
        "amountRefundedMinor": payment.amount_refunded_minor,
        "providerPaymentId": payment.provider_payment_id,
        "providerTransactionId": payment.provider_transaction_id,
        "upi": {
            "payerHandle": payment.upi_payer_handle or None,
            "utr": payment.upi_utr or None,
            "instrumentVariant": payment.upi_instrument_variant or None,
            "instrumentLabel": instrument_label(payment.upi_instrument_variant),
        },
        "receiptUrl": payment.receipt_url or None,
        "failureCode": payment.failure_code or None,
        "failureMessage": payment.failure_message or None,
        "expiresAt": _iso(payment.expires_at),
        "capturedAt": _iso(payment.captured_at),
        "failedAt": _iso(payment.failed_at or payment.cancelled_at),
        "createdAt": _iso(payment.created_at),
        "updatedAt": _iso(payment.updated_at),
    }


def serialize_polling_job(job: PollingJob | None) -> dict[str, Any] | None:
    if job is None:
        return None
    return {
        "id": str(job.id),
        "paymentId": str(job.payment_id),
        "merchantTransactionId": job.merchant_transaction_id,
        "status": job.status,
        "attempt": job.attempt,
        "nextPollAt": _iso(job.next_poll_at),
        "expireAt": _iso(job.expire_at),
        "lastPolledAt": _iso(job.last_polled_at),
        "lastStatus": job.last_status or None,
        "lastResponseCode": job.last_response_code or None,
        "lastError": job.last_error or None,
    }


# =============================================================================
# Projector
# =============================================================================


class OrderProjector(BaseService):
    """Read model for orders and refund-total projection."""

    def get_order_info(self, order_id: Any, tenant_id: str) -> dict[str, Any]:
        """
        Order with its attempts, totals, breakdown and reconciliation state.

        Read-only: nothing is written, whatever the attempts say.

        Raises:
            OrderNotFoundError: No such order for the tenant
        """
        order = self._get_order(order_id, tenant_id)
        payments = list(order.payments.all().latest_first())

        upi_payments = [p for p in payments if p.method_kind == MethodKind.UPI]
        latest = select_latest_payment(upi_payments) or select_latest_payment(payments)
        latest_failed = latest is not None and latest.status in (
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
        )

        paid_minor = sum(p.amount_captured_minor for p in payments if p.is_captured)
        refunded_minor = sum(p.amount_refunded_minor for p in payments if p.is_captured)
        job = order.polling_jobs.order_by("-created_at").first()

        return {
            "order": {
                "id": str(order.id),
                "status": order.status,
                "paymentStatus": order.payment_status,
                "paymentMethod": order.payment_method or None,
                "paymentFailedAt": _iso(order.payment_failed_at),
                "currency": order.currency,
                "amountMinor": order.amount_minor,
                "amount": format_minor_units(order.amount_minor),
                "customer": {
                    "name": order.customer_name or None,
                    "email": order.customer_email or None,
                    "phone": order.customer_phone or None,
                },
                "createdAt": _iso(order.created_at),
                "updatedAt": _iso(order.updated_at),
            },
            "payment": serialize_payment(latest) if latest else None,
            "transactions": [serialize_payment(p) for p in payments],
            "totals": {
                "paidMinor": paid_minor,
                "paid": format_minor_units(paid_minor),
                "refundedMinor": refunded_minor,
                "refunded": format_minor_units(refunded_minor),
            },
            "breakdown": {
                "subtotal": _money(order.subtotal_minor),
                "discount": _money(order.discount_minor),
                "shipping": _money(order.shipping_minor),
                "tax": _money(order.effective_tax_minor),
                "total": _money(order.total_minor or order.amount_minor),
            },
            "reconciliation": {"job": serialize_polling_job(job)},
            "latestTransactionFailed": latest_failed,
            "latestTransactionFailureAt": (
                _iso(latest.failed_at or latest.cancelled_at) if latest_failed else None
            ),
            "derivedPaymentStatus": derive_order_payment_status(payments),
        }

    def recompute_refunds(self, payment: Payment) -> int:
        """
        Recompute ``amount_refunded_minor`` from succeeded refunds and
        reflect the order-wide totals on the Order.

        Returns:
            The payment's refunded total in minor units
        """
        with transaction.atomic():
            payment = Payment.objects.select_for_update().get(pk=payment.pk)
            refunded = (
                payment.refunds.filter(status=RefundStatus.SUCCEEDED).aggregate(
                    total=Sum("amount_minor")
                )["total"]
                or 0
            )
            if refunded != payment.amount_refunded_minor:
                payment.amount_refunded_minor = refunded
                payment.save()

            order = Order.objects.select_for_update().get(pk=payment.order_id)
            totals = Payment.objects.filter(
                order_id=order.pk, status=PaymentStatus.CAPTURED
            ).aggregate(
                captured=Sum("amount_captured_minor"),
                refunded=Sum("amount_refunded_minor"),
            )
            if order.apply_refund_totals(totals["captured"] or 0, totals["refunded"] or 0):
                order.save()

        self.get_logger().info(
            "Refund totals recomputed",
            extra={
                "payment_id": str(payment.id),
                "order_id": str(payment.order_id),
                "refunded_minor": refunded,
                "order_status": order.status,
            },
        )
        return refunded

    @staticmethod
    def _get_order(order_id: Any, tenant_id: str) -> Order:
        order_uuid = parse_uuid(str(order_id))
        order = (
            Order.objects.filter(pk=order_uuid, tenant_id=tenant_id).first()
            if order_uuid
            else None
        )
        if order is None:
            raise OrderNotFoundError(
                "Order not found",
                details={"order_id": str(order_id)},
            )
        return order
