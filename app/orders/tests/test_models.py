"""
Tests for the Order model.

Tests cover:
- Status and payment status transition tables
- Projector operations (paid, failed, processing, refund totals)
- Derived tax
"""

import pytest
from django.utils import timezone

from orders.exceptions import OrderTransitionError
from orders.models import Order, OrderPaymentMethod, OrderPaymentStatus, OrderStatus
from orders.tests.factories import OrderFactory


def build_order(**kwargs) -> Order:
    defaults = {"amount_minor": 1000, "currency": "INR"}
    return Order(**{**defaults, **kwargs})


# =============================================================================
# Transition tables
# =============================================================================


class TestTransitionTables:
    """Tests for transition_status() and transition_payment_status()."""

    def test_pending_order_can_be_confirmed(self):
        order = build_order()

        order.transition_status(OrderStatus.CONFIRMED)

        assert order.status == OrderStatus.CONFIRMED

    def test_refunded_order_cannot_go_back(self):
        """Should raise for changes the table does not list."""
        order = build_order(status=OrderStatus.REFUNDED)

        with pytest.raises(OrderTransitionError) as exc_info:
            order.transition_status(OrderStatus.CONFIRMED)

        assert exc_info.value.details["current"] == OrderStatus.REFUNDED

    def test_paid_is_never_regressed(self):
        order = build_order(payment_status=OrderPaymentStatus.PAID)

        assert not order.can_transition_payment_status(OrderPaymentStatus.FAILED)
        assert not order.can_transition_payment_status(OrderPaymentStatus.PROCESSING)


# =============================================================================
# Projector operations
# =============================================================================


class TestMarkPaid:
    """Tests for mark_paid()."""

    def test_confirms_pending_order(self):
        order = build_order(payment_failed_at=timezone.now())

        assert order.mark_paid() is True

        assert order.payment_status == OrderPaymentStatus.PAID
        assert order.status == OrderStatus.CONFIRMED
        assert order.payment_failed_at is None

    def test_second_call_is_a_noop(self):
        order = build_order()
        order.mark_paid()

        assert order.mark_paid() is False


class TestMarkPaymentFailed:
    """Tests for mark_payment_failed()."""

    def test_records_failure_time(self):
        failed_at = timezone.now()
        order = build_order()

        assert order.mark_payment_failed(failed_at) is True

        assert order.payment_status == OrderPaymentStatus.FAILED
        assert order.payment_failed_at == failed_at
        assert order.status == OrderStatus.PENDING

    def test_paid_order_is_untouched(self):
        """Should never let a late failure override a capture."""
        order = build_order()
        order.mark_paid()

        assert order.mark_payment_failed() is False
        assert order.payment_status == OrderPaymentStatus.PAID

    def test_repeated_failure_refreshes_timestamp(self):
        order = build_order(payment_status=OrderPaymentStatus.FAILED)
        failed_at = timezone.now()

        assert order.mark_payment_failed(failed_at) is True
        assert order.payment_failed_at == failed_at


class TestMarkPaymentProcessing:
    def test_failed_order_can_retry(self):
        order = build_order(
            payment_status=OrderPaymentStatus.FAILED, payment_failed_at=timezone.now()
        )

        assert order.mark_payment_processing() is True
        assert order.payment_status == OrderPaymentStatus.PROCESSING
        assert order.payment_failed_at is None

    def test_processing_is_a_noop(self):
        order = build_order(payment_status=OrderPaymentStatus.PROCESSING)

        assert order.mark_payment_processing() is False


class TestApplyRefundTotals:
    """Tests for apply_refund_totals()."""

    def test_partial_refund(self):
        order = build_order(status=OrderStatus.CONFIRMED)

        assert order.apply_refund_totals(1000, 300) is True
        assert order.status == OrderStatus.PARTIALLY_REFUNDED

    def test_full_refund(self):
        order = build_order(status=OrderStatus.PARTIALLY_REFUNDED)

        assert order.apply_refund_totals(1000, 1000) is True
        assert order.status == OrderStatus.REFUNDED

    def test_nothing_refunded(self):
        order = build_order(status=OrderStatus.CONFIRMED)

        assert order.apply_refund_totals(1000, 0) is False
        assert order.status == OrderStatus.CONFIRMED

    def test_pending_order_is_not_refunded(self):
        """Should ignore totals the transition table does not allow."""
        order = build_order()

        assert order.apply_refund_totals(1000, 1000) is False
        assert order.status == OrderStatus.PENDING


# =============================================================================
# Derived values
# =============================================================================


class TestEffectiveTax:
    def test_stored_tax_wins(self):
        assert build_order(tax_minor=180).effective_tax_minor == 180

    def test_derived_from_breakdown(self):
        order = build_order(
            subtotal_minor=1000, discount_minor=100, shipping_minor=50, total_minor=1112
        )

        assert order.effective_tax_minor == 162

    def test_never_negative(self):
        order = build_order(subtotal_minor=1000, total_minor=500)

        assert order.effective_tax_minor == 0


@pytest.mark.django_db
class TestOrderPersistence:
    def test_factory_defaults(self):
        order = OrderFactory()

        assert order.tenant_id == "default"
        assert order.payment_method == OrderPaymentMethod.UPI
        assert order.uses_upi is True
        assert str(order.amount_minor / 100) in str(order)
