"""
Pytest fixtures shared by every payments test package.

Fixtures provide orders and payment attempts in the states the services
care about, plus a gateway adapter double whose answers each test sets.

Usage:
    def test_capture(payment, transitions):
        outcome = transitions.apply(payment.provider_transaction_id, "captured", {}, "default", True)
        assert outcome.changed
"""

from unittest.mock import MagicMock

import pytest

from orders.tests.factories import OrderFactory
from payments.adapters.base import (
    HealthCheckResult,
    PaymentAdapter,
    PaymentAttemptResult,
    PaymentStatusResult,
    RefundAttemptResult,
)
from payments.services.events import EventRecorder
from payments.services.status_transition import PaymentStatusTransitionService
from payments.state_machines import PaymentStatus, RefundStatus
from payments.tests.factories import PaymentFactory


# =============================================================================
# Order and Payment Fixtures
# =============================================================================


@pytest.fixture
def order(db):
    """Pending 10.00 INR UPI order."""
    return OrderFactory()


@pytest.fixture
def payment(db, order):
    """PhonePe attempt in CREATED state."""
    return PaymentFactory(order=order)


@pytest.fixture
def captured_payment(db, order):
    """Captured PhonePe attempt; the order is marked paid as the projector would."""
    payment = PaymentFactory(order=order, captured=True)
    order.mark_paid()
    order.save()
    return payment


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def events():
    return EventRecorder()


@pytest.fixture
def transitions(events):
    return PaymentStatusTransitionService(events=events)


# =============================================================================
# Adapter Double
# =============================================================================


@pytest.fixture
def fake_adapter():
    """
    MagicMock standing in for a PhonePe adapter.

    Defaults describe a successful UPI attempt with a token URL; tests
    override ``return_value`` or ``side_effect`` as needed.
    """
    adapter = MagicMock(spec=PaymentAdapter)
    adapter.provider = "phonepe"
    adapter.create_payment.return_value = PaymentAttemptResult(
        provider="phonepe",
        provider_payment_id="TXN_1700000000000_abcdefghi",
        provider_transaction_id="TXN_1700000000000_abcdefghi",
        provider_order_id="OMO2401011234",
        status=PaymentStatus.CREATED,
        amount_minor=1000,
        currency="INR",
        redirect_url="https://mercury-uat.phonepe.com/transact/pg?token=abc",
        expire_after_seconds=900,
    )
    adapter.get_status.return_value = PaymentStatusResult(
        provider_payment_id="TXN_1700000000000_abcdefghi",
        status=PaymentStatus.PROCESSING,
        response_code="PAYMENT_PENDING",
    )
    adapter.create_refund.return_value = RefundAttemptResult(
        merchant_refund_id="RFD_1",
        status=RefundStatus.PROCESSING,
        provider_refund_id="OMR2401011234",
    )
    adapter.get_refund_status.return_value = RefundAttemptResult(
        merchant_refund_id="RFD_1",
        status=RefundStatus.SUCCEEDED,
        provider_refund_id="OMR2401011234",
        upi_utr="******4567",
    )
    adapter.health_check.return_value = HealthCheckResult(
        provider="phonepe", healthy=True, response_time_ms=12
    )
    return adapter


@pytest.fixture
def fake_factory(fake_adapter):
    """Adapter factory handing out ``fake_adapter`` for every supported provider."""
    factory = MagicMock()
    factory.supports.side_effect = lambda provider: provider in ("phonepe", "stripe")
    factory.create.return_value = fake_adapter
    return factory
