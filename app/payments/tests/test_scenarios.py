"""
End-to-end payment journeys.

Each scenario drives the real facade, PhonePe adapter, webhook router and
status poller; only the HTTP call to the gateway is mocked.

Scenarios:
- Create -> webhook capture -> partial refund -> refund webhook
- Create -> buyer return -> status poll capture
- Create -> polling window expires -> retry with a fresh attempt
- Pending poll -> verified webhook -> duplicate delivery
- Refunded total counts succeeded refunds only
- A late capture of an expired attempt after the retry was paid
"""

import json
from unittest.mock import MagicMock, patch

import pytest
from freezegun import freeze_time

from orders.models import Order, OrderPaymentStatus, OrderStatus
from payments.models import Payment, PaymentEvent, PollingJob, Refund
from payments.services.payments_service import build_payments_service
from payments.state_machines import PaymentStatus, PollingJobStatus, RefundStatus
from payments.tests.factories import RefundFactory
from payments.webhooks.router import WebhookRouter
from payments.workers.status_poller import poll_payment_status

TOKEN_URL = "https://mercury-uat.phonepe.com/transact/pg?token=abc"


def gateway_response(body, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.content = json.dumps(body).encode()
    response.text = json.dumps(body)
    response.json.return_value = body
    return response


PAY_INITIATED = gateway_response(
    {
        "success": True,
        "code": "PAYMENT_INITIATED",
        "data": {
            "merchantId": "PGTESTPAYUAT",
            "transactionId": "OMO2401011234",
            "instrumentResponse": {
                "type": "PAY_PAGE",
                "redirectInfo": {"url": TOKEN_URL, "method": "GET"},
            },
        },
    }
)


def payment_completed(merchant_transaction_id):
    return gateway_response(
        {
            "success": True,
            "code": "PAYMENT_SUCCESS",
            "data": {
                "merchantId": "PGTESTPAYUAT",
                "merchantTransactionId": merchant_transaction_id,
                "transactionId": "T2401011234",
                "amount": 1000,
                "state": "COMPLETED",
                "paymentInstrument": {"type": "UPI_COLLECT", "utr": "UTR1234567"},
            },
        }
    )


@pytest.fixture
def gateway():
    with patch("payments.adapters.phonepe_adapter.requests.request") as mock:
        mock.return_value = PAY_INITIATED
        yield mock


@pytest.fixture
def service(phonepe_config):
    return build_payments_service()


def create_attempt(service, order, key="payment_1"):
    response = service.create_payment({"order_id": str(order.id)}, "default", idempotency_key=key)
    return Payment.objects.get(pk=response["data"]["paymentId"])


@pytest.mark.django_db
class TestWebhookCaptureAndRefund:
    def test_full_journey(self, service, gateway, order, phonepe_webhook_headers):
        payment = create_attempt(service, order)
        assert payment.status == PaymentStatus.CREATED
        assert payment.provider_transaction_id.startswith("TXN_")

        body = json.dumps(
            {
                "type": "CHECKOUT_ORDER_COMPLETED",
                "payload": {
                    "merchantTransactionId": payment.provider_transaction_id,
                    "transactionId": "T2401011234",
                    "state": "COMPLETED",
                    "amount": 1000,
                },
            }
        )
        response = WebhookRouter().route("phonepe", "default", phonepe_webhook_headers(body), body)

        assert response.payload["paymentUpdated"] is True
        payment = Payment.objects.get(pk=payment.pk)
        assert payment.status == PaymentStatus.CAPTURED
        assert payment.amount_captured_minor == 1000
        order = Order.objects.get(pk=order.pk)
        assert order.payment_status == OrderPaymentStatus.PAID
        assert order.status == OrderStatus.CONFIRMED

        gateway.return_value = gateway_response(
            {
                "success": True,
                "code": "PAYMENT_PENDING",
                "data": {"transactionId": "OMR2401011234", "amount": 300, "state": "PENDING"},
            }
        )
        created = service.create_refund(
            {"payment_id": str(payment.id), "amount": "3.00", "reason": "damaged"},
            "default",
            idempotency_key="refund_1",
        )
        refund = Refund.objects.get(pk=created["data"]["id"])
        assert refund.status != RefundStatus.SUCCEEDED
        assert Payment.objects.get(pk=payment.pk).amount_refunded_minor == 0

        refund_body = json.dumps(
            {
                "type": "PG_REFUND_COMPLETED",
                "payload": {
                    "merchantRefundId": refund.merchant_refund_id,
                    "transactionId": "OMR2401011234",
                    "state": "COMPLETED",
                },
            }
        )
        response = WebhookRouter().route(
            "phonepe", "default", phonepe_webhook_headers(refund_body), refund_body
        )

        assert response.payload["refundUpdated"] is True
        assert Refund.objects.get(pk=refund.pk).status == RefundStatus.SUCCEEDED
        assert Payment.objects.get(pk=payment.pk).amount_refunded_minor == 300
        assert Order.objects.get(pk=order.pk).status == OrderStatus.PARTIALLY_REFUNDED
        assert service.get_order_info(order.id, "default")["derivedPaymentStatus"] == (
            "partially_refunded"
        )


@pytest.mark.django_db
class TestPollCapture:
    def test_return_then_poll(self, service, gateway, order):
        with freeze_time("2026-01-01 10:00:00"):
            payment = create_attempt(service, order)
            service.record_return({"orderId": str(order.id), "state": "COMPLETED"}, "default")

        assert Payment.objects.get(pk=payment.pk).status == PaymentStatus.CREATED
        job = PollingJob.objects.get(payment=payment)

        gateway.return_value = payment_completed(payment.provider_transaction_id)
        with freeze_time("2026-01-01 10:00:20"):
            result = poll_payment_status(str(job.id))

        assert result["status"] == "completed"
        assert PollingJob.objects.get(pk=job.pk).status == PollingJobStatus.COMPLETED
        payment = Payment.objects.get(pk=payment.pk)
        assert payment.status == PaymentStatus.CAPTURED
        assert payment.upi_utr == "******4567"
        assert Order.objects.get(pk=order.pk).payment_status == OrderPaymentStatus.PAID
        assert PaymentEvent.objects.filter(payment=payment, source="poll").exists()

    def test_pending_poll_is_rescheduled(self, service, gateway, order):
        with freeze_time("2026-01-01 10:00:00"):
            payment = create_attempt(service, order)
        job = PollingJob.objects.get(payment=payment)
        before = Order.objects.get(pk=order.pk)

        gateway.return_value = gateway_response({"success": False, "code": "PAYMENT_PENDING"})
        with freeze_time("2026-01-01 10:00:20"):
            result = poll_payment_status(str(job.id))

        assert result["status"] == "rescheduled"
        assert Payment.objects.get(pk=payment.pk).status == PaymentStatus.PROCESSING
        job = PollingJob.objects.get(pk=job.pk)
        assert job.attempt == 1
        assert job.status == PollingJobStatus.PENDING
        after = Order.objects.get(pk=order.pk)
        assert (after.status, after.payment_status) == (before.status, before.payment_status)
        assert after.payment_status == OrderPaymentStatus.PENDING


@pytest.mark.django_db
class TestExpiryAndRetry:
    def test_retry_after_polling_window(self, service, gateway, order):
        with freeze_time("2026-01-01 10:00:00"):
            first = create_attempt(service, order)
        job = PollingJob.objects.get(payment=first)

        with freeze_time("2026-01-01 11:00:00"):
            assert poll_payment_status(str(job.id))["status"] == "expired"
            response = service.retry_payment(order.id, "default")

        assert response["success"] is True
        assert Payment.objects.filter(order=order).count() == 2
        assert Payment.objects.get(pk=first.pk).status == PaymentStatus.CREATED
        assert PollingJob.objects.filter(status=PollingJobStatus.PENDING).count() == 1


@pytest.mark.django_db
class TestPollThenWebhook:
    def test_pending_poll_then_verified_webhook(
        self, service, gateway, order, phonepe_webhook_headers
    ):
        with freeze_time("2026-01-01 10:00:00"):
            payment = create_attempt(service, order)
        job = PollingJob.objects.get(payment=payment)

        gateway.return_value = gateway_response({"success": False, "code": "PAYMENT_PENDING"})
        with freeze_time("2026-01-01 10:00:20"):
            assert poll_payment_status(str(job.id))["status"] == "rescheduled"
        polled = PollingJob.objects.get(pk=job.pk)
        assert polled.status == PollingJobStatus.PENDING
        assert polled.attempt == 1
        pending_order = Order.objects.get(pk=order.pk)
        assert pending_order.status == OrderStatus.PENDING
        assert pending_order.payment_status == OrderPaymentStatus.PENDING

        body = json.dumps(
            {
                "payload": {
                    "merchantTransactionId": payment.provider_transaction_id,
                    "state": "COMPLETED",
                    "amount": 1000,
                }
            }
        )
        headers = phonepe_webhook_headers(body)
        first = WebhookRouter().route("phonepe", "default", headers, body)
        duplicate = WebhookRouter().route("phonepe", "default", headers, body)

        assert first.payload["status"] == "processed"
        assert duplicate.payload == {"status": "already_processed"}
        order = Order.objects.get(pk=order.pk)
        assert order.status == OrderStatus.CONFIRMED
        assert order.payment_status == OrderPaymentStatus.PAID
        assert (
            PaymentEvent.objects.filter(
                payment=payment, event_type="payment.status_changed", status=PaymentStatus.CAPTURED
            ).count()
            == 1
        )


@pytest.mark.django_db
class TestRefundRecomputation:
    def test_pending_refund_does_not_count(self, service, gateway, order, phonepe_webhook_headers):
        payment = create_attempt(service, order)
        body = json.dumps(
            {
                "payload": {
                    "merchantTransactionId": payment.provider_transaction_id,
                    "state": "COMPLETED",
                    "amount": 1000,
                }
            }
        )
        WebhookRouter().route("phonepe", "default", phonepe_webhook_headers(body), body)
        payment = Payment.objects.get(pk=payment.pk)
        RefundFactory(payment=payment, amount_minor=700, status=RefundStatus.SUCCEEDED)

        gateway.return_value = gateway_response(
            {
                "success": True,
                "code": "PAYMENT_PENDING",
                "data": {"transactionId": "OMR2401011234", "amount": 300, "state": "PENDING"},
            }
        )
        service.create_refund(
            {"payment_id": str(payment.id), "amount": "3.00"}, "default", idempotency_key="refund_1"
        )

        assert Payment.objects.get(pk=payment.pk).amount_refunded_minor == 700
        assert Order.objects.get(pk=order.pk).status == OrderStatus.PARTIALLY_REFUNDED


@pytest.mark.django_db
class TestLateCaptureOfExpiredAttempt:
    def test_second_upi_capture_is_acknowledged_and_refused(
        self, service, gateway, order, phonepe_webhook_headers
    ):
        with freeze_time("2026-01-01 10:00:00"):
            first = create_attempt(service, order)
        job = PollingJob.objects.get(payment=first)
        with freeze_time("2026-01-01 11:00:00"):
            poll_payment_status(str(job.id))
            retried = service.retry_payment(order.id, "default")
        second = Payment.objects.get(pk=retried["data"]["paymentId"])

        responses = []
        for payment in (second, first):
            body = json.dumps(
                {
                    "payload": {
                        "merchantTransactionId": payment.provider_transaction_id,
                        "state": "COMPLETED",
                        "amount": 1000,
                    }
                }
            )
            responses.append(
                WebhookRouter().route("phonepe", "default", phonepe_webhook_headers(body), body)
            )

        assert [r.status_code for r in responses] == [200, 200]
        assert responses[1].payload["paymentUpdated"] is False
        assert Payment.objects.get(pk=second.pk).status == PaymentStatus.CAPTURED
        assert Payment.objects.get(pk=first.pk).status == PaymentStatus.CREATED
        assert PaymentEvent.objects.filter(
            payment=first, event_type="payment.duplicate_capture"
        ).exists()
        assert Order.objects.get(pk=order.pk).payment_status == OrderPaymentStatus.PAID
