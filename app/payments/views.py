"""
DRF views for payments app.

This module provides API views for:
- Payment attempt creation (direct and PhonePe token URL)
- Status verification, cancellation and retry
- Refunds
- Provider discovery and idempotency key generation
- Admin: provider configuration, gateway health, ledger/inbox stats

Related files:
    - services/payments_service.py: PaymentsService
    - serializers.py: Request serializers
    - urls.py: URL routing
    - webhooks/views.py: Gateway webhook endpoint

Endpoints:
    POST /api/v1/payments/create/ - Create payment attempt
    POST /api/v1/payments/token-url/ - PhonePe hosted checkout URL
    GET  /api/v1/payments/status/{payment_id}/ - Verify payment status
    POST /api/v1/payments/verify/ - Verify payment status
    GET  /api/v1/payments/order-info/{order_id}/ - Order payment summary
    GET  /api/v1/payments/phonepe/return/ - Buyer returned from PhonePe
    POST /api/v1/payments/phonepe/retry/ - Retry a failed UPI payment
    POST /api/v1/payments/cancel/ - Cancel a payment attempt
    POST /api/v1/payments/refunds/ - Create refund
    GET  /api/v1/payments/refunds/{refund_id}/ - Refund status
    GET  /api/v1/payments/{payment_id}/refunds/ - Refunds of a payment
    GET  /api/v1/payments/providers/ - Enabled providers
    POST /api/v1/payments/idempotency-key/ - Generate an idempotency key

Security:
    - Buyer endpoints are open; the order/payment ids are unguessable UUIDs
    - Admin endpoints require a staff user
    - Tenant comes from the X-Tenant-Id header
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from payments.services.idempotency import IdempotencyLedger
from payments.services.payments_service import build_payments_service
from payments.tenancy import TENANT_HEADER, tenant_id_from_request
from payments.webhooks.router import WebhookRouter

from .serializers import (
    CancelPaymentSerializer,
    CreatePaymentSerializer,
    CreateRefundSerializer,
    GenerateKeySerializer,
    ProviderConfigSerializer,
    ProviderConfigUpdateSerializer,
    RetryPaymentSerializer,
    TokenUrlSerializer,
    VerifyPaymentSerializer,
)

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"

TENANT_PARAMETER = OpenApiParameter(
    name=TENANT_HEADER,
    type=str,
    location=OpenApiParameter.HEADER,
    description="Tenant identifier (defaults to the configured tenant)",
    required=False,
)

IDEMPOTENCY_PARAMETER = OpenApiParameter(
    name=IDEMPOTENCY_HEADER,
    type=str,
    location=OpenApiParameter.HEADER,
    description="Client-generated key; repeated requests return the stored response",
    required=True,
)


class PaymentsAPIView(APIView):
    """Base view for buyer-facing payment endpoints."""

    permission_classes = [AllowAny]

    def get_service(self):
        return build_payments_service()

    def get_tenant_id(self) -> str:
        return tenant_id_from_request(self.request)


# =============================================================================
# Payment attempts
# =============================================================================


class CreatePaymentView(PaymentsAPIView):
    """
    Create a payment attempt for an order.

    POST /api/v1/payments/create/

    Request body:
        {"orderId": "...", "provider": "phonepe", "amount": "10.00"}

    Returns:
        201 with {"success": true, "data": {...attempt}}
    """

    @extend_schema(
        operation_id="create_payment",
        summary="Create payment",
        description=(
            "Create a payment attempt with the preferred (or first enabled) provider. "
            "Requires an Idempotency-Key header; retries with the same key and body "
            "return the stored response."
        ),
        parameters=[TENANT_PARAMETER, IDEMPOTENCY_PARAMETER],
        request=CreatePaymentSerializer,
        responses={
            201: OpenApiResponse(description="Attempt created"),
            400: OpenApiResponse(description="Invalid request or missing Idempotency-Key"),
            409: OpenApiResponse(description="Key reused with a different body, or order paid"),
            502: OpenApiResponse(description="Provider unavailable"),
        },
        tags=["Payments"],
    )
    def post(self, request):
        serializer = CreatePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.get_service().create_payment(
            dict(serializer.validated_data),
            self.get_tenant_id(),
            idempotency_key=request.headers.get(IDEMPOTENCY_HEADER),
        )
        return Response(result, status=status.HTTP_201_CREATED)


class TokenUrlView(PaymentsAPIView):
    """
    PhonePe hosted checkout URL for an order.

    POST /api/v1/payments/token-url/
    """

    @extend_schema(
        operation_id="create_phonepe_token_url",
        summary="Get PhonePe token URL",
        description=(
            "Return the PhonePe checkout URL for the order, reusing the current "
            "attempt while it is valid and creating a fresh one after expiry."
        ),
        parameters=[TENANT_PARAMETER],
        request=TokenUrlSerializer,
        responses={
            200: OpenApiResponse(description="Token URL"),
            403: OpenApiResponse(description="Amount or currency does not match the order"),
        },
        tags=["Payments - PhonePe"],
    )
    def post(self, request):
        serializer = TokenUrlSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.get_service().start_token_url_flow(
            dict(serializer.validated_data), self.get_tenant_id()
        )
        return Response(result)


class PaymentStatusView(PaymentsAPIView):
    """
    Authoritative payment status from the gateway.

    GET /api/v1/payments/status/{payment_id}/
    POST /api/v1/payments/verify/ with {"paymentId": "..."}
    """

    @extend_schema(
        operation_id="get_payment_status",
        summary="Get payment status",
        description="Query the gateway for the attempt and apply the answer.",
        parameters=[TENANT_PARAMETER],
        responses={
            200: OpenApiResponse(description="Payment status"),
            404: OpenApiResponse(description="Payment not found"),
        },
        tags=["Payments"],
    )
    def get(self, request, payment_id):
        view = self.get_service().verify_payment(payment_id, self.get_tenant_id())
        return Response({"success": True, "data": view})

    @extend_schema(
        operation_id="verify_payment",
        summary="Verify payment",
        description="Same as the status query, with the payment id in the body.",
        parameters=[TENANT_PARAMETER],
        request=VerifyPaymentSerializer,
        responses={
            200: OpenApiResponse(description="Payment status"),
            404: OpenApiResponse(description="Payment not found"),
        },
        tags=["Payments"],
    )
    def post(self, request, payment_id=None):
        serializer = VerifyPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        view = self.get_service().verify_payment(
            serializer.validated_data["payment_id"], self.get_tenant_id()
        )
        return Response({"success": True, "data": view})


class OrderInfoView(PaymentsAPIView):
    """GET /api/v1/payments/order-info/{order_id}/"""

    @extend_schema(
        operation_id="get_order_payment_info",
        summary="Get order payment info",
        description=(
            "Order summary with the latest payment, all transactions, paid and "
            "refunded totals and the polling job state."
        ),
        parameters=[TENANT_PARAMETER],
        responses={
            200: OpenApiResponse(description="Order payment info"),
            404: OpenApiResponse(description="Order not found"),
        },
        tags=["Payments"],
    )
    def get(self, request, order_id):
        info = self.get_service().get_order_info(order_id, self.get_tenant_id())
        return Response({"success": True, "data": info})


class PhonePeReturnView(PaymentsAPIView):
    """
    Buyer redirected back from PhonePe.

    GET /api/v1/payments/phonepe/return/?orderId=...
    """

    @extend_schema(
        operation_id="phonepe_return",
        summary="PhonePe return",
        description=(
            "Record the buyer's return. The redirect is not trusted: the payment "
            "stays processing until a webhook or poll confirms it."
        ),
        parameters=[
            TENANT_PARAMETER,
            OpenApiParameter(
                name="orderId",
                type=str,
                location=OpenApiParameter.QUERY,
                description="Order the buyer paid for",
                required=True,
            ),
        ],
        responses={200: OpenApiResponse(description="Processing acknowledgement")},
        tags=["Payments - PhonePe"],
    )
    def get(self, request):
        result = self.get_service().record_return(
            request.query_params.dict(), self.get_tenant_id()
        )
        return Response(result)


class RetryPaymentView(PaymentsAPIView):
    """POST /api/v1/payments/phonepe/retry/ with {"orderId": "..."}"""

    @extend_schema(
        operation_id="phonepe_retry",
        summary="Retry UPI payment",
        description="Start a new PhonePe attempt for an order whose last attempt failed.",
        parameters=[TENANT_PARAMETER],
        request=RetryPaymentSerializer,
        responses={
            200: OpenApiResponse(description="New attempt"),
            409: OpenApiResponse(description="Retry not allowed for this order"),
        },
        tags=["Payments - PhonePe"],
    )
    def post(self, request):
        serializer = RetryPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.get_service().retry_payment(
            serializer.validated_data["order_id"], self.get_tenant_id()
        )
        return Response(result)


class CancelPaymentView(PaymentsAPIView):
    """POST /api/v1/payments/cancel/"""

    @extend_schema(
        operation_id="cancel_payment",
        summary="Cancel payment",
        description="Cancel an attempt the buyer abandoned. Captured attempts cannot be cancelled.",
        parameters=[TENANT_PARAMETER],
        request=CancelPaymentSerializer,
        responses={
            200: OpenApiResponse(description="Cancelled payment"),
            409: OpenApiResponse(description="Payment already completed or failed"),
        },
        tags=["Payments"],
    )
    def post(self, request):
        serializer = CancelPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        view = self.get_service().cancel_payment(
            data["payment_id"],
            self.get_tenant_id(),
            order_id=data.get("order_id"),
            reason=data.get("reason"),
        )
        return Response({"success": True, "data": view})


# =============================================================================
# Refunds
# =============================================================================


class RefundCreateView(PaymentsAPIView):
    """POST /api/v1/payments/refunds/"""

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="create_refund",
        summary="Create refund",
        description=(
            "Refund part or all of a captured payment. Requires an Idempotency-Key header."
        ),
        parameters=[TENANT_PARAMETER, IDEMPOTENCY_PARAMETER],
        request=CreateRefundSerializer,
        responses={
            201: OpenApiResponse(description="Refund created"),
            400: OpenApiResponse(description="Amount exceeds the refundable balance"),
        },
        tags=["Payments - Refunds"],
    )
    def post(self, request):
        serializer = CreateRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.get_service().create_refund(
            dict(serializer.validated_data),
            self.get_tenant_id(),
            idempotency_key=request.headers.get(IDEMPOTENCY_HEADER),
        )
        return Response(result, status=status.HTTP_201_CREATED)


class RefundStatusView(PaymentsAPIView):
    """GET /api/v1/payments/refunds/{refund_id}/"""

    @extend_schema(
        operation_id="get_refund_status",
        summary="Get refund status",
        parameters=[TENANT_PARAMETER],
        responses={
            200: OpenApiResponse(description="Refund"),
            404: OpenApiResponse(description="Refund not found"),
        },
        tags=["Payments - Refunds"],
    )
    def get(self, request, refund_id):
        return Response(self.get_service().get_refund_status(refund_id, self.get_tenant_id()))


class PaymentRefundListView(PaymentsAPIView):
    """GET /api/v1/payments/{payment_id}/refunds/"""

    @extend_schema(
        operation_id="list_payment_refunds",
        summary="List refunds of a payment",
        parameters=[TENANT_PARAMETER],
        responses={200: OpenApiResponse(description="Refunds and refundable balance")},
        tags=["Payments - Refunds"],
    )
    def get(self, request, payment_id):
        return Response(self.get_service().list_refunds(payment_id, self.get_tenant_id()))


# =============================================================================
# Providers & keys
# =============================================================================


class ProviderListView(PaymentsAPIView):
    """GET /api/v1/payments/providers/"""

    @extend_schema(
        operation_id="list_payment_providers",
        summary="List payment providers",
        description="Providers enabled for the tenant, in preference order.",
        parameters=[TENANT_PARAMETER],
        responses={200: OpenApiResponse(description="Enabled providers")},
        tags=["Payments"],
    )
    def get(self, request):
        providers = self.get_service().list_providers(self.get_tenant_id())
        return Response({"success": True, "data": providers})


class IdempotencyKeyView(PaymentsAPIView):
    """POST /api/v1/payments/idempotency-key/"""

    @extend_schema(
        operation_id="generate_idempotency_key",
        summary="Generate idempotency key",
        request=GenerateKeySerializer,
        responses={200: OpenApiResponse(description="Fresh key")},
        tags=["Payments"],
    )
    def post(self, request):
        serializer = GenerateKeySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        key = IdempotencyLedger().generate_key(serializer.validated_data["scope"])
        return Response({"success": True, "data": {"idempotencyKey": key}})


# =============================================================================
# Admin
# =============================================================================


class ProviderConfigAdminView(PaymentsAPIView):
    """
    Provider configuration administration.

    GET  /api/v1/payments/admin/provider-configs/ - Status per provider/environment
    POST /api/v1/payments/admin/provider-configs/ - Create or update a config row
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="get_provider_configs",
        summary="Get provider configuration status",
        parameters=[TENANT_PARAMETER],
        responses={200: OpenApiResponse(description="Per-provider status")},
        tags=["Payments - Admin"],
    )
    def get(self, request):
        service = self.get_service()
        return Response(
            {"success": True, "data": service.config_resolver.provider_status(self.get_tenant_id())}
        )

    @extend_schema(
        operation_id="update_provider_config",
        summary="Update provider configuration",
        description="Secrets are read from the environment and cannot be set here.",
        parameters=[TENANT_PARAMETER],
        request=ProviderConfigUpdateSerializer,
        responses={200: ProviderConfigSerializer},
        tags=["Payments - Admin"],
    )
    def post(self, request):
        serializer = ProviderConfigUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        fields = dict(serializer.validated_data)
        provider = fields.pop("provider")
        environment = fields.pop("environment")

        tenant_id = self.get_tenant_id()
        config = self.get_service().config_resolver.update_config(
            tenant_id, provider, environment, **fields
        )
        logger.info(
            "Provider config updated via admin API",
            extra={
                "tenant_id": tenant_id,
                "provider": provider,
                "environment": environment,
                "user_id": str(request.user.pk),
            },
        )
        return Response({"success": True, "data": ProviderConfigSerializer(config).data})


class ProviderHealthView(PaymentsAPIView):
    """GET /api/v1/payments/admin/health/"""

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="get_provider_health",
        summary="Check provider health",
        parameters=[TENANT_PARAMETER],
        responses={200: OpenApiResponse(description="Health per enabled provider")},
        tags=["Payments - Admin"],
    )
    def get(self, request):
        results = self.get_service().health_check(self.get_tenant_id())
        return Response(
            {
                "success": True,
                "data": {
                    "healthy": all(entry["healthy"] for entry in results),
                    "providers": results,
                },
            }
        )


class PaymentsStatsView(PaymentsAPIView):
    """GET /api/v1/payments/admin/stats/"""

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="get_payments_stats",
        summary="Get idempotency and webhook statistics",
        parameters=[TENANT_PARAMETER],
        responses={200: OpenApiResponse(description="Ledger and inbox counters")},
        tags=["Payments - Admin"],
    )
    def get(self, request):
        tenant_id = self.get_tenant_id()
        return Response(
            {
                "success": True,
                "data": {
                    "idempotency": IdempotencyLedger().stats(tenant_id),
                    "webhooks": WebhookRouter().stats(tenant_id),
                },
            }
        )
