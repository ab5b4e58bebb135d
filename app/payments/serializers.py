"""
DRF serializers for payments app.

Request bodies use camelCase keys on the wire; ``source=`` maps them onto
the snake_case names the payments service expects, so
``serializer.validated_data`` can be passed straight through.

Related files:
    - views.py: Payment API views
    - services/payments_service.py: PaymentsService

Usage:
    serializer = CreatePaymentSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    service.create_payment(dict(serializer.validated_data), tenant_id, ...)
"""

from __future__ import annotations

from rest_framework import serializers

from payments.state_machines import Environment, Provider


class CustomerSerializer(serializers.Serializer):
    """Buyer contact details forwarded to the gateway."""

    name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    email = serializers.EmailField(required=False, allow_blank=True)
    phone = serializers.CharField(max_length=32, required=False, allow_blank=True)


class CreatePaymentSerializer(serializers.Serializer):
    """
    Serializer for payment attempt creation.

    Fields:
        orderId: Order to pay for
        provider: Preferred provider (optional)
        amount: Major-unit amount; defaults to the order total
        currency: ISO currency; defaults to the order currency
        instrument: UPI instrument hint (UPI_INTENT, UPI_COLLECT, UPI_QR)
        expireAfterSeconds: PhonePe attempt lifetime
    """

    orderId = serializers.CharField(source="order_id", max_length=64)
    provider = serializers.ChoiceField(choices=Provider.choices, required=False)
    amount = serializers.DecimalField(
        max_digits=14, decimal_places=2, required=False, min_value=0
    )
    currency = serializers.CharField(max_length=3, required=False)
    methodKind = serializers.CharField(source="method_kind", max_length=32, required=False)
    instrument = serializers.CharField(max_length=32, required=False)
    customer = CustomerSerializer(required=False)
    successUrl = serializers.URLField(source="success_url", required=False)
    failureUrl = serializers.URLField(source="failure_url", required=False)
    cancelUrl = serializers.URLField(source="cancel_url", required=False)
    callbackUrl = serializers.URLField(source="callback_url", required=False)
    expireAfterSeconds = serializers.IntegerField(
        source="expire_after_seconds", required=False, min_value=1
    )
    metadata = serializers.DictField(required=False)


class TokenUrlSerializer(serializers.Serializer):
    """Serializer for the PhonePe hosted checkout token URL request."""

    orderId = serializers.CharField(source="order_id", max_length=64)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0)
    currency = serializers.CharField(max_length=3, required=False, default="INR")
    customer = CustomerSerializer(required=False)
    mobileNumber = serializers.CharField(source="mobile_number", max_length=32, required=False)
    redirectUrl = serializers.URLField(source="redirect_url", required=False)
    callbackUrl = serializers.URLField(source="callback_url", required=False)
    metadata = serializers.DictField(required=False)


class VerifyPaymentSerializer(serializers.Serializer):
    paymentId = serializers.CharField(source="payment_id", max_length=64)


class RetryPaymentSerializer(serializers.Serializer):
    orderId = serializers.CharField(source="order_id", max_length=64)


class CancelPaymentSerializer(serializers.Serializer):
    """
    Serializer for buyer-initiated cancellation.

    Fields:
        paymentId: Attempt to cancel
        orderId: Must match the attempt's order when given
        reason: Free-text reason stored on the attempt
    """

    paymentId = serializers.CharField(source="payment_id", max_length=64)
    orderId = serializers.CharField(source="order_id", max_length=64, required=False)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)


class CreateRefundSerializer(serializers.Serializer):
    """
    Serializer for refund creation.

    Fields:
        paymentId: Captured payment to refund
        amount: Major-unit amount; defaults to the full refundable amount
        reason: Shown to the buyer by some gateways
        merchantRefundId: Caller-chosen refund id (generated when absent)
    """

    paymentId = serializers.CharField(source="payment_id", max_length=64)
    amount = serializers.DecimalField(
        max_digits=14, decimal_places=2, required=False, min_value=0
    )
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True)
    merchantRefundId = serializers.CharField(
        source="merchant_refund_id", max_length=64, required=False
    )


class GenerateKeySerializer(serializers.Serializer):
    scope = serializers.RegexField(
        r"^[a-z][a-z0-9_]{0,31}$",
        required=False,
        default="payment",
        help_text="Key prefix, e.g. payment or refund",
    )


class ProviderConfigUpdateSerializer(serializers.Serializer):
    """
    Serializer for the admin provider configuration update.

    Secrets are not accepted here; they come from the environment.
    """

    provider = serializers.ChoiceField(choices=Provider.choices)
    environment = serializers.ChoiceField(choices=Environment.choices)
    isEnabled = serializers.BooleanField(source="is_enabled", required=False)
    merchantId = serializers.CharField(
        source="merchant_id", max_length=128, required=False, allow_blank=True
    )
    keyId = serializers.CharField(source="key_id", max_length=128, required=False, allow_blank=True)
    saltIndex = serializers.IntegerField(
        source="salt_index", required=False, min_value=1, max_value=10
    )
    successUrl = serializers.URLField(source="success_url", required=False, allow_blank=True)
    failureUrl = serializers.URLField(source="failure_url", required=False, allow_blank=True)
    webhookUrl = serializers.URLField(source="webhook_url", required=False, allow_blank=True)
    capabilities = serializers.DictField(required=False)
    metadata = serializers.DictField(required=False)


class ProviderConfigSerializer(serializers.Serializer):
    """Stored provider configuration row (no secrets)."""

    id = serializers.UUIDField(read_only=True)
    provider = serializers.CharField(read_only=True)
    environment = serializers.CharField(read_only=True)
    isEnabled = serializers.BooleanField(source="is_enabled", read_only=True)
    merchantId = serializers.CharField(source="merchant_id", read_only=True)
    keyId = serializers.CharField(source="key_id", read_only=True)
    saltIndex = serializers.IntegerField(source="salt_index", read_only=True)
    successUrl = serializers.CharField(source="success_url", read_only=True)
    failureUrl = serializers.CharField(source="failure_url", read_only=True)
    webhookUrl = serializers.CharField(source="webhook_url", read_only=True)
    capabilities = serializers.DictField(read_only=True)
    updatedAt = serializers.DateTimeField(source="updated_at", read_only=True)
