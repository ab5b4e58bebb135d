"""
Payments app for PhonePe UPI and Stripe reconciliation.

This app handles:
- Payment attempts and refunds through gateway adapters
- Idempotent replays of create requests
- Verified webhooks and gateway status polling
- Projection of payment outcomes onto orders

Related apps:
    - orders: Order aggregate whose payment status is projected here
    - core: Base models, services and exceptions

Usage:
    from payments.services.payments_service import build_payments_service

    service = build_payments_service()
    service.create_payment({"order_id": order_id}, tenant_id, idempotency_key=key)

    from payments.webhooks import WebhookRouter

    WebhookRouter().route("phonepe", tenant_id, headers, body)
"""
