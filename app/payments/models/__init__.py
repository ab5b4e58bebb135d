"""
Payment domain models.

This module contains all payment-related models:
- Payment: One gateway-side attempt to collect funds for an Order
- Refund: Money returned to the buyer
- PaymentEvent: Append-only audit trail
- WebhookInbox: Every inbound webhook, used for dedupe and forensics
- IdempotencyKey: Stored responses of idempotent operations
- PollingJob: Scheduled status queries for a payment
- ProviderConfig: Non-secret gateway configuration per tenant
"""

from payments.models.idempotency_key import IdempotencyKey
from payments.models.payment import Payment, PaymentQuerySet
from payments.models.payment_event import PaymentEvent
from payments.models.polling_job import PollingJob
from payments.models.provider_config import ProviderConfig
from payments.models.refund import Refund
from payments.models.webhook_inbox import WebhookInbox

__all__ = [
    "IdempotencyKey",
    "Payment",
    "PaymentEvent",
    "PaymentQuerySet",
    "PollingJob",
    "ProviderConfig",
    "Refund",
    "WebhookInbox",
]
