"""
PaymentEvent model: append-only audit trail of the payments subsystem.

Events are written for every transition, rejected transition, webhook
receipt, browser return and security incident. They are used for
reconstruction and review only; current state always comes from the
Payment, Refund and Order rows.

Usage:
    from payments.models import PaymentEvent

    PaymentEvent.objects.create(
        tenant_id=payment.tenant_id,
        payment=payment,
        order_id=payment.order_id,
        provider=payment.provider,
        channel="lifecycle",
        event_type="payment.status_changed",
        source="webhook",
        status="captured",
        payload={"from": "processing", "to": "captured"},
    )
"""

from __future__ import annotations

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone

from core.model_mixins import AppendOnlyMixin, TenantScopedMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import EventChannel, EventSource


class PaymentEvent(UUIDPrimaryKeyMixin, TenantScopedMixin, AppendOnlyMixin, BaseModel):
    """
    Immutable record of something that happened to a payment or order.

    Fields:
        payment: Payment concerned, if the event could be tied to one
        order_id: Order concerned (kept as a plain UUID so events survive
            lookups that never resolved an Order)
        provider: Gateway tag
        channel: audit, security or lifecycle
        event_type: Dotted event name (``payment.status_changed``)
        source: api, webhook, poll, return or system
        status: Status carried by the event, if any
        payload: Masked, JSON-safe context
        occurred_at: When the event happened
    """

    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="events",
    )

    order_id = models.UUIDField(null=True, blank=True, db_index=True)

    provider = models.CharField(max_length=32, blank=True, default="")

    channel = models.CharField(
        max_length=16,
        choices=EventChannel.choices,
        default=EventChannel.AUDIT,
        db_index=True,
    )

    event_type = models.CharField(max_length=100, db_index=True)

    source = models.CharField(
        max_length=16,
        choices=EventSource.choices,
        default=EventSource.SYSTEM,
    )

    status = models.CharField(max_length=32, blank=True, default="")

    payload = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    occurred_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-occurred_at"]
        verbose_name = "Payment Event"
        verbose_name_plural = "Payment Events"
        indexes = [
            models.Index(fields=["tenant_id", "event_type"], name="payment_event_tenant_type_idx"),
            models.Index(fields=["payment", "occurred_at"], name="payment_event_payment_idx"),
        ]

    def __str__(self) -> str:
        return f"PaymentEvent({self.event_type}, {self.channel}, {self.occurred_at:%Y-%m-%d %H:%M:%S})"
