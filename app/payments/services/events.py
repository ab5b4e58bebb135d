"""
Event recorder for the payments audit trail.

Writes PaymentEvent rows on the audit, security and lifecycle channels and
mirrors each one to the log. Payloads are passed through ``mask_payload``
so a raw VPA or UTR cannot reach the trail even if a caller forgets.

Usage:
    from payments.services.events import EventRecorder

    events = EventRecorder()
    events.audit(
        "webhook.replayed",
        tenant_id=tenant_id,
        provider="phonepe",
        source="webhook",
        payload={"dedupeKey": dedupe_key},
    )
    events.security("security.webhook.auth_failed", tenant_id=tenant_id, provider="phonepe")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from core.helpers import parse_uuid

from payments.models import PaymentEvent
from payments.services.masking import mask_payload
from payments.state_machines import EventChannel, EventSource

if TYPE_CHECKING:
    from typing import Any

    from payments.models import Payment

logger = logging.getLogger(__name__)


class EventRecorder:
    """Append-only writer for PaymentEvent rows."""

    def record(
        self,
        event_type: str,
        *,
        channel: str = EventChannel.AUDIT,
        tenant_id: str,
        payment: Payment | None = None,
        order_id: Any = None,
        provider: str = "",
        source: str = EventSource.SYSTEM,
        status: str = "",
        payload: dict[str, Any] | None = None,
    ) -> PaymentEvent:
        if payment is not None:
            order_id = order_id or payment.order_id
            provider = provider or payment.provider

        event = PaymentEvent.objects.create(
            tenant_id=tenant_id,
            payment=payment,
            order_id=parse_uuid(str(order_id)) if order_id else None,
            provider=provider or "",
            channel=channel,
            event_type=event_type,
            source=source,
            status=status or "",
            payload=mask_payload(payload or {}),
        )

        log = logger.warning if channel == EventChannel.SECURITY else logger.info
        log(
            f"Payment event: {event_type}",
            extra={
                "event_id": str(event.id),
                "event_type": event_type,
                "channel": channel,
                "tenant_id": tenant_id,
                "payment_id": str(payment.id) if payment else None,
                "provider": provider,
                "source": source,
            },
        )
        return event

    def audit(self, event_type: str, **kwargs) -> PaymentEvent:
        return self.record(event_type, channel=EventChannel.AUDIT, **kwargs)

    def security(self, event_type: str, **kwargs) -> PaymentEvent:
        return self.record(event_type, channel=EventChannel.SECURITY, **kwargs)

    def lifecycle(self, event_type: str, **kwargs) -> PaymentEvent:
        return self.record(event_type, channel=EventChannel.LIFECYCLE, **kwargs)
