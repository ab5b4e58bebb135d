"""
Webhook router: verifies inbound gateway notifications and applies them.

Every delivery is written to the WebhookInbox, including the ones that
fail verification, so forged or malformed notifications leave a trace.

Processing Flow:
    1. Provider not enabled for the tenant -> 404, no adapter is built
    2. Compute the dedupe key; a verified inbox entry with that key -> 200
       ``already_processed`` (replay), nothing else happens
    3. Verify through the provider adapter and store the inbox entry
    4. Authorization mismatch -> 403 plus a security event
    5. Signature mismatch -> 401 plus an audit event
    6. Verified -> payment statuses go through the transition service,
       refund statuses through the refund service; the entry is marked
       processed
    7. Unexpected error -> entry stored unverified with the error, 500

Usage:
    from payments.webhooks.router import WebhookRouter

    response = WebhookRouter().route("phonepe", "default", request.headers, request.body)
    return JsonResponse(response.payload, status=response.status_code)
"""

from __future__ import annotations

import json
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from core.helpers import sha256_hex
from core.services import BaseService

from payments.adapters import AdapterFactory, WebhookVerifyParams
from payments.models import WebhookInbox
from payments.services.config_resolver import ConfigResolver
from payments.services.events import EventRecorder
from payments.services.refund_service import RefundService
from payments.services.status_transition import PaymentStatusTransitionService
from payments.state_machines import EventSource

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from typing import Any

    from payments.adapters import WebhookEventData


AUTHORIZATION_ERROR_CODES = frozenset(
    {"INVALID_AUTHORIZATION", "MISSING_AUTHORIZATION", "UNAUTHORIZED"}
)

# Header values never written to the inbox
REDACTED_HEADERS = frozenset({"authorization", "cookie", "proxy-authorization"})

_IDENTIFIER_SOURCES = ("event", "data", "payload", "payment", "transaction", "message", "response")

_IDENTIFIER_FIELDS: dict[str, tuple[str, ...]] = {
    "eventId": ("eventId", "event_id", "id"),
    "orderId": ("orderId", "order_id", "merchantOrderId", "providerOrderId"),
    "transactionId": (
        "transactionId",
        "providerTransactionId",
        "pgTransactionId",
        "merchantTransactionId",
        "paymentId",
    ),
    "utr": ("utr", "upiUtr", "upiTransactionId"),
    "referenceId": ("referenceId", "providerReferenceId", "merchantOrderId"),
}


@dataclass
class WebhookResponse:
    """HTTP status and JSON body to answer the gateway with."""

    status_code: int
    payload: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Dedupe
# =============================================================================


def _parse_json(body: str) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return None


def extract_identifiers(body: str) -> dict[str, str]:
    """
    Identifiers found in a webhook body.

    Looks at the root object and its ``event``, ``event.payload``,
    ``data``, ``payload``, ``payment``, ``transaction``, ``message`` and
    ``response`` members; for each identifier, field names are tried in
    order across all of them. Unparseable bodies have no identifiers.
    """
    parsed = _parse_json(body)
    if not isinstance(parsed, dict):
        return {}

    sources = [parsed]
    event = parsed.get("event")
    if isinstance(event, dict):
        sources.append(event)
        sources.append(event.get("payload"))
    sources.extend(parsed.get(name) for name in _IDENTIFIER_SOURCES if name != "event")
    sources = [source for source in sources if isinstance(source, dict)]

    identifiers = {}
    for name, keys in _IDENTIFIER_FIELDS.items():
        for key in keys:
            value = next(
                (
                    source[key].strip()
                    for source in sources
                    if isinstance(source.get(key), str) and source[key].strip()
                ),
                None,
            )
            if value:
                identifiers[name] = value
                break
    return identifiers


def compute_dedupe_key(
    tenant_id: str,
    provider: str,
    body: str,
    identifiers: Mapping[str, str],
) -> str:
    """
    sha256 over the identifying tokens and the body digest.

    Order and transaction ids identify a delivery when both are present;
    otherwise the event id and transaction id do.
    """
    tokens = [tenant_id, provider]
    if identifiers.get("orderId") and identifiers.get("transactionId"):
        tokens.append(f"order:{identifiers['orderId']}")
        tokens.append(f"txn:{identifiers['transactionId']}")
    else:
        if identifiers.get("eventId"):
            tokens.append(f"event:{identifiers['eventId']}")
        if identifiers.get("transactionId"):
            tokens.append(f"txn:{identifiers['transactionId']}")
    if identifiers.get("utr"):
        tokens.append(f"utr:{identifiers['utr']}")
    if identifiers.get("referenceId"):
        tokens.append(f"ref:{identifiers['referenceId']}")

    return sha256_hex(f"{'|'.join(tokens)}|{sha256_hex(body)}")


# =============================================================================
# Router
# =============================================================================


class WebhookRouter(BaseService):
    """
    Routes gateway webhooks to the transition and refund services.

    Args:
        config_resolver: Decides whether the provider is enabled for the tenant
        adapter_factory: Builds the verifying adapter
        transitions: Applies payment statuses
        refunds: Applies refund statuses
        events: Event recorder
        environment: "test" or "live" (defaults to PAYMENTS_ENVIRONMENT)
    """

    def __init__(
        self,
        config_resolver: ConfigResolver | None = None,
        adapter_factory: AdapterFactory | None = None,
        transitions: PaymentStatusTransitionService | None = None,
        refunds: RefundService | None = None,
        events: EventRecorder | None = None,
        environment: str | None = None,
        clock: Callable[[], Any] | None = None,
    ):
        self.config_resolver = config_resolver or ConfigResolver()
        self.adapter_factory = adapter_factory or AdapterFactory(config_resolver=self.config_resolver)
        self.events = events or EventRecorder()
        self.transitions = transitions or PaymentStatusTransitionService(events=self.events)
        self.refunds = refunds or RefundService(events=self.events)
        self.environment = environment or getattr(settings, "PAYMENTS_ENVIRONMENT", "test")
        self._clock = clock or timezone.now

    def route(
        self,
        provider: str,
        tenant_id: str,
        headers: Mapping[str, str],
        body: bytes | str,
    ) -> WebhookResponse:
        logger = self.get_logger()
        body_text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
        headers = dict(headers or {})
        log_context = {"provider": provider, "tenant_id": tenant_id}

        if not (
            self.adapter_factory.supports(provider)
            and self.config_resolver.is_available(provider, tenant_id, self.environment)
        ):
            logger.warning("Webhook for unavailable provider", extra=log_context)
            return WebhookResponse(404, {"status": "provider_not_available"})

        identifiers = extract_identifiers(body_text)
        dedupe_key = compute_dedupe_key(tenant_id, provider, body_text, identifiers)
        log_context["dedupe_key"] = dedupe_key

        try:
            replayed = WebhookInbox.objects.filter(
                tenant_id=tenant_id,
                provider=provider,
                dedupe_key=dedupe_key,
                verified=True,
            ).first()
            if replayed is not None:
                self._store(replayed.provider, tenant_id, dedupe_key, True, headers, body_text, identifiers)
                self.events.audit(
                    "webhook.replayed",
                    tenant_id=tenant_id,
                    provider=provider,
                    source=EventSource.WEBHOOK,
                    payload={"dedupeKey": dedupe_key, **identifiers},
                )
                logger.info("Webhook already processed", extra=log_context)
                return WebhookResponse(200, {"status": "already_processed"})

            adapter = self.adapter_factory.create(provider, self.environment, tenant_id)
            result = adapter.verify_webhook(WebhookVerifyParams(headers=headers, body=body_text))
            entry = self._store(
                provider,
                tenant_id,
                dedupe_key,
                result.verified,
                headers,
                body_text,
                identifiers,
                error=result.error_message or "",
            )

            if not result.verified:
                return self._rejected(provider, tenant_id, dedupe_key, identifiers, result)

            processed = self._process_event(result.event, provider, tenant_id)
            entry.processed_at = self._clock()
            entry.save(update_fields=["processed_at", "updated_at"])

        except Exception as e:
            logger.exception(
                f"Webhook processing failed: {e}",
                extra={**log_context, "error": str(e)},
            )
            self._store(
                provider,
                tenant_id,
                dedupe_key,
                False,
                headers,
                body_text,
                identifiers,
                error=str(e) or e.__class__.__name__,
            )
            return WebhookResponse(500, {"status": "error", "message": "Webhook processing failed"})

        logger.info("Webhook processed", extra={**log_context, **processed})
        return WebhookResponse(200, {"status": "processed", **processed})

    # ==========================================================================
    # Maintenance
    # ==========================================================================

    def stats(self, tenant_id: str | None = None) -> dict[str, Any]:
        queryset = WebhookInbox.objects.all()
        if tenant_id:
            queryset = queryset.filter(tenant_id=tenant_id)
        total = queryset.count()
        verified = queryset.filter(verified=True).count()
        return {
            "total": total,
            "verified": verified,
            "processed": queryset.filter(processed_at__isnull=False).count(),
            "failed": total - verified,
            "byProvider": dict(Counter(queryset.values_list("provider", flat=True))),
        }

    def cleanup(self, older_than_days: int) -> int:
        """Delete processed entries older than the cutoff; unprocessed ones stay."""
        cutoff = self._clock() - timedelta(days=older_than_days)
        deleted, _ = WebhookInbox.objects.filter(
            Q(processed_at__isnull=False) & Q(processed_at__lt=cutoff)
        ).delete()
        self.get_logger().info(
            "Processed webhooks removed",
            extra={"deleted": deleted, "older_than_days": older_than_days},
        )
        return deleted

    # ==========================================================================
    # Internals
    # ==========================================================================

    def _rejected(self, provider, tenant_id, dedupe_key, identifiers, result) -> WebhookResponse:
        code = (result.error_code or "").upper()
        payload = {"dedupeKey": dedupe_key, "reason": result.error_code, **identifiers}
        if code in AUTHORIZATION_ERROR_CODES:
            self.events.security(
                "security.webhook.auth_failed",
                tenant_id=tenant_id,
                provider=provider,
                source=EventSource.WEBHOOK,
                payload=payload,
            )
            return WebhookResponse(
                403,
                {
                    "status": "authorization_invalid",
                    "message": result.error_message or "Invalid webhook authorization",
                },
            )

        self.events.audit(
            "webhook.signature_failed",
            tenant_id=tenant_id,
            provider=provider,
            source=EventSource.WEBHOOK,
            payload=payload,
        )
        return WebhookResponse(
            401,
            {
                "status": "signature_invalid",
                "message": result.error_message or "Signature verification failed",
            },
        )

    def _process_event(
        self,
        event: WebhookEventData | None,
        provider: str,
        tenant_id: str,
    ) -> dict[str, Any]:
        if event is None:
            raise ValueError("Verified webhook carried no event data")

        event_id = event.event_id or str(uuid.uuid4())
        self.events.lifecycle(
            "webhook.received",
            tenant_id=tenant_id,
            provider=provider,
            source=EventSource.WEBHOOK,
            status=event.refund_status or event.status or "",
            payload={
                "eventId": event_id,
                "eventType": event.event_type,
                "paymentId": event.payment_id,
                "orderId": event.order_id,
                "transactionId": event.transaction_id,
                "status": event.status,
                "refundId": event.refund_id,
                "refundStatus": event.refund_status,
                "data": event.data,
            },
        )

        payment_updated = False
        refund_updated = False
        if event.refund_id and event.refund_status:
            outcome = self.refunds.apply_refund_status(
                event.refund_id,
                event.refund_status,
                event.data,
                tenant_id,
                source=EventSource.WEBHOOK,
            )
            refund_updated = outcome.changed
        elif event.status:
            for ref in dict.fromkeys(r for r in (event.payment_id, event.transaction_id) if r):
                outcome = self.transitions.apply(
                    ref,
                    event.status,
                    event.data,
                    tenant_id,
                    verified=True,
                    source=EventSource.WEBHOOK,
                )
                if outcome.found:
                    payment_updated = outcome.changed
                    break

        return {
            "eventId": event_id,
            "paymentUpdated": payment_updated,
            "refundUpdated": refund_updated,
        }

    @staticmethod
    def _store(
        provider: str,
        tenant_id: str,
        dedupe_key: str,
        verified: bool,
        headers: dict[str, Any],
        body: str,
        identifiers: dict[str, str],
        error: str = "",
    ) -> WebhookInbox:
        safe_headers = {
            name: value for name, value in headers.items() if name.lower() not in REDACTED_HEADERS
        }
        entry, created = WebhookInbox.objects.get_or_create(
            provider=provider,
            dedupe_key=dedupe_key,
            defaults={
                "tenant_id": tenant_id,
                "verified": verified,
                "headers": safe_headers,
                "body": body,
                "identifiers": identifiers,
                "error": error,
            },
        )
        if not created:
            entry.attempts += 1
            entry.headers = safe_headers
            entry.identifiers = identifiers
            entry.save(update_fields=["attempts", "headers", "identifiers", "updated_at"])

            # A processed delivery is never downgraded back to unverified.
            queryset = WebhookInbox.objects.filter(pk=entry.pk)
            if not verified:
                queryset = queryset.filter(processed_at__isnull=True)
            if queryset.update(verified=verified, error=error, updated_at=timezone.now()):
                entry.verified = verified
                entry.error = error
        return entry
