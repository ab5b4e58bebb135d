"""
Inbound gateway webhooks.

One endpoint per provider feeds the WebhookRouter, which verifies the
delivery, records it in the WebhookInbox and applies the status it
carries.

Usage:
    # In urls.py
    from payments.webhooks.views import provider_webhook

    urlpatterns = [
        path("webhooks/<str:provider>/", provider_webhook, name="provider-webhook"),
    ]
"""

from payments.webhooks.router import (
    WebhookResponse,
    WebhookRouter,
    compute_dedupe_key,
    extract_identifiers,
)

__all__ = [
    "WebhookResponse",
    "WebhookRouter",
    "compute_dedupe_key",
    "extract_identifiers",
]
