"""
Webhook endpoint views.

The gateway gets the router's status code back unchanged: 2xx stops its
retries, anything else makes it redeliver.

Usage:
    # In urls.py
    from payments.webhooks.views import provider_webhook

    urlpatterns = [
        path("webhooks/<str:provider>/", provider_webhook, name="provider-webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.tenancy import tenant_id_from_request
from payments.webhooks.router import WebhookRouter

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def provider_webhook(request: HttpRequest, provider: str) -> JsonResponse:
    """
    Receive a PhonePe or Stripe webhook.

    Returns:
        JsonResponse with status:
        - 200: Processed, or already processed
        - 401: Signature invalid
        - 403: Authorization header invalid
        - 404: Provider not enabled
        - 500: Processing error (gateway will retry)
    """
    tenant_id = tenant_id_from_request(request)
    logger.info(
        f"Received {provider} webhook",
        extra={"provider": provider, "tenant_id": tenant_id, "size": len(request.body)},
    )

    response = WebhookRouter().route(provider, tenant_id, dict(request.headers), request.body)
    return JsonResponse(response.payload, status=response.status_code)
