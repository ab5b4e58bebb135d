"""
WebhookInbox model: every inbound gateway callback, verified or not.

The unique ``(provider, dedupe_key)`` pair is what recognises a
redelivered webhook. Failed verifications are stored too, for forensics.

Usage:
    from payments.models import WebhookInbox

    entry = WebhookInbox.objects.filter(
        provider="phonepe", dedupe_key=dedupe_key, verified=True
    ).first()
    if entry:
        ...  # already processed
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import TenantScopedMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel


class WebhookInbox(UUIDPrimaryKeyMixin, TenantScopedMixin, BaseModel):
    """
    Raw webhook delivery and its verification outcome.

    Processing Flow:
        1. Compute the dedupe key from identifiers and the body digest
        2. Verified entry with that key exists -> already processed
        3. Verify signature through the provider adapter
        4. Insert or update the entry (verified flag, attempts)
        5. Verified -> drive status transitions, set processed_at

    Fields:
        provider: Gateway tag
        dedupe_key: sha256 over tenant, provider, identifiers and body digest
        verified: Whether signature/authorization checks passed
        attempts: Number of deliveries seen with this key
        headers: Request headers (authorization values omitted)
        body: Raw request body
        identifiers: Order/transaction/UTR/reference ids found in the body
        error: Verification or processing error text
        processed_at: When the event was applied
    """

    provider = models.CharField(max_length=32)

    dedupe_key = models.CharField(max_length=64)

    verified = models.BooleanField(default=False, db_index=True)

    attempts = models.PositiveIntegerField(default=1)

    headers = models.JSONField(default=dict, blank=True)

    body = models.TextField(blank=True, default="")

    identifiers = models.JSONField(default=dict, blank=True)

    error = models.TextField(blank=True, default="")

    processed_at = models.DateTimeField(null=True, blank=True, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Inbox Entry"
        verbose_name_plural = "Webhook Inbox"
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "dedupe_key"],
                name="webhook_inbox_dedupe_unique",
            ),
        ]

    def __str__(self) -> str:
        state = "processed" if self.processed_at else ("verified" if self.verified else "unverified")
        return f"WebhookInbox({self.provider}, {self.dedupe_key[:12]}, {state})"
