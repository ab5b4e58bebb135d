"""
IdempotencyKey model: durable key -> response cache.

A row is inserted in ``in_progress`` state before the operation runs; the
unique ``(tenant_id, scope, key)`` constraint makes that insert the single
point where concurrent identical requests are told apart.

Usage:
    from payments.models import IdempotencyKey

    record = IdempotencyKey.objects.filter(
        tenant_id="default", scope="create_payment", key=key
    ).first()
"""

from __future__ import annotations

from django.db import models

from core.model_mixins import TenantScopedMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import IdempotencyState


class IdempotencyKey(UUIDPrimaryKeyMixin, TenantScopedMixin, BaseModel):
    """
    Stored outcome of an idempotent operation.

    Fields:
        scope: Operation name (create_payment, create_refund, phonepe_token_url)
        key: Client-supplied or derived key
        request_hash: sha256 of the canonical JSON request
        state: in_progress or completed
        response: Stored response replayed on a hit
        completed_at: When the response was stored
    """

    scope = models.CharField(max_length=64)

    key = models.CharField(max_length=255)

    request_hash = models.CharField(max_length=64)

    state = models.CharField(
        max_length=16,
        choices=IdempotencyState.choices,
        default=IdempotencyState.IN_PROGRESS,
    )

    response = models.JSONField(null=True, blank=True)

    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Idempotency Key"
        verbose_name_plural = "Idempotency Keys"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "scope", "key"],
                name="idempotency_key_unique",
            ),
        ]

    def __str__(self) -> str:
        return f"IdempotencyKey({self.scope}, {self.key}, {self.state})"

    @property
    def is_completed(self) -> bool:
        return self.state == IdempotencyState.COMPLETED
