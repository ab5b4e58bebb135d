"""
Abstract base model shared by every persisted entity of the service.

Orders, payment attempts, refunds, audit events, inbox rows, idempotency
records and polling jobs all carry the same pair of timestamps. The
"latest payment" rule used by the order projector depends on them, so
``updated_at`` must be maintained by every write path (``auto_now``
handles ``save()``; queryset ``update()`` callers set it explicitly).

For mixins (UUIDPrimaryKeyMixin, TenantScopedMixin, AppendOnlyMixin),
see core.model_mixins.

Usage:
    from core.models import BaseModel
    from core.model_mixins import TenantScopedMixin, UUIDPrimaryKeyMixin

    class Refund(UUIDPrimaryKeyMixin, TenantScopedMixin, BaseModel):
        amount_minor = models.PositiveBigIntegerField()
"""

from __future__ import annotations

from django.db import models


class BaseModel(models.Model):
    """
    Abstract model providing creation and modification timestamps.

    Fields:
        created_at: Set once when the row is inserted (indexed)
        updated_at: Refreshed on every ``save()``

    Note:
        ``QuerySet.update()`` bypasses ``auto_now``. Include
        ``updated_at=timezone.now()`` in bulk updates that should count
        as a modification.
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this record was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="Timestamp when this record was last modified",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(id={self.pk})"
