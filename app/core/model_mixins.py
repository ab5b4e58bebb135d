"""
Model mixins combined with BaseModel by the domain apps.

Available Mixins:
    UUIDPrimaryKeyMixin: UUID primary key
    TenantScopedMixin: Indexed ``tenant_id`` column for multi-tenant rows
    AppendOnlyMixin: Rows may be inserted but never updated

Usage:
    from core.models import BaseModel
    from core.model_mixins import AppendOnlyMixin, TenantScopedMixin, UUIDPrimaryKeyMixin

    class PaymentEvent(UUIDPrimaryKeyMixin, TenantScopedMixin, AppendOnlyMixin, BaseModel):
        event_type = models.CharField(max_length=100)

Note:
    Always list mixins before BaseModel in inheritance.
"""

from __future__ import annotations

import uuid

from django.db import models


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use a UUID as primary key.

    Payment and order identifiers are handed to browsers and to payment
    gateways, so they must not reveal record counts or be guessable.

    Fields:
        id: UUIDField primary key (generated with uuid4)
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class TenantScopedMixin(models.Model):
    """
    Tenant partition key.

    Every lookup made on behalf of a request filters on ``tenant_id`` so a
    tenant can never read or mutate another tenant's rows.

    Fields:
        tenant_id: Opaque tenant identifier (``X-Tenant-Id`` header value)
    """

    tenant_id = models.CharField(
        max_length=64,
        default="default",
        db_index=True,
        help_text="Tenant that owns this record",
    )

    class Meta:
        abstract = True


class AppendOnlyMixin(models.Model):
    """
    Forbid updates of persisted rows.

    ``save()`` on an instance that already exists in the database raises
    ``RuntimeError``. Used for audit logs, where a mutated row would make
    reconstruction unreliable.

    Usage:
        event = PaymentEvent.objects.create(event_type="payment_created")
        event.payload = {}
        event.save()  # RuntimeError
    """

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise RuntimeError(
                f"{self.__class__.__name__} rows are append-only and cannot be updated"
            )
        super().save(*args, **kwargs)
