"""
ProviderConfig model: non-secret gateway configuration per tenant.

Secrets (client secret, salt key, webhook credentials) come from settings
and never touch the database.

Usage:
    from payments.models import ProviderConfig

    config = ProviderConfig.objects.filter(
        tenant_id="default", provider="phonepe", environment="test", is_enabled=True
    ).first()
"""

from __future__ import annotations

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from core.model_mixins import TenantScopedMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import Environment


class ProviderConfig(UUIDPrimaryKeyMixin, TenantScopedMixin, BaseModel):
    """
    Gateway settings for one (tenant, provider, environment).

    Fields:
        provider: Gateway tag (must have a registered adapter)
        environment: test or live
        is_enabled: Disabled configs behave as if absent
        merchant_id: Gateway merchant identifier
        key_id: Public key / client identifier
        salt_index: PhonePe salt key index (1-10)
        success_url/failure_url/webhook_url: Redirect and callback targets
        capabilities: Optional feature flags
        metadata: Free-form settings (PhonePe ``hosts`` and ``active_host``)
    """

    provider = models.CharField(max_length=32)

    environment = models.CharField(
        max_length=8,
        choices=Environment.choices,
        default=Environment.TEST,
    )

    is_enabled = models.BooleanField(default=True)

    merchant_id = models.CharField(max_length=128, blank=True, default="")
    key_id = models.CharField(max_length=128, blank=True, default="")

    salt_index = models.PositiveSmallIntegerField(
        default=1,
        validators=[MinValueValidator(1), MaxValueValidator(10)],
    )

    success_url = models.URLField(max_length=1024, blank=True, default="")
    failure_url = models.URLField(max_length=1024, blank=True, default="")
    webhook_url = models.URLField(max_length=1024, blank=True, default="")

    capabilities = models.JSONField(default=dict, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ["provider"]
        verbose_name = "Provider Config"
        verbose_name_plural = "Provider Configs"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "provider", "environment"],
                name="provider_config_unique",
            ),
            models.CheckConstraint(
                condition=models.Q(salt_index__gte=1, salt_index__lte=10),
                name="provider_config_salt_index_range",
            ),
        ]

    def __str__(self) -> str:
        state = "enabled" if self.is_enabled else "disabled"
        return f"ProviderConfig({self.tenant_id}, {self.provider}, {self.environment}, {state})"
