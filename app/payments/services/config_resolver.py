"""
Provider configuration resolution.

Combines the non-secret ProviderConfig row of a (tenant, provider,
environment) with the gateway secrets held in Django settings. Only the
database part is cached (Django cache, five minutes); secrets are read
from settings on every resolve and never written anywhere.

Usage:
    from payments.services.config_resolver import ConfigResolver

    resolver = ConfigResolver()
    config = resolver.resolve("phonepe", "test", tenant_id="default")
    if config.is_valid:
        adapter = factory.create("phonepe", "test", "default")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.cache import cache as default_cache
from django.db import transaction

from core.exceptions import ValidationError

from payments.models import ProviderConfig
from payments.state_machines import Environment, Provider

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)

CONFIG_CACHE_TIMEOUT = 300

# Secret name -> settings attribute, per provider
PROVIDER_SECRET_SETTINGS: dict[str, dict[str, str]] = {
    Provider.PHONEPE: {
        "client_id": "PHONEPE_CLIENT_ID",
        "client_secret": "PHONEPE_CLIENT_SECRET",
        "client_version": "PHONEPE_CLIENT_VERSION",
        "salt_key": "PHONEPE_SALT_KEY",
        "webhook_secret": "PHONEPE_WEBHOOK_SECRET",
        "webhook_username": "PHONEPE_WEBHOOK_USERNAME",
        "webhook_password": "PHONEPE_WEBHOOK_PASSWORD",
    },
    Provider.STRIPE: {
        "secret_key": "STRIPE_SECRET_KEY",
        "webhook_secret": "STRIPE_WEBHOOK_SECRET",
    },
}

REQUIRED_SECRETS: dict[str, tuple[str, ...]] = {
    Provider.PHONEPE: ("salt_key", "webhook_secret"),
    Provider.STRIPE: ("secret_key", "webhook_secret"),
}

_CONFIG_FIELDS = (
    "merchant_id",
    "key_id",
    "salt_index",
    "success_url",
    "failure_url",
    "webhook_url",
    "capabilities",
    "metadata",
)


@dataclass
class ResolvedConfig:
    """Database configuration merged with settings secrets."""

    provider: str
    environment: str
    tenant_id: str
    enabled: bool = False
    merchant_id: str = ""
    key_id: str = ""
    salt_index: int = 1
    success_url: str = ""
    failure_url: str = ""
    webhook_url: str = ""
    capabilities: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    secrets: dict[str, str] = field(default_factory=dict, repr=False)
    missing_secrets: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.enabled and not self.missing_secrets

    def secret(self, name: str) -> str:
        return self.secrets.get(name, "")


def _cache_key(tenant_id: str, provider: str, environment: str) -> str:
    return f"payments:provider_config:{tenant_id}:{provider}:{environment}"


class ConfigResolver:
    """
    Resolves provider configuration for adapters, the router and the facade.

    Args:
        cache: Django cache backend (defaults to ``django.core.cache.cache``)
        providers: Provider tags the resolver knows about
    """

    def __init__(self, cache=None, providers: list[str] | None = None):
        self._cache = cache or default_cache
        self._providers = list(providers or Provider.values)

    @property
    def providers(self) -> list[str]:
        return list(self._providers)

    # ==========================================================================
    # Resolution
    # ==========================================================================

    def resolve(self, provider: str, environment: str, tenant_id: str) -> ResolvedConfig:
        row = self._load_row(provider, environment, tenant_id)
        secrets = self._resolve_secrets(provider)
        missing = [
            PROVIDER_SECRET_SETTINGS[provider][name]
            for name in REQUIRED_SECRETS.get(provider, ())
            if not secrets.get(name)
        ]

        config = ResolvedConfig(
            provider=provider,
            environment=environment,
            tenant_id=tenant_id,
            secrets=secrets,
            missing_secrets=missing,
        )
        if row is not None:
            config.enabled = row["is_enabled"]
            for name in _CONFIG_FIELDS:
                setattr(config, name, row[name])
        return config

    def enabled_providers(self, tenant_id: str, environment: str) -> list[ResolvedConfig]:
        """Configs that are enabled and have every required secret."""
        configs = [
            self.resolve(provider, environment, tenant_id) for provider in self._providers
        ]
        return [config for config in configs if config.is_valid]

    def is_available(self, provider: str, tenant_id: str, environment: str) -> bool:
        if provider not in self._providers:
            return False
        return self.resolve(provider, environment, tenant_id).is_valid

    def provider_status(self, tenant_id: str) -> list[dict[str, Any]]:
        """Per-provider summary for the admin API (no secret values)."""
        status = []
        for provider in self._providers:
            entry: dict[str, Any] = {"provider": provider}
            for environment in Environment.values:
                config = self.resolve(provider, environment, tenant_id)
                entry[environment] = {
                    "enabled": config.enabled,
                    "configured": config.is_valid,
                    "missingSecrets": config.missing_secrets,
                    "merchantId": config.merchant_id,
                }
            status.append(entry)
        return status

    # ==========================================================================
    # Administration
    # ==========================================================================

    def update_config(
        self,
        tenant_id: str,
        provider: str,
        environment: str,
        **fields: Any,
    ) -> ProviderConfig:
        """
        Create or update the configuration row, then drop its cache entry.

        Raises:
            ValidationError: Unknown provider or environment
        """
        if provider not in self._providers:
            raise ValidationError(
                f"Unsupported payment provider: {provider}",
                error_code="UNSUPPORTED_PROVIDER",
            )
        if environment not in Environment.values:
            raise ValidationError(
                f"Unsupported environment: {environment}",
                error_code="UNSUPPORTED_ENVIRONMENT",
            )

        allowed = set(_CONFIG_FIELDS) | {"is_enabled"}
        defaults = {name: value for name, value in fields.items() if name in allowed}
        with transaction.atomic():
            config, created = ProviderConfig.objects.update_or_create(
                tenant_id=tenant_id,
                provider=provider,
                environment=environment,
                defaults=defaults,
            )
        self.clear_cache(tenant_id, provider, environment)
        logger.info(
            "Provider config saved",
            extra={
                "tenant_id": tenant_id,
                "provider": provider,
                "environment": environment,
                "config_created": created,
                "fields": sorted(defaults),
            },
        )
        return config

    def clear_cache(
        self,
        tenant_id: str,
        provider: str | None = None,
        environment: str | None = None,
    ) -> None:
        providers = [provider] if provider else self._providers
        environments = [environment] if environment else Environment.values
        self._cache.delete_many(
            [_cache_key(tenant_id, p, e) for p in providers for e in environments]
        )

    # ==========================================================================
    # Internals
    # ==========================================================================

    def _load_row(self, provider: str, environment: str, tenant_id: str) -> dict | None:
        key = _cache_key(tenant_id, provider, environment)
        cached = self._cache.get(key)
        if cached is not None:
            return cached.get("row")

        row = (
            ProviderConfig.objects.filter(
                tenant_id=tenant_id, provider=provider, environment=environment
            )
            .values("is_enabled", *_CONFIG_FIELDS)
            .first()
        )
        self._cache.set(key, {"row": row}, timeout=CONFIG_CACHE_TIMEOUT)
        return row

    @staticmethod
    def _resolve_secrets(provider: str) -> dict[str, str]:
        names = PROVIDER_SECRET_SETTINGS.get(provider, {})
        return {
            name: str(getattr(settings, setting_name, "") or "")
            for name, setting_name in names.items()
        }
