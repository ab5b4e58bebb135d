"""
Adapter registry and factory.

Adapters register under their ``provider`` tag; the factory resolves the
tenant's configuration and builds the matching adapter. A provider that
is unknown, disabled or missing required secrets is reported as
ProviderNotAvailableError and no adapter is constructed.

Usage:
    from payments.adapters import AdapterFactory

    factory = AdapterFactory()
    adapter = factory.create("phonepe", "test", tenant_id="default")

    # Tests inject their own registry
    factory = AdapterFactory(registry={"phonepe": FakePhonePeAdapter})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from payments.adapters.phonepe_adapter import PhonePeAdapter
from payments.adapters.stripe_adapter import StripeAdapter
from payments.exceptions import ProviderNotAvailableError
from payments.services.config_resolver import ConfigResolver

if TYPE_CHECKING:
    from collections.abc import Iterable

    from payments.adapters.base import PaymentAdapter

logger = logging.getLogger(__name__)


def build_registry(adapters: Iterable[type[PaymentAdapter]]) -> dict[str, type[PaymentAdapter]]:
    """Key adapter classes by their provider tag."""
    registry: dict[str, type[PaymentAdapter]] = {}
    for adapter_cls in adapters:
        if not adapter_cls.provider:
            raise ValueError(f"{adapter_cls.__name__} does not declare a provider tag")
        registry[str(adapter_cls.provider)] = adapter_cls
    return registry


DEFAULT_REGISTRY = build_registry([PhonePeAdapter, StripeAdapter])


class AdapterFactory:
    """
    Builds configured adapters by provider tag.

    Args:
        config_resolver: Source of merged provider configuration
        registry: provider tag -> adapter class
    """

    def __init__(
        self,
        config_resolver: ConfigResolver | None = None,
        registry: dict[str, type[PaymentAdapter]] | None = None,
    ):
        self.registry = dict(registry if registry is not None else DEFAULT_REGISTRY)
        self.config_resolver = config_resolver or ConfigResolver(providers=list(self.registry))

    @property
    def providers(self) -> list[str]:
        return list(self.registry)

    def supports(self, provider: str) -> bool:
        return provider in self.registry

    def create(self, provider: str, environment: str, tenant_id: str) -> PaymentAdapter:
        """
        Build the adapter for a tenant's provider.

        Raises:
            ProviderNotAvailableError: Unknown provider, disabled config or missing secrets
        """
        adapter_cls = self.registry.get(provider)
        if adapter_cls is None:
            raise ProviderNotAvailableError(
                f"Payment provider '{provider}' is not supported",
                details={"provider": provider},
            )

        config = self.config_resolver.resolve(provider, environment, tenant_id)
        if not config.is_valid:
            logger.warning(
                "Provider not available",
                extra={
                    "provider": provider,
                    "environment": environment,
                    "tenant_id": tenant_id,
                    "enabled": config.enabled,
                    "missing_secrets": config.missing_secrets,
                },
            )
            raise ProviderNotAvailableError(
                f"Payment provider '{provider}' is not available",
                details={
                    "provider": provider,
                    "environment": environment,
                    "enabled": config.enabled,
                    "missingSecrets": config.missing_secrets,
                },
            )
        return adapter_cls(config)
