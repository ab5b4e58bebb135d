"""
PhonePe host selection and OAuth access tokens.

PhonePe exposes a UAT sandbox and a production host. The host comes from
the provider config metadata when set (``active_host`` may name a host
key or be a literal URL, ``hosts`` may override the URLs) and otherwise
follows the environment: ``live`` uses production, ``test`` uses UAT.

Access tokens are fetched from ``/v3/authorization/oauth/token`` and
shared through the Django cache so every adapter instance in every worker
reuses the same token until it is close to expiry.

Usage:
    from payments.adapters.phonepe_auth import PhonePeTokenManager, resolve_phonepe_host

    base_url = resolve_phonepe_host(config)
    tokens = PhonePeTokenManager(base_url, client_id, client_secret, client_version)
    headers["Authorization"] = f"O-Bearer {tokens.get_access_token()}"
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import requests
from django.conf import settings
from django.core.cache import cache as default_cache

from core.helpers import sha256_hex

from payments.exceptions import (
    ProviderAuthenticationError,
    ProviderRequestError,
    ProviderUnavailableError,
)
from payments.state_machines import Environment, Provider

if TYPE_CHECKING:
    from typing import Any

    from payments.services.config_resolver import ResolvedConfig

logger = logging.getLogger(__name__)

PHONEPE_HOSTS = {
    "uat": "https://api-preprod.phonepe.com/apis/pg-sandbox",
    "prod": "https://api.phonepe.com/apis/pg",
}

TOKEN_PATH = "/v3/authorization/oauth/token"
TOKEN_REFRESH_WINDOW_SECONDS = 240
TOKEN_DEFAULT_TTL_SECONDS = 3600


def resolve_phonepe_host(config: ResolvedConfig) -> str:
    """
    Base URL for PhonePe API calls.

    Example:
        config.metadata = {"active_host": "prod"}
        resolve_phonepe_host(config)  # "https://api.phonepe.com/apis/pg"
    """
    metadata = config.metadata or {}
    hosts = {**PHONEPE_HOSTS, **(metadata.get("hosts") or {})}

    active = str(metadata.get("active_host") or "").strip()
    if active.startswith(("http://", "https://")):
        return active.rstrip("/")
    if active in hosts:
        return hosts[active].rstrip("/")

    key = "prod" if config.environment == Environment.LIVE else "uat"
    return hosts[key].rstrip("/")


class PhonePeTokenManager:
    """
    Fetches and caches PhonePe OAuth access tokens.

    A token is refreshed once it is within four minutes of expiry. When no
    client credentials are configured the manager returns None and calls
    are authenticated by the X-VERIFY checksum alone.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        client_version: str = "1",
        cache=None,
        timeout: float | None = None,
    ):
        self.base_url = base_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.client_version = client_version or "1"
        self._cache = cache or default_cache
        self._timeout = timeout or getattr(settings, "PHONEPE_API_TIMEOUT_SECONDS", 30)

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def cache_key(self) -> str:
        return f"payments:phonepe_token:{sha256_hex(f'{self.base_url}:{self.client_id}')}"

    def get_access_token(self, force_refresh: bool = False) -> str | None:
        if not self.is_configured:
            return None

        if not force_refresh:
            cached = self._cache.get(self.cache_key)
            if cached and cached["expires_at"] - time.time() > TOKEN_REFRESH_WINDOW_SECONDS:
                return cached["access_token"]

        token, expires_at = self._fetch_token()
        ttl = max(int(expires_at - time.time()), 1)
        self._cache.set(
            self.cache_key,
            {"access_token": token, "expires_at": expires_at},
            timeout=ttl,
        )
        return token

    def invalidate(self) -> None:
        self._cache.delete(self.cache_key)
        logger.info(
            "PhonePe access token invalidated",
            extra={"provider": Provider.PHONEPE, "client_id": self.client_id},
        )

    def _fetch_token(self) -> tuple[str, float]:
        url = f"{self.base_url}{TOKEN_PATH}"
        start_time = time.time()
        try:
            response = requests.post(
                url,
                json={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "client_version": self.client_version,
                },
                headers={
                    "Content-Type": "application/json",
                    "accept": "application/json",
                    "X-CLIENT-ID": self.client_id,
                    "X-CLIENT-VERSION": self.client_version,
                },
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise ProviderUnavailableError(
                "Could not reach PhonePe token endpoint",
                provider=Provider.PHONEPE,
                details={"error": str(e)},
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        if response.status_code in (401, 403):
            raise ProviderAuthenticationError(
                "PhonePe rejected the client credentials",
                provider=Provider.PHONEPE,
                status_code=response.status_code,
            )
        if response.status_code >= 500:
            raise ProviderUnavailableError(
                "PhonePe token endpoint unavailable",
                provider=Provider.PHONEPE,
                status_code=response.status_code,
            )
        if not response.ok:
            raise ProviderRequestError(
                "PhonePe token request rejected",
                provider=Provider.PHONEPE,
                status_code=response.status_code,
            )

        body: dict[str, Any] = response.json()
        token = body.get("accessToken") or body.get("access_token")
        if not token:
            raise ProviderRequestError(
                "PhonePe token response did not contain an access token",
                provider=Provider.PHONEPE,
            )

        expires_at = _token_expiry(body)
        logger.info(
            "PhonePe access token refreshed",
            extra={
                "provider": Provider.PHONEPE,
                "client_id": self.client_id,
                "expires_in": int(expires_at - time.time()),
                "duration_ms": duration_ms,
            },
        )
        return token, expires_at


def _token_expiry(body: dict[str, Any]) -> float:
    """Absolute expiry (epoch seconds) from ``expiresAt`` or ``expiresIn``."""
    expires_at = body.get("expiresAt") or body.get("expires_at")
    if isinstance(expires_at, (int, float)) and expires_at > 0:
        # Millisecond timestamps are 13 digits
        return expires_at / 1000 if expires_at > 1_000_000_000_000 else float(expires_at)

    expires_in = body.get("expiresIn") or body.get("expires_in")
    if isinstance(expires_in, (int, float)) and expires_in > 0:
        return time.time() + expires_in

    return time.time() + TOKEN_DEFAULT_TTL_SECONDS
