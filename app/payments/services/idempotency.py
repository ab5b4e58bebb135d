"""
Idempotency ledger for payment operations.

Retried client requests (network retries, double clicks) must replay the
first result instead of creating a second payment or refund. The ledger
claims a key by inserting an ``in_progress`` row; the unique
``(tenant_id, scope, key)`` constraint guarantees exactly one caller wins
the claim, so there is no read-then-write race.

Outcomes for a claim:
    - Inserted: run the operation, store its response (``completed``)
    - Exists, completed, same request hash: replay the stored response
    - Exists, completed, different hash: IdempotencyConflictError
    - Exists, in progress: IdempotencyInProgressError

Usage:
    from payments.services.idempotency import IdempotencyLedger

    ledger = IdempotencyLedger()
    result = ledger.execute(
        tenant_id="default",
        scope="create_payment",
        key=request.headers["Idempotency-Key"],
        request_payload=serializer.validated_data,
        operation=lambda: create_attempt(...),
    )
    result.response   # dict, identical on every replay
    result.replayed   # True when served from the ledger
"""

from __future__ import annotations

import json
import secrets
import string
import time
from collections import Counter
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.db.models import Max, Min
from django.utils import timezone

from core.helpers import canonical_json, sha256_hex
from core.services import BaseService

from payments.exceptions import IdempotencyConflictError, IdempotencyInProgressError
from payments.models import IdempotencyKey
from payments.state_machines import IdempotencyState

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

_KEY_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class IdempotentResult:
    """Response of an idempotent operation and whether it was replayed."""

    response: dict[str, Any]
    replayed: bool


def request_hash(payload: Any) -> str:
    """sha256 of the canonical JSON form of a request payload."""
    return sha256_hex(canonical_json(payload))


def _json_safe(value: Any) -> Any:
    # Normalise through JSON so a first response and its replay compare equal.
    return json.loads(json.dumps(value, default=str))


class IdempotencyLedger(BaseService):
    """
    Durable key -> response cache scoped by tenant and operation.

    Instances are cheap and stateless apart from the injected clock.
    """

    def __init__(self, clock: Callable[[], Any] | None = None):
        self._clock = clock or timezone.now

    # ==========================================================================
    # Execution
    # ==========================================================================

    def execute(
        self,
        tenant_id: str,
        scope: str,
        key: str,
        request_payload: Any,
        operation: Callable[[], dict[str, Any]],
    ) -> IdempotentResult:
        """
        Run ``operation`` once per (tenant, scope, key).

        Raises:
            IdempotencyConflictError: Key reused with a different payload
            IdempotencyInProgressError: The original request is still running
            Exception: Whatever ``operation`` raised; the claim is released
                so the client can retry with the same key
        """
        logger = self.get_logger()
        digest = request_hash(request_payload)

        claimed = self._claim(tenant_id, scope, key, digest)
        if claimed is None:
            existing = IdempotencyKey.objects.get(tenant_id=tenant_id, scope=scope, key=key)
            return self._replay(existing, digest)

        try:
            response = _json_safe(operation())
        except Exception:
            IdempotencyKey.objects.filter(pk=claimed.pk).delete()
            logger.info(
                "Idempotent operation failed, claim released",
                extra={"tenant_id": tenant_id, "scope": scope, "key": key},
            )
            raise

        now = self._clock()
        IdempotencyKey.objects.filter(pk=claimed.pk).update(
            state=IdempotencyState.COMPLETED,
            response=response,
            completed_at=now,
            updated_at=now,
        )
        logger.debug(
            "Idempotent operation completed",
            extra={"tenant_id": tenant_id, "scope": scope, "key": key},
        )
        return IdempotentResult(response=response, replayed=False)

    def _claim(
        self, tenant_id: str, scope: str, key: str, digest: str
    ) -> IdempotencyKey | None:
        try:
            with transaction.atomic():
                return IdempotencyKey.objects.create(
                    tenant_id=tenant_id,
                    scope=scope,
                    key=key,
                    request_hash=digest,
                    state=IdempotencyState.IN_PROGRESS,
                )
        except IntegrityError:
            return None

    def _replay(self, existing: IdempotencyKey, digest: str) -> IdempotentResult:
        details = {"scope": existing.scope, "key": existing.key}
        if existing.request_hash != digest:
            raise IdempotencyConflictError(
                "Idempotency key was already used with a different request",
                details=details,
            )
        if not existing.is_completed:
            raise IdempotencyInProgressError(
                "A request with this idempotency key is still being processed",
                details=details,
            )
        self.get_logger().info(
            "Replaying stored response",
            extra={"tenant_id": existing.tenant_id, **details},
        )
        return IdempotentResult(response=existing.response, replayed=True)

    # ==========================================================================
    # Lookup & maintenance
    # ==========================================================================

    def lookup(self, tenant_id: str, scope: str, key: str) -> dict[str, Any] | None:
        """Return the stored response of a completed key, or None."""
        record = (
            IdempotencyKey.objects.filter(
                tenant_id=tenant_id,
                scope=scope,
                key=key,
                state=IdempotencyState.COMPLETED,
            )
            .only("response")
            .first()
        )
        return record.response if record else None

    def invalidate(self, tenant_id: str, scope: str, key: str) -> bool:
        """
        Forget a key so the next request with it runs the operation again.

        Used when the cached attempt has expired on the gateway side.
        """
        deleted, _ = IdempotencyKey.objects.filter(
            tenant_id=tenant_id, scope=scope, key=key
        ).delete()
        if deleted:
            self.get_logger().info(
                "Idempotency key invalidated",
                extra={"tenant_id": tenant_id, "scope": scope, "key": key},
            )
        return bool(deleted)

    def generate_key(self, scope: str) -> str:
        """
        Generate a fresh key: ``{scope}_{epoch_ms}_{9 random chars}``.

        Example:
            ledger.generate_key("payment")  # "payment_1700000000000_k3j9x0a2b"
        """
        suffix = "".join(secrets.choice(_KEY_ALPHABET) for _ in range(9))
        return f"{scope}_{int(time.time() * 1000)}_{suffix}"

    def cleanup_expired(self, older_than_days: int) -> int:
        """Delete keys created more than ``older_than_days`` ago."""
        cutoff = self._clock() - timedelta(days=older_than_days)
        deleted, _ = IdempotencyKey.objects.filter(created_at__lt=cutoff).delete()
        self.get_logger().info(
            "Expired idempotency keys removed",
            extra={"deleted": deleted, "older_than_days": older_than_days},
        )
        return deleted

    def stats(self, tenant_id: str | None = None) -> dict[str, Any]:
        """Key counts per scope and state, plus the oldest/newest key."""
        queryset = IdempotencyKey.objects.all()
        if tenant_id:
            queryset = queryset.filter(tenant_id=tenant_id)

        by_scope = Counter(queryset.values_list("scope", flat=True))
        by_state = Counter(queryset.values_list("state", flat=True))
        bounds = queryset.aggregate(oldest=Min("created_at"), newest=Max("created_at"))
        return {
            "totalKeys": sum(by_scope.values()),
            "keysByScope": dict(by_scope),
            "keysByState": dict(by_state),
            "oldestKey": bounds["oldest"].isoformat() if bounds["oldest"] else None,
            "newestKey": bounds["newest"].isoformat() if bounds["newest"] else None,
        }
