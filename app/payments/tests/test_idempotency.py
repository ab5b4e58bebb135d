"""
Tests for the idempotency ledger.

Tests cover:
- First execution and replay
- Conflicting payloads and in-flight keys
- Claim release when the operation raises
- Lookup, invalidation, key generation, cleanup and stats
"""

import re
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from django.utils import timezone

from payments.exceptions import IdempotencyConflictError, IdempotencyInProgressError
from payments.models import IdempotencyKey
from payments.services.idempotency import IdempotencyLedger, request_hash
from payments.state_machines import IdempotencyState
from payments.tests.factories import IdempotencyKeyFactory


@pytest.fixture
def ledger():
    return IdempotencyLedger()


# =============================================================================
# Execution
# =============================================================================


@pytest.mark.django_db
class TestExecute:
    """Tests for IdempotencyLedger.execute()."""

    def test_first_call_runs_operation(self, ledger):
        operation = MagicMock(return_value={"success": True, "data": {"id": 1}})

        result = ledger.execute("default", "create_payment", "k1", {"a": 1}, operation)

        assert result.replayed is False
        assert result.response == {"success": True, "data": {"id": 1}}
        operation.assert_called_once()
        record = IdempotencyKey.objects.get(key="k1")
        assert record.state == IdempotencyState.COMPLETED
        assert record.completed_at is not None

    def test_same_payload_replays_without_running(self, ledger):
        """Should return the stored response for a retried request."""
        ledger.execute("default", "create_payment", "k1", {"a": 1, "b": 2}, lambda: {"n": 1})
        operation = MagicMock(return_value={"n": 2})

        result = ledger.execute("default", "create_payment", "k1", {"b": 2, "a": 1}, operation)

        assert result.replayed is True
        assert result.response == {"n": 1}
        operation.assert_not_called()

    def test_different_payload_conflicts(self, ledger):
        ledger.execute("default", "create_payment", "k1", {"a": 1}, lambda: {"n": 1})

        with pytest.raises(IdempotencyConflictError) as exc_info:
            ledger.execute("default", "create_payment", "k1", {"a": 2}, lambda: {"n": 2})

        assert exc_info.value.http_status == 409

    def test_in_progress_key_is_reported(self, ledger):
        IdempotencyKeyFactory(
            key="k1",
            request_hash=request_hash({"a": 1}),
            state=IdempotencyState.IN_PROGRESS,
            response=None,
            completed_at=None,
        )

        with pytest.raises(IdempotencyInProgressError):
            ledger.execute("default", "create_payment", "k1", {"a": 1}, lambda: {"n": 1})

    def test_failed_operation_releases_claim(self, ledger):
        """Should let the client retry with the same key after an error."""

        def boom():
            raise RuntimeError("gateway down")

        with pytest.raises(RuntimeError):
            ledger.execute("default", "create_payment", "k1", {"a": 1}, boom)

        assert not IdempotencyKey.objects.filter(key="k1").exists()

        result = ledger.execute("default", "create_payment", "k1", {"a": 1}, lambda: {"n": 1})
        assert result.replayed is False

    def test_keys_are_scoped_by_tenant_and_scope(self, ledger):
        ledger.execute("t1", "create_payment", "k1", {"a": 1}, lambda: {"n": 1})

        other_tenant = ledger.execute("t2", "create_payment", "k1", {"a": 2}, lambda: {"n": 2})
        other_scope = ledger.execute("t1", "create_refund", "k1", {"a": 3}, lambda: {"n": 3})

        assert other_tenant.replayed is False
        assert other_scope.replayed is False

    def test_response_is_json_normalised(self, ledger):
        now = timezone.now()

        result = ledger.execute("default", "s", "k1", {}, lambda: {"at": now})

        assert result.response == {"at": str(now)}


# =============================================================================
# Lookup & maintenance
# =============================================================================


@pytest.mark.django_db
class TestMaintenance:
    def test_lookup_returns_completed_response(self, ledger):
        IdempotencyKeyFactory(key="k1", response={"n": 1})

        assert ledger.lookup("default", "create_payment", "k1") == {"n": 1}
        assert ledger.lookup("default", "create_payment", "missing") is None

    def test_invalidate(self, ledger):
        IdempotencyKeyFactory(key="k1")

        assert ledger.invalidate("default", "create_payment", "k1") is True
        assert ledger.invalidate("default", "create_payment", "k1") is False

    def test_generate_key_format(self, ledger):
        key = ledger.generate_key("refund")

        assert re.fullmatch(r"refund_\d{13}_[a-z0-9]{9}", key)
        assert key != ledger.generate_key("refund")

    def test_cleanup_expired(self):
        now = timezone.now()
        ledger = IdempotencyLedger(clock=lambda: now)
        old = IdempotencyKeyFactory()
        fresh = IdempotencyKeyFactory()
        IdempotencyKey.objects.filter(pk=old.pk).update(created_at=now - timedelta(days=10))

        deleted = ledger.cleanup_expired(7)

        assert deleted == 1
        assert list(IdempotencyKey.objects.values_list("pk", flat=True)) == [fresh.pk]

    def test_stats(self, ledger):
        IdempotencyKeyFactory(scope="create_payment")
        IdempotencyKeyFactory(scope="create_refund", state=IdempotencyState.IN_PROGRESS)
        IdempotencyKeyFactory(tenant_id="other")

        stats = ledger.stats("default")

        assert stats["totalKeys"] == 2
        assert stats["keysByScope"] == {"create_payment": 1, "create_refund": 1}
        assert stats["keysByState"] == {"completed": 1, "in_progress": 1}
        assert stats["oldestKey"] is not None

    def test_stats_empty(self, ledger):
        stats = ledger.stats("default")

        assert stats["totalKeys"] == 0
        assert stats["newestKey"] is None
