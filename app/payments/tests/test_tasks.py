"""
Tests for the payments housekeeping tasks.
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from payments.models import IdempotencyKey, WebhookInbox
from payments.tasks import cleanup_idempotency_keys, cleanup_webhook_inbox
from payments.tests.factories import IdempotencyKeyFactory, WebhookInboxFactory


def age(model, instance, days):
    model.objects.filter(pk=instance.pk).update(created_at=timezone.now() - timedelta(days=days))


@pytest.mark.django_db
class TestCleanupIdempotencyKeys:
    def test_deletes_keys_past_retention(self):
        old = IdempotencyKeyFactory()
        recent = IdempotencyKeyFactory()
        age(IdempotencyKey, old, 45)
        age(IdempotencyKey, recent, 2)

        result = cleanup_idempotency_keys()

        assert result == {"deleted_count": 1}
        assert list(IdempotencyKey.objects.values_list("pk", flat=True)) == [recent.pk]

    def test_days_override(self):
        key = IdempotencyKeyFactory()
        age(IdempotencyKey, key, 10)

        assert cleanup_idempotency_keys(days=7) == {"deleted_count": 1}

    def test_retention_from_settings(self, settings):
        settings.PAYMENTS_IDEMPOTENCY_RETENTION_DAYS = 60
        key = IdempotencyKeyFactory()
        age(IdempotencyKey, key, 45)

        assert cleanup_idempotency_keys() == {"deleted_count": 0}


@pytest.mark.django_db
class TestCleanupWebhookInbox:
    def test_deletes_processed_entries_past_retention(self):
        now = timezone.now()
        WebhookInboxFactory(processed_at=now - timedelta(days=45))
        kept = WebhookInboxFactory(processed_at=now - timedelta(days=1))
        unprocessed = WebhookInboxFactory(verified=False, processed_at=None)

        result = cleanup_webhook_inbox()

        assert result == {"deleted_count": 1}
        assert set(WebhookInbox.objects.values_list("pk", flat=True)) == {kept.pk, unprocessed.pk}

    def test_days_override(self):
        WebhookInboxFactory(processed_at=timezone.now() - timedelta(days=10))

        assert cleanup_webhook_inbox(days=7) == {"deleted_count": 1}
