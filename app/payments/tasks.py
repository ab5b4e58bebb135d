"""
Celery tasks for payment housekeeping.

This module provides async tasks for:
- Removing expired idempotency keys
- Removing processed webhook inbox entries

Polling tasks live in payments.workers.status_poller and are re-exported
here so Celery autodiscover finds them.

Usage:
    # Typically called via celery-beat (daily)
    from payments.tasks import cleanup_idempotency_keys
    cleanup_idempotency_keys.delay()
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.conf import settings

from payments.services.idempotency import IdempotencyLedger
from payments.webhooks.router import WebhookRouter

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_RETENTION_DAYS = 30


# =============================================================================
# Cleanup Tasks
# =============================================================================


@shared_task
def cleanup_idempotency_keys(days: int | None = None) -> dict:
    """
    Delete idempotency keys older than the retention horizon.

    Args:
        days: Override for PAYMENTS_IDEMPOTENCY_RETENTION_DAYS

    Returns:
        Dict with count of keys deleted
    """
    days = days or getattr(settings, "PAYMENTS_IDEMPOTENCY_RETENTION_DAYS", DEFAULT_RETENTION_DAYS)
    deleted_count = IdempotencyLedger().cleanup_expired(days)

    if deleted_count > 0:
        logger.info(
            f"Deleted {deleted_count} idempotency keys",
            extra={"deleted_count": deleted_count, "days": days},
        )
    return {"deleted_count": deleted_count}


@shared_task
def cleanup_webhook_inbox(days: int | None = None) -> dict:
    """
    Delete processed webhook inbox entries older than the retention horizon.

    Unverified and unprocessed entries are kept for investigation.

    Args:
        days: Override for PAYMENTS_WEBHOOK_RETENTION_DAYS

    Returns:
        Dict with count of entries deleted
    """
    days = days or getattr(settings, "PAYMENTS_WEBHOOK_RETENTION_DAYS", DEFAULT_RETENTION_DAYS)
    deleted_count = WebhookRouter().cleanup(days)

    if deleted_count > 0:
        logger.info(
            f"Deleted {deleted_count} webhook inbox entries",
            extra={"deleted_count": deleted_count, "days": days},
        )
    return {"deleted_count": deleted_count}


# =============================================================================
# Re-exported Worker Tasks
# =============================================================================

from payments.workers.status_poller import (  # noqa: E402, F401
    poll_payment_status,
    scan_due_polling_jobs,
)
