"""
Status poller for payments whose webhook may never arrive.

Every PhonePe attempt registers a PollingJob. A periodic scan queues one
``poll_payment_status`` task per due job; the task claims the job with a
conditional update (the lease), asks the gateway for an authoritative
status through the payments facade and either closes the job or
reschedules it on the backoff schedule.

Tasks:
- scan_due_polling_jobs: Periodic task (every 15 seconds via celery-beat)
- poll_payment_status: Polls a single job

A job that runs out of time is marked ``expired``. Expiry never fails the
Payment: a late webhook can still capture it.

Usage:
    from payments.workers.status_poller import StatusPoller

    poller = StatusPoller()
    job = poller.register_job(payment, "TXN_1700000000000_k3j9x0a2b", 900)

    # Typically called via celery-beat
    scan_due_polling_jobs.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from core.helpers import parse_uuid
from core.services import BaseService

from payments.exceptions import ProviderError, ProviderNotAvailableError
from payments.models import PollingJob
from payments.state_machines import EventSource, PaymentStatus, PollingJobStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from typing import Any

    from orders.models import Order
    from payments.models import Payment

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_POLL_INTERVALS = (15, 30, 60, 120, 240)

# Maximum jobs queued per scan
BATCH_SIZE = 100

# How long a claimed job stays invisible to other workers (seconds)
LEASE_SECONDS = 60

FAILED_PAYMENT_STATUSES = frozenset({PaymentStatus.FAILED, PaymentStatus.CANCELLED})


def _default_verifier(payment_id: str, tenant_id: str, source: str) -> dict[str, Any]:
    # Import here to avoid circular imports
    from payments.services.payments_service import build_payments_service

    return build_payments_service().verify_payment(payment_id, tenant_id, source=source)


def configured_intervals() -> list[int]:
    intervals = getattr(settings, "PAYMENTS_POLL_INTERVALS_SECONDS", None) or DEFAULT_POLL_INTERVALS
    return [int(value) for value in intervals]


# =============================================================================
# Poller
# =============================================================================


class StatusPoller(BaseService):
    """
    Registers, claims and advances polling jobs.

    Args:
        verify_payment: ``(payment_id, tenant_id, source) -> status view``;
            must query the gateway and apply the answer as a verified signal
        intervals: Backoff schedule in seconds; the last entry repeats
        clock: Callable returning "now"
    """

    def __init__(
        self,
        verify_payment: Callable[[str, str, str], dict[str, Any]] | None = None,
        intervals: Sequence[int] | None = None,
        clock: Callable[[], Any] | None = None,
    ):
        self._verify_payment = verify_payment or _default_verifier
        self.intervals = list(intervals or configured_intervals())
        if not self.intervals:
            raise ValueError("At least one polling interval is required")
        self._clock = clock or timezone.now

    # ==========================================================================
    # Registration & queries
    # ==========================================================================

    def register_job(
        self,
        payment: Payment,
        merchant_transaction_id: str,
        expire_after_seconds: int,
        created_at=None,
    ) -> PollingJob:
        """
        Create or reset the polling job of a payment.

        The first poll is due one interval from now; the job expires
        ``expire_after_seconds`` after ``created_at`` (default: now).
        """
        now = self._clock()
        started = created_at or now
        job, created = PollingJob.objects.update_or_create(
            tenant_id=payment.tenant_id,
            payment=payment,
            defaults={
                "order_id": payment.order_id,
                "merchant_transaction_id": merchant_transaction_id or "",
                "status": PollingJobStatus.PENDING,
                "attempt": 0,
                "next_poll_at": now + timedelta(seconds=self.intervals[0]),
                "expire_at": started + timedelta(seconds=expire_after_seconds),
                "last_polled_at": None,
                "last_status": "",
                "last_response_code": "",
                "last_error": "",
                "completed_at": None,
            },
        )
        logger.info(
            "Polling job registered",
            extra={
                "job_id": str(job.id),
                "payment_id": str(payment.id),
                "tenant_id": payment.tenant_id,
                "job_created": created,
                "next_poll_at": job.next_poll_at.isoformat(),
                "expire_at": job.expire_at.isoformat(),
            },
        )
        return job

    def due_jobs(self, now=None, limit: int = BATCH_SIZE) -> list[PollingJob]:
        """Pending jobs whose ``next_poll_at`` has passed, oldest first."""
        now = now or self._clock()
        return list(
            PollingJob.objects.filter(
                status=PollingJobStatus.PENDING,
                next_poll_at__lte=now,
            ).order_by("next_poll_at")[:limit]
        )

    @staticmethod
    def latest_job_for_order(order: Order) -> PollingJob | None:
        return order.polling_jobs.order_by("-created_at").first()

    # ==========================================================================
    # Processing
    # ==========================================================================

    def process_job(self, job_id: Any) -> dict[str, Any]:
        """
        Poll one job if it is still due.

        Returns:
            Dict with ``status``: one of "not_found", "skipped", "not_due",
            "lease_lost", "expired", "completed", "failed", "rescheduled"
        """
        job_uuid = parse_uuid(str(job_id))
        job = PollingJob.objects.filter(pk=job_uuid).first() if job_uuid else None
        if job is None:
            logger.warning("Polling job not found", extra={"job_id": str(job_id)})
            return {"status": "not_found", "job_id": str(job_id)}

        now = self._clock()
        if not job.is_pending:
            return {"status": "skipped", "job_id": str(job.id), "job_status": job.status}
        if job.next_poll_at > now:
            return {"status": "not_due", "job_id": str(job.id)}

        if not self._claim(job, now):
            logger.info("Polling job claimed elsewhere", extra={"job_id": str(job.id)})
            return {"status": "lease_lost", "job_id": str(job.id)}

        if job.is_expired_at(now):
            self.mark_expired(job, "Polling window elapsed")
            return {"status": "expired", "job_id": str(job.id)}

        try:
            view = self._verify_payment(str(job.payment_id), job.tenant_id, EventSource.POLL)
        except (ProviderError, ProviderNotAvailableError) as e:
            logger.warning(
                "Status poll failed",
                extra={
                    "job_id": str(job.id),
                    "payment_id": str(job.payment_id),
                    "error_code": e.error_code,
                    "error": e.message,
                },
            )
            return self._reschedule(
                job,
                now,
                last_status=job.last_status,
                response_code=getattr(e, "provider_code", None) or e.error_code,
                error=e.message,
            )

        current = PollingJob.objects.filter(pk=job.pk).values_list("status", flat=True).first()
        if current != PollingJobStatus.PENDING:
            return {"status": "skipped", "job_id": str(job.id), "job_status": current}

        status = view.get("status") or ""
        response_code = view.get("responseCode") or ""
        if status == PaymentStatus.CAPTURED:
            self._close(job, PollingJobStatus.COMPLETED, now, status, response_code)
            return {"status": "completed", "job_id": str(job.id)}
        if status in FAILED_PAYMENT_STATUSES:
            self._close(job, PollingJobStatus.FAILED, now, status, response_code)
            return {"status": "failed", "job_id": str(job.id)}
        return self._reschedule(job, now, last_status=status, response_code=response_code)

    def mark_expired(self, job: PollingJob, reason: str, last_status: str | None = None) -> PollingJob:
        """Stop polling; the attempt and last observed status are kept unless overridden."""
        now = self._clock()
        job.status = PollingJobStatus.EXPIRED
        job.last_error = reason
        job.completed_at = now
        if last_status is not None:
            job.last_status = last_status
        job.save(update_fields=["status", "last_error", "last_status", "completed_at", "updated_at"])
        logger.info(
            "Polling job expired",
            extra={"job_id": str(job.id), "payment_id": str(job.payment_id), "reason": reason},
        )
        return job

    def close_for_payment(self, payment: Payment, status: str, last_status: str = "") -> int:
        """Close the pending job of a payment settled outside the poller."""
        now = self._clock()
        return PollingJob.objects.filter(
            tenant_id=payment.tenant_id,
            payment=payment,
            status=PollingJobStatus.PENDING,
        ).update(
            status=status,
            last_status=last_status,
            completed_at=now,
            updated_at=now,
        )

    # ==========================================================================
    # Internals
    # ==========================================================================

    @staticmethod
    def _claim(job: PollingJob, now) -> bool:
        # Moving next_poll_at forward is the lease: only one worker matches
        # the old value.
        claimed = PollingJob.objects.filter(
            pk=job.pk,
            status=PollingJobStatus.PENDING,
            next_poll_at=job.next_poll_at,
        ).update(next_poll_at=now + timedelta(seconds=LEASE_SECONDS), updated_at=now)
        return claimed == 1

    def _close(self, job: PollingJob, status: str, now, last_status: str, response_code: str) -> None:
        job.status = status
        job.attempt += 1
        job.last_polled_at = now
        job.last_status = last_status
        job.last_response_code = response_code or ""
        job.last_error = ""
        job.completed_at = now
        job.save(
            update_fields=[
                "status",
                "attempt",
                "last_polled_at",
                "last_status",
                "last_response_code",
                "last_error",
                "completed_at",
                "updated_at",
            ]
        )
        logger.info(
            "Polling job closed",
            extra={"job_id": str(job.id), "payment_id": str(job.payment_id), "status": status},
        )

    def _reschedule(
        self,
        job: PollingJob,
        now,
        last_status: str,
        response_code: str = "",
        error: str = "",
    ) -> dict[str, Any]:
        job.attempt += 1
        job.last_polled_at = now
        job.last_status = last_status or ""
        job.last_response_code = response_code or ""
        job.last_error = error

        remaining = (job.expire_at - now).total_seconds()
        if remaining <= 0:
            job.status = PollingJobStatus.EXPIRED
            job.completed_at = now
            job.save()
            logger.info("Polling job expired", extra={"job_id": str(job.id)})
            return {"status": "expired", "job_id": str(job.id)}

        interval = self.intervals[min(job.attempt, len(self.intervals) - 1)]
        job.next_poll_at = now + timedelta(seconds=min(interval, remaining))
        job.save()
        logger.info(
            "Polling job rescheduled",
            extra={
                "job_id": str(job.id),
                "attempt": job.attempt,
                "last_status": job.last_status,
                "next_poll_at": job.next_poll_at.isoformat(),
            },
        )
        return {
            "status": "rescheduled",
            "job_id": str(job.id),
            "attempt": job.attempt,
            "next_poll_at": job.next_poll_at.isoformat(),
        }


# =============================================================================
# Celery Tasks
# =============================================================================


@shared_task(bind=True)
def scan_due_polling_jobs(self) -> dict:
    """
    Queue a poll for every due job.

    Returns:
        Dict with queued_count
    """
    poller = StatusPoller()
    queued_count = 0
    for job in poller.due_jobs():
        poll_payment_status.delay(str(job.id))
        queued_count += 1

    if queued_count:
        logger.info(
            f"Polling scan complete: queued {queued_count} jobs",
            extra={"queued_count": queued_count},
        )
    return {"queued_count": queued_count}


@shared_task(bind=True, acks_late=True)
def poll_payment_status(self, job_id: str) -> dict:
    """Poll a single job; see StatusPoller.process_job for the result."""
    return StatusPoller().process_job(job_id)


__all__ = [
    "StatusPoller",
    "poll_payment_status",
    "scan_due_polling_jobs",
]
