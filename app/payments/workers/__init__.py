"""
Workers for async payment processing.

This module contains Celery tasks for background payment operations:
- StatusPoller: Polls the gateway for payments whose webhook has not arrived

Usage:
    from payments.workers import scan_due_polling_jobs, poll_payment_status

    scan_due_polling_jobs.delay()
    poll_payment_status.delay(str(job_id))
"""

from payments.workers.status_poller import (
    StatusPoller,
    poll_payment_status,
    scan_due_polling_jobs,
)

__all__ = [
    "StatusPoller",
    "poll_payment_status",
    "scan_due_polling_jobs",
]
