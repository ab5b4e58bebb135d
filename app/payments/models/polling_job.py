"""
PollingJob model: scheduled status queries for one Payment.

Usage:
    from payments.models import PollingJob

    due = PollingJob.objects.filter(status="pending", next_poll_at__lte=now)
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import TenantScopedMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import PollingJobStatus


class PollingJob(UUIDPrimaryKeyMixin, TenantScopedMixin, BaseModel):
    """
    Tracks active status polling for a payment whose webhook may never come.

    A job is due when ``next_poll_at <= now < expire_at``. Registering a job
    for a payment that already has one updates it in place.

    Fields:
        order/payment: What is being polled
        merchant_transaction_id: Identifier sent to the gateway status API
        status: pending, completed, failed or expired
        attempt: Number of polls performed
        next_poll_at: When the job is next due (also used as a claim lease)
        expire_at: Hard deadline; the job expires instead of polling forever
        last_*: Last observed provider status, response code and error
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.PROTECT,
        related_name="polling_jobs",
    )

    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        related_name="polling_jobs",
    )

    merchant_transaction_id = models.CharField(max_length=255, blank=True, default="")

    status = models.CharField(
        max_length=16,
        choices=PollingJobStatus.choices,
        default=PollingJobStatus.PENDING,
        db_index=True,
    )

    attempt = models.PositiveIntegerField(default=0)

    next_poll_at = models.DateTimeField(db_index=True)

    expire_at = models.DateTimeField()

    last_polled_at = models.DateTimeField(null=True, blank=True)
    last_status = models.CharField(max_length=32, blank=True, default="")
    last_response_code = models.CharField(max_length=64, blank=True, default="")
    last_error = models.TextField(blank=True, default="")

    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Polling Job"
        verbose_name_plural = "Polling Jobs"
        indexes = [
            models.Index(fields=["status", "next_poll_at"], name="polling_job_due_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant_id", "payment"],
                name="polling_job_payment_unique",
            ),
        ]

    def __str__(self) -> str:
        return f"PollingJob({self.payment_id}, {self.status}, attempt={self.attempt})"

    @property
    def is_pending(self) -> bool:
        return self.status == PollingJobStatus.PENDING

    def is_expired_at(self, now=None) -> bool:
        return (now or timezone.now()) >= self.expire_at
