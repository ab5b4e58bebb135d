"""
Refund model for tracking money returned to buyers.

A Refund returns part or all of a captured Payment. One Payment can have
several refunds; the Payment's ``amount_refunded_minor`` is always
recomputed from the succeeded ones rather than incremented.

Usage:
    from payments.models import Refund

    refund = Refund.objects.create(
        tenant_id="default",
        payment=payment,
        provider=payment.provider,
        merchant_refund_id="RFD_1700000000000_123456789",
        amount_minor=300,
        currency=payment.currency,
    )

    # After the gateway confirms the refund
    refund.succeed()
    refund.save()
"""

from __future__ import annotations

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import TenantScopedMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import TERMINAL_REFUND_STATUSES, RefundStatus

OPEN_REFUND_STATUSES = [RefundStatus.PENDING, RefundStatus.PROCESSING]


class Refund(UUIDPrimaryKeyMixin, TenantScopedMixin, BaseModel):
    """
    Represents money returned to a buyer.

    State Flow:
        PENDING -> PROCESSING -> SUCCEEDED
        PENDING/PROCESSING -> FAILED
        PENDING/PROCESSING -> CANCELLED

    Fields:
        payment: Source Payment being refunded
        provider: Gateway tag, copied from the payment
        provider_refund_id: Gateway refund id (re_xxx, PhonePe transactionId)
        merchant_refund_id: Our refund reference sent to the gateway
        amount_minor: Refund amount in minor units
        status: Current FSM state
        upi_utr: Bank reference of the refund transfer (masked)
        reason: Buyer/admin-facing refund reason
        failure_message: Gateway error when the refund failed
    """

    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        related_name="refunds",
    )

    provider = models.CharField(max_length=32)

    provider_refund_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Gateway refund id",
    )

    merchant_refund_id = models.CharField(
        max_length=255,
        help_text="Refund reference generated by us and sent to the gateway",
    )

    amount_minor = models.PositiveBigIntegerField(
        help_text="Refund amount in smallest currency unit",
    )

    currency = models.CharField(max_length=3, default="INR")

    status = FSMField(
        default=RefundStatus.PENDING,
        choices=RefundStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the refund (managed by FSM)",
    )

    upi_utr = models.CharField(max_length=64, blank=True, default="")
    reason = models.TextField(blank=True, default="")
    failure_message = models.TextField(blank=True, default="")

    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    version = models.PositiveIntegerField(default=1)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund"
        verbose_name_plural = "Refunds"
        indexes = [
            models.Index(fields=["payment", "status"], name="refund_payment_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "provider_refund_id"],
                condition=models.Q(provider_refund_id__isnull=False),
                name="refund_provider_refund_id_unique",
            ),
            models.UniqueConstraint(
                fields=["payment", "merchant_refund_id"],
                name="refund_merchant_refund_id_unique",
            ),
            models.CheckConstraint(
                condition=models.Q(amount_minor__gt=0),
                name="refund_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_minor / 100:.2f} {self.currency}"
        return f"Refund({self.id}, {self.status}, {amount_display})"

    def save(self, *args, **kwargs):
        """Save with version auto-increment on update."""
        is_update = self.pk and not self._state.adding and not kwargs.get(
            "force_insert", False
        )
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=RefundStatus.PENDING,
        target=RefundStatus.PROCESSING,
    )
    def process(self):
        """Transition: PENDING -> PROCESSING (gateway accepted the request)."""

    @transition(
        field=status,
        source=OPEN_REFUND_STATUSES,
        target=RefundStatus.SUCCEEDED,
    )
    def succeed(self):
        """
        Mark refund as completed.

        Transition: PENDING/PROCESSING -> SUCCEEDED
        """
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=OPEN_REFUND_STATUSES,
        target=RefundStatus.FAILED,
    )
    def fail(self, message: str | None = None):
        """
        Mark refund as failed.

        Transition: PENDING/PROCESSING -> FAILED
        """
        self.failed_at = timezone.now()
        if message:
            self.failure_message = message

    @transition(
        field=status,
        source=OPEN_REFUND_STATUSES,
        target=RefundStatus.CANCELLED,
    )
    def cancel(self):
        """Transition: PENDING/PROCESSING -> CANCELLED."""

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REFUND_STATUSES

    @property
    def counts_against_capture(self) -> bool:
        """Whether the refund reserves part of the captured amount."""
        return self.status not in (RefundStatus.FAILED, RefundStatus.CANCELLED)
