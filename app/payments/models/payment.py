"""
Payment model: one gateway-side attempt to collect funds for an Order.

Every mutation of ``status`` goes through the transition service
(payments.services.status_transition), which holds a row lock on the
Payment while it evaluates the FSM rules below. The FSM field is
protected so a stray assignment cannot bypass them.

Usage:
    from payments.models import Payment

    payment = Payment.objects.create(
        tenant_id="default",
        order=order,
        provider="phonepe",
        environment="test",
        provider_transaction_id="TXN_1700000000000_123456789",
        amount_authorized_minor=order.amount_minor,
        currency=order.currency,
        method_kind="upi",
    )

    latest = Payment.objects.filter(order=order).latest_first().first()
"""

from __future__ import annotations

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.db.models import F
from django.db.models.functions import Coalesce
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import TenantScopedMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import (
    NON_TERMINAL_PAYMENT_STATUSES,
    TERMINAL_PAYMENT_STATUSES,
    Environment,
    MethodKind,
    PaymentStatus,
)


class PaymentQuerySet(models.QuerySet):
    def latest_first(self):
        """
        Order attempts newest first.

        Most recent ``updated_at`` wins, falling back to ``created_at``;
        ``id`` breaks remaining ties so the order is deterministic.
        """
        return self.annotate(
            _activity_at=Coalesce("updated_at", "created_at"),
        ).order_by(F("_activity_at").desc(), "-created_at", "-id")

    def captured(self):
        return self.filter(status=PaymentStatus.CAPTURED)

    def for_tenant(self, tenant_id: str):
        return self.filter(tenant_id=tenant_id)


class Payment(UUIDPrimaryKeyMixin, TenantScopedMixin, BaseModel):
    """
    A single attempt to collect funds from a buyer through a gateway.

    State Flow:
        CREATED -> PROCESSING -> CAPTURED
        CREATED -> REQUIRES_ACTION -> PROCESSING -> AUTHORIZED -> CAPTURED
        any non-terminal -> FAILED / CANCELLED

    Terminal states (CAPTURED, FAILED, CANCELLED) have no outgoing
    transition, so replayed or late signals cannot move them.

    Fields:
        order: The Order this attempt pays for
        provider/environment: Gateway tag and test/live switch
        provider_*_id: Gateway identifiers (payment, order, transaction, reference)
        status: Current FSM state
        amount_*_minor: Authorized, captured and refunded totals
        method_kind: card, upi, netbanking or wallet
        upi_*: Payer handle, UTR and instrument variant, stored masked
        failure_code/failure_message: Gateway failure detail
        expires_at: When the gateway-side attempt stops being payable
        version: Incremented on every update

    Note:
        At most one captured UPI payment may exist per order; the partial
        unique constraint enforces it in the database.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Order this payment attempt belongs to",
    )

    # ==========================================================================
    # Provider
    # ==========================================================================

    provider = models.CharField(
        max_length=32,
        db_index=True,
        help_text="Provider tag (phonepe, stripe)",
    )

    environment = models.CharField(
        max_length=8,
        choices=Environment.choices,
        default=Environment.TEST,
    )

    provider_payment_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Gateway payment id (pi_xxx, PhonePe transactionId)",
    )

    provider_order_id = models.CharField(max_length=255, null=True, blank=True)

    provider_transaction_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Merchant transaction id sent to the gateway",
    )

    provider_reference_id = models.CharField(max_length=255, null=True, blank=True)

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PaymentStatus.CREATED,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the attempt (managed by FSM)",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    amount_authorized_minor = models.PositiveBigIntegerField(
        help_text="Amount requested from the buyer in minor units",
    )

    amount_captured_minor = models.PositiveBigIntegerField(default=0)

    amount_refunded_minor = models.PositiveBigIntegerField(
        default=0,
        help_text="Sum of succeeded refunds, always recomputed from the refund set",
    )

    currency = models.CharField(max_length=3, default="INR")

    # ==========================================================================
    # Method details (masked)
    # ==========================================================================

    method_kind = models.CharField(
        max_length=16,
        choices=MethodKind.choices,
        default=MethodKind.UPI,
    )

    upi_payer_handle = models.CharField(max_length=255, blank=True, default="")
    upi_utr = models.CharField(max_length=64, blank=True, default="")
    upi_instrument_variant = models.CharField(max_length=32, blank=True, default="")

    receipt_url = models.URLField(max_length=1024, blank=True, default="")

    # ==========================================================================
    # Failure & expiry
    # ==========================================================================

    failure_code = models.CharField(max_length=64, blank=True, default="")
    failure_message = models.TextField(blank=True, default="")

    expires_at = models.DateTimeField(null=True, blank=True)

    captured_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    version = models.PositiveIntegerField(
        default=1,
        help_text="Incremented on each save",
    )

    objects = PaymentQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(fields=["tenant_id", "order"], name="payment_tenant_order_idx"),
            models.Index(fields=["tenant_id", "status"], name="payment_tenant_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "provider_payment_id"],
                condition=models.Q(provider_payment_id__isnull=False),
                name="payment_provider_payment_id_unique",
            ),
            models.UniqueConstraint(
                fields=["order"],
                condition=models.Q(
                    method_kind=MethodKind.UPI,
                    status=PaymentStatus.CAPTURED,
                ),
                name="payment_single_captured_upi_per_order",
            ),
            models.CheckConstraint(
                condition=models.Q(amount_authorized_minor__gt=0),
                name="payment_amount_authorized_positive",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_authorized_minor / 100:.2f} {self.currency}"
        return f"Payment({self.id}, {self.provider}, {self.status}, {amount_display})"

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

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PAYMENT_STATUSES

    @property
    def is_captured(self) -> bool:
        return self.status == PaymentStatus.CAPTURED

    @property
    def has_provider_reference(self) -> bool:
        return bool(self.provider_payment_id or self.provider_transaction_id)

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[PaymentStatus.CREATED, PaymentStatus.REQUIRES_ACTION],
        target=PaymentStatus.PROCESSING,
    )
    def mark_processing(self):
        """
        Record that the buyer is paying.

        Transition: CREATED/REQUIRES_ACTION -> PROCESSING

        The only transition an unverified signal may trigger.
        """

    @transition(
        field=status,
        source=[PaymentStatus.CREATED, PaymentStatus.PROCESSING],
        target=PaymentStatus.REQUIRES_ACTION,
    )
    def require_action(self):
        """Transition: CREATED/PROCESSING -> REQUIRES_ACTION (3DS, app approval)."""

    @transition(
        field=status,
        source=[
            PaymentStatus.CREATED,
            PaymentStatus.PROCESSING,
            PaymentStatus.REQUIRES_ACTION,
        ],
        target=PaymentStatus.AUTHORIZED,
    )
    def authorize(self):
        """Transition: CREATED/PROCESSING/REQUIRES_ACTION -> AUTHORIZED."""

    @transition(
        field=status,
        source=NON_TERMINAL_PAYMENT_STATUSES,
        target=PaymentStatus.CAPTURED,
    )
    def capture(self, amount_minor: int | None = None):
        """
        Mark funds as collected.

        Transition: any non-terminal -> CAPTURED

        Args:
            amount_minor: Captured amount; defaults to the authorized amount
        """
        self.amount_captured_minor = (
            amount_minor if amount_minor is not None else self.amount_authorized_minor
        )
        self.captured_at = timezone.now()
        self.failure_code = ""
        self.failure_message = ""

    @transition(
        field=status,
        source=NON_TERMINAL_PAYMENT_STATUSES,
        target=PaymentStatus.FAILED,
    )
    def fail(self, code: str | None = None, message: str | None = None):
        """
        Mark the attempt as failed.

        Transition: any non-terminal -> FAILED
        """
        self.failed_at = timezone.now()
        if code:
            self.failure_code = code[:64]
        if message:
            self.failure_message = message

    @transition(
        field=status,
        source=NON_TERMINAL_PAYMENT_STATUSES,
        target=PaymentStatus.CANCELLED,
    )
    def cancel(self, code: str | None = None, message: str | None = None):
        """
        Cancel the attempt (buyer abandoned, gateway timed out).

        Transition: any non-terminal -> CANCELLED
        """
        self.cancelled_at = timezone.now()
        if code:
            self.failure_code = code[:64]
        if message:
            self.failure_message = message
