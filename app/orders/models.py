"""
Order model and its status transition tables.

An Order carries two independent status fields:

    status          - fulfilment view of the order
    payment_status  - collection view of the order

Neither field is assigned directly by business code. Every change goes
through ``transition_status()`` / ``transition_payment_status()``, which
consult ORDER_STATUS_TRANSITIONS and ORDER_PAYMENT_STATUS_TRANSITIONS.
"Paid" is represented as ``status=confirmed`` with ``payment_status=paid``.

Usage:
    from orders.models import Order

    order = Order.objects.select_for_update().get(pk=order_id, tenant_id=tenant_id)
    if order.mark_paid():
        order.save()
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import TenantScopedMixin, UUIDPrimaryKeyMixin
from core.models import BaseModel

from orders.exceptions import OrderTransitionError


class OrderStatus(models.TextChoices):
    """Fulfilment status of an order."""

    PENDING = "pending", "Pending"
    CONFIRMED = "confirmed", "Confirmed"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"
    REFUNDED = "refunded", "Refunded"
    CANCELLED = "cancelled", "Cancelled"


class OrderPaymentStatus(models.TextChoices):
    """Collection status of an order."""

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"


class OrderPaymentMethod(models.TextChoices):
    """Payment method chosen at checkout."""

    UPI = "upi", "UPI"
    PHONEPE = "phonepe", "PhonePe"
    CARD = "card", "Card"
    NETBANKING = "netbanking", "Net Banking"
    WALLET = "wallet", "Wallet"
    COD = "cod", "Cash on Delivery"


ORDER_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset(
        {OrderStatus.PARTIALLY_REFUNDED, OrderStatus.REFUNDED}
    ),
    OrderStatus.PARTIALLY_REFUNDED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.REFUNDED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

ORDER_PAYMENT_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    OrderPaymentStatus.PENDING: frozenset(
        {
            OrderPaymentStatus.PROCESSING,
            OrderPaymentStatus.PAID,
            OrderPaymentStatus.FAILED,
        }
    ),
    OrderPaymentStatus.PROCESSING: frozenset(
        {OrderPaymentStatus.PAID, OrderPaymentStatus.FAILED}
    ),
    OrderPaymentStatus.FAILED: frozenset(
        {OrderPaymentStatus.PROCESSING, OrderPaymentStatus.PAID}
    ),
    # paid is never regressed
    OrderPaymentStatus.PAID: frozenset(),
}

UPI_PAYMENT_METHODS = frozenset({OrderPaymentMethod.UPI, OrderPaymentMethod.PHONEPE})


class Order(UUIDPrimaryKeyMixin, TenantScopedMixin, BaseModel):
    """
    Aggregate purchase paid for by one or more payment attempts.

    Fields:
        currency: ISO 4217 code (upper case)
        amount_minor: Amount due in minor units (paise, cents)
        subtotal/discount/shipping/tax/total_minor: Price breakdown
        status: Fulfilment status (see ORDER_STATUS_TRANSITIONS)
        payment_status: Collection status (see ORDER_PAYMENT_STATUS_TRANSITIONS)
        payment_failed_at: When the latest attempt failed, cleared on retry/paid
        payment_method: Method chosen at checkout
        customer_*: Contact details forwarded to gateways

    Note:
        Rows are never deleted. Only the payments projector mutates the
        status fields, always inside a transaction holding a row lock.
    """

    # ==========================================================================
    # Amounts
    # ==========================================================================

    currency = models.CharField(
        max_length=3,
        default="INR",
        help_text="ISO 4217 currency code (upper case)",
    )

    amount_minor = models.PositiveBigIntegerField(
        help_text="Amount due in smallest currency unit",
    )

    subtotal_minor = models.PositiveBigIntegerField(default=0)
    discount_minor = models.PositiveBigIntegerField(default=0)
    shipping_minor = models.PositiveBigIntegerField(default=0)
    tax_minor = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Stored tax; derived from the breakdown when empty",
    )
    total_minor = models.PositiveBigIntegerField(default=0)

    # ==========================================================================
    # Status
    # ==========================================================================

    status = models.CharField(
        max_length=32,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
        db_index=True,
    )

    payment_status = models.CharField(
        max_length=32,
        choices=OrderPaymentStatus.choices,
        default=OrderPaymentStatus.PENDING,
        db_index=True,
    )

    payment_failed_at = models.DateTimeField(null=True, blank=True)

    payment_method = models.CharField(
        max_length=32,
        choices=OrderPaymentMethod.choices,
        default=OrderPaymentMethod.UPI,
    )

    # ==========================================================================
    # Customer
    # ==========================================================================

    customer_name = models.CharField(max_length=255, blank=True, default="")
    customer_email = models.EmailField(blank=True, default="")
    customer_phone = models.CharField(max_length=32, blank=True, default="")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Order"
        verbose_name_plural = "Orders"
        indexes = [
            models.Index(fields=["tenant_id", "status"], name="order_tenant_status_idx"),
            models.Index(fields=["tenant_id", "payment_status"], name="order_tenant_pay_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_minor__gt=0),
                name="order_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_minor / 100:.2f} {self.currency}"
        return f"Order({self.id}, {self.status}/{self.payment_status}, {amount_display})"

    # ==========================================================================
    # Transition table access
    # ==========================================================================

    def can_transition_status(self, target: str) -> bool:
        return target in ORDER_STATUS_TRANSITIONS.get(self.status, frozenset())

    def can_transition_payment_status(self, target: str) -> bool:
        return target in ORDER_PAYMENT_STATUS_TRANSITIONS.get(
            self.payment_status, frozenset()
        )

    def transition_status(self, target: str) -> None:
        """
        Move ``status`` to ``target``.

        Raises:
            OrderTransitionError: If the table does not list the change
        """
        if not self.can_transition_status(target):
            raise OrderTransitionError(
                f"Cannot move order from '{self.status}' to '{target}'",
                details={"field": "status", "current": self.status, "target": target},
            )
        self.status = target

    def transition_payment_status(self, target: str) -> None:
        """
        Move ``payment_status`` to ``target``.

        Raises:
            OrderTransitionError: If the table does not list the change
        """
        if not self.can_transition_payment_status(target):
            raise OrderTransitionError(
                f"Cannot move order payment from '{self.payment_status}' to '{target}'",
                details={
                    "field": "payment_status",
                    "current": self.payment_status,
                    "target": target,
                },
            )
        self.payment_status = target

    # ==========================================================================
    # Projector operations
    # ==========================================================================
    # Each returns True when a field changed; callers save only then.

    @property
    def is_paid(self) -> bool:
        return self.payment_status == OrderPaymentStatus.PAID

    @property
    def uses_upi(self) -> bool:
        return self.payment_method in UPI_PAYMENT_METHODS

    def mark_paid(self) -> bool:
        """
        Record a verified capture.

        payment_status -> paid, and a pending order becomes confirmed.
        """
        if self.is_paid:
            return False
        self.transition_payment_status(OrderPaymentStatus.PAID)
        self.payment_failed_at = None
        if self.can_transition_status(OrderStatus.CONFIRMED):
            self.transition_status(OrderStatus.CONFIRMED)
        return True

    def mark_payment_failed(self, failed_at=None) -> bool:
        """Record a failed attempt unless the order is already paid."""
        if self.is_paid:
            return False
        if self.payment_status != OrderPaymentStatus.FAILED:
            self.transition_payment_status(OrderPaymentStatus.FAILED)
        self.payment_failed_at = failed_at or timezone.now()
        return True

    def mark_payment_processing(self) -> bool:
        """Record a fresh attempt (retry) unless the order is already paid."""
        if self.is_paid or self.payment_status == OrderPaymentStatus.PROCESSING:
            return False
        self.transition_payment_status(OrderPaymentStatus.PROCESSING)
        self.payment_failed_at = None
        return True

    def apply_refund_totals(self, captured_minor: int, refunded_minor: int) -> bool:
        """
        Reflect refunded totals in ``status``.

        Fully refunded when refunded >= captured, partially refunded when
        some but not all of the captured amount was returned.
        """
        if captured_minor <= 0 or refunded_minor <= 0:
            return False
        target = (
            OrderStatus.REFUNDED
            if refunded_minor >= captured_minor
            else OrderStatus.PARTIALLY_REFUNDED
        )
        if target == self.status or not self.can_transition_status(target):
            return False
        self.transition_status(target)
        return True

    # ==========================================================================
    # Derived values
    # ==========================================================================

    @property
    def effective_tax_minor(self) -> int:
        """Stored tax, or ``max(total - shipping - (subtotal - discount), 0)``."""
        if self.tax_minor is not None:
            return self.tax_minor
        net_items = self.subtotal_minor - self.discount_minor
        return max(self.total_minor - self.shipping_minor - net_items, 0)
