"""
State enums for payment models.

This module defines all state enums used by payment models with django-fsm,
plus the normalisation of provider status strings onto them.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Payment States:
    created → processing → captured (verified capture only)
    created → requires_action → processing
    created/processing/requires_action → authorized → captured
    any non-terminal → failed / cancelled
    captured, failed, cancelled are terminal

Refund States:
    pending → processing → succeeded
    pending/processing → failed / cancelled

PollingJob States:
    pending → completed (payment captured)
    pending → failed (payment failed or cancelled)
    pending → expired (no resolution before expire_at)
"""

from __future__ import annotations

from django.db import models


class PaymentStatus(models.TextChoices):
    """
    States for the Payment (attempt) lifecycle.

    Terminal states: CAPTURED, FAILED, CANCELLED

    PROCESSING is the interim marker an unverified signal (browser
    return, unsigned ping) is allowed to set. Only a verified signal can
    reach CAPTURED.
    """

    CREATED = "created", "Created"
    PROCESSING = "processing", "Processing"
    REQUIRES_ACTION = "requires_action", "Requires Action"
    AUTHORIZED = "authorized", "Authorized"
    CAPTURED = "captured", "Captured"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


TERMINAL_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.CAPTURED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
)

NON_TERMINAL_PAYMENT_STATUSES = [
    status for status in PaymentStatus.values if status not in TERMINAL_PAYMENT_STATUSES
]


class RefundStatus(models.TextChoices):
    """
    States for the Refund model lifecycle.

    Terminal states: SUCCEEDED, FAILED, CANCELLED
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


TERMINAL_REFUND_STATUSES = frozenset(
    {RefundStatus.SUCCEEDED, RefundStatus.FAILED, RefundStatus.CANCELLED}
)


class PollingJobStatus(models.TextChoices):
    """Lifecycle of a status polling job."""

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    EXPIRED = "expired", "Expired"


class IdempotencyState(models.TextChoices):
    """Whether the operation behind an idempotency key has finished."""

    IN_PROGRESS = "in_progress", "In Progress"
    COMPLETED = "completed", "Completed"


class EventChannel(models.TextChoices):
    """
    Channel of a PaymentEvent.

    SECURITY is kept apart from AUDIT so forged webhooks and amount
    mismatches can be reviewed without the noise of ordinary activity.
    """

    AUDIT = "audit", "Audit"
    SECURITY = "security", "Security"
    LIFECYCLE = "lifecycle", "Lifecycle"


class EventSource(models.TextChoices):
    """Where the evidence behind a PaymentEvent came from."""

    API = "api", "API"
    WEBHOOK = "webhook", "Webhook"
    POLL = "poll", "Poll"
    RETURN = "return", "Browser Return"
    SYSTEM = "system", "System"


class MethodKind(models.TextChoices):
    CARD = "card", "Card"
    UPI = "upi", "UPI"
    NETBANKING = "netbanking", "Net Banking"
    WALLET = "wallet", "Wallet"


class Environment(models.TextChoices):
    TEST = "test", "Test"
    LIVE = "live", "Live"


class Provider(models.TextChoices):
    """Gateways with a registered adapter."""

    PHONEPE = "phonepe", "PhonePe"
    STRIPE = "stripe", "Stripe"


# =============================================================================
# Status normalisation
# =============================================================================

_PAYMENT_STATUS_ALIASES = {
    "completed": PaymentStatus.CAPTURED,
    "captured": PaymentStatus.CAPTURED,
    "success": PaymentStatus.CAPTURED,
    "succeeded": PaymentStatus.CAPTURED,
    "authorized": PaymentStatus.AUTHORIZED,
    "pending": PaymentStatus.PROCESSING,
    "initiated": PaymentStatus.PROCESSING,
    "processing": PaymentStatus.PROCESSING,
    "failed": PaymentStatus.FAILED,
    "failure": PaymentStatus.FAILED,
    "timeout": PaymentStatus.CANCELLED,
    "timed_out": PaymentStatus.CANCELLED,
    "timedout": PaymentStatus.CANCELLED,
    "expired": PaymentStatus.CANCELLED,
    "cancelled": PaymentStatus.CANCELLED,
    "canceled": PaymentStatus.CANCELLED,
}

_REFUND_STATUS_ALIASES = {
    "pending": RefundStatus.PENDING,
    "processing": RefundStatus.PROCESSING,
    "completed": RefundStatus.SUCCEEDED,
    "succeeded": RefundStatus.SUCCEEDED,
    "success": RefundStatus.SUCCEEDED,
    "failed": RefundStatus.FAILED,
    "cancelled": RefundStatus.CANCELLED,
    "canceled": RefundStatus.CANCELLED,
}


def normalize_payment_status(raw) -> str:
    """
    Map a webhook status string onto the shared vocabulary.

    Values outside the alias table (``refunded``, ``partially_refunded``,
    ``created``, unknown strings) are passed through lower-cased; the
    transition service ignores anything that is not a PaymentStatus.
    Non-string input is treated as ``processing``.

    Example:
        normalize_payment_status("COMPLETED")  # "captured"
        normalize_payment_status("TIMED_OUT")  # "cancelled"
        normalize_payment_status(None)         # "processing"
    """
    if not isinstance(raw, str):
        return PaymentStatus.PROCESSING.value
    lowered = raw.strip().lower()
    mapped = _PAYMENT_STATUS_ALIASES.get(lowered)
    return mapped.value if mapped is not None else lowered


def normalize_refund_status(raw) -> str | None:
    """Map a refund status string onto RefundStatus, or None when unknown."""
    if not isinstance(raw, str):
        return None
    mapped = _REFUND_STATUS_ALIASES.get(raw.strip().lower())
    return mapped.value if mapped is not None else None


def is_terminal_payment_status(status: str) -> bool:
    return status in TERMINAL_PAYMENT_STATUSES


__all__ = [
    "PaymentStatus",
    "RefundStatus",
    "PollingJobStatus",
    "IdempotencyState",
    "EventChannel",
    "EventSource",
    "MethodKind",
    "Environment",
    "Provider",
    "TERMINAL_PAYMENT_STATUSES",
    "NON_TERMINAL_PAYMENT_STATUSES",
    "TERMINAL_REFUND_STATUSES",
    "normalize_payment_status",
    "normalize_refund_status",
    "is_terminal_payment_status",
]
