"""
State machine enums and helpers for payment models.

This module defines the state enums used by payment models with django-fsm
and the functions normalising provider status strings onto them.
"""

from payments.state_machines.states import (
    NON_TERMINAL_PAYMENT_STATUSES,
    TERMINAL_PAYMENT_STATUSES,
    TERMINAL_REFUND_STATUSES,
    Environment,
    EventChannel,
    EventSource,
    IdempotencyState,
    MethodKind,
    PaymentStatus,
    PollingJobStatus,
    Provider,
    RefundStatus,
    is_terminal_payment_status,
    normalize_payment_status,
    normalize_refund_status,
)

__all__ = [
    "Environment",
    "EventChannel",
    "EventSource",
    "IdempotencyState",
    "MethodKind",
    "NON_TERMINAL_PAYMENT_STATUSES",
    "PaymentStatus",
    "PollingJobStatus",
    "Provider",
    "RefundStatus",
    "TERMINAL_PAYMENT_STATUSES",
    "TERMINAL_REFUND_STATUSES",
    "is_terminal_payment_status",
    "normalize_payment_status",
    "normalize_refund_status",
]
