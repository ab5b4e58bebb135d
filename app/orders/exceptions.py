"""
Order-specific exceptions.

Usage:
    from orders.exceptions import OrderTransitionError

    raise OrderTransitionError(
        "Cannot move order from 'refunded' to 'confirmed'",
        details={"field": "status", "current": "refunded", "target": "confirmed"},
    )
"""

from __future__ import annotations

from core.exceptions import ConflictError, NotFoundError


class OrderNotFoundError(NotFoundError):
    """Raised when an order does not exist for the requesting tenant."""

    default_error_code: str = "ORDER_NOT_FOUND"


class OrderTransitionError(ConflictError):
    """
    Raised when a status change is not listed in the order transition tables.

    Note:
        Projector code checks ``Order.can_transition_*`` first and treats a
        disallowed change as a no-op; this exception signals a programming
        error when a caller skips that check.
    """

    default_error_code: str = "INVALID_ORDER_TRANSITION"


__all__ = [
    "OrderNotFoundError",
    "OrderTransitionError",
]
