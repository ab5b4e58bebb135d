"""
Payment services.

This package provides:
- IdempotencyLedger: Durable replay of idempotent operations
- EventRecorder: Audit, security and lifecycle trail
- ConfigResolver: Provider configuration merged with settings secrets
- PaymentStatusTransitionService: The single path for Payment status changes
- RefundService: Refund creation and refund status updates
- OrderProjector: Order read model and refund totals

The facade (payments.services.payments_service) builds on adapters and the
status poller, so it is imported from its own module rather than here.

Usage:
    from payments.services import IdempotencyLedger, PaymentStatusTransitionService

    outcome = PaymentStatusTransitionService().apply(
        "TXN_1700000000000_k3j9x0a2b", "captured", {}, "default", verified=True
    )

    from payments.services.payments_service import build_payments_service
"""

from payments.services.masking import mask_payload, mask_utr, mask_vpa
from payments.services.idempotency import IdempotencyLedger, IdempotentResult
from payments.services.events import EventRecorder
from payments.services.config_resolver import ConfigResolver, ResolvedConfig
from payments.services.status_transition import (
    PaymentStatusTransitionService,
    TransitionOutcome,
)
from payments.services.order_projector import OrderProjector
from payments.services.refund_service import RefundOutcome, RefundService

__all__ = [
    "ConfigResolver",
    "EventRecorder",
    "IdempotencyLedger",
    "IdempotentResult",
    "OrderProjector",
    "PaymentStatusTransitionService",
    "RefundOutcome",
    "RefundService",
    "ResolvedConfig",
    "TransitionOutcome",
    "mask_payload",
    "mask_utr",
    "mask_vpa",
]
