"""
Base class for the service layer.

Services hold business logic that spans models (payments, refunds,
webhooks). Expected failures are raised as core.exceptions subclasses and
rendered by the API layer; background callers catch the ones they expect.

Usage:
    from core.services import BaseService

    class RefundService(BaseService):
        def create_refund(self, ...):
            self.get_logger().info("Refund created", extra={"refund_id": str(refund.id)})
"""

from __future__ import annotations

import logging


class BaseService:
    """
    Base class for service layer classes.

    Loggers are named ``<module>.<ClassName>`` so the ``payments`` logger
    configured in settings picks up every service in the app.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")
