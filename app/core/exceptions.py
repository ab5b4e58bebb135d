"""
Base exception classes for application-wide error handling.

Every domain error carries a human-readable message, a machine-readable
error code, optional details, and the HTTP status it maps to. Views do not
translate exceptions one by one: the DRF exception handler registered in
settings (``api_exception_handler``) renders any ``BaseApplicationError``.

Exception Hierarchy:
    BaseApplicationError (500)
    ├── ValidationError (400) - Input validation failures
    ├── NotFoundError (404) - Resource not found
    ├── PermissionDeniedError (403) - Authorization failures
    ├── ConflictError (409) - State conflicts (duplicates, replays in flight)
    ├── RateLimitError (429) - Rate limit exceeded
    └── ExternalServiceError (502) - Gateway / third-party failures

Usage:
    from core.exceptions import ValidationError, NotFoundError

    raise ValidationError(
        "Idempotency-Key header is required",
        error_code="IDEMPOTENCY_KEY_REQUIRED",
    )

    raise NotFoundError(
        "Order not found",
        error_code="ORDER_NOT_FOUND",
        details={"order_id": str(order_id)},
    )

    # Serialized body
    {"error": "Order not found", "error_code": "ORDER_NOT_FOUND", "details": {...}}
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

if TYPE_CHECKING:
    from typing import Any


logger = logging.getLogger(__name__)


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, identifiers, ...)
        http_status: Status code used when rendered by the API layer
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Returns:
            Dict with error and error_code keys, plus details when present
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for missing headers, malformed amounts, unsupported currencies and
    other client mistakes that are rejected before any state is mutated.
    """

    default_error_code: str = "VALIDATION_ERROR"
    http_status: int = status.HTTP_400_BAD_REQUEST


class NotFoundError(BaseApplicationError):
    """Raised when a requested resource does not exist for the tenant."""

    default_error_code: str = "NOT_FOUND"
    http_status: int = status.HTTP_404_NOT_FOUND


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller may not perform an operation.

    Example:
        raise PermissionDeniedError(
            "Checkout payload does not match the order",
            error_code="TOKEN_URL_PAYLOAD_MISMATCH",
        )
    """

    default_error_code: str = "PERMISSION_DENIED"
    http_status: int = status.HTTP_403_FORBIDDEN


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Duplicate captures (a UPI payment was already captured)
    - Idempotency keys reused with a different request body
    - Operations that are not allowed from the current status
    """

    default_error_code: str = "CONFLICT"
    http_status: int = status.HTTP_409_CONFLICT


class RateLimitError(BaseApplicationError):
    """Raised when a caller exceeds a rate limit."""

    default_error_code: str = "RATE_LIMIT_EXCEEDED"
    http_status: int = status.HTTP_429_TOO_MANY_REQUESTS


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Note:
        Log the original error for debugging but only expose the code and
        a generic message to clients.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status: int = status.HTTP_502_BAD_GATEWAY


def api_exception_handler(exc: Exception, context: dict[str, Any]) -> Response | None:
    """
    DRF exception handler rendering application errors.

    Registered as ``REST_FRAMEWORK["EXCEPTION_HANDLER"]``. Application
    errors are rendered with ``to_dict()`` and their ``http_status``;
    everything else is delegated to DRF's default handler.
    """
    if isinstance(exc, BaseApplicationError):
        view = context.get("view")
        log = logger.warning if exc.http_status < 500 else logger.error
        log(
            f"Request failed: {exc.error_code}",
            extra={
                "error_code": exc.error_code,
                "view": view.__class__.__name__ if view else None,
                "status_code": exc.http_status,
            },
        )
        return Response(exc.to_dict(), status=exc.http_status)

    return exception_handler(exc, context)
