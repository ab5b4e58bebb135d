"""
Helper functions for common infrastructure operations.

- Hashing (hex digests, canonical JSON digests)
- UUID parsing
- Money conversion between major and minor units

These helpers have no knowledge of orders or payments; the payments app
builds its dedupe keys and idempotency hashes on top of them.

Usage:
    from core.helpers import canonical_json, parse_uuid, sha256_hex, to_minor_units

    request_hash = sha256_hex(canonical_json(payload))
    amount_minor = to_minor_units("499.99")  # 49999
"""

from __future__ import annotations

import hashlib
import json
import uuid
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


def sha256_hex(value: str | bytes) -> str:
    """Return the hex SHA-256 digest of a string or bytes value."""
    if isinstance(value, str):
        value = value.encode("utf-8")
    return hashlib.sha256(value).hexdigest()


def canonical_json(value: Any) -> str:
    """
    Serialize a value to JSON with sorted keys and no whitespace.

    Two logically equal payloads always produce the same string, which makes
    the output suitable for hashing. Values JSON cannot encode natively
    (Decimal, UUID, datetime) are rendered with ``str()``.
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def parse_uuid(value: Any) -> uuid.UUID | None:
    """
    Parse a UUID, returning None for anything that is not one.

    Example:
        parse_uuid("550e8400-e29b-41d4-a716-446655440000")  # UUID(...)
        parse_uuid("TXN_1700000000000_123456789")           # None
    """
    if isinstance(value, uuid.UUID):
        return value
    if not isinstance(value, str):
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def to_minor_units(amount: Any) -> int:
    """
    Convert a major-unit amount (rupees, dollars) to minor units.

    Accepts int, float, Decimal or numeric strings. Rounds half up to the
    nearest minor unit.

    Raises:
        ValueError: If the amount is not numeric

    Example:
        to_minor_units(10)        # 1000
        to_minor_units("12.345")  # 1235
    """
    if isinstance(amount, bool):
        raise ValueError(f"Invalid amount: {amount!r}")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_minor_units(amount_minor: int | None) -> str:
    """Render minor units as a two-decimal major-unit string (``1234`` -> ``"12.34"``)."""
    value = Decimal(amount_minor or 0) / Decimal(100)
    return f"{value.quantize(Decimal('0.01'))}"
