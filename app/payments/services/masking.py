"""
Masking of sensitive payment identifiers.

UPI payer handles (VPA) and bank references (UTR) are masked once, where
they enter the system: adapters mask what gateways return and the webhook
router masks what it records. Everything downstream (models, events, logs,
API responses) only ever sees masked values.

All functions are pure and idempotent: an already masked value (one that
contains ``*``) is returned unchanged.

Usage:
    from payments.services.masking import mask_utr, mask_vpa

    mask_vpa("buyer@upi")      # "bu***@upi"
    mask_utr("UTR1234567")     # "******4567"
"""

from __future__ import annotations

from typing import Any

MASK_CHARACTER = "*"

# Keys whose values are masked by mask_payload(), compared case-insensitively.
VPA_KEYS = frozenset(
    {
        "vpa",
        "payervpa",
        "payer_vpa",
        "payeraddress",
        "upipayerhandle",
        "upi_payer_handle",
        "payerhandle",
        "payer_handle",
        "upiid",
        "upi_id",
    }
)
UTR_KEYS = frozenset(
    {
        "utr",
        "upiutr",
        "upi_utr",
        "banktransactionid",
        "bank_transaction_id",
        "rrn",
    }
)

INSTRUMENT_LABELS = {
    "UPI_COLLECT": "UPI Collect",
    "UPI_INTENT": "UPI Intent",
    "UPI_QR": "UPI QR",
    "QR_CODE": "Dynamic QR",
}


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _is_masked(value: str) -> bool:
    return MASK_CHARACTER in value


def mask_vpa(raw: Any) -> str | None:
    """
    Mask a UPI Virtual Payment Address.

    Keeps the first two characters of the local part and the domain;
    the rest of the local part becomes at least three ``*``.

    Example:
        mask_vpa("buyer@upi")    # "bu***@upi"
        mask_vpa("a@ybl")        # "a***@ybl"
        mask_vpa("9876543210")   # "98********"
    """
    value = _clean(raw)
    if value is None:
        return None
    if _is_masked(value):
        return value

    local, _, domain = value.partition("@")
    if not domain:
        visible = value[:2]
        return visible + MASK_CHARACTER * max(len(value) - len(visible), 3)

    visible = local[:2]
    masked_local = visible + MASK_CHARACTER * max(len(local) - len(visible), 3)
    return f"{masked_local}@{domain}"


def mask_utr(raw: Any) -> str | None:
    """
    Mask a Unique Transaction Reference, keeping the last four characters.

    Example:
        mask_utr("UTR1234567")   # "******4567"
        mask_utr("12345")        # "****2345"
        mask_utr("1234")         # "****"
    """
    value = _clean(raw)
    if value is None:
        return None
    if _is_masked(value):
        return value
    if len(value) <= 4:
        return MASK_CHARACTER * len(value)
    return MASK_CHARACTER * max(len(value) - 4, 4) + value[-4:]


def mask_identifier(raw: Any) -> str | None:
    """
    Generic masking: first two and last four characters stay visible.

    Values of six characters or fewer are fully masked.

    Example:
        mask_identifier("T2401011234567890")  # "T2***********7890"
    """
    value = _clean(raw)
    if value is None:
        return None
    if _is_masked(value):
        return value
    if len(value) <= 6:
        return MASK_CHARACTER * len(value)
    return value[:2] + MASK_CHARACTER * (len(value) - 6) + value[-4:]


def normalize_instrument_variant(raw: Any) -> str | None:
    """Upper-case a UPI instrument variant; non-UPI instruments give None."""
    value = _clean(raw)
    if value is None:
        return None
    value = value.upper()
    if value.startswith("UPI") or "QR" in value:
        return value
    return None


def instrument_label(raw: Any) -> str | None:
    """
    Human label for a UPI instrument variant.

    Example:
        instrument_label("upi_collect")   # "UPI Collect"
        instrument_label("QR_CODE")       # "Dynamic QR"
        instrument_label("UPI_AUTOPAY")   # "Upi Autopay"
    """
    variant = normalize_instrument_variant(raw)
    if variant is None:
        return None
    if variant in INSTRUMENT_LABELS:
        return INSTRUMENT_LABELS[variant]
    return " ".join(part.capitalize() for part in variant.lower().split("_"))


def mask_payload(payload: Any) -> Any:
    """
    Return a copy of a JSON-like structure with VPA and UTR values masked.

    Dicts and lists are walked recursively; other values are returned as is.
    """
    if isinstance(payload, dict):
        masked: dict[str, Any] = {}
        for key, value in payload.items():
            lowered = str(key).lower()
            if lowered in VPA_KEYS and isinstance(value, str):
                masked[key] = mask_vpa(value)
            elif lowered in UTR_KEYS and isinstance(value, str):
                masked[key] = mask_utr(value)
            else:
                masked[key] = mask_payload(value)
        return masked
    if isinstance(payload, list):
        return [mask_payload(item) for item in payload]
    return payload
