"""Format validation for inbound conversion fields.

Pure functions; no logging and no I/O so they can be called from anywhere.
Amounts are parsed to ``Decimal`` and quantized to cents, the precision of the
``Numeric(10, 2)`` columns they end up in.
"""
from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
# Largest value a Numeric(10, 2) column can hold.
MAX_AMOUNT = Decimal("99999999.99")

_KEY_RE = re.compile(r"[0-9a-zA-Z]{24}")
_OFFER_ID_RE = re.compile(r"[a-zA-Z0-9_-]{1,50}")


def validate_key(key: Any) -> bool:
    """Attribution key: exactly 24 ASCII letters or digits."""
    return isinstance(key, str) and _KEY_RE.fullmatch(key) is not None


def validate_offer_id(offer_id: Any) -> bool:
    """Offer identifier: 1-50 characters from ``[a-zA-Z0-9_-]``."""
    return isinstance(offer_id, str) and _OFFER_ID_RE.fullmatch(offer_id) is not None


def to_amount(value: Any) -> Decimal:
    """Normalize a stored or computed amount to a cent-quantized ``Decimal``."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_amount(raw: Any) -> tuple[Decimal | None, bool]:
    """Parse ``raw`` into a positive cent amount.

    Returns ``(amount, True)`` on success and ``(None, False)`` when the value
    does not parse, is not finite, rounds to zero or below, or does not fit the
    storage column.
    """
    if raw is None or isinstance(raw, bool):
        return None, False
    text = raw.strip() if isinstance(raw, str) else str(raw)
    if not text:
        return None, False
    try:
        parsed = Decimal(text)
    except (InvalidOperation, ValueError):
        return None, False
    if not parsed.is_finite():
        return None, False
    # Range check first: quantize raises once the digits exceed the context precision.
    if parsed <= 0 or parsed > MAX_AMOUNT:
        return None, False
    amount = parsed.quantize(CENT, rounding=ROUND_HALF_UP)
    if amount <= 0 or amount > MAX_AMOUNT:
        return None, False
    return amount, True


__all__ = ["CENT", "MAX_AMOUNT", "validate_key", "validate_offer_id", "validate_amount", "to_amount"]
