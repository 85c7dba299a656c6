"""Utility functions for shopfront."""

import re
import secrets
import time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .errors import InvalidIdentifierError, ValidationError

_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")
_CENT = Decimal("0.01")

ORDER_NUMBER_PREFIX = "SF"


def validate_id(value: object, kind: str) -> str:
    """
    Check that an entity identifier is well-formed.

    Returns:
        The identifier, unchanged.

    Raises:
        InvalidIdentifierError: If the value is not a 32-char lowercase hex string.
    """
    if not isinstance(value, str) or not _ID_PATTERN.match(value):
        raise InvalidIdentifierError(kind, value)
    return value


def to_money(value: object, field: str = "amount") -> Decimal:
    """
    Normalize a number to a non-negative two-place Decimal.

    Raises:
        ValidationError: If the value is not a number or is negative.
    """
    if value is None:
        return Decimal("0.00")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if amount < 0:
        raise ValidationError(f"{field} must not be negative")
    return amount


def to_cents(amount: Decimal) -> int:
    """Convert a currency amount to minor units, rounding half-up."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(_CENT)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def generate_order_number() -> str:
    """
    Human-readable order number: last 6 digits of epoch millis plus 3 random digits.

    Uniqueness is enforced by the order store, which regenerates on collision.
    """
    timestamp = str(_epoch_ms())[-6:]
    suffix = f"{secrets.randbelow(1000):03d}"
    return f"{ORDER_NUMBER_PREFIX}{timestamp}{suffix}"


def generate_sku() -> str:
    return f"SKU{_epoch_ms()}"


def generate_guest_session_id() -> str:
    return f"session_{_epoch_ms()}_{secrets.token_hex(5)}"


def generate_upload_name(extension: str) -> str:
    """Unique on-disk name for an uploaded file, keeping its extension."""
    return f"{_epoch_ms()}-{secrets.randbelow(10**9)}{extension.lower()}"
