from __future__ import annotations

from decimal import Decimal

from .errors import ValidationError
from .time_utils import normalize_datetime


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999


def require_int(value, field: str) -> int:
    """
    Strict integer check for quantities and money.

    Floats and Decimals are rejected outright: all money crosses the service
    boundary as integer cents, so a fractional value is a caller bug rather
    than something to round.
    """
    # bool is an int subclass; True is not a quantity
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", {"field": field})
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        raise ValidationError(f"{field} must be an integer, not a decimal", {"field": field})
    raise ValidationError(f"{field} must be an integer", {"field": field})


def require_positive_int(value, field: str) -> int:
    value = require_int(value, field)
    if value <= 0:
        raise ValidationError(f"{field} must be positive", {"field": field, "value": value})
    return value


def require_cents(value, field: str) -> int:
    value = require_int(value, field)
    if value < 0:
        raise ValidationError(f"{field} cannot be negative", {"field": field, "value": value})
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_AMOUNT_CENTS}", {"field": field, "value": value})
    return value


def percent_of(amount_cents: int, bps: int) -> int:
    """amount * bps / 10000 with nearest-cent rounding (half-up)."""
    return (amount_cents * bps + 5000) // 10000


def require_serial_numbers(values, field: str = "serial_numbers") -> list[str]:
    """Non-empty serial strings, stripped, no duplicates within the batch."""
    if isinstance(values, str) or not values:
        raise ValidationError(f"{field} must be a non-empty list of serial numbers", {"field": field})
    cleaned = []
    for value in values:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{field} contains a blank serial number", {"field": field})
        cleaned.append(value.strip())
    duplicates = sorted({s for s in cleaned if cleaned.count(s) > 1})
    if duplicates:
        raise ValidationError(f"{field} repeats serial numbers", {"field": field, "duplicates": duplicates})
    return cleaned


def require_datetime(value, field: str):
    """normalize_datetime with unparseable input reported as a ValidationError."""
    try:
        return normalize_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 datetime", {"field": field, "value": repr(value)})
