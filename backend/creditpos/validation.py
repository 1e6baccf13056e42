from __future__ import annotations

from typing import Any

from creditpos.services.errors import InvalidRequestError


# Maximum amount: 9,999,999,999.99 in minor units
MAX_AMOUNT_CENTS = 999_999_999_999


def coerce_int(value: Any, field: str, *, allow_none: bool = False) -> int | None:
    """
    Strict integer coercion for request payloads.

    Rejects floats, decimals and scientific notation so that cents and
    quantities are never silently truncated.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_none:
            return None
        raise InvalidRequestError(f"{field} must be an integer", {"field": field})

    if isinstance(value, bool):
        raise InvalidRequestError(f"{field} must be an integer", {"field": field})
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower():
            raise InvalidRequestError(f"{field} must be a plain integer (scientific notation not allowed)", {"field": field})
        if "." in stripped:
            raise InvalidRequestError(f"{field} must be an integer (no decimals)", {"field": field})
        try:
            return int(stripped)
        except ValueError:
            raise InvalidRequestError(f"{field} must be an integer", {"field": field})
    if isinstance(value, float):
        raise InvalidRequestError(f"{field} must be an integer, not a decimal", {"field": field})
    raise InvalidRequestError(f"{field} must be an integer", {"field": field})


def coerce_quantity(value: Any, field: str = "quantity") -> int:
    qty = coerce_int(value, field)
    if qty <= 0:
        raise InvalidRequestError(f"{field} must be a positive integer", {"field": field, "value": qty})
    return qty


def coerce_cents(value: Any, field: str, *, allow_none: bool = False, allow_negative: bool = False) -> int | None:
    cents = coerce_int(value, field, allow_none=allow_none)
    if cents is None:
        return None
    if not allow_negative and cents < 0:
        raise InvalidRequestError(f"{field} cannot be negative", {"field": field})
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise InvalidRequestError(f"{field} exceeds maximum allowed amount", {"field": field})
    return cents


def coerce_choice(value: Any, field: str, choices, *, default: str | None = None) -> str | None:
    if value is None or value == "":
        return default
    normalized = str(value).strip().upper()
    if normalized not in choices:
        raise InvalidRequestError(
            f"Invalid {field}. Must be one of: {', '.join(choices)}",
            {"field": field, "value": value},
        )
    return normalized
