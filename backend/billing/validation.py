from __future__ import annotations

from datetime import date
from typing import Any

from .time_utils import parse_iso_date

# Maximum money amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


def get_json_object(request) -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def coerce_int(name: str, value: Any) -> int:
    """Strict integer coercion: rejects floats, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def require_int(data: dict, name: str) -> int:
    if data.get(name) is None:
        raise ValidationError(f"{name} is required")
    return coerce_int(name, data[name])


def optional_int(data: dict, name: str, default: int | None = None) -> int | None:
    if data.get(name) is None:
        return default
    return coerce_int(name, data[name])


def optional_amount(data: dict, name: str, default: int = 0) -> int:
    value = optional_int(data, name, default)
    if value > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_AMOUNT_CENTS}")
    return value


def optional_str(data: dict, name: str, max_length: int | None = None) -> str | None:
    value = data.get(name)
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    if max_length and len(value) > max_length:
        raise ValidationError(f"{name} exceeds max length {max_length}")
    return value


def require_choice(data: dict, name: str, choices, default: str | None = None) -> str:
    value = data.get(name, default)
    if value is None:
        raise ValidationError(f"{name} is required")
    if value not in choices:
        raise ValidationError(f"{name} must be one of: {', '.join(choices)}")
    return value


def optional_date(data: dict, name: str) -> date | None:
    value = data.get(name)
    if value is None:
        return None
    try:
        return parse_iso_date(str(value))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date (YYYY-MM-DD)")


def query_int(args, name: str, default: int, *, minimum: int = 0, maximum: int | None = None) -> int:
    raw = args.get(name)
    if raw is None or raw == "":
        return default
    value = coerce_int(name, raw)
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    if maximum is not None and value > maximum:
        value = maximum
    return value
