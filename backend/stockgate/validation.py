from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from stockgate.errors import ValidationError

KG_PLACES = Decimal("0.01")
MONEY_PLACES = Decimal("0.01")

# Upper bound for any single money or kg value (12 digits, 2 decimals)
MAX_AMOUNT = Decimal("9999999999.99")


def quantize_kg(value: Decimal) -> Decimal:
    return Decimal(value).quantize(KG_PLACES, rounding=ROUND_HALF_UP)


def quantize_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def parse_decimal(
    value: Any,
    field: str,
    *,
    required: bool = True,
    default: Decimal | None = None,
    allow_negative: bool = False,
    positive: bool = False,
) -> Decimal | None:
    """
    Coerce a JSON number or numeric string into a 2-place Decimal.

    Floats go through str() so 0.1 stays 0.1 instead of its binary expansion.
    Booleans are rejected even though they are ints.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required and default is None:
            raise ValidationError(f"{field} is required")
        return default

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")

    try:
        if isinstance(value, float):
            result = Decimal(str(value))
        elif isinstance(value, (int, Decimal)):
            result = Decimal(value)
        elif isinstance(value, str):
            result = Decimal(value.strip())
        else:
            raise ValidationError(f"{field} must be a number")
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if positive and result <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    if not allow_negative and result < 0:
        raise ValidationError(f"{field} cannot be negative")
    if abs(result) > MAX_AMOUNT:
        raise ValidationError(f"{field} is too large")

    return quantize_kg(result)


def parse_int(
    value: Any,
    field: str,
    *,
    required: bool = True,
    default: int | None = None,
    allow_negative: bool = False,
) -> int | None:
    """Strict integer parsing: no floats, decimals or scientific notation."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required and default is None:
            raise ValidationError(f"{field} is required")
        return default

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be a whole number")
        result = int(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a whole number")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    else:
        raise ValidationError(f"{field} must be an integer")

    if not allow_negative and result < 0:
        raise ValidationError(f"{field} cannot be negative")
    return result


def parse_choice(value: Any, field: str, choices: Iterable[str], *, default: str | None = None) -> str:
    allowed = tuple(choices)
    if value is None or value == "":
        if default is not None:
            return default
        raise ValidationError(f"{field} is required")
    if value not in allowed:
        raise ValidationError(
            f"{field} must be one of: {', '.join(allowed)}",
            {"field": field, "allowed": list(allowed)},
        )
    return value


def require_text(value: Any, field: str, *, max_length: int | None = None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    text = value.strip()
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def optional_text(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return require_text(value, field, max_length=max_length)


def parse_date(value: Any, field: str, *, required: bool = False) -> date | None:
    if isinstance(value, date):
        return value
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a date (YYYY-MM-DD)")
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        raise ValidationError(f"{field} must be a date (YYYY-MM-DD)")


def parse_pagination(page: Any, limit: Any, *, default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    page = parse_int(page, "page", required=False, default=1)
    limit = parse_int(limit, "limit", required=False, default=default_limit)
    return max(page, 1), min(max(limit, 1), max_limit)


def parse_sort(sort_by: Any, sort_order: Any, allowed: Iterable[str], *, default: str) -> tuple[str, str]:
    sort_by = parse_choice(sort_by, "sortBy", allowed, default=default)
    if isinstance(sort_order, str):
        sort_order = sort_order.lower()
    order = parse_choice(sort_order, "sortOrder", ("asc", "desc"), default="desc")
    return sort_by, order
