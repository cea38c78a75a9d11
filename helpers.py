import math
from decimal import Decimal, InvalidOperation


def parse_bool(value):
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    value = str(value).strip().lower()
    if not value:
        return None
    return value in {"1", "true", "yes", "y", "on", "t"}


def parse_float(value):
    if value in (None, "", " "):
        return None
    try:
        return float(str(value).replace(",", "."))
    except (ValueError, TypeError):
        return None


def parse_decimal(value):
    if value in (None, "", " "):
        return None
    try:
        return Decimal(str(value).replace(",", "."))
    except (InvalidOperation, ValueError, TypeError):
        return None


def parse_int(value, default=None):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_list(value):
    """Accept a list or a comma separated string; drop blanks."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    return [str(item).strip() for item in items if item is not None and str(item).strip()]


def safe_text(value):
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def to_float(value):
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def finite_float(value):
    number = to_float(value)
    if number is None or not math.isfinite(number):
        return None
    return number


def to_iso(value):
    return value.isoformat() if value is not None else None
