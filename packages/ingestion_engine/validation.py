"""Field-level validators for raw export cells.

Each validator either returns the cleaned value or raises ``ValidationError``
naming the field, so a bad cell fails only its own row.
"""

import re
from datetime import datetime
from typing import Any, Optional

import pandas as pd

from .errors import ValidationError

DATE_FORMATS = [
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%Y/%m/%d",
    "%d %b %Y",
    "%d %B %Y",
]

_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")
_AMOUNT_NOISE = re.compile(r"[£$€,\s]")
# Leading characters a spreadsheet would evaluate as a formula.
_FORMULA_PREFIX = ("=", "+", "-", "@")


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    try:
        if pd.isna(value):
            return True
    except (TypeError, ValueError):
        pass
    return isinstance(value, str) and not value.strip()


def validate_required_string(value: Any, field: str) -> str:
    if is_blank(value):
        raise ValidationError(f"{field} is required", field, value)
    return str(value).strip()


def validate_optional_string(value: Any) -> Optional[str]:
    if is_blank(value):
        return None
    return str(value).strip()


def validate_amount(value: Any, field: str) -> float:
    """Parse a signed amount, tolerating currency symbols and thousands separators."""
    if is_blank(value):
        raise ValidationError(f"{field} is required", field, value)
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field, value)
    if isinstance(value, (int, float)):
        return float(value)

    cleaned = _AMOUNT_NOISE.sub("", str(value))
    try:
        return float(cleaned)
    except ValueError:
        raise ValidationError(f"{field} must be a number, got {value!r}", field, value)


def validate_date(value: Any, field: str) -> datetime:
    """Parse an ISO 8601 or day-first date, falling back to pandas."""
    if is_blank(value):
        raise ValidationError(f"{field} is required", field, value)
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime().replace(tzinfo=None)
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)

    date_str = str(value).strip()
    try:
        parsed = datetime.fromisoformat(date_str.replace("Z", "+00:00"))
        return parsed.replace(tzinfo=None)
    except ValueError:
        pass

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(date_str, fmt)
        except ValueError:
            continue

    try:
        parsed = pd.to_datetime(date_str, dayfirst=True)
    except (ValueError, TypeError, OverflowError):
        parsed = None
    if parsed is not None and pd.notna(parsed):
        return parsed.to_pydatetime().replace(tzinfo=None)

    raise ValidationError(f"{field} is not a valid date: {value!r}", field, value)


def validate_currency_code(value: Any, field: str = "currency") -> str:
    code = validate_required_string(value, field).upper()
    if not _CURRENCY_CODE.match(code):
        raise ValidationError(f"{field} must be a 3-letter ISO 4217 code, got {value!r}", field, value)
    return code


def sanitize_cell_text(value: Optional[str]) -> Optional[str]:
    """Neutralise spreadsheet formula injection in free text."""
    if value is None:
        return None
    if value.startswith(_FORMULA_PREFIX):
        return "'" + value
    return value
