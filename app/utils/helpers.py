"""Shared parsing helpers for dates, money, XML-safe text and request sentinels."""
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

PENNY = Decimal("0.01")

# Values that loosely-typed clients send for "not provided"
_EMPTY_SENTINELS = frozenset({"", "undefined", "null", "none"})

# Anything outside the XML 1.0 Char production
_XML_ILLEGAL_RE = re.compile("[^\t\n\r\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")


def is_blank(value):
    """True for None, whitespace-only strings and "undefined"/"null" sentinels."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() in _EMPTY_SENTINELS
    return False


def is_xml_safe(value) -> bool:
    """False when the text holds a character XML 1.0 cannot carry (e.g. \\x00, \\x0b)."""
    if value is None:
        return True
    return _XML_ILLEGAL_RE.search(str(value)) is None


def parse_date(value):
    """Parse a date value to a date object.

    Returns None for empty/invalid input. Supports:
    - date / datetime objects
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD/MM/YYYY (UK spreadsheet format)
    """
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    try:
        return date.fromisoformat(raw)
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(raw, "%d/%m/%Y").date()
    except (ValueError, TypeError):
        return None


def parse_money(value):
    """Parse an amount to a Decimal rounded to pence.

    Returns None for empty, non-numeric, boolean, NaN, infinite or
    unroundable (e.g. "1e30") input.
    A leading "£" and thousands separators are tolerated.
    """
    if is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, float):
        value = repr(value)
    raw = str(value).strip().lstrip("£").replace(",", "")
    try:
        amount = Decimal(raw)
        if not amount.is_finite():
            return None
        return amount.quantize(PENNY, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return None


def format_money(amount):
    """Render a Decimal-compatible amount with exactly two decimals (10 → "10.00")."""
    return str(Decimal(amount).quantize(PENNY, rounding=ROUND_HALF_UP))
