"""
Locale-tolerant number parsing for spreadsheet imports.

Price lists arrive both with Indonesian formatting (``Rp 1.234.567,89``) and
with US formatting (``$1,234,567.89``). The separator roles are sniffed from
the value itself and the result is a fixed two-place decimal string.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

CURRENCY_PATTERN = re.compile(r"(?i)rp\.?|idr|[$€£¥₹]")
DOT_GROUPED_PATTERN = re.compile(r"^-?\d{1,3}(\.\d{3})+$")
NUMERIC_PATTERN = re.compile(r"^\d+(\.\d+)?$")

TWO_PLACES = Decimal("0.01")


class InvalidNumberError(ValueError):
    """Raised when a value cannot be read as a number."""

    def __init__(self, value: Any, reason: str = "Invalid number"):
        self.value = value
        self.reason = reason
        super().__init__(f"{reason}: '{value}'")


def _normalize_separators(text: str) -> str:
    has_comma = "," in text
    has_dot = "." in text

    if has_comma and has_dot:
        # Whichever separator comes last is the decimal point.
        if text.rfind(",") > text.rfind("."):
            return text.replace(".", "").replace(",", ".")
        return text.replace(",", "")

    if has_comma:
        if text.count(",") == 1 and len(text) - text.index(",") == 3:
            return text.replace(",", ".")
        return text.replace(",", "")

    if has_dot and DOT_GROUPED_PATTERN.match(text):
        return text.replace(".", "")

    return text


def parse_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse ``value`` into a Decimal, or None when it is blank.

    Raises:
        InvalidNumberError: if non-numeric characters remain after stripping
        currency symbols and separators.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidNumberError(value)
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        if value != value:  # NaN from spreadsheet readers
            return None
        return Decimal(str(value))

    text = str(value).strip()
    if not text:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]

    text = CURRENCY_PATTERN.sub("", text)
    text = re.sub(r"\s+", "", text)
    if text.startswith("-"):
        negative = not negative
        text = text[1:]
    if not text:
        raise InvalidNumberError(value)

    text = _normalize_separators(text)
    if not NUMERIC_PATTERN.match(text):
        raise InvalidNumberError(value)

    try:
        number = Decimal(text)
    except InvalidOperation:
        raise InvalidNumberError(value) from None
    return -number if negative else number


def parse_locale_decimal(value: Any) -> Optional[str]:
    """
    Parse a locale-formatted number and return it as a fixed two-place string.

    Examples:
        "Rp 1.234.567,89" -> "1234567.89"
        "$1,234,567.89"   -> "1234567.89"
        "Rp 50.000"       -> "50000.00"
        "(1,500.00)"      -> "-1500.00"
    """
    number = parse_decimal(value)
    if number is None:
        return None
    return str(number.quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def parse_integer(value: Any) -> Optional[int]:
    """Parse a whole number using the same separator rules as decimals."""
    number = parse_decimal(value)
    if number is None:
        return None
    if number != number.to_integral_value():
        raise InvalidNumberError(value, "Expected a whole number")
    return int(number)
