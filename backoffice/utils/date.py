"""
Date parsing utilities for spreadsheet imports.

Back-office files are produced with day-first locales, so values are matched
against an ordered list of explicit formats instead of being inferred. The
result is always a canonical ISO 8601 date (``YYYY-MM-DD``).
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Optional

logger = logging.getLogger(__name__)

FAILED_SAMPLE_LIMIT = 5
SUPPRESSION_NOTICE_EVERY = 100

# Two-digit years up to and including the pivot land in the 2000s.
TWO_DIGIT_YEAR_PIVOT = 50
MIN_YEAR = 1901
MAX_YEAR = 2099

# (label, pattern, group order) tried in order; the first format that matches
# the shape of the value decides how it is read.
DATE_FORMATS = (
    ("DD/MM/YYYY", re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$"), ("day", "month", "year")),
    ("DD-MM-YYYY", re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$"), ("day", "month", "year")),
    ("YYYY-MM-DD", re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$"), ("year", "month", "day")),
    ("DD/MM/YY", re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2})$"), ("day", "month", "year")),
)

_failure_stats: dict = {}


class InvalidDateError(ValueError):
    """Raised when a value does not match any supported date format or is not a real calendar date."""

    def __init__(self, value: Any, reason: str = "Unrecognised date"):
        self.value = value
        self.reason = reason
        super().__init__(f"{reason}: '{value}'")


def _record_parse_failure(value: Any, context: Optional[str], error: Exception) -> None:
    """
    Collect failure stats and emit limited logs (sampled warnings + periodic summaries).
    """
    key = context or "default"
    stats = _failure_stats.setdefault(key, {"count": 0, "samples": []})
    stats["count"] += 1
    count = stats["count"]

    if len(stats["samples"]) < FAILED_SAMPLE_LIMIT:
        stats["samples"].append(value)
        logger.warning("Failed to parse date%s value '%s': %s", f" ({key})" if context else "", value, error)
        return

    # Emit a single summary when suppression starts, then periodically.
    if count == FAILED_SAMPLE_LIMIT + 1 or count % SUPPRESSION_NOTICE_EVERY == 0:
        logger.info(
            "Suppressed additional date parse warnings after %d failures%s; sample values=%s",
            count,
            f" ({key})" if context else "",
            stats["samples"],
        )


def expand_two_digit_year(year: int) -> int:
    """Map ``00-50`` to the 2000s and ``51-99`` to the 1900s."""
    if year <= TWO_DIGIT_YEAR_PIVOT:
        return 2000 + year
    return 1900 + year


def parse_strict_date(value: Any, *, log_context: Optional[str] = None) -> Optional[str]:
    """
    Parse a day-first date and return it as ``YYYY-MM-DD``.

    Supports, in order of precedence:
    - DD/MM/YYYY: "31/12/2023"
    - DD-MM-YYYY: "31-12-2023"
    - YYYY-MM-DD: "2023-12-31"
    - DD/MM/YY:   "31/12/23"

    ``date``/``datetime`` objects (as produced by spreadsheet readers) are
    accepted as-is. Blank values return None.

    Raises:
        InvalidDateError: when the value matches no format or the date does
        not exist (e.g. ``31/02/2023``).
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    if not text:
        return None
    # Spreadsheet cells rendered as text often carry a midnight time component.
    text = re.sub(r"[ T]00:00(:00)?$", "", text)

    for label, pattern, order in DATE_FORMATS:
        match = pattern.match(text)
        if not match:
            continue
        parts = dict(zip(order, (int(group) for group in match.groups())))
        year = parts["year"]
        if label == "DD/MM/YY":
            year = expand_two_digit_year(year)
        try:
            if not MIN_YEAR <= year <= MAX_YEAR:
                raise InvalidDateError(value, f"Year {year} out of range")
            parsed = date(year, parts["month"], parts["day"])
        except ValueError as exc:
            error = exc if isinstance(exc, InvalidDateError) else InvalidDateError(value, f"Invalid calendar date ({label})")
            _record_parse_failure(value, log_context, error)
            raise error from None
        return parsed.isoformat()

    error = InvalidDateError(value)
    _record_parse_failure(value, log_context, error)
    raise error
