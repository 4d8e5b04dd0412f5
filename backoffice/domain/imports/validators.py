"""
Row validation and type coercion for canonically keyed rows.

Each row is checked against its target schema: required fields, per-kind
coercion (dates, locale numbers, emails, text) and defaults. Failures are
returned as error entries instead of raised, so one bad row never stops the
import.
"""

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from backoffice.domain.imports.target_schemas import (
    FIELD_DATE,
    FIELD_DECIMAL,
    FIELD_EMAIL,
    FIELD_INTEGER,
    NUMERIC_KINDS,
    FieldSpec,
    TargetSchema,
)
from backoffice.utils.date import InvalidDateError, parse_strict_date
from backoffice.utils.numbers import InvalidNumberError, parse_decimal, parse_integer, parse_locale_decimal

logger = logging.getLogger(__name__)

EMPTY_MARKERS = frozenset({"null", "###"})
GENERAL_FIELD = "general"


@dataclass
class RowError:
    row: int
    field: str
    raw_value: Optional[str]
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    text = str(value).strip()
    return not text or text.lower() in EMPTY_MARKERS


def _raw_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def validate_email(value: Any) -> Optional[str]:
    """Return the lowercased address, or None when it lacks an ``@`` or a ``.``."""
    text = str(value).strip()
    if "@" not in text or "." not in text:
        return None
    return text.lower()


def coerce_value(spec: FieldSpec, value: Any, log_context: Optional[str] = None) -> Any:
    """
    Convert a raw cell into the canonical representation for ``spec.kind``.

    Raises InvalidDateError/InvalidNumberError on malformed input. Email
    values that do not look like an address return None.
    """
    if spec.kind == FIELD_DATE:
        return parse_strict_date(value, log_context=log_context)
    if spec.kind == FIELD_DECIMAL:
        return parse_locale_decimal(value)
    if spec.kind == FIELD_INTEGER:
        return parse_integer(value)
    if spec.kind == FIELD_EMAIL:
        return validate_email(value)
    return str(value).strip()


def _is_zero(spec: FieldSpec, value: Any) -> bool:
    if spec.kind not in NUMERIC_KINDS:
        return False
    try:
        number = parse_decimal(value)
    except InvalidNumberError:
        return False
    return number is not None and number == Decimal(0)


def _validate_fields(
    row: Mapping[str, Any],
    row_number: int,
    schema: TargetSchema,
) -> Tuple[Optional[Dict[str, Any]], List[RowError]]:
    record: Dict[str, Any] = {}
    errors: List[RowError] = []

    for spec in schema.fields:
        raw = row.get(spec.name)

        if _is_blank(raw):
            if spec.required:
                errors.append(RowError(row_number, spec.name, _raw_text(raw), f"Missing required field '{spec.name}'"))
            elif spec.default is not None:
                record[spec.name] = spec.default
            continue

        if spec.required and _is_zero(spec, raw):
            errors.append(RowError(row_number, spec.name, _raw_text(raw), f"Required field '{spec.name}' must not be zero"))
            continue

        try:
            value = coerce_value(spec, raw, log_context=f"{schema.name}.{spec.name}")
        except (InvalidDateError, InvalidNumberError) as exc:
            if spec.required or spec.strict:
                errors.append(RowError(row_number, spec.name, _raw_text(raw), str(exc)))
            elif spec.default is not None:
                record[spec.name] = spec.default
            continue

        if value is None:
            if spec.kind == FIELD_EMAIL and spec.required:
                errors.append(RowError(row_number, spec.name, _raw_text(raw), f"Invalid email address: '{raw}'"))
            elif spec.default is not None:
                record[spec.name] = spec.default
            continue

        record[spec.name] = value

    if schema.required_any and not any(name in record for name in schema.required_any):
        errors.append(
            RowError(
                row_number,
                "+".join(schema.required_any),
                None,
                f"At least one of {', '.join(schema.required_any)} is required",
            )
        )

    if errors:
        return None, errors
    return record, []


def validate_row(
    row: Mapping[str, Any],
    row_number: int,
    schema: TargetSchema,
) -> Tuple[Optional[Dict[str, Any]], List[RowError]]:
    """
    Validate one canonically keyed row.

    Returns ``(record, [])`` for a valid row or ``(None, errors)`` when the row
    is rejected. Never raises: unexpected failures become a single ``general``
    error entry for the row.
    """
    try:
        return _validate_fields(row, row_number, schema)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected validation failure on row %d", row_number)
        return None, [RowError(row_number, GENERAL_FIELD, None, f"Unexpected validation error: {exc}")]
