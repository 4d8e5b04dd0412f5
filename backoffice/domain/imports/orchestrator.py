"""
Import pipeline: ingest -> map -> validate -> write.

This module runs one import end to end on the calling thread. It knows
nothing about job registration or progress publication; it only reports
counters through the ``on_progress`` callback it is given, and raises on
job-level failures.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from backoffice.domain.imports.mapper import ColumnMapper, build_vocabulary, unmatched_headers
from backoffice.domain.imports.processors.file_ingestor import open_file_rows
from backoffice.domain.imports.target_schemas import TargetSchema, get_target_schema
from backoffice.domain.imports.validators import RowError, validate_row
from backoffice.domain.imports.writer import WriteResult, write_records

logger = logging.getLogger(__name__)

PHASE_PARSING = "parsing"
PHASE_VALIDATING = "validating"
PHASE_WRITING = "writing"
PHASE_DONE = "done"
PHASE_FAILED = "failed"

SCOPE_LINE_PATTERN = re.compile(r"untuk\s*nomor\s*to\s*:\s*(.*)", re.IGNORECASE)

ProgressCallback = Callable[..., None]


class MissingScopeError(ValueError):
    """Raised when a scoped import has no scope value (e.g. no transfer number)."""


@dataclass
class ImportOutcome:
    rows_total: int = 0
    rows_valid: int = 0
    rows_failed: int = 0
    write: WriteResult = field(default_factory=WriteResult)
    scope: Optional[str] = None
    positional_rows: int = 0


def extract_scope_value(lines: Iterable[Sequence[str]]) -> Optional[str]:
    """
    Find ``Untuk nomor TO: <value>`` in the leading cell of any line.

    The value may share the cell with the label or sit in the next non-empty
    cell of the same line.
    """
    for cells in lines:
        filled = [cell.strip() for cell in cells if cell and cell.strip()]
        if not filled:
            continue
        match = SCOPE_LINE_PATTERN.search(filled[0])
        if not match:
            continue
        value = match.group(1).strip()
        if not value and len(filled) > 1:
            value = filled[1]
        if value:
            return value
    return None


def parse_rows(
    stream,
    file_name: str,
    schema: TargetSchema,
    *,
    content_type: Optional[str] = None,
    header_scan_rows: int = 25,
    progress_every: int = 1000,
    on_progress: Optional[ProgressCallback] = None,
):
    """
    Ingest and map every row of the file.

    Returns ``(mapped_rows, ingested_file, mapper)`` where ``mapped_rows`` is a
    list of ``(row_number, canonical_row)`` with 1-based data row numbers.
    """
    vocabulary = build_vocabulary(schema.aliases)

    def _rows_parsed(count: int) -> None:
        if on_progress:
            on_progress(rows_parsed=count)

    ingested = open_file_rows(
        stream,
        file_name,
        content_type,
        vocabulary=vocabulary,
        header_scan_rows=header_scan_rows,
        on_rows_parsed=_rows_parsed,
        progress_every=progress_every,
    )
    if on_progress and ingested.estimated_total is not None:
        on_progress(rows_total=ingested.estimated_total)

    ignored = unmatched_headers(ingested.headers, schema.aliases)
    if ignored:
        logger.info("Ignoring columns with no matching field: %s", ignored)

    mapper = ColumnMapper(schema.aliases, schema.positional_fields)
    mapped: List[Tuple[int, Dict[str, str]]] = []
    for row_number, raw_row in enumerate(ingested.rows, start=1):
        mapped.append((row_number, mapper.map(raw_row)))

    logger.info(
        "Parsed %d rows from '%s' (headers=%s, preamble=%d, positional=%d)",
        len(mapped),
        file_name,
        ingested.headers,
        len(ingested.preamble),
        mapper.positional_rows,
    )
    return mapped, ingested, mapper


def validate_rows(
    rows: Sequence[Tuple[int, Dict[str, Any]]],
    schema: TargetSchema,
    ledger: List[RowError],
) -> List[Tuple[int, Dict[str, Any]]]:
    valid: List[Tuple[int, Dict[str, Any]]] = []
    for row_number, row in rows:
        record, errors = validate_row(row, row_number, schema)
        if record is None:
            ledger.extend(errors)
        else:
            valid.append((row_number, record))
    return valid


def run_import(
    *,
    stream,
    file_name: str,
    target_schema: str,
    import_mode: str,
    store,
    content_type: Optional[str] = None,
    scope: Optional[str] = None,
    ledger: Optional[List[RowError]] = None,
    on_progress: Optional[ProgressCallback] = None,
    header_scan_rows: int = 25,
    progress_every: int = 1000,
    chunk_size: Optional[int] = None,
) -> ImportOutcome:
    """
    Run the full pipeline for one file.

    ``on_progress`` receives keyword updates (``phase``, ``rows_total``,
    ``rows_parsed``, ``rows_valid``, ``rows_failed``, ``rows_written``,
    ``duplicates_skipped``, ``write_failed``). Row-level problems are appended
    to ``ledger``; job-level problems raise.
    """
    schema = get_target_schema(target_schema)
    ledger = ledger if ledger is not None else []
    report = on_progress or (lambda **_: None)
    outcome = ImportOutcome()
    start = time.perf_counter()

    report(phase=PHASE_PARSING)
    rows, ingested, mapper = parse_rows(
        stream,
        file_name,
        schema,
        content_type=content_type,
        header_scan_rows=header_scan_rows,
        progress_every=progress_every,
        on_progress=report,
    )
    outcome.rows_total = len(rows)
    outcome.positional_rows = mapper.positional_rows
    report(rows_total=outcome.rows_total, rows_parsed=outcome.rows_total)

    if schema.scope_field:
        scope = scope or extract_scope_value(ingested.preamble + ingested.skipped_rows)
        if not scope:
            raise MissingScopeError(
                f"'{schema.scope_field}' was not supplied and could not be found in '{file_name}' "
                "(expected a line like 'Untuk nomor TO: <number>')"
            )
        outcome.scope = scope
        for _, row in rows:
            row[schema.scope_field] = scope

    report(phase=PHASE_VALIDATING)
    valid = validate_rows(rows, schema, ledger)
    outcome.rows_valid = len(valid)
    outcome.rows_failed = outcome.rows_total - outcome.rows_valid
    report(rows_valid=outcome.rows_valid, rows_failed=outcome.rows_failed)
    logger.info(
        "Validated %d rows for '%s': %d valid, %d rejected",
        outcome.rows_total,
        schema.name,
        outcome.rows_valid,
        outcome.rows_failed,
    )

    report(phase=PHASE_WRITING)

    def _chunk_written(result: WriteResult) -> None:
        report(
            rows_written=result.rows_written,
            duplicates_skipped=result.duplicates_skipped,
            write_failed=result.write_failed,
        )

    outcome.write = write_records(
        store,
        schema,
        valid,
        mode=import_mode,
        chunk_size=chunk_size,
        scope=outcome.scope,
        on_chunk=_chunk_written,
    )
    ledger.extend(outcome.write.errors)
    report(
        rows_written=outcome.write.rows_written,
        duplicates_skipped=outcome.write.duplicates_skipped,
        write_failed=outcome.write.write_failed,
    )

    logger.info(
        "Import of '%s' into '%s' finished in %.2fs: total=%d valid=%d written=%d failed=%d",
        file_name,
        schema.name,
        time.perf_counter() - start,
        outcome.rows_total,
        outcome.rows_valid,
        outcome.write.rows_written,
        outcome.rows_failed,
    )
    return outcome
