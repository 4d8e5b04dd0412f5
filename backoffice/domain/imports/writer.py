"""
Batch writer for validated import records.

Records are de-duplicated on the target's natural key, classified as new or
existing, and upserted in chunks. A chunk the store rejects is retried one
record at a time so a single bad record only costs itself.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from backoffice.db.store import RecordRejectedError
from backoffice.domain.imports.target_schemas import TargetSchema
from backoffice.domain.imports.validators import RowError

logger = logging.getLogger(__name__)

IMPORT_MODE_AMEND = "amend"
IMPORT_MODE_REPLACE = "replace"
IMPORT_MODES = (IMPORT_MODE_AMEND, IMPORT_MODE_REPLACE)

DATABASE_FIELD = "database"

NumberedRecord = Tuple[int, Dict[str, Any]]


@dataclass
class WriteResult:
    rows_written: int = 0
    rows_new: int = 0
    rows_updated: int = 0
    duplicates_skipped: int = 0
    write_failed: int = 0
    rows_deleted: int = 0
    chunks_written: int = 0
    errors: List[RowError] = field(default_factory=list)
    # Natural key -> row numbers sharing it, first occurrence first.
    duplicates: Dict[str, List[int]] = field(default_factory=dict)


def dedupe_records(
    schema: TargetSchema,
    records: Sequence[NumberedRecord],
) -> Tuple[List[NumberedRecord], Dict[str, List[int]], List[RowError]]:
    """
    Keep the first occurrence of every natural key.

    Returns the unique records (input order preserved), the duplicate report
    and one error entry per dropped duplicate.
    """
    first_rows: Dict[str, int] = {}
    unique: List[NumberedRecord] = []
    duplicates: Dict[str, List[int]] = {}
    errors: List[RowError] = []

    for row_number, record in records:
        key = schema.natural_key(record)
        first_row = first_rows.get(key)
        if first_row is None:
            first_rows[key] = row_number
            unique.append((row_number, record))
            continue
        duplicates.setdefault(key, [first_row]).append(row_number)
        errors.append(
            RowError(
                row=row_number,
                field=schema.key_label,
                raw_value=key,
                message=f"Duplicate {schema.key_label} '{key}' (first seen on row {first_row})",
            )
        )

    if duplicates:
        logger.info(
            "Skipped %d duplicate records across %d keys for '%s'",
            len(errors),
            len(duplicates),
            schema.name,
        )
    return unique, duplicates, errors


def _write_one_by_one(store, schema: TargetSchema, chunk: Sequence[NumberedRecord], result: WriteResult) -> List[str]:
    written_keys = []
    for row_number, record in chunk:
        try:
            store.upsert(schema, [record])
        except RecordRejectedError as exc:
            result.write_failed += 1
            result.errors.append(
                RowError(
                    row=row_number,
                    field=DATABASE_FIELD,
                    raw_value=schema.natural_key(record),
                    message=str(exc),
                )
            )
            continue
        result.rows_written += 1
        written_keys.append(schema.natural_key(record))
    return written_keys


def write_records(
    store,
    schema: TargetSchema,
    records: Sequence[NumberedRecord],
    *,
    mode: str = IMPORT_MODE_AMEND,
    chunk_size: Optional[int] = None,
    scope: Optional[str] = None,
    on_chunk: Optional[Callable[[WriteResult], None]] = None,
) -> WriteResult:
    """
    Upsert ``(row_number, record)`` pairs into the target store.

    Args:
        store: Object exposing ``delete_all``, ``existing_keys`` and ``upsert``.
        schema: Target schema (natural key, chunk size).
        records: Validated records in file order.
        mode: ``amend`` keeps existing rows; ``replace`` deletes first.
        chunk_size: Overrides the schema's chunk size.
        scope: Limits replace-mode deletion to one scope value.
        on_chunk: Called with the running result after every chunk.

    Raises:
        StoreUnavailableError: the store cannot be used at all. Chunks already
        committed stay committed.
    """
    if mode not in IMPORT_MODES:
        raise ValueError(f"Unknown import mode '{mode}'. Expected one of: {', '.join(IMPORT_MODES)}")

    size = chunk_size or schema.chunk_size
    if size <= 0:
        raise ValueError("chunk_size must be positive")

    result = WriteResult()
    start = time.perf_counter()

    if mode == IMPORT_MODE_REPLACE:
        result.rows_deleted = store.delete_all(schema, scope)

    unique, result.duplicates, duplicate_errors = dedupe_records(schema, records)
    result.duplicates_skipped = len(duplicate_errors)
    result.errors.extend(duplicate_errors)

    existing = set()
    if mode == IMPORT_MODE_AMEND and unique:
        existing = store.existing_keys(schema, [schema.natural_key(record) for _, record in unique])
        logger.info("%d of %d records already exist in '%s'", len(existing), len(unique), schema.table_name)

    total_chunks = (len(unique) + size - 1) // size
    for index in range(0, len(unique), size):
        chunk = unique[index:index + size]
        try:
            store.upsert(schema, [record for _, record in chunk])
            written_keys = [schema.natural_key(record) for _, record in chunk]
            result.rows_written += len(chunk)
        except RecordRejectedError as exc:
            logger.warning(
                "Chunk %d/%d rejected by '%s' (%s); retrying record by record",
                index // size + 1,
                total_chunks,
                schema.table_name,
                exc,
            )
            written_keys = _write_one_by_one(store, schema, chunk, result)

        for key in written_keys:
            if key in existing:
                result.rows_updated += 1
            else:
                result.rows_new += 1
        result.chunks_written += 1
        if on_chunk:
            on_chunk(result)

    logger.info(
        "Wrote %d records to '%s' in %d chunks (%.2fs): new=%d updated=%d duplicates=%d failed=%d",
        result.rows_written,
        schema.table_name,
        result.chunks_written,
        time.perf_counter() - start,
        result.rows_new,
        result.rows_updated,
        result.duplicates_skipped,
        result.write_failed,
    )
    return result
