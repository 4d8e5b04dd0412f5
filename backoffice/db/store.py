"""
Upsert-capable target store keyed by each target's natural key.

The import pipeline only talks to the store through ``delete_all``,
``existing_keys`` and ``upsert``; price quotes read snapshots through
``fetch_all``/``fetch_one``. The SQL implementation relies on the dialect's
``INSERT ... ON CONFLICT DO UPDATE`` being atomic per row, so concurrent jobs
writing the same keys simply overwrite each other (last write wins).
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError

from backoffice.db.session import get_engine
from backoffice.db.tables import create_target_tables, get_target_table
from backoffice.domain.imports.target_schemas import (
    FIELD_DATE,
    FIELD_DECIMAL,
    FIELD_INTEGER,
    TargetSchema,
)

logger = logging.getLogger(__name__)

KEY_LOOKUP_BATCH = 500


class StoreError(Exception):
    """Base exception for target store operations."""
    pass


class RecordRejectedError(StoreError):
    """Raised when the store refuses one or more records (constraint or data errors)."""
    pass


class StoreUnavailableError(StoreError):
    """Raised when the store cannot be reached or the statement cannot run at all."""
    pass


@contextmanager
def _translate_errors(action: str, table_name: str) -> Iterator[None]:
    try:
        yield
    except (IntegrityError, DataError) as exc:
        raise RecordRejectedError(f"{action} rejected by '{table_name}': {exc.orig}") from exc
    except SQLAlchemyError as exc:
        raise StoreUnavailableError(f"{action} failed for '{table_name}': {exc}") from exc


def _to_db_value(kind: str, value: Any) -> Any:
    if value is None:
        return None
    if kind == FIELD_DATE and isinstance(value, str):
        return date.fromisoformat(value)
    if kind == FIELD_DECIMAL and isinstance(value, str):
        return Decimal(value)
    if kind == FIELD_INTEGER and isinstance(value, str):
        return int(value)
    return value


class SqlTargetStore:
    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    def ensure_tables(self) -> None:
        with _translate_errors("Table bootstrap", "*"):
            create_target_tables(self.engine)

    def _insert(self, table):
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise StoreUnavailableError(f"Upserts are not supported on dialect '{dialect}'")
        return insert(table)

    def _row_for(self, schema: TargetSchema, record: Mapping[str, Any]) -> Dict[str, Any]:
        row = {spec.name: _to_db_value(spec.kind, record.get(spec.name)) for spec in schema.fields}
        if schema.has_derived_key:
            row[schema.key_column] = schema.natural_key(record)
        return row

    def delete_all(self, schema: TargetSchema, scope: Optional[str] = None) -> int:
        """Delete every row of the target, or only the rows of one scope value."""
        table = get_target_table(schema)
        statement = delete(table)
        if schema.scope_field and scope is not None:
            statement = statement.where(table.c[schema.scope_field] == scope)
        with _translate_errors("Delete", table.name):
            with self.engine.begin() as conn:
                result = conn.execute(statement)
        logger.info("Deleted %s rows from '%s'%s", result.rowcount, table.name, f" (scope={scope})" if scope else "")
        return result.rowcount or 0

    def existing_keys(self, schema: TargetSchema, keys: Iterable[str]) -> Set[str]:
        table = get_target_table(schema)
        key_column = table.c[schema.key_column]
        wanted = list(dict.fromkeys(keys))
        found: Set[str] = set()
        with _translate_errors("Key lookup", table.name):
            with self.engine.connect() as conn:
                for start in range(0, len(wanted), KEY_LOOKUP_BATCH):
                    batch = wanted[start:start + KEY_LOOKUP_BATCH]
                    if schema.has_derived_key:
                        params = batch
                    else:
                        spec = schema.get_field(schema.key_column)
                        params = [_to_db_value(spec.kind, value) for value in batch]
                    rows = conn.execute(select(key_column).where(key_column.in_(params)))
                    found.update(str(row[0]) for row in rows)
        return found

    def upsert(self, schema: TargetSchema, records: Sequence[Mapping[str, Any]]) -> int:
        """Insert-or-update ``records`` in a single statement; returns the number of rows sent."""
        if not records:
            return 0
        table = get_target_table(schema)
        rows = [self._row_for(schema, record) for record in records]
        statement = self._insert(table).values(rows)
        updates = {
            column.name: statement.excluded[column.name]
            for column in table.columns
            if column.name not in ("id", schema.key_column)
        }
        statement = statement.on_conflict_do_update(
            index_elements=[table.c[schema.key_column]],
            set_=updates,
        )
        with _translate_errors("Upsert", table.name):
            with self.engine.begin() as conn:
                conn.execute(statement)
        return len(rows)

    def fetch_all(self, schema: TargetSchema) -> List[Dict[str, Any]]:
        table = get_target_table(schema)
        with _translate_errors("Read", table.name):
            with self.engine.connect() as conn:
                result = conn.execute(select(table).order_by(table.c.id))
                return [dict(row) for row in result.mappings()]

    def fetch_one(self, schema: TargetSchema, key: Any) -> Optional[Dict[str, Any]]:
        table = get_target_table(schema)
        if not schema.has_derived_key:
            key = _to_db_value(schema.get_field(schema.key_column).kind, key)
        with _translate_errors("Read", table.name):
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(table).where(table.c[schema.key_column] == key)
                ).mappings().first()
        return dict(row) if row else None
