"""
SQLAlchemy Core tables for every import target.

Tables are derived from the target schema registry so the column set always
matches the canonical fields the pipeline produces. Every table carries a
surrogate ``id`` and a unique natural-key column that upserts conflict on.
"""
from __future__ import annotations

import logging
from typing import Dict

from sqlalchemy import Column, Date, Integer, MetaData, Numeric, String, Table
from sqlalchemy.engine import Engine

from backoffice.domain.imports.target_schemas import (
    FIELD_DATE,
    FIELD_DECIMAL,
    FIELD_INTEGER,
    SCHEMAS,
    TargetSchema,
)

logger = logging.getLogger(__name__)

metadata = MetaData()


def _column_type(kind: str):
    if kind == FIELD_INTEGER:
        return Integer()
    if kind == FIELD_DECIMAL:
        return Numeric(14, 2)
    if kind == FIELD_DATE:
        return Date()
    return String(255)


def _build_table(schema: TargetSchema) -> Table:
    columns = [Column("id", Integer, primary_key=True, autoincrement=True)]
    if schema.has_derived_key:
        columns.append(Column(schema.key_column, String(600), nullable=False, unique=True))
    for spec in schema.fields:
        is_key = spec.name == schema.key_column
        columns.append(
            Column(
                spec.name,
                _column_type(spec.kind),
                nullable=not (spec.required or is_key),
                unique=is_key,
                index=spec.name == schema.scope_field,
            )
        )
    return Table(schema.table_name, metadata, *columns)


TARGET_TABLES: Dict[str, Table] = {name: _build_table(schema) for name, schema in SCHEMAS.items()}


def get_target_table(schema: TargetSchema) -> Table:
    return TARGET_TABLES[schema.name]


def create_target_tables(engine: Engine) -> None:
    """Create every import target table that does not exist yet."""
    metadata.create_all(engine, checkfirst=True)
    logger.info("Target tables ready: %s", ", ".join(sorted(t.name for t in TARGET_TABLES.values())))
