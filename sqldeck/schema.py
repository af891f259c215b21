"""Schema extraction: raw dialect catalog facts into the normalized model."""

from __future__ import annotations

import logging
from typing import Iterable

from .drivers.base import RawForeignKey, SchemaFacts
from .errors import QueryExecutionError, QueryPermissionError, SchemaExtractionError
from .models import (
    ColumnSchema,
    ConnectionId,
    ForeignKeyRef,
    KeyKind,
    SchemaModel,
    TableKind,
    TableSchema,
)
from .pool import ConnectionPool

LOG = logging.getLogger(__name__)

_VIEW_KINDS = frozenset({"view", "system view", "materialized view"})


def normalize_schema(facts: SchemaFacts) -> SchemaModel:
    """Build a `SchemaModel`; primary beats foreign and the first reference per column wins."""

    references: dict[tuple[str, str], RawForeignKey] = {}
    for fk in facts.foreign_keys:
        references.setdefault((fk.table, fk.column), fk)

    columns_by_table: dict[str, list[ColumnSchema]] = {}
    for raw in facts.columns:
        fk = references.get((raw.table, raw.name))
        if raw.primary:
            key_kind = KeyKind.PRIMARY
        elif fk is not None:
            key_kind = KeyKind.FOREIGN
        else:
            key_kind = KeyKind.NONE
        columns_by_table.setdefault(raw.table, []).append(
            ColumnSchema(
                name=raw.name,
                data_type=raw.data_type,
                nullable=raw.nullable,
                key_kind=key_kind,
                foreign_key_ref=ForeignKeyRef(table=fk.ref_table, column=fk.ref_column) if fk else None,
                default_value=raw.default,
            )
        )

    tables: dict[str, TableSchema] = {}
    for raw_table in facts.tables:
        if raw_table.name in tables:
            continue
        kind = TableKind.VIEW if raw_table.kind.lower() in _VIEW_KINDS else TableKind.TABLE
        tables[raw_table.name] = TableSchema(
            name=raw_table.name,
            kind=kind,
            columns=tuple(columns_by_table.get(raw_table.name, ())),
            schema_name=raw_table.schema,
        )
    ordered = sorted(tables.values(), key=lambda table: (table.name.lower(), table.name))
    return SchemaModel(tables=tuple(ordered))


def order_tables(schema: SchemaModel, starred: Iterable[str] = ()) -> tuple[TableSchema, ...]:
    """Starred tables first, then the rest; both groups alphabetical."""

    pinned = set(starred)
    return tuple(
        sorted(schema.tables, key=lambda table: (table.name not in pinned, table.name.lower(), table.name))
    )


class SchemaExtractor:
    """Produces normalized schemas through the pool's handle for a connection."""

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    async def extract(self, connection_id: ConnectionId) -> SchemaModel:
        try:
            facts = await self._pool.fetch_schema_facts(connection_id)
        except (QueryPermissionError, SchemaExtractionError):
            raise
        except QueryExecutionError as exc:
            raise SchemaExtractionError(str(exc)) from exc
        schema = normalize_schema(facts)
        LOG.debug(
            "Extracted schema",
            extra={"connection_id": connection_id, "tables": len(schema.tables)},
        )
        return schema


__all__ = ["SchemaExtractor", "normalize_schema", "order_tables"]
