"""Maps a connection and its normalized schema into advisory-server settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping

from ..models import ColumnSchema, ConnectionConfig, ConnectionId, Dialect, KeyKind, SchemaCacheEntry, SchemaModel

SETTINGS_SECTION = "sqlLanguageServer"

ADAPTER_TAGS: Mapping[Dialect, str] = {
    Dialect.MYSQL: "mysql",
    Dialect.POSTGRES: "postgres",
    Dialect.SQLITE: "sqlite3",
}


@dataclass(frozen=True, slots=True)
class BridgePayload:
    """Everything handed to the advisory process for one connection."""

    connection_id: ConnectionId
    dialect: str
    settings: dict[str, Any]
    schema: dict[str, Any]
    schema_file: Path
    fetched_at: datetime
    table_names: tuple[str, ...] = field(default=())


def column_description(column: ColumnSchema) -> str:
    default = column.default_value if column.default_value is not None else "null"
    details = f"Type: {column.data_type}, Null: {'YES' if column.nullable else 'NO'}, Default: {default}"
    if column.key_kind is KeyKind.PRIMARY:
        details += ", Key: PRIMARY"
    elif column.key_kind is KeyKind.FOREIGN and column.foreign_key_ref is not None:
        ref = column.foreign_key_ref
        details += f", Key: FOREIGN -> {ref.table}.{ref.column}"
    return f"{column.name}({details})"


def schema_description(config: ConnectionConfig, schema: SchemaModel) -> dict[str, Any]:
    """Schema in the JSON-adapter format the advisory server loads from disk."""

    database = config.database or config.path or config.name
    return {
        "tables": [
            {
                "catalog": None,
                "database": database,
                "tableName": table.name,
                "columns": [
                    {"columnName": column.name, "description": column_description(column)}
                    for column in table.columns
                ],
            }
            for table in schema.tables
        ],
        "functions": [],
    }


def build_payload(
    config: ConnectionConfig,
    entry: SchemaCacheEntry,
    schema_file: Path,
    lint_rules: Mapping[str, object],
) -> BridgePayload:
    """Settings pushed via `workspace/didChangeConfiguration` plus the schema they point at."""

    dialect = ADAPTER_TAGS.get(config.dialect, config.dialect.value)
    settings = {
        "connections": [
            {
                "name": config.name,
                "adapter": "json",
                "filename": str(schema_file),
                "dialect": dialect,
            }
        ],
        "lint": {"rules": dict(lint_rules)},
    }
    return BridgePayload(
        connection_id=config.id,
        dialect=dialect,
        settings=settings,
        schema=schema_description(config, entry.schema_model),
        schema_file=schema_file,
        fetched_at=entry.fetched_at,
        table_names=entry.schema_model.table_names,
    )


__all__ = [
    "ADAPTER_TAGS",
    "BridgePayload",
    "SETTINGS_SECTION",
    "build_payload",
    "column_description",
    "schema_description",
]
