"""Shared models used across registry, drivers, cache and bridge modules."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

ConnectionId = str


class Dialect(str, Enum):
    """SQL dialect families with a driver implementation."""

    MYSQL = "mysql"
    SQLITE = "sqlite"
    POSTGRES = "postgres"

    @property
    def file_based(self) -> bool:
        return self is Dialect.SQLITE


DEFAULT_PORTS: dict[Dialect, int] = {
    Dialect.MYSQL: 3306,
    Dialect.POSTGRES: 5432,
}


class ConnectionDraft(BaseModel):
    """User-supplied connection fields, minus identity and secrets."""

    model_config = ConfigDict(frozen=True)

    name: str
    dialect: Dialect
    host: str | None = None
    port: int | None = None
    database: str | None = None
    user: str | None = None
    path: str | None = None

    @model_validator(mode="after")
    def _check_dialect_fields(self) -> "ConnectionDraft":
        if not self.name.strip():
            raise ValueError("Connection name must not be empty.")
        if self.dialect.file_based:
            if not self.path:
                raise ValueError(f"{self.dialect.value} connections require a file path.")
        elif not self.host or not self.database:
            raise ValueError(f"{self.dialect.value} connections require host and database.")
        return self

    @property
    def effective_port(self) -> int | None:
        if self.dialect.file_based:
            return None
        return self.port or DEFAULT_PORTS.get(self.dialect)


class ConnectionConfig(ConnectionDraft):
    """Durable, non-secret connection configuration keyed by a stable id."""

    id: ConnectionId = Field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def from_draft(cls, draft: ConnectionDraft, *, connection_id: ConnectionId | None = None) -> "ConnectionConfig":
        data = draft.model_dump()
        if connection_id is not None:
            data["id"] = connection_id
        return cls(**data)

    def describe(self) -> str:
        """Short human-readable location string."""

        if self.dialect.file_based:
            return f"{self.dialect.value} · {self.path}"
        return f"{self.dialect.value} · {self.host}:{self.effective_port}/{self.database}"


class TableKind(str, Enum):
    TABLE = "table"
    VIEW = "view"


class KeyKind(str, Enum):
    PRIMARY = "primary"
    FOREIGN = "foreign"
    NONE = "none"


class ForeignKeyRef(BaseModel):
    """Target of a foreign-key column."""

    model_config = ConfigDict(frozen=True)

    table: str
    column: str


class ColumnSchema(BaseModel):
    """Normalized column description."""

    model_config = ConfigDict(frozen=True)

    name: str
    data_type: str
    nullable: bool = True
    key_kind: KeyKind = KeyKind.NONE
    foreign_key_ref: ForeignKeyRef | None = None
    default_value: str | None = None


class TableSchema(BaseModel):
    """Normalized table or view description."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: TableKind = TableKind.TABLE
    columns: tuple[ColumnSchema, ...] = ()
    schema_name: str | None = None

    @property
    def object_name(self) -> str:
        """Name inside its schema, without the display prefix."""

        prefix = f"{self.schema_name}." if self.schema_name else ""
        if prefix and self.name.startswith(prefix):
            return self.name[len(prefix) :]
        return self.name

    def column(self, name: str) -> ColumnSchema | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None


class SchemaModel(BaseModel):
    """Dialect-independent schema; always reconstructable from the database."""

    model_config = ConfigDict(frozen=True)

    tables: tuple[TableSchema, ...] = ()

    def table(self, name: str) -> TableSchema | None:
        lowered = name.lower()
        for table in self.tables:
            if table.name.lower() == lowered:
                return table
        return None

    @property
    def table_names(self) -> tuple[str, ...]:
        return tuple(table.name for table in self.tables)


class SchemaCacheEntry(BaseModel):
    """One cached schema per connection, overwritten on each refresh."""

    model_config = ConfigDict(frozen=True)

    connection_id: ConnectionId
    schema_model: SchemaModel
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))


class StatementKind(str, Enum):
    """Coarse classification deciding row capping and result shape."""

    READ = "read"
    WRITE = "write"
    DDL = "ddl"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Normalized statement output handed to the presentation layer."""

    columns: tuple[str, ...]
    rows: tuple[tuple[object, ...], ...]
    executed_statement: str
    kind: StatementKind = StatementKind.READ
    rows_affected: int | None = None
    truncated: bool = False
    elapsed_ms: int = 0

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def status(self) -> str:
        if self.kind is StatementKind.READ:
            suffix = "+" if self.truncated else ""
            return f"{self.row_count}{suffix} row(s)"
        if self.rows_affected is not None:
            return f"{self.rows_affected} row(s) affected"
        return "OK"


__all__ = [
    "ColumnSchema",
    "ConnectionConfig",
    "ConnectionDraft",
    "ConnectionId",
    "DEFAULT_PORTS",
    "Dialect",
    "ForeignKeyRef",
    "KeyKind",
    "QueryResult",
    "SchemaCacheEntry",
    "SchemaModel",
    "StatementKind",
    "TableKind",
    "TableSchema",
]
