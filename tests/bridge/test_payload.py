"""Tests for advisory settings and schema descriptions."""

from __future__ import annotations

from pathlib import Path

from sqldeck.bridge.payload import SETTINGS_SECTION, build_payload, column_description
from sqldeck.models import (
    ColumnSchema,
    ConnectionConfig,
    Dialect,
    ForeignKeyRef,
    KeyKind,
    SchemaCacheEntry,
    SchemaModel,
    TableSchema,
)


def _entry() -> SchemaCacheEntry:
    orders = TableSchema(
        name="orders",
        columns=(
            ColumnSchema(name="id", data_type="integer", nullable=False, key_kind=KeyKind.PRIMARY),
            ColumnSchema(
                name="user_id",
                data_type="integer",
                key_kind=KeyKind.FOREIGN,
                foreign_key_ref=ForeignKeyRef(table="users", column="id"),
            ),
            ColumnSchema(name="status", data_type="text", default_value="'new'"),
        ),
    )
    return SchemaCacheEntry(connection_id="conn", schema_model=SchemaModel(tables=(orders,)))


def test_column_description_mentions_keys_and_defaults() -> None:
    id_column, user_column, status_column = _entry().schema_model.tables[0].columns

    assert column_description(id_column) == "id(Type: integer, Null: NO, Default: null, Key: PRIMARY)"
    assert column_description(user_column) == "user_id(Type: integer, Null: YES, Default: null, Key: FOREIGN -> users.id)"
    assert column_description(status_column) == "status(Type: text, Null: YES, Default: 'new')"


def test_build_payload_points_settings_at_schema_file(tmp_path: Path) -> None:
    config = ConnectionConfig(id="conn", name="local", dialect=Dialect.SQLITE, path="/data/shop.db")
    schema_file = tmp_path / "conn.json"

    payload = build_payload(config, _entry(), schema_file, {"column-new-line": "off"})

    assert SETTINGS_SECTION == "sqlLanguageServer"
    assert payload.dialect == "sqlite3"
    assert payload.table_names == ("orders",)
    assert payload.settings == {
        "connections": [{"name": "local", "adapter": "json", "filename": str(schema_file), "dialect": "sqlite3"}],
        "lint": {"rules": {"column-new-line": "off"}},
    }
    table = payload.schema["tables"][0]
    assert table["database"] == "/data/shop.db"
    assert table["tableName"] == "orders"
    assert [column["columnName"] for column in table["columns"]] == ["id", "user_id", "status"]


def test_network_dialects_use_database_name() -> None:
    config = ConnectionConfig(id="conn", name="dw", dialect=Dialect.POSTGRES, host="pg", database="warehouse")

    payload = build_payload(config, _entry(), Path("conn.json"), {})

    assert payload.dialect == "postgres"
    assert payload.schema["tables"][0]["database"] == "warehouse"
