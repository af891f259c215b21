"""Tests for the SQLite driver against real database files."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path

import pytest

from sqldeck.drivers.sqlite import SqliteDriver
from sqldeck.errors import DatabaseFileNotFoundError, QueryCancelledError, QueryExecutionError, QuerySyntaxError
from sqldeck.models import ConnectionConfig, Dialect, KeyKind, StatementKind, TableKind
from sqldeck.schema import normalize_schema


@pytest.fixture
def database(tmp_path: Path) -> Path:
    path = tmp_path / "shop.db"
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT NOT NULL);
        CREATE TABLE orders (
            id INTEGER PRIMARY KEY,
            user_id INTEGER REFERENCES users(id),
            status TEXT DEFAULT 'new'
        );
        CREATE VIEW open_orders AS SELECT * FROM orders WHERE status = 'new';
        """
    )
    conn.executemany("INSERT INTO users (id, email) VALUES (?, ?)", [(n, f"u{n}@example.com") for n in range(500)])
    conn.commit()
    conn.close()
    return path


def _config(path: Path | str) -> ConnectionConfig:
    return ConnectionConfig(name="shop", dialect=Dialect.SQLITE, path=str(path))


@pytest.mark.anyio
async def test_missing_file_fails_before_connecting(tmp_path: Path) -> None:
    with pytest.raises(DatabaseFileNotFoundError):
        await SqliteDriver().connect(_config(tmp_path / "absent.db"), None)


@pytest.mark.anyio
async def test_select_is_capped_by_wrapper(database: Path) -> None:
    driver = SqliteDriver()
    handle = await driver.connect(_config(database), None)
    try:
        result = await driver.execute(handle, "SELECT * FROM users", 100)
    finally:
        await driver.disconnect(handle)

    assert result.row_count == 100
    assert result.truncated is True
    assert result.columns == ("id", "email")
    assert result.executed_statement == "SELECT * FROM (\nSELECT * FROM users\n) AS sqldeck_limited LIMIT 101"


@pytest.mark.anyio
async def test_select_with_own_limit_is_not_corrupted(database: Path) -> None:
    driver = SqliteDriver()
    handle = await driver.connect(_config(database), None)
    try:
        result = await driver.execute(handle, "SELECT id FROM users ORDER BY id DESC LIMIT 3;", 100)
    finally:
        await driver.disconnect(handle)

    assert result.rows == ((499,), (498,), (497,))
    assert result.truncated is False


@pytest.mark.anyio
@pytest.mark.parametrize(
    "statement",
    [
        "SELECT * FROM users -- all rows",
        "SELECT * FROM users; -- done",
        "SELECT * FROM users /* trailing */ ;",
        "-- leading\nSELECT * FROM users WHERE email <> '--'",
    ],
)
async def test_trailing_comments_do_not_break_wrapper(database: Path, statement: str) -> None:
    driver = SqliteDriver()
    handle = await driver.connect(_config(database), None)
    try:
        result = await driver.execute(handle, statement, 100)
    finally:
        await driver.disconnect(handle)

    assert result.row_count == 100
    assert result.truncated is True
    assert ";" not in result.executed_statement


@pytest.mark.anyio
async def test_pragma_is_capped_client_side(database: Path) -> None:
    driver = SqliteDriver()
    handle = await driver.connect(_config(database), None)
    try:
        result = await driver.execute(handle, "PRAGMA table_info(orders)", 2)
    finally:
        await driver.disconnect(handle)

    assert result.kind is StatementKind.READ
    assert result.row_count == 2
    assert result.truncated is True
    assert result.executed_statement == "PRAGMA table_info(orders)"


@pytest.mark.anyio
async def test_write_reports_affected_rows(database: Path) -> None:
    driver = SqliteDriver()
    handle = await driver.connect(_config(database), None)
    try:
        result = await driver.execute(handle, "UPDATE users SET email = 'x' WHERE id < 10", 5)
    finally:
        await driver.disconnect(handle)

    assert result.kind is StatementKind.WRITE
    assert result.rows_affected == 10
    assert result.rows == ()


@pytest.mark.anyio
async def test_syntax_error_keeps_message_and_statement(database: Path) -> None:
    driver = SqliteDriver()
    handle = await driver.connect(_config(database), None)
    try:
        with pytest.raises(QuerySyntaxError) as excinfo:
            await driver.execute(handle, "SELEC nope", 5)
    finally:
        await driver.disconnect(handle)

    assert "syntax error" in str(excinfo.value)
    assert excinfo.value.statement == "SELEC nope"


@pytest.mark.anyio
async def test_schema_facts_normalize_keys(database: Path) -> None:
    driver = SqliteDriver()
    handle = await driver.connect(_config(database), None)
    try:
        schema = normalize_schema(await driver.fetch_schema_facts(handle))
    finally:
        await driver.disconnect(handle)

    assert schema.table_names == ("open_orders", "orders", "users")
    assert schema.table("open_orders").kind is TableKind.VIEW
    orders = schema.table("orders")
    assert orders.column("id").key_kind is KeyKind.PRIMARY
    assert orders.column("user_id").key_kind is KeyKind.FOREIGN
    assert orders.column("user_id").foreign_key_ref.table == "users"
    assert orders.column("status").default_value == "'new'"
    assert schema.table("users").column("email").nullable is False


@pytest.mark.anyio
async def test_interrupt_cancels_running_statement(database: Path) -> None:
    driver = SqliteDriver()
    handle = await driver.connect(_config(database), None)
    endless = "WITH RECURSIVE n(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM n) SELECT count(*) FROM n"
    try:
        work = asyncio.create_task(driver.execute(handle, endless, 10))
        await asyncio.sleep(0.2)
        assert await driver.interrupt(handle) is True
        with pytest.raises(QueryCancelledError):
            await asyncio.wait_for(work, 5)
        result = await driver.execute(handle, "SELECT 1", 10)
    finally:
        await driver.disconnect(handle)

    assert result.rows == ((1,),)


def test_identifiers_are_escaped() -> None:
    driver = SqliteDriver()

    assert driver.quote_identifier('we"ird') == '"we""ird"'
    assert driver.preview_statement("users", 0) == 'SELECT * FROM "users" LIMIT 1'
    with pytest.raises(QueryExecutionError):
        driver.preview_statement("users", order_by="id", direction="sideways")
