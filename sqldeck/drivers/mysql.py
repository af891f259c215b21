"""MySQL/MariaDB driver backed by aiomysql."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

import aiomysql

from ..errors import (
    AuthError,
    ConnectionBackendError,
    NetworkError,
    QueryCancelledError,
    QueryExecutionError,
    QueryPermissionError,
    QuerySyntaxError,
    QueryTimeoutError,
    SchemaExtractionError,
)
from ..models import ConnectionConfig, Dialect
from .base import DialectDriver, RawColumn, RawForeignKey, RawTable, SchemaFacts, StatementPlan

LOG = logging.getLogger(__name__)

_AUTH_CODES = frozenset({1044, 1045, 1698})
_NETWORK_CODES = frozenset({2002, 2003, 2005, 2006, 2013})
_SYNTAX_CODES = frozenset({1064, 1149})
_PERMISSION_CODES = frozenset({1044, 1142, 1143, 1227, 1370})
_TIMEOUT_CODES = frozenset({1205, 3024})
_INTERRUPTED_CODE = 1317
_DUPLICATE_COLUMN_CODE = 1060

_TABLES_QUERY = """
    SELECT table_name AS name, table_type AS kind
    FROM information_schema.tables
    WHERE table_schema = DATABASE()
    ORDER BY table_name
"""

_COLUMNS_QUERY = """
    SELECT table_name, column_name, column_type, is_nullable, column_default, column_key
    FROM information_schema.columns
    WHERE table_schema = DATABASE()
    ORDER BY table_name, ordinal_position
"""

_FOREIGN_KEYS_QUERY = """
    SELECT table_name, column_name, referenced_table_name, referenced_column_name
    FROM information_schema.key_column_usage
    WHERE table_schema = DATABASE()
    AND referenced_table_name IS NOT NULL
    ORDER BY table_name, ordinal_position
"""


def _error_code(exc: BaseException) -> int | None:
    if exc.args and isinstance(exc.args[0], int):
        return exc.args[0]
    return None


def _error_message(exc: BaseException) -> str:
    if len(exc.args) >= 2:
        return str(exc.args[1])
    return str(exc)


class MysqlDriver(DialectDriver):
    """Network dialect; statements cannot be cancelled in-band, so interrupts drop the socket."""

    dialect = Dialect.MYSQL
    quote_char = "`"

    def __init__(self, *, connect_timeout: float = 10.0) -> None:
        self._connect_timeout = connect_timeout

    async def connect(self, config: ConnectionConfig, credential: str | None) -> aiomysql.Connection:
        try:
            return await aiomysql.connect(
                host=config.host,
                port=config.effective_port,
                user=config.user or "",
                password=credential or "",
                db=config.database,
                autocommit=True,
                connect_timeout=self._connect_timeout,
            )
        except aiomysql.MySQLError as exc:
            code = _error_code(exc)
            if code in _AUTH_CODES:
                raise AuthError(_error_message(exc)) from exc
            if code in _NETWORK_CODES:
                raise NetworkError(_error_message(exc)) from exc
            raise ConnectionBackendError(_error_message(exc)) from exc
        except (OSError, asyncio.TimeoutError) as exc:
            raise NetworkError(f"Unable to reach {config.host}:{config.effective_port}: {exc}") from exc

    async def disconnect(self, handle: aiomysql.Connection) -> None:
        try:
            await handle.ensure_closed()
        except (aiomysql.MySQLError, OSError) as exc:
            LOG.debug("Closing mysql handle abruptly: %s", exc)
            handle.close()

    async def interrupt(self, handle: aiomysql.Connection) -> bool:
        handle.close()
        return False

    async def fetch_schema_facts(self, handle: aiomysql.Connection) -> SchemaFacts:
        facts = SchemaFacts()
        try:
            async with handle.cursor() as cursor:
                await cursor.execute(_TABLES_QUERY)
                for name, kind in await cursor.fetchall():
                    facts.tables.append(RawTable(name=name, kind=kind))
                await cursor.execute(_COLUMNS_QUERY)
                for table, column, data_type, nullable, default, key in await cursor.fetchall():
                    facts.columns.append(
                        RawColumn(
                            table=table,
                            name=column,
                            data_type=data_type,
                            nullable=nullable == "YES",
                            default=None if default is None else str(default),
                            primary=key == "PRI",
                        )
                    )
                await cursor.execute(_FOREIGN_KEYS_QUERY)
                for table, column, ref_table, ref_column in await cursor.fetchall():
                    facts.foreign_keys.append(
                        RawForeignKey(table=table, column=column, ref_table=ref_table, ref_column=ref_column)
                    )
        except aiomysql.MySQLError as exc:
            if _error_code(exc) in _PERMISSION_CODES:
                raise QueryPermissionError(_error_message(exc)) from exc
            raise SchemaExtractionError(f"Failed to read information_schema: {_error_message(exc)}") from exc
        return facts

    async def _fetch_read(
        self, handle: aiomysql.Connection, plan: StatementPlan
    ) -> tuple[tuple[str, ...], Sequence[Sequence[object]], str]:
        try:
            columns, rows = await self._fetch(handle, plan.sql, plan.fetch_limit)
            return columns, rows, plan.sql
        except aiomysql.MySQLError as exc:
            # Derived tables reject duplicate column names that a bare SELECT allows.
            if not plan.wrapped or _error_code(exc) != _DUPLICATE_COLUMN_CODE:
                raise
        LOG.debug("Falling back to client-side row cap", extra={"dialect": self.dialect.value})
        columns, rows = await self._fetch(handle, plan.source, plan.fetch_limit)
        return columns, rows, plan.source

    async def _fetch(
        self, handle: aiomysql.Connection, sql: str, fetch_limit: int | None
    ) -> tuple[tuple[str, ...], Sequence[Sequence[object]]]:
        async with handle.cursor() as cursor:
            await cursor.execute(sql)
            if cursor.description is None:
                return (), []
            columns = tuple(item[0] for item in cursor.description)
            if fetch_limit is None:
                rows = await cursor.fetchall()
            else:
                rows = await cursor.fetchmany(fetch_limit)
        return columns, rows

    async def _run(self, handle: aiomysql.Connection, sql: str) -> int | None:
        async with handle.cursor() as cursor:
            await cursor.execute(sql)
            rowcount = cursor.rowcount
        return rowcount if rowcount >= 0 else None

    def _translate_error(self, exc: Exception, statement: str) -> Exception | None:
        if not isinstance(exc, aiomysql.MySQLError):
            return None
        code = _error_code(exc)
        message = _error_message(exc)
        if code == _INTERRUPTED_CODE:
            return QueryCancelledError(statement)
        if code in _SYNTAX_CODES:
            return QuerySyntaxError(message, statement=statement)
        if code in _PERMISSION_CODES:
            return QueryPermissionError(message, statement=statement)
        if code in _TIMEOUT_CODES:
            return QueryTimeoutError(message, statement=statement)
        return QueryExecutionError(message, statement=statement)


__all__ = ["MysqlDriver"]
