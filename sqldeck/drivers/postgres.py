"""Postgres driver backed by asyncpg."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

import asyncpg

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
from .base import DialectDriver, RawColumn, RawForeignKey, RawTable, SchemaFacts

LOG = logging.getLogger(__name__)

DEFAULT_SCHEMA = "public"

_SYSTEM_SCHEMAS = "('pg_catalog', 'information_schema')"

_TABLES_QUERY = f"""
    SELECT table_schema, table_name, table_type
    FROM information_schema.tables
    WHERE table_schema NOT IN {_SYSTEM_SCHEMAS}
    AND table_schema NOT LIKE 'pg_toast%'
    ORDER BY table_schema, table_name
"""

_COLUMNS_QUERY = f"""
    SELECT table_schema, table_name, column_name,
           CASE WHEN data_type = 'USER-DEFINED' THEN udt_name ELSE data_type END,
           is_nullable, column_default
    FROM information_schema.columns
    WHERE table_schema NOT IN {_SYSTEM_SCHEMAS}
    ORDER BY table_schema, table_name, ordinal_position
"""

_PRIMARY_KEYS_QUERY = f"""
    SELECT kcu.table_schema, kcu.table_name, kcu.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON kcu.constraint_schema = tc.constraint_schema
     AND kcu.constraint_name = tc.constraint_name
    WHERE tc.constraint_type = 'PRIMARY KEY'
    AND tc.table_schema NOT IN {_SYSTEM_SCHEMAS}
"""

_FOREIGN_KEYS_QUERY = f"""
    SELECT kcu.table_schema, kcu.table_name, kcu.column_name,
           ref.table_schema, ref.table_name, ref.column_name
    FROM information_schema.referential_constraints rc
    JOIN information_schema.key_column_usage kcu
      ON kcu.constraint_schema = rc.constraint_schema
     AND kcu.constraint_name = rc.constraint_name
    JOIN information_schema.key_column_usage ref
      ON ref.constraint_schema = rc.unique_constraint_schema
     AND ref.constraint_name = rc.unique_constraint_name
     AND ref.ordinal_position = kcu.position_in_unique_constraint
    WHERE kcu.table_schema NOT IN {_SYSTEM_SCHEMAS}
    ORDER BY kcu.table_schema, kcu.table_name, kcu.ordinal_position
"""


def qualify(schema: str, table: str) -> str:
    """Tables outside `public` carry their schema as a prefix."""

    if schema == DEFAULT_SCHEMA:
        return table
    return f"{schema}.{table}"


def _parse_status(status: str) -> int | None:
    # asyncpg returns the command tag, e.g. "INSERT 0 5" or "UPDATE 3".
    parts = status.split()
    if parts and parts[-1].isdigit():
        return int(parts[-1])
    return None


class PostgresDriver(DialectDriver):
    """Network dialect; cancelling the awaiting task makes asyncpg send a protocol cancel."""

    dialect = Dialect.POSTGRES
    quote_char = '"'
    cancels_by_task = True

    def __init__(self, *, connect_timeout: float = 10.0) -> None:
        self._connect_timeout = connect_timeout

    async def connect(self, config: ConnectionConfig, credential: str | None) -> asyncpg.Connection:
        try:
            return await asyncpg.connect(
                host=config.host,
                port=config.effective_port,
                user=config.user,
                password=credential,
                database=config.database,
                timeout=self._connect_timeout,
            )
        except (asyncpg.InvalidPasswordError, asyncpg.InvalidAuthorizationSpecificationError) as exc:
            raise AuthError(str(exc)) from exc
        except asyncpg.CannotConnectNowError as exc:
            raise NetworkError(str(exc)) from exc
        except asyncpg.PostgresError as exc:
            raise ConnectionBackendError(str(exc)) from exc
        except (OSError, asyncio.TimeoutError) as exc:
            raise NetworkError(f"Unable to reach {config.host}:{config.effective_port}: {exc}") from exc

    async def disconnect(self, handle: asyncpg.Connection) -> None:
        try:
            await handle.close(timeout=2)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
            LOG.debug("Terminating postgres handle: %s", exc)
            handle.terminate()

    async def interrupt(self, handle: asyncpg.Connection) -> bool:
        return not handle.is_closed()

    async def fetch_schema_facts(self, handle: asyncpg.Connection) -> SchemaFacts:
        facts = SchemaFacts()
        try:
            for schema, table, kind in await handle.fetch(_TABLES_QUERY):
                facts.tables.append(
                    RawTable(
                        name=qualify(schema, table),
                        kind=kind,
                        schema=None if schema == DEFAULT_SCHEMA else schema,
                    )
                )
            primary = {
                (qualify(schema, table), column) for schema, table, column in await handle.fetch(_PRIMARY_KEYS_QUERY)
            }
            for schema, table, column, data_type, nullable, default in await handle.fetch(_COLUMNS_QUERY):
                name = qualify(schema, table)
                facts.columns.append(
                    RawColumn(
                        table=name,
                        name=column,
                        data_type=data_type,
                        nullable=nullable == "YES",
                        default=default,
                        primary=(name, column) in primary,
                    )
                )
            for schema, table, column, ref_schema, ref_table, ref_column in await handle.fetch(_FOREIGN_KEYS_QUERY):
                facts.foreign_keys.append(
                    RawForeignKey(
                        table=qualify(schema, table),
                        column=column,
                        ref_table=qualify(ref_schema, ref_table),
                        ref_column=ref_column,
                    )
                )
        except asyncpg.InsufficientPrivilegeError as exc:
            raise QueryPermissionError(str(exc)) from exc
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
            raise SchemaExtractionError(f"Failed to read information_schema: {exc}") from exc
        return facts

    async def _fetch(
        self, handle: asyncpg.Connection, sql: str, fetch_limit: int | None
    ) -> tuple[tuple[str, ...], Sequence[Sequence[object]]]:
        statement = await handle.prepare(sql)
        columns = tuple(attribute.name for attribute in statement.get_attributes())
        if fetch_limit is None:
            return columns, await statement.fetch()
        # Cursors only live inside a transaction; reuse one the user opened.
        if handle.is_in_transaction():
            return columns, await self._fetch_some(statement, fetch_limit)
        async with handle.transaction():
            return columns, await self._fetch_some(statement, fetch_limit)

    @staticmethod
    async def _fetch_some(statement: asyncpg.prepared_stmt.PreparedStatement, count: int) -> list[asyncpg.Record]:
        cursor = await statement.cursor()
        return await cursor.fetch(count)

    async def _run(self, handle: asyncpg.Connection, sql: str) -> int | None:
        status = await handle.execute(sql)
        return _parse_status(status)

    def _translate_error(self, exc: Exception, statement: str) -> Exception | None:
        if isinstance(exc, asyncpg.QueryCanceledError):
            if "timeout" in str(exc).lower():
                return QueryTimeoutError(str(exc), statement=statement)
            return QueryCancelledError(statement)
        if isinstance(exc, asyncpg.PostgresSyntaxError):
            return QuerySyntaxError(str(exc), statement=statement)
        if isinstance(exc, asyncpg.InsufficientPrivilegeError):
            return QueryPermissionError(str(exc), statement=statement)
        if isinstance(exc, (asyncpg.PostgresError, asyncpg.InterfaceError)):
            return QueryExecutionError(str(exc), statement=statement)
        return None


__all__ = ["DEFAULT_SCHEMA", "PostgresDriver", "qualify"]
