"""SQLite driver backed by aiosqlite."""

from __future__ import annotations

import logging
import os
import sqlite3
from pathlib import Path
from typing import Sequence

import aiosqlite

from ..errors import (
    DatabaseFileNotFoundError,
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

MEMORY_PATH = ":memory:"

_TABLES_QUERY = """
    SELECT name, type
    FROM sqlite_master
    WHERE type IN ('table', 'view')
    AND name NOT LIKE 'sqlite_%'
    ORDER BY name
"""


class SqliteDriver(DialectDriver):
    """File-based dialect: "connecting" validates the database file first."""

    dialect = Dialect.SQLITE
    quote_char = '"'

    async def connect(self, config: ConnectionConfig, credential: str | None) -> aiosqlite.Connection:
        path = config.path or ""
        if path != MEMORY_PATH:
            resolved = Path(path).expanduser()
            if not resolved.is_file():
                raise DatabaseFileNotFoundError(f"Database file not found: {resolved}")
            if not os.access(resolved, os.R_OK):
                raise DatabaseFileNotFoundError(f"Database file is not readable: {resolved}")
            path = str(resolved)
        try:
            return await aiosqlite.connect(path, isolation_level=None)
        except sqlite3.Error as exc:
            raise DatabaseFileNotFoundError(f"Unable to open {path}: {exc}") from exc

    async def disconnect(self, handle: aiosqlite.Connection) -> None:
        try:
            await handle.close()
        except (sqlite3.Error, ValueError) as exc:
            LOG.debug("Ignoring error while closing sqlite handle: %s", exc)

    async def interrupt(self, handle: aiosqlite.Connection) -> bool:
        await handle.interrupt()
        return True

    async def fetch_schema_facts(self, handle: aiosqlite.Connection) -> SchemaFacts:
        facts = SchemaFacts()
        try:
            async with handle.execute(_TABLES_QUERY) as cursor:
                tables = await cursor.fetchall()
            for name, kind in tables:
                facts.tables.append(RawTable(name=name, kind=kind))
                quoted = self.quote_identifier(name)
                async with handle.execute(f"PRAGMA table_info({quoted})") as cursor:
                    # cid, name, type, notnull, dflt_value, pk
                    for _, column, data_type, notnull, default, pk in await cursor.fetchall():
                        facts.columns.append(
                            RawColumn(
                                table=name,
                                name=column,
                                data_type=data_type or "",
                                nullable=not notnull,
                                default=None if default is None else str(default),
                                primary=pk > 0,
                            )
                        )
                if kind != "table":
                    continue
                async with handle.execute(f"PRAGMA foreign_key_list({quoted})") as cursor:
                    # id, seq, table, from, to, on_update, on_delete, match
                    for row in await cursor.fetchall():
                        facts.foreign_keys.append(
                            RawForeignKey(table=name, column=row[3], ref_table=row[2], ref_column=row[4] or "")
                        )
        except sqlite3.Error as exc:
            raise SchemaExtractionError(f"Failed to read sqlite catalog: {exc}") from exc
        return facts

    async def _fetch(
        self, handle: aiosqlite.Connection, sql: str, fetch_limit: int | None
    ) -> tuple[tuple[str, ...], Sequence[Sequence[object]]]:
        async with handle.execute(sql) as cursor:
            if cursor.description is None:
                return (), []
            columns = tuple(item[0] for item in cursor.description)
            if fetch_limit is None:
                rows = await cursor.fetchall()
            else:
                rows = await cursor.fetchmany(fetch_limit)
        return columns, rows

    async def _run(self, handle: aiosqlite.Connection, sql: str) -> int | None:
        async with handle.execute(sql) as cursor:
            rowcount = cursor.rowcount
        return rowcount if rowcount >= 0 else None

    def _translate_error(self, exc: Exception, statement: str) -> Exception | None:
        if not isinstance(exc, sqlite3.Error):
            return None
        message = str(exc)
        lowered = message.lower()
        if "interrupted" in lowered:
            return QueryCancelledError(statement)
        if "syntax error" in lowered or "incomplete input" in lowered:
            return QuerySyntaxError(message, statement=statement)
        if "readonly" in lowered or "not authorized" in lowered:
            return QueryPermissionError(message, statement=statement)
        if "database is locked" in lowered:
            return QueryTimeoutError(message, statement=statement)
        return QueryExecutionError(message, statement=statement)


__all__ = ["SqliteDriver"]
