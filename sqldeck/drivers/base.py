"""Dialect-agnostic driver contract plus the helpers every variant shares."""

from __future__ import annotations

import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Sequence

import sqlglot
from sqlglot.errors import SqlglotError
from sqlglot.tokens import Token, TokenType

from ..errors import QueryCancelledError, QueryExecutionError
from ..models import ConnectionConfig, Dialect, QueryResult, StatementKind

MAX_PREVIEW_LIMIT = 1000

_READ_KEYWORDS = frozenset({"SELECT", "VALUES", "TABLE", "SHOW", "DESCRIBE", "DESC", "EXPLAIN", "PRAGMA"})
# Reads that can be nested inside `SELECT * FROM (...)`.
_WRAPPABLE_KEYWORDS = frozenset({"SELECT", "VALUES", "TABLE"})
_WRITE_KEYWORDS = frozenset({"INSERT", "UPDATE", "DELETE", "REPLACE", "MERGE", "UPSERT"})
_DDL_KEYWORDS = frozenset({"CREATE", "ALTER", "DROP", "TRUNCATE", "RENAME", "COMMENT"})
_CTE_BODY_KEYWORDS = frozenset({"SELECT", "VALUES", "INSERT", "UPDATE", "DELETE", "MERGE"})

_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_WORD = re.compile(r"[A-Za-z_]+")


@dataclass(frozen=True, slots=True)
class RawTable:
    """A table or view as reported by the dialect catalog.

    `schema` is set only outside the default namespace, in which case `name`
    carries it as a `schema.` prefix.
    """

    name: str
    kind: str
    schema: str | None = None


@dataclass(frozen=True, slots=True)
class RawColumn:
    table: str
    name: str
    data_type: str
    nullable: bool
    default: str | None = None
    primary: bool = False


@dataclass(frozen=True, slots=True)
class RawForeignKey:
    table: str
    column: str
    ref_table: str
    ref_column: str


@dataclass(slots=True)
class SchemaFacts:
    """Un-normalized catalog facts returned by `DialectDriver.fetch_schema_facts`."""

    tables: list[RawTable] = field(default_factory=list)
    columns: list[RawColumn] = field(default_factory=list)
    foreign_keys: list[RawForeignKey] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class StatementPlan:
    """How a statement will be sent to the database."""

    kind: StatementKind
    sql: str
    wrapped: bool
    fetch_limit: int | None
    source: str


def strip_statement(statement: str, dialect: Dialect | str | None = None) -> str:
    """Trim whitespace, trailing semicolons and trailing comments.

    The result ends at the last real token, so nothing after it can comment
    out text appended by `limit_wrapper`.
    """

    text = statement.strip()
    tokens = _tokenize(text, dialect)
    if tokens is None:
        return text.rstrip(";").rstrip()
    while tokens and tokens[-1].token_type is TokenType.SEMICOLON:
        tokens.pop()
    if not tokens:
        return ""
    return text[: tokens[-1].end + 1].rstrip()


def classify_statement(statement: str, dialect: Dialect | str | None = None) -> tuple[StatementKind, str]:
    """Return the statement kind and its leading keyword (comments ignored)."""

    keyword = _leading_keyword(statement, dialect)
    if keyword in _READ_KEYWORDS:
        return StatementKind.READ, keyword
    if keyword in _WRITE_KEYWORDS:
        return StatementKind.WRITE, keyword
    if keyword in _DDL_KEYWORDS:
        return StatementKind.DDL, keyword
    return StatementKind.OTHER, keyword


def limit_wrapper(statement: str, limit: int, dialect: Dialect | str | None = None) -> str:
    """Wrap a read so the server caps it; one extra row detects truncation."""

    return f"SELECT * FROM (\n{strip_statement(statement, dialect)}\n) AS sqldeck_limited LIMIT {limit + 1}"


def plan_statement(statement: str, row_limit: int | None, dialect: Dialect | str | None = None) -> StatementPlan:
    """Decide whether a statement is wrapped, capped client-side, or run as-is."""

    sql = strip_statement(statement, dialect)
    kind, keyword = classify_statement(sql, dialect)
    if kind is not StatementKind.READ:
        return StatementPlan(kind=kind, sql=sql, wrapped=False, fetch_limit=None, source=sql)
    if row_limit is None or row_limit <= 0:
        return StatementPlan(kind=kind, sql=sql, wrapped=False, fetch_limit=None, source=sql)
    if keyword in _WRAPPABLE_KEYWORDS:
        return StatementPlan(
            kind=kind, sql=limit_wrapper(sql, row_limit, dialect), wrapped=True, fetch_limit=row_limit + 1, source=sql
        )
    return StatementPlan(kind=kind, sql=sql, wrapped=False, fetch_limit=row_limit + 1, source=sql)


def cap_rows(rows: Sequence[Sequence[object]], row_limit: int | None) -> tuple[tuple[tuple[object, ...], ...], bool]:
    """Return rows capped to row_limit along with a truncation flag."""

    materialized = tuple(tuple(row) for row in rows)
    if row_limit and row_limit > 0 and len(materialized) > row_limit:
        return materialized[:row_limit], True
    return materialized, False


def _tokenize(statement: str, dialect: Dialect | str | None) -> list[Token] | None:
    read = dialect.value if isinstance(dialect, Dialect) else dialect
    try:
        return list(sqlglot.tokenize(statement, read=read))
    except SqlglotError:
        return None


def _leading_keyword(statement: str, dialect: Dialect | str | None) -> str:
    tokens = _tokenize(statement, dialect)
    if tokens is None:
        return _fallback_keyword(statement)
    if not tokens:
        return ""
    head = tokens[0].text.upper()
    if head != "WITH":
        return head
    depth = 0
    for token in tokens[1:]:
        if token.token_type is TokenType.L_PAREN:
            depth += 1
        elif token.token_type is TokenType.R_PAREN:
            depth -= 1
        elif depth == 0 and token.text.upper() in _CTE_BODY_KEYWORDS:
            return token.text.upper()
    return "SELECT"


def _fallback_keyword(statement: str) -> str:
    cleaned = _BLOCK_COMMENT.sub(" ", _LINE_COMMENT.sub(" ", statement))
    match = _WORD.search(cleaned)
    return match.group(0).upper() if match else ""


class DialectDriver(ABC):
    """Capability set {connect, disconnect, execute, extract} for one dialect.

    Variants implement the low-level primitives; `execute` is shared so every
    dialect caps reads, reports affected rows and translates errors the same way.
    """

    dialect: ClassVar[Dialect]
    quote_char: ClassVar[str] = '"'
    # True when only cancelling the awaiting task aborts a statement.
    cancels_by_task: ClassVar[bool] = False

    @abstractmethod
    async def connect(self, config: ConnectionConfig, credential: str | None) -> Any:
        """Open a physical connection (or validate the file for file dialects)."""

    @abstractmethod
    async def disconnect(self, handle: Any) -> None:
        """Close a physical connection; must tolerate already-broken handles."""

    @abstractmethod
    async def fetch_schema_facts(self, handle: Any) -> SchemaFacts:
        """Read tables, columns and keys with dialect-native introspection."""

    @abstractmethod
    async def interrupt(self, handle: Any) -> bool:
        """Abort the statement running on handle; return False if it must be reopened."""

    @abstractmethod
    async def _fetch(
        self, handle: Any, sql: str, fetch_limit: int | None
    ) -> tuple[tuple[str, ...], Sequence[Sequence[object]]]:
        """Run a row-returning statement, fetching at most fetch_limit rows."""

    @abstractmethod
    async def _run(self, handle: Any, sql: str) -> int | None:
        """Run a non-row statement and return the affected-row count."""

    @abstractmethod
    def _translate_error(self, exc: Exception, statement: str) -> Exception | None:
        """Map a driver exception to the sqldeck taxonomy (None = not a driver error)."""

    async def ping(self, handle: Any) -> None:
        try:
            await self._fetch(handle, "SELECT 1", 1)
        except Exception as exc:
            translated = self._translate_error(exc, "SELECT 1")
            if translated is None:
                raise
            raise translated from exc

    async def execute(
        self,
        handle: Any,
        statement: str,
        row_limit: int | None,
        token: Any | None = None,
    ) -> QueryResult:
        """Execute one statement with the read cap applied."""

        if token is not None and token.cancelled:
            raise QueryCancelledError(statement)
        plan = plan_statement(statement, row_limit, self.dialect)
        if not plan.sql:
            raise QueryExecutionError("Provide SQL to execute.", statement=statement)
        started = time.perf_counter()
        try:
            if plan.kind is StatementKind.READ:
                columns, rows, executed = await self._fetch_read(handle, plan)
                capped, truncated = cap_rows(rows, row_limit)
                rows_affected = None
            else:
                columns, capped, truncated = (), (), False
                rows_affected = await self._run(handle, plan.sql)
                executed = plan.sql
        except (QueryExecutionError, QueryCancelledError):
            raise
        except Exception as exc:
            translated = self._translate_error(exc, statement)
            if translated is None:
                raise
            raise translated from exc
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return QueryResult(
            columns=tuple(columns),
            rows=capped,
            executed_statement=executed,
            kind=plan.kind,
            rows_affected=rows_affected,
            truncated=truncated,
            elapsed_ms=elapsed_ms,
        )

    async def _fetch_read(
        self, handle: Any, plan: StatementPlan
    ) -> tuple[tuple[str, ...], Sequence[Sequence[object]], str]:
        columns, rows = await self._fetch(handle, plan.sql, plan.fetch_limit)
        return columns, rows, plan.sql

    def quote_identifier(self, name: str) -> str:
        """Quote one identifier, doubling any embedded quote characters."""

        if not name:
            raise QueryExecutionError("Identifier must not be empty.")
        if "\x00" in name:
            raise QueryExecutionError("Identifier must not contain NUL bytes.")
        quote = self.quote_char
        return f"{quote}{name.replace(quote, quote * 2)}{quote}"

    def quote_table(self, table: str, schema: str | None = None) -> str:
        """Quote a table name; `table` is always one identifier, dots included."""

        if schema:
            return f"{self.quote_identifier(schema)}.{self.quote_identifier(table)}"
        return self.quote_identifier(table)

    def preview_statement(
        self,
        table: str,
        limit: int = 100,
        *,
        schema: str | None = None,
        order_by: str | None = None,
        direction: str | None = None,
    ) -> str:
        """Build `SELECT *` for a table with escaped identifiers and a clamped limit."""

        safe_limit = max(1, min(int(limit), MAX_PREVIEW_LIMIT))
        sql = f"SELECT * FROM {self.quote_table(table, schema)}"
        if order_by:
            normalized = (direction or "ASC").upper()
            if normalized not in {"ASC", "DESC"}:
                raise QueryExecutionError(f"Invalid sort direction: {direction}")
            sql += f" ORDER BY {self.quote_identifier(order_by)} {normalized}"
        return f"{sql} LIMIT {safe_limit}"


__all__ = [
    "DialectDriver",
    "MAX_PREVIEW_LIMIT",
    "RawColumn",
    "RawForeignKey",
    "RawTable",
    "SchemaFacts",
    "StatementPlan",
    "cap_rows",
    "classify_statement",
    "limit_wrapper",
    "plan_statement",
    "strip_statement",
]
