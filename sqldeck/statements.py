"""Editor-side statement helpers: splitting and destructive-operation checks."""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from typing import Sequence

import sqlglot
from sqlglot.errors import SqlglotError
from sqlglot.tokens import Token, TokenType

from .models import Dialect


@dataclass(frozen=True, slots=True)
class Statement:
    """One statement of a script; lines are 0-indexed and inclusive."""

    text: str
    start_line: int
    end_line: int
    start_offset: int
    end_offset: int


@dataclass(frozen=True, slots=True)
class DestructiveOp:
    """A statement that deletes data or objects wholesale."""

    kind: str
    target: str | None = None
    object_type: str | None = None

    def describe(self) -> str:
        target = self.target or "unknown"
        if self.kind == "delete-no-where":
            return f'DELETE without WHERE removes every row from "{target}".'
        if self.kind == "drop":
            return f'DROP {(self.object_type or "object").upper()} permanently removes "{target}".'
        return f'TRUNCATE removes every row from "{target}".'


def split_statements(text: str) -> list[Statement]:
    """Split on semicolons and blank lines, ignoring both inside quotes and comments."""

    newlines = [index for index, char in enumerate(text) if char == "\n"]
    statements: list[Statement] = []

    def emit(start: int, end: int) -> None:
        chunk = text[start:end]
        stripped = chunk.strip()
        if not stripped:
            return
        begin = start + (len(chunk) - len(chunk.lstrip()))
        finish = begin + len(stripped)
        statements.append(
            Statement(
                text=stripped,
                start_line=bisect_right(newlines, begin - 1),
                end_line=bisect_right(newlines, finish - 1),
                start_offset=begin,
                end_offset=finish,
            )
        )

    start = 0
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if char in "'\"`":
            index = _skip_quoted(text, index)
            continue
        if text.startswith("--", index):
            end = text.find("\n", index)
            index = length if end == -1 else end
            continue
        if text.startswith("/*", index):
            end = text.find("*/", index + 2)
            index = length if end == -1 else end + 2
            continue
        if char == ";":
            emit(start, index + 1)
            start = index + 1
        elif char == "\n":
            lookahead = index + 1
            while lookahead < length and text[lookahead] in " \t\r":
                lookahead += 1
            if lookahead < length and text[lookahead] == "\n":
                emit(start, index)
                start = lookahead
                index = lookahead
                continue
        index += 1
    emit(start, length)
    return statements


def statement_at_line(statements: Sequence[Statement], line: int) -> Statement | None:
    for statement in statements:
        if statement.start_line <= line <= statement.end_line:
            return statement
    return None


def analyze_destructive(sql: str, dialect: Dialect | str | None = None) -> DestructiveOp | None:
    """Detect DELETE without WHERE, DROP and TRUNCATE."""

    read = dialect.value if isinstance(dialect, Dialect) else dialect
    try:
        tokens = sqlglot.tokenize(sql, read=read)
    except SqlglotError:
        return None
    if not tokens:
        return None
    head = tokens[0].text.upper()
    if head == "DELETE":
        if any(token.token_type is TokenType.WHERE for token in tokens):
            return None
        position = _index_of(tokens, "FROM", 1)
        target = _object_name(tokens, position + 1) if position is not None else _object_name(tokens, 1)
        return DestructiveOp(kind="delete-no-where", target=target)
    if head == "DROP":
        object_type = tokens[1].text.upper() if len(tokens) > 1 else None
        position = 2
        if _word(tokens, position) == "IF" and _word(tokens, position + 1) == "EXISTS":
            position += 2
        return DestructiveOp(kind="drop", target=_object_name(tokens, position), object_type=object_type)
    if head == "TRUNCATE":
        position = 2 if _word(tokens, 1) == "TABLE" else 1
        return DestructiveOp(kind="truncate", target=_object_name(tokens, position))
    return None


def _skip_quoted(text: str, index: int) -> int:
    quote = text[index]
    index += 1
    while index < len(text):
        char = text[index]
        if char == "\\" and quote != "`":
            index += 2
            continue
        if char == quote:
            return index + 1
        index += 1
    return index


def _word(tokens: Sequence[Token], index: int) -> str | None:
    if 0 <= index < len(tokens):
        return tokens[index].text.upper()
    return None


def _index_of(tokens: Sequence[Token], word: str, start: int) -> int | None:
    for index in range(start, len(tokens)):
        if tokens[index].text.upper() == word:
            return index
    return None


def _object_name(tokens: Sequence[Token], index: int) -> str | None:
    if index >= len(tokens):
        return None
    parts = [tokens[index].text]
    while index + 2 < len(tokens) and tokens[index + 1].token_type is TokenType.DOT:
        parts.append(tokens[index + 2].text)
        index += 2
    return ".".join(parts)


__all__ = [
    "DestructiveOp",
    "Statement",
    "analyze_destructive",
    "split_statements",
    "statement_at_line",
]
