"""Tests for widget helpers that do not need a running app."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqldeck.bridge.process import BridgeState, BridgeStatus
from sqldeck.models import Dialect
from sqldeck.session import ActiveConnection, SessionState
from sqldeck.widgets.query_pad import statement_under_cursor
from sqldeck.widgets.status_bar import format_status


def test_status_without_connection() -> None:
    assert format_status(SessionState(active=None)) == "No active connection | Ctrl+P to switch"


def test_status_shows_schema_and_degraded_intelligence() -> None:
    state = SessionState(
        active=ActiveConnection(connection_id="abc", name="shop", dialect=Dialect.MYSQL),
        table_count=12,
        fetched_at=datetime.now(tz=timezone.utc) - timedelta(minutes=5),
        intelligence=BridgeStatus(
            state=BridgeState.STOPPED,
            connection_id=None,
            degraded=True,
            degraded_reason="Unable to start advisory process: not found\ntraceback",
            pid=None,
        ),
        running_queries=1,
        last_error="no such table: nope",
    )

    assert format_status(state) == (
        "Connection: shop | Dialect: mysql | Tables: 12 | Schema: 5m ago"
        " | Intelligence: degraded (Unable to start advisory process: not found)"
        " | Running: 1 | Error: no such table: nope"
    )


def test_status_before_first_extraction() -> None:
    state = SessionState(active=ActiveConnection(connection_id="abc", name="local", dialect=Dialect.SQLITE))

    assert format_status(state) == "Connection: local | Dialect: sqlite | Tables: — | Schema: —"


def test_statement_under_cursor() -> None:
    text = "SELECT 1;\n\nSELECT *\nFROM users"

    assert statement_under_cursor(text, 0) == "SELECT 1;"
    assert statement_under_cursor(text, 3) == "SELECT *\nFROM users"
    assert statement_under_cursor(text, 1) is None
    assert statement_under_cursor("  SELECT 2  \n\n", 2) == "SELECT 2"
    assert statement_under_cursor("", 0) is None
