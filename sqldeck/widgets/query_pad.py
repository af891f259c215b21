"""Query pad: a SQL editor that runs the statement under the cursor."""

from __future__ import annotations

from typing import Callable

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal
from textual.widgets import Button, DataTable, Static, TextArea

from sqldeck.errors import DestructiveStatementError, QueryCancelledError, SqldeckError
from sqldeck.models import QueryResult
from sqldeck.pool import QueryExecution
from sqldeck.session import SessionManager, SessionState
from sqldeck.statements import split_statements, statement_at_line


def statement_under_cursor(text: str, line: int) -> str | None:
    """Return the statement covering `line`, or the only statement in the buffer."""

    statements = split_statements(text)
    if not statements:
        return None
    current = statement_at_line(statements, line)
    if current is None and len(statements) == 1:
        current = statements[0]
    return current.text if current else None


class QueryPad(Container):
    """Editor, run controls and a result grid for the active connection."""

    DEFAULT_CSS = """
    QueryPad {
        layout: vertical;
        border: round $primary 40%;
        padding: 1 2;
        height: 1fr;
        background: $surface;
    }

    QueryPad .panel-title {
        text-style: bold;
    }

    QueryPad TextArea {
        height: 10;
    }

    QueryPad:focus-within {
        border: round $primary;
        background: $surface-lighten-1;
    }

    QueryPad .query-actions {
        height: auto;
        margin-top: 1;
        align-horizontal: left;
    }

    QueryPad .query-actions > * {
        margin-right: 1;
    }

    QueryPad #query-results {
        height: 1fr;
        margin-top: 1;
        border-top: solid $surface-darken-2;
    }
    """

    BINDINGS = Container.BINDINGS + [
        Binding("ctrl+enter", "run_query", "Run query", show=False, priority=True),
        Binding("ctrl+j", "run_query", "Run query", show=False, priority=True),
        Binding("escape", "cancel_query", "Cancel query", show=False),
    ]

    def __init__(self, session_manager: SessionManager) -> None:
        super().__init__(id="query-pad")
        self._session_manager = session_manager
        self._editor: TextArea | None = None
        self._status_panel: Static | None = None
        self._result_table: DataTable | None = None
        self._execution: QueryExecution | None = None
        self._pending_confirmation: str | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def compose(self) -> ComposeResult:
        yield Static("Query Pad", classes="panel-title")
        yield TextArea("", id="query-input")
        yield Horizontal(
            Button("Run", id="run-query", variant="primary"),
            Button("Cancel", id="cancel-query"),
            Static("", id="query-status"),
            classes="query-actions",
        )
        yield DataTable(id="query-results", zebra_stripes=True)

    async def on_mount(self) -> None:
        self._editor = self.query_one("#query-input", TextArea)
        self._status_panel = self.query_one("#query-status", Static)
        self._result_table = self.query_one("#query-results", DataTable)
        self._result_table.cursor_type = "row"
        self._unsubscribe = self._session_manager.subscribe(self._handle_session_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def text(self) -> str:
        return self.query_one("#query-input", TextArea).text

    def load_text(self, text: str) -> None:
        """Replace the editor contents, e.g. with a saved script."""

        self.query_one("#query-input", TextArea).load_text(text)

    @property
    def running(self) -> bool:
        return self._execution is not None and not self._execution.done

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "run-query":
            await self.action_run_query()
        elif event.button.id == "cancel-query":
            self.action_cancel_query()

    async def action_run_query(self) -> None:
        if not self._editor:
            return
        if self.running:
            self._set_status("A statement is already running; press Escape to cancel.", severity="warning")
            return
        row, _ = self._editor.cursor_location
        sql = statement_under_cursor(self._editor.text, row)
        if not sql:
            self._set_status("Enter SQL to run.", severity="warning")
            return
        confirmed = self._pending_confirmation == sql
        self._pending_confirmation = None
        try:
            execution = self._session_manager.execute_query(sql, confirm_destructive=confirmed)
        except DestructiveStatementError as exc:
            self._pending_confirmation = sql
            self._set_status(f"{exc} Run again to confirm.", severity="warning")
            return
        except SqldeckError as exc:
            self._set_status(f"Error: {exc}", severity="error")
            return
        self.track_execution(execution)

    def track_execution(self, execution: QueryExecution, *, label: str = "Executing…") -> None:
        """Show progress for a submitted execution and render its result when it lands."""

        self._execution = execution
        self._set_status(label, severity="information")
        self.run_worker(self._await_execution(execution), exclusive=True, group="query")

    def action_cancel_query(self) -> None:
        if self.running and self._execution is not None:
            self._session_manager.cancel_query(self._execution)
            self._set_status("Cancelling…", severity="warning")

    async def _await_execution(self, execution: QueryExecution) -> None:
        try:
            result = await execution.result()
        except QueryCancelledError as exc:
            note = " (connection was reset)" if exc.connection_reset else ""
            self._set_status(f"Cancelled{note}", severity="warning")
            return
        except SqldeckError as exc:
            self._set_status(f"Error: {exc}", severity="error")
            self._render_query_result(None)
            return
        finally:
            if self._execution is execution:
                self._execution = None
        self._render_query_result(result)
        badge = f"{result.status} · {result.elapsed_ms} ms"
        if result.truncated:
            badge += f" · truncated at {result.row_count} rows"
        self._set_status(badge, severity="success")

    def _handle_session_update(self, state: SessionState) -> None:
        if state.active is None and self._status_panel is not None:
            self._set_status("No active connection.", severity="information")

    def _render_query_result(self, result: QueryResult | None) -> None:
        if not self._result_table:
            return
        self._result_table.clear(columns=True)
        if not result or not result.columns:
            return
        width = len(result.columns)
        self._result_table.add_columns(*result.columns)
        for row in result.rows:
            values = list(row[:width])
            if len(values) < width:
                values.extend([None] * (width - len(values)))
            self._result_table.add_row(*(self._format_cell(value) for value in values))

    def _set_status(self, message: str, *, severity: str) -> None:
        if not self._status_panel:
            return
        prefix = {
            "information": "ℹ",
            "warning": "⚠",
            "error": "✖",
            "success": "✔",
        }.get(severity, "•")
        self._status_panel.update(f"{prefix} {message}")

    @staticmethod
    def _format_cell(value: object) -> str:
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return "TRUE" if value else "FALSE"
        if isinstance(value, (bytes, bytearray, memoryview)):
            return f"<{len(bytes(value))} bytes>"
        return str(value)


__all__ = ["QueryPad", "statement_under_cursor"]
