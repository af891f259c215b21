"""Status bar widget that mirrors session information."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from textual.widgets import Static

from sqldeck.session import SessionManager, SessionState


def _age(fetched_at: datetime | None) -> str:
    if fetched_at is None:
        return "—"
    seconds = int((datetime.now(tz=timezone.utc) - fetched_at).total_seconds())
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    return fetched_at.astimezone().strftime("%Y-%m-%d %H:%M")


def format_status(state: SessionState) -> str:
    """Render a session snapshot as one status line."""

    if state.active is None:
        return "No active connection | Ctrl+P to switch"
    parts = [
        f"Connection: {state.active.name}",
        f"Dialect: {state.active.dialect.value}",
        f"Tables: {state.table_count if state.table_count is not None else '—'}",
        f"Schema: {_age(state.fetched_at)}",
    ]
    intelligence = state.intelligence
    if intelligence is not None:
        label = intelligence.state.value
        if intelligence.degraded:
            reason = (intelligence.degraded_reason or "").splitlines()[0][:60] if intelligence.degraded_reason else ""
            label = f"degraded ({reason})" if reason else "degraded"
        parts.append(f"Intelligence: {label}")
    if state.running_queries:
        parts.append(f"Running: {state.running_queries}")
    if state.last_error:
        parts.append(f"Error: {state.last_error.splitlines()[0][:80]}")
    return " | ".join(parts)


class StatusBar(Static):
    """Compact status strip rendered above Textual's footer."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        padding: 0 1;
        background: $surface-darken-3;
        color: $text;
    }
    """

    def __init__(self, session_manager: SessionManager) -> None:
        super().__init__("", id="status-bar")
        self._session_manager = session_manager
        self._unsubscribe: Callable[[], None] | None = None

    async def on_mount(self) -> None:
        self._unsubscribe = self._session_manager.subscribe(self._handle_session_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_session_update(self, state: SessionState) -> None:
        self.update(format_status(state))


__all__ = ["StatusBar", "format_status"]
