"""Textual application entry point for sqldeck."""

from __future__ import annotations

import logging
from typing import Callable

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.widgets import Footer, Header

from .bridge import LanguageBridge
from .config import AppConfig, load_config, save_config
from .credentials import FileCredentialStore
from .errors import ConfigError, SqldeckError
from .logging_setup import configure_logging
from .pool import ConnectionPool
from .providers import ConnectionSwitchProvider, SchemaRefreshProvider, ScriptProvider, TablePreviewProvider
from .registry import ConnectionRegistry
from .schema import SchemaExtractor
from .schema_cache import SchemaCache
from .scripts import ScriptStore
from .session import SessionManager, SessionState
from .store import ConnectionStore
from .widgets import QueryPad, StatusBar

LOG = logging.getLogger(__name__)


def build_session(config: AppConfig) -> tuple[SessionManager, list[str]]:
    """Wire the engine for one app run; returns the session plus startup warnings."""

    warnings: list[str] = []
    try:
        registry = ConnectionRegistry(
            ConnectionStore(config.connections_file),
            FileCredentialStore(config.credentials_file),
        )
    except ConfigError as exc:
        LOG.error("Saved connections unavailable", extra={"error": str(exc)})
        warnings.append(f"Saved connections unavailable: {exc}")
        registry = ConnectionRegistry()
    pool = ConnectionPool(registry)
    cache = SchemaCache(SchemaExtractor(pool), config.schema_cache_dir, registry=registry)
    bridge = None
    if config.advisory.enabled:
        bridge = LanguageBridge(registry, cache, config.advisory, schema_dir=config.data_dir / "advisory")
    session = SessionManager(registry, pool, cache, bridge, config=config, on_config_change=save_config)
    return session, warnings


class SqldeckApp(App[None]):
    """Terminal SQL workbench shell around the session manager."""

    COMMANDS = App.COMMANDS | {ConnectionSwitchProvider, SchemaRefreshProvider, ScriptProvider, TablePreviewProvider}
    CSS = """
    Screen {
        layout: vertical;
    }
    #main-column {
        layout: vertical;
        padding: 1 2;
        height: 1fr;
    }
    """

    BINDINGS = [
        ("ctrl+c", "quit", "Quit"),
        ("ctrl+r", "refresh", "Refresh Schema"),
        ("ctrl+s", "save_script", "Save Script"),
        ("ctrl+p", "command_palette", "Command Palette"),
    ]

    def __init__(
        self,
        config: AppConfig | None = None,
        session_manager: SessionManager | None = None,
        scripts: ScriptStore | None = None,
    ) -> None:
        super().__init__()
        self._config = config or load_config()
        self._pending_notifications: list[tuple[str, str]] = []
        if session_manager is None:
            session_manager, warnings = build_session(self._config)
            self._pending_notifications.extend((message, "warning") for message in warnings)
        self._session_manager = session_manager
        if scripts is None:
            try:
                scripts = ScriptStore(self._config.scripts_dir)
            except ConfigError as exc:
                LOG.error("Saved scripts unavailable", extra={"error": str(exc)})
                self._pending_notifications.append((f"Saved scripts unavailable: {exc}", "warning"))
        self._scripts = scripts
        self._session_unsubscribe: Callable[[], None] | None = None
        self._last_session_state: SessionState | None = None
        self._query_pad: QueryPad | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        self._query_pad = QueryPad(self._session_manager)
        yield Container(self._query_pad, id="main-column")
        yield StatusBar(self._session_manager)
        yield Footer()

    async def on_mount(self) -> None:
        bridge = self._session_manager.bridge
        if bridge is not None:
            bridge.start()
        try:
            self._session_manager.restore()
        except SqldeckError as exc:
            self._safe_notify(f"Could not restore connection: {exc}", severity="warning")
        self._session_unsubscribe = self._session_manager.subscribe(self._handle_session_state)
        self._flush_pending_notifications()

    @property
    def session_manager(self) -> SessionManager:
        """Expose the session manager for tests and command providers."""

        return self._session_manager

    @property
    def scripts(self) -> ScriptStore | None:
        return self._scripts

    def open_script(self, script_id: str) -> None:
        if self._query_pad is None or self._scripts is None:
            return
        try:
            script = self._scripts.get(script_id)
            text = self._scripts.read(script_id)
        except SqldeckError as exc:
            self.notify(str(exc), severity="error")
            return
        self._query_pad.load_text(text)
        self.notify(f"Opened script: {script.name}", severity="information")

    def action_save_script(self) -> None:
        if self._query_pad is None or self._scripts is None:
            self._safe_notify("Saved scripts are unavailable.", severity="warning")
            return
        try:
            script = self._scripts.create_script(content=self._query_pad.text)
        except SqldeckError as exc:
            self.notify(str(exc), severity="error")
            return
        self.notify(f"Saved script: {script.name}", severity="information")

    def action_refresh(self) -> None:
        if self._session_manager.active is None:
            self._safe_notify("No active connection to refresh.", severity="warning")
            return
        self.run_worker(self._refresh_schema(), exclusive=True, group="schema")

    def switch_connection(self, connection_id: str) -> None:
        """Activate the requested connection; the choice is persisted by the session."""

        try:
            self._session_manager.activate(connection_id)
        except SqldeckError as exc:
            self.notify(str(exc), severity="error")
            return
        active = self._session_manager.active
        if active is not None:
            self.notify(f"Switched to connection: {active.name}", severity="information")

    def preview_table(self, table: str) -> None:
        if self._query_pad is None:
            return
        try:
            execution = self._session_manager.preview_table(None, table)
        except SqldeckError as exc:
            self.notify(str(exc), severity="error")
            return
        self._query_pad.track_execution(execution, label=f"Loading {table}…")

    async def _refresh_schema(self) -> None:
        entry = await self._session_manager.refresh_schema()
        if entry is None:
            self._safe_notify("Schema refresh failed; showing the previous schema.", severity="warning")
            return
        self._safe_notify(f"Schema refreshed: {len(entry.schema_model.tables)} tables.", severity="information")

    async def _shutdown(self) -> None:
        if self._session_unsubscribe:
            self._session_unsubscribe()
            self._session_unsubscribe = None
        await self._session_manager.aclose()
        await super()._shutdown()

    def _handle_session_state(self, state: SessionState) -> None:
        previous = self._last_session_state
        intelligence = state.intelligence
        was_degraded = bool(previous and previous.intelligence and previous.intelligence.degraded)
        if intelligence is not None and intelligence.degraded and not was_degraded:
            reason = ""
            if intelligence.degraded_reason:
                reason = f" ({intelligence.degraded_reason.splitlines()[0][:120]})"
            self._safe_notify(f"SQL intelligence unavailable{reason}.", severity="warning")
        self._last_session_state = state

    def _safe_notify(self, message: str, *, severity: str = "information") -> None:
        if self.is_running:
            try:
                self.notify(message, severity=severity)
            except Exception:
                LOG.exception("Failed to display notification", extra={"message": message})
        else:
            self._pending_notifications.append((message, severity))

    def _flush_pending_notifications(self) -> None:
        if not self._pending_notifications:
            return
        pending = list(self._pending_notifications)
        self._pending_notifications.clear()
        for message, severity in pending:
            try:
                self.notify(message, severity=severity)
            except Exception:
                LOG.exception("Failed to display queued notification", extra={"message": message})


def main() -> None:
    """Load config, start file logging and run the Textual application."""

    config = load_config()
    configure_logging(config.log_file)
    SqldeckApp(config).run()


if __name__ == "__main__":
    main()
