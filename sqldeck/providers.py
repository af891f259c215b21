"""Command palette providers for core app features."""

from __future__ import annotations

import logging

from textual.command import DiscoveryHit, Hit, Hits, Provider
from textual.types import IgnoreReturnCallbackType

from .errors import SqldeckError
from .scripts import ScriptStore
from .session import SessionManager

LOG = logging.getLogger(__name__)


class _SessionProvider(Provider):
    @property
    def _session_manager(self) -> SessionManager | None:
        manager = getattr(self.app, "session_manager", None)
        if isinstance(manager, SessionManager):
            return manager
        return None


class ConnectionSwitchProvider(_SessionProvider):
    """Expose saved connections to the command palette."""

    async def search(self, query: str) -> Hits:
        manager = self._session_manager
        if manager is None:
            return
        matcher = self.matcher(query)
        for config in manager.registry.list():
            match = matcher.match(config.name)
            if match > 0:
                yield Hit(
                    score=match,
                    match_display=f"Switch to connection: {matcher.highlight(config.name)}",
                    command=self._build_callback(config.id),
                    help=config.describe(),
                )

    async def discover(self) -> Hits:
        manager = self._session_manager
        if manager is None:
            return
        for config in manager.registry.list():
            yield DiscoveryHit(
                display=f"Switch to connection: {config.name}",
                command=self._build_callback(config.id),
                help=config.describe(),
            )

    def _build_callback(self, connection_id: str) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            switcher = getattr(self.app, "switch_connection", None)
            if switcher is None:
                return
            switcher(connection_id)

        return _run


class SchemaRefreshProvider(_SessionProvider):
    """Expose a schema refresh action for the active connection."""

    _LABEL = "Refresh schema of active connection"

    async def search(self, query: str) -> Hits:
        manager = self._session_manager
        if manager is None or manager.active is None:
            return
        matcher = self.matcher(query)
        score = matcher.match(self._LABEL)
        if score > 0:
            yield Hit(
                score=score,
                match_display=matcher.highlight(self._LABEL),
                command=self._build_callback(),
                help="Same as Ctrl+R.",
            )

    async def discover(self) -> Hits:
        manager = self._session_manager
        if manager is None or manager.active is None:
            return
        yield DiscoveryHit(
            display=self._LABEL,
            command=self._build_callback(),
            help="Same as Ctrl+R.",
        )

    def _build_callback(self) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            refresher = getattr(self.app, "action_refresh", None)
            if refresher is None:
                return
            refresher()

        return _run


class TablePreviewProvider(_SessionProvider):
    """Preview any table of the active connection's cached schema."""

    async def search(self, query: str) -> Hits:
        matcher = self.matcher(query)
        for name in await self._table_names():
            match = matcher.match(name)
            if match > 0:
                yield Hit(
                    score=match,
                    match_display=f"Preview table: {matcher.highlight(name)}",
                    command=self._build_callback(name),
                    help="Show the first rows of this table.",
                )

    async def discover(self) -> Hits:
        for name in await self._table_names():
            yield DiscoveryHit(
                display=f"Preview table: {name}",
                command=self._build_callback(name),
                help="Show the first rows of this table.",
            )

    async def _table_names(self) -> list[str]:
        manager = self._session_manager
        if manager is None or manager.active is None:
            return []
        try:
            tables = await manager.tables()
        except SqldeckError as exc:
            LOG.debug("Table list unavailable: %s", exc)
            return []
        return [table.name for table in tables]

    def _build_callback(self, table: str) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            previewer = getattr(self.app, "preview_table", None)
            if previewer is None:
                return
            previewer(table)

        return _run


class ScriptProvider(Provider):
    """Open a saved script in the query pad, or save the pad as a new script."""

    _SAVE_LABEL = "Save query pad as new script"

    async def search(self, query: str) -> Hits:
        matcher = self.matcher(query)
        score = matcher.match(self._SAVE_LABEL)
        if score > 0:
            yield Hit(
                score=score,
                match_display=matcher.highlight(self._SAVE_LABEL),
                command=self._save_callback(),
                help="Same as Ctrl+S.",
            )
        for script_id, name in self._script_names():
            match = matcher.match(name)
            if match > 0:
                yield Hit(
                    score=match,
                    match_display=f"Open script: {matcher.highlight(name)}",
                    command=self._open_callback(script_id),
                    help="Load this script into the query pad.",
                )

    async def discover(self) -> Hits:
        yield DiscoveryHit(display=self._SAVE_LABEL, command=self._save_callback(), help="Same as Ctrl+S.")
        for script_id, name in self._script_names():
            yield DiscoveryHit(
                display=f"Open script: {name}",
                command=self._open_callback(script_id),
                help="Load this script into the query pad.",
            )

    def _script_names(self) -> list[tuple[str, str]]:
        store = getattr(self.app, "scripts", None)
        if not isinstance(store, ScriptStore):
            return []
        names = []
        for script in store.all_scripts():
            folder = store.get_folder(script.folder_id).name if script.folder_id else None
            names.append((script.id, f"{folder}/{script.name}" if folder else script.name))
        return names

    def _open_callback(self, script_id: str) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            opener = getattr(self.app, "open_script", None)
            if opener is None:
                return
            opener(script_id)

        return _run

    def _save_callback(self) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            saver = getattr(self.app, "action_save_script", None)
            if saver is None:
                return
            saver()

        return _run


__all__ = ["ConnectionSwitchProvider", "SchemaRefreshProvider", "ScriptProvider", "TablePreviewProvider"]
