"""Session manager: the presentation layer's single entry point into the engine."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from .bridge import BridgeStatus, LanguageBridge
from .config import AppConfig
from .drivers.registry import DriverRegistry
from .errors import (
    ConfigError,
    ConnectionBackendError,
    DestructiveStatementError,
    QueryCancelledError,
    SqldeckError,
)
from .models import ConnectionConfig, ConnectionDraft, ConnectionId, Dialect, SchemaCacheEntry, TableSchema
from .pool import ConnectionPool, QueryExecution
from .registry import ConnectionRegistry
from .schema import order_tables
from .schema_cache import SchemaCache
from .statements import analyze_destructive

LOG = logging.getLogger(__name__)

SessionListener = Callable[["SessionState"], None]
ConfigListener = Callable[[AppConfig], None]


@dataclass(frozen=True, slots=True)
class ActiveConnection:
    """Explicit "current connection" context threaded through the engine."""

    connection_id: ConnectionId
    name: str
    dialect: Dialect


@dataclass(frozen=True, slots=True)
class ActivationEvent:
    previous: ConnectionId | None
    current: ConnectionId | None


@dataclass(frozen=True, slots=True)
class SessionState:
    """Current session snapshot (active connection, schema and intelligence)."""

    active: ActiveConnection | None
    table_count: int | None = None
    fetched_at: datetime | None = None
    intelligence: BridgeStatus | None = None
    running_queries: int = 0
    last_error: str | None = None


class SessionManager:
    """Wires registry, pool, schema cache and bridge for one UI session."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        pool: ConnectionPool,
        cache: SchemaCache,
        bridge: LanguageBridge | None = None,
        *,
        config: AppConfig | None = None,
        on_config_change: ConfigListener | None = None,
    ) -> None:
        self._registry = registry
        self._pool = pool
        self._cache = cache
        self._bridge = bridge
        self._config = config or AppConfig()
        self._on_config_change = on_config_change
        self._active: ActiveConnection | None = None
        self._running: set[QueryExecution] = set()
        self._last_error: str | None = None
        self._listeners: set[SessionListener] = set()
        self._unsubscribers = [
            registry.on_delete(self._on_connection_deleted),
            cache.subscribe(self._on_schema_refreshed),
        ]
        if bridge is not None:
            self._unsubscribers.append(bridge.subscribe(self._on_bridge_status))

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def bridge(self) -> LanguageBridge | None:
        return self._bridge

    @property
    def active(self) -> ActiveConnection | None:
        return self._active

    @property
    def active_connection_id(self) -> ConnectionId | None:
        return self._active.connection_id if self._active else None

    @property
    def state(self) -> SessionState:
        entry = self._cache.peek(self._active.connection_id) if self._active else None
        return SessionState(
            active=self._active,
            table_count=len(entry.schema_model.tables) if entry else None,
            fetched_at=entry.fetched_at if entry else None,
            intelligence=self._bridge.status if self._bridge is not None else None,
            running_queries=len(self._running),
            last_error=self._last_error,
        )

    def restore(self) -> ActivationEvent | None:
        """Re-activate the connection remembered in the config, if it still exists."""

        remembered = self._config.active_connection
        if remembered and remembered in self._registry:
            return self.activate(remembered)
        return None

    def activate(self, connection_id: ConnectionId | None) -> ActivationEvent:
        """Switch the active connection; the cache refreshes and the bridge resynchronizes."""

        active = None
        if connection_id is not None:
            config = self._registry.get(connection_id)
            active = ActiveConnection(connection_id=config.id, name=config.name, dialect=config.dialect)
        event = ActivationEvent(previous=self.active_connection_id, current=connection_id)
        self._active = active
        self._last_error = None
        LOG.info("Active connection changed", extra={"connection_id": connection_id})
        if connection_id is not None:
            self._cache.refresh(connection_id)
        if self._bridge is not None:
            self._bridge.activation_changed(connection_id)
        self._config = self._config.with_active_connection(connection_id)
        if self._on_config_change is not None:
            self._on_config_change(self._config)
        self._notify()
        return event

    def execute_query(
        self,
        statement: str,
        *,
        connection_id: ConnectionId | None = None,
        row_limit: int | None = None,
        confirm_destructive: bool = False,
    ) -> QueryExecution:
        """Submit a statement; await `execution.result()` for rows or the error."""

        target = self._target(connection_id)
        config = self._registry.get(target)
        destructive = analyze_destructive(statement, config.dialect)
        if destructive is not None and not confirm_destructive:
            raise DestructiveStatementError(destructive.describe(), statement=statement)
        execution = self._pool.submit(target, statement, row_limit or self._config.row_limit)
        self._track(execution)
        return execution

    def cancel_query(self, execution: QueryExecution) -> None:
        self._pool.cancel(execution)

    def preview_table(
        self,
        connection_id: ConnectionId | None,
        table_name: str,
        *,
        limit: int | None = None,
        order_by: str | None = None,
        direction: str | None = None,
    ) -> QueryExecution:
        target = self._target(connection_id)
        entry = self._cache.peek(target)
        cached = entry.schema_model.table(table_name) if entry is not None else None
        schema = cached.schema_name if cached is not None else None
        execution = self._pool.preview_table(
            target,
            cached.object_name if schema else table_name,
            limit or self._config.preview_limit,
            schema=schema,
            order_by=order_by,
            direction=direction,
        )
        self._track(execution)
        return execution

    async def refresh_schema(self, connection_id: ConnectionId | None = None) -> SchemaCacheEntry | None:
        return await self._cache.refresh(self._target(connection_id))

    async def tables(self, connection_id: ConnectionId | None = None) -> tuple[TableSchema, ...]:
        """Schema tables for browsing, starred tables first."""

        target = self._target(connection_id)
        schema = await self._cache.get(target)
        return order_tables(schema, self._registry.starred_tables(target))

    def toggle_star(self, table: str, connection_id: ConnectionId | None = None) -> bool:
        target = self._target(connection_id)
        starred = not self._registry.is_table_starred(target, table)
        self._registry.set_table_starred(target, table, starred)
        return starred

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Subscribe to session updates; returns an unsubscribe handle."""

        self._listeners.add(listener)
        listener(self.state)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    async def aclose(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self._bridge is not None:
            await self._bridge.aclose()
        await self._cache.aclose()
        await self._pool.aclose()

    def _target(self, connection_id: ConnectionId | None) -> ConnectionId:
        target = connection_id or self.active_connection_id
        if target is None:
            raise ConfigError("No active connection.")
        return target

    def _track(self, execution: QueryExecution) -> None:
        self._running.add(execution)
        assert execution.task is not None
        execution.task.add_done_callback(lambda task: self._on_execution_done(execution, task))
        self._notify()

    def _on_execution_done(self, execution: QueryExecution, task: asyncio.Task) -> None:
        self._running.discard(execution)
        if task.cancelled():
            self._last_error = None
        else:
            error = task.exception()
            if error is None or isinstance(error, QueryCancelledError):
                self._last_error = None
            else:
                self._last_error = str(error)
        self._notify()

    async def _on_connection_deleted(self, connection_id: ConnectionId) -> None:
        if self.active_connection_id == connection_id:
            self.activate(None)

    def _on_schema_refreshed(self, connection_id: ConnectionId, entry: SchemaCacheEntry) -> None:
        if connection_id == self.active_connection_id:
            self._notify()

    def _on_bridge_status(self, status: BridgeStatus) -> None:
        self._notify()

    def _notify(self) -> None:
        state = self.state
        for listener in tuple(self._listeners):
            listener(state)


async def check_connection(
    draft: ConnectionDraft,
    secret: str | None = None,
    *,
    drivers: DriverRegistry | None = None,
) -> tuple[bool, str]:
    """Open, ping and close a throwaway connection without touching the pool."""

    config = ConnectionConfig.from_draft(draft)
    driver = (drivers or DriverRegistry()).get(config.dialect)
    try:
        handle = await driver.connect(config, secret)
    except ConnectionBackendError as exc:
        return False, str(exc)
    try:
        await driver.ping(handle)
    except SqldeckError as exc:
        return False, str(exc)
    finally:
        await driver.disconnect(handle)
    return True, f"Connected to {config.describe()}"


__all__ = [
    "ActivationEvent",
    "ActiveConnection",
    "SessionManager",
    "SessionState",
    "check_connection",
]
