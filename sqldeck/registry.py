"""Connection registry: CRUD over durable configs with cascading deletes."""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable

from .credentials import CredentialStore, InMemoryCredentialStore
from .errors import ConnectionNotFoundError, DuplicateNameError
from .models import ConnectionConfig, ConnectionDraft, ConnectionId
from .store import ConnectionStore

LOG = logging.getLogger(__name__)

DeleteHook = Callable[[ConnectionId], "Awaitable[None] | None"]


class ConnectionRegistry:
    """Owns every `ConnectionConfig`; other components refer to them by id only."""

    def __init__(
        self,
        store: ConnectionStore | None = None,
        credentials: CredentialStore | None = None,
    ) -> None:
        self._store = store
        self._credentials: CredentialStore = credentials or InMemoryCredentialStore()
        self._connections: dict[ConnectionId, ConnectionConfig] = {}
        self._starred: dict[ConnectionId, set[str]] = {}
        self._delete_hooks: list[DeleteHook] = []
        if store is not None:
            state = store.load()
            self._connections = {config.id: config for config in state.connections}
            self._starred = {
                connection_id: set(tables)
                for connection_id, tables in state.starred_tables.items()
                if connection_id in self._connections
            }

    @property
    def credentials(self) -> CredentialStore:
        return self._credentials

    def create(self, draft: ConnectionDraft, secret: str | None = None) -> ConnectionId:
        """Register a new connection and return its generated id."""

        self._ensure_unique_name(draft.name)
        config = ConnectionConfig.from_draft(draft)
        connections = {**self._connections, config.id: config}
        self._persist(connections, self._starred)
        self._connections = connections
        if secret is not None:
            self._credentials.put(config.id, secret)
        LOG.info("Connection created", extra={"connection_id": config.id, "dialect": config.dialect.value})
        return config.id

    def update(self, connection_id: ConnectionId, draft: ConnectionDraft, secret: str | None = None) -> ConnectionConfig:
        """Replace the non-secret fields of an existing connection; the id never changes."""

        self.get(connection_id)
        self._ensure_unique_name(draft.name, ignore=connection_id)
        config = ConnectionConfig.from_draft(draft, connection_id=connection_id)
        connections = dict(self._connections)
        connections[connection_id] = config
        self._persist(connections, self._starred)
        self._connections = connections
        if secret is not None:
            self._credentials.put(connection_id, secret)
        LOG.info("Connection updated", extra={"connection_id": connection_id})
        return config

    async def delete(self, connection_id: ConnectionId) -> None:
        """Tear down live resources, then the credential, then the record itself."""

        self.get(connection_id)
        for hook in tuple(self._delete_hooks):
            try:
                outcome = hook(connection_id)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                LOG.exception("Delete hook failed", extra={"connection_id": connection_id})
        self._credentials.delete(connection_id)
        starred = {key: value for key, value in self._starred.items() if key != connection_id}
        connections = {key: value for key, value in self._connections.items() if key != connection_id}
        self._persist(connections, starred)
        self._connections = connections
        self._starred = starred
        LOG.info("Connection deleted", extra={"connection_id": connection_id})

    def list(self) -> tuple[ConnectionConfig, ...]:
        """Connections in creation order."""

        return tuple(self._connections.values())

    def get(self, connection_id: ConnectionId) -> ConnectionConfig:
        try:
            return self._connections[connection_id]
        except KeyError:
            raise ConnectionNotFoundError(connection_id) from None

    def find_by_name(self, name: str) -> ConnectionConfig | None:
        for config in self._connections.values():
            if config.name == name:
                return config
        return None

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def credential(self, connection_id: ConnectionId) -> str | None:
        return self._credentials.get(connection_id)

    def starred_tables(self, connection_id: ConnectionId) -> frozenset[str]:
        return frozenset(self._starred.get(connection_id, ()))

    def is_table_starred(self, connection_id: ConnectionId, table: str) -> bool:
        return table in self._starred.get(connection_id, ())

    def set_table_starred(self, connection_id: ConnectionId, table: str, starred: bool = True) -> None:
        """Add or remove a table from the connection's starred set."""

        self.get(connection_id)
        current = set(self._starred.get(connection_id, ()))
        if starred:
            current.add(table)
        else:
            current.discard(table)
        updated = {key: value for key, value in self._starred.items() if key != connection_id}
        if current:
            updated[connection_id] = current
        self._persist(self._connections, updated)
        self._starred = updated

    def on_delete(self, hook: DeleteHook) -> Callable[[], None]:
        """Run hook (sync or async) before a connection is removed; returns an unsubscribe handle."""

        self._delete_hooks.append(hook)

        def _unsubscribe() -> None:
            if hook in self._delete_hooks:
                self._delete_hooks.remove(hook)

        return _unsubscribe

    def _ensure_unique_name(self, name: str, *, ignore: ConnectionId | None = None) -> None:
        for config in self._connections.values():
            if config.id != ignore and config.name == name:
                raise DuplicateNameError(name)

    def _persist(
        self,
        connections: dict[ConnectionId, ConnectionConfig],
        starred: dict[ConnectionId, set[str]],
    ) -> None:
        if self._store is not None:
            self._store.save(tuple(connections.values()), starred)


__all__ = ["ConnectionRegistry", "DeleteHook"]
