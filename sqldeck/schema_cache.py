"""Durable per-connection schema cache with stale-while-revalidate reads."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

from pydantic import ValidationError

from .models import ConnectionId, SchemaCacheEntry, SchemaModel
from .registry import ConnectionRegistry
from .schema import SchemaExtractor
from .store import write_atomic

LOG = logging.getLogger(__name__)

Extractor = Callable[[ConnectionId], Awaitable[SchemaModel]]
CacheListener = Callable[[ConnectionId, SchemaCacheEntry], None]

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def cache_filename(connection_id: ConnectionId) -> str:
    return f"{_UNSAFE_CHARS.sub('_', connection_id)}.json"


@dataclass(slots=True)
class _Inflight:
    generation: int
    extraction: asyncio.Task[SchemaCacheEntry | None]
    quiet: asyncio.Task[SchemaCacheEntry | None]


class SchemaCache:
    """Serves cached schemas immediately and refreshes them in the background.

    At most one extraction runs per connection id; duplicate refresh requests
    collapse into the outstanding one. `invalidate` bumps a per-id generation
    so an extraction started before it never lands in the cache.
    """

    def __init__(
        self,
        extractor: SchemaExtractor | Extractor,
        cache_dir: Path | None = None,
        *,
        registry: ConnectionRegistry | None = None,
    ) -> None:
        self._extract: Extractor = extractor.extract if isinstance(extractor, SchemaExtractor) else extractor
        self._dir = cache_dir
        self._entries: dict[ConnectionId, SchemaCacheEntry] = {}
        self._inflight: dict[ConnectionId, _Inflight] = {}
        self._generations: dict[ConnectionId, int] = {}
        self._listeners: set[CacheListener] = set()
        self._unsubscribe_delete = registry.on_delete(self.invalidate) if registry is not None else None

    async def get(self, connection_id: ConnectionId) -> SchemaModel:
        """Cached schema if present, else block on one extraction (errors surface)."""

        entry = await self.get_entry(connection_id)
        return entry.schema_model

    async def get_entry(self, connection_id: ConnectionId) -> SchemaCacheEntry:
        entry = self._entries.get(connection_id)
        if entry is not None:
            return entry
        entry = self._load(connection_id)
        if entry is not None:
            self._entries[connection_id] = entry
            LOG.debug("Serving schema from disk, revalidating", extra={"connection_id": connection_id})
            self.refresh(connection_id)
            return entry
        while True:
            inflight = self._current(connection_id) or self._start(connection_id)
            fresh = await asyncio.shield(inflight.extraction)
            if fresh is not None:
                return fresh

    def peek(self, connection_id: ConnectionId) -> SchemaCacheEntry | None:
        """Current entry without triggering any extraction."""

        entry = self._entries.get(connection_id)
        if entry is None:
            entry = self._load(connection_id)
            if entry is not None:
                self._entries[connection_id] = entry
        return entry

    def refresh(self, connection_id: ConnectionId) -> asyncio.Task[SchemaCacheEntry | None]:
        """Fire-and-forget refresh; the task resolves to the new entry or None on failure."""

        inflight = self._current(connection_id)
        if inflight is not None:
            LOG.debug("Refresh already in flight", extra={"connection_id": connection_id})
            return inflight.quiet
        return self._start(connection_id).quiet

    def is_refreshing(self, connection_id: ConnectionId) -> bool:
        return self._current(connection_id) is not None

    def invalidate(self, connection_id: ConnectionId) -> None:
        """Drop the entry; an extraction already in flight is discarded when it lands."""

        self._generations[connection_id] = self._generations.get(connection_id, 0) + 1
        self._entries.pop(connection_id, None)
        path = self._path(connection_id)
        if path is not None:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                LOG.warning("Unable to remove schema cache file: %s", exc, extra={"connection_id": connection_id})
        LOG.debug("Schema cache invalidated", extra={"connection_id": connection_id})

    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        """Notify listener after each successful refresh; returns an unsubscribe handle."""

        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    async def aclose(self) -> None:
        if self._unsubscribe_delete is not None:
            self._unsubscribe_delete()
        tasks = [task for inflight in self._inflight.values() for task in (inflight.extraction, inflight.quiet)]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()

    def _current(self, connection_id: ConnectionId) -> _Inflight | None:
        inflight = self._inflight.get(connection_id)
        if inflight is None or inflight.extraction.done():
            return None
        if inflight.generation != self._generations.get(connection_id, 0):
            return None
        return inflight

    def _start(self, connection_id: ConnectionId) -> _Inflight:
        generation = self._generations.get(connection_id, 0)
        extraction = asyncio.create_task(
            self._extract_and_store(connection_id, generation), name=f"sqldeck-schema-{connection_id}"
        )
        quiet = asyncio.create_task(self._quietly(connection_id, extraction))
        inflight = _Inflight(generation=generation, extraction=extraction, quiet=quiet)
        self._inflight[connection_id] = inflight

        def _clear(_: asyncio.Task[SchemaCacheEntry | None]) -> None:
            if self._inflight.get(connection_id) is inflight:
                del self._inflight[connection_id]

        extraction.add_done_callback(_clear)
        return inflight

    async def _extract_and_store(self, connection_id: ConnectionId, generation: int) -> SchemaCacheEntry | None:
        schema = await self._extract(connection_id)
        if self._generations.get(connection_id, 0) != generation:
            LOG.debug("Discarding schema extracted before invalidate", extra={"connection_id": connection_id})
            return None
        entry = SchemaCacheEntry(connection_id=connection_id, schema_model=schema)
        self._entries[connection_id] = entry
        self._write(entry)
        LOG.info(
            "Schema refreshed",
            extra={"connection_id": connection_id, "tables": len(schema.tables)},
        )
        for listener in tuple(self._listeners):
            try:
                listener(connection_id, entry)
            except Exception:
                LOG.exception("Schema cache listener failed", extra={"connection_id": connection_id})
        return entry

    async def _quietly(
        self, connection_id: ConnectionId, extraction: asyncio.Task[SchemaCacheEntry | None]
    ) -> SchemaCacheEntry | None:
        try:
            return await asyncio.shield(extraction)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOG.warning(
                "Schema extraction failed; keeping previous entry: %s",
                exc,
                extra={"connection_id": connection_id},
            )
            return None

    def _path(self, connection_id: ConnectionId) -> Path | None:
        if self._dir is None:
            return None
        return self._dir / cache_filename(connection_id)

    def _load(self, connection_id: ConnectionId) -> SchemaCacheEntry | None:
        path = self._path(connection_id)
        if path is None:
            return None
        try:
            entry = SchemaCacheEntry.model_validate_json(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, ValidationError) as exc:
            LOG.warning("Ignoring unreadable schema cache file: %s", exc, extra={"connection_id": connection_id})
            return None
        if entry.connection_id != connection_id:
            return None
        return entry

    def _write(self, entry: SchemaCacheEntry) -> None:
        path = self._path(entry.connection_id)
        if path is None:
            return
        try:
            write_atomic(path, entry.model_dump_json(indent=2))
        except OSError as exc:
            LOG.warning(
                "Unable to persist schema cache: %s",
                exc,
                extra={"connection_id": entry.connection_id},
            )


__all__ = ["CacheListener", "Extractor", "SchemaCache", "cache_filename"]
