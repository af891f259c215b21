"""Advisory subprocess lifecycle, driven only by messages on one queue."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Union

from ..config import AdvisoryConfig
from ..errors import AdvisoryError, SqldeckError
from ..models import ConnectionId, SchemaCacheEntry
from ..registry import ConnectionRegistry
from ..schema_cache import SchemaCache, cache_filename
from ..store import write_atomic
from .lsp import LspClient
from .payload import SETTINGS_SECTION, BridgePayload, build_payload

LOG = logging.getLogger(__name__)


class BridgeState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    CRASHED = "crashed"


@dataclass(frozen=True, slots=True)
class ActivationChanged:
    connection_id: ConnectionId | None


@dataclass(frozen=True, slots=True)
class SchemaRefreshed:
    connection_id: ConnectionId
    entry: SchemaCacheEntry


@dataclass(frozen=True, slots=True)
class ProcessExited:
    generation: int
    returncode: int | None


@dataclass(frozen=True, slots=True)
class Shutdown:
    pass


BridgeMessage = Union[ActivationChanged, SchemaRefreshed, ProcessExited, Shutdown]


@dataclass(frozen=True, slots=True)
class BridgeStatus:
    """Snapshot for the presentation layer."""

    state: BridgeState
    connection_id: ConnectionId | None
    degraded: bool
    degraded_reason: str | None
    pid: int | None


BridgeListener = Callable[[BridgeStatus], None]


class LanguageBridge:
    """Keeps one advisory process configured for the active connection.

    Only the worker task touches the process; everything else posts messages.
    A crash restarts the process once; a second crash inside `restart_backoff`
    leaves intelligence degraded until the next activation.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        cache: SchemaCache,
        config: AdvisoryConfig | None = None,
        *,
        schema_dir: Path,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._config = config or AdvisoryConfig()
        self._schema_dir = schema_dir
        self._clock = clock
        self._queue: asyncio.Queue[BridgeMessage] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._state = BridgeState.STOPPED
        self._desired: ConnectionId | None = None
        self._connection_id: ConnectionId | None = None
        self._process: asyncio.subprocess.Process | None = None
        self._client: LspClient | None = None
        self._watcher: asyncio.Task[None] | None = None
        self._generation = 0
        self._last_crash: float | None = None
        self._crash_looping = False
        self._degraded_reason: str | None = None
        self._payload: BridgePayload | None = None
        self._listeners: set[BridgeListener] = set()
        self._unsubscribe_cache: Callable[[], None] | None = None

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def connection_id(self) -> ConnectionId | None:
        """Connection the running process is configured for."""

        return self._connection_id

    @property
    def degraded(self) -> bool:
        return self._degraded_reason is not None

    @property
    def degraded_reason(self) -> str | None:
        return self._degraded_reason

    @property
    def last_payload(self) -> BridgePayload | None:
        return self._payload

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def status(self) -> BridgeStatus:
        return BridgeStatus(
            state=self._state,
            connection_id=self._connection_id,
            degraded=self.degraded,
            degraded_reason=self._degraded_reason,
            pid=self.pid,
        )

    def start(self) -> None:
        if self._worker is None:
            self._unsubscribe_cache = self._cache.subscribe(self._on_schema_refreshed)
            self._worker = asyncio.create_task(self._run(), name="sqldeck-bridge")

    def post(self, message: BridgeMessage) -> None:
        self._queue.put_nowait(message)

    def activation_changed(self, connection_id: ConnectionId | None) -> None:
        self.post(ActivationChanged(connection_id))

    async def wait_idle(self) -> None:
        """Wait until every message posted so far has been handled."""

        await self._queue.join()

    def subscribe(self, listener: BridgeListener) -> Callable[[], None]:
        """Subscribe to status changes; returns an unsubscribe handle."""

        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    async def aclose(self) -> None:
        if self._unsubscribe_cache is not None:
            self._unsubscribe_cache()
            self._unsubscribe_cache = None
        if self._worker is None:
            return
        self.post(Shutdown())
        await self._worker
        self._worker = None

    def _on_schema_refreshed(self, connection_id: ConnectionId, entry: SchemaCacheEntry) -> None:
        self.post(SchemaRefreshed(connection_id, entry))

    async def _run(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                if isinstance(message, Shutdown):
                    await self._stop_process()
                    return
                await self._handle(message)
            except Exception as exc:
                LOG.exception("Bridge failed to handle %s", type(message).__name__)
                self._degrade(f"Unexpected bridge failure: {exc}")
            finally:
                self._queue.task_done()

    async def _handle(self, message: BridgeMessage) -> None:
        if isinstance(message, ActivationChanged):
            await self._on_activation(message.connection_id)
        elif isinstance(message, SchemaRefreshed):
            await self._on_refresh(message.connection_id, message.entry)
        elif isinstance(message, ProcessExited):
            await self._on_exit(message)

    async def _on_activation(self, connection_id: ConnectionId | None) -> None:
        previous = self._desired
        self._desired = connection_id
        if connection_id == self._connection_id and self._state is BridgeState.RUNNING:
            return
        await self._stop_process()
        self._connection_id = None
        if connection_id != previous:
            self._last_crash = None
            self._crash_looping = False
        self._degraded_reason = None
        if connection_id is None:
            self._notify()
            return
        await self._launch(connection_id)

    async def _on_refresh(self, connection_id: ConnectionId, entry: SchemaCacheEntry) -> None:
        if connection_id != self._desired:
            return
        if self._process is None:
            if self._config.enabled and not self._crash_looping:
                await self._launch(connection_id)
            return
        if self._payload is not None and self._payload.fetched_at == entry.fetched_at:
            return
        payload = self._prepare_payload(connection_id, entry)
        if self._config.live_reconfigure and self._client is not None:
            try:
                await self._push_settings(self._client, payload)
            except AdvisoryError as exc:
                LOG.warning("Live reconfiguration failed, restarting: %s", exc)
            else:
                self._payload = payload
                LOG.info("Pushed refreshed schema to advisory process", extra={"connection_id": connection_id})
                return
        await self._stop_process()
        await self._launch(connection_id)

    async def _on_exit(self, message: ProcessExited) -> None:
        if message.generation != self._generation or self._process is None:
            return
        LOG.warning(
            "Advisory process exited unexpectedly",
            extra={"pid": self._process.pid, "returncode": message.returncode},
        )
        self._set_state(BridgeState.CRASHED)
        await self._discard_process()
        now = self._clock()
        crashed_recently = self._last_crash is not None and now - self._last_crash < self._config.restart_backoff
        self._last_crash = now
        self._set_state(BridgeState.STOPPED)
        if crashed_recently:
            self._crash_looping = True
            self._degrade(f"Advisory process crashed repeatedly (exit code {message.returncode}).")
            return
        target, self._connection_id = self._desired, None
        if target is not None:
            await self._launch(target)

    async def _launch(self, connection_id: ConnectionId) -> None:
        if not self._config.enabled:
            return
        self._set_state(BridgeState.STARTING)
        try:
            entry = await self._cache.get_entry(connection_id)
            payload = self._prepare_payload(connection_id, entry)
        except (SqldeckError, OSError) as exc:
            self._set_state(BridgeState.STOPPED)
            self._degrade(f"Schema unavailable: {exc}")
            return
        try:
            process = await asyncio.create_subprocess_exec(
                *self._config.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            self._set_state(BridgeState.STOPPED)
            self._degrade(f"Unable to start advisory process: {exc}")
            return
        assert process.stdout is not None and process.stdin is not None
        client = LspClient(process.stdout, process.stdin, settings=self._current_settings, section=SETTINGS_SECTION)
        client.start()
        self._process, self._client, self._payload = process, client, payload
        self._generation += 1
        try:
            await client.request(
                "initialize",
                {
                    "processId": os.getpid(),
                    "rootUri": None,
                    "capabilities": {"workspace": {"configuration": True}},
                },
                timeout=self._config.start_timeout,
            )
            await client.notify("initialized", {})
            await self._push_settings(client, payload)
        except (AdvisoryError, asyncio.TimeoutError) as exc:
            await self._discard_process()
            self._set_state(BridgeState.STOPPED)
            self._degrade(f"Advisory handshake failed: {str(exc) or 'timed out'}")
            return
        self._watcher = asyncio.create_task(self._watch(process, self._generation))
        self._connection_id = connection_id
        self._set_state(BridgeState.RUNNING)
        LOG.info(
            "Advisory process started",
            extra={"connection_id": connection_id, "pid": process.pid, "dialect": payload.dialect},
        )

    async def _stop_process(self) -> None:
        process, client = self._process, self._client
        if process is None:
            self._set_state(BridgeState.STOPPED)
            return
        self._set_state(BridgeState.STOPPING)
        self._generation += 1
        if client is not None and not client.closed:
            try:
                await client.request("shutdown", None, timeout=self._config.stop_timeout)
                await client.notify("exit", None)
            except (AdvisoryError, asyncio.TimeoutError) as exc:
                LOG.debug("Advisory shutdown handshake skipped: %s", exc)
        await self._discard_process()
        self._set_state(BridgeState.STOPPED)
        LOG.info("Advisory process stopped", extra={"pid": process.pid})

    async def _discard_process(self) -> None:
        process, client, watcher = self._process, self._client, self._watcher
        self._process, self._client, self._watcher = None, None, None
        if watcher is not None:
            watcher.cancel()
        if process is not None and process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), self._config.stop_timeout)
            except asyncio.TimeoutError:
                LOG.warning("Advisory process ignored terminate, killing", extra={"pid": process.pid})
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
        if client is not None:
            await client.aclose()

    async def _watch(self, process: asyncio.subprocess.Process, generation: int) -> None:
        returncode = await process.wait()
        self.post(ProcessExited(generation, returncode))

    def _prepare_payload(self, connection_id: ConnectionId, entry: SchemaCacheEntry) -> BridgePayload:
        config = self._registry.get(connection_id)
        schema_file = self._schema_dir / cache_filename(connection_id)
        payload = build_payload(config, entry, schema_file, self._config.lint_rules)
        write_atomic(schema_file, json.dumps(payload.schema, indent=2))
        return payload

    async def _push_settings(self, client: LspClient, payload: BridgePayload) -> None:
        self._payload = payload
        await client.notify("workspace/didChangeConfiguration", {"settings": {SETTINGS_SECTION: payload.settings}})

    def _current_settings(self) -> dict[str, object]:
        return self._payload.settings if self._payload is not None else {}

    def _degrade(self, reason: str) -> None:
        self._degraded_reason = reason
        LOG.warning("Language intelligence degraded: %s", reason)
        self._notify()

    def _set_state(self, state: BridgeState) -> None:
        if state is self._state:
            return
        LOG.debug("Bridge state %s -> %s", self._state.value, state.value)
        self._state = state
        self._notify()

    def _notify(self) -> None:
        status = self.status
        for listener in tuple(self._listeners):
            try:
                listener(status)
            except Exception:
                LOG.exception("Bridge listener failed")


__all__ = [
    "ActivationChanged",
    "BridgeListener",
    "BridgeMessage",
    "BridgeState",
    "BridgeStatus",
    "LanguageBridge",
    "ProcessExited",
    "SchemaRefreshed",
    "Shutdown",
]
