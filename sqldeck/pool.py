"""Connection pool: at most one physical connection per registered config."""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from .drivers.base import DialectDriver, SchemaFacts
from .drivers.registry import DriverRegistry
from .errors import ConnectionBackendError, ConnectionNotFoundError, QueryCancelledError
from .models import ConnectionConfig, ConnectionId, QueryResult
from .registry import ConnectionRegistry

LOG = logging.getLogger(__name__)

DEFAULT_CANCEL_GRACE = 2.0


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    READY = "ready"
    EXECUTING = "executing"
    CLOSING = "closing"
    FAILED = "failed"


StateListener = Callable[[ConnectionId, ConnectionState], None]


def _log_abandoned_connect(task: asyncio.Task[Any]) -> None:
    if not task.cancelled() and task.exception() is not None:
        LOG.debug("Connect abandoned by a cancelled statement failed: %s", task.exception())


class CancellationToken:
    """Cooperative cancellation flag scoped to one execution."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass(eq=False, slots=True)
class QueryExecution:
    """Handle for one in-flight statement; `cancel()` fires its token."""

    execution_id: int
    connection_id: ConnectionId
    statement: str
    row_limit: int | None
    token: CancellationToken = field(default_factory=CancellationToken)
    task: asyncio.Task[QueryResult] | None = None

    def cancel(self) -> None:
        self.token.cancel()

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    async def result(self) -> QueryResult:
        """Wait for the statement; raises its error or `QueryCancelledError`."""

        if self.task is None:
            raise RuntimeError("Execution has not been submitted.")
        return await asyncio.shield(self.task)


@dataclass(slots=True)
class _Slot:
    transition: asyncio.Lock = field(default_factory=asyncio.Lock)
    statements: asyncio.Lock = field(default_factory=asyncio.Lock)
    state: ConnectionState = ConnectionState.IDLE
    handle: Any = None
    config: ConnectionConfig | None = None
    driver: DialectDriver | None = None
    executions: set[QueryExecution] = field(default_factory=set)
    last_error: Exception | None = None


class ConnectionPool:
    """Owns every physical connection; nothing else holds a driver handle."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        drivers: DriverRegistry | None = None,
        *,
        cancel_grace: float = DEFAULT_CANCEL_GRACE,
    ) -> None:
        self._registry = registry
        self._drivers = drivers or DriverRegistry()
        self._cancel_grace = cancel_grace
        self._slots: dict[ConnectionId, _Slot] = {}
        self._retired: set[ConnectionId] = set()
        self._listeners: set[StateListener] = set()
        self._ids = itertools.count(1)
        self._unsubscribe_delete = registry.on_delete(self._on_connection_deleted)

    @property
    def drivers(self) -> DriverRegistry:
        return self._drivers

    def state(self, connection_id: ConnectionId) -> ConnectionState:
        slot = self._slots.get(connection_id)
        return slot.state if slot else ConnectionState.IDLE

    def last_error(self, connection_id: ConnectionId) -> Exception | None:
        slot = self._slots.get(connection_id)
        return slot.last_error if slot else None

    def live_handles(self) -> dict[ConnectionId, Any]:
        """Ids with an open physical connection (introspection for tests and UI)."""

        return {connection_id: slot.handle for connection_id, slot in self._slots.items() if slot.handle is not None}

    def driver_for(self, connection_id: ConnectionId) -> DialectDriver:
        return self._drivers.get(self._registry.get(connection_id).dialect)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Subscribe to per-connection state transitions; returns an unsubscribe handle."""

        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    async def acquire(self, connection_id: ConnectionId) -> Any:
        """Return the live handle for a connection, opening it on first use."""

        if connection_id in self._retired:
            raise ConnectionNotFoundError(connection_id)
        config = self._registry.get(connection_id)
        slot = self._slot(connection_id)
        async with slot.transition:
            if slot.handle is not None and slot.config == config:
                return slot.handle
            if slot.handle is not None:
                LOG.info("Reopening connection after config change", extra={"connection_id": connection_id})
                await self._close_locked(connection_id, slot)
            driver = self._drivers.get(config.dialect)
            self._set_state(connection_id, slot, ConnectionState.CONNECTING)
            try:
                handle = await driver.connect(config, self._registry.credential(connection_id))
            except ConnectionBackendError as exc:
                slot.last_error = exc
                self._set_state(connection_id, slot, ConnectionState.FAILED)
                LOG.warning(
                    "Connect failed: %s",
                    exc,
                    extra={"connection_id": connection_id, "dialect": config.dialect.value},
                )
                self._set_state(connection_id, slot, ConnectionState.IDLE)
                raise
            except BaseException:
                self._set_state(connection_id, slot, ConnectionState.IDLE)
                raise
            slot.handle, slot.config, slot.driver, slot.last_error = handle, config, driver, None
            self._set_state(connection_id, slot, ConnectionState.READY)
            LOG.info("Connected", extra={"connection_id": connection_id, "dialect": config.dialect.value})
            return handle

    async def close(self, connection_id: ConnectionId) -> None:
        """Cancel in-flight work and close the handle; closing an idle connection is a no-op."""

        slot = self._slots.get(connection_id)
        if slot is None:
            return
        pending = [execution for execution in slot.executions if execution.task is not None]
        for execution in pending:
            execution.cancel()
        if pending:
            await asyncio.gather(*(execution.task for execution in pending), return_exceptions=True)
        async with slot.transition:
            await self._close_locked(connection_id, slot)

    async def close_all(self) -> None:
        for connection_id in tuple(self._slots):
            await self.close(connection_id)

    async def aclose(self) -> None:
        self._unsubscribe_delete()
        await self.close_all()

    def submit(
        self,
        connection_id: ConnectionId,
        statement: str,
        row_limit: int | None = None,
        token: CancellationToken | None = None,
    ) -> QueryExecution:
        """Schedule a statement and return its cancellable handle immediately."""

        execution = QueryExecution(
            execution_id=next(self._ids),
            connection_id=connection_id,
            statement=statement,
            row_limit=row_limit,
            token=token or CancellationToken(),
        )
        execution.task = asyncio.create_task(
            self._run_execution(execution), name=f"sqldeck-execution-{execution.execution_id}"
        )
        return execution

    async def execute(
        self,
        connection_id: ConnectionId,
        statement: str,
        row_limit: int | None = None,
        token: CancellationToken | None = None,
    ) -> QueryResult:
        return await self.submit(connection_id, statement, row_limit, token).result()

    def cancel(self, execution: QueryExecution) -> None:
        execution.cancel()

    def preview_table(
        self,
        connection_id: ConnectionId,
        table: str,
        limit: int = 100,
        *,
        schema: str | None = None,
        order_by: str | None = None,
        direction: str | None = None,
    ) -> QueryExecution:
        """Run an escaped `SELECT *` preview against one table."""

        statement = self.driver_for(connection_id).preview_statement(
            table, limit, schema=schema, order_by=order_by, direction=direction
        )
        return self.submit(connection_id, statement, None)

    async def fetch_schema_facts(self, connection_id: ConnectionId) -> SchemaFacts:
        """Read raw catalog facts, serialized with other statements on the handle."""

        slot = self._slot(connection_id)
        async with slot.statements:
            handle = await self.acquire(connection_id)
            assert slot.driver is not None
            return await slot.driver.fetch_schema_facts(handle)

    async def _run_execution(self, execution: QueryExecution) -> QueryResult:
        connection_id = execution.connection_id
        slot = self._slot(connection_id)
        slot.executions.add(execution)
        try:
            async with slot.statements:
                if execution.token.cancelled:
                    raise QueryCancelledError(execution.statement)
                handle = await self._acquire_cancellable(execution)
                driver = slot.driver
                assert driver is not None
                self._set_state(connection_id, slot, ConnectionState.EXECUTING)
                try:
                    return await self._execute_cancellable(slot, driver, handle, execution)
                finally:
                    if slot.state is ConnectionState.EXECUTING:
                        self._set_state(connection_id, slot, ConnectionState.READY)
        except QueryCancelledError:
            LOG.info("Statement cancelled", extra={"connection_id": connection_id})
            raise
        finally:
            slot.executions.discard(execution)

    async def _acquire_cancellable(self, execution: QueryExecution) -> Any:
        """Acquire the handle, giving up early if the execution is cancelled.

        An abandoned connect keeps running under the transition lock and
        leaves the slot READY (or IDLE on failure) for the next caller.
        """

        opening = asyncio.create_task(self.acquire(execution.connection_id))
        cancel_requested = asyncio.create_task(execution.token.wait())
        try:
            done, _ = await asyncio.wait({opening, cancel_requested}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_requested.cancel()
            if not opening.done():
                opening.add_done_callback(_log_abandoned_connect)
        if opening in done:
            return opening.result()
        raise QueryCancelledError(execution.statement)

    async def _execute_cancellable(
        self,
        slot: _Slot,
        driver: DialectDriver,
        handle: Any,
        execution: QueryExecution,
    ) -> QueryResult:
        work = asyncio.create_task(driver.execute(handle, execution.statement, execution.row_limit, execution.token))
        cancel_requested = asyncio.create_task(execution.token.wait())
        try:
            done, _ = await asyncio.wait({work, cancel_requested}, return_when=asyncio.FIRST_COMPLETED)
            if work in done:
                return work.result()
            return await self._interrupt(slot, driver, handle, work, execution)
        finally:
            cancel_requested.cancel()
            if not work.done():
                work.cancel()

    async def _interrupt(
        self,
        slot: _Slot,
        driver: DialectDriver,
        handle: Any,
        work: asyncio.Task[QueryResult],
        execution: QueryExecution,
    ) -> QueryResult:
        connection_id = execution.connection_id
        try:
            reusable = await driver.interrupt(handle)
        except Exception as exc:
            LOG.warning("Interrupt failed: %s", exc, extra={"connection_id": connection_id})
            reusable = False
        if driver.cancels_by_task:
            work.cancel()
        done, _ = await asyncio.wait({work}, timeout=self._cancel_grace)
        if done and not work.cancelled() and work.exception() is None:
            # The statement finished before the interrupt landed.
            return work.result()
        if reusable and done:
            raise QueryCancelledError(execution.statement)
        LOG.warning(
            "Resetting connection after uncancellable statement",
            extra={"connection_id": connection_id, "dialect": driver.dialect.value},
        )
        work.cancel()
        async with slot.transition:
            await self._close_locked(connection_id, slot, timeout=self._cancel_grace)
        raise QueryCancelledError(execution.statement, connection_reset=True)

    async def _close_locked(self, connection_id: ConnectionId, slot: _Slot, *, timeout: float | None = None) -> None:
        if slot.handle is None:
            if slot.state is not ConnectionState.IDLE:
                self._set_state(connection_id, slot, ConnectionState.IDLE)
            return
        handle, driver = slot.handle, slot.driver
        self._set_state(connection_id, slot, ConnectionState.CLOSING)
        slot.handle, slot.config, slot.driver = None, None, None
        try:
            if driver is not None:
                await asyncio.wait_for(driver.disconnect(handle), timeout)
        except asyncio.TimeoutError:
            LOG.warning("Abandoning handle that did not close in time", extra={"connection_id": connection_id})
        except Exception:
            LOG.warning("Abandoning handle that failed to close", exc_info=True, extra={"connection_id": connection_id})
        finally:
            self._set_state(connection_id, slot, ConnectionState.IDLE)
        LOG.info("Connection closed", extra={"connection_id": connection_id})

    async def _on_connection_deleted(self, connection_id: ConnectionId) -> None:
        self._retired.add(connection_id)
        await self.close(connection_id)
        self._slots.pop(connection_id, None)

    def _slot(self, connection_id: ConnectionId) -> _Slot:
        slot = self._slots.get(connection_id)
        if slot is None:
            slot = self._slots[connection_id] = _Slot()
        return slot

    def _set_state(self, connection_id: ConnectionId, slot: _Slot, state: ConnectionState) -> None:
        if slot.state is state:
            return
        LOG.debug(
            "Connection state %s -> %s",
            slot.state.value,
            state.value,
            extra={"connection_id": connection_id},
        )
        slot.state = state
        for listener in tuple(self._listeners):
            try:
                listener(connection_id, state)
            except Exception:
                LOG.exception("Pool listener failed", extra={"connection_id": connection_id})


__all__ = [
    "CancellationToken",
    "ConnectionPool",
    "ConnectionState",
    "DEFAULT_CANCEL_GRACE",
    "QueryExecution",
    "StateListener",
]
