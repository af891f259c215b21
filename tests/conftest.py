"""Shared fixtures: an in-process fake driver and registry wiring."""

from __future__ import annotations

import asyncio
import itertools
from typing import Sequence

import pytest

from sqldeck.drivers.base import DialectDriver, RawColumn, RawForeignKey, RawTable, SchemaFacts
from sqldeck.drivers.registry import DriverRegistry
from sqldeck.errors import QueryCancelledError, QueryExecutionError
from sqldeck.models import ConnectionDraft, Dialect
from sqldeck.pool import ConnectionPool
from sqldeck.registry import ConnectionRegistry


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeInterrupted(Exception):
    pass


class FakeHandle:
    _ids = itertools.count(1)

    def __init__(self) -> None:
        self.number = next(self._ids)
        self.closed = False
        self.interrupted = asyncio.Event()


def sample_facts() -> SchemaFacts:
    return SchemaFacts(
        tables=[RawTable("users", "table"), RawTable("orders", "table"), RawTable("recent_orders", "view")],
        columns=[
            RawColumn("users", "id", "INTEGER", nullable=False, primary=True),
            RawColumn("users", "email", "TEXT", nullable=False),
            RawColumn("orders", "id", "INTEGER", nullable=False, primary=True),
            RawColumn("orders", "user_id", "INTEGER", nullable=True),
            RawColumn("orders", "status", "TEXT", nullable=True, default="'new'"),
            RawColumn("recent_orders", "id", "INTEGER", nullable=True),
        ],
        foreign_keys=[RawForeignKey("orders", "user_id", "users", "id")],
    )


class FakeDriver(DialectDriver):
    """Scriptable driver: statements mentioning `sleep` block until interrupted."""

    dialect = Dialect.SQLITE

    def __init__(self, *, cooperative: bool = True) -> None:
        self.cooperative = cooperative
        self.connects = 0
        self.disconnects = 0
        self.interrupts = 0
        self.open_handles: set[FakeHandle] = set()
        self.connect_error: Exception | None = None
        self.connect_gate: asyncio.Event | None = None
        self.disconnect_error: Exception | None = None
        self.rows: list[tuple[object, ...]] = [(index,) for index in range(500)]
        self.facts: SchemaFacts = sample_facts()
        self.extractions = 0
        self.extraction_error: Exception | None = None
        self.extraction_gate: asyncio.Event | None = None
        self.executed: list[str] = []

    async def connect(self, config, credential):  # type: ignore[no-untyped-def]
        self.connects += 1
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        handle = FakeHandle()
        self.open_handles.add(handle)
        return handle

    async def disconnect(self, handle: FakeHandle) -> None:
        self.disconnects += 1
        if self.disconnect_error is not None:
            raise self.disconnect_error
        handle.closed = True
        self.open_handles.discard(handle)

    async def interrupt(self, handle: FakeHandle) -> bool:
        self.interrupts += 1
        if self.cooperative:
            handle.interrupted.set()
        return self.cooperative

    async def fetch_schema_facts(self, handle: FakeHandle) -> SchemaFacts:
        self.extractions += 1
        if self.extraction_gate is not None:
            await self.extraction_gate.wait()
        if self.extraction_error is not None:
            raise self.extraction_error
        return self.facts

    async def _fetch(
        self, handle: FakeHandle, sql: str, fetch_limit: int | None
    ) -> tuple[tuple[str, ...], Sequence[Sequence[object]]]:
        assert not handle.closed
        self.executed.append(sql)
        if "sleep" in sql.lower():
            if self.cooperative:
                await handle.interrupted.wait()
                handle.interrupted.clear()
                raise FakeInterrupted("interrupted")
            await asyncio.Event().wait()
        if "broken" in sql.lower():
            raise ValueError("no such table: broken")
        rows = self.rows if fetch_limit is None else self.rows[:fetch_limit]
        return ("n",), rows

    async def _run(self, handle: FakeHandle, sql: str) -> int | None:
        self.executed.append(sql)
        return 3

    def _translate_error(self, exc: Exception, statement: str) -> Exception | None:
        if isinstance(exc, FakeInterrupted):
            return QueryCancelledError(statement)
        if isinstance(exc, ValueError):
            return QueryExecutionError(str(exc), statement=statement)
        return None


@pytest.fixture
def facts() -> SchemaFacts:
    return sample_facts()


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def drivers(fake_driver: FakeDriver) -> DriverRegistry:
    registry = DriverRegistry({}, entry_point_group=None)
    registry.register(Dialect.SQLITE, fake_driver)
    return registry


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def connection_id(registry: ConnectionRegistry) -> str:
    return registry.create(ConnectionDraft(name="local", dialect=Dialect.SQLITE, path="fake.db"))


@pytest.fixture
def pool(registry: ConnectionRegistry, drivers: DriverRegistry) -> ConnectionPool:
    return ConnectionPool(registry, drivers, cancel_grace=0.2)

