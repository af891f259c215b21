"""Driver discovery: built-in dialects plus entry points."""

from __future__ import annotations

import importlib.metadata as metadata
import inspect
import logging
from typing import Callable, Mapping

from ..errors import ConfigError
from ..models import Dialect
from .base import DialectDriver
from .mysql import MysqlDriver
from .postgres import PostgresDriver
from .sqlite import SqliteDriver

LOG = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "sqldeck.drivers"

DriverFactory = Callable[[], DialectDriver]

BUILTIN_DRIVERS: Mapping[str, DriverFactory] = {
    Dialect.MYSQL.value: MysqlDriver,
    Dialect.SQLITE.value: SqliteDriver,
    Dialect.POSTGRES.value: PostgresDriver,
}


class DriverRegistry:
    """Maps dialect tags to driver instances; one instance per dialect."""

    def __init__(
        self,
        factories: Mapping[str, DriverFactory] | None = None,
        *,
        entry_point_group: str | None = ENTRY_POINT_GROUP,
    ) -> None:
        self._factories: dict[str, DriverFactory] = dict(BUILTIN_DRIVERS if factories is None else factories)
        self._instances: dict[str, DialectDriver] = {}
        if entry_point_group:
            self._discover(entry_point_group)

    def register(self, dialect: Dialect | str, factory: DriverFactory | DialectDriver) -> None:
        """Add or replace the driver for a dialect tag."""

        key = _key(dialect)
        self._instances.pop(key, None)
        if isinstance(factory, DialectDriver):
            instance = factory
            self._factories[key] = lambda: instance
        else:
            self._factories[key] = factory

    def get(self, dialect: Dialect | str) -> DialectDriver:
        key = _key(dialect)
        driver = self._instances.get(key)
        if driver is not None:
            return driver
        factory = self._factories.get(key)
        if factory is None:
            raise ConfigError(f"No driver registered for dialect '{key}'.")
        driver = factory()
        self._instances[key] = driver
        return driver

    def dialects(self) -> tuple[str, ...]:
        return tuple(sorted(self._factories))

    def _discover(self, group: str) -> None:
        for entry_point in sorted(metadata.entry_points().select(group=group), key=lambda ep: ep.name):
            try:
                obj = entry_point.load()
            except (ImportError, AttributeError):
                LOG.exception("Failed to load driver entry point", extra={"dialect": entry_point.name})
                continue
            self._factories[entry_point.name] = _as_factory(obj)
            LOG.debug("Registered driver from entry point", extra={"dialect": entry_point.name})


def _key(dialect: Dialect | str) -> str:
    return dialect.value if isinstance(dialect, Dialect) else str(dialect)


def _as_factory(obj: object) -> DriverFactory:
    if inspect.isclass(obj):
        return obj  # type: ignore[return-value]
    if isinstance(obj, DialectDriver):
        return lambda: obj
    return obj  # type: ignore[return-value]


__all__ = ["BUILTIN_DRIVERS", "DriverFactory", "DriverRegistry", "ENTRY_POINT_GROUP"]
