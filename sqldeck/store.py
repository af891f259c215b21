"""Durable, non-secret connection records plus starred tables."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Mapping, Sequence

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError
from .models import ConnectionConfig, ConnectionId

LOG = logging.getLogger(__name__)


class StoredConnections(BaseModel):
    """On-disk shape of `connections.json`."""

    connections: list[ConnectionConfig] = Field(default_factory=list)
    starred_tables: dict[ConnectionId, list[str]] = Field(default_factory=dict)


def write_atomic(path: Path, text: str) -> None:
    """Replace path with text so readers see either the old or the new file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class ConnectionStore:
    """Reads and writes `connections.json`; a missing file is the empty state."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> StoredConnections:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return StoredConnections()
        except OSError as exc:
            raise ConfigError(f"Unable to read {self._path}: {exc}") from exc
        try:
            return StoredConnections.model_validate_json(text)
        except ValidationError as exc:
            raise ConfigError(f"Malformed connection file {self._path}: {exc}") from exc

    def save(
        self,
        connections: Sequence[ConnectionConfig],
        starred_tables: Mapping[ConnectionId, set[str] | Sequence[str]],
    ) -> None:
        state = StoredConnections(
            connections=list(connections),
            starred_tables={
                connection_id: sorted(tables) for connection_id, tables in starred_tables.items() if tables
            },
        )
        try:
            write_atomic(self._path, state.model_dump_json(indent=2, exclude_none=True))
        except OSError as exc:
            raise ConfigError(f"Unable to write {self._path}: {exc}") from exc
        LOG.debug("Saved connection registry", extra={"count": len(state.connections)})


__all__ = ["ConnectionStore", "StoredConnections", "write_atomic"]
