"""Secret-at-rest storage keyed by connection id."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from .errors import ConfigError
from .models import ConnectionId

LOG = logging.getLogger(__name__)


@runtime_checkable
class CredentialStore(Protocol):
    """Protocol implemented by credential stores; never sees non-secret fields."""

    def put(self, connection_id: ConnectionId, secret: str) -> None:
        """Store or replace the secret for a connection."""

    def get(self, connection_id: ConnectionId) -> str | None:
        """Return the secret, or None when absent."""

    def delete(self, connection_id: ConnectionId) -> None:
        """Forget the secret; deleting an absent secret is a no-op."""


class InMemoryCredentialStore:
    """Process-local store used by tests and throwaway sessions."""

    def __init__(self) -> None:
        self._secrets: dict[ConnectionId, str] = {}

    def put(self, connection_id: ConnectionId, secret: str) -> None:
        self._secrets[connection_id] = secret

    def get(self, connection_id: ConnectionId) -> str | None:
        return self._secrets.get(connection_id)

    def delete(self, connection_id: ConnectionId) -> None:
        self._secrets.pop(connection_id, None)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._secrets


class FileCredentialStore:
    """JSON file readable only by the owner, kept apart from connection configs."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._secrets = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def put(self, connection_id: ConnectionId, secret: str) -> None:
        self._secrets[connection_id] = secret
        self._save()

    def get(self, connection_id: ConnectionId) -> str | None:
        return self._secrets.get(connection_id)

    def delete(self, connection_id: ConnectionId) -> None:
        if self._secrets.pop(connection_id, None) is not None:
            self._save()

    def _load(self) -> dict[ConnectionId, str]:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            LOG.warning("Ignoring unreadable credential file: %s", exc, extra={"path": str(self._path)})
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(key): value for key, value in raw.items() if isinstance(value, str)}

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".credentials-", suffix=".tmp")
        try:
            os.fchmod(fd, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._secrets, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, self._path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise ConfigError(f"Unable to write credentials: {exc}") from exc


__all__ = ["CredentialStore", "FileCredentialStore", "InMemoryCredentialStore"]
