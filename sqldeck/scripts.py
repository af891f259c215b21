"""Saved SQL scripts organised in folders under `data_dir/scripts`.

Script bodies live in plain `.sql` files; `index.json` records which folder
each file belongs to and the folder tree itself.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError, ScriptNotFoundError
from .store import write_atomic

LOG = logging.getLogger(__name__)

INDEX_FILE = "index.json"
SCRIPT_SUFFIX = ".sql"


class Script(BaseModel):
    """One saved script; `file_name` is relative to the scripts directory."""

    model_config = ConfigDict(frozen=True)

    id: str
    file_name: str
    folder_id: str | None = None

    @property
    def name(self) -> str:
        return self.file_name.removesuffix(SCRIPT_SUFFIX)


class ScriptFolder(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    parent_id: str | None = None


class StoredScripts(BaseModel):
    """On-disk shape of `scripts/index.json`."""

    scripts: list[Script] = Field(default_factory=list)
    folders: list[ScriptFolder] = Field(default_factory=list)


def _clean_name(name: str, what: str) -> str:
    cleaned = name.strip()
    if not cleaned:
        raise ConfigError(f"{what} name cannot be empty.")
    if "/" in cleaned or "\\" in cleaned or cleaned in {".", ".."}:
        raise ConfigError(f"{what} name cannot contain path separators: {name}")
    return cleaned


class ScriptStore:
    """CRUD over saved scripts and their folders; every change is persisted at once."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory
        self._index_path = directory / INDEX_FILE
        state = self._load()
        self._scripts: dict[str, Script] = {script.id: script for script in state.scripts}
        self._folders: dict[str, ScriptFolder] = {folder.id: folder for folder in state.folders}

    @property
    def directory(self) -> Path:
        return self._directory

    def scripts(self, folder_id: str | None = None) -> tuple[Script, ...]:
        """Scripts directly inside a folder (None = top level), by name."""

        found = [script for script in self._scripts.values() if script.folder_id == folder_id]
        return tuple(sorted(found, key=lambda script: script.name.lower()))

    def folders(self, parent_id: str | None = None) -> tuple[ScriptFolder, ...]:
        found = [folder for folder in self._folders.values() if folder.parent_id == parent_id]
        return tuple(sorted(found, key=lambda folder: folder.name.lower()))

    def all_scripts(self) -> tuple[Script, ...]:
        return tuple(sorted(self._scripts.values(), key=lambda script: script.name.lower()))

    def child_count(self, folder_id: str) -> int:
        return len(self.scripts(folder_id)) + len(self.folders(folder_id))

    def get(self, script_id: str) -> Script:
        try:
            return self._scripts[script_id]
        except KeyError:
            raise ScriptNotFoundError(script_id) from None

    def get_folder(self, folder_id: str) -> ScriptFolder:
        try:
            return self._folders[folder_id]
        except KeyError:
            raise ScriptNotFoundError(folder_id) from None

    def path_of(self, script: Script) -> Path:
        return self._directory / script.file_name

    def create_script(self, folder_id: str | None = None, *, content: str = "", now: datetime | None = None) -> Script:
        """Create a script file named after the current time, e.g. `script_20260118_093000.sql`."""

        if folder_id is not None:
            self.get_folder(folder_id)
        stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
        file_name = self._free_file_name(f"script_{stamp}")
        script = Script(id=uuid.uuid4().hex, file_name=file_name, folder_id=folder_id)
        self._write_file(self.path_of(script), content)
        self._scripts[script.id] = script
        self._save()
        LOG.info("Created script", extra={"script": script.name})
        return script

    def read(self, script_id: str) -> str:
        """Script text; a file removed behind our back reads as empty."""

        path = self.path_of(self.get(script_id))
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
        except OSError as exc:
            raise ConfigError(f"Unable to read {path}: {exc}") from exc

    def write(self, script_id: str, content: str) -> None:
        self._write_file(self.path_of(self.get(script_id)), content)

    def rename_script(self, script_id: str, new_name: str) -> Script:
        script = self.get(script_id)
        file_name = _clean_name(new_name, "Script")
        if not file_name.endswith(SCRIPT_SUFFIX):
            file_name += SCRIPT_SUFFIX
        if file_name == script.file_name:
            return script
        target = self._directory / file_name
        if target.exists() or any(other.file_name == file_name for other in self._scripts.values()):
            raise ConfigError(f"A script named '{file_name.removesuffix(SCRIPT_SUFFIX)}' already exists.")
        source = self.path_of(script)
        try:
            if source.exists():
                source.rename(target)
            else:
                self._write_file(target, "")
        except OSError as exc:
            raise ConfigError(f"Unable to rename {source.name}: {exc}") from exc
        renamed = script.model_copy(update={"file_name": file_name})
        self._scripts[script_id] = renamed
        self._save()
        return renamed

    def move_script(self, script_id: str, folder_id: str | None) -> Script:
        script = self.get(script_id)
        if folder_id is not None:
            self.get_folder(folder_id)
        moved = script.model_copy(update={"folder_id": folder_id})
        self._scripts[script_id] = moved
        self._save()
        return moved

    def delete_script(self, script_id: str) -> None:
        script = self.get(script_id)
        self._unlink(script)
        del self._scripts[script_id]
        self._save()
        LOG.info("Deleted script", extra={"script": script.name})

    def create_folder(self, name: str, parent_id: str | None = None) -> ScriptFolder:
        if parent_id is not None:
            self.get_folder(parent_id)
        folder = ScriptFolder(id=uuid.uuid4().hex, name=_clean_name(name, "Folder"), parent_id=parent_id)
        self._folders[folder.id] = folder
        self._save()
        return folder

    def rename_folder(self, folder_id: str, new_name: str) -> ScriptFolder:
        folder = self.get_folder(folder_id)
        renamed = folder.model_copy(update={"name": _clean_name(new_name, "Folder")})
        self._folders[folder_id] = renamed
        self._save()
        return renamed

    def delete_folder(self, folder_id: str) -> int:
        """Delete a folder with every nested folder and script; returns scripts removed."""

        self.get_folder(folder_id)
        doomed = {folder_id}
        pending = [folder_id]
        while pending:
            current = pending.pop()
            for child in self.folders(current):
                if child.id not in doomed:
                    doomed.add(child.id)
                    pending.append(child.id)
        removed = [script for script in self._scripts.values() if script.folder_id in doomed]
        for script in removed:
            self._unlink(script)
            del self._scripts[script.id]
        for doomed_id in doomed:
            del self._folders[doomed_id]
        self._save()
        LOG.info("Deleted script folder", extra={"folders": len(doomed), "scripts": len(removed)})
        return len(removed)

    def _free_file_name(self, stem: str) -> str:
        taken = {script.file_name for script in self._scripts.values()}
        candidate, counter = f"{stem}{SCRIPT_SUFFIX}", 2
        while candidate in taken or (self._directory / candidate).exists():
            candidate, counter = f"{stem}_{counter}{SCRIPT_SUFFIX}", counter + 1
        return candidate

    def _unlink(self, script: Script) -> None:
        try:
            self.path_of(script).unlink(missing_ok=True)
        except OSError as exc:
            LOG.warning("Could not remove script file: %s", exc, extra={"script": script.name})

    def _write_file(self, path: Path, content: str) -> None:
        try:
            write_atomic(path, content)
        except OSError as exc:
            raise ConfigError(f"Unable to write {path}: {exc}") from exc

    def _load(self) -> StoredScripts:
        try:
            text = self._index_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return StoredScripts()
        except OSError as exc:
            raise ConfigError(f"Unable to read {self._index_path}: {exc}") from exc
        try:
            return StoredScripts.model_validate_json(text)
        except ValidationError as exc:
            raise ConfigError(f"Malformed script index {self._index_path}: {exc}") from exc

    def _save(self) -> None:
        state = StoredScripts(scripts=list(self._scripts.values()), folders=list(self._folders.values()))
        try:
            write_atomic(self._index_path, state.model_dump_json(indent=2, exclude_none=True))
        except OSError as exc:
            raise ConfigError(f"Unable to write {self._index_path}: {exc}") from exc


__all__ = ["Script", "ScriptFolder", "ScriptStore", "StoredScripts"]
