"""Tests for saved scripts and their folder tree."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest

from sqldeck.errors import ConfigError, ScriptNotFoundError
from sqldeck.scripts import ScriptStore

NOON = datetime(2026, 1, 18, 12, 0, 0)


def test_create_script_uses_timestamp_name(tmp_path: Path) -> None:
    store = ScriptStore(tmp_path / "scripts")

    first = store.create_script(now=NOON)
    second = store.create_script(now=NOON)

    assert first.name == "script_20260118_120000"
    assert second.name == "script_20260118_120000_2"
    assert store.path_of(first).read_text() == ""
    assert [script.id for script in store.scripts()] == [first.id, second.id]


def test_content_round_trips_through_file(tmp_path: Path) -> None:
    store = ScriptStore(tmp_path / "scripts")
    script = store.create_script()

    store.write(script.id, "SELECT 1;\n")

    assert store.read(script.id) == "SELECT 1;\n"
    assert (tmp_path / "scripts" / script.file_name).read_text() == "SELECT 1;\n"


def test_missing_file_reads_as_empty(tmp_path: Path) -> None:
    store = ScriptStore(tmp_path / "scripts")
    script = store.create_script(content="SELECT 1")
    store.path_of(script).unlink()

    assert store.read(script.id) == ""


def test_rename_moves_file_and_adds_suffix(tmp_path: Path) -> None:
    store = ScriptStore(tmp_path / "scripts")
    script = store.create_script(content="SELECT 2")

    renamed = store.rename_script(script.id, "monthly report")

    assert renamed.id == script.id
    assert renamed.file_name == "monthly report.sql"
    assert store.read(script.id) == "SELECT 2"
    assert not (tmp_path / "scripts" / script.file_name).exists()


def test_rename_rejects_empty_duplicate_and_path_names(tmp_path: Path) -> None:
    store = ScriptStore(tmp_path / "scripts")
    first = store.create_script(now=NOON)
    second = store.create_script(now=NOON)
    store.rename_script(first.id, "report.sql")

    with pytest.raises(ConfigError):
        store.rename_script(second.id, "   ")
    with pytest.raises(ConfigError):
        store.rename_script(second.id, "report")
    with pytest.raises(ConfigError):
        store.rename_script(second.id, "../escape")

    assert store.get(second.id).file_name == second.file_name


def test_delete_script_removes_file_and_record(tmp_path: Path) -> None:
    store = ScriptStore(tmp_path / "scripts")
    script = store.create_script()

    store.delete_script(script.id)

    assert store.all_scripts() == ()
    assert not store.path_of(script).exists()
    with pytest.raises(ScriptNotFoundError):
        store.read(script.id)


def test_folders_nest_and_count_children(tmp_path: Path) -> None:
    store = ScriptStore(tmp_path / "scripts")
    reports = store.create_folder("Reports")
    monthly = store.create_folder("Monthly", parent_id=reports.id)
    store.create_script(reports.id)

    assert store.folders() == (reports,)
    assert store.folders(reports.id) == (monthly,)
    assert store.child_count(reports.id) == 2
    assert store.rename_folder(monthly.id, "Quarterly").name == "Quarterly"
    with pytest.raises(ConfigError):
        store.create_folder("")
    with pytest.raises(ScriptNotFoundError):
        store.create_script("no-such-folder")


def test_delete_folder_is_recursive(tmp_path: Path) -> None:
    store = ScriptStore(tmp_path / "scripts")
    reports = store.create_folder("Reports")
    monthly = store.create_folder("Monthly", parent_id=reports.id)
    keep = store.create_folder("Keep")
    nested = store.create_script(monthly.id, content="SELECT 3")
    direct = store.create_script(reports.id, content="SELECT 4")
    kept = store.create_script(keep.id, content="SELECT 5")
    loose = store.create_script(content="SELECT 6")

    removed = store.delete_folder(reports.id)

    assert removed == 2
    assert store.folders() == (keep,)
    assert {script.id for script in store.all_scripts()} == {kept.id, loose.id}
    assert not store.path_of(nested).exists()
    assert not store.path_of(direct).exists()
    assert store.read(kept.id) == "SELECT 5"


def test_index_survives_reload(tmp_path: Path) -> None:
    directory = tmp_path / "scripts"
    store = ScriptStore(directory)
    folder = store.create_folder("Reports")
    script = store.create_script(folder.id, content="SELECT 7")
    store.move_script(script.id, None)

    reloaded = ScriptStore(directory)

    assert reloaded.get(script.id).folder_id is None
    assert reloaded.get_folder(folder.id).name == "Reports"
    assert reloaded.read(script.id) == "SELECT 7"
    payload = json.loads((directory / "index.json").read_text())
    assert set(payload) == {"scripts", "folders"}


def test_malformed_index_is_a_config_error(tmp_path: Path) -> None:
    directory = tmp_path / "scripts"
    directory.mkdir()
    (directory / "index.json").write_text("{not json")

    with pytest.raises(ConfigError):
        ScriptStore(directory)
