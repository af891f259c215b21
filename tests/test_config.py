"""Tests for AppConfig helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from sqldeck import config as config_module
from sqldeck.config import DEFAULT_LINT_RULES, AdvisoryConfig, AppConfig, load_config, save_config


def test_load_config_returns_defaults_when_missing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config_module, "CONFIG_FILE", tmp_path / "config.toml")

    result = load_config()

    assert result == AppConfig()


def test_load_config_reads_values(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        f"""
theme = "light"
active_connection = "abc123"
row_limit = 250
preview_limit = 20
data_dir = "{tmp_path / 'data'}"

[advisory]
enabled = false
command = ["node", "server.js", "--stdio"]
stop_timeout = 1.5
restart_backoff = 10
live_reconfigure = false

[advisory.lint_rules]
"column-new-line" = "off"
"""
    )
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_path)

    result = load_config()

    assert result.theme == "light"
    assert result.active_connection == "abc123"
    assert result.row_limit == 250
    assert result.preview_limit == 20
    assert result.data_dir == tmp_path / "data"
    assert result.connections_file == tmp_path / "data" / "connections.json"
    assert result.schema_cache_dir == tmp_path / "data" / "schema-cache"
    assert result.advisory.enabled is False
    assert result.advisory.command == ("node", "server.js", "--stdio")
    assert result.advisory.stop_timeout == 1.5
    assert result.advisory.restart_backoff == 10.0
    assert result.advisory.live_reconfigure is False
    assert result.advisory.lint_rules == {"column-new-line": "off"}


def test_load_config_ignores_invalid_values(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text('row_limit = -4\ntheme = 3\n[advisory]\ncommand = []\n')
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_path)

    result = load_config()

    assert result.row_limit == 1000
    assert result.theme == "dark"
    assert result.advisory.command == AdvisoryConfig().command


def test_load_config_handles_toml_errors(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("theme = [unterminated")
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_path)

    result = load_config()

    assert result == AppConfig()


def test_save_config_round_trips(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "nested" / "config.toml"
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_path)
    original = AppConfig(
        theme="light",
        active_connection="abc123",
        row_limit=300,
        data_dir=tmp_path / "data",
        advisory=AdvisoryConfig(command=("sql-language-server", "up"), live_reconfigure=False),
    )

    save_config(original)

    content = config_path.read_text()
    assert 'theme = "light"' in content
    assert 'active_connection = "abc123"' in content
    assert "[advisory]" in content
    assert '"reserved-word-case" = ["warning", "upper"]' in content
    assert load_config() == original


def test_with_helpers_return_copies() -> None:
    config = AppConfig()

    updated = config.with_active_connection("abc123").with_row_limit(0)

    assert config.active_connection is None
    assert updated.active_connection == "abc123"
    assert updated.row_limit == 1
    assert config.advisory.lint_rules == DEFAULT_LINT_RULES
