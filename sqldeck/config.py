"""App configuration loading helpers."""

from __future__ import annotations

from pathlib import Path

import tomllib

from pydantic import BaseModel, Field

CONFIG_FILE = Path.home() / ".config" / "sqldeck" / "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".config" / "sqldeck"

DEFAULT_ADVISORY_COMMAND: tuple[str, ...] = ("sql-language-server", "up", "--method", "stdio")

# sql-language-server rule names; alignment rules fight the formatter so they stay off.
DEFAULT_LINT_RULES: dict[str, object] = {
    "align-column-to-the-first": "off",
    "align-where-clause-to-the-first": "off",
    "linebreak-after-clause-keyword": "off",
    "column-new-line": "warning",
    "reserved-word-case": ["warning", "upper"],
    "space-surrounding-operators": "warning",
    "where-clause-new-line": "warning",
    "require-as-to-rename-column": "warning",
}


class AdvisoryConfig(BaseModel):
    """Settings for the external SQL intelligence subprocess."""

    enabled: bool = True
    command: tuple[str, ...] = DEFAULT_ADVISORY_COMMAND
    start_timeout: float = 10.0
    stop_timeout: float = 3.0
    restart_backoff: float = 30.0
    live_reconfigure: bool = True
    lint_rules: dict[str, object] = Field(default_factory=lambda: dict(DEFAULT_LINT_RULES))


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    theme: str = "dark"
    active_connection: str | None = None
    row_limit: int = 1000
    preview_limit: int = 100
    data_dir: Path = DEFAULT_DATA_DIR
    advisory: AdvisoryConfig = Field(default_factory=AdvisoryConfig)

    @property
    def connections_file(self) -> Path:
        return self.data_dir / "connections.json"

    @property
    def credentials_file(self) -> Path:
        return self.data_dir / "credentials.json"

    @property
    def schema_cache_dir(self) -> Path:
        return self.data_dir / "schema-cache"

    @property
    def scripts_dir(self) -> Path:
        return self.data_dir / "scripts"

    @property
    def log_file(self) -> Path:
        return self.data_dir / "sqldeck.log"

    def with_active_connection(self, connection_id: str | None) -> AppConfig:
        """Return a copy with the active connection updated."""

        return self.model_copy(update={"active_connection": connection_id})

    def with_row_limit(self, limit: int) -> AppConfig:
        """Return a copy with a new read-statement row cap."""

        return self.model_copy(update={"row_limit": max(1, limit)})


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()

    defaults = AppConfig.model_fields
    return AppConfig(
        theme=data.get("theme", defaults["theme"].default),
        active_connection=data.get("active_connection"),
        row_limit=data.get("row_limit", defaults["row_limit"].default),
        preview_limit=data.get("preview_limit", defaults["preview_limit"].default),
        data_dir=data.get("data_dir", DEFAULT_DATA_DIR),
        advisory=data.get("advisory", AdvisoryConfig()),
    )


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f'theme = "{config.theme}"',
        f"row_limit = {config.row_limit}",
        f"preview_limit = {config.preview_limit}",
        f'data_dir = "{_escape(str(config.data_dir))}"',
    ]
    if config.active_connection:
        lines.append(f'active_connection = "{config.active_connection}"')
    advisory = config.advisory
    lines.append("")
    lines.append("[advisory]")
    lines.append(f"enabled = {str(advisory.enabled).lower()}")
    command = ", ".join(f'"{_escape(part)}"' for part in advisory.command)
    lines.append(f"command = [{command}]")
    lines.append(f"start_timeout = {advisory.start_timeout}")
    lines.append(f"stop_timeout = {advisory.stop_timeout}")
    lines.append(f"restart_backoff = {advisory.restart_backoff}")
    lines.append(f"live_reconfigure = {str(advisory.live_reconfigure).lower()}")
    if advisory.lint_rules:
        lines.append("")
        lines.append("[advisory.lint_rules]")
        for name in sorted(advisory.lint_rules):
            lines.append(f'"{name}" = {_toml_value(advisory.lint_rules[name])}')
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    if not isinstance(raw, dict):
        return data
    theme = raw.get("theme")
    if isinstance(theme, str):
        data["theme"] = theme
    active = raw.get("active_connection")
    if isinstance(active, str):
        data["active_connection"] = active
    for key in ("row_limit", "preview_limit"):
        value = raw.get(key)
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            data[key] = value
    data_dir = raw.get("data_dir")
    if isinstance(data_dir, str) and data_dir:
        data["data_dir"] = Path(data_dir).expanduser()
    advisory = raw.get("advisory")
    if isinstance(advisory, dict):
        data["advisory"] = _parse_advisory(advisory)
    return data


def _parse_advisory(raw: dict[str, object]) -> AdvisoryConfig:
    state: dict[str, object] = {}
    for key in ("enabled", "live_reconfigure"):
        value = raw.get(key)
        if isinstance(value, bool):
            state[key] = value
    for key in ("start_timeout", "stop_timeout", "restart_backoff"):
        value = raw.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0:
            state[key] = float(value)
    command = raw.get("command")
    if isinstance(command, list) and command and all(isinstance(part, str) for part in command):
        state["command"] = tuple(command)
    rules = raw.get("lint_rules")
    if isinstance(rules, dict):
        state["lint_rules"] = {str(name): value for name, value in rules.items()}
    return AdvisoryConfig(**state)


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return f'"{_escape(str(value))}"'
