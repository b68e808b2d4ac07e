"""Configuration for flatly.

Resolves where state lives and which settings the daemon runs with.
Settings come from, in increasing precedence: defaults, an optional
``config.yaml`` next to the state file, ``FLATLY_*`` environment
variables and explicit keyword overrides.
"""

import dataclasses
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from flatly.exceptions import ConfigError

APP_DIR_NAME = "flatly"
ACTIVE_FILE_NAME = "active.json"
BACKUP_DIR_NAME = "backups"
LOCK_FILE_NAME = "flatly.lock"
CONFIG_FILE_NAME = "config.yaml"


def _env_bool(key: str, value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    raise ConfigError(f"{key} must be a boolean (true/false, yes/no, 1/0), got {value!r}")


@dataclasses.dataclass(frozen=True)
class FlatlyPaths:
    """Filesystem layout of a flatly directory."""

    root: Path

    @property
    def active_file(self) -> Path:
        return self.root / ACTIVE_FILE_NAME

    @property
    def backup_dir(self) -> Path:
        return self.root / BACKUP_DIR_NAME

    @property
    def lock_file(self) -> Path:
        return self.root / LOCK_FILE_NAME

    @property
    def config_file(self) -> Path:
        return self.root / CONFIG_FILE_NAME

    def ensure_root(self) -> Path:
        """Create the flatly directory if needed.

        Raises:
            ConfigError: If the directory cannot be created.
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"Cannot create flatly directory {self.root}: {e}") from e
        return self.root


def resolve_paths(debug: bool = False) -> FlatlyPaths:
    """Resolve the flatly directory.

    ``--debug`` keeps everything in the current working directory.
    Otherwise ``FLATLY_HOME`` wins, then ``$XDG_CONFIG_HOME/flatly``,
    then ``~/.config/flatly``.

    Raises:
        ConfigError: If neither a working directory nor a home directory
            can be determined.
    """
    try:
        if debug:
            return FlatlyPaths(root=Path.cwd())

        explicit = os.environ.get("FLATLY_HOME")
        if explicit:
            return FlatlyPaths(root=Path(explicit).expanduser())

        xdg = os.environ.get("XDG_CONFIG_HOME")
        config_home = Path(xdg) if xdg else Path.home() / ".config"
    except (OSError, RuntimeError) as e:
        raise ConfigError(f"Cannot resolve configuration directory: {e}") from e

    return FlatlyPaths(root=config_home / APP_DIR_NAME)


class FlatlySettings(BaseModel):
    """Runtime settings for the daemon and the flatpak backend."""

    model_config = ConfigDict(extra="forbid")

    interval_seconds: float = Field(default=30.0, gt=0, description="Delay between daemon ticks")
    command_timeout: float = Field(default=900.0, gt=0, description="Timeout for install/uninstall")
    query_timeout: float = Field(default=60.0, gt=0, description="Timeout for list/info queries")
    lock_timeout: float = Field(default=30.0, ge=0, description="How long to wait for the state lock")
    max_backups: int = Field(default=20, ge=0, description="Backups to keep, 0 keeps all")
    backups_enabled: bool = True
    flatpak_binary: str = "flatpak"
    installation: Literal["user", "system"] | None = None
    remote: str | None = None
    allow_empty_declaration: bool = Field(
        default=False,
        description="Allow an emptied active.json to uninstall every package",
    )


_ENV_SETTINGS_MAP = {
    "FLATLY_INTERVAL": "interval_seconds",
    "FLATLY_COMMAND_TIMEOUT": "command_timeout",
    "FLATLY_QUERY_TIMEOUT": "query_timeout",
    "FLATLY_LOCK_TIMEOUT": "lock_timeout",
    "FLATLY_MAX_BACKUPS": "max_backups",
    "FLATLY_FLATPAK": "flatpak_binary",
    "FLATLY_INSTALLATION": "installation",
    "FLATLY_REMOTE": "remote",
}

_ENV_BOOL_MAP = {
    "FLATLY_BACKUPS": "backups_enabled",
    "FLATLY_ALLOW_EMPTY": "allow_empty_declaration",
}


def _load_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


def load_settings(paths: FlatlyPaths, **overrides: Any) -> FlatlySettings:
    """Build settings from the config file, environment and overrides.

    Args:
        paths: Resolved flatly directory layout.
        **overrides: Explicit field values that take precedence.

    Returns:
        Validated FlatlySettings.

    Raises:
        ConfigError: If the config file is unreadable or any value is invalid.
    """
    values = _load_config_file(paths.config_file)

    env = os.environ
    for env_key, field_name in _ENV_SETTINGS_MAP.items():
        val = env.get(env_key)
        if val is not None:
            values[field_name] = val

    for env_key, field_name in _ENV_BOOL_MAP.items():
        if env_key in env:
            default = values.get(field_name, FlatlySettings.model_fields[field_name].default)
            values[field_name] = _env_bool(env_key, env.get(env_key), bool(default))

    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return FlatlySettings(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid flatly configuration: {e}") from e
