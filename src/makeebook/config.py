from __future__ import annotations

import dataclasses
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .autosave import DEFAULT_DEBOUNCE_SECONDS, ERROR_DISPLAY_SECONDS, SAVED_DISPLAY_SECONDS
from .cover import COVER_MAX_HEIGHT, COVER_MAX_WIDTH, COVER_QUALITY
from .errors import ConfigError
from .versions import MAX_VERSIONS

CONFIG_TABLE = "makeebook"


@dataclass(slots=True)
class EditorConfig:
    autosave_enabled: bool = True
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    saved_display_seconds: float = SAVED_DISPLAY_SECONDS
    error_display_seconds: float = ERROR_DISPLAY_SECONDS
    cover_max_width: int = COVER_MAX_WIDTH
    cover_max_height: int = COVER_MAX_HEIGHT
    cover_quality: int = COVER_QUALITY
    max_versions: int = MAX_VERSIONS
    gateway_url: str | None = None
    gateway_token: str | None = None
    preferences_path: Path | None = None
    history_dir: Path | None = None


@dataclass(slots=True)
class ServerConfig:
    root: Path
    host: str = "127.0.0.1"
    port: int = 8000
    api_token: str | None = None
    editor: EditorConfig = field(default_factory=EditorConfig)


def _coerce(name: str, expected: type, value: Any) -> Any:
    if expected is bool:
        if isinstance(value, bool):
            return value
    elif expected is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif expected is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif expected is Path:
        if isinstance(value, str) and value.strip():
            return Path(value).expanduser()
    elif expected is str:
        if isinstance(value, str):
            return value
    raise ConfigError(f"Config key '{name}' must be {expected.__name__}, got {value!r}")


_FIELD_TYPES: dict[str, type] = {
    "autosave_enabled": bool,
    "debounce_seconds": float,
    "saved_display_seconds": float,
    "error_display_seconds": float,
    "cover_max_width": int,
    "cover_max_height": int,
    "cover_quality": int,
    "max_versions": int,
    "gateway_url": str,
    "gateway_token": str,
    "preferences_path": Path,
    "history_dir": Path,
}


def config_from_mapping(data: Mapping[str, Any]) -> EditorConfig:
    """Build an :class:`EditorConfig`; unknown keys are ignored."""
    table = data.get(CONFIG_TABLE, data)
    if not isinstance(table, Mapping):
        raise ConfigError(f"[{CONFIG_TABLE}] must be a table.")
    values: dict[str, Any] = {}
    for key, raw in table.items():
        name = key.replace("-", "_")
        expected = _FIELD_TYPES.get(name)
        if expected is None:
            continue
        values[name] = _coerce(name, expected, raw)
    config = EditorConfig(**values)
    if config.debounce_seconds <= 0:
        raise ConfigError("debounce_seconds must be positive.")
    if config.cover_max_width <= 0 or config.cover_max_height <= 0:
        raise ConfigError("Cover bounds must be positive.")
    if not 1 <= config.cover_quality <= 100:
        raise ConfigError("cover_quality must be between 1 and 100.")
    if config.max_versions < 1:
        raise ConfigError("max_versions must be at least 1.")
    return config


def load_config(path: Path | None) -> EditorConfig:
    if path is None:
        return EditorConfig()
    try:
        with path.expanduser().open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    return config_from_mapping(data)


def with_overrides(config: EditorConfig, **overrides: Any) -> EditorConfig:
    """Return a copy with the non-None ``overrides`` applied."""
    changes = {key: value for key, value in overrides.items() if value is not None}
    return dataclasses.replace(config, **changes)


__all__ = [
    "CONFIG_TABLE",
    "EditorConfig",
    "ServerConfig",
    "config_from_mapping",
    "load_config",
    "with_overrides",
]
