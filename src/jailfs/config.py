"""Configuration models for jailfs.

Settings are merged from CLI overrides, environment variables, a TOML file
and built-in defaults, in that order of priority.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from jailfs.paths import default_config_path
from jailfs.resolver import DEFAULT_MAX_HOPS
from jailfs.streams import DEFAULT_CHUNK_SIZE


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Settings(BaseModel):
    """Resolved jailfs settings."""

    model_config = ConfigDict(frozen=True, validate_default=True, extra="forbid")

    base_dir: Path = Path(".")
    max_symlink_hops: int = Field(default=DEFAULT_MAX_HOPS, ge=1)
    stream_chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, ge=1)
    log_level: LogLevel = LogLevel.INFO

    @field_validator("base_dir")
    @classmethod
    def _expand_base_dir(cls, value: Path) -> Path:
        if not str(value).strip():
            raise ValueError("base_dir cannot be empty")
        return value.expanduser()


def load_settings(
    cli_overrides: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
    config_path: Path | str | None = None,
) -> Settings:
    env = env if env is not None else os.environ
    cli_overrides = cli_overrides or {}
    path = Path(config_path) if config_path else default_config_path()

    config_data: dict[str, Any] = {}
    if path.exists():
        config_data = _read_toml(path)

    defaults = Settings()

    base_dir = _first_value(
        _clean_str(cli_overrides.get("base_dir")),
        _clean_str(env.get("JAILFS_BASE_DIR")),
        _clean_str(_get_config_value(config_data, "sandbox", "base_dir")),
        defaults.base_dir,
    )

    max_symlink_hops = _first_value(
        cli_overrides.get("max_symlink_hops"),
        _get_config_value(config_data, "sandbox", "max_symlink_hops"),
        defaults.max_symlink_hops,
    )

    stream_chunk_size = _first_value(
        cli_overrides.get("stream_chunk_size"),
        _get_config_value(config_data, "streams", "chunk_size"),
        defaults.stream_chunk_size,
    )

    log_level = _first_value(
        _clean_str(cli_overrides.get("log_level")),
        _clean_str(env.get("JAILFS_LOG_LEVEL")),
        _clean_str(_get_config_value(config_data, "logging", "log_level")),
        defaults.log_level,
    )

    return Settings(
        base_dir=Path(base_dir),
        max_symlink_hops=max_symlink_hops,
        stream_chunk_size=stream_chunk_size,
        log_level=_coerce_enum(log_level, LogLevel, LogLevel.INFO),
    )


def write_config(settings: Settings, config_path: Path | str | None = None) -> Path:
    path = Path(config_path) if config_path else default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    sections: list[str] = []
    _append_section(
        sections,
        "sandbox",
        {"base_dir": str(settings.base_dir), "max_symlink_hops": settings.max_symlink_hops},
    )
    _append_section(sections, "streams", {"chunk_size": settings.stream_chunk_size})
    _append_section(sections, "logging", {"log_level": settings.log_level})

    content = "\n\n".join(filter(None, sections)) + "\n"
    path.write_text(content, encoding="utf-8")
    return path


def _read_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _get_config_value(config: Mapping[str, Any], section: str, key: str) -> Any:
    section_data = config.get(section)
    if not isinstance(section_data, dict):
        return None
    return section_data.get(key)


def _clean_str(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    return value


def _first_value(*candidates: Any) -> Any:
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None


def _coerce_enum(value: Any, enum_cls: type[LogLevel], default: LogLevel) -> LogLevel:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.lower())
        except ValueError:
            return default
    return default


def _append_section(parts: list[str], name: str, values: Mapping[str, Any]) -> None:
    filtered = {k: v for k, v in values.items() if v is not None}
    if not filtered:
        return
    lines = [f"[{name}]"]
    for key, val in filtered.items():
        if isinstance(val, Enum):
            lines.append(f'{key} = "{val.value}"')
        elif isinstance(val, str):
            escaped = val.replace("\\", "\\\\").replace('"', '\\"')
            lines.append(f'{key} = "{escaped}"')
        else:
            lines.append(f"{key} = {val}")
    parts.append("\n".join(lines))


__all__ = [
    "Settings",
    "LogLevel",
    "load_settings",
    "write_config",
]
