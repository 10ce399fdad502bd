"""Common path utilities for jailfs."""

from __future__ import annotations

import os
from pathlib import Path


def get_jailfs_home() -> Path:
    """Return the base jailfs directory, honoring JAILFS_HOME if set."""

    env_path = os.environ.get("JAILFS_HOME")
    return Path(env_path).expanduser() if env_path else Path.home() / ".jailfs"


def default_config_path() -> Path:
    return get_jailfs_home() / "config.toml"


__all__ = ["get_jailfs_home", "default_config_path"]
