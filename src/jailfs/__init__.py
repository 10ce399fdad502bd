"""jailfs: a sandboxed filesystem backend rooted in one host directory."""

from __future__ import annotations

__version__ = "0.1.0"

from jailfs.backend import LocalFileHandle, LocalVFS  # noqa: E402
from jailfs.errors import AbortError, ErrorCode, VFSError, normalize_error  # noqa: E402
from jailfs.resolver import JailResolver  # noqa: E402
from jailfs.types import Dirent, EntryType, StatInfo, WatchEvent, WatchEventType  # noqa: E402

__all__ = [
    "__version__",
    "LocalVFS",
    "LocalFileHandle",
    "JailResolver",
    "VFSError",
    "AbortError",
    "ErrorCode",
    "normalize_error",
    "Dirent",
    "EntryType",
    "StatInfo",
    "WatchEvent",
    "WatchEventType",
]
