"""Records exchanged between the backend and its callers."""

from __future__ import annotations

import os
import stat
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from jailfs.errors import VFSError


class EntryType(str, Enum):
    FILE = "file"
    DIR = "dir"
    SYMLINK = "symlink"


class WatchEventType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class Dirent:
    """Single directory entry with its type."""

    name: str
    type: EntryType


@dataclass(frozen=True, slots=True)
class StatInfo:
    type: EntryType
    size: int


@dataclass(frozen=True, slots=True)
class WatchEvent:
    """Change delivered to a watch listener; ``path`` is a virtual path."""

    path: str
    type: WatchEventType


WatchCallback = Callable[[WatchEvent], None]
WatchErrorCallback = Callable[[VFSError], None]


def entry_type_of(mode: int) -> EntryType | None:
    """Map a ``st_mode`` to an entry type; other kinds (fifo, socket...) map to None."""

    if stat.S_ISREG(mode):
        return EntryType.FILE
    if stat.S_ISDIR(mode):
        return EntryType.DIR
    if stat.S_ISLNK(mode):
        return EntryType.SYMLINK
    return None


def dirent_type_of(entry: os.DirEntry[str]) -> EntryType | None:
    if entry.is_file(follow_symlinks=False):
        return EntryType.FILE
    if entry.is_dir(follow_symlinks=False):
        return EntryType.DIR
    if entry.is_symlink():
        return EntryType.SYMLINK
    return None


__all__ = [
    "EntryType",
    "WatchEventType",
    "Dirent",
    "StatInfo",
    "WatchEvent",
    "WatchCallback",
    "WatchErrorCallback",
    "entry_type_of",
    "dirent_type_of",
]
