"""Jail-enforcing, symlink-aware path resolution.

Caller paths are sequences of segments relative to a base directory. Every
segment is checked for being a symbolic link and links are expanded in place,
so chains of links are followed exactly like the kernel would, except that
the walk refuses to hand back anything outside the base directory.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import os
import posixpath
from collections import deque
from collections.abc import Sequence
from pathlib import Path

from jailfs.errors import ErrorCode, VFSError, normalize_error, vfs_errors

DEFAULT_MAX_HOPS = 40

logger = logging.getLogger("jailfs.resolver")

VirtualPath = str | Sequence[str]


def split_virtual(path: VirtualPath) -> list[str]:
    """Split a virtual path into segments.

    ``"/a/./b"`` and ``"a/b"`` both become ``["a", "b"]``. ``..`` is kept so
    the resolver can reject walks above the base directory.
    """

    raw = [path] if isinstance(path, str) else list(path)
    segments: list[str] = []
    for item in raw:
        segments.extend(part for part in item.split("/") if part and part != ".")
    return segments


class JailResolver:
    """Resolve virtual paths to real paths that never leave ``base``."""

    def __init__(self, base_dir: str | os.PathLike[str] = ".", *, max_hops: int = DEFAULT_MAX_HOPS) -> None:
        with vfs_errors():
            self.base = os.path.realpath(base_dir, strict=True)
        self.root = Path(self.base).anchor
        self.max_hops = max_hops

    def contains(self, path: str) -> bool:
        """Return True if ``path`` is ``base`` or lies below it."""

        if path == self.base:
            return True
        prefix = self.base if self.base.endswith(os.sep) else self.base + os.sep
        return path.startswith(prefix)

    async def resolve(self, path: VirtualPath, follow_last: bool = True) -> str:
        return await asyncio.to_thread(self.resolve_sync, path, follow_last)

    def resolve_sync(self, path: VirtualPath, follow_last: bool = True) -> str:
        """Return the real path for ``path`` or raise ``VFSError``.

        With ``follow_last=False`` a symlink in the final position is returned
        as the link itself. A missing final segment is tolerated so callers
        can create it.
        """

        segments = split_virtual(path)
        if not segments:
            return self.base
        with vfs_errors():
            location = self._walk(segments, follow_last)
        if location is None:
            raise VFSError("path outside base directory", code=ErrorCode.EINVAL)
        return location

    def _walk(self, segments: list[str], follow_last: bool) -> str | None:
        current = self.base
        strict = True
        hops = 0
        pending = deque(segments)

        while pending:
            segment = pending.popleft()
            last = not pending

            if segment == "..":
                current = os.path.dirname(current)
                if strict and not self.contains(current):
                    logger.debug("rejecting %s: walked above %s", current, self.base)
                    return None
                continue

            child = os.path.join(current, segment) if segment and segment != "." else current
            try:
                target = os.readlink(child)
            except OSError as exc:
                current = child
                if exc.errno == errno.EINVAL:
                    continue
                if exc.errno == errno.ENOENT and last:
                    continue
                raise normalize_error(exc) from exc

            hops += 1
            if hops > self.max_hops:
                raise VFSError("too many symlinks", code=ErrorCode.EINVAL)
            if last and not follow_last:
                current = child
                break

            logger.debug("following %s -> %s", child, target)
            # The link's own components run before whatever the caller still has pending.
            pending.extendleft(reversed(target.split(os.sep)))
            if os.path.isabs(target):
                current = Path(target).anchor
                strict = False
            else:
                strict = True

        if not self.contains(current):
            logger.debug("rejecting %s: outside %s", current, self.base)
            return None
        return current

    def to_virtual(self, real: str, absolute: bool = True) -> str:
        """Render a real path as ``/a/b`` (absolute) or ``a/b`` (relative) below ``base``."""

        if Path(real).anchor != self.root:
            raise VFSError("cannot resolve filepath outside filesystem root", code=ErrorCode.ENOSYS)
        relative = os.path.relpath(real, self.base).split(os.sep)
        return posixpath.normpath(posixpath.join("/" if absolute else ".", *relative))

    def __repr__(self) -> str:
        return f"JailResolver(base={self.base!r})"


__all__ = ["JailResolver", "split_virtual", "DEFAULT_MAX_HOPS", "VirtualPath"]
