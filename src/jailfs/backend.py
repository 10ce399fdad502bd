"""Filesystem backend jailed inside one host directory.

``LocalVFS`` exposes the full virtual filesystem operation set over a real
directory tree. Every path goes through ``JailResolver`` before the host is
touched, and every host failure leaves as a ``VFSError`` with a canonical code.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import stat
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import BinaryIO

from jailfs.config import Settings
from jailfs.errors import ErrorCode, VFSError, host_call
from jailfs.resolver import JailResolver, VirtualPath, split_virtual
from jailfs.streams import LazyReadStream, LazyWriteStream, run_cancellable
from jailfs.types import (
    Dirent,
    StatInfo,
    WatchCallback,
    WatchErrorCallback,
    dirent_type_of,
    entry_type_of,
)
from jailfs.watch import Subscriber, WatchMultiplexer

logger = logging.getLogger("jailfs.backend")

_fdatasync = getattr(os, "fdatasync", os.fsync)


class LocalFileHandle:
    """Open host file; every method translates host failures."""

    def __init__(self, fd: int) -> None:
        self._fd = fd

    @classmethod
    async def open(cls, path: str, flags: int) -> LocalFileHandle:
        fd = await host_call(os.open, path, flags, 0o666)
        return cls(fd)

    @property
    def closed(self) -> bool:
        return self._fd < 0

    async def stat(self) -> StatInfo:
        st = await host_call(os.fstat, self._fd)
        return _stat_info(st)

    async def read(self, size: int, position: int) -> bytes:
        return await host_call(os.pread, self._fd, size, position)

    async def write(self, data: bytes, position: int) -> int:
        return await host_call(os.pwrite, self._fd, data, position)

    async def truncate(self, size: int = 0) -> None:
        await host_call(os.ftruncate, self._fd, size)

    async def flush(self) -> None:
        await host_call(_fdatasync, self._fd)

    async def close(self) -> None:
        # -1 makes any later call fail EBADF instead of touching a reused descriptor.
        fd, self._fd = self._fd, -1
        await host_call(os.close, fd)

    async def __aenter__(self) -> LocalFileHandle:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if not self.closed:
            await self.close()

    def __repr__(self) -> str:
        return f"LocalFileHandle(fd = {self._fd})"


class LocalVFS:
    """Virtual filesystem backed by the host directory ``base_dir``."""

    def __init__(
        self,
        base_dir: str | os.PathLike[str] | None = None,
        *,
        settings: Settings | None = None,
        subscribe: Subscriber | None = None,
    ) -> None:
        self.settings = settings or Settings()
        base = base_dir if base_dir is not None else self.settings.base_dir
        self._resolver = JailResolver(base, max_hops=self.settings.max_symlink_hops)
        self._watchers = WatchMultiplexer(self._resolver.base, self._resolver.to_virtual, subscribe=subscribe)
        logger.debug("backend rooted at %s", self._resolver.base)

    @property
    def base(self) -> str:
        return self._resolver.base

    @property
    def resolver(self) -> JailResolver:
        return self._resolver

    async def _fs_path(self, path: VirtualPath, follow_last: bool = True) -> str:
        return await self._resolver.resolve(path, follow_last)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------
    async def exists(self, path: VirtualPath) -> bool:
        try:
            await host_call(os.stat, await self._fs_path(path))
        except VFSError as exc:
            if exc.code is ErrorCode.ENOENT:
                return False
            raise
        return True

    async def stat(self, path: VirtualPath) -> StatInfo:
        st = await host_call(os.stat, await self._fs_path(path))
        return _stat_info(st)

    async def lstat(self, path: VirtualPath) -> StatInfo:
        st = await host_call(os.lstat, await self._fs_path(path, follow_last=False))
        return _stat_info(st)

    async def read_dir(self, path: VirtualPath) -> list[str]:
        return await host_call(os.listdir, await self._fs_path(path))

    async def read_dirent(self, path: VirtualPath) -> list[Dirent]:
        """List a directory with entry types; entries of other kinds are skipped."""

        return await host_call(_scan_dirents, await self._fs_path(path))

    # ------------------------------------------------------------------
    # File contents
    # ------------------------------------------------------------------
    async def read_file(self, path: VirtualPath, *, cancel: asyncio.Event | None = None) -> bytes:
        location = await self._fs_path(path)
        return await run_cancellable(host_call(_read_bytes, location), cancel)

    def read_file_stream(self, path: VirtualPath, *, cancel: asyncio.Event | None = None) -> LazyReadStream:
        return LazyReadStream(
            self._opener(path, "rb"),
            cancel=cancel,
            chunk_size=self.settings.stream_chunk_size,
        )

    async def write_file(self, path: VirtualPath, data: bytes, *, cancel: asyncio.Event | None = None) -> None:
        location = await self._fs_path(path)
        await run_cancellable(host_call(_write_bytes, location, data, "wb"), cancel)

    def write_file_stream(self, path: VirtualPath, *, cancel: asyncio.Event | None = None) -> LazyWriteStream:
        return LazyWriteStream(self._opener(path, "wb"), cancel=cancel)

    async def append_file(self, path: VirtualPath, data: bytes, *, cancel: asyncio.Event | None = None) -> None:
        location = await self._fs_path(path)
        await run_cancellable(host_call(_write_bytes, location, data, "ab"), cancel)

    def append_file_stream(self, path: VirtualPath, *, cancel: asyncio.Event | None = None) -> LazyWriteStream:
        return LazyWriteStream(self._opener(path, "ab"), cancel=cancel)

    async def truncate(self, path: VirtualPath, size: int = 0) -> None:
        await host_call(os.truncate, await self._fs_path(path), size)

    def _opener(self, path: VirtualPath, mode: str) -> Callable[[], Awaitable[BinaryIO]]:
        async def _open() -> BinaryIO:
            location = await self._fs_path(path)
            return await host_call(open, location, mode)

        return _open

    # ------------------------------------------------------------------
    # Tree manipulation
    # ------------------------------------------------------------------
    async def copy_file(self, src: VirtualPath, dst: VirtualPath) -> None:
        # Both sides are resolved before copying; the tree can change in between.
        src_path, dst_path = await asyncio.gather(self._fs_path(src), self._fs_path(dst))
        await host_call(shutil.copyfile, src_path, dst_path)

    async def copy_dir(self, src: VirtualPath, dst: VirtualPath) -> None:
        async def _source() -> str:
            return await _ensure_dir(await self._fs_path(src))

        async def _destination() -> str:
            location = await self._fs_path(dst)
            await _ensure_dir(os.path.dirname(location))
            return location

        src_path, dst_path = await asyncio.gather(_source(), _destination())
        await host_call(shutil.copytree, src_path, dst_path, symlinks=True, dirs_exist_ok=True)

    async def remove_file(self, path: VirtualPath) -> None:
        await host_call(os.unlink, await self._fs_path(path, follow_last=False))

    async def remove_dir(self, path: VirtualPath, recursive: bool = False) -> None:
        location = await _ensure_dir(await self._fs_path(path))
        if location == self.base:
            raise VFSError("cannot remove base directory", code=ErrorCode.EPERM)
        if recursive:
            await host_call(shutil.rmtree, location)
        else:
            await host_call(os.rmdir, location)

    async def rename(self, src: VirtualPath, dst: VirtualPath) -> None:
        src_path, dst_path = await asyncio.gather(self._fs_path(src), self._fs_path(dst))
        await host_call(os.rename, src_path, dst_path)

    async def mkdir(self, path: VirtualPath) -> None:
        await host_call(os.mkdir, await self._fs_path(path))

    # ------------------------------------------------------------------
    # Symbolic links
    # ------------------------------------------------------------------
    async def symlink(self, target: VirtualPath, link: VirtualPath, relative: bool = True) -> None:
        """Create ``link`` pointing at ``target``.

        A relative target is stored as given. With ``relative=False``, or for a
        string starting with ``/``, the target is anchored at the base
        directory. The target is not checked against the jail here, only when
        the link is later traversed.
        """

        if isinstance(target, str) and target.startswith("/"):
            relative = False
        parts = target.split("/") if isinstance(target, str) else list(target)
        if not relative:
            parts = split_virtual(parts)
        stored = os.sep.join(parts)
        if not relative:
            stored = self.base.rstrip(os.sep) + os.sep + stored
        await host_call(os.symlink, stored, await self._fs_path(link, follow_last=False))

    async def read_symlink(self, link: VirtualPath) -> str:
        location = await self._fs_path(link, follow_last=False)
        target = await host_call(os.readlink, location)
        resolved = os.path.normpath(os.path.join(os.path.dirname(location), target))
        return self._resolver.to_virtual(resolved, True)

    async def real_path(self, path: VirtualPath) -> str:
        location = await self._fs_path(path)
        result = await host_call(os.path.realpath, location, strict=True)
        return self._resolver.to_virtual(result, True)

    # ------------------------------------------------------------------
    # Handles and watching
    # ------------------------------------------------------------------
    async def open_file(
        self,
        path: VirtualPath,
        read: bool = True,
        write: bool = False,
        truncate: bool = False,
    ) -> LocalFileHandle:
        if write:
            flags = (os.O_RDWR if read else os.O_WRONLY) | os.O_CREAT
        else:
            flags = os.O_RDONLY
        if truncate:
            flags |= os.O_TRUNC
        return await LocalFileHandle.open(await self._fs_path(path), flags)

    async def watch(
        self,
        pattern: str,
        on_event: WatchCallback,
        on_error: WatchErrorCallback,
    ) -> Callable[[], Awaitable[None]]:
        """Call ``on_event`` for changes under the base directory matching ``pattern``.

        Each change is matched first as ``/a/b`` and then as ``a/b`` (no
        leading ``./``); the event carries whichever form matched. The base
        directory itself is ``/`` or ``.``. Returns a coroutine function that
        removes the listener.
        """

        unregister = await asyncio.to_thread(self._watchers.register, pattern, on_event, on_error)

        async def unsubscribe() -> None:
            await asyncio.to_thread(unregister)

        return unsubscribe

    @property
    def watching(self) -> bool:
        return self._watchers.active

    async def close(self) -> None:
        await asyncio.to_thread(self._watchers.close)

    async def __aenter__(self) -> LocalVFS:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"LocalVFS(root = {self.base})"


def _stat_info(st: os.stat_result) -> StatInfo:
    entry_type = entry_type_of(st.st_mode)
    if entry_type is None:
        raise VFSError("unknown file type", code=ErrorCode.ENOSYS)
    return StatInfo(type=entry_type, size=st.st_size)


async def _ensure_dir(path: str) -> str:
    st = await host_call(os.stat, path)
    if not stat.S_ISDIR(st.st_mode):
        raise VFSError(f"{path} is not a directory", code=ErrorCode.ENOTDIR)
    return path


def _scan_dirents(path: str) -> list[Dirent]:
    entries: list[Dirent] = []
    with os.scandir(path) as it:
        for entry in it:
            entry_type = dirent_type_of(entry)
            if entry_type is not None:
                entries.append(Dirent(name=entry.name, type=entry_type))
    return entries


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as handle:
        return handle.read()


def _write_bytes(path: str, data: bytes, mode: str) -> None:
    with open(path, mode) as handle:
        handle.write(data)


__all__ = ["LocalVFS", "LocalFileHandle"]
