"""Lazy, cancellable byte streams over host files.

Stream objects are handed out synchronously while the file behind them still
has to be resolved and opened. The open runs on first use; if it fails, the
failure becomes the stream's terminal error instead of escaping from the call
that created the stream. Every failure is normalized before it reaches the
consumer, and an optional ``asyncio.Event`` acts as a cancellation token.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import BinaryIO, TypeVar

from jailfs.errors import AbortError, ErrorCode, VFSError, normalize_error, vfs_errors

DEFAULT_CHUNK_SIZE = 64 * 1024

T = TypeVar("T")
Opener = Callable[[], Awaitable[BinaryIO]]


async def run_cancellable(awaitable: Awaitable[T], cancel: asyncio.Event | None) -> T:
    """Await ``awaitable`` unless ``cancel`` fires first, then raise ``AbortError``."""

    if cancel is None:
        return await awaitable
    if cancel.is_set():
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise AbortError()

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()

    if work in done:
        return work.result()
    work.cancel()
    raise AbortError()


class _LazyStream:
    def __init__(self, opener: Opener, *, cancel: asyncio.Event | None = None) -> None:
        self._opener = opener
        self._cancel = cancel
        self._handle: BinaryIO | None = None
        self._error: BaseException | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self._error is not None

    @property
    def error(self) -> BaseException | None:
        """Terminal error of the stream, if it failed or was aborted."""

        return self._error

    async def _ensure_open(self) -> BinaryIO:
        if self._error is not None:
            raise self._error
        if self._closed:
            raise VFSError("stream is closed", code=ErrorCode.EBADF)
        if self._handle is None:
            self._handle = await self._step(self._opener())
        return self._handle

    async def _step(self, awaitable: Awaitable[T]) -> T:
        try:
            return await run_cancellable(awaitable, self._cancel)
        except asyncio.CancelledError:
            self._release()
            raise
        except Exception as exc:
            error = self._terminate(exc)
            if error is exc:
                raise
            raise error from exc

    def _terminate(self, exc: BaseException) -> BaseException:
        self._error = normalize_error(exc)
        self._release()
        return self._error

    def _release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            # Close failures after a terminal error are dropped.
            with contextlib.suppress(OSError):
                handle.close()


class LazyReadStream(_LazyStream):
    """Async iterator of ``bytes`` chunks read from a lazily opened file."""

    def __init__(
        self,
        opener: Opener,
        *,
        cancel: asyncio.Event | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        super().__init__(opener, cancel=cancel)
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._chunk_size = chunk_size
        self._eof = False

    def __aiter__(self) -> LazyReadStream:
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.read(self._chunk_size)
        if not chunk:
            raise StopAsyncIteration
        return chunk

    async def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes; ``-1`` reads to the end. Returns b"" at EOF."""

        if self._eof and self._error is None:
            return b""
        handle = await self._ensure_open()
        chunk = await self._step(asyncio.to_thread(handle.read, size))
        if (not chunk and size != 0) or size < 0:
            self._eof = True
            await self.aclose()
        return chunk

    async def aclose(self) -> None:
        self._closed = True
        self._release()

    async def __aenter__(self) -> LazyReadStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


class LazyWriteStream(_LazyStream):
    """Writable byte sink over a lazily opened file."""

    async def write(self, data: bytes) -> int:
        handle = await self._ensure_open()
        return await self._step(asyncio.to_thread(_write_all, handle, data))

    async def close(self) -> None:
        """Flush and close the file, opening it first if nothing was written."""

        if self._error is not None:
            raise self._error
        if self._closed:
            return
        handle = await self._ensure_open()
        self._handle = None
        self._closed = True
        with vfs_errors():
            await asyncio.to_thread(handle.close)

    async def abort(self, reason: BaseException | None = None) -> None:
        """Discard the stream; later calls fail with ``reason`` (``AbortError`` by default)."""

        if self._error is None:
            self._terminate(reason if reason is not None else AbortError())

    async def __aenter__(self) -> LazyWriteStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc is not None:
            await self.abort(exc)
            return
        await self.close()


def _write_all(handle: BinaryIO, data: bytes) -> int:
    view = memoryview(data)
    total = 0
    while total < len(view):
        written = handle.write(view[total:])
        total += written if written is not None else len(view) - total
    return total


__all__ = [
    "LazyReadStream",
    "LazyWriteStream",
    "run_cancellable",
    "DEFAULT_CHUNK_SIZE",
    "Opener",
]
