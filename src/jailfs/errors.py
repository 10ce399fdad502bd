"""Canonical error vocabulary and host error translation.

Host calls fail with ``OSError`` (or anything else a library throws). Those
failures are translated exactly once, where they cross into jailfs, into a
``VFSError`` whose ``code`` belongs to a small fixed set. Cancellation and
already-translated errors pass through untouched.
"""

from __future__ import annotations

import asyncio
import errno
import re
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Error codes surfaced to callers, independent of the host platform."""

    ENOENT = "ENOENT"
    ENOTDIR = "ENOTDIR"
    EISDIR = "EISDIR"
    ENOTEMPTY = "ENOTEMPTY"
    EPERM = "EPERM"
    EMFILE = "EMFILE"
    ENFILE = "ENFILE"
    EBADF = "EBADF"
    EINVAL = "EINVAL"
    EEXIST = "EEXIST"
    ENOSYS = "ENOSYS"
    EUNKNOWN = "EUNKNOWN"


# Host codes folded into a canonical neighbour.
_HOST_ALIASES = {"EACCES": ErrorCode.EPERM}

_ERRNO_PREFIX = re.compile(r"^\[Errno -?\d+\] ")


class VFSError(Exception):
    """Error raised by every jailfs operation."""

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | str = ErrorCode.EUNKNOWN,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"VFSError({self.message!r}, code={self.code.value})"


class AbortError(Exception):
    """Raised when an operation is cancelled through its cancellation token."""

    def __init__(self, message: str = "The operation was aborted") -> None:
        super().__init__(message)


def host_code(exc: BaseException) -> ErrorCode | None:
    """Return the canonical code carried by a host error, if it has one."""

    name: Any = None
    if isinstance(exc, OSError) and exc.errno is not None:
        name = errno.errorcode.get(exc.errno)
    if name is None:
        name = getattr(exc, "code", None)
    if isinstance(name, ErrorCode):
        return name
    if not isinstance(name, str):
        return None
    if name in _HOST_ALIASES:
        return _HOST_ALIASES[name]
    try:
        return ErrorCode(name)
    except ValueError:
        return None


def normalize_error(exc: object) -> BaseException:
    """Translate an arbitrary failure into the canonical vocabulary."""

    if isinstance(exc, (asyncio.CancelledError, AbortError, VFSError)):
        return exc
    if not isinstance(exc, BaseException):
        return VFSError(f"{exc}")

    message = str(exc)
    code = host_code(exc)
    if code is None:
        return VFSError(message, code=ErrorCode.EUNKNOWN, cause=exc)

    message = _ERRNO_PREFIX.sub("", message)
    for prefix in _code_prefixes(exc, code):
        if message.startswith(prefix):
            message = message[len(prefix) :]
            break
    return VFSError(message, code=code, cause=exc)


def _code_prefixes(exc: BaseException, code: ErrorCode) -> list[str]:
    prefixes = [f"{code.value}: "]
    if isinstance(exc, OSError) and exc.errno is not None:
        native = errno.errorcode.get(exc.errno)
        if native and native != code.value:
            prefixes.append(f"{native}: ")
    return prefixes


@contextmanager
def vfs_errors() -> Iterator[None]:
    """Re-raise any failure inside the block as its normalized form."""

    try:
        yield
    except Exception as exc:
        normalized = normalize_error(exc)
        if normalized is exc:
            raise
        raise normalized from exc


async def host_call(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Run a blocking host call off the event loop with error translation."""

    with vfs_errors():
        return await asyncio.to_thread(func, *args, **kwargs)


__all__ = [
    "ErrorCode",
    "VFSError",
    "AbortError",
    "host_code",
    "normalize_error",
    "vfs_errors",
    "host_call",
]
