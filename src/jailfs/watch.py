"""Fan one change-notification subscription out to many glob-filtered listeners.

The native notifier is consumed through a single callable,
``subscribe(root, callback) -> Subscription``. ``watchdog_subscribe`` adapts a
watchdog ``Observer`` to that contract; tests inject their own.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import Protocol

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from wcmatch import glob

from jailfs.errors import ErrorCode, VFSError, normalize_error, vfs_errors
from jailfs.types import WatchCallback, WatchErrorCallback, WatchEvent, WatchEventType

logger = logging.getLogger("jailfs.watch")

GLOB_FLAGS = glob.GLOBSTAR | glob.DOTGLOB | glob.IGNORECASE | glob.BRACE


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """Raw change reported by the native notifier; ``path`` is a real path."""

    path: str
    type: WatchEventType


ChangeCallback = Callable[[BaseException | None, Sequence[ChangeEvent]], None]


class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


Subscriber = Callable[[str, ChangeCallback], Subscription]


def compile_glob(pattern: str) -> Callable[[str], bool]:
    """Return a case-insensitive predicate that also matches hidden entries."""

    def is_match(path: str) -> bool:
        return glob.globmatch(path, pattern, flags=GLOB_FLAGS)

    return is_match


@dataclass(eq=False, slots=True)
class WatchRegistration:
    is_match: Callable[[str], bool]
    on_event: WatchCallback
    on_error: WatchErrorCallback


class WatchMultiplexer:
    """Share one subscription rooted at ``root`` between any number of listeners.

    The subscription is created when the first listener registers and torn
    down when the last one leaves. Registration bookkeeping is serialized by
    a lock because the notifier delivers events on its own thread.
    """

    def __init__(
        self,
        root: str,
        to_virtual: Callable[[str, bool], str],
        *,
        subscribe: Subscriber | None = None,
    ) -> None:
        self._root = root
        self._to_virtual = to_virtual
        self._subscribe = subscribe or watchdog_subscribe
        self._registrations: set[WatchRegistration] = set()
        self._subscription: Subscription | None = None
        self._lock = threading.RLock()

    @property
    def active(self) -> bool:
        return self._subscription is not None

    def __len__(self) -> int:
        return len(self._registrations)

    def register(self, pattern: str, on_event: WatchCallback, on_error: WatchErrorCallback) -> Callable[[], None]:
        """Add a listener and return the callable that removes it."""

        entry = WatchRegistration(is_match=compile_glob(pattern), on_event=on_event, on_error=on_error)
        with self._lock:
            self._registrations.add(entry)
            if self._subscription is None:
                try:
                    with vfs_errors():
                        self._subscription = self._subscribe(self._root, self._dispatch)
                except BaseException:
                    self._registrations.discard(entry)
                    raise
                logger.debug("watch subscription opened on %s", self._root)

        def unsubscribe() -> None:
            self._unregister(entry)

        return unsubscribe

    def close(self) -> None:
        """Drop every listener and tear the subscription down."""

        with self._lock:
            self._registrations.clear()
            subscription, self._subscription = self._subscription, None
        self._teardown(subscription)

    def _unregister(self, entry: WatchRegistration) -> None:
        subscription = None
        with self._lock:
            if entry not in self._registrations:
                return
            self._registrations.discard(entry)
            if not self._registrations:
                subscription, self._subscription = self._subscription, None
        self._teardown(subscription)

    def _teardown(self, subscription: Subscription | None) -> None:
        # Runs outside the lock: stopping the notifier waits for its thread, which may be dispatching.
        if subscription is None:
            return
        logger.debug("watch subscription closed on %s", self._root)
        with vfs_errors():
            subscription.unsubscribe()

    def _dispatch(self, error: BaseException | None, events: Sequence[ChangeEvent]) -> None:
        with self._lock:
            listeners = list(self._registrations)

        if error is not None:
            self._broadcast_error(listeners, error)

        for event in events:
            try:
                abs_path = self._to_virtual(event.path, True)
                rel_path = self._to_virtual(event.path, False)
            except VFSError as exc:
                self._broadcast_error(listeners, exc)
                continue
            for entry in listeners:
                if entry.is_match(abs_path):
                    self._fire(entry.on_event, WatchEvent(path=abs_path, type=event.type))
                elif entry.is_match(rel_path):
                    self._fire(entry.on_event, WatchEvent(path=rel_path, type=event.type))

    def _broadcast_error(self, listeners: list[WatchRegistration], error: BaseException) -> None:
        wrapped = normalize_error(error)
        if not isinstance(wrapped, VFSError):
            wrapped = VFSError(str(wrapped), cause=wrapped)
        for entry in listeners:
            self._fire(entry.on_error, wrapped)

    def _fire(self, callback: Callable[[object], None], payload: object) -> None:
        try:
            callback(payload)
        except Exception:
            logger.warning("watch callback %r failed", callback, exc_info=True)


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, root: str, callback: ChangeCallback) -> None:
        super().__init__()
        self._root = root
        self._callback = callback

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type == "deleted" and os.fsdecode(event.src_path) == self._root:
            self._callback(VFSError("watched directory was removed", code=ErrorCode.ENOENT), [])
            return
        changes = list(_translate(event))
        if changes:
            self._callback(None, changes)


def _translate(event: FileSystemEvent) -> Iterator[ChangeEvent]:
    src = os.fsdecode(event.src_path)
    if event.event_type == "created":
        yield ChangeEvent(src, WatchEventType.CREATE)
    elif event.event_type == "modified":
        # Directory mtime bumps duplicate the create/delete of their children.
        if not event.is_directory:
            yield ChangeEvent(src, WatchEventType.UPDATE)
    elif event.event_type == "deleted":
        yield ChangeEvent(src, WatchEventType.DELETE)
    elif event.event_type == "moved":
        yield ChangeEvent(src, WatchEventType.DELETE)
        yield ChangeEvent(os.fsdecode(event.dest_path), WatchEventType.CREATE)


class _ObserverSubscription:
    def __init__(self, observer: BaseObserver) -> None:
        self._observer = observer

    def unsubscribe(self) -> None:
        self._observer.stop()
        # A listener may unsubscribe from inside the observer's own thread.
        if threading.current_thread() is not self._observer:
            self._observer.join()


def watchdog_subscribe(root: str, callback: ChangeCallback) -> Subscription:
    observer = Observer()
    observer.schedule(_ChangeHandler(root, callback), root, recursive=True)
    observer.start()
    return _ObserverSubscription(observer)


__all__ = [
    "WatchMultiplexer",
    "WatchRegistration",
    "ChangeEvent",
    "ChangeCallback",
    "Subscription",
    "Subscriber",
    "compile_glob",
    "watchdog_subscribe",
    "GLOB_FLAGS",
]
