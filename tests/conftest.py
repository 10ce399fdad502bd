import logging
import pathlib
import shutil
import sys
from collections.abc import Sequence
from pathlib import Path

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"

# Ensure src/ is importable when running tests without installing the package.
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from jailfs.backend import LocalVFS  # noqa: E402
from jailfs.resolver import JailResolver  # noqa: E402
from jailfs.watch import ChangeCallback, ChangeEvent  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_jailfs_home(monkeypatch: pytest.MonkeyPatch):
    """Point JAILFS_HOME at a repo-local sandbox so we never touch the real home."""

    home = PROJECT_ROOT / ".work"
    if home.exists():
        shutil.rmtree(home, ignore_errors=True)
    home.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("JAILFS_HOME", str(home))
    monkeypatch.delenv("JAILFS_BASE_DIR", raising=False)
    monkeypatch.delenv("JAILFS_LOG_LEVEL", raising=False)
    yield


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """Undo handlers installed by configure_logger so caplog keeps working."""

    yield
    logger = logging.getLogger("jailfs")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def base(tmp_path: Path) -> Path:
    """Jail root inside a temporary directory, with room for an outside sibling."""

    root = tmp_path / "base"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def outside(tmp_path: Path) -> Path:
    path = tmp_path / "outside"
    path.mkdir()
    (path / "secret.txt").write_text("top secret")
    return path.resolve()


@pytest.fixture
def resolver(base: Path) -> JailResolver:
    return JailResolver(base)


class FakeSubscription:
    def __init__(self, root: str, callback: ChangeCallback) -> None:
        self.root = root
        self.callback = callback
        self.unsubscribed = False

    def unsubscribe(self) -> None:
        self.unsubscribed = True

    def emit(self, *events: ChangeEvent) -> None:
        self.callback(None, list(events))

    def fail(self, error: BaseException) -> None:
        self.callback(error, [])


class FakeSubscriber:
    """Stand-in for the native change notifier that records subscriptions."""

    def __init__(self) -> None:
        self.subscriptions: list[FakeSubscription] = []

    def __call__(self, root: str, callback: ChangeCallback) -> FakeSubscription:
        subscription = FakeSubscription(root, callback)
        self.subscriptions.append(subscription)
        return subscription

    @property
    def current(self) -> FakeSubscription:
        return self.subscriptions[-1]

    def live(self) -> Sequence[FakeSubscription]:
        return [s for s in self.subscriptions if not s.unsubscribed]


@pytest.fixture
def fake_subscriber() -> FakeSubscriber:
    return FakeSubscriber()


@pytest.fixture
def vfs(base: Path, fake_subscriber: FakeSubscriber) -> LocalVFS:
    return LocalVFS(base, subscribe=fake_subscriber)
