"""Pytest configuration and fixtures."""

import os
import subprocess
import tempfile
import threading
import time
from collections.abc import Callable, Generator
from pathlib import Path

import pytest

from gitagrip.core.event_bus import EventBus

GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test User",
    "GIT_AUTHOR_EMAIL": "test@test.com",
    "GIT_COMMITTER_NAME": "Test User",
    "GIT_COMMITTER_EMAIL": "test@test.com",
}


def git(cwd: Path, *args: str) -> str:
    """Run git in ``cwd`` for test setup, returning stdout."""
    # Preserve PATH so git can be found
    env = os.environ.copy()
    env.update(GIT_ENV)
    completed = subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True, env=env
    )
    return completed.stdout


def init_repo(path: Path, commit: bool = True) -> Path:
    """Create a git repository at ``path`` with an optional first commit."""
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-b", "main")
    git(path, "config", "user.email", "test@test.com")
    git(path, "config", "user.name", "Test User")
    # Disable GPG signing for test commits
    git(path, "config", "commit.gpgsign", "false")
    if commit:
        (path / "README.md").write_text(f"# {path.name}\n")
        git(path, "add", ".")
        git(path, "commit", "-m", "Initial commit")
    return path


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class Recorder:
    """Collects events of the subscribed types, in delivery order."""

    def __init__(self, bus: EventBus, *event_types: type) -> None:
        self.events: list[object] = []
        self._lock = threading.Lock()
        for event_type in event_types:
            bus.subscribe(event_type, self._record)

    def _record(self, event: object) -> None:
        with self._lock:
            self.events.append(event)

    def of(self, event_type: type) -> list:
        with self._lock:
            return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def temp_dir() -> Generator[Path]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def git_repo(temp_dir: Path) -> Generator[Path]:
    """Create a temporary git repository for testing."""
    yield init_repo(temp_dir / "test-repo")


@pytest.fixture
def bus() -> Generator[EventBus]:
    """A running event bus, closed after the test."""
    event_bus = EventBus()
    event_bus.start()
    yield event_bus
    event_bus.close()
