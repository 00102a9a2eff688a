"""Filesystem discovery of git working copies."""

import os
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from enum import Enum
from pathlib import Path

import logbook

from gitagrip.models.repository import Repository

from .event_bus import EventBus
from .events import Error, ReposDiscoveredBatch, ScanCompleted, ScanRequested, ScanStarted
from .utils import safe_handler

log = logbook.Logger(__name__)

MAX_DEPTH = 5
BATCH_SIZE = 100
BATCH_INTERVAL = 0.05

# Directories never worth descending into
PRUNED_DIRS = frozenset({
    "node_modules",
    ".npm",
    "vendor",
    ".cache",
    "dist",
    "build",
    "target",
    ".gradle",
    "__pycache__",
    ".pytest_cache",
    ".tox",
    "venv",
    ".venv",
    "env",
})


class ScanInProgress(Exception):
    """Raised when a scan is requested while another is running."""

    pass


class ScanState(Enum):
    """Lifecycle of the discovery engine."""

    IDLE = "idle"
    RUNNING = "running"
    CANCELLING = "cancelling"


def should_prune(name: str) -> bool:
    """Return True if a directory with this name must not be descended."""
    if name == ".git":
        return False
    return name in PRUNED_DIRS or name.startswith(".")


def find_repositories(
    root: Path,
    max_depth: int = MAX_DEPTH,
    cancelled: Callable[[], bool] | None = None,
    on_visit: Callable[[], None] | None = None,
) -> Iterator[Path]:
    """Yield every working copy beneath ``root``, depth first.

    A directory is a working copy when it has a ``.git`` child. Directories
    at most ``max_depth`` levels below ``root`` are examined; ``.git`` itself
    and pruned directories are never entered. Unreadable directories are
    logged and skipped.

    Args:
        root: Directory to walk.
        max_depth: Deepest directory level examined (root is level 0).
        cancelled: Checked before every directory visit; stops the walk.
        on_visit: Called after every directory has been read.
    """
    stack: list[tuple[Path, int]] = [(root, 0)]
    while stack:
        if cancelled is not None and cancelled():
            return
        directory, depth = stack.pop()

        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            log.warning("Cannot read {}: {}", directory, e)
            continue

        children: list[Path] = []
        for entry in entries:
            if entry.name == ".git":
                yield directory
                continue
            if depth >= max_depth:
                continue
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
            except OSError as e:
                log.warning("Cannot stat {}: {}", entry.path, e)
                continue
            if is_dir and not should_prune(entry.name):
                children.append(Path(entry.path))

        # Reversed so the stack pops children in name order
        stack.extend((child, depth + 1) for child in reversed(children))

        if on_visit is not None:
            on_visit()


class DiscoveryEngine:
    """Walks base directories on a background thread and batches results."""

    def __init__(
        self,
        bus: EventBus,
        roots: Sequence[Path | str] = (),
        max_depth: int = MAX_DEPTH,
        batch_size: int = BATCH_SIZE,
        batch_interval: float = BATCH_INTERVAL,
    ) -> None:
        self._bus = bus
        self._default_roots = tuple(str(root) for root in roots)
        self._max_depth = max_depth
        self._batch_size = batch_size
        self._batch_interval = batch_interval

        self._lock = threading.Lock()
        self._state = ScanState.IDLE
        self._thread: threading.Thread | None = None
        self._cancel = threading.Event()
        self._parent_cancel: threading.Event | None = None

        self._batch: list[Repository] = []
        self._last_flush = 0.0

        self._unsubscribe = bus.subscribe(ScanRequested, self._on_scan_requested)

    @property
    def state(self) -> ScanState:
        with self._lock:
            return self._state

    @property
    def is_scanning(self) -> bool:
        return self.state is not ScanState.IDLE

    def start_scan(
        self,
        roots: Sequence[Path | str] = (),
        cancel: threading.Event | None = None,
    ) -> None:
        """Start walking ``roots`` (the default roots when empty).

        Raises:
            ScanInProgress: if a scan is already running.
        """
        paths = tuple(str(root) for root in roots) or self._default_roots
        with self._lock:
            if self._state is not ScanState.IDLE:
                raise ScanInProgress("scan already in progress")
            self._state = ScanState.RUNNING
            self._cancel = threading.Event()
            self._parent_cancel = cancel
            self._thread = threading.Thread(
                target=self._run, args=(paths,), name="discovery", daemon=True
            )
            thread = self._thread
        thread.start()

    def stop_scan(self, timeout: float | None = None) -> None:
        """Cancel the running scan and wait for its thread to finish."""
        with self._lock:
            thread = self._thread
            if self._state is ScanState.RUNNING:
                self._state = ScanState.CANCELLING
            self._cancel.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for the current scan to finish. Returns False on timeout."""
        with self._lock:
            thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def close(self) -> None:
        self._unsubscribe()
        self.stop_scan()

    def _cancelled(self) -> bool:
        if self._cancel.is_set():
            return True
        return self._parent_cancel is not None and self._parent_cancel.is_set()

    def _run(self, roots: tuple[str, ...]) -> None:
        count = 0
        self._batch = []
        self._last_flush = time.monotonic()
        log.info("Scan started: {}", ", ".join(roots))
        self._bus.publish(ScanStarted(paths=roots))
        try:
            for root in roots:
                if self._cancelled():
                    break
                root_path = Path(root)
                if not root_path.is_dir():
                    log.error("Scan root is not a directory: {}", root)
                    self._bus.publish(Error(message=f"Failed to scan {root}: not a directory"))
                    continue
                for repo_path in find_repositories(
                    root_path, self._max_depth, self._cancelled, self._flush_if_due
                ):
                    self._batch.append(Repository.from_path(repo_path))
                    count += 1
                    if len(self._batch) >= self._batch_size:
                        self._flush()
                    else:
                        self._flush_if_due()
        except Exception as e:
            log.exception("Scan failed")
            self._bus.publish(Error(message=f"Scan failed: {e}", cause=e))
        finally:
            self._flush()
            log.info("Scan completed: {} repositories", count)
            self._bus.publish(ScanCompleted(count=count))
            with self._lock:
                self._state = ScanState.IDLE

    def _flush_if_due(self) -> None:
        if self._batch and time.monotonic() - self._last_flush >= self._batch_interval:
            self._flush()

    def _flush(self) -> None:
        self._last_flush = time.monotonic()
        if not self._batch:
            return
        batch, self._batch = tuple(self._batch), []
        log.debug("Discovered batch of {}", len(batch))
        self._bus.publish(ReposDiscoveredBatch(repos=batch))

    @safe_handler
    def _on_scan_requested(self, event: ScanRequested) -> None:
        try:
            self.start_scan(event.paths)
        except ScanInProgress:
            log.info("Ignoring scan request, scan already in progress")
            self._bus.publish(Error(message="Scan already in progress"))
