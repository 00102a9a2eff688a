"""Git worker pool for status probes, fetch and pull."""

import os
import subprocess
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path

import logbook

from gitagrip.models.repository import UNKNOWN_BRANCH, RepoStatus

from .event_bus import EventBus
from .events import (
    CommandExecuted,
    Error,
    FetchCompleted,
    FetchRequested,
    PullCompleted,
    PullRequested,
    RepoDiscovered,
    ReposDiscoveredBatch,
    ScanCompleted,
    ScanRequested,
    ScanStarted,
    StatusRefreshRequested,
    StatusUpdated,
)
from .utils import safe_handler

log = logbook.Logger(__name__)

DEFAULT_WORKERS = 5
STATUS_TIMEOUT = 30.0
NETWORK_TIMEOUT = 120.0

# How often a waiting subprocess checks for cancellation
_POLL_INTERVAL = 0.1

_MAX_ERROR_LENGTH = 200


class GitError(Exception):
    """Exception raised for Git operation errors."""

    pass


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one git subprocess."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.cancelled

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)

    @property
    def error_message(self) -> str:
        """Short human readable failure description."""
        if self.ok:
            return ""
        if self.cancelled:
            return "cancelled"
        if self.timed_out:
            return f"git {self.args[0]} timed out"
        text = self.stderr.strip() or self.stdout.strip() or f"exit status {self.returncode}"
        first_line = text.splitlines()[0]
        if len(first_line) > _MAX_ERROR_LENGTH:
            first_line = first_line[: _MAX_ERROR_LENGTH - 3] + "..."
        return first_line


class GitRunner:
    """Runs git subprocesses under a timeout with cooperative cancellation."""

    def __init__(self, git_command: str = "git") -> None:
        self.git_command = git_command
        self._env = os.environ.copy()
        # Never block on a credential prompt, never take the index lock
        self._env["GIT_TERMINAL_PROMPT"] = "0"
        self._env["GIT_OPTIONAL_LOCKS"] = "0"

    def run(
        self,
        args: Sequence[str],
        cwd: Path | str,
        timeout: float,
        cancelled: Callable[[], bool] | None = None,
    ) -> CommandResult:
        """Run ``git <args>`` in ``cwd``.

        The child is killed when ``timeout`` elapses or ``cancelled()``
        returns True; the result is then marked ``timed_out`` or
        ``cancelled``.

        Raises:
            GitError: if git cannot be started.
        """
        cmd = [self.git_command, *args]
        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                env=self._env,
            )
        except FileNotFoundError:
            if not Path(cwd).is_dir():
                raise GitError(f"Repository path does not exist: {cwd}")
            raise GitError("Git is not installed or not in PATH")
        except OSError as e:
            raise GitError(f"Failed to start git: {e}")

        deadline = start + timeout
        timed_out = was_cancelled = False
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                timed_out = True
                break
            if cancelled is not None and cancelled():
                was_cancelled = True
                break
            try:
                stdout, stderr = proc.communicate(timeout=min(remaining, _POLL_INTERVAL))
                break
            except subprocess.TimeoutExpired:
                continue

        if timed_out or was_cancelled:
            proc.kill()
            stdout, stderr = proc.communicate()
            log.warning(
                "git {} in {} {}", " ".join(args), cwd,
                "timed out" if timed_out else "cancelled",
            )

        return CommandResult(
            args=tuple(args),
            returncode=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration_ms=int((time.monotonic() - start) * 1000),
            timed_out=timed_out,
            cancelled=was_cancelled,
        )


def parse_porcelain(text: str) -> tuple[bool, bool]:
    """Parse ``git status --porcelain`` output into (is_dirty, has_untracked)."""
    is_dirty = has_untracked = False
    for line in text.splitlines():
        if len(line) < 2:
            continue
        x, y = line[0], line[1]
        if x == "?" or y == "?":
            has_untracked = True
        elif x not in " ?" or y not in " ?":
            is_dirty = True
    return is_dirty, has_untracked


def parse_ahead_behind(text: str) -> tuple[int, int]:
    """Parse ``rev-list --left-right --count @{u}...HEAD`` into (ahead, behind).

    Raises:
        GitError: if the output is not two integers.
    """
    parts = text.split()
    if len(parts) != 2:
        raise GitError(f"Unexpected rev-list output: {text.strip()!r}")
    try:
        behind, ahead = int(parts[0]), int(parts[1])
    except ValueError:
        raise GitError(f"Unexpected rev-list output: {text.strip()!r}")
    return ahead, behind


class GitService:
    """Bounded pool executing git operations and publishing their results.

    Every subprocess runs while holding one slot of a counting semaphore,
    so at most ``max_workers`` git processes are alive at once regardless
    of how many operations are queued.
    """

    def __init__(
        self,
        bus: EventBus,
        max_workers: int = DEFAULT_WORKERS,
        runner: GitRunner | None = None,
        status_timeout: float = STATUS_TIMEOUT,
        network_timeout: float = NETWORK_TIMEOUT,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._bus = bus
        self._runner = runner or GitRunner()
        self._status_timeout = status_timeout
        self._network_timeout = network_timeout
        self.max_workers = max_workers

        self._slots = threading.BoundedSemaphore(max_workers)
        # Extra threads park on the semaphore where cancellation reaches them
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers * 2, thread_name_prefix="git"
        )
        self._shutdown = threading.Event()

        self._known_lock = threading.Lock()
        self._known: set[str] = set()
        # Paths seen by an explicit rescan; None outside one
        self._rescan_pending = False
        self._scan_seen: set[str] | None = None

        self._unsubscribers = [
            bus.subscribe(event_type, self._on_scan_event)
            for event_type in (
                ScanRequested, ScanStarted, RepoDiscovered, ReposDiscoveredBatch, ScanCompleted,
            )
        ]
        self._unsubscribers += [
            bus.subscribe(StatusRefreshRequested, self._on_refresh_requested),
            bus.subscribe(FetchRequested, self._on_fetch_requested),
            bus.subscribe(PullRequested, self._on_pull_requested),
        ]

    # Known repositories

    def register(self, paths: Iterable[str]) -> list[str]:
        """Add repositories to the known set, returning the new ones."""
        added = []
        with self._known_lock:
            for path in paths:
                if path not in self._known:
                    self._known.add(path)
                    added.append(path)
        return added

    def unregister(self, paths: Iterable[str]) -> None:
        """Forget repositories so refreshes no longer probe them."""
        with self._known_lock:
            self._known.difference_update(paths)

    def known_paths(self) -> list[str]:
        with self._known_lock:
            return sorted(self._known)

    # Operations

    def refresh_repo(self, path: str, cancel: threading.Event | None = None) -> RepoStatus | None:
        """Probe one repository and publish StatusUpdated.

        Returns None if cancelled before the probe finished.
        """
        with self._slot(cancel) as acquired:
            if not acquired:
                return None
            status = self._probe(path, cancel)
        if status is None:
            return None

        self._bus.publish(StatusUpdated(path=path, status=status))
        if status.error:
            self._bus.publish(
                CommandExecuted(path=path, command="status", success=False, error=status.error)
            )
        return status

    def refresh_all(
        self, paths: Sequence[str] | None = None, cancel: threading.Event | None = None
    ) -> int:
        """Refresh ``paths`` (every known repository when None) in parallel.

        Returns once every refresh finished or ``cancel`` is set, with the
        number of refreshes that completed.
        """
        targets = list(paths) if paths else self.known_paths()
        futures: set[Future] = set()
        for path in targets:
            future = self._submit(self.refresh_repo, path, cancel)
            if future is not None:
                futures.add(future)

        completed = 0
        pending = futures
        while pending:
            if self._is_cancelled(cancel):
                for future in pending:
                    future.cancel()
                break
            done, pending = wait(pending, timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
            completed += sum(1 for f in done if not f.cancelled() and f.result() is not None)
        return completed

    def start_background_refresh(
        self, interval: float, cancel: threading.Event | None = None
    ) -> threading.Thread:
        """Refresh every known repository every ``interval`` seconds."""

        def loop() -> None:
            log.info("Background refresh every {}s", interval)
            while not self._sleep(interval, cancel):
                self.refresh_all(cancel=cancel)
            log.info("Background refresh stopped")

        thread = threading.Thread(target=loop, name="git-background-refresh", daemon=True)
        thread.start()
        return thread

    def fetch(self, path: str, cancel: threading.Event | None = None) -> bool:
        """Run ``git fetch --all --prune`` and re-probe on success."""
        return self._network_command(
            path, "fetch", ["fetch", "--all", "--prune"], FetchCompleted, cancel
        )

    def pull(self, path: str, cancel: threading.Event | None = None) -> bool:
        """Run ``git pull --rebase`` and re-probe on success."""
        return self._network_command(
            path, "pull", ["pull", "--rebase"], PullCompleted, cancel
        )

    def run_readonly(
        self,
        path: str,
        args: Sequence[str],
        ok_codes: tuple[int, ...] = (0,),
        cancel: threading.Event | None = None,
    ) -> CommandResult:
        """Run an inspection command (log, diff) under the pool semaphore.

        Exit codes listed in ``ok_codes`` count as success.
        """
        with self._slot(cancel) as acquired:
            if not acquired:
                return CommandResult(args=tuple(args), returncode=-1, cancelled=True)
            result = self._run(list(args), path, self._status_timeout, cancel)
        if result.returncode in ok_codes and not result.timed_out and not result.cancelled:
            return replace(result, returncode=0)
        return result

    def close(self, timeout: float | None = None) -> None:
        """Abort running work and stop the pool."""
        self._shutdown.set()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._executor.shutdown(wait=timeout is None or timeout > 0, cancel_futures=True)

    # Internals

    def _network_command(
        self,
        path: str,
        command: str,
        args: list[str],
        completed_type: type,
        cancel: threading.Event | None,
    ) -> bool:
        with self._slot(cancel) as acquired:
            if not acquired:
                return False
            result = self._run(args, path, self._network_timeout, cancel)
        if result.cancelled:
            log.debug("{} cancelled for {}", command, path)
            return False

        self._bus.publish(
            CommandExecuted(
                path=path,
                command=command,
                success=result.ok,
                output=result.output,
                error=result.error_message,
                duration_ms=result.duration_ms,
            )
        )
        self._bus.publish(completed_type(path=path, success=result.ok, error=result.error_message))

        if not result.ok:
            name = Path(path).name
            log.warning("{} failed for {}: {}", command, path, result.error_message)
            self._bus.publish(
                Error(message=f"{command.capitalize()} failed for {name}: {result.error_message}")
            )
            return False

        self.refresh_repo(path, cancel)
        return True

    def _probe(self, path: str, cancel: threading.Event | None) -> RepoStatus | None:
        """Collect the status of one repository. Returns None if cancelled."""
        timeout = self._status_timeout

        head = self._run(["symbolic-ref", "--short", "-q", "HEAD"], path, timeout, cancel)
        if head.cancelled:
            return None
        detached = False
        if head.ok:
            branch = head.stdout.strip()
        elif head.returncode == 1 and not head.timed_out:
            detached = True
            sha = self._run(["rev-parse", "--short", "HEAD"], path, timeout, cancel)
            if sha.cancelled:
                return None
            branch = f"detached@{sha.stdout.strip()}" if sha.ok else "detached"
        else:
            return RepoStatus(
                branch=UNKNOWN_BRANCH,
                error=f"Failed to get branch: {head.error_message}",
            )

        porcelain = self._run(["status", "--porcelain"], path, timeout, cancel)
        if porcelain.cancelled:
            return None
        if not porcelain.ok:
            return RepoStatus(branch=branch, error=f"Failed to get status: {porcelain.error_message}")
        is_dirty, has_untracked = parse_porcelain(porcelain.stdout)

        ahead = behind = 0
        error = ""
        if not detached:
            upstream = self._run(
                ["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}"],
                path, timeout, cancel,
            )
            if upstream.cancelled:
                return None
            if upstream.ok:
                counts = self._run(
                    ["rev-list", "--left-right", "--count", "@{u}...HEAD"],
                    path, timeout, cancel,
                )
                if counts.cancelled:
                    return None
                try:
                    if not counts.ok:
                        raise GitError(counts.error_message)
                    ahead, behind = parse_ahead_behind(counts.stdout)
                except GitError as e:
                    error = f"Failed to count commits: {e}"

        stash_count = 0
        stashes = self._run(["stash", "list"], path, timeout, cancel)
        if stashes.cancelled:
            return None
        if stashes.ok:
            stash_count = len(stashes.stdout.splitlines())
        else:
            log.debug("stash list failed for {}: {}", path, stashes.error_message)

        return RepoStatus(
            branch=branch,
            is_dirty=is_dirty,
            has_untracked=has_untracked,
            ahead_count=ahead,
            behind_count=behind,
            stash_count=stash_count,
            error=error,
        )

    def _run(
        self, args: list[str], path: str, timeout: float, cancel: threading.Event | None
    ) -> CommandResult:
        """Run git, turning start-up failures into a failed result."""
        if self._is_cancelled(cancel):
            return CommandResult(args=tuple(args), returncode=-1, cancelled=True)
        try:
            return self._runner.run(args, path, timeout, lambda: self._is_cancelled(cancel))
        except GitError as e:
            return CommandResult(args=tuple(args), returncode=-1, stderr=str(e))

    @contextmanager
    def _slot(self, cancel: threading.Event | None):
        """Hold one semaphore slot, giving up if cancelled while waiting."""
        acquired = False
        while not self._is_cancelled(cancel):
            if self._slots.acquire(timeout=_POLL_INTERVAL):
                acquired = True
                break
        try:
            yield acquired
        finally:
            if acquired:
                self._slots.release()

    def _is_cancelled(self, cancel: threading.Event | None) -> bool:
        return self._shutdown.is_set() or (cancel is not None and cancel.is_set())

    def _sleep(self, seconds: float, cancel: threading.Event | None) -> bool:
        """Sleep up to ``seconds``. Returns True if cancelled meanwhile."""
        deadline = time.monotonic() + seconds
        while not self._is_cancelled(cancel):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self._shutdown.wait(min(remaining, 0.5))
        return True

    def _submit(self, fn, *args) -> Future | None:
        try:
            return self._executor.submit(safe_handler(fn), *args)
        except RuntimeError:
            log.debug("Git pool closed, dropping {}", fn.__name__)
            return None

    def _submit_each(self, fn, paths: Sequence[str]) -> None:
        for path in paths:
            self._submit(fn, path)

    def _targets(self, paths: Sequence[str]) -> list[str]:
        return list(paths) if paths else self.known_paths()

    # Bus handlers

    @safe_handler
    def _on_scan_event(self, event: object) -> None:
        if isinstance(event, ScanRequested):
            # Only a full rescan can tell that a repository is gone
            self._rescan_pending = not event.paths
        elif isinstance(event, ScanStarted):
            self._scan_seen = set() if self._rescan_pending else None
            self._rescan_pending = False
        elif isinstance(event, (RepoDiscovered, ReposDiscoveredBatch)):
            repos = [event.repo] if isinstance(event, RepoDiscovered) else event.repos
            paths = [repo.path for repo in repos]
            if self._scan_seen is not None:
                self._scan_seen.update(paths)
            self._submit_each(self.refresh_repo, self.register(paths))
        elif isinstance(event, ScanCompleted):
            seen, self._scan_seen = self._scan_seen, None
            if seen is not None:
                gone = [path for path in self.known_paths() if path not in seen]
                if gone:
                    log.info("Forgetting {} repositories missing after rescan", len(gone))
                    self.unregister(gone)

    @safe_handler
    def _on_refresh_requested(self, event: StatusRefreshRequested) -> None:
        self._submit_each(self.refresh_repo, self._targets(event.paths))

    @safe_handler
    def _on_fetch_requested(self, event: FetchRequested) -> None:
        self._submit_each(self.fetch, self._targets(event.paths))

    @safe_handler
    def _on_pull_requested(self, event: PullRequested) -> None:
        self._submit_each(self.pull, self._targets(event.paths))

