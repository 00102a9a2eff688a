"""Repository, status and group data models."""

from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path

PENDING_BRANCH = "⋯"
UNKNOWN_BRANCH = "?"
HIDDEN_GROUP = "_Hidden"

# Per-repository command history length
COMMAND_LOG_LIMIT = 20


def is_hidden_group(name: str) -> bool:
    """Return True for the reserved hidden bucket."""
    return name == HIDDEN_GROUP


@dataclass(frozen=True)
class RepoStatus:
    """Read-only git status of a working copy."""

    branch: str = PENDING_BRANCH
    is_dirty: bool = False
    has_untracked: bool = False
    ahead_count: int = 0
    behind_count: int = 0
    stash_count: int = 0
    error: str = ""

    @property
    def is_pending(self) -> bool:
        """True until the first probe completes."""
        return self.branch == PENDING_BRANCH

    @property
    def is_clean(self) -> bool:
        return not self.is_dirty and not self.has_untracked

    @property
    def is_diverged(self) -> bool:
        return self.ahead_count > 0 and self.behind_count > 0

    @property
    def is_detached(self) -> bool:
        return self.branch.startswith("detached")


@dataclass(frozen=True)
class CommandLog:
    """Outcome of a single git command run against a repository."""

    command: str  # status, fetch, pull
    success: bool
    output: str = ""
    error: str = ""
    duration_ms: int = 0
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class Repository:
    """A git working copy found beneath the base directory."""

    path: str
    name: str = ""
    display_name: str = ""
    group: str = ""
    status: RepoStatus = field(default_factory=RepoStatus)
    last_error: str = ""
    has_error: bool = False
    command_logs: deque[CommandLog] = field(
        default_factory=lambda: deque(maxlen=COMMAND_LOG_LIMIT)
    )

    def __post_init__(self) -> None:
        if not self.name:
            self.name = Path(self.path).name
        if not self.display_name:
            self.display_name = self.name

    @classmethod
    def from_path(cls, path: Path | str) -> "Repository":
        """Create a pending repository for a discovered working copy."""
        return cls(path=str(path))

    @property
    def parent_name(self) -> str:
        """Name of the directory that contains the working copy."""
        return Path(self.path).parent.name

    def record(self, entry: CommandLog) -> None:
        """Append a command outcome, evicting the oldest when full."""
        self.command_logs.append(entry)
        if entry.success:
            self.has_error = False
            self.last_error = ""
        else:
            self.has_error = True
            self.last_error = entry.error

    def copy(self) -> "Repository":
        """Return a copy that shares no mutable state with this one."""
        return replace(
            self,
            command_logs=deque(self.command_logs, maxlen=COMMAND_LOG_LIMIT),
        )

    def __hash__(self) -> int:
        return hash(self.path)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Repository):
            return False
        return self.path == other.path


@dataclass
class Group:
    """A named, ordered collection of repository paths."""

    name: str
    repos: list[str] = field(default_factory=list)

    def copy(self) -> "Group":
        return Group(name=self.name, repos=list(self.repos))

    def __contains__(self, path: object) -> bool:
        return path in self.repos
