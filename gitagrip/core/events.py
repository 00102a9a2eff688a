"""Event types carried by the event bus.

Every event is a frozen dataclass. The set is closed: ``EVENT_TYPES`` lists
every variant and the bus refuses subscriptions to anything else.
"""

from dataclasses import dataclass, field
from typing import Union

from gitagrip.models.repository import Repository, RepoStatus


# Discovery


@dataclass(frozen=True)
class ScanRequested:
    paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class ScanStarted:
    paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class RepoDiscovered:
    repo: Repository


@dataclass(frozen=True)
class ReposDiscoveredBatch:
    repos: tuple[Repository, ...]


@dataclass(frozen=True)
class ScanCompleted:
    count: int


# Git


@dataclass(frozen=True)
class StatusRefreshRequested:
    """Empty ``paths`` means every known repository."""

    paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class FetchRequested:
    paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class PullRequested:
    paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class StatusUpdated:
    path: str
    status: RepoStatus


@dataclass(frozen=True)
class FetchCompleted:
    path: str
    success: bool
    error: str = ""


@dataclass(frozen=True)
class PullCompleted:
    path: str
    success: bool
    error: str = ""


@dataclass(frozen=True)
class CommandExecuted:
    path: str
    command: str
    success: bool
    output: str = ""
    error: str = ""
    duration_ms: int = 0


# Grouping


@dataclass(frozen=True)
class GroupAdded:
    name: str


@dataclass(frozen=True)
class GroupRemoved:
    name: str


@dataclass(frozen=True)
class RepoMoved:
    path: str
    from_group: str
    to_group: str


# Config


@dataclass(frozen=True, eq=False)
class ConfigLoaded:
    base_dir: str
    groups: dict[str, list[str]] = field(default_factory=dict)


@dataclass(frozen=True, eq=False)
class ConfigChanged:
    groups: dict[str, list[str]] = field(default_factory=dict)
    group_order: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConfigSaved:
    pass


# Errors


@dataclass(frozen=True)
class Error:
    message: str
    cause: BaseException | None = None


# View


@dataclass(frozen=True)
class ViewReady:
    """Published by the coordinator when a new snapshot is ready to draw."""

    revision: int


Event = Union[
    ScanRequested,
    ScanStarted,
    RepoDiscovered,
    ReposDiscoveredBatch,
    ScanCompleted,
    StatusRefreshRequested,
    FetchRequested,
    PullRequested,
    StatusUpdated,
    FetchCompleted,
    PullCompleted,
    CommandExecuted,
    GroupAdded,
    GroupRemoved,
    RepoMoved,
    ConfigLoaded,
    ConfigChanged,
    ConfigSaved,
    Error,
    ViewReady,
]

EVENT_TYPES: tuple[type, ...] = Event.__args__  # type: ignore[attr-defined]
