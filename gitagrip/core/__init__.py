"""Core services for gitagrip."""

from .config_service import ConfigService
from .coordinator import Coordinator, InputMode, ViewSnapshot
from .discovery import DiscoveryEngine, ScanInProgress
from .event_bus import EventBus
from .git_service import GitError, GitRunner, GitService
from .stores import GroupError, GroupStore, RepositoryStore

__all__ = [
    "ConfigService",
    "Coordinator",
    "DiscoveryEngine",
    "EventBus",
    "GitError",
    "GitRunner",
    "GitService",
    "GroupError",
    "GroupStore",
    "InputMode",
    "RepositoryStore",
    "ScanInProgress",
    "ViewSnapshot",
]
