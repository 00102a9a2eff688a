"""Data models for gitagrip."""

from .repository import (
    HIDDEN_GROUP,
    PENDING_BRANCH,
    CommandLog,
    Group,
    Repository,
    RepoStatus,
)
from .config import AppConfig, ConfigError

__all__ = [
    "HIDDEN_GROUP",
    "PENDING_BRANCH",
    "CommandLog",
    "Group",
    "Repository",
    "RepoStatus",
    "AppConfig",
    "ConfigError",
]
