"""Thread-safe in-memory stores for repositories and groups.

Both stores guard their maps with a lock and hand out copies, so callers
on any thread can read without holding a reference into shared state.
"""

import threading
from collections import defaultdict

import logbook

from gitagrip.models.repository import CommandLog, Group, Repository, RepoStatus

log = logbook.Logger(__name__)


class GroupError(Exception):
    """Exception raised for invalid group operations."""

    pass


class RepositoryStore:
    """Authoritative mapping of repository path to Repository."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._repos: dict[str, Repository] = {}
        self._by_name: dict[str, set[str]] = defaultdict(set)

    def __len__(self) -> int:
        with self._lock:
            return len(self._repos)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._repos

    def add(self, repo: Repository) -> bool:
        """Insert a repository. Returns False if the path was already known.

        A known path keeps its entry, so status and command history survive
        rediscovery.
        """
        with self._lock:
            if repo.path in self._repos:
                return False
            stored = repo.copy()
            self._repos[stored.path] = stored
            self._by_name[stored.name].add(stored.path)
            self._refresh_display_names(stored.name)
            return True

    def add_many(self, repos: list[Repository]) -> list[str]:
        """Insert several repositories, returning the newly added paths."""
        with self._lock:
            return [repo.path for repo in repos if self.add(repo)]

    def get(self, path: str) -> Repository | None:
        with self._lock:
            repo = self._repos.get(path)
            return repo.copy() if repo is not None else None

    def get_all(self) -> list[Repository]:
        """Return copies of every repository."""
        with self._lock:
            return [repo.copy() for repo in self._repos.values()]

    def paths(self) -> list[str]:
        with self._lock:
            return list(self._repos)

    def remove(self, path: str) -> bool:
        with self._lock:
            repo = self._repos.pop(path, None)
            if repo is None:
                return False
            self._by_name[repo.name].discard(path)
            if not self._by_name[repo.name]:
                del self._by_name[repo.name]
            else:
                self._refresh_display_names(repo.name)
            return True

    def update_status(self, path: str, status: RepoStatus) -> bool:
        """Replace the status of a known repository."""
        with self._lock:
            repo = self._repos.get(path)
            if repo is None:
                log.debug("Status for unknown repository {}", path)
                return False
            repo.status = status
            return True

    def record_command(self, path: str, entry: CommandLog) -> bool:
        """Append to a repository's command log."""
        with self._lock:
            repo = self._repos.get(path)
            if repo is None:
                return False
            repo.record(entry)
            return True

    def _refresh_display_names(self, name: str) -> None:
        paths = self._by_name.get(name, set())
        duplicated = len(paths) > 1
        for path in paths:
            repo = self._repos[path]
            repo.display_name = f"{name} ({repo.parent_name})" if duplicated else name


class GroupStore:
    """Authoritative mapping of group name to ordered repository paths."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._groups: dict[str, Group] = {}
        self._repo_to_group: dict[str, str] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._groups)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._groups

    def add_group(self, name: str) -> Group:
        """Create an empty group. Raises GroupError on duplicates."""
        name = name.strip()
        if not name:
            raise GroupError("Group name cannot be empty")
        with self._lock:
            if name in self._groups:
                raise GroupError(f"Group '{name}' already exists")
            group = Group(name=name)
            self._groups[name] = group
            return group.copy()

    def remove_group(self, name: str) -> list[str]:
        """Delete a group, returning the paths that became ungrouped."""
        with self._lock:
            group = self._groups.pop(name, None)
            if group is None:
                raise GroupError(f"Group '{name}' does not exist")
            for path in group.repos:
                self._repo_to_group.pop(path, None)
            return list(group.repos)

    def move(self, path: str, to_group: str) -> list[str]:
        """Place ``path`` in ``to_group`` ("" ungroups it).

        The target group is created if needed. A source group left empty by
        the move is deleted; the deleted names are returned.
        """
        removed: list[str] = []
        with self._lock:
            current = self._repo_to_group.get(path, "")
            if current == to_group and (not to_group or to_group in self._groups):
                return removed

            if current:
                group = self._groups.get(current)
                if group is not None and path in group.repos:
                    group.repos.remove(path)
                    if not group.repos:
                        del self._groups[current]
                        removed.append(current)
                self._repo_to_group.pop(path, None)

            if to_group:
                group = self._groups.get(to_group)
                if group is None:
                    group = Group(name=to_group)
                    self._groups[to_group] = group
                group.repos.append(path)
                self._repo_to_group[path] = to_group
        return removed

    def group_of(self, path: str) -> str:
        """Name of the group holding ``path``, or "" if ungrouped."""
        with self._lock:
            return self._repo_to_group.get(path, "")

    def get(self, name: str) -> Group | None:
        with self._lock:
            group = self._groups.get(name)
            return group.copy() if group is not None else None

    def get_all(self) -> dict[str, Group]:
        """Return copies of every group keyed by name."""
        with self._lock:
            return {name: group.copy() for name, group in self._groups.items()}

    def names(self) -> list[str]:
        with self._lock:
            return list(self._groups)

    def as_mapping(self) -> dict[str, list[str]]:
        """Plain name -> paths mapping, as persisted in the config."""
        with self._lock:
            return {name: list(group.repos) for name, group in self._groups.items()}
