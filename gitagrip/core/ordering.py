"""Derivation of the ordered row list the dashboard renders.

Everything here is a pure function of its inputs so the coordinator can
call it while holding its own lock without touching other state.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from gitagrip.models.repository import HIDDEN_GROUP, Group, Repository, RepoStatus

STATUS_FILTER_PREFIX = "status:"

STATUS_TOKENS = (
    "dirty",
    "clean",
    "untracked",
    "ahead",
    "behind",
    "diverged",
    "stashed",
    "stash",
    "error",
)

_PRIMARY_BRANCHES = ("main", "master")


class SortMode(Enum):
    """Ordering applied to repositories inside a group."""

    NAME = "name"
    STATUS = "status"
    BRANCH = "branch"
    PATH = "path"

    @property
    def label(self) -> str:
        return self.value.capitalize()


SORT_MODES: tuple[SortMode, ...] = tuple(SortMode)


class RowKind(Enum):
    GROUP = "group"
    REPO = "repo"
    GAP = "gap"


@dataclass(frozen=True)
class Row:
    """One line of the dashboard."""

    kind: RowKind
    group: str = ""
    path: str = ""
    repo_count: int = 0
    expanded: bool = False

    @property
    def is_group(self) -> bool:
        return self.kind is RowKind.GROUP

    @property
    def is_repo(self) -> bool:
        return self.kind is RowKind.REPO

    @property
    def is_gap(self) -> bool:
        return self.kind is RowKind.GAP


def status_priority(status: RepoStatus) -> int:
    """Bucket used by status sort: higher needs attention sooner."""
    if status.error:
        return 4
    if status.is_dirty or status.has_untracked:
        return 3
    if status.ahead_count or status.behind_count:
        return 2
    return 1


def sort_key(repo: Repository, mode: SortMode) -> tuple:
    """Total ordering key: mode specific part, then name, then path."""
    name = repo.name.lower()
    if mode is SortMode.STATUS:
        return (-status_priority(repo.status), name, repo.path)
    if mode is SortMode.BRANCH:
        branch = repo.status.branch
        primary = 0 if branch in _PRIMARY_BRANCHES else 1
        return (primary, branch.lower(), name, repo.path)
    if mode is SortMode.PATH:
        return (repo.path, name)
    return (name, repo.path)


def sort_repos(repos: Iterable[Repository], mode: SortMode) -> list[Repository]:
    return sorted(repos, key=lambda repo: sort_key(repo, mode))


def ordered_group_names(names: Iterable[str], group_order: Sequence[str]) -> list[str]:
    """Groups in persisted order; unknown ones by name; hidden last."""
    known = set(names)
    ordered = [name for name in group_order if name in known and name != HIDDEN_GROUP]
    listed = set(ordered)
    ordered.extend(sorted(name for name in known if name not in listed and name != HIDDEN_GROUP))
    if HIDDEN_GROUP in known:
        ordered.append(HIDDEN_GROUP)
    return ordered


def matches_status_token(status: RepoStatus, token: str) -> bool:
    """Evaluate a ``status:<token>`` filter against one status."""
    if token == "dirty":
        return status.is_dirty
    if token == "clean":
        return status.is_clean
    if token == "untracked":
        return status.has_untracked
    if token == "ahead":
        return status.ahead_count > 0
    if token == "behind":
        return status.behind_count > 0
    if token == "diverged":
        return status.is_diverged
    if token in ("stashed", "stash"):
        return status.stash_count > 0
    if token == "error":
        return bool(status.error)
    # Anything else narrows by branch
    return token in status.branch.lower()


def matches_filter(repo: Repository, query: str, group: str = "") -> bool:
    """Apply the filter grammar to one repository."""
    query = query.strip().lower()
    if not query:
        return True
    if query.startswith(STATUS_FILTER_PREFIX):
        token = query[len(STATUS_FILTER_PREFIX):].strip()
        if not token:
            return True
        return matches_status_token(repo.status, token)
    return (
        query in repo.name.lower()
        or query in repo.path.lower()
        or query in repo.status.branch.lower()
        or (bool(group) and query in group.lower())
    )


def build_rows(
    repos: Mapping[str, Repository],
    groups: Mapping[str, Group],
    group_order: Sequence[str],
    expanded: Mapping[str, bool],
    sort_mode: SortMode,
    filter_query: str = "",
) -> list[Row]:
    """Flatten stores and view state into display rows.

    Layout: ``[header, repos*, gap]* ungrouped*``. Only known repositories
    are listed; headers stay even when the filter empties them.
    """
    rows: list[Row] = []
    grouped: set[str] = set()

    names = ordered_group_names(groups, group_order)
    for name in names:
        group = groups[name]
        members = [repos[path] for path in group.repos if path in repos]
        grouped.update(repo.path for repo in members)
        visible = [repo for repo in members if matches_filter(repo, filter_query, name)]
        is_expanded = expanded.get(name, default_expanded(name))

        rows.append(Row(RowKind.GROUP, group=name, repo_count=len(visible), expanded=is_expanded))
        if is_expanded:
            rows.extend(
                Row(RowKind.REPO, group=name, path=repo.path)
                for repo in sort_repos(visible, sort_mode)
            )
        if name != HIDDEN_GROUP:
            rows.append(Row(RowKind.GAP, group=name))

    ungrouped = [
        repo for path, repo in repos.items()
        if path not in grouped and matches_filter(repo, filter_query)
    ]
    if ungrouped and names and names[-1] == HIDDEN_GROUP:
        rows.append(Row(RowKind.GAP, group=HIDDEN_GROUP))
    rows.extend(Row(RowKind.REPO, path=repo.path) for repo in sort_repos(ungrouped, sort_mode))
    return rows


def default_expanded(name: str) -> bool:
    """Groups start expanded, except the hidden bucket."""
    return name != HIDDEN_GROUP


def row_matches(row: Row, repo: Repository | None, query: str) -> bool:
    """Search predicate for one row."""
    query = query.lower()
    if not query or row.is_gap:
        return False
    if row.is_group:
        return query in row.group.lower()
    if repo is None:
        return False
    return (
        query in repo.name.lower()
        or query in repo.path.lower()
        or query in repo.status.branch.lower()
    )


def search_rows(rows: Sequence[Row], repos: Mapping[str, Repository], query: str) -> list[int]:
    """Indices of rows matching a search query."""
    return [
        index for index, row in enumerate(rows)
        if row_matches(row, repos.get(row.path), query)
    ]


# Viewport


@dataclass(frozen=True)
class Window:
    """Rows visible for a given scroll offset."""

    start: int
    stop: int
    more_above: bool
    more_below: bool


def visible_window(offset: int, height: int, total: int) -> Window:
    """Compute the visible slice, reserving a line per "more" indicator."""
    if height <= 0 or total <= 0:
        return Window(0, 0, False, False)
    if total <= height:
        return Window(0, total, False, False)
    offset = max(0, min(offset, total - 1))
    more_above = offset > 0
    rows = height - (1 if more_above else 0)
    more_below = offset + rows < total
    if more_below:
        rows -= 1
    rows = max(rows, 1)
    return Window(offset, min(total, offset + rows), more_above, more_below)


def fit_viewport(cursor: int, offset: int, height: int, total: int) -> int:
    """Return a scroll offset that keeps ``cursor`` visible."""
    if height <= 0 or total <= height:
        return 0
    offset = max(0, min(offset, total - 1))
    # Indicators appear and vanish as the offset moves; settle in a few steps
    for _ in range(4):
        if cursor < offset:
            offset = cursor
        window = visible_window(offset, height, total)
        if cursor >= window.stop:
            offset += cursor - window.stop + 1
            continue
        break
    # Never leave blank lines below the last row
    max_offset = total - max(height - 1, 1)
    return max(0, min(offset, max_offset, cursor))


def next_selectable(rows: Sequence[Row], index: int, step: int) -> int:
    """Move from ``index`` by ``step`` rows, skipping gaps."""
    if not rows:
        return 0
    target = max(0, min(index + step, len(rows) - 1))
    direction = 1 if step >= 0 else -1
    probe = target
    while 0 <= probe < len(rows) and rows[probe].is_gap:
        probe += direction
    if 0 <= probe < len(rows):
        return probe
    # Ran off the end; search back the other way
    probe = target
    while 0 <= probe < len(rows) and rows[probe].is_gap:
        probe -= direction
    return probe if 0 <= probe < len(rows) else index
