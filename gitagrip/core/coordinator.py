"""Coordinator: the single source of truth the dashboard renders.

The coordinator applies bus events to the repository and group stores,
derives the ordered row list, and owns all view state (cursor, viewport,
selection, search, filter, sort and input mode). User intents arrive as
method calls from the UI thread and mutate that state synchronously; any
external effect is published on the bus.

Store reads and writes happen outside the coordinator lock so no code path
ever holds two of the component locks at once.
"""

import threading
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType

import logbook

from gitagrip.models.repository import (
    HIDDEN_GROUP,
    CommandLog,
    Repository,
    RepoStatus,
    is_hidden_group,
)

from .event_bus import EventBus
from .events import (
    CommandExecuted,
    ConfigChanged,
    ConfigLoaded,
    Error,
    FetchCompleted,
    FetchRequested,
    GroupAdded,
    GroupRemoved,
    PullCompleted,
    PullRequested,
    RepoDiscovered,
    RepoMoved,
    ReposDiscoveredBatch,
    ScanCompleted,
    ScanRequested,
    ScanStarted,
    StatusRefreshRequested,
    StatusUpdated,
    ViewReady,
)
from .ordering import (
    SORT_MODES,
    Row,
    RowKind,
    SortMode,
    Window,
    build_rows,
    default_expanded,
    fit_viewport,
    matches_filter,
    next_selectable,
    ordered_group_names,
    search_rows,
    visible_window,
)
from .stores import GroupError, GroupStore, RepositoryStore
from .utils import Debouncer, safe_handler

log = logbook.Logger(__name__)

DEBOUNCE_DELAY = 0.1
STATUS_MESSAGE_TTL = 5.0


class InputMode(Enum):
    """Exclusive keyboard mode of the dashboard."""

    NORMAL = "normal"
    NEW_GROUP = "new_group"
    MOVE_TO_GROUP = "move_to_group"
    DELETE_CONFIRM = "delete_confirm"
    SEARCH = "search"
    FILTER = "filter"
    SORT = "sort"
    RENAME_GROUP = "rename_group"

    @property
    def takes_text(self) -> bool:
        return self in TEXT_MODES


TEXT_MODES = frozenset({
    InputMode.NEW_GROUP,
    InputMode.MOVE_TO_GROUP,
    InputMode.SEARCH,
    InputMode.FILTER,
    InputMode.RENAME_GROUP,
})


@dataclass(frozen=True)
class ViewSnapshot:
    """Immutable picture of everything the UI draws."""

    revision: int
    rows: tuple[Row, ...]
    repos: Mapping[str, Repository]
    cursor: int
    window: Window
    selection: frozenset[str]
    sort_mode: SortMode
    filter_query: str = ""
    search_query: str = ""
    search_matches: tuple[int, ...] = ()
    search_index: int = 0
    mode: InputMode = InputMode.NORMAL
    input_buffer: str = ""
    sort_index: int = 0
    target_group: str = ""
    status_message: str = ""
    status_is_error: bool = False
    scanning: bool = False
    busy: Mapping[str, str] = field(default_factory=dict)
    show_ahead_behind: bool = True

    @property
    def current_row(self) -> Row | None:
        if 0 <= self.cursor < len(self.rows):
            return self.rows[self.cursor]
        return None

    @property
    def visible_rows(self) -> tuple[Row, ...]:
        return self.rows[self.window.start:self.window.stop]

    @property
    def repo_count(self) -> int:
        return len(self.repos)

    def repo_for(self, row: Row) -> Repository | None:
        return self.repos.get(row.path) if row.is_repo else None


def _row_key(row: Row | None) -> tuple | None:
    if row is None:
        return None
    return (row.kind, row.group, row.path)


class Coordinator:
    """Converges asynchronous events into a stable view and handles intents."""

    def __init__(
        self,
        bus: EventBus,
        repo_store: RepositoryStore,
        group_store: GroupStore,
        group_order: Sequence[str] = (),
        show_ahead_behind: bool = True,
        debounce_delay: float = DEBOUNCE_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._bus = bus
        self._repos = repo_store
        self._groups = group_store
        self._clock = clock
        self.show_ahead_behind = show_ahead_behind

        self._lock = threading.RLock()
        self._revision = 0
        self._rows: list[Row] = []
        self._repo_view: Mapping[str, Repository] = MappingProxyType({})
        self._group_order: list[str] = list(group_order)
        self._expanded: dict[str, bool] = {}
        self._sort_mode = SortMode.NAME

        self._cursor = 0
        self._offset = 0
        self._height = 20
        self._selection: set[str] = set()

        self._search_query = ""
        self._search_matches: list[int] = []
        self._search_index = 0
        self._filter_query = ""

        self._mode = InputMode.NORMAL
        self._buffer = ""
        self._sort_index = 0
        self._sort_before = SortMode.NAME
        self._target_group = ""

        self._message = ""
        self._message_is_error = False
        self._message_expires = 0.0

        self._scanning = False
        self._rescan_pending = False
        self._scan_seen: set[str] | None = None
        self._busy: dict[str, str] = {}
        self._groups_dirty = False
        self._pending_key: tuple | None = None

        self._debouncer = Debouncer(debounce_delay, self.recompute)
        self._unsubscribers = [
            bus.subscribe(event_type, handler)
            for handler, event_types in (
                (self._on_scan_event, (ScanStarted, RepoDiscovered, ReposDiscoveredBatch, ScanCompleted)),
                (self._on_git_event, (StatusUpdated, CommandExecuted, FetchCompleted, PullCompleted)),
                (self._on_group_event, (ConfigLoaded, GroupAdded, GroupRemoved, RepoMoved)),
                (self._on_error, (Error,)),
            )
            for event_type in event_types
        ]

    # Snapshot and recomputation

    def snapshot(self) -> ViewSnapshot:
        """Return an immutable copy of the current view state."""
        with self._lock:
            message = self._message if self._clock() < self._message_expires else ""
            return ViewSnapshot(
                revision=self._revision,
                rows=tuple(self._rows),
                repos=self._repo_view,
                cursor=self._cursor,
                window=visible_window(self._offset, self._height, len(self._rows)),
                selection=frozenset(self._selection),
                sort_mode=self._sort_mode,
                filter_query=self._filter_query,
                search_query=self._search_query,
                search_matches=tuple(self._search_matches),
                search_index=self._search_index,
                mode=self._mode,
                input_buffer=self._buffer,
                sort_index=self._sort_index,
                target_group=self._target_group,
                status_message=message,
                status_is_error=self._message_is_error and bool(message),
                scanning=self._scanning,
                busy=MappingProxyType(dict(self._busy)),
                show_ahead_behind=self.show_ahead_behind,
            )

    def invalidate(self) -> None:
        """Schedule a debounced recomputation."""
        self._debouncer.trigger()

    def recompute(self) -> None:
        """Rebuild the ordered rows now and publish ViewReady."""
        repos = {repo.path: repo for repo in self._repos.get_all()}
        groups = self._groups.get_all()
        for group in groups.values():
            for path in group.repos:
                if path in repos:
                    repos[path].group = group.name

        with self._lock:
            previous_key = _row_key(self._current_row())
            rows = build_rows(
                repos, groups, self._group_order, self._expanded,
                self._sort_mode, self._filter_query,
            )
            changed = rows != self._rows
            self._rows = rows
            self._repo_view = MappingProxyType(repos)
            self._selection &= repos.keys()
            for path in [p for p in self._busy if p not in repos]:
                del self._busy[path]

            if changed:
                self._restore_cursor(previous_key)
                self._search_matches = (
                    search_rows(rows, repos, self._search_query) if self._search_query else []
                )
                self._search_index = 0
            self._offset = fit_viewport(self._cursor, self._offset, self._height, len(rows))

            self._revision += 1
            revision = self._revision
            config_changed = None
            if self._groups_dirty:
                self._groups_dirty = False
                config_changed = ConfigChanged(
                    groups={name: list(group.repos) for name, group in groups.items()},
                    group_order=tuple(ordered_group_names(groups, self._group_order)),
                )

        self._bus.publish(ViewReady(revision=revision))
        if config_changed is not None:
            self._bus.publish(config_changed)

    def flush(self) -> bool:
        """Run a pending recomputation immediately, if there is one."""
        return self._debouncer.flush()

    def close(self) -> None:
        self._debouncer.cancel()
        for unsubscribe in self._unsubscribers:
            unsubscribe()

    def config_snapshot(self) -> tuple[dict[str, list[str]], list[str]]:
        """Current groups and group order, as persisted."""
        groups = self._groups.as_mapping()
        with self._lock:
            return groups, ordered_group_names(groups, self._group_order)

    def request_save(self) -> None:
        """Publish the current grouping for persistence."""
        groups, order = self.config_snapshot()
        self._bus.publish(ConfigChanged(groups=groups, group_order=tuple(order)))

    # Cursor and viewport

    def current_repo(self) -> Repository | None:
        with self._lock:
            row = self._current_row()
            if row is None or not row.is_repo:
                return None
            return self._repo_view.get(row.path)

    def current_group(self) -> str:
        """Group under the cursor: the header itself or the repo's group."""
        with self._lock:
            row = self._current_row()
            if row is None or row.is_gap:
                return ""
            return row.group

    def set_viewport_height(self, height: int) -> None:
        with self._lock:
            self._height = max(1, height)
            self._fit()

    def set_cursor(self, index: int) -> None:
        with self._lock:
            if not self._rows:
                return
            index = max(0, min(index, len(self._rows) - 1))
            self._cursor = next_selectable(self._rows, index, 0)
            self._fit()

    def move_cursor(self, step: int) -> None:
        with self._lock:
            self._cursor = next_selectable(self._rows, self._cursor, step)
            self._fit()

    def cursor_to_top(self) -> None:
        self.set_cursor(0)

    def cursor_to_bottom(self) -> None:
        with self._lock:
            if self._rows:
                self._cursor = next_selectable(self._rows, len(self._rows) - 1, -1)
                self._fit()

    def page(self, pages: int) -> None:
        """Move the cursor by whole screens."""
        with self._lock:
            window = visible_window(self._offset, self._height, len(self._rows))
            size = max(1, window.stop - window.start)
            self._cursor = next_selectable(self._rows, self._cursor, size * pages)
            self._fit()

    def jump_group(self, direction: int) -> None:
        """Move to the next (1) or previous (-1) group header."""
        with self._lock:
            index = self._cursor + direction
            while 0 <= index < len(self._rows):
                if self._rows[index].is_group:
                    self._cursor = index
                    self._fit()
                    return
                index += direction

    # Expansion

    def toggle_group(self, name: str | None = None) -> None:
        """Collapse or expand a group, the current one by default."""
        with self._lock:
            name = name if name is not None else self._current_group_locked()
            if not name:
                return
            expanded = not self._expanded.get(name, default_expanded(name))
            self._expanded[name] = expanded
            self._park_on_header(name, expanded)
        self.invalidate()

    def set_group_expanded(self, expanded: bool) -> None:
        with self._lock:
            name = self._current_group_locked()
            if not name or self._expanded.get(name, default_expanded(name)) == expanded:
                return
            self._expanded[name] = expanded
            self._park_on_header(name, expanded)
        self.invalidate()

    def is_expanded(self, name: str) -> bool:
        with self._lock:
            return self._expanded.get(name, default_expanded(name))

    # Selection

    def toggle_select(self) -> None:
        """Toggle the repo under the cursor; on a header, its whole group."""
        with self._lock:
            row = self._current_row()
            if row is None or row.is_gap:
                return
            if row.is_repo:
                self._selection ^= {row.path}
                return
            members = self._group_members_locked(row.group)
            if not members:
                return
            if members <= self._selection:
                self._selection -= members
            else:
                self._selection |= members

    def select_all(self) -> None:
        """Select every repository passing the filter, or clear if all are."""
        with self._lock:
            visible = {
                path for path, repo in self._repo_view.items()
                if matches_filter(repo, self._filter_query, repo.group)
            }
            if visible and visible <= self._selection:
                self._selection.clear()
                self._set_message("Deselected all repositories")
            else:
                self._selection |= visible
                self._set_message(f"Selected {len(self._selection)} repositories")

    def clear_selection(self) -> None:
        with self._lock:
            self._selection.clear()

    def targets(self) -> list[str]:
        """Repositories an operation applies to.

        The selection when there is one, otherwise the group under the
        cursor, otherwise the repository under the cursor.
        """
        with self._lock:
            if self._selection:
                return sorted(self._selection)
            row = self._current_row()
            if row is None or row.is_gap:
                return []
            if row.is_repo:
                return [row.path]
            return sorted(self._group_members_locked(row.group))

    # Git commands

    def refresh(self) -> None:
        self._request(StatusRefreshRequested, "refresh", "Refreshing")

    def refresh_all(self) -> None:
        self._bus.publish(StatusRefreshRequested())
        with self._lock:
            for path in self._repo_view:
                self._busy[path] = "refresh"
            self._set_message("Refreshing all repositories")

    def fetch(self) -> None:
        self._request(FetchRequested, "fetch", "Fetching")

    def pull(self) -> None:
        self._request(PullRequested, "pull", "Pulling")

    def rescan(self) -> None:
        """Rediscover repositories, dropping ones that no longer exist."""
        with self._lock:
            if self._scanning:
                self._set_message("Scan already in progress", error=True)
                return
            self._rescan_pending = True
            self._set_message("Scanning...")
        self._bus.publish(ScanRequested())

    def _request(self, event_type: type, operation: str, verb: str) -> None:
        paths = self.targets()
        if not paths:
            with self._lock:
                self._set_message("No repository selected", error=True)
            return
        self._bus.publish(event_type(paths=tuple(paths)))
        with self._lock:
            for path in paths:
                self._busy[path] = operation
            noun = Path(paths[0]).name if len(paths) == 1 else f"{len(paths)} repositories"
            self._set_message(f"{verb} {noun}...")

    # Search

    def start_search(self, query: str) -> None:
        """Record matching rows and jump to the first one."""
        with self._lock:
            self._search_query = query
            self._search_matches = search_rows(self._rows, self._repo_view, query) if query else []
            self._search_index = 0
            if self._search_matches:
                self._cursor = self._search_matches[0]
                self._fit()

    def next_match(self) -> None:
        self._step_match(1)

    def previous_match(self) -> None:
        self._step_match(-1)

    def clear_search(self) -> None:
        with self._lock:
            self._search_query = ""
            self._search_matches = []
            self._search_index = 0

    def _step_match(self, step: int) -> None:
        with self._lock:
            if not self._search_matches:
                if self._search_query:
                    self._set_message(f"No matches for '{self._search_query}'", error=True)
                return
            self._search_index = (self._search_index + step) % len(self._search_matches)
            self._cursor = self._search_matches[self._search_index]
            self._fit()
            self._set_message(
                f"Match {self._search_index + 1} of {len(self._search_matches)}"
            )

    # Filter and sort

    def set_filter(self, query: str) -> None:
        """Apply a filter and recompute immediately."""
        with self._lock:
            self._filter_query = query.strip()
        self.recompute()

    def clear_filter(self) -> None:
        self.set_filter("")

    def set_sort_mode(self, mode: SortMode) -> None:
        with self._lock:
            self._sort_mode = mode
            self._sort_index = SORT_MODES.index(mode)
        self.invalidate()

    def cycle_sort(self, step: int = 1) -> None:
        """Preview the next sort mode while choosing one."""
        with self._lock:
            self._sort_index = (self._sort_index + step) % len(SORT_MODES)
            self._sort_mode = SORT_MODES[self._sort_index]
        self.invalidate()

    # Groups

    def create_group(self, name: str) -> bool:
        """Create a group holding the current selection."""
        name = name.strip()
        error = self._validate_new_group(name)
        if error:
            with self._lock:
                self._set_message(error, error=True)
            return False

        with self._lock:
            paths = sorted(self._selection)
            self._selection.clear()
            if name not in self._group_order:
                self._group_order.append(name)
        self._bus.publish(GroupAdded(name=name))
        self._publish_moves(paths, name)
        with self._lock:
            if paths:
                self._set_message(f"Created group '{name}' with {len(paths)} repositories")
            else:
                self._set_message(f"Created empty group '{name}'")
        return True

    def move_to_group(self, name: str) -> bool:
        """Move the target repositories into ``name``, creating it if needed."""
        name = name.strip()
        if not name:
            with self._lock:
                self._set_message("Group name cannot be empty", error=True)
            return False
        paths = self.targets()
        if not paths:
            with self._lock:
                self._set_message("No repository selected", error=True)
            return False

        if name not in self._groups:
            with self._lock:
                if name not in self._group_order and not is_hidden_group(name):
                    self._group_order.append(name)
            self._bus.publish(GroupAdded(name=name))
        self._publish_moves(paths, name)
        with self._lock:
            self._selection.clear()
            self._set_message(f"Moved {len(paths)} repositories to '{name}'")
        return True

    def hide(self) -> bool:
        """Move the target repositories into the hidden group."""
        return self.move_to_group(HIDDEN_GROUP)

    def delete_group(self, name: str) -> bool:
        if name not in self._groups:
            with self._lock:
                self._set_message(f"Group '{name}' does not exist", error=True)
            return False
        self._bus.publish(GroupRemoved(name=name))
        with self._lock:
            self._set_message(f"Deleted group '{name}'")
        return True

    def rename_group(self, old: str, new: str) -> bool:
        """Rename a group, keeping its position and expanded state."""
        new = new.strip()
        if new == old:
            return True
        if is_hidden_group(old):
            with self._lock:
                self._set_message("The hidden group cannot be renamed", error=True)
            return False
        group = self._groups.get(old)
        if group is None:
            with self._lock:
                self._set_message(f"Group '{old}' does not exist", error=True)
            return False
        error = self._validate_new_group(new)
        if error:
            with self._lock:
                self._set_message(error, error=True)
            return False

        with self._lock:
            self._group_order = [new if name == old else name for name in self._group_order]
            if new not in self._group_order:
                self._group_order.append(new)
            if old in self._expanded:
                self._expanded[new] = self._expanded.pop(old)
            row = self._current_row()
            if row is not None and row.group == old and row.is_group:
                self._pending_key = (RowKind.GROUP, new, "")
        self._bus.publish(GroupAdded(name=new))
        self._publish_moves(group.repos, new)
        self._bus.publish(GroupRemoved(name=old))
        with self._lock:
            self._set_message(f"Renamed group '{old}' to '{new}'")
        return True

    def move_group(self, step: int) -> None:
        """Shift the current group up (-1) or down (1) in the group order."""
        name = self.current_group()
        if not name or is_hidden_group(name):
            return
        names = self._groups.names()
        with self._lock:
            order = [n for n in ordered_group_names(names, self._group_order) if not is_hidden_group(n)]
            index = order.index(name) if name in order else -1
            target = index + step
            if index < 0 or not 0 <= target < len(order):
                return
            order[index], order[target] = order[target], order[index]
            self._group_order = order
            self._groups_dirty = True
        self.recompute()

    def _validate_new_group(self, name: str) -> str:
        if not name:
            return "Group name cannot be empty"
        if is_hidden_group(name):
            return f"'{name}' is reserved"
        if name in self._groups:
            return f"Group '{name}' already exists"
        return ""

    def _publish_moves(self, paths: Iterable[str], to_group: str) -> None:
        for path in paths:
            self._bus.publish(
                RepoMoved(path=path, from_group=self._groups.group_of(path), to_group=to_group)
            )

    # Input modes

    def begin_search(self) -> None:
        self._enter_mode(InputMode.SEARCH)

    def begin_filter(self) -> None:
        with self._lock:
            self._enter_mode(InputMode.FILTER, self._filter_query)

    def begin_sort(self) -> None:
        with self._lock:
            self._sort_before = self._sort_mode
            self._sort_index = SORT_MODES.index(self._sort_mode)
            self._enter_mode(InputMode.SORT)

    def begin_new_group(self) -> None:
        self._enter_mode(InputMode.NEW_GROUP)

    def begin_move(self) -> None:
        if not self.targets():
            with self._lock:
                self._set_message("No repository selected", error=True)
            return
        self._enter_mode(InputMode.MOVE_TO_GROUP)

    def begin_delete(self) -> None:
        name = self.current_group()
        if not name:
            with self._lock:
                self._set_message("No group under cursor", error=True)
            return
        self._enter_mode(InputMode.DELETE_CONFIRM, target=name)

    def begin_rename(self) -> None:
        name = self.current_group()
        if not name or is_hidden_group(name):
            with self._lock:
                self._set_message("No group under cursor", error=True)
            return
        self._enter_mode(InputMode.RENAME_GROUP, name, target=name)

    def type_text(self, text: str) -> None:
        with self._lock:
            if not self._mode.takes_text:
                return
            self._buffer += text
            live_search = self._mode is InputMode.SEARCH
            buffer = self._buffer
        if live_search:
            self.start_search(buffer)

    def backspace(self) -> None:
        with self._lock:
            if not self._mode.takes_text or not self._buffer:
                return
            self._buffer = self._buffer[:-1]
            live_search = self._mode is InputMode.SEARCH
            buffer = self._buffer
        if live_search:
            self.start_search(buffer)

    def submit(self) -> None:
        """Confirm the current mode (Enter) and return to normal mode."""
        with self._lock:
            mode, buffer, target = self._mode, self._buffer, self._target_group
            self._leave_mode()

        if mode is InputMode.NEW_GROUP:
            self.create_group(buffer)
        elif mode is InputMode.MOVE_TO_GROUP:
            self.move_to_group(buffer)
        elif mode is InputMode.DELETE_CONFIRM:
            self.delete_group(target)
        elif mode is InputMode.RENAME_GROUP:
            self.rename_group(target, buffer)
        elif mode is InputMode.FILTER:
            self.set_filter(buffer)
        elif mode is InputMode.SEARCH:
            self.start_search(buffer)
        elif mode is InputMode.SORT:
            with self._lock:
                self._set_message(f"Sorted by {self._sort_mode.label}")

    def cancel_input(self) -> None:
        """Abandon the current mode (Esc)."""
        with self._lock:
            mode = self._mode
            self._leave_mode()
            if mode is InputMode.SORT and self._sort_mode is not self._sort_before:
                self._sort_mode = self._sort_before
                self._sort_index = SORT_MODES.index(self._sort_before)
                restore = True
            else:
                restore = False
        if mode is InputMode.SEARCH:
            self.clear_search()
        if restore:
            self.invalidate()

    @property
    def mode(self) -> InputMode:
        with self._lock:
            return self._mode

    def _enter_mode(self, mode: InputMode, buffer: str = "", target: str = "") -> None:
        with self._lock:
            self._mode = mode
            self._buffer = buffer
            self._target_group = target

    def _leave_mode(self) -> None:
        self._mode = InputMode.NORMAL
        self._buffer = ""
        self._target_group = ""

    # Status line

    def set_message(self, text: str, error: bool = False) -> None:
        with self._lock:
            self._set_message(text, error)

    def _set_message(self, text: str, error: bool = False) -> None:
        self._message = text
        self._message_is_error = error
        self._message_expires = self._clock() + STATUS_MESSAGE_TTL

    # Helpers (call with the lock held)

    def _current_row(self) -> Row | None:
        if 0 <= self._cursor < len(self._rows):
            return self._rows[self._cursor]
        return None

    def _current_group_locked(self) -> str:
        row = self._current_row()
        return row.group if row is not None and not row.is_gap else ""

    def _group_members_locked(self, name: str) -> set[str]:
        return {
            path for path, repo in self._repo_view.items()
            if repo.group == name and matches_filter(repo, self._filter_query, name)
        }

    def _park_on_header(self, name: str, expanded: bool) -> None:
        """Keep the cursor on a group's header across the next rebuild."""
        if expanded:
            return
        row = self._current_row()
        if row is not None and row.group == name and not row.is_gap:
            self._pending_key = (RowKind.GROUP, name, "")

    def _restore_cursor(self, previous_key: tuple | None) -> None:
        key = self._pending_key or previous_key
        self._pending_key = None
        if key is not None:
            for index, row in enumerate(self._rows):
                if _row_key(row) == key:
                    self._cursor = index
                    return
        if not self._rows:
            self._cursor = 0
            return
        self._cursor = next_selectable(self._rows, min(self._cursor, len(self._rows) - 1), 0)

    def _fit(self) -> None:
        self._offset = fit_viewport(self._cursor, self._offset, self._height, len(self._rows))

    # Bus handlers. Events whose relative order matters share one handler,
    # and with it one delivery FIFO.

    @safe_handler
    def _on_scan_event(self, event: object) -> None:
        if isinstance(event, ScanStarted):
            self._scan_started()
        elif isinstance(event, ReposDiscoveredBatch):
            self._add_repos(event.repos)
        elif isinstance(event, RepoDiscovered):
            self._add_repos([event.repo])
        elif isinstance(event, ScanCompleted):
            self._scan_completed(event.count)

    @safe_handler
    def _on_git_event(self, event: object) -> None:
        if isinstance(event, StatusUpdated):
            self._status_updated(event.path, event.status)
        elif isinstance(event, CommandExecuted):
            self._command_executed(event)
        elif isinstance(event, FetchCompleted):
            self._command_completed(event.path, event.success, "Fetched")
        elif isinstance(event, PullCompleted):
            self._command_completed(event.path, event.success, "Pulled")

    @safe_handler
    def _on_group_event(self, event: object) -> None:
        if isinstance(event, GroupAdded):
            self._group_added(event.name)
        elif isinstance(event, GroupRemoved):
            self._group_removed(event.name)
        elif isinstance(event, RepoMoved):
            self._repo_moved(event.path, event.to_group)
        elif isinstance(event, ConfigLoaded):
            self._config_loaded(event.groups)

    @safe_handler
    def _on_error(self, event: Error) -> None:
        with self._lock:
            self._set_message(event.message, error=True)
        self.invalidate()

    def _add_repos(self, repos: Sequence[Repository]) -> None:
        added = self._repos.add_many(list(repos))
        with self._lock:
            if self._scan_seen is not None:
                self._scan_seen.update(repo.path for repo in repos)
        if added:
            self.invalidate()

    def _scan_started(self) -> None:
        with self._lock:
            self._scanning = True
            self._scan_seen = set() if self._rescan_pending else None
            self._rescan_pending = False
        self.invalidate()

    def _scan_completed(self, count: int) -> None:
        with self._lock:
            self._scanning = False
            seen, self._scan_seen = self._scan_seen, None
            self._set_message(f"Scan complete: {count} repositories found")
        if seen is not None:
            for path in self._repos.paths():
                if path not in seen:
                    log.info("Repository vanished: {}", path)
                    self._repos.remove(path)
        self.invalidate()

    def _status_updated(self, path: str, status: RepoStatus) -> None:
        self._repos.update_status(path, status)
        with self._lock:
            if self._busy.get(path) == "refresh":
                del self._busy[path]
        self.invalidate()

    def _command_executed(self, event: CommandExecuted) -> None:
        entry = CommandLog(
            command=event.command,
            success=event.success,
            output=event.output,
            error=event.error,
            duration_ms=event.duration_ms,
        )
        self._repos.record_command(event.path, entry)
        self.invalidate()

    def _command_completed(self, path: str, success: bool, verb: str) -> None:
        with self._lock:
            if success:
                # A status re-probe follows every successful command
                self._busy[path] = "refresh"
                self._set_message(f"{verb} {Path(path).name}")
            else:
                self._busy.pop(path, None)
        self.invalidate()

    def _group_added(self, name: str) -> None:
        name = name.strip()
        try:
            self._groups.add_group(name)
        except GroupError as e:
            log.debug("Ignoring group add: {}", e)
            return
        with self._lock:
            if name not in self._group_order and not is_hidden_group(name):
                self._group_order.append(name)
            self._groups_dirty = True
        self.invalidate()

    def _group_removed(self, name: str) -> None:
        try:
            self._groups.remove_group(name)
        except GroupError as e:
            log.debug("Ignoring group removal: {}", e)
            return
        with self._lock:
            self._forget_group(name)
            self._groups_dirty = True
        self.invalidate()

    def _repo_moved(self, path: str, to_group: str) -> None:
        emptied = self._groups.move(path, to_group)
        with self._lock:
            for name in emptied:
                self._forget_group(name)
            if to_group and to_group not in self._group_order:
                if not is_hidden_group(to_group):
                    self._group_order.append(to_group)
            self._groups_dirty = True
        self.invalidate()

    def _forget_group(self, name: str) -> None:
        if name in self._group_order:
            self._group_order.remove(name)
        self._expanded.pop(name, None)

    def _config_loaded(self, groups: Mapping[str, list[str]]) -> None:
        """Seed the group store from persisted config without re-saving it."""
        loaded: list[str] = []
        for raw_name, paths in groups.items():
            name = raw_name.strip()
            try:
                if name not in self._groups:
                    self._groups.add_group(name)
            except GroupError as e:
                log.warning("Skipping config group {!r}: {}", raw_name, e)
                continue
            for path in paths:
                if not self._groups.group_of(path):
                    self._groups.move(path, name)
            loaded.append(name)
        with self._lock:
            for name in loaded:
                if name not in self._group_order and not is_hidden_group(name):
                    self._group_order.append(name)
        self.invalidate()
