"""Tests for the Coordinator."""

import time
from collections.abc import Generator

import pytest

from conftest import Recorder, wait_until
from gitagrip.core.coordinator import Coordinator, InputMode
from gitagrip.core.event_bus import EventBus
from gitagrip.core.events import (
    ConfigChanged,
    ConfigLoaded,
    Error,
    FetchCompleted,
    FetchRequested,
    RepoDiscovered,
    ReposDiscoveredBatch,
    ScanCompleted,
    ScanRequested,
    ScanStarted,
    StatusRefreshRequested,
    StatusUpdated,
    ViewReady,
)
from gitagrip.core.ordering import RowKind, SortMode
from gitagrip.core.stores import GroupStore, RepositoryStore
from gitagrip.models.repository import HIDDEN_GROUP, Repository, RepoStatus


def settle(bus: EventBus, coordinator: Coordinator) -> None:
    """Drain the bus and run pending recomputations until both are quiet."""
    for _ in range(20):
        assert bus.wait_idle(5)
        if not coordinator.flush():
            return
    raise AssertionError("coordinator never settled")


def discover(bus: EventBus, *paths: str) -> None:
    bus.publish(ReposDiscoveredBatch(repos=tuple(Repository.from_path(p) for p in paths)))


def row_labels(coordinator: Coordinator) -> list[str]:
    """Rows as short strings: '+group', 'repo-name' or '' for gaps."""
    labels = []
    for row in coordinator.snapshot().rows:
        if row.kind is RowKind.GROUP:
            labels.append(f"+{row.group}")
        elif row.kind is RowKind.REPO:
            labels.append(row.path.rsplit("/", 1)[-1])
        else:
            labels.append("")
    return labels


@pytest.fixture
def coordinator(bus: EventBus) -> Generator[Coordinator]:
    # Long delay: tests drive recomputation through settle()
    coord = Coordinator(bus, RepositoryStore(), GroupStore(), debounce_delay=60)
    yield coord
    coord.close()


@pytest.fixture
def grouped(bus: EventBus) -> Generator[Coordinator]:
    """Three groups a, b and c holding one repository each."""
    coord = Coordinator(
        bus, RepositoryStore(), GroupStore(), group_order=["a", "b", "c"], debounce_delay=60
    )
    bus.publish(ConfigLoaded(
        base_dir="/code",
        groups={"a": ["/code/r1"], "b": ["/code/r2"], "c": ["/code/r3"]},
    ))
    discover(bus, "/code/r1", "/code/r2", "/code/r3", "/code/loose")
    settle(bus, coord)
    yield coord
    coord.close()


class TestConvergence:
    """Tests for event application and debouncing."""

    def test_burst_of_discoveries_yields_one_view(self, bus: EventBus) -> None:
        """Test a burst of events within the debounce window recomputes once."""
        coord = Coordinator(bus, RepositoryStore(), GroupStore())
        recorder = Recorder(bus, ViewReady)

        for i in range(1000):
            bus.publish(RepoDiscovered(repo=Repository.from_path(f"/code/repo-{i:04d}")))

        assert wait_until(lambda: len(recorder.of(ViewReady)) >= 1)
        assert bus.wait_idle(5)
        time.sleep(0.3)

        assert len(recorder.of(ViewReady)) == 1
        assert len(coord.snapshot().rows) == 1000
        coord.close()

    def test_discovered_repositories_become_rows(self, bus: EventBus, coordinator: Coordinator) -> None:
        """Test batches land in the store and the rows in name order."""
        discover(bus, "/code/zeta", "/code/alpha")
        settle(bus, coordinator)

        snapshot = coordinator.snapshot()
        assert row_labels(coordinator) == ["alpha", "zeta"]
        assert snapshot.repo_count == 2
        assert snapshot.repos["/code/alpha"].status.is_pending

    def test_status_update_applied(self, bus: EventBus, coordinator: Coordinator) -> None:
        """Test StatusUpdated replaces the pending status."""
        discover(bus, "/code/alpha")
        bus.publish(StatusUpdated(path="/code/alpha", status=RepoStatus(branch="main", is_dirty=True)))
        settle(bus, coordinator)

        repo = coordinator.snapshot().repos["/code/alpha"]
        assert repo.status.branch == "main"
        assert repo.status.is_dirty

    def test_config_groups_seed_layout(self, grouped: Coordinator) -> None:
        """Test persisted groups come first, in order, then ungrouped repositories."""
        assert row_labels(grouped) == ["+a", "r1", "", "+b", "r2", "", "+c", "r3", "", "loose"]

    def test_scanning_flag(self, bus: EventBus, coordinator: Coordinator) -> None:
        """Test the scan indicator follows ScanStarted and ScanCompleted."""
        bus.publish(ScanStarted(paths=("/code",)))
        settle(bus, coordinator)
        assert coordinator.snapshot().scanning

        bus.publish(ScanCompleted(count=0))
        settle(bus, coordinator)
        snapshot = coordinator.snapshot()
        assert not snapshot.scanning
        assert snapshot.status_message == "Scan complete: 0 repositories found"

    def test_error_event_shows_message(self, bus: EventBus, coordinator: Coordinator) -> None:
        """Test Error events surface on the status line."""
        bus.publish(Error(message="Pull failed for alpha"))
        settle(bus, coordinator)

        snapshot = coordinator.snapshot()
        assert snapshot.status_message == "Pull failed for alpha"
        assert snapshot.status_is_error


class TestRescan:
    """Tests for rescanning."""

    def test_rescan_drops_vanished_repositories(self, bus: EventBus, coordinator: Coordinator) -> None:
        """Test a user rescan prunes repositories it no longer finds."""
        recorder = Recorder(bus, ScanRequested)
        discover(bus, "/code/kept", "/code/gone")
        settle(bus, coordinator)

        coordinator.rescan()
        bus.publish(ScanStarted(paths=("/code",)))
        discover(bus, "/code/kept")
        bus.publish(ScanCompleted(count=1))
        settle(bus, coordinator)

        assert recorder.of(ScanRequested) == [ScanRequested()]
        assert row_labels(coordinator) == ["kept"]

    def test_plain_scan_keeps_repositories(self, bus: EventBus, coordinator: Coordinator) -> None:
        """Test a scan the user did not ask for only adds."""
        discover(bus, "/code/kept", "/code/other")
        settle(bus, coordinator)

        bus.publish(ScanStarted(paths=("/code",)))
        discover(bus, "/code/kept")
        bus.publish(ScanCompleted(count=1))
        settle(bus, coordinator)

        assert row_labels(coordinator) == ["kept", "other"]

    def test_rescan_refused_while_scanning(self, bus: EventBus, coordinator: Coordinator) -> None:
        """Test a second scan is not requested while one runs."""
        recorder = Recorder(bus, ScanRequested)
        bus.publish(ScanStarted())
        settle(bus, coordinator)

        coordinator.rescan()
        settle(bus, coordinator)

        assert recorder.of(ScanRequested) == []
        assert coordinator.snapshot().status_message == "Scan already in progress"


class TestNavigation:
    """Tests for cursor movement."""

    def test_cursor_skips_gap_rows(self, grouped: Coordinator) -> None:
        """Test moving down from a group's last repository lands on the next header."""
        grouped.set_cursor(1)
        grouped.move_cursor(1)

        assert grouped.snapshot().current_row.group == "b"
        assert grouped.snapshot().current_row.is_group

    def test_top_and_bottom(self, grouped: Coordinator) -> None:
        """Test jumping to the ends of the list."""
        grouped.cursor_to_bottom()
        assert grouped.current_repo().path == "/code/loose"

        grouped.cursor_to_top()
        assert grouped.snapshot().cursor == 0

    def test_jump_group(self, grouped: Coordinator) -> None:
        """Test bracket navigation between group headers."""
        grouped.jump_group(1)
        assert grouped.current_group() == "b"

        grouped.jump_group(1)
        grouped.jump_group(-1)
        assert grouped.current_group() == "b"

    def test_viewport_follows_cursor(self, bus: EventBus, coordinator: Coordinator) -> None:
        """Test the cursor stays inside the visible window."""
        discover(bus, *(f"/code/repo-{i:02d}" for i in range(40)))
        settle(bus, coordinator)
        coordinator.set_viewport_height(10)

        coordinator.page(2)
        snapshot = coordinator.snapshot()

        assert snapshot.cursor > 0
        assert snapshot.window.start <= snapshot.cursor < snapshot.window.stop

    def test_collapse_keeps_cursor_on_header(self, bus: EventBus, grouped: Coordinator) -> None:
        """Test collapsing from a member row parks the cursor on the header."""
        grouped.set_cursor(4)
        assert grouped.current_repo().path == "/code/r2"

        grouped.set_group_expanded(False)
        settle(bus, grouped)

        row = grouped.snapshot().current_row
        assert row.is_group and row.group == "b"
        assert not row.expanded
        assert "r2" not in row_labels(grouped)


class TestSelection:
    """Tests for selection and operation targets."""

    def test_toggle_repository(self, grouped: Coordinator) -> None:
        """Test space on a repository toggles it alone."""
        grouped.set_cursor(1)
        grouped.toggle_select()
        assert grouped.snapshot().selection == {"/code/r1"}

        grouped.toggle_select()
        assert grouped.snapshot().selection == frozenset()

    def test_toggle_group_header(self, grouped: Coordinator) -> None:
        """Test space on a header toggles all of its members."""
        grouped.set_cursor(3)
        grouped.toggle_select()

        assert grouped.snapshot().selection == {"/code/r2"}

    def test_select_all_then_deselect(self, grouped: Coordinator) -> None:
        """Test select all toggles between everything and nothing."""
        grouped.select_all()
        assert len(grouped.snapshot().selection) == 4

        grouped.select_all()
        assert grouped.snapshot().selection == frozenset()

    def test_targets_precedence(self, grouped: Coordinator) -> None:
        """Test selection, then group under cursor, then repository under cursor."""
        grouped.set_cursor(0)
        assert grouped.targets() == ["/code/r1"]

        grouped.cursor_to_bottom()
        assert grouped.targets() == ["/code/loose"]

        grouped.set_cursor(4)
        grouped.toggle_select()
        grouped.cursor_to_bottom()
        assert grouped.targets() == ["/code/r2"]


class TestGitIntents:
    """Tests for refresh, fetch and pull requests."""

    def test_refresh_marks_busy_until_status(self, bus: EventBus, grouped: Coordinator) -> None:
        """Test a refreshed repository shows as busy until its status arrives."""
        recorder = Recorder(bus, StatusRefreshRequested)
        grouped.cursor_to_bottom()

        grouped.refresh()
        settle(bus, grouped)
        assert recorder.of(StatusRefreshRequested) == [StatusRefreshRequested(paths=("/code/loose",))]
        assert grouped.snapshot().busy == {"/code/loose": "refresh"}

        bus.publish(StatusUpdated(path="/code/loose", status=RepoStatus(branch="main")))
        settle(bus, grouped)
        assert grouped.snapshot().busy == {}

    def test_fetch_then_reprobe(self, bus: EventBus, grouped: Coordinator) -> None:
        """Test a successful fetch stays busy until the status re-probe lands."""
        recorder = Recorder(bus, FetchRequested)
        grouped.set_cursor(0)

        grouped.fetch()
        settle(bus, grouped)
        assert recorder.of(FetchRequested) == [FetchRequested(paths=("/code/r1",))]
        assert grouped.snapshot().busy == {"/code/r1": "fetch"}

        bus.publish(FetchCompleted(path="/code/r1", success=True))
        settle(bus, grouped)
        assert grouped.snapshot().busy == {"/code/r1": "refresh"}

        bus.publish(StatusUpdated(path="/code/r1", status=RepoStatus(branch="main")))
        settle(bus, grouped)
        assert grouped.snapshot().busy == {}

    def test_failed_fetch_clears_busy(self, bus: EventBus, grouped: Coordinator) -> None:
        """Test a failed fetch is no longer shown as running."""
        grouped.set_cursor(0)
        grouped.fetch()
        bus.publish(FetchCompleted(path="/code/r1", success=False, error="offline"))
        settle(bus, grouped)

        assert grouped.snapshot().busy == {}

    def test_nothing_to_target(self, bus: EventBus, coordinator: Coordinator) -> None:
        """Test commands on an empty list only report a message."""
        recorder = Recorder(bus, FetchRequested)

        coordinator.fetch()
        settle(bus, coordinator)

        assert recorder.of(FetchRequested) == []
        assert coordinator.snapshot().status_message == "No repository selected"


class TestSearchFilterSort:
    """Tests for search, filter and sort."""

    def test_search_wraps(self, bus: EventBus, coordinator: Coordinator) -> None:
        """Test n and N cycle through matches in both directions."""
        discover(bus, "/code/api", "/code/web", "/code/api-docs")
        settle(bus, coordinator)

        coordinator.begin_search()
        for char in "api":
            coordinator.type_text(char)
        coordinator.submit()

        snapshot = coordinator.snapshot()
        assert snapshot.search_matches == (0, 1)
        assert snapshot.cursor == 0

        coordinator.next_match()
        assert coordinator.snapshot().cursor == 1
        coordinator.next_match()
        assert coordinator.snapshot().cursor == 0
        coordinator.previous_match()
        assert coordinator.snapshot().cursor == 1

    def test_cancelled_search_clears_query(self, bus: EventBus, coordinator: Coordinator) -> None:
        """Test Esc in search mode drops the query."""
        discover(bus, "/code/api")
        settle(bus, coordinator)

        coordinator.begin_search()
        coordinator.type_text("api")
        coordinator.cancel_input()

        snapshot = coordinator.snapshot()
        assert snapshot.mode is InputMode.NORMAL
        assert snapshot.search_query == ""
        assert snapshot.search_matches == ()

    def test_filter_applies_immediately(self, bus: EventBus, coordinator: Coordinator) -> None:
        """Test the filter rebuilds rows without waiting for the debounce."""
        discover(bus, "/code/r1", "/code/r2", "/code/r3")
        bus.publish(StatusUpdated(path="/code/r1", status=RepoStatus(branch="main", is_dirty=True)))
        bus.publish(StatusUpdated(path="/code/r2", status=RepoStatus(branch="main")))
        bus.publish(StatusUpdated(path="/code/r3", status=RepoStatus(branch="feature")))
        settle(bus, coordinator)

        coordinator.set_filter("status:dirty")
        assert row_labels(coordinator) == ["r1"]

        coordinator.set_filter("main")
        assert row_labels(coordinator) == ["r1", "r2"]

        coordinator.clear_filter()
        assert row_labels(coordinator) == ["r1", "r2", "r3"]

    def test_filter_mode_prefills_current_query(self, coordinator: Coordinator) -> None:
        """Test reopening the filter prompt starts from the active filter."""
        coordinator.set_filter("status:dirty")

        coordinator.begin_filter()

        assert coordinator.snapshot().input_buffer == "status:dirty"

    def test_sort_preview_and_cancel(self, bus: EventBus, coordinator: Coordinator) -> None:
        """Test cycling previews a sort mode and Esc restores the previous one."""
        coordinator.begin_sort()
        coordinator.cycle_sort(1)
        assert coordinator.snapshot().sort_mode is SortMode.STATUS

        coordinator.cancel_input()
        settle(bus, coordinator)

        snapshot = coordinator.snapshot()
        assert snapshot.sort_mode is SortMode.NAME
        assert snapshot.mode is InputMode.NORMAL

    def test_sort_confirm(self, bus: EventBus, coordinator: Coordinator) -> None:
        """Test Enter keeps the previewed sort mode."""
        coordinator.begin_sort()
        coordinator.cycle_sort(2)
        coordinator.submit()
        settle(bus, coordinator)

        assert coordinator.snapshot().sort_mode is SortMode.BRANCH
        assert coordinator.snapshot().status_message == "Sorted by " + SortMode.BRANCH.label


class TestGroups:
    """Tests for group management."""

    def test_new_group_from_selection(self, bus: EventBus, coordinator: Coordinator) -> None:
        """Test creating a group moves the selection and persists it."""
        recorder = Recorder(bus, ConfigChanged)
        discover(bus, "/code/r1", "/code/r2")
        settle(bus, coordinator)

        coordinator.set_cursor(0)
        coordinator.toggle_select()
        coordinator.begin_new_group()
        coordinator.type_text("G")
        coordinator.submit()
        settle(bus, coordinator)

        assert row_labels(coordinator) == ["+G", "r1", "", "r2"]
        assert coordinator.snapshot().selection == frozenset()
        assert recorder.of(ConfigChanged)[-1] == ConfigChanged(
            groups={"G": ["/code/r1"]}, group_order=("G",)
        )

    def test_duplicate_group_rejected(self, bus: EventBus, grouped: Coordinator) -> None:
        """Test an existing name is refused with a message."""
        assert not grouped.create_group("a")
        assert grouped.snapshot().status_message == "Group 'a' already exists"
        assert grouped.snapshot().status_is_error

    def test_move_to_new_group(self, bus: EventBus, grouped: Coordinator) -> None:
        """Test moving into an unknown name creates the group."""
        grouped.cursor_to_bottom()
        grouped.begin_move()
        assert grouped.mode is InputMode.MOVE_TO_GROUP
        grouped.type_text("misc")
        grouped.submit()
        settle(bus, grouped)

        assert row_labels(grouped)[-3:] == ["+misc", "loose", ""]

    def test_moving_last_member_deletes_group(self, bus: EventBus, grouped: Coordinator) -> None:
        """Test a group emptied by a move disappears."""
        grouped.set_cursor(1)
        grouped.move_to_group("b")
        settle(bus, grouped)

        assert "+a" not in row_labels(grouped)
        assert row_labels(grouped)[:4] == ["+b", "r1", "r2", ""]

    def test_rename_keeps_position_and_cursor(self, bus: EventBus, grouped: Coordinator) -> None:
        """Test a renamed group stays in place with the cursor on it."""
        recorder = Recorder(bus, ConfigChanged)
        grouped.set_cursor(3)

        grouped.begin_rename()
        assert grouped.snapshot().input_buffer == "b"
        grouped.backspace()
        grouped.type_text("beta")
        grouped.submit()
        settle(bus, grouped)

        assert row_labels(grouped) == ["+a", "r1", "", "+beta", "r2", "", "+c", "r3", "", "loose"]
        row = grouped.snapshot().current_row
        assert row.is_group and row.group == "beta"
        assert recorder.of(ConfigChanged)[-1].group_order == ("a", "beta", "c")

    def test_move_group_down(self, bus: EventBus, grouped: Coordinator) -> None:
        """Test reordering swaps neighbours and persists the order."""
        recorder = Recorder(bus, ConfigChanged)
        grouped.set_cursor(0)

        grouped.move_group(1)
        settle(bus, grouped)

        assert row_labels(grouped)[:6] == ["+b", "r2", "", "+a", "r1", ""]
        assert recorder.of(ConfigChanged)[-1].group_order == ("b", "a", "c")

    def test_delete_after_confirmation(self, bus: EventBus, grouped: Coordinator) -> None:
        """Test deleting a group ungroups its repositories."""
        grouped.set_cursor(0)

        grouped.begin_delete()
        snapshot = grouped.snapshot()
        assert snapshot.mode is InputMode.DELETE_CONFIRM
        assert snapshot.target_group == "a"
        grouped.submit()
        settle(bus, grouped)

        assert row_labels(grouped) == ["+b", "r2", "", "+c", "r3", "", "loose", "r1"]

    def test_delete_cancelled(self, bus: EventBus, grouped: Coordinator) -> None:
        """Test Esc in the confirmation leaves the group alone."""
        grouped.set_cursor(0)

        grouped.begin_delete()
        grouped.cancel_input()
        settle(bus, grouped)

        assert row_labels(grouped)[0] == "+a"

    def test_hide_moves_to_collapsed_hidden_group(self, bus: EventBus, grouped: Coordinator) -> None:
        """Test hidden repositories leave the list under a collapsed group."""
        grouped.cursor_to_bottom()

        assert grouped.hide()
        settle(bus, grouped)

        labels = row_labels(grouped)
        assert "loose" not in labels
        assert labels[-1] == f"+{HIDDEN_GROUP}"
        assert not grouped.is_expanded(HIDDEN_GROUP)

    def test_hidden_group_cannot_be_renamed(self, grouped: Coordinator) -> None:
        """Test the reserved group keeps its name."""
        assert not grouped.rename_group(HIDDEN_GROUP, "visible")
        assert not grouped.create_group(HIDDEN_GROUP)

    def test_config_group_names_are_trimmed(self, bus: EventBus) -> None:
        """Test blank names are skipped and padded names match their group."""
        groups = GroupStore()
        coord = Coordinator(bus, RepositoryStore(), groups, debounce_delay=60)

        bus.publish(ConfigLoaded(
            base_dir="/code",
            groups={" ": ["/code/x"], "work ": ["/code/y"], "oss": ["/code/z"]},
        ))
        discover(bus, "/code/x", "/code/y", "/code/z")
        settle(bus, coord)

        assert groups.as_mapping() == {"work": ["/code/y"], "oss": ["/code/z"]}
        assert row_labels(coord) == ["+work", "y", "", "+oss", "z", "", "x"]
        coord.close()
