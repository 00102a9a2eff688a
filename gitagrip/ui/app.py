"""Textual dashboard for gitagrip."""

from collections.abc import Callable

import logbook
from rich.text import Text
from textual import events
from textual.app import App, ComposeResult, SuspendNotSupported
from textual.binding import Binding
from textual.message import Message
from textual.screen import ModalScreen
from textual.widgets import Footer, Header, Static

from gitagrip.core.config_service import ConfigService
from gitagrip.core.coordinator import Coordinator, InputMode, ViewSnapshot
from gitagrip.core.event_bus import EventBus
from gitagrip.core.events import StatusRefreshRequested, ViewReady
from gitagrip.core.git_ops import (
    LAZYGIT_ENV,
    capture_diff,
    capture_log,
    lazygit_command,
    pager_command,
    run_interactive,
    run_pager,
)
from gitagrip.core.git_service import CommandResult, GitService
from gitagrip.core.ordering import SORT_MODES

from .command_log import CommandLogScreen
from .dialogs import HelpDialog, OutputDialog, RepoInfoDialog
from .repo_list import RepoList

log = logbook.Logger(__name__)

# Spinner and status message expiry
TICK_INTERVAL = 0.2

_PROMPTS = {
    InputMode.SEARCH: "/",
    InputMode.FILTER: "Filter: ",
    InputMode.NEW_GROUP: "New group name: ",
    InputMode.MOVE_TO_GROUP: "Move to group: ",
}


def render_status(snapshot: ViewSnapshot) -> Text:
    """Bottom line: the active prompt, a transient message, or a summary."""
    mode = snapshot.mode

    if mode is InputMode.DELETE_CONFIRM:
        line = Text(f"Delete group '{snapshot.target_group}'? ", style="bold red")
        line.append("(y/n)", style="dim")
        return line

    if mode is InputMode.SORT:
        line = Text("Sort by: ", style="bold")
        for index, sort_mode in enumerate(SORT_MODES):
            style = "reverse bold" if index == snapshot.sort_index else ""
            line.append(f" {sort_mode.label} ", style=style)
        line.append("  j/k choose, Enter apply, Esc cancel", style="dim")
        return line

    if mode.takes_text:
        if mode is InputMode.RENAME_GROUP:
            prompt = f"Rename '{snapshot.target_group}' to: "
        else:
            prompt = _PROMPTS[mode]
        line = Text(prompt, style="bold")
        line.append(snapshot.input_buffer)
        line.append("█", style="blink")
        if mode is InputMode.SEARCH and snapshot.input_buffer:
            count = len(snapshot.search_matches)
            line.append(f"  {count} match{'es' if count != 1 else ''}", style="dim")
        return line

    if snapshot.status_message:
        style = "bold red" if snapshot.status_is_error else "green"
        return Text(snapshot.status_message, style=style)

    parts = [f"{snapshot.repo_count} repositories"]
    if snapshot.selection:
        parts.append(f"{len(snapshot.selection)} selected")
    if snapshot.filter_query:
        parts.append(f"filter: {snapshot.filter_query}")
    if snapshot.search_query:
        parts.append(f"search: {snapshot.search_query}")
    parts.append(f"sort: {snapshot.sort_mode.label}")
    if snapshot.scanning:
        parts.append("scanning...")
    if snapshot.busy:
        parts.append(f"{len(snapshot.busy)} running")
    return Text(" | ".join(parts), style="dim")


class GitagripApp(App):
    ENABLE_COMMAND_PALETTE = False
    TITLE = "gitagrip"

    CSS = """
    Screen {
        background: $surface;
    }

    #status-bar {
        dock: bottom;
        height: 1;
        padding: 0 1;
        background: $primary-background;
    }

    .modal {
        align: center middle;
        width: 80%;
        height: auto;
        max-height: 80%;
        background: $surface;
        border: tall $primary;
        padding: 1 2;
    }

    #help-modal {
        width: 64;
    }

    #output-modal {
        height: 80%;
    }

    #output-scroll, #command-log-entries {
        height: 1fr;
    }

    #output-title, #command-log-title {
        margin: 0 0 1 0;
    }

    .command-log-entry {
        margin: 0 0 1 0;
    }
    """

    BINDINGS = [
        Binding("q", "request_quit", "Quit"),
        Binding("question_mark", "show_help", "Help", key_display="?"),
        Binding("j,down", "move_cursor(1)", "Down", show=False),
        Binding("k,up", "move_cursor(-1)", "Up", show=False),
        Binding("g,home", "cursor_top", "Top", show=False),
        Binding("G,end", "cursor_bottom", "Bottom", show=False),
        Binding("pagedown", "page(1)", "Page down", show=False),
        Binding("pageup", "page(-1)", "Page up", show=False),
        Binding("right_square_bracket", "jump_group(1)", "Next group", show=False),
        Binding("left_square_bracket", "jump_group(-1)", "Previous group", show=False),
        Binding("l,right", "expand(True)", "Expand", show=False),
        Binding("h,left", "expand(False)", "Collapse", show=False),
        Binding("z", "toggle_group", "Toggle group", show=False),
        Binding("enter", "activate", "Open", show=False),
        Binding("space", "toggle_select", "Select", show=False),
        Binding("a", "select_all", "Select all"),
        Binding("escape", "clear", "Clear", show=False),
        Binding("r", "refresh", "Refresh"),
        Binding("ctrl+r", "refresh_all", "Refresh all", show=False),
        Binding("f", "fetch", "Fetch"),
        Binding("p", "pull", "Pull"),
        Binding("S", "rescan", "Rescan", show=False),
        Binding("slash", "search", "Search", key_display="/"),
        Binding("n", "next_match", "Next match", show=False),
        Binding("N", "previous_match", "Previous match", show=False),
        Binding("F", "filter", "Filter"),
        Binding("s", "sort", "Sort"),
        Binding("c", "new_group", "New group", show=False),
        Binding("m", "move_to_group", "Move"),
        Binding("x", "hide", "Hide", show=False),
        Binding("R", "rename_group", "Rename group", show=False),
        Binding("d", "delete_group", "Delete group", show=False),
        Binding("J", "move_group(1)", "Group down", show=False),
        Binding("K", "move_group(-1)", "Group up", show=False),
        Binding("i", "info", "Info"),
        Binding("L", "show_log", "Log", show=False),
        Binding("D", "show_diff", "Diff", show=False),
        Binding("O", "command_log", "Commands", show=False),
    ]

    class ViewChanged(Message):
        """The coordinator published a new view revision."""

        def __init__(self, revision: int) -> None:
            super().__init__()
            self.revision = revision

    def __init__(
        self,
        bus: EventBus,
        coordinator: Coordinator,
        git: GitService,
        config_service: ConfigService | None = None,
        base_dir: str = "",
    ) -> None:
        super().__init__()
        self._bus = bus
        self.coordinator = coordinator
        self._git = git
        self._config_service = config_service
        self._base_dir = base_dir
        self._unsubscribe: Callable[[], None] | None = None
        self._dashboard_actions = frozenset(
            binding.action.split("(")[0] for binding in self.BINDINGS
        )

    def compose(self) -> ComposeResult:
        yield Header()
        yield RepoList(id="repo-list")
        yield Static(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        self.sub_title = self._base_dir
        self._unsubscribe = self._bus.subscribe(ViewReady, self._on_view_ready)
        self.query_one(RepoList).focus()
        self.set_interval(TICK_INTERVAL, self._tick)
        self.refresh_view()

    def on_unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # Rendering

    def refresh_view(self) -> None:
        """Redraw from a fresh coordinator snapshot."""
        snapshot = self.coordinator.snapshot()
        self.query_one(RepoList).show(snapshot)
        self.query_one("#status-bar", Static).update(render_status(snapshot))

    def set_viewport_height(self, height: int) -> None:
        self.coordinator.set_viewport_height(height)
        self.refresh_view()

    def _tick(self) -> None:
        self.query_one(RepoList).tick()
        self.query_one("#status-bar", Static).update(render_status(self.coordinator.snapshot()))

    def _on_view_ready(self, event: ViewReady) -> None:
        # Bus thread: hand over to the app's message loop
        self.post_message(self.ViewChanged(event.revision))

    def on_gitagrip_app_view_changed(self, message: ViewChanged) -> None:
        self.refresh_view()

    def check_action(self, action: str, parameters: tuple[object, ...]) -> bool | None:
        # Dashboard keys are inert while a dialog is open
        if action in self._dashboard_actions and isinstance(self.screen, ModalScreen):
            return False
        return True

    # Keyboard modes

    def handle_mode_key(self, event: events.Key) -> bool:
        """Route a key to the active input mode. Returns True if consumed."""
        coordinator = self.coordinator
        mode = coordinator.mode
        if mode is InputMode.NORMAL:
            return False

        key = event.key
        if mode is InputMode.DELETE_CONFIRM:
            if key in ("y", "enter"):
                coordinator.submit()
            elif key in ("n", "escape"):
                coordinator.cancel_input()
        elif mode is InputMode.SORT:
            if key in ("j", "down", "s", "tab"):
                coordinator.cycle_sort(1)
            elif key in ("k", "up"):
                coordinator.cycle_sort(-1)
            elif key == "enter":
                coordinator.submit()
            elif key == "escape":
                coordinator.cancel_input()
        elif key == "escape":
            coordinator.cancel_input()
        elif key == "enter":
            coordinator.submit()
        elif key == "backspace":
            coordinator.backspace()
        elif event.is_printable and event.character:
            coordinator.type_text(event.character)

        self.refresh_view()
        return True

    # Navigation

    def action_move_cursor(self, step: int) -> None:
        self.coordinator.move_cursor(step)
        self.refresh_view()

    def action_cursor_top(self) -> None:
        self.coordinator.cursor_to_top()
        self.refresh_view()

    def action_cursor_bottom(self) -> None:
        self.coordinator.cursor_to_bottom()
        self.refresh_view()

    def action_page(self, pages: int) -> None:
        self.coordinator.page(pages)
        self.refresh_view()

    def action_jump_group(self, direction: int) -> None:
        self.coordinator.jump_group(direction)
        self.refresh_view()

    def action_expand(self, expanded: bool) -> None:
        self.coordinator.set_group_expanded(expanded)

    def action_toggle_group(self) -> None:
        self.coordinator.toggle_group()

    def action_activate(self) -> None:
        """Enter: toggle a group header, open lazygit on a repository."""
        snapshot = self.coordinator.snapshot()
        row = snapshot.current_row
        if row is None or row.is_gap:
            return
        if row.is_group:
            self.coordinator.toggle_group(row.group)
            return
        self._open_lazygit(row.path)

    # Selection

    def action_toggle_select(self) -> None:
        self.coordinator.toggle_select()
        self.refresh_view()

    def action_select_all(self) -> None:
        self.coordinator.select_all()
        self.refresh_view()

    def action_clear(self) -> None:
        self.coordinator.clear_selection()
        self.coordinator.clear_search()
        self.refresh_view()

    # Git operations

    def action_refresh(self) -> None:
        self.coordinator.refresh()
        self.refresh_view()

    def action_refresh_all(self) -> None:
        self.coordinator.refresh_all()
        self.refresh_view()

    def action_fetch(self) -> None:
        self.coordinator.fetch()
        self.refresh_view()

    def action_pull(self) -> None:
        self.coordinator.pull()
        self.refresh_view()

    def action_rescan(self) -> None:
        self.coordinator.rescan()
        self.refresh_view()

    # Search, filter, sort

    def action_search(self) -> None:
        self.coordinator.begin_search()
        self.refresh_view()

    def action_next_match(self) -> None:
        self.coordinator.next_match()
        self.refresh_view()

    def action_previous_match(self) -> None:
        self.coordinator.previous_match()
        self.refresh_view()

    def action_filter(self) -> None:
        self.coordinator.begin_filter()
        self.refresh_view()

    def action_sort(self) -> None:
        self.coordinator.begin_sort()
        self.refresh_view()

    # Groups

    def action_new_group(self) -> None:
        self.coordinator.begin_new_group()
        self.refresh_view()

    def action_move_to_group(self) -> None:
        self.coordinator.begin_move()
        self.refresh_view()

    def action_hide(self) -> None:
        self.coordinator.hide()
        self.refresh_view()

    def action_rename_group(self) -> None:
        self.coordinator.begin_rename()
        self.refresh_view()

    def action_delete_group(self) -> None:
        self.coordinator.begin_delete()
        self.refresh_view()

    def action_move_group(self, step: int) -> None:
        self.coordinator.move_group(step)
        self.refresh_view()

    # Dialogs and external tools

    def action_show_help(self) -> None:
        self.push_screen(HelpDialog())

    def action_info(self) -> None:
        repo = self.coordinator.current_repo()
        if repo is None:
            self._message("No repository under cursor", error=True)
            return
        self.push_screen(RepoInfoDialog(repo))

    def action_command_log(self) -> None:
        repo = self.coordinator.current_repo()
        if repo is None:
            self._message("No repository under cursor", error=True)
            return
        self.push_screen(CommandLogScreen(repo))

    def action_show_log(self) -> None:
        self._show_git_output("Log", capture_log)

    def action_show_diff(self) -> None:
        self._show_git_output("Diff", capture_diff)

    def action_request_quit(self) -> None:
        """Save the grouping when configured to, then exit."""
        service = self._config_service
        if service is not None and service.config.ui_autosave_on_exit:
            groups, order = self.coordinator.config_snapshot()
            service.update(groups, order)
        self.exit()

    def _show_git_output(
        self, title: str, capture: Callable[[GitService, str], CommandResult]
    ) -> None:
        repo = self.coordinator.current_repo()
        if repo is None:
            self._message("No repository under cursor", error=True)
            return

        def work() -> None:
            result = capture(self._git, repo.path)
            self.call_from_thread(self._present_output, f"{title}: {repo.display_name}", result)

        self.run_worker(work, thread=True, name=f"git-{title.lower()}")

    def _present_output(self, title: str, result: CommandResult) -> None:
        if not result.ok:
            self._message(f"{title} failed: {result.error_message}", error=True)
            return
        pager = pager_command()
        if pager is not None and result.stdout.strip():
            try:
                with self.suspend():
                    run_pager(result.stdout, pager)
                return
            except SuspendNotSupported:
                log.debug("Terminal cannot be suspended, showing output inline")
        self.push_screen(OutputDialog(title, result.stdout))

    def _open_lazygit(self, path: str) -> None:
        command = lazygit_command(path)
        if command is None:
            self._message(f"lazygit not found (set {LAZYGIT_ENV})", error=True)
            return
        try:
            with self.suspend():
                returncode = run_interactive(command, path)
        except SuspendNotSupported:
            self._message("Cannot hand the terminal to lazygit here", error=True)
            return
        if returncode != 0:
            log.warning("lazygit exited with {} in {}", returncode, path)
        self._bus.publish(StatusRefreshRequested(paths=(path,)))

    def _message(self, text: str, error: bool = False) -> None:
        self.coordinator.set_message(text, error)
        self.refresh_view()
