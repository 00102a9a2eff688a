"""Repository list widget rendering coordinator snapshots."""

from rich.text import Text
from textual import events
from textual.widget import Widget

from gitagrip.core.coordinator import ViewSnapshot
from gitagrip.core.ordering import Row
from gitagrip.models.repository import Repository, RepoStatus

SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"

_MAX_BRANCH_LENGTH = 30


def status_icon(repo: Repository, busy: bool = False, frame: int = 0) -> Text:
    """Single-character indicator for a repository row."""
    if busy:
        return Text(SPINNER_FRAMES[frame % len(SPINNER_FRAMES)], style="cyan")
    status = repo.status
    if status.error or repo.has_error:
        return Text("✗", style="bold red")
    if status.is_pending:
        return Text("⋯", style="dim")
    if status.is_dirty or status.has_untracked:
        return Text("●", style="yellow")
    return Text("✓", style="green")


def format_branch(branch: str) -> str:
    if not branch:
        return "no branch"
    if len(branch) > _MAX_BRANCH_LENGTH:
        return branch[: _MAX_BRANCH_LENGTH - 3] + "..."
    return branch


def ahead_behind_text(status: RepoStatus) -> str:
    parts = []
    if status.ahead_count:
        parts.append(f"↑{status.ahead_count}")
    if status.behind_count:
        parts.append(f"↓{status.behind_count}")
    return " ".join(parts)


def highlight(text: str, query: str, base_style: str = "") -> Text:
    """Return ``text`` with the first case-insensitive match of ``query`` marked."""
    rendered = Text(text, style=base_style)
    if query:
        index = text.lower().find(query.lower())
        if index >= 0:
            rendered.stylize("bold black on yellow", index, index + len(query))
    return rendered


def render_repo(
    repo: Repository,
    snapshot: ViewSnapshot,
    indent: bool,
    frame: int = 0,
) -> Text:
    """One repository line: icon, name, branch, ahead/behind, stash."""
    line = Text("  " if indent else "")
    if snapshot.selection:
        line.append("[x] " if repo.path in snapshot.selection else "[ ] ")
    line.append_text(status_icon(repo, repo.path in snapshot.busy, frame))
    line.append(" ")
    line.append_text(highlight(repo.display_name, snapshot.search_query))

    status = repo.status
    branch_style = "magenta" if status.is_detached else "cyan"
    if status.is_dirty or status.has_untracked:
        branch_style += " bold"
    line.append(" (")
    line.append(format_branch(status.branch), style=branch_style)
    if snapshot.show_ahead_behind:
        counts = ahead_behind_text(status)
        if counts:
            line.append(" ")
            line.append(counts, style="bold")
    line.append(")")
    if status.stash_count:
        line.append(f" [{status.stash_count} stashed]", style="dark_orange")
    if status.error:
        line.append(f"  {status.error}", style="red dim")
    return line


def render_group(row: Row, snapshot: ViewSnapshot) -> Text:
    """Group header line with expand marker and visible member count."""
    marker = "▼" if row.expanded else "▶"
    style = "dim bold" if row.group.startswith("_") else "bold blue"
    line = Text(f"{marker} ", style=style)
    line.append_text(highlight(row.group, snapshot.search_query, style))
    line.append(f" ({row.repo_count})", style="dim")
    return line


def render_rows(snapshot: ViewSnapshot, frame: int = 0) -> Text:
    """Render the visible window of a snapshot, with scroll indicators."""
    window = snapshot.window
    lines: list[Text] = []

    if window.more_above:
        lines.append(Text(f"  ↑ {window.start} more", style="dim"))

    for index in range(window.start, window.stop):
        row = snapshot.rows[index]
        if row.is_gap:
            line = Text("")
        elif row.is_group:
            line = render_group(row, snapshot)
        else:
            repo = snapshot.repos.get(row.path)
            if repo is None:
                continue
            line = render_repo(repo, snapshot, indent=bool(row.group), frame=frame)
        if index == snapshot.cursor:
            line.stylize("reverse")
        elif index in snapshot.search_matches:
            line.stylize("underline")
        lines.append(line)

    if window.more_below:
        lines.append(Text(f"  ↓ {len(snapshot.rows) - window.stop} more", style="dim"))

    if not snapshot.rows:
        message = "Scanning for repositories..." if snapshot.scanning else "No repositories found"
        lines.append(Text(message, style="dim italic"))

    return Text("\n").join(lines)


class RepoList(Widget, can_focus=True):
    """Focusable list of groups and repositories."""

    DEFAULT_CSS = """
    RepoList {
        height: 1fr;
        padding: 0 1;
    }
    """

    def __init__(self, id: str | None = None) -> None:
        super().__init__(id=id)
        self._snapshot: ViewSnapshot | None = None
        self._frame = 0

    def show(self, snapshot: ViewSnapshot) -> None:
        self._snapshot = snapshot
        self.refresh()

    def tick(self) -> None:
        """Advance the busy spinner."""
        self._frame += 1
        if self._snapshot is not None and self._snapshot.busy:
            self.refresh()

    def render(self) -> Text:
        if self._snapshot is None:
            return Text("Loading...", style="dim")
        return render_rows(self._snapshot, self._frame)

    def on_resize(self, event: events.Resize) -> None:
        self.app.set_viewport_height(event.size.height)

    def on_key(self, event: events.Key) -> None:
        # Modal input is routed before the app's bindings see the key
        if self.app.handle_mode_key(event):
            event.stop()
            event.prevent_default()
