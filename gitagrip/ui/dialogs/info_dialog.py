"""Dialog showing the details of one repository."""

from rich.markup import escape
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.screen import ModalScreen
from textual.widgets import Static

from gitagrip.models.repository import Repository


def describe_repo(repo: Repository) -> list[tuple[str, str]]:
    """Label/value pairs describing a repository."""
    status = repo.status
    if status.is_pending:
        state = "checking..."
    elif status.error:
        state = "error"
    elif status.is_clean:
        state = "clean"
    else:
        changes = []
        if status.is_dirty:
            changes.append("modified")
        if status.has_untracked:
            changes.append("untracked files")
        state = ", ".join(changes)

    rows = [
        ("Name", repo.display_name),
        ("Path", repo.path),
        ("Group", repo.group or "(ungrouped)"),
        ("Branch", status.branch),
        ("Status", state),
        ("Ahead", str(status.ahead_count)),
        ("Behind", str(status.behind_count)),
    ]
    if status.stash_count:
        rows.append(("Stashes", str(status.stash_count)))
    if status.error:
        rows.append(("Status error", status.error))
    if repo.has_error:
        rows.append(("Last error", repo.last_error))
    if repo.command_logs:
        last = repo.command_logs[-1]
        outcome = "ok" if last.success else "failed"
        rows.append((
            "Last command",
            f"git {last.command} {outcome} at {last.timestamp:%H:%M:%S} ({last.duration_ms} ms)",
        ))
    return rows


class RepoInfoDialog(ModalScreen):
    """Read-only repository details."""

    BINDINGS = [
        Binding("escape", "close", "Close"),
        Binding("enter", "close", "Close"),
        Binding("i", "close", "Close"),
        Binding("q", "close", "Close"),
    ]

    def __init__(self, repo: Repository) -> None:
        super().__init__()
        self._repo = repo

    def compose(self) -> ComposeResult:
        width = max(len(label) for label, _ in describe_repo(self._repo))
        lines = [f"[bold]{escape(self._repo.display_name)}[/bold]\n"]
        for label, value in describe_repo(self._repo):
            lines.append(f"[cyan]{label.ljust(width)}[/cyan]  {escape(value)}")
        lines.append("\n[dim]Press Enter or Escape to close[/dim]")

        with Container(id="info-modal", classes="modal"):
            yield Static("\n".join(lines), id="info-content")

    def action_close(self) -> None:
        self.dismiss()
