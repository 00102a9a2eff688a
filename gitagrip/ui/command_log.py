"""Per-repository log of executed git commands."""

from rich.text import Text
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Static

from gitagrip.models.repository import CommandLog, Repository

_MAX_OUTPUT_LINES = 8


def render_entry(entry: CommandLog) -> Text:
    """Header line plus the first lines of output or error."""
    text = Text()
    if entry.success:
        text.append("✓ ", style="green")
    else:
        text.append("✗ ", style="bold red")
    text.append(f"git {entry.command}", style="bold #60a5fa")
    text.append(f"  {entry.timestamp:%H:%M:%S}  {entry.duration_ms} ms", style="dim")

    body = entry.output if entry.success else (entry.error or entry.output)
    lines = body.strip().splitlines()
    for line in lines[:_MAX_OUTPUT_LINES]:
        text.append("\n    ")
        text.append(line, style="" if entry.success else "red")
    if len(lines) > _MAX_OUTPUT_LINES:
        text.append(f"\n    ... {len(lines) - _MAX_OUTPUT_LINES} more lines", style="dim")
    return text


class CommandLogScreen(ModalScreen):
    """Most recent commands run against one repository, newest first."""

    BINDINGS = [
        Binding("escape", "close", "Close"),
        Binding("q", "close", "Close"),
        Binding("O", "close", "Close"),
    ]

    def __init__(self, repo: Repository) -> None:
        super().__init__()
        self._repo = repo

    def compose(self) -> ComposeResult:
        with Container(id="command-log-modal", classes="modal"):
            yield Static(
                Text(f"Commands: {self._repo.display_name}", style="bold"),
                id="command-log-title",
            )
            with VerticalScroll(id="command-log-entries"):
                if not self._repo.command_logs:
                    yield Static(Text("No commands yet", style="dim italic"))
                for entry in reversed(self._repo.command_logs):
                    yield Static(render_entry(entry), classes="command-log-entry")
            yield Static("[dim]Press q or Escape to close[/dim]")

    def action_close(self) -> None:
        self.dismiss()
