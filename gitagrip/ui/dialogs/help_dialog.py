"""Keyboard reference."""

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Static

HELP_TEXT = """[bold cyan]═══ gitagrip ═══[/bold cyan]

[bold]Navigation[/bold]
  [yellow]j/k ↑/↓[/yellow]    Move cursor
  [yellow]g/G[/yellow]        Top / bottom
  [yellow]PgUp/PgDn[/yellow]  Page up / down
  [yellow][ ][/yellow]        Previous / next group
  [yellow]h/l ←/→[/yellow]    Collapse / expand group
  [yellow]z[/yellow]          Toggle group

[bold]Selection[/bold]
  [yellow]Space[/yellow]      Select repo (or whole group on a header)
  [yellow]a[/yellow]          Select / deselect all
  [yellow]Esc[/yellow]        Clear selection and search

[bold]Git[/bold]
  [yellow]r[/yellow]          Refresh status
  [yellow]Ctrl+R[/yellow]     Refresh all
  [yellow]f[/yellow]          Fetch
  [yellow]p[/yellow]          Pull
  [yellow]S[/yellow]          Rescan directory
  [yellow]Enter[/yellow]      Open lazygit (toggle on a group)
  [yellow]L[/yellow]          Log
  [yellow]D[/yellow]          Diff
  [yellow]i[/yellow]          Repository info
  [yellow]O[/yellow]          Command log

[bold]Search, filter and sort[/bold]
  [yellow]/[/yellow]          Search
  [yellow]n/N[/yellow]        Next / previous match
  [yellow]F[/yellow]          Filter (status:dirty, status:clean,
             status:ahead, status:behind, status:stash,
             status:error or text)
  [yellow]s[/yellow]          Choose sort order

[bold]Groups[/bold]
  [yellow]c[/yellow]          New group from selection
  [yellow]m[/yellow]          Move to group
  [yellow]x[/yellow]          Hide
  [yellow]R[/yellow]          Rename group
  [yellow]d[/yellow]          Delete group
  [yellow]J/K[/yellow]        Move group down / up

[bold]Other[/bold]
  [yellow]?[/yellow]          Show this help
  [yellow]q[/yellow]          Quit

[dim]Press Esc or Enter to close[/dim]"""


class HelpDialog(ModalScreen):
    BINDINGS = [
        Binding("escape", "close", "Close"),
        Binding("enter", "close", "Close"),
        Binding("question_mark", "close", "Close"),
        Binding("q", "close", "Close"),
    ]

    def compose(self) -> ComposeResult:
        with Container(id="help-modal", classes="modal"):
            with VerticalScroll():
                yield Static(HELP_TEXT, id="help-content")

    def action_close(self) -> None:
        self.dismiss()
