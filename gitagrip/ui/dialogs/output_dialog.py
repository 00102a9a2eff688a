"""Scrollable dialog for command output such as log and diff."""

from rich.text import Text
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Static


class OutputDialog(ModalScreen):
    """Show ANSI-colored text when no pager is available."""

    BINDINGS = [
        Binding("escape", "close", "Close"),
        Binding("q", "close", "Close"),
        Binding("j", "scroll(1)", "Down", show=False),
        Binding("k", "scroll(-1)", "Up", show=False),
    ]

    def __init__(self, title: str, output: str) -> None:
        super().__init__()
        self.title_text = title
        self.output = output

    def compose(self) -> ComposeResult:
        body = Text.from_ansi(self.output) if self.output.strip() else Text("(no output)", style="dim")
        with Container(id="output-modal", classes="modal"):
            yield Static(Text(self.title_text, style="bold"), id="output-title")
            with VerticalScroll(id="output-scroll"):
                yield Static(body, id="output-content")
            yield Static("[dim]j/k to scroll, q or Escape to close[/dim]", id="output-hint")

    def action_scroll(self, lines: int) -> None:
        self.query_one("#output-scroll", VerticalScroll).scroll_relative(y=lines, animate=False)

    def action_close(self) -> None:
        self.dismiss()
