"""Terminal renderer built on rich."""

from typing import Callable, Sequence

from rich.console import Console
from rich.table import Table
from rich.text import Text

from meow import __version__

NOTICE_STYLES = {
    "ok": "green",
    "info": "bright_black",
    "stats": "yellow",
    "warning": "magenta",
    "error": "bold red",
}


class ConsoleRenderer:
    """Streams deltas to the console and shows status, notices and tables.

    Status lines are drawn only while waiting for the first byte of a
    response so they never interleave with streamed text.
    """

    def __init__(
        self,
        console: Console | None = None,
        input_source: Callable[[], list[str]] | None = None,
    ):
        self.console = console or Console(highlight=False)
        self._input_source = input_source
        self._streaming = False
        self._status_shown = False
        self._ends_with_newline = True

    # Scheduler-facing interface

    def status(self, text: str, ticks: int, elapsed: float) -> None:
        if self._streaming or not self.console.is_terminal:
            return
        label = f"[meow] {text} {elapsed:.1f}s" if text else f"[meow] {elapsed:.1f}s"
        self.console.file.write("\r\x1b[2K" + label)
        self.console.file.flush()
        self._status_shown = True

    def delta(self, text: str, final: bool) -> None:
        if text:
            self._clear_status()
            self._streaming = True
            self.console.print(text, end="", markup=False, highlight=False, soft_wrap=True)
            self._ends_with_newline = text.endswith("\n")
        if final:
            self._clear_status()
            if self._streaming and not self._ends_with_newline:
                self.console.print()
            self._streaming = False
            self._ends_with_newline = True

    def pull_input(self) -> list[str]:
        if self._input_source is None:
            return []
        return self._input_source()

    def notice(self, text: str, level: str = "info") -> None:
        self._clear_status()
        self.console.print(Text(f"     --- {text}", style=NOTICE_STYLES.get(level, "")))

    def _clear_status(self) -> None:
        if self._status_shown:
            self.console.file.write("\r\x1b[2K")
            self.console.file.flush()
            self._status_shown = False

    # Command-facing helpers

    def print_welcome(self, model: str, provider: str) -> None:
        self.console.print(f"[bold]=== Meow v{__version__} ===[/bold]")
        self.console.print(f"Model: {model} via {provider}")
        self.console.print("Type '/help' for commands. Ctrl+C cancels a request; Ctrl+C when idle quits.\n")

    def prompt(self) -> None:
        self.console.print("[bold cyan]>[/bold cyan] ", end="")

    def info(self, text: str) -> None:
        self.console.print(text, markup=False, highlight=False)

    def error(self, text: str) -> None:
        self.console.print(Text(text, style="bold red"))

    def table(self, title: str, columns: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
        table = Table(title=title)
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*row)
        self.console.print(table)
