"""Status output for sync runs."""

import threading
from typing import Optional

from rich.console import Console
from rich.markup import escape

STATUS_TAG = "s3_sync"


class OutputFormatter:
    """Prints tagged status lines to the console.

    Every line is prefixed with a right-aligned ``s3_sync`` tag. Calls are
    serialized so lines from worker threads never interleave.
    """

    def __init__(
        self,
        quiet: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        """Initialize output formatter.

        Args:
            quiet: Suppress info/success lines (warnings and errors still print)
            console: Console for regular output
            err_console: Console for warnings and errors
        """
        self.quiet = quiet
        self.console = console or Console(highlight=False)
        self.err_console = err_console or Console(stderr=True, highlight=False)
        self._lock = threading.Lock()

    def _say(self, console: Console, message: str, style: str = "") -> None:
        tag = f"[green]{STATUS_TAG.rjust(12)}[/green]"
        body = escape(message)
        if style:
            body = f"[{style}]{body}[/{style}]"
        with self._lock:
            console.print(f"{tag}  {body}")

    def info(self, message: str) -> None:
        if not self.quiet:
            self._say(self.console, message)

    def success(self, message: str) -> None:
        if not self.quiet:
            self._say(self.console, message, "bold green")

    def warning(self, message: str) -> None:
        self._say(self.err_console, message, "yellow")

    def error(self, message: str) -> None:
        self._say(self.err_console, message, "bold red")

    def action(self, verb: str, path: str, style: str, note: str = "") -> None:
        """Print a per-resource action line such as ``Creating index.html``."""
        if self.quiet:
            return
        tag = f"[green]{STATUS_TAG.rjust(12)}[/green]"
        line = f"{tag}  [{style}]{escape(verb)}[/{style}] {escape(path)}"
        if note:
            line += f" [white]{escape(note)}[/white]"
        with self._lock:
            self.console.print(line)

    def print(self, message: str = "") -> None:
        if not self.quiet:
            with self._lock:
                self.console.print(escape(message))
