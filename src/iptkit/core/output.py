"""Diagnostics for backend operations, rendered with Rich.

The library prints nothing at the default level. Warnings about the
detected backend always reach stderr. VERBOSE adds the backend summary and
skipped ensure-operations. DEBUG adds every command line and its failures.
"""

from enum import IntEnum
from typing import Any

from rich.console import Console as RichConsole
from rich.panel import Panel


class Verbosity(IntEnum):
    """Console levels, from silent to every backend invocation."""
    QUIET = 0
    NORMAL = 1
    VERBOSE = 2
    DEBUG = 3


class Console:
    """Verbosity-gated diagnostics on stdout, warnings on stderr."""

    def __init__(self) -> None:
        self.verbosity = Verbosity.NORMAL
        self.no_color = False
        self._out = RichConsole(highlight=False)
        self._err = RichConsole(stderr=True, highlight=False)

    def configure(self, verbosity: int = Verbosity.NORMAL, no_color: bool = False) -> None:
        """Set the level (clamped to QUIET..DEBUG) and color mode."""
        self.verbosity = Verbosity(max(Verbosity.QUIET, min(verbosity, Verbosity.DEBUG)))
        if no_color != self.no_color:
            self._out = RichConsole(highlight=False, no_color=no_color)
            self._err = RichConsole(stderr=True, highlight=False, no_color=no_color)
        self.no_color = no_color

    def _emit(self, level: Verbosity, text: str) -> None:
        if self.verbosity >= level:
            self._out.print(text)

    def warn(self, message: str) -> None:
        """Report a backend limitation, whatever the level."""
        self._err.print(f"[yellow][WARN][/yellow] {message}")

    def verbose(self, message: str) -> None:
        """Report a skipped or no-op operation."""
        self._emit(Verbosity.VERBOSE, f"[dim]{message}[/dim]")

    def debug(self, message: str) -> None:
        """Report a backend invocation or its failure."""
        self._emit(Verbosity.DEBUG, f"[cyan][DEBUG][/cyan] {message}")

    def summary(self, title: str, items: dict[str, Any]) -> None:
        """Show key/value facts in a panel at VERBOSE; booleans read Yes/No."""
        if self.verbosity < Verbosity.VERBOSE:
            return

        lines = []
        for key, value in items.items():
            if isinstance(value, bool):
                value = "[green]Yes[/green]" if value else "[red]No[/red]"
            lines.append(f"[bold]{key}:[/bold] {value}")
        self._out.print(Panel("\n".join(lines), title=title, border_style="blue"))


# Shared by every context unless one is given its own
console = Console()
