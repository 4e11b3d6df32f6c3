"""Rich console utilities for styled terminal output.

This module provides the Reporter, the output channel that every k0rdentd
component receives in its constructor, plus thin module-level helpers used
by the CLI glue.
"""

from collections.abc import Generator
from contextlib import contextmanager

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table
from rich.theme import Theme

# Custom theme with consistent colors
_THEME = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "red bold",
        "highlight": "cyan bold",
        "muted": "dim",
    }
)

# Shared console instance
console = Console(theme=_THEME)


def highlight(text: str) -> str:
    """Return text wrapped in highlight markup.

    Args:
        text: The text to highlight.

    Returns:
        Text wrapped in Rich markup for highlighting.

    """
    return f"[highlight]{text}[/highlight]"


class Reporter:
    """Styled output channel shared by all components of a run.

    A single Reporter is created by the CLI at process start and passed
    by reference into each component, so core code never writes to an
    ambient global.

    Attributes:
        console: The Rich console messages are written to.
        debug_enabled: Whether debug lines are shown.

    """

    def __init__(self, output: Console | None = None, *, debug: bool = False) -> None:
        self.console: Console = output if output is not None else console
        self.debug_enabled: bool = debug

    def info(self, message: str) -> None:
        """Print an informational message."""
        self.console.print(f"[info]ℹ[/info] {message}")

    def success(self, message: str) -> None:
        """Print a success message."""
        self.console.print(f"[success]✓[/success] {message}")

    def warning(self, message: str) -> None:
        """Print a warning message."""
        self.console.print(f"[warning]⚠[/warning] {message}")

    def error(self, message: str) -> None:
        """Print an error message."""
        self.console.print(f"[error]✗[/error] {message}")

    def action(self, message: str) -> None:
        """Print an action/progress message."""
        self.console.print(f"[info]→[/info] {message}")

    def step(self, message: str) -> None:
        """Print a sub-step message."""
        self.console.print(f"[muted]•[/muted] {message}")

    def debug(self, message: str) -> None:
        """Print a debug message when debug mode is on."""
        if self.debug_enabled:
            self.console.print(f"[muted]  {message}[/muted]")

    @contextmanager
    def spinner(self, message: str) -> Generator[None, None, None]:
        """Display a spinner while performing an operation.

        Args:
            message: The status message to display.

        Yields:
            None

        """
        with self.console.status(f"[info]{message}[/info]", spinner="dots"):
            yield

    def download_progress(self) -> Progress:
        """Create a progress bar configured for file downloads.

        Returns:
            A configured Progress instance for download operations.

        """
        return Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=self.console,
        )

    def task_progress(self) -> Progress:
        """Create a progress bar configured for batch processing.

        Returns:
            A configured Progress instance for batch operations.

        """
        return Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("[muted]{task.completed}/{task.total}[/muted]"),
            console=self.console,
        )

    def summary_panel(self, title: str, items: dict[str, str], *, border_style: str = "green") -> None:
        """Print a summary panel with key-value pairs.

        Args:
            title: Title for the panel.
            items: Dictionary of label -> value pairs to display.
            border_style: Rich style of the panel border.

        """
        table = Table.grid(padding=(0, 2))
        table.add_column(style="bold")
        table.add_column(style="cyan")

        for label, value in items.items():
            table.add_row(f"{label}:", value)

        self.console.print(Panel(table, title=f"[bold]{title}[/bold]", border_style=border_style))

    def newline(self) -> None:
        """Print an empty line."""
        self.console.print()


# Reporter used by the CLI glue before a run-scoped one exists
_default = Reporter(console)


def info(message: str) -> None:
    """Print an informational message on the shared console."""
    _default.info(message)


def success(message: str) -> None:
    """Print a success message on the shared console."""
    _default.success(message)


def warning(message: str) -> None:
    """Print a warning message on the shared console."""
    _default.warning(message)


def error(message: str) -> None:
    """Print an error message on the shared console."""
    _default.error(message)


def newline() -> None:
    """Print an empty line."""
    _default.newline()
