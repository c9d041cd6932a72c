"""Console output helpers shared by the CLI and error reporting."""

import sys
from typing import Optional

from rich.console import Console
from rich.markup import escape

console = Console(highlight=False, soft_wrap=True)
err_console = Console(stderr=True, highlight=False, soft_wrap=True)


def info(message: str) -> None:
    """Print an informational message."""
    console.print(escape(message))


def success(message: str) -> None:
    """Print a success message in green."""
    console.print(f"[green]{escape(message)}[/green]")


def warning(message: str) -> None:
    """Print a warning message in yellow on stderr."""
    err_console.print(f"[yellow]{escape(message)}[/yellow]")


def error(message: str) -> None:
    """Print an error message in red on stderr."""
    err_console.print(f"[bold red]{escape(message)}[/bold red]")


def hint(message: str) -> None:
    """Print a dimmed follow-up hint."""
    console.print(f"[dim]{escape(message)}[/dim]")


def passthrough(output: Optional[str]) -> None:
    """Write git's diagnostic output to stderr exactly as received."""
    if not output:
        return
    sys.stderr.write(output)
    if not output.endswith("\n"):
        sys.stderr.write("\n")
    sys.stderr.flush()
