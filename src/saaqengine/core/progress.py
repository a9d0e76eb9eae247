"""User-facing progress feedback for CLI operations.

Design principles:
- Single line updates, no spam
- Graceful degradation in non-TTY (CI, pipes)
- Suppress structlog console output during live displays

Suppression is process-wide: a queued import logs from the worker thread
while the command's spinner runs on the main thread.

Usage::

    from saaqengine.core.progress import row_counter, spinner, status

    with spinner(f"Importing {path.name}") as live:
        engine.import_batch(scope, year, rows, progress=row_counter(live, f"Importing {path.name}"))
    status("Import complete", style="success")  # ✓ Import complete
"""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from rich.console import Console

if TYPE_CHECKING:
    from rich.status import Status

_console = Console(stderr=True)

_STYLES = {
    "success": "[green]✓[/green] ",
    "error": "[red]✗[/red] ",
    "warning": "[yellow]![/yellow] ",
    "info": "  ",
    "none": "",
}

_live_lock = threading.Lock()
_live_displays = 0


def is_console_suppressed() -> bool:
    """True while any live display is running, on any thread."""
    return _live_displays > 0


@contextmanager
def suppress_console_logs() -> Iterator[None]:
    """Suppress structlog console output while a live display runs.

    File handlers keep receiving records.
    """
    global _live_displays
    with _live_lock:
        _live_displays += 1
    try:
        yield
    finally:
        with _live_lock:
            _live_displays -= 1


def _is_tty() -> bool:
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()


def get_console() -> Console:
    """Get the shared Rich console instance."""
    return _console


def status(message: str, *, style: str = "info", indent: int = 0) -> None:
    """Print a styled status message to stderr."""
    prefix = _STYLES.get(style, "")
    padding = " " * indent
    _console.print(f"{padding}{prefix}{message}", highlight=False)


def pluralize(count: int, singular: str, plural: str | None = None) -> str:
    """Return "1 record" / "3 records" style counts."""
    if plural is None:
        plural = singular + "s"
    word = singular if count == 1 else plural
    return f"{count:,} {word}"


class Spinner:
    """Handle yielded by spinner(). Updates are dropped without a TTY."""

    def __init__(self, display: Status | None, padding: str) -> None:
        self._display = display
        self._padding = padding

    def update(self, message: str) -> None:
        if self._display is not None:
            self._display.update(f"{self._padding}[cyan]{message}[/cyan]")


@contextmanager
def spinner(message: str, *, indent: int = 0) -> Iterator[Spinner]:
    """Spinner with structlog console suppression."""
    padding = " " * indent
    if not _is_tty():
        _console.print(f"{padding}{message}...")
        yield Spinner(None, padding)
        return
    with (
        suppress_console_logs(),
        _console.status(f"{padding}[cyan]{message}[/cyan]", spinner="dots") as display,
    ):
        yield Spinner(display, padding)


def row_counter(live: Spinner, label: str) -> Callable[[int], None]:
    """Import progress callback showing the running row count."""

    def report(rows: int) -> None:
        live.update(f"{label} ({pluralize(rows, 'row')})")

    return report
