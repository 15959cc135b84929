"""Rich-based progress reporter implementation."""
from __future__ import annotations

import logging
import sys
import threading
import time
from collections import deque
from typing import Iterable, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    ProgressColumn,
    SpinnerColumn,
    Task,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table
from rich.text import Text

from ..core.models import SyncStats


class FilesPerSecondColumn(ProgressColumn):
    """Renders files per second as a rolling average."""

    def __init__(self, window_size: int = 10):
        """Initialize with rolling window size.

        Args:
            window_size: Number of samples for rolling average.
        """
        super().__init__()
        self._samples: deque[tuple[float, int]] = deque(maxlen=window_size)
        self._last_completed = 0
        self._start_time: Optional[float] = None

    def render(self, task: Task) -> Text:
        completed = int(task.completed)
        now = time.time()

        if self._start_time is None:
            self._start_time = now
            self._last_completed = completed
            return Text("-- f/s", style="magenta")

        if completed > self._last_completed:
            self._samples.append((now, completed))
            self._last_completed = completed

        if len(self._samples) >= 2:
            oldest_time, oldest_completed = self._samples[0]
            newest_time, newest_completed = self._samples[-1]
            if newest_time > oldest_time:
                speed = (newest_completed - oldest_completed) / (newest_time - oldest_time)
                return Text(f"{speed:.1f} f/s", style="magenta")

        elapsed = now - self._start_time
        if elapsed > 0 and completed > 0:
            return Text(f"{completed / elapsed:.1f} f/s", style="magenta")

        return Text("-- f/s", style="magenta")


class RichProgressReporter:
    """Progress reporter using Rich for terminal output.

    Implements the ProgressReporter protocol. Pipeline workers call into
    the reporter from several threads; Rich's console and progress are
    thread-safe, the phase bookkeeping here is guarded by a lock.
    """

    def __init__(
        self,
        verbose: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
    ):
        """Initialize the reporter.

        Args:
            verbose: Show debug messages (per-file stage transitions).
            quiet: Suppress all non-essential output.
            console: Console to write to (default: stderr).
        """
        self._console = console or Console(stderr=True)
        self._verbose = verbose
        self._quiet = quiet
        self._lock = threading.Lock()
        self._progress: Optional[Progress] = None
        self._current_task_id: Optional[TaskID] = None

    @property
    def console(self) -> Console:
        return self._console

    # --- Phase Management ---

    def start_phase(self, name: str, total: int) -> None:
        """Start a new processing phase with progress bar."""
        if self._quiet:
            return

        with self._lock:
            if self._progress:
                self._progress.stop()
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(bar_width=40),
                MofNCompleteColumn(),
                TextColumn("[cyan]•"),
                FilesPerSecondColumn(),
                TextColumn("[cyan]•"),
                TimeElapsedColumn(),
                TextColumn("[cyan]•"),
                TimeRemainingColumn(),
                console=self._console,
                transient=False,
            )
            self._progress.start()
            self._current_task_id = self._progress.add_task(name, total=total)

    def advance_phase(self, amount: int = 1) -> None:
        with self._lock:
            if self._progress and self._current_task_id is not None:
                self._progress.advance(self._current_task_id, amount)

    def end_phase(self) -> None:
        with self._lock:
            if self._progress:
                self._progress.stop()
                self._progress = None
                self._current_task_id = None

    # --- Logging Methods ---

    def info(self, message: str) -> None:
        if not self._quiet:
            self._console.print(f"[blue]ℹ[/blue] {escape(message)}", highlight=False)

    def success(self, message: str) -> None:
        if not self._quiet:
            self._console.print(f"[green]✓[/green] {escape(message)}", highlight=False)

    def warning(self, message: str) -> None:
        self._console.print(f"[yellow]⚠[/yellow] {escape(message)}", highlight=False)

    def error(self, message: str) -> None:
        self._console.print(f"[red]✗[/red] {escape(message)}", style="red", highlight=False)

    def debug(self, message: str) -> None:
        """Log a debug message (only in verbose mode)."""
        if self._verbose:
            self._console.print(f"[dim]  {escape(message)}[/dim]", highlight=False)

    # --- Specialized Output ---

    def print_header(self, title: str) -> None:
        if self._quiet:
            return
        self._console.print(Panel(Text(title, style="bold cyan"), border_style="cyan"))

    def print_config(self, config_items: dict) -> None:
        """Print configuration as a table."""
        if self._quiet:
            return

        table = Table(title="Configuration", show_header=True, header_style="bold")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="white")
        for key, value in config_items.items():
            table.add_row(key, str(value))
        self._console.print(table)

    def print_stats(self, stats: SyncStats) -> None:
        """Print the run summary."""
        if self._quiet:
            return

        table = Table(title="Sync Complete", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Count", style="green", justify="right")

        table.add_row("Source Files", str(stats.total_files))
        table.add_row("Unchanged", str(stats.kept))
        table.add_row("Written", str(stats.written))
        table.add_row("Deleted Files", str(stats.deleted_files))
        if stats.deleted_directories > 0:
            table.add_row("Deleted Directories", str(stats.deleted_directories))

        if stats.elapsed_seconds > 0:
            rate = stats.total_files / stats.elapsed_seconds
            table.add_row("", "")
            table.add_row("Time Elapsed", f"{stats.elapsed_seconds:.1f}s")
            table.add_row("Processing Rate", f"{rate:.1f} files/sec")

        self._console.print(table)

    def print_devices(self, devices: Iterable[tuple[str, str]]) -> None:
        """Print (serial, state) pairs reported by the adb server."""
        table = Table(title="ADB Devices", show_header=True, header_style="bold")
        table.add_column("Serial", style="cyan")
        table.add_column("State", style="white")
        for serial, state in devices:
            table.add_row(serial, state)
        self._console.print(table)

    # --- Context Managers ---

    def __enter__(self) -> "RichProgressReporter":
        return self

    def __exit__(self, *args) -> None:
        self.end_phase()


class QuietProgressReporter:
    """Minimal progress reporter that only shows errors."""

    def start_phase(self, name: str, total: int) -> None:
        pass

    def advance_phase(self, amount: int = 1) -> None:
        pass

    def end_phase(self) -> None:
        pass

    def info(self, message: str) -> None:
        pass

    def success(self, message: str) -> None:
        pass

    def warning(self, message: str) -> None:
        print(f"WARNING: {message}", file=sys.stderr)

    def error(self, message: str) -> None:
        print(f"ERROR: {message}", file=sys.stderr)

    def debug(self, message: str) -> None:
        pass

    def print_header(self, title: str) -> None:
        pass

    def print_config(self, config_items: dict) -> None:
        pass

    def print_stats(self, stats: SyncStats) -> None:
        pass

    def print_devices(self, devices: Iterable[tuple[str, str]]) -> None:
        for serial, state in devices:
            print(f"{serial}\t{state}")

    def __enter__(self) -> "QuietProgressReporter":
        return self

    def __exit__(self, *args) -> None:
        pass


def configure_logging(verbosity: int = 0, console: Optional[Console] = None) -> None:
    """Route stdlib logging through Rich.

    WARNING by default, INFO with one -v, DEBUG with two or more.
    """
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing, RichHandler):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
