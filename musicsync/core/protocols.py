"""Protocol definitions (interfaces) for dependency injection."""
from __future__ import annotations

from abc import abstractmethod
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Iterable, Optional, Protocol

from .cancellation import CancellationToken
from .models import ConversionResult, SyncStats, SyncTargetFileInfo


class SyncTarget(Protocol):
    """Storage backend the sync pipeline writes to.

    Implementations:
    - PhysicalSyncTarget: a local (or mounted) directory
    - AdbSyncTarget: an Android device reached through the adb server

    All paths are relative to the target root and use '/' as separator.
    """

    @abstractmethod
    def stat(self, path: str, cancel: Optional[CancellationToken] = None) -> Optional[SyncTargetFileInfo]:
        """Return the entry at `path`, or None if nothing exists there."""
        ...

    @abstractmethod
    def list_directory(
        self, path: str, cancel: Optional[CancellationToken] = None
    ) -> Optional[list[SyncTargetFileInfo]]:
        """Return the children of `path`, or None if it is not a directory."""
        ...

    @abstractmethod
    def is_case_sensitive(self) -> bool:
        """Whether names differing only in case are distinct. Computed once."""
        ...

    @abstractmethod
    def is_hidden(self, path: str, recurse: bool) -> bool:
        """Whether the entry (or, with `recurse`, any of its ancestors) is hidden."""
        ...

    @abstractmethod
    def write_file(
        self,
        path: str,
        content: BinaryIO,
        modified_at: Optional[datetime] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        """Create or replace a file. Existing files are deleted first."""
        ...

    @abstractmethod
    def delete(self, files: Iterable[SyncTargetFileInfo], cancel: Optional[CancellationToken] = None) -> None:
        """Delete files and (empty) directories."""
        ...

    @abstractmethod
    def complete(self, cancel: Optional[CancellationToken] = None) -> None:
        """Post-run hook, called once after cleanup."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release connections and other resources."""
        ...


class MediaConverter(Protocol):
    """Interface for the external transcoding collaborator."""

    @abstractmethod
    def convert(
        self,
        source_path: Path,
        original_path: str,
        album_art_path: Optional[Path],
        cancel: Optional[CancellationToken] = None,
    ) -> ConversionResult:
        """Remux or transcode `source_path` into a new temp file.

        `original_path` is the source-relative path, used to pick the
        file's original extension and any per-path format overrides.
        """
        ...


class ProgressReporter(Protocol):
    """Interface for progress reporting and user-visible messages.

    Every stage receives the reporter by reference; nothing in the core
    writes to the console directly.
    """

    @abstractmethod
    def start_phase(self, name: str, total: int) -> None:
        """Start a new processing phase."""
        ...

    @abstractmethod
    def advance_phase(self, amount: int = 1) -> None:
        """Advance the current phase by amount."""
        ...

    @abstractmethod
    def end_phase(self) -> None:
        """End the current phase."""
        ...

    @abstractmethod
    def info(self, message: str) -> None:
        ...

    @abstractmethod
    def success(self, message: str) -> None:
        ...

    @abstractmethod
    def warning(self, message: str) -> None:
        ...

    @abstractmethod
    def error(self, message: str) -> None:
        ...

    @abstractmethod
    def debug(self, message: str) -> None:
        ...

    @abstractmethod
    def print_stats(self, stats: SyncStats) -> None:
        """Print the run summary."""
        ...
