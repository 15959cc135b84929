"""Source library scanning service."""
from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from ..core.cancellation import CancellationToken
from ..core.models import SourceFileInfo
from ..text.path_matcher import PathMatcher
from ..text.path_utils import join_path


class SourceScanner:
    """Enumerates the music files below a source directory.

    Yields SourceFileInfo objects with '/'-separated relative paths.
    Excluded directories are not descended into.
    """

    def __init__(
        self,
        root: Path,
        extensions: list[str],
        exclude: Optional[list[str]] = None,
        matcher: Optional[PathMatcher] = None,
        follow_symlinks: bool = False,
    ):
        """Initialize the scanner.

        Args:
            root: Source directory.
            extensions: Lowercase extensions with leading dot.
            exclude: Globs matched case-insensitively against relative paths.
            matcher: Glob matcher (shared with the converter for overrides).
            follow_symlinks: Whether to descend into symlinked directories.
        """
        self._root = root
        self._extensions = frozenset(ext.lower() for ext in extensions)
        self._exclude = list(exclude or [])
        self._matcher = matcher or PathMatcher()
        self._follow_symlinks = follow_symlinks

    def _is_excluded(self, relative_path: str) -> bool:
        return self._matcher.matches_any(self._exclude, relative_path, case_sensitive=False)

    def scan(self, cancel: Optional[CancellationToken] = None) -> Iterator[SourceFileInfo]:
        yield from self._scan_directory(self._root, "", cancel)

    def _scan_directory(
        self,
        directory: Path,
        relative_dir: str,
        cancel: Optional[CancellationToken],
    ) -> Iterator[SourceFileInfo]:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except PermissionError:
            return

        for entry in entries:
            if cancel is not None:
                cancel.raise_if_cancelled()

            relative_path = join_path(relative_dir, entry.name)
            if self._is_excluded(relative_path):
                continue

            if entry.is_dir(follow_symlinks=self._follow_symlinks):
                yield from self._scan_directory(Path(entry.path), relative_path, cancel)
            elif entry.is_file() and os.path.splitext(entry.name)[1].lower() in self._extensions:
                yield SourceFileInfo(
                    relative_path=relative_path,
                    modified_at=datetime.fromtimestamp(entry.stat().st_mtime, tz=timezone.utc),
                    absolute_path=Path(entry.path),
                )
