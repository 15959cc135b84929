"""Sync target backed by a local or mounted directory."""
from __future__ import annotations

import logging
import os
import stat as stat_module
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterable, Optional

from ..core.cancellation import CancellationToken
from ..core.models import SyncTargetFileInfo
from ..text.path_utils import get_path_stack, join_path

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024

_HIDDEN_ATTRIBUTES = (
    getattr(stat_module, "FILE_ATTRIBUTE_HIDDEN", 0x2) | getattr(stat_module, "FILE_ATTRIBUTE_SYSTEM", 0x4)
)


class PhysicalSyncTarget:
    """Writes into `root` on the local filesystem.

    Case sensitivity is probed once when the target is created, by
    creating a lowercase temp file and checking whether its uppercase
    twin resolves to it.
    """

    def __init__(self, root: Path):
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)
        self._case_sensitive = self._probe_case_sensitivity()
        logger.debug("Physical target %s (case sensitive: %s)", root, self._case_sensitive)

    @property
    def root(self) -> Path:
        return self._root

    def _physical_path(self, path: str) -> Path:
        stack = get_path_stack(path)
        return self._root.joinpath(*[s for s in stack if s])

    def _probe_case_sensitivity(self) -> bool:
        name = f".musicsync_case_probe_{uuid.uuid4().hex}.tmp"
        lower = self._root / name
        upper = self._root / name.upper()
        lower.touch()
        try:
            return not upper.exists()
        finally:
            lower.unlink(missing_ok=True)

    # --- Reads ---

    def stat(self, path: str, cancel: Optional[CancellationToken] = None) -> Optional[SyncTargetFileInfo]:
        try:
            st = self._physical_path(path).stat()
        except FileNotFoundError:
            return None
        return SyncTargetFileInfo(
            path=path,
            is_directory=stat_module.S_ISDIR(st.st_mode),
            last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )

    def list_directory(
        self, path: str, cancel: Optional[CancellationToken] = None
    ) -> Optional[list[SyncTargetFileInfo]]:
        directory = self._physical_path(path)
        if not directory.is_dir():
            return None

        entries = []
        with os.scandir(directory) as it:
            for entry in it:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                try:
                    st = entry.stat()
                except FileNotFoundError:
                    # removed between scandir and stat
                    continue
                entries.append(SyncTargetFileInfo(
                    path=join_path(path, entry.name),
                    is_directory=stat_module.S_ISDIR(st.st_mode),
                    last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                ))
        return entries

    def is_case_sensitive(self) -> bool:
        return self._case_sensitive

    def is_hidden(self, path: str, recurse: bool) -> bool:
        stack = [s for s in get_path_stack(path) if s]
        if not stack:
            return False

        # check the entry itself, then its ancestors when recursing
        candidates = range(len(stack), 0, -1) if recurse else [len(stack)]
        for depth in candidates:
            if stack[depth - 1].startswith("."):
                return True
            if sys.platform == "win32" and self._has_hidden_attribute(stack[:depth]):
                return True
        return False

    def _has_hidden_attribute(self, segments: list[str]) -> bool:
        try:
            attributes = self._root.joinpath(*segments).stat().st_file_attributes
        except (FileNotFoundError, AttributeError):
            return False
        return bool(attributes & _HIDDEN_ATTRIBUTES)

    # --- Writes ---

    def write_file(
        self,
        path: str,
        content: BinaryIO,
        modified_at: Optional[datetime] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        target = self._physical_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        # delete first so a case-only rename sticks on case-insensitive filesystems
        target.unlink(missing_ok=True)

        with open(target, "wb") as out:
            while True:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                chunk = content.read(COPY_CHUNK_SIZE)
                if not chunk:
                    break
                out.write(chunk)

        if modified_at is not None:
            timestamp = modified_at.timestamp()
            os.utime(target, (timestamp, timestamp))

    def delete(self, files: Iterable[SyncTargetFileInfo], cancel: Optional[CancellationToken] = None) -> None:
        for file in files:
            if cancel is not None:
                cancel.raise_if_cancelled()
            physical = self._physical_path(file.path)
            if file.is_directory:
                physical.rmdir()
                continue

            physical.unlink(missing_ok=True)
            if physical.exists():
                # Windows VFAT can map two differently normalized names to one file
                physical.unlink(missing_ok=True)
                logger.warning(
                    "Could not delete %s on the first try, probably a VFAT naming issue. "
                    "Run the sync again to fix this.",
                    physical,
                )

    def complete(self, cancel: Optional[CancellationToken] = None) -> None:
        logger.debug("Physical target %s complete", self._root)

    def close(self) -> None:
        pass
