"""Removal of target files that no longer have a source, and of emptied directories."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from ..core.cancellation import CancellationToken
from ..core.models import SyncTargetFileInfo
from ..core.protocols import ProgressReporter, SyncTarget

logger = logging.getLogger(__name__)


class TargetCleaner:
    """Post-pipeline cleanup passes.

    Must only run once every write has finished: a file still being
    written would not be in the handled set yet and would be deleted.
    Hidden entries are never touched, and hidden directories are not
    descended into.
    """

    def __init__(self, target: SyncTarget, progress: Optional[ProgressReporter] = None):
        self._target = target
        self._progress = progress

    def delete_additional_files(
        self,
        is_handled: Callable[[str], bool],
        cancel: Optional[CancellationToken] = None,
    ) -> int:
        """Delete every non-hidden file below the root that `is_handled` rejects.

        Returns:
            Number of deleted files.
        """
        to_delete: list[SyncTargetFileInfo] = []
        self._collect_unhandled("", is_handled, to_delete, cancel)
        if to_delete:
            for file in to_delete:
                logger.debug("Deleting %s", file.path)
                if self._progress:
                    self._progress.debug(f"Delete {file.path}")
            self._target.delete(to_delete, cancel)
        return len(to_delete)

    def _collect_unhandled(
        self,
        directory: str,
        is_handled: Callable[[str], bool],
        to_delete: list[SyncTargetFileInfo],
        cancel: Optional[CancellationToken],
    ) -> None:
        for entry in self._target.list_directory(directory, cancel) or []:
            if cancel is not None:
                cancel.raise_if_cancelled()
            if self._target.is_hidden(entry.path, False):
                continue
            if entry.is_directory:
                self._collect_unhandled(entry.path, is_handled, to_delete, cancel)
            elif not is_handled(entry.path):
                to_delete.append(entry)

    def delete_empty_directories(self, cancel: Optional[CancellationToken] = None) -> int:
        """Delete empty, non-hidden directories bottom-up. The root is kept.

        Returns:
            Number of deleted directories.
        """
        return self._delete_empty("", cancel)[1]

    def _delete_empty(self, directory: str, cancel: Optional[CancellationToken]) -> tuple[bool, int]:
        """Returns (whether `directory` is now empty, directories deleted below it)."""
        entries = self._target.list_directory(directory, cancel) or []
        deleted = 0
        remaining = 0
        empty_children: list[SyncTargetFileInfo] = []

        for entry in entries:
            if cancel is not None:
                cancel.raise_if_cancelled()
            if not entry.is_directory or self._target.is_hidden(entry.path, False):
                remaining += 1
                continue
            child_empty, child_deleted = self._delete_empty(entry.path, cancel)
            deleted += child_deleted
            if child_empty:
                empty_children.append(entry)
            else:
                remaining += 1

        if empty_children:
            for child in empty_children:
                logger.debug("Deleting empty directory %s", child.path)
            self._target.delete(empty_children, cancel)
            deleted += len(empty_children)

        return remaining == 0, deleted
