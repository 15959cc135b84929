"""Per-run temporary directories."""
from __future__ import annotations

import logging
import shutil
import tempfile
import time
import uuid
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

STALE_SESSION_AGE = 24 * 60 * 60


class TempFileSession:
    """A private directory that holds one run's temp files."""

    def __init__(self, directory: Path):
        self._directory = directory
        self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._directory

    def get_temp_file_path(self, suffix: str = ".tmp") -> Path:
        """A fresh, not yet existing path inside the session."""
        return self._directory / f"{uuid.uuid4().hex}{suffix}"

    def close(self) -> None:
        shutil.rmtree(self._directory, ignore_errors=True)

    def __enter__(self) -> "TempFileSession":
        return self

    def __exit__(self, *args) -> None:
        self.close()


class TempFileService:
    """Creates sessions below `<base>/musicsync`."""

    def __init__(self, base_dir: Optional[Path] = None):
        self._root = (base_dir or Path(tempfile.gettempdir())) / "musicsync"

    @property
    def root(self) -> Path:
        return self._root

    def create_session(self) -> TempFileSession:
        return TempFileSession(self._root / uuid.uuid4().hex)

    def cleanup_stale(self, max_age: float = STALE_SESSION_AGE) -> int:
        """Remove session directories left behind by crashed runs.

        Returns:
            Number of removed sessions.
        """
        if not self._root.is_dir():
            return 0

        cutoff = time.time() - max_age
        removed = 0
        for session in self._root.iterdir():
            try:
                if session.is_dir() and session.stat().st_mtime < cutoff:
                    shutil.rmtree(session)
                    removed += 1
            except OSError as e:
                logger.warning("Could not remove stale temp directory %s: %s", session, e)
        return removed
