"""Domain models - immutable data classes."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Optional


class ActionKind(Enum):
    """What the compare stage decided for a source file."""
    KEEP = "keep"
    REPLACE = "replace"


@dataclass(frozen=True, slots=True)
class SourceFileInfo:
    """A file found in the source tree.

    `relative_path` always uses '/' as separator and is unique within a run.
    """
    relative_path: str
    modified_at: datetime
    absolute_path: Path

    @property
    def extension(self) -> str:
        return PurePosixPath(self.relative_path).suffix

    def open(self) -> BinaryIO:
        return self.absolute_path.open("rb")


@dataclass(frozen=True, slots=True)
class SyncTargetFileInfo:
    """Remote state of one target entry at the moment it was read."""
    path: str
    is_directory: bool
    last_modified: datetime

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name


@dataclass(frozen=True, slots=True)
class CompareResult:
    """Output of the compare stage."""
    source: SourceFileInfo
    action: ActionKind
    existing_target_path: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ConvertWorkItem:
    """Output of the read stage.

    For KEEP items `target_path` is the existing target file. For REPLACE
    items it is the sanitized target path without extension; the final
    extension is chosen by the converter.
    """
    source: SourceFileInfo
    action: ActionKind
    target_path: str
    source_temp_path: Optional[Path] = None
    album_art_path: Optional[Path] = None


@dataclass(frozen=True, slots=True)
class ConversionResult:
    """What the transcoder produced."""
    output_path: Path
    extension: str


@dataclass(frozen=True, slots=True)
class OutputFile:
    """A converted file waiting to be written to the target."""
    source: SourceFileInfo
    target_path: str
    content_path: Path
    modified_at: datetime


@dataclass(slots=True)
class SyncStats:
    """Mutable statistics for a sync run."""
    total_files: int = 0
    kept: int = 0
    written: int = 0
    deleted_files: int = 0
    deleted_directories: int = 0
    elapsed_seconds: float = 0.0

    def summary(self) -> dict[str, int]:
        return {
            "total": self.total_files,
            "kept": self.kept,
            "written": self.written,
            "deleted_files": self.deleted_files,
            "deleted_directories": self.deleted_directories,
        }
