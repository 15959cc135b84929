"""File stat entries returned by the sync sub-protocol."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import IntFlag


class UnixFileMode(IntFlag):
    """POSIX st_mode bits (see inode(7))."""
    FILE_TYPE_MASK = 0o170000
    SOCKET = 0o140000
    SYMLINK = 0o120000
    REGULAR_FILE = 0o100000
    BLOCK_DEVICE = 0o060000
    DIRECTORY = 0o040000
    CHARACTER_DEVICE = 0o020000
    FIFO = 0o010000

    SET_UID = 0o4000
    SET_GID = 0o2000
    STICKY = 0o1000

    OWNER_READ = 0o400
    OWNER_WRITE = 0o200
    OWNER_EXECUTE = 0o100
    GROUP_READ = 0o040
    GROUP_WRITE = 0o020
    GROUP_EXECUTE = 0o010
    OTHERS_READ = 0o004
    OTHERS_WRITE = 0o002
    OTHERS_EXECUTE = 0o001

    PERMISSIONS_MASK = 0o777


@dataclass(frozen=True, slots=True)
class StatEntry:
    """One stat record: the path (or bare name for LIST entries), mode, size, mtime.

    A mode of 0 means the path does not exist.
    """
    path: str
    mode: int
    size: int
    modified_at: datetime

    @classmethod
    def from_wire(cls, path: str, mode: int, size: int, mtime: int) -> "StatEntry":
        return cls(path, mode, size, datetime.fromtimestamp(mtime, tz=timezone.utc))

    @property
    def exists(self) -> bool:
        return self.mode != 0

    @property
    def file_type(self) -> int:
        return self.mode & UnixFileMode.FILE_TYPE_MASK

    @property
    def is_directory(self) -> bool:
        return self.file_type == UnixFileMode.DIRECTORY

    @property
    def is_regular_file(self) -> bool:
        return self.file_type == UnixFileMode.REGULAR_FILE
