"""Minimal adb server client: host commands, shell and the sync sub-protocol."""
from .client import AdbClient, AdbDevice, ShellResult, parse_devices
from .connection import AdbConnection
from .stat import StatEntry, UnixFileMode
from .sync import AdbSyncClient

__all__ = [
    "AdbClient",
    "AdbDevice",
    "AdbConnection",
    "AdbSyncClient",
    "ShellResult",
    "StatEntry",
    "UnixFileMode",
    "parse_devices",
]
