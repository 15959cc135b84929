"""Exception hierarchy shared by all layers."""
from __future__ import annotations


class MusicSyncError(Exception):
    """Base class for all errors raised by musicsync."""


class ConfigError(MusicSyncError):
    """Configuration could not be loaded or failed validation."""


class PathError(MusicSyncError, ValueError):
    """A relative path could not be resolved (e.g. '..' above the root)."""


class AdbError(MusicSyncError):
    """Base class for device bridge failures."""


class AdbProtocolError(AdbError):
    """The server sent something the protocol does not allow here."""


class AdbRemoteError(AdbError):
    """The server or device answered with a well-formed failure."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AdbTransportError(AdbError):
    """The connection to the server failed or closed mid-frame."""


class ConversionError(MusicSyncError):
    """The external transcoder failed or produced unusable output."""


class OperationCancelled(MusicSyncError):
    """Raised when a cancellation token fires during a blocking operation."""
