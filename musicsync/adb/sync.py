"""Client for the adb sync sub-protocol (file stat, list and push).

Every message starts with an 8-byte header: a 4-byte ASCII id followed
by a little-endian 32-bit length or argument.
"""
from __future__ import annotations

import struct
from datetime import datetime, timezone
from typing import BinaryIO, Optional

from ..core.cancellation import CancellationToken
from ..core.errors import AdbProtocolError, AdbRemoteError
from .connection import AdbConnection
from .stat import StatEntry, UnixFileMode

# SYNC_DATA_MAX in adb
MAX_CHUNK_SIZE = 64 * 1024

_STAT_BODY = struct.Struct("<III")


class AdbSyncClient:
    """Sync session on a connection that already ran `host:transport` and `sync:`.

    Not thread-safe: one operation at a time per instance.
    """

    def __init__(self, connection: AdbConnection):
        self._conn = connection

    def stat(self, path: str) -> StatEntry:
        """Stat a remote path. The returned entry has mode 0 if it does not exist."""
        self._send_request_with_path("STAT", path)
        response = self._read_response()
        if response != "STAT":
            raise AdbProtocolError(f"Invalid response type {response!r}")
        mode, size, mtime = self._read_stat_body()
        return StatEntry.from_wire(path, mode, size, mtime)

    def list(self, path: str) -> list[StatEntry]:
        """List a remote directory. Entry paths are bare names."""
        self._send_request_with_path("LIST", path)
        entries = []
        while True:
            response = self._read_response()
            if response == "DONE":
                # DONE carries a full, meaningless stat body
                self._conn.read_exact(16)
                return entries
            if response != "DENT":
                raise AdbProtocolError(f"Invalid response type {response!r}")
            mode, size, mtime = self._read_stat_body()
            name = self._read_string()
            entries.append(StatEntry.from_wire(name, mode, size, mtime))

    def push(
        self,
        path: str,
        content: BinaryIO,
        modified_at: datetime,
        permissions: int = UnixFileMode.OWNER_READ | UnixFileMode.OWNER_WRITE,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        """Upload `content` to `path` with the given permissions and mtime.

        Cancellation is checked between chunks; a cancelled push leaves
        the connection unusable.
        """
        mode = int(permissions) & int(UnixFileMode.PERMISSIONS_MASK)
        self._send_request_with_path("SEND", f"{path},0{mode:o}")

        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()
            chunk = content.read(MAX_CHUNK_SIZE)
            if not chunk:
                break
            self._send_header("DATA", len(chunk))
            self._conn.send(chunk)

        self._send_header("DONE", _unix_seconds(modified_at))
        # the server acknowledges twice: a status token, then a raw word
        self._read_response()
        self._conn.read_uint32()

    # --- Framing ---

    def _send_header(self, request: str, length: int) -> None:
        self._conn.send(request.encode("ascii") + struct.pack("<I", length & 0xFFFFFFFF))

    def _send_request_with_path(self, request: str, path: str) -> None:
        payload = path.encode("utf-8")
        self._send_header(request, len(payload))
        self._conn.send(payload)

    def _read_response(self) -> str:
        response = self._conn.read_token()
        if response == "FAIL":
            raise AdbRemoteError(self._read_string())
        return response

    def _read_stat_body(self) -> tuple[int, int, int]:
        return _STAT_BODY.unpack(self._conn.read_exact(_STAT_BODY.size))

    def _read_string(self) -> str:
        length = self._conn.read_uint32()
        return self._conn.read_exact(length).decode("utf-8", errors="replace")

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "AdbSyncClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()


def _unix_seconds(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())
