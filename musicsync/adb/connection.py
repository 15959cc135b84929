"""Socket wrapper with exact reads and cooperative cancellation."""
from __future__ import annotations

import select
import socket
import struct
from typing import Optional

from ..core.cancellation import CancellationToken
from ..core.errors import AdbProtocolError, AdbTransportError

# how often a blocked read re-checks the cancellation token
POLL_INTERVAL = 0.25


class AdbConnection:
    """One TCP connection to the adb server.

    A connection serves exactly one logical operation at a time; the
    sync sub-protocol cannot multiplex requests.
    """

    def __init__(self, sock: socket.socket, cancel: Optional[CancellationToken] = None):
        self._sock = sock
        self._cancel = cancel

    @classmethod
    def open(
        cls,
        host: str,
        port: int,
        cancel: Optional[CancellationToken] = None,
    ) -> "AdbConnection":
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            sock = socket.create_connection((host, port))
        except OSError as e:
            raise AdbTransportError(f"Cannot connect to adb server at {host}:{port}: {e}") from e
        return cls(sock, cancel)

    def send(self, data: bytes) -> None:
        try:
            self._sock.sendall(data)
        except OSError as e:
            raise AdbTransportError(f"Send failed: {e}") from e

    def read_exact(self, length: int) -> bytes:
        """Read exactly `length` bytes, or raise AdbTransportError on EOF."""
        chunks = []
        remaining = length
        while remaining > 0:
            self._wait_readable()
            try:
                chunk = self._sock.recv(remaining)
            except OSError as e:
                raise AdbTransportError(f"Receive failed: {e}") from e
            if not chunk:
                raise AdbTransportError(
                    f"Connection closed by adb server ({length - remaining}/{length} bytes read)"
                )
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def _wait_readable(self) -> None:
        while True:
            if self._cancel is not None:
                self._cancel.raise_if_cancelled()
            try:
                readable, _, _ = select.select([self._sock], [], [], POLL_INTERVAL)
            except (OSError, ValueError) as e:
                raise AdbTransportError(f"Connection unusable: {e}") from e
            if readable:
                return

    # --- Framing helpers ---

    def read_token(self) -> str:
        """Read a 4-byte ASCII status/request token."""
        raw = self.read_exact(4)
        try:
            return raw.decode("ascii")
        except UnicodeDecodeError as e:
            raise AdbProtocolError(f"Invalid response type {raw!r}") from e

    def read_hex_length(self) -> int:
        raw = self.read_exact(4)
        try:
            return int(raw.decode("ascii"), 16)
        except (UnicodeDecodeError, ValueError) as e:
            raise AdbProtocolError(f"Invalid length prefix {raw!r}") from e

    def read_hex_string(self) -> str:
        """Read a 4-hex-digit length followed by that many bytes of text."""
        length = self.read_hex_length()
        return self.read_exact(length).decode("utf-8", errors="replace")

    def read_uint32(self) -> int:
        return struct.unpack("<I", self.read_exact(4))[0]

    def close(self) -> None:
        try:
            self._sock.close()
        except OSError:
            pass

    def __enter__(self) -> "AdbConnection":
        return self

    def __exit__(self, *args) -> None:
        self.close()
