"""Client for the adb server's host protocol.

Requests are a 4-digit hex length followed by the command text. Every
request is answered with `OKAY` or `FAIL`; `FAIL` carries a hex-length
framed message. Data-returning host commands (`host:version`,
`host:devices`) follow `OKAY` with the same framing.
"""
from __future__ import annotations

import logging
import re
import shlex
import struct
import subprocess
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence

from ..core.cancellation import CancellationToken
from ..core.errors import AdbProtocolError, AdbRemoteError
from .connection import AdbConnection
from .sync import AdbSyncClient

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5037

STATE_DEVICE = "device"

_DEVICE_LINE_RE = re.compile(r"^(?P<serial>[^\t\r\n]+)\t(?P<state>[^\t\r\n]+?)\s*$", re.MULTILINE)

# serials of wireless-debugging devices found via mDNS, e.g.
# adb-R58M123ABC-a1b2c3._adb-tls-connect._tcp.
_MDNS_SERIAL_RE = re.compile(r"adb-(?P<serial>\w+)-\w{6}\._adb-tls-connect\._tcp\.")

# shell protocol v2 packet ids
_SHELL_STDOUT = 1
_SHELL_STDERR = 2
_SHELL_EXIT = 3


@dataclass(frozen=True, slots=True)
class AdbDevice:
    """One `serial<TAB>state` record from the server."""
    serial: str
    state: str

    @property
    def is_ready(self) -> bool:
        return self.state == STATE_DEVICE

    def matches(self, requested: str) -> bool:
        """Exact serial, or the hardware serial embedded in an mDNS name."""
        if self.serial == requested:
            return True
        match = _MDNS_SERIAL_RE.search(self.serial)
        return match is not None and match.group("serial") == requested

    def __str__(self) -> str:
        return f"{self.serial}\t{self.state}"


@dataclass(frozen=True, slots=True)
class ShellResult:
    exit_code: int
    output: bytes

    @property
    def text(self) -> str:
        return self.output.decode("utf-8", errors="replace")


def parse_devices(payload: str) -> list[AdbDevice]:
    return [AdbDevice(m.group("serial"), m.group("state")) for m in _DEVICE_LINE_RE.finditer(payload)]


class AdbClient:
    """Talks to the local adb server.

    Each public method opens its own connection; nothing is shared
    between calls, so one client may be used from many threads.
    """

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT):
        self._host = host
        self._port = port

    @staticmethod
    def start_server(adb_path: str = "adb") -> bool:
        """Run `adb start-server`. Returns False if adb is not installed."""
        try:
            subprocess.run(
                [adb_path, "start-server"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
        except FileNotFoundError:
            logger.debug("adb executable not found, assuming the server is already running")
            return False
        return True

    def connect(self, cancel: Optional[CancellationToken] = None) -> AdbConnection:
        return AdbConnection.open(self._host, self._port, cancel)

    # --- Host commands ---

    def get_host_version(self, cancel: Optional[CancellationToken] = None) -> int:
        with self.connect(cancel) as conn:
            self.execute_command(conn, "host:version")
            value = conn.read_hex_string()
        try:
            return int(value, 16)
        except ValueError as e:
            raise AdbProtocolError(f"Invalid version string {value!r}") from e

    def get_devices(self, cancel: Optional[CancellationToken] = None) -> list[AdbDevice]:
        with self.connect(cancel) as conn:
            self.execute_command(conn, "host:devices")
            return parse_devices(conn.read_hex_string())

    def track_devices(self, cancel: Optional[CancellationToken] = None) -> Iterator[list[AdbDevice]]:
        """Yield a fresh device list every time the server reports a change.

        The first snapshot is sent immediately. The generator runs until
        the caller stops iterating or `cancel` fires.
        """
        conn = self.connect(cancel)
        try:
            self.execute_command(conn, "host:track-devices")
            while True:
                yield parse_devices(conn.read_hex_string())
        finally:
            conn.close()

    def wait_for_device(self, serial: str, cancel: Optional[CancellationToken] = None) -> AdbDevice:
        """Block until a device matching `serial` is in the `device` state."""
        for devices in self.track_devices(cancel):
            for device in devices:
                logger.debug("Device update: %s", device)
                if device.matches(serial) and device.is_ready:
                    return device
        raise AdbProtocolError("Device tracking ended unexpectedly")

    # --- Device services ---

    def get_sync_client(self, serial: str, cancel: Optional[CancellationToken] = None) -> AdbSyncClient:
        """Open a connection switched to the sync sub-protocol of `serial`."""
        conn = self.connect(cancel)
        try:
            self.execute_command(conn, f"host:transport:{serial}")
            self.execute_command(conn, "sync:")
        except BaseException:
            conn.close()
            raise
        return AdbSyncClient(conn)

    def execute(
        self,
        serial: str,
        command: str,
        args: Sequence[str] = (),
        cancel: Optional[CancellationToken] = None,
    ) -> ShellResult:
        """Run a shell command on the device and collect its output and exit code.

        Uses the v2 shell protocol: the device streams packets of
        (id: u8, length: u32 LE, payload) until an exit packet arrives.
        """
        command_line = " ".join([command, *(shlex.quote(arg) for arg in args)])
        output = bytearray()
        with self.connect(cancel) as conn:
            self.execute_command(conn, f"host:transport:{serial}")
            self.execute_command(conn, f"shell,v2,raw:{command_line}")
            while True:
                header = conn.read_exact(5)
                packet_id, length = struct.unpack("<BI", header)
                payload = conn.read_exact(length)
                if packet_id in (_SHELL_STDOUT, _SHELL_STDERR):
                    output.extend(payload)
                elif packet_id == _SHELL_EXIT:
                    exit_code = payload[0] if payload else 0
                    return ShellResult(exit_code, bytes(output))
                # other packet ids (window size changes) carry nothing for us

    # --- Framing ---

    @staticmethod
    def execute_command(conn: AdbConnection, command: str) -> None:
        """Send one host-protocol request and check its status.

        Raises:
            AdbRemoteError: the server answered FAIL.
            AdbProtocolError: the server answered neither OKAY nor FAIL.
        """
        payload = command.encode("utf-8")
        conn.send(f"{len(payload):04X}".encode("ascii") + payload)

        status = conn.read_token()
        if status == "OKAY":
            return
        if status == "FAIL":
            raise AdbRemoteError(conn.read_hex_string())
        raise AdbProtocolError(f"Invalid response type {status!r}")
