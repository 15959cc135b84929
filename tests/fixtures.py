"""Test fixtures shared by the test modules.

This module provides in-memory stand-ins for the collaborators of the
sync pipeline (target, converter), an in-process adb server speaking the
host, sync and shell v2 protocols, and builders for configs and media.
"""
from __future__ import annotations

import os
import posixpath
import shlex
import shutil
import socket
import socketserver
import struct
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterable, Optional

import pytest
from PIL import Image

from musicsync.core.cancellation import CancellationToken
from musicsync.core.config import SyncConfig
from musicsync.core.errors import ConversionError
from musicsync.core.models import ConversionResult, SourceFileInfo, SyncTargetFileInfo
from musicsync.services.temp_files import TempFileSession
from musicsync.text.path_utils import ancestors, file_extension, parent_path, split_path

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

BACKSLASH_IS_SEPARATOR = os.sep == "\\" or os.altsep == "\\"

windows_only = pytest.mark.skipif(not BACKSLASH_IS_SEPARATOR, reason="'\\' separates paths only on Windows")
posix_only = pytest.mark.skipif(BACKSLASH_IS_SEPARATOR, reason="'\\' cannot appear in Windows file names")

FALLBACK_FORMAT = {
    "extension": ".m4a",
    "codec": "aac",
    "muxer": "ipod",
    "bitrate": 192,
    "coverCodec": "mjpeg",
    "maxCoverSize": 500,
}


# ============ Config and media builders ============

def make_config(
    source_dir: Path,
    target: str = "file:///unused",
    device: Optional[dict] = None,
    **fields,
) -> SyncConfig:
    """Build a validated SyncConfig. `device` and `fields` use the JSON (camelCase) keys."""
    data = {
        "sourceDir": str(source_dir),
        "target": target,
        "deviceConfig": {
            "fallbackFormat": dict(FALLBACK_FORMAT),
            "supportedFormats": [{"extension": ".mp3"}, {"extension": ".flac"}],
        },
        "workersRead": 1,
        "workersConvert": 2,
        "workersWrite": 1,
    }
    if device:
        data["deviceConfig"].update(device)
    data.update(fields)
    return SyncConfig.model_validate(data)


def write_source_file(
    root: Path,
    relative_path: str,
    content: bytes = b"audio data",
    modified_at: Optional[datetime] = None,
) -> Path:
    """Create a source file and set its modification time."""
    path = root.joinpath(*relative_path.split("/"))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    if modified_at is not None:
        timestamp = modified_at.timestamp()
        os.utime(path, (timestamp, timestamp))
    return path


def source_info(root: Path, relative_path: str) -> SourceFileInfo:
    """SourceFileInfo for an existing file below `root`."""
    path = root.joinpath(*relative_path.split("/"))
    return SourceFileInfo(
        relative_path=relative_path,
        modified_at=datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc),
        absolute_path=path,
    )


def make_image(path: Path, size: tuple[int, int] = (100, 100), image_format: str = "JPEG") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = "RGBA" if image_format == "PNG" else "RGB"
    Image.new(mode, size, color="red").save(path, image_format)
    return path


# ============ Pipeline collaborators ============

class FakeSyncTarget:
    """In-memory SyncTarget.

    Files map a relative path to (content, mtime); directories are
    created implicitly for every written file. Every mutation is recorded
    in `events` so tests can check ordering.
    """

    def __init__(self, case_sensitive: bool = True):
        self.files: dict[str, tuple[bytes, datetime]] = {}
        self.directories: set[str] = set()
        self.events: list[tuple[str, str]] = []
        self.fail_writes_for: set[str] = set()
        self.completed = False
        self.closed = False
        self._case_sensitive = case_sensitive
        self._lock = threading.Lock()

    def add_file(self, path: str, content: bytes = b"", modified_at: Optional[datetime] = None) -> None:
        with self._lock:
            self.files[path] = (content, modified_at or datetime.now(timezone.utc))
            self._add_parents(path)

    def add_directory(self, path: str) -> None:
        with self._lock:
            self.directories.add(path)
            self._add_parents(path)

    def _add_parents(self, path: str) -> None:
        for parent in ancestors(path):
            if parent:
                self.directories.add(parent)

    @property
    def writes(self) -> list[str]:
        return [path for kind, path in self.events if kind == "write"]

    @property
    def deleted(self) -> list[str]:
        return [path for kind, path in self.events if kind == "delete"]

    def stat(self, path: str, cancel: Optional[CancellationToken] = None) -> Optional[SyncTargetFileInfo]:
        with self._lock:
            if path in self.files:
                return SyncTargetFileInfo(path, False, self.files[path][1])
            if path == "" or path in self.directories:
                return SyncTargetFileInfo(path, True, EPOCH)
        return None

    def list_directory(
        self, path: str, cancel: Optional[CancellationToken] = None
    ) -> Optional[list[SyncTargetFileInfo]]:
        with self._lock:
            self.events.append(("list", path))
            if path != "" and path not in self.directories:
                return None
            entries = [
                SyncTargetFileInfo(file_path, False, modified_at)
                for file_path, (_, modified_at) in self.files.items()
                if parent_path(file_path) == path
            ]
            entries += [
                SyncTargetFileInfo(directory, True, EPOCH)
                for directory in self.directories
                if parent_path(directory) == path
            ]
        return sorted(entries, key=lambda e: e.path)

    def is_case_sensitive(self) -> bool:
        return self._case_sensitive

    def is_hidden(self, path: str, recurse: bool) -> bool:
        segments = [s for s in split_path(path) if s]
        if not segments:
            return False
        if recurse:
            return any(s.startswith(".") for s in segments)
        return segments[-1].startswith(".")

    def write_file(
        self,
        path: str,
        content: BinaryIO,
        modified_at: Optional[datetime] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        data = content.read()
        if path in self.fail_writes_for:
            raise OSError(f"No space left on device: {path}")
        with self._lock:
            self.files[path] = (data, modified_at or datetime.now(timezone.utc))
            self._add_parents(path)
            self.events.append(("write", path))

    def delete(self, files: Iterable[SyncTargetFileInfo], cancel: Optional[CancellationToken] = None) -> None:
        with self._lock:
            for file in files:
                if file.is_directory:
                    children = [p for p in [*self.files, *self.directories] if parent_path(p) == file.path]
                    if children:
                        raise OSError(f"Directory not empty: {file.path}")
                    self.directories.discard(file.path)
                else:
                    self.files.pop(file.path, None)
                self.events.append(("delete", file.path))

    def complete(self, cancel: Optional[CancellationToken] = None) -> None:
        self.completed = True

    def close(self) -> None:
        self.closed = True


class FakeConverter:
    """Copies the source into the temp session instead of running ffmpeg.

    Keeps the original extension unless `extension` is given.
    """

    def __init__(
        self,
        session: TempFileSession,
        extension: Optional[str] = None,
        fail_on: Optional[set[str]] = None,
    ):
        self.calls: list[tuple[str, Optional[Path]]] = []
        self._session = session
        self._extension = extension
        self._fail_on = fail_on or set()
        self._lock = threading.Lock()

    def convert(
        self,
        source_path: Path,
        original_path: str,
        album_art_path: Optional[Path],
        cancel: Optional[CancellationToken] = None,
    ) -> ConversionResult:
        with self._lock:
            self.calls.append((original_path, album_art_path))
        if original_path in self._fail_on:
            raise ConversionError(f"ffmpeg failed for {original_path} (exit code 1)")

        extension = self._extension or file_extension(original_path)
        output = self._session.get_temp_file_path(extension)
        shutil.copyfile(source_path, output)
        return ConversionResult(output_path=output, extension=extension)


# ============ Fake adb server ============

DIRECTORY_MODE = 0o040000 | 0o771
REGULAR_FILE_MODE = 0o100000

_SHELL_V2_PREFIX = "shell,v2,raw:"


@dataclass
class FakeDeviceFile:
    content: bytes
    permissions: int
    mtime: int


def _recv_exact(sock: socket.socket, length: int) -> bytes:
    data = bytearray()
    while len(data) < length:
        chunk = sock.recv(length - len(data))
        if not chunk:
            raise ConnectionError("client closed the connection")
        data.extend(chunk)
    return bytes(data)


def _hex_framed(text: str) -> bytes:
    payload = text.encode("utf-8")
    return f"{len(payload):04x}".encode("ascii") + payload


def _device_payload(devices: list[tuple[str, str]]) -> str:
    return "".join(f"{serial}\t{state}\n" for serial, state in devices)


def _clean(path: str) -> str:
    path = posixpath.normpath(path)
    return path if path.startswith("/") else "/" + path


class FakeAdbServer:
    """In-process adb server backed by an in-memory device file tree.

    Speaks enough of the real protocol for the client: host:version,
    host:devices, host:track-devices, host:transport, the sync service
    (STAT, LIST, SEND) and shell v2 (echo, rm, rmdir, am).
    """

    def __init__(self, serial: str = "emulator-5554", case_sensitive: bool = True):
        self.serial = serial
        self.case_sensitive = case_sensitive
        self.version = 41
        self.devices: list[tuple[str, str]] = [(serial, "device")]
        self.track_snapshots: list[list[tuple[str, str]]] = []
        self.fail_commands: dict[str, str] = {}
        self.raw_replies: dict[str, bytes] = {}
        self.fail_pushes: Optional[str] = None

        self.files: dict[str, FakeDeviceFile] = {}
        self.directories: set[str] = {"/"}
        self.host_requests: list[str] = []
        self.shell_commands: list[str] = []
        self.chunk_sizes: dict[str, list[int]] = {}

        self._lock = threading.RLock()
        self._server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), self._make_handler())
        self._server.daemon_threads = True
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self._server.server_address[1]

    def _make_handler(self):
        server = self

        class _Handler(socketserver.BaseRequestHandler):
            def handle(self):
                server.serve_connection(self.request)

        return _Handler

    def start(self) -> "FakeAdbServer":
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        self._server.shutdown()
        self._server.server_close()

    def __enter__(self) -> "FakeAdbServer":
        return self.start()

    def __exit__(self, *args) -> None:
        self.stop()

    # --- Device file tree ---

    def add_file(self, path: str, content: bytes = b"", mtime: int = 0, permissions: int = 0o660) -> None:
        with self._lock:
            self._store(path, content, permissions, mtime)

    def add_directory(self, path: str) -> None:
        with self._lock:
            self._make_dirs(_clean(path))

    def _make_dirs(self, path: str) -> None:
        while path not in self.directories:
            self.directories.add(path)
            path = posixpath.dirname(path)

    def _store(self, path: str, content: bytes, permissions: int, mtime: int) -> None:
        path = _clean(path)
        existing = self._find(path)
        if existing is not None and existing in self.files:
            del self.files[existing]
        self.files[path] = FakeDeviceFile(content, permissions, mtime)
        self._make_dirs(posixpath.dirname(path))

    def _find(self, path: str) -> Optional[str]:
        path = _clean(path)
        if path in self.files or path in self.directories:
            return path
        if not self.case_sensitive:
            folded = path.casefold()
            for existing in [*self.files, *self.directories]:
                if existing.casefold() == folded:
                    return existing
        return None

    def _stat(self, path: str) -> tuple[int, int, int]:
        with self._lock:
            found = self._find(path)
            if found is None:
                return 0, 0, 0
            if found in self.directories:
                return DIRECTORY_MODE, 4096, 0
            file = self.files[found]
            return REGULAR_FILE_MODE | file.permissions, len(file.content), file.mtime

    def _children(self, directory: str) -> list[str]:
        return sorted(
            posixpath.basename(p)
            for p in [*self.files, *self.directories]
            if p != "/" and posixpath.dirname(p) == directory
        )

    # --- Protocol ---

    def serve_connection(self, sock: socket.socket) -> None:
        try:
            while True:
                length = int(_recv_exact(sock, 4).decode("ascii"), 16)
                command = _recv_exact(sock, length).decode("utf-8")
                with self._lock:
                    self.host_requests.append(command)

                if command in self.raw_replies:
                    sock.sendall(self.raw_replies[command])
                    return
                if command in self.fail_commands:
                    sock.sendall(b"FAIL" + _hex_framed(self.fail_commands[command]))
                    return

                if command == "host:version":
                    sock.sendall(b"OKAY" + _hex_framed(f"{self.version:04x}"))
                    return
                if command == "host:devices":
                    sock.sendall(b"OKAY" + _hex_framed(_device_payload(self.devices)))
                    return
                if command == "host:track-devices":
                    sock.sendall(b"OKAY")
                    for snapshot in self.track_snapshots:
                        sock.sendall(_hex_framed(_device_payload(snapshot)))
                    # hold the subscription until the client hangs up
                    while sock.recv(1024):
                        pass
                    return
                if command.startswith("host:transport:"):
                    serial = command[len("host:transport:"):]
                    if (serial, "device") not in self.devices:
                        sock.sendall(b"FAIL" + _hex_framed(f"device '{serial}' not found"))
                        return
                    sock.sendall(b"OKAY")
                    continue
                if command == "sync:":
                    sock.sendall(b"OKAY")
                    self._serve_sync(sock)
                    return
                if command.startswith(_SHELL_V2_PREFIX):
                    sock.sendall(b"OKAY")
                    self._serve_shell(sock, command[len(_SHELL_V2_PREFIX):])
                    return

                sock.sendall(b"FAIL" + _hex_framed(f"unknown host service '{command}'"))
                return
        except OSError:
            return

    def _serve_sync(self, sock: socket.socket) -> None:
        while True:
            header = _recv_exact(sock, 8)
            request = header[:4].decode("ascii")
            (length,) = struct.unpack("<I", header[4:])

            if request == "STAT":
                path = _recv_exact(sock, length).decode("utf-8")
                sock.sendall(b"STAT" + struct.pack("<III", *self._stat(path)))

            elif request == "LIST":
                path = _recv_exact(sock, length).decode("utf-8")
                with self._lock:
                    found = self._find(path)
                    names = self._children(found) if found in self.directories else []
                    entries = [(".", (DIRECTORY_MODE, 4096, 0)), ("..", (DIRECTORY_MODE, 4096, 0))]
                    entries += [(name, self._stat(posixpath.join(found, name))) for name in names]
                for name, (mode, size, mtime) in entries:
                    encoded = name.encode("utf-8")
                    sock.sendall(b"DENT" + struct.pack("<IIII", mode, size, mtime, len(encoded)) + encoded)
                sock.sendall(b"DONE" + bytes(16))

            elif request == "SEND":
                target = _recv_exact(sock, length).decode("utf-8")
                path, _, mode_text = target.rpartition(",")
                content = bytearray()
                chunks = []
                while True:
                    chunk_header = _recv_exact(sock, 8)
                    (argument,) = struct.unpack("<I", chunk_header[4:])
                    if chunk_header[:4] == b"DATA":
                        content.extend(_recv_exact(sock, argument))
                        chunks.append(argument)
                    elif chunk_header[:4] == b"DONE":
                        mtime = argument
                        break
                    else:
                        return

                if self.fail_pushes is not None:
                    message = self.fail_pushes.encode("utf-8")
                    sock.sendall(b"FAIL" + struct.pack("<I", len(message)) + message)
                    continue
                with self._lock:
                    self._store(path, bytes(content), int(mode_text, 8) & 0o777, mtime)
                    self.chunk_sizes[_clean(path)] = chunks
                sock.sendall(b"OKAY" + struct.pack("<I", 0))

            else:
                message = f"unknown sync request {request}".encode("utf-8")
                sock.sendall(b"FAIL" + struct.pack("<I", len(message)) + message)
                return

    def _serve_shell(self, sock: socket.socket, command_line: str) -> None:
        exit_code, output = self._run_shell(command_line)
        if output:
            sock.sendall(struct.pack("<BI", 1, len(output)) + output)
        sock.sendall(struct.pack("<BI", 3, 1) + bytes([exit_code]))

    def _run_shell(self, command_line: str) -> tuple[int, bytes]:
        args = shlex.split(command_line)
        with self._lock:
            self.shell_commands.append(command_line)
            if not args:
                return 0, b""
            program, rest = args[0], args[1:]

            if program == "echo":
                return 0, (" ".join(rest) + "\n").encode("utf-8")

            if program == "am":
                return 0, b"Broadcasting: Intent { act=android.intent.action.MEDIA_SCANNER_SCAN_FILE }\n"

            if program == "rm":
                force = "-f" in rest
                missing = []
                for path in (p for p in rest if p != "-f"):
                    found = self._find(path)
                    if found is not None and found in self.files:
                        del self.files[found]
                    elif not force:
                        missing.append(path)
                if missing:
                    return 1, "".join(f"rm: {p}: No such file or directory\n" for p in missing).encode("utf-8")
                return 0, b""

            if program == "rmdir":
                for path in rest:
                    found = self._find(path)
                    if found is None or found not in self.directories:
                        return 1, f"rmdir: '{path}': No such file or directory\n".encode("utf-8")
                    if self._children(found):
                        return 1, f"rmdir: '{path}': Directory not empty\n".encode("utf-8")
                    self.directories.discard(found)
                return 0, b""

        return 127, f"/system/bin/sh: {program}: inaccessible or not found\n".encode("utf-8")


def unused_port() -> int:
    """A local port nothing is listening on (at the time of the call)."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
