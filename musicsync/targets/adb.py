"""Sync target for an Android device reached through the adb server."""
from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from io import BytesIO
from typing import BinaryIO, Iterable, Optional
from urllib.parse import quote

from ..adb.client import AdbClient
from ..adb.stat import StatEntry, UnixFileMode
from ..core.cancellation import CancellationToken
from ..core.errors import AdbRemoteError
from ..core.models import SyncTargetFileInfo
from ..core.protocols import ProgressReporter
from ..text.path_comparer import PathComparer
from ..text.path_utils import SEPARATOR, ancestors, get_path_stack, join_path

logger = logging.getLogger(__name__)

# paths per rm/rmdir invocation
DELETE_BATCH_SIZE = 10

PUSH_PERMISSIONS = (
    UnixFileMode.OWNER_READ | UnixFileMode.OWNER_WRITE | UnixFileMode.GROUP_READ | UnixFileMode.GROUP_WRITE
)

MEDIA_SCANNER_ACTION = "android.intent.action.MEDIA_SCANNER_SCAN_FILE"


def resolve_device_serial(
    client: AdbClient,
    requested: str,
    progress: Optional[ProgressReporter] = None,
    cancel: Optional[CancellationToken] = None,
) -> str:
    """Find the connected device for `requested`, waiting for it if needed.

    Tries `adb start-server` first so a stopped server is not mistaken
    for a missing device.
    """
    AdbClient.start_server()

    devices = client.get_devices(cancel)
    for device in devices:
        if device.matches(requested) and device.is_ready:
            return device.serial

    if progress:
        available = "; ".join(d.serial for d in devices)
        message = f"Device {requested} not found!"
        if available:
            message += f" Available devices: {available}"
        progress.warning(message)
        progress.info("Waiting for device...")

    device = client.wait_for_device(requested, cancel)
    if progress:
        progress.success(f"Found device {device.serial}")
    return device.serial


class AdbSyncTarget:
    """Writes below `base_path` on the device with serial `serial`.

    Every operation opens its own sync connection, so workers of
    different pipeline stages can use the target concurrently.
    Directory listings are cached until a write or delete touches them.
    """

    def __init__(self, client: AdbClient, serial: str, base_path: str):
        self._client = client
        self._serial = serial
        self._base_path = SEPARATOR + SEPARATOR.join(s for s in get_path_stack(base_path) if s)

        self._case_lock = threading.Lock()
        self._case_sensitive: Optional[bool] = None

        self._cache_lock = threading.Lock()
        self._cache_generation = 0
        self._listing_cache: dict[str, Optional[list[SyncTargetFileInfo]]] = {}
        # keys are compared exactly; case folding would merge distinct entries on the device
        self._cache_keys = PathComparer(case_sensitive=True)

    @property
    def serial(self) -> str:
        return self._serial

    def _device_path(self, path: str) -> str:
        stack = [s for s in get_path_stack(path) if s]
        if not stack:
            return self._base_path
        return self._base_path.rstrip(SEPARATOR) + SEPARATOR + SEPARATOR.join(stack)

    @staticmethod
    def _to_file_info(entry: StatEntry, path: str) -> SyncTargetFileInfo:
        return SyncTargetFileInfo(path=path, is_directory=entry.is_directory, last_modified=entry.modified_at)

    # --- Reads ---

    def stat(self, path: str, cancel: Optional[CancellationToken] = None) -> Optional[SyncTargetFileInfo]:
        with self._client.get_sync_client(self._serial, cancel) as sync:
            entry = sync.stat(self._device_path(path))
        if not entry.exists:
            return None
        return self._to_file_info(entry, path)

    def list_directory(
        self, path: str, cancel: Optional[CancellationToken] = None
    ) -> Optional[list[SyncTargetFileInfo]]:
        key = self._cache_keys.key(path)
        with self._cache_lock:
            if key in self._listing_cache:
                cached = self._listing_cache[key]
                return list(cached) if cached is not None else None
            generation = self._cache_generation

        listing = self._fetch_listing(path, cancel)

        with self._cache_lock:
            # a write or delete in the meantime makes this listing stale
            if generation == self._cache_generation:
                self._listing_cache[key] = listing
        return list(listing) if listing is not None else None

    def _fetch_listing(self, path: str, cancel: Optional[CancellationToken]) -> Optional[list[SyncTargetFileInfo]]:
        device_path = self._device_path(path)
        with self._client.get_sync_client(self._serial, cancel) as sync:
            entry = sync.stat(device_path)
            if not entry.is_directory:
                return None
            entries = sync.list(device_path)
        return [
            self._to_file_info(e, join_path(path, e.path))
            for e in entries
            if e.path not in (".", "..")
        ]

    def _invalidate(self, path: str) -> None:
        with self._cache_lock:
            self._cache_generation += 1
            for affected in [path, *ancestors(path)]:
                self._listing_cache.pop(self._cache_keys.key(affected), None)

    def is_case_sensitive(self) -> bool:
        if self._case_sensitive is None:
            with self._case_lock:
                if self._case_sensitive is None:
                    self._case_sensitive = self._probe_case_sensitivity()
                    logger.debug("Device %s case sensitive: %s", self._serial, self._case_sensitive)
        return self._case_sensitive

    def _probe_case_sensitivity(self) -> bool:
        name = f".musicsync_case_probe_{uuid.uuid4().hex}.tmp"
        lower = self._device_path(name)
        upper = self._device_path(name.upper())
        with self._client.get_sync_client(self._serial) as sync:
            sync.push(lower, BytesIO(b""), datetime.now(timezone.utc), PUSH_PERMISSIONS)
            entry = sync.stat(upper)
        self._run_checked("rm", ["-f", lower])
        return not entry.exists

    def is_hidden(self, path: str, recurse: bool) -> bool:
        stack = [s for s in get_path_stack(path) if s]
        if not stack:
            return False
        if recurse:
            return any(s.startswith(".") for s in stack)
        return stack[-1].startswith(".")

    # --- Writes ---

    def write_file(
        self,
        path: str,
        content: BinaryIO,
        modified_at: Optional[datetime] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> None:
        device_path = self._device_path(path)
        try:
            with self._client.get_sync_client(self._serial, cancel) as sync:
                sync.push(
                    device_path,
                    content,
                    modified_at or datetime.now(timezone.utc),
                    PUSH_PERMISSIONS,
                    cancel,
                )
        finally:
            self._invalidate(path)

        file_url = "file://" + quote(device_path, safe=SEPARATOR)
        self._run_checked("am", ["broadcast", "-a", MEDIA_SCANNER_ACTION, "-d", file_url], cancel)

    def delete(self, files: Iterable[SyncTargetFileInfo], cancel: Optional[CancellationToken] = None) -> None:
        """Delete in batches: files first, then directories.

        Callers pass directories only once they are empty, so removing
        the files first lets a single call clear a whole subtree.
        """
        files = list(files)
        try:
            for command, wanted in (("rm", False), ("rmdir", True)):
                batch_items = [f for f in files if f.is_directory == wanted]
                for start in range(0, len(batch_items), DELETE_BATCH_SIZE):
                    batch = batch_items[start:start + DELETE_BATCH_SIZE]
                    self._run_checked(command, [self._device_path(f.path) for f in batch], cancel)
        finally:
            for f in files:
                self._invalidate(f.path)

    def _run_checked(self, command: str, args: list[str], cancel: Optional[CancellationToken] = None) -> None:
        result = self._client.execute(self._serial, command, args, cancel)
        if result.exit_code != 0:
            raise AdbRemoteError(
                f"'{command}' failed with exit code {result.exit_code}: {result.text.strip()}"
            )

    def complete(self, cancel: Optional[CancellationToken] = None) -> None:
        logger.debug("Device %s complete", self._serial)

    def close(self) -> None:
        with self._cache_lock:
            self._listing_cache.clear()
