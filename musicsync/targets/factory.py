"""Creates sync targets from target URIs.

Supported forms:
- `file://<path>` (percent-encoded; a query string is accepted and ignored)
- `adb://<serial>/<path on device>`
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qs, unquote

from ..adb.client import AdbClient
from ..core.cancellation import CancellationToken
from ..core.errors import ConfigError
from ..core.protocols import ProgressReporter, SyncTarget
from .adb import AdbSyncTarget, resolve_device_serial
from .physical import PhysicalSyncTarget

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^(?P<scheme>[A-Za-z][A-Za-z0-9+.-]*)://(?P<rest>.*)$", re.DOTALL)


def parse_target_uri(uri: str) -> tuple[str, str]:
    """Split a target URI into (scheme, remainder).

    Raises:
        ConfigError: if the URI has no scheme.
    """
    match = _SCHEME_RE.match(uri)
    if match is None:
        raise ConfigError(f"Target URI must contain a scheme: {uri}")
    return match.group("scheme").lower(), match.group("rest")


def parse_file_uri(rest: str) -> Path:
    path_part, sep, query = rest.partition("?")
    if "?" in query:
        raise ConfigError("Target URI has more than one '?'. Use '%3F' to escape question marks in the path.")
    if sep and "fatSortMode" in parse_qs(query):
        logger.warning("fatSortMode is not supported and will be ignored")
    return Path(unquote(path_part)).expanduser()


def parse_adb_uri(rest: str) -> tuple[str, str]:
    parts = re.split(r"[/\\]", rest, maxsplit=1)
    if len(parts) != 2 or not parts[0]:
        raise ConfigError(f"adb target must look like adb://<serial>/<path>, got adb://{rest}")
    serial, path = parts
    return serial, unquote(path)


class SyncTargetFactory:
    """Builds the target named by a URI. The ADB client is injectable for tests."""

    def __init__(
        self,
        progress: Optional[ProgressReporter] = None,
        adb_client: Optional[AdbClient] = None,
    ):
        self._progress = progress
        self._adb_client = adb_client

    def create(self, uri: str, cancel: Optional[CancellationToken] = None) -> SyncTarget:
        scheme, rest = parse_target_uri(uri)

        if scheme == "file":
            return PhysicalSyncTarget(parse_file_uri(rest))

        if scheme == "adb":
            serial, path = parse_adb_uri(rest)
            client = self._adb_client or AdbClient()
            actual_serial = resolve_device_serial(client, serial, self._progress, cancel)
            return AdbSyncTarget(client, actual_serial, path)

        raise ConfigError(f"Invalid URI scheme: {scheme}")
