"""Tests for the adb sync target."""
from datetime import datetime, timezone
from io import BytesIO
from unittest.mock import MagicMock, patch

import pytest

from musicsync.adb.client import AdbClient, AdbDevice, ShellResult
from musicsync.core.errors import AdbRemoteError
from musicsync.core.models import SyncTargetFileInfo
from musicsync.targets.adb import (
    DELETE_BATCH_SIZE,
    MEDIA_SCANNER_ACTION,
    AdbSyncTarget,
    resolve_device_serial,
)

from .fixtures import FakeAdbServer

MTIME = datetime(2023, 5, 17, 12, 30, 0, tzinfo=timezone.utc)
BASE = "/sdcard/Music"


@pytest.fixture
def server():
    with FakeAdbServer() as server:
        yield server


@pytest.fixture
def target(server):
    target = AdbSyncTarget(AdbClient("127.0.0.1", server.port), server.serial, "sdcard/Music")
    yield target
    target.close()


class TestReads:
    """Tests for stat and list_directory."""

    def test_stat_missing(self, target):
        assert target.stat("A/missing.mp3") is None

    def test_stat_file(self, server, target):
        server.add_file(f"{BASE}/A/song.mp3", b"x", mtime=int(MTIME.timestamp()))

        info = target.stat("A/song.mp3")

        assert info == SyncTargetFileInfo("A/song.mp3", False, MTIME)

    def test_list_directory(self, server, target):
        """Test that '.' and '..' are filtered and paths are target-relative."""
        server.add_file(f"{BASE}/A/song.mp3", b"x")
        server.add_directory(f"{BASE}/A/Disc 2")

        entries = target.list_directory("A")

        assert sorted((e.path, e.is_directory) for e in entries) == [
            ("A/Disc 2", True),
            ("A/song.mp3", False),
        ]

    def test_list_root(self, server, target):
        server.add_directory(f"{BASE}/A")

        assert [e.path for e in target.list_directory("")] == ["A"]

    def test_list_missing_or_file(self, server, target):
        server.add_file(f"{BASE}/song.mp3", b"x")

        assert target.list_directory("missing") is None
        assert target.list_directory("song.mp3") is None

    def test_listing_cached(self, server, target):
        server.add_directory(f"{BASE}/A")
        assert target.list_directory("A") == []

        # changes made behind the target's back are not seen
        server.add_file(f"{BASE}/A/other.mp3", b"x")
        assert target.list_directory("A") == []

    def test_write_invalidates_listing(self, server, target):
        server.add_directory(f"{BASE}/A")
        assert target.list_directory("A") == []

        target.write_file("A/song.mp3", BytesIO(b"data"), MTIME)

        assert [e.path for e in target.list_directory("A")] == ["A/song.mp3"]

    def test_write_invalidates_ancestors(self, server, target):
        server.add_directory(BASE)
        assert target.list_directory("") == []

        target.write_file("New/Album/song.mp3", BytesIO(b"data"), MTIME)

        assert [e.path for e in target.list_directory("")] == ["New"]


class TestWrites:
    """Tests for write_file and delete."""

    def test_write_file(self, server, target):
        target.write_file("A/song x.mp3", BytesIO(b"data"), MTIME)

        stored = server.files[f"{BASE}/A/song x.mp3"]
        assert stored.content == b"data"
        assert stored.mtime == int(MTIME.timestamp())
        assert stored.permissions == 0o660

    def test_write_broadcasts_media_scan(self, server, target):
        target.write_file("A/song x.mp3", BytesIO(b"data"), MTIME)

        broadcasts = [c for c in server.shell_commands if c.startswith("am broadcast")]
        assert len(broadcasts) == 1
        assert MEDIA_SCANNER_ACTION in broadcasts[0]
        assert "file:///sdcard/Music/A/song%20x.mp3" in broadcasts[0]

    def test_write_replaces_existing(self, server, target):
        server.add_file(f"{BASE}/song.mp3", b"old")

        target.write_file("song.mp3", BytesIO(b"new"), MTIME)

        assert server.files[f"{BASE}/song.mp3"].content == b"new"

    def test_delete_files_then_directories(self, server, target):
        """Test that one call can clear a directory together with its files."""
        server.add_file(f"{BASE}/A/song.mp3", b"x")
        files = [
            SyncTargetFileInfo("A", True, MTIME),
            SyncTargetFileInfo("A/song.mp3", False, MTIME),
        ]

        target.delete(files)

        assert f"{BASE}/A/song.mp3" not in server.files
        assert f"{BASE}/A" not in server.directories
        assert [c.split()[0] for c in server.shell_commands] == ["rm", "rmdir"]

    def test_delete_batches(self, server, target):
        count = DELETE_BATCH_SIZE + 2
        for i in range(count):
            server.add_file(f"{BASE}/{i:02d}.mp3", b"x")

        target.delete(SyncTargetFileInfo(f"{i:02d}.mp3", False, MTIME) for i in range(count))

        assert len(server.shell_commands) == 2
        assert not server.files

    def test_delete_failure(self, server, target):
        server.add_file(f"{BASE}/A/song.mp3", b"x")

        with pytest.raises(AdbRemoteError, match="exit code 1"):
            target.delete([SyncTargetFileInfo("A", True, MTIME)])

    def test_delete_invalidates_listing(self, server, target):
        server.add_file(f"{BASE}/A/song.mp3", b"x")
        assert len(target.list_directory("A")) == 1

        target.delete([SyncTargetFileInfo("A/song.mp3", False, MTIME)])

        assert target.list_directory("A") == []


class TestCaseSensitivity:
    """Tests for the case sensitivity probe."""

    def test_case_sensitive_device(self, server, target):
        assert target.is_case_sensitive() is True

    def test_case_insensitive_device(self):
        with FakeAdbServer(case_sensitive=False) as server:
            target = AdbSyncTarget(AdbClient("127.0.0.1", server.port), server.serial, BASE)

            assert target.is_case_sensitive() is False

    def test_probe_runs_once_and_cleans_up(self, server, target):
        target.is_case_sensitive()
        target.is_case_sensitive()

        assert len([c for c in server.shell_commands if c.startswith("rm -f")]) == 1
        assert not server.files


class TestHidden:
    """Tests for is_hidden."""

    def test_hidden(self, target):
        assert target.is_hidden(".thumbnails", False) is True
        assert target.is_hidden("A/.nomedia", False) is True
        assert target.is_hidden("A/song.mp3", False) is False

    def test_recurse(self, target):
        assert target.is_hidden(".hidden/song.mp3", False) is False
        assert target.is_hidden(".hidden/song.mp3", True) is True
        assert target.is_hidden("", True) is False


class TestShellFailure:
    """Tests for the shell exit code check with a mocked client."""

    def test_nonzero_exit_raises(self):
        client = MagicMock()
        client.execute.return_value = ShellResult(1, b"rm: /sdcard/x: Permission denied\n")
        target = AdbSyncTarget(client, "serial", "/sdcard")

        with pytest.raises(AdbRemoteError, match="Permission denied"):
            target.delete([SyncTargetFileInfo("x", False, MTIME)])

        client.execute.assert_called_once_with("serial", "rm", ["/sdcard/x"], None)


class TestResolveDeviceSerial:
    """Tests for device discovery."""

    @pytest.fixture(autouse=True)
    def no_adb_executable(self):
        with patch.object(AdbClient, "start_server", return_value=True) as start_server:
            yield start_server

    def test_present(self, no_adb_executable):
        client = MagicMock()
        client.get_devices.return_value = [AdbDevice("emulator-5554", "device")]

        assert resolve_device_serial(client, "emulator-5554") == "emulator-5554"
        no_adb_executable.assert_called_once()
        client.wait_for_device.assert_not_called()

    def test_mdns_serial(self):
        client = MagicMock()
        client.get_devices.return_value = [AdbDevice("adb-R58M123ABC-a1b2c3._adb-tls-connect._tcp.", "device")]

        assert resolve_device_serial(client, "R58M123ABC") == "adb-R58M123ABC-a1b2c3._adb-tls-connect._tcp."

    def test_waits_for_missing_device(self, server):
        server.devices = [("other", "device")]
        server.track_snapshots = [[("other", "device")], [("R58M123ABC", "device")]]
        progress = MagicMock()

        serial = resolve_device_serial(AdbClient("127.0.0.1", server.port), "R58M123ABC", progress)

        assert serial == "R58M123ABC"
        progress.warning.assert_called_once_with("Device R58M123ABC not found! Available devices: other")
        progress.success.assert_called_once()

    def test_unready_device_waits(self):
        client = MagicMock()
        client.get_devices.return_value = [AdbDevice("emulator-5554", "unauthorized")]
        client.wait_for_device.return_value = AdbDevice("emulator-5554", "device")

        assert resolve_device_serial(client, "emulator-5554") == "emulator-5554"
        client.wait_for_device.assert_called_once_with("emulator-5554", None)
