"""Tests for the post-sync cleanup passes."""
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from musicsync.core.cancellation import CancellationToken
from musicsync.core.errors import OperationCancelled
from musicsync.services.cleanup import TargetCleaner

from .fixtures import FakeSyncTarget

T = datetime(2023, 5, 17, 12, 30, 0, tzinfo=timezone.utc)


class TestDeleteAdditionalFiles:
    """Tests for TargetCleaner.delete_additional_files."""

    @pytest.fixture
    def target(self) -> FakeSyncTarget:
        target = FakeSyncTarget()
        target.add_file("A/keep.mp3", b"", T)
        target.add_file("A/stale.mp3", b"", T)
        target.add_file("A/.nomedia", b"", T)
        target.add_file(".thumbnails/x.jpg", b"", T)
        target.add_file("B/C/old.flac", b"", T)
        return target

    def test_deletes_unhandled(self, target):
        progress = MagicMock()

        deleted = TargetCleaner(target, progress).delete_additional_files(lambda p: p == "A/keep.mp3")

        assert deleted == 2
        assert target.deleted == ["A/stale.mp3", "B/C/old.flac"]
        assert "A/keep.mp3" in target.files
        progress.debug.assert_any_call("Delete A/stale.mp3")

    def test_hidden_entries_untouched(self, target):
        TargetCleaner(target).delete_additional_files(lambda p: False)

        assert "A/.nomedia" in target.files
        assert ".thumbnails/x.jpg" in target.files
        # hidden directories are not descended into
        assert ("list", ".thumbnails") not in target.events

    def test_nothing_to_delete(self, target):
        deleted = TargetCleaner(target).delete_additional_files(lambda p: True)

        assert deleted == 0
        assert target.deleted == []

    def test_empty_target(self):
        assert TargetCleaner(FakeSyncTarget()).delete_additional_files(lambda p: False) == 0

    def test_cancelled(self, target):
        cancel = CancellationToken()
        cancel.cancel()

        with pytest.raises(OperationCancelled):
            TargetCleaner(target).delete_additional_files(lambda p: False, cancel)

        assert target.deleted == []


class TestDeleteEmptyDirectories:
    """Tests for TargetCleaner.delete_empty_directories."""

    @pytest.fixture
    def target(self) -> FakeSyncTarget:
        target = FakeSyncTarget()
        target.add_directory("A/B/C")
        target.add_directory("D")
        target.add_directory(".thumbnails")
        target.add_directory("E/.hidden")
        target.add_file("F/song.mp3", b"", T)
        return target

    def test_bottom_up(self, target):
        deleted = TargetCleaner(target).delete_empty_directories()

        assert deleted == 4
        assert target.deleted == ["A/B/C", "A/B", "A", "D"]

    def test_keeps_hidden_and_non_empty(self, target):
        TargetCleaner(target).delete_empty_directories()

        assert target.directories == {".thumbnails", "E", "E/.hidden", "F"}

    def test_root_is_kept(self):
        target = FakeSyncTarget()

        assert TargetCleaner(target).delete_empty_directories() == 0
        assert target.deleted == []

    def test_after_file_cleanup(self, target):
        """Test that directories emptied by the file pass are removed too."""
        cleaner = TargetCleaner(target)

        cleaner.delete_additional_files(lambda p: False)
        deleted = cleaner.delete_empty_directories()

        assert deleted == 5
        assert target.directories == {".thumbnails", "E", "E/.hidden"}
