"""Services: scanning, conversion, the sync pipeline and cleanup."""
from .cleanup import TargetCleaner
from .converter import FfmpegMediaConverter
from .pipeline import HandledFiles, SyncPipeline, timestamps_match
from .source import SourceScanner
from .sync import SyncService
from .temp_files import TempFileService, TempFileSession

__all__ = [
    "FfmpegMediaConverter",
    "HandledFiles",
    "SourceScanner",
    "SyncPipeline",
    "SyncService",
    "TargetCleaner",
    "TempFileService",
    "TempFileSession",
    "timestamps_match",
]
