"""Top-level sync orchestration."""
from __future__ import annotations

import logging
import sys
import time
from typing import Callable, Optional

from ..core.cancellation import CancellationToken
from ..core.config import SyncConfig
from ..core.models import SyncStats
from ..core.protocols import MediaConverter, ProgressReporter, SyncTarget
from ..logging.info_log import InfoLog
from ..targets.factory import SyncTargetFactory
from ..targets.physical import PhysicalSyncTarget
from .cleanup import TargetCleaner
from .converter import FfmpegMediaConverter
from .pipeline import SyncPipeline
from .source import SourceScanner
from .temp_files import TempFileService, TempFileSession

logger = logging.getLogger(__name__)

TargetFactory = Callable[[str, Optional[CancellationToken]], SyncTarget]
ConverterFactory = Callable[[SyncConfig, TempFileSession, InfoLog], MediaConverter]


def default_tolerate_dst(config: SyncConfig, target: SyncTarget) -> bool:
    """Whether to accept one-hour timestamp offsets for this run.

    Windows reports FAT timestamps shifted by the DST offset depending
    on the current season, so local targets there need it.
    """
    if config.tolerate_dst_offset is not None:
        return config.tolerate_dst_offset
    return sys.platform == "win32" and isinstance(target, PhysicalSyncTarget)


class SyncService:
    """Runs a full sync: scan, pipeline, cleanup, completion hook.

    Target and converter construction is injectable so tests can run
    the whole flow against in-memory fakes.
    """

    def __init__(
        self,
        config: SyncConfig,
        progress: ProgressReporter,
        target_factory: Optional[TargetFactory] = None,
        converter_factory: Optional[ConverterFactory] = None,
        temp_files: Optional[TempFileService] = None,
    ):
        self._config = config
        self._progress = progress
        self._target_factory = target_factory or SyncTargetFactory(progress).create
        self._converter_factory = converter_factory or FfmpegMediaConverter
        self._temp_files = temp_files or TempFileService(config.temp_dir)

    def run(self, cancel: Optional[CancellationToken] = None) -> SyncStats:
        started = time.monotonic()
        info_log = InfoLog()

        removed = self._temp_files.cleanup_stale()
        if removed:
            logger.info("Removed %d stale temp directories", removed)

        session = self._temp_files.create_session()
        target: Optional[SyncTarget] = None
        try:
            target = self._target_factory(self._config.target, cancel)

            self._progress.info(f"Scanning {self._config.source_dir}")
            scanner = SourceScanner(
                self._config.source_dir,
                self._config.source_extensions,
                self._config.exclude,
            )
            # enumerated up front so the progress bar has a total
            sources = list(scanner.scan(cancel))

            converter = self._converter_factory(self._config, session, info_log)
            pipeline = SyncPipeline(
                self._config,
                target,
                converter,
                session,
                self._progress,
                info_log,
                tolerate_dst=default_tolerate_dst(self._config, target),
            )

            self._progress.start_phase("Syncing", total=len(sources))
            try:
                stats = pipeline.run(sources, cancel)
            finally:
                self._progress.end_phase()

            cleaner = TargetCleaner(target, self._progress)
            self._progress.info("Deleting files that are no longer in the source")
            stats.deleted_files = cleaner.delete_additional_files(lambda path: path in pipeline.handled, cancel)
            stats.deleted_directories = cleaner.delete_empty_directories(cancel)

            target.complete(cancel)
            stats.elapsed_seconds = time.monotonic() - started
            return stats
        finally:
            session.close()
            if target is not None:
                target.close()
            info_log.emit(self._progress)
