"""Staged sync pipeline: compare -> read -> convert -> write.

Each stage is a pool of worker threads consuming a bounded queue, so a
slow stage makes the faster ones upstream block (backpressure). Items
may complete out of order.

Any exception in a stage is fatal to the run: the first one is
recorded, the run's cancellation token is cancelled so every other
worker stops, and `SyncPipeline.run` re-raises it once all workers have
exited. Exceptions raised after cancellation are consequences of the
cancellation and are dropped.
"""
from __future__ import annotations

import logging
import queue
import threading
import time
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from ..core.cancellation import CancellationToken
from ..core.config import SyncConfig
from ..core.errors import OperationCancelled
from ..core.models import (
    ActionKind,
    CompareResult,
    ConvertWorkItem,
    OutputFile,
    SourceFileInfo,
    SyncStats,
)
from ..core.protocols import MediaConverter, ProgressReporter, SyncTarget
from ..logging.info_log import InfoLog
from ..text.path_comparer import PathComparer
from ..text.path_transformer import PathTransformer, PathTransformKind
from ..text.path_utils import file_stem, join_path, parent_path, split_path
from .album_art import find_album_art
from .temp_files import TempFileSession

logger = logging.getLogger(__name__)

# FAT stores modification times with two second granularity
TIMESTAMP_TOLERANCE_SECONDS = 2.0
DST_OFFSET_SECONDS = 3600.0

READ_CHUNK_SIZE = 1024 * 1024

# how often blocked queue operations re-check cancellation
QUEUE_POLL_INTERVAL = 0.1

_DONE = object()


def timestamps_match(source: datetime, target: datetime, tolerate_dst: bool = False) -> bool:
    """Whether two modification times denote the same file version.

    With `tolerate_dst`, a difference of one hour (within the tolerance)
    also matches; some filesystem drivers shift FAT timestamps by the
    DST offset.
    """
    delta = abs((source - target).total_seconds())
    if delta <= TIMESTAMP_TOLERANCE_SECONDS:
        return True
    return tolerate_dst and abs(delta - DST_OFFSET_SECONDS) <= TIMESTAMP_TOLERANCE_SECONDS


class HandledFiles:
    """Insert-only set of target paths that are up to date after this run."""

    def __init__(self, comparer: PathComparer):
        self._comparer = comparer
        self._lock = threading.Lock()
        self._keys: set[str] = set()

    def add(self, path: str) -> None:
        key = self._comparer.key(path)
        with self._lock:
            self._keys.add(key)

    def __contains__(self, path: str) -> bool:
        key = self._comparer.key(path)
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)


class _Stage:
    """A worker pool reading from one bounded queue."""

    def __init__(
        self,
        name: str,
        workers: int,
        capacity: int,
        handler: Callable[[Any, CancellationToken], Any],
        pipeline: "SyncPipeline",
        downstream: Optional["_Stage"] = None,
    ):
        self.name = name
        self._handler = handler
        self._pipeline = pipeline
        self._downstream = downstream
        self._workers = workers
        self._queue: queue.Queue = queue.Queue(maxsize=capacity)
        self._remaining = workers
        self._remaining_lock = threading.Lock()
        self._threads = [
            threading.Thread(target=self._work, name=f"{name}-{i}", daemon=True)
            for i in range(workers)
        ]

    def start(self) -> None:
        for thread in self._threads:
            thread.start()

    def join(self) -> None:
        for thread in self._threads:
            thread.join()

    def put(self, item: Any, token: CancellationToken) -> bool:
        """Enqueue, blocking while the queue is full. False once cancelled."""
        while not token.is_cancelled:
            try:
                self._queue.put(item, timeout=QUEUE_POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False

    def complete(self, token: CancellationToken) -> None:
        """Signal that no more items will arrive."""
        for _ in range(self._workers):
            if not self.put(_DONE, token):
                return

    def _get(self, token: CancellationToken) -> Any:
        while not token.is_cancelled:
            try:
                return self._queue.get(timeout=QUEUE_POLL_INTERVAL)
            except queue.Empty:
                continue
        return _DONE

    def _work(self) -> None:
        token = self._pipeline.token
        try:
            while True:
                item = self._get(token)
                if item is _DONE:
                    break
                result = self._handler(item, token)
                if result is not None and self._downstream is not None:
                    if not self._downstream.put(result, token):
                        break
        except BaseException as e:
            self._pipeline.fault(e, self.name)
        finally:
            with self._remaining_lock:
                self._remaining -= 1
                last = self._remaining == 0
            if last and self._downstream is not None:
                self._downstream.complete(token)


class SyncPipeline:
    """Runs one sync of `sources` into `target`.

    The pipeline owns nothing it is given: the target, converter and
    temp session are closed by the caller. Cleanup of stale target files
    is not part of the pipeline; it must run after `run` returns.
    """

    def __init__(
        self,
        config: SyncConfig,
        target: SyncTarget,
        converter: MediaConverter,
        session: TempFileSession,
        progress: ProgressReporter,
        info_log: InfoLog,
        tolerate_dst: bool = False,
        transformer: Optional[PathTransformer] = None,
    ):
        self._config = config
        self._device = config.device_config
        self._target = target
        self._converter = converter
        self._session = session
        self._progress = progress
        self._info_log = info_log
        self._tolerate_dst = tolerate_dst
        self._transformer = transformer or PathTransformer()

        self.comparer = PathComparer(target.is_case_sensitive())
        self.handled = HandledFiles(self.comparer)
        self.stats = SyncStats()
        self._stats_lock = threading.Lock()

        self.token = CancellationToken()
        self._fault: Optional[BaseException] = None
        self._fault_lock = threading.Lock()

    # --- Orchestration ---

    def fault(self, error: BaseException, stage: str) -> None:
        """Record the first failure and stop every stage."""
        with self._fault_lock:
            if self.token.is_cancelled:
                logger.debug("%s: ignoring %r after cancellation", stage, error)
                return
            logger.debug("%s failed: %r", stage, error)
            self._fault = error
            self.token.cancel()

    def run(self, sources: Iterable[SourceFileInfo], cancel: Optional[CancellationToken] = None) -> SyncStats:
        """Push every source file through the stages and wait for them to finish.

        Raises:
            The first exception raised by any stage, or OperationCancelled
            if `cancel` fired without a fault.
        """
        self.token = cancel.child() if cancel is not None else CancellationToken()
        self._fault = None
        started = time.monotonic()

        write = _Stage("write", self._config.workers_write, max(8, self._config.workers_write),
                       self._write, self)
        convert = _Stage("convert", self._config.workers_convert, max(8, self._config.workers_convert),
                         self._convert, self, write)
        read = _Stage("read", self._config.workers_read, max(16, self._config.workers_read),
                      self._read, self, convert)
        compare = _Stage("compare", self._config.workers_convert, max(8, self._config.workers_convert),
                         self._compare, self, read)
        stages = [compare, read, convert, write]
        for stage in stages:
            stage.start()

        try:
            for source in sources:
                if not compare.put(source, self.token):
                    break
                with self._stats_lock:
                    self.stats.total_files += 1
            compare.complete(self.token)
        except BaseException as e:
            self.fault(e, "scan")
        finally:
            for stage in stages:
                stage.join()

        self.stats.elapsed_seconds = time.monotonic() - started

        if self._fault is not None:
            raise self._fault
        if self.token.is_cancelled:
            raise OperationCancelled("Sync was cancelled")
        return self.stats

    # --- Path mapping ---

    def target_path_for(self, relative_path: str) -> tuple[str, bool]:
        """Sanitized target path of a source file, extension included."""
        return self._transformer.transform_path(
            relative_path,
            PathTransformKind.FILE_PATH,
            limitations=self._device.path_character_limitations,
            max_depth=self._device.max_directory_depth,
            normalize_case=self._device.normalize_case,
        )

    # --- Stages ---

    def _compare(self, source: SourceFileInfo, token: CancellationToken) -> CompareResult:
        target_path, _ = self.target_path_for(source.relative_path)
        directory = parent_path(target_path)
        stem = file_stem(split_path(target_path)[-1])

        listing = self._target.list_directory(directory, token) or []
        matches = [
            entry for entry in listing
            if not entry.is_directory and self.comparer.file_name_equals(file_stem(entry.name), stem)
        ]

        if len(matches) > 1:
            self._info_log.add(
                f"Multiple target files match {source.relative_path}: {', '.join(m.path for m in matches)}"
            )
        if len(matches) != 1:
            return CompareResult(source, ActionKind.REPLACE)

        existing = matches[0]
        if timestamps_match(source.modified_at, existing.last_modified, self._tolerate_dst):
            return CompareResult(source, ActionKind.KEEP, existing.path)
        return CompareResult(source, ActionKind.REPLACE)

    def _read(self, item: CompareResult, token: CancellationToken) -> ConvertWorkItem:
        source = item.source
        if item.action is ActionKind.KEEP:
            return ConvertWorkItem(source, ActionKind.KEEP, item.existing_target_path)

        self._progress.debug(f"--> Read {source.relative_path}")
        temp_path = self._session.get_temp_file_path(source.extension)
        with source.open() as src, open(temp_path, "wb") as dst:
            while True:
                token.raise_if_cancelled()
                chunk = src.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                dst.write(chunk)

        album_art = find_album_art(source.absolute_path.parent, self._device.album_art.file_names)

        target_path, unsupported = self.target_path_for(source.relative_path)
        if unsupported:
            self._info_log.add(f"Unsupported chars in path {source.relative_path}: {target_path}")
        file_name = split_path(target_path)[-1]
        target_base = join_path(parent_path(target_path), file_stem(file_name))

        self._progress.debug(f"<-- Read {source.relative_path}")
        return ConvertWorkItem(
            source,
            ActionKind.REPLACE,
            target_base,
            source_temp_path=temp_path,
            album_art_path=album_art,
        )

    def _convert(self, item: ConvertWorkItem, token: CancellationToken) -> Optional[OutputFile]:
        if item.action is ActionKind.KEEP:
            self.handled.add(item.target_path)
            with self._stats_lock:
                self.stats.kept += 1
            self._progress.advance_phase()
            return None

        self._progress.debug(f"--> Convert {item.source.relative_path}")
        started = time.monotonic()
        try:
            result = self._converter.convert(
                item.source_temp_path, item.source.relative_path, item.album_art_path, token
            )
        finally:
            if item.source_temp_path is not None:
                item.source_temp_path.unlink(missing_ok=True)

        target_path = item.target_path + result.extension
        self.handled.add(target_path)
        elapsed_ms = (time.monotonic() - started) * 1000
        self._progress.debug(f"<-- Convert {item.source.relative_path} {elapsed_ms:.0f}ms")
        return OutputFile(item.source, target_path, result.output_path, item.source.modified_at)

    def _write(self, item: OutputFile, token: CancellationToken) -> None:
        self._progress.debug(f"--> Write {item.target_path}")
        try:
            with open(item.content_path, "rb") as content:
                self._target.write_file(item.target_path, content, item.modified_at, token)
        finally:
            item.content_path.unlink(missing_ok=True)

        with self._stats_lock:
            self.stats.written += 1
        self._progress.advance_phase()
        self._progress.debug(f"<-- Write {item.target_path}")
