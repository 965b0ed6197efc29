# astrocat/file_processor.py
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from . import decoders, hashing
from .errors import AstrocatError
from .events import Signal
from .models import (AstroFile, CatalogStatus, FileInfo, ProcessStatus, TagStatus,
                     ThumbnailStatus, file_type_for)

logger = logging.getLogger(__name__)

# Decoder failures that mark one file as failed without stopping the import.
DECODE_ERRORS = (AstrocatError, OSError, ValueError)


def process_astrofile(file_info: FileInfo, thumbnail_size: int = 200, tiny_thumbnail_size: int = 20) -> AstroFile:
    """
    Builds the catalog record for one file: tags, thumbnails and hashes.

    A file that cannot be decoded still yields a record, with
    ProcessStatus.FAILED and whatever tags were extracted before the failure.
    """
    astro_file = AstroFile.from_file_info(file_info)

    try:
        decoder = decoders.open_decoder(file_info.path)
    except DECODE_ERRORS as e:
        logger.warning(f"Cannot open {file_info.path}: {e}")
        astro_file.process_status = ProcessStatus.FAILED
        return astro_file

    with decoder:
        try:
            astro_file.tags = decoder.extract_tags()
            astro_file.tag_status = TagStatus.EXTRACTED
        except DECODE_ERRORS as e:
            logger.warning(f"Cannot read tags from {file_info.path}: {e}")
            astro_file.tag_status = TagStatus.FAILED
            astro_file.process_status = ProcessStatus.FAILED
            return astro_file

        try:
            image = decoder.extract_thumbnail()
            astro_file.thumbnail = decoders.fit_within(image, thumbnail_size)
            astro_file.tiny_thumbnail = decoders.fit_within(astro_file.thumbnail, tiny_thumbnail_size)
            astro_file.thumbnail_status = ThumbnailStatus.LOADED
            astro_file.image_hash = decoder.image_hash
        except DECODE_ERRORS as e:
            logger.warning(f"Cannot decode image in {file_info.path}: {e}")
            astro_file.thumbnail = astro_file.tiny_thumbnail = None
            astro_file.thumbnail_status = ThumbnailStatus.FAILED
            astro_file.process_status = ProcessStatus.FAILED
            return astro_file

    try:
        astro_file.file_hash = hashing.file_hash(file_info.path)
    except OSError as e:
        logger.warning(f"Cannot hash {file_info.path}: {e}")
        astro_file.process_status = ProcessStatus.FAILED
        return astro_file

    astro_file.process_status = ProcessStatus.PROCESSED
    return astro_file


class NewFileProcessor:
    """
    Processes new and modified files on a thread pool.

    Every submitted file ends in exactly one emission: ``astrofile_processed``
    (also for files that failed to decode) or ``processing_cancelled``.
    """

    def __init__(
        self,
        catalog=None,
        workers: int = 3,
        thumbnail_size: int = 200,
        tiny_thumbnail_size: int = 20,
        max_pending: Optional[int] = None,
    ):
        self.catalog = catalog
        self.workers = max(1, workers)
        # Files running or waiting for a worker; callers block beyond this.
        self.max_pending = max(self.workers, max_pending or 2 * self.workers)
        self.thumbnail_size = thumbnail_size
        self.tiny_thumbnail_size = tiny_thumbnail_size

        self.astrofile_processed = Signal("astro_file")
        self.processing_cancelled = Signal("file_info")
        self.processing_started = Signal("file_info")

        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        self._pause_condition = threading.Condition()
        self._paused = False
        self._cancelled = threading.Event()
        self._pending = 0
        self._drained = threading.Condition()

    # --- Pause / cancel ---
    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def pending(self) -> int:
        with self._drained:
            return self._pending

    def pause(self) -> None:
        with self._pause_condition:
            self._paused = True

    def resume(self) -> None:
        with self._pause_condition:
            self._paused = False
            self._pause_condition.notify_all()

    def cancel(self) -> None:
        self._cancelled.set()
        self.resume()
        # Wake callers blocked on a full pool.
        with self._drained:
            self._drained.notify_all()

    def reset(self) -> None:
        self._cancelled.clear()

    def _wait_if_paused(self) -> None:
        with self._pause_condition:
            while self._paused and not self._cancelled.is_set():
                self._pause_condition.wait()

    # --- Work ---
    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="NewFileProcessor")
            return self._executor

    def process_new_file(self, file_info: FileInfo) -> None:
        """Queues one file. Blocks while paused or while ``max_pending`` files are in the pool."""
        if self._cancelled.is_set():
            self.processing_cancelled.emit(file_info)
            return
        self._wait_if_paused()

        with self._drained:
            self._drained.wait_for(lambda: self._pending < self.max_pending or self._cancelled.is_set())
            cancelled = self._cancelled.is_set()
            if not cancelled:
                self._pending += 1
        if cancelled:
            self.processing_cancelled.emit(file_info)
            return
        try:
            self._get_executor().submit(self._run, file_info)
        except RuntimeError:
            # Executor already shut down.
            self._finish_one()
            self.processing_cancelled.emit(file_info)

    def _finish_one(self) -> None:
        with self._drained:
            self._pending -= 1
            self._drained.notify_all()

    def _run(self, file_info: FileInfo) -> None:
        try:
            if self._cancelled.is_set():
                self.processing_cancelled.emit(file_info)
                return
            self._wait_if_paused()

            if file_type_for(file_info.path) is None:
                self.processing_cancelled.emit(file_info)
                return
            if self.catalog is not None and self.catalog.should_process_file(file_info) == CatalogStatus.REMOVED:
                # The search root was removed while the file waited in the queue.
                self.processing_cancelled.emit(file_info)
                return

            self.processing_started.emit(file_info)
            try:
                astro_file = process_astrofile(file_info, self.thumbnail_size, self.tiny_thumbnail_size)
            except Exception:
                logger.exception(f"Unexpected error processing {file_info.path}")
                astro_file = AstroFile.from_file_info(file_info)
                astro_file.process_status = ProcessStatus.FAILED

            if self._cancelled.is_set():
                self.processing_cancelled.emit(file_info)
                return
            self.astrofile_processed.emit(astro_file)
        finally:
            self._finish_one()

    def wait_for_drain(self, timeout: Optional[float] = None) -> bool:
        """Blocks until every submitted file has emitted. Returns False on timeout."""
        with self._drained:
            return self._drained.wait_for(lambda: self._pending == 0, timeout=timeout)

    def shutdown(self) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
