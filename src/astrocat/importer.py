# astrocat/importer.py
"""
The import pipeline: Crawler -> Filter -> Processor.

Crawlers run one thread per directory. The filter and the processor
dispatcher each own a thread and a bounded input queue, so a fast crawl
blocks instead of buffering the whole tree in memory. Processed records
leave through ``astrofile_imported``; the repository is wired to it.
"""
import logging
import os
import queue
import threading
from collections import Counter
from typing import Iterable, List, Optional

from .events import Signal
from .file_filter import FileProcessFilter
from .file_processor import NewFileProcessor
from .models import AstroFile, CatalogStatus, FileInfo, ProcessStatus, file_type_for
from .scanner import FolderCrawler

logger = logging.getLogger(__name__)

sentinel = "DONE"  # Stops a stage thread.

# How often a blocked put re-checks the cancel flag, in seconds.
_PUT_POLL_INTERVAL = 0.1


class FileImporter:
    """Owns the import pipeline threads and reports its lifecycle."""

    def __init__(self, catalog, processor: Optional[NewFileProcessor] = None, queue_size: int = 1000):
        self.catalog = catalog
        self.file_filter = FileProcessFilter(catalog)
        self.processor = processor or NewFileProcessor(catalog)

        # Lifecycle events
        self.import_started = Signal()
        self.import_paused = Signal()
        self.import_resumed = Signal()
        self.import_canceled = Signal()
        self.import_finished = Signal()
        # Per-file events
        self.astrofile_found = Signal("path")
        self.astrofile_importing = Signal("path")
        self.astrofile_imported = Signal("astro_file")
        self.astrofile_is_in_catalog = Signal("path")

        self._filter_queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._process_queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._filter_thread: Optional[threading.Thread] = None
        self._processor_thread: Optional[threading.Thread] = None
        self._crawler_threads: List[threading.Thread] = []
        self._crawlers: List[FolderCrawler] = []
        self._threads_lock = threading.Lock()

        # Nc, Nf, Np: active crawlers, files in the filter stage, files in the processor stage.
        self._counter_lock = threading.Lock()
        self._active_crawlers = 0
        self._active_filters = 0
        self._active_processors = 0
        self._import_active = False
        self._cancelled = threading.Event()
        self._done = threading.Event()
        self._paused = False
        self.stats: Counter = Counter()
        self._stats_lock = threading.Lock()

        self.file_filter.should_process.connect(self._on_filter_accepted)
        self.file_filter.file_is_modified.connect(self._on_filter_accepted)
        self.file_filter.file_is_current.connect(self._on_file_is_current)
        self.file_filter.file_is_removed.connect(self._on_file_is_removed)
        self.processor.processing_started.connect(self._on_processing_started)
        self.processor.astrofile_processed.connect(self._on_astrofile_processed)
        self.processor.processing_cancelled.connect(self._on_processing_cancelled)

    # --- Counters ---
    def _tally(self, key: str) -> None:
        with self._stats_lock:
            self.stats[key] += 1

    @property
    def counters(self):
        with self._counter_lock:
            return self._active_crawlers, self._active_filters, self._active_processors

    @property
    def is_running(self) -> bool:
        with self._counter_lock:
            return self._import_active

    @property
    def is_paused(self) -> bool:
        return self._paused

    def _change_counts(self, crawlers: int = 0, filters: int = 0, processors: int = 0) -> None:
        with self._counter_lock:
            self._active_crawlers += crawlers
            self._active_filters += filters
            self._active_processors += processors
            finished = (
                self._import_active
                and not self._cancelled.is_set()
                and self._active_crawlers == 0
                and self._active_filters == 0
                and self._active_processors == 0
            )
            if finished:
                self._import_active = False
        if finished:
            logger.info(f"Import finished: {dict(self.stats)}")
            self._done.set()
            self.import_finished.emit()

    # --- Threads ---
    def _start_stage_threads(self) -> None:
        with self._threads_lock:
            if self._filter_thread is None or not self._filter_thread.is_alive():
                self._filter_thread = threading.Thread(target=self._filter_loop, name="FileProcessFilter", daemon=True)
                self._filter_thread.start()
            if self._processor_thread is None or not self._processor_thread.is_alive():
                self._processor_thread = threading.Thread(target=self._processor_loop, name="NewFileProcessor", daemon=True)
                self._processor_thread.start()

    def _put(self, q: queue.Queue, item) -> bool:
        """Blocking put that gives up when the import is cancelled."""
        while not self._cancelled.is_set():
            try:
                q.put(item, timeout=_PUT_POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False

    def _filter_loop(self) -> None:
        while True:
            item = self._filter_queue.get()
            try:
                if item == sentinel:
                    break
                if not self._cancelled.is_set():
                    self.file_filter.filter_file(item)
            except Exception:
                logger.exception(f"Filter failed on {item}")
            finally:
                self._filter_queue.task_done()
                if item != sentinel:
                    self._change_counts(filters=-1)

    def _processor_loop(self) -> None:
        while True:
            item = self._process_queue.get()
            try:
                if item == sentinel:
                    break
                if self._cancelled.is_set():
                    self._change_counts(processors=-1)
                else:
                    # Completion is counted down by the processor's signals.
                    self.processor.process_new_file(item)
            finally:
                self._process_queue.task_done()

    def _crawl(self, crawler: FolderCrawler, root: str) -> None:
        try:
            crawler.crawl(root)
        except Exception:
            logger.exception(f"Crawler failed on {root}")
        finally:
            self._change_counts(crawlers=-1)

    # --- Stage handlers ---
    def _on_file_found(self, file_info: FileInfo) -> None:
        self._tally("found")
        self.astrofile_found.emit(file_info.path)
        self._change_counts(filters=1)
        if not self._put(self._filter_queue, file_info):
            self._change_counts(filters=-1)

    def _on_filter_accepted(self, file_info: FileInfo) -> None:
        self._change_counts(processors=1)
        if not self._put(self._process_queue, file_info):
            self._change_counts(processors=-1)

    def _on_file_is_current(self, file_info: FileInfo) -> None:
        self._tally("in_catalog")
        self.astrofile_is_in_catalog.emit(file_info.path)

    def _on_file_is_removed(self, file_info: FileInfo) -> None:
        self._tally("outside_search_roots")
        logger.debug(f"{file_info.path} is not under a search root; skipped")

    def _on_processing_started(self, file_info: FileInfo) -> None:
        self.astrofile_importing.emit(file_info.path)

    def _on_astrofile_processed(self, astro_file: AstroFile) -> None:
        if astro_file.process_status == ProcessStatus.FAILED:
            self._tally("failed")
        else:
            self._tally("imported")
        try:
            self.astrofile_imported.emit(astro_file)
        finally:
            self._change_counts(processors=-1)

    def _on_processing_cancelled(self, file_info: FileInfo) -> None:
        self._tally("cancelled")
        self._change_counts(processors=-1)

    # --- Public API ---
    def import_files(self, urls: Iterable[str]) -> None:
        """
        Starts importing. Directories get a crawler thread each; single
        files go straight to the filter.
        """
        urls = [os.path.abspath(os.fspath(url)) for url in urls]
        self._cancelled.clear()
        self._done.clear()
        self.processor.reset()
        with self._stats_lock:
            self.stats.clear()
        with self._counter_lock:
            self._import_active = True
            # Held until every url is dispatched so an early finish cannot fire.
            self._active_crawlers += 1
        self._start_stage_threads()
        self.import_started.emit()

        try:
            for url in urls:
                if os.path.isdir(url):
                    self._start_crawler(url)
                elif os.path.isfile(url):
                    if file_type_for(url) is None:
                        logger.info(f"Skipping unsupported file {url}")
                        continue
                    try:
                        file_info = FileInfo.from_path(url)
                    except OSError as e:
                        logger.warning(f"Cannot stat {url}: {e}")
                        continue
                    self._on_file_found(file_info)
                else:
                    logger.warning(f"Import path does not exist: {url}")
        finally:
            self._change_counts(crawlers=-1)

    def _start_crawler(self, root: str) -> None:
        crawler = FolderCrawler()
        crawler.file_found.connect(self._on_file_found)
        if self._paused:
            crawler.pause()
        self._change_counts(crawlers=1)
        thread = threading.Thread(target=self._crawl, args=(crawler, root), name=f"FolderCrawler-{root}", daemon=True)
        with self._threads_lock:
            self._crawlers.append(crawler)
            self._crawler_threads.append(thread)
        thread.start()

    def pause_import(self) -> None:
        self._paused = True
        with self._threads_lock:
            crawlers = list(self._crawlers)
        for crawler in crawlers:
            crawler.pause()
        self.processor.pause()
        self.import_paused.emit()

    def resume_import(self) -> None:
        self._paused = False
        with self._threads_lock:
            crawlers = list(self._crawlers)
        for crawler in crawlers:
            crawler.resume()
        self.processor.resume()
        self.import_resumed.emit()

    def cancel_import(self) -> None:
        """
        Stops the import. Waits for in-flight files to finish, then stops the
        processor, filter and crawler threads in that order.
        """
        self._cancelled.set()
        self._paused = False
        with self._threads_lock:
            crawlers = list(self._crawlers)
        for crawler in crawlers:
            crawler.cancel()
        self.processor.cancel()

        self._discard_queued(self._filter_queue, filters=-1)
        self._discard_queued(self._process_queue, processors=-1)
        self.processor.wait_for_drain()
        self._stop_threads()

        with self._counter_lock:
            self._active_crawlers = self._active_filters = self._active_processors = 0
            self._import_active = False
        self._done.set()
        logger.info("Import canceled")
        self.import_canceled.emit()

    def _discard_queued(self, q: queue.Queue, **counts) -> None:
        while True:
            try:
                item = q.get_nowait()
            except queue.Empty:
                return
            q.task_done()
            if item != sentinel:
                self._change_counts(**counts)

    def _stop_threads(self) -> None:
        with self._threads_lock:
            processor_thread, self._processor_thread = self._processor_thread, None
            filter_thread, self._filter_thread = self._filter_thread, None
            crawler_threads, self._crawler_threads = self._crawler_threads, []
            self._crawlers = []

        if processor_thread is not None:
            self._process_queue.put(sentinel)
            processor_thread.join()
        self.processor.shutdown()
        if filter_thread is not None:
            self._filter_queue.put(sentinel)
            filter_thread.join()
        for thread in crawler_threads:
            thread.join()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the import finishes or is canceled."""
        return self._done.wait(timeout)

    def close(self) -> None:
        """Stops the stage threads after a finished import."""
        if self.is_running:
            self.cancel_import()
            return
        self._stop_threads()
