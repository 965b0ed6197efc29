# astrocat/db_service.py
import logging
import threading
from collections import deque
from concurrent.futures import Future
from typing import Any, Callable, Deque, Iterable, Optional, Tuple

from .database import CatalogDatabase, init_db
from .errors import DbOpenFailed, DbSchemaFailed
from .events import Signal
from .models import AstroFile
from .repository import FileRepository

logger = logging.getLogger(__name__)

sentinel = "DONE"  # A signal to stop the worker thread.

_Op = Tuple[str, Callable[..., Any], tuple, Future]


class DbService:
    """
    Single-writer front of the repository. Operations are queued FIFO and
    executed one at a time by a dedicated worker thread; each call returns a
    Future for its result. Repository events (``repository.astrofile_updated``
    and friends) fire on the worker thread.
    """

    def __init__(self, database_path: str, filter_stat_keys: Iterable[str] = ("OBJECT", "INSTRUME", "FILTER")):
        self.database_path = database_path
        self.database: Optional[CatalogDatabase] = None
        self.repository = FileRepository(None, filter_stat_keys)

        self.db_failed_to_initialize = Signal("message")
        self.database_queue_length = Signal("length")

        self._ops: Deque = deque()
        self._condition = threading.Condition()
        self._busy = False
        self._stopped = False
        self._worker: Optional[threading.Thread] = None

    # --- Lifecycle ---
    def initialize(self) -> CatalogDatabase:
        """
        Opens and migrates the database, then starts the worker.
        Failures are reported through ``db_failed_to_initialize`` and re-raised.
        """
        try:
            self.database = init_db(self.database_path)
        except (DbOpenFailed, DbSchemaFailed) as e:
            logger.error(f"Database failed to initialize: {e}")
            self.db_failed_to_initialize.emit(str(e))
            raise
        self.repository.database = self.database
        if self.database.applied_migrations:
            logger.info(f"Applied schema migrations {self.database.applied_migrations} to {self.database_path}")
        self._start_worker()
        return self.database

    def _start_worker(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._worker_loop, name="DbService", daemon=True)
        self._worker.start()

    def _worker_loop(self) -> None:
        while True:
            with self._condition:
                while not self._ops:
                    self._condition.wait()
                op = self._ops.popleft()
                if op == sentinel:
                    self._condition.notify_all()
                    break
                self._busy = True
                length = len(self._ops)
            self.database_queue_length.emit(length)

            name, func, args, future = op
            try:
                if future.set_running_or_notify_cancel():
                    future.set_result(func(*args))
            except Exception as e:
                logger.exception(f"Database operation {name} failed")
                future.set_exception(e)
            finally:
                with self._condition:
                    self._busy = False
                    self._condition.notify_all()

    def _enqueue(self, name: str, func: Callable[..., Any], *args) -> Future:
        future: Future = Future()
        with self._condition:
            if self._stopped:
                # Nothing will run it; hand back a finished future.
                future.cancel()
                future.set_running_or_notify_cancel()
                logger.debug(f"Discarded {name}: database service is stopped")
                return future
            self._ops.append((name, func, args, future))
            length = len(self._ops)
            self._condition.notify_all()
        self.database_queue_length.emit(length)
        return future

    @property
    def queue_length(self) -> int:
        with self._condition:
            return len(self._ops)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the queue is empty and no operation is running."""
        with self._condition:
            return self._condition.wait_for(lambda: not self._ops and not self._busy, timeout=timeout)

    def cancel(self) -> None:
        """
        Discards pending operations and stops the worker. An operation that
        is already running completes normally.
        """
        self.repository.cancel()
        with self._condition:
            self._stopped = True
            pending = [op for op in self._ops if op != sentinel]
            self._ops.clear()
            self._ops.append(sentinel)
            self._condition.notify_all()
        for _, _, _, future in pending:
            future.cancel()
        if pending:
            logger.info(f"Discarded {len(pending)} pending database operations")
        self.database_queue_length.emit(0)
        self._join_worker()

    def close(self) -> None:
        """Runs every queued operation, stops the worker and closes the database."""
        with self._condition:
            self._stopped = True
            self._ops.append(sentinel)
            self._condition.notify_all()
        self._join_worker()
        if self.database is not None:
            self.database.dispose()

    def _join_worker(self) -> None:
        if self._worker is not None and self._worker is not threading.current_thread():
            self._worker.join()
        self._worker = None

    # --- Queued operations ---
    def add_astrofile(self, astro_file: AstroFile) -> Future:
        return self._enqueue("add_or_update_astrofile", self.repository.add_or_update_astrofile, astro_file)

    def delete_astrofile(self, astro_file: AstroFile) -> Future:
        return self._enqueue("delete_astrofile", self.repository.delete_astrofile, astro_file)

    def delete_astrofiles_in_folder(self, path: str) -> Future:
        return self._enqueue("delete_astrofiles_in_folder", self.repository.delete_astrofiles_in_folder, path)

    def load_model(self) -> Future:
        return self._enqueue("load_model", self.repository.load_model)

    def load_thumbnail(self, astro_file: AstroFile) -> Future:
        return self._enqueue("load_thumbnail", self.repository.load_thumbnail, astro_file)

    def get_duplicate_files(self) -> Future:
        return self._enqueue("get_duplicate_files", self.repository.get_duplicate_files)

    def get_duplicate_files_by_file_hash(self) -> Future:
        return self._enqueue("get_duplicate_files_by_file_hash", self.repository.get_duplicate_files_by_file_hash)

    def get_duplicate_files_by_image_hash(self) -> Future:
        return self._enqueue("get_duplicate_files_by_image_hash", self.repository.get_duplicate_files_by_image_hash)

    def load_filter_stats(self, file_extension: Optional[str] = None, filters=()) -> Future:
        return self._enqueue("load_filter_stats", self.repository.load_filter_stats, file_extension, list(filters))

    def load_file_extension_stats(self, file_extension: Optional[str] = None, filters=()) -> Future:
        return self._enqueue(
            "load_file_extension_stats", self.repository.load_file_extension_stats, file_extension, list(filters)
        )

    def load_astrofiles(self, file_extension: Optional[str] = None, filters=()) -> Future:
        return self._enqueue("load_astrofiles", self.repository.load_astrofiles, file_extension, list(filters))
