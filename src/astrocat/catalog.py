# astrocat/catalog.py
import logging
import os
import threading
from typing import Dict, Iterable, List, Optional, Union

from .events import Signal
from .models import AstroFile, CatalogStatus, FileInfo

logger = logging.getLogger(__name__)


def _is_under(path: str, folder: str) -> bool:
    folder = folder.rstrip(os.sep) or os.sep
    if path == folder:
        return True
    prefix = folder if folder.endswith(os.sep) else folder + os.sep
    return path.startswith(prefix)


class Catalog:
    """
    The in-memory row store the view reads from, indexed by id and by path.

    The rows and indexes share one reentrant lock, the search folders have
    their own lock, and the add coalescer a third. Signals are emitted after
    the lock is released.
    """

    def __init__(self, search_folders: Iterable[str] = (), coalesce_interval: float = 0.5):
        self._lock = threading.RLock()
        self._astro_files: List[AstroFile] = []
        self._by_id: Dict[int, AstroFile] = {}
        self._by_path: Dict[str, AstroFile] = {}

        self._search_lock = threading.Lock()
        self._search_folders: List[str] = []

        self.coalesce_interval = coalesce_interval
        self._added_lock = threading.Lock()
        self._pending_added = 0
        self._timer: Optional[threading.Timer] = None

        self.astrofiles_added = Signal("count")
        self.astrofile_updated = Signal("astro_file", "row")
        self.astrofile_removed = Signal("astro_file", "row")
        self.search_folder_added = Signal("folder")
        self.search_folder_removed = Signal("folder")

        for folder in search_folders:
            self.add_search_folder(folder)

    # --- Search folders ---
    def add_search_folder(self, folder: Union[str, Iterable[str]]) -> List[str]:
        """Adds one folder or several. Returns the folders that were new."""
        folders = [folder] if isinstance(folder, (str, os.PathLike)) else list(folder)
        added = []
        with self._search_lock:
            for f in folders:
                absolute = os.path.abspath(os.fspath(f))
                if absolute not in self._search_folders:
                    self._search_folders.append(absolute)
                    added.append(absolute)
        for f in added:
            self.search_folder_added.emit(f)
        return added

    def remove_search_folder(self, folder: str) -> bool:
        absolute = os.path.abspath(os.fspath(folder))
        with self._search_lock:
            if absolute not in self._search_folders:
                return False
            self._search_folders.remove(absolute)
        self.search_folder_removed.emit(absolute)
        return True

    def remove_all_search_folders(self) -> None:
        with self._search_lock:
            removed, self._search_folders = self._search_folders, []
        for folder in removed:
            self.search_folder_removed.emit(folder)

    def search_folders(self) -> List[str]:
        with self._search_lock:
            return list(self._search_folders)

    def is_in_search_folders(self, path: str) -> bool:
        with self._search_lock:
            return any(_is_under(path, folder) for folder in self._search_folders)

    # --- Rows ---
    def _add(self, astro_file: AstroFile):
        """Returns (row, was_update). Caller holds the lock."""
        existing = self._by_path.get(astro_file.full_path)
        if existing is None:
            self._astro_files.append(astro_file)
            row = len(self._astro_files) - 1
            updated = False
        else:
            row = self._row_of(existing)
            if existing.id is not None and astro_file.id is not None and existing.id != astro_file.id:
                logger.warning(
                    f"Two catalog ids for {astro_file.full_path}: {existing.id} and {astro_file.id}; keeping the latest"
                )
            if existing.id is not None:
                self._by_id.pop(existing.id, None)
            self._astro_files[row] = astro_file
            updated = True
        self._by_path[astro_file.full_path] = astro_file
        if astro_file.id is not None:
            self._by_id[astro_file.id] = astro_file
        return row, updated

    def _row_of(self, astro_file: AstroFile) -> int:
        for row, candidate in enumerate(self._astro_files):
            if candidate is astro_file:
                return row
        return -1

    def add_astrofile(self, astro_file: AstroFile) -> int:
        """
        Adds a row, or replaces the row with the same path in place.
        New rows are announced through the coalesced ``astrofiles_added``.
        """
        with self._lock:
            row, updated = self._add(astro_file)
        if updated:
            self.astrofile_updated.emit(astro_file, row)
        else:
            self._schedule_added(1)
        return row

    def add_astrofiles(self, astro_files: Iterable[AstroFile]) -> int:
        """Bulk add (model load). Emits ``astrofiles_added`` once with the new-row count."""
        updates = []
        added = 0
        with self._lock:
            for astro_file in astro_files:
                row, updated = self._add(astro_file)
                if updated:
                    updates.append((astro_file, row))
                else:
                    added += 1
        for astro_file, row in updates:
            self.astrofile_updated.emit(astro_file, row)
        if added:
            self.astrofiles_added.emit(added)
        return added

    def _remove_row(self, row: int) -> Optional[AstroFile]:
        """Caller holds the lock."""
        if row < 0 or row >= len(self._astro_files):
            return None
        astro_file = self._astro_files.pop(row)
        self._by_path.pop(astro_file.full_path, None)
        if astro_file.id is not None:
            self._by_id.pop(astro_file.id, None)
        return astro_file

    def delete_astrofile_row(self, row: int) -> Optional[AstroFile]:
        with self._lock:
            astro_file = self._remove_row(row)
        if astro_file is not None:
            self.astrofile_removed.emit(astro_file, row)
        return astro_file

    def delete_astrofile(self, astro_file: AstroFile) -> Optional[AstroFile]:
        """Removes the row with the same id (or, failing that, the same path)."""
        with self._lock:
            row = self.astrofile_index(astro_file)
            if row == -1:
                existing = self._by_path.get(astro_file.full_path)
                row = self._row_of(existing) if existing is not None else -1
            removed = self._remove_row(row)
        if removed is not None:
            self.astrofile_removed.emit(removed, row)
        return removed

    def delete_astrofiles(self, astro_files: Iterable[AstroFile]) -> int:
        return sum(1 for af in astro_files if self.delete_astrofile(af) is not None)

    def astrofile_index(self, astro_file: AstroFile) -> int:
        """Row of the astrofile with the same id, or -1."""
        if astro_file.id is None:
            return -1
        with self._lock:
            for row, candidate in enumerate(self._astro_files):
                if candidate.id == astro_file.id:
                    return row
        return -1

    def get_astrofile(self, row: int) -> Optional[AstroFile]:
        with self._lock:
            if 0 <= row < len(self._astro_files):
                return self._astro_files[row]
            return None

    def get_astrofile_by_id(self, astro_file_id: int) -> Optional[AstroFile]:
        with self._lock:
            return self._by_id.get(astro_file_id)

    def get_astrofile_by_path(self, path: str) -> Optional[AstroFile]:
        with self._lock:
            return self._by_path.get(path)

    def astrofiles(self) -> List[AstroFile]:
        """A snapshot of all rows, in row order."""
        with self._lock:
            return list(self._astro_files)

    def __len__(self) -> int:
        with self._lock:
            return len(self._astro_files)

    def should_process_file(self, file_info: FileInfo) -> CatalogStatus:
        if not self.is_in_search_folders(file_info.path):
            return CatalogStatus.REMOVED
        with self._lock:
            existing = self._by_path.get(file_info.path)
            if existing is None:
                return CatalogStatus.NEW
            if existing.last_modified_time < file_info.mtime:
                return CatalogStatus.MODIFIED
            return CatalogStatus.CURRENT

    # --- Add coalescing ---
    def _schedule_added(self, count: int) -> None:
        if self.coalesce_interval <= 0:
            self.astrofiles_added.emit(count)
            return
        with self._added_lock:
            self._pending_added += count
            if self._timer is None:
                self._timer = threading.Timer(self.coalesce_interval, self.flush_added)
                self._timer.daemon = True
                self._timer.start()

    def flush_added(self) -> int:
        """Emits the pending add count now. Returns the count emitted."""
        with self._added_lock:
            count, self._pending_added = self._pending_added, 0
            timer, self._timer = self._timer, None
        if timer is not None and timer is not threading.current_thread():
            timer.cancel()
        if count:
            self.astrofiles_added.emit(count)
        return count

    def close(self) -> None:
        self.flush_added()
