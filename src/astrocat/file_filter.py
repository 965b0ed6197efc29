# astrocat/file_filter.py
import logging

from .events import Signal
from .models import CatalogStatus, FileInfo

logger = logging.getLogger(__name__)


class FileProcessFilter:
    """
    Classifies each incoming file against the catalog and its search roots
    and emits exactly one of four signals per file.
    """

    def __init__(self, catalog):
        self.catalog = catalog
        self.should_process = Signal("file_info")
        self.file_is_modified = Signal("file_info")
        self.file_is_current = Signal("file_info")
        self.file_is_removed = Signal("file_info")
        self._signals = {
            CatalogStatus.NEW: self.should_process,
            CatalogStatus.MODIFIED: self.file_is_modified,
            CatalogStatus.CURRENT: self.file_is_current,
            CatalogStatus.REMOVED: self.file_is_removed,
        }

    def classify(self, file_info: FileInfo) -> CatalogStatus:
        return self.catalog.should_process_file(file_info)

    def filter_file(self, file_info: FileInfo) -> CatalogStatus:
        status = self.classify(file_info)
        logger.debug(f"{file_info.path}: {status.value}")
        self._signals[status].emit(file_info)
        return status
