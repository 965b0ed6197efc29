# astrocat/app.py
import logging
from concurrent.futures import CancelledError
from typing import Iterable, List, Optional

from .catalog import Catalog
from .config import Config
from .db_service import DbService
from .file_processor import NewFileProcessor
from .importer import FileImporter
from .models import AstroFile
from .thumbnail_cache import ThumbnailCache

logger = logging.getLogger(__name__)


class CatalogApp:
    """
    Wires the core together the way a front end uses it: the database
    service feeds the catalog, the importer feeds the database service and
    the thumbnail cache reads through it.
    """

    def __init__(self, cfg: Config):
        self.config = cfg
        self.db_service = DbService(cfg.database_path, cfg.filter_stat_keys)
        self.catalog = Catalog(cfg.search_roots, coalesce_interval=cfg.coalesce_interval_ms / 1000)
        self.processor = NewFileProcessor(
            self.catalog,
            workers=cfg.workers,
            thumbnail_size=cfg.thumbnail_size,
            tiny_thumbnail_size=cfg.tiny_thumbnail_size,
        )
        self.importer = FileImporter(self.catalog, self.processor, queue_size=cfg.queue_size)
        self.thumbnail_cache = ThumbnailCache(self._load_thumbnail, capacity=cfg.thumbnail_cache_size)

        self.db_service.repository.astrofile_updated.connect(self.catalog.add_astrofile)
        self.db_service.repository.astrofile_deleted.connect(self.catalog.delete_astrofile)
        self.importer.astrofile_imported.connect(self.db_service.add_astrofile)

    def _load_thumbnail(self, astro_file: AstroFile) -> Optional[AstroFile]:
        try:
            return self.db_service.load_thumbnail(astro_file).result()
        except CancelledError:
            return None

    def open(self) -> "CatalogApp":
        """Opens the database and fills the catalog from it."""
        self.db_service.initialize()
        astro_files = self.db_service.load_model().result()
        self.catalog.add_astrofiles(astro_files)
        logger.info(f"Loaded {len(astro_files)} catalog rows from {self.config.database_path}")
        return self

    def import_paths(self, paths: Iterable[str]) -> None:
        """Starts an import; returns at once. Use ``wait_for_import`` to block."""
        self.importer.import_files(paths)

    def wait_for_import(self, timeout: Optional[float] = None) -> bool:
        if not self.importer.wait(timeout):
            return False
        return self.db_service.wait_idle(timeout)

    def cancel_import(self) -> None:
        self.importer.cancel_import()
        self.db_service.wait_idle()

    def remove_folder(self, folder: str) -> List[AstroFile]:
        """Drops a search root and every catalog row under it."""
        self.catalog.remove_search_folder(folder)
        return self.db_service.delete_astrofiles_in_folder(folder).result()

    def remove_astrofile(self, astro_file: AstroFile) -> bool:
        return self.db_service.delete_astrofile(astro_file).result()

    def close(self) -> None:
        self.importer.close()
        self.thumbnail_cache.cancel()
        self.db_service.close()
        self.catalog.close()
