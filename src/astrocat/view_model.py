# astrocat/view_model.py
import enum
import logging
from typing import Any, Iterable, List, Optional

from PIL import Image

from .decoders import fit_within
from .events import Signal
from .models import AstroFile

logger = logging.getLogger(__name__)


class Role(enum.Enum):
    DISPLAY = "display"
    DECORATION = "decoration"
    SIZE_HINT = "size_hint"
    ITEM = "item"
    ID = "id"
    FILE_NAME = "file_name"
    FULL_PATH = "full_path"
    DIRECTORY = "directory"
    VOLUME_NAME = "volume_name"
    VOLUME_ROOT = "volume_root"
    OBJECT = "object"
    INSTRUMENT = "instrument"
    FILTER = "filter"
    DATE = "date"
    RA = "ra"
    DEC = "dec"
    CCD_TEMP = "ccd_temp"
    IMAGE_X_SIZE = "image_x_size"
    IMAGE_Y_SIZE = "image_y_size"
    GAIN = "gain"
    EXPOSURE = "exposure"
    BAYER_MODE = "bayer_mode"
    OFFSET = "offset"
    CALFRAME = "calframe"
    FILE_TYPE = "file_type"
    FILE_EXTENSION = "file_extension"
    FILE_HASH = "file_hash"
    IMAGE_HASH = "image_hash"


# Roles answered straight from a header tag. A tuple lists fallbacks in order.
TAG_ROLES = {
    Role.OBJECT: ("OBJECT",),
    Role.INSTRUMENT: ("INSTRUME",),
    Role.FILTER: ("FILTER",),
    Role.DATE: ("DATE-OBS",),
    Role.RA: ("RA", "OBJCTRA"),
    Role.DEC: ("DEC", "OBJCTDEC"),
    Role.CCD_TEMP: ("CCD-TEMP",),
    Role.IMAGE_X_SIZE: ("NAXIS1",),
    Role.IMAGE_Y_SIZE: ("NAXIS2",),
    Role.GAIN: ("GAIN",),
    Role.EXPOSURE: ("EXPTIME",),
    Role.BAYER_MODE: ("BAYERPAT",),
    Role.OFFSET: ("BLKLEVEL",),
    Role.CALFRAME: ("CALFRAME",),
}

ATTRIBUTE_ROLES = {
    Role.DISPLAY: "file_name",
    Role.ID: "id",
    Role.FILE_NAME: "file_name",
    Role.FULL_PATH: "full_path",
    Role.DIRECTORY: "directory_path",
    Role.VOLUME_NAME: "volume_name",
    Role.VOLUME_ROOT: "volume_root",
    Role.FILE_EXTENSION: "file_extension",
    Role.FILE_HASH: "file_hash",
    Role.IMAGE_HASH: "image_hash",
}

# Full-size cells are this many pixels at a 100% slider position.
BASE_CELL_SIZE = 400


def ra_converter(ra: str) -> str:
    """
    Decimal degrees to sexagesimal hours 'HH:MM:SS.s'. Returns '' for
    values that are not numbers.
    """
    try:
        value = float(ra)
    except (TypeError, ValueError):
        return ""
    # One degree of right ascension is 240 seconds of time.
    tenths = int(value % 360.0 * 2400)
    hours, tenths = divmod(tenths, 36000)
    minutes, tenths = divmod(tenths, 600)
    seconds, tenths = divmod(tenths, 10)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{tenths}"


def dec_converter(dec: str) -> str:
    """
    Decimal degrees to sexagesimal '+DD:MM:SS.d'. Returns '' for values
    that are not numbers; already-sexagesimal strings are not numbers.
    """
    try:
        value = float(dec)
    except (TypeError, ValueError):
        return ""
    sign = "-" if value < 0 else "+"
    value = abs(value)
    degrees = int(value)
    value = (value - degrees) * 60
    arc_minutes = int(value)
    value = (value - arc_minutes) * 60
    arc_seconds = int(value)
    tenths = int((value - arc_seconds) * 10)
    return f"{sign}{degrees:02d}:{arc_minutes:02d}:{arc_seconds:02d}.{tenths}"


def tag_for_role(astro_file: AstroFile, role: Role) -> str:
    for key in TAG_ROLES[role]:
        value = astro_file.tags.get(key)
        if value:
            return value
    return ""


CONVERTERS = {
    Role.RA: ra_converter,
    Role.DEC: dec_converter,
}


class FileViewModel:
    """
    Row/role access to the projected catalog for a list or grid view.
    Rows come from the proxy when one is given, else straight from the catalog.
    """

    def __init__(self, catalog, proxy=None, thumbnail_cache=None):
        self.catalog = catalog
        self.proxy = proxy
        self.thumbnail_cache = thumbnail_cache
        self.cell_size = BASE_CELL_SIZE

        self.rows_added = Signal("count")
        self.data_changed = Signal("row", "roles")
        self.row_removed = Signal("row")
        self.layout_changed = Signal()
        self.model_reset = Signal()

        self._rows: List[AstroFile] = []
        self.refresh()

        catalog.astrofiles_added.connect(self._on_astrofiles_added)
        catalog.astrofile_updated.connect(self._on_astrofile_updated)
        catalog.astrofile_removed.connect(self._on_astrofile_removed)
        if proxy is not None:
            proxy.filter_reset.connect(self._on_filter_reset)
        if thumbnail_cache is not None:
            thumbnail_cache.thumbnail_ready.connect(self._on_thumbnail_ready)

    # --- Rows ---
    def refresh(self) -> None:
        self._rows = self.proxy.rows() if self.proxy is not None else self.catalog.astrofiles()

    def row_count(self) -> int:
        return len(self._rows)

    def astrofile(self, row: int) -> Optional[AstroFile]:
        if 0 <= row < len(self._rows):
            return self._rows[row]
        return None

    def row_of(self, astro_file_id: int) -> int:
        for row, astro_file in enumerate(self._rows):
            if astro_file.id == astro_file_id:
                return row
        return -1

    def data(self, row: int, role: Role = Role.DISPLAY) -> Any:
        astro_file = self.astrofile(row)
        if astro_file is None:
            return None
        if role in ATTRIBUTE_ROLES:
            return getattr(astro_file, ATTRIBUTE_ROLES[role])
        if role in TAG_ROLES:
            value = tag_for_role(astro_file, role)
            if role in CONVERTERS:
                # Headers that already hold sexagesimal text pass through.
                return CONVERTERS[role](value) or value
            return value
        if role == Role.FILE_TYPE:
            return astro_file.file_type.value if astro_file.file_type else ""
        if role == Role.ITEM:
            return astro_file
        if role == Role.SIZE_HINT:
            return (self.cell_size, self.cell_size)
        if role == Role.DECORATION:
            return self.decoration(astro_file)
        return None

    def decoration(self, astro_file: AstroFile) -> Optional[Image.Image]:
        """
        The cell image: the cached display thumbnail when loaded, otherwise
        the tiny thumbnail while the full one is fetched.
        """
        target = max(1, int(self.cell_size * 0.9))
        image = self.thumbnail_cache.get(astro_file) if self.thumbnail_cache is not None else None
        if image is None:
            image = astro_file.tiny_thumbnail
        if image is None:
            return None
        return fit_within(image, target)

    def set_cell_size(self, percent: int) -> None:
        """Slider position in percent of the full-size cell."""
        self.cell_size = max(1, BASE_CELL_SIZE * percent // 100)
        self.layout_changed.emit()

    def remove_rows(self, rows: Iterable[int]) -> List[AstroFile]:
        """Drops rows from the catalog (not from disk or the database)."""
        removed = []
        for astro_file in [self.astrofile(r) for r in sorted(set(rows), reverse=True)]:
            if astro_file is not None and self.catalog.delete_astrofile(astro_file) is not None:
                removed.append(astro_file)
        return removed

    # --- Catalog and cache events ---
    def _on_astrofiles_added(self, count: int) -> None:
        self.refresh()
        self.rows_added.emit(count)

    def _on_astrofile_updated(self, astro_file: AstroFile, catalog_row: int) -> None:
        if self.thumbnail_cache is not None and astro_file.id is not None:
            self.thumbnail_cache.invalidate(astro_file.id)
        self.refresh()
        row = self.row_of(astro_file.id)
        if row != -1:
            self.data_changed.emit(row, None)

    def _on_astrofile_removed(self, astro_file: AstroFile, catalog_row: int) -> None:
        row = self.row_of(astro_file.id)
        self.refresh()
        if row != -1:
            self.row_removed.emit(row)

    def _on_filter_reset(self) -> None:
        self.refresh()
        self.model_reset.emit()

    def _on_thumbnail_ready(self, astro_file_id: int) -> None:
        row = self.row_of(astro_file_id)
        if row != -1:
            self.data_changed.emit(row, [Role.DECORATION])
