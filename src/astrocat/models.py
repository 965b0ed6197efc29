# astrocat/models.py
import enum
import os
from pathlib import Path
from typing import Dict, Optional, Tuple

import attrs
from PIL import Image
from sqlalchemy import BLOB, Boolean, Column, Float, ForeignKey, Integer, String
from sqlalchemy.orm import declarative_base, relationship


class FileType(str, enum.Enum):
    FITS = "Fits"
    XISF = "Xisf"
    IMAGE = "Image"


class TagStatus(enum.IntEnum):
    NOT_PROCESSED = 0
    EXTRACTED = 1
    FAILED = 2


class ThumbnailStatus(enum.IntEnum):
    NOT_PROCESSED = 0
    LOADED = 1
    FAILED = 2


class ProcessStatus(enum.IntEnum):
    QUEUED = 0
    PROCESSED = 1
    FAILED = 2


class CatalogStatus(enum.Enum):
    """How a file on disk relates to the catalog and its search roots."""
    NEW = "new"
    MODIFIED = "modified"
    CURRENT = "current"
    REMOVED = "removed"


# Extension (lowercase, no dot) -> FileType. Anything else is ignored by the crawler.
FILE_TYPES_BY_EXTENSION: Dict[str, FileType] = {
    "fits": FileType.FITS,
    "fit": FileType.FITS,
    "xisf": FileType.XISF,
    "png": FileType.IMAGE,
    "jpg": FileType.IMAGE,
    "jpeg": FileType.IMAGE,
    "tif": FileType.IMAGE,
    "tiff": FileType.IMAGE,
    "bmp": FileType.IMAGE,
    "gif": FileType.IMAGE,
}

SUPPORTED_EXTENSIONS = frozenset(FILE_TYPES_BY_EXTENSION)


def normalize_extension(path_or_suffix: str) -> str:
    """'/a/M81.FITS' -> 'fits', '.Fit' -> 'fit', 'xisf' -> 'xisf'."""
    suffix = Path(path_or_suffix).suffix or path_or_suffix
    return suffix.lstrip(".").lower()


def file_type_for(path: str) -> Optional[FileType]:
    return FILE_TYPES_BY_EXTENSION.get(normalize_extension(path))


def volume_for(path: str) -> Tuple[str, str]:
    """
    Returns (volume_name, volume_root) for a path: the mount point holding
    it, and that mount point's basename (the root itself for '/').
    """
    current = os.path.abspath(path)
    while not os.path.ismount(current):
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    name = os.path.basename(current.rstrip(os.sep)) or current
    return name, current


def strip_tag_text(text) -> str:
    """Removes single and double quotes and surrounding whitespace from a tag key or value."""
    if text is None:
        return ""
    return str(text).replace("'", "").replace('"', "").strip()


# --- Attrs classes for data processing ---
@attrs.define(slots=True, frozen=True)
class FileInfo:
    """An immutable snapshot of a file's location and timestamps."""
    path: str
    mtime: float
    ctime: float
    size: int

    @classmethod
    def from_path(cls, path) -> "FileInfo":
        absolute = os.path.abspath(os.fspath(path))
        stat_result = os.stat(absolute)
        created = getattr(stat_result, "st_birthtime", stat_result.st_ctime)
        return cls(path=absolute, mtime=stat_result.st_mtime, ctime=created, size=stat_result.st_size)

    @property
    def extension(self) -> str:
        return normalize_extension(self.path)


@attrs.define(slots=True)
class AstroFile:
    """A catalog row: file identity, processing state, tags and thumbnails."""
    full_path: str
    file_name: str = ""
    directory_path: str = ""
    volume_name: str = ""
    volume_root: str = ""
    file_extension: str = ""
    file_type: Optional[FileType] = None
    created_time: float = 0.0
    last_modified_time: float = 0.0
    file_hash: str = ""
    image_hash: str = ""
    is_hidden: bool = False
    tag_status: TagStatus = TagStatus.NOT_PROCESSED
    thumbnail_status: ThumbnailStatus = ThumbnailStatus.NOT_PROCESSED
    process_status: ProcessStatus = ProcessStatus.QUEUED
    tags: Dict[str, str] = attrs.field(factory=dict)
    id: Optional[int] = None
    # Display-size and icon-size images; kept out of equality checks.
    thumbnail: Optional[Image.Image] = attrs.field(default=None, eq=False, repr=False)
    tiny_thumbnail: Optional[Image.Image] = attrs.field(default=None, eq=False, repr=False)

    @classmethod
    def from_file_info(cls, file_info: FileInfo) -> "AstroFile":
        """Builds a blank, unprocessed record for a file on disk."""
        path = Path(file_info.path)
        volume_name, volume_root = volume_for(file_info.path)
        return cls(
            full_path=file_info.path,
            file_name=path.stem,
            directory_path=str(path.parent),
            volume_name=volume_name,
            volume_root=volume_root,
            file_extension=file_info.extension,
            file_type=file_type_for(file_info.path),
            created_time=file_info.ctime,
            last_modified_time=file_info.mtime,
        )

    def without_images(self) -> "AstroFile":
        """A copy with both thumbnails dropped, for handing to long-lived holders."""
        return attrs.evolve(self, thumbnail=None, tiny_thumbnail=None)

    def tag(self, key: str) -> str:
        return self.tags.get(key, "")


# --- SQLAlchemy ORM classes for database persistence ---
Base = declarative_base()


class FitsRecord(Base):
    __tablename__ = 'fits'

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_name = Column("FileName", String, key="file_name")
    full_path = Column("FullPath", String, key="full_path", nullable=False, unique=True)
    directory_path = Column("DirectoryPath", String, key="directory_path")
    volume_name = Column("VolumeName", String, key="volume_name")
    volume_root = Column("VolumeRoot", String, key="volume_root")
    file_type = Column("FileType", String, key="file_type")
    file_extension = Column("FileExtension", String, key="file_extension", index=True)
    created_time = Column("CreatedTime", Float, key="created_time")
    last_modified_time = Column("LastModifiedTime", Float, key="last_modified_time")
    tag_status = Column("TagStatus", Integer, key="tag_status", default=int(TagStatus.NOT_PROCESSED))
    thumbnail_status = Column("ThumbnailStatus", Integer, key="thumbnail_status", default=int(ThumbnailStatus.NOT_PROCESSED))
    process_status = Column("ProcessStatus", Integer, key="process_status", default=int(ProcessStatus.QUEUED))
    file_hash = Column("FileHash", String, key="file_hash", index=True)
    image_hash = Column("ImageHash", String, key="image_hash", index=True)
    is_hidden = Column("IsHidden", Boolean, key="is_hidden", default=False, nullable=False)

    tags = relationship("TagRecord", back_populates="fits", cascade="all, delete-orphan", passive_deletes=True)
    thumbnail = relationship("ThumbnailRecord", back_populates="fits", uselist=False, cascade="all, delete-orphan", passive_deletes=True)

    def to_astrofile(self, tags: Optional[Dict[str, str]] = None) -> AstroFile:
        return AstroFile(
            id=self.id,
            full_path=self.full_path,
            file_name=self.file_name or "",
            directory_path=self.directory_path or "",
            volume_name=self.volume_name or "",
            volume_root=self.volume_root or "",
            file_extension=self.file_extension or "",
            file_type=FileType(self.file_type) if self.file_type else None,
            created_time=self.created_time or 0.0,
            last_modified_time=self.last_modified_time or 0.0,
            file_hash=self.file_hash or "",
            image_hash=self.image_hash or "",
            is_hidden=bool(self.is_hidden),
            tag_status=TagStatus(self.tag_status or 0),
            thumbnail_status=ThumbnailStatus(self.thumbnail_status or 0),
            process_status=ProcessStatus(self.process_status or 0),
            tags=dict(tags or {}),
        )

    def update_from(self, astro_file: AstroFile) -> None:
        """Copies every persisted column from an AstroFile, leaving the id alone."""
        self.file_name = astro_file.file_name
        self.full_path = astro_file.full_path
        self.directory_path = astro_file.directory_path
        self.volume_name = astro_file.volume_name
        self.volume_root = astro_file.volume_root
        self.file_type = astro_file.file_type.value if astro_file.file_type else None
        self.file_extension = astro_file.file_extension
        self.created_time = astro_file.created_time
        self.last_modified_time = astro_file.last_modified_time
        self.tag_status = int(astro_file.tag_status)
        self.thumbnail_status = int(astro_file.thumbnail_status)
        self.process_status = int(astro_file.process_status)
        self.file_hash = astro_file.file_hash
        self.image_hash = astro_file.image_hash
        self.is_hidden = astro_file.is_hidden

    def __repr__(self):
        return f"<FitsRecord(id={self.id}, path='{self.full_path}')>"


class TagRecord(Base):
    __tablename__ = 'tags'

    id = Column(Integer, primary_key=True, autoincrement=True)
    fits_id = Column(Integer, ForeignKey('fits.id', ondelete='CASCADE'), nullable=False, index=True)
    tag_key = Column("tagKey", String, key="tag_key", nullable=False)
    tag_value = Column("tagValue", String, key="tag_value")

    fits = relationship("FitsRecord", back_populates="tags")


class ThumbnailRecord(Base):
    __tablename__ = 'thumbnails'

    id = Column(Integer, primary_key=True, autoincrement=True)
    fits_id = Column(Integer, ForeignKey('fits.id', ondelete='CASCADE'), nullable=False, unique=True)
    thumbnail = Column(BLOB)
    tiny_thumbnail = Column(BLOB)

    fits = relationship("FitsRecord", back_populates="thumbnail")
