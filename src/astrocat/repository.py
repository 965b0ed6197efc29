# astrocat/repository.py
"""
SQL operations on the catalog database. All mutations are expected to
arrive through DbService, which runs them one at a time on its worker.
"""
import logging
import os
import threading
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import delete, func, insert, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from . import decoders
from .database import CatalogDatabase
from .events import Signal
from .filtering import (FilterQuery, accepted_ids_statement, file_extension_stats_statement,
                        filter_stats_statement)
from .models import (AstroFile, FitsRecord, TagRecord, ThumbnailRecord, ThumbnailStatus,
                     strip_tag_text)

logger = logging.getLogger(__name__)

# Columns an upsert overwrites; id and FullPath identify the row.
_UPSERT_EXCLUDED = {"id", "full_path"}


def folder_prefix(path: str) -> str:
    """'/data/M81' -> '/data/M81/' so the prefix cannot match '/data/M81b'."""
    return path if path.endswith(os.sep) else path + os.sep


def _path_startswith(prefix: str):
    # substr comparison is case-sensitive and treats '%' and '_' literally, unlike LIKE.
    return func.substr(FitsRecord.full_path, 1, len(prefix)) == prefix


class FileRepository:
    def __init__(self, database: CatalogDatabase, filter_stat_keys: Iterable[str] = ("OBJECT", "INSTRUME", "FILTER")):
        self.database = database
        self.filter_stat_keys = list(filter_stat_keys)
        self._cancelled = threading.Event()

        self.astrofile_updated = Signal("astro_file")
        self.astrofile_deleted = Signal("astro_file")
        self.thumbnail_loaded = Signal("astro_file")
        self.got_astrofiles = Signal("count")
        self.got_tags = Signal("count")
        self.got_thumbnails = Signal("count")
        self.model_loaded = Signal("astro_files")
        self.filter_stats_loaded = Signal("stats")
        self.file_extension_stats_loaded = Signal("stats")
        self.astrofiles_in_filter = Signal("ids")

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    # --- Writes ---
    def _upsert_fits(self, session: Session, astro_file: AstroFile) -> int:
        record = FitsRecord()
        record.update_from(astro_file)
        values = {
            column.key: getattr(record, column.key)
            for column in FitsRecord.__table__.columns
            if column.key != "id"
        }
        stmt = sqlite_insert(FitsRecord.__table__).values(**values)
        update_dict = {c.key: stmt.excluded[c.key] for c in FitsRecord.__table__.columns if c.key not in _UPSERT_EXCLUDED}
        stmt = stmt.on_conflict_do_update(index_elements=[FitsRecord.__table__.c.full_path], set_=update_dict)
        session.execute(stmt)
        return session.scalar(select(FitsRecord.id).where(FitsRecord.full_path == astro_file.full_path))

    def _replace_tags(self, session: Session, fits_id: int, tags: Dict[str, str]) -> None:
        session.execute(delete(TagRecord).where(TagRecord.fits_id == fits_id))
        rows = [
            {"fits_id": fits_id, "tag_key": strip_tag_text(key), "tag_value": strip_tag_text(value)}
            for key, value in tags.items()
        ]
        if rows:
            session.execute(insert(TagRecord), rows)

    def _replace_thumbnail(self, session: Session, fits_id: int, astro_file: AstroFile) -> ThumbnailStatus:
        """Returns the thumbnail status that matches what is stored."""
        if astro_file.thumbnail is None:
            if astro_file.thumbnail_status == ThumbnailStatus.LOADED:
                # No new image; keep the stored blob if there is one.
                exists = session.scalar(select(ThumbnailRecord.id).where(ThumbnailRecord.fits_id == fits_id))
                return ThumbnailStatus.LOADED if exists is not None else ThumbnailStatus.NOT_PROCESSED
            session.execute(delete(ThumbnailRecord).where(ThumbnailRecord.fits_id == fits_id))
            return astro_file.thumbnail_status

        session.execute(delete(ThumbnailRecord).where(ThumbnailRecord.fits_id == fits_id))
        session.execute(
            insert(ThumbnailRecord),
            [{
                "fits_id": fits_id,
                "thumbnail": decoders.encode_png(astro_file.thumbnail),
                "tiny_thumbnail": decoders.encode_png(astro_file.tiny_thumbnail),
            }],
        )
        return astro_file.thumbnail_status

    def add_or_update_astrofile(self, astro_file: AstroFile) -> AstroFile:
        """
        Inserts the row, or updates it in place when FullPath already exists
        (the id is kept). Tags and thumbnails are replaced in the same
        transaction. Emits ``astrofile_updated`` with the images dropped.
        """
        with self.database.get_session() as session:
            with session.begin():
                fits_id = self._upsert_fits(session, astro_file)
                self._replace_tags(session, fits_id, astro_file.tags)
                thumbnail_status = self._replace_thumbnail(session, fits_id, astro_file)
                if thumbnail_status != astro_file.thumbnail_status:
                    session.execute(
                        FitsRecord.__table__.update()
                        .where(FitsRecord.__table__.c.id == fits_id)
                        .values(thumbnail_status=int(thumbnail_status))
                    )

        stored = astro_file.without_images()
        stored.id = fits_id
        stored.thumbnail_status = thumbnail_status
        stored.tags = {strip_tag_text(k): strip_tag_text(v) for k, v in astro_file.tags.items()}
        self.astrofile_updated.emit(stored)
        return stored

    def delete_astrofile(self, astro_file: AstroFile) -> bool:
        """Deletes one row; tags and thumbnails go with it through the foreign keys."""
        with self.database.get_session() as session:
            with session.begin():
                if astro_file.id is not None:
                    condition = FitsRecord.id == astro_file.id
                else:
                    condition = FitsRecord.full_path == astro_file.full_path
                result = session.execute(
                    delete(FitsRecord).where(condition).execution_options(synchronize_session=False)
                )
        deleted = result.rowcount > 0
        if deleted:
            self.astrofile_deleted.emit(astro_file.without_images())
        return deleted

    def delete_astrofiles_in_folder(self, path: str) -> List[AstroFile]:
        """Deletes every row below a folder. Emits ``astrofile_deleted`` per row."""
        prefix = folder_prefix(path)
        with self.database.get_session() as session:
            with session.begin():
                files = self._astrofiles_in_folder(session, prefix, include_tags=False)
                session.execute(
                    delete(FitsRecord).where(_path_startswith(prefix)).execution_options(synchronize_session=False)
                )
        logger.info(f"Removed {len(files)} catalog entries under {prefix}")
        for astro_file in files:
            self.astrofile_deleted.emit(astro_file)
        return files

    # --- Reads ---
    def _load_tags(self, session: Session, fits_ids: Optional[Iterable[int]] = None) -> Dict[int, Dict[str, str]]:
        stmt = select(TagRecord.fits_id, TagRecord.tag_key, TagRecord.tag_value)
        if fits_ids is not None:
            stmt = stmt.where(TagRecord.fits_id.in_(list(fits_ids)))
        tags: Dict[int, Dict[str, str]] = defaultdict(dict)
        for fits_id, key, value in session.execute(stmt):
            tags[fits_id][key] = value or ""
        return tags

    def _astrofiles_in_folder(self, session: Session, prefix: str, include_tags: bool) -> List[AstroFile]:
        records = session.scalars(
            select(FitsRecord).where(_path_startswith(prefix)).order_by(FitsRecord.id)
        ).all()
        tags = self._load_tags(session, [r.id for r in records]) if include_tags and records else {}
        return [r.to_astrofile(tags.get(r.id)) for r in records]

    def get_astrofiles_in_folder(self, path: str, include_tags: bool = False) -> List[AstroFile]:
        with self.database.get_session() as session:
            return self._astrofiles_in_folder(session, folder_prefix(path), include_tags)

    def get_astrofile(self, full_path: str) -> Optional[AstroFile]:
        with self.database.get_session() as session:
            record = session.scalars(select(FitsRecord).where(FitsRecord.full_path == full_path)).first()
            if record is None:
                return None
            return record.to_astrofile(self._load_tags(session, [record.id]).get(record.id))

    def load_model(self) -> List[AstroFile]:
        """
        Loads every row with its tags and tiny thumbnail. Emits a progress
        event after each stage, then ``model_loaded``.
        """
        with self.database.get_session() as session:
            records = session.scalars(select(FitsRecord).order_by(FitsRecord.id)).all()
            astro_files = {r.id: r.to_astrofile() for r in records}
            self.got_astrofiles.emit(len(astro_files))

            tags = self._load_tags(session)
            for fits_id, file_tags in tags.items():
                if fits_id in astro_files:
                    astro_files[fits_id].tags = file_tags
            self.got_tags.emit(len(tags))

            thumbnail_count = 0
            for fits_id, blob in session.execute(select(ThumbnailRecord.fits_id, ThumbnailRecord.tiny_thumbnail)):
                if fits_id not in astro_files:
                    continue
                try:
                    astro_files[fits_id].tiny_thumbnail = decoders.decode_png(blob)
                except OSError as e:
                    logger.warning(f"Corrupt tiny thumbnail for id {fits_id}: {e}")
                    continue
                astro_files[fits_id].thumbnail_status = ThumbnailStatus.LOADED
                thumbnail_count += 1
            self.got_thumbnails.emit(thumbnail_count)

        result = list(astro_files.values())
        self.model_loaded.emit(result)
        return result

    def load_thumbnail(self, astro_file: AstroFile) -> Optional[AstroFile]:
        """Reads both thumbnail sizes for one row. Returns None if there is none."""
        if self._cancelled.is_set():
            return None
        with self.database.get_session() as session:
            row = session.execute(
                select(ThumbnailRecord.thumbnail, ThumbnailRecord.tiny_thumbnail)
                .where(ThumbnailRecord.fits_id == astro_file.id)
            ).first()
        if row is None:
            return None
        loaded = astro_file.without_images()
        loaded.thumbnail = decoders.decode_png(row.thumbnail)
        loaded.tiny_thumbnail = decoders.decode_png(row.tiny_thumbnail)
        if self._cancelled.is_set():
            return None
        self.thumbnail_loaded.emit(loaded)
        return loaded

    def _duplicate_groups(self, column) -> List[List[AstroFile]]:
        with self.database.get_session() as session:
            duplicated = (
                select(column)
                .where(column.is_not(None), column != "")
                .group_by(column)
                .having(func.count(FitsRecord.id) > 1)
            )
            records = session.scalars(
                select(FitsRecord).where(column.in_(duplicated)).order_by(column, FitsRecord.id)
            ).all()
            groups: Dict[str, List[AstroFile]] = defaultdict(list)
            for record in records:
                astro_file = record.to_astrofile()
                groups[getattr(record, column.key)].append(astro_file)
        return list(groups.values())

    def get_duplicate_files_by_file_hash(self) -> List[List[AstroFile]]:
        return self._duplicate_groups(FitsRecord.file_hash)

    def get_duplicate_files_by_image_hash(self) -> List[List[AstroFile]]:
        return self._duplicate_groups(FitsRecord.image_hash)

    def get_duplicate_files(self) -> Tuple[List[List[AstroFile]], List[List[AstroFile]]]:
        """(groups by file hash, groups by image hash), each group of size > 1."""
        return self.get_duplicate_files_by_file_hash(), self.get_duplicate_files_by_image_hash()

    # --- Filter projection queries ---
    def load_filter_stats(self, file_extension: Optional[str] = None, filters=()) -> List[Tuple[str, str, int]]:
        query = FilterQuery(file_extension, filters)
        with self.database.get_session() as session:
            stats = [tuple(row) for row in session.execute(filter_stats_statement(query, self.filter_stat_keys))]
        self.filter_stats_loaded.emit(stats)
        return stats

    def load_file_extension_stats(self, file_extension: Optional[str] = None, filters=()) -> Dict[str, int]:
        query = FilterQuery(file_extension, filters)
        with self.database.get_session() as session:
            stats = {ext or "": count for ext, count in session.execute(file_extension_stats_statement(query))}
        self.file_extension_stats_loaded.emit(stats)
        return stats

    def load_astrofiles(self, file_extension: Optional[str] = None, filters=()) -> Set[int]:
        """The ids accepted by a filter query."""
        query = FilterQuery(file_extension, filters)
        with self.database.get_session() as session:
            ids = set(session.scalars(accepted_ids_statement(query)))
        self.astrofiles_in_filter.emit(ids)
        return ids

    def count(self) -> int:
        with self.database.get_session() as session:
            return session.scalar(select(func.count(FitsRecord.id))) or 0
