# astrocat/filtering.py
"""
The filter projection.

A FilterQuery (an optional file extension plus AND-combined tag equality
filters) compiles to SQL that yields the accepted fits ids and the stat
counts that drive the filter checkboxes. SortFilterProxy applies the
accepted id set, plus folder, date and duplicate selections, on top of
the in-memory catalog rows.
"""
import datetime
import logging
import os
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import attrs
from sqlalchemy import func, select
from sqlalchemy.sql import Select

from .events import Signal
from .models import AstroFile, FitsRecord, TagRecord, normalize_extension, strip_tag_text

logger = logging.getLogger(__name__)

TagFilter = Tuple[str, str]


def _normalize_filters(filters: Iterable[Sequence[str]]) -> Tuple[TagFilter, ...]:
    out: List[TagFilter] = []
    for key, value in filters:
        pair = (strip_tag_text(key), strip_tag_text(value))
        if pair not in out:
            out.append(pair)
    return tuple(out)


@attrs.define(slots=True, frozen=True)
class FilterQuery:
    """An optional file extension and an ordered list of (tagKey, tagValue) filters."""
    file_extension: Optional[str] = attrs.field(
        default=None, converter=lambda ext: normalize_extension(ext) or None if ext else None
    )
    filters: Tuple[TagFilter, ...] = attrs.field(default=(), converter=_normalize_filters)

    @property
    def is_empty(self) -> bool:
        return not self.file_extension and not self.filters

    def with_filter(self, key: str, value: str) -> "FilterQuery":
        return attrs.evolve(self, filters=self.filters + ((key, value),))

    def without_filter(self, key: str, value: str) -> "FilterQuery":
        pair = (strip_tag_text(key), strip_tag_text(value))
        return attrs.evolve(self, filters=tuple(f for f in self.filters if f != pair))

    def with_extension(self, file_extension: Optional[str]) -> "FilterQuery":
        return attrs.evolve(self, file_extension=file_extension)


def constraints(query: FilterQuery) -> list:
    """WHERE clauses on the fits table for a query."""
    clauses = []
    for key, value in query.filters:
        tagged = select(TagRecord.fits_id).where(TagRecord.tag_key == key, TagRecord.tag_value == value)
        clauses.append(FitsRecord.id.in_(tagged))
    if query.file_extension:
        clauses.append(FitsRecord.file_extension == query.file_extension)
    return clauses


def accepted_ids_statement(query: FilterQuery) -> Select:
    return select(FitsRecord.id).where(*constraints(query))


def filter_stats_statement(query: FilterQuery, keys: Iterable[str]) -> Select:
    """(tagKey, tagValue, count) over the constrained rows, for the given keys only."""
    stmt = select(TagRecord.tag_key, TagRecord.tag_value, func.count(TagRecord.id)).where(
        TagRecord.tag_key.in_(list(keys))
    )
    if not query.is_empty:
        stmt = stmt.where(TagRecord.fits_id.in_(accepted_ids_statement(query)))
    return stmt.group_by(TagRecord.tag_key, TagRecord.tag_value).order_by(TagRecord.tag_key, TagRecord.tag_value)


def file_extension_stats_statement(query: FilterQuery) -> Select:
    return (
        select(FitsRecord.file_extension, func.count(FitsRecord.id))
        .where(*constraints(query))
        .group_by(FitsRecord.file_extension)
        .order_by(FitsRecord.file_extension)
    )


class FilterSelection:
    """
    Checkbox state for the filter widgets. Clicking an unchecked box adds
    its (key, value) to the query, clicking a checked one removes it.
    """

    def __init__(self):
        self.query = FilterQuery()
        self.changed = Signal("query")

    def is_checked(self, key: str, value: str) -> bool:
        return (strip_tag_text(key), strip_tag_text(value)) in self.query.filters

    def toggle(self, key: str, value: str) -> bool:
        """Returns the new checked state."""
        if self.is_checked(key, value):
            self.query = self.query.without_filter(key, value)
            checked = False
        else:
            self.query = self.query.with_filter(key, value)
            checked = True
        self.changed.emit(self.query)
        return checked

    def set_extension(self, file_extension: Optional[str]) -> None:
        self.query = self.query.with_extension(file_extension)
        self.changed.emit(self.query)

    def clear(self) -> None:
        self.query = FilterQuery()
        self.changed.emit(self.query)

    @staticmethod
    def display_count(count: int, enabled: bool) -> int:
        return count if enabled else 0


def parse_observation_date(value: str) -> Optional[datetime.date]:
    """The date part of an ISO DATE-OBS value, e.g. '2021-03-04T22:10:05.123'."""
    if not value:
        return None
    try:
        return datetime.date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def sort_key(astro_file: AstroFile) -> Tuple[float, int]:
    return astro_file.created_time, astro_file.id if astro_file.id is not None else -1


def _with_separator(folder: str) -> str:
    return folder if folder.endswith(os.sep) else folder + os.sep


class SortFilterProxy:
    """
    Projects the catalog rows the view should show, ordered by
    (CreatedTime, Id). With no accepted-id set installed and no other
    selection active it accepts every row.
    """

    def __init__(self, catalog):
        self.catalog = catalog
        self.filter_reset = Signal()
        self._lock = threading.Lock()
        self._accepted_ids: Optional[Set[int]] = None
        self._volume: Optional[str] = None
        self._folder: Optional[str] = None
        self._include_subfolders = False
        self._min_date: Optional[datetime.date] = None
        self._max_date: Optional[datetime.date] = None
        self._duplicate_hash: Optional[str] = None
        self._duplicate_by = "file"

    # --- Installing selections ---
    def set_accepted_ids(self, ids: Optional[Iterable[int]]) -> None:
        """Installs the id set from a compiled filter query; None restores identity."""
        with self._lock:
            self._accepted_ids = None if ids is None else set(ids)
        self.invalidate()

    def apply_filter_result(self, query: FilterQuery, ids: Iterable[int]) -> None:
        self.set_accepted_ids(None if query.is_empty else ids)

    @property
    def accepted_ids(self) -> Optional[Set[int]]:
        with self._lock:
            return None if self._accepted_ids is None else set(self._accepted_ids)

    def set_folder(self, volume_name: Optional[str], folder: Optional[str], include_subfolders: bool = False) -> None:
        with self._lock:
            self._volume = volume_name
            self._folder = _with_separator(folder) if folder else None
            self._include_subfolders = include_subfolders
        self.invalidate()

    def clear_folder(self) -> None:
        self.set_folder(None, None)

    def set_date_range(self, min_date: Optional[datetime.date] = None, max_date: Optional[datetime.date] = None) -> None:
        with self._lock:
            self._min_date = min_date
            self._max_date = max_date
        self.invalidate()

    def set_duplicates_filter(self, hash_value: Optional[str], by: str = "file") -> None:
        if by not in ("file", "image"):
            raise ValueError(f"Unknown duplicate relation: {by}")
        with self._lock:
            self._duplicate_hash = hash_value or None
            self._duplicate_by = by
        self.invalidate()

    def invalidate(self) -> None:
        self.filter_reset.emit()

    # --- Predicates ---
    def _folder_accepted(self, astro_file: AstroFile) -> bool:
        if not self._volume or not self._folder:
            return True
        if astro_file.volume_name != self._volume:
            return False
        folder = _with_separator(astro_file.directory_path)
        if folder == self._folder:
            return True
        return self._include_subfolders and folder.startswith(self._folder)

    def _date_accepted(self, astro_file: AstroFile) -> bool:
        if self._min_date is None and self._max_date is None:
            return True
        observed = parse_observation_date(astro_file.tag("DATE-OBS"))
        if observed is None:
            return False
        return (self._min_date is None or observed >= self._min_date) and (
            self._max_date is None or observed <= self._max_date
        )

    def _duplicate_accepted(self, astro_file: AstroFile) -> bool:
        if self._duplicate_hash is None:
            return True
        value = astro_file.file_hash if self._duplicate_by == "file" else astro_file.image_hash
        return value == self._duplicate_hash

    def accepts(self, astro_file: AstroFile) -> bool:
        with self._lock:
            if self._accepted_ids is not None and astro_file.id not in self._accepted_ids:
                return False
            return (
                self._folder_accepted(astro_file)
                and self._date_accepted(astro_file)
                and self._duplicate_accepted(astro_file)
            )

    # --- Projection ---
    def rows(self) -> List[AstroFile]:
        return sorted((af for af in self.catalog.astrofiles() if self.accepts(af)), key=sort_key)

    def row_count(self) -> int:
        return len(self.rows())


def stats_to_dict(rows: Iterable[Tuple[str, str, int]]) -> Dict[str, Dict[str, int]]:
    """[(group, element, count)] -> {group: {element: count}}"""
    grouped: Dict[str, Dict[str, int]] = {}
    for group, element, count in rows:
        grouped.setdefault(group, {})[element] = count
    return grouped
