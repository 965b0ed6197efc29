# tests/test_file_filter.py
import attrs

from astrocat.catalog import Catalog
from astrocat.file_filter import FileProcessFilter
from astrocat.models import AstroFile, CatalogStatus, FileInfo


def _info(path, mtime=100.0):
    return FileInfo(path=path, mtime=mtime, ctime=mtime, size=10)


def _record(path, mtime=100.0, id=1):
    return attrs.evolve(AstroFile.from_file_info(_info(path, mtime)), id=id)


def test_classification(tmp_path):
    root = str(tmp_path / "lights")
    catalog = Catalog([root], coalesce_interval=0)
    catalog.add_astrofile(_record(f"{root}/m81.fits", mtime=100.0))
    file_filter = FileProcessFilter(catalog)

    assert file_filter.classify(_info(f"{root}/m82.fits")) == CatalogStatus.NEW
    assert file_filter.classify(_info(f"{root}/m81.fits", mtime=200.0)) == CatalogStatus.MODIFIED
    assert file_filter.classify(_info(f"{root}/m81.fits", mtime=100.0)) == CatalogStatus.CURRENT
    assert file_filter.classify(_info(f"{root}/m81.fits", mtime=50.0)) == CatalogStatus.CURRENT
    assert file_filter.classify(_info(str(tmp_path / "elsewhere" / "m81.fits"))) == CatalogStatus.REMOVED
    # A sibling folder sharing the root's name as a prefix is outside the root.
    assert file_filter.classify(_info(f"{root}_old/m81.fits")) == CatalogStatus.REMOVED


def test_filter_file_emits_exactly_one_signal(tmp_path):
    root = str(tmp_path)
    catalog = Catalog([root], coalesce_interval=0)
    catalog.add_astrofile(_record(f"{root}/old.fits", mtime=100.0))
    file_filter = FileProcessFilter(catalog)

    emitted = []
    file_filter.should_process.connect(lambda fi: emitted.append(("new", fi.path)))
    file_filter.file_is_modified.connect(lambda fi: emitted.append(("modified", fi.path)))
    file_filter.file_is_current.connect(lambda fi: emitted.append(("current", fi.path)))
    file_filter.file_is_removed.connect(lambda fi: emitted.append(("removed", fi.path)))

    file_filter.filter_file(_info(f"{root}/new.fits"))
    file_filter.filter_file(_info(f"{root}/old.fits", mtime=101.0))
    file_filter.filter_file(_info(f"{root}/old.fits", mtime=100.0))
    file_filter.filter_file(_info("/somewhere/else.fits"))

    assert emitted == [
        ("new", f"{root}/new.fits"),
        ("modified", f"{root}/old.fits"),
        ("current", f"{root}/old.fits"),
        ("removed", "/somewhere/else.fits"),
    ]
