# tests/test_importer.py
import os
import threading
import time

from PIL import Image

from astrocat.app import CatalogApp
from astrocat.catalog import Catalog
from astrocat.config import load_config_with_path
from astrocat.file_processor import NewFileProcessor
from astrocat.importer import FileImporter
from astrocat.models import ProcessStatus


def _open_app(test_env):
    cfg, _ = load_config_with_path(test_env.config_path)
    cfg.search_roots = [str(test_env.data_dir)]
    return CatalogApp(cfg).open()


def test_import_end_to_end(test_env):
    app = _open_app(test_env)
    events = []
    app.importer.import_started.connect(lambda: events.append("started"))
    app.importer.import_finished.connect(lambda: events.append("finished"))

    app.import_paths([test_env.data_dir])
    assert app.wait_for_import(timeout=60)

    assert events == ["started", "finished"]
    assert app.importer.stats["found"] == 5
    assert app.importer.stats["imported"] == 5
    assert app.importer.counters == (0, 0, 0)
    assert not app.importer.is_running

    paths = sorted(af.full_path for af in app.catalog.astrofiles())
    assert paths == sorted(str(p) for p in (
        test_env.m81_l, test_env.m81_r, test_env.m81_copy, test_env.ngc7000, test_env.preview,
    ))
    assert all(af.id is not None for af in app.catalog.astrofiles())
    assert all(af.process_status == ProcessStatus.PROCESSED for af in app.catalog.astrofiles())

    duplicates = app.db_service.get_duplicate_files_by_file_hash().result(timeout=10)
    assert [sorted(af.file_name for af in group) for group in duplicates] == [["M81_L_001", "M81_L_001_copy"]]
    app.close()


def test_reimport_skips_current_files(test_env):
    app = _open_app(test_env)
    app.import_paths([test_env.data_dir])
    assert app.wait_for_import(timeout=60)
    app.close()

    app = _open_app(test_env)
    assert len(app.catalog) == 5
    in_catalog = []
    app.importer.astrofile_is_in_catalog.connect(in_catalog.append)

    app.import_paths([test_env.data_dir])
    assert app.wait_for_import(timeout=60)

    assert len(in_catalog) == 5
    assert app.importer.stats["imported"] == 0
    app.close()


def test_files_outside_search_roots_are_skipped(test_env):
    cfg, _ = load_config_with_path(test_env.config_path)
    cfg.search_roots = [str(test_env.data_dir / "osc")]
    app = CatalogApp(cfg).open()

    app.import_paths([test_env.data_dir])
    assert app.wait_for_import(timeout=60)

    assert [af.full_path for af in app.catalog.astrofiles()] == [str(test_env.ngc7000)]
    assert app.importer.stats["outside_search_roots"] == 4
    app.close()


def test_single_file_import(test_env):
    app = _open_app(test_env)
    app.import_paths([test_env.preview])
    assert app.wait_for_import(timeout=60)

    assert [af.full_path for af in app.catalog.astrofiles()] == [str(test_env.preview)]
    app.close()


def test_cancel_import(test_env):
    app = _open_app(test_env)
    app.importer.pause_import()
    canceled = threading.Event()
    finished = []
    app.importer.import_canceled.connect(canceled.set)
    app.importer.import_finished.connect(lambda: finished.append(True))

    app.import_paths([test_env.data_dir])
    app.cancel_import()

    assert canceled.is_set()
    assert finished == []
    assert app.importer.counters == (0, 0, 0)
    assert not app.importer.is_running
    assert app.importer.wait(timeout=1)

    # A later import still runs to completion.
    app.import_paths([test_env.data_dir])
    assert app.wait_for_import(timeout=60)
    assert len(app.catalog) == 5
    app.close()


def test_modified_file_is_reprocessed_in_place(test_env):
    app = _open_app(test_env)
    app.import_paths([test_env.data_dir])
    assert app.wait_for_import(timeout=60)
    original = app.catalog.get_astrofile_by_path(str(test_env.m81_r))
    assert original is not None

    stat = os.stat(test_env.m81_r)
    os.utime(test_env.m81_r, (stat.st_atime + 3600, stat.st_mtime + 3600))

    modified = []
    updated = []
    app.importer.file_filter.file_is_modified.connect(lambda file_info: modified.append(file_info.path))
    app.catalog.astrofile_updated.connect(lambda astro_file, row: updated.append(astro_file))

    app.import_paths([test_env.data_dir])
    assert app.wait_for_import(timeout=60)

    assert modified == [str(test_env.m81_r)]
    assert app.importer.stats["imported"] == 1
    assert app.importer.stats["in_catalog"] == 4
    assert len(updated) == 1
    assert updated[0].id == original.id
    assert updated[0].full_path == str(test_env.m81_r)
    assert len(app.catalog) == 5
    assert app.catalog.get_astrofile_by_path(str(test_env.m81_r)).id == original.id
    app.close()


def test_crawl_is_held_back_by_a_busy_processor(tmp_path):
    root = tmp_path / "lights"
    root.mkdir()
    for i in range(30):
        Image.new("L", (8, 8), i).save(root / f"frame_{i:02d}.png")

    catalog = Catalog([str(root)], coalesce_interval=0)
    processor = NewFileProcessor(catalog, workers=1)
    importer = FileImporter(catalog, processor, queue_size=2)
    gate = threading.Event()
    processor.processing_started.connect(lambda file_info: gate.wait(timeout=30))

    importer.import_files([str(root)])
    time.sleep(0.5)

    # Two files in the pool, one in the dispatcher's hand, two queued for it,
    # one in the filter's hand, two queued for it and one the crawler is putting.
    assert processor.pending <= processor.max_pending
    assert importer.stats["found"] <= 9
    assert importer.is_running

    gate.set()
    assert importer.wait(timeout=60)
    assert importer.stats["found"] == 30
    assert importer.stats["imported"] == 30
    importer.close()


def test_thumbnail_loads_after_database_cancel_do_not_hang(test_env):
    app = _open_app(test_env)
    app.import_paths([test_env.preview])
    assert app.wait_for_import(timeout=60)
    astro_file = app.catalog.get_astrofile_by_path(str(test_env.preview))

    app.db_service.cancel()
    assert app.thumbnail_cache.get(astro_file) is None
    assert app.thumbnail_cache.wait_idle(timeout=5)
    assert astro_file.id not in app.thumbnail_cache
    app.close()
