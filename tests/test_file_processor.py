# tests/test_file_processor.py
import threading

import numpy as np
import xxhash

from astrocat.catalog import Catalog
from astrocat.file_processor import NewFileProcessor, process_astrofile
from astrocat.models import FileInfo, FileType, ProcessStatus, TagStatus, ThumbnailStatus


def test_process_fits_file(test_env):
    """
    Tests the full record for a mono FITS light frame.
    """
    file_info = FileInfo.from_path(test_env.m81_l)
    astro_file = process_astrofile(file_info)

    assert astro_file.process_status == ProcessStatus.PROCESSED
    assert astro_file.tag_status == TagStatus.EXTRACTED
    assert astro_file.thumbnail_status == ThumbnailStatus.LOADED

    # Identity
    assert astro_file.file_name == "M81_L_001"
    assert astro_file.file_extension == "fits"
    assert astro_file.file_type == FileType.FITS
    assert astro_file.directory_path == str(test_env.m81_l.parent)
    assert astro_file.full_path.startswith(astro_file.volume_root)

    # Tags
    assert astro_file.tags["OBJECT"] == "M81"
    assert astro_file.tags["FILTER"] == "L"
    assert astro_file.tags["NAXIS1"] == "100"

    # Thumbnails fit their boxes
    assert max(astro_file.thumbnail.size) == 200
    assert max(astro_file.tiny_thumbnail.size) == 20

    # Hashes
    raw = test_env.m81_l.read_bytes()
    assert astro_file.file_hash == xxhash.xxh64(raw, seed=len(raw)).hexdigest()
    assert len(astro_file.image_hash) == 16


def test_byte_identical_files_share_hashes(test_env):
    original = process_astrofile(FileInfo.from_path(test_env.m81_l))
    copy = process_astrofile(FileInfo.from_path(test_env.m81_copy))
    other = process_astrofile(FileInfo.from_path(test_env.m81_r))

    assert original.file_hash == copy.file_hash
    assert original.image_hash == copy.image_hash
    assert original.file_hash != other.file_hash
    assert original.image_hash != other.image_hash


def test_unreadable_file_fails_without_tags(tmp_path):
    broken = tmp_path / "broken.fits"
    broken.write_bytes(b"this is not a FITS file at all")

    astro_file = process_astrofile(FileInfo.from_path(broken))

    assert astro_file.process_status == ProcessStatus.FAILED
    assert astro_file.thumbnail is None
    assert astro_file.tags == {}


def test_undecodable_image_keeps_tags(fits_factory):
    """A 1-D FITS file has a header but no image; the tags survive the failure."""
    path = fits_factory("spectrum.fits", np.arange(64, dtype=np.int16), OBJECT="Vega")

    astro_file = process_astrofile(FileInfo.from_path(path))

    assert astro_file.process_status == ProcessStatus.FAILED
    assert astro_file.tag_status == TagStatus.EXTRACTED
    assert astro_file.thumbnail_status == ThumbnailStatus.FAILED
    assert astro_file.thumbnail is None
    assert astro_file.tags["OBJECT"] == "Vega"


def test_png_is_processed_without_stretch(test_env):
    astro_file = process_astrofile(FileInfo.from_path(test_env.preview))

    assert astro_file.process_status == ProcessStatus.PROCESSED
    assert astro_file.file_type == FileType.IMAGE
    assert astro_file.thumbnail.size == (200, 150)
    pixel = astro_file.thumbnail.getpixel((100, 75))
    assert all(abs(a - b) <= 1 for a, b in zip(pixel, (30, 60, 90)))


def test_processor_emits_once_per_file(test_env):
    catalog = Catalog([str(test_env.data_dir)], coalesce_interval=0)
    processor = NewFileProcessor(catalog, workers=2)
    processed = []
    lock = threading.Lock()

    def on_processed(astro_file):
        with lock:
            processed.append(astro_file.full_path)

    processor.astrofile_processed.connect(on_processed)
    for path in (test_env.m81_l, test_env.m81_r, test_env.preview):
        processor.process_new_file(FileInfo.from_path(path))

    assert processor.wait_for_drain(timeout=30)
    processor.shutdown()
    assert sorted(processed) == sorted(str(p) for p in (test_env.m81_l, test_env.m81_r, test_env.preview))


def test_processor_cancel_emits_cancelled(test_env):
    catalog = Catalog([str(test_env.data_dir)], coalesce_interval=0)
    processor = NewFileProcessor(catalog, workers=1)
    cancelled = []
    processed = []
    processor.processing_cancelled.connect(cancelled.append)
    processor.astrofile_processed.connect(processed.append)

    processor.cancel()
    processor.process_new_file(FileInfo.from_path(test_env.m81_l))

    assert processed == []
    assert [fi.path for fi in cancelled] == [str(test_env.m81_l)]


def test_processor_skips_files_outside_search_roots(test_env):
    catalog = Catalog([str(test_env.data_dir / "osc")], coalesce_interval=0)
    processor = NewFileProcessor(catalog, workers=1)
    cancelled = []
    processor.processing_cancelled.connect(cancelled.append)

    processor.process_new_file(FileInfo.from_path(test_env.m81_l))
    assert processor.wait_for_drain(timeout=30)
    processor.shutdown()

    assert len(cancelled) == 1


def test_process_new_file_blocks_while_the_pool_is_full(test_env):
    processor = NewFileProcessor(workers=1)
    gate = threading.Event()
    processor.processing_started.connect(lambda file_info: gate.wait(timeout=30))
    submitted = []

    def feed():
        for _ in range(10):
            processor.process_new_file(FileInfo.from_path(test_env.preview))
            submitted.append(True)

    feeder = threading.Thread(target=feed)
    feeder.start()
    feeder.join(timeout=0.5)

    # One file running, one waiting for the worker, the third call held back.
    assert feeder.is_alive()
    assert processor.max_pending == 2
    assert len(submitted) == 2
    assert processor.pending == 2

    gate.set()
    feeder.join(timeout=30)
    assert not feeder.is_alive()
    assert len(submitted) == 10
    assert processor.wait_for_drain(timeout=30)
    processor.shutdown()


def test_cancel_releases_a_blocked_caller(test_env):
    processor = NewFileProcessor(workers=1, max_pending=1)
    gate = threading.Event()
    processor.processing_started.connect(lambda file_info: gate.wait(timeout=30))
    cancelled = []
    processor.processing_cancelled.connect(cancelled.append)

    processor.process_new_file(FileInfo.from_path(test_env.m81_l))
    blocked = threading.Thread(target=processor.process_new_file, args=(FileInfo.from_path(test_env.m81_r),))
    blocked.start()
    blocked.join(timeout=0.3)
    assert blocked.is_alive()

    processor.cancel()
    blocked.join(timeout=5)
    assert not blocked.is_alive()
    gate.set()
    assert processor.wait_for_drain(timeout=30)
    processor.shutdown()
    assert sorted(fi.path for fi in cancelled) == sorted([str(test_env.m81_l), str(test_env.m81_r)])
