# tests/test_thumbnail_cache.py
import threading

import attrs
import pytest
from PIL import Image

from astrocat.models import AstroFile
from astrocat.thumbnail_cache import ThumbnailCache


def _astrofile(id):
    return AstroFile(full_path=f"/data/{id}.fits", id=id)


class SlowLoader:
    """Blocks every load until released; records what it was asked for."""

    def __init__(self):
        self.calls = []
        self.release = threading.Event()
        self.lock = threading.Lock()

    def __call__(self, astro_file):
        with self.lock:
            self.calls.append(astro_file.id)
        self.release.wait(timeout=5)
        return attrs.evolve(astro_file, thumbnail=Image.new("L", (4, 4), astro_file.id))


@pytest.fixture
def loader():
    return SlowLoader()


def test_miss_then_hit(loader):
    loader.release.set()
    cache = ThumbnailCache(loader, capacity=10)
    ready = []
    cache.thumbnail_ready.connect(ready.append)

    assert cache.get(_astrofile(1)) is None
    assert cache.wait_idle(timeout=5)
    image = cache.get(_astrofile(1))

    assert image is not None
    assert image.getpixel((0, 0)) == 1
    assert ready == [1]
    assert loader.calls == [1]
    cache.cancel()


def test_single_flight(loader):
    cache = ThumbnailCache(loader, capacity=10)
    for _ in range(5):
        cache.get(_astrofile(7))
    loader.release.set()
    assert cache.wait_idle(timeout=5)

    assert loader.calls == [7]
    assert 7 in cache
    cache.cancel()


def test_lru_eviction():
    cache = ThumbnailCache(lambda af: None, capacity=2)
    for i in (1, 2):
        cache.insert(i, Image.new("L", (1, 1)))
    assert cache.get(_astrofile(1)) is not None  # 1 becomes most recent
    cache.insert(3, Image.new("L", (1, 1)))

    assert 1 in cache
    assert 2 not in cache
    assert 3 in cache
    assert len(cache) == 2
    cache.cancel()


def test_request_queue_is_bounded_and_newest_first(loader):
    cache = ThumbnailCache(loader, capacity=50, max_requests=3)
    cache.get(_astrofile(1))  # taken by the loader, now in flight
    for _ in range(50):
        if loader.calls:
            break
        threading.Event().wait(0.01)
    assert loader.calls == [1]

    for i in range(2, 7):
        cache.get(_astrofile(i))
    assert cache.pending_requests == [4, 5, 6]

    loader.release.set()
    assert cache.wait_idle(timeout=5)
    assert loader.calls == [1, 6, 5, 4]
    cache.cancel()


def test_invalidate_and_clear():
    cache = ThumbnailCache(lambda af: None, capacity=5)
    cache.insert(1, Image.new("L", (1, 1)))
    cache.insert(2, Image.new("L", (1, 1)))
    cache.invalidate(1)
    assert cache.peek(1) is None
    assert cache.peek(2) is not None
    cache.clear()
    assert len(cache) == 0
    cache.cancel()


def test_cancel_is_idempotent_and_stops_requests(loader):
    loader.release.set()
    cache = ThumbnailCache(loader)
    cache.cancel()
    cache.cancel()
    assert cache.request(_astrofile(1)) is False
    assert loader.calls == []


def test_missing_thumbnail_is_not_cached():
    cache = ThumbnailCache(lambda af: None)
    assert cache.get(_astrofile(1)) is None
    assert cache.wait_idle(timeout=5)
    assert 1 not in cache
    cache.cancel()


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        ThumbnailCache(lambda af: None, capacity=0)
