# astrocat/thumbnail_cache.py
import logging
import threading
from collections import OrderedDict
from typing import Callable, List, Optional, Set

from PIL import Image

from .events import Signal
from .models import AstroFile

logger = logging.getLogger(__name__)

# Pending requests beyond this drop the oldest one; the view only needs what is on screen.
MAX_REQUESTS = 5


class ThumbnailCache:
    """
    Bounded LRU of display thumbnails keyed by AstroFile id, filled on demand
    by one loader thread.

    ``get`` answers hits synchronously. A miss queues a load request unless
    that id is already queued or loading; the newest request is served
    first. When a load completes the image is cached and ``thumbnail_ready``
    fires with the id so the view can repaint that one cell.
    """

    def __init__(
        self,
        loader: Callable[[AstroFile], Optional[AstroFile]],
        capacity: int = 500,
        max_requests: int = MAX_REQUESTS,
    ):
        if capacity < 1:
            raise ValueError("Thumbnail cache capacity must be at least 1")
        self.loader = loader
        self.capacity = capacity
        self.max_requests = max_requests
        self.thumbnail_ready = Signal("astro_file_id")

        self._cache: "OrderedDict[int, Image.Image]" = OrderedDict()
        self._cache_lock = threading.Lock()

        self._requests: List[AstroFile] = []
        self._in_flight: Set[int] = set()
        self._condition = threading.Condition()
        self._cancelled = False
        self._worker: Optional[threading.Thread] = None

    # --- Cache ---
    def get(self, astro_file: AstroFile) -> Optional[Image.Image]:
        """Returns the cached thumbnail, or None after queueing a load."""
        with self._cache_lock:
            image = self._cache.get(astro_file.id)
            if image is not None:
                self._cache.move_to_end(astro_file.id)
                return image
        self.request(astro_file)
        return None

    def peek(self, astro_file_id: int) -> Optional[Image.Image]:
        """Cache lookup without touching recency or loading."""
        with self._cache_lock:
            return self._cache.get(astro_file_id)

    def insert(self, astro_file_id: int, image: Image.Image) -> None:
        with self._cache_lock:
            self._cache[astro_file_id] = image
            self._cache.move_to_end(astro_file_id)
            while len(self._cache) > self.capacity:
                evicted, _ = self._cache.popitem(last=False)
                logger.debug(f"Evicted thumbnail {evicted}")

    def invalidate(self, astro_file_id: int) -> None:
        with self._cache_lock:
            self._cache.pop(astro_file_id, None)

    def clear(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def __contains__(self, astro_file_id: int) -> bool:
        with self._cache_lock:
            return astro_file_id in self._cache

    def __len__(self) -> int:
        with self._cache_lock:
            return len(self._cache)

    # --- Loading ---
    def request(self, astro_file: AstroFile) -> bool:
        """Queues a load. Returns False if it was already queued, loading or cancelled."""
        if astro_file.id is None:
            return False
        with self._condition:
            if self._cancelled or astro_file.id in self._in_flight:
                return False
            if any(r.id == astro_file.id for r in self._requests):
                return False
            if len(self._requests) >= self.max_requests:
                dropped = self._requests.pop(0)
                logger.debug(f"Dropping thumbnail request for {dropped.id}")
            self._requests.append(astro_file)
            self._condition.notify_all()
        self._start_worker()
        return True

    @property
    def pending_requests(self) -> List[int]:
        with self._condition:
            return [r.id for r in self._requests]

    def _start_worker(self) -> None:
        with self._condition:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(target=self._run, name="ThumbnailLoader", daemon=True)
            self._worker.start()

    def _run(self) -> None:
        while True:
            with self._condition:
                while not self._requests and not self._cancelled:
                    self._condition.wait()
                if self._cancelled:
                    return
                astro_file = self._requests.pop()
                self._in_flight.add(astro_file.id)

            try:
                loaded = self.loader(astro_file)
            except Exception:
                logger.exception(f"Loading thumbnail {astro_file.id} failed")
                loaded = None

            with self._condition:
                cancelled = self._cancelled
            if not cancelled and loaded is not None and loaded.thumbnail is not None:
                self.insert(astro_file.id, loaded.thumbnail)
                self.thumbnail_ready.emit(astro_file.id)
            # In flight until cached.
            with self._condition:
                self._in_flight.discard(astro_file.id)
                self._condition.notify_all()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Blocks until no request is queued or loading."""
        with self._condition:
            return self._condition.wait_for(lambda: not self._requests and not self._in_flight, timeout=timeout)

    def cancel(self) -> None:
        """Stops the loader. Safe to call more than once."""
        with self._condition:
            self._cancelled = True
            self._requests.clear()
            self._condition.notify_all()
            worker, self._worker = self._worker, None
        if worker is not None and worker is not threading.current_thread():
            worker.join()
