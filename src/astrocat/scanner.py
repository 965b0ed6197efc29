# astrocat/scanner.py
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Generator, Iterable, Optional, Union

from .events import Signal
from .models import SUPPORTED_EXTENSIONS, FileInfo, normalize_extension

logger = logging.getLogger(__name__)


def scan_directory(
    root_path: Union[str, Path],
    whitelist: Iterable[str] = SUPPORTED_EXTENSIONS,
    should_stop: Optional[Callable[[], bool]] = None,
) -> Generator[Path, None, None]:
    """
    Depth-first, recursively yields the files below a directory whose
    extension is in the whitelist. Entries are visited in name order.
    Unreadable directories and entries are logged and skipped.
    """
    allowed = {normalize_extension(ext) for ext in whitelist}
    p = Path(root_path)

    try:
        with os.scandir(p) as it:
            entries = sorted(it, key=lambda entry: entry.name)
    except OSError as e:
        logger.warning(f"Cannot read directory {p}: {e}")
        return

    for entry in entries:
        if should_stop is not None and should_stop():
            return
        try:
            # Symlinks are not followed, so a link back up the tree cannot loop.
            if entry.is_dir(follow_symlinks=False):
                yield from scan_directory(entry.path, allowed, should_stop)
            elif entry.is_file(follow_symlinks=False):
                if normalize_extension(entry.name) in allowed:
                    yield Path(entry.path)
        except OSError as e:
            # Deleted or unreadable while scanning.
            logger.warning(f"Skipping {entry.path}: {e}")
            continue


class FolderCrawler:
    """
    Walks one root at a time and emits a FileInfo per whitelisted file.

    ``pause`` makes the crawl block before its next entry until ``resume``;
    ``cancel`` stops further ``file_found`` emissions. ``started`` and
    ``ended`` are emitted once per crawl regardless of cancellation.
    """

    def __init__(self, whitelist: Iterable[str] = SUPPORTED_EXTENSIONS):
        self.whitelist = frozenset(normalize_extension(ext) for ext in whitelist)
        self.started = Signal("root")
        self.ended = Signal("root")
        self.file_found = Signal("file_info")
        self._pause_condition = threading.Condition()
        self._paused = False
        self._cancelled = threading.Event()

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def pause(self) -> None:
        with self._pause_condition:
            self._paused = True

    def resume(self) -> None:
        with self._pause_condition:
            self._paused = False
            self._pause_condition.notify_all()

    def cancel(self) -> None:
        self._cancelled.set()
        # Wake a paused crawl so it can observe the cancel.
        self.resume()

    def reset(self) -> None:
        """Clears a previous cancel so the crawler can be reused."""
        self._cancelled.clear()

    def _wait_if_paused(self) -> None:
        with self._pause_condition:
            while self._paused and not self._cancelled.is_set():
                self._pause_condition.wait()

    def _should_stop(self) -> bool:
        self._wait_if_paused()
        return self._cancelled.is_set()

    def iter_files(self, root: Union[str, Path]) -> Generator[FileInfo, None, None]:
        for path in scan_directory(root, self.whitelist, self._should_stop):
            try:
                file_info = FileInfo.from_path(path)
            except OSError as e:
                logger.warning(f"Cannot stat {path}: {e}")
                continue
            if self._should_stop():
                return
            yield file_info

    def crawl(self, root: Union[str, Path]) -> int:
        """Crawls one root synchronously. Returns the number of files emitted."""
        root = os.path.abspath(os.fspath(root))
        self.started.emit(root)
        count = 0
        try:
            for file_info in self.iter_files(root):
                self.file_found.emit(file_info)
                count += 1
        finally:
            self.ended.emit(root)
        logger.debug(f"Crawl of {root} found {count} files (cancelled={self.is_cancelled})")
        return count
