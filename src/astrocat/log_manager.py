# astrocat/log_manager.py
import atexit
import logging
import re
from collections import Counter
from typing import Tuple

# Messages repeated more often than this are counted instead of written.
MAX_REPEATS = 5

# File paths and bare numbers vary between otherwise identical messages.
_PATH_PATTERN = re.compile(r"['\"]?(?:[a-zA-Z]:\\|/)[^:,'\"\s]+['\"]?")
_NUMBER_PATTERN = re.compile(r"\b\d+(?:\.\d+)?\b")


class DeduplicatingLogHandler(logging.FileHandler):
    """
    A file handler that stops writing a message once it has been seen
    ``max_repeats`` times. Importing a broken capture session otherwise
    writes the same decode warning for every frame.

    Messages are grouped by logger, level and text with paths and numbers
    masked, so "Cannot open /lights/1.fits" and "Cannot open /lights/2.fits"
    count as one. ``log_summary`` (run at exit) writes one record per group
    that was cut short.
    """

    def __init__(self, filename, mode='a', encoding=None, delay=False, max_repeats: int = MAX_REPEATS):
        super().__init__(filename, mode, encoding, delay)
        self.max_repeats = max_repeats
        self.seen: Counter = Counter()
        self.suppressed: Counter = Counter()
        atexit.register(self.log_summary)

    @staticmethod
    def message_key(record: logging.LogRecord) -> Tuple[str, int, str]:
        text = _PATH_PATTERN.sub("<PATH>", record.getMessage())
        text = _NUMBER_PATTERN.sub("<N>", text)
        return record.name, record.levelno, text

    def emit(self, record: logging.LogRecord):
        key = self.message_key(record)
        self.seen[key] += 1
        if self.seen[key] > self.max_repeats:
            self.suppressed[key] += 1
            return
        super().emit(record)
        self.flush()

    @property
    def suppressed_total(self) -> int:
        return sum(self.suppressed.values())

    def log_summary(self):
        """Writes one WARNING record per suppressed message group."""
        if not self.suppressed or self.stream is None:
            return
        for (name, _, text), count in self.suppressed.most_common():
            summary = logging.LogRecord(
                name, logging.WARNING, __file__, 0,
                f"Suppressed {count} more instances of: {text}", None, None,
            )
            # Bypass the dedup check; the summary is written once.
            logging.FileHandler.emit(self, summary)
        self.flush()
        self.suppressed.clear()
