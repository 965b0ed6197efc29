# astrocat/events.py
import logging
import threading
from typing import Any, Callable, List

logger = logging.getLogger(__name__)


class Signal:
    """
    A minimal, thread-safe signal in the spirit of Qt's ``Signal``.

    Handlers are plain callables. ``emit`` calls every connected handler on
    the emitting thread, in connection order. A handler that raises is logged
    and does not prevent the remaining handlers from running.

    Example:
        >>> found = Signal("path")
        >>> found.connect(print)
        >>> found.emit("/data/m81.fits")
        /data/m81.fits
    """

    def __init__(self, *arg_names: str):
        self.arg_names = arg_names
        self._handlers: List[Callable[..., Any]] = []
        self._lock = threading.Lock()

    def connect(self, handler: Callable[..., Any]) -> Callable[..., Any]:
        with self._lock:
            if handler not in self._handlers:
                self._handlers.append(handler)
        return handler

    def disconnect(self, handler: Callable[..., Any]) -> None:
        with self._lock:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

    def emit(self, *args: Any) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(*args)
            except Exception:
                logger.exception("Signal handler %r failed", handler)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    def __repr__(self) -> str:
        return f"<Signal({', '.join(self.arg_names)}) handlers={len(self)}>"
