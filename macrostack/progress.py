"""Progress events from worker threads, delivered to one consumer thread."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable

from macrostack.errors import ProgressCallbackError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]

_CLOSE = object()


class ProgressReporter:
    """Thread-safe channel of `(percent, message)` events.

    `report` may be called from any thread. Events are queued and a single
    reader thread hands them to `callback` in order, so the callback never runs
    concurrently with itself. Percent values are clamped so the callback sees a
    non-decreasing sequence.

    Usage:
        with ProgressReporter(print) as reporter:
            reporter.report(10, "Loading...")
    """

    def __init__(self, callback: ProgressCallback | None = None) -> None:
        self.callback = callback
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._lock = threading.Lock()
        self._last = 0
        self._error: BaseException | None = None
        self._reader: threading.Thread | None = None

    @property
    def percent(self) -> int:
        """Highest percent reported so far."""
        with self._lock:
            return self._last

    def start(self) -> "ProgressReporter":
        if self.callback is not None and self._reader is None:
            self._reader = threading.Thread(target=self._drain, name="progress-reader", daemon=True)
            self._reader.start()
        return self

    def report(self, percent: float, message: str) -> None:
        # Clamp and enqueue under one lock so queue order matches percent order.
        with self._lock:
            value = max(self._last, min(100, int(percent)))
            self._last = value
            logger.debug("%3d%% %s", value, message)
            if self._reader is not None:
                self._queue.put((value, message))

    def close(self, reraise: bool = True) -> None:
        """Deliver pending events, stop the reader and re-raise a callback failure.

        Raises:
            ProgressCallbackError: If the callback raised, when `reraise` is set.
        """
        if self._reader is not None:
            self._queue.put(_CLOSE)
            self._reader.join()
            self._reader = None
        error, self._error = self._error, None
        if error is not None and reraise:
            raise ProgressCallbackError(error) from error

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is _CLOSE:
                return
            if self._error is not None:
                continue
            percent, message = item
            try:
                self.callback(percent, message)
            except Exception as exc:
                self._error = exc

    def __enter__(self) -> "ProgressReporter":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        # Don't mask a pipeline error with a callback failure.
        self.close(reraise=exc_type is None)
