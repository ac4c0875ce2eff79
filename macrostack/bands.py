"""Row-band partitioning and the per-phase fan-out/fan-in over a worker pool.

Each stacking phase splits the canonical height into contiguous bands, runs one
task per band and waits for all of them before the next phase starts. Tasks
write only their own rows of a shared output buffer, so no locking is needed
for the output itself.
"""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import ALL_COMPLETED, Executor, wait
from dataclasses import dataclass
from typing import Callable

from macrostack.errors import WorkerError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkBand:
    """Half-open row range [start, end)."""

    start: int
    end: int

    def __len__(self) -> int:
        return self.end - self.start

    def as_slice(self) -> slice:
        return slice(self.start, self.end)

    def with_halo(self, halo: int, height: int) -> tuple[slice, slice]:
        """Rows to read for a window metric of radius `halo`.

        Returns `(rows, inner)`: `rows` selects the band plus up to `halo` rows
        on each side (clipped to the image) and `inner` selects the band's own
        rows within that window.
        """
        top = max(0, self.start - halo)
        bottom = min(height, self.end + halo)
        return slice(top, bottom), slice(self.start - top, self.end - top)

    def chunks(self, rows: int):
        """Split the band into consecutive sub-bands of at most `rows` rows."""
        for start in range(self.start, self.end, rows):
            yield WorkBand(start, min(start + rows, self.end))


def partition(height: int, count: int) -> list[WorkBand]:
    """Split [0, height) into at most `count` ordered, disjoint bands.

    Every band but the last holds ceil(height / count) rows. When `count`
    exceeds what the height can fill, the trailing empty bands are omitted.
    """
    if height < 1:
        raise ValueError(f"`height` must be >= 1, got {height}.")
    if count < 1:
        raise ValueError(f"`count` must be >= 1, got {count}.")

    rows = math.ceil(height / count)
    bands = []
    for i in range(count):
        start = i * rows
        if start >= height:
            break
        end = min(start + rows, height)
        bands.append(WorkBand(start, end))
        logger.debug("band %d: rows %d-%d (%d rows)", i, start, end - 1, end - start)
    return bands


class RowCounter:
    """Completed-row counter shared by the band tasks of one phase."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    def add(self, rows: int) -> tuple[int, int]:
        """Add `rows`; return the totals (before, after)."""
        with self._lock:
            before = self._value
            self._value += rows
            return before, self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


def crossed(before: int, after: int, every: int) -> bool:
    """True if a multiple of `every` lies in (before, after]."""
    return after // every > before // every


def run_phase(executor: Executor, bands: list[WorkBand], task: Callable[[WorkBand], None]) -> None:
    """Run `task` once per band and block until every band has finished.

    The first failing band, in band order, is raised as `WorkerError` once all
    tasks have settled.
    """
    futures = [(band, executor.submit(task, band)) for band in bands]
    wait([f for _, f in futures], return_when=ALL_COMPLETED)

    for band, future in futures:
        exc = future.exception()
        if exc is not None:
            logger.error("Band %d-%d failed: %r", band.start, band.end - 1, exc)
            raise WorkerError(band, exc) from exc
