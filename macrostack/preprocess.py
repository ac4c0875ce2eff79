"""Loading a focus stack.

Each input file is decoded as its own task on the shared worker pool; results
are gathered back in input order once every task has been awaited. The first
frame fixes the canonical resolution of the run.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future
from pathlib import Path
from typing import Callable, Sequence

from macrostack.decode import SUPPORTED_EXTENSIONS, decode
from macrostack.errors import DecodeError
from macrostack.grid import PixelGrid, recanvas
from macrostack.progress import ProgressReporter

logger = logging.getLogger(__name__)

Decoder = Callable[[Path], PixelGrid]


def collect_inputs(inputs: Sequence[str | Path]) -> list[Path]:
    """Expand directories into their supported image files (sorted by name)."""
    paths: list[Path] = []
    for item in inputs:
        item = Path(item)
        if item.is_dir():
            found = sorted(p for p in item.iterdir() if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS)
            logger.info("Found %d images in %s", len(found), item)
            paths.extend(found)
        else:
            paths.append(item)
    return paths


def load_image_stack(
    paths: Sequence[Path],
    executor: Executor,
    reporter: ProgressReporter,
    decoder: Decoder = decode,
) -> list[PixelGrid]:
    """Decode every path in parallel.

    Args:
        paths: Input files, in stacking order.
        executor: Worker pool running one decode task per file.
        reporter: Progress channel (percent range 0..30).
        decoder: Callable turning a path into a `PixelGrid`.

    Returns:
        Frames in the same order as `paths`.

    Raises:
        DecodeError: For the first file (in input order) that failed. Decodes
            that have not started yet are cancelled; tasks already running are
            left to finish and their results are dropped.
    """
    total = len(paths)
    futures = [executor.submit(decoder, Path(p)) for p in paths]

    frames: list[PixelGrid] = []
    for i, (path, future) in enumerate(zip(paths, futures)):
        try:
            frame = future.result()
        except DecodeError:
            _cancel_pending(futures[i + 1:])
            raise
        except Exception as exc:
            _cancel_pending(futures[i + 1:])
            raise DecodeError(path, exc) from exc
        frames.append(frame)
        logger.debug("Loaded %s: %dx%d", Path(path).name, frame.width, frame.height)
        reporter.report((i + 1) * 30 // total, f"Loaded: {Path(path).name}")

    return frames


def _cancel_pending(futures: list[Future]) -> None:
    cancelled = sum(future.cancel() for future in futures)
    if cancelled:
        logger.info("Cancelled %d pending decodes", cancelled)


def conform_to_canonical(frames: list[PixelGrid]) -> list[PixelGrid]:
    """Pad or crop every frame to the size of frame 0, anchored at the origin."""
    width, height = frames[0].size
    conformed = []
    for i, frame in enumerate(frames):
        if frame.size != (width, height):
            logger.warning(
                "Frame %d is %dx%d, expected %dx%d; padding/cropping",
                i, frame.width, frame.height, width, height,
            )
        conformed.append(recanvas(frame, 0, 0, width, height))
    return conformed
