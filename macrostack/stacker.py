"""End-to-end stacking run: load -> align -> stack -> resize.

Progress ranges:
    0-30   loading
    30-50  alignment
    50-95  stacking (50-100 for single-pass strategies)
    95-100 final resize
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from macrostack.align import Offset, align_images
from macrostack.config import StackConfig
from macrostack.decode import decode
from macrostack.errors import EmptyInputError
from macrostack.fusion import stack_frames
from macrostack.grid import PixelGrid, resize_to_exact
from macrostack.preprocess import Decoder, conform_to_canonical, load_image_stack
from macrostack.progress import ProgressCallback, ProgressReporter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StackResult:
    """Output of one run."""

    image: PixelGrid
    offsets: list[Offset] = field(default_factory=list)
    keypoints: int = 0


class ImageStacker:
    """Runs the stacking pipeline with a fixed-size worker pool.

    A run cannot be cancelled once started; it either completes or raises a
    single `StackingError`.
    """

    def __init__(self, config: StackConfig | None = None, decoder: Decoder = decode) -> None:
        self.config = config or StackConfig()
        self.decoder = decoder

    def stack(self, paths: Sequence[str | Path], callback: ProgressCallback | None = None) -> StackResult:
        """Load, align and stack `paths`.

        Args:
            paths: Input files in stacking order; the first fixes the output size.
            callback: Receives `(percent, message)` from a single reader thread.

        Raises:
            EmptyInputError: If `paths` is empty.
            DecodeError: If any file cannot be decoded.
            WorkerError: If a stacking task fails.
            ProgressCallbackError: If `callback` raised; reported once the run ends.
        """
        if not paths:
            raise EmptyInputError()

        threads = self.config.threads
        with ProgressReporter(callback) as reporter:
            with ThreadPoolExecutor(max_workers=threads, thread_name_prefix="stack") as executor:
                reporter.report(0, f"Loading {len(paths)} images ({threads} threads)...")
                frames = load_image_stack([Path(p) for p in paths], executor, reporter, self.decoder)
                return self._run(frames, executor, reporter)

    def stack_frames(self, frames: Sequence[PixelGrid], callback: ProgressCallback | None = None) -> StackResult:
        """Same as `stack` for frames that are already decoded."""
        if not frames:
            raise EmptyInputError()

        with ProgressReporter(callback) as reporter:
            with ThreadPoolExecutor(max_workers=self.config.threads, thread_name_prefix="stack") as executor:
                return self._run(list(frames), executor, reporter)

    def _run(self, frames: list[PixelGrid], executor: ThreadPoolExecutor, reporter: ProgressReporter) -> StackResult:
        config = self.config
        width, height = frames[0].size
        reporter.report(30, f"Resolution: {width}x{height}")

        offsets = [Offset(0, 0)] * len(frames)
        keypoints = 0
        if config.auto_align and len(frames) > 1:
            reporter.report(30, "Auto-aligning...")
            frames, offsets, keypoints = align_images(frames, reporter)
            reporter.report(50, "Alignment done")
        else:
            frames = conform_to_canonical(frames)

        reporter.report(50, f"Stacking with {config.threads} threads...")
        result = stack_frames(
            frames,
            config.algorithm,
            executor,
            config.threads,
            reporter,
            debug_dir=config.debug_dir,
        )

        if result.size != (width, height):
            reporter.report(95, "Final resize...")
            result = resize_to_exact(result, width, height)

        reporter.report(100, f"Done - {result.width}x{result.height}")
        return StackResult(image=result, offsets=list(offsets), keypoints=keypoints)
