"""Stacking strategies.

Each strategy reads the aligned, canonical-sized frames and fills one shared
output buffer band by band. Band tasks run on the worker pool and write only
their own rows; every phase ends with a barrier (`run_phase`).

Strategies:
- weighted average: contrast-weighted blend of all non-sentinel sources
- max contrast: source with the highest local contrast
- Laplacian: source with the strongest 4-neighbour Laplacian
- pyramid: alias of max contrast, no multi-resolution blending
- depth map: argmax index map, median smoothed, blended across boundaries
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import Executor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import cv2
import numpy as np

from macrostack.bands import RowCounter, WorkBand, crossed, partition, run_phase
from macrostack.config import StackingAlgorithm
from macrostack.grid import PixelGrid, sentinel_mask, to_gray
from macrostack.mask import (
    MEDIAN_RADIUS,
    edge_mask,
    index_dtype,
    median_smooth,
    pad_index_map,
    select_sharpest,
    top_two,
)
from macrostack.progress import ProgressReporter
from macrostack.sharpness import CONTRAST_RADIUS, DEPTH_FAR_RADIUS, depth_sharpness, laplacian, local_contrast

logger = logging.getLogger(__name__)

# Rows handled per step inside a band; bounds temporary memory and sets the
# granularity of the row counter.
CHUNK_ROWS = 32


@dataclass(frozen=True)
class FrameStack:
    """Aligned frames plus their cached gray levels and validity masks."""

    frames: list[PixelGrid]
    gray: list[np.ndarray]  # H x W uint8
    valid: list[np.ndarray]  # H x W bool, False on sentinel pixels

    @classmethod
    def from_frames(cls, frames: list[PixelGrid]) -> "FrameStack":
        if not frames:
            raise ValueError("FrameStack needs at least one frame.")
        size = frames[0].size
        for i, frame in enumerate(frames):
            if frame.size != size:
                raise ValueError(f"Frame {i} is {frame.size}, expected {size}.")
        gray = [to_gray(f.pixels).astype(np.uint8) for f in frames]
        valid = [~sentinel_mask(f.pixels) for f in frames]
        return cls(frames=frames, gray=gray, valid=valid)

    @property
    def count(self) -> int:
        return len(self.frames)

    @property
    def width(self) -> int:
        return self.frames[0].width

    @property
    def height(self) -> int:
        return self.frames[0].height

    def band_pixels(self, band: WorkBand) -> np.ndarray:
        """(N, rows, W, 3) pixels of every frame for the band."""
        return np.stack([f.pixels[band.as_slice()] for f in self.frames], axis=0)

    def band_scores(
        self,
        band: WorkBand,
        metric: Callable[[np.ndarray, np.ndarray], np.ndarray],
        halo: int,
    ) -> np.ndarray:
        """(N, rows, W) metric per frame, -inf on sentinel pixels."""
        rows, inner = band.with_halo(halo, self.height)
        scores = np.empty((self.count, len(band), self.width), dtype=np.float32)
        for i in range(self.count):
            value = metric(self.gray[i][rows], self.valid[i][rows])[inner]
            scores[i] = np.where(self.valid[i][band.as_slice()], value, -np.inf)
        return scores


class PhaseProgress:
    """Maps rows completed in one phase onto a percent sub-range."""

    def __init__(
        self,
        reporter: ProgressReporter,
        height: int,
        start: int,
        span: int,
        label: str,
        every: int = 100,
    ) -> None:
        self.reporter = reporter
        self.height = height
        self.start = start
        self.span = span
        self.label = label
        self.every = every
        self.counter = RowCounter()

    def advance(self, rows: int) -> None:
        before, after = self.counter.add(rows)
        if crossed(before, after, self.every):
            self.reporter.report(
                self.start + after * self.span // self.height,
                f"{self.label}: {after * 100 // self.height}%",
            )


def _select(pixels: np.ndarray, choice: np.ndarray) -> np.ndarray:
    """Pick `pixels[choice[y, x], y, x]` for every pixel."""
    return np.take_along_axis(pixels, choice[np.newaxis, ..., np.newaxis], axis=0)[0]


# -------------------------
# Single-pass strategies
# -------------------------

def _weighted_average_rows(stack: FrameStack, chunk: WorkBand) -> np.ndarray:
    contrast = stack.band_scores(
        chunk, lambda g, v: local_contrast(g, v, CONTRAST_RADIUS), CONTRAST_RADIUS
    )
    # Sentinel sources (-inf) get zero weight.
    weights = np.where(np.isfinite(contrast), (contrast.astype(np.float64) + 1.0) ** 2, 0.0)
    pixels = stack.band_pixels(chunk).astype(np.float64)

    total = np.sum(pixels * weights[..., np.newaxis], axis=0)
    weight_sum = np.sum(weights, axis=0)[..., np.newaxis]
    with np.errstate(invalid="ignore", divide="ignore"):
        mean = np.floor(total / weight_sum)
    mean = np.where(weight_sum > 0, np.minimum(mean, 255.0), 0.0)
    return mean.astype(np.uint8)


def _max_contrast_rows(stack: FrameStack, chunk: WorkBand) -> np.ndarray:
    contrast = stack.band_scores(
        chunk, lambda g, v: local_contrast(g, v, CONTRAST_RADIUS), CONTRAST_RADIUS
    )
    # argmax keeps the first frame on ties and falls back to frame 0 when all
    # sources are sentinel, in which case frame 0 is sentinel too.
    return _select(stack.band_pixels(chunk), np.argmax(contrast, axis=0))


def _laplacian_rows(stack: FrameStack, chunk: WorkBand) -> np.ndarray:
    score = stack.band_scores(chunk, lambda g, v: laplacian(g), 1)
    return _select(stack.band_pixels(chunk), np.argmax(score, axis=0))


def _single_pass(
    stack: FrameStack,
    rows_fn: Callable[[FrameStack, WorkBand], np.ndarray],
    label: str,
    executor: Executor,
    bands: list[WorkBand],
    reporter: ProgressReporter,
) -> np.ndarray:
    output = np.zeros((stack.height, stack.width, 3), dtype=np.uint8)
    progress = PhaseProgress(reporter, stack.height, 50, 50, label)

    def task(band: WorkBand) -> None:
        for chunk in band.chunks(CHUNK_ROWS):
            output[chunk.as_slice()] = rows_fn(stack, chunk)
            progress.advance(len(chunk))

    run_phase(executor, bands, task)
    return output


# -------------------------
# Depth map
# -------------------------

def _save_depth_debug(index_map: np.ndarray, sharpness_map: np.ndarray, output_dir: Path) -> None:
    os.makedirs(output_dir, exist_ok=True)
    index_vis = cv2.normalize(index_map.astype(np.float32), None, 0, 255, cv2.NORM_MINMAX)
    cv2.imwrite(os.path.join(output_dir, "depth_index_map.png"), index_vis.astype(np.uint8))
    sharp_vis = cv2.normalize(sharpness_map, None, 0, 255, cv2.NORM_MINMAX)
    cv2.imwrite(os.path.join(output_dir, "depth_sharpness_map.png"), sharp_vis.astype(np.uint8))


def _depth_map(
    stack: FrameStack,
    executor: Executor,
    bands: list[WorkBand],
    reporter: ProgressReporter,
    debug_dir: Path | None = None,
) -> np.ndarray:
    height, width = stack.height, stack.width
    dtype = index_dtype(stack.count)

    # Phase 1: sharpest source per pixel
    reporter.report(50, "Computing depth map...")
    index_map = np.zeros((height, width), dtype=dtype)
    sharpness_map = np.zeros((height, width), dtype=np.float32)
    progress = PhaseProgress(reporter, height, 50, 25, "Depth", every=50)

    def select_task(band: WorkBand) -> None:
        for chunk in band.chunks(CHUNK_ROWS):
            scores = stack.band_scores(chunk, depth_sharpness, DEPTH_FAR_RADIUS)
            index, best = select_sharpest(scores)
            index_map[chunk.as_slice()] = index
            sharpness_map[chunk.as_slice()] = best
            progress.advance(len(chunk))

    run_phase(executor, bands, select_task)

    # Phase 2: median smoothing
    reporter.report(75, "Median smoothing...")
    padded = pad_index_map(index_map, MEDIAN_RADIUS)
    smoothed = np.zeros_like(index_map)
    progress = PhaseProgress(reporter, height, 75, 10, "Smoothing", every=50)

    def smooth_task(band: WorkBand) -> None:
        for chunk in band.chunks(CHUNK_ROWS):
            smoothed[chunk.as_slice()] = median_smooth(padded, chunk, MEDIAN_RADIUS)
            progress.advance(len(chunk))

    run_phase(executor, bands, smooth_task)

    if debug_dir is not None:
        _save_depth_debug(smoothed, sharpness_map, debug_dir)

    # Phase 3: compositing
    reporter.report(85, "Compositing...")
    padded = pad_index_map(smoothed, 1)
    output = np.zeros((height, width, 3), dtype=np.uint8)
    progress = PhaseProgress(reporter, height, 85, 10, "Compositing", every=50)

    def composite_task(band: WorkBand) -> None:
        for chunk in band.chunks(CHUNK_ROWS):
            pixels = stack.band_pixels(chunk)
            chosen = _select(pixels, smoothed[chunk.as_slice()].astype(np.intp))
            edges = edge_mask(padded, chunk, height, width)
            if np.any(edges):
                first, second = top_two(padded, chunk, stack.count)
                a = _select(pixels, first)
                b = _select(pixels, second)
                chosen[edges] = _blend(a[edges], b[edges])
            output[chunk.as_slice()] = chosen
            progress.advance(len(chunk))

    run_phase(executor, bands, composite_task)
    return output


def _blend(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Per-channel average of two pixel sets, preferring the non-sentinel one."""
    a_empty = ~np.any(a, axis=-1, keepdims=True)
    b_empty = ~np.any(b, axis=-1, keepdims=True)
    mean = ((a.astype(np.uint16) + b.astype(np.uint16)) // 2).astype(np.uint8)
    return np.where(a_empty, b, np.where(b_empty, a, mean))


# -------------------------
# Dispatch
# -------------------------

def stack_frames(
    frames: list[PixelGrid],
    algorithm: StackingAlgorithm,
    executor: Executor,
    threads: int,
    reporter: ProgressReporter,
    debug_dir: Path | None = None,
) -> PixelGrid:
    """Combine canonical-sized frames into one image with `algorithm`.

    Args:
        frames: Aligned frames, all the same size.
        algorithm: Strategy to apply.
        executor: Worker pool running the band tasks.
        threads: Number of bands per phase.
        reporter: Progress channel (percent range 50..100).
        debug_dir: Optional directory for depth map visualisations.

    Returns:
        The stacked image.

    Raises:
        WorkerError: If any band task fails.
    """
    stack = FrameStack.from_frames(frames)
    bands = partition(stack.height, threads)
    logger.info(
        "Stacking %d frames (%dx%d) with %s on %d bands",
        stack.count, stack.width, stack.height, algorithm.name, len(bands),
    )

    if algorithm is StackingAlgorithm.WEIGHTED_AVERAGE:
        output = _single_pass(stack, _weighted_average_rows, "Stacking", executor, bands, reporter)
    elif algorithm is StackingAlgorithm.MAX_CONTRAST:
        output = _single_pass(stack, _max_contrast_rows, "Contrast", executor, bands, reporter)
    elif algorithm is StackingAlgorithm.PYRAMID:
        # No multi-resolution blending exists; the pyramid option runs max contrast.
        logger.info("Pyramid strategy runs as max contrast")
        reporter.report(50, "Pyramid (max contrast)...")
        output = _single_pass(stack, _max_contrast_rows, "Contrast", executor, bands, reporter)
    elif algorithm is StackingAlgorithm.LAPLACIAN:
        output = _single_pass(stack, _laplacian_rows, "Laplacian", executor, bands, reporter)
    elif algorithm is StackingAlgorithm.DEPTH_MAP:
        output = _depth_map(stack, executor, bands, reporter, debug_dir=debug_dir)
    else:
        raise ValueError(f"Unsupported stacking algorithm: {algorithm!r}")

    return PixelGrid(output)
