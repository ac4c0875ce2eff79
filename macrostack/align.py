"""Translational registration of a focus stack.

Frame 0 is the reference. Every other frame gets an integer offset (dx, dy)
found by a dense template match on gray levels: a coarse search over a stride-5
grid of candidate offsets, then an exhaustive +/-4 refinement around the coarse
optimum. The frame is then re-canvased at that offset onto the reference size;
uncovered pixels become sentinel.

A search that finds nothing better than no shift keeps offset (0, 0); it never
raises.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from macrostack.grid import PixelGrid, recanvas, sentinel_mask, to_gray
from macrostack.progress import ProgressReporter
from macrostack.sharpness import KEYPOINT_RADIUS, local_contrast

logger = logging.getLogger(__name__)

KEYPOINT_CONTRAST = 30
COARSE_STEP = 5
REFINE_RADIUS = 4


@dataclass(frozen=True)
class Offset:
    """Integer translation of a frame relative to the reference."""

    dx: int = 0
    dy: int = 0


def detect_keypoints(gray: np.ndarray, valid: np.ndarray | None = None) -> np.ndarray:
    """Grid points with enough local contrast to be informative.

    Samples every `max(20, min(w, h) // 40)` pixels (staying one stride away
    from the border) and keeps points whose radius-10 contrast exceeds 30.

    Returns:
        (K, 2) int array of (x, y) positions.
    """
    h, w = gray.shape
    step = max(20, min(w, h) // 40)
    ys = np.arange(step, h - step, step)
    xs = np.arange(step, w - step, step)
    if ys.size == 0 or xs.size == 0:
        return np.zeros((0, 2), dtype=int)

    if valid is None:
        valid = np.ones_like(gray, dtype=bool)
    contrast = local_contrast(gray, valid, KEYPOINT_RADIUS)
    grid_y, grid_x = np.meshgrid(ys, xs, indexing="ij")
    keep = contrast[grid_y, grid_x] > KEYPOINT_CONTRAST
    return np.stack([grid_x[keep], grid_y[keep]], axis=1)


def alignment_score(ref_gray: np.ndarray, gray: np.ndarray, dx: int, dy: int) -> float:
    """Mean absolute gray difference between the reference and the frame shifted by (dx, dy).

    The shifted frame at (x, y) is `gray[y - dy, x - dx]`. Samples are taken on a
    stride of `max(10, min(w, h) // 80)` over the reference positions where both
    images are in bounds. Returns inf if there is no overlap.
    """
    h, w = ref_gray.shape
    fh, fw = gray.shape
    step = max(10, min(w, h) // 80)

    ys = np.arange(max(0, dy), min(h, fh + dy), step)
    xs = np.arange(max(0, dx), min(w, fw + dx), step)
    if ys.size == 0 or xs.size == 0:
        return math.inf

    ref = ref_gray[np.ix_(ys, xs)].astype(np.int32)
    moved = gray[np.ix_(ys - dy, xs - dx)].astype(np.int32)
    return float(np.mean(np.abs(ref - moved)))


def find_offset(ref_gray: np.ndarray, gray: np.ndarray) -> Offset:
    """Coarse-to-fine search for the offset minimising `alignment_score`.

    The coarse pass scans dy (outer) and dx (inner) over [-R, R] with stride 5,
    R = min(100, min(w, h) // 10); the refinement scans +/-4 around the coarse
    optimum with stride 1. The search starts from the identity offset and
    only strict improvements replace the current best, so ties keep the
    identity, or else the first offset in scan order.
    """
    h, w = ref_gray.shape
    radius = min(100, min(w, h) // 10)

    best = Offset(0, 0)
    best_score = alignment_score(ref_gray, gray, 0, 0)

    for dy in range(-radius, radius + 1, COARSE_STEP):
        for dx in range(-radius, radius + 1, COARSE_STEP):
            score = alignment_score(ref_gray, gray, dx, dy)
            if score < best_score:
                best_score = score
                best = Offset(dx, dy)

    center = best
    for dy in range(center.dy - REFINE_RADIUS, center.dy + REFINE_RADIUS + 1):
        for dx in range(center.dx - REFINE_RADIUS, center.dx + REFINE_RADIUS + 1):
            score = alignment_score(ref_gray, gray, dx, dy)
            if score < best_score:
                best_score = score
                best = Offset(dx, dy)

    logger.debug("best offset (%d, %d), score %.3f", best.dx, best.dy, best_score)
    return best


def align_images(
    frames: list[PixelGrid],
    reporter: ProgressReporter,
) -> tuple[list[PixelGrid], list[Offset], int]:
    """Align every frame to frame 0.

    Args:
        frames: Decoded frames; frame 0 fixes the canonical size.
        reporter: Progress channel (percent range 30..50).

    Returns:
        (aligned frames, per-frame offsets, reference keypoint count).
    """
    reference = frames[0]
    width, height = reference.size
    ref_gray = to_gray(reference.pixels)

    keypoints = detect_keypoints(ref_gray, ~sentinel_mask(reference.pixels))
    logger.info("Reference frame: %d keypoints", len(keypoints))
    if len(keypoints) == 0:
        logger.warning("Reference frame has little texture, alignment may be unreliable")

    aligned = [reference]
    offsets = [Offset(0, 0)]
    total = len(frames)
    for i in range(1, total):
        reporter.report(30 + i * 20 // total, f"Aligning {i + 1}/{total}")
        frame = frames[i]
        offset = find_offset(ref_gray, to_gray(frame.pixels))
        logger.info("Frame %d offset: dx=%d dy=%d", i, offset.dx, offset.dy)
        aligned.append(recanvas(frame, offset.dx, offset.dy, width, height))
        offsets.append(offset)

    return aligned, offsets, len(keypoints)
