"""Index-map utilities for the depth map strategy.

The index map records, per pixel, which source frame was judged sharpest.
It is built with a hard argmax, cleaned with a median filter, and its
boundaries between sources are located so the compositor can blend across
them.
"""

from __future__ import annotations

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from macrostack.bands import WorkBand

MEDIAN_RADIUS = 5


def index_dtype(count: int) -> np.dtype:
    """Smallest unsigned dtype that can hold frame indices [0, count)."""
    return np.min_scalar_type(max(count - 1, 0))


def select_sharpest(scores: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Hard argmax over the frame axis.

    Args:
        scores: (N, H, W) sharpness per frame, -inf where the frame is sentinel.

    Returns:
        (index_map, sharpness_map). Ties keep the lowest frame index; pixels
        where every frame is sentinel choose frame 0 with sharpness -1.
    """
    index_map = np.argmax(scores, axis=0)
    best = np.take_along_axis(scores, index_map[np.newaxis], axis=0)[0]
    best = np.where(np.isfinite(best), best, -1.0).astype(np.float32)
    return index_map, best


def pad_index_map(index_map: np.ndarray, radius: int) -> np.ndarray:
    """Edge-pad so every window lookup is clamped to the image."""
    return np.pad(index_map, radius, mode="edge")


def median_smooth(padded: np.ndarray, band: WorkBand, radius: int = MEDIAN_RADIUS) -> np.ndarray:
    """Median of the clamped (2r+1)^2 window for each pixel of `band`.

    Args:
        padded: Index map edge-padded by `radius` (see `pad_index_map`).
        band: Rows of the unpadded map to compute.
        radius: Window radius.

    Returns:
        Smoothed indices for the band's rows, shape (len(band), W).
    """
    size = 2 * radius + 1
    block = padded[band.start:band.end + 2 * radius]
    windows = sliding_window_view(block, (size, size))
    flat = windows.reshape(windows.shape[0], windows.shape[1], size * size)
    middle = (size * size) // 2
    return np.partition(flat, middle, axis=-1)[..., middle]


def edge_mask(padded: np.ndarray, band: WorkBand, height: int, width: int) -> np.ndarray:
    """True where a pixel's index differs from one of its 4-neighbours.

    `padded` is the smoothed map edge-padded by 1. Pixels on the image border
    are never edges.
    """
    block = padded[band.start:band.end + 2]
    center = block[1:-1, 1:-1]
    edges = (
        (block[:-2, 1:-1] != center)
        | (block[2:, 1:-1] != center)
        | (block[1:-1, :-2] != center)
        | (block[1:-1, 2:] != center)
    )
    edges[:, 0] = False
    edges[:, width - 1] = False
    if band.start == 0:
        edges[0] = False
    if band.end == height:
        edges[-1] = False
    return edges


def top_two(padded: np.ndarray, band: WorkBand, count: int) -> tuple[np.ndarray, np.ndarray]:
    """The two most frequent indices in each clamped 3x3 neighbourhood.

    Ties go to the lower index. `padded` is the smoothed map edge-padded by 1.
    """
    block = padded[band.start:band.end + 2]
    rows = len(band)
    cols = block.shape[1] - 2
    counts = np.zeros((count, rows, cols), dtype=np.int16)
    for dy in range(3):
        for dx in range(3):
            shifted = block[dy:dy + rows, dx:dx + cols]
            for i in range(count):
                counts[i] += shifted == i

    first = np.argmax(counts, axis=0)
    np.put_along_axis(counts, first[np.newaxis], -1, axis=0)
    second = np.argmax(counts, axis=0)
    return first, second
