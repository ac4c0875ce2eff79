"""Pixel buffers shared by every stage of the pipeline.

A `PixelGrid` wraps one read-only `(H, W, 3)` uint8 RGB array. The all-zero
pixel is the sentinel for "no data": translated frames are padded with it and
every aggregation skips it.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from PIL import Image

SENTINEL = (0, 0, 0)


@dataclass(frozen=True)
class PixelGrid:
    """Immutable RGB image."""

    pixels: np.ndarray  # H x W x 3 uint8, RGB

    def __post_init__(self) -> None:
        pixels = np.asarray(self.pixels)
        if pixels.ndim != 3 or pixels.shape[2] != 3:
            raise ValueError(f"Expected HxWx3 pixels, got shape {pixels.shape}.")
        if pixels.dtype != np.uint8:
            raise ValueError(f"Expected uint8 pixels, got {pixels.dtype}.")
        pixels = np.ascontiguousarray(pixels)
        if pixels is self.pixels:
            pixels = pixels.copy()
        pixels.flags.writeable = False
        object.__setattr__(self, "pixels", pixels)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        """(width, height)"""
        return self.width, self.height

    @classmethod
    def blank(cls, width: int, height: int) -> "PixelGrid":
        """Grid filled with the sentinel value."""
        return cls(np.zeros((height, width, 3), dtype=np.uint8))


def sentinel_mask(pixels: np.ndarray) -> np.ndarray:
    """True where a pixel carries no data."""
    return ~np.any(pixels, axis=-1)


def to_gray(pixels: np.ndarray) -> np.ndarray:
    """Integer gray level `(R + G + B) // 3`; sentinel pixels map to 0."""
    return pixels.astype(np.int32).sum(axis=-1) // 3


def recanvas(grid: PixelGrid, dx: int, dy: int, width: int, height: int) -> PixelGrid:
    """Place `grid` on a sentinel canvas of `width` x `height` with its origin at (dx, dy).

    Whatever falls outside the canvas is dropped, whatever the source does not
    cover stays sentinel.
    """
    if dx == 0 and dy == 0 and grid.size == (width, height):
        return grid

    canvas = np.zeros((height, width, 3), dtype=np.uint8)
    src_h, src_w = grid.height, grid.width

    # Destination window, clipped to the canvas
    x0 = max(0, dx)
    y0 = max(0, dy)
    x1 = min(width, dx + src_w)
    y1 = min(height, dy + src_h)
    if x0 < x1 and y0 < y1:
        canvas[y0:y1, x0:x1] = grid.pixels[y0 - dy:y1 - dy, x0 - dx:x1 - dx]
    return PixelGrid(canvas)


def resize_to_exact(grid: PixelGrid, width: int, height: int) -> PixelGrid:
    """Resample `grid` to exactly `width` x `height`.

    Uses Pillow's bicubic filter, which widens its support when shrinking and
    so anti-aliases. Grids that already have the requested size pass through.
    """
    if grid.size == (width, height):
        return grid
    resized = Image.fromarray(grid.pixels).resize((width, height), Image.Resampling.BICUBIC)
    return PixelGrid(np.asarray(resized, dtype=np.uint8))
