from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import cv2
import numpy as np
import pytest

from macrostack.grid import PixelGrid
from macrostack.progress import ProgressReporter

# Scenario: three 100x100 gradient frames, each sharp in one 20x20 patch.
PATCHES = [
    (10, 10),  # frame 0: (x0, y0) of its in-focus patch
    (60, 15),  # frame 1
    (35, 65),  # frame 2
]
PATCH_SIZE = 20


def gray_grid(gray: np.ndarray) -> PixelGrid:
    """Gray levels (H, W) -> RGB grid."""
    gray = np.asarray(gray, dtype=np.uint8)
    return PixelGrid(np.repeat(gray[..., np.newaxis], 3, axis=-1))


def gradient(width: int = 100, height: int = 100) -> np.ndarray:
    x = np.arange(width, dtype=np.int32)
    return np.tile(60 + x, (height, 1)).astype(np.uint8)


def checkerboard(size: int) -> np.ndarray:
    yy, xx = np.mgrid[0:size, 0:size]
    return np.where((xx + yy) % 2 == 0, 220, 40).astype(np.uint8)


def smooth_texture(width: int, height: int, seed: int = 7) -> np.ndarray:
    """Non-repetitive texture that varies smoothly over ~10 pixels."""
    rng = np.random.default_rng(seed)
    coarse = rng.uniform(30, 230, size=(height // 10 + 1, width // 10 + 1)).astype(np.float32)
    fine = cv2.resize(coarse, (width, height), interpolation=cv2.INTER_CUBIC)
    return np.clip(fine, 20, 240).astype(np.uint8)


@pytest.fixture
def focus_stack() -> list[PixelGrid]:
    """Frame k shows a sharp checkerboard in PATCHES[k], the other frames a flat blur there."""
    frames = []
    for k in range(len(PATCHES)):
        gray = gradient()
        for j, (x0, y0) in enumerate(PATCHES):
            region = (slice(y0, y0 + PATCH_SIZE), slice(x0, x0 + PATCH_SIZE))
            gray[region] = checkerboard(PATCH_SIZE) if j == k else 130
        frames.append(gray_grid(gray))
    return frames


@pytest.fixture
def textured_frame() -> PixelGrid:
    rng = np.random.default_rng(3)
    pixels = rng.integers(1, 256, size=(48, 64, 3), dtype=np.uint8)
    return PixelGrid(pixels)


@pytest.fixture
def executor():
    with ThreadPoolExecutor(max_workers=4) as pool:
        yield pool


@pytest.fixture
def reporter():
    with ProgressReporter() as channel:
        yield channel
