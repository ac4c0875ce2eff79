"""Per-pixel sharpness metrics.

All metrics work on the integer gray level `(R + G + B) // 3`:

- local contrast: max - min gray over a square window, sentinel samples excluded
- Laplacian: |4c - top - bottom - left - right|, zero on the image border
- depth sharpness: the weighted mix of both used by the depth map strategy

Callers pass a band of rows plus a halo at least as tall as the window radius,
and keep only the band's own rows of the result.
"""

from __future__ import annotations

import cv2
import numpy as np

# Window radii used by the strategies
CONTRAST_RADIUS = 5
DEPTH_NEAR_RADIUS = 3
DEPTH_FAR_RADIUS = 7
KEYPOINT_RADIUS = 10


def local_contrast(gray: np.ndarray, valid: np.ndarray, radius: int) -> np.ndarray:
    """Max - min gray over a clamped (2r+1)^2 window, ignoring sentinel samples.

    Args:
        gray: Gray levels (H, W), values in [0, 255].
        valid: False where the pixel is sentinel (H, W).
        radius: Window radius.

    Returns:
        float32 contrast map (H, W). Windows without any valid sample score 0.
    """
    size = 2 * radius + 1
    kernel = np.ones((size, size), dtype=np.uint8)
    g = gray.astype(np.float32)

    # Push sentinel samples out of reach of max / min.
    high = np.where(valid, g, -1.0).astype(np.float32)
    low = np.where(valid, g, 256.0).astype(np.float32)
    w_max = cv2.dilate(high, kernel, borderType=cv2.BORDER_REPLICATE)
    w_min = cv2.erode(low, kernel, borderType=cv2.BORDER_REPLICATE)

    contrast = w_max - w_min
    contrast[w_max < 0] = 0.0
    return contrast


def laplacian(gray: np.ndarray) -> np.ndarray:
    """Magnitude of the 4-neighbour discrete Laplacian; border pixels score 0."""
    g = gray.astype(np.float32)
    out = np.zeros_like(g)
    if g.shape[0] < 3 or g.shape[1] < 3:
        return out
    out[1:-1, 1:-1] = np.abs(
        4.0 * g[1:-1, 1:-1] - g[:-2, 1:-1] - g[2:, 1:-1] - g[1:-1, :-2] - g[1:-1, 2:]
    )
    return out


def depth_sharpness(gray: np.ndarray, valid: np.ndarray) -> np.ndarray:
    """0.5 * contrast(r=3) + 0.3 * contrast(r=7) + 2.0 * |Laplacian|."""
    near = local_contrast(gray, valid, DEPTH_NEAR_RADIUS)
    far = local_contrast(gray, valid, DEPTH_FAR_RADIUS)
    return near * 0.5 + far * 0.3 + laplacian(gray) * 2.0
