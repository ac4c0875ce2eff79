"""Decoding input files into `PixelGrid`s.

Standard rasters are read with OpenCV and FITS files with astropy. Camera raw
files go through an ordered ladder of decoders:

1. dcraw (full resolution, camera white balance, 16-bit output)
2. ImageMagick (`magick convert`, or the legacy `convert` binary)
3. the largest JPEG preview embedded in the file (low resolution)

Each rung reports success or failure as a `DecodeAttempt`; the first success
wins and a total failure lists every rung's error.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import cv2
import numpy as np
from astropy.io import fits

from macrostack.errors import DecodeError
from macrostack.grid import PixelGrid

logger = logging.getLogger(__name__)

RASTER_EXTENSIONS = (".jpg", ".jpeg", ".png", ".tif", ".tiff", ".bmp")
FITS_EXTENSIONS = (".fits", ".fit", ".fts")
RAW_EXTENSIONS = (
    ".arw", ".cr2", ".cr3", ".nef", ".raw", ".dng", ".orf",
    ".raf", ".rw2", ".pef", ".srw", ".sr2", ".srf",
)
SUPPORTED_EXTENSIONS = RASTER_EXTENSIONS + FITS_EXTENSIONS + RAW_EXTENSIONS

TOOL_TIMEOUT = 300  # seconds per external decoder run
MAX_SCAN_BYTES = 100_000_000
MIN_PREVIEW_BYTES = 1024
# Second byte of the first marker after SOI (APP0, APP1, DQT, SOF0, SOF2, DHT)
JPEG_START_MARKERS = (0xE0, 0xE1, 0xDB, 0xC0, 0xC2, 0xC4)


@dataclass(frozen=True)
class DecodeAttempt:
    """Outcome of one decoder rung: a grid or an error message."""

    grid: PixelGrid | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.grid is not None


def _to_rgb8(image: np.ndarray) -> np.ndarray:
    """OpenCV BGR(A) / gray image of any depth -> RGB uint8."""
    if image.dtype == np.uint16:
        image = (image >> 8).astype(np.uint8)
    elif image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2RGB)
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def decode_bytes(data: bytes) -> PixelGrid | None:
    """Decode an in-memory raster (PNG, JPEG, PPM, TIFF...), None if unreadable."""
    buffer = np.frombuffer(data, dtype=np.uint8)
    if buffer.size == 0:
        return None
    image = cv2.imdecode(buffer, cv2.IMREAD_ANYDEPTH | cv2.IMREAD_ANYCOLOR)
    if image is None:
        return None
    return PixelGrid(_to_rgb8(image))


def load_raster(path: Path) -> PixelGrid:
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise DecodeError(path, exc) from exc
    grid = decode_bytes(data)
    if grid is None:
        raise DecodeError(path, "unsupported or corrupt image data")
    return grid


def load_fits(path: Path) -> PixelGrid:
    """Read a 3-plane RED/GREEN/BLUE FITS file normalised to [0, 1]."""
    try:
        with fits.open(path) as hdul:
            planes = {}
            for hdu in hdul:
                channel = str(hdu.header.get("CHANNEL", "")).upper()
                if hdu.data is not None and channel in ("RED", "GREEN", "BLUE"):
                    planes[channel] = np.asarray(hdu.data, dtype=np.float32)
            if len(planes) != 3:
                # Plain FITS: a single plane or a (3, H, W) cube
                data = np.asarray(hdul[0].data, dtype=np.float32)
                if data.ndim == 2:
                    planes = {"RED": data, "GREEN": data, "BLUE": data}
                elif data.ndim == 3 and data.shape[0] == 3:
                    planes = dict(zip(("RED", "GREEN", "BLUE"), data))
                else:
                    raise DecodeError(path, f"unsupported FITS layout {data.shape}")
    except (OSError, TypeError, ValueError) as exc:
        raise DecodeError(path, exc) from exc

    rgb = np.stack([planes["RED"], planes["GREEN"], planes["BLUE"]], axis=-1)
    rgb = np.nan_to_num(rgb, nan=0.0)
    return PixelGrid(np.clip(np.rint(rgb * 255.0), 0, 255).astype(np.uint8))


# -------------------------
# Raw decoder ladder
# -------------------------

def _run_tool(command: list[str]) -> tuple[bytes | None, str | None]:
    """Run an external decoder, returning (stdout, None) or (None, error)."""
    try:
        proc = subprocess.run(command, capture_output=True, timeout=TOOL_TIMEOUT, check=False)
    except FileNotFoundError:
        return None, f"{command[0]} not found"
    except subprocess.TimeoutExpired:
        return None, f"{command[0]} timed out"
    except OSError as exc:
        return None, f"{command[0]} failed to start: {exc}"
    if proc.returncode != 0:
        detail = proc.stderr.decode("utf-8", "replace").strip().splitlines()
        return None, f"{command[0]} exit code {proc.returncode}" + (f": {detail[-1]}" if detail else "")
    return proc.stdout, None


def decode_with_dcraw(path: Path) -> DecodeAttempt:
    # -c stdout, -w camera white balance, -q 3 high quality, -o 1 sRGB, -4 16-bit linear
    output, error = _run_tool(["dcraw", "-c", "-w", "-q", "3", "-o", "1", "-4", str(path)])
    if error is not None:
        return DecodeAttempt(error=error)
    if output is None or len(output) < 1000:
        return DecodeAttempt(error="dcraw output too small or missing")
    grid = decode_bytes(output)
    if grid is None:
        return DecodeAttempt(error="failed to read dcraw output")
    logger.info("dcraw loaded %s: %dx%d", path.name, grid.width, grid.height)
    return DecodeAttempt(grid=grid)


def decode_with_imagemagick(path: Path) -> DecodeAttempt:
    errors = []
    for command in (["magick", "convert"], ["convert"]):
        if shutil.which(command[0]) is None:
            errors.append(f"{command[0]} not found")
            continue
        output, error = _run_tool(command + [str(path), "-auto-orient", "png:-"])
        if error is not None:
            errors.append(error)
            continue
        grid = decode_bytes(output) if output and len(output) > 1000 else None
        if grid is None:
            errors.append(f"{command[0]} produced no readable image")
            continue
        logger.info("%s loaded %s: %dx%d", command[0], path.name, grid.width, grid.height)
        return DecodeAttempt(grid=grid)
    return DecodeAttempt(error="; ".join(errors))


def find_embedded_jpeg(data: bytes) -> PixelGrid | None:
    """Largest decodable JPEG stream embedded in `data`, by pixel count."""
    best: PixelGrid | None = None
    start = data.find(b"\xff\xd8\xff")
    while start != -1 and start + 3 < len(data):
        if data[start + 3] in JPEG_START_MARKERS:
            end = data.find(b"\xff\xd9", start + 10)
            if end == -1:
                break
            segment = data[start:end + 2]
            if len(segment) > MIN_PREVIEW_BYTES:
                grid = decode_bytes(segment)
                if grid is not None and (best is None or grid.width * grid.height > best.width * best.height):
                    best = grid
        start = data.find(b"\xff\xd8\xff", start + 1)
    return best


def extract_embedded_jpeg(path: Path) -> DecodeAttempt:
    logger.warning("Using embedded JPEG preview of %s (low resolution); install dcraw for full resolution", path.name)
    try:
        with path.open("rb") as f:
            data = f.read(MAX_SCAN_BYTES)
    except OSError as exc:
        return DecodeAttempt(error=str(exc))
    grid = find_embedded_jpeg(data)
    if grid is None:
        return DecodeAttempt(error="no valid embedded JPEG found")
    logger.warning("Extracted JPEG preview: %dx%d", grid.width, grid.height)
    return DecodeAttempt(grid=grid)


RAW_LADDER: tuple[tuple[str, Callable[[Path], DecodeAttempt]], ...] = (
    ("dcraw", decode_with_dcraw),
    ("ImageMagick", decode_with_imagemagick),
    ("embedded JPEG", extract_embedded_jpeg),
)


def load_raw(path: Path, ladder=RAW_LADDER) -> PixelGrid:
    """Try each rung of `ladder` in order; aggregate the errors if all fail."""
    failures = []
    for name, rung in ladder:
        attempt = rung(path)
        if attempt.ok:
            return attempt.grid
        logger.warning("%s failed for %s: %s", name, path.name, attempt.error)
        failures.append(f"{name}: {attempt.error}")
    raise DecodeError(path, "cannot load RAW file (install dcraw); " + " | ".join(failures))


def decode(path: str | Path) -> PixelGrid:
    """Decode one input file.

    Raises:
        DecodeError: If the file is unreadable, corrupt or unsupported.
    """
    path = Path(path)
    if not path.is_file():
        raise DecodeError(path, "no such file")
    suffix = path.suffix.lower()
    if suffix in RASTER_EXTENSIONS:
        return load_raster(path)
    if suffix in FITS_EXTENSIONS:
        return load_fits(path)
    return load_raw(path)
