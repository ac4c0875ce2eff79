"""Writing the stacked result.

FITS output stores three float32 planes normalised to [0, 1] and tagged with
`CHANNEL = RED / GREEN / BLUE`. PNG, JPEG and TIFF are encoded with OpenCV.
Canon CR2 cannot be produced faithfully; it is approximated by a TIFF written
next to the requested path.
"""

from __future__ import annotations

import enum
import logging
from pathlib import Path

import cv2
import numpy as np
from astropy.io import fits

from macrostack.errors import ConfigError, EncodeError
from macrostack.grid import PixelGrid

logger = logging.getLogger(__name__)

JPEG_QUALITY = 95


class OutputFormat(enum.Enum):
    """Output container, with its display name and file extension."""

    FITS = ("FITS", ".fits")
    PNG = ("PNG", ".png")
    JPEG = ("JPEG", ".jpg")
    TIFF = ("TIFF", ".tif")
    CR2 = ("Canon RAW (CR2)", ".cr2")

    @property
    def display_name(self) -> str:
        return self.value[0]

    @property
    def extension(self) -> str:
        return self.value[1]

    def __str__(self) -> str:
        return self.display_name

    @classmethod
    def parse(cls, name: str) -> "OutputFormat":
        """Look up a format by name or extension (`fits`, `.jpg`, `TIFF`...)."""
        key = str(name).strip().lower().lstrip(".")
        for fmt in cls:
            if key in (fmt.name.lower(), fmt.extension.lstrip(".")):
                return fmt
        aliases = {"jpeg": cls.JPEG, "tiff": cls.TIFF, "fit": cls.FITS}
        if key in aliases:
            return aliases[key]
        choices = ", ".join(f.name.lower() for f in cls)
        raise ConfigError(f"Unknown output format {name!r} (expected one of: {choices})")


def with_extension(path: str | Path, fmt: OutputFormat) -> Path:
    """Append the format's extension unless `path` already ends with it."""
    path = Path(path)
    if path.name.lower().endswith(fmt.extension):
        return path
    return path.with_name(path.name + fmt.extension)


def save_fits(grid: PixelGrid, path: Path) -> None:
    normalized = grid.pixels.astype(np.float32) / 255.0
    hdus = []
    for i, channel in enumerate(("RED", "GREEN", "BLUE")):
        plane = np.ascontiguousarray(normalized[..., i])
        hdu = fits.PrimaryHDU(plane) if i == 0 else fits.ImageHDU(plane)
        hdu.header["CHANNEL"] = (channel, "Color channel")
        hdus.append(hdu)
    fits.HDUList(hdus).writeto(path, overwrite=True)


def save_raster(grid: PixelGrid, path: Path, fmt: OutputFormat) -> None:
    bgr = cv2.cvtColor(grid.pixels, cv2.COLOR_RGB2BGR)
    params: list[int] = []
    if fmt is OutputFormat.JPEG:
        params = [cv2.IMWRITE_JPEG_QUALITY, JPEG_QUALITY]
    extension = ".tif" if fmt is OutputFormat.CR2 else fmt.extension
    ok, buffer = cv2.imencode(extension, bgr, params)
    if not ok:
        raise EncodeError(path, f"OpenCV could not encode {fmt.display_name}")
    path.write_bytes(buffer.tobytes())


def encode(grid: PixelGrid, path: str | Path, fmt: OutputFormat) -> Path:
    """Write `grid` to `path` in `fmt`.

    Returns:
        The path actually written (extension appended; `.tif` for CR2).

    Raises:
        EncodeError: If the file cannot be written.
    """
    path = with_extension(path, fmt)
    if fmt is OutputFormat.CR2:
        path = path.with_suffix(".tif")
        logger.warning("Native CR2 encoding is not supported; saving TIFF to %s", path)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if fmt is OutputFormat.FITS:
            save_fits(grid, path)
        else:
            save_raster(grid, path, fmt)
    except OSError as exc:
        raise EncodeError(path, exc) from exc

    logger.info("Saved %s (%dx%d) to %s", fmt.display_name, grid.width, grid.height, path)
    return path
