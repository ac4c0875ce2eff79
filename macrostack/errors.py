"""Exceptions raised by the stacking pipeline.

Every failure reaches the caller as one terminal `StackingError`; the
pipeline never retries and never returns partial output.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from macrostack.bands import WorkBand


class StackingError(Exception):
    """Base class for all stacking failures."""


class EmptyInputError(StackingError):
    """Raised when a run is started without any frames."""

    def __init__(self) -> None:
        super().__init__("No images to process")


class DecodeError(StackingError):
    """Raised when an input file cannot be decoded."""

    def __init__(self, path: str | Path, cause: BaseException | str) -> None:
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"Failed to load {self.path.name}: {cause}")


class WorkerError(StackingError):
    """Raised when a band task fails during any stacking phase."""

    def __init__(self, band: "WorkBand", cause: BaseException) -> None:
        self.band = band
        self.cause = cause
        super().__init__(f"Worker for rows {band.start}-{band.end - 1} failed: {cause!r}")


class EncodeError(StackingError):
    """Raised when the stacked result cannot be written."""

    def __init__(self, path: str | Path, cause: BaseException | str) -> None:
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"Failed to save {self.path}: {cause}")


class ConfigError(StackingError):
    """Raised for an unreadable or invalid configuration file."""


class ProgressCallbackError(StackingError):
    """Raised after a run whose progress callback failed."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"Progress callback failed: {cause!r}")
