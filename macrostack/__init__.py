"""Multi-threaded macro focus stacking.

Combines a stack of photographs taken at different focus distances into a
single image with extended depth of field:

- frames are decoded in parallel and conformed to the first frame's size
- frames are optionally registered with an integer translation
- one of five strategies picks or blends the sharpest content per pixel,
  each band of rows running on its own worker
"""

from macrostack.config import StackConfig, StackingAlgorithm, load_config
from macrostack.errors import (
    ConfigError,
    DecodeError,
    EmptyInputError,
    EncodeError,
    ProgressCallbackError,
    StackingError,
    WorkerError,
)
from macrostack.grid import PixelGrid
from macrostack.stacker import ImageStacker, StackResult

__all__ = [
    "ConfigError",
    "DecodeError",
    "EmptyInputError",
    "EncodeError",
    "ImageStacker",
    "PixelGrid",
    "ProgressCallbackError",
    "StackConfig",
    "StackResult",
    "StackingAlgorithm",
    "StackingError",
    "WorkerError",
    "load_config",
]
