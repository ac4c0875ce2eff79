"""Run configuration: stacking strategy, alignment switch, worker count."""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from macrostack.encode import OutputFormat
from macrostack.errors import ConfigError

logger = logging.getLogger(__name__)


class StackingAlgorithm(enum.Enum):
    """Pixel selection / blending strategy."""

    WEIGHTED_AVERAGE = "Weighted average"
    DEPTH_MAP = "Depth map"
    PYRAMID = "Pyramid"
    MAX_CONTRAST = "Max contrast"
    LAPLACIAN = "Laplacian"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, name: str) -> "StackingAlgorithm":
        """Look up a strategy by enum name, case and dash insensitive."""
        key = str(name).strip().upper().replace("-", "_").replace(" ", "_")
        try:
            return cls[key]
        except KeyError:
            choices = ", ".join(a.name.lower() for a in cls)
            raise ConfigError(f"Unknown algorithm {name!r} (expected one of: {choices})") from None


def default_thread_count() -> int:
    return os.cpu_count() or 1


def max_thread_count() -> int:
    """Upper bound on worker threads: twice the CPU count."""
    return 2 * default_thread_count()


@dataclass
class StackConfig:
    """Settings consumed by `ImageStacker`."""

    algorithm: StackingAlgorithm = StackingAlgorithm.WEIGHTED_AVERAGE
    auto_align: bool = True
    threads: int = field(default_factory=default_thread_count)
    output_format: OutputFormat = OutputFormat.PNG
    debug_dir: Path | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.algorithm, StackingAlgorithm):
            self.algorithm = StackingAlgorithm.parse(self.algorithm)
        if not isinstance(self.output_format, OutputFormat):
            self.output_format = OutputFormat.parse(self.output_format)
        if not isinstance(self.auto_align, bool):
            raise ConfigError(f"auto_align must be true or false, got {self.auto_align!r}")
        threads = int(self.threads)
        self.threads = min(max(1, threads), max_thread_count())
        if self.threads != threads:
            logger.warning("Thread count %d out of range, using %d", threads, self.threads)
        if self.debug_dir is not None:
            self.debug_dir = Path(self.debug_dir)

    def replace(self, **overrides: Any) -> "StackConfig":
        """Copy with the non-None `overrides` applied."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return StackConfig(**values)


def load_config(path: str | Path) -> StackConfig:
    """Read a `StackConfig` from a YAML mapping.

    Example:
        algorithm: depth_map
        auto_align: true
        threads: 8
        output_format: fits
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as stream:
            data = yaml.safe_load(stream)
    except OSError as exc:
        raise ConfigError(f"Cannot read config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        logger.error(exc)
        raise ConfigError(f"Invalid YAML in {path}") from exc

    if data is None:
        return StackConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping, got {type(data).__name__}")

    known = {f.name for f in fields(StackConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {', '.join(unknown)}")

    try:
        return StackConfig(**data)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in {path}: {exc}") from exc
