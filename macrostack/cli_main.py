"""Focus stacking CLI entry point.

Example:
    macrostack shots/ -o fused -a depth_map -f fits
    python -m macrostack.cli_main a.jpg b.jpg c.jpg --no-align -t 4
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

from tqdm import tqdm

from macrostack.config import StackConfig, StackingAlgorithm, default_thread_count, load_config, max_thread_count
from macrostack.encode import OutputFormat, encode
from macrostack.errors import StackingError
from macrostack.preprocess import collect_inputs
from macrostack.stacker import ImageStacker

logger = logging.getLogger("macrostack")


def _thread_count(value: str) -> int:
    count = int(value)
    limit = max_thread_count()
    if not 1 <= count <= limit:
        raise argparse.ArgumentTypeError(f"thread count must be between 1 and {limit}, got {count}")
    return count


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="macrostack",
        description="Combine a focus stack into one image with extended depth of field.",
    )
    parser.add_argument("inputs", nargs="+", help="Image files or directories, in stacking order.")
    parser.add_argument("-o", "--output", default="stacked", help="Output path (extension added if missing).")
    parser.add_argument(
        "-a", "--algorithm",
        choices=[a.name.lower() for a in StackingAlgorithm],
        help="Stacking strategy (default: weighted_average).",
    )
    parser.add_argument("--no-align", dest="auto_align", action="store_false", default=None,
                        help="Disable automatic alignment.")
    parser.add_argument("-t", "--threads", type=_thread_count,
                        help=f"Worker threads, 1..2x CPU count (default: {default_thread_count()}).")
    parser.add_argument("-f", "--format", dest="output_format",
                        choices=[f.name.lower() for f in OutputFormat],
                        help="Output format (default: png).")
    parser.add_argument("-c", "--config", type=Path, help="YAML file with default settings.")
    parser.add_argument("--debug-dir", type=Path, help="Write depth map visualisations here.")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log errors.")
    return parser


def run_focus_stacking(inputs: Sequence[str | Path], output: Path, config: StackConfig) -> Path:
    """Run the focus stacking pipeline and write the result.

    Args:
        inputs: Image files or directories containing an image stack.
        output: Output path; the format's extension is appended if missing.
        config: Stacking settings.

    Returns:
        Path to the written image.
    """
    paths = collect_inputs(inputs)
    logger.info(
        "Stacking %d images: %s, align=%s, %d threads",
        len(paths), config.algorithm, config.auto_align, config.threads,
    )

    with tqdm(total=100, unit="%", desc="Stacking", leave=False) as bar:
        def on_progress(percent: int, message: str) -> None:
            bar.set_postfix_str(message, refresh=False)
            bar.update(percent - bar.n)

        result = ImageStacker(config).stack(paths, on_progress)

    return encode(result.image, output, config.output_format)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.ERROR if args.quiet else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        config = load_config(args.config) if args.config else StackConfig()
        config = config.replace(
            algorithm=args.algorithm,
            auto_align=args.auto_align,
            threads=args.threads,
            output_format=args.output_format,
            debug_dir=args.debug_dir,
        )
        output_path = run_focus_stacking(args.inputs, Path(args.output), config)
    except StackingError as exc:
        logger.error("%s", exc)
        return 1

    print(f"Saved stacked image to: {output_path}")
    return 0


if __name__ == "__main__":
    # python -m macrostack.cli_main <images...>
    sys.exit(main())
