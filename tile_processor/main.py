"""
Main script for tiling image trees into ML training data

Usage:
    ml-image-tile tile --source DIR --dest DIR [--width N] [--height N] ...
    ml-image-tile blurry --source FILE [--threshold T]

`tile` walks the source tree and writes tiles under the destination tree,
mirroring its layout. `blurry` reports the Laplacian variance of one image.
"""

import argparse
import logging
import signal
import sys
from typing import List, Optional

from . import __version__, configure_logging
from .core.blur_detector import DEFAULT_BLUR_THRESHOLD, BlurDetector
from .core.errors import DecodeFailed
from .core.tile_pipeline import (
    EXIT_FAILURE,
    EXIT_INVALID_CONFIG,
    PipelineConfig,
    TilePipeline,
)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Cut images into fixed-size tiles for ML training"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="DEBUG|INFO|WARN|ERROR (default: INFO)",
    )
    parser.add_argument("--version", action="version", version=__version__)
    subparsers = parser.add_subparsers(dest="command", required=True)

    tile = subparsers.add_parser("tile", help="Tile every image under a directory")
    tile.add_argument("--source", required=True, help="Source directory for the images")
    tile.add_argument("--dest", required=True, help="Destination directory for the tiles")
    tile.add_argument(
        "--width", type=int, default=400, help="Width of the target tiles (default: 400)"
    )
    tile.add_argument(
        "--height", type=int, default=400, help="Height of the target tiles (default: 400)"
    )
    tile.add_argument(
        "--resize",
        type=int,
        default=2,
        help="Divide image size by this before tiling, 1 keeps it (default: 2)",
    )
    tile.add_argument(
        "--smaller-tile",
        action="store_true",
        help="Allow tiling of the remainder on the borders (overlapping tiles)",
    )
    tile.add_argument(
        "--workers", type=int, default=8, help="Parallel worker count (default: 8)"
    )
    tile.add_argument(
        "--validation-tiles",
        type=int,
        default=0,
        help="Number of random validation tiles per image (default: 0)",
    )
    tile.add_argument(
        "--validation-only",
        action="store_true",
        help="Generate validation tiles only",
    )
    tile.add_argument(
        "--reject-blurry", action="store_true", help="Reject blurry source images"
    )
    tile.add_argument(
        "--blur-threshold",
        type=float,
        default=DEFAULT_BLUR_THRESHOLD,
        help=f"Variance below which images are rejected (default: {DEFAULT_BLUR_THRESHOLD:g})",
    )
    tile.add_argument(
        "--metrics-port",
        type=int,
        default=34130,
        help="HTTP port for /metrics, 0 disables it (default: 34130)",
    )
    tile.add_argument(
        "--seed", type=int, default=None, help="Seed for validation tile positions"
    )

    blurry = subparsers.add_parser("blurry", help="Report whether an image is blurry")
    blurry.add_argument("--source", required=True, help="Source image")
    blurry.add_argument(
        "--threshold",
        type=float,
        default=DEFAULT_BLUR_THRESHOLD,
        help=f"Blur threshold (default: {DEFAULT_BLUR_THRESHOLD:g})",
    )

    return parser


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    return PipelineConfig(
        source_dir=args.source,
        dest_dir=args.dest,
        tile_width=args.width,
        tile_height=args.height,
        resize_divisor=args.resize,
        allow_remainder_anchoring=args.smaller_tile,
        worker_count=args.workers,
        validation_tile_count=args.validation_tiles,
        validation_only=args.validation_only,
        reject_blurry=args.reject_blurry,
        blur_threshold=args.blur_threshold,
        metrics_port=args.metrics_port,
        seed=args.seed,
        log_level=args.log_level,
    )


def run_tile(args: argparse.Namespace) -> int:
    config = config_from_args(args)
    try:
        pipeline = TilePipeline(config, version=__version__)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    logger.debug(f"Configuration: {config.to_dict()}")

    def _handle_signal(signum, frame):
        pipeline.request_shutdown()

    previous = {
        sig: signal.signal(sig, _handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        result = pipeline.run()
    except Exception as e:
        logger.critical(f"Pipeline crashed: {e}", exc_info=True)
        return EXIT_FAILURE
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    counters = result.counters
    print(f"\nFiles processed:   {counters.files_processed}")
    print(f"Tiles written:     {counters.tiles_written}")
    print(f"Errors:            {counters.errors}")
    print(f"Rejected blurry:   {counters.rejected_blurry}")
    return result.exit_code


def run_blurry(args: argparse.Namespace) -> int:
    detector = BlurDetector(threshold=args.threshold)
    try:
        result = detector.classify(args.source)
    except DecodeFailed as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    label = "Blurry" if result.is_rejected else "Sharp"
    print(f"{label} {result.variance:.1f} {args.source}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        configure_logging(args.log_level)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INVALID_CONFIG

    if args.command == "blurry":
        return run_blurry(args)
    return run_tile(args)


if __name__ == "__main__":
    sys.exit(main())
