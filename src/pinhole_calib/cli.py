"""
pinhole-calib command line interface.

Usage:
    pinhole-calib calibrate captures/*.png --cols 9 --rows 6 --square-mm 25
    pinhole-calib calibrate --config run.toml --output calibration.json
    pinhole-calib detect captures/img_01.png --target charuco --cols 6 --rows 4
    pinhole-calib board board.png --target charuco --cols 6 --rows 4 --square-mm 30
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from pinhole_calib.core.extraction import create_extractor
from pinhole_calib.core.intrinsic import IntrinsicCalibrationConfig, run_calibration
from pinhole_calib.core.solver import SolverConfig
from pinhole_calib.core.target import generate_board_image
from pinhole_calib.core.types import SOFTWARE_VERSION, CalibrationError, TargetConfig
from pinhole_calib.io.calibration_file import CalibrationFile
from pinhole_calib.io.image_loader import write_image
from pinhole_calib.io.run_config import load_run_config
from pinhole_calib.utils.logging import get_logger, setup_logging

logger = get_logger("cli")


def _target_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    group = parser.add_argument_group("target")
    group.add_argument(
        "--target", "-t",
        default="chessboard",
        help="Target type: chessboard or charuco (default: chessboard)",
    )
    group.add_argument("--cols", type=int, default=9, help="Inner corners per row (default: 9)")
    group.add_argument("--rows", type=int, default=6, help="Inner corners per column (default: 6)")
    group.add_argument(
        "--square-mm", type=float, default=25.0, help="Square edge in mm (default: 25)"
    )
    group.add_argument(
        "--marker-mm", type=float, default=None, help="ChArUco marker edge in mm (default: 0.8 x square)"
    )
    group.add_argument(
        "--dictionary", default="DICT_4X4_50", help="ArUco dictionary (default: DICT_4X4_50)"
    )
    group.add_argument("--start-id", type=int, default=0, help="First ChArUco marker id")
    group.add_argument(
        "--legacy-pattern", action="store_true", help="Use the pre-4.6 OpenCV ChArUco layout"
    )
    return parser


def _target_from_args(args: argparse.Namespace) -> TargetConfig:
    return TargetConfig(
        kind=args.target,
        inner_corners_x=args.cols,
        inner_corners_y=args.rows,
        square_size_mm=args.square_mm,
        marker_size_mm=args.marker_mm,
        dictionary_id=args.dictionary,
        start_id=args.start_id,
        legacy_pattern=args.legacy_pattern,
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="pinhole-calib",
        description="Pinhole camera intrinsic calibration from chessboard or ChArUco images",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {SOFTWARE_VERSION}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to a file")

    subparsers = parser.add_subparsers(dest="command", required=True)
    target = _target_parser()

    calibrate = subparsers.add_parser(
        "calibrate", parents=[target], help="Calibrate a camera from target images"
    )
    calibrate.add_argument("images", nargs="*", type=Path, help="Calibration images")
    calibrate.add_argument(
        "--config", "-c", type=Path, default=None,
        help="TOML run file; its target, solver settings and images replace the flags",
    )
    calibrate.add_argument("--min-views", type=int, default=None, help="Override the minimum view count")
    calibrate.add_argument(
        "--min-charuco-corners", type=int, default=5, help="Minimum corners per ChArUco view"
    )
    calibrate.add_argument(
        "--fix-principal-point", action="store_true", help="Hold the principal point at the image center"
    )
    calibrate.add_argument("--fix-aspect-ratio", action="store_true", help="Hold fx/fy fixed")
    calibrate.add_argument(
        "--zero-tangent-dist", action="store_true", help="Assume zero tangential distortion"
    )
    calibrate.add_argument(
        "--rational", action="store_true", help="Use the 8-coefficient rational distortion model"
    )
    calibrate.add_argument("--workers", type=int, default=1, help="Extraction threads (default: 1)")
    calibrate.add_argument(
        "--output", "-o", type=Path, default=None, help="Save the result (.json, .h5 or .mat)"
    )

    detect = subparsers.add_parser(
        "detect", parents=[target], help="Check whether the target is visible in images"
    )
    detect.add_argument("images", nargs="+", type=Path, help="Images to check")

    board = subparsers.add_parser(
        "board", parents=[target], help="Write a printable image of the target"
    )
    board.add_argument("output", type=Path, help="Output image path")
    board.add_argument(
        "--pixels-per-square", type=int, default=100, help="Square size in pixels (default: 100)"
    )
    board.add_argument("--margin", type=int, default=None, help="White border in pixels")

    return parser


def _calibration_config(args: argparse.Namespace) -> tuple[IntrinsicCalibrationConfig, list[Path]]:
    images = list(args.images)
    if args.config is not None:
        run = load_run_config(args.config)
        return run.calibration, run.images + images

    solver = SolverConfig(
        distortion_model_size=8 if args.rational else 5,
        fix_principal_point=args.fix_principal_point,
        fix_aspect_ratio=args.fix_aspect_ratio,
        zero_tangent_dist=args.zero_tangent_dist,
    )
    config = IntrinsicCalibrationConfig(
        target=_target_from_args(args),
        solver=solver,
        min_views=args.min_views,
        min_charuco_corners=args.min_charuco_corners,
        max_workers=args.workers,
    )
    return config, images


def cmd_calibrate(args: argparse.Namespace) -> int:
    config, images = _calibration_config(args)
    result = run_calibration(images, config)

    print(result.summary())
    print(json.dumps(result.to_record(), indent=2))

    if not result.success:
        return 1

    if args.output is not None:
        path = CalibrationFile.save(args.output, result)
        print(f"Saved calibration to: {path}")
    return 0


def cmd_detect(args: argparse.Namespace) -> int:
    extractor = create_extractor(_target_from_args(args))

    found = 0
    for image in args.images:
        outcome = extractor.extract(image)
        if outcome.found:
            found += 1
            print(f"{image}: found ({outcome.view.num_points} points)")
        else:
            print(f"{image}: not found ({outcome.message})")

    print(f"Target found in {found} of {len(args.images)} images")
    return 0 if found else 1


def cmd_board(args: argparse.Namespace) -> int:
    image = generate_board_image(
        _target_from_args(args),
        pixels_per_square=args.pixels_per_square,
        margin=args.margin,
    )
    path = write_image(args.output, image)
    print(f"Saved board image ({image.shape[1]}x{image.shape[0]}) to: {path}")
    return 0


COMMANDS = {
    "calibrate": cmd_calibrate,
    "detect": cmd_detect,
    "board": cmd_board,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        log_file=args.log_file,
    )

    try:
        return COMMANDS[args.command](args)
    except (CalibrationError, OSError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
