#!/usr/bin/env python3
"""
checkercalib CLI - calibrate cameras from checkerboard detections.

Usage:
    checkercalib -i scene.toml -c checkerboards/ -o calibrated.toml
    checkercalib -i scene.toml -c checkerboards/ -o out.toml --nested --simple-pinhole
"""

import argparse
import sys
from dataclasses import replace
from pathlib import Path

import rtoml

from checkercalib.calibration import run_calibration
from checkercalib.config import (
    CalibrationConfig,
    load_calibration_config,
    load_detections,
    load_scene,
    save_scene,
)
from checkercalib.utils.logging import get_logger, setup_logging

logger = get_logger("cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="checkercalib",
        description="Estimate camera intrinsics and poses from checkerboard detections",
    )
    parser.add_argument("-i", "--input", type=Path, required=True,
                        help="Scene TOML file to calibrate")
    parser.add_argument("-c", "--checkerboards", type=Path, required=True,
                        help="Directory holding checkers_<viewId>.json files")
    parser.add_argument("-o", "--output", type=Path, required=True,
                        help="Output scene TOML file")
    parser.add_argument("--config", type=Path, default=None,
                        help="Calibration settings TOML file")
    parser.add_argument("-s", "--square-size", type=float, default=None,
                        help="Checkerboard square size (default: 0.1)")
    parser.add_argument("--nested", action="store_true",
                        help="Single image with nested checkerboards")
    parser.add_argument("--simple-pinhole", action="store_true",
                        help="Nested mode: drop offset/distortion, undistort observations")
    parser.add_argument("-v", "--verbose-level", type=str, default="info",
                        help="Verbosity level (fatal, error, warning, info, debug, trace)")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        setup_logging(args.verbose_level)
    except ValueError as e:
        print(f"ERROR: {e}")
        return 1

    config = CalibrationConfig()
    if args.config is not None:
        try:
            config = load_calibration_config(args.config)
        except (OSError, ValueError, rtoml.TomlParsingError) as e:
            logger.error(f"Cannot read settings '{args.config}': {e}")
            return 1

    if args.square_size is not None:
        config = replace(config, square_size=args.square_size)
    if args.nested:
        config = replace(config, use_nested_boards=True)
    if args.simple_pinhole:
        config = replace(config, use_simple_pinhole=True)

    try:
        scene = load_scene(args.input)
    except (OSError, KeyError, ValueError, rtoml.TomlParsingError) as e:
        logger.error(f"The input scene '{args.input}' cannot be read: {e}")
        return 1

    problems = scene.validate()
    if problems:
        for problem in problems:
            logger.error(problem)
        return 1

    try:
        detections = load_detections(args.checkerboards, scene.views.keys())
    except (OSError, KeyError, ValueError) as e:
        logger.error(f"Cannot read checkerboards from '{args.checkerboards}': {e}")
        return 1
    logger.info(f"Loaded checkerboards for {len(detections)} of {len(scene.views)} views")

    outcome = run_calibration(scene, detections, config)
    if not outcome.success:
        return 1

    try:
        save_scene(scene, args.output)
    except OSError as e:
        logger.error(f"The output scene '{args.output}' cannot be written: {e}")
        return 1

    logger.info(f"Saved calibrated scene to {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
