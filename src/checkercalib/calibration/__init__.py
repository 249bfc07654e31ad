"""
Calibration module for checkercalib.

Closed-form intrinsics, nested board bookkeeping, nonlinear refinement and
the two calibration procedures built on top of them.
"""

from .zhang import (
    compute_v,
    pose_from_homography,
    solve_intrinsic,
)

from .boards import (
    BoardCorrespondences,
    SelectedBoard,
    board_correspondences,
    nested_square_size,
    order_boards_by_center_distance,
    select_nested_boards,
)

from .refinement import (
    BundleAdjustment,
    RefineOptions,
)

from .pipeline import (
    CalibrationOutcome,
    calibrate_multi_view,
    calibrate_nested_boards,
    equalize_vertical_scale,
    run_calibration,
)

__all__ = [
    # Zhang
    "compute_v",
    "pose_from_homography",
    "solve_intrinsic",
    # Boards
    "BoardCorrespondences",
    "SelectedBoard",
    "board_correspondences",
    "nested_square_size",
    "order_boards_by_center_distance",
    "select_nested_boards",
    # Refinement
    "BundleAdjustment",
    "RefineOptions",
    # Procedures
    "CalibrationOutcome",
    "calibrate_multi_view",
    "calibrate_nested_boards",
    "equalize_vertical_scale",
    "run_calibration",
]
