"""
Calibration procedures.

Two mutually exclusive modes:
- multi-view: one full board per image, intrinsics from Zhang's method
- nested boards: a single image of nested checkerboards, pose per board
  with a known K, then distortion refinement

Both build landmarks/observations/poses in the scene and hand it to the
refiner. Library errors are CalibrationError subclasses; run_calibration
turns them into a CalibrationOutcome.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Mapping

import numpy as np

from ..camera import PinholeIntrinsic
from ..config import CalibrationConfig
from ..estimation import estimate_homography, estimate_pose
from ..scene import Scene
from ..types import (
    CalibrationError,
    CheckerDetection,
    InconsistentBoardError,
    Landmark,
    NotPinholeError,
    Observation,
    PreconditionError,
    RefinementError,
    RobustFitError,
)
from ..utils.logging import get_logger
from .boards import board_correspondences, select_nested_boards
from .refinement import BundleAdjustment, RefineOptions
from .zhang import pose_from_homography, solve_intrinsic

logger = get_logger("calibration.pipeline")

# Observation weights in nested mode never drop below this camera-plane radius
MIN_OBSERVATION_RADIUS = 0.4


@dataclass(frozen=True, slots=True)
class CalibrationOutcome:
    success: bool
    message: str = ""


def _require_pinhole(scene: Scene, intrinsic_id: int) -> PinholeIntrinsic:
    intrinsic = scene.intrinsics.get(intrinsic_id)
    if intrinsic is None:
        raise PreconditionError(f"Intrinsic {intrinsic_id} not found")
    pinhole = intrinsic.as_pinhole()
    if pinhole is None:
        raise NotPinholeError(
            f"Intrinsic {intrinsic_id} ({intrinsic.type_name}) is not a pinhole camera"
        )
    return pinhole


def _refine(refiner: BundleAdjustment, scene: Scene, options: RefineOptions) -> None:
    if not refiner.adjust(scene, options):
        raise RefinementError("Nonlinear refinement failed")


# ============================================================================
# Multi-view (Zhang) Calibration
# ============================================================================


def calibrate_multi_view(
    scene: Scene,
    detections: Mapping[int, CheckerDetection],
    config: CalibrationConfig,
    refiner: BundleAdjustment | None = None,
) -> None:
    """
    Calibrate every intrinsic from several images of one full checkerboard.

    Landmarks and poses of the scene are rebuilt from scratch: one landmark
    per cell of the largest board seen, one pose per usable view.

    Args:
        scene: Scene to calibrate in place
        detections: view_id -> detections; views without an entry are skipped
        config: Calibration settings
        refiner: Refinement solver (default: BundleAdjustment from config)

    Raises:
        PreconditionError: Fewer than 2 detections
        NotPinholeError: An intrinsic is not a pinhole camera
        InconsistentBoardError: Intrinsics saw boards of different sizes
        RobustFitError: No view of an intrinsic gave a usable homography
        DegenerateIntrinsicError: Zhang's closed form failed
        RefinementError: Refinement failed
    """
    if len(detections) < 2:
        raise PreconditionError(f"At least 2 views are needed, got {len(detections)}")

    refiner = refiner or BundleAdjustment(config.refinement)
    square_size = config.square_size

    scene.landmarks = {}
    scene.poses = {}

    grid_shape: tuple[int, int] | None = None
    landmark_ids: np.ndarray | None = None

    for intrinsic_id in sorted(scene.intrinsics):
        pinhole = _require_pinhole(scene, intrinsic_id)
        view_ids = scene.views_for_intrinsic(intrinsic_id)
        if not view_ids:
            logger.warning(f"Intrinsic {intrinsic_id} has no view, skipping")
            continue

        logger.info(f"Processing intrinsic {intrinsic_id}")

        max_rows = 0
        max_cols = 0
        homographies = {}
        for view_id in view_ids:
            detection = detections.get(view_id)
            if detection is None:
                continue
            if len(detection.boards) != 1:
                logger.error(
                    f"View {view_id} has {len(detection.boards)} checkerboards, expected exactly 1"
                )
                continue

            board = detection.boards[0]
            max_rows = max(max_rows, board.rows)
            max_cols = max(max_cols, board.cols)

            corr = board_correspondences(board, detection, square_size)
            if len(corr) < 4:
                logger.warning(f"View {view_id} has only {len(corr)} corners, skipping")
                continue

            undistorted = pinhole.get_ud_pixel(corr.image_points)
            result = estimate_homography(
                corr.pattern_points[:, :2],
                undistorted,
                pinhole.width,
                pinhole.height,
                np.random.default_rng(config.seed),
                max_iterations=config.homography_iterations,
            )
            if result is None or len(result.inliers) < config.min_inliers:
                n_inliers = 0 if result is None else len(result.inliers)
                logger.warning(f"View {view_id}: {n_inliers} homography inliers, skipping")
                continue

            homographies[view_id] = result.model

        if not homographies:
            raise RobustFitError(f"No usable view for intrinsic {intrinsic_id}")

        K = solve_intrinsic(homographies)
        pinhole.set_K(K)
        logger.info(
            f"Intrinsic {intrinsic_id}: fx={K[0, 0]:.3f} fy={K[1, 1]:.3f} "
            f"skew={K[0, 1]:.3f} cx={K[0, 2]:.3f} cy={K[1, 2]:.3f} "
            f"from {len(homographies)} views"
        )

        if grid_shape is None:
            grid_shape = (max_rows, max_cols)
            landmark_ids = np.arange(max_rows * max_cols).reshape(max_rows, max_cols)
            for i in range(max_rows):
                for j in range(max_cols):
                    scene.landmarks[int(landmark_ids[i, j])] = Landmark(
                        X=np.array([square_size * j, square_size * i, 0.0])
                    )
        elif grid_shape != (max_rows, max_cols):
            raise InconsistentBoardError(
                f"Intrinsic {intrinsic_id} saw a {max_rows}x{max_cols} board, "
                f"expected {grid_shape[0]}x{grid_shape[1]}"
            )

        linear_residuals = []
        for view_id, H in homographies.items():
            pose = pose_from_homography(K, H)
            scene.poses[scene.views[view_id].pose_id] = pose

            detection = detections[view_id]
            corr = board_correspondences(detection.boards[0], detection, square_size)
            for (i, j), pixel in zip(corr.cells, corr.image_points):
                landmark_id = int(landmark_ids[i, j])
                scene.landmarks[landmark_id].observations[view_id] = Observation(
                    x=pixel.copy(), feature_id=landmark_id, scale=1.0
                )

            ideal = pinhole.project(pose, corr.pattern_points, apply_distortion=False)
            linear_residuals.append(ideal - pinhole.get_ud_pixel(corr.image_points))

        residuals = np.vstack(linear_residuals)
        logger.info(
            f"Linear residual: {np.sqrt(np.mean(np.sum(residuals**2, axis=1))):.6f} px"
        )

        _refine(
            refiner,
            scene,
            RefineOptions.ROTATION | RefineOptions.TRANSLATION | RefineOptions.INTRINSICS_ALL,
        )


# ============================================================================
# Nested Boards (single image) Calibration
# ============================================================================


def equalize_vertical_scale(intrinsic: PinholeIntrinsic, landmarks: Mapping[int, Landmark]) -> None:
    """
    Force fy = fx and rewrite observations so they match the new scale.

    The ratio is locked so later refinement keeps fy = fx. Applying it to an
    intrinsic with fy == fx leaves everything unchanged.
    """
    intrinsic.ratio_locked = True
    fx, fy = intrinsic.scale
    ppy = intrinsic.principal_point[1]

    for landmark in landmarks.values():
        for view_id, obs in list(landmark.observations.items()):
            x = np.array(obs.x, dtype=np.float64)
            x[1] = (x[1] - ppy) / fy * fx + ppy
            landmark.observations[view_id] = replace(obs, x=x)

    intrinsic.scale = np.array([fx, fx])


def calibrate_nested_boards(
    scene: Scene,
    detections: Mapping[int, CheckerDetection],
    config: CalibrationConfig,
    refiner: BundleAdjustment | None = None,
) -> None:
    """
    Refine an initialized intrinsic from one image of nested checkerboards.

    Every accepted board gets its own synthetic view and pose in a scratch
    scene. On success the caller's scene receives the first board's refined
    pose (under the real view's pose id) and its landmarks, observed from
    the real view.

    Args:
        scene: Scene holding the view and its already initialized intrinsic
        detections: Exactly one view_id -> detections
        config: Calibration settings
        refiner: Refinement solver (default: BundleAdjustment from config)

    Raises:
        PreconditionError: Not exactly one detection, unknown view/intrinsic
            or no usable board
        NotPinholeError: The intrinsic is not a pinhole camera
        RobustFitError: A board pose has too few inliers
        RefinementError: Refinement failed
    """
    if len(detections) != 1:
        raise PreconditionError(f"Nested boards need exactly one view, got {len(detections)}")

    refiner = refiner or BundleAdjustment(config.refinement)

    view_id, detection = next(iter(detections.items()))
    view = scene.views.get(view_id)
    if view is None:
        raise PreconditionError(f"View {view_id} not found")
    pinhole = _require_pinhole(scene, view.intrinsic_id)

    if not detection.boards:
        raise PreconditionError(f"View {view_id} has no checkerboard")

    selected = select_nested_boards(
        detection,
        view.width,
        view.height,
        config.nested_square_size,
        min_corners=config.min_board_corners,
    )
    if not selected:
        raise PreconditionError(
            f"No checkerboard with at least {config.min_board_corners} corners in view {view_id}"
        )
    logger.info(f"Using {len(selected)} of {len(detection.boards)} checkerboards")

    # Synthetic views and poses live here; the intrinsic is shared with the caller
    arena = Scene(intrinsics={view.intrinsic_id: pinhole})
    board_landmarks: list[list[int]] = []

    for entry in selected:
        corr = board_correspondences(
            entry.board, detection, entry.square_size, centered=True
        )
        undistorted = pinhole.get_ud_pixel(corr.image_points)
        campts = pinhole.remove_distortion(pinhole.ima2cam(corr.image_points))
        radii = np.maximum(MIN_OBSERVATION_RADIUS, np.max(np.abs(campts), axis=1))

        estimate = estimate_pose(
            pinhole.K,
            corr.pattern_points,
            undistorted,
            view.width,
            view.height,
            np.random.default_rng(config.seed),
            max_iterations=config.pose_iterations,
        )
        if estimate is None or len(estimate.inliers) < config.min_inliers:
            n_inliers = 0 if estimate is None else len(estimate.inliers)
            raise RobustFitError(
                f"Impossible to find the pose of board {entry.index}: {n_inliers} inliers"
            )

        ids = []
        observed = undistorted if config.use_simple_pinhole else corr.image_points
        for X, pixel, radius in zip(corr.pattern_points, observed, radii):
            landmark_id = len(arena.landmarks)
            arena.landmarks[landmark_id] = Landmark(
                X=X.copy(),
                observations={
                    entry.index: Observation(
                        x=pixel.copy(), feature_id=landmark_id, scale=1.0 / radius
                    )
                },
            )
            ids.append(landmark_id)
        board_landmarks.append(ids)

        arena.views[entry.index] = replace(view, view_id=entry.index, pose_id=entry.index)
        arena.poses[entry.index] = estimate.pose
        logger.info(
            f"Board {entry.index}: {len(corr)} corners, {len(estimate.inliers)} inliers, "
            f"square size {entry.square_size}"
        )

    if config.use_simple_pinhole:
        pinhole.offset = np.zeros(2)
        pinhole.distortion = None

    refine = RefineOptions.ROTATION | RefineOptions.TRANSLATION | RefineOptions.INTRINSICS_DISTORTION
    _refine(refiner, arena, refine)

    if config.use_simple_pinhole:
        equalize_vertical_scale(pinhole, arena.landmarks)
        _refine(refiner, arena, refine)

    # Keep the innermost board only, seen from the real view
    scene.poses = {view.pose_id: arena.poses[0]}
    scene.landmarks = {}
    for landmark_id in board_landmarks[0]:
        landmark = arena.landmarks[landmark_id]
        scene.landmarks[landmark_id] = Landmark(
            X=landmark.X,
            desc_type=landmark.desc_type,
            observations={view_id: landmark.observations[0]},
        )


# ============================================================================
# Entry Point
# ============================================================================


def run_calibration(
    scene: Scene,
    detections: Mapping[int, CheckerDetection],
    config: CalibrationConfig,
    refiner: BundleAdjustment | None = None,
) -> CalibrationOutcome:
    """
    Run the calibration mode selected by config.

    Returns:
        CalibrationOutcome; on failure the message holds the diagnostic and
        the scene may be partially updated
    """
    try:
        if config.use_nested_boards:
            calibrate_nested_boards(scene, detections, config, refiner)
        else:
            calibrate_multi_view(scene, detections, config, refiner)
    except CalibrationError as e:
        logger.error(f"Calibration failed: {e}")
        return CalibrationOutcome(success=False, message=str(e))

    logger.info("Calibration succeeded")
    return CalibrationOutcome(success=True, message="")
