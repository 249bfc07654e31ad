"""
Nonlinear refinement of a calibration scene.

Minimizes weighted pixel reprojection error over the parameter groups
selected by RefineOptions. Landmarks stay fixed: the calibration pattern
defines the world frame.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

import cv2
import numpy as np
from scipy.optimize import least_squares
from scipy.sparse import lil_matrix

from ..camera import PinholeIntrinsic
from ..config import RefinementConfig
from ..scene import Scene
from ..types import Pose
from ..utils.logging import get_logger

logger = get_logger("calibration.refinement")


class RefineOptions(enum.Flag):
    NONE = 0
    ROTATION = 1
    TRANSLATION = 2
    INTRINSICS_FOCAL = 4  # fx, fy (or fx alone when ratio_locked) and skew
    INTRINSICS_OPTICAL_OFFSET = 8
    INTRINSICS_DISTORTION = 16
    INTRINSICS_ALL = 28


# ============================================================================
# Data Structures for Bundle Adjustment
# ============================================================================


@dataclass
class ViewObservations:
    """
    All usable observations of one view, stacked for vectorized projection.
    """

    view_id: int
    pose_id: int
    intrinsic_id: int
    points_3d: np.ndarray  # (m, 3) landmark positions
    img_points: np.ndarray  # (m, 2) observed pixels
    weights: np.ndarray  # (m,) 1 / observation scale

    @property
    def n_img_points(self) -> int:
        return self.img_points.shape[0]


def collect_observations(scene: Scene) -> list[ViewObservations]:
    """
    Group observations by view, keeping only views with a pose and a pinhole.
    """
    grouped: dict[int, tuple[list, list, list]] = {}
    for landmark in scene.landmarks.values():
        for view_id, obs in landmark.observations.items():
            if not scene.is_pose_and_intrinsic_defined(view_id):
                continue
            if scene.intrinsic_for_view(view_id).as_pinhole() is None:
                continue
            points, pixels, weights = grouped.setdefault(view_id, ([], [], []))
            points.append(landmark.X)
            pixels.append(obs.x)
            weights.append(1.0 / obs.scale if obs.scale > 0 else 1.0)

    blocks = []
    for view_id in sorted(grouped):
        view = scene.views[view_id]
        points, pixels, weights = grouped[view_id]
        blocks.append(
            ViewObservations(
                view_id=view_id,
                pose_id=view.pose_id,
                intrinsic_id=view.intrinsic_id,
                points_3d=np.array(points, dtype=np.float64),
                img_points=np.array(pixels, dtype=np.float64),
                weights=np.array(weights, dtype=np.float64),
            )
        )
    return blocks


class _ParameterLayout:
    """
    Slices of the flat parameter vector for every refined group.
    """

    def __init__(
        self,
        scene: Scene,
        blocks: list[ViewObservations],
        options: RefineOptions,
    ):
        self.pose_ids = sorted({b.pose_id for b in blocks})
        self.intrinsic_ids = sorted({b.intrinsic_id for b in blocks})
        self.slices: dict[tuple[str, int], slice] = {}
        initial = []
        offset = 0

        def add(key, values):
            nonlocal offset
            values = np.asarray(values, dtype=np.float64).ravel()
            self.slices[key] = slice(offset, offset + len(values))
            initial.append(values)
            offset += len(values)

        for pose_id in self.pose_ids:
            pose = scene.poses[pose_id]
            if RefineOptions.ROTATION in options:
                add(("rotation", pose_id), cv2.Rodrigues(pose.rotation)[0][:, 0])
            if RefineOptions.TRANSLATION in options:
                add(("translation", pose_id), pose.translation)

        for intrinsic_id in self.intrinsic_ids:
            pinhole = scene.intrinsics[intrinsic_id].as_pinhole()
            if RefineOptions.INTRINSICS_FOCAL in options:
                if pinhole.ratio_locked:
                    add(("focal", intrinsic_id), pinhole.scale[:1])
                else:
                    add(("focal", intrinsic_id), pinhole.scale)
                add(("skew", intrinsic_id), [pinhole.skew])
            if RefineOptions.INTRINSICS_OPTICAL_OFFSET in options:
                add(("offset", intrinsic_id), pinhole.offset)
            if RefineOptions.INTRINSICS_DISTORTION in options and pinhole.distortion is not None:
                add(("distortion", intrinsic_id), pinhole.distortion.parameters)

        self.size = offset
        self.initial = np.concatenate(initial) if initial else np.zeros(0)

    def get(self, params: np.ndarray, kind: str, key: int) -> np.ndarray | None:
        s = self.slices.get((kind, key))
        return None if s is None else params[s]

    def columns(self, kind: str, key: int) -> range:
        s = self.slices.get((kind, key))
        return range(0) if s is None else range(s.start, s.stop)


# ============================================================================
# Bundle Adjustment
# ============================================================================


def _unpack(
    params: np.ndarray,
    layout: _ParameterLayout,
    poses: dict[int, Pose],
    cameras: dict[int, PinholeIntrinsic],
    ratios: dict[int, float],
) -> tuple[dict[int, Pose], dict[int, PinholeIntrinsic]]:
    """Apply a parameter vector to copies of the poses and intrinsics."""
    new_poses = {}
    for pose_id in layout.pose_ids:
        pose = poses[pose_id]
        rvec = layout.get(params, "rotation", pose_id)
        tvec = layout.get(params, "translation", pose_id)
        R = cv2.Rodrigues(rvec)[0] if rvec is not None else pose.rotation
        t = tvec if tvec is not None else pose.translation
        new_poses[pose_id] = Pose.from_rt(R, t)

    for intrinsic_id in layout.intrinsic_ids:
        camera = cameras[intrinsic_id]
        focal = layout.get(params, "focal", intrinsic_id)
        if focal is not None:
            if len(focal) == 1:
                camera.scale = np.array([focal[0], focal[0] * ratios[intrinsic_id]])
            else:
                camera.scale = focal.copy()
        skew = layout.get(params, "skew", intrinsic_id)
        if skew is not None:
            camera.skew = float(skew[0])
        offset = layout.get(params, "offset", intrinsic_id)
        if offset is not None:
            camera.offset = offset.copy()
        distortion = layout.get(params, "distortion", intrinsic_id)
        if distortion is not None:
            camera.distortion.set_parameters(distortion)

    return new_poses, cameras


def _get_sparsity_pattern(
    blocks: list[ViewObservations],
    layout: _ParameterLayout,
) -> lil_matrix:
    """
    Build sparse Jacobian pattern for least_squares.
    """
    m = sum(b.n_img_points for b in blocks) * 2
    A = lil_matrix((m, layout.size), dtype=int)

    row = 0
    for block in blocks:
        rows = range(row, row + 2 * block.n_img_points)
        columns = (
            list(layout.columns("rotation", block.pose_id))
            + list(layout.columns("translation", block.pose_id))
            + list(layout.columns("focal", block.intrinsic_id))
            + list(layout.columns("skew", block.intrinsic_id))
            + list(layout.columns("offset", block.intrinsic_id))
            + list(layout.columns("distortion", block.intrinsic_id))
        )
        for r in rows:
            for c in columns:
                A[r, c] = 1
        row += 2 * block.n_img_points

    return A


def _weighted_reprojection_error(
    params: np.ndarray,
    blocks: list[ViewObservations],
    layout: _ParameterLayout,
    poses: dict[int, Pose],
    cameras: dict[int, PinholeIntrinsic],
    ratios: dict[int, float],
) -> np.ndarray:
    """
    Compute weighted reprojection error for bundle adjustment.
    """
    new_poses, new_cameras = _unpack(params, layout, poses, cameras, ratios)

    errors = []
    for block in blocks:
        camera = new_cameras[block.intrinsic_id]
        projected = camera.project(new_poses[block.pose_id], block.points_3d)
        errors.append(((projected - block.img_points) * block.weights[:, None]).ravel())

    return np.concatenate(errors)


class BundleAdjustment:
    """
    Reprojection-error minimizer over poses and pinhole intrinsics.

    Example:
        >>> ba = BundleAdjustment(RefinementConfig(summary=True))
        >>> ok = ba.adjust(scene, RefineOptions.ROTATION | RefineOptions.TRANSLATION)
    """

    def __init__(self, options: RefinementConfig | None = None):
        self.options = options or RefinementConfig()

    def adjust(self, scene: Scene, refine: RefineOptions) -> bool:
        """
        Refine the scene in place.

        Args:
            scene: Scene with poses, intrinsics and observed landmarks
            refine: Parameter groups to optimize

        Returns:
            True on success (scene updated), False otherwise (scene untouched)
        """
        blocks = collect_observations(scene)
        if not blocks:
            logger.error("No observation with a defined pose and pinhole intrinsic")
            return False

        layout = _ParameterLayout(scene, blocks, refine)
        initial_rmse = scene.reprojection_rmse()
        if layout.size == 0:
            return True

        poses = {pose_id: scene.poses[pose_id] for pose_id in layout.pose_ids}
        cameras = {
            intrinsic_id: scene.intrinsics[intrinsic_id].as_pinhole().copy()
            for intrinsic_id in layout.intrinsic_ids
        }
        ratios = {
            intrinsic_id: float(camera.scale[1] / camera.scale[0])
            for intrinsic_id, camera in cameras.items()
        }

        n_residuals = 2 * sum(b.n_img_points for b in blocks)
        if n_residuals < layout.size:
            logger.error(
                f"Underdetermined refinement: {n_residuals} residuals for {layout.size} parameters"
            )
            return False

        sparsity = _get_sparsity_pattern(blocks, layout)

        try:
            result = least_squares(
                _weighted_reprojection_error,
                layout.initial,
                jac_sparsity=sparsity,
                verbose=0,
                x_scale="jac",
                loss=self.options.loss,
                ftol=self.options.ftol,
                xtol=self.options.xtol,
                gtol=self.options.gtol,
                max_nfev=self.options.max_nfev,
                method="trf",
                args=(blocks, layout, poses, cameras, ratios),
            )
        except (ValueError, np.linalg.LinAlgError) as e:
            logger.error(f"Refinement failed: {e}")
            return False

        if not result.success or not np.all(np.isfinite(result.x)):
            logger.error(f"Refinement did not converge: {result.message}")
            return False

        new_poses, new_cameras = _unpack(result.x, layout, poses, cameras, ratios)
        for pose_id, pose in new_poses.items():
            scene.poses[pose_id] = pose
        for intrinsic_id, camera in new_cameras.items():
            target = scene.intrinsics[intrinsic_id].as_pinhole()
            target.scale = camera.scale.copy()
            target.skew = camera.skew
            target.offset = camera.offset.copy()
            if target.distortion is not None:
                target.distortion.set_parameters(camera.distortion.parameters)

        if self.options.summary:
            logger.info(
                f"Refinement: {len(blocks)} views, {n_residuals // 2} observations, "
                f"{layout.size} parameters, {result.nfev} evaluations"
            )
            logger.info(
                f"RMSE {initial_rmse:.6f} px -> {scene.reprojection_rmse():.6f} px "
                f"({result.message})"
            )

        return True
