"""
Robust camera resection with a known calibration matrix.

P3P minimal solver inside the shared AC-RANSAC loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import combinations

import cv2
import numpy as np
from scipy.linalg import rq

from ..types import Pose
from .ransac import ConsensusKernel, ac_ransac


P3P_MIN_SAMPLES = 3
P3P_MAX_MODELS = 4


@dataclass(frozen=True, slots=True)
class PoseEstimate:
    """
    Robust resection result.
    """

    pose: Pose
    projection: np.ndarray  # 3x4 winning model
    inliers: np.ndarray  # (m,) indices
    threshold: float  # squared pixel error bound


# ============================================================================
# Projection Matrix Helpers
# ============================================================================


def p_from_krt(K: np.ndarray, R: np.ndarray, t: np.ndarray) -> np.ndarray:
    return K @ np.column_stack([R, np.asarray(t).reshape(3)])


def krt_from_p(P: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Decompose a 3x4 projection matrix into K, R, t with RQ.

    K has a positive diagonal and K[2, 2] = 1, R is a proper rotation.
    """
    P = np.asarray(P, dtype=np.float64)
    K, R = rq(P[:, :3])

    # Make the diagonal of K positive
    signs = np.sign(np.diag(K))
    signs[signs == 0] = 1.0
    D = np.diag(signs)
    K = K @ D
    R = D @ R

    # P is only defined up to scale: flip it if R came out as a reflection
    if np.linalg.det(R) < 0:
        R = -R
        P = -P

    t = np.linalg.solve(K, P[:, 3])
    K = K / K[2, 2]
    return K, R, t


def projection_errors(P: np.ndarray, points_3d: np.ndarray, points_2d: np.ndarray) -> np.ndarray:
    """Squared reprojection distance; points behind the camera score inf."""
    homogeneous = np.column_stack([points_3d, np.ones(len(points_3d))]) @ P.T
    depth = homogeneous[:, 2]
    with np.errstate(divide="ignore", invalid="ignore"):
        projected = homogeneous[:, :2] / depth[:, None]
        errors = np.sum((projected - points_2d) ** 2, axis=1)
    return np.where((depth > 0) & np.isfinite(errors), errors, np.inf)


def _has_collinear_triplet_3d(points: np.ndarray, tolerance: float = 1e-6) -> bool:
    for a, b, c in combinations(range(len(points)), 3):
        u = points[b] - points[a]
        v = points[c] - points[a]
        norms = np.linalg.norm(u) * np.linalg.norm(v)
        if norms == 0:
            return True
        if np.linalg.norm(np.cross(u, v)) / norms < tolerance:
            return True
    return False


# ============================================================================
# Robust Estimation
# ============================================================================


def resection_kernel(
    K: np.ndarray,
    points_3d: np.ndarray,
    points_2d: np.ndarray,
    width: int,
    height: int,
) -> ConsensusKernel:
    """
    Consensus kernel for P3P with fixed K, squared pixel reprojection error.
    """
    K = np.asarray(K, dtype=np.float64)
    points_3d = np.asarray(points_3d, dtype=np.float64)
    points_2d = np.asarray(points_2d, dtype=np.float64)

    # P3P runs on the camera plane so any skew in K is handled here, not by OpenCV
    homogeneous = np.column_stack([points_2d, np.ones(len(points_2d))])
    normalized = (homogeneous @ np.linalg.inv(K).T)[:, :2]
    identity = np.eye(3)

    def solve(sample: np.ndarray) -> list[np.ndarray]:
        obj = np.ascontiguousarray(points_3d[sample])
        img = np.ascontiguousarray(normalized[sample])
        if _has_collinear_triplet_3d(obj):
            return []

        try:
            count, rvecs, tvecs = cv2.solveP3P(obj, img, identity, None, flags=cv2.SOLVEPNP_P3P)
        except cv2.error:
            return []

        models = []
        for rvec, tvec in zip(rvecs[:count], tvecs[:count]):
            R = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64))[0]
            t = np.asarray(tvec, dtype=np.float64).reshape(3)
            if np.any((obj @ R.T + t)[:, 2] <= 0):
                continue
            models.append(p_from_krt(K, R, t))
        return models

    def residuals(P: np.ndarray) -> np.ndarray:
        return projection_errors(P, points_3d, points_2d)

    def refine(P: np.ndarray, inliers: np.ndarray) -> np.ndarray | None:
        _, R, t = krt_from_p(P)
        rvec = cv2.Rodrigues(R)[0]
        tvec = t.reshape(3, 1).copy()
        try:
            rvec, tvec = cv2.solvePnPRefineLM(
                np.ascontiguousarray(points_3d[inliers]),
                np.ascontiguousarray(normalized[inliers]),
                identity,
                None,
                rvec,
                tvec,
            )
        except cv2.error:
            return None

        refined = p_from_krt(K, cv2.Rodrigues(rvec)[0], tvec)
        before = residuals(P)[inliers].sum()
        after = residuals(refined)[inliers].sum()
        return refined if after <= before else None

    return ConsensusKernel(
        num_samples=len(points_3d),
        minimum_samples=P3P_MIN_SAMPLES,
        max_models=P3P_MAX_MODELS,
        solve=solve,
        residuals=residuals,
        log_alpha0=float(np.log10(np.pi / (width * height))),
        mult_error=1.0,
        refine=refine,
    )


def estimate_pose(
    K: np.ndarray,
    points_3d: np.ndarray,
    points_2d: np.ndarray,
    width: int,
    height: int,
    rng: np.random.Generator,
    max_iterations: int = 1000,
) -> PoseEstimate | None:
    """
    Robustly estimate the pose of a camera with known K.

    Args:
        K: 3x3 calibration matrix (kept fixed)
        points_3d: (n, 3) pattern points
        points_2d: (n, 2) undistorted pixel observations
        width: Image width
        height: Image height
        rng: Seeded generator
        max_iterations: AC-RANSAC iteration budget

    Returns:
        PoseEstimate (inliers may be empty if nothing was meaningful),
        or None if no candidate model was ever produced
    """
    if len(points_3d) != len(points_2d):
        raise ValueError(f"Point count mismatch: {len(points_3d)} vs {len(points_2d)}")

    kernel = resection_kernel(K, points_3d, points_2d, width, height)
    result = ac_ransac(kernel, rng, max_iterations=max_iterations)
    if result is None:
        return None

    # K is already known; only R and t are kept from the decomposition
    _, R, t = krt_from_p(result.model)
    return PoseEstimate(
        pose=Pose.from_rt(R, t),
        projection=result.model,
        inliers=result.inliers,
        threshold=result.threshold,
    )
