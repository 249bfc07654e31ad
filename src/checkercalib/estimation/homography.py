"""
Robust planar homography estimation.

Maps pattern-plane coordinates to undistorted pixel coordinates.
"""

from __future__ import annotations

from itertools import combinations

import numpy as np

from .ransac import ConsensusKernel, RobustResult, ac_ransac


HOMOGRAPHY_MIN_SAMPLES = 4


# ============================================================================
# Linear Solver
# ============================================================================


def _normalization_matrix(points: np.ndarray) -> np.ndarray:
    """Hartley normalization: centroid at origin, mean distance sqrt(2)."""
    mean = points.mean(axis=0)
    dist = np.sqrt(np.sum((points - mean) ** 2, axis=1)).mean()
    scale = np.sqrt(2.0) / dist if dist > 0 else 1.0
    return np.array([
        [scale, 0.0, -scale * mean[0]],
        [0.0, scale, -scale * mean[1]],
        [0.0, 0.0, 1.0],
    ])


def _apply(H: np.ndarray, points: np.ndarray) -> np.ndarray:
    homogeneous = np.column_stack([points, np.ones(len(points))]) @ H.T
    with np.errstate(divide="ignore", invalid="ignore"):
        return homogeneous[:, :2] / homogeneous[:, 2:3]


def has_collinear_triplet(points: np.ndarray, tolerance: float = 1e-6) -> bool:
    """
    True if any three of the points are (nearly) collinear.

    Uses the sine of the angle at the first point of each triplet, so the
    test does not depend on the coordinate scale.
    """
    for a, b, c in combinations(range(len(points)), 3):
        u = points[b] - points[a]
        v = points[c] - points[a]
        norms = np.linalg.norm(u) * np.linalg.norm(v)
        if norms == 0:
            return True
        cross = u[0] * v[1] - u[1] * v[0]
        if abs(cross) / norms < tolerance:
            return True
    return False


def fit_homography(src: np.ndarray, dst: np.ndarray) -> np.ndarray | None:
    """
    Normalized DLT homography with dst ~ H @ src.

    Args:
        src: (n, 2) source points, n >= 4
        dst: (n, 2) destination points

    Returns:
        3x3 homography with H[2, 2] = 1, or None if degenerate
    """
    src = np.asarray(src, dtype=np.float64)
    dst = np.asarray(dst, dtype=np.float64)

    T_src = _normalization_matrix(src)
    T_dst = _normalization_matrix(dst)
    ps = _apply(T_src, src)
    pd = _apply(T_dst, dst)

    n = len(ps)
    A = np.zeros((2 * n, 9), dtype=np.float64)
    x, y = ps[:, 0], ps[:, 1]
    u, v = pd[:, 0], pd[:, 1]
    A[0::2, 0] = -x
    A[0::2, 1] = -y
    A[0::2, 2] = -1
    A[0::2, 6] = u * x
    A[0::2, 7] = u * y
    A[0::2, 8] = u
    A[1::2, 3] = -x
    A[1::2, 4] = -y
    A[1::2, 5] = -1
    A[1::2, 6] = v * x
    A[1::2, 7] = v * y
    A[1::2, 8] = v

    try:
        _, _, vh = np.linalg.svd(A)
    except np.linalg.LinAlgError:
        return None

    H = np.linalg.inv(T_dst) @ vh[-1].reshape(3, 3) @ T_src
    if abs(H[2, 2]) < 1e-12:
        return None
    H = H / H[2, 2]
    if not np.all(np.isfinite(H)):
        return None
    return H


def homography_errors(H: np.ndarray, src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """Squared point-to-point distance between H @ src and dst."""
    projected = _apply(H, src)
    errors = np.sum((projected - dst) ** 2, axis=1)
    return np.where(np.isfinite(errors), errors, np.inf)


# ============================================================================
# Robust Estimation
# ============================================================================


def homography_kernel(
    src: np.ndarray,
    dst: np.ndarray,
    width: int,
    height: int,
) -> ConsensusKernel:
    """
    Consensus kernel for the 4-point homography, point-to-point error model.

    The a contrario background is the destination image area.
    """
    src = np.asarray(src, dtype=np.float64)
    dst = np.asarray(dst, dtype=np.float64)

    def solve(sample: np.ndarray) -> list[np.ndarray]:
        if has_collinear_triplet(src[sample]) or has_collinear_triplet(dst[sample]):
            return []
        H = fit_homography(src[sample], dst[sample])
        return [] if H is None else [H]

    def residuals(H: np.ndarray) -> np.ndarray:
        return homography_errors(H, src, dst)

    def refine(H: np.ndarray, inliers: np.ndarray) -> np.ndarray | None:
        return fit_homography(src[inliers], dst[inliers])

    return ConsensusKernel(
        num_samples=len(src),
        minimum_samples=HOMOGRAPHY_MIN_SAMPLES,
        max_models=1,
        solve=solve,
        residuals=residuals,
        log_alpha0=float(np.log10(np.pi / (width * height))),
        mult_error=1.0,
        refine=refine,
    )


def estimate_homography(
    pattern_points: np.ndarray,
    image_points: np.ndarray,
    width: int,
    height: int,
    rng: np.random.Generator,
    max_iterations: int = 1024,
) -> RobustResult | None:
    """
    Robustly fit the homography from pattern plane to undistorted pixels.

    Args:
        pattern_points: (n, 2) pattern coordinates (already scaled by square size)
        image_points: (n, 2) undistorted pixel coordinates
        width: Image width
        height: Image height
        rng: Seeded generator
        max_iterations: AC-RANSAC iteration budget

    Returns:
        RobustResult with the 3x3 homography, or None if no model was found

    Raises:
        ValueError: If fewer than 4 correspondences are given
    """
    if len(pattern_points) != len(image_points):
        raise ValueError(
            f"Point count mismatch: {len(pattern_points)} vs {len(image_points)}"
        )
    if len(pattern_points) < HOMOGRAPHY_MIN_SAMPLES:
        raise ValueError(
            f"Need at least {HOMOGRAPHY_MIN_SAMPLES} correspondences, got {len(pattern_points)}"
        )

    if len(pattern_points) == HOMOGRAPHY_MIN_SAMPLES:
        # Nothing to vote on: the minimal fit is the answer
        src = np.asarray(pattern_points, dtype=np.float64)
        dst = np.asarray(image_points, dtype=np.float64)
        if has_collinear_triplet(src) or has_collinear_triplet(dst):
            return None
        H = fit_homography(src, dst)
        if H is None:
            return None
        errors = homography_errors(H, src, dst)
        return RobustResult(
            model=H,
            inliers=np.arange(HOMOGRAPHY_MIN_SAMPLES),
            threshold=float(errors.max()),
            nfa=-np.inf,
        )

    kernel = homography_kernel(pattern_points, image_points, width, height)
    return ac_ransac(kernel, rng, max_iterations=max_iterations)
