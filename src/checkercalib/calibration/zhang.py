"""
Closed-form intrinsic calibration from plane homographies.

Zhang, "A flexible new technique for camera calibration", PAMI 2000.
"""

from __future__ import annotations

from typing import Mapping

import numpy as np

from ..types import DegenerateIntrinsicError, Pose
from ..utils.logging import get_logger

logger = get_logger("calibration.zhang")

# Smallest singular value above this fraction of the next one leaves the
# null vector of V ambiguous
AMBIGUITY_RATIO = 0.5


def compute_v(H: np.ndarray, i: int, j: int) -> np.ndarray:
    """
    Row v_ij such that h_i^T B h_j = v_ij . b, b = (B11, B12, B22, B13, B23, B33).
    """
    return np.array([
        H[0, i] * H[0, j],
        H[0, i] * H[1, j] + H[1, i] * H[0, j],
        H[1, i] * H[1, j],
        H[2, i] * H[0, j] + H[0, i] * H[2, j],
        H[2, i] * H[1, j] + H[1, i] * H[2, j],
        H[2, i] * H[2, j],
    ])


def solve_intrinsic(homographies: Mapping[int, np.ndarray]) -> np.ndarray:
    """
    Recover the calibration matrix shared by all homographies.

    Args:
        homographies: view id -> 3x3 homography (pattern plane to pixels)

    Returns:
        3x3 upper-triangular calibration matrix

    Raises:
        DegenerateIntrinsicError: If there is no homography or B does not
            describe a real camera (non-positive square root operand)
    """
    if len(homographies) == 0:
        raise DegenerateIntrinsicError("No homography to calibrate from")
    if len(homographies) < 3:
        logger.warning(
            f"Only {len(homographies)} homographies: the intrinsic is under-constrained"
        )

    rows = []
    for _, H in sorted(homographies.items()):
        H = np.asarray(H, dtype=np.float64)
        rows.append(compute_v(H, 0, 1))
        rows.append(compute_v(H, 0, 0) - compute_v(H, 1, 1))
    V = np.vstack(rows)

    _, singular, vh = np.linalg.svd(V, full_matrices=True)
    b = vh[-1]

    if len(singular) == 6 and (
        singular[-1] > AMBIGUITY_RATIO * singular[-2]
        or singular[-2] <= np.finfo(np.float64).eps * singular[0]
    ):
        logger.warning(
            "Smallest singular values of V are nearly equal "
            f"({singular[-2]:.3e}, {singular[-1]:.3e}); using the smallest"
        )

    B = np.array([
        [b[0], b[1], b[3]],
        [b[1], b[2], b[4]],
        [b[3], b[4], b[5]],
    ])

    denom = B[0, 0] * B[1, 1] - B[0, 1] * B[0, 1]
    if not denom > 0 or B[0, 0] == 0:
        raise DegenerateIntrinsicError(
            f"B11*B22 - B12^2 = {denom:.3e} is not positive"
        )

    v0 = (B[0, 1] * B[0, 2] - B[0, 0] * B[1, 2]) / denom
    lam = B[2, 2] - (B[0, 2] * B[0, 2] + v0 * (B[0, 1] * B[0, 2] - B[0, 0] * B[1, 2])) / B[0, 0]

    if not lam / B[0, 0] > 0 or not lam * B[0, 0] / denom > 0:
        raise DegenerateIntrinsicError(
            f"lambda = {lam:.3e} gives imaginary focal lengths"
        )

    alpha = np.sqrt(lam / B[0, 0])
    beta = np.sqrt(lam * B[0, 0] / denom)
    gamma = -B[0, 1] * alpha * alpha * beta / lam
    u0 = (gamma * v0 / beta) - (B[0, 2] * alpha * alpha / lam)

    A = np.eye(3)
    A[0, 0] = alpha
    A[1, 1] = beta
    A[0, 1] = gamma
    A[0, 2] = u0
    A[1, 2] = v0

    if not np.all(np.isfinite(A)):
        raise DegenerateIntrinsicError("Recovered calibration matrix is not finite")

    return A


def pose_from_homography(K: np.ndarray, H: np.ndarray) -> Pose:
    """
    Linear pose of the pattern plane from its homography.

    The rotation estimate is replaced by the nearest rotation; the sign is
    chosen so the pattern lies in front of the camera.
    """
    K_inv = np.linalg.inv(K)
    H = np.asarray(H, dtype=np.float64)

    scale = 1.0 / np.linalg.norm(K_inv @ H[:, 1])
    t = scale * K_inv @ H[:, 2]
    if t[2] < 0.0:
        scale = -scale
    t = scale * K_inv @ H[:, 2]

    M = np.zeros((3, 3))
    M[:, 0] = scale * K_inv @ H[:, 0]
    M[:, 1] = scale * K_inv @ H[:, 1]
    M[:, 2] = np.cross(M[:, 0], M[:, 1])

    U, _, Vt = np.linalg.svd(M)
    R = U @ Vt

    return Pose.from_rt(R, t)
