"""
Robust geometric estimation.

One AC-RANSAC loop, parameterized by a ConsensusKernel, serves both the
homography and the resection fits.
"""

from .ransac import (
    ConsensusKernel,
    RobustResult,
    ac_ransac,
)

from .homography import (
    estimate_homography,
    fit_homography,
    homography_errors,
    homography_kernel,
)

from .resection import (
    PoseEstimate,
    estimate_pose,
    krt_from_p,
    p_from_krt,
    resection_kernel,
)

__all__ = [
    # Consensus
    "ConsensusKernel",
    "RobustResult",
    "ac_ransac",
    # Homography
    "estimate_homography",
    "fit_homography",
    "homography_errors",
    "homography_kernel",
    # Resection
    "PoseEstimate",
    "estimate_pose",
    "krt_from_p",
    "p_from_krt",
    "resection_kernel",
]
