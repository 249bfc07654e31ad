"""
Core data structures for checkercalib.

Detections, poses and views are frozen dataclasses with slots.
Landmarks stay mutable: refinement and the aspect correction pass
rewrite their observations in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

import numpy as np


# Grid cell value for a corner the detector did not find
UNDEFINED = -1


# ============================================================================
# Checkerboard Detections
# ============================================================================


@dataclass(frozen=True, slots=True)
class Corner:
    """
    A detected checkerboard corner.
    The corner id is its index in CheckerDetection.corners.
    """

    center: np.ndarray  # (2,) pixel coordinates (x, y)
    scale: float = 1.0


@dataclass(frozen=True, slots=True)
class Checkerboard:
    """
    Grid of corner ids, UNDEFINED where no corner was detected.
    """

    grid: np.ndarray  # (rows, cols) int

    @property
    def rows(self) -> int:
        return int(self.grid.shape[0])

    @property
    def cols(self) -> int:
        return int(self.grid.shape[1])

    def cells(self) -> Iterator[tuple[int, int, int]]:
        """Yield (row, col, corner_id) for every defined cell, row-major."""
        for i in range(self.rows):
            for j in range(self.cols):
                cid = int(self.grid[i, j])
                if cid == UNDEFINED:
                    continue
                yield i, j, cid

    def count_valid(self) -> int:
        return int(np.count_nonzero(self.grid != UNDEFINED))


@dataclass(frozen=True, slots=True)
class CheckerDetection:
    """
    All checkerboards found in one image, sharing a flat corner list.
    """

    corners: list[Corner]
    boards: list[Checkerboard]

    def corner_centers(self) -> np.ndarray:
        if not self.corners:
            return np.zeros((0, 2), dtype=np.float64)
        return np.array([c.center for c in self.corners], dtype=np.float64)


# ============================================================================
# Scene Elements
# ============================================================================


@dataclass(frozen=True, slots=True)
class Pose:
    """
    Rigid transform from the pattern/world frame to the camera frame.

    Stored as rotation + camera center: x_cam = R @ (X - C).
    """

    rotation: np.ndarray  # 3x3
    center: np.ndarray  # (3,)

    @classmethod
    def from_rt(cls, rotation: np.ndarray, translation: np.ndarray) -> Pose:
        rotation = np.asarray(rotation, dtype=np.float64)
        translation = np.asarray(translation, dtype=np.float64).reshape(3)
        return cls(rotation=rotation, center=-rotation.T @ translation)

    @property
    def translation(self) -> np.ndarray:
        return -self.rotation @ self.center

    def transform(self, points: np.ndarray) -> np.ndarray:
        """Map (n, 3) world points into the camera frame."""
        points = np.asarray(points, dtype=np.float64)
        return (points - self.center) @ self.rotation.T


@dataclass(frozen=True, slots=True)
class View:
    """
    An image: which intrinsic it was shot with and which pose slot it uses.
    """

    view_id: int
    intrinsic_id: int
    pose_id: int
    width: int
    height: int
    image_path: str = ""


@dataclass(frozen=True, slots=True)
class Observation:
    """
    2D measurement of a landmark in one view.
    Residuals are weighted by 1 / scale during refinement.
    """

    x: np.ndarray  # (2,) pixel coordinates
    feature_id: int
    scale: float = 1.0


@dataclass(slots=True)
class Landmark:
    """
    3D point in the pattern frame with its per-view observations.
    """

    X: np.ndarray  # (3,)
    desc_type: str = "checkerboard"
    observations: dict[int, Observation] = field(default_factory=dict)


# ============================================================================
# Errors
# ============================================================================


class CalibrationError(Exception):
    """Base exception for calibration failures."""
    pass


class PreconditionError(CalibrationError):
    """Input cannot be calibrated at all (wrong camera type, too few views...)."""
    pass


class NotPinholeError(PreconditionError):
    """The intrinsic does not expose a pinhole view."""
    pass


class InconsistentBoardError(PreconditionError):
    """Intrinsics sharing the landmark grid saw boards of different sizes."""
    pass


class RobustFitError(CalibrationError):
    """Consensus estimation found too few inliers."""
    pass


class DegenerateIntrinsicError(CalibrationError):
    """Closed-form intrinsic recovery hit a non-positive square root operand."""
    pass


class RefinementError(CalibrationError):
    """Nonlinear refinement reported failure."""
    pass
