"""
Camera models.

Intrinsics are mutable: calibration and refinement update them in place.
Only the pinhole model takes part in calibration; callers ask for it with
as_pinhole() instead of checking types.
"""

from __future__ import annotations

import numpy as np


# ============================================================================
# Distortion
# ============================================================================


class RadialTangentialDistortion:
    """
    Brown-Conrady distortion (k1, k2, p1, p2, k3) on normalized camera points.
    """

    def __init__(self, coefficients=None):
        if coefficients is None:
            coefficients = np.zeros(5)
        self.coefficients = np.asarray(coefficients, dtype=np.float64).reshape(5).copy()

    @property
    def parameters(self) -> np.ndarray:
        return self.coefficients

    def set_parameters(self, params: np.ndarray) -> None:
        self.coefficients = np.asarray(params, dtype=np.float64).reshape(5).copy()

    def copy(self) -> RadialTangentialDistortion:
        return RadialTangentialDistortion(self.coefficients)

    def add_distortion(self, points: np.ndarray) -> np.ndarray:
        k1, k2, p1, p2, k3 = self.coefficients
        points = np.asarray(points, dtype=np.float64)
        x = points[..., 0]
        y = points[..., 1]

        r2 = x**2 + y**2
        radial = 1 + k1 * r2 + k2 * r2**2 + k3 * r2**3
        delta_x = 2 * p1 * x * y + p2 * (r2 + 2 * x**2)
        delta_y = p1 * (r2 + 2 * y**2) + 2 * p2 * x * y

        return np.stack([x * radial + delta_x, y * radial + delta_y], axis=-1)

    def remove_distortion(self, points: np.ndarray, iterations: int = 20) -> np.ndarray:
        """
        Invert add_distortion by fixed-point iteration.

        Based on: https://yangyushi.github.io/code/2020/03/04/opencv-undistort.html
        """
        k1, k2, p1, p2, k3 = self.coefficients
        points = np.asarray(points, dtype=np.float64)
        x0 = points[..., 0]
        y0 = points[..., 1]
        x, y = x0.copy(), y0.copy()

        for _ in range(iterations):
            r2 = x**2 + y**2
            k_inv = 1 / (1 + k1 * r2 + k2 * r2**2 + k3 * r2**3)
            delta_x = 2 * p1 * x * y + p2 * (r2 + 2 * x**2)
            delta_y = p1 * (r2 + 2 * y**2) + 2 * p2 * x * y
            x = (x0 - delta_x) * k_inv
            y = (y0 - delta_y) * k_inv

        return np.stack([x, y], axis=-1)


# ============================================================================
# Intrinsics
# ============================================================================


class Intrinsic:
    """
    Base camera model: image size and projection.
    """

    type_name = "unknown"

    def __init__(self, width: int, height: int):
        self.width = int(width)
        self.height = int(height)

    def as_pinhole(self) -> PinholeIntrinsic | None:
        """Pinhole view of this camera, or None if the model is not a pinhole."""
        return None

    def project(self, pose, points: np.ndarray, apply_distortion: bool = True) -> np.ndarray:
        raise NotImplementedError


class PinholeIntrinsic(Intrinsic):
    """
    Pinhole camera: K = [[fx, skew, cx], [0, fy, cy], [0, 0, 1]].

    The principal point is stored as an offset from the image center.
    ratio_locked keeps fy / fx constant while the focal is refined.
    """

    type_name = "pinhole"

    def __init__(
        self,
        width: int,
        height: int,
        focal: tuple[float, float] = (1.0, 1.0),
        offset: tuple[float, float] = (0.0, 0.0),
        skew: float = 0.0,
        distortion: RadialTangentialDistortion | None = None,
        ratio_locked: bool = False,
    ):
        super().__init__(width, height)
        self.scale = np.asarray(focal, dtype=np.float64).reshape(2).copy()
        self.offset = np.asarray(offset, dtype=np.float64).reshape(2).copy()
        self.skew = float(skew)
        self.distortion = distortion
        self.ratio_locked = ratio_locked

    def as_pinhole(self) -> PinholeIntrinsic:
        return self

    def copy(self) -> PinholeIntrinsic:
        return PinholeIntrinsic(
            self.width,
            self.height,
            focal=self.scale,
            offset=self.offset,
            skew=self.skew,
            distortion=self.distortion.copy() if self.distortion is not None else None,
            ratio_locked=self.ratio_locked,
        )

    @property
    def principal_point(self) -> np.ndarray:
        return np.array([0.5 * self.width, 0.5 * self.height]) + self.offset

    @property
    def K(self) -> np.ndarray:
        ppx, ppy = self.principal_point
        return np.array([
            [self.scale[0], self.skew, ppx],
            [0.0, self.scale[1], ppy],
            [0.0, 0.0, 1.0],
        ], dtype=np.float64)

    def set_K(self, K: np.ndarray) -> None:
        """Overwrite focal, skew and principal point from a calibration matrix."""
        K = np.asarray(K, dtype=np.float64)
        K = K / K[2, 2]
        self.scale = np.array([K[0, 0], K[1, 1]])
        self.skew = float(K[0, 1])
        self.offset = np.array([K[0, 2] - 0.5 * self.width, K[1, 2] - 0.5 * self.height])

    # ------------------------------------------------------------------------
    # Pixel <-> camera plane
    # ------------------------------------------------------------------------

    def ima2cam(self, pixels: np.ndarray) -> np.ndarray:
        pixels = np.asarray(pixels, dtype=np.float64)
        ppx, ppy = self.principal_point
        y = (pixels[..., 1] - ppy) / self.scale[1]
        x = (pixels[..., 0] - ppx - self.skew * y) / self.scale[0]
        return np.stack([x, y], axis=-1)

    def cam2ima(self, points: np.ndarray) -> np.ndarray:
        points = np.asarray(points, dtype=np.float64)
        ppx, ppy = self.principal_point
        x = self.scale[0] * points[..., 0] + self.skew * points[..., 1] + ppx
        y = self.scale[1] * points[..., 1] + ppy
        return np.stack([x, y], axis=-1)

    def add_distortion(self, points: np.ndarray) -> np.ndarray:
        if self.distortion is None:
            return np.asarray(points, dtype=np.float64)
        return self.distortion.add_distortion(points)

    def remove_distortion(self, points: np.ndarray) -> np.ndarray:
        if self.distortion is None:
            return np.asarray(points, dtype=np.float64)
        return self.distortion.remove_distortion(points)

    def get_ud_pixel(self, pixels: np.ndarray) -> np.ndarray:
        """Undistorted pixel location of a (distorted) detected pixel."""
        return self.cam2ima(self.remove_distortion(self.ima2cam(pixels)))

    def get_d_pixel(self, pixels: np.ndarray) -> np.ndarray:
        """Distorted pixel location of an ideal pinhole pixel."""
        return self.cam2ima(self.add_distortion(self.ima2cam(pixels)))

    def project(self, pose, points: np.ndarray, apply_distortion: bool = True) -> np.ndarray:
        """
        Project (n, 3) world points through a Pose.

        Returns:
            (n, 2) pixel coordinates
        """
        cam = pose.transform(points)
        normalized = cam[:, :2] / cam[:, 2:3]
        if apply_distortion:
            normalized = self.add_distortion(normalized)
        return self.cam2ima(normalized)


class EquidistantIntrinsic(Intrinsic):
    """
    Equidistant fisheye camera: r = f * theta.

    Not a pinhole; calibration rejects it.
    """

    type_name = "equidistant"

    def __init__(
        self,
        width: int,
        height: int,
        focal: float = 1.0,
        offset: tuple[float, float] = (0.0, 0.0),
    ):
        super().__init__(width, height)
        self.focal = float(focal)
        self.offset = np.asarray(offset, dtype=np.float64).reshape(2).copy()

    def project(self, pose, points: np.ndarray, apply_distortion: bool = True) -> np.ndarray:
        cam = pose.transform(points)
        r = np.linalg.norm(cam[:, :2], axis=1)
        theta = np.arctan2(r, cam[:, 2])
        factor = np.where(r > 0, theta / np.where(r > 0, r, 1.0), 0.0)
        center = np.array([0.5 * self.width, 0.5 * self.height]) + self.offset
        return cam[:, :2] * (self.focal * factor)[:, None] + center
