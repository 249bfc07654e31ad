"""
Tests for checkercalib.estimation.resection (P3P with known K).
"""

import cv2
import numpy as np
import pytest

from checkercalib.estimation import estimate_pose, krt_from_p, p_from_krt
from checkercalib.estimation.resection import projection_errors
from checkercalib.types import Pose


@pytest.fixture
def pose():
    R = cv2.Rodrigues(np.array([0.15, -0.25, 0.1]))[0]
    return Pose.from_rt(R, np.array([0.1, -0.05, 2.5]))


@pytest.fixture
def grid_points():
    """Centered 6x6 planar grid, square 0.1."""
    return np.array(
        [((j - 3) * 0.1, (i - 3) * 0.1, 0.0) for i in range(6) for j in range(6)],
        dtype=np.float64,
    )


class TestProjectionMatrix:
    def test_krt_roundtrip(self, sample_intrinsics_matrix, pose):
        K = sample_intrinsics_matrix.copy()
        K[0, 1] = 2.0
        P = p_from_krt(K, pose.rotation, pose.translation)

        K2, R2, t2 = krt_from_p(P)

        np.testing.assert_array_almost_equal(K2, K)
        np.testing.assert_array_almost_equal(R2, pose.rotation)
        np.testing.assert_array_almost_equal(t2, pose.translation)

    def test_scale_invariant(self, sample_intrinsics_matrix, pose):
        P = p_from_krt(sample_intrinsics_matrix, pose.rotation, pose.translation)
        K2, R2, t2 = krt_from_p(-3.0 * P)

        np.testing.assert_array_almost_equal(K2, sample_intrinsics_matrix)
        np.testing.assert_array_almost_equal(R2, pose.rotation)
        assert np.linalg.det(R2) == pytest.approx(1.0)

    def test_behind_camera_is_infinite(self, sample_intrinsics_matrix):
        P = p_from_krt(sample_intrinsics_matrix, np.eye(3), np.zeros(3))
        errors = projection_errors(
            P,
            np.array([[0.0, 0.0, 1.0], [0.0, 0.0, -1.0]]),
            np.array([[330.0, 235.0], [330.0, 235.0]]),
        )
        assert errors[0] == pytest.approx(0.0)
        assert np.isinf(errors[1])


class TestEstimatePose:
    def test_exact_recovery(self, sample_intrinsics_matrix, pose, grid_points):
        """Noiseless correspondences: ground-truth pose, every point an inlier."""
        projected = (grid_points @ pose.rotation.T + pose.translation) @ sample_intrinsics_matrix.T
        image = projected[:, :2] / projected[:, 2:3]

        estimate = estimate_pose(
            sample_intrinsics_matrix, grid_points, image, 640, 480, np.random.default_rng(5489)
        )

        assert estimate is not None
        assert len(estimate.inliers) == len(grid_points)
        np.testing.assert_allclose(estimate.pose.rotation, pose.rotation, atol=1e-7)
        np.testing.assert_allclose(estimate.pose.translation, pose.translation, atol=1e-6)

    def test_with_skew(self, sample_intrinsics_matrix, pose, grid_points):
        K = sample_intrinsics_matrix.copy()
        K[0, 1] = 3.0
        projected = (grid_points @ pose.rotation.T + pose.translation) @ K.T
        image = projected[:, :2] / projected[:, 2:3]

        estimate = estimate_pose(K, grid_points, image, 640, 480, np.random.default_rng(5489))

        np.testing.assert_allclose(estimate.pose.rotation, pose.rotation, atol=1e-7)
        np.testing.assert_allclose(estimate.pose.center, pose.center, atol=1e-6)

    def test_rejects_outliers(self, sample_intrinsics_matrix, pose, grid_points):
        projected = (grid_points @ pose.rotation.T + pose.translation) @ sample_intrinsics_matrix.T
        image = projected[:, :2] / projected[:, 2:3]
        outliers = np.array([2, 9, 14, 22, 30])
        image[outliers] += np.array([40.0, -45.0])

        estimate = estimate_pose(
            sample_intrinsics_matrix, grid_points, image, 640, 480, np.random.default_rng(5489)
        )

        np.testing.assert_array_equal(
            estimate.inliers, np.setdiff1d(np.arange(len(grid_points)), outliers)
        )
        np.testing.assert_allclose(estimate.pose.rotation, pose.rotation, atol=1e-6)

    def test_count_mismatch(self, sample_intrinsics_matrix, grid_points):
        with pytest.raises(ValueError):
            estimate_pose(
                sample_intrinsics_matrix, grid_points, np.zeros((3, 2)), 640, 480,
                np.random.default_rng(1),
            )
