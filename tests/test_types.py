"""
Tests for checkercalib.types dataclasses.
"""

import cv2
import numpy as np
import pytest

from checkercalib.types import (
    UNDEFINED,
    CalibrationError,
    Checkerboard,
    CheckerDetection,
    Corner,
    DegenerateIntrinsicError,
    InconsistentBoardError,
    Landmark,
    NotPinholeError,
    Observation,
    Pose,
    PreconditionError,
    RefinementError,
    RobustFitError,
    View,
)


class TestCheckerboard:
    def test_dimensions(self):
        board = Checkerboard(grid=np.arange(12).reshape(3, 4))
        assert board.rows == 3
        assert board.cols == 4

    def test_cells_skip_undefined(self):
        grid = np.array([
            [0, UNDEFINED, 1],
            [UNDEFINED, 2, 3],
        ])
        board = Checkerboard(grid=grid)

        cells = list(board.cells())
        assert cells == [(0, 0, 0), (0, 2, 1), (1, 1, 2), (1, 2, 3)]
        assert board.count_valid() == 4

    def test_all_undefined(self):
        board = Checkerboard(grid=np.full((2, 2), UNDEFINED))
        assert list(board.cells()) == []
        assert board.count_valid() == 0

    def test_frozen(self):
        board = Checkerboard(grid=np.zeros((2, 2), dtype=int))
        with pytest.raises(AttributeError):
            board.grid = np.ones((2, 2), dtype=int)


class TestCheckerDetection:
    def test_corner_centers(self):
        detection = CheckerDetection(
            corners=[Corner(center=np.array([1.0, 2.0])), Corner(center=np.array([3.0, 4.0]))],
            boards=[],
        )
        np.testing.assert_array_equal(detection.corner_centers(), [[1.0, 2.0], [3.0, 4.0]])

    def test_empty(self):
        detection = CheckerDetection(corners=[], boards=[])
        assert detection.corner_centers().shape == (0, 2)


class TestPose:
    def test_from_rt_roundtrip(self):
        R = cv2.Rodrigues(np.array([0.1, -0.2, 0.3]))[0]
        t = np.array([0.5, -1.0, 2.0])
        pose = Pose.from_rt(R, t)

        np.testing.assert_array_almost_equal(pose.translation, t)
        np.testing.assert_array_almost_equal(pose.center, -R.T @ t)

    def test_transform_matches_rt(self):
        R = cv2.Rodrigues(np.array([0.2, 0.1, -0.4]))[0]
        t = np.array([0.1, 0.2, 3.0])
        pose = Pose.from_rt(R, t)
        points = np.array([[0.0, 0.0, 0.0], [1.0, 2.0, 3.0]])

        np.testing.assert_array_almost_equal(pose.transform(points), points @ R.T + t)

    def test_center_maps_to_origin(self):
        R = cv2.Rodrigues(np.array([0.3, 0.0, 0.1]))[0]
        pose = Pose.from_rt(R, np.array([1.0, 2.0, 3.0]))
        np.testing.assert_array_almost_equal(pose.transform(pose.center[None, :])[0], np.zeros(3))


class TestSceneElements:
    def test_view_defaults(self):
        view = View(view_id=1, intrinsic_id=2, pose_id=3, width=640, height=480)
        assert view.image_path == ""

    def test_observation_default_scale(self):
        obs = Observation(x=np.array([1.0, 2.0]), feature_id=5)
        assert obs.scale == 1.0

    def test_landmark_is_mutable(self):
        landmark = Landmark(X=np.zeros(3))
        assert landmark.desc_type == "checkerboard"
        landmark.observations[4] = Observation(x=np.zeros(2), feature_id=0)
        assert 4 in landmark.observations

    def test_landmarks_do_not_share_observations(self):
        a = Landmark(X=np.zeros(3))
        b = Landmark(X=np.ones(3))
        a.observations[0] = Observation(x=np.zeros(2), feature_id=0)
        assert b.observations == {}


class TestErrors:
    @pytest.mark.parametrize("error", [
        PreconditionError,
        NotPinholeError,
        InconsistentBoardError,
        RobustFitError,
        DegenerateIntrinsicError,
        RefinementError,
    ])
    def test_all_are_calibration_errors(self, error):
        assert issubclass(error, CalibrationError)

    def test_precondition_family(self):
        assert issubclass(NotPinholeError, PreconditionError)
        assert issubclass(InconsistentBoardError, PreconditionError)
        assert not issubclass(RobustFitError, PreconditionError)
