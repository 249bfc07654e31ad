"""
Pytest configuration and shared fixtures.

Scenes are synthetic and noiseless: corners are exact projections of
board points through a known camera.
"""

import tempfile
from pathlib import Path

import cv2
import numpy as np
import pytest

from checkercalib.camera import PinholeIntrinsic, RadialTangentialDistortion
from checkercalib.scene import Scene
from checkercalib.types import UNDEFINED, Checkerboard, CheckerDetection, Corner, Pose, View


IMAGE_WIDTH = 640
IMAGE_HEIGHT = 480


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that's cleaned up after test."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td)


@pytest.fixture
def sample_intrinsics_matrix():
    """Camera matrix for a 640x480 image, principal point off-center."""
    return np.array([
        [800.0, 0.0, 330.0],
        [0.0, 780.0, 235.0],
        [0.0, 0.0, 1.0],
    ], dtype=np.float64)


@pytest.fixture
def sample_distortion():
    """Typical distortion coefficients (k1, k2, p1, p2, k3)."""
    return np.array([0.1, -0.25, 0.001, -0.001, 0.1], dtype=np.float64)


@pytest.fixture
def sample_pinhole(sample_intrinsics_matrix):
    """PinholeIntrinsic matching sample_intrinsics_matrix, zero distortion."""
    camera = PinholeIntrinsic(
        IMAGE_WIDTH,
        IMAGE_HEIGHT,
        distortion=RadialTangentialDistortion(),
    )
    camera.set_K(sample_intrinsics_matrix)
    return camera


@pytest.fixture
def board_poses():
    """Three poses looking at a 7x5 board (square 0.1) from different tilts."""
    board_center = np.array([0.3, 0.2, 0.0])
    poses = []
    for rvec, depth in [
        ((0.3, 0.1, 0.05), 1.5),
        ((-0.2, 0.35, -0.1), 1.7),
        ((0.1, -0.3, 0.2), 1.4),
    ]:
        R = cv2.Rodrigues(np.array(rvec, dtype=np.float64))[0]
        t = -R @ board_center + np.array([0.02, -0.01, depth])
        poses.append(Pose.from_rt(R, t))
    return poses


def _board_points(rows, cols, square_size, centered):
    cx = cols // 2 if centered else 0
    cy = rows // 2 if centered else 0
    return np.array(
        [((j - cx) * square_size, (i - cy) * square_size, 0.0)
         for i in range(rows) for j in range(cols)],
        dtype=np.float64,
    )


@pytest.fixture
def make_detection():
    """
    Factory building a CheckerDetection from a camera and poses.

    Each board is (rows, cols, square_size, centered, undefined) where
    undefined is an optional set of (i, j) cells left without a corner.
    """

    def factory(camera, pose, boards):
        corners = []
        grids = []
        for rows, cols, square_size, centered, undefined in boards:
            undefined = undefined or set()
            pixels = camera.project(pose, _board_points(rows, cols, square_size, centered))
            grid = np.full((rows, cols), UNDEFINED, dtype=np.int64)
            for i in range(rows):
                for j in range(cols):
                    if (i, j) in undefined:
                        continue
                    grid[i, j] = len(corners)
                    corners.append(Corner(center=pixels[i * cols + j], scale=1.0))
            grids.append(Checkerboard(grid=grid))
        return CheckerDetection(corners=corners, boards=grids)

    return factory


@pytest.fixture
def multi_view_setup(sample_intrinsics_matrix, sample_pinhole, board_poses, make_detection):
    """
    Three views of a 7x5 board sharing one intrinsic.

    Returns:
        (scene, detections, ground-truth K, ground-truth poses)
    """
    scene = Scene()
    scene.intrinsics[0] = PinholeIntrinsic(
        IMAGE_WIDTH,
        IMAGE_HEIGHT,
        focal=(500.0, 500.0),
        distortion=RadialTangentialDistortion(),
    )
    detections = {}
    for view_id, pose in enumerate(board_poses):
        scene.views[view_id] = View(
            view_id=view_id,
            intrinsic_id=0,
            pose_id=view_id,
            width=IMAGE_WIDTH,
            height=IMAGE_HEIGHT,
        )
        detections[view_id] = make_detection(
            sample_pinhole, pose, [(5, 7, 0.1, False, None)]
        )
    return scene, detections, sample_intrinsics_matrix, board_poses


def ring_cells(size, half_hole):
    """Cells of the central hole of a size x size board."""
    c = size // 2
    return {
        (i, j)
        for i in range(size)
        for j in range(size)
        if abs(i - c) <= half_hole and abs(j - c) <= half_hole
    }


@pytest.fixture
def nested_pose():
    R = cv2.Rodrigues(np.array([0.1, -0.15, 0.05]))[0]
    return Pose.from_rt(R, np.array([0.05, -0.02, 5.0]))


@pytest.fixture
def nested_setup(make_detection, nested_pose):
    """
    One view of two nested boards sharing the world frame.

    The inner board is a full 6x6 grid; the outer one is a 10x10 ring whose
    central 7x7 cells are undefined (51 corners). Both use square 0.25.

    Returns:
        Factory taking (fx, fy, offset) and returning (scene, detections, camera)
    """

    def factory(fx=800.0, fy=800.0, offset=(0.0, 0.0)):
        camera = PinholeIntrinsic(
            IMAGE_WIDTH,
            IMAGE_HEIGHT,
            focal=(fx, fy),
            offset=offset,
            distortion=RadialTangentialDistortion(),
        )
        scene = Scene()
        scene.intrinsics[3] = camera
        scene.views[7] = View(
            view_id=7, intrinsic_id=3, pose_id=11, width=IMAGE_WIDTH, height=IMAGE_HEIGHT
        )
        detection = make_detection(
            camera.copy(),
            nested_pose,
            [
                (10, 10, 0.25, True, ring_cells(10, 3)),
                (6, 6, 0.25, True, None),
            ],
        )
        return scene, {7: detection}, camera

    return factory
