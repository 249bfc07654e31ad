"""
Tests for checkercalib.calibration.boards.
"""

import numpy as np
import pytest

from checkercalib.calibration.boards import (
    board_correspondences,
    distance_to_point,
    nested_square_size,
    order_boards_by_center_distance,
    select_nested_boards,
)
from checkercalib.types import UNDEFINED, Checkerboard, CheckerDetection, Corner


def _detection_with_boards(placements, width=640, height=480):
    """
    One square board per placement (size, dx, dy): corners on a 2-pixel
    grid whose closest corner sits (dx, dy) from the image center.
    """
    center = np.array([0.5 * width, 0.5 * height])
    corners = []
    boards = []
    for size, dx, dy in placements:
        grid = np.full((size, size), UNDEFINED, dtype=np.int64)
        sx = 1.0 if dx >= 0 else -1.0
        sy = 1.0 if dy >= 0 else -1.0
        for i in range(size):
            for j in range(size):
                grid[i, j] = len(corners)
                offset = np.array([dx + sx * 2.0 * j, dy + sy * 2.0 * i])
                corners.append(Corner(center=center + offset))
        boards.append(Checkerboard(grid=grid))
    return CheckerDetection(corners=corners, boards=boards)


class TestBoardCorrespondences:
    def test_pattern_points_from_cells(self):
        grid = np.array([
            [0, 1, 2],
            [3, UNDEFINED, 4],
        ])
        corners = [Corner(center=np.array([10.0 * k, 5.0 * k])) for k in range(5)]
        detection = CheckerDetection(corners=corners, boards=[Checkerboard(grid=grid)])

        corr = board_correspondences(detection.boards[0], detection, square_size=0.5)

        assert len(corr) == 5
        np.testing.assert_array_equal(corr.corner_ids, [0, 1, 2, 3, 4])
        np.testing.assert_array_equal(corr.cells, [[0, 0], [0, 1], [0, 2], [1, 0], [1, 2]])
        np.testing.assert_array_almost_equal(corr.pattern_points, [
            [0.0, 0.0, 0.0],
            [0.5, 0.0, 0.0],
            [1.0, 0.0, 0.0],
            [0.0, 0.5, 0.0],
            [1.0, 0.5, 0.0],
        ])
        np.testing.assert_array_almost_equal(corr.image_points[4], [40.0, 20.0])

    def test_centered(self):
        grid = np.arange(20).reshape(4, 5)
        corners = [Corner(center=np.zeros(2)) for _ in range(20)]
        detection = CheckerDetection(corners=corners, boards=[Checkerboard(grid=grid)])

        corr = board_correspondences(detection.boards[0], detection, 1.0, centered=True)

        # Origin at cell (rows // 2, cols // 2) = (2, 2)
        np.testing.assert_array_almost_equal(corr.pattern_points[0], [-2.0, -2.0, 0.0])
        np.testing.assert_array_almost_equal(corr.pattern_points[12], [0.0, 0.0, 0.0])
        np.testing.assert_array_almost_equal(corr.pattern_points[-1], [2.0, 1.0, 0.0])

    def test_empty_board(self):
        detection = CheckerDetection(corners=[], boards=[Checkerboard(grid=np.full((2, 2), UNDEFINED))])
        corr = board_correspondences(detection.boards[0], detection, 1.0)
        assert len(corr) == 0
        assert corr.pattern_points.shape == (0, 3)


class TestNestedSquareSize:
    def test_doubles_after_first_two(self):
        sizes = [nested_square_size(i, 0.25) for i in range(5)]
        assert sizes == pytest.approx([0.25, 0.25, 0.5, 1.0, 2.0])


class TestOrdering:
    def test_distance_to_point(self):
        detection = _detection_with_boards([(6, 30.0, 40.0)])
        center = np.array([320.0, 240.0])
        assert distance_to_point(detection.boards[0], detection, center) == pytest.approx(50.0)

    def test_distance_of_empty_board(self):
        detection = CheckerDetection(corners=[], boards=[Checkerboard(grid=np.full((2, 2), UNDEFINED))])
        assert distance_to_point(detection.boards[0], detection, np.zeros(2)) == np.inf

    def test_sorted_by_closest_corner(self):
        detection = _detection_with_boards([(6, 200.0, 0.0), (6, 10.0, 0.0), (6, 0.0, -100.0)])
        ordered = order_boards_by_center_distance(detection, 640, 480)
        expected = [detection.boards[1], detection.boards[2], detection.boards[0]]
        assert all(a is b for a, b in zip(ordered, expected))
        assert len(ordered) == 3


class TestSelectNestedBoards:
    def test_order_and_square_sizes(self):
        """Three boards at increasing distance: processed in that order, s, s, 2s."""
        detection = _detection_with_boards([(6, 150.0, 0.0), (6, 5.0, 5.0), (6, -60.0, 0.0)])

        selected = select_nested_boards(detection, 640, 480, base_square_size=0.1)

        assert [s.index for s in selected] == [0, 1, 2]
        assert selected[0].board is detection.boards[1]
        assert selected[1].board is detection.boards[2]
        assert selected[2].board is detection.boards[0]
        assert [s.square_size for s in selected] == pytest.approx([0.1, 0.1, 0.2])

    def test_skips_small_boards(self):
        """A 5x5 board (25 corners) is skipped even when it is the closest."""
        detection = _detection_with_boards([(5, 0.0, 0.0), (6, 20.0, 0.0), (7, 90.0, 0.0)])

        selected = select_nested_boards(detection, 640, 480, base_square_size=1.0)

        assert [s.board.count_valid() for s in selected] == [36, 49]
        # Acceptance order, not board order, drives index and size
        assert [s.index for s in selected] == [0, 1]
        assert [s.square_size for s in selected] == pytest.approx([1.0, 1.0])

    def test_min_corners_is_configurable(self):
        detection = _detection_with_boards([(5, 0.0, 0.0), (6, 20.0, 0.0)])
        selected = select_nested_boards(detection, 640, 480, 1.0, min_corners=20)
        assert len(selected) == 2

    def test_nothing_usable(self):
        detection = _detection_with_boards([(4, 0.0, 0.0)])
        assert select_nested_boards(detection, 640, 480, 1.0) == []
