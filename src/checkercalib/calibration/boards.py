"""
Checkerboard bookkeeping: pattern correspondences and nested board selection.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..types import Checkerboard, CheckerDetection


# ============================================================================
# Pattern Correspondences
# ============================================================================


@dataclass(frozen=True, slots=True)
class BoardCorrespondences:
    """
    Defined cells of a board with their pattern and image coordinates.
    """

    cells: np.ndarray  # (n, 2) (row, col)
    corner_ids: np.ndarray  # (n,)
    pattern_points: np.ndarray  # (n, 3), z = 0
    image_points: np.ndarray  # (n, 2) detected (distorted) pixels

    def __len__(self) -> int:
        return len(self.corner_ids)


def board_correspondences(
    board: Checkerboard,
    detection: CheckerDetection,
    square_size: float,
    centered: bool = False,
) -> BoardCorrespondences:
    """
    Pair each defined grid cell with its pattern point and detected pixel.

    Args:
        board: Checkerboard grid
        detection: Detection set owning the corner list
        square_size: Pattern units per square
        centered: Put the origin at cell (rows // 2, cols // 2) instead of (0, 0)
    """
    cx = board.cols // 2 if centered else 0
    cy = board.rows // 2 if centered else 0

    cells = []
    corner_ids = []
    pattern = []
    image = []
    for i, j, cid in board.cells():
        cells.append((i, j))
        corner_ids.append(cid)
        pattern.append(((j - cx) * square_size, (i - cy) * square_size, 0.0))
        image.append(detection.corners[cid].center)

    return BoardCorrespondences(
        cells=np.array(cells, dtype=np.int64).reshape(-1, 2),
        corner_ids=np.array(corner_ids, dtype=np.int64),
        pattern_points=np.array(pattern, dtype=np.float64).reshape(-1, 3),
        image_points=np.array(image, dtype=np.float64).reshape(-1, 2),
    )


# ============================================================================
# Nested Board Selection
# ============================================================================


@dataclass(frozen=True, slots=True)
class SelectedBoard:
    """
    A nested board accepted for calibration.

    index is the acceptance order; it doubles as synthetic view and pose id.
    """

    index: int
    board: Checkerboard
    square_size: float


def distance_to_point(
    board: Checkerboard,
    detection: CheckerDetection,
    point: np.ndarray,
) -> float:
    """Distance from point to the closest defined corner of the board."""
    ids = [cid for _, _, cid in board.cells()]
    if not ids:
        return float("inf")
    centers = detection.corner_centers()[ids]
    return float(np.min(np.linalg.norm(centers - point, axis=1)))


def order_boards_by_center_distance(
    detection: CheckerDetection,
    width: int,
    height: int,
) -> list[Checkerboard]:
    """Boards sorted by closest-corner distance to the image center, innermost first."""
    center = np.array([0.5 * width, 0.5 * height])
    return sorted(
        detection.boards,
        key=lambda board: distance_to_point(board, detection, center),
    )


def nested_square_size(index: int, base_square_size: float) -> float:
    """
    Synthetic square size of the index-th accepted board.

    The first two boards share the base size, then it doubles: s, s, 2s, 4s...
    """
    return base_square_size * 2.0 ** max(0, index - 1)


def select_nested_boards(
    detection: CheckerDetection,
    width: int,
    height: int,
    base_square_size: float,
    min_corners: int = 30,
) -> list[SelectedBoard]:
    """
    Order nested boards from the center outwards and keep the usable ones.

    Args:
        detection: Detection set of the single calibration image
        width: Image width
        height: Image height
        base_square_size: Square size assigned to the innermost accepted board
        min_corners: Boards with fewer defined corners are skipped

    Returns:
        Accepted boards in calibration order
    """
    selected = []
    for board in order_boards_by_center_distance(detection, width, height):
        if board.count_valid() < min_corners:
            continue
        index = len(selected)
        selected.append(
            SelectedBoard(
                index=index,
                board=board,
                square_size=nested_square_size(index, base_square_size),
            )
        )
    return selected
