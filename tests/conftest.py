"""
Shared fixtures: a synthetic camera looking at the board.
"""
import numpy as np
import pytest

from dartscore.core.calibration import canonical_rim_targets
from dartscore.core.mapping import apply_homography
from dartscore.core.types import Correspondence

# Board mm -> image px for a mildly tilted camera
CAMERA = np.array([
    [2.0, 0.1, 640.0],
    [0.05, 1.8, 360.0],
    [1e-4, 2e-4, 1.0],
])

# Board mm -> image px, camera rotated 90 degrees clockwise (segment 20 appears at 3 o'clock)
ROTATED_CAMERA = np.array([
    [0.0, -2.0, 640.0],
    [2.0, 0.0, 360.0],
    [0.0, 0.0, 1.0],
])


def pixel_for(board_point, camera=CAMERA):
    return apply_homography(camera, board_point)


def pairs_for(board_points, camera=CAMERA):
    return [Correspondence(pixel_for(b, camera), b) for b in board_points]


@pytest.fixture
def camera():
    return CAMERA.copy()


@pytest.fixture
def canonical_pairs():
    return pairs_for(canonical_rim_targets())


@pytest.fixture
def pixel_to_board():
    """Ground-truth pixel -> board homography for CAMERA."""
    H = np.linalg.inv(CAMERA)
    return H / H[2, 2]
