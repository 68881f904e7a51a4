"""
Scoring module for dart detection.

Resolves board-space points (mm, bull at the origin) into sector, ring and
multiplier, and composes that with the image-to-board mapping for pixel tips.
"""
import math
from typing import Optional

from dartscore.core.geometry import (
    BOARD_RADII,
    BULL_SECTOR,
    BoardRadii,
    ring_from_radius,
    sector_from_angle,
)
from dartscore.core.mapping import image_to_board
from dartscore.core.types import MISS, Point, Ring, ScoreResult, to_point


def _resolve(radius: float, angle: float, sector_offset: int, radii: BoardRadii) -> ScoreResult:
    ring, mult = ring_from_radius(radius, radii)
    if ring == Ring.MISS:
        return MISS
    if ring == Ring.INNER_BULL:
        return ScoreResult(base=50, mult=1, ring=ring, sector=BULL_SECTOR)
    if ring == Ring.BULL:
        return ScoreResult(base=25, mult=1, ring=ring, sector=BULL_SECTOR)
    sector = sector_from_angle(angle, sector_offset)
    return ScoreResult(base=sector, mult=mult, ring=ring, sector=sector)


def score_at_board_point(point, radii: BoardRadii = BOARD_RADII) -> ScoreResult:
    """
    Score a point in board coordinates.

    Args:
        point: (x, y) in mm from the bull, -Y towards sector 20

    Returns:
        ScoreResult; MISS when outside the double ring or not finite
    """
    x, y = to_point(point)
    if not (math.isfinite(x) and math.isfinite(y)):
        return MISS
    return _resolve(math.hypot(x, y), math.atan2(y, x), 0, radii)


def score_at_board_point_theta(
    point,
    theta: float,
    sector_offset: int = 0,
    rotation_offset_rad: float = 0.0,
    radii: BoardRadii = BOARD_RADII
) -> ScoreResult:
    """
    Orientation-aware scoring.

    Args:
        point: Board point in mm
        theta: Orientation hint in radians added to the point's angle
        sector_offset: Whole-sector rotation for a physically rotated board
        rotation_offset_rad: Additional fixed board rotation in radians
    """
    x, y = to_point(point)
    if not (math.isfinite(x) and math.isfinite(y)):
        return MISS
    theta = theta if theta is not None and math.isfinite(theta) else 0.0
    rotation = rotation_offset_rad if math.isfinite(rotation_offset_rad) else 0.0
    offset = int(sector_offset) if sector_offset is not None and math.isfinite(sector_offset) else 0
    angle = math.atan2(y, x) + theta + rotation
    return _resolve(math.hypot(x, y), angle, offset, radii)


def score_from_image_point(
    H,
    pixel_point,
    theta: Optional[float] = None,
    sector_offset: int = 0
) -> ScoreResult:
    """Map a pixel tip through the calibration homography and score it."""
    board_point = image_to_board(H, pixel_point)
    if board_point is None:
        return MISS
    if theta is not None:
        return score_at_board_point_theta(board_point, theta, sector_offset)
    if sector_offset:
        return score_at_board_point_theta(board_point, 0.0, sector_offset)
    return score_at_board_point(board_point)


class ScoringSystem:
    """
    Calculate dart scores from positions in dartboard coordinates.
    """

    def __init__(self, radii: BoardRadii = BOARD_RADII):
        self.radii = radii

    def score_from_dartboard_coords(
        self,
        x_mm: float,
        y_mm: float,
        theta: Optional[float] = None,
        sector_offset: int = 0
    ) -> ScoreResult:
        """
        Calculate score from coordinates in dartboard space.

        Args:
            x_mm: X coordinate in mm (0 = center)
            y_mm: Y coordinate in mm (0 = center, negative towards 20)
            theta: Optional orientation hint in radians
            sector_offset: Whole-sector board rotation

        Returns:
            ScoreResult
        """
        point = Point(x_mm, y_mm)
        if theta is None and not sector_offset:
            return score_at_board_point(point, self.radii)
        return score_at_board_point_theta(point, theta or 0.0, sector_offset, radii=self.radii)

    def score_from_pixel_coords(
        self,
        x_px: float,
        y_px: float,
        H,
        theta: Optional[float] = None,
        sector_offset: int = 0
    ) -> ScoreResult:
        """Calculate score from pixel coordinates using a pixel -> board homography."""
        board_point = image_to_board(H, (x_px, y_px))
        if board_point is None:
            return MISS
        return self.score_from_dartboard_coords(board_point.x, board_point.y, theta, sector_offset)


# Global instance
scoring_system = ScoringSystem()
