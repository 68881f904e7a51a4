"""
Image-to-board mapping.

Applies a calibrated homography to tip positions. A point that projects to
infinity is reported as None and scored as a miss by callers; nothing on
this path raises for bad input points.
"""
import math
from typing import List, Optional

import numpy as np

from dartscore.core.homography import (
    GeometryError,
    as_homography,
    invert_homography,
)
from dartscore.core.types import Point, to_point, to_size

# |w'| below this means the point maps to infinity
W_EPSILON = 1e-10


def apply_homography(H, point) -> Optional[Point]:
    """
    Projective transform of a single point.

    Args:
        H: 3x3 homography (pixel -> board, or board -> pixel if pre-inverted)
        point: Point, (x, y) tuple or {'x', 'y'} mapping

    Returns:
        Transformed Point, or None when the denominator vanishes
    """
    H = as_homography(H)
    x, y = to_point(point)
    xp = H[0, 0] * x + H[0, 1] * y + H[0, 2]
    yp = H[1, 0] * x + H[1, 1] * y + H[1, 2]
    wp = H[2, 0] * x + H[2, 1] * y + H[2, 2]
    if not math.isfinite(wp) or abs(wp) < W_EPSILON:
        return None
    nx = xp / wp
    ny = yp / wp
    if not (math.isfinite(nx) and math.isfinite(ny)):
        return None
    return Point(float(nx), float(ny))


def scale_homography(H, sx: float, sy: float) -> np.ndarray:
    """
    Homography that first scales pixel coordinates by (sx, sy), then applies H.

    apply_homography(scale_homography(H, sx, sy), p)
        == apply_homography(H, (p.x * sx, p.y * sy))
    """
    S = np.diag([float(sx), float(sy), 1.0])
    return as_homography(H) @ S


def image_to_board(H, point) -> Optional[Point]:
    """Map a pixel point to board mm. None when it cannot be mapped."""
    try:
        return apply_homography(H, point)
    except (GeometryError, TypeError, ValueError, KeyError):
        return None


def board_to_image(H, point) -> Optional[Point]:
    """Map a board point (mm) back into the image. None if H is singular."""
    try:
        return apply_homography(invert_homography(H), point)
    except GeometryError:
        return None


def homography_for_size(H, calibration_size, current_size) -> np.ndarray:
    """
    Adapt a homography fitted at calibration_size to pixels from current_size.

    A pixel at current resolution is first scaled back into calibration
    resolution, so the board mapping stays identical across renderings.
    """
    cal = to_size(calibration_size)
    cur = to_size(current_size)
    if cur.w <= 0 or cur.h <= 0 or cal.w <= 0 or cal.h <= 0:
        raise GeometryError(f"Invalid image sizes: calibration={cal}, current={cur}")
    if cal == cur:
        return as_homography(H).copy()
    return scale_homography(H, cal.w / cur.w, cal.h / cur.h)


def sample_ring(H_board_to_image, radius: float, steps: int = 256) -> List[Point]:
    """
    Board-space circle of the given radius projected into the image.

    H_board_to_image must map board mm to pixels (the inverse of a
    calibration homography). Samples that go to infinity are dropped.
    """
    points = []
    for k in range(steps):
        theta = (k / steps) * 2 * math.pi
        p = apply_homography(H_board_to_image, (radius * math.cos(theta), radius * math.sin(theta)))
        if p is not None:
            points.append(p)
    return points
