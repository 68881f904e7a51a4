"""
Dartboard Geometry Constants

Standard dartboard dimensions in millimeters.
All measurements are radii from the center (bullseye).

Board coordinates: origin at the bull, +X to the right, +Y downward
(same handedness as image pixels). Sector 20 sits on the -Y axis, so
atan2(y, x) grows clockwise on screen, matching SECTOR_ORDER.
"""
import math
from dataclasses import dataclass
from typing import NamedTuple, Tuple

from dartscore.core.types import Point, Ring

# Segment order clockwise from top (20 at 12 o'clock)
SECTOR_ORDER: Tuple[int, ...] = (
    20, 1, 18, 4, 13, 6, 10, 15, 2, 17,
    3, 19, 7, 16, 8, 11, 14, 9, 12, 5
)

BULL_SECTOR = 25


@dataclass(frozen=True)
class BoardRadii:
    """Ring breakpoints in mm. Must be strictly increasing."""
    inner_bull: float = 6.35       # Inner bull (50 points)
    bull: float = 15.9             # Outer bull (25 points)
    treble_inner: float = 99.0     # Inner edge of triple ring
    treble_outer: float = 107.0    # Outer edge of triple ring
    double_inner: float = 162.0    # Inner edge of double ring
    double_outer: float = 170.0    # Outer edge of double ring (board edge)

    def __post_init__(self):
        values = self.as_tuple()
        if values[0] <= 0 or any(b <= a for a, b in zip(values, values[1:])):
            raise ValueError(f"Board radii must be positive and strictly increasing: {values}")

    def as_tuple(self) -> Tuple[float, ...]:
        return (
            self.inner_bull,
            self.bull,
            self.treble_inner,
            self.treble_outer,
            self.double_inner,
            self.double_outer,
        )


BOARD_RADII = BoardRadii()

INNER_BULL_RADIUS_MM = BOARD_RADII.inner_bull
BULL_RADIUS_MM = BOARD_RADII.bull
TRIPLE_INNER_RADIUS_MM = BOARD_RADII.treble_inner
TRIPLE_OUTER_RADIUS_MM = BOARD_RADII.treble_outer
DOUBLE_INNER_RADIUS_MM = BOARD_RADII.double_inner
DOUBLE_OUTER_RADIUS_MM = BOARD_RADII.double_outer

# Total dartboard diameter
DARTBOARD_DIAMETER_MM = DOUBLE_OUTER_RADIUS_MM * 2  # 340mm

# Angle offset: segment 20 is at top (12 o'clock = -90 degrees = -π/2 radians)
SEGMENT_ANGLE_OFFSET = -math.pi / 2

# Degrees per segment
DEGREES_PER_SEGMENT = 18.0  # 360 / 20

# Segments are centred on their nominal angle, so boundaries sit half a segment away
SECTOR_HALF_WIDTH_DEG = DEGREES_PER_SEGMENT / 2


def sector_index_from_angle(angle_radians: float) -> int:
    """
    Index into SECTOR_ORDER for an angle in board coordinates.

    Args:
        angle_radians: atan2(y, x) of the board point (0 = 3 o'clock)

    Returns:
        Index 0-19, 0 being the segment centred at 12 o'clock
    """
    deg = (math.degrees(angle_radians - SEGMENT_ANGLE_OFFSET)) % 360.0
    index = int(((deg + SECTOR_HALF_WIDTH_DEG) % 360.0) // DEGREES_PER_SEGMENT)
    return index % 20


def sector_from_angle(angle_radians: float, sector_offset: int = 0) -> int:
    """Segment number (1-20) for an angle, rotated by sector_offset positions."""
    index = sector_index_from_angle(angle_radians)
    return SECTOR_ORDER[(index + int(sector_offset)) % 20]


def ring_from_radius(distance_mm: float, radii: BoardRadii = BOARD_RADII) -> Tuple[Ring, int]:
    """
    Get the ring and multiplier from distance to center.

    A distance exactly on a wire belongs to the higher-value ring, so
    every band is closed on the bull, triple and double side.
    """
    if distance_mm <= radii.inner_bull:
        return (Ring.INNER_BULL, 1)
    elif distance_mm <= radii.bull:
        return (Ring.BULL, 1)
    elif distance_mm < radii.treble_inner:
        return (Ring.SINGLE, 1)
    elif distance_mm <= radii.treble_outer:
        return (Ring.TRIPLE, 3)
    elif distance_mm < radii.double_inner:
        return (Ring.SINGLE, 1)
    elif distance_mm <= radii.double_outer:
        return (Ring.DOUBLE, 2)
    else:
        return (Ring.MISS, 0)


def segment_centre_angle(sector: int) -> float:
    """Board-space angle (radians) of the middle of a numbered segment."""
    if sector not in SECTOR_ORDER:
        raise ValueError(f"Unknown sector {sector}")
    index = SECTOR_ORDER.index(sector)
    return SEGMENT_ANGLE_OFFSET + math.radians(index * DEGREES_PER_SEGMENT)


def board_point_for(sector: int, ring: Ring, radii: BoardRadii = BOARD_RADII) -> Point:
    """Board point in the middle of the given bed (e.g. treble 20)."""
    ring = Ring(ring)
    if ring == Ring.INNER_BULL:
        return Point(0.0, 0.0)
    if ring == Ring.BULL:
        radius = (radii.inner_bull + radii.bull) / 2
        angle = SEGMENT_ANGLE_OFFSET
    else:
        radius = {
            Ring.TRIPLE: (radii.treble_inner + radii.treble_outer) / 2,
            Ring.DOUBLE: (radii.double_inner + radii.double_outer) / 2,
            Ring.SINGLE: (radii.treble_outer + radii.double_inner) / 2,
            Ring.MISS: radii.double_outer + 20.0,
        }[ring]
        angle = segment_centre_angle(sector)
    x = radius * math.cos(angle)
    y = radius * math.sin(angle)
    return Point(0.0 if abs(x) < 1e-9 else x, 0.0 if abs(y) < 1e-9 else y)


def is_point_on_board(point: Point, radii: BoardRadii = BOARD_RADII) -> bool:
    """True when the point lies inside the double ring's outer wire."""
    return math.hypot(point[0], point[1]) <= radii.double_outer


class BullDistance(NamedTuple):
    distance_mm: float
    in_inner_bull: bool
    in_outer_bull: bool


def distance_from_bull(
    point: Point,
    mm_per_board_unit: float = 1.0,
    radii: BoardRadii = BOARD_RADII
) -> BullDistance:
    """
    Distance of a board point from the bull, for bull-up / cork throws.

    mm_per_board_unit converts board units when the board model is not in mm.
    """
    d_board = math.hypot(point[0], point[1])
    scale = mm_per_board_unit if math.isfinite(mm_per_board_unit) else 0.0
    return BullDistance(
        distance_mm=max(0.0, d_board * scale),
        in_inner_bull=d_board <= radii.inner_bull + 1e-9,
        in_outer_bull=d_board <= radii.bull + 1e-9,
    )
