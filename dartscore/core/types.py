"""
Shared value types for the scoring core.

Points, sizes and score results are plain immutable values so they can be
passed between the mapper, resolver and autoscore engine without copying.
"""
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Optional


class Point(NamedTuple):
    """2D point. Pixel or board space depending on where it came from."""
    x: float
    y: float


class ImageSize(NamedTuple):
    """Width/height of a frame or overlay canvas in pixels."""
    w: float
    h: float


class Correspondence(NamedTuple):
    """A pixel point paired with the board point (mm) it shows."""
    pixel: Point
    board: Point


class Ring(str, Enum):
    """Radial band a dart landed in."""
    MISS = "MISS"
    SINGLE = "SINGLE"
    DOUBLE = "DOUBLE"
    TRIPLE = "TRIPLE"
    BULL = "BULL"
    INNER_BULL = "INNER_BULL"

    @property
    def is_bull(self) -> bool:
        return self in (Ring.BULL, Ring.INNER_BULL)


@dataclass(frozen=True)
class ScoreResult:
    """
    Score for a single dart.

    base is the sector number (or 25/50 for bulls); the points scored are
    base * mult, except bulls which score base directly.
    """
    base: int
    mult: int
    ring: Ring
    sector: Optional[int]

    @property
    def point_value(self) -> int:
        if self.ring.is_bull:
            return self.base
        return self.base * self.mult

    def to_dict(self) -> dict:
        return {
            "base": self.base,
            "mult": self.mult,
            "ring": self.ring.value,
            "sector": self.sector,
            "value": self.point_value,
        }


MISS = ScoreResult(base=0, mult=0, ring=Ring.MISS, sector=None)


def to_point(value) -> Point:
    """Coerce a Point, (x, y) pair or {'x':, 'y':} mapping into a Point."""
    if isinstance(value, Point):
        return value
    if isinstance(value, dict):
        return Point(float(value["x"]), float(value["y"]))
    x, y = value
    return Point(float(x), float(y))


def to_size(value) -> ImageSize:
    """Coerce an ImageSize, (w, h) pair or {'w':, 'h':} mapping into an ImageSize."""
    if isinstance(value, ImageSize):
        return value
    if isinstance(value, dict):
        return ImageSize(float(value["w"]), float(value["h"]))
    w, h = value
    return ImageSize(float(w), float(h))
