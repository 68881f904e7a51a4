"""
Fiducial markers for automatic calibration.

Each marker is a 7x7 cell grid: a black (0) border ring around a 5x5
payload. The 10-bit id is written MSB first into columns 2 and 4 of
payload rows 1..5, two bits per row. Every marker id used by the
calibrator sits at a fixed, known board point, so a marker detector's
output can be turned straight into homography correspondences.
"""
import base64
import logging
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple, Union

import cv2
import numpy as np

from dartscore.core.calibration import canonical_rim_targets
from dartscore.core.types import Correspondence, Point, to_point

logger = logging.getLogger("dartscore.markers")

MARKER_SIZE = 7
MARKER_ID_BITS = 10
MAX_MARKER_ID = (1 << MARKER_ID_BITS) - 1
DATA_COLUMNS = (2, 4)

# Largest rendered cell; a 9-cell marker at this size is 1800 px square
MAX_CELL_PX = 200

MARKER_ORDER = ("top", "right", "bottom", "left", "bull")

# Stable ids for the five calibration targets. The bull marker is all zeros.
MARKER_TARGETS: Dict[str, int] = {
    "top": 0b0011000011,     # 195
    "right": 0b0010011010,   # 154
    "bottom": 0b0011110001,  # 241
    "left": 0b0001010101,    # 85
    "bull": 0b0000000000,    # 0
}


class MarkerIdError(ValueError):
    """Marker id outside the encodable range, or a malformed marker matrix."""


def _check_id(marker_id) -> int:
    if isinstance(marker_id, bool) or not isinstance(marker_id, (int, np.integer)):
        raise MarkerIdError(f"Marker id must be an integer, got {marker_id!r}")
    if not 0 <= int(marker_id) <= MAX_MARKER_ID:
        raise MarkerIdError(f"Marker id {marker_id} outside 0..{MAX_MARKER_ID}")
    return int(marker_id)


def marker_id_to_matrix(marker_id: int) -> List[List[int]]:
    """
    Encode a marker id as a 7x7 bit matrix.

    Raises:
        MarkerIdError: id is not an int in 0..1023
    """
    marker_id = _check_id(marker_id)
    grid = [[0] * MARKER_SIZE for _ in range(MARKER_SIZE)]
    bits = [(marker_id >> i) & 1 for i in range(MARKER_ID_BITS - 1, -1, -1)]
    for r in range(5):
        grid[r + 1][DATA_COLUMNS[0]] = bits[2 * r]
        grid[r + 1][DATA_COLUMNS[1]] = bits[2 * r + 1]
    return grid


def matrix_to_marker_id(matrix: Sequence[Sequence[int]]) -> int:
    """
    Decode a 7x7 marker matrix back to its id.

    Raises:
        MarkerIdError: wrong shape, non-binary cells or a non-black border
    """
    grid = np.asarray(matrix)
    if grid.shape != (MARKER_SIZE, MARKER_SIZE):
        raise MarkerIdError(f"Marker matrix must be {MARKER_SIZE}x{MARKER_SIZE}, got {grid.shape}")
    if not np.isin(grid, (0, 1)).all():
        raise MarkerIdError("Marker matrix cells must be 0 or 1")
    border = np.concatenate([grid[0], grid[-1], grid[:, 0], grid[:, -1]])
    if border.any():
        raise MarkerIdError("Marker border must be black (0)")

    marker_id = 0
    for r in range(5):
        marker_id = (marker_id << 1) | int(grid[r + 1][DATA_COLUMNS[0]])
        marker_id = (marker_id << 1) | int(grid[r + 1][DATA_COLUMNS[1]])
    return marker_id


def marker_anchor(marker_id: int) -> Point:
    """Board point (mm) a calibration marker is mounted at."""
    marker_id = _check_id(marker_id)
    targets = canonical_rim_targets()
    for name, target in zip(MARKER_ORDER, targets):
        if MARKER_TARGETS[name] == marker_id:
            return target
    raise MarkerIdError(f"Marker id {marker_id} is not a calibration target")


def correspondences_from_markers(
    detections: Union[Mapping[int, object], Iterable[Tuple[int, object]]]
) -> List[Correspondence]:
    """
    Turn detected marker centres into homography correspondences.

    Args:
        detections: {marker_id: pixel_point} or (marker_id, pixel_point) pairs

    Returns:
        Correspondences in MARKER_ORDER; unknown ids are skipped
    """
    items = detections.items() if isinstance(detections, Mapping) else detections
    by_id = {}
    for marker_id, pixel in items:
        try:
            anchor = marker_anchor(marker_id)
        except MarkerIdError:
            logger.warning(f"[MARKERS] Ignoring unknown marker id {marker_id!r}")
            continue
        by_id[int(marker_id)] = Correspondence(to_point(pixel), anchor)

    return [by_id[MARKER_TARGETS[name]] for name in MARKER_ORDER if MARKER_TARGETS[name] in by_id]


def render_marker(marker_id: int, cell_px: int = 20, quiet_zone: int = 1) -> np.ndarray:
    """
    Printable grayscale marker image.

    Payload bit 1 is white, 0 black; a white quiet zone of quiet_zone cells
    surrounds the black border.
    """
    if not 1 <= cell_px <= MAX_CELL_PX or quiet_zone < 0:
        raise ValueError(f"cell_px must be in 1..{MAX_CELL_PX} and quiet_zone >= 0")
    cells = np.array(marker_id_to_matrix(marker_id), dtype=np.uint8) * 255
    cells = np.pad(cells, quiet_zone, mode="constant", constant_values=255)
    size = cells.shape[0] * cell_px
    return cv2.resize(cells, (size, size), interpolation=cv2.INTER_NEAREST)


def encode_marker_png(marker_id: int, cell_px: int = 20) -> str:
    """Base64 PNG of a marker."""
    success, buffer = cv2.imencode(".png", render_marker(marker_id, cell_px))
    if not success:
        raise ValueError("Failed to encode marker image")
    return base64.b64encode(buffer).decode("utf-8")
