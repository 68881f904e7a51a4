"""
Dartboard Calibration Module

Fits the pixel -> board homography from point correspondences (clicked
targets or detected markers), measures calibration quality and derives the
board orientation as seen by the camera.

Canonical targets are the centres of the double ring at 20 (top), 6
(right), 3 (bottom) and 11 (left), plus the bull.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from dartscore.core.geometry import (
    DOUBLE_OUTER_RADIUS_MM,
    SECTOR_ORDER,
    board_point_for,
)
from dartscore.core.homography import (
    GeometryError,
    as_homography,
    compute_homography_dlt,
    invert_homography,
    ransac_homography,
    rms_error,
)
from dartscore.core.mapping import apply_homography, homography_for_size, scale_homography
from dartscore.core.types import Correspondence, ImageSize, Point, Ring, to_point, to_size

logger = logging.getLogger("dartscore.calibration")

CALIBRATION_SECTORS = (20, 6, 3, 11)

# RMS error (px) at which quality drops to zero
QUALITY_ZERO_ERROR_PX = 10.0


def canonical_rim_targets() -> List[Point]:
    """Board points for the four double-ring targets followed by the bull."""
    targets = [board_point_for(sector, Ring.DOUBLE) for sector in CALIBRATION_SECTORS]
    targets.append(Point(0.0, 0.0))
    return targets


def _board_up_vector(H) -> Optional[Point]:
    """Image-space vector from the bull to the top of segment 20."""
    try:
        H_inv = invert_homography(H)
    except GeometryError:
        return None
    centre = apply_homography(H_inv, (0.0, 0.0))
    top = apply_homography(H_inv, (0.0, -DOUBLE_OUTER_RADIUS_MM))
    if centre is None or top is None:
        return None
    return Point(top.x - centre.x, top.y - centre.y)


def estimate_sector_offset(H) -> int:
    """
    Whole-sector rotation (0-19) of segment 20 away from image "up".

    Positive steps mean the board appears rotated clockwise in the image.
    """
    v = _board_up_vector(H)
    if v is None:
        return 0
    deg_img = math.degrees(math.atan2(v.y, v.x)) % 360
    delta = ((deg_img - 270.0 + 180.0) % 360.0) - 180.0
    return int(round(delta / 18.0)) % 20


def segment_at_top(H) -> int:
    """Segment number shown at 12 o'clock in the camera image."""
    return SECTOR_ORDER[(-estimate_sector_offset(H)) % 20]


def detect_board_orientation(H) -> float:
    """
    Rotation (radians, [-pi, pi]) that brings segment 20 back to image "up".

    0.0 when the homography cannot be inverted.
    """
    v = _board_up_vector(H)
    if v is None:
        return 0.0
    theta = -math.pi / 2 - math.atan2(v.y, v.x)
    while theta > math.pi:
        theta -= 2 * math.pi
    while theta < -math.pi:
        theta += 2 * math.pi
    return theta


def theta_to_degrees(theta: Optional[float]) -> float:
    """Human-readable rotation: positive is clockwise on screen."""
    if theta is None:
        return 0.0
    return -math.degrees(theta)


@dataclass(frozen=True, eq=False)
class CalibrationState:
    """
    Calibration for one camera.

    Replaced as a whole on recalibration, never edited in place, so readers
    on the scoring path always see a consistent homography and image size.
    """
    camera_id: str
    homography: np.ndarray
    image_size: ImageSize
    overlay_size: Optional[ImageSize] = None
    locked: bool = True
    rms_error_px: float = 0.0
    sector_offset: int = 0
    theta: float = 0.0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def quality(self) -> float:
        """0-1 score shown to the operator, 1 being a perfect fit."""
        if not math.isfinite(self.rms_error_px):
            return 0.0
        return max(0.0, 1.0 - self.rms_error_px / QUALITY_ZERO_ERROR_PX)

    @property
    def segment_at_top(self) -> int:
        return SECTOR_ORDER[(-self.sector_offset) % 20]

    def homography_for(self, image_size) -> np.ndarray:
        """Pixel -> board homography for frames of the given size."""
        return homography_for_size(self.homography, self.image_size, image_size)

    def overlay_homography(self, canvas_size=None) -> np.ndarray:
        """
        Board -> canvas pixel homography for drawing ring overlays.

        Defaults to the overlay size preserved at lock time, so a later
        resize can be derived without refitting.
        """
        target = canvas_size or self.overlay_size or self.image_size
        target = to_size(target)
        sx = target.w / self.image_size.w
        sy = target.h / self.image_size.h
        # canvas px -> board, inverted
        return invert_homography(scale_homography(self.homography, 1 / sx, 1 / sy))


def calibrate(
    camera_id: str,
    correspondences: Sequence,
    image_size,
    overlay_size=None,
    use_ransac: bool = False,
    ransac_threshold_px: float = 8.0,
    lock: bool = True,
    rng: Optional[np.random.Generator] = None
) -> CalibrationState:
    """
    Fit a calibration from correspondences.

    Args:
        camera_id: Camera the correspondences were measured on
        correspondences: (pixel_point, board_point) pairs, at least 4
        image_size: (w, h) of the calibration frame
        overlay_size: (w, h) of the overlay canvas at lock time
        use_ransac: Reject outlier correspondences before the final fit

    Returns:
        CalibrationState

    Raises:
        GeometryError: degenerate correspondences or no RANSAC consensus
    """
    pairs = [Correspondence(to_point(p), to_point(b)) for p, b in correspondences]
    size = to_size(image_size)
    if size.w <= 0 or size.h <= 0:
        raise GeometryError(f"Invalid image size {size}")

    if use_ransac:
        result = ransac_homography(pairs, threshold_px=ransac_threshold_px, rng=rng)
        if result.homography is None:
            raise GeometryError("No consistent homography among the calibration points")
        H = result.homography
        used = [p for p, keep in zip(pairs, result.inliers) if keep]
        logger.info(f"[CALIBRATE] {camera_id}: RANSAC kept {len(used)}/{len(pairs)} points")
    else:
        H = compute_homography_dlt(pairs)
        used = pairs

    error = rms_error(used, H)
    state = CalibrationState(
        camera_id=camera_id,
        homography=H,
        image_size=size,
        overlay_size=to_size(overlay_size) if overlay_size else None,
        locked=lock,
        rms_error_px=error,
        sector_offset=estimate_sector_offset(H),
        theta=detect_board_orientation(H),
    )
    logger.info(
        f"[CALIBRATE] {camera_id}: rms={error:.3f}px quality={state.quality:.2f} "
        f"segment_at_top={state.segment_at_top}"
    )
    return state


def calibration_state_to_dict(state: CalibrationState) -> Dict[str, Any]:
    return {
        "camera_id": state.camera_id,
        "homography": np.asarray(state.homography).tolist(),
        "image_size": {"w": state.image_size.w, "h": state.image_size.h},
        "overlay_size": (
            {"w": state.overlay_size.w, "h": state.overlay_size.h}
            if state.overlay_size else None
        ),
        "locked": state.locked,
        "rms_error_px": state.rms_error_px,
        "sector_offset": state.sector_offset,
        "theta": state.theta,
        "created_at": state.created_at.isoformat(),
    }


def calibration_state_from_dict(data: Dict[str, Any], camera_id: Optional[str] = None) -> CalibrationState:
    """Rebuild a CalibrationState from calibration_state_to_dict output."""
    H = as_homography(data["homography"])
    created = data.get("created_at")
    return CalibrationState(
        camera_id=camera_id or data["camera_id"],
        homography=H,
        image_size=to_size(data["image_size"]),
        overlay_size=to_size(data["overlay_size"]) if data.get("overlay_size") else None,
        locked=bool(data.get("locked", True)),
        rms_error_px=float(data.get("rms_error_px", 0.0)),
        sector_offset=int(data.get("sector_offset", estimate_sector_offset(H))),
        theta=float(data.get("theta", detect_board_orientation(H))),
        created_at=datetime.fromisoformat(created) if created else datetime.now(timezone.utc),
    )
