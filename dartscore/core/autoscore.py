"""
Autoscore Engine - stability and confidence gating for tip detections.

The stability logic is a pure transition (state, tip) -> (state', result)
so it can be exercised without a camera. AutoscoreEngine holds the current
state for one camera stream; EngineRegistry keeps one engine per camera.
"""
import logging
import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from dartscore.core.mapping import image_to_board
from dartscore.core.scoring import score_at_board_point, score_at_board_point_theta
from dartscore.core.types import MISS, Point, Ring, to_point

logger = logging.getLogger("dartscore.autoscore")

BASE_CONFIDENCE = 0.6
MAX_STABILITY_BONUS = 0.4
STABILITY_BONUS_PER_FRAME = 0.2

RING_BONUS = {
    Ring.TRIPLE: 0.3,
    Ring.DOUBLE: 0.3,
    Ring.INNER_BULL: 0.3,
    Ring.BULL: 0.2,
}
DEFAULT_RING_BONUS = 0.1


@dataclass(frozen=True)
class AutoscoreConfig:
    min_confidence: float = 0.8
    require_stable_n: int = 2
    tip_radius_px: float = 6.0  # tips closer than this are the same dart
    miss_confidence: float = 0.1  # confidence reported when the tip cannot be mapped


DEFAULT_CONFIG = AutoscoreConfig()


@dataclass(frozen=True)
class AutoscoreState:
    last_tip: Optional[Point] = None
    stable_count: int = 0


INITIAL_STATE = AutoscoreState()


@dataclass(frozen=True)
class AutoscoreResult:
    """Score plus the confidence used to gate acceptance downstream."""
    base: int
    mult: int
    ring: Ring
    sector: Optional[int]
    confidence: float
    stable_count: int
    stable: bool
    pixel_point: Point
    board_point: Optional[Point]

    @property
    def point_value(self) -> int:
        if self.ring.is_bull:
            return self.base
        return self.base * self.mult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base": self.base,
            "mult": self.mult,
            "ring": self.ring.value,
            "sector": self.sector,
            "value": self.point_value,
            "confidence": self.confidence,
            "stable_count": self.stable_count,
            "stable": self.stable,
            "pixel_point": {"x": self.pixel_point.x, "y": self.pixel_point.y},
            "board_point": (
                {"x": self.board_point.x, "y": self.board_point.y}
                if self.board_point is not None else None
            ),
        }


def advance_stability(state: AutoscoreState, tip: Point, tip_radius_px: float) -> AutoscoreState:
    """Count consecutive tips that stay within tip_radius_px of the previous one."""
    if state.last_tip is not None:
        dist = math.hypot(tip.x - state.last_tip.x, tip.y - state.last_tip.y)
        if dist <= tip_radius_px:
            return AutoscoreState(last_tip=tip, stable_count=state.stable_count + 1)
    return AutoscoreState(last_tip=tip, stable_count=1)


def compute_confidence(ring: Ring, stable_count: int, config: AutoscoreConfig = DEFAULT_CONFIG) -> float:
    """Ring bonus plus a capped stability bonus, floored at min_confidence and capped at 1."""
    ring_bonus = RING_BONUS.get(ring, DEFAULT_RING_BONUS)
    stable_bonus = min(MAX_STABILITY_BONUS, max(0, stable_count - 1) * STABILITY_BONUS_PER_FRAME)
    return min(1.0, max(config.min_confidence, BASE_CONFIDENCE + ring_bonus + stable_bonus))


def score_tip(
    state: AutoscoreState,
    H,
    pixel_point,
    theta: Optional[float] = None,
    sector_offset: int = 0,
    config: AutoscoreConfig = DEFAULT_CONFIG
) -> Tuple[AutoscoreState, AutoscoreResult]:
    """
    Advance the stability state with a new tip and score it.

    Args:
        state: Current state for this camera stream
        H: Pixel -> board homography
        pixel_point: Detected tip in calibration image pixels
        theta: Optional orientation hint in radians
        sector_offset: Whole-sector board rotation

    Returns:
        (new_state, result). Confidence never changes sector or ring.
    """
    tip = to_point(pixel_point)
    new_state = advance_stability(state, tip, config.tip_radius_px)
    stable = new_state.stable_count >= config.require_stable_n

    board_point = image_to_board(H, tip)
    if board_point is None:
        return new_state, AutoscoreResult(
            base=MISS.base,
            mult=MISS.mult,
            ring=MISS.ring,
            sector=MISS.sector,
            confidence=config.miss_confidence,
            stable_count=new_state.stable_count,
            stable=stable,
            pixel_point=tip,
            board_point=None,
        )

    if theta is not None or sector_offset:
        score = score_at_board_point_theta(board_point, theta or 0.0, sector_offset)
    else:
        score = score_at_board_point(board_point)

    return new_state, AutoscoreResult(
        base=score.base,
        mult=score.mult,
        ring=score.ring,
        sector=score.sector,
        confidence=compute_confidence(score.ring, new_state.stable_count, config),
        stable_count=new_state.stable_count,
        stable=stable,
        pixel_point=tip,
        board_point=board_point,
    )


def _fingerprint(H) -> Optional[bytes]:
    try:
        return np.asarray(H, dtype=np.float64).tobytes()
    except (TypeError, ValueError):
        return None


class AutoscoreEngine:
    """
    Stateful autoscore for a single camera stream.

    Stability is cleared whenever the homography passed in changes, on
    reset(), and when the calibration store reports a new calibration.
    """

    def __init__(self, config: Optional[AutoscoreConfig] = None, camera_id: str = "default"):
        self.camera_id = camera_id
        self.config = config or DEFAULT_CONFIG
        self._lock = Lock()
        self._state = INITIAL_STATE
        self._homography_key: Optional[bytes] = None
        self._created_at = time.time()
        self._last_activity = time.time()

    @property
    def state(self) -> AutoscoreState:
        with self._lock:
            return self._state

    @property
    def stable_count(self) -> int:
        return self.state.stable_count

    def reset(self, reason: str = "manual") -> None:
        """Clear stability (calibration change, session restart, interruption)."""
        with self._lock:
            self._reset_locked()
        logger.info(f"[AUTOSCORE] Reset engine for {self.camera_id} ({reason})")

    def _reset_locked(self) -> None:
        self._state = INITIAL_STATE
        self._homography_key = None
        self._last_activity = time.time()

    def score_tip(
        self,
        H,
        pixel_point,
        theta: Optional[float] = None,
        sector_offset: int = 0
    ) -> AutoscoreResult:
        key = _fingerprint(H)
        with self._lock:
            if self._homography_key is not None and key != self._homography_key:
                logger.info(f"[AUTOSCORE] Homography changed for {self.camera_id}, clearing stability")
                self._reset_locked()
            self._homography_key = key
            self._state, result = score_tip(self._state, H, pixel_point, theta, sector_offset, self.config)
            self._last_activity = time.time()

        logger.debug(
            f"[AUTOSCORE] {self.camera_id}: {result.ring.value} sector={result.sector} "
            f"stable={result.stable_count} conf={result.confidence:.2f}"
        )
        return result

    def on_calibration_changed(self, state: Any) -> bool:
        """
        Reset unless the new calibration keeps the homography being scored with.

        Returns True when the engine was reset.
        """
        homography = getattr(state, "homography", None)
        key = _fingerprint(homography) if homography is not None else None
        with self._lock:
            if key is not None and key == self._homography_key:
                return False
            self._reset_locked()
        logger.info(f"[AUTOSCORE] Calibration changed for {self.camera_id}, clearing stability")
        return True

    def info(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "camera_id": self.camera_id,
                "stable_count": self._state.stable_count,
                "last_tip": self._state.last_tip,
                "created_at": self._created_at,
                "last_activity": self._last_activity,
            }


class EngineRegistry:
    """
    Manages AutoscoreEngine instances for multiple cameras.

    Engines are created on demand. Register on_calibration_changed with the
    calibration store so stability never survives a recalibration.
    """

    def __init__(self, config: Optional[AutoscoreConfig] = None):
        self.config = config or DEFAULT_CONFIG
        self._lock = Lock()
        self._engines: Dict[str, AutoscoreEngine] = {}

    def get_engine(self, camera_id: str) -> AutoscoreEngine:
        """Get or create the engine for a camera."""
        with self._lock:
            if camera_id not in self._engines:
                self._engines[camera_id] = AutoscoreEngine(self.config, camera_id)
            return self._engines[camera_id]

    def reset(self, camera_id: str, reason: str = "manual") -> bool:
        with self._lock:
            engine = self._engines.get(camera_id)
        if engine is None:
            return False
        engine.reset(reason)
        return True

    def reset_all(self, reason: str = "manual") -> None:
        with self._lock:
            engines = list(self._engines.values())
        for engine in engines:
            engine.reset(reason)

    def remove(self, camera_id: str) -> bool:
        with self._lock:
            if camera_id in self._engines:
                del self._engines[camera_id]
                return True
            return False

    def list_engines(self) -> List[Dict[str, Any]]:
        with self._lock:
            engines = list(self._engines.values())
        return [engine.info() for engine in engines]

    def on_calibration_changed(self, camera_id: str, state: Any) -> None:
        """
        Calibration store listener.

        Every save starts a new scoring session for the camera, even when
        the refit homography is unchanged. A delete (state is None) also
        drops the camera's engine.
        """
        self.reset(camera_id, reason="calibration changed" if state is not None else "calibration deleted")
        if state is None and self.remove(camera_id):
            logger.info(f"[AUTOSCORE] Removed engine for {camera_id}")
