"""
Detection notifier.

Runs one frame through detector -> confidence gate -> mapping -> scoring and
hands the score to the match logic's acceptance callback. The callback may
return an awaitable (e.g. waiting for a UI confirmation); it is awaited
before the next frame is processed, and a failing callback is captured in an
AcceptanceOutcome rather than allowed to break the frame loop.
"""
import inspect
import logging
import math
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union, runtime_checkable

from dartscore.core.autoscore import AutoscoreEngine, AutoscoreResult
from dartscore.core.mapping import homography_for_size
from dartscore.core.scoring import score_from_image_point
from dartscore.core.types import Point, ScoreResult, to_point

logger = logging.getLogger("dartscore.detection")

# Low-level detector gate, separate from the autoscore engine's own threshold
DETECT_MIN_CONFIDENCE = 0.6

AcceptanceCallback = Callable[[int, str, Dict[str, Any]], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class TipDetection:
    """
    A detector hit.

    tip is in the pixel space of the frame that was analysed; confidence is a
    float in [0, 1]; theta is an optional shaft orientation in radians.
    """
    tip: Point
    confidence: float
    theta: Optional[float] = None


@runtime_checkable
class TipDetector(Protocol):
    """
    Anything that can find a dart tip in a frame.

    detect() returns None when the frame holds nothing worth scoring. It is
    called once per frame and should not block on I/O.
    """

    def detect(self, frame: Any) -> Optional[TipDetection]:
        ...


class NotifyStatus(str, Enum):
    SKIPPED = "skipped"                  # detector or callback missing
    NO_DETECTION = "no_detection"
    LOW_CONFIDENCE = "low_confidence"
    UNSTABLE = "unstable"                # engine has not seen the tip long enough
    DUPLICATE = "duplicate"              # tip belongs to a dart already committed
    DROPPED = "dropped"                  # an acceptance was still pending
    ACCEPTED = "accepted"
    REJECTED = "rejected"                # callback raised


@dataclass(frozen=True)
class AcceptanceOutcome:
    """Result of invoking the acceptance callback: its value or the error it raised."""
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class NotifyResult:
    status: NotifyStatus
    detection: Optional[TipDetection] = None
    score: Optional[Union[ScoreResult, AutoscoreResult]] = None
    acceptance: Optional[AcceptanceOutcome] = None


def coerce_detection(raw: Any) -> Optional[TipDetection]:
    """
    Normalise a detector return value.

    Accepts a TipDetection or a {'tip': ..., 'confidence': ...} mapping;
    anything without a numeric confidence counts as no detection.
    """
    if raw is None:
        return None
    if isinstance(raw, TipDetection):
        detection = raw
    elif isinstance(raw, dict):
        confidence = raw.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            return None
        try:
            tip = to_point(raw["tip"])
        except (KeyError, TypeError, ValueError):
            return None
        detection = TipDetection(tip=tip, confidence=float(confidence), theta=raw.get("theta"))
    else:
        return None
    if not math.isfinite(detection.confidence):
        return None
    return detection


async def invoke_acceptance(
    callback: AcceptanceCallback,
    value: int,
    ring: str,
    info: Dict[str, Any]
) -> AcceptanceOutcome:
    """
    Call the acceptance callback, awaiting it when it returns an awaitable.

    A failing callback must not stop the frame loop, so its exception is
    returned inside the outcome and logged instead of raised.
    """
    try:
        result = callback(value, ring, info)
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        logger.warning(f"[NOTIFY] Acceptance callback failed for {ring} {value}: {e}")
        return AcceptanceOutcome(ok=False, error=e)
    return AcceptanceOutcome(ok=True, value=result)


def _effective_homography(H, image_size, calibration_size):
    if calibration_size is None or image_size is None:
        return H
    return homography_for_size(H, calibration_size, image_size)


async def run_detection_and_notify(
    detector: Optional[TipDetector],
    frame: Any,
    H,
    image_size,
    on_auto_dart: Optional[AcceptanceCallback],
    *,
    calibration_size=None,
    theta: Optional[float] = None,
    sector_offset: int = 0,
    min_confidence: float = DETECT_MIN_CONFIDENCE
) -> NotifyResult:
    """
    Process one frame and notify the match logic of a scored dart.

    Args:
        detector: TipDetector capability
        frame: Raw frame handed to the detector
        H: Pixel -> board homography
        image_size: (w, h) of the frame
        on_auto_dart: Called with (value, ring, {'sector', 'mult'})
        calibration_size: (w, h) the homography was fitted at, if different
        theta: Orientation hint; falls back to the detection's own theta
        sector_offset: Whole-sector board rotation
        min_confidence: Detector confidence gate

    Returns:
        NotifyResult describing what happened to the frame
    """
    if detector is None or on_auto_dart is None:
        return NotifyResult(status=NotifyStatus.SKIPPED)

    detection = coerce_detection(detector.detect(frame))
    if detection is None:
        return NotifyResult(status=NotifyStatus.NO_DETECTION)
    if detection.confidence < min_confidence:
        logger.debug(f"[NOTIFY] Discarded tip {detection.tip} conf={detection.confidence:.2f}")
        return NotifyResult(status=NotifyStatus.LOW_CONFIDENCE, detection=detection)

    H_eff = _effective_homography(H, image_size, calibration_size)
    hint = theta if theta is not None else detection.theta
    score = score_from_image_point(H_eff, detection.tip, hint, sector_offset)

    acceptance = await invoke_acceptance(
        on_auto_dart,
        score.point_value,
        score.ring.value,
        {"sector": score.sector, "mult": score.mult},
    )
    status = NotifyStatus.ACCEPTED if acceptance.ok else NotifyStatus.REJECTED
    return NotifyResult(status=status, detection=detection, score=score, acceptance=acceptance)


class FrameDispatcher:
    """
    Serialises frames from one camera into its autoscore engine.

    Frames that arrive while an acceptance is pending are dropped so the
    engine's stability state is never updated re-entrantly. Once a dart is
    committed its tip is remembered and later frames showing the same dart
    are ignored until clear_committed() (board cleared).
    """

    def __init__(
        self,
        detector: TipDetector,
        engine: AutoscoreEngine,
        on_auto_dart: AcceptanceCallback,
        min_detection_confidence: float = DETECT_MIN_CONFIDENCE
    ):
        self.detector = detector
        self.engine = engine
        self.on_auto_dart = on_auto_dart
        self.min_detection_confidence = min_detection_confidence
        self.dropped_frames = 0
        self._pending = False
        self._committed: List[Point] = []

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def committed_tips(self) -> List[Point]:
        return list(self._committed)

    def clear_committed(self) -> None:
        self._committed = []
        self.engine.reset("board cleared")

    def _is_committed(self, tip: Point) -> bool:
        radius = self.engine.config.tip_radius_px
        return any(math.hypot(tip.x - c.x, tip.y - c.y) <= radius for c in self._committed)

    async def dispatch(
        self,
        frame: Any,
        H,
        image_size=None,
        calibration_size=None,
        theta: Optional[float] = None,
        sector_offset: int = 0
    ) -> NotifyResult:
        if self._pending:
            self.dropped_frames += 1
            return NotifyResult(status=NotifyStatus.DROPPED)

        self._pending = True
        try:
            detection = coerce_detection(self.detector.detect(frame))
            if detection is None:
                return NotifyResult(status=NotifyStatus.NO_DETECTION)
            if detection.confidence < self.min_detection_confidence:
                return NotifyResult(status=NotifyStatus.LOW_CONFIDENCE, detection=detection)
            if self._is_committed(detection.tip):
                return NotifyResult(status=NotifyStatus.DUPLICATE, detection=detection)

            H_eff = _effective_homography(H, image_size, calibration_size)
            hint = theta if theta is not None else detection.theta
            result = self.engine.score_tip(H_eff, detection.tip, hint, sector_offset)
            if not result.stable or result.confidence < self.engine.config.min_confidence:
                return NotifyResult(status=NotifyStatus.UNSTABLE, detection=detection, score=result)

            acceptance = await invoke_acceptance(
                self.on_auto_dart,
                result.point_value,
                result.ring.value,
                {"sector": result.sector, "mult": result.mult},
            )
            if acceptance.ok:
                self._committed.append(detection.tip)
                self.engine.reset("dart committed")
                logger.info(f"[NOTIFY] {self.engine.camera_id}: committed {result.ring.value} {result.point_value}")
                status = NotifyStatus.ACCEPTED
            else:
                status = NotifyStatus.REJECTED
            return NotifyResult(status=status, detection=detection, score=result, acceptance=acceptance)
        finally:
            self._pending = False


# Tip model location; the model itself is not shipped with the package
MODELS_DIR = Path(os.getenv("DARTSCORE_MODELS_DIR", Path(__file__).parent.parent.parent / "models"))
TIP_MODEL_PATH = MODELS_DIR / os.getenv("DARTSCORE_TIP_MODEL", "tippose_openvino_model")

# YOLO class IDs
CLASS_TIP = 0


class YOLOTipDetector:
    """
    TipDetector backed by an ultralytics YOLO detect or pose model.

    Pose models provide more accurate tip positioning via the first
    keypoint. When the model cannot be loaded the detector stays
    uninitialised and reports no detections.
    """

    def __init__(self, model_path: Optional[Path] = None, image_size: int = 1280, model: Any = None):
        self.model_path = Path(model_path) if model_path else TIP_MODEL_PATH
        self.image_size = image_size
        self.model = model
        self.is_initialized = model is not None
        if self.model is None:
            self._load_model()

    def _load_model(self):
        """Load the YOLO tip detection model."""
        try:
            from ultralytics import YOLO
        except ImportError:
            logger.warning("ultralytics not installed. YOLO tip detection disabled.")
            return

        if not self.model_path.exists():
            logger.warning(f"Tip model not found at {self.model_path}")
            return

        self.model = YOLO(str(self.model_path))
        self.is_initialized = True
        logger.info(f"Loaded tip model from {self.model_path}")

    def detect(self, frame: Any) -> Optional[TipDetection]:
        """Best tip in the frame, or None."""
        if not self.is_initialized or self.model is None:
            return None

        results = self.model(frame, imgsz=self.image_size, verbose=False)

        best: Optional[TipDetection] = None
        for result in results:
            boxes = getattr(result, "boxes", None)
            if boxes is None:
                continue
            keypoints = getattr(result, "keypoints", None)

            for i in range(len(boxes)):
                if int(boxes.cls[i]) != CLASS_TIP:
                    continue
                conf = float(boxes.conf[i])
                if best is not None and conf <= best.confidence:
                    continue

                x1, y1, x2, y2 = [float(v) for v in boxes.xyxy[i].cpu().numpy()]
                cx, cy = (x1 + x2) / 2, (y1 + y2) / 2

                # First keypoint is the tip on pose models
                if keypoints is not None:
                    kp_data = keypoints[i].data.cpu().numpy()
                    if len(kp_data) > 0 and len(kp_data[0]) > 0:
                        tip_kp = kp_data[0][0]
                        if len(tip_kp) >= 2 and tip_kp[0] > 0 and tip_kp[1] > 0:
                            cx, cy = float(tip_kp[0]), float(tip_kp[1])

                best = TipDetection(tip=Point(cx, cy), confidence=conf)

        return best
