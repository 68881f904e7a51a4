"""
Scoring accuracy validation.

Cross-checks an autoscore result against the calibration it was produced
with and keeps running accuracy metrics, so a poorly calibrated camera or a
shaky detector shows up before it costs a player points.
"""
import logging
import math
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Optional

import numpy as np

from dartscore.core.autoscore import AutoscoreResult
from dartscore.core.calibration import CalibrationState
from dartscore.core.geometry import is_point_on_board

logger = logging.getLogger("dartscore.accuracy")

# Highest score a single dart can make (treble 20)
MAX_DART_SCORE = 60


@dataclass(frozen=True)
class AccuracyConfig:
    max_calibration_error_px: float = 5.0
    min_detection_confidence: float = 0.7
    strict_board_boundary: bool = True


@dataclass
class ScoringValidation:
    valid: bool
    value: int
    ring: str
    confidence: float
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    calibration_valid: bool = True
    detection_valid: bool = True
    board_valid: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "value": self.value,
            "ring": self.ring,
            "confidence": self.confidence,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "calibration_valid": self.calibration_valid,
            "detection_valid": self.detection_valid,
            "board_valid": self.board_valid,
        }


def _is_usable_homography(H) -> bool:
    arr = np.asarray(H, dtype=np.float64)
    if arr.shape != (3, 3) or not np.all(np.isfinite(arr)):
        return False
    return abs(np.linalg.det(arr)) > 1e-12


class ScoringValidator:
    """
    Validates scored darts and tracks accuracy metrics.

    Calibration and detection problems make a result invalid; a mismatch
    against an expected score is only a warning.
    """

    def __init__(self, config: Optional[AccuracyConfig] = None):
        self.config = config or AccuracyConfig()
        self._lock = Lock()
        self._metrics = self._empty_metrics()

    @staticmethod
    def _empty_metrics() -> Dict[str, Any]:
        return {
            "total_validations": 0,
            "accepted_count": 0,
            "rejected_count": 0,
            "calibration_issues": 0,
            "detection_issues": 0,
            "board_boundary_issues": 0,
            "average_confidence": 0.0,
            "success_rate": 0.0,
        }

    def _check_calibration(self, calibration: Optional[CalibrationState]) -> List[str]:
        if calibration is None:
            return ["No calibration for camera"]
        problems = []
        if not _is_usable_homography(calibration.homography):
            problems.append("Invalid homography matrix")
        if calibration.rms_error_px > self.config.max_calibration_error_px:
            problems.append(
                f"High calibration error: {calibration.rms_error_px:.2f}px "
                f"(max: {self.config.max_calibration_error_px}px)"
            )
        return problems

    def _check_detection(self, result: AutoscoreResult, confidence: float) -> List[str]:
        problems = []
        if confidence < self.config.min_detection_confidence:
            problems.append(
                f"Low detection confidence: {confidence:.2f} (min: {self.config.min_detection_confidence})"
            )
        return problems

    def _check_board(self, result: AutoscoreResult) -> List[str]:
        if not self.config.strict_board_boundary or result.board_point is None:
            return []
        if is_point_on_board(result.board_point):
            return []
        return [f"Dart position off board: ({result.board_point.x:.1f}, {result.board_point.y:.1f})"]

    def validate(
        self,
        result: AutoscoreResult,
        calibration: Optional[CalibrationState],
        detection_confidence: Optional[float] = None,
        expected_value: Optional[int] = None
    ) -> ScoringValidation:
        """
        Validate one scored dart.

        Args:
            result: Autoscore result to check
            calibration: Calibration the result was scored with
            detection_confidence: Raw detector confidence; defaults to the
                result's own confidence
            expected_value: Known score, e.g. from a manual correction

        Returns:
            ScoringValidation
        """
        confidence = result.confidence if detection_confidence is None else float(detection_confidence)
        calibration_errors = self._check_calibration(calibration)
        detection_errors = self._check_detection(result, confidence)
        board_errors = self._check_board(result)

        errors = calibration_errors + detection_errors + board_errors
        warnings = []

        value = result.point_value
        if not 0 <= value <= MAX_DART_SCORE:
            errors.append(f"Invalid score: {value} (must be 0-{MAX_DART_SCORE})")
        if expected_value is not None and expected_value != value:
            warnings.append(f"Score mismatch: expected {expected_value}, got {value} {result.ring.value}")

        validation = ScoringValidation(
            valid=not errors,
            value=value,
            ring=result.ring.value,
            confidence=confidence,
            warnings=warnings,
            errors=errors,
            calibration_valid=not calibration_errors,
            detection_valid=not (detection_errors or board_errors),
            board_valid=not board_errors,
        )

        with self._lock:
            m = self._metrics
            m["total_validations"] += 1
            n = m["total_validations"]
            if math.isfinite(confidence):
                m["average_confidence"] += (confidence - m["average_confidence"]) / n
            if calibration_errors:
                m["calibration_issues"] += 1
            if detection_errors or board_errors:
                m["detection_issues"] += 1
            if board_errors:
                m["board_boundary_issues"] += 1
            if validation.valid:
                m["accepted_count"] += 1
            else:
                m["rejected_count"] += 1
            m["success_rate"] = m["accepted_count"] / n

        if errors:
            logger.info(f"[ACCURACY] Rejected {result.ring.value} {value}: {'; '.join(errors)}")
        return validation

    def metrics(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._metrics)

    def reset(self) -> None:
        with self._lock:
            self._metrics = self._empty_metrics()

    def report(self) -> str:
        """Plain-text accuracy summary."""
        m = self.metrics()
        return "\n".join([
            "SCORING ACCURACY REPORT",
            f"Validations:          {m['total_validations']}",
            f"Accepted:             {m['accepted_count']}",
            f"Rejected:             {m['rejected_count']}",
            f"Success rate:         {m['success_rate'] * 100:.1f}%",
            f"Average confidence:   {m['average_confidence'] * 100:.1f}%",
            f"Calibration issues:   {m['calibration_issues']}",
            f"Detection issues:     {m['detection_issues']}",
            f"Board boundary issues: {m['board_boundary_issues']}",
        ])
