"""
Tests for the scoring accuracy validator.
"""
import numpy as np
import pytest

from dartscore.core.accuracy import AccuracyConfig, ScoringValidator
from dartscore.core.autoscore import INITIAL_STATE, AutoscoreConfig, score_tip
from dartscore.core.calibration import CalibrationState
from dartscore.core.types import ImageSize

IDENTITY = np.eye(3)


def make_calibration(rms=0.5, homography=IDENTITY):
    return CalibrationState(camera_id="cam1", homography=homography, image_size=ImageSize(1280, 720), rms_error_px=rms)


def make_result(tip=(0, -103)):
    _, result = score_tip(INITIAL_STATE, IDENTITY, tip, config=AutoscoreConfig(min_confidence=0.0))
    return result


def test_good_dart_is_valid():
    validator = ScoringValidator()
    validation = validator.validate(make_result(), make_calibration())
    assert validation.valid
    assert validation.value == 60
    assert validation.ring == "TRIPLE"
    assert validation.errors == []
    assert validation.to_dict()["calibration_valid"]


def test_calibration_problems_invalidate():
    validator = ScoringValidator()
    high_error = validator.validate(make_result(), make_calibration(rms=9.0))
    assert not high_error.valid
    assert not high_error.calibration_valid
    assert "High calibration error" in high_error.errors[0]

    singular = validator.validate(make_result(), make_calibration(homography=np.zeros((3, 3))))
    assert not singular.valid
    assert singular.errors == ["Invalid homography matrix"]

    missing = validator.validate(make_result(), None)
    assert not missing.calibration_valid


def test_detection_problems_invalidate():
    validator = ScoringValidator(AccuracyConfig(min_detection_confidence=0.7))
    low = validator.validate(make_result(), make_calibration(), detection_confidence=0.3)
    assert not low.valid
    assert not low.detection_valid
    assert low.board_valid

    off_board = validator.validate(make_result((200, 0)), make_calibration())
    assert not off_board.valid
    assert not off_board.board_valid
    assert any("off board" in e for e in off_board.errors)

    lenient = ScoringValidator(AccuracyConfig(strict_board_boundary=False))
    assert lenient.validate(make_result((200, 0)), make_calibration()).board_valid


def test_expected_value_mismatch_is_a_warning():
    validation = ScoringValidator().validate(make_result(), make_calibration(), expected_value=20)
    assert validation.valid
    assert validation.warnings == ["Score mismatch: expected 20, got 60 TRIPLE"]


def test_metrics_and_reset():
    validator = ScoringValidator()
    validator.validate(make_result(), make_calibration(), detection_confidence=0.9)
    validator.validate(make_result(), make_calibration(rms=9.0), detection_confidence=0.9)
    validator.validate(make_result((200, 0)), make_calibration(), detection_confidence=0.3)

    m = validator.metrics()
    assert m["total_validations"] == 3
    assert m["accepted_count"] == 1
    assert m["rejected_count"] == 2
    assert m["calibration_issues"] == 1
    assert m["detection_issues"] == 1
    assert m["board_boundary_issues"] == 1
    assert m["average_confidence"] == pytest.approx(0.7)
    assert m["success_rate"] == pytest.approx(1 / 3)
    assert "Rejected:             2" in validator.report()

    validator.reset()
    assert validator.metrics()["total_validations"] == 0
