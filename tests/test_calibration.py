"""
Tests for calibration fitting, orientation and the calibration store.
"""
import json
import math

import numpy as np
import pytest
import requests

from dartscore.core.calibration import (
    CalibrationState,
    calibrate,
    calibration_state_from_dict,
    calibration_state_to_dict,
    canonical_rim_targets,
    detect_board_orientation,
    estimate_sector_offset,
    segment_at_top,
    theta_to_degrees,
)
from dartscore.core.homography import GeometryError
from dartscore.core.mapping import apply_homography
from dartscore.core.storage import CalibrationNotFound, CalibrationStore
from dartscore.core.types import Correspondence, Point

from conftest import ROTATED_CAMERA, pairs_for, pixel_for


def test_canonical_targets():
    targets = canonical_rim_targets()
    assert len(targets) == 5
    top, right, bottom, left, bull = targets
    assert top == pytest.approx((0.0, -166.0))
    assert right == pytest.approx((166.0, 0.0))
    assert bottom == pytest.approx((0.0, 166.0))
    assert left == pytest.approx((-166.0, 0.0))
    assert bull == (0.0, 0.0)


def test_calibrate_from_canonical_points(canonical_pairs, pixel_to_board):
    state = calibrate("cam1", canonical_pairs, (1280, 720))
    assert state.camera_id == "cam1"
    assert state.locked
    assert state.rms_error_px < 1e-6
    assert state.quality == pytest.approx(1.0)
    assert np.allclose(state.homography, pixel_to_board, atol=1e-8)
    assert state.segment_at_top == 20


def test_calibrate_raises_on_degenerate_points():
    with pytest.raises(GeometryError):
        calibrate("cam1", pairs_for(canonical_rim_targets()[:3]), (1280, 720))
    with pytest.raises(GeometryError):
        calibrate("cam1", pairs_for(canonical_rim_targets()), (0, 720))


def test_calibrate_with_ransac_drops_bad_click():
    board = canonical_rim_targets() + [Point(60.0, 60.0), Point(-70.0, 40.0), Point(30.0, -90.0)]
    pairs = pairs_for(board)
    pixel, b = pairs[1]
    pairs[1] = Correspondence(Point(pixel.x + 60.0, pixel.y + 60.0), b)

    state = calibrate("cam1", pairs, (1280, 720), use_ransac=True, rng=np.random.default_rng(3))
    assert state.rms_error_px < 1e-6
    mapped = apply_homography(state.homography, pixel_for((0, -103)))
    assert mapped.x == pytest.approx(0.0, abs=1e-6)
    assert mapped.y == pytest.approx(-103.0, abs=1e-6)


def test_orientation_of_upright_camera(canonical_pairs):
    state = calibrate("cam1", canonical_pairs, (1280, 720))
    assert estimate_sector_offset(state.homography) == 0
    assert abs(detect_board_orientation(state.homography)) < math.radians(5)


def test_orientation_of_rotated_camera():
    state = calibrate("cam2", pairs_for(canonical_rim_targets(), ROTATED_CAMERA), (1280, 720))
    assert state.sector_offset == 5
    assert state.segment_at_top == 11
    assert segment_at_top(state.homography) == 11
    assert state.theta == pytest.approx(-math.pi / 2)
    assert theta_to_degrees(state.theta) == pytest.approx(90.0)
    assert theta_to_degrees(None) == 0.0


def test_singular_homography_has_no_orientation():
    assert estimate_sector_offset(np.zeros((3, 3))) == 0
    assert detect_board_orientation(np.zeros((3, 3))) == 0.0


def test_resized_frames_and_overlay(canonical_pairs):
    state = calibrate("cam1", canonical_pairs, (1280, 720), overlay_size=(640, 360))

    tip = pixel_for((0, -103))
    mapped = apply_homography(state.homography_for((640, 360)), (tip.x / 2, tip.y / 2))
    assert mapped.y == pytest.approx(-103.0, abs=1e-6)

    # Defaults to the overlay size kept at lock time
    centre = apply_homography(state.overlay_homography(), (0, 0))
    assert centre.x == pytest.approx(320.0)
    assert centre.y == pytest.approx(180.0)
    centre = apply_homography(state.overlay_homography((2560, 1440)), (0, 0))
    assert centre.x == pytest.approx(1280.0)


def test_state_dict_round_trip(canonical_pairs):
    state = calibrate("cam1", canonical_pairs, (1280, 720), overlay_size=(640, 360))
    data = json.loads(json.dumps(calibration_state_to_dict(state)))
    restored = calibration_state_from_dict(data)
    assert restored.camera_id == "cam1"
    assert np.allclose(restored.homography, state.homography)
    assert restored.image_size == (1280, 720)
    assert restored.overlay_size == (640, 360)
    assert restored.created_at == state.created_at
    assert restored.sector_offset == state.sector_offset


def test_quality_falls_with_error(canonical_pairs):
    state = calibrate("cam1", canonical_pairs, (1280, 720))
    worse = CalibrationState(camera_id="cam1", homography=state.homography, image_size=state.image_size, rms_error_px=2.5)
    useless = CalibrationState(camera_id="cam1", homography=state.homography, image_size=state.image_size, rms_error_px=50)
    assert worse.quality == pytest.approx(0.75)
    assert useless.quality == 0.0


# === Storage ===

def test_store_notifies_listeners(canonical_pairs):
    store = CalibrationStore()
    events = []
    store.add_listener(lambda camera_id, state: events.append((camera_id, state is not None)))

    state = calibrate("cam1", canonical_pairs, (1280, 720))
    store.save(state)
    assert store.get("cam1") is state
    assert store.require("cam1") is state
    assert [s.camera_id for s in store.list_all()] == ["cam1"]

    assert store.delete("cam1")
    assert not store.delete("cam1")
    assert store.get("cam1") is None
    with pytest.raises(CalibrationNotFound):
        store.require("cam1")

    store.save(state)
    store.clear()
    assert store.list_all() == []
    assert events == [("cam1", True), ("cam1", False), ("cam1", True), ("cam1", False)]


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def test_load_from_api(monkeypatch, canonical_pairs):
    state = calibrate("cam1", canonical_pairs, (1280, 720))
    responses = {
        "http://game/api/boards/board1/cameras": FakeResponse(
            200, [{"cameraId": "cam1"}, {"camera_id": "cam2"}, {"CameraId": "cam3"}, {}]
        ),
        "http://game/api/calibrations/cam1": FakeResponse(
            200, {"calibrationData": json.dumps(calibration_state_to_dict(state))}
        ),
        "http://game/api/calibrations/cam2": FakeResponse(404),
        "http://game/api/calibrations/cam3": FakeResponse(200, {"calibration_data": {"quality": 0.9}}),
    }
    monkeypatch.setattr("dartscore.core.storage.requests.get", lambda url, timeout: responses[url])

    store = CalibrationStore(dartgame_api_url="http://game/")
    result = store.load_from_api("board1")

    assert result["success"]
    assert [c["camera_id"] for c in result["cameras_loaded"]] == ["cam1"]
    assert [c["camera_id"] for c in result["cameras_failed"]] == ["cam2", "cam3"]
    loaded = store.require("cam1")
    assert np.allclose(loaded.homography, state.homography)


def test_load_from_api_unknown_board(monkeypatch):
    monkeypatch.setattr("dartscore.core.storage.requests.get", lambda url, timeout: FakeResponse(404))
    result = CalibrationStore(dartgame_api_url="http://game").load_from_api("nope")
    assert not result["success"]
    assert result["errors"] == ["Board 'nope' not found"]


def test_load_from_api_connection_error(monkeypatch):
    def fail(url, timeout):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr("dartscore.core.storage.requests.get", fail)
    store = CalibrationStore(dartgame_api_url="http://game")
    result = store.load_from_api("board1")
    assert not result["success"]
    assert "refused" in result["errors"][0]


def test_load_from_api_rejects_wrapped_camera_list(monkeypatch, canonical_pairs):
    monkeypatch.setattr(
        "dartscore.core.storage.requests.get",
        lambda url, timeout: FakeResponse(200, {"cameras": [{"cameraId": "cam1"}]}),
    )
    store = CalibrationStore(dartgame_api_url="http://game")
    store.save(calibrate("keep", canonical_pairs, (1280, 720)))

    result = store.load_from_api("board1")
    assert not result["success"]
    assert result["errors"] == ["Unexpected cameras payload for board 'board1'"]
    assert store.get("keep") is not None


def test_load_from_api_skips_malformed_entries(monkeypatch):
    responses = {
        "http://game/api/boards/board1/cameras": FakeResponse(200, ["cam1", {"cameraId": "cam2"}]),
        "http://game/api/calibrations/cam2": FakeResponse(200, [{"calibrationData": {}}]),
    }
    monkeypatch.setattr("dartscore.core.storage.requests.get", lambda url, timeout: responses[url])

    result = CalibrationStore(dartgame_api_url="http://game").load_from_api("board1")
    assert not result["success"]
    assert [c["camera_id"] for c in result["cameras_failed"]] == [None, "cam2"]
    assert result["cameras_failed"][1]["error"] == "Calibration response is not an object"


def test_load_from_api_rejects_non_object_calibration_data(monkeypatch):
    responses = {
        "http://game/api/boards/board1/cameras": FakeResponse(200, [{"cameraId": "cam1"}]),
        "http://game/api/calibrations/cam1": FakeResponse(200, {"calibrationData": "[1, 2, 3]"}),
    }
    monkeypatch.setattr("dartscore.core.storage.requests.get", lambda url, timeout: responses[url])

    result = CalibrationStore(dartgame_api_url="http://game").load_from_api("board1")
    assert result["cameras_failed"] == [{"camera_id": "cam1", "error": "Calibration data is not an object"}]
