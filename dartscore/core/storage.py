"""
Calibration storage - in memory, optionally loaded from the DartGame API.

When a game starts, call load_from_api(board_id) to fetch fresh calibration
data for that board's cameras. Listeners registered with add_listener() are
told about every change so per-camera scoring state can be cleared.
"""
import json
import logging
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

import requests

from dartscore.core.calibration import CalibrationState, calibration_state_from_dict
from dartscore.core.homography import GeometryError

logger = logging.getLogger("dartscore.storage")

# Called with (camera_id, state); state is None when the calibration was removed
CalibrationListener = Callable[[str, Optional[CalibrationState]], None]


class CalibrationNotFound(KeyError):
    """No calibration stored for the requested camera."""


class CalibrationStore:
    """Thread-safe in-memory storage for camera calibrations."""

    def __init__(self, dartgame_api_url: str = "http://localhost:5000", timeout: float = 10.0):
        self._store: Dict[str, CalibrationState] = {}
        self._lock = Lock()
        self._listeners: List[CalibrationListener] = []
        self._dartgame_api_url = dartgame_api_url.rstrip("/")
        self._timeout = timeout

    def add_listener(self, listener: CalibrationListener) -> None:
        self._listeners.append(listener)

    def _notify(self, camera_id: str, state: Optional[CalibrationState]) -> None:
        for listener in list(self._listeners):
            listener(camera_id, state)

    def save(self, state: CalibrationState) -> None:
        """Store (or replace) the calibration for state.camera_id."""
        with self._lock:
            self._store[state.camera_id] = state
        logger.info(f"[CalibrationStore] Saved calibration for {state.camera_id} (quality: {state.quality:.2f})")
        self._notify(state.camera_id, state)

    def get(self, camera_id: str) -> Optional[CalibrationState]:
        """Get the calibration for a camera, or None."""
        with self._lock:
            return self._store.get(camera_id)

    def require(self, camera_id: str) -> CalibrationState:
        """Get the calibration for a camera. Raises CalibrationNotFound."""
        state = self.get(camera_id)
        if state is None:
            raise CalibrationNotFound(camera_id)
        return state

    def delete(self, camera_id: str) -> bool:
        """Delete calibration for a camera. Returns True if existed."""
        with self._lock:
            existed = self._store.pop(camera_id, None) is not None
        if existed:
            self._notify(camera_id, None)
        return existed

    def list_all(self) -> List[CalibrationState]:
        """List all stored calibrations."""
        with self._lock:
            return list(self._store.values())

    def clear(self) -> None:
        """Clear all calibrations."""
        with self._lock:
            camera_ids = list(self._store)
            self._store.clear()
        for camera_id in camera_ids:
            self._notify(camera_id, None)

    def load_from_api(self, board_id: str = "default") -> Dict[str, Any]:
        """
        Load calibrations from the DartGame API for a specific board.

        Clears existing calibrations and loads only the ones for this
        board's cameras.

        Args:
            board_id: The board ID to load calibrations for

        Returns:
            Dict with success status, loaded cameras, and any errors
        """
        result = {
            "success": False,
            "board_id": board_id,
            "cameras_loaded": [],
            "cameras_failed": [],
            "errors": []
        }

        try:
            cameras_url = f"{self._dartgame_api_url}/api/boards/{board_id}/cameras"
            logger.info(f"[CalibrationStore] Fetching cameras from {cameras_url}")

            cameras_response = requests.get(cameras_url, timeout=self._timeout)
            if cameras_response.status_code == 404:
                result["errors"].append(f"Board '{board_id}' not found")
                return result

            cameras_response.raise_for_status()
            cameras = cameras_response.json()
        except (requests.RequestException, ValueError) as e:
            result["errors"].append(f"Failed to connect to DartGame API: {e}")
            logger.warning(f"[CalibrationStore] Failed to load from API: {e}")
            return result

        if not isinstance(cameras, list):
            result["errors"].append(f"Unexpected cameras payload for board '{board_id}'")
            logger.warning(f"[CalibrationStore] Cameras payload is {type(cameras).__name__}, expected a list")
            return result

        if not cameras:
            result["errors"].append(f"No cameras registered for board '{board_id}'")
            return result

        logger.info(f"[CalibrationStore] Found {len(cameras)} cameras for board {board_id}")
        self.clear()

        for cam in cameras:
            if not isinstance(cam, dict):
                result["cameras_failed"].append({"camera_id": None, "error": f"Invalid camera entry: {cam!r}"})
                continue
            camera_id = cam.get("cameraId") or cam.get("camera_id") or cam.get("CameraId")
            if not camera_id:
                continue

            try:
                state = self._fetch_calibration(camera_id)
            except (requests.RequestException, ValueError, KeyError, TypeError) as e:
                # GeometryError is a ValueError
                result["cameras_failed"].append({"camera_id": camera_id, "error": str(e)})
                continue

            if state is None:
                result["cameras_failed"].append({"camera_id": camera_id, "error": "Not calibrated"})
                continue

            self.save(state)
            result["cameras_loaded"].append({"camera_id": camera_id, "quality": state.quality})

        result["success"] = len(result["cameras_loaded"]) > 0
        logger.info(f"[CalibrationStore] Loaded {len(result['cameras_loaded'])} calibrations for board {board_id}")
        return result

    def _fetch_calibration(self, camera_id: str) -> Optional[CalibrationState]:
        cal_url = f"{self._dartgame_api_url}/api/calibrations/{camera_id}"
        logger.info(f"[CalibrationStore] Fetching calibration from {cal_url}")

        cal_response = requests.get(cal_url, timeout=self._timeout)
        if cal_response.status_code == 404:
            return None
        cal_response.raise_for_status()
        cal = cal_response.json()
        if not isinstance(cal, dict):
            raise ValueError("Calibration response is not an object")

        # Calibration data may arrive as a JSON string
        cal_data = cal.get("calibrationData") or cal.get("calibration_data")
        if isinstance(cal_data, str):
            try:
                cal_data = json.loads(cal_data)
            except json.JSONDecodeError:
                raise ValueError("Invalid calibration data JSON")
        if not cal_data:
            raise ValueError("Empty calibration data")
        if not isinstance(cal_data, dict):
            raise ValueError("Calibration data is not an object")
        if "homography" not in cal_data:
            raise GeometryError("Calibration data has no homography")

        return calibration_state_from_dict(cal_data, camera_id=camera_id)
