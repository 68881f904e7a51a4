"""
Pydantic schemas for API request/response models
"""
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime


# === Shared ===

class PointModel(BaseModel):
    """2D point (pixels or board mm depending on context)"""
    x: float
    y: float


class SizeModel(BaseModel):
    """Image or canvas size in pixels"""
    w: float = Field(..., gt=0)
    h: float = Field(..., gt=0)


# === Calibration ===

class CorrespondenceModel(BaseModel):
    """A measured pixel point and the board point (mm) it shows"""
    pixel: PointModel
    board: PointModel


class MarkerDetection(BaseModel):
    """A fiducial marker found in the calibration frame"""
    marker_id: int = Field(..., description="Decoded 10-bit marker id")
    center: PointModel = Field(..., description="Marker centre in image pixels")


class CalibrateRequest(BaseModel):
    """Request to calibrate a camera from correspondences or detected markers"""
    camera_id: str = Field(..., description="Unique identifier for this camera")
    image_size: SizeModel = Field(..., description="Size of the calibration frame")
    overlay_size: Optional[SizeModel] = Field(None, description="Overlay canvas size at lock time")
    correspondences: List[CorrespondenceModel] = Field(default_factory=list)
    markers: List[MarkerDetection] = Field(default_factory=list)
    use_ransac: bool = Field(False, description="Reject outlier points before fitting")
    lock: bool = True


class CalibrationInfo(BaseModel):
    """Info about a stored calibration"""
    camera_id: str
    created_at: datetime
    quality: float = Field(..., description="Calibration quality 0-1")
    rms_error_px: float
    segment_at_top: Optional[int] = Field(None, description="Segment number at 12 o'clock position")
    sector_offset: int = 0
    rotation_deg: float = Field(0.0, description="Board rotation in the image, clockwise positive")
    locked: bool = True


class CalibrationDetail(CalibrationInfo):
    """Full calibration including the homography"""
    homography: List[List[float]]
    image_size: SizeModel
    overlay_size: Optional[SizeModel] = None


class CalibrationListResponse(BaseModel):
    calibrations: List[CalibrationInfo]


class LoadCalibrationsRequest(BaseModel):
    board_id: str = "default"


class LoadCalibrationsResponse(BaseModel):
    success: bool
    board_id: str
    cameras_loaded: List[Dict[str, Any]] = Field(default_factory=list)
    cameras_failed: List[Dict[str, Any]] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


# === Scoring ===

class BoardScoreRequest(BaseModel):
    """Score a point given directly in board coordinates"""
    x: float = Field(..., description="X position in mm from center")
    y: float = Field(..., description="Y position in mm from center, negative towards 20")
    theta: Optional[float] = Field(None, description="Orientation hint in radians")
    sector_offset: int = Field(0, description="Whole-sector board rotation")


class ScoreResponse(BaseModel):
    """Calculated dart score"""
    base: int = Field(..., description="Segment number, or 25/50 for bulls")
    mult: int = Field(..., description="0=miss, 1=single/bull, 2=double, 3=triple")
    ring: str = Field(..., description="Ring name")
    sector: Optional[int] = Field(None, description="Segment 1-20, 25 for bulls, null on a miss")
    value: int = Field(..., description="Points scored")


class TipScoreRequest(BaseModel):
    """Score a detected tip through the camera's autoscore engine"""
    camera_id: str = Field(..., description="Camera ID (must be calibrated)")
    tip: PointModel = Field(..., description="Tip position in frame pixels")
    image_size: Optional[SizeModel] = Field(None, description="Frame size if it differs from calibration")
    detection_confidence: Optional[float] = Field(None, ge=0, le=1)
    theta: Optional[float] = None
    sector_offset: int = 0


class ValidationInfo(BaseModel):
    valid: bool
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class TipScoreResponse(ScoreResponse):
    camera_id: str
    confidence: float
    stable_count: int
    stable: bool
    board_point: Optional[PointModel] = None
    validation: Optional[ValidationInfo] = None


class SessionResetResponse(BaseModel):
    camera_id: str
    reset: bool


# === Markers ===

class MarkerResponse(BaseModel):
    marker_id: int
    matrix: List[List[int]] = Field(..., description="7x7 cells, 0=black 1=white")
    image: str = Field(..., description="Base64 encoded PNG")
    anchor: Optional[PointModel] = Field(None, description="Board point for calibration markers")


# === Health ===

class HealthResponse(BaseModel):
    status: str
    version: str
    calibrations: int
    engines: int
