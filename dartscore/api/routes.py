"""
DartScore API Routes

Calibration, scoring and marker endpoints. The components behind them
(settings, calibration store, autoscore engines, accuracy validator) are
built once by create_services() and hung off app.state.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from dartscore.config import Settings
from dartscore.core.accuracy import AccuracyConfig, ScoringValidator
from dartscore.core.autoscore import EngineRegistry
from dartscore.core.calibration import CalibrationState, calibrate, theta_to_degrees
from dartscore.core.homography import GeometryError
from dartscore.core.markers import (
    MARKER_TARGETS,
    MAX_CELL_PX,
    MarkerIdError,
    correspondences_from_markers,
    encode_marker_png,
    marker_anchor,
    marker_id_to_matrix,
)
from dartscore.core.scoring import ScoringSystem
from dartscore.core.storage import CalibrationNotFound, CalibrationStore
from dartscore.core.types import Correspondence, Point
from dartscore.models.schemas import (
    BoardScoreRequest,
    CalibrateRequest,
    CalibrationDetail,
    CalibrationInfo,
    CalibrationListResponse,
    HealthResponse,
    LoadCalibrationsRequest,
    LoadCalibrationsResponse,
    MarkerResponse,
    PointModel,
    ScoreResponse,
    SessionResetResponse,
    SizeModel,
    TipScoreRequest,
    TipScoreResponse,
    ValidationInfo,
)

logger = logging.getLogger("dartscore.routes")

API_VERSION = "1.0.0"

router = APIRouter()


@dataclass
class Services:
    settings: Settings
    store: CalibrationStore
    engines: EngineRegistry
    validator: ScoringValidator
    scoring: ScoringSystem


def create_services(settings: Settings) -> Services:
    """Wire the scoring components together for one app instance."""
    store = CalibrationStore(dartgame_api_url=settings.dartgame_api_url)
    engines = EngineRegistry(settings.autoscore_config())
    # Stability never survives a recalibration
    store.add_listener(engines.on_calibration_changed)
    validator = ScoringValidator(AccuracyConfig(min_detection_confidence=settings.detect_min_confidence))
    return Services(
        settings=settings,
        store=store,
        engines=engines,
        validator=validator,
        scoring=ScoringSystem(),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def _require_calibration(services: Services, camera_id: str) -> CalibrationState:
    try:
        return services.store.require(camera_id)
    except CalibrationNotFound:
        raise HTTPException(status_code=404, detail=f"No calibration for camera '{camera_id}'")


def _info(state: CalibrationState) -> CalibrationInfo:
    return CalibrationInfo(
        camera_id=state.camera_id,
        created_at=state.created_at,
        quality=state.quality,
        rms_error_px=state.rms_error_px,
        segment_at_top=state.segment_at_top,
        sector_offset=state.sector_offset,
        rotation_deg=theta_to_degrees(state.theta),
        locked=state.locked,
    )


def _detail(state: CalibrationState) -> CalibrationDetail:
    return CalibrationDetail(
        **_info(state).model_dump(),
        homography=[[float(v) for v in row] for row in state.homography],
        image_size=SizeModel(w=state.image_size.w, h=state.image_size.h),
        overlay_size=(
            SizeModel(w=state.overlay_size.w, h=state.overlay_size.h)
            if state.overlay_size else None
        ),
    )


# === Health ===

@router.get("/health", response_model=HealthResponse)
async def health(services: Services = Depends(get_services)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        version=API_VERSION,
        calibrations=len(services.store.list_all()),
        engines=len(services.engines.list_engines()),
    )


# === Calibration ===

@router.post("/v1/calibrate", response_model=CalibrationDetail)
async def calibrate_camera(request: CalibrateRequest, services: Services = Depends(get_services)):
    """
    Fit and store a camera calibration.

    Detected markers take precedence over explicit correspondences. Storing
    the calibration resets the camera's autoscore engine.
    """
    if request.markers:
        pairs: List[Correspondence] = correspondences_from_markers(
            [(m.marker_id, (m.center.x, m.center.y)) for m in request.markers]
        )
    else:
        pairs = [
            Correspondence(Point(c.pixel.x, c.pixel.y), Point(c.board.x, c.board.y))
            for c in request.correspondences
        ]

    logger.info(f"[CALIBRATE] Camera {request.camera_id}: {len(pairs)} correspondences, ransac={request.use_ransac}")
    if len(pairs) < 4:
        raise HTTPException(status_code=422, detail=f"Need at least 4 calibration points, got {len(pairs)}")

    try:
        state = calibrate(
            camera_id=request.camera_id,
            correspondences=pairs,
            image_size=(request.image_size.w, request.image_size.h),
            overlay_size=(request.overlay_size.w, request.overlay_size.h) if request.overlay_size else None,
            use_ransac=request.use_ransac,
            ransac_threshold_px=services.settings.ransac_threshold_px,
            lock=request.lock,
        )
    except GeometryError as e:
        logger.warning(f"[CALIBRATE] Camera {request.camera_id}: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    services.store.save(state)
    return _detail(state)


@router.get("/v1/calibrations", response_model=CalibrationListResponse)
async def list_calibrations(services: Services = Depends(get_services)):
    return CalibrationListResponse(calibrations=[_info(s) for s in services.store.list_all()])


@router.get("/v1/calibrations/{camera_id}", response_model=CalibrationDetail)
async def get_calibration(camera_id: str, services: Services = Depends(get_services)):
    return _detail(_require_calibration(services, camera_id))


@router.delete("/v1/calibrations/{camera_id}")
async def delete_calibration(camera_id: str, services: Services = Depends(get_services)):
    if not services.store.delete(camera_id):
        raise HTTPException(status_code=404, detail=f"No calibration for camera '{camera_id}'")
    logger.info(f"[CALIBRATE] Deleted calibration for {camera_id}")
    return {"message": f"Calibration deleted for camera {camera_id}"}


@router.post("/v1/calibrations/load", response_model=LoadCalibrationsResponse)
async def load_calibrations(request: LoadCalibrationsRequest, services: Services = Depends(get_services)):
    """Replace stored calibrations with the ones the game API holds for a board."""
    result = services.store.load_from_api(request.board_id)
    return LoadCalibrationsResponse(**result)


# === Scoring ===

@router.post("/v1/score/board", response_model=ScoreResponse)
async def score_board_point(request: BoardScoreRequest, services: Services = Depends(get_services)):
    score = services.scoring.score_from_dartboard_coords(
        request.x, request.y, request.theta, request.sector_offset
    )
    return ScoreResponse(**score.to_dict())


@router.post("/v1/score", response_model=TipScoreResponse)
async def score_tip(request: TipScoreRequest, services: Services = Depends(get_services)):
    """
    Score a detected tip for a calibrated camera.

    Each call advances the camera's stability count; the response says
    whether the tip has been stable long enough to commit.
    """
    state = _require_calibration(services, request.camera_id)
    try:
        H = state.homography_for((request.image_size.w, request.image_size.h)) if request.image_size else state.homography
    except GeometryError as e:
        raise HTTPException(status_code=422, detail=str(e))

    engine = services.engines.get_engine(request.camera_id)
    result = engine.score_tip(H, (request.tip.x, request.tip.y), request.theta, request.sector_offset)
    validation = services.validator.validate(result, state, request.detection_confidence)

    logger.info(
        f"[SCORE] {request.camera_id}: {result.ring.value} {result.point_value} "
        f"conf={result.confidence:.2f} stable={result.stable_count}"
    )
    return TipScoreResponse(
        camera_id=request.camera_id,
        base=result.base,
        mult=result.mult,
        ring=result.ring.value,
        sector=result.sector,
        value=result.point_value,
        confidence=result.confidence,
        stable_count=result.stable_count,
        stable=result.stable,
        board_point=(
            PointModel(x=result.board_point.x, y=result.board_point.y)
            if result.board_point is not None else None
        ),
        validation=ValidationInfo(valid=validation.valid, warnings=validation.warnings, errors=validation.errors),
    )


@router.post("/v1/sessions/{camera_id}/reset", response_model=SessionResetResponse)
async def reset_session(camera_id: str, services: Services = Depends(get_services)):
    """Clear stability state for a camera (new turn, interruption)."""
    reset = services.engines.reset(camera_id, reason="session reset")
    return SessionResetResponse(camera_id=camera_id, reset=reset)


# === Markers ===

@router.get("/v1/markers/{marker_id}", response_model=MarkerResponse)
async def get_marker(marker_id: int, cell_px: int = Query(20, ge=1, le=MAX_CELL_PX)):
    try:
        matrix = marker_id_to_matrix(marker_id)
        image = encode_marker_png(marker_id, cell_px)
    except MarkerIdError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    anchor: Optional[PointModel] = None
    if marker_id in MARKER_TARGETS.values():
        p = marker_anchor(marker_id)
        anchor = PointModel(x=p.x, y=p.y)
    return MarkerResponse(marker_id=marker_id, matrix=matrix, image=image, anchor=anchor)
