"""
DartScore API - Dart landing inference service

Turns detected dart tips into scores: camera calibration (homography from
clicked points or fiducial markers), image-to-board mapping, ring/sector
resolution and stability gating before a dart is committed.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dartscore.api.routes import API_VERSION, create_services, router
from dartscore.config import Settings

logger = logging.getLogger(__name__)

# Configuration
API_TITLE = "DartScore API"
API_DESCRIPTION = """
Dart landing inference - maps detected tips to board scores.

## Endpoints

### Calibration
- `POST /v1/calibrate` - Fit a camera homography from points or markers
- `GET /v1/calibrations` - List stored calibrations
- `POST /v1/calibrations/load` - Load calibrations from the DartGame API

### Scoring
- `POST /v1/score` - Score a detected tip through the camera's autoscore engine
- `POST /v1/score/board` - Score a board-space point
- `POST /v1/sessions/{camera_id}/reset` - Clear stability state

### Markers
- `GET /v1/markers/{marker_id}` - Marker bit matrix and printable PNG

### Health
- `GET /health` - Service health check
"""


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(f"{API_TITLE} starting (game API: {app.state.services.settings.dartgame_api_url})")
    yield
    logger.info(f"{API_TITLE} shutting down")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.services = create_services(settings)

    # CORS - allow all for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/")
    async def root():
        """API info and links."""
        return {
            "name": API_TITLE,
            "version": API_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    return app


_settings = Settings.from_env()
configure_logging(_settings.log_level)
app = create_app(_settings)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
