"""
Service configuration.

Read once from environment variables at startup and passed explicitly to the
components that need it.
"""
import os
from dataclasses import dataclass

from dartscore.core.autoscore import AutoscoreConfig


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the scoring service."""
    log_level: str = "INFO"
    dartgame_api_url: str = "http://localhost:5000"
    min_confidence: float = 0.8
    require_stable_n: int = 2
    tip_radius_px: float = 6.0
    detect_min_confidence: float = 0.6
    ransac_threshold_px: float = 8.0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            log_level=os.getenv("DARTSCORE_LOG_LEVEL", "INFO").upper(),
            dartgame_api_url=os.getenv("DARTGAME_API_URL", "http://localhost:5000"),
            min_confidence=_env_float("DARTSCORE_MIN_CONFIDENCE", 0.8),
            require_stable_n=_env_int("DARTSCORE_REQUIRE_STABLE_N", 2),
            tip_radius_px=_env_float("DARTSCORE_TIP_RADIUS_PX", 6.0),
            detect_min_confidence=_env_float("DARTSCORE_DETECT_MIN_CONFIDENCE", 0.6),
            ransac_threshold_px=_env_float("DARTSCORE_RANSAC_THRESHOLD_PX", 8.0),
        )

    def autoscore_config(self) -> AutoscoreConfig:
        return AutoscoreConfig(
            min_confidence=self.min_confidence,
            require_stable_n=self.require_stable_n,
            tip_radius_px=self.tip_radius_px,
        )
