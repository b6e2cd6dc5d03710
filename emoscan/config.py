"""Central configuration for the emoscan controller service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[1]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class CameraSettings(BaseModel):
    """Webcam hardware and readiness configuration."""
    device_index: int = Field(0, description="OpenCV capture index (/dev/videoN on Linux)")
    width: int = Field(1280, description="Requested stream width (pixels)")
    height: int = Field(720, description="Requested stream height (pixels)")
    facing_mode: str = Field("user", description="Preferred camera facing mode")
    frame_rate: int = Field(30, description="Requested capture frame rate")
    min_buffered_frames: int = Field(3, description="Frames that must be buffered before a scan is allowed")
    readiness_timeout_seconds: float = Field(
        2.0, description="Wait for the readiness signal before falling back to polling frame dimensions"
    )
    readiness_poll_interval_seconds: float = Field(0.1, description="Polling interval after the readiness timeout")
    readiness_max_wait_seconds: float = Field(
        10.0, description="Total wait before a start with no frame at all is treated as failed"
    )
    stale_frame_seconds: float = Field(
        2.0, description="Frame age after which the stream counts as no longer delivering"
    )
    preview_jpeg_quality: int = Field(85, description="JPEG quality for the preview stream")
    preview_fps_limit: float = Field(0.033, description="Minimum time between preview frames (seconds)")


class ScanSettings(BaseModel):
    """Single-frame emotion scan configuration."""
    confidence_threshold: float = Field(0.5, description="Informational confidence threshold (never suppresses results)")
    detector_score_threshold: float = Field(0.5, description="MediaPipe face detection confidence (0-1)")
    excellent_ratio: float = Field(0.15, description="Face/frame area ratio above which quality is excellent")
    good_ratio: float = Field(0.08, description="Face/frame area ratio above which quality is good")

    @field_validator("confidence_threshold", "detector_score_threshold")
    @classmethod
    def _unit_interval(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("threshold must be within [0, 1]")
        return value


class ModelSettings(BaseModel):
    """Emotion model download configuration."""
    base_url: str = Field(
        "https://github.com/onnx/models/raw/main/validated/vision/body_analysis/emotion_ferplus/model",
        description="Base URL the expression model is fetched from",
    )
    file_name: str = Field("emotion-ferplus-8.onnx", description="Expression model file under base_url")
    cache_dir: Path = Field(ROOT_DIR / "models", description="Local directory for downloaded models")
    download_timeout_seconds: float = Field(30.0, description="HTTP timeout for model download")


class PerformanceSettings(BaseModel):
    """Queue tuning."""
    ui_event_queue_size: int = Field(16, description="Max buffered UI events per subscriber")
    preview_queue_size: int = Field(2, description="Max buffered preview JPEG frames per subscriber")


class Settings(BaseSettings):
    """Environment-driven settings for controller subsystems."""

    # Controller HTTP Server
    controller_host: str = Field("127.0.0.1", description="Host interface for local FastAPI server")
    controller_port: int = Field(5000, description="Port for FastAPI server")

    # Session
    default_user_name: str = Field("User", description="Name used when onboarding leaves the name blank")
    session_cookie_name: str = Field("emoscan_user", description="Browser-session cookie holding the name")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    camera: CameraSettings = Field(default_factory=CameraSettings, description="Camera hardware settings")
    scan: ScanSettings = Field(default_factory=ScanSettings, description="Scan settings")
    models: ModelSettings = Field(default_factory=ModelSettings, description="Emotion model settings")
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings, description="Performance tuning")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_prefix="EMOSCAN_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()


__all__ = [
    "CameraSettings",
    "ModelSettings",
    "PerformanceSettings",
    "ScanSettings",
    "Settings",
    "get_settings",
]
