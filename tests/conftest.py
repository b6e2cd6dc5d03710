"""
Shared pytest fixtures for emoscan tests.
"""
import pytest

from emoscan.config import CameraSettings, ModelSettings, Settings
from emoscan.emotions import BoundingBox, FaceResult


@pytest.fixture
def settings(tmp_path):
    """Settings with short readiness timings so fallback paths run quickly."""
    return Settings(
        log_directory=tmp_path / "logs",
        camera=CameraSettings(
            readiness_timeout_seconds=0.05,
            readiness_poll_interval_seconds=0.01,
            readiness_max_wait_seconds=0.3,
        ),
        models=ModelSettings(cache_dir=tmp_path / "models"),
    )


@pytest.fixture
def happy_face():
    """200x200 face, mostly happy."""
    return FaceResult(
        bounding_box=BoundingBox(200, 200),
        scores={
            "happy": 0.82,
            "sad": 0.04,
            "angry": 0.02,
            "surprised": 0.05,
            "fearful": 0.01,
            "disgusted": 0.01,
            "neutral": 0.05,
        },
    )
