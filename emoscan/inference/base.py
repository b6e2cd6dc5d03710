"""Capability interfaces the lifecycle controller depends on."""
from __future__ import annotations

from typing import Optional, Protocol

import numpy as np

from ..emotions import FaceResult


class ModelProvider(Protocol):
    async def load_models(self, model_base_url: str) -> None:
        """Fetch and load all models; raise ``ModelLoadError`` on failure."""


class InferenceEngine(Protocol):
    async def detect(self, frame: np.ndarray) -> Optional[FaceResult]:
        """Score the single most prominent face, ``None`` when no face is found.

        Raises ``ScanEngineError`` when inference itself fails.
        """


__all__ = ["ModelProvider", "InferenceEngine"]
