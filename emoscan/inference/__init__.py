"""Face detection and expression scoring capabilities."""
from .base import InferenceEngine, ModelProvider
from .ferplus import FerPlusEmotionModel

__all__ = ["InferenceEngine", "ModelProvider", "FerPlusEmotionModel"]
