"""
MediaPipe face detection plus the FER+ expression network.

The FER+ ONNX model is fetched once from the configured base URL, cached on
disk and loaded through OpenCV's DNN module. A single object implements both
``ModelProvider`` and ``InferenceEngine``.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional

import cv2
import httpx
import numpy as np

from ..config import ModelSettings, ScanSettings
from ..emotions import BoundingBox, FaceResult
from ..errors import ModelLoadError, ScanEngineError

logger = logging.getLogger(__name__)

FERPLUS_LABELS = ("neutral", "happiness", "surprise", "sadness", "anger", "disgust", "fear", "contempt")
FERPLUS_INPUT_SIZE = 64

# contempt has no counterpart, so mapped scores may not sum to 1
FERPLUS_TO_EMOTION: Dict[str, str] = {
    "neutral": "neutral",
    "happiness": "happy",
    "surprise": "surprised",
    "sadness": "sad",
    "anger": "angry",
    "disgust": "disgusted",
    "fear": "fearful",
}


def softmax(logits: np.ndarray) -> np.ndarray:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return exp / exp.sum()


def ferplus_scores(logits: np.ndarray) -> Dict[str, float]:
    """Map raw FER+ logits onto the seven emotion labels."""
    probs = softmax(np.asarray(logits, dtype=np.float64).reshape(-1))
    if probs.shape[0] != len(FERPLUS_LABELS):
        raise ScanEngineError(log_message=f"FER+ returned {probs.shape[0]} outputs, expected {len(FERPLUS_LABELS)}")
    return {
        FERPLUS_TO_EMOTION[label]: float(prob)
        for label, prob in zip(FERPLUS_LABELS, probs)
        if label in FERPLUS_TO_EMOTION
    }


class FerPlusEmotionModel:
    """Loads and runs the face detector and the expression network."""

    def __init__(
        self,
        model_settings: ModelSettings,
        scan_settings: ScanSettings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.model_settings = model_settings
        self.scan_settings = scan_settings
        self._http_client = http_client
        self._net: Optional[cv2.dnn.Net] = None
        self._detector = None

    @property
    def loaded(self) -> bool:
        return self._net is not None and self._detector is not None

    async def load_models(self, model_base_url: str) -> None:
        logger.info("📦 Loading AI models from %s", model_base_url)
        path = await self._fetch_model(model_base_url)
        loop = asyncio.get_running_loop()
        self._net = await loop.run_in_executor(None, self._read_net, path)
        self._detector = await loop.run_in_executor(None, self._create_detector)
        logger.info("✓ AI models loaded (%s)", path.name)

    async def detect(self, frame: np.ndarray) -> Optional[FaceResult]:
        if not self.loaded:
            raise ScanEngineError(log_message="detect called before models were loaded")
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._detect_sync, frame)
        except ScanEngineError:
            raise
        except Exception as exc:
            raise ScanEngineError(log_message=f"inference failed: {exc}") from exc

    def close(self) -> None:
        if self._detector is not None:
            self._detector.close()
            self._detector = None
        self._net = None

    async def _fetch_model(self, base_url: str) -> Path:
        cache_dir = Path(self.model_settings.cache_dir).expanduser()
        target = cache_dir / self.model_settings.file_name
        if target.exists() and target.stat().st_size > 0:
            logger.info("Using cached model %s", target)
            return target

        url = f"{base_url.rstrip('/')}/{self.model_settings.file_name}"
        client = self._http_client or httpx.AsyncClient(
            timeout=self.model_settings.download_timeout_seconds, follow_redirects=True
        )
        try:
            logger.info("Downloading model %s", url)
            response = await client.get(url)
            response.raise_for_status()
            content = response.content
        except httpx.TimeoutException as e:
            raise ModelLoadError(log_message=f"model download timed out: {url}") from e
        except httpx.HTTPStatusError as e:
            raise ModelLoadError(log_message=f"model download HTTP {e.response.status_code}: {url}") from e
        except httpx.HTTPError as e:
            raise ModelLoadError(log_message=f"model download network error: {e}") from e
        finally:
            if self._http_client is None:
                await client.aclose()

        if not content:
            raise ModelLoadError(log_message=f"model download returned an empty body: {url}")

        try:
            cache_dir.mkdir(parents=True, exist_ok=True)
            partial = target.with_suffix(target.suffix + ".part")
            partial.write_bytes(content)
            partial.replace(target)
        except OSError as e:
            raise ModelLoadError(log_message=f"could not cache model at {target}: {e}") from e
        return target

    @staticmethod
    def _read_net(path: Path) -> cv2.dnn.Net:
        try:
            net = cv2.dnn.readNetFromONNX(str(path))
        except cv2.error as e:
            raise ModelLoadError(log_message=f"could not parse {path}: {e}") from e
        if net.empty():
            raise ModelLoadError(log_message=f"{path} produced an empty network")
        return net

    def _create_detector(self):
        try:
            import mediapipe as mp

            return mp.solutions.face_detection.FaceDetection(
                model_selection=0,
                min_detection_confidence=self.scan_settings.detector_score_threshold,
            )
        except Exception as e:
            raise ModelLoadError(log_message=f"could not create face detector: {e}") from e

    def _detect_sync(self, frame: np.ndarray) -> Optional[FaceResult]:
        if frame is None or frame.size == 0:
            raise ScanEngineError(log_message="empty frame")
        height, width = frame.shape[:2]

        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        result = self._detector.process(rgb)
        if not result or not result.detections:
            return None

        # single-face handling: keep the most confident detection
        detection = max(result.detections, key=lambda d: d.score[0] if d.score else 0.0)
        box = detection.location_data.relative_bounding_box
        x, y = int(box.xmin * width), int(box.ymin * height)
        box_w, box_h = int(box.width * width), int(box.height * height)
        # clip to the frame on all four sides
        if x < 0:
            box_w, x = box_w + x, 0
        if y < 0:
            box_h, y = box_h + y, 0
        box_w = min(box_w, width - x)
        box_h = min(box_h, height - y)
        if box_w <= 0 or box_h <= 0:
            return None

        face = cv2.cvtColor(frame[y:y + box_h, x:x + box_w], cv2.COLOR_BGR2GRAY)
        face = cv2.resize(face, (FERPLUS_INPUT_SIZE, FERPLUS_INPUT_SIZE), interpolation=cv2.INTER_AREA)
        blob = face.astype(np.float32)[None, None, ...]  # [1,1,H,W]
        self._net.setInput(blob)
        logits = self._net.forward()

        return FaceResult(bounding_box=BoundingBox(float(box_w), float(box_h)), scores=ferplus_scores(logits))


__all__ = ["FERPLUS_LABELS", "FERPLUS_TO_EMOTION", "softmax", "ferplus_scores", "FerPlusEmotionModel"]
