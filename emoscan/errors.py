"""Error taxonomy for the camera/scan lifecycle."""
from __future__ import annotations

from typing import Optional


class EmoscanError(RuntimeError):
    """Base error carrying a stable code and a message fit for the UI."""

    code: str = "error"
    default_message: str = "Something went wrong. Please try again."

    def __init__(self, user_message: Optional[str] = None, *, log_message: Optional[str] = None) -> None:
        self.user_message = user_message or self.default_message
        super().__init__(log_message or self.user_message)


class ModelLoadError(EmoscanError):
    """Models could not be fetched or parsed; camera features stay disabled."""

    code = "model_load_failed"
    default_message = "Failed to load AI models. Please check your internet connection."


class CameraError(EmoscanError):
    """Base for recoverable camera acquisition failures."""

    code = "camera_error"


class CameraPermissionError(CameraError):
    code = "camera_permission_denied"
    default_message = "Camera permission denied. Please allow camera access."


class CameraNotFoundError(CameraError):
    code = "camera_not_found"
    default_message = "No camera found. Please connect a camera."


class CameraOtherError(CameraError):
    code = "camera_unavailable"
    default_message = "Unable to access camera."

    def __init__(self, message: Optional[str] = None, *, log_message: Optional[str] = None) -> None:
        user_message = f"Unable to access camera: {message}" if message else None
        super().__init__(user_message, log_message=log_message or message)


class CameraRefused(EmoscanError):
    """A start/stop intent arrived while the lifecycle cannot honour it."""

    code = "camera_refused"
    default_message = "AI models are still loading. Please wait..."


class NoFaceDetected(EmoscanError):
    code = "no_face"
    default_message = "No face detected! Please position your face in front of the camera and try again."


class ScanEngineError(EmoscanError):
    code = "scan_failed"
    default_message = "Error during scan. Please try again."


class ScanRefused(EmoscanError):
    """A scan intent arrived while the guards do not permit one."""

    code = "scan_refused"
    default_message = "Camera is not ready yet. Please wait a moment."


__all__ = [
    "EmoscanError",
    "ModelLoadError",
    "CameraError",
    "CameraPermissionError",
    "CameraNotFoundError",
    "CameraOtherError",
    "CameraRefused",
    "NoFaceDetected",
    "ScanEngineError",
    "ScanRefused",
]
